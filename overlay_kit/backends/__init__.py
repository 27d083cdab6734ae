"""
Model runners for overlay_kit.

Kept in a separate package so pre/post-processing can be used (and tested)
without any inference runtime installed. Import the concrete backend module you
need; `overlay_kit.runtime.load_pipeline` does this lazily.
"""

from __future__ import annotations

__all__ = []
