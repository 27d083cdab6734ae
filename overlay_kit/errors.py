from __future__ import annotations


class OverlayError(Exception):
    """
    Base class for errors raised by overlay_kit.
    """


class EmptyFrameError(OverlayError, ValueError):
    """
    Frame has zero area (or is missing). The caller should skip the frame.
    """


class DecodeError(OverlayError, ValueError):
    """
    Model output cannot be interpreted (bad shape, non-finite logits, ...).
    """


class ModelNotReadyError(OverlayError, RuntimeError):
    """
    Inference was requested before the model finished loading.
    """
