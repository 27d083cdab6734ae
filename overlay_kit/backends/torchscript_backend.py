from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import numpy as np


PathLike = Union[str, Path]


@dataclass(frozen=True)
class TorchScriptBackendConfig:
    """
    Configuration for TorchScript inference.

    - device: "cpu" or "cuda" (if available)
    - half: feed float16 (only if the exported graph expects it)
    - output_index: pick this output when the model returns a tuple/list
    """

    device: str = "cpu"
    half: bool = False
    output_index: int = 0


class TorchScriptBackend:
    """
    TorchScript model runner loaded with `torch.jit.load`.

    Returns float32 NumPy arrays so the decoders never see torch tensors.
    """

    def __init__(self, model_path: PathLike, cfg: TorchScriptBackendConfig = TorchScriptBackendConfig()):
        try:
            import torch  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError("torch is required for the TorchScript backend. Install with `pip install torch`.") from e

        self._torch = torch
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        self.device = torch.device(cfg.device)
        self.half = cfg.half
        self.output_index = cfg.output_index

        model = torch.jit.load(str(self.model_path), map_location=self.device)
        model.eval()
        self.model: Optional[object] = model

    @property
    def ready(self) -> bool:
        return self.model is not None

    def infer(self, blob: np.ndarray) -> np.ndarray:
        torch = self._torch
        x = torch.as_tensor(blob, device=self.device)
        x = x.half() if self.half else x.float()
        x = x.contiguous()

        with torch.inference_mode():
            y = self.model(x)

        if isinstance(y, (tuple, list)):
            y = y[self.output_index]

        return y.detach().to("cpu").float().numpy()
