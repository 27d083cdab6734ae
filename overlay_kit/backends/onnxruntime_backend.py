from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

import numpy as np


PathLike = Union[str, Path]


@dataclass(frozen=True)
class OnnxRuntimeBackendConfig:
    """
    Configuration for ONNX Runtime inference.

    - providers: ORT execution providers (e.g., ["CUDAExecutionProvider", "CPUExecutionProvider"])
    - input_name/output_name: override the first declared input/output
    - intra_op_threads: 0 lets ORT decide
    """

    providers: Optional[Sequence[str]] = None
    input_name: Optional[str] = None
    output_name: Optional[str] = None
    intra_op_threads: int = 0


class OnnxRuntimeBackend:
    """
    ONNX Runtime model runner: one named float32 input, one named output.

    Expects a planar blob shaped (1, 3, S, S) and returns the selected output as a
    NumPy array.
    """

    def __init__(self, model_path: PathLike, cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig()):
        try:
            import onnxruntime as ort  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "onnxruntime is required for the ONNX backend. Install it with `pip install onnxruntime` "
                "(or `onnxruntime-gpu`)."
            ) from e

        self._ort = ort
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        sess_opts = ort.SessionOptions()
        if cfg.intra_op_threads > 0:
            sess_opts.intra_op_num_threads = int(cfg.intra_op_threads)
        providers = list(cfg.providers) if cfg.providers is not None else None
        self.session = ort.InferenceSession(str(self.model_path), sess_options=sess_opts, providers=providers)

        self.input_name = cfg.input_name or self.session.get_inputs()[0].name
        self.output_name = cfg.output_name or self.session.get_outputs()[0].name

    @property
    def ready(self) -> bool:
        return self.session is not None

    @property
    def input_size(self) -> Optional[int]:
        """
        Square spatial size declared by the model input, or None when dynamic.
        """

        for inp in self.session.get_inputs():
            if inp.name != self.input_name:
                continue
            shape = list(inp.shape)
            if len(shape) == 4 and isinstance(shape[2], int) and shape[2] == shape[3]:
                return int(shape[2])
        return None

    @property
    def providers_in_use(self) -> Sequence[str]:
        return tuple(self.session.get_providers())

    @property
    def available_providers(self) -> Sequence[str]:
        return tuple(self._ort.get_available_providers())

    def infer(self, blob: np.ndarray, extra_inputs: Optional[Dict[str, Any]] = None) -> np.ndarray:
        inputs: Dict[str, Any] = {self.input_name: np.ascontiguousarray(blob, dtype=np.float32)}
        if extra_inputs:
            inputs.update(extra_inputs)
        outputs = self.session.run([self.output_name], inputs)
        return outputs[0]
