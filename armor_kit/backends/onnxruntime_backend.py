from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

import numpy as np


logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

_DEVICE_PROVIDERS = {
    "CPU": ["CPUExecutionProvider"],
    "GPU": ["CUDAExecutionProvider", "CPUExecutionProvider"],
    "CUDA": ["CUDAExecutionProvider", "CPUExecutionProvider"],
}


@dataclass(frozen=True)
class OnnxRuntimeBackendConfig:
    """
    Configuration for ONNX Runtime inference.

    - device: "CPU", "GPU"/"CUDA"; mapped to execution providers
    - providers: explicit ORT execution providers, overrides `device`
    - input_name/output_name: override auto-selected I/O names if needed
    """

    device: str = "CPU"
    providers: Optional[Sequence[str]] = None
    input_name: Optional[str] = None
    output_name: Optional[str] = None


def providers_for_device(device: str) -> List[str]:
    key = device.split(":", 1)[0].upper()
    if key not in _DEVICE_PROVIDERS:
        raise ValueError(f"Unknown device {device!r}; expected one of {sorted(_DEVICE_PROVIDERS)}")
    return list(_DEVICE_PROVIDERS[key])


def select_providers(requested: Sequence[str], available: Sequence[str]) -> List[str]:
    """
    Keep the requested providers this onnxruntime build ships, in order.
    Raises ValueError when none of them is available.
    """
    available_set = set(available)
    kept = [p for p in requested if p in available_set]
    if not kept:
        raise ValueError(
            f"None of the requested execution providers {list(requested)} are available "
            f"(have {sorted(available_set)})"
        )
    dropped = [p for p in requested if p not in available_set]
    if dropped:
        logger.warning("Execution providers %s are not available; running on %s", dropped, kept)
    return kept


class OnnxRuntimeRequest:
    """
    One inference call on a shared session. Each request carries its own
    RunOptions so no per-call state is shared between threads.
    """

    def __init__(self, backend: "OnnxRuntimeBackend"):
        self._backend = backend
        self.run_options = backend._ort.RunOptions()

    def infer(self, blob: np.ndarray) -> np.ndarray:
        b = self._backend
        outputs = b.session.run([b.output_name], {b.input_name: blob}, self.run_options)
        return outputs[0]


class OnnxRuntimeBackend:
    """
    Minimal ONNX Runtime backend.

    Expects an NCHW float32 blob shaped (1, 3, H, W).
    Returns the primary output as a NumPy array.
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

        requested = list(cfg.providers) if cfg.providers is not None else providers_for_device(cfg.device)
        providers = select_providers(requested, ort.get_available_providers())

        sess_opts = ort.SessionOptions()
        self.session = ort.InferenceSession(str(self.model_path), sess_options=sess_opts, providers=providers)

        self.input_name = cfg.input_name or self.session.get_inputs()[0].name
        self.output_name = cfg.output_name or self.session.get_outputs()[0].name

    @property
    def providers_in_use(self) -> Sequence[str]:
        return tuple(self.session.get_providers())

    def create_request(self) -> OnnxRuntimeRequest:
        return OnnxRuntimeRequest(self)
