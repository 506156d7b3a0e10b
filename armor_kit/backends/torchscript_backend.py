from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Union

import numpy as np


PathLike = Union[str, Path]


@dataclass(frozen=True)
class TorchScriptBackendConfig:
    """
    Configuration for TorchScript inference.

    - device: "cpu" or "cuda" (if available)
    - half: cast input to float16 (only if the model expects it)
    - output_index: if the model returns multiple outputs, select this index
    """

    device: str = "cpu"
    half: bool = False
    output_index: int = 0


class TorchScriptRequest:
    def __init__(self, backend: "TorchScriptBackend"):
        self._backend = backend

    def infer(self, blob: np.ndarray) -> np.ndarray:
        b = self._backend
        torch = b._torch
        x = torch.as_tensor(blob, device=b.device)
        x = x.half() if b.half else x.float()
        x = x.contiguous()

        with torch.no_grad():
            y = b.model(x)

        if isinstance(y, (tuple, list)):
            y = y[b.output_index]

        if hasattr(y, "detach"):
            y = y.detach()
        return y.to("cpu").float().numpy()


class TorchScriptBackend:
    """
    Minimal TorchScript backend using `torch.jit.load`.

    The scripted module is loaded once in eval mode and shared by all requests.
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

        self.device = torch.device(cfg.device.lower())
        self.half = cfg.half
        self.output_index = cfg.output_index

        model = torch.jit.load(str(self.model_path), map_location=self.device)
        model.eval()
        self.model = model

    def create_request(self) -> TorchScriptRequest:
        return TorchScriptRequest(self)
