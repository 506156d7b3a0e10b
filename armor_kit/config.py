from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .letterbox import INPUT_H, INPUT_W


@dataclass(frozen=True)
class DetectorConfig:
    """
    Process-wide detector settings, fixed at construction.

    `model_path` may be None when an inference function is injected instead.
    """

    model_path: Optional[str] = None
    device: str = "CPU"
    conf_threshold: float = 0.65
    nms_threshold: float = 0.45
    top_k: int = 128
    backend: Optional[str] = None
    input_shape: Tuple[int, int] = (INPUT_W, INPUT_H)
    max_workers: int = 4

    def __post_init__(self) -> None:
        if not 0.0 <= self.conf_threshold <= 1.0:
            raise ValueError("conf_threshold must be within [0, 1]")
        if not 0.0 <= self.nms_threshold <= 1.0:
            raise ValueError("nms_threshold must be within [0, 1]")
        if self.top_k < 0:
            raise ValueError("top_k must be >= 0")
        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if len(self.input_shape) != 2 or min(self.input_shape) <= 0:
            raise ValueError("input_shape must be (width, height) with positive values")


def _require_number(payload: Dict[str, Any], key: str) -> float:
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _require_int(payload: Dict[str, Any], key: str) -> int:
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return int(value)


def _require_str(payload: Dict[str, Any], key: str) -> str:
    value = payload[key]
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{key} must be a non-empty string")
    return value.strip()


def load_detector_config(path: Path) -> DetectorConfig:
    """
    Load a DetectorConfig from JSON. Missing keys keep their defaults; a
    relative `model_path` resolves against the config file's directory.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Detector config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid detector config JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Detector config must be a JSON object")

    allowed = {
        "model_path",
        "device",
        "conf_threshold",
        "nms_threshold",
        "top_k",
        "backend",
        "input_shape",
        "max_workers",
    }
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown detector config keys: {unknown}")

    kwargs: Dict[str, Any] = {}
    if "model_path" in payload:
        model_path = Path(_require_str(payload, "model_path"))
        if not model_path.is_absolute():
            model_path = (path.parent / model_path).resolve()
        kwargs["model_path"] = str(model_path)
    for key in ("device", "backend"):
        if key in payload:
            kwargs[key] = _require_str(payload, key)
    for key in ("conf_threshold", "nms_threshold"):
        if key in payload:
            kwargs[key] = _require_number(payload, key)
    for key in ("top_k", "max_workers"):
        if key in payload:
            kwargs[key] = _require_int(payload, key)
    if "input_shape" in payload:
        shape = payload["input_shape"]
        if (
            not isinstance(shape, list)
            or len(shape) != 2
            or any(isinstance(v, bool) or not isinstance(v, int) for v in shape)
        ):
            raise ValueError("input_shape must be a [width, height] pair of integers")
        kwargs["input_shape"] = (shape[0], shape[1])

    return DetectorConfig(**kwargs)
