"""
Armor detection post-processing and asynchronous detector runtime.

Framework-agnostic: works with NumPy arrays emitted by ONNX Runtime, TorchScript
or any injected inference function. Letterboxing and drawing use OpenCV.
"""

from .types import ArmorColor, ArmorNumber, Detection, NUM_CLASSES, NUM_COLORS
from .letterbox import letterbox, transform_points, INPUT_W, INPUT_H
from .nms import NMSConfig, nms, box_iou
from .postprocess import ArmorPostprocessor, ArmorPostConfig, generate_proposals
from .config import DetectorConfig, load_detector_config
from .runtime import ArmorDetector, DetectorCallback, load_backend, preprocess
from .visualize import draw_armors

__all__ = [
    "ArmorColor",
    "ArmorNumber",
    "Detection",
    "NUM_CLASSES",
    "NUM_COLORS",
    "letterbox",
    "transform_points",
    "INPUT_W",
    "INPUT_H",
    "NMSConfig",
    "nms",
    "box_iou",
    "ArmorPostprocessor",
    "ArmorPostConfig",
    "generate_proposals",
    "DetectorConfig",
    "load_detector_config",
    "ArmorDetector",
    "DetectorCallback",
    "load_backend",
    "preprocess",
    "draw_armors",
]
