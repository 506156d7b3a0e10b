from __future__ import annotations

from typing import Iterable, Tuple

import numpy as np

from .types import ArmorColor, Detection


# BGR per armor color (OpenCV expects BGR).
_ARMOR_BGR = {
    ArmorColor.BLUE: (255, 128, 0),
    ArmorColor.RED: (0, 0, 255),
    ArmorColor.NEUTRAL: (160, 160, 160),
    ArmorColor.PURPLE: (255, 0, 200),
}


def _color_for_armor(color: ArmorColor) -> Tuple[int, int, int]:
    return _ARMOR_BGR.get(color, (0, 255, 255))


def draw_armors(
    image_bgr: np.ndarray,
    detections: Iterable[Detection],
    *,
    show_score: bool = True,
    thickness: int = 2,
    font_scale: float = 0.5,
    font_thickness: int = 1,
) -> np.ndarray:
    """
    Outline each armor quadrilateral and label it; returns a copy.

    Args:
        image_bgr: input image in BGR (H, W, 3).
        detections: iterable of Detection with corners in original image coordinates.
    """

    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for draw_armors(). Install with `pip install opencv-python`.") from e

    if image_bgr is None or not hasattr(image_bgr, "shape"):
        raise TypeError("image_bgr must be a NumPy array (BGR).")
    if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")

    out = image_bgr.copy()
    h, w = out.shape[:2]

    for det in detections:
        color = _color_for_armor(det.color)
        pts = np.round(np.array(det.corners, dtype=np.float32)).astype(np.int32).reshape(-1, 1, 2)
        cv2.polylines(out, [pts], isClosed=True, color=color, thickness=thickness, lineType=cv2.LINE_AA)

        label = f"{det.color.name} {det.number.name}"
        if show_score:
            label = f"{label} {det.confidence:.2f}"

        x1, y1, _, _ = det.as_xyxy()
        x = int(np.clip(round(x1), 0, w - 1))
        y = int(np.clip(round(y1) - 4, 0, h - 1))
        cv2.putText(
            out,
            label,
            (x, y),
            cv2.FONT_HERSHEY_SIMPLEX,
            font_scale,
            color,
            thickness=font_thickness,
            lineType=cv2.LINE_AA,
        )

    return out
