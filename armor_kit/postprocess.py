from dataclasses import dataclass
from typing import List, Tuple

import numpy as np

from .letterbox import transform_points
from .nms import NMSConfig, nms
from .types import NUM_CLASSES, NUM_COLORS, ArmorColor, ArmorNumber, Detection


# Row layout: 4 corner (x, y) pairs, confidence, color scores, number scores.
CORNER_COLS = slice(0, 8)
CONF_COL = 8
COLOR_START = 9


@dataclass
class ArmorPostConfig:
    """
    Thresholds for armor post processing.
    """

    conf_threshold: float = 0.65
    nms_threshold: float = 0.45
    top_k: int = 128
    num_colors: int = NUM_COLORS
    num_classes: int = NUM_CLASSES


def generate_proposals(
    output_buffer: np.ndarray,
    transform_matrix: np.ndarray,
    conf_threshold: float,
    num_colors: int = NUM_COLORS,
    num_classes: int = NUM_CLASSES,
) -> Tuple[List[Detection], np.ndarray, np.ndarray]:
    """
    Turn raw model rows into candidate detections in source-image space.

    Rows with confidence below `conf_threshold` are skipped. Color and number
    are the first-maximum index of their score slices.

    Returns:
        detections: one Detection per surviving row, in row order
        boxes: (N, 4) xyxy boxes enclosing each detection's corners
        scores: (N,) confidences, parallel to `detections`
    """

    buf = np.asarray(output_buffer, dtype=np.float32)
    rows = buf[buf[:, CONF_COL] >= conf_threshold]
    if rows.shape[0] == 0:
        return [], np.empty((0, 4), dtype=np.float32), np.empty((0,), dtype=np.float32)

    color_end = COLOR_START + num_colors
    color_ids = np.argmax(rows[:, COLOR_START:color_end], axis=1)
    number_ids = np.argmax(rows[:, color_end : color_end + num_classes], axis=1)

    corners = transform_points(transform_matrix, rows[:, CORNER_COLS].reshape(-1, 4, 2))  # (N, 4, 2)
    boxes = np.concatenate([corners.min(axis=1), corners.max(axis=1)], axis=1)
    scores = rows[:, CONF_COL].copy()

    detections = [
        Detection(
            corners=tuple((float(x), float(y)) for x, y in pts),
            color=ArmorColor(int(color_id)),
            number=ArmorNumber(int(number_id)),
            confidence=float(score),
        )
        for pts, color_id, number_id, score in zip(corners, color_ids, number_ids, scores)
    ]
    return detections, boxes, scores


class ArmorPostprocessor:
    """
    Post-process for the armor model output.

    Layout (per image): (N, 9 + num_colors + num_classes), e.g. 3549 x 21:
    [x1, y1, x2, y2, x3, y3, x4, y4, conf, color_scores..., number_scores...]
    with corners in letterboxed-image pixels. A leading batch axis of 1 is accepted.
    """

    def __init__(self, cfg: ArmorPostConfig):
        self.cfg = cfg

    def process(self, preds: np.ndarray, transform_matrix: np.ndarray) -> List[Detection]:
        """
        Convert raw output into filtered detections in original image coordinates,
        ordered by descending confidence.

        Args:
            preds: model output for a single image
            transform_matrix: letterbox -> source matrix from `letterbox()`
        """

        p = self._squeeze(preds)
        detections, boxes, scores = generate_proposals(
            p,
            transform_matrix,
            self.cfg.conf_threshold,
            num_colors=self.cfg.num_colors,
            num_classes=self.cfg.num_classes,
        )
        if not detections:
            return []

        nms_cfg = NMSConfig(
            iou_threshold=self.cfg.nms_threshold,
            max_detections=self.cfg.top_k,
            score_threshold=self.cfg.conf_threshold,
        )
        keep = nms(boxes, scores, nms_cfg)
        return [detections[i] for i in keep]

    def _squeeze(self, preds: np.ndarray) -> np.ndarray:
        p = np.asarray(preds)
        if p.ndim == 3:
            if p.shape[0] != 1:
                raise ValueError(f"Batch > 1 is not supported (got shape {p.shape}). Pass one image at a time.")
            p = p[0]
        if p.ndim != 2:
            raise ValueError(f"Unsupported armor output shape: {p.shape}")
        return p
