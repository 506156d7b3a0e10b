from typing import Tuple

import numpy as np


INPUT_W = 416
INPUT_H = 416


def letterbox(
    image: np.ndarray,
    new_shape: Tuple[int, int] = (INPUT_W, INPUT_H),
    color: Tuple[int, int, int] = (114, 114, 114),
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Resize keeping aspect ratio, then pad to exactly `new_shape` (width, height).

    Returns:
        padded: resized + padded image of shape (new_h, new_w, C)
        transform_matrix: 3x3 float32 matrix mapping (x, y, 1) in the padded
            image back to the source image
    """
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for letterbox(). Install with `pip install opencv-python`.") from e

    h, w = image.shape[:2]
    if isinstance(new_shape, int):
        new_shape = (new_shape, new_shape)
    new_w, new_h = new_shape

    # Scale ratio (new / old)
    scale = min(new_h / h, new_w / w)
    # Extreme aspect ratios must not collapse a side to zero.
    resized_w, resized_h = max(1, int(round(w * scale))), max(1, int(round(h * scale)))

    pad_w, pad_h = new_w - resized_w, new_h - resized_h
    half_w, half_h = pad_w / 2, pad_h / 2

    if (w, h) != (resized_w, resized_h):
        image = cv2.resize(image, (resized_w, resized_h), interpolation=cv2.INTER_LINEAR)

    top, bottom = int(round(half_h - 0.1)), int(round(half_h + 0.1))
    left, right = int(round(half_w - 0.1)), int(round(half_w + 0.1))
    padded = cv2.copyMakeBorder(image, top, bottom, left, right, cv2.BORDER_CONSTANT, value=color)

    transform_matrix = np.array(
        [
            [1.0 / scale, 0.0, -half_w / scale],
            [0.0, 1.0 / scale, -half_h / scale],
            [0.0, 0.0, 1.0],
        ],
        dtype=np.float32,
    )
    return padded, transform_matrix


def transform_points(transform_matrix: np.ndarray, points: np.ndarray) -> np.ndarray:
    """
    Apply a 3x3 transform to points of shape (..., 2) in one batched product.
    """
    pts = np.asarray(points, dtype=np.float32)
    flat = pts.reshape(-1, 2)
    homog = np.concatenate([flat, np.ones((flat.shape[0], 1), dtype=np.float32)], axis=1)  # (N, 3)
    mapped = homog @ np.asarray(transform_matrix, dtype=np.float32).T
    return mapped[:, :2].reshape(pts.shape)
