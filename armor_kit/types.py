from dataclasses import dataclass
from enum import IntEnum
from typing import Tuple


Point = Tuple[float, float]


class ArmorColor(IntEnum):
    """Armor light color, in the model's score-column order."""

    BLUE = 0
    RED = 1
    NEUTRAL = 2
    PURPLE = 3


class ArmorNumber(IntEnum):
    """Symbol printed on the armor plate, in the model's score-column order."""

    SENTRY = 0
    NO1 = 1
    NO2 = 2
    NO3 = 3
    NO4 = 4
    NO5 = 5
    OUTPOST = 6
    BASE = 7


NUM_COLORS = len(ArmorColor)
NUM_CLASSES = len(ArmorNumber)


@dataclass(frozen=True)
class Detection:
    """
    One armor plate in source-image coordinates.

    `corners` keeps the model's column order (4 points, sub-pixel floats).
    The bounding box is derived from the corners on demand.
    """

    corners: Tuple[Point, Point, Point, Point]
    color: ArmorColor
    number: ArmorNumber
    confidence: float

    def __post_init__(self) -> None:
        if len(self.corners) != 4:
            raise ValueError(f"Detection needs exactly 4 corners, got {len(self.corners)}")

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        xs = [p[0] for p in self.corners]
        ys = [p[1] for p in self.corners]
        return min(xs), min(ys), max(xs), max(ys)

    @property
    def bounding_box(self) -> Tuple[float, float, float, float]:
        """(x, y, w, h) of the axis-aligned box enclosing the corners."""
        x1, y1, x2, y2 = self.as_xyxy()
        return x1, y1, x2 - x1, y2 - y1
