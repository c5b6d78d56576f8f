from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True, slots=True)
class TileAddress:
    """
    One cell of the quad-tree tiling at a given zoom.

    Attributes:
        zoom: zoom level (>= 0); the world is split into 2^zoom x 2^zoom tiles.
        column: x index in [0, 2^zoom).
        row: y index in [0, 2^zoom).
    """
    zoom: int
    column: int
    row: int

    def __post_init__(self) -> None:
        if self.zoom < 0:
            raise ValueError("zoom must be >= 0")
        n = 1 << self.zoom
        if not (0 <= self.column < n) or not (0 <= self.row < n):
            raise ValueError(f"column/row must be in [0, {n}) at zoom {self.zoom}")

    @property
    def zxy(self) -> Tuple[int, int, int]:
        return (self.zoom, self.column, self.row)


@dataclass(frozen=True, slots=True)
class Extent:
    """
    Axis-aligned bounding rectangle in projected units (meters for Web Mercator).
    """
    min_x: float
    min_y: float
    max_x: float
    max_y: float

    def __post_init__(self) -> None:
        if not (self.min_x < self.max_x) or not (self.min_y < self.max_y):
            raise ValueError(
                f"degenerate extent: ({self.min_x}, {self.min_y}, {self.max_x}, {self.max_y})"
            )

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y

    def as_tuple(self) -> Tuple[float, float, float, float]:
        return (self.min_x, self.min_y, self.max_x, self.max_y)

