from typing import Tuple

import numpy as np
from loguru import logger


def round_half_up(value: float) -> int:
    """Nearest integer, halves rounded towards +inf."""
    return int(np.floor(value + 0.5))


class CoordinateManager:
    """
    Handles transformations between signal values and raster pixels.

    Centralises all coordinate conversion logic so the time-series bands and
    the scatter trajectories agree on where a value lands.
    """

    def __init__(self, width: int, height: int):
        """
        Initialise the coordinate manager.

        Parameters
        ----------
        width : int
            Raster width in pixels.
        height : int
            Raster height in pixels.
        """
        self.resize(width, height)

    def resize(self, width: int, height: int) -> None:
        if width < 1 or height < 1:
            raise ValueError(f"Raster size must be positive, got {width}x{height}")
        self.width = int(width)
        self.height = int(height)
        logger.debug(f"Raster size set to {self.width}x{self.height}")

    def band_height(self, count: int) -> int:
        """Rows given to each of ``count`` stacked bands."""
        return self.height // max(1, count)

    def band_offset(self, index: int, count: int) -> int:
        """First row of the ``index``-th of ``count`` stacked bands."""
        return index * self.band_height(count)

    def values_to_rows(
        self, values: np.ndarray, value_range: float, height: int
    ) -> np.ndarray:
        """
        Map values to rows of a band ``height`` pixels tall.

        Zero sits at the band's centre row and the band spans
        ``value_range`` (so ``±value_range / 2`` reach the edges).
        """
        rows = height // 2 - np.asarray(values, dtype=np.float64) / value_range * height
        return np.floor(rows + 0.5).astype(np.int64)

    def column_extents(
        self,
        col_min: np.ndarray,
        col_max: np.ndarray,
        value_range: float,
        height: int,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Vertical pixel interval of each (min, max) column, clamped to the band.

        Returns
        -------
        Tuple[np.ndarray, np.ndarray]
            Top and bottom rows (inclusive). A column lying wholly outside the
            band has top > bottom.
        """
        top = np.maximum(self.values_to_rows(col_max, value_range, height), 0)
        bottom = np.minimum(
            self.values_to_rows(col_min, value_range, height), height - 1
        )
        return top, bottom

    def xy_to_pixel(
        self, x: float, y: float, x_range: float, y_range: float
    ) -> Tuple[int, int]:
        """Map an (x, y) sample pair to raster pixel coordinates."""
        px = round_half_up(self.width // 2 + x / x_range * self.width)
        py = round_half_up(self.height // 2 - y / y_range * self.height)
        return px, py

    def contains(self, px: int, py: int) -> bool:
        return 0 <= px < self.width and 0 <= py < self.height
