import math
from typing import Dict, Hashable, Iterable, List, Mapping, Optional, Tuple

import numpy as np
from loguru import logger
from numba import njit

from simscope.oscplot.coordinate_manager import CoordinateManager
from simscope.oscplot.decimation import WaveformBuffer
from simscope.oscplot.display_state import (
    BACKGROUND_COLOR,
    GRID_COLOR,
    XY_TRACE_COLOR,
)
from simscope.oscplot.sources import Channel

# Horizontal/vertical gridlines drawn at eighths of the raster
GRID_DIVISIONS = 8


@njit
def _paint_columns_numba(
    pixels: np.ndarray,
    x0: int,
    y0: int,
    top: np.ndarray,
    bottom: np.ndarray,
    color: np.uint32,
) -> None:
    """
    Paint one vertical run per column.

    Parameters
    ----------
    pixels : np.ndarray
        Target raster (rows x columns), uint32 ARGB.
    x0 : int
        Raster column of the first run.
    y0 : int
        Row offset of the band inside the raster.
    top : np.ndarray
        First band row of each run.
    bottom : np.ndarray
        Last band row of each run (inclusive).
    color : np.uint32
        ARGB colour.
    """
    for i in range(top.shape[0]):
        col = x0 + i
        for row in range(top[i], bottom[i] + 1):
            pixels[y0 + row, col] = color


@njit
def _trunc_div(num: int, den: int) -> int:
    """Integer division rounding towards zero."""
    q = abs(num) // abs(den)
    if (num < 0) != (den < 0):
        return -q
    return q


@njit
def _draw_line_numba(
    pixels: np.ndarray, x0: int, y0: int, x1: int, y1: int, color: np.uint32
) -> int:
    """
    Draw a segment by stepping along its dominant axis.

    The other coordinate is interpolated proportionally with integer
    arithmetic. Pixels outside the raster are skipped, not clamped.

    Returns
    -------
    int
        Number of pixels painted.
    """
    height = pixels.shape[0]
    width = pixels.shape[1]
    dx = x1 - x0
    dy = y1 - y0
    painted = 0

    if dx == 0 and dy == 0:
        if 0 <= x1 < width and 0 <= y1 < height:
            pixels[y1, x1] = color
            painted += 1
        return painted

    if abs(dy) > abs(dx):
        step = 1 if dy > 0 else -1
        y = y0
        while True:
            x = x0 + _trunc_div(dx * (y - y0), dy)
            if 0 <= x < width and 0 <= y < height:
                pixels[y, x] = color
                painted += 1
            if y == y1:
                break
            y += step
    else:
        step = 1 if dx > 0 else -1
        x = x0
        while True:
            y = y0 + _trunc_div(dy * (x - x0), dx)
            if 0 <= x < width and 0 <= y < height:
                pixels[y, x] = color
                painted += 1
            if x == x1:
                break
            x += step
    return painted


def argb_to_rgb_array(pixels: np.ndarray) -> np.ndarray:
    """Split a uint32 ARGB raster into an (h, w, 3) uint8 RGB image."""
    pixels = np.asarray(pixels, dtype=np.uint32)
    rgb = np.empty(pixels.shape + (3,), dtype=np.uint8)
    rgb[..., 0] = (pixels >> 16) & 0xFF
    rgb[..., 1] = (pixels >> 8) & 0xFF
    rgb[..., 2] = pixels & 0xFF
    return rgb


def _overlay(frame: np.ndarray, layer: np.ndarray) -> None:
    mask = layer != 0
    frame[mask] = layer[mask]


class ScatterTrace:
    """Persistent trajectory of (x, y) points, cleared only on reset/resize."""

    def __init__(self, width: int, height: int, color: int = XY_TRACE_COLOR):
        self.color = color
        self.resize(width, height)

    def resize(self, width: int, height: int) -> None:
        self.pixels = np.zeros((height, width), dtype=np.uint32)
        self.last_point: Optional[Tuple[int, int]] = None

    def clear(self) -> None:
        self.pixels.fill(0)
        self.last_point = None

    def plot(self, px: int, py: int) -> int:
        """
        Extend the trajectory to pixel (px, py).

        Nothing is drawn for the first point after a clear, or when both ends
        of the segment lie outside the raster.

        Returns
        -------
        int
            Number of pixels painted.
        """
        painted = 0
        height, width = self.pixels.shape
        if self.last_point is not None:
            lx, ly = self.last_point
            if (0 <= lx < width and 0 <= ly < height) or (
                0 <= px < width and 0 <= py < height
            ):
                painted = _draw_line_numba(
                    self.pixels, lx, ly, px, py, np.uint32(self.color)
                )
        self.last_point = (px, py)
        return painted


class TraceRaster:
    """
    Renders waveform buffers into ARGB pixel rasters.

    Two disjoint modes are supported: time-series bands built from the
    buffers' decimated columns, and persistent scatter trajectories fed on
    every tick.
    """

    def __init__(self, coords: CoordinateManager):
        """
        Initialise the raster.

        Parameters
        ----------
        coords : CoordinateManager
            Shared value/pixel mapping (also defines the raster size).
        """
        self.coords = coords
        self.scatter: Dict[Hashable, ScatterTrace] = {}

    # ------------------------------------------------------------------
    # Time series
    # ------------------------------------------------------------------

    def paint_buffer(
        self,
        pixels: np.ndarray,
        buffer: WaveformBuffer,
        ranges: Mapping[Channel, float],
        y0: int = 0,
        height: Optional[int] = None,
    ) -> None:
        """
        Paint the shown channels of ``buffer`` into a band of ``pixels``.

        The newest column lands at the right edge; older columns extend to
        the left for as many columns as are visible.
        """
        if buffer.visible == 0 or not buffer.enabled:
            return
        band_height = self.coords.height if height is None else height
        if band_height < 1:
            return
        x0 = pixels.shape[1] - buffer.visible

        for channel in buffer.shown_channels():
            col_min, col_max = buffer.visible_columns(channel)
            top, bottom = self.coords.column_extents(
                col_min, col_max, ranges[channel.range_channel], band_height
            )
            _paint_columns_numba(
                pixels, x0, y0, top, bottom, np.uint32(buffer.colors[channel])
            )

    def render_time_series(
        self,
        buffers: List[WaveformBuffer],
        ranges: Mapping[Channel, float],
        stacked: bool = False,
    ) -> np.ndarray:
        """
        Render all buffers, overlaid or stacked in horizontal bands.

        Returns
        -------
        np.ndarray
            (height, width) uint32 raster, 0 where nothing was painted.
        """
        pixels = np.zeros((self.coords.height, self.coords.width), dtype=np.uint32)
        count = len(buffers)
        for i, buffer in enumerate(buffers):
            if stacked:
                self.paint_buffer(
                    pixels,
                    buffer,
                    ranges,
                    y0=self.coords.band_offset(i, count),
                    height=self.coords.band_height(count),
                )
            else:
                self.paint_buffer(pixels, buffer, ranges)
        return pixels

    # ------------------------------------------------------------------
    # Scatter
    # ------------------------------------------------------------------

    def plot_point(
        self,
        key: Hashable,
        x: float,
        y: float,
        x_range: float,
        y_range: float,
        color: int = XY_TRACE_COLOR,
    ) -> Optional[Tuple[int, int]]:
        """
        Map one (x, y) sample pair and extend the trajectory ``key``.

        Non-finite samples are not plotted and leave the trajectory as it was.

        Returns
        -------
        Optional[Tuple[int, int]]
            The plotted pixel, which becomes the trajectory's last point, or
            None if the sample was skipped.
        """
        trace = self.scatter.get(key)
        if trace is None:
            trace = ScatterTrace(self.coords.width, self.coords.height, color)
            self.scatter[key] = trace
        if not (math.isfinite(x) and math.isfinite(y)):
            logger.debug(f"Skipping non-finite scatter sample ({x}, {y}) for {key}")
            return None
        px, py = self.coords.xy_to_pixel(x, y, x_range, y_range)
        trace.plot(px, py)
        return px, py

    def last_point(self, key: Hashable) -> Optional[Tuple[int, int]]:
        trace = self.scatter.get(key)
        return None if trace is None else trace.last_point

    def clear(self) -> None:
        """Clear the persistent scatter rasters."""
        for trace in self.scatter.values():
            trace.clear()

    def resize(self) -> None:
        """Reallocate the scatter rasters after the coordinate manager was resized."""
        for trace in self.scatter.values():
            trace.resize(self.coords.width, self.coords.height)

    def drop(self, key: Hashable) -> None:
        self.scatter.pop(key, None)

    # ------------------------------------------------------------------
    # Frame composition
    # ------------------------------------------------------------------

    def _draw_hline(self, frame: np.ndarray, row: int, color: int = GRID_COLOR) -> None:
        if 0 <= row < frame.shape[0]:
            frame[row, :] = color

    def _draw_vline(self, frame: np.ndarray, col: int, color: int = GRID_COLOR) -> None:
        if 0 <= col < frame.shape[1]:
            frame[:, col] = color

    def compose_frame(
        self,
        traces: np.ndarray,
        scatter_keys: Iterable[Hashable] = (),
        scatter_mode: bool = False,
        stacked_count: int = 0,
        show_grid: bool = True,
        time_columns: Iterable[int] = (),
    ) -> np.ndarray:
        """
        Compose the displayed frame.

        Parameters
        ----------
        traces : np.ndarray
            Time-series layer from :meth:`render_time_series` (may be empty).
        scatter_keys : Iterable[Hashable], default=()
            Scatter trajectories to overlay, in drawing order.
        scatter_mode : bool, default=False
            Draw both axes and a square grid instead of the time-series layout.
        stacked_count : int, default=0
            Number of stacked bands (0 or 1 for an unstacked scope).
        show_grid : bool, default=True
            Draw the horizontal (and in scatter mode vertical) gridlines.
        time_columns : Iterable[int], default=()
            Columns of the time-axis gridlines.

        Returns
        -------
        np.ndarray
            (height, width) uint32 ARGB frame.
        """
        width, height = self.coords.width, self.coords.height
        frame = np.full((height, width), BACKGROUND_COLOR, dtype=np.uint32)

        if scatter_mode:
            self._draw_hline(frame, height // 2)
            self._draw_vline(frame, width // 2)
            if show_grid:
                for i in range(1, GRID_DIVISIONS):
                    self._draw_hline(frame, i * height // GRID_DIVISIONS)
                    self._draw_vline(frame, i * width // GRID_DIVISIONS)
        elif stacked_count > 1:
            band = self.coords.band_height(stacked_count)
            for i in range(stacked_count):
                self._draw_hline(frame, i * band)
                self._draw_hline(frame, i * band + band // 2)
            self._draw_hline(frame, height - 1)
        else:
            self._draw_hline(frame, height // 2)
            if show_grid:
                for i in range(1, GRID_DIVISIONS):
                    self._draw_hline(frame, i * height // GRID_DIVISIONS)

        if not scatter_mode:
            for col in time_columns:
                self._draw_vline(frame, col)
            _overlay(frame, traces)
        else:
            for key in scatter_keys:
                trace = self.scatter.get(key)
                if trace is not None:
                    _overlay(frame, trace.pixels)

        logger.debug(
            f"Composed {width}x{height} frame (scatter={scatter_mode}, stacked={stacked_count})"
        )
        return frame
