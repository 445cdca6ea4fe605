import math
from decimal import Decimal
from typing import List, Tuple

from loguru import logger
from matplotlib.colors import to_rgb

from simscope.oscplot.coordinate_manager import round_half_up

# Gridline spacing bounds (pixels)
GRID_MIN_SPACING = 25
GRID_MAX_SPACING = 80
GRID_COMFORT_SPACING = 35
GRID_SEED_STEP = Decimal("1e-15")

# Colours (ARGB)
BACKGROUND_COLOR = 0xFFFFFFFF
GRID_COLOR = 0xFF808080
XY_TRACE_COLOR = 0xFF00FF00

# Dark enough to read on the white background
DEFAULT_TRACE_COLORS = [
    "tab:blue",
    "tab:red",
    "tab:green",
    "tab:purple",
    "tab:orange",
    "tab:brown",
    "tab:pink",
    "tab:gray",
    "tab:olive",
    "tab:cyan",
    "black",
    "navy",
]

MICRO_SIGN = "µ"

# Modern flags word bits
FLAG_STACKED = 1
FLAG_FREQUENCY = 2
FLAG_NEGATIVE_PEAK = 4
FLAG_PEAK = 8


def color_to_argb(color: str) -> int:
    """Convert any matplotlib colour spec to an opaque ARGB integer."""
    r, g, b = (int(round(c * 255)) for c in to_rgb(color))
    return 0xFF000000 | (r << 16) | (g << 8) | b


def argb_to_hex(argb: int) -> str:
    """Return the RGB part of an ARGB integer as ``rrggbb``."""
    return f"{argb & 0xFFFFFF:06x}"


def trace_color(index: int) -> int:
    """Palette colour for the ``index``-th trace."""
    return color_to_argb(DEFAULT_TRACE_COLORS[index % len(DEFAULT_TRACE_COLORS)])


def compute_grid_step(seconds_per_pixel: float) -> float:
    """
    Choose the time between vertical gridlines.

    Starting at 1 fs the step grows by decades until gridlines are at least
    25 pixels apart, then is halved once if they would be more than 80 pixels
    apart, or doubled once if they would be closer than 35.

    Parameters
    ----------
    seconds_per_pixel : float
        Simulated time covered by one display column.

    Returns
    -------
    float
        Gridline step in seconds (1, 2 or 5 times a power of ten).
    """
    if not (seconds_per_pixel > 0 and math.isfinite(seconds_per_pixel)):
        raise ValueError(
            f"seconds_per_pixel must be positive and finite, got {seconds_per_pixel}"
        )

    # Decimal of the repr keeps the decade steps and the spacing ratios exact
    ts = Decimal(repr(float(seconds_per_pixel)))
    step = GRID_SEED_STEP
    while step / ts < GRID_MIN_SPACING:
        step *= 10
    if step / ts > GRID_MAX_SPACING:
        step /= 2
    elif step / ts < GRID_COMFORT_SPACING:
        step *= 2
    return float(step)


def time_gridlines(
    sim_time: float, seconds_per_pixel: float, width: int
) -> List[Tuple[int, float, bool]]:
    """
    Gridlines visible in a time-series window ending at ``sim_time``.

    Parameters
    ----------
    sim_time : float
        Simulation time at the right edge of the window.
    seconds_per_pixel : float
        Simulated time per column.
    width : int
        Window width in columns.

    Returns
    -------
    List[Tuple[int, float, bool]]
        ``(column, time, labelled)`` per gridline, newest first. Every other
        gridline (counted from t = 0) is labelled.
    """
    step = compute_grid_step(seconds_per_pixel)
    t_start = sim_time - seconds_per_pixel * width
    t_grid = sim_time - (sim_time % step)

    lines = []
    i = 0
    while True:
        t = t_grid - i * step
        if t < 0 or t < t_start:
            break
        column = round_half_up((t - t_start) / seconds_per_pixel)
        labelled = round_half_up(t / step) % 2 == 0
        lines.append((column, t, labelled))
        i += 1
    return lines


def format_unit_text(value: float, unit: str) -> str:
    """
    Format a value with an engineering prefix, e.g. ``12.50 mA``.

    Magnitudes below 1e-14 are shown as zero.
    """
    va = abs(value)
    if va < 1e-14:
        return f"0 {unit}"
    if va < 1e-9:
        return f"{value * 1e12:.2f} p{unit}"
    if va < 1e-6:
        return f"{value * 1e9:.2f} n{unit}"
    if va < 1e-3:
        return f"{value * 1e6:.2f} {MICRO_SIGN}{unit}"
    if va < 1:
        return f"{value * 1e3:.2f} m{unit}"
    if va < 1e3:
        return f"{value:.2f} {unit}"
    if va < 1e6:
        return f"{value * 1e-3:.2f} k{unit}"
    if va < 1e9:
        return f"{value * 1e-6:.2f} M{unit}"
    return f"{value * 1e-9:.2f} G{unit}"


class DisplayState:
    """
    Readout and layout options of one scope.

    Serialised as the flags word of the modern save record.
    """

    def __init__(
        self,
        show_peak: bool = True,
        show_negative_peak: bool = False,
        show_frequency: bool = False,
        show_grid: bool = True,
        show_labels: bool = True,
        stacked: bool = False,
    ):
        self.show_peak = show_peak
        self.show_negative_peak = show_negative_peak
        self.show_frequency = show_frequency
        self.show_grid = show_grid
        self.show_labels = show_labels
        self.stacked = stacked

    def to_flags(self) -> int:
        flags = 0
        flags |= FLAG_PEAK if self.show_peak else 0
        flags |= FLAG_NEGATIVE_PEAK if self.show_negative_peak else 0
        flags |= FLAG_FREQUENCY if self.show_frequency else 0
        flags |= FLAG_STACKED if self.stacked else 0
        return flags

    def apply_flags(self, flags: int) -> None:
        self.show_peak = bool(flags & FLAG_PEAK)
        self.show_negative_peak = bool(flags & FLAG_NEGATIVE_PEAK)
        self.show_frequency = bool(flags & FLAG_FREQUENCY)
        self.stacked = bool(flags & FLAG_STACKED)
        logger.debug(f"Display flags {flags}: {self!r}")

    def __repr__(self) -> str:
        return (
            f"DisplayState(peak={self.show_peak}, neg_peak={self.show_negative_peak}, "
            f"freq={self.show_frequency}, grid={self.show_grid}, "
            f"labels={self.show_labels}, stacked={self.stacked})"
        )
