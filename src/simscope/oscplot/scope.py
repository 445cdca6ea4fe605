import math
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional, Tuple, Union

import numpy as np
from loguru import logger

from simscope.oscplot.coordinate_manager import CoordinateManager
from simscope.oscplot.decimation import WaveformBuffer
from simscope.oscplot.display_state import (
    DisplayState,
    format_unit_text,
    time_gridlines,
)
from simscope.oscplot.raster import TraceRaster
from simscope.oscplot.sources import (
    AnyChannel,
    Channel,
    SampleSource,
    TransistorChannel,
)

XY_KEY = "xy"


class Mode(Enum):
    """Scope display mode; the value is the name used in save records."""

    TIME_SERIES = "VIP_VS_T"
    SCATTER_IV = "I_VS_V"
    SCATTER_XY = "X_VS_Y"

    @property
    def is_scatter(self) -> bool:
        return self is not Mode.TIME_SERIES


@dataclass
class XYSelection:
    """Entity and channel plotted on each axis of an X/Y scope."""

    x_source: Optional[SampleSource] = None
    x_channel: Optional[AnyChannel] = None
    y_source: Optional[SampleSource] = None
    y_channel: Optional[AnyChannel] = None

    def axis(self, axis: str) -> Tuple[Optional[SampleSource], Optional[AnyChannel]]:
        if axis == "x":
            return self.x_source, self.x_channel
        if axis == "y":
            return self.y_source, self.y_channel
        raise ValueError(f"Unknown axis '{axis}', expected 'x' or 'y'")

    def set_axis(
        self,
        axis: str,
        source: Optional[SampleSource],
        channel: Optional[AnyChannel],
    ) -> None:
        if axis == "x":
            self.x_source, self.x_channel = source, channel
        elif axis == "y":
            self.y_source, self.y_channel = source, channel
        else:
            raise ValueError(f"Unknown axis '{axis}', expected 'x' or 'y'")

    def is_complete(self) -> bool:
        return self.x_source is not None and self.y_source is not None

    def forget(self, source: SampleSource) -> None:
        """Unset every axis plotting ``source``."""
        if self.x_source is source:
            self.x_source, self.x_channel = None, None
        if self.y_source is source:
            self.y_source, self.y_channel = None, None


def iv_channels(source: SampleSource) -> Tuple[AnyChannel, AnyChannel]:
    """The fixed (x, y) channel pair plotted for an entity in I/V mode."""
    if source.is_transistor:
        return TransistorChannel.V_CE, TransistorChannel.I_C
    return Channel.VOLTAGE, Channel.CURRENT


def default_xy_channel(source: SampleSource) -> AnyChannel:
    return TransistorChannel.V_CE if source.is_transistor else Channel.VOLTAGE


def _fit_range(default_range: float, observed: Optional[float]) -> Optional[float]:
    """
    Fit a full-span range around an observed amplitude.

    Starting from ``default_range`` the amplitude bound is doubled while it
    does not exceed ``observed`` and halved while it exceeds twice
    ``observed``. The returned span is twice that bound. Returns None when
    there is nothing to fit (no observation, or a zero or non-finite one).
    """
    if observed is None or not math.isfinite(observed) or observed <= 0:
        return None
    r = default_range
    while r <= observed:
        r *= 2
    while r > 2 * observed:
        r /= 2
    return 2 * r


class ScopeController:
    """
    Multi-entity oscilloscope fed once per simulation step.

    Owns one WaveformBuffer per attached entity, the display mode, the
    per-channel ranges and the time-decimation factor, and renders frames for
    a Canvas sink.
    """

    # Capacity and defaults
    MAX_ENTITIES = 10
    DEFAULT_DECIM_FACTOR = 64
    DEFAULT_WIDTH = 400
    DEFAULT_HEIGHT = 240
    DEFAULT_TICK_PERIOD = 5e-6  # 5 us simulation step

    def __init__(
        self,
        width: int = DEFAULT_WIDTH,
        height: int = DEFAULT_HEIGHT,
        decim_factor: int = DEFAULT_DECIM_FACTOR,
        tick_period: float = DEFAULT_TICK_PERIOD,
        mode: Union[Mode, str] = Mode.TIME_SERIES,
        display: Optional[DisplayState] = None,
        name: str = "Oscilloscope",
    ):
        """
        Initialise an empty scope.

        Parameters
        ----------
        width : int, default=400
            Raster width in pixels, also the number of columns per buffer.
        height : int, default=240
            Raster height in pixels.
        decim_factor : int, default=64
            Simulation ticks folded into one display column.
        tick_period : float, default=5e-6
            Simulated time per tick, in seconds.
        mode : Union[Mode, str], default=Mode.TIME_SERIES
            Initial display mode (enum or save-record name).
        display : Optional[DisplayState], default=None
            Readout/layout options. A default DisplayState is created if None.
        name : str, default="Oscilloscope"
            Name used in log messages.
        """
        if decim_factor < 1:
            raise ValueError(f"decim_factor must be >= 1, got {decim_factor}")
        if tick_period <= 0:
            raise ValueError(f"tick_period must be positive, got {tick_period}")

        self.name = name
        self.buffers: List[WaveformBuffer] = []
        self.mode = Mode(mode) if isinstance(mode, str) else mode
        self.decim_factor = int(decim_factor)
        self.tick_period = float(tick_period)
        self.time = 0.0
        self.ranges: Dict[Channel, float] = {ch: ch.default_range for ch in Channel}
        self.x_range = Channel.VOLTAGE.default_range
        self.y_range = Channel.VOLTAGE.default_range
        self.xy = XYSelection()
        self.display = display if display is not None else DisplayState()
        self.selected: Optional[WaveformBuffer] = None

        # Window geometry is only carried through save records
        self.geometry: Tuple[int, int, int, int] = (0, 0, width, height)

        self.coords = CoordinateManager(width, height)
        self.raster = TraceRaster(self.coords)
        self._color_slot = 0

    def __repr__(self) -> str:
        return (
            f"ScopeController({self.name!r}, mode={self.mode.name}, "
            f"entities={len(self.buffers)}, decim={self.decim_factor})"
        )

    # ------------------------------------------------------------------
    # Basic properties
    # ------------------------------------------------------------------

    @property
    def width(self) -> int:
        return self.coords.width

    @property
    def height(self) -> int:
        return self.coords.height

    @property
    def stacked(self) -> bool:
        return self.display.stacked

    @property
    def last_xy_point(self) -> Optional[Tuple[int, int]]:
        return self.raster.last_point(XY_KEY)

    @property
    def seconds_per_pixel(self) -> float:
        return self.tick_period * self.decim_factor

    @property
    def sources(self) -> List[SampleSource]:
        return [b.source for b in self.buffers]

    def buffer_for(self, source: SampleSource) -> Optional[WaveformBuffer]:
        for buffer in self.buffers:
            if buffer.source is source:
                return buffer
        return None

    def range_for(self, channel: AnyChannel) -> float:
        return self.ranges[channel.range_channel]

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    def attach(self, source: SampleSource, show_flags: Optional[int] = None) -> bool:
        """
        Start monitoring ``source``.

        Parameters
        ----------
        source : SampleSource
            Entity to attach.
        show_flags : Optional[int], default=None
            Legacy show flags (1 = current, 2 = voltage, 4 = power). The
            buffer's defaults are kept if None.

        Returns
        -------
        bool
            False if the scope is full or already monitors ``source``; the
            scope is left unchanged in that case.
        """
        if len(self.buffers) >= self.MAX_ENTITIES:
            logger.warning(
                f"{self.name}: accepts a maximum of {self.MAX_ENTITIES} entities, not attaching {source!r}"
            )
            return False
        if self.buffer_for(source) is not None:
            logger.debug(f"{self.name}: {source!r} is already attached")
            return False

        buffer = WaveformBuffer(
            source,
            self.width,
            decim_factor=self.decim_factor,
            color_offset=self._color_slot,
        )
        self._color_slot += 1
        if show_flags is not None:
            buffer.set_show_flags(show_flags)
        self.buffers.append(buffer)
        logger.info(f"{self.name}: attached {source!r} ({len(self.buffers)} entities)")

        if self.stacked:
            self.reset()
        return True

    def detach(self, source: SampleSource) -> bool:
        """Stop monitoring ``source``. Returns False if it was not attached."""
        buffer = self.buffer_for(source)
        if buffer is None:
            return False
        if self.selected is buffer:
            self.selected = None
        self.xy.forget(source)
        self.raster.drop(id(source))
        self.buffers.remove(buffer)
        logger.info(f"{self.name}: detached {source!r} ({len(self.buffers)} entities)")

        if self.stacked:
            self.reset()
        return True

    def select(self, source: Optional[SampleSource]) -> bool:
        """Choose the entity shown in the readout (None to clear)."""
        if source is None:
            self.selected = None
            return True
        buffer = self.buffer_for(source)
        if buffer is None:
            return False
        self.selected = buffer
        return True

    def close(self) -> None:
        """Release all buffers."""
        self.buffers.clear()
        self.selected = None
        self.xy = XYSelection()
        self.raster.scatter.clear()
        logger.info(f"{self.name}: closed")

    # ------------------------------------------------------------------
    # Per-tick update
    # ------------------------------------------------------------------

    def tick(self, sim_time: Optional[float] = None) -> None:
        """
        Sample every attached entity once.

        Parameters
        ----------
        sim_time : Optional[float], default=None
            Current simulation time. If None the scope's clock advances by
            one tick period.
        """
        self.time = self.time + self.tick_period if sim_time is None else sim_time
        for buffer in self.buffers:
            buffer.tick()

        if self.mode is Mode.SCATTER_XY:
            self._plot_xy()
        elif self.mode is Mode.SCATTER_IV:
            self._plot_iv()

    def _plot_xy(self) -> None:
        if not self.xy.is_complete():
            return
        self.raster.plot_point(
            XY_KEY,
            self.xy.x_source.value(self.xy.x_channel),
            self.xy.y_source.value(self.xy.y_channel),
            self.x_range,
            self.y_range,
        )

    def _plot_iv(self) -> None:
        for buffer in self.buffers:
            if not buffer.enabled:
                continue
            x_channel, y_channel = iv_channels(buffer.source)
            self.raster.plot_point(
                id(buffer.source),
                buffer.source.value(x_channel),
                buffer.source.value(y_channel),
                self.range_for(x_channel),
                self.range_for(y_channel),
                color=buffer.color,
            )

    # ------------------------------------------------------------------
    # Settings (each discards history)
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Discard all history and clear the persistent scatter rasters."""
        for buffer in self.buffers:
            buffer.reset(self.width)
        self.raster.clear()

    def restore_defaults(self) -> None:
        """Return to the default time scale and clear the display."""
        self.decim_factor = self.DEFAULT_DECIM_FACTOR
        for buffer in self.buffers:
            buffer.decim_factor = self.decim_factor
        self.reset()

    def set_mode(self, mode: Union[Mode, str]) -> None:
        """Switch display mode, dropping history and the readout selection."""
        self.mode = Mode(mode) if isinstance(mode, str) else mode
        self.selected = None
        logger.info(f"{self.name}: mode set to {self.mode.name}")
        self.reset()

    def set_decim_factor(self, decim_factor: int) -> None:
        if decim_factor < 1:
            raise ValueError(f"decim_factor must be >= 1, got {decim_factor}")
        self.decim_factor = int(decim_factor)
        for buffer in self.buffers:
            buffer.decim_factor = self.decim_factor
        logger.debug(f"{self.name}: decim factor {self.decim_factor}")
        self.reset()

    def scale_decim_factor(self, factor: float) -> None:
        """Multiply the time scale by ``factor`` (at least one tick per column)."""
        self.set_decim_factor(max(1, int(self.decim_factor * factor)))

    def set_range(self, channel: AnyChannel, value_range: float) -> None:
        if not (value_range > 0 and math.isfinite(value_range)):
            raise ValueError(f"Range must be positive and finite, got {value_range}")
        self.ranges[channel.range_channel] = float(value_range)
        self.reset()

    def set_xy_range(self, axis: str, value_range: float) -> None:
        if not (value_range > 0 and math.isfinite(value_range)):
            raise ValueError(f"Range must be positive and finite, got {value_range}")
        if axis == "x":
            self.x_range = float(value_range)
        elif axis == "y":
            self.y_range = float(value_range)
        else:
            raise ValueError(f"Unknown axis '{axis}', expected 'x' or 'y'")
        self.reset()

    def scale_range(self, channel: AnyChannel, factor: float) -> None:
        self.set_range(channel, self.range_for(channel) * factor)

    def scale_all_ranges(self, factor: float) -> None:
        """Scale every range relevant to the current mode."""
        if self.mode is Mode.SCATTER_XY:
            self.x_range *= factor
            self.y_range *= factor
        else:
            channels = list(Channel)
            if self.mode is Mode.SCATTER_IV:
                channels = [Channel.VOLTAGE, Channel.CURRENT]
            for channel in channels:
                self.ranges[channel] *= factor
        self.reset()

    def set_stacked(self, stacked: bool) -> None:
        self.display.stacked = bool(stacked)
        if self.mode is Mode.TIME_SERIES:
            self.reset()

    def set_xy_axis(
        self, axis: str, source: SampleSource, channel: Optional[AnyChannel] = None
    ) -> bool:
        """
        Plot ``channel`` of an attached entity on ``axis`` ("x" or "y").

        Returns False if ``source`` is not attached to this scope.
        """
        if self.buffer_for(source) is None:
            logger.warning(f"{self.name}: {source!r} is not attached, cannot plot it on {axis}")
            return False
        if channel is None:
            channel = default_xy_channel(source)
        elif channel not in source.channels:
            raise ValueError(f"Channel {channel} is not available on {source!r}")
        self.xy.set_axis(axis, source, channel)
        self.raster.clear()
        return True

    def resize(self, width: int, height: int) -> None:
        """Reallocate buffers and rasters for a new canvas size."""
        self.coords.resize(width, height)
        self.raster.resize()
        self.reset()

    # ------------------------------------------------------------------
    # Range fitting
    # ------------------------------------------------------------------

    def _observed_amplitude(self, range_channel: Channel) -> Optional[float]:
        observed = None
        for buffer in self.buffers:
            for channel in buffer.shown_in_range(range_channel):
                amp = buffer.amplitude(channel)
                if amp is not None:
                    observed = amp if observed is None else max(observed, amp)
        return observed

    def _observed_iv_amplitude(self, axis_index: int) -> Optional[float]:
        observed = None
        for buffer in self.buffers:
            if not buffer.enabled:
                continue
            amp = buffer.amplitude(iv_channels(buffer.source)[axis_index])
            if amp is not None:
                observed = amp if observed is None else max(observed, amp)
        return observed

    def _observed_xy_amplitude(self, axis: str) -> Optional[float]:
        source, channel = self.xy.axis(axis)
        if source is None:
            return None
        buffer = self.buffer_for(source)
        return None if buffer is None else buffer.amplitude(channel)

    def fit_ranges(self) -> None:
        """
        Rescale ranges in powers of two so the displayed data fits.

        A channel with no observation keeps its default range.
        """
        if self.mode is Mode.TIME_SERIES:
            for channel in Channel:
                fitted = _fit_range(
                    channel.default_range, self._observed_amplitude(channel)
                )
                self.ranges[channel] = (
                    channel.default_range if fitted is None else fitted
                )
        elif self.mode is Mode.SCATTER_IV:
            for axis_index, channel in enumerate((Channel.VOLTAGE, Channel.CURRENT)):
                fitted = _fit_range(
                    channel.default_range, self._observed_iv_amplitude(axis_index)
                )
                self.ranges[channel] = (
                    channel.default_range if fitted is None else fitted
                )
        else:
            for axis in ("x", "y"):
                _, channel = self.xy.axis(axis)
                if channel is None:
                    continue
                default = channel.default_range
                fitted = _fit_range(default, self._observed_xy_amplitude(axis))
                value = default if fitted is None else fitted
                if axis == "x":
                    self.x_range = value
                else:
                    self.y_range = value

        logger.info(
            f"{self.name}: fitted ranges V={self.ranges[Channel.VOLTAGE]:.3g} "
            f"I={self.ranges[Channel.CURRENT]:.3g} P={self.ranges[Channel.POWER]:.3g} "
            f"x={self.x_range:.3g} y={self.y_range:.3g}"
        )
        self.reset()

    # ------------------------------------------------------------------
    # Readout and rendering
    # ------------------------------------------------------------------

    def estimator(self, buffer: WaveformBuffer):
        """FrequencyEstimator over ``buffer`` at this scope's tick period."""
        # Deferred: simscope.waveform imports this module
        from simscope.waveform.analysis import FrequencyEstimator

        return FrequencyEstimator(buffer, self.tick_period)

    def showing(self, channel: Channel) -> bool:
        """Whether any entity shows a channel scaled by ``channel``'s range."""
        return any(buffer.shown_in_range(channel) for buffer in self.buffers)

    def info_lines(self) -> List[str]:
        """
        Text readout for the selected entity (or the X/Y selection).

        Returns
        -------
        List[str]
            Lines of text; empty when there is nothing to report.
        """
        if self.mode is Mode.SCATTER_XY:
            return self._xy_info_lines()
        if self.selected is None:
            return []

        buffer = self.selected
        shown = list(buffer.shown_channels())
        lines = [buffer.source.name[:1].upper() + buffer.source.name[1:]]
        if not shown:
            return lines

        def _join(values):
            return " | ".join(values)

        if self.display.show_peak:
            lines.append(
                "Peak: "
                + _join(self._value_text(buffer.peak(ch), ch.unit) for ch in shown)
            )
        if self.display.show_negative_peak:
            lines.append(
                "Neg Peak: "
                + _join(
                    self._value_text(buffer.negative_peak(ch), ch.unit) for ch in shown
                )
            )
        if self.display.show_frequency:
            estimator = self.estimator(buffer)
            freqs = (estimator.frequency(ch) for ch in shown)
            lines.append(
                "Freq: "
                + _join(format_unit_text(f, "Hz") if f != 0 else "?" for f in freqs)
            )
        return lines

    @staticmethod
    def _value_text(value: Optional[float], unit: str) -> str:
        return "?" if value is None else format_unit_text(value, unit)

    def _xy_info_lines(self) -> List[str]:
        names, values = [], []
        for axis in ("x", "y"):
            source, channel = self.xy.axis(axis)
            if source is None:
                continue
            names.append(f"{axis.upper()}: {source.name} {channel.name}")
            values.append(format_unit_text(source.value(channel), channel.unit))
        if not names:
            return []
        return ["  |  ".join(names), "  |  ".join(values)]

    def gridlines(self) -> List[Tuple[int, float, bool]]:
        """Time-axis gridlines of the current window."""
        return time_gridlines(self.time, self.seconds_per_pixel, self.width)

    def render(self) -> np.ndarray:
        """
        Compose the current frame.

        Returns
        -------
        np.ndarray
            (height, width) uint32 ARGB pixels for a Canvas sink.
        """
        if self.mode.is_scatter:
            if self.mode is Mode.SCATTER_XY:
                keys = [XY_KEY]
            else:
                keys = [id(b.source) for b in self.buffers if b.enabled]
            return self.raster.compose_frame(
                np.zeros((self.height, self.width), dtype=np.uint32),
                scatter_keys=keys,
                scatter_mode=True,
                show_grid=self.display.show_grid,
            )

        traces = self.raster.render_time_series(
            self.buffers, self.ranges, stacked=self.stacked
        )
        return self.raster.compose_frame(
            traces,
            stacked_count=len(self.buffers) if self.stacked else 0,
            show_grid=self.display.show_grid,
            time_columns=[col for col, _, _ in self.gridlines()],
        )


class ScopeSet:
    """
    The host application's scopes and which one is selected.

    Passed explicitly to whatever needs the "current" scope.
    """

    def __init__(self, scopes: Optional[List[ScopeController]] = None):
        self._scopes: List[ScopeController] = list(scopes) if scopes else []
        self._selected: Optional[ScopeController] = None

    def add(self, scope: ScopeController) -> ScopeController:
        self._scopes.append(scope)
        return scope

    def remove(self, scope: ScopeController) -> None:
        if scope in self._scopes:
            self._scopes.remove(scope)
            scope.close()
        if self._selected is scope:
            self._selected = None

    def select(self, scope: Optional[ScopeController]) -> None:
        if scope is not None and scope not in self._scopes:
            raise ValueError(f"{scope!r} is not part of this scope set")
        self._selected = scope

    @property
    def selected(self) -> Optional[ScopeController]:
        return self._selected

    def tick(self, sim_time: Optional[float] = None) -> None:
        for scope in self._scopes:
            scope.tick(sim_time)

    def detach_everywhere(self, source: SampleSource) -> int:
        """Detach a deleted entity from every scope; returns how many scopes held it."""
        return sum(1 for scope in self._scopes if scope.detach(source))

    def __iter__(self) -> Iterator[ScopeController]:
        return iter(self._scopes)

    def __len__(self) -> int:
        return len(self._scopes)

    def __getitem__(self, index: int) -> ScopeController:
        return self._scopes[index]
