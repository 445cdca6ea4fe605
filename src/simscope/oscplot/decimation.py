from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np
from loguru import logger
from numba import njit

from simscope.oscplot.display_state import trace_color
from simscope.oscplot.sources import (
    AnyChannel,
    Channel,
    SampleSource,
    TransistorChannel,
)


@njit
def _widen_column_numba(
    col_min: np.ndarray, col_max: np.ndarray, column: int, samples: np.ndarray
) -> None:
    """
    Widen one column's running min/max with a new sample per channel.

    Parameters
    ----------
    col_min : np.ndarray
        Per-channel column minima, shape (n_channels, width).
    col_max : np.ndarray
        Per-channel column maxima, shape (n_channels, width).
    column : int
        Column being accumulated (the ring head).
    samples : np.ndarray
        One sample per channel.
    """
    for ch in range(samples.shape[0]):
        val = samples[ch]
        if val > col_max[ch, column]:
            col_max[ch, column] = val
        elif val < col_min[ch, column]:
            col_min[ch, column] = val


@njit
def _seed_column_numba(
    col_min: np.ndarray, col_max: np.ndarray, column: int, samples: np.ndarray
) -> None:
    """Seed a column with min = max = current sample for every channel."""
    for ch in range(samples.shape[0]):
        col_min[ch, column] = samples[ch]
        col_max[ch, column] = samples[ch]


# Legacy show-flag bits (1 = current, 2 = voltage, 4 = power)
_SHOW_FLAG_CHANNELS = {
    Channel: ((1, Channel.CURRENT), (2, Channel.VOLTAGE), (4, Channel.POWER)),
    TransistorChannel: (
        (1, TransistorChannel.I_C),
        (2, TransistorChannel.V_CE),
        (4, TransistorChannel.POWER),
    ),
}


class WaveformBuffer:
    """
    Ring buffer of per-pixel-column (min, max) pairs for one monitored entity.

    Many simulation ticks are folded into one display column. The column at
    ``head`` always holds the running min/max since it was last seeded, and a
    newly opened column is always seeded from the current sample.
    """

    def __init__(
        self,
        source: SampleSource,
        width: int,
        decim_factor: int = 1,
        colors: Optional[Mapping[AnyChannel, int]] = None,
        color_offset: int = 0,
    ):
        """
        Initialise the buffer and seed its first column from ``source``.

        Parameters
        ----------
        source : SampleSource
            Entity sampled on every tick.
        width : int
            Number of display columns.
        decim_factor : int, default=1
            Ticks folded into one column.
        colors : Optional[Mapping[AnyChannel, int]], default=None
            ARGB colour per channel. Missing channels get palette colours.
        color_offset : int, default=0
            Palette position used for default colours.
        """
        if decim_factor < 1:
            raise ValueError(f"decim_factor must be >= 1, got {decim_factor}")

        self.source = source
        self.channels: Tuple[AnyChannel, ...] = source.channels
        self._channel_index: Dict[AnyChannel, int] = {
            ch: i for i, ch in enumerate(self.channels)
        }
        self.decim_factor = int(decim_factor)

        # Display options carried with the entity
        self.enabled = True
        if source.is_transistor:
            self.shown = {TransistorChannel.V_CE}
        else:
            self.shown = {Channel.VOLTAGE}
        self.colors: Dict[AnyChannel, int] = {
            ch: trace_color(color_offset * len(self.channels) + i)
            for i, ch in enumerate(self.channels)
        }
        if colors is not None:
            self.colors.update(colors)
        self.color = self.colors[self.channels[0]]

        self.reset(width)

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def _sample_array(
        self, samples: Optional[Mapping[AnyChannel, float]] = None
    ) -> np.ndarray:
        if samples is None:
            return np.asarray(self.source.values(), dtype=np.float64)
        return np.asarray(
            [
                samples[ch] if ch in samples else self.source.value(ch)
                for ch in self.channels
            ],
            dtype=np.float64,
        )

    def reset(self, new_width: Optional[int] = None) -> None:
        """
        Discard history, optionally reallocating to ``new_width`` columns.

        The head column is reseeded from the source's current values.
        """
        width = self.width if new_width is None else int(new_width)
        if width < 1:
            raise ValueError(f"Buffer width must be >= 1, got {width}")

        self.width = width
        n_channels = len(self.channels)
        self.col_min = np.zeros((n_channels, width), dtype=np.float64)
        self.col_max = np.zeros((n_channels, width), dtype=np.float64)
        self.head = 0
        self.visible = 0
        self.decim_counter = 0
        _seed_column_numba(self.col_min, self.col_max, self.head, self._sample_array())

    def tick(self, samples: Optional[Mapping[AnyChannel, float]] = None) -> bool:
        """
        Fold one simulation step into the head column.

        Parameters
        ----------
        samples : Optional[Mapping[AnyChannel, float]], default=None
            Values for this tick. Channels missing from the mapping (or all of
            them when None) are read from the source.

        Returns
        -------
        bool
            True if a column was completed and the ring advanced.
        """
        current = self._sample_array(samples)
        _widen_column_numba(self.col_min, self.col_max, self.head, current)
        self.decim_counter += 1

        if self.decim_counter < self.decim_factor:
            return False

        self.head = (self.head + 1) % self.width
        self.visible = min(self.visible + 1, self.width)
        self.decim_counter = 0
        _seed_column_numba(self.col_min, self.col_max, self.head, current)
        return True

    def set_decim_factor(self, decim_factor: int) -> None:
        if decim_factor < 1:
            raise ValueError(f"decim_factor must be >= 1, got {decim_factor}")
        self.decim_factor = int(decim_factor)
        self.reset()

    # ------------------------------------------------------------------
    # History access
    # ------------------------------------------------------------------

    def index_of(self, channel: AnyChannel) -> int:
        try:
            return self._channel_index[channel]
        except KeyError:
            raise ValueError(
                f"Channel {channel} is not recorded for {self.source!r}"
            ) from None

    def ring_indices(self) -> np.ndarray:
        """Ring positions of the visible columns, newest first."""
        return (self.head - np.arange(self.visible)) % self.width

    def chronological_indices(self) -> np.ndarray:
        """Ring positions of the visible columns, oldest first."""
        return self.ring_indices()[::-1]

    def visible_columns(self, channel: AnyChannel) -> Tuple[np.ndarray, np.ndarray]:
        """Return (min, max) arrays of the visible columns, oldest first."""
        idx = self.index_of(channel)
        ring = self.chronological_indices()
        return self.col_min[idx, ring], self.col_max[idx, ring]

    def peak(self, channel: AnyChannel) -> Optional[float]:
        """Maximum over the visible columns, or None before the first column completes."""
        if self.visible == 0:
            return None
        idx = self.index_of(channel)
        return float(np.max(self.col_max[idx, self.ring_indices()]))

    def negative_peak(self, channel: AnyChannel) -> Optional[float]:
        """Minimum over the visible columns, or None before the first column completes."""
        if self.visible == 0:
            return None
        idx = self.index_of(channel)
        return float(np.min(self.col_min[idx, self.ring_indices()]))

    def amplitude(self, channel: AnyChannel) -> Optional[float]:
        """Largest absolute excursion of ``channel`` over the visible columns."""
        peak = self.peak(channel)
        if peak is None:
            return None
        return max(abs(peak), abs(self.negative_peak(channel)))

    # ------------------------------------------------------------------
    # Display options
    # ------------------------------------------------------------------

    def is_showing(self, channel: Optional[AnyChannel] = None) -> bool:
        """Whether ``channel`` is displayed, or with no argument whether the entity is."""
        if channel is None:
            return self.enabled
        return channel in self.shown

    def show(self, channel: AnyChannel, state: bool = True) -> None:
        self.index_of(channel)
        if state:
            self.shown.add(channel)
        else:
            self.shown.discard(channel)

    def shown_in_range(self, range_channel: Channel) -> List[AnyChannel]:
        """Shown channels whose values are scaled by ``range_channel``'s range."""
        return [
            ch
            for ch in self.channels
            if ch in self.shown and ch.range_channel is range_channel
        ]

    def set_show_flags(self, flags: int) -> None:
        """Apply legacy show flags (1 = current, 2 = voltage, 4 = power)."""
        channel_type = type(self.channels[0])
        self.shown = {
            ch for bit, ch in _SHOW_FLAG_CHANNELS[channel_type] if flags & bit
        }
        logger.debug(
            f"{self.source!r}: show flags {flags} -> {sorted(ch.name for ch in self.shown)}"
        )

    def show_flags(self) -> int:
        """Legacy show flags for the shown channels."""
        flags = 0
        for bit, ch in _SHOW_FLAG_CHANNELS[type(self.channels[0])]:
            if ch in self.shown:
                flags |= bit
        return flags

    def shown_channels(self) -> Iterable[AnyChannel]:
        """Shown channels in channel order."""
        return [ch for ch in self.channels if ch in self.shown]
