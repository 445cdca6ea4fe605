import math
import sys
from typing import Optional

import numpy as np
from loguru import logger

from simscope.oscplot.decimation import WaveformBuffer
from simscope.oscplot.sources import AnyChannel
from simscope.waveform.crossings import (
    crossing_gap_stats_numba,
    find_zero_crossings_numba,
)

# Crossing gaps more irregular than this (in columns) give no frequency
MAX_GAP_STD = 2.0


def configure_logging(log_level: str = "INFO") -> None:
    """
    Configure loguru logging with specified level.

    Parameters
    ----------
    log_level : str, default="INFO"
        Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL.
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=log_level.upper(),
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        colorize=True,
    )


class FrequencyEstimator:
    """
    Peak, negative peak and zero-crossing frequency of a buffer's visible history.

    The frequency is derived from the spacing of zero-crossing columns. Two
    crossings make one period, so a regular gap of ``g`` columns corresponds
    to ``1 / (2 * g * decim_factor * tick_period)`` Hz. An undeterminable
    frequency is reported as 0.
    """

    def __init__(self, buffer: WaveformBuffer, tick_period: float):
        """
        Initialise the estimator.

        Parameters
        ----------
        buffer : WaveformBuffer
            Buffer whose visible columns are analysed.
        tick_period : float
            Simulated time of one tick, in seconds.
        """
        if tick_period <= 0:
            raise ValueError(f"tick_period must be positive, got {tick_period}")
        self.buffer = buffer
        self.tick_period = tick_period

    def peak(self, channel: AnyChannel) -> Optional[float]:
        return self.buffer.peak(channel)

    def negative_peak(self, channel: AnyChannel) -> Optional[float]:
        return self.buffer.negative_peak(channel)

    def crossings(self, channel: AnyChannel) -> np.ndarray:
        """Ring positions of the zero-crossing columns, oldest first."""
        idx = self.buffer.index_of(channel)
        return find_zero_crossings_numba(
            self.buffer.col_min[idx],
            self.buffer.col_max[idx],
            self.buffer.chronological_indices(),
        )

    def frequency(self, channel: AnyChannel) -> float:
        """
        Estimate the frequency of ``channel`` in Hz.

        Returns
        -------
        float
            The estimated frequency, or 0.0 when there are too few crossings
            or their spacing is too irregular.
        """
        crossings = self.crossings(channel)
        n_gaps, mean_gap, variance = crossing_gap_stats_numba(crossings)

        if n_gaps < 1:
            logger.debug(
                f"{self.buffer.source!r} {channel.name}: {len(crossings)} crossings, frequency undetermined"
            )
            return 0.0

        std = math.sqrt(variance)
        if std > MAX_GAP_STD:
            logger.debug(
                f"{self.buffer.source!r} {channel.name}: gap std {std:.3g} > {MAX_GAP_STD}, frequency undetermined"
            )
            return 0.0

        return 1.0 / (
            2.0 * mean_gap * self.buffer.decim_factor * self.tick_period
        )
