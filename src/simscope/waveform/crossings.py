from typing import Tuple

import numpy as np
from numba import njit


@njit
def find_zero_crossings_numba(
    col_min: np.ndarray, col_max: np.ndarray, ring: np.ndarray
) -> np.ndarray:
    """
    Find decimated columns in which the signal passed through zero.

    A column crosses zero when the signs of its minimum and maximum differ.

    Parameters
    ----------
    col_min : np.ndarray
        Column minima of one channel (ring order).
    col_max : np.ndarray
        Column maxima of one channel (ring order).
    ring : np.ndarray
        Ring positions to scan, oldest first.

    Returns
    -------
    np.ndarray
        Ring positions of the crossing columns, in scan order.
    """
    crossings = np.empty(ring.shape[0], dtype=np.int64)
    count = 0
    for k in range(ring.shape[0]):
        c = ring[k]
        if np.sign(col_min[c]) != np.sign(col_max[c]):
            crossings[count] = c
            count += 1
    return crossings[:count]


@njit
def crossing_gap_stats_numba(crossings: np.ndarray) -> Tuple[int, float, float]:
    """
    Mean and population variance of the gaps between consecutive crossings.

    Non-increasing gaps (where the scan wrapped around the ring) are skipped.

    Returns
    -------
    Tuple[int, float, float]
        Number of valid gaps, mean gap, variance of the gaps (columns).
    """
    n_gaps = 0
    total = 0.0
    total_sq = 0.0
    for i in range(1, crossings.shape[0]):
        gap = crossings[i] - crossings[i - 1]
        if gap <= 0:
            continue
        n_gaps += 1
        total += gap
        total_sq += gap * gap

    if n_gaps == 0:
        return 0, 0.0, 0.0
    mean = total / n_gaps
    variance = total_sq / n_gaps - mean * mean
    if variance < 0.0:
        variance = 0.0
    return n_gaps, mean, variance
