"""
Waveform analysis and scope persistence for simscope.

This package contains the frequency estimation over decimated history and
the legacy/modern scope save records, including legacy migration.
"""

from simscope.waveform.analysis import FrequencyEstimator, configure_logging
from simscope.waveform.io import dump_scopes, load_scopes
from simscope.waveform.migration import LegacyScopeMigrator, LegacyScopeRecord

__all__ = [
    "FrequencyEstimator",
    "configure_logging",
    "LegacyScopeRecord",
    "LegacyScopeMigrator",
    "load_scopes",
    "dump_scopes",
]
