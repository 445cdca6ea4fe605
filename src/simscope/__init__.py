"""
simscope: oscilloscope telemetry for stepped circuit simulations

Captures per-tick samples of monitored entities into decimated ring buffers,
renders them as time series or scatter plots, and loads/saves scope setups
(including migration of legacy single-entity records).
"""

# Import from oscplot subpackage
from simscope.oscplot.decimation import WaveformBuffer
from simscope.oscplot.display_state import DisplayState
from simscope.oscplot.plot import MatplotlibCanvas
from simscope.oscplot.scope import Mode, ScopeController, ScopeSet
from simscope.oscplot.sources import (
    Channel,
    EntityTable,
    StandardSource,
    TransistorChannel,
    TransistorSource,
)

# Import from waveform subpackage
from simscope.waveform.analysis import FrequencyEstimator, configure_logging
from simscope.waveform.io import dump_scopes, load_scopes
from simscope.waveform.migration import LegacyScopeMigrator, LegacyScopeRecord

__all__ = [
    # Capture and display
    "ScopeController",
    "ScopeSet",
    "Mode",
    "WaveformBuffer",
    "DisplayState",
    "MatplotlibCanvas",
    "Channel",
    "TransistorChannel",
    "StandardSource",
    "TransistorSource",
    "EntityTable",
    # Analysis and persistence
    "FrequencyEstimator",
    "configure_logging",
    "LegacyScopeRecord",
    "LegacyScopeMigrator",
    "load_scopes",
    "dump_scopes",
]
