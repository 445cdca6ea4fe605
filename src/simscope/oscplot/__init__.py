"""
Oscilloscope capture and display components for simscope.

This package contains the per-tick decimation buffers, the scope controller
and the raster/canvas side used to show monitored entities.
"""

from simscope.oscplot.coordinate_manager import CoordinateManager
from simscope.oscplot.decimation import WaveformBuffer
from simscope.oscplot.display_state import (
    DisplayState,
    compute_grid_step,
    format_unit_text,
    time_gridlines,
)
from simscope.oscplot.plot import Canvas, MatplotlibCanvas
from simscope.oscplot.raster import TraceRaster
from simscope.oscplot.scope import Mode, ScopeController, ScopeSet, XYSelection
from simscope.oscplot.sources import (
    Channel,
    EntityTable,
    SampleSource,
    StandardSource,
    TransistorChannel,
    TransistorSource,
)

__all__ = [
    "ScopeController",
    "ScopeSet",
    "Mode",
    "XYSelection",
    "WaveformBuffer",
    "TraceRaster",
    "CoordinateManager",
    "DisplayState",
    "compute_grid_step",
    "time_gridlines",
    "format_unit_text",
    "Canvas",
    "MatplotlibCanvas",
    "Channel",
    "TransistorChannel",
    "SampleSource",
    "StandardSource",
    "TransistorSource",
    "EntityTable",
]
