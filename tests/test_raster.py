import numpy as np
import pytest

from simscope.oscplot.coordinate_manager import CoordinateManager
from simscope.oscplot.decimation import WaveformBuffer
from simscope.oscplot.display_state import BACKGROUND_COLOR, XY_TRACE_COLOR
from simscope.oscplot.raster import ScatterTrace, TraceRaster
from simscope.oscplot.sources import Channel, StandardSource

DEFAULT_RANGES = {ch: ch.default_range for ch in Channel}


def _painted(trace):
    return {(int(x), int(y)) for y, x in zip(*np.nonzero(trace.pixels))}


def test_values_to_rows():
    coords = CoordinateManager(10, 100)
    rows = coords.values_to_rows(np.array([0.0, 5.0, -5.0, 2.5]), 10.0, 100)
    assert list(rows) == [50, 0, 100, 25]


def test_xy_to_pixel():
    coords = CoordinateManager(100, 60)
    assert coords.xy_to_pixel(0.0, 0.0, 2.0, 2.0) == (50, 30)
    assert coords.xy_to_pixel(0.5, 0.5, 2.0, 2.0) == (75, 15)


def test_first_point_draws_nothing():
    trace = ScatterTrace(10, 10)
    assert trace.plot(3, 3) == 0
    assert trace.last_point == (3, 3)
    assert not trace.pixels.any()


def test_line_steps_along_dominant_axis():
    trace = ScatterTrace(10, 10)
    trace.plot(0, 0)
    assert trace.plot(4, 2) == 5
    assert _painted(trace) == {(0, 0), (1, 0), (2, 1), (3, 1), (4, 2)}

    trace.clear()
    trace.plot(0, 0)
    assert trace.plot(1, 3) == 4
    assert _painted(trace) == {(0, 0), (0, 1), (0, 2), (1, 3)}


def test_line_skips_out_of_bounds_pixels():
    trace = ScatterTrace(10, 10)
    trace.plot(5, 5)
    assert trace.plot(15, 5) == 5
    assert _painted(trace) == {(x, 5) for x in range(5, 10)}


def test_segment_entirely_outside_is_not_drawn():
    trace = ScatterTrace(10, 10)
    trace.plot(20, 20)
    assert trace.plot(30, 30) == 0
    assert trace.last_point == (30, 30)


def test_repeated_point_marks_one_pixel():
    trace = ScatterTrace(10, 10)
    trace.plot(2, 7)
    assert trace.plot(2, 7) == 1
    assert trace.pixels[7, 2] == XY_TRACE_COLOR


def _flat_buffer(name, width, ticks=3, color_offset=0):
    buffer = WaveformBuffer(
        StandardSource(name), width, decim_factor=1, color_offset=color_offset
    )
    for _ in range(ticks):
        buffer.tick({Channel.VOLTAGE: 0.0})
    return buffer


def test_stacked_bands():
    raster = TraceRaster(CoordinateManager(10, 100))
    buffers = [_flat_buffer("a", 10), _flat_buffer("b", 10, color_offset=1)]

    pixels = raster.render_time_series(buffers, DEFAULT_RANGES, stacked=True)

    color_a = buffers[0].colors[Channel.VOLTAGE]
    color_b = buffers[1].colors[Channel.VOLTAGE]
    assert color_a != color_b
    assert np.all(pixels[25, 7:] == color_a)
    assert np.all(pixels[75, 7:] == color_b)
    assert np.count_nonzero(pixels) == 6


def test_overlaid_time_series_uses_full_height():
    raster = TraceRaster(CoordinateManager(10, 100))
    buffer = _flat_buffer("a", 10, ticks=4)

    pixels = raster.render_time_series([buffer], DEFAULT_RANGES)

    assert np.count_nonzero(pixels[50]) == 4
    assert np.count_nonzero(pixels) == 4


def test_out_of_range_columns_are_clamped():
    raster = TraceRaster(CoordinateManager(4, 20))
    buffer = WaveformBuffer(StandardSource("a"), 4, decim_factor=1)
    buffer.tick({Channel.VOLTAGE: 0.0})
    buffer.tick({Channel.VOLTAGE: 100.0})

    pixels = raster.render_time_series([buffer], DEFAULT_RANGES)
    # Older column spans 0 V to 100 V: clamped to the top half of the band
    assert np.count_nonzero(pixels[:, 2]) == 11
    # Newest column lies wholly above the band
    assert np.count_nonzero(pixels[:, 3]) == 0


def test_compose_frame_and_clear():
    raster = TraceRaster(CoordinateManager(20, 20))
    raster.plot_point("xy", 0.0, 0.0, 1.0, 1.0)
    raster.plot_point("xy", 0.25, 0.0, 1.0, 1.0)

    frame = raster.compose_frame(
        np.zeros((20, 20), dtype=np.uint32), scatter_keys=["xy"], scatter_mode=True
    )
    assert frame.shape == (20, 20)
    assert frame.dtype == np.uint32
    assert frame[10, 12] == XY_TRACE_COLOR
    assert frame[1, 1] == BACKGROUND_COLOR

    raster.clear()
    assert raster.last_point("xy") is None
    assert not raster.scatter["xy"].pixels.any()


def test_resize_validation():
    coords = CoordinateManager(10, 10)
    with pytest.raises(ValueError):
        coords.resize(0, 10)


@pytest.mark.parametrize(
    "x, y", [(float("nan"), 0.0), (0.0, float("inf")), (-float("inf"), 0.5)]
)
def test_non_finite_scatter_samples_are_skipped(x, y):
    raster = TraceRaster(CoordinateManager(20, 20))
    assert raster.plot_point("xy", x, y, 1.0, 1.0) is None
    assert raster.last_point("xy") is None

    raster.plot_point("xy", 0.0, 0.0, 1.0, 1.0)
    assert raster.plot_point("xy", x, y, 1.0, 1.0) is None
    assert raster.last_point("xy") == (10, 10)
    assert np.count_nonzero(raster.scatter["xy"].pixels) == 0
