import math

import numpy as np
import pytest

from simscope.oscplot.decimation import WaveformBuffer
from simscope.oscplot.sources import Channel, StandardSource, TransistorChannel


def _feed(buffer, values, channel=Channel.VOLTAGE):
    for v in values:
        buffer.tick({channel: v})


def test_new_buffer_is_seeded_from_source():
    source = StandardSource("r", values={Channel.VOLTAGE: 1.5})
    buffer = WaveformBuffer(source, width=4, decim_factor=2)

    idx = buffer.index_of(Channel.VOLTAGE)
    assert buffer.visible == 0
    assert buffer.head == 0
    assert buffer.col_min[idx, 0] == 1.5
    assert buffer.col_max[idx, 0] == 1.5
    assert buffer.peak(Channel.VOLTAGE) is None
    assert buffer.negative_peak(Channel.VOLTAGE) is None


def test_column_completes_every_decim_factor_ticks():
    buffer = WaveformBuffer(StandardSource("r"), width=4, decim_factor=3)

    assert buffer.tick({Channel.VOLTAGE: 1.0}) is False
    assert buffer.tick({Channel.VOLTAGE: 2.0}) is False
    assert buffer.decim_counter == 2
    assert buffer.tick({Channel.VOLTAGE: 3.0}) is True
    assert buffer.decim_counter == 0
    assert buffer.head == 1
    assert buffer.visible == 1


def test_visible_saturates_at_width():
    buffer = WaveformBuffer(StandardSource("r"), width=4, decim_factor=1)
    _feed(buffer, range(10))

    assert buffer.visible == 4
    assert buffer.head == 10 % 4
    assert 0 <= buffer.decim_counter < buffer.decim_factor


@pytest.mark.parametrize(
    "decim_factor, ticks, width",
    [
        (3, 50, 4),
        (5, 7, 8),
        (2, 1, 4),
        (4, 43, 3),
        (1, 0, 5),
    ],
)
def test_tick_count_determines_ring_position(decim_factor, ticks, width):
    buffer = WaveformBuffer(StandardSource("r"), width=width, decim_factor=decim_factor)
    _feed(buffer, [float(k) for k in range(ticks)])

    completed = ticks // decim_factor
    assert buffer.visible == min(completed, width)
    assert buffer.head == completed % width
    assert buffer.decim_counter == ticks % decim_factor


def test_peaks_bound_samples_in_visible_window():
    buffer = WaveformBuffer(StandardSource("r"), width=100, decim_factor=3)
    samples = [math.sin(0.7 * k) * (1 + 0.1 * k) for k in range(30)]
    _feed(buffer, samples)

    # Visible columns start with the one seeded by the third sample
    window = samples[2:]
    assert buffer.visible == 10
    assert buffer.peak(Channel.VOLTAGE) == pytest.approx(max(window))
    assert buffer.negative_peak(Channel.VOLTAGE) == pytest.approx(min(window))
    assert buffer.peak(Channel.VOLTAGE) >= buffer.negative_peak(Channel.VOLTAGE)


def test_column_min_never_exceeds_max():
    rng = np.random.default_rng(3)
    buffer = WaveformBuffer(StandardSource("r"), width=16, decim_factor=5)
    _feed(buffer, rng.normal(size=200))

    assert np.all(buffer.col_min <= buffer.col_max)


def test_visible_columns_are_oldest_first():
    buffer = WaveformBuffer(StandardSource("r"), width=8, decim_factor=1)
    _feed(buffer, [1.0, 2.0, 3.0, 4.0])

    col_min, col_max = buffer.visible_columns(Channel.VOLTAGE)
    assert len(col_min) == buffer.visible
    # Newest column holds only the seeding sample
    assert col_max[-1] == 4.0
    assert col_min[-1] == 4.0
    assert list(col_max) == sorted(col_max)


def test_reset_discards_history():
    buffer = WaveformBuffer(StandardSource("r"), width=8, decim_factor=1)
    _feed(buffer, [1.0, 2.0, 3.0])
    buffer.reset(new_width=16)

    assert buffer.visible == 0
    assert buffer.head == 0
    assert buffer.width == 16
    assert buffer.col_min.shape == (len(Channel), 16)


def test_invalid_decim_factor_raises():
    with pytest.raises(ValueError):
        WaveformBuffer(StandardSource("r"), width=8, decim_factor=0)


def test_show_flags():
    buffer = WaveformBuffer(StandardSource("r"), width=8)
    assert buffer.shown_channels() == [Channel.VOLTAGE]

    buffer.set_show_flags(3)
    assert buffer.shown == {Channel.VOLTAGE, Channel.CURRENT}
    assert buffer.show_flags() == 3

    buffer.show(Channel.POWER)
    assert buffer.show_flags() == 7
    assert buffer.shown_in_range(Channel.POWER) == [Channel.POWER]


def test_transistor_buffer_defaults_and_ranges(transistor):
    buffer = WaveformBuffer(transistor, width=8)
    assert buffer.shown == {TransistorChannel.V_CE}

    buffer.show(TransistorChannel.V_BE)
    assert buffer.shown_in_range(Channel.VOLTAGE) == [
        TransistorChannel.V_BE,
        TransistorChannel.V_CE,
    ]
    with pytest.raises(ValueError):
        buffer.index_of(Channel.VOLTAGE)


def test_standard_source_derives_power():
    source = StandardSource("r")
    source.update({Channel.VOLTAGE: 2.0, Channel.CURRENT: 0.5})
    assert source.value(Channel.POWER) == 1.0
    with pytest.raises(ValueError):
        source.value(TransistorChannel.I_B)
