import pytest

from simscope.oscplot.display_state import color_to_argb
from simscope.oscplot.scope import Mode, ScopeController
from simscope.oscplot.sources import Channel, EntityTable, TransistorChannel
from simscope.waveform.io import (
    argb_to_signed,
    dump_scopes,
    load_scopes,
    parse_legacy_record,
    parse_modern_record,
    serialize_legacy,
    serialize_modern,
    signed_to_argb,
)


def test_parse_legacy_record():
    record = parse_legacy_record("o 1 64 0 3 2.5 0.05")

    assert record.entity_ref == 1
    assert record.decim_factor == 64
    assert record.voltage_range == 5.0
    assert record.current_range == 0.1
    assert record.show_voltage and record.show_current
    assert record.show_peak
    assert not record.show_frequency
    assert record.position == -1
    assert record.peer_entity_ref == -1


def test_legacy_zero_ranges_get_defaults():
    record = parse_legacy_record("o 0 16 0 2 0 0")
    assert record.voltage_range == 1.0
    assert record.current_range == 2.0


def test_legacy_record_without_entity_is_ignored():
    assert parse_legacy_record("o -1 64 0 2 2.5 0.05") is None


def test_legacy_record_with_malformed_entity_is_ignored():
    assert parse_legacy_record("o x1 64 0 2 2.5 0.05") is None


def test_legacy_non_finite_ranges_get_defaults():
    record = parse_legacy_record("o 0 64 0 160 nan inf -1 1")

    assert record.voltage_range == 1.0
    assert record.current_range == 2.0
    assert record.plot_xy
    assert record.peer_entity_ref == 1


def test_legacy_extension_fields():
    record = parse_legacy_record("o 3 64 0 492 2.5 0 -1 4 bias point")

    assert record.plot_xy
    assert record.plot_2d
    assert not record.show_peak
    assert record.show_frequency
    assert record.show_negative_peak
    assert record.position == -1
    assert record.peer_entity_ref == 4
    assert record.annotation_text == "bias point"


def test_legacy_position_without_extension():
    record = parse_legacy_record("o 2 64 0 2 2.5 0.05 7 9 ignored")
    assert record.position == 7
    assert record.peer_entity_ref == -1
    assert record.annotation_text is None


def test_malformed_legacy_tokens_keep_record():
    record = parse_legacy_record("o 1 abc 0 3 x 0.05")

    assert record is not None
    assert record.decim_factor == ScopeController.DEFAULT_DECIM_FACTOR
    assert record.voltage_range == 1.0
    assert record.current_range == 0.1


def test_signed_colors():
    assert argb_to_signed(0xFF0000FF) == -16776961
    assert signed_to_argb(-16776961) == 0xFF0000FF
    assert argb_to_signed(0x7F000000) == 0x7F000000


def _time_series_scope(entities, sources):
    scope = ScopeController(width=40, height=20, decim_factor=16)
    scope.attach(sources[0], show_flags=3)
    scope.attach(sources[1], show_flags=1)
    scope.set_range(Channel.VOLTAGE, 10.0)
    scope.set_range(Channel.CURRENT, 0.4)
    scope.set_stacked(True)
    return scope


def test_modern_round_trip(entities, sources):
    scope = _time_series_scope(entities, sources)
    scope.geometry = (10, 20, 300, 200)
    scope.display.show_negative_peak = True
    scope.buffers[1].enabled = False
    scope.buffers[0].colors[Channel.CURRENT] = color_to_argb("red")

    line = serialize_modern(scope, entities)
    assert line.startswith("o2 10 20 300 200 16 10.0 0.4 0.5 13 -1 -1 -1 -1 -1 -1")

    loaded = parse_modern_record(line, entities, width=40, height=20)
    assert loaded.geometry == (10, 20, 300, 200)
    assert loaded.decim_factor == 16
    assert loaded.ranges == scope.ranges
    assert loaded.mode is Mode.TIME_SERIES
    assert loaded.stacked
    assert loaded.display.to_flags() == scope.display.to_flags()
    assert loaded.sources == scope.sources
    for original, restored in zip(scope.buffers, loaded.buffers):
        assert restored.shown == original.shown
        assert restored.enabled == original.enabled
        assert restored.colors == original.colors
        assert restored.color == original.color


def test_modern_round_trip_xy(sources, transistor):
    entities = EntityTable(sources + [transistor])
    scope = ScopeController(width=40, height=20, mode=Mode.SCATTER_XY)
    scope.attach(sources[0])
    scope.attach(transistor)
    scope.set_xy_axis("x", sources[0], Channel.CURRENT)
    scope.set_xy_axis("y", transistor, TransistorChannel.I_B)
    scope.set_xy_range("x", 0.25)
    scope.set_xy_range("y", 3.0)

    line = serialize_modern(scope, entities)
    loaded = parse_modern_record(line, entities)

    assert loaded.mode is Mode.SCATTER_XY
    assert loaded.xy.x_source is sources[0]
    assert loaded.xy.x_channel is Channel.CURRENT
    assert loaded.xy.y_source is transistor
    assert loaded.xy.y_channel is TransistorChannel.I_B
    assert (loaded.x_range, loaded.y_range) == (0.25, 3.0)
    assert len(loaded.buffers[1].colors) == len(TransistorChannel)


def test_modern_unknown_entity_is_skipped(entities, sources):
    scope = ScopeController(width=40, height=20)
    scope.attach(sources[2])
    scope.attach(sources[0])
    line = serialize_modern(scope, entities)

    smaller = EntityTable(sources[:2])
    loaded = parse_modern_record(line, smaller)

    assert loaded.sources == [sources[0]]


def test_modern_non_finite_ranges_keep_defaults(entities, sources):
    scope = ScopeController(width=40, height=20)
    scope.attach(sources[0])
    tokens = serialize_modern(scope, entities).split()
    tokens[6] = "nan"
    tokens[16] = "inf"

    loaded = parse_modern_record(" ".join(tokens), entities)
    assert loaded.ranges[Channel.VOLTAGE] == Channel.VOLTAGE.default_range
    assert loaded.x_range == Channel.VOLTAGE.default_range
    assert loaded.sources == [sources[0]]


def test_unknown_mode_falls_back_to_time_series(entities, sources):
    scope = ScopeController(width=40, height=20)
    line = serialize_modern(scope, entities).replace("VIP_VS_T", "BOGUS")
    assert parse_modern_record(line, entities).mode is Mode.TIME_SERIES


def test_legacy_round_trip_stacked(entities, sources):
    scope = _time_series_scope(entities, sources)

    lines = serialize_legacy(scope, entities, scope_index=0)
    assert len(lines) == 2
    assert all(line.endswith(" 0") for line in lines)

    restored = load_scopes(lines, entities, width=40, height=20)
    assert len(restored) == 1
    loaded = restored[0]
    assert loaded.stacked
    assert loaded.decim_factor == 16
    assert loaded.ranges[Channel.VOLTAGE] == 10.0
    assert loaded.ranges[Channel.CURRENT] == 0.4
    assert [b.shown for b in loaded.buffers] == [b.shown for b in scope.buffers]


def test_legacy_round_trip_xy(entities, sources):
    scope = ScopeController(width=40, height=20, decim_factor=8, mode=Mode.SCATTER_XY)
    scope.attach(sources[3])
    scope.attach(sources[4])
    scope.set_xy_axis("x", sources[3])
    scope.set_xy_axis("y", sources[4])
    scope.set_xy_range("x", 8.0)
    scope.set_xy_range("y", 4.0)

    lines = serialize_legacy(scope, entities)
    assert len(lines) == 1

    loaded = load_scopes(lines, entities)[0]
    assert loaded.mode is Mode.SCATTER_XY
    assert loaded.decim_factor == 8
    assert loaded.xy.x_source is sources[3]
    assert loaded.xy.y_source is sources[4]
    assert loaded.x_range == loaded.y_range == 8.0


def test_dump_and_load_mixed(entities, sources):
    ts = _time_series_scope(entities, sources)
    iv = ScopeController(width=40, height=20, decim_factor=4, mode=Mode.SCATTER_IV)
    iv.attach(sources[2])

    modern = dump_scopes([ts, iv], entities)
    legacy = dump_scopes([iv], entities, legacy=True)
    lines = ["$ 1 0.000005 10 50 5", *legacy, "", *modern, "r 0 0 16 0 100"]

    loaded = load_scopes(lines, entities, width=40, height=20)

    # Modern records first, then the migrated legacy ones
    assert [s.mode for s in loaded] == [
        Mode.TIME_SERIES,
        Mode.SCATTER_IV,
        Mode.SCATTER_IV,
    ]
    assert loaded[2].sources == [sources[2]]
    assert loaded[2].decim_factor == 4


@pytest.mark.parametrize("legacy", [False, True])
def test_dump_empty(entities, legacy):
    assert dump_scopes([], entities, legacy=legacy) == []
