import math
from typing import Iterable, List, Optional, Sequence

from loguru import logger

from simscope.oscplot.scope import Mode, ScopeController
from simscope.oscplot.sources import (
    AnyChannel,
    Channel,
    EntityTable,
    SampleSource,
    TransistorChannel,
)
from simscope.waveform.migration import LegacyScopeRecord, migrate

LEGACY_TAG = "o"
MODERN_TAG = "o2"

# Legacy flag bits
LEGACY_SHOW_CURRENT = 1
LEGACY_SHOW_VOLTAGE = 2
LEGACY_SUPPRESS_PEAK = 4
LEGACY_SHOW_FREQUENCY = 8
LEGACY_EXTENSION = 32
LEGACY_PLOT_2D = 64
LEGACY_PLOT_XY = 128
LEGACY_SHOW_NEGATIVE_PEAK = 256


def argb_to_signed(argb: int) -> int:
    """Store an ARGB colour as a signed 32-bit integer."""
    argb &= 0xFFFFFFFF
    return argb - (1 << 32) if argb & 0x80000000 else argb


def signed_to_argb(value: int) -> int:
    return value & 0xFFFFFFFF


class _TokenReader:
    """
    Sequential reader over the whitespace-separated tokens of one record.

    Malformed or missing numeric tokens are logged and replaced by the
    caller's default so that one bad field does not lose the whole record.
    """

    def __init__(self, line: str):
        self.line = line.strip()
        self.tokens = self.line.split()
        self.pos = 0

    def has_more(self) -> bool:
        return self.pos < len(self.tokens)

    def next_token(self, default: Optional[str] = None) -> Optional[str]:
        if not self.has_more():
            logger.warning(f"Record ended early at token {self.pos}: '{self.line}'")
            return default
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def _next_number(self, convert, default, kind: str):
        token = self.next_token()
        if token is None:
            return default
        try:
            return convert(token)
        except ValueError:
            logger.warning(
                f"Malformed {kind} '{token}' at token {self.pos - 1}, using {default}: '{self.line}'"
            )
            return default

    def next_int(self, default: int = 0) -> int:
        return self._next_number(int, default, "integer")

    def next_float(self, default: float = 0.0) -> float:
        value = self._next_number(float, default, "number")
        if not math.isfinite(value):
            logger.warning(
                f"Non-finite number at token {self.pos - 1}, using {default}: '{self.line}'"
            )
            return default
        return value

    def skip(self, count: int) -> None:
        self.pos = min(self.pos + count, len(self.tokens))

    def rest(self) -> List[str]:
        rest = self.tokens[self.pos :]
        self.pos = len(self.tokens)
        return rest


def _strip_tag(reader: _TokenReader, tag: str) -> None:
    if reader.has_more() and reader.tokens[0] == tag:
        reader.pos = 1


# ----------------------------------------------------------------------
# Legacy records
# ----------------------------------------------------------------------


def parse_legacy_record(line: str) -> Optional[LegacyScopeRecord]:
    """
    Parse one legacy scope line (with or without the leading ``o``).

    The line holds ``entity decim <skipped> flags v/2 i/2`` optionally
    followed by a position and, when the extension bit is set, the X/Y peer
    and an annotation.

    Returns
    -------
    Optional[LegacyScopeRecord]
        The record, or None for lines that reference no entity (index -1).
    """
    reader = _TokenReader(line)
    _strip_tag(reader, LEGACY_TAG)

    entity_ref = reader.next_int(-1)
    decim_factor = reader.next_int(ScopeController.DEFAULT_DECIM_FACTOR)
    reader.skip(1)
    flags = reader.next_int(0)

    # Ranges are stored halved
    voltage_range = 2 * reader.next_float(0.0)
    if voltage_range == 0:
        voltage_range = 1.0
    current_range = 2 * reader.next_float(0.0)
    if current_range == 0:
        current_range = 2.0

    position = -1
    peer_entity_ref = -1
    annotation = None
    if reader.has_more():
        position = reader.next_int(-1)
    if flags & LEGACY_EXTENSION and reader.has_more():
        peer_entity_ref = reader.next_int(-1)
        words = reader.rest()
        annotation = " ".join(words) if words else None

    if entity_ref == -1:
        logger.debug(f"Ignoring legacy record without entity: '{reader.line}'")
        return None

    return LegacyScopeRecord(
        entity_ref=entity_ref,
        decim_factor=decim_factor,
        voltage_range=voltage_range,
        current_range=current_range,
        position=position,
        show_current=bool(flags & LEGACY_SHOW_CURRENT),
        show_voltage=bool(flags & LEGACY_SHOW_VOLTAGE),
        show_peak=not (flags & LEGACY_SUPPRESS_PEAK),
        show_negative_peak=bool(flags & LEGACY_SHOW_NEGATIVE_PEAK),
        show_frequency=bool(flags & LEGACY_SHOW_FREQUENCY),
        plot_2d=bool(flags & LEGACY_PLOT_2D),
        plot_xy=bool(flags & LEGACY_PLOT_XY),
        peer_entity_ref=peer_entity_ref,
        annotation_text=annotation,
    )


def _legacy_common_flags(scope: ScopeController) -> int:
    flags = LEGACY_EXTENSION
    flags |= 0 if scope.display.show_peak else LEGACY_SUPPRESS_PEAK
    flags |= LEGACY_SHOW_FREQUENCY if scope.display.show_frequency else 0
    flags |= LEGACY_SHOW_NEGATIVE_PEAK if scope.display.show_negative_peak else 0
    return flags


def serialize_legacy(
    scope: ScopeController, entities: EntityTable, scope_index: int = 0
) -> List[str]:
    """
    Write ``scope`` as legacy lines, one per entity (one line for X/Y).

    Stacked time-series scopes carry ``scope_index`` as their position so the
    entities are grouped together again on load.
    """
    flags = _legacy_common_flags(scope)

    if scope.mode is Mode.SCATTER_XY:
        x_ref = entities.locate(scope.xy.x_source) if scope.xy.x_source else -1
        y_ref = entities.locate(scope.xy.y_source) if scope.xy.y_source else -1
        flags |= (
            LEGACY_SHOW_CURRENT | LEGACY_SHOW_VOLTAGE | LEGACY_PLOT_2D | LEGACY_PLOT_XY
        )
        half = max(scope.x_range, scope.y_range) / 2
        return [
            f"{LEGACY_TAG} {x_ref} {scope.decim_factor} 0 {flags} {half!r} {half!r} -1 {y_ref}"
        ]

    if scope.mode is Mode.SCATTER_IV:
        flags |= LEGACY_PLOT_2D

    lines = []
    for buffer in scope.buffers:
        show = buffer.show_flags()
        line_flags = flags | (show & (LEGACY_SHOW_CURRENT | LEGACY_SHOW_VOLTAGE))
        line = (
            f"{LEGACY_TAG} {entities.locate(buffer.source)} {scope.decim_factor} 0 "
            f"{line_flags} {scope.ranges[Channel.VOLTAGE] / 2!r} "
            f"{scope.ranges[Channel.CURRENT] / 2!r}"
        )
        if scope.stacked and scope.mode is Mode.TIME_SERIES:
            line += f" {scope_index}"
        lines.append(line)
    return lines


# ----------------------------------------------------------------------
# Modern records
# ----------------------------------------------------------------------


def _read_axis_channel(
    reader: _TokenReader, source: Optional[SampleSource]
) -> Optional[AnyChannel]:
    value = reader.next_int(-1)
    tvalue = reader.next_int(-1)
    if source is None:
        return None
    try:
        if source.is_transistor and tvalue != -1:
            return TransistorChannel(tvalue)
        if not source.is_transistor and value != -1:
            return Channel(value)
    except ValueError:
        logger.warning(f"Unknown channel ordinal for {source!r}: {value}/{tvalue}")
    return None


def _write_axis(
    entities: EntityTable,
    source: Optional[SampleSource],
    channel: Optional[AnyChannel],
) -> str:
    ref = entities.locate(source) if source is not None else -1
    value = channel.value if isinstance(channel, Channel) else -1
    tvalue = channel.value if isinstance(channel, TransistorChannel) else -1
    return f"{ref} {value} {tvalue}"


def parse_modern_record(
    line: str, entities: EntityTable, **controller_kwargs
) -> ScopeController:
    """
    Build a ScopeController from one ``o2`` record.

    Per-entity sub-records whose entity is unknown (or cannot be attached)
    are skipped.
    """
    reader = _TokenReader(line)
    _strip_tag(reader, MODERN_TAG)

    geometry = tuple(reader.next_int(0) for _ in range(4))
    decim_factor = reader.next_int(ScopeController.DEFAULT_DECIM_FACTOR)
    ranges = {ch: reader.next_float(ch.default_range) for ch in Channel}
    flags = reader.next_int(0)

    x_ref = reader.next_int(-1)
    x_source = entities.get(x_ref) if x_ref != -1 else None
    x_channel = _read_axis_channel(reader, x_source)
    y_ref = reader.next_int(-1)
    y_source = entities.get(y_ref) if y_ref != -1 else None
    y_channel = _read_axis_channel(reader, y_source)
    x_range = reader.next_float(Channel.VOLTAGE.default_range)
    y_range = reader.next_float(Channel.VOLTAGE.default_range)

    mode_name = reader.next_token(Mode.TIME_SERIES.value)
    try:
        mode = Mode(mode_name)
    except ValueError:
        logger.warning(f"Unknown scope mode '{mode_name}', using {Mode.TIME_SERIES.value}")
        mode = Mode.TIME_SERIES

    scope = ScopeController(
        decim_factor=max(1, decim_factor), mode=mode, **controller_kwargs
    )
    scope.geometry = geometry
    scope.display.apply_flags(flags)
    for channel, value in ranges.items():
        if value > 0:
            scope.ranges[channel] = value
    if x_range > 0:
        scope.x_range = x_range
    if y_range > 0:
        scope.y_range = y_range

    while reader.has_more():
        ref = reader.next_int(-1)
        source = entities.get(ref)
        if source is None or not scope.attach(source):
            n_colors = len(Channel) if source is None else len(source.channels)
            reader.skip(1 + n_colors + 1)
            continue
        buffer = scope.buffer_for(source)
        elm_flags = reader.next_int(1)
        buffer.enabled = bool(elm_flags & 1)
        buffer.shown = {
            ch for ch in buffer.channels if elm_flags & (1 << (ch.value + 1))
        }
        for ch in buffer.channels:
            color = reader.next_int(argb_to_signed(buffer.colors[ch]))
            buffer.colors[ch] = signed_to_argb(color)
        buffer.color = signed_to_argb(reader.next_int(argb_to_signed(buffer.color)))

    # Axes refer to attached entities only
    for axis, source, channel in (("x", x_source, x_channel), ("y", y_source, y_channel)):
        if channel is not None and scope.buffer_for(source) is not None:
            scope.xy.set_axis(axis, source, channel)

    scope.reset()
    logger.debug(f"Loaded {scope!r} from modern record")
    return scope


def serialize_modern(scope: ScopeController, entities: EntityTable) -> str:
    """Write ``scope`` as one ``o2`` record."""
    parts = [MODERN_TAG]
    parts.extend(str(v) for v in scope.geometry)
    parts.append(str(scope.decim_factor))
    parts.extend(repr(scope.ranges[ch]) for ch in Channel)
    parts.append(str(scope.display.to_flags()))
    parts.append(_write_axis(entities, scope.xy.x_source, scope.xy.x_channel))
    parts.append(_write_axis(entities, scope.xy.y_source, scope.xy.y_channel))
    parts.append(f"{scope.x_range!r} {scope.y_range!r}")
    parts.append(scope.mode.value)

    for buffer in scope.buffers:
        elm_flags = 1 if buffer.enabled else 0
        for ch in buffer.shown:
            elm_flags |= 1 << (ch.value + 1)
        parts.append(str(entities.locate(buffer.source)))
        parts.append(str(elm_flags))
        parts.extend(str(argb_to_signed(buffer.colors[ch])) for ch in buffer.channels)
        parts.append(str(argb_to_signed(buffer.color)))
    return " ".join(parts)


# ----------------------------------------------------------------------
# Whole files
# ----------------------------------------------------------------------


def load_scopes(
    lines: Iterable[str], entities: EntityTable, **controller_kwargs
) -> List[ScopeController]:
    """
    Build scopes from the scope lines of a save file.

    Modern records become scopes in file order; legacy records are collected
    and migrated afterwards. Lines of other kinds are ignored.
    """
    scopes: List[ScopeController] = []
    legacy: List[LegacyScopeRecord] = []
    for line in lines:
        tokens = line.split(maxsplit=1)
        if not tokens:
            continue
        if tokens[0] == MODERN_TAG:
            scopes.append(parse_modern_record(line, entities, **controller_kwargs))
        elif tokens[0] == LEGACY_TAG:
            record = parse_legacy_record(line)
            if record is not None:
                legacy.append(record)

    if legacy:
        scopes.extend(migrate(legacy, entities, **controller_kwargs))
    logger.info(f"Loaded {len(scopes)} scopes ({len(legacy)} legacy records)")
    return scopes


def dump_scopes(
    scopes: Sequence[ScopeController], entities: EntityTable, legacy: bool = False
) -> List[str]:
    """Serialize ``scopes`` as modern records, or as legacy lines."""
    if not legacy:
        return [serialize_modern(scope, entities) for scope in scopes]
    lines = []
    for index, scope in enumerate(scopes):
        lines.extend(serialize_legacy(scope, entities, index))
    return lines
