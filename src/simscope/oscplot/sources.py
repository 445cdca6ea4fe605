from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Tuple, Union

from loguru import logger


class Channel(Enum):
    """Physical quantity sampled from a standard entity."""

    VOLTAGE = 0
    CURRENT = 1
    POWER = 2

    @property
    def unit(self) -> str:
        return _CHANNEL_UNITS[self.value]

    @property
    def default_range(self) -> float:
        """Default full-span display range."""
        return _DEFAULT_RANGES[self.value]

    @property
    def range_channel(self) -> "Channel":
        return self


class TransistorChannel(Enum):
    """Physical quantity sampled from a transistor-type entity."""

    V_BE = 0
    V_BC = 1
    V_CE = 2
    I_B = 3
    I_C = 4
    I_E = 5
    POWER = 6

    @property
    def unit(self) -> str:
        return _TRANSISTOR_UNITS[self.value]

    @property
    def range_channel(self) -> Channel:
        # Voltages share the VOLTAGE range, currents CURRENT, power POWER
        return Channel(self.value // 3)

    @property
    def default_range(self) -> float:
        return self.range_channel.default_range


AnyChannel = Union[Channel, TransistorChannel]

_CHANNEL_UNITS = ("V", "A", "W")
_TRANSISTOR_UNITS = ("V", "V", "V", "A", "A", "A", "W")
_DEFAULT_RANGES = (5.0, 0.1, 0.5)


class SourceKind(Enum):
    STANDARD = "standard"
    TRANSISTOR = "transistor"


class SampleSource:
    """
    A monitored entity exposing the instantaneous value of its channels.

    The channel set is fixed by the concrete subclass. Values are either read
    from a mapping that the simulation updates once per step, or from a reader
    callable. The scope side never writes to a source.
    """

    kind: SourceKind = SourceKind.STANDARD
    channels: Tuple[AnyChannel, ...] = ()

    def __init__(
        self,
        name: str,
        values: Optional[Mapping[AnyChannel, float]] = None,
        reader: Optional[Callable[[AnyChannel], float]] = None,
    ):
        """
        Initialise the source.

        Parameters
        ----------
        name : str
            Human-readable entity name (e.g. "resistor").
        values : Optional[Mapping[AnyChannel, float]], default=None
            Initial channel values. Missing channels read as 0.
        reader : Optional[Callable[[AnyChannel], float]], default=None
            Callable returning the current value of a channel. Takes
            precedence over stored values.
        """
        self.name = name
        self._reader = reader
        self._values: Dict[AnyChannel, float] = {ch: 0.0 for ch in self.channels}
        if values is not None:
            self.update(values)

    @property
    def is_transistor(self) -> bool:
        return self.kind is SourceKind.TRANSISTOR

    def _check_channel(self, channel: AnyChannel) -> None:
        if channel not in self.channels:
            raise ValueError(
                f"Channel {channel} is not available on {self.kind.value} source '{self.name}'"
            )

    def update(self, values: Mapping[AnyChannel, float]) -> None:
        """Store new channel values (called by the simulation, not the scope)."""
        for channel, value in values.items():
            self._check_channel(channel)
            self._values[channel] = float(value)

    def value(self, channel: AnyChannel) -> float:
        """Return the instantaneous value of ``channel``."""
        self._check_channel(channel)
        if self._reader is not None:
            return float(self._reader(channel))
        return self._values[channel]

    def values(self) -> List[float]:
        """Current values of all channels, in channel order."""
        return [self.value(ch) for ch in self.channels]

    def parse_channel(self, name: str) -> AnyChannel:
        """Look up a channel of this source by enum name."""
        for channel in self.channels:
            if channel.name == name:
                return channel
        raise ValueError(f"Unknown channel '{name}' for {self.kind.value} source")

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class StandardSource(SampleSource):
    kind = SourceKind.STANDARD
    channels = tuple(Channel)

    # Plain two-terminal entities report P = V * I unless told otherwise
    def update(self, values: Mapping[AnyChannel, float]) -> None:
        super().update(values)
        if Channel.POWER not in values and (
            Channel.VOLTAGE in values or Channel.CURRENT in values
        ):
            self._values[Channel.POWER] = (
                self._values[Channel.VOLTAGE] * self._values[Channel.CURRENT]
            )


class TransistorSource(SampleSource):
    kind = SourceKind.TRANSISTOR
    channels = tuple(TransistorChannel)


class EntityTable:
    """
    Index-addressable collection of the simulation's monitored entities.

    Save records refer to entities by their position in this table.
    """

    def __init__(self, sources: Optional[List[SampleSource]] = None):
        self._sources: List[SampleSource] = list(sources) if sources else []

    def add(self, source: SampleSource) -> int:
        self._sources.append(source)
        return len(self._sources) - 1

    def get(self, index: int) -> Optional[SampleSource]:
        """Return the entity at ``index`` or None if there is none."""
        if 0 <= index < len(self._sources):
            return self._sources[index]
        logger.debug(f"No entity at index {index} ({len(self._sources)} entities)")
        return None

    def locate(self, source: SampleSource) -> int:
        """Return the index of ``source`` or -1."""
        for i, candidate in enumerate(self._sources):
            if candidate is source:
                return i
        return -1

    def __len__(self) -> int:
        return len(self._sources)

    def __iter__(self):
        return iter(self._sources)
