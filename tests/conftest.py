import matplotlib

matplotlib.use("Agg")

import pytest  # noqa: E402

from simscope.oscplot.sources import (  # noqa: E402
    EntityTable,
    StandardSource,
    TransistorSource,
)


@pytest.fixture
def sources():
    """Five standard entities named e0..e4."""
    return [StandardSource(f"e{i}") for i in range(5)]


@pytest.fixture
def entities(sources):
    return EntityTable(sources)


@pytest.fixture
def transistor():
    return TransistorSource("q1")
