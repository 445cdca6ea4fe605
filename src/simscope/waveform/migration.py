"""
Rebuild multi-entity scopes from single-entity legacy scope records.

Legacy save files hold one record per monitored entity. Records are grouped
into clusters, and each cluster becomes one ScopeController.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from loguru import logger

from simscope.oscplot.scope import Mode, ScopeController, default_xy_channel
from simscope.oscplot.sources import Channel, EntityTable, SampleSource


@dataclass
class LegacyScopeRecord:
    """One parsed legacy scope line."""

    entity_ref: int
    decim_factor: int = ScopeController.DEFAULT_DECIM_FACTOR
    voltage_range: float = 1.0
    current_range: float = 2.0
    position: int = -1
    show_current: bool = False
    show_voltage: bool = True
    show_peak: bool = True
    show_negative_peak: bool = False
    show_frequency: bool = False
    plot_2d: bool = False
    plot_xy: bool = False
    peer_entity_ref: int = -1
    annotation_text: Optional[str] = None

    @property
    def show_flags(self) -> int:
        return (2 if self.show_voltage else 0) | (1 if self.show_current else 0)

    @property
    def bucket_key(self) -> Tuple[int, bool, bool]:
        return self.decim_factor, self.plot_2d, self.plot_xy


@dataclass
class _Cluster:
    records: List[LegacyScopeRecord]
    stacked: bool = False


class LegacyScopeMigrator:
    """
    Groups legacy records into clusters and materializes one scope per cluster.

    Clustering runs in three passes over the records not yet placed:

    1. records sharing a ``position`` with at least one other record form a
       stacked cluster, in order of the position's first appearance;
    2. every remaining X/Y record becomes a cluster of its own;
    3. the rest are bucketed by ``(decim_factor, plot_2d, plot_xy)``.
    """

    def __init__(self, entities: EntityTable, **controller_kwargs):
        """
        Parameters
        ----------
        entities : EntityTable
            Resolves the records' entity indices.
        **controller_kwargs
            Passed to every ScopeController created (size, tick period, ...).
        """
        self.entities = entities
        self.controller_kwargs = controller_kwargs

    def _resolvable(self, record: LegacyScopeRecord) -> bool:
        if self.entities.get(record.entity_ref) is None:
            logger.debug(f"Dropping legacy record for unknown entity {record.entity_ref}")
            return False
        return True

    def _drop_unknown_peers(self, cluster: _Cluster) -> Optional[_Cluster]:
        """
        Remove X/Y records whose peer is unknown from clusters that plot X/Y.

        A cluster plots X/Y when its first kept record does. Returns None if
        nothing is left.
        """
        kept: List[LegacyScopeRecord] = []
        for record in cluster.records:
            plots_xy = (kept[0] if kept else record).plot_xy
            if (
                plots_xy
                and record.plot_xy
                and self.entities.get(record.peer_entity_ref) is None
            ):
                logger.debug(
                    f"Dropping X/Y legacy record {record.entity_ref}: unknown peer {record.peer_entity_ref}"
                )
                continue
            kept.append(record)
        return _Cluster(kept, cluster.stacked) if kept else None

    def cluster(self, records: Sequence[LegacyScopeRecord]) -> List[_Cluster]:
        """Partition the resolvable records into clusters, in creation order."""
        valid = [r for r in records if self._resolvable(r)]
        placed = set()
        clusters: List[_Cluster] = []

        by_position: Dict[int, List[int]] = {}
        for i, record in enumerate(valid):
            if record.position != -1:
                by_position.setdefault(record.position, []).append(i)
        for members in by_position.values():
            if len(members) > 1:
                clusters.append(_Cluster([valid[i] for i in members], stacked=True))
                placed.update(members)

        for i, record in enumerate(valid):
            if i not in placed and record.plot_xy:
                clusters.append(_Cluster([record]))
                placed.add(i)

        buckets: Dict[Tuple[int, bool, bool], List[LegacyScopeRecord]] = {}
        for i, record in enumerate(valid):
            if i not in placed:
                buckets.setdefault(record.bucket_key, []).append(record)
        clusters.extend(_Cluster(members) for members in buckets.values())
        clusters = [
            c for c in map(self._drop_unknown_peers, clusters) if c is not None
        ]

        logger.debug(
            f"Clustered {len(valid)} of {len(records)} legacy records into {len(clusters)} scopes"
        )
        return clusters

    def _materialize(self, cluster: _Cluster) -> ScopeController:
        first = cluster.records[0]
        if first.plot_xy:
            mode = Mode.SCATTER_XY
        elif first.plot_2d:
            mode = Mode.SCATTER_IV
        else:
            mode = Mode.TIME_SERIES

        scope = ScopeController(
            decim_factor=max(1, first.decim_factor), mode=mode, **self.controller_kwargs
        )
        scope.display.stacked = cluster.stacked and mode is Mode.TIME_SERIES
        scope.display.show_peak = first.show_peak
        scope.display.show_negative_peak = first.show_negative_peak
        scope.display.show_frequency = first.show_frequency
        scope.ranges[Channel.VOLTAGE] = first.voltage_range
        scope.ranges[Channel.CURRENT] = first.current_range

        for record in cluster.records[1:]:
            scope.ranges[Channel.VOLTAGE] = max(
                scope.ranges[Channel.VOLTAGE], record.voltage_range
            )
            scope.ranges[Channel.CURRENT] = max(
                scope.ranges[Channel.CURRENT], record.current_range
            )

        for record in cluster.records:
            source = self.entities.get(record.entity_ref)
            scope.attach(source, show_flags=record.show_flags)
            if mode is Mode.SCATTER_XY and record.plot_xy:
                self._attach_peer(scope, record, source)

        scope.reset()
        return scope

    def _attach_peer(
        self, scope: ScopeController, record: LegacyScopeRecord, source: SampleSource
    ) -> None:
        peer = self.entities.get(record.peer_entity_ref)
        scope.attach(peer)
        scope.set_xy_axis("x", source, default_xy_channel(source))
        scope.set_xy_axis("y", peer, default_xy_channel(peer))
        axis_range = max(record.voltage_range, record.current_range)
        scope.x_range = axis_range
        scope.y_range = axis_range

    def migrate(self, records: Sequence[LegacyScopeRecord]) -> List[ScopeController]:
        """
        Build the modern scopes described by ``records``.

        Returns
        -------
        List[ScopeController]
            One controller per cluster, in cluster creation order.
        """
        scopes = [self._materialize(c) for c in self.cluster(records)]
        logger.info(f"Migrated {len(records)} legacy records into {len(scopes)} scopes")
        return scopes


def migrate(
    records: Sequence[LegacyScopeRecord], entities: EntityTable, **controller_kwargs
) -> List[ScopeController]:
    """Convenience wrapper around :meth:`LegacyScopeMigrator.migrate`."""
    return LegacyScopeMigrator(entities, **controller_kwargs).migrate(records)
