"""
Uptime Telemetry - Incremental Reconciler.

============================================================
PURPOSE
============================================================

Applies one event at a time to an immutable AggregateState:

    reconcile(state, event) -> state'

The resulting state derives the same snapshots and series as
a fresh computation over the equivalent raw data.

============================================================
EVENT HANDLING
============================================================

One reducer per event type, shared by all entity kinds:

- check_result_added  only the windows and bucket containing
                      the timestamp change
- *_created           treated as an update when already known
- *_updated           replaces the entity; creates it when unknown
- *_deleted           removes it; no-op when unknown
- ping                no state effect

Ordering guard:
- An entity update older than the stored version is stale
- An update not newer than a deletion tombstone is stale
- Stale events are discarded (logged at debug level)
- Re-applying an identical event leaves the state unchanged

Incident visibility:
- The active set holds incidents in open/investigating
- Moving to resolved/closed removes the incident from the
  active set exactly once; history keeps it

============================================================
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from functools import cached_property
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Tuple

from .config import TelemetryConfig, get_config
from .engine import AggregationResult, EndpointAggregate, assemble, build_aggregates
from .exceptions import StaleEventError
from .models import (
    CheckResult,
    Endpoint,
    Entity,
    EntityKind,
    EventType,
    Incident,
    StatusSnapshot,
    SystemSnapshot,
    TelemetryEvent,
    TimeSeriesPoint,
    WindowSpec,
)


logger = logging.getLogger(__name__)


# =============================================================
# AGGREGATE STATE
# =============================================================


@dataclass(frozen=True)
class AggregateState:
    """
    Canonical aggregate state of one session.

    Never mutated: every change returns a new state sharing the
    untouched parts. Aggregates are kept for every endpoint id
    that produced checks, known or not; views only show known
    endpoints.
    """
    window: WindowSpec
    endpoints: Dict[str, Endpoint] = field(default_factory=dict)
    incidents: Dict[str, Incident] = field(default_factory=dict)
    active_incident_ids: FrozenSet[str] = frozenset()
    aggregates: Dict[str, EndpointAggregate] = field(default_factory=dict)
    tombstones: Dict[Tuple[EntityKind, str], Optional[datetime]] = field(default_factory=dict)
    revision: int = 0
    last_event_at: Optional[datetime] = None
    config: TelemetryConfig = field(default_factory=get_config, compare=False, repr=False)

    # ---------------------------------------------------------
    # Derived views
    # ---------------------------------------------------------

    @cached_property
    def result(self) -> AggregationResult:
        """Published views, derived once per state."""
        return assemble(
            self.endpoints.values(),
            self.aggregates,
            self.incidents.values(),
            self.window,
            self.config,
        )

    def snapshots(self) -> List[StatusSnapshot]:
        return list(self.result.snapshots)

    def series(self) -> List[TimeSeriesPoint]:
        return list(self.result.series)

    def system(self) -> SystemSnapshot:
        return self.result.system

    @property
    def active_incident_count(self) -> int:
        return len(self.active_incident_ids)

    def active_incidents(self) -> List[Incident]:
        return [self.incidents[i] for i in sorted(self.active_incident_ids)]

    def get_entity(self, kind: EntityKind, entity_id: str) -> Optional[Entity]:
        if kind == EntityKind.ENDPOINT:
            return self.endpoints.get(entity_id)
        if kind == EntityKind.INCIDENT:
            return self.incidents.get(entity_id)
        return None

    def to_dict(self) -> Dict:
        return {
            "revision": self.revision,
            "window_now": self.window.now.isoformat(),
            "endpoints": len(self.endpoints),
            "incidents": len(self.incidents),
            "active_incidents": self.active_incident_count,
            "last_event_at": self.last_event_at.isoformat() if self.last_event_at else None,
        }


def initial_state(window: WindowSpec, config: Optional[TelemetryConfig] = None) -> AggregateState:
    """Empty state for a window."""
    return AggregateState(window=window, config=config or get_config())


def state_from_bulk(
    endpoints: Iterable[Endpoint],
    checks: Iterable[CheckResult],
    incidents: Iterable[Incident],
    window: WindowSpec,
    config: Optional[TelemetryConfig] = None,
) -> AggregateState:
    """Full replacement state built from a bulk fetch."""
    config = config or get_config()
    incidents_by_id = {i.id: i for i in incidents}
    return AggregateState(
        window=window,
        endpoints={e.id: e for e in endpoints},
        incidents=incidents_by_id,
        active_incident_ids=frozenset(i.id for i in incidents_by_id.values() if i.is_active),
        aggregates=build_aggregates(None, checks, window, config.windows),
        config=config,
    )


# =============================================================
# COPY-ON-WRITE HELPERS
# =============================================================


def _later(left: Optional[datetime], right: Optional[datetime]) -> Optional[datetime]:
    if left is None:
        return right
    if right is None:
        return left
    return max(left, right)


def _with_entity(
    state: AggregateState,
    kind: EntityKind,
    entity_id: str,
    entity: Optional[Entity],
) -> AggregateState:
    """Store (or with None, remove) one endpoint/incident."""
    if kind == EntityKind.ENDPOINT:
        endpoints = dict(state.endpoints)
        if entity is None:
            endpoints.pop(entity_id, None)
        else:
            endpoints[entity_id] = entity
        return replace(state, endpoints=endpoints, revision=state.revision + 1)

    incidents = dict(state.incidents)
    active = set(state.active_incident_ids)
    if entity is None:
        incidents.pop(entity_id, None)
        active.discard(entity_id)
    else:
        incidents[entity_id] = entity
        if entity.is_active:
            active.add(entity_id)
        else:
            active.discard(entity_id)

    return replace(
        state,
        incidents=incidents,
        active_incident_ids=frozenset(active),
        revision=state.revision + 1,
    )


def _guard_version(kind: EntityKind, entity_id: str, incoming: Entity, state: AggregateState) -> None:
    """Raise StaleEventError when `incoming` is older than what was applied."""
    version = incoming.version
    if version is None:
        return

    current = state.get_entity(kind, entity_id)
    if current is not None and current.version is not None and version < current.version:
        raise StaleEventError(kind.value, entity_id, version, current.version)

    key = (kind, entity_id)
    if key in state.tombstones:
        tombstone = state.tombstones[key]
        if tombstone is not None and version <= tombstone:
            raise StaleEventError(kind.value, entity_id, version, tombstone)


# =============================================================
# REDUCERS
# =============================================================


def _add_check(state: AggregateState, event: TelemetryEvent) -> AggregateState:
    check = event.entity
    if not isinstance(check, CheckResult):
        logger.warning(f"Ignoring {event.event_type.value} without a check result")
        return state

    current = state.aggregates.get(check.endpoint_id)
    if current is None:
        current = EndpointAggregate.empty(check.endpoint_id, state.window, state.config.windows)

    updated = current.with_check(check, state.window, state.config.windows)
    if updated is current:
        return state

    aggregates = dict(state.aggregates)
    aggregates[check.endpoint_id] = updated
    return replace(
        state,
        aggregates=aggregates,
        revision=state.revision + 1,
        last_event_at=_later(state.last_event_at, check.timestamp),
    )


def _upsert(state: AggregateState, event: TelemetryEvent) -> AggregateState:
    kind = event.kind
    entity = event.entity
    if entity is None:
        logger.warning(f"Ignoring {event.event_type.value} without an entity")
        return state

    entity_id = entity.id
    _guard_version(kind, entity_id, entity, state)

    key = (kind, entity_id)
    if state.get_entity(kind, entity_id) == entity and key not in state.tombstones:
        return state

    new_state = _with_entity(state, kind, entity_id, entity)
    if key in new_state.tombstones:
        tombstones = dict(new_state.tombstones)
        del tombstones[key]
        new_state = replace(new_state, tombstones=tombstones)

    return replace(new_state, last_event_at=_later(state.last_event_at, entity.version))


def _delete(state: AggregateState, event: TelemetryEvent) -> AggregateState:
    kind = event.kind
    entity_id = event.entity.id if event.entity is not None else event.entity_id
    current = state.get_entity(kind, entity_id) if entity_id else None
    if current is None:
        logger.debug(f"Delete of unknown {kind.value} '{entity_id}' ignored")
        return state

    if event.entity is not None:
        _guard_version(kind, entity_id, event.entity, state)

    tombstone = _later(current.version, event.version)
    tombstones = dict(state.tombstones)
    tombstones[(kind, entity_id)] = tombstone

    new_state = _with_entity(state, kind, entity_id, None)
    return replace(
        new_state,
        tombstones=tombstones,
        last_event_at=_later(state.last_event_at, event.version),
    )


def _ignore(state: AggregateState, event: TelemetryEvent) -> AggregateState:
    return state


Reducer = Callable[[AggregateState, TelemetryEvent], AggregateState]

REDUCERS: Dict[EventType, Reducer] = {
    EventType.CHECK_RESULT_ADDED: _add_check,
    EventType.ENDPOINT_CREATED: _upsert,
    EventType.ENDPOINT_UPDATED: _upsert,
    EventType.ENDPOINT_DELETED: _delete,
    EventType.INCIDENT_CREATED: _upsert,
    EventType.INCIDENT_UPDATED: _upsert,
    EventType.INCIDENT_DELETED: _delete,
    EventType.PING: _ignore,
}


# =============================================================
# EXPOSED OPERATIONS
# =============================================================


def reconcile(state: AggregateState, event: TelemetryEvent) -> AggregateState:
    """
    Apply one event.

    Args:
        state: Current state (not modified)
        event: Decoded event

    Returns:
        The new state, or `state` itself when the event had no effect
    """
    reducer = REDUCERS[event.event_type]
    try:
        return reducer(state, event)
    except StaleEventError as e:
        logger.debug(f"Discarded stale event: {e}")
        return state


def reconcile_all(state: AggregateState, events: Iterable[TelemetryEvent]) -> AggregateState:
    """Apply events strictly in order."""
    for event in events:
        state = reconcile(state, event)
    return state


def advance(state: AggregateState, now: datetime) -> AggregateState:
    """
    Re-anchor the state at a later `now`.

    Rebuilds every aggregate from its retained checks; checks
    older than retention are dropped.
    """
    window = state.window.advanced_to(now)
    if window == state.window:
        return state

    aggregates = {
        endpoint_id: aggregate.rebuilt(window, state.config.windows)
        for endpoint_id, aggregate in state.aggregates.items()
    }
    logger.debug(f"Advanced window to {window.now.isoformat()}")
    return replace(state, window=window, aggregates=aggregates, revision=state.revision + 1)


def restore(
    state: AggregateState,
    kind: EntityKind,
    entity_id: str,
    entity: Optional[Entity],
) -> AggregateState:
    """Put back a previous entity (None removes it), bypassing version guards."""
    new_state = _with_entity(state, kind, entity_id, entity)
    if (kind, entity_id) in new_state.tombstones:
        tombstones = dict(new_state.tombstones)
        del tombstones[(kind, entity_id)]
        new_state = replace(new_state, tombstones=tombstones)
    return new_state
