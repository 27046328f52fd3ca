"""
Uptime Telemetry - Session.

============================================================
SINGLE RECONCILIATION LOOP
============================================================

One session per push-channel connection:
- Owns the canonical AggregateState exclusively
- Applies events strictly in arrival order
- Publishes every new state to subscribers (one subscription
  point for every screen)

============================================================
RECOVERY
============================================================

- Malformed or unknown message: logged, discarded, refresh
  requested (the compensating action)
- Bulk refresh: atomic full replacement of state, discarded
  when superseded by a later request or when a live event
  newer than the fetch was already applied

============================================================
CLOCK
============================================================

A session built without a fixed window follows its clock: the
window is re-anchored before every event, load and read, at the
first anchor tick after both the clock and the newest check
timestamp. Checks therefore always land inside the window.

============================================================
OPTIMISTIC UPDATES
============================================================

Two-phase:
1. apply_optimistic() applies locally and remembers the prior
   entity. The local copy keeps the prior version, so the
   authoritative event always supersedes it.
2. The authoritative event confirms it; reject_optimistic()
   rolls back to the remembered entity.

============================================================
"""

import logging
import threading
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .bucketing import anchor_after, window_for_range
from .config import TelemetryConfig, get_config
from .exceptions import MalformedEventError, StaleRefreshError, UnknownEventTypeError
from .ingestor import BulkPayload, decode_frame, parse_message
from .models import CheckResult, Entity, EntityKind, TelemetryEvent, WindowSpec
from .reconciler import AggregateState, advance, initial_state, reconcile, restore, state_from_bulk


logger = logging.getLogger(__name__)


# =============================================================
# CALLBACK TYPES
# =============================================================

StateCallback = Callable[[AggregateState], None]
RefreshCallback = Callable[[int], None]
Clock = Callable[[], datetime]

DEFAULT_ANCHOR_RESOLUTION = timedelta(minutes=1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _entity_id(event: TelemetryEvent) -> Optional[str]:
    return event.entity.id if event.entity is not None else event.entity_id


# =============================================================
# SESSION
# =============================================================


class TelemetrySession:
    """
    Owner of the aggregate state for one event stream.

    ============================================================
    USAGE
    ============================================================

    ```python
    session = TelemetrySession(on_refresh_needed=schedule_fetch)
    session.load(parse_bulk(initial_document))

    unsubscribe = session.subscribe(render)

    # Push channel
    session.handle_message("status_update", data)

    # Recovery refresh
    seq = session.request_refresh()
    session.complete_refresh(seq, parse_bulk(document))
    ```

    ============================================================
    """

    def __init__(
        self,
        window: Optional[WindowSpec] = None,
        config: Optional[TelemetryConfig] = None,
        on_refresh_needed: Optional[RefreshCallback] = None,
        clock: Optional[Clock] = None,
        anchor_resolution: timedelta = DEFAULT_ANCHOR_RESOLUTION,
    ) -> None:
        """
        Initialize session.

        Args:
            window: Requested window (default range anchored at the clock)
            config: Telemetry configuration
            on_refresh_needed: Called with the sequence number of
                every requested bulk refresh
            clock: Source of the current instant. Defaults to the
                system clock unless a fixed window is given, in which
                case the window never moves on its own.
            anchor_resolution: Granularity of window re-anchoring
        """
        self._config = config or get_config()
        self._anchor_resolution = anchor_resolution
        if clock is None and window is None:
            clock = utc_now
        self._clock = clock

        if window is None:
            window = window_for_range(
                self._anchor(),
                self._config.default_range_hours,
                self._config.windows.hourly_max_hours,
            )

        self._state = initial_state(window, self._config)
        self._lock = threading.RLock()

        self._subscribers: List[StateCallback] = []
        self._on_refresh_needed = on_refresh_needed

        # Refresh tracking
        self._refresh_seq = 0
        self._refresh_requested_at: Dict[int, datetime] = {}

        # Optimistic updates awaiting confirmation: prior entity per key
        self._optimistic: Dict[Tuple[EntityKind, str], Optional[Entity]] = {}

        # Statistics
        self._events_applied = 0
        self._events_discarded = 0
        self._refreshes_accepted = 0
        self._refreshes_discarded = 0

        logger.info("TelemetrySession initialized")

    @property
    def state(self) -> AggregateState:
        return self._state

    @property
    def config(self) -> TelemetryConfig:
        return self._config

    @property
    def follows_clock(self) -> bool:
        return self._clock is not None

    def current_state(self) -> AggregateState:
        """State re-anchored at the clock, for readers."""
        with self._lock:
            previous = self._state
            state = self._follow_clock()

        self._publish(previous, state)
        return state

    # =========================================================
    # CLOCK
    # =========================================================

    def _anchor(self, *instants: datetime) -> datetime:
        latest = max((self._clock(), *instants))
        return anchor_after(latest, self._anchor_resolution)

    def _follow_clock(self, *instants: datetime) -> AggregateState:
        """Move the window forward to the current anchor. Caller holds the lock."""
        if self._clock is None:
            return self._state
        target = self._anchor(*instants)
        if target > self._state.window.now:
            self._state = advance(self._state, target)
        return self._state

    # =========================================================
    # SUBSCRIPTION
    # =========================================================

    def subscribe(self, callback: StateCallback) -> Callable[[], None]:
        """
        Register a callback for every new state.

        Returns:
            Function that removes the subscription
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _publish(self, previous: AggregateState, state: AggregateState) -> None:
        if state is previous:
            return
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(state)
            except Exception as e:
                logger.error(f"State subscriber failed: {e}")

    # =========================================================
    # LIVE EVENTS
    # =========================================================

    def handle_message(
        self,
        event_name: str,
        data: Union[str, bytes, Dict[str, Any], None],
        event_id: Optional[str] = None,
    ) -> bool:
        """
        Decode and apply one push message.

        Returns:
            True if the message was decoded and applied
        """
        try:
            event = parse_message(event_name, data, event_id=event_id)
        except (MalformedEventError, UnknownEventTypeError) as e:
            logger.warning(f"Discarding message: {e}")
            with self._lock:
                self._events_discarded += 1
            self.request_refresh()
            return False

        self.apply(event)
        return True

    def handle_frame(self, raw: str) -> bool:
        """Decode one event-stream frame and handle its message."""
        frame = decode_frame(raw)
        if frame is None:
            return False
        return self.handle_message(frame.event, frame.data, frame.id)

    def apply(self, event: TelemetryEvent) -> AggregateState:
        """Apply one decoded event in arrival order."""
        instants = (event.entity.timestamp,) if isinstance(event.entity, CheckResult) else ()

        with self._lock:
            previous = self._state
            anchored = self._follow_clock(*instants)
            self._state = reconcile(anchored, event)

            # A pending local change ends only once the event is reflected
            key = (event.kind, _entity_id(event))
            if key in self._optimistic and self._confirms(event):
                del self._optimistic[key]

            self._events_applied += 1
            state = self._state

        self._publish(previous, state)
        return state

    def _confirms(self, event: TelemetryEvent) -> bool:
        current = self._state.get_entity(event.kind, _entity_id(event))
        if event.event_type.is_deletion:
            return current is None
        return current == event.entity

    def advance(self, now: datetime) -> AggregateState:
        """Re-anchor the window at `now`."""
        with self._lock:
            previous = self._state
            self._state = advance(previous, now)
            state = self._state

        self._publish(previous, state)
        return state

    # =========================================================
    # BULK REFRESH
    # =========================================================

    def load(self, bulk: BulkPayload) -> AggregateState:
        """Replace the whole state with a bulk fetch."""
        with self._lock:
            previous, state = self._replace_from_bulk(bulk)

        self._publish(previous, state)
        return state

    def _replace_from_bulk(self, bulk: BulkPayload) -> Tuple[AggregateState, AggregateState]:
        """Swap in a state built from `bulk`. Caller holds the lock."""
        previous = self._state
        window = previous.window
        if self._clock is not None:
            window = window.advanced_to(max(window.now, self._anchor(*(c.timestamp for c in bulk.checks))))

        self._state = state_from_bulk(
            bulk.endpoints,
            bulk.checks,
            bulk.incidents,
            window,
            self._config,
        )
        self._optimistic.clear()

        logger.info(
            f"Loaded bulk state: {len(bulk.endpoints)} endpoint(s), "
            f"{len(bulk.checks)} check(s), {len(bulk.incidents)} incident(s)"
        )
        return previous, self._state

    def request_refresh(self) -> int:
        """
        Request a bulk refresh.

        Any earlier in-flight refresh is superseded.

        Returns:
            Sequence number to pass to complete_refresh()
        """
        with self._lock:
            self._refresh_seq += 1
            sequence = self._refresh_seq
            self._refresh_requested_at = {sequence: datetime.now(timezone.utc)}

        logger.info(f"Bulk refresh #{sequence} requested")
        if self._on_refresh_needed is not None:
            try:
                self._on_refresh_needed(sequence)
            except Exception as e:
                logger.error(f"Refresh callback failed: {e}")
        return sequence

    def complete_refresh(self, sequence: int, bulk: BulkPayload) -> bool:
        """
        Accept or discard the result of a bulk refresh.

        Returns:
            True if the refresh replaced the state
        """
        with self._lock:
            try:
                self._check_refresh(sequence, bulk)
            except StaleRefreshError as e:
                self._refreshes_discarded += 1
                logger.info(str(e))
                return False

            self._refreshes_accepted += 1
            self._refresh_requested_at.pop(sequence, None)
            previous, state = self._replace_from_bulk(bulk)

        self._publish(previous, state)
        return True

    def _check_refresh(self, sequence: int, bulk: BulkPayload) -> None:
        if sequence != self._refresh_seq or sequence not in self._refresh_requested_at:
            raise StaleRefreshError(sequence, f"superseded by #{self._refresh_seq}")

        fetched_at = bulk.fetched_at or self._refresh_requested_at[sequence]
        last_event_at = self._state.last_event_at
        if last_event_at is not None and last_event_at > fetched_at:
            raise StaleRefreshError(
                sequence,
                f"live event at {last_event_at.isoformat()} is newer than fetch at {fetched_at.isoformat()}",
            )

    # =========================================================
    # OPTIMISTIC UPDATES
    # =========================================================

    def apply_optimistic(self, event: TelemetryEvent) -> AggregateState:
        """
        Apply a local endpoint/incident change ahead of confirmation.

        Raises:
            ValueError: For events that carry no endpoint/incident
        """
        kind = event.kind
        if kind not in (EntityKind.ENDPOINT, EntityKind.INCIDENT):
            raise ValueError(f"Optimistic updates are not supported for {event.event_type.value}")

        entity_id = _entity_id(event)
        if entity_id is None:
            raise ValueError("Optimistic event has no entity id")

        with self._lock:
            previous = self._state
            prior = previous.get_entity(kind, entity_id)
            self._optimistic.setdefault((kind, entity_id), prior)

            local = event
            if event.entity is not None:
                local_entity = replace(event.entity, updated_at=prior.version if prior else None)
                local = replace(event, entity_id=entity_id, entity=local_entity)

            self._state = reconcile(previous, local)
            state = self._state

        logger.debug(f"Optimistic {event.event_type.value} applied to '{entity_id}'")
        self._publish(previous, state)
        return state

    def reject_optimistic(self, kind: EntityKind, entity_id: str) -> AggregateState:
        """Roll a pending optimistic change back to the prior entity."""
        with self._lock:
            previous = self._state
            key = (kind, entity_id)
            if key not in self._optimistic:
                return previous
            prior = self._optimistic.pop(key)
            self._state = restore(previous, kind, entity_id, prior)
            state = self._state

        logger.info(f"Rolled back optimistic change to {kind.value} '{entity_id}'")
        self._publish(previous, state)
        return state

    @property
    def pending_optimistic(self) -> List[Tuple[EntityKind, str]]:
        with self._lock:
            return list(self._optimistic)

    # =========================================================
    # STATISTICS
    # =========================================================

    def get_statistics(self) -> Dict[str, Any]:
        """Get session statistics."""
        with self._lock:
            return {
                "events_applied": self._events_applied,
                "events_discarded": self._events_discarded,
                "refreshes_accepted": self._refreshes_accepted,
                "refreshes_discarded": self._refreshes_discarded,
                "pending_refresh": self._refresh_seq if self._refresh_requested_at else None,
                "pending_optimistic": len(self._optimistic),
                "follows_clock": self.follows_clock,
                "subscribers": len(self._subscribers),
                "state": self._state.to_dict(),
            }
