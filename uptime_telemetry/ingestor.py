"""
Uptime Telemetry - Event Log Ingestor.

============================================================
VALIDATION & NORMALIZATION
============================================================

Turns raw records into model objects:
- Bulk fetch: JSON document with endpoint, check and incident arrays
- Live push: named message with a JSON-encoded entity
- Push frames: `event:` / `data:` / `id:` blocks of the event stream

Normalization:
- Timestamps become UTC-aware datetimes
- Failed checks never carry a response time
- Duplicate checks are dropped, the rest sorted chronologically
- Incident affected endpoints accept both a flat id list and the
  `endpoint_incidents` join records

============================================================
FAILURE HANDLING
============================================================

- A live message that fails to decode or validate raises
  MalformedEventError; the caller discards it and refreshes
- Invalid records inside a bulk document are skipped with a warning
- A bulk document that is not an object raises MalformedEventError

============================================================
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .exceptions import MalformedEventError, UnknownEventTypeError
from .models import (
    CheckResult,
    Endpoint,
    EntityKind,
    EventType,
    Incident,
    IncidentSeverity,
    IncidentStatus,
    TelemetryEvent,
    ensure_utc,
)


logger = logging.getLogger(__name__)


# =============================================================
# WIRE NAMES
# =============================================================

WIRE_EVENT_NAMES: Dict[str, EventType] = {
    "status_update": EventType.CHECK_RESULT_ADDED,
    "check_result_added": EventType.CHECK_RESULT_ADDED,
    "endpoint_created": EventType.ENDPOINT_CREATED,
    "endpoint_updated": EventType.ENDPOINT_UPDATED,
    "endpoint_deleted": EventType.ENDPOINT_DELETED,
    "incident_created": EventType.INCIDENT_CREATED,
    "incident_updated": EventType.INCIDENT_UPDATED,
    "incident_resolved": EventType.INCIDENT_UPDATED,
    "incident_deleted": EventType.INCIDENT_DELETED,
    "ping": EventType.PING,
    "connected": EventType.PING,
}


# =============================================================
# PAYLOAD SCHEMAS
# =============================================================


class CheckResultSchema(BaseModel):
    """Check result as sent by the collector."""
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    endpoint_id: str
    timestamp: datetime
    success: bool
    response_time_ms: Optional[int] = Field(default=None, ge=0)
    status_code: Optional[int] = None

    def to_model(self) -> CheckResult:
        return CheckResult(
            id=self.id,
            endpoint_id=self.endpoint_id,
            timestamp=ensure_utc(self.timestamp),
            success=self.success,
            response_time_ms=self.response_time_ms if self.success else None,
            status_code=self.status_code,
        )


class EndpointSchema(BaseModel):
    """Endpoint record."""
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    url: str = ""
    enabled: bool = True
    expected_status_code: int = 200
    timeout_seconds: int = Field(default=30, ge=0)
    check_interval_seconds: int = Field(default=300, ge=0)
    updated_at: Optional[datetime] = None

    def to_model(self) -> Endpoint:
        return Endpoint(
            id=self.id,
            name=self.name,
            url=self.url,
            enabled=self.enabled,
            expected_status_code=self.expected_status_code,
            timeout_seconds=self.timeout_seconds,
            check_interval_seconds=self.check_interval_seconds,
            updated_at=self.updated_at,
        )


class IncidentSchema(BaseModel):
    """Incident record."""
    model_config = ConfigDict(extra="ignore")

    id: str
    title: str = ""
    status: IncidentStatus = IncidentStatus.OPEN
    severity: IncidentSeverity = IncidentSeverity.MEDIUM
    affected_endpoint_ids: List[str] = Field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def _collect_affected_endpoints(cls, data: Any) -> Any:
        """Accept `endpoint_incidents` join records as affected endpoints."""
        if isinstance(data, dict) and "affected_endpoint_ids" not in data:
            joins = data.get("endpoint_incidents") or []
            if isinstance(joins, list):
                data = dict(data)
                data["affected_endpoint_ids"] = [
                    j["endpoint_id"] for j in joins
                    if isinstance(j, dict) and "endpoint_id" in j
                ]
        return data

    def to_model(self) -> Incident:
        return Incident(
            id=self.id,
            title=self.title,
            status=self.status,
            severity=self.severity,
            affected_endpoint_ids=frozenset(self.affected_endpoint_ids),
            start_time=self.start_time,
            end_time=self.end_time,
            updated_at=self.updated_at,
        )


class DeletionSchema(BaseModel):
    """Deletion messages may carry only the id."""
    model_config = ConfigDict(extra="ignore")

    id: str
    updated_at: Optional[datetime] = None


_SCHEMAS = {
    EntityKind.CHECK: CheckResultSchema,
    EntityKind.ENDPOINT: EndpointSchema,
    EntityKind.INCIDENT: IncidentSchema,
}


# =============================================================
# LIVE MESSAGES
# =============================================================


def decode_payload(event_name: str, data: Union[str, bytes, Dict[str, Any], None]) -> Dict[str, Any]:
    """Decode a JSON payload into a dict."""
    if isinstance(data, dict):
        return data
    if data is None:
        return {}
    try:
        decoded = json.loads(data)
    except (TypeError, ValueError) as e:
        raise MalformedEventError(event_name, f"invalid JSON: {e}", raw=data)
    if not isinstance(decoded, dict):
        raise MalformedEventError(event_name, "payload is not an object", raw=data)
    return decoded


def parse_message(
    event_name: str,
    data: Union[str, bytes, Dict[str, Any], None],
    event_id: Optional[str] = None,
    received_at: Optional[datetime] = None,
) -> TelemetryEvent:
    """
    Decode one named push message.

    Args:
        event_name: Message name on the push channel
        data: JSON-encoded (or already decoded) entity
        event_id: Optional message id
        received_at: Arrival time (defaults to now)

    Returns:
        TelemetryEvent

    Raises:
        UnknownEventTypeError: Name outside the channel contract
        MalformedEventError: Payload cannot be decoded or validated
    """
    event_type = WIRE_EVENT_NAMES.get(event_name)
    if event_type is None:
        raise UnknownEventTypeError(event_name)

    received_at = received_at or datetime.now(timezone.utc)

    if event_type == EventType.PING:
        return TelemetryEvent(event_type=event_type, event_id=event_id, received_at=received_at)

    payload = decode_payload(event_name, data)

    try:
        if event_type.is_deletion and not _looks_complete(event_type.kind, payload):
            deletion = DeletionSchema.model_validate(payload)
            return TelemetryEvent(
                event_type=event_type,
                entity_id=deletion.id,
                event_id=event_id,
                received_at=received_at,
            )

        schema = _SCHEMAS[event_type.kind].model_validate(payload)
    except ValidationError as e:
        raise MalformedEventError(event_name, _summarize(e), raw=payload)

    entity = schema.to_model()
    entity_id = entity.endpoint_id if isinstance(entity, CheckResult) else entity.id

    return TelemetryEvent(
        event_type=event_type,
        entity_id=entity_id,
        entity=entity,
        event_id=event_id,
        received_at=received_at,
    )


def _looks_complete(kind: Optional[EntityKind], payload: Dict[str, Any]) -> bool:
    """Whether a deletion payload carries the full entity."""
    if kind == EntityKind.ENDPOINT:
        return "name" in payload or "url" in payload
    if kind == EntityKind.INCIDENT:
        return "status" in payload or "severity" in payload
    return False


def _summarize(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ()))
        parts.append(f"{location}: {item.get('msg')}")
    return "; ".join(parts)


# =============================================================
# PUSH CHANNEL FRAMES
# =============================================================


@dataclass(frozen=True)
class PushFrame:
    """One decoded event-stream frame."""
    event: str
    data: str
    id: Optional[str] = None


def decode_frame(raw: str) -> Optional[PushFrame]:
    """
    Decode one event-stream frame.

    Multiple `data:` lines are joined with newlines, comment
    lines (starting with ':') are ignored. Returns None for a
    frame with neither an event name nor data.
    """
    event = None
    data_lines: List[str] = []
    frame_id = None

    for line in raw.splitlines():
        if not line or line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            event = value
        elif name == "data":
            data_lines.append(value)
        elif name == "id":
            frame_id = value

    if event is None and not data_lines:
        return None
    return PushFrame(event=event or "message", data="\n".join(data_lines), id=frame_id)


def iter_frames(stream_text: str) -> Iterator[PushFrame]:
    """Split a chunk of the event stream into frames."""
    normalized = stream_text.replace("\r\n", "\n")
    for block in normalized.split("\n\n"):
        frame = decode_frame(block)
        if frame is not None:
            yield frame


# =============================================================
# BULK FETCH
# =============================================================


@dataclass
class BulkPayload:
    """Validated bulk fetch: a full replacement of local state."""
    endpoints: List[Endpoint] = field(default_factory=list)
    checks: List[CheckResult] = field(default_factory=list)
    incidents: List[Incident] = field(default_factory=list)
    fetched_at: Optional[datetime] = None
    rejected: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "endpoints": len(self.endpoints),
            "checks": len(self.checks),
            "incidents": len(self.incidents),
            "fetched_at": self.fetched_at.isoformat() if self.fetched_at else None,
            "rejected": self.rejected,
        }


def parse_bulk(document: Union[str, bytes, Dict[str, Any]]) -> BulkPayload:
    """
    Validate a bulk fetch document.

    Accepted keys: `endpoints`, `checks` (or `logs`), `incidents`,
    `fetched_at`. Invalid records are skipped and counted.

    Raises:
        MalformedEventError: Document is not a JSON object
    """
    data = decode_payload("bulk", document)
    payload = BulkPayload()

    payload.endpoints = _parse_records("endpoints", data.get("endpoints"), EndpointSchema, payload)
    raw_checks = data.get("checks", data.get("logs"))
    payload.checks = normalize_checks(_parse_records("checks", raw_checks, CheckResultSchema, payload))
    payload.incidents = _parse_records("incidents", data.get("incidents"), IncidentSchema, payload)

    if data.get("fetched_at"):
        try:
            payload.fetched_at = ensure_utc(datetime.fromisoformat(str(data["fetched_at"]).replace("Z", "+00:00")))
        except ValueError as e:
            raise MalformedEventError("bulk", f"invalid fetched_at: {e}", raw=data["fetched_at"])

    if payload.rejected:
        logger.warning(f"Bulk fetch: skipped {payload.rejected} invalid record(s)")
    logger.debug(f"Parsed bulk fetch: {payload.to_dict()}")
    return payload


def _parse_records(section: str, records: Any, schema: type, payload: BulkPayload) -> List[Any]:
    if records is None:
        return []
    if not isinstance(records, list):
        raise MalformedEventError("bulk", f"'{section}' is not an array", raw=records)

    parsed = []
    for record in records:
        try:
            parsed.append(schema.model_validate(record).to_model())
        except ValidationError as e:
            payload.rejected += 1
            logger.warning(f"Skipping invalid {section} record: {_summarize(e)}")
    return parsed


def normalize_checks(checks: Iterable[CheckResult]) -> List[CheckResult]:
    """Drop duplicate deliveries and sort chronologically."""
    seen = set()
    unique: List[CheckResult] = []
    for check in checks:
        key = check.dedupe_key
        if key in seen:
            continue
        seen.add(key)
        unique.append(check)
    unique.sort(key=lambda c: (c.timestamp, c.endpoint_id, c.id or ""))
    return unique


def events_from_bulk(payload: BulkPayload) -> List[TelemetryEvent]:
    """Express a bulk payload as the equivalent create/add event sequence."""
    events: List[TelemetryEvent] = []
    for endpoint in payload.endpoints:
        events.append(TelemetryEvent(EventType.ENDPOINT_CREATED, endpoint.id, endpoint))
    for incident in payload.incidents:
        events.append(TelemetryEvent(EventType.INCIDENT_CREATED, incident.id, incident))
    for check in payload.checks:
        events.append(TelemetryEvent(EventType.CHECK_RESULT_ADDED, check.endpoint_id, check))
    return events
