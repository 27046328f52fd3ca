"""
Tests for the event log ingestor.

============================================================
PURPOSE
============================================================
Validation and normalization of push messages, push frames
and bulk fetch documents.

============================================================
"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from uptime_telemetry.exceptions import MalformedEventError, UnknownEventTypeError
from uptime_telemetry.ingestor import (
    decode_frame,
    events_from_bulk,
    iter_frames,
    normalize_checks,
    parse_bulk,
    parse_message,
)
from uptime_telemetry.models import (
    CheckResult,
    Endpoint,
    EventType,
    Incident,
    IncidentSeverity,
    IncidentStatus,
)


T0 = datetime(2024, 3, 1, tzinfo=timezone.utc)


# ============================================================
# LIVE MESSAGES
# ============================================================

class TestParseMessage:
    """Tests for named push messages."""

    def test_status_update(self):
        event = parse_message("status_update", json.dumps({
            "id": "log-1",
            "endpoint_id": "a",
            "timestamp": "2024-03-01T00:05:00Z",
            "success": True,
            "response_time_ms": 120,
            "status_code": 200,
        }), event_id="42")

        assert event.event_type == EventType.CHECK_RESULT_ADDED
        assert event.entity_id == "a"
        assert event.event_id == "42"
        assert event.entity == CheckResult(
            endpoint_id="a",
            timestamp=T0 + timedelta(minutes=5),
            success=True,
            response_time_ms=120,
            status_code=200,
            id="log-1",
        )

    def test_naive_timestamp_is_utc(self):
        event = parse_message("status_update", {"endpoint_id": "a", "timestamp": "2024-03-01T00:00:00", "success": True})
        assert event.entity.timestamp == T0

    def test_failed_check_drops_response_time(self):
        event = parse_message("status_update", {
            "endpoint_id": "a", "timestamp": "2024-03-01T00:00:00Z", "success": False, "response_time_ms": 3000,
        })
        assert event.entity.response_time_ms is None

    def test_negative_response_time_rejected(self):
        with pytest.raises(MalformedEventError):
            parse_message("status_update", {
                "endpoint_id": "a", "timestamp": "2024-03-01T00:00:00Z", "success": True, "response_time_ms": -1,
            })

    @pytest.mark.parametrize("payload", ["{not json", "[1, 2]", b"\xff\xfe", "null"])
    def test_undecodable_payload(self, payload):
        with pytest.raises(MalformedEventError) as exc_info:
            parse_message("endpoint_updated", payload)
        assert exc_info.value.event_name == "endpoint_updated"

    def test_unknown_event(self):
        with pytest.raises(UnknownEventTypeError):
            parse_message("maintenance_window", "{}")

    @pytest.mark.parametrize("name", ["ping", "connected"])
    def test_keepalive(self, name):
        event = parse_message(name, '{"timestamp": 1700000000}')

        assert event.event_type == EventType.PING
        assert event.entity is None

    def test_endpoint(self):
        event = parse_message("endpoint_created", {
            "id": "a", "name": "API", "url": "https://example.com", "enabled": False,
            "check_interval_seconds": 60, "updated_at": "2024-03-01T00:00:00Z",
        })

        assert event.entity == Endpoint(
            id="a", name="API", url="https://example.com", enabled=False,
            check_interval_seconds=60, updated_at=T0,
        )

    def test_incident_join_records(self):
        event = parse_message("incident_created", {
            "id": "i1",
            "title": "API down",
            "status": "investigating",
            "severity": "critical",
            "start_time": "2024-03-01T00:00:00Z",
            "endpoint_incidents": [{"endpoint_id": "a"}, {"endpoint_id": "b"}],
        })

        assert isinstance(event.entity, Incident)
        assert event.entity.affected_endpoint_ids == frozenset({"a", "b"})
        assert event.entity.severity == IncidentSeverity.CRITICAL
        assert event.entity.is_active

    def test_incident_resolved_is_update(self):
        event = parse_message("incident_resolved", {"id": "i1", "status": "resolved"})

        assert event.event_type == EventType.INCIDENT_UPDATED
        assert event.entity.status == IncidentStatus.RESOLVED

    def test_invalid_incident_status(self):
        with pytest.raises(MalformedEventError):
            parse_message("incident_updated", {"id": "i1", "status": "exploded"})

    def test_deletion_with_id_only(self):
        event = parse_message("endpoint_deleted", {"id": "a"})

        assert event.event_type == EventType.ENDPOINT_DELETED
        assert event.entity_id == "a"
        assert event.entity is None

    def test_deletion_with_full_entity(self):
        event = parse_message("incident_deleted", {"id": "i1", "status": "closed", "severity": "low"})
        assert event.entity.status == IncidentStatus.CLOSED


# ============================================================
# PUSH FRAMES
# ============================================================

class TestFrames:
    """Tests for event-stream frame decoding."""

    def test_decode(self):
        frame = decode_frame('event: status_update\ndata: {"a": 1}\nid: 9')

        assert frame.event == "status_update"
        assert frame.data == '{"a": 1}'
        assert frame.id == "9"

    def test_multiline_data_and_comments(self):
        frame = decode_frame(": comment\nevent: x\ndata: line1\ndata: line2")
        assert frame.data == "line1\nline2"

    def test_default_event_name(self):
        assert decode_frame("data: {}").event == "message"

    def test_nothing(self):
        assert decode_frame(": only a comment") is None

    def test_iter_frames(self):
        stream = "event: connected\ndata: {}\n\nevent: ping\r\ndata: {}\r\n\r\n: keepalive\n\n"

        assert [f.event for f in iter_frames(stream)] == ["connected", "ping"]


# ============================================================
# BULK FETCH
# ============================================================

class TestParseBulk:
    """Tests for bulk fetch documents."""

    def _document(self):
        return {
            "endpoints": [{"id": "a", "name": "API"}, {"name": "no id"}],
            "logs": [
                {"id": "2", "endpoint_id": "a", "timestamp": "2024-03-01T01:00:00Z", "success": False},
                {"id": "1", "endpoint_id": "a", "timestamp": "2024-03-01T00:00:00Z", "success": True,
                 "response_time_ms": 90},
                {"id": "1", "endpoint_id": "a", "timestamp": "2024-03-01T00:00:00Z", "success": True,
                 "response_time_ms": 90},
                {"endpoint_id": "a", "success": True},
            ],
            "incidents": [{"id": "i1", "status": "open", "severity": "low"}],
            "fetched_at": "2024-03-01T02:00:00Z",
        }

    def test_valid_records_kept(self):
        bulk = parse_bulk(json.dumps(self._document()))

        assert [e.id for e in bulk.endpoints] == ["a"]
        assert [c.id for c in bulk.checks] == ["1", "2"]
        assert bulk.incidents[0].status == IncidentStatus.OPEN
        assert bulk.rejected == 2
        assert bulk.fetched_at == T0 + timedelta(hours=2)

    def test_checks_key(self):
        bulk = parse_bulk({"checks": [{"endpoint_id": "a", "timestamp": "2024-03-01T00:00:00Z", "success": True}]})
        assert len(bulk.checks) == 1

    def test_empty_document(self):
        bulk = parse_bulk("{}")

        assert bulk.endpoints == []
        assert bulk.checks == []
        assert bulk.fetched_at is None

    @pytest.mark.parametrize("document", ["[]", "not json", '{"endpoints": {"id": "a"}}'])
    def test_malformed_document(self, document):
        with pytest.raises(MalformedEventError):
            parse_bulk(document)

    def test_events_from_bulk(self):
        bulk = parse_bulk(self._document())

        events = events_from_bulk(bulk)

        assert [e.event_type for e in events] == [
            EventType.ENDPOINT_CREATED,
            EventType.INCIDENT_CREATED,
            EventType.CHECK_RESULT_ADDED,
            EventType.CHECK_RESULT_ADDED,
        ]


class TestNormalize:
    """Tests for check normalization."""

    def test_dedupe_and_sort(self):
        late = CheckResult("a", T0 + timedelta(hours=1), True, 10)
        early = CheckResult("a", T0, False)
        same_instant_other_endpoint = CheckResult("b", T0, True, 5)

        checks = normalize_checks([late, early, late, same_instant_other_endpoint, early])

        assert checks == [early, same_instant_other_endpoint, late]
