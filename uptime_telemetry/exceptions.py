"""
Uptime Telemetry - Exceptions.

============================================================
CUSTOM EXCEPTIONS
============================================================

All exceptions for the telemetry engine:
- TelemetryError: Base exception
- MalformedEventError: Push message or bulk record cannot be parsed
- UnknownEventTypeError: Message name outside the channel contract
- StaleEventError: Entity version older than the one already applied
- StaleRefreshError: Bulk refresh superseded by newer data
- ConfigurationError: Invalid configuration

============================================================
FAILURE SAFETY
============================================================

Nothing in the engine is fatal:
- Malformed input is logged, discarded and followed by a bulk refresh
- Stale events and stale refreshes are dropped silently
- Empty inputs are never errors

============================================================
"""

from typing import Any, Dict, Optional


class TelemetryError(Exception):
    """
    Base exception for telemetry errors.

    All telemetry exceptions inherit from this class.
    """

    def __init__(
        self,
        message: str,
        entity_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Initialize exception.

        Args:
            message: Error message
            entity_id: Id of the affected endpoint/incident
            details: Additional error details
        """
        self.message = message
        self.entity_id = entity_id
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the error message."""
        if self.entity_id:
            return f"[{self.entity_id}] {self.message}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "entity_id": self.entity_id,
            "details": self.details,
        }


class MalformedEventError(TelemetryError):
    """
    Raised when a payload cannot be decoded or validated.

    Recovered locally: the message is discarded and a bulk
    refresh is requested.
    """

    def __init__(
        self,
        event_name: str,
        reason: str,
        raw: Any = None,
    ) -> None:
        """
        Initialize exception.

        Args:
            event_name: Name of the push message or bulk section
            reason: Why decoding failed
            raw: The offending payload (truncated for logging)
        """
        message = f"Malformed '{event_name}' payload: {reason}"
        details = {
            "event_name": event_name,
            "reason": reason,
        }
        if raw is not None:
            details["raw"] = str(raw)[:200]

        super().__init__(
            message=message,
            details=details,
        )

        self.event_name = event_name


class UnknownEventTypeError(TelemetryError):
    """Raised when a message name is not part of the channel contract."""

    def __init__(self, event_name: str) -> None:
        super().__init__(
            message=f"Unknown event type: {event_name}",
            details={"event_name": event_name},
        )
        self.event_name = event_name


class StaleEventError(TelemetryError):
    """
    Raised when an entity update is older than the applied version.

    Always caught by the reconciler; never user visible.
    """

    def __init__(
        self,
        kind: str,
        entity_id: str,
        incoming_version: Any,
        current_version: Any,
    ) -> None:
        """
        Initialize exception.

        Args:
            kind: Entity kind (endpoint, incident)
            entity_id: Id of the entity
            incoming_version: Version carried by the event
            current_version: Version already applied (or tombstoned)
        """
        super().__init__(
            message=(
                f"Stale {kind} event: version {incoming_version} "
                f"is older than {current_version}"
            ),
            entity_id=entity_id,
            details={
                "kind": kind,
                "incoming_version": str(incoming_version),
                "current_version": str(current_version),
            },
        )
        self.kind = kind


class StaleRefreshError(TelemetryError):
    """Raised when a bulk refresh arrives after newer live data."""

    def __init__(self, sequence: int, reason: str) -> None:
        super().__init__(
            message=f"Refresh #{sequence} discarded: {reason}",
            details={"sequence": sequence, "reason": reason},
        )
        self.sequence = sequence


class ConfigurationError(TelemetryError):
    """
    Raised when configuration is invalid.

    Should be caught at startup and fixed before serving.
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_value: Optional[str] = None,
        actual_value: Optional[str] = None,
    ) -> None:
        details = {}
        if config_key:
            details["config_key"] = config_key
        if expected_value:
            details["expected"] = expected_value
        if actual_value:
            details["actual"] = actual_value

        super().__init__(
            message=message,
            details=details,
        )
