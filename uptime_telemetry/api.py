"""
Uptime Telemetry - HTTP API.

============================================================
PURPOSE
============================================================
HTTP surface over one TelemetrySession.

READ:
- GET  /api/status                    snapshots, series, system banner
- GET  /api/series?hours=N            chart series for a range
- GET  /api/endpoints/{id}/uptime     daily uptime history
- GET  /api/incidents                 active incidents and analytics
- GET  /api/analytics/performance     endpoint ranking
- GET  /api/analytics/heatmap         hourly status heatmap
- GET  /health

WRITE:
- POST /api/events                    one named push message
- POST /api/refresh                   bulk payload (full replacement)

============================================================
"""

import json
import logging
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, List

from aiohttp import web

from .bucketing import window_for_range
from .engine import compute_series, incident_analytics, performance_ranking, status_heatmap, uptime_history
from .exceptions import MalformedEventError, TelemetryError
from .ingestor import parse_bulk
from .models import CheckResult
from .reconciler import AggregateState
from .session import TelemetrySession


logger = logging.getLogger(__name__)


# ============================================================
# JSON ENCODER
# ============================================================

class TelemetryEncoder(json.JSONEncoder):
    """JSON encoder for telemetry data."""

    def default(self, obj):
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        if isinstance(obj, (set, frozenset)):
            return sorted(obj)
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        return super().default(obj)


def json_response(data: Any, status: int = 200) -> web.Response:
    """Create JSON response."""
    return web.Response(
        text=json.dumps(data, cls=TelemetryEncoder, indent=2),
        status=status,
        content_type="application/json",
    )


def error_response(message: str, status: int) -> web.Response:
    return json_response({"status": "error", "error": message}, status=status)


def _int_query(request: web.Request, name: str, default: int, maximum: int) -> int:
    """Positive integer query parameter, at most `maximum`."""
    raw = request.query.get(name)
    if raw is None:
        return min(default, maximum)
    value = int(raw)
    if value <= 0:
        raise ValueError(f"'{name}' must be positive")
    if value > maximum:
        raise ValueError(f"'{name}' must be at most {maximum}")
    return value


def _known_checks(state: AggregateState) -> List[CheckResult]:
    """Retained checks of endpoints currently known."""
    return [
        check
        for endpoint_id, aggregate in state.aggregates.items()
        if endpoint_id in state.endpoints
        for check in aggregate.checks
    ]


# ============================================================
# API HANDLERS
# ============================================================

class TelemetryAPI:
    """HTTP API over a telemetry session."""

    def __init__(self, session: TelemetrySession):
        """Initialize API."""
        self._session = session

    @property
    def _precision(self) -> int:
        return self._session.config.windows.display_precision

    # Ranges are bounded by how long raw checks are retained
    @property
    def _max_days(self) -> int:
        return self._session.config.windows.retention_days

    @property
    def _max_hours(self) -> int:
        return self._max_days * 24

    # --------------------------------------------------------
    # STATUS ENDPOINTS
    # --------------------------------------------------------

    async def get_status(self, request: web.Request) -> web.Response:
        """
        GET /api/status

        Snapshots, series and system banner of the current state.
        """
        try:
            state = self._session.current_state()
            return json_response({
                "status": "ok",
                "data": state.result.to_dict(self._precision),
            })
        except Exception as e:
            logger.error(f"Error getting status: {e}")
            return error_response(str(e), 500)

    async def get_series(self, request: web.Request) -> web.Response:
        """
        GET /api/series?hours=N

        Hourly buckets up to the hourly limit, daily beyond.
        """
        try:
            state = self._session.current_state()
            hours = _int_query(request, "hours", self._session.config.default_range_hours, self._max_hours)
        except ValueError as e:
            return error_response(str(e), 400)

        try:
            spec = window_for_range(state.window.now, hours, self._session.config.windows.hourly_max_hours)
            series = compute_series(_known_checks(state), spec.bucket_width, spec.bucket_count, spec.now)
            return json_response({
                "status": "ok",
                "data": {
                    "hours": hours,
                    "bucket_width_seconds": int(spec.bucket_width.total_seconds()),
                    "points": [p.to_dict(self._precision) for p in series],
                },
            })
        except Exception as e:
            logger.error(f"Error getting series: {e}")
            return error_response(str(e), 500)

    async def get_endpoint_uptime(self, request: web.Request) -> web.Response:
        """
        GET /api/endpoints/{endpoint_id}/uptime?days=N

        Daily uptime history of one endpoint.
        """
        state = self._session.current_state()
        endpoint_id = request.match_info.get("endpoint_id")
        if endpoint_id not in state.endpoints:
            return error_response(f"Endpoint {endpoint_id} not found", 404)

        try:
            days = _int_query(request, "days", self._session.config.windows.long_window_days, self._max_days)
        except ValueError as e:
            return error_response(str(e), 400)

        try:
            aggregate = state.aggregates.get(endpoint_id)
            checks = aggregate.checks if aggregate else ()
            history = uptime_history(endpoint_id, checks, state.window.now, days, self._session.config.thresholds)
            return json_response({
                "status": "ok",
                "data": {
                    "endpoint_id": endpoint_id,
                    "days": [point.to_dict(self._precision) for point in history],
                },
            })
        except Exception as e:
            logger.error(f"Error getting uptime history: {e}")
            return error_response(str(e), 500)

    async def get_incidents(self, request: web.Request) -> web.Response:
        """
        GET /api/incidents

        Active incidents plus analytics over the full history.
        """
        try:
            state = self._session.current_state()
            return json_response({
                "status": "ok",
                "data": {
                    "active": [i.to_dict() for i in state.active_incidents()],
                    "analytics": incident_analytics(state.incidents.values()).to_dict(self._precision),
                },
            })
        except Exception as e:
            logger.error(f"Error getting incidents: {e}")
            return error_response(str(e), 500)

    # --------------------------------------------------------
    # ANALYTICS ENDPOINTS
    # --------------------------------------------------------

    async def get_performance(self, request: web.Request) -> web.Response:
        """GET /api/analytics/performance"""
        try:
            state = self._session.current_state()
            rows = performance_ranking(state.endpoints.values(), _known_checks(state), state.window)
            return json_response({
                "status": "ok",
                "data": [row.to_dict(self._precision) for row in rows],
            })
        except Exception as e:
            logger.error(f"Error getting performance ranking: {e}")
            return error_response(str(e), 500)

    async def get_heatmap(self, request: web.Request) -> web.Response:
        """GET /api/analytics/heatmap?hours=N"""
        try:
            hours = _int_query(request, "hours", 24, self._max_hours)
        except ValueError as e:
            return error_response(str(e), 400)

        try:
            state = self._session.current_state()
            heatmap = status_heatmap(
                state.endpoints.values(),
                _known_checks(state),
                state.window.now,
                hours,
                self._session.config.thresholds,
            )
            return json_response({
                "status": "ok",
                "data": {
                    endpoint_id: [cell.to_dict(self._precision) for cell in cells]
                    for endpoint_id, cells in heatmap.items()
                },
            })
        except Exception as e:
            logger.error(f"Error getting heatmap: {e}")
            return error_response(str(e), 500)

    # --------------------------------------------------------
    # WRITE ENDPOINTS
    # --------------------------------------------------------

    async def post_event(self, request: web.Request) -> web.Response:
        """
        POST /api/events

        Body: {"event": "<name>", "data": {...}, "id": "<optional>"}
        """
        try:
            body = await request.json()
        except ValueError:
            return error_response("Request body is not valid JSON", 400)

        if not isinstance(body, dict) or "event" not in body:
            return error_response("Missing 'event'", 400)

        applied = self._session.handle_message(body["event"], body.get("data"), body.get("id"))
        if not applied:
            return error_response(f"Event '{body['event']}' discarded", 400)

        return json_response({
            "status": "ok",
            "data": {"revision": self._session.state.revision},
        }, status=202)

    async def post_refresh(self, request: web.Request) -> web.Response:
        """
        POST /api/refresh[?sequence=N]

        Bulk payload. With a sequence number the refresh is
        checked for staleness first.
        """
        try:
            bulk = parse_bulk(await request.text())
        except MalformedEventError as e:
            logger.warning(f"Rejected refresh payload: {e}")
            return error_response(str(e), 400)

        try:
            sequence = request.query.get("sequence")
            if sequence is None:
                self._session.load(bulk)
                accepted = True
            else:
                accepted = self._session.complete_refresh(int(sequence), bulk)
        except ValueError as e:
            return error_response(str(e), 400)
        except TelemetryError as e:
            logger.error(f"Error applying refresh: {e}")
            return error_response(str(e), 500)

        return json_response({
            "status": "ok",
            "data": {"accepted": accepted, "loaded": bulk.to_dict()},
        })

    # --------------------------------------------------------
    # HEALTH CHECK
    # --------------------------------------------------------

    async def health(self, request: web.Request) -> web.Response:
        """GET /health"""
        return json_response({
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": "uptime-telemetry",
            "session": self._session.get_statistics(),
        })


# ============================================================
# APPLICATION FACTORY
# ============================================================

def create_app(session: TelemetrySession) -> web.Application:
    """
    Create the telemetry API application.

    Returns an aiohttp Application with all routes configured.
    """
    api = TelemetryAPI(session)

    app = web.Application()

    app.router.add_get("/health", api.health)
    app.router.add_get("/api/status", api.get_status)
    app.router.add_get("/api/series", api.get_series)
    app.router.add_get("/api/endpoints/{endpoint_id}/uptime", api.get_endpoint_uptime)
    app.router.add_get("/api/incidents", api.get_incidents)
    app.router.add_get("/api/analytics/performance", api.get_performance)
    app.router.add_get("/api/analytics/heatmap", api.get_heatmap)

    app.router.add_post("/api/events", api.post_event)
    app.router.add_post("/api/refresh", api.post_refresh)

    return app
