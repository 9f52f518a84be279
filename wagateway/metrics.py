from __future__ import annotations

from prometheus_client import Counter, Gauge


SESSION_EVENTS_TOTAL = Counter(
    "wa_session_events_total",
    "Driver lifecycle events applied to sessions",
    labelnames=("event",),
)
SESSION_TRANSITIONS_TOTAL = Counter(
    "wa_session_transitions_total",
    "Session phase changes grouped by source and target phase",
    labelnames=("from_phase", "to_phase"),
)
SESSIONS_BY_PHASE = Gauge(
    "wa_sessions",
    "Number of live sessions grouped by phase",
    labelnames=("phase",),
)
SESSION_START_FAIL_TOTAL = Counter(
    "wa_session_start_fail_total",
    "Driver startups that raised before the session could authenticate",
)
SEND_TOTAL = Counter(
    "wa_send_total",
    "Outgoing message attempts grouped by outcome",
    labelnames=("status",),
)
KEY_VALIDATION_TOTAL = Counter(
    "wa_key_validation_total",
    "API and admin key checks grouped by kind and result",
    labelnames=("kind", "result"),
)
DB_ERRORS_COUNTER = Counter(
    "wa_db_errors_total",
    "Session store errors grouped by operation",
    labelnames=("operation",),
)


def record_transition(client_id: str, previous, current, event) -> None:
    SESSION_EVENTS_TOTAL.labels(event.kind.value).inc()
    if previous.phase is not current.phase:
        SESSION_TRANSITIONS_TOTAL.labels(previous.phase.value, current.phase.value).inc()


__all__ = [
    "SESSION_EVENTS_TOTAL",
    "SESSION_TRANSITIONS_TOTAL",
    "SESSIONS_BY_PHASE",
    "SESSION_START_FAIL_TOTAL",
    "SEND_TOTAL",
    "KEY_VALIDATION_TOTAL",
    "DB_ERRORS_COUNTER",
    "record_transition",
]
