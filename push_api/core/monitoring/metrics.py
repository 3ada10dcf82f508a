"""Métricas Prometheus del servicio de push."""

from __future__ import annotations

from prometheus_client import Counter, Gauge

from ..domain.connection_state import ConnectionState

PUSH_ENVELOPES_PUBLISHED = Counter(
    "push_envelopes_published_total",
    "Device envelopes handed to the MQTT broker",
    ["status"],  # success, failed
)
PUSH_CYCLES_SKIPPED = Counter(
    "push_poll_cycles_skipped_total",
    "Poll cycles skipped before reading Redis",
    ["reason"],  # redis_not_ready, mqtt_not_ready, in_progress, not_running
)
PUSH_CYCLE_ERRORS = Counter(
    "push_poll_cycle_errors_total",
    "Poll cycles that ended with an error",
)
PUSH_CONNECTION_STATE = Gauge(
    "push_connection_state",
    "1 for the current state of each backend connection",
    ["backend", "state"],
)


def set_connection_state(backend: str, state: ConnectionState) -> None:
    for candidate in ConnectionState:
        PUSH_CONNECTION_STATE.labels(backend=backend, state=candidate.value).set(
            1 if candidate == state else 0
        )
