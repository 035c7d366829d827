"""Prometheus instruments for credential lifecycle activity."""

from __future__ import annotations

from prometheus_client import Counter

LIFECYCLE_EVENTS = Counter(
    "credential_lifecycle_events_total",
    "Account lifecycle transitions, labelled by audit event type.",
    ["event"],
)
