"""
Alerting
========
Sync and data quality alerts as Prefect events.

Events (consumed by Prefect Automations):
    sqp.sync.completed
    sqp.sync.failed
    sqp.dq.failure
"""

from typing import Protocol, runtime_checkable

from prefect.events import emit_event

SYNC_COMPLETED = "sqp.sync.completed"
SYNC_FAILED = "sqp.sync.failed"
DQ_FAILURE = "sqp.dq.failure"

RESOURCE_ID = "sqp-sync.scheduler"


@runtime_checkable
class AlertSink(Protocol):
    """Contract for alert destinations."""

    def emit(self, event: str, payload: dict, severity: str = "info") -> None:
        """Publish one alert."""
        ...


class PrefectEventSink:
    """Publishes alerts with prefect.events.emit_event."""

    def __init__(self, resource_id: str = RESOURCE_ID):
        self.resource_id = resource_id

    def emit(self, event: str, payload: dict, severity: str = "info") -> None:
        emit_event(
            event=event,
            resource={"prefect.resource.id": self.resource_id},
            payload={"severity": severity, **payload},
        )


class CollectingSink:
    """Keeps alerts in memory. Used by tests and dry runs."""

    def __init__(self):
        self.events: list[dict] = []

    def emit(self, event: str, payload: dict, severity: str = "info") -> None:
        self.events.append({"event": event, "severity": severity, "payload": payload})

    def named(self, event: str) -> list[dict]:
        return [e for e in self.events if e["event"] == event]
