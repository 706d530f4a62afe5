"""Boundary interfaces between the risk engine and its I/O collaborators."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from healthmitra.core.storage.models import (
    Insight,
    Observation,
    SubjectContact,
    VitalParameter,
)


class AlertDeliveryError(Exception):
    """Raised by an AlertTransport when a message could not be handed off."""


@runtime_checkable
class ObservationSource(Protocol):
    """Read access to a subject's stored vital readings."""

    def fetch_recent_observations(
        self,
        subject_id: str,
        parameter: VitalParameter,
        since: datetime | None = None,
        max_count: int = 10,
    ) -> list[Observation]:
        """Newest ``max_count`` readings since ``since``, ordered oldest -> newest."""
        ...

    def latest_observation(
        self, subject_id: str, parameter: VitalParameter
    ) -> Observation | None:
        """The most recent reading of ``parameter``, if any."""
        ...


@runtime_checkable
class InsightSink(Protocol):
    """Write access for generated insights."""

    def save_insight(self, insight: Insight) -> Insight:
        """Persist atomically and return the insight with its assigned ID."""
        ...

    def mark_read(self, insight_id: str, subject_id: str | None = None) -> bool:
        ...

    def deactivate(self, insight_id: str, subject_id: str | None = None) -> bool:
        ...


@runtime_checkable
class SubjectDirectory(Protocol):
    """Looks up where a subject's alerts should go."""

    def get_subject_contact(self, subject_id: str) -> SubjectContact | None:
        ...


@runtime_checkable
class AlertTransport(Protocol):
    """Outbound message delivery (SMS gateway, etc.)."""

    @property
    def name(self) -> str:
        """Label for logs and audit records."""
        ...

    def send_alert(self, contact_address: str, message: str) -> str:
        """Send ``message`` and return a delivery receipt.

        Raises:
            AlertDeliveryError: If the message could not be handed off.
        """
        ...
