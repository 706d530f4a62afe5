"""Alert dispatch: turns severe insights into outbound SMS messages.

Dispatch is fire-and-forget from the caller's point of view: every outcome,
including transport failures, comes back as an AlertResult and is written
to the audit trail. Nothing here raises into insight generation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from healthmitra.core.storage.models import Insight, Severity, SubjectContact
from healthmitra.domains.health.connectors import AlertDeliveryError, AlertTransport

if TYPE_CHECKING:
    from healthmitra.core.audit.logger import AuditLogger

logger = logging.getLogger(__name__)

URGENT_PREFIX = "URGENT"


@dataclass(frozen=True)
class AlertResult:
    delivered: bool
    receipt: str | None = None
    error: str | None = None


def format_alert_message(insight: Insight, sender: str = "HealthMitra") -> str:
    """Alert text with an urgency prefix for high and critical insights."""
    if insight.severity >= Severity.HIGH:
        return f"{URGENT_PREFIX} {sender} Alert: {insight.message}"
    return f"{sender} Alert: {insight.message}"


def format_medication_reminder(
    medication_name: str, dosage: str, time: str, sender: str = "HealthMitra"
) -> str:
    return f"{sender} Reminder: Take your {medication_name} ({dosage}) at {time}."


def format_appointment_reminder(
    doctor_name: str, appointment_time: str, location: str, sender: str = "HealthMitra"
) -> str:
    return f"{sender}: Appointment with Dr. {doctor_name} at {appointment_time}, {location}."


def format_checkup_reminder(sender: str = "HealthMitra") -> str:
    return (
        f"{sender}: Regular health checkup reminder. It's time to monitor your "
        "vitals and update your health records."
    )


class AlertDispatcher:
    """Sends insight alerts through an AlertTransport.

    Usage::

        dispatcher = AlertDispatcher(LoggingSmsTransport(), audit_logger=audit)
        result = dispatcher.dispatch(contact, insight)
    """

    def __init__(
        self,
        transport: AlertTransport,
        *,
        audit_logger: AuditLogger | None = None,
        sender: str = "HealthMitra",
        min_severity: Severity = Severity.HIGH,
    ) -> None:
        self._transport = transport
        self._audit = audit_logger
        self._sender = sender
        self._min_severity = min_severity

    @property
    def min_severity(self) -> Severity:
        return self._min_severity

    @property
    def sender(self) -> str:
        return self._sender

    def should_alert(self, insight: Insight) -> bool:
        return insight.severity >= self._min_severity

    def dispatch(self, contact: SubjectContact | None, insight: Insight) -> AlertResult:
        """Send one insight alert. Never raises."""
        result = self._deliver(contact, format_alert_message(insight, self._sender))
        if self._audit is not None:
            self._audit.log_alert(
                subject_id=insight.subject_id,
                insight_id=insight.id or None,
                severity=insight.severity.value,
                delivered=result.delivered,
                error_type=result.error,
            )
        return result

    def send_reminder(self, contact: SubjectContact | None, message: str) -> AlertResult:
        """Send a medication/appointment reminder through the same transport."""
        return self._deliver(contact, message)

    def _deliver(self, contact: SubjectContact | None, message: str) -> AlertResult:
        if contact is None or not contact.phone:
            logger.info("No alert contact on file; alert not sent")
            return AlertResult(delivered=False, error="no_contact")
        if not contact.sms_alerts_enabled:
            logger.info("SMS alerts disabled for subject; alert not sent")
            return AlertResult(delivered=False, error="sms_disabled")

        try:
            receipt = self._transport.send_alert(contact.phone, message)
        except AlertDeliveryError as exc:
            logger.warning("Alert delivery via %s failed: %s", self._transport.name, exc)
            return AlertResult(delivered=False, error=type(exc).__name__)
        except Exception as exc:
            logger.exception("Alert transport %s raised unexpectedly", self._transport.name)
            return AlertResult(delivered=False, error=type(exc).__name__)

        return AlertResult(delivered=True, receipt=receipt)
