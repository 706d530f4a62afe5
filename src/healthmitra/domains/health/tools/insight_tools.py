"""MCP tools for the insight inbox, alert contacts and SMS reminders."""

from __future__ import annotations

import json
import logging
import math
import time
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

from healthmitra.core.storage.models import Severity, SubjectContact
from healthmitra.domains.health.domain_logic.alert_dispatcher import (
    format_appointment_reminder,
    format_checkup_reminder,
    format_medication_reminder,
)

if TYPE_CHECKING:
    from healthmitra.core.audit.logger import AuditLogger
    from healthmitra.core.storage.repository import HealthRepository
    from healthmitra.domains.health.domain_logic.alert_dispatcher import AlertDispatcher
    from healthmitra.domains.health.domain_logic.insight_generator import InsightGenerator

logger = logging.getLogger(__name__)

_MAX_PAGE_SIZE = 100


def register_insight_tools(
    mcp: FastMCP,
    repository: HealthRepository,
    generator: InsightGenerator,
    audit_logger: AuditLogger | None = None,
    dispatcher: AlertDispatcher | None = None,
) -> None:
    """Register insight inbox tools on the MCP server."""

    @mcp.tool
    async def generate_insights(
        ctx: Context,
        subject_id: str,
    ) -> str:
        """Re-run trend analysis over a subject's stored readings.

        New readings are analyzed automatically by record_vitals; use this
        to refresh trend insights on demand.

        Args:
            subject_id: The person whose history to analyze.
        """
        if not subject_id:
            return json.dumps({"status": "error", "message": "subject_id is required"})

        start_time = time.monotonic()
        insights = generator.generate_insights(subject_id)
        elapsed_ms = (time.monotonic() - start_time) * 1000

        if audit_logger is not None:
            audit_logger.log_tool_call(
                "generate_insights",
                subject_id=subject_id,
                duration_ms=elapsed_ms,
                metadata={"insights": len(insights)},
            )
        return json.dumps({
            "status": "ok",
            "insights_generated": len(insights),
            "insights": [insight.to_dict() for insight in insights],
            "duration_ms": round(elapsed_ms, 1),
        })

    @mcp.tool
    async def list_insights(
        ctx: Context,
        subject_id: str,
        page: int = 1,
        limit: int = 10,
        severity: str | None = None,
        unread_only: bool = False,
    ) -> str:
        """List a subject's active insights, newest first.

        Args:
            subject_id: The person whose insights to list.
            page: Page number, starting at 1.
            limit: Insights per page (max 100).
            severity: Optional filter: 'low', 'medium', 'high' or 'critical'.
            unread_only: Only return insights not yet marked read.
        """
        if page < 1 or limit < 1:
            return json.dumps({"status": "error", "message": "page and limit must be at least 1"})
        limit = min(limit, _MAX_PAGE_SIZE)

        severity_filter: Severity | None = None
        if severity:
            try:
                severity_filter = Severity(severity)
            except ValueError:
                return json.dumps({"status": "error", "message": f"Unknown severity: {severity!r}"})

        is_read = False if unread_only else None
        insights = repository.list_insights(
            subject_id,
            severity=severity_filter,
            is_read=is_read,
            limit=limit,
            offset=(page - 1) * limit,
        )
        total = repository.count_insights(subject_id, severity=severity_filter, is_read=is_read)

        return json.dumps({
            "status": "ok",
            "insights": [insight.to_dict() for insight in insights],
            "pagination": {
                "current_page": page,
                "total_pages": math.ceil(total / limit),
                "total_items": total,
                "page_size": limit,
            },
            "unread_count": repository.count_unread(subject_id),
        }, indent=2)

    @mcp.tool
    async def mark_insight_read(
        ctx: Context,
        subject_id: str,
        insight_id: str,
    ) -> str:
        """Mark one of a subject's insights as read.

        Args:
            subject_id: The insight's owner.
            insight_id: The UUID of the insight.
        """
        if not repository.mark_read(insight_id, subject_id):
            return json.dumps({
                "status": "not_found",
                "insight_id": insight_id,
                "message": "Insight not found",
            })
        insight = repository.get_insight(insight_id)
        return json.dumps({
            "status": "ok",
            "insight_id": insight_id,
            "read_at": insight.read_at if insight else None,
        })

    @mcp.tool
    async def deactivate_insight(
        ctx: Context,
        subject_id: str,
        insight_id: str,
    ) -> str:
        """Dismiss an insight so it no longer appears in the inbox.

        Args:
            subject_id: The insight's owner.
            insight_id: The UUID of the insight.
        """
        if not repository.deactivate(insight_id, subject_id):
            return json.dumps({
                "status": "not_found",
                "insight_id": insight_id,
                "message": "Insight not found",
            })
        return json.dumps({"status": "deactivated", "insight_id": insight_id})

    @mcp.tool
    async def set_alert_contact(
        ctx: Context,
        subject_id: str,
        phone: str = "",
        sms_alerts_enabled: bool = True,
        display_name: str = "",
    ) -> str:
        """Set where a subject's urgent health alerts are sent by SMS.

        Args:
            subject_id: The person the alerts are about.
            phone: Phone number in international format (e.g. '+919800000000').
                Empty clears it.
            sms_alerts_enabled: Set to false to stop SMS alerts.
            display_name: Optional name used in messages.
        """
        if not subject_id:
            return json.dumps({"status": "error", "message": "subject_id is required"})

        repository.upsert_subject_contact(SubjectContact(
            subject_id=subject_id,
            phone=phone.strip(),
            sms_alerts_enabled=sms_alerts_enabled,
            display_name=display_name,
        ))
        if audit_logger is not None:
            audit_logger.log_tool_call(
                "set_alert_contact",
                {"phone": phone, "sms_alerts_enabled": sms_alerts_enabled},
                subject_id=subject_id,
            )
        return json.dumps({
            "status": "saved",
            "subject_id": subject_id,
            "has_phone": bool(phone.strip()),
            "sms_alerts_enabled": sms_alerts_enabled,
        })

    @mcp.tool
    async def send_reminder(
        ctx: Context,
        subject_id: str,
        reminder_type: str = "medication",
        medication_name: str = "",
        dosage: str = "",
        time_of_day: str = "",
        doctor_name: str = "",
        location: str = "",
    ) -> str:
        """Send a medication, appointment or checkup reminder by SMS.

        Uses the contact saved with set_alert_contact; nothing is sent if the
        subject has no phone on file or has SMS alerts turned off.

        Args:
            subject_id: The person to remind.
            reminder_type: 'medication', 'appointment' or 'checkup'.
            medication_name: Medication to take (medication reminders).
            dosage: Dose to take, e.g. '500 mg' (medication reminders).
            time_of_day: When to take the dose or when the appointment is.
            doctor_name: Doctor's name (appointment reminders).
            location: Where the appointment is (appointment reminders).
        """
        if not subject_id:
            return json.dumps({"status": "error", "message": "subject_id is required"})
        if dispatcher is None:
            return json.dumps({"status": "error", "message": "SMS reminders are not configured"})

        sender = dispatcher.sender
        if reminder_type == "medication":
            if not medication_name or not time_of_day:
                return json.dumps({
                    "status": "error",
                    "message": "medication reminders need medication_name and time_of_day",
                })
            message = format_medication_reminder(
                medication_name, dosage or "as prescribed", time_of_day, sender
            )
        elif reminder_type == "appointment":
            if not doctor_name or not time_of_day:
                return json.dumps({
                    "status": "error",
                    "message": "appointment reminders need doctor_name and time_of_day",
                })
            message = format_appointment_reminder(
                doctor_name, time_of_day, location or "location on file", sender
            )
        elif reminder_type == "checkup":
            message = format_checkup_reminder(sender)
        else:
            return json.dumps({
                "status": "error",
                "message": f"Unknown reminder_type: {reminder_type!r}",
            })

        result = dispatcher.send_reminder(repository.get_subject_contact(subject_id), message)
        if audit_logger is not None:
            audit_logger.log_tool_call(
                "send_reminder",
                {"reminder_type": reminder_type, "medication_name": medication_name},
                subject_id=subject_id,
                status=_reminder_status(result.delivered, result.error),
                error_type=result.error,
                metadata={"reminder_type": reminder_type},
            )
        if not result.delivered:
            return json.dumps({
                "status": "not_sent",
                "reminder_type": reminder_type,
                "reason": result.error,
            })
        return json.dumps({
            "status": "sent",
            "reminder_type": reminder_type,
            "receipt": result.receipt,
        })


def _reminder_status(delivered: bool, error: str | None) -> str:
    if delivered:
        return "success"
    if error in ("no_contact", "sms_disabled"):
        return "skipped"
    return "failure"
