"""Audit logger - PHI-free trail of insight generation, alerts and deletions.

Every insight-generation pass, alert delivery attempt, tool invocation and
deletion is recorded in the ``audit_log`` table. Nothing in the trail can be
read back as health data:

* ``tool_input_hash`` - SHA-256 of canonical JSON of the tool input.
* ``subject_hash``    - SHA-256 of the subject identifier.
* ``metadata``        - counts, severities and status codes only.
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from healthmitra.core.storage.database import HealthDatabase

logger = logging.getLogger(__name__)


def _hash_input(data: Any) -> str:
    """SHA-256 hash of canonical JSON - keeps raw values out of the trail.

    Returns:
        Hex-encoded SHA-256 digest, or empty string on failure.
    """
    try:
        canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()
    except (TypeError, ValueError):
        return ""


@dataclass
class AuditEvent:
    """A single audit log entry."""

    action: str                          # 'tool_invocation' | 'insight_generation' | 'alert' | 'data_delete'
    tool_name: str = ""
    tool_input_hash: str = ""
    subject_hash: str = ""
    insight_id: str | None = None
    duration_ms: float | None = None
    status: str = "success"              # 'success' | 'failure' | 'skipped'
    error_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class AuditLogger:
    """Records audit events to the ``audit_log`` SQLite table.

    All writes are committed immediately so no audit entry is lost on crash.
    A failed write is logged and swallowed: auditing never breaks the
    operation being audited.

    Usage::

        audit = AuditLogger(health_db)
        audit.log_insight_generation(
            subject_id="subject-1", insights_created=2, trend_findings=1,
        )
    """

    def __init__(self, database: HealthDatabase) -> None:
        self._db = database

    # ---------------------------------------------------------------
    # Write
    # ---------------------------------------------------------------

    def log_event(self, event: AuditEvent) -> str:
        """Insert an audit event and return its UUID (empty string on failure)."""
        event_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()

        metadata_json = (
            json.dumps(event.metadata, separators=(",", ":"))
            if event.metadata
            else None
        )

        try:
            conn = self._db.connection
            conn.execute(
                """INSERT INTO audit_log
                   (id, timestamp, action, tool_name, tool_input_hash, subject_hash,
                    insight_id, duration_ms, status, error_type, metadata_json)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    event_id,
                    now,
                    event.action,
                    event.tool_name or None,
                    event.tool_input_hash or None,
                    event.subject_hash or None,
                    event.insight_id,
                    event.duration_ms,
                    event.status,
                    event.error_type,
                    metadata_json,
                ),
            )
            conn.commit()
        except Exception:
            logger.exception("Failed to write audit event, event lost")
            return ""

        return event_id

    def log_tool_call(
        self,
        tool_name: str,
        tool_input: Any = None,
        *,
        subject_id: str = "",
        duration_ms: float | None = None,
        status: str = "success",
        error_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Log an MCP tool invocation.

        Args:
            tool_name: Name of the MCP tool.
            tool_input: Tool input data (hashed, never stored raw).
            subject_id: Subject the call concerned (hashed).
            duration_ms: Tool execution duration in milliseconds.
            status: 'success', 'failure' or 'skipped'.
            error_type: Exception class name or reason code on failure.
            metadata: Counts and status codes only.

        Returns:
            The generated event ID.
        """
        return self.log_event(AuditEvent(
            action="tool_invocation",
            tool_name=tool_name,
            tool_input_hash=_hash_input(tool_input) if tool_input else "",
            subject_hash=_hash_input(subject_id) if subject_id else "",
            duration_ms=duration_ms,
            status=status,
            error_type=error_type,
            metadata=metadata or {},
        ))

    def log_insight_generation(
        self,
        *,
        subject_id: str,
        insights_created: int,
        trend_findings: int = 0,
        failures: int = 0,
        alerts_sent: int = 0,
        duration_ms: float | None = None,
    ) -> str:
        """Record one insight-generation pass.

        A pass with sub-step failures is still recorded, with status 'partial'.

        Args:
            subject_id: Subject whose readings were analyzed (hashed).
            insights_created: Insights persisted by the pass.
            trend_findings: Trend insights among them.
            failures: Sub-steps that raised and were skipped.
            alerts_sent: Alerts delivered during the pass.
            duration_ms: Pass duration in milliseconds.

        Returns:
            The generated event ID.
        """
        return self.log_event(AuditEvent(
            action="insight_generation",
            subject_hash=_hash_input(subject_id),
            duration_ms=duration_ms,
            status="partial" if failures else "success",
            metadata={
                "insights_created": insights_created,
                "trend_findings": trend_findings,
                "failures": failures,
                "alerts_sent": alerts_sent,
            },
        ))

    def log_alert(
        self,
        *,
        subject_id: str,
        insight_id: str | None,
        severity: str,
        delivered: bool,
        error_type: str | None = None,
    ) -> str:
        """Record an alert delivery attempt and its outcome.

        Args:
            subject_id: Subject the alert is about (hashed).
            insight_id: Insight that triggered the alert, if persisted.
            severity: Insight severity value.
            delivered: Whether the transport accepted the message.
            error_type: Reason code ('no_contact', 'sms_disabled') or
                exception class name when not delivered.

        Returns:
            The generated event ID.
        """
        if delivered:
            status = "success"
        elif error_type in ("no_contact", "sms_disabled"):
            status = "skipped"
        else:
            status = "failure"
        return self.log_event(AuditEvent(
            action="alert",
            subject_hash=_hash_input(subject_id),
            insight_id=insight_id,
            status=status,
            error_type=error_type,
            metadata={"severity": severity},
        ))

    def log_data_delete(
        self,
        *,
        tool_name: str = "",
        subject_id: str = "",
        count: int = 0,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Log a data deletion event.

        Args:
            tool_name: Tool that initiated the delete.
            subject_id: Subject whose data was deleted (hashed), if any.
            count: Number of records deleted.
            metadata: Additional context.

        Returns:
            The generated event ID.
        """
        return self.log_event(AuditEvent(
            action="data_delete",
            tool_name=tool_name,
            subject_hash=_hash_input(subject_id) if subject_id else "",
            metadata={**(metadata or {}), "records_deleted": count},
        ))

    # ---------------------------------------------------------------
    # Read
    # ---------------------------------------------------------------

    def get_events(
        self,
        *,
        action: str | None = None,
        tool_name: str | None = None,
        since: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Query audit events with optional filters.

        Args:
            action: Filter by action type.
            tool_name: Filter by tool name.
            since: ISO 8601 timestamp lower bound.
            limit: Maximum events to return.

        Returns:
            List of event dicts, newest first.
        """
        conditions: list[str] = []
        params: list[Any] = []

        if action:
            conditions.append("action = ?")
            params.append(action)
        if tool_name:
            conditions.append("tool_name = ?")
            params.append(tool_name)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)

        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        query = f"SELECT * FROM audit_log{where} ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)

        rows = self._db.connection.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def count_events(self, *, since: str | None = None) -> int:
        """Count total audit events, optionally since a timestamp."""
        if since:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log WHERE timestamp >= ?", (since,)
            ).fetchone()
        else:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM audit_log"
            ).fetchone()
        return row[0]

    def count_alerts(self, *, status: str | None = None, since: str | None = None) -> int:
        """Count alert attempts, optionally by outcome ('success', 'failure', 'skipped')."""
        conditions = ["action = 'alert'"]
        params: list[Any] = []
        if status:
            conditions.append("status = ?")
            params.append(status)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)
        row = self._db.connection.execute(
            f"SELECT COUNT(*) FROM audit_log WHERE {' AND '.join(conditions)}", params
        ).fetchone()
        return row[0]
