"""Health data repository - observations, insights and subject contacts.

The repository mediates between domain objects (Observation, Insight, etc.)
and the SQLite database, using FieldEncryptor for the insight narrative and
contact phone numbers. It is the concrete observation source, insight sink
and subject directory used by the insight generator.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any

from healthmitra.core.storage.database import HealthDatabase
from healthmitra.core.storage.encryption import FieldEncryptor
from healthmitra.core.storage.models import (
    BloodPressureValue,
    EvidenceItem,
    Insight,
    InsightKind,
    Observation,
    Severity,
    SubjectContact,
    VitalParameter,
)

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Raised when repository operations fail."""


def to_utc_iso(value: datetime) -> str:
    """Normalize a datetime to a sortable UTC ISO 8601 string.

    Naive datetimes are taken to be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class HealthRepository:
    """CRUD repository for observations, encrypted insights and contacts.

    Usage::

        db = HealthDatabase(":memory:")
        db.initialize()
        repo = HealthRepository(db, FieldEncryptor(key="..."))

        stored = repo.save_observation(observation)
        history = repo.fetch_recent_observations(
            "subject-1", VitalParameter.WEIGHT, since=cutoff, max_count=10
        )
    """

    def __init__(self, database: HealthDatabase, encryptor: FieldEncryptor) -> None:
        self._db = database
        self._enc = encryptor

    @property
    def database(self) -> HealthDatabase:
        return self._db

    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    @staticmethod
    def _now_iso() -> str:
        return datetime.now(timezone.utc).isoformat(timespec="microseconds")

    # ------------------------------------------------------------------
    # Observations
    # ------------------------------------------------------------------

    def save_observation(self, observation: Observation) -> Observation:
        """Persist an observation.

        Args:
            observation: The reading to store. If ``observation.id`` is empty,
                a UUID is generated.

        Returns:
            The stored observation (with its ID).
        """
        oid = observation.id or self._new_id()
        value = observation.value
        scalar: float | None = None
        systolic: float | None = None
        diastolic: float | None = None
        if isinstance(value, BloodPressureValue):
            systolic, diastolic = value.systolic, value.diastolic
        elif value is not None:
            scalar = float(value)

        conn = self._db.connection
        conn.execute(
            """INSERT INTO observations
               (id, subject_id, parameter, observed_at, value, systolic, diastolic, unit, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                oid,
                observation.subject_id,
                observation.parameter.value,
                to_utc_iso(observation.timestamp),
                scalar,
                systolic,
                diastolic,
                observation.unit,
                self._now_iso(),
            ),
        )
        conn.commit()
        logger.debug("Saved observation %s (%s)", oid, observation.parameter.value)
        return replace(observation, id=oid)

    def get_observation(self, observation_id: str) -> Observation | None:
        row = self._db.connection.execute(
            "SELECT * FROM observations WHERE id = ?", (observation_id,)
        ).fetchone()
        return self._row_to_observation(row) if row is not None else None

    def fetch_recent_observations(
        self,
        subject_id: str,
        parameter: VitalParameter,
        since: datetime | None = None,
        max_count: int = 10,
    ) -> list[Observation]:
        """Most recent readings of one parameter, ordered oldest -> newest.

        Args:
            subject_id: The subject whose history to read.
            parameter: Which vital to read.
            since: Optional lower bound on the observation time (inclusive).
            max_count: Keep only the newest ``max_count`` readings.
        """
        conditions = ["subject_id = ?", "parameter = ?"]
        params: list[Any] = [subject_id, parameter.value]
        if since is not None:
            conditions.append("observed_at >= ?")
            params.append(to_utc_iso(since))

        where = " AND ".join(conditions)
        query = f"SELECT * FROM observations WHERE {where} ORDER BY observed_at DESC LIMIT ?"
        params.append(max_count)

        rows = self._db.connection.execute(query, params).fetchall()
        return [self._row_to_observation(row) for row in reversed(rows)]

    def latest_observation(
        self, subject_id: str, parameter: VitalParameter
    ) -> Observation | None:
        """Newest reading of one parameter, or None."""
        recent = self.fetch_recent_observations(subject_id, parameter, max_count=1)
        return recent[0] if recent else None

    def count_observations(self, subject_id: str | None = None) -> int:
        if subject_id:
            row = self._db.connection.execute(
                "SELECT COUNT(*) FROM observations WHERE subject_id = ?", (subject_id,)
            ).fetchone()
        else:
            row = self._db.connection.execute("SELECT COUNT(*) FROM observations").fetchone()
        return row[0]

    # ------------------------------------------------------------------
    # Insights
    # ------------------------------------------------------------------

    def save_insight(self, insight: Insight) -> Insight:
        """Persist an insight and its evidence links in one transaction.

        Returns:
            A copy of the insight carrying its assigned ID and creation time.
        """
        iid = insight.id or self._new_id()
        created_at = insight.created_at or self._now_iso()
        narrative = self._enc.encrypt({
            "message": insight.message,
            "recommendations": list(insight.recommendations),
            "evidence": [e.to_dict() for e in insight.evidence],
        })

        conn = self._db.connection
        # Insight and evidence rows commit together.
        with conn:
            conn.execute(
                """INSERT INTO insights
                   (id, subject_id, kind, severity, title, narrative_enc, confidence,
                    is_read, read_at, is_active, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    iid,
                    insight.subject_id,
                    insight.kind.value,
                    insight.severity.value,
                    insight.title,
                    narrative,
                    insight.confidence,
                    int(insight.is_read),
                    insight.read_at,
                    int(insight.is_active),
                    created_at,
                ),
            )
            for item in insight.evidence:
                if item.source_observation_id:
                    conn.execute(
                        """INSERT INTO insight_evidence (insight_id, observation_id, parameter)
                           VALUES (?, ?, ?)""",
                        (iid, item.source_observation_id, item.parameter),
                    )

        logger.info(
            "Saved insight %s (kind=%s, severity=%s)",
            iid, insight.kind.value, insight.severity.value,
        )
        return replace(insight, id=iid, created_at=created_at)

    def get_insight(self, insight_id: str) -> Insight | None:
        """Retrieve an insight by ID, decrypting its narrative.

        Returns:
            The insight, or None if not found.
        """
        row = self._db.connection.execute(
            "SELECT * FROM insights WHERE id = ?", (insight_id,)
        ).fetchone()
        return self._row_to_insight(row) if row is not None else None

    def list_insights(
        self,
        subject_id: str,
        *,
        severity: Severity | None = None,
        is_read: bool | None = None,
        active_only: bool = True,
        limit: int = 10,
        offset: int = 0,
    ) -> list[Insight]:
        """Query a subject's insights, newest first.

        Args:
            subject_id: The insights' owner.
            severity: Only insights of this severity.
            is_read: Only read (True) or unread (False) insights.
            active_only: Skip deactivated insights.
            limit: Page size.
            offset: Rows to skip.

        Returns:
            Decrypted insights, evidence included.
        """
        where, params = self._insight_filter(subject_id, severity, is_read, active_only)
        query = f"SELECT * FROM insights WHERE {where} ORDER BY created_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        rows = self._db.connection.execute(query, params).fetchall()
        return [self._row_to_insight(row) for row in rows]

    def count_insights(
        self,
        subject_id: str,
        *,
        severity: Severity | None = None,
        is_read: bool | None = None,
        active_only: bool = True,
    ) -> int:
        where, params = self._insight_filter(subject_id, severity, is_read, active_only)
        row = self._db.connection.execute(
            f"SELECT COUNT(*) FROM insights WHERE {where}", params
        ).fetchone()
        return row[0]

    def count_unread(self, subject_id: str) -> int:
        """Active insights the subject has not read yet."""
        return self.count_insights(subject_id, is_read=False, active_only=True)

    def mark_read(self, insight_id: str, subject_id: str | None = None) -> bool:
        """Flag an insight as read and stamp ``read_at``.

        Args:
            insight_id: The UUID of the insight.
            subject_id: When given, only that subject's insight is touched.

        Returns:
            False when no such insight exists.
        """
        return self._update_insight(
            insight_id, subject_id, "is_read = 1, read_at = ?", [self._now_iso()]
        )

    def deactivate(self, insight_id: str, subject_id: str | None = None) -> bool:
        """Soft-delete an insight so it no longer shows in the inbox."""
        return self._update_insight(insight_id, subject_id, "is_active = 0", [])

    def _update_insight(
        self, insight_id: str, subject_id: str | None, assignment: str, values: list[Any]
    ) -> bool:
        query = f"UPDATE insights SET {assignment} WHERE id = ?"
        params = [*values, insight_id]
        if subject_id:
            query += " AND subject_id = ?"
            params.append(subject_id)
        conn = self._db.connection
        cursor = conn.execute(query, params)
        conn.commit()
        return cursor.rowcount > 0

    @staticmethod
    def _insight_filter(
        subject_id: str,
        severity: Severity | None,
        is_read: bool | None,
        active_only: bool,
    ) -> tuple[str, list[Any]]:
        conditions = ["subject_id = ?"]
        params: list[Any] = [subject_id]
        if severity is not None:
            conditions.append("severity = ?")
            params.append(Severity(severity).value)
        if is_read is not None:
            conditions.append("is_read = ?")
            params.append(int(is_read))
        if active_only:
            conditions.append("is_active = 1")
        return " AND ".join(conditions), params

    # ------------------------------------------------------------------
    # Subject contacts
    # ------------------------------------------------------------------

    def upsert_subject_contact(self, contact: SubjectContact) -> None:
        """Insert or update where a subject's alerts are delivered."""
        conn = self._db.connection
        conn.execute(
            """INSERT INTO subject_contacts (subject_id, phone_enc, sms_alerts_enabled, display_name, updated_at)
               VALUES (?, ?, ?, ?, ?)
               ON CONFLICT(subject_id) DO UPDATE SET
                   phone_enc = excluded.phone_enc,
                   sms_alerts_enabled = excluded.sms_alerts_enabled,
                   display_name = excluded.display_name,
                   updated_at = excluded.updated_at""",
            (
                contact.subject_id,
                self._enc.encrypt(contact.phone) if contact.phone else None,
                int(contact.sms_alerts_enabled),
                contact.display_name,
                self._now_iso(),
            ),
        )
        conn.commit()

    def get_subject_contact(self, subject_id: str) -> SubjectContact | None:
        """Retrieve a subject's alert contact, decrypting the phone number.

        Returns:
            The contact, or None if none is on file.
        """
        row = self._db.connection.execute(
            "SELECT * FROM subject_contacts WHERE subject_id = ?", (subject_id,)
        ).fetchone()
        if row is None:
            return None
        return SubjectContact(
            subject_id=row["subject_id"],
            phone=self._enc.decrypt(row["phone_enc"]) or "",
            sms_alerts_enabled=bool(row["sms_alerts_enabled"]),
            display_name=row["display_name"] or "",
            updated_at=row["updated_at"],
        )

    # ------------------------------------------------------------------
    # Deletion / data retention
    # ------------------------------------------------------------------

    def delete_subject_data(self, subject_id: str) -> int:
        """Delete every observation, insight and contact for a subject.

        Returns:
            Number of observation and insight rows removed.
        """
        conn = self._db.connection
        with conn:
            conn.execute(
                """DELETE FROM insight_evidence WHERE insight_id IN
                   (SELECT id FROM insights WHERE subject_id = ?)""",
                (subject_id,),
            )
            insights = conn.execute(
                "DELETE FROM insights WHERE subject_id = ?", (subject_id,)
            ).rowcount
            observations = conn.execute(
                "DELETE FROM observations WHERE subject_id = ?", (subject_id,)
            ).rowcount
            conn.execute("DELETE FROM subject_contacts WHERE subject_id = ?", (subject_id,))
        logger.warning(
            "Deleted subject data: %d observations, %d insights", observations, insights
        )
        return observations + insights

    def purge_observations_before(self, before: datetime) -> int:
        """Delete observations measured before ``before``.

        Returns:
            Number of observations deleted.
        """
        conn = self._db.connection
        cursor = conn.execute(
            "DELETE FROM observations WHERE observed_at < ?", (to_utc_iso(before),)
        )
        conn.commit()
        logger.info("Purged %d observations older than %s", cursor.rowcount, before.isoformat())
        return cursor.rowcount

    def purge_observations_before_days(self, days: int) -> int:
        """Convenience wrapper around :meth:`purge_observations_before`."""
        return self.purge_observations_before(datetime.now(timezone.utc) - timedelta(days=days))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_observation(row: Any) -> Observation:
        parameter = VitalParameter(row["parameter"])
        value: Any
        if parameter is VitalParameter.BLOOD_PRESSURE:
            value = BloodPressureValue(systolic=row["systolic"], diastolic=row["diastolic"])
        else:
            value = row["value"]
        return Observation(
            id=row["id"],
            subject_id=row["subject_id"],
            timestamp=datetime.fromisoformat(row["observed_at"]),
            parameter=parameter,
            value=value,
            unit=row["unit"] or "",
        )

    def _row_to_insight(self, row: Any) -> Insight:
        narrative = self._enc.decrypt(row["narrative_enc"]) or {}
        return Insight(
            id=row["id"],
            subject_id=row["subject_id"],
            kind=InsightKind(row["kind"]),
            severity=Severity(row["severity"]),
            title=row["title"],
            message=narrative.get("message", ""),
            recommendations=list(narrative.get("recommendations", [])),
            confidence=row["confidence"],
            evidence=[
                EvidenceItem(
                    parameter=e.get("parameter", ""),
                    value=e.get("value", ""),
                    source_observation_id=e.get("source_observation_id"),
                )
                for e in narrative.get("evidence", [])
            ],
            is_read=bool(row["is_read"]),
            is_active=bool(row["is_active"]),
            created_at=row["created_at"],
            read_at=row["read_at"],
        )
