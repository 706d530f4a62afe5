"""MCP tools for deleting stored readings and insights. All deletions are audit-logged."""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING

from fastmcp import Context, FastMCP

if TYPE_CHECKING:
    from healthmitra.core.audit.logger import AuditLogger
    from healthmitra.core.storage.repository import HealthRepository

logger = logging.getLogger(__name__)


def register_data_management_tools(
    mcp: FastMCP,
    repository: HealthRepository,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register data management tools on the MCP server."""

    @mcp.tool
    async def delete_subject_data(
        ctx: Context,
        subject_id: str,
        confirm: str = "",
    ) -> str:
        """Permanently delete every reading, insight and alert contact for a subject.

        Args:
            subject_id: The person whose data to delete.
            confirm: Must be exactly 'DELETE' to proceed. Safety gate.
        """
        if confirm != "DELETE":
            return json.dumps({
                "status": "confirmation_required",
                "message": "Pass confirm='DELETE' to permanently delete this subject's data.",
            })

        start_time = time.monotonic()
        count = repository.delete_subject_data(subject_id)
        elapsed_ms = (time.monotonic() - start_time) * 1000

        if audit_logger is not None:
            audit_logger.log_data_delete(
                tool_name="delete_subject_data",
                subject_id=subject_id,
                count=count,
            )
        return json.dumps({
            "status": "deleted",
            "records_deleted": count,
            "duration_ms": round(elapsed_ms, 1),
        })

    @mcp.tool
    async def purge_old_observations(
        ctx: Context,
        older_than_days: int = 365,
    ) -> str:
        """Delete all vital readings older than a number of days.

        Insights already generated from them are kept.

        Args:
            older_than_days: Delete readings older than this many days (default: 365).
        """
        if older_than_days < 1:
            return json.dumps({
                "status": "error",
                "message": "older_than_days must be at least 1.",
            })

        count = repository.purge_observations_before_days(older_than_days)
        if audit_logger is not None and count > 0:
            audit_logger.log_data_delete(
                tool_name="purge_old_observations",
                count=count,
                metadata={"older_than_days": older_than_days},
            )
        return json.dumps({
            "status": "purged",
            "observations_deleted": count,
            "older_than_days": older_than_days,
        })
