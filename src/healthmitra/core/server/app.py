"""HealthMitra insights MCP server - application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for `fastmcp run src/healthmitra/core/server/app.py:mcp`
"""

from __future__ import annotations

import logging

from fastmcp import FastMCP

from healthmitra.core.audit.logger import AuditLogger
from healthmitra.core.config.settings import Settings, get_settings
from healthmitra.core.storage.database import HealthDatabase
from healthmitra.core.storage.encryption import FieldEncryptor
from healthmitra.core.storage.models import Severity
from healthmitra.core.storage.repository import HealthRepository
from healthmitra.domains.health.connectors import AlertTransport
from healthmitra.domains.health.connectors.sms import LoggingSmsTransport, WebhookSmsTransport
from healthmitra.domains.health.domain_logic.alert_dispatcher import AlertDispatcher
from healthmitra.domains.health.domain_logic.insight_generator import InsightGenerator
from healthmitra.domains.health.domain_logic.risk_classifier import RiskClassifier
from healthmitra.domains.health.domain_logic.thresholds import (
    DEFAULT_CATALOG,
    ThresholdCatalog,
    ensure_valid,
    load_threshold_catalog,
)
from healthmitra.domains.health.domain_logic.trend_analyzer import TrendAnalyzer
from healthmitra.domains.health.tools.audit_tools import register_audit_tools
from healthmitra.domains.health.tools.data_management_tools import (
    register_data_management_tools,
)
from healthmitra.domains.health.tools.insight_tools import register_insight_tools
from healthmitra.domains.health.tools.vital_tools import register_vital_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "HealthMitra Insights"
SERVER_VERSION = "0.1.0"


def _build_transport(settings: Settings) -> AlertTransport:
    if settings.sms_transport == "webhook":
        logger.info("SMS alerts go through the webhook gateway")
        return WebhookSmsTransport(
            settings.sms_gateway_url,
            token=settings.sms_gateway_token,
            sender=settings.alert_sender_name,
            timeout=settings.sms_timeout_seconds,
        )
    logger.info("SMS alerts are logged only (sms_transport=log)")
    return LoggingSmsTransport()


def _build_repository(settings: Settings) -> HealthRepository:
    if settings.encryption_key:
        db_path = settings.db_path
        encryptor = FieldEncryptor(settings.encryption_key)
    else:
        logger.warning(
            "No ENCRYPTION_KEY configured, using a throwaway in-memory store. "
            "Set ENCRYPTION_KEY to keep readings and insights across restarts."
        )
        db_path = ":memory:"
        encryptor = FieldEncryptor(FieldEncryptor.generate_key())

    health_db = HealthDatabase(db_path)
    health_db.initialize()
    logger.info("Insight store initialized: %s (schema v%d)", db_path, health_db.get_schema_version())
    return HealthRepository(health_db, encryptor)


def create_app(
    *,
    repository_override: HealthRepository | None = None,
    audit_logger_override: AuditLogger | None = None,
    transport_override: AlertTransport | None = None,
    catalog_override: ThresholdCatalog | None = None,
) -> FastMCP:
    """Create and configure the HealthMitra insights MCP server.

    This is the main application factory. It:
    1. Loads and validates the threshold catalog (invalid catalogs are fatal)
    2. Initializes the encrypted insight store and audit trail
    3. Builds the risk engine: classifier, trend analyzer, alert dispatcher
    4. Registers all tools

    Raises:
        ThresholdCatalogError: If the configured threshold catalog is invalid.
    """
    settings = get_settings()

    server = FastMCP(
        SERVER_NAME,
        instructions=(
            "HealthMitra health risk and trend analysis. Records vital signs, "
            "classifies them against clinical thresholds, detects trends over "
            "recent readings and sends SMS alerts for urgent findings. "
            "Assessments are informational and do not replace medical advice."
        ),
    )

    # --- Threshold catalog ---
    if catalog_override is not None:
        catalog = ensure_valid(catalog_override)
    elif settings.thresholds_path:
        catalog = load_threshold_catalog(settings.thresholds_path)
    else:
        catalog = DEFAULT_CATALOG
    logger.info("Using threshold catalog %s", catalog.version)

    # --- Storage and audit trail ---
    repository = repository_override if repository_override is not None else _build_repository(settings)
    if audit_logger_override is not None:
        audit_logger = audit_logger_override
    else:
        audit_logger = AuditLogger(repository.database)

    # --- Risk engine ---
    classifier = RiskClassifier(catalog)
    trend_analyzer = TrendAnalyzer(catalog)
    transport = transport_override if transport_override is not None else _build_transport(settings)
    dispatcher = AlertDispatcher(
        transport,
        audit_logger=audit_logger,
        sender=settings.alert_sender_name,
        min_severity=Severity(settings.alert_min_severity),
    )
    generator = InsightGenerator(
        classifier,
        trend_analyzer,
        repository,
        repository,
        dispatcher=dispatcher,
        contacts=repository,
        audit_logger=audit_logger,
    )

    # --- Register tools ---
    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        return {
            "status": "ok",
            "server": SERVER_NAME,
            "version": SERVER_VERSION,
            "threshold_catalog": catalog.version,
            "sms_transport": transport.name,
            "observations_stored": repository.count_observations(),
        }

    register_vital_tools(server, repository, generator, classifier, trend_analyzer, audit_logger)
    register_insight_tools(server, repository, generator, audit_logger, dispatcher)
    register_data_management_tools(server, repository, audit_logger)
    register_audit_tools(server, audit_logger)
    logger.info("HealthMitra tools registered")

    return server


# Module-level instance for `fastmcp run .../app.py:mcp`.
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
