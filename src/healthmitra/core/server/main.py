"""HealthMitra server entry point - ``python -m healthmitra.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from healthmitra.core.config.settings import get_settings
from healthmitra.core.server.app import create_app


def _is_loopback_host(host: str) -> bool:
    if host in {"localhost"}:
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def run() -> None:
    """Start the HealthMitra MCP server with Streamable HTTP transport."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.hm_log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    logger = logging.getLogger(__name__)
    if not settings.hm_allow_insecure_bind and not _is_loopback_host(settings.hm_host):
        raise RuntimeError(
            "Refusing to bind HealthMitra server to a non-loopback host without an auth layer. "
            "Set HM_ALLOW_INSECURE_BIND=true to override (unsafe)."
        )
    logger.info("Starting HealthMitra insights server on %s:%d", settings.hm_host, settings.hm_port)

    mcp = create_app()
    mcp.run(
        transport="streamable-http",
        host=settings.hm_host,
        port=settings.hm_port,
    )


if __name__ == "__main__":
    run()
