"""Application settings loaded from environment variables."""

from __future__ import annotations

from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """HealthMitra insights server configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    # Server
    # Loopback by default: the MCP surface has no auth layer of its own.
    hm_host: str = "127.0.0.1"
    hm_port: int = 8001
    hm_log_level: str = "info"
    hm_allow_insecure_bind: bool = False

    # Storage
    db_path: str = "~/.healthmitra/insights.db"
    encryption_key: str = ""

    # Threshold catalog override (YAML). Empty = built-in reference catalog.
    thresholds_path: str = ""

    # Alerts
    sms_transport: Literal["log", "webhook"] = "log"
    sms_gateway_url: str = ""
    sms_gateway_token: str = ""
    sms_timeout_seconds: float = 10.0
    alert_sender_name: str = "HealthMitra"
    alert_min_severity: Literal["low", "medium", "high", "critical"] = "high"


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
