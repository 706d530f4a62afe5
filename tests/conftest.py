"""Shared test fixtures for HealthMitra insight tests."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ENCRYPTION_KEY", "")
    monkeypatch.setenv("THRESHOLDS_PATH", "")
    monkeypatch.setenv("SMS_TRANSPORT", "log")
    monkeypatch.setenv("ALERT_MIN_SEVERITY", "high")
    monkeypatch.setenv("DB_PATH", ":memory:")

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from healthmitra.domains.health.connectors import AlertDeliveryError  # noqa: E402


# ---------------------------------------------------------------------------
# Recording alert transport
# ---------------------------------------------------------------------------

class RecordingTransport:
    """AlertTransport double that records messages and can be told to fail."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[tuple[str, str]] = []

    @property
    def name(self) -> str:
        return "recording"

    def send_alert(self, contact_address: str, message: str) -> str:
        if self.fail:
            raise AlertDeliveryError("gateway down")
        self.sent.append((contact_address, message))
        return f"receipt-{len(self.sent)}"


@pytest.fixture
def recording_transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def failing_transport() -> RecordingTransport:
    return RecordingTransport(fail=True)


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def health_db():
    """Create an in-memory HealthDatabase for testing."""
    from healthmitra.core.storage.database import HealthDatabase

    db = HealthDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def field_encryptor():
    """Create a FieldEncryptor with a test key."""
    from cryptography.fernet import Fernet

    from healthmitra.core.storage.encryption import FieldEncryptor

    return FieldEncryptor(Fernet.generate_key().decode())


@pytest.fixture
def health_repository(health_db, field_encryptor):
    """Create a HealthRepository backed by in-memory SQLite."""
    from healthmitra.core.storage.repository import HealthRepository

    return HealthRepository(health_db, field_encryptor)


@pytest.fixture
def audit_logger(health_db):
    """Create an AuditLogger backed by in-memory SQLite."""
    from healthmitra.core.audit.logger import AuditLogger

    return AuditLogger(health_db)
