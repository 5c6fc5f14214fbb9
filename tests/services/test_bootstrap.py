"""
init_ledger() applies settings to logging, the engine and the listeners.

The process-wide engine belongs to the test session, so the engine and
logging entry points are replaced with recorders here.
"""

import pytest

from school_config import LedgerSettings
from school_services import bootstrap


@pytest.fixture
def calls(monkeypatch):
    recorded = []
    monkeypatch.setattr(
        bootstrap, "configure_logging", lambda **kw: recorded.append(("logging", kw))
    )
    monkeypatch.setattr(
        bootstrap,
        "init_engine_from_url",
        lambda url, echo=False: recorded.append(("engine", url, echo)),
    )
    monkeypatch.setattr(bootstrap, "create_tables", lambda: recorded.append(("tables",)))
    monkeypatch.setattr(
        bootstrap,
        "register_immutability_listeners",
        lambda: recorded.append(("listeners",)),
    )
    return recorded


class TestInitLedger:

    def test_applies_settings_in_order(self, calls):
        settings = LedgerSettings(
            database_url="postgresql://ledger@db/school", echo_sql=True, log_level="WARNING"
        )

        applied = bootstrap.init_ledger(settings)

        assert applied is settings
        assert calls == [
            ("logging", {"level": "WARNING"}),
            ("engine", "postgresql://ledger@db/school", True),
            ("listeners",),
        ]

    def test_create_schema(self, calls):
        bootstrap.init_ledger(LedgerSettings(), create_schema=True)

        assert ("tables",) in calls
        assert calls.index(("tables",)) < calls.index(("listeners",))

    def test_loads_settings_when_none_given(self, calls, monkeypatch):
        monkeypatch.setattr(
            bootstrap, "load_settings", lambda: LedgerSettings(database_url="sqlite:///x.db")
        )

        applied = bootstrap.init_ledger()

        assert applied.database_url == "sqlite:///x.db"
        assert calls[1] == ("engine", "sqlite:///x.db", False)

    def test_logs_initialization_with_masked_password(self, calls, captured_logs):
        bootstrap.init_ledger(
            LedgerSettings(database_url="postgresql://ledger:s3cret@db/school"),
            create_schema=True,
        )

        record = [r for r in captured_logs() if r["message"] == "ledger_initialized"][0]
        assert record["schema_created"] is True
        assert record["carry_forward_policy"] == "earliest_outstanding"
        assert record["database_url"] == "postgresql://ledger:***@db/school"
