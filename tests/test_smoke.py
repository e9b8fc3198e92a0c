"""
tests.test_smoke

Minimal smoke tests to validate the package boots against a fresh database.

Responsibilities:
- Ensure settings, logging and schema creation work in test mode.
"""

from __future__ import annotations

import pytest
from sqlalchemy import inspect

from dealguard.db.init_db import drop_db, init_db
from dealguard.db.session import create_engine
from dealguard.observability.logging import configure_logging, get_logger
from dealguard.settings import Settings


@pytest.mark.asyncio
async def test_schema_bootstrap(tmp_path) -> None:
    settings = Settings(env="test", database_url=f"sqlite+aiosqlite:///{tmp_path / 'smoke.db'}")
    configure_logging(service_name=settings.service_name, level="DEBUG")
    get_logger(__name__).info("smoke_start")

    engine = create_engine(settings)
    try:
        await init_db(engine)
        async with engine.connect() as conn:
            tables = await conn.run_sync(lambda c: set(inspect(c).get_table_names()))
        assert {"deals", "parties", "contracts", "milestones", "audit_events"} <= tables

        await drop_db(engine)
        async with engine.connect() as conn:
            tables = await conn.run_sync(lambda c: set(inspect(c).get_table_names()))
        assert tables == set()
    finally:
        await engine.dispose()


def test_settings_env_prefix(monkeypatch) -> None:
    monkeypatch.setenv("DEALGUARD_INBOUND_EMAIL_DOMAIN", "mail.example.org")
    monkeypatch.setenv("DEALGUARD_DEFAULT_PAGE_SIZE", "50")
    settings = Settings()
    assert settings.inbound_email_domain == "mail.example.org"
    assert settings.default_page_size == 50


# --- Module Notes -----------------------------------------------------------
# Service-level behaviour is covered per module (test_deals, test_custody, ...).
