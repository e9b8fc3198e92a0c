"""
tests.test_cli

Operator scripts run end to end against a temporary database.
"""

from __future__ import annotations

import json

import pytest

from dealguard import cli
from dealguard.settings import get_settings


@pytest.fixture
def db_env(tmp_path, monkeypatch):
    monkeypatch.setenv("DEALGUARD_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_fee_quote(capsys) -> None:
    assert cli.main(["fee", "--tier", "DOCUMENT_CUSTODY", "--value", "1000000"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["fee_egp"] == "9500.00"
    assert out["tier"] == "DOCUMENT_CUSTODY"


def test_fee_errors(capsys) -> None:
    assert cli.main(["fee", "--tier", "FINANCIAL_ESCROW"]) == 1
    assert "requires a positive estimated value" in capsys.readouterr().err
    assert cli.main(["fee", "--tier", "FINANCIAL_ESCROW", "--value", "lots"]) == 2


def test_seed_list_and_check(db_env, capsys) -> None:
    assert cli.main(["init-db"]) == 0
    assert cli.main(["seed"]) == 0
    seeded = json.loads(capsys.readouterr().out)
    assert seeded["status"] == "PROPOSED"
    assert len(seeded["invitations"]) == 2

    assert cli.main(["list-deals", "--status", "PROPOSED"]) == 0
    listed = json.loads(capsys.readouterr().out)
    assert listed["pagination"]["total"] == 1
    assert listed["items"][0]["deal_number"] == seeded["deal_number"]

    assert cli.main(["check-deal", seeded["deal_number"], "--advance"]) == 0
    report = json.loads(capsys.readouterr().out)
    assert report["status"] == "PROPOSED"
    assert report["activation"]["advanced"] is False
    assert report["allowed_targets"] == ["ACCEPTED_BY_ALL", "CANCELLED"]
    assert report["next_steps"]["ACCEPTED_BY_ALL"]

    assert cli.main(["check-deal", "DEAL-1999-0001"]) == 1
