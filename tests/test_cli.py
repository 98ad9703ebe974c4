"""
Tests for the command line interface.
"""

from datetime import datetime, timezone

import pytest
from typer.testing import CliRunner

from delivery_review import cli

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_sessions(monkeypatch, session_factory):
    """Point the CLI at the per-test database."""
    monkeypatch.setattr(cli, "get_session_local", lambda: session_factory)


@pytest.fixture
def overrun_item(make_work_item, clock):
    clock.set(datetime(2020, 1, 6, 9, 0, tzinfo=timezone.utc))
    return make_work_item(allowed_duration_minutes=60)


def test_version():
    result = runner.invoke(cli.app, ["version"])

    assert result.exit_code == 0
    assert "Delivery Review" in result.output


def test_reconcile_late_dry_run(services, overrun_item):
    result = runner.invoke(cli.app, ["reconcile-late", "--dry-run"])

    assert result.exit_code == 0
    services.db.expire_all()
    assert services.work_items.get(overrun_item.id).status == "active"


def test_reconcile_late(services, overrun_item):
    result = runner.invoke(cli.app, ["reconcile-late"])

    assert result.exit_code == 0
    assert overrun_item.id in result.output
    services.db.expire_all()
    assert services.work_items.get(overrun_item.id).status == "late"


def test_issue_and_revoke_link(services, make_work_item):
    item = make_work_item()

    result = runner.invoke(cli.app, ["issue-link", item.id, "--ttl-days", "2"])

    assert result.exit_code == 0, result.output
    links = services.links.list_for_work_item(item.id)
    assert len(links) == 1
    assert links[0].created_by == "cli"

    result = runner.invoke(cli.app, ["revoke-link", links[0].id])

    assert result.exit_code == 0
    services.db.expire_all()
    assert not services.links.get(links[0].id).is_active


def test_issue_link_for_unknown_item():
    result = runner.invoke(cli.app, ["issue-link", "missing"])

    assert result.exit_code == 1
    assert "not found" in result.output
