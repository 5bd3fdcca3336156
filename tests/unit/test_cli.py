import json

import pytest
from click.testing import CliRunner

from cli import cli


@pytest.fixture
def runner(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("LOGGING__CONSOLE_ENABLED", "false")
    monkeypatch.setenv("LOGGING__LEVEL", "ERROR")
    monkeypatch.setenv("PERSISTENCE__DATA_DIR", str(tmp_path / "data"))
    return CliRunner()


def test_risk_status_prints_limits(runner):
    result = runner.invoke(cli, ["risk-status"])

    assert result.exit_code == 0, result.output
    status = json.loads(result.stdout)
    assert status["circuit_broken"] is False
    assert status["limits"]["max_open_positions"] == 5


def test_sell_all_requires_confirmation(runner):
    result = runner.invoke(cli, ["sell-all"], input="n\n")
    assert result.exit_code != 0


def test_sell_all_with_nothing_open(runner):
    result = runner.invoke(cli, ["sell-all", "--yes"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)["executions"] == []


def test_backup_needs_file_backend(runner):
    result = runner.invoke(cli, ["backup"])

    assert result.exit_code == 1
    assert "does not support backups" in result.output


def test_backup_with_file_backend(runner, monkeypatch, tmp_path):
    monkeypatch.setenv("PERSISTENCE__BACKEND", "file")

    result = runner.invoke(cli, ["backup"])

    assert result.exit_code == 0, result.output
    assert "Backup written to" in result.stdout
    assert list((tmp_path / "data" / "backups").glob("portfolio-*.json"))


def test_file_backend_reports_persisted_breaker(runner, monkeypatch, tmp_path):
    monkeypatch.setenv("PERSISTENCE__BACKEND", "file")
    settings_file = tmp_path / "data" / "settings.json"
    settings_file.parent.mkdir(parents=True, exist_ok=True)
    settings_file.write_text(json.dumps({"version": 1, "risk_limits": {"circuit_broken": True}}), encoding="utf-8")

    assert json.loads(runner.invoke(cli, ["risk-status"]).stdout)["circuit_broken"] is True

    reset = runner.invoke(cli, ["risk-reset"])
    assert reset.exit_code == 0, reset.output

    status = runner.invoke(cli, ["risk-status"])
    assert status.exit_code == 0, status.output
    assert json.loads(status.stdout)["circuit_broken"] is False
