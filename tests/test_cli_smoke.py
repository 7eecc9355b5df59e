from pathlib import Path

from click.testing import CliRunner
from conftest import make_settings

from survival_bot.main import cli
from survival_bot.types import CycleResult


def test_cli_version() -> None:
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "survival-bot version" in result.output


def test_cli_once_smoke(monkeypatch: object, tmp_path: Path) -> None:
    async def _fake_run_once(settings: object) -> CycleResult:
        return CycleResult(status="completed", elapsed_ms=1.0)

    settings = make_settings(tmp_path)
    monkeypatch.setattr("survival_bot.main.get_settings", lambda: settings)
    monkeypatch.setattr("survival_bot.main._run_once", _fake_run_once)
    result = CliRunner().invoke(cli, ["once"])
    assert result.exit_code == 0


def test_cli_once_requires_oracle_config(monkeypatch: object, tmp_path: Path) -> None:
    settings = make_settings(tmp_path, discord_bot_token="")
    monkeypatch.setattr("survival_bot.main.get_settings", lambda: settings)
    result = CliRunner().invoke(cli, ["once"])
    assert result.exit_code == 1


def test_cli_kill_and_revive(monkeypatch: object, tmp_path: Path) -> None:
    settings = make_settings(tmp_path)
    monkeypatch.setattr("survival_bot.main.get_settings", lambda: settings)
    runner = CliRunner()

    killed = runner.invoke(cli, ["kill", "exchange maintenance"])
    assert killed.exit_code == 0
    assert "exchange maintenance" in killed.output

    revived = runner.invoke(cli, ["revive"])
    assert revived.exit_code == 0
    assert "[ALIVE]" in revived.output

    blank = runner.invoke(cli, ["kill", "  "])
    assert blank.exit_code == 2


def test_cli_status_lists_missing_keys(monkeypatch: object, tmp_path: Path) -> None:
    settings = make_settings(tmp_path, oracle_user_id="", kill_secret="changeme")
    monkeypatch.setattr("survival_bot.main.get_settings", lambda: settings)
    result = CliRunner().invoke(cli, ["status"])
    assert result.exit_code == 0
    assert "ORACLE_USER_ID" in result.output
    assert "KILL_SECRET" in result.output
