"""Tests for the command-line interface."""

import json
import tempfile
from pathlib import Path

import pytest
from click.testing import CliRunner
from rich.console import Console

from accelerator import cli
from accelerator.cli import main
from accelerator.sync.provenance import STATE_FILE

OPTIONS = ["--frontend", "angular", "--database", "postgres", "--agent", "copilot"]


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    monkeypatch.setattr(cli, "console", Console(width=200))


def _install(target: str, *extra: str):
    return CliRunner().invoke(main, ["install", "--target", target, *OPTIONS, *extra])


def test_install_then_rerun():
    with tempfile.TemporaryDirectory() as tmpdir:
        result = _install(tmpdir)
        assert result.exit_code == 0, result.output
        assert (Path(tmpdir) / ".vscode/settings.json").is_file()
        assert (Path(tmpdir) / ".github/copilot-instructions.md").is_file()

        state = json.loads((Path(tmpdir) / STATE_FILE).read_text())
        assert state["schemaVersion"] == 2

        rerun = _install(tmpdir)
        assert rerun.exit_code == 0, rerun.output
        assert "0 written" in rerun.output


def test_install_uses_target_name_as_project_name():
    with tempfile.TemporaryDirectory() as tmpdir:
        target = Path(tmpdir) / "shop-portal"
        target.mkdir()
        assert _install(str(target)).exit_code == 0
        assert "shop-portal" in (target / "constitution.md").read_text()


def test_install_dry_run_writes_nothing():
    with tempfile.TemporaryDirectory() as tmpdir:
        result = _install(tmpdir, "--dry-run")
        assert result.exit_code == 0, result.output
        assert "would be written" in result.output
        assert list(Path(tmpdir).iterdir()) == []


def test_install_reports_conflict():
    with tempfile.TemporaryDirectory() as tmpdir:
        copilot = Path(tmpdir) / ".github/copilot-instructions.md"
        copilot.parent.mkdir(parents=True)
        copilot.write_text("<!-- accelerator:begin agent-copilot -->\nno end marker\n")

        result = _install(tmpdir)
        assert result.exit_code == 3, result.output
        assert "CONFLICT" in result.output
        assert copilot.read_text() == "<!-- accelerator:begin agent-copilot -->\nno end marker\n"


def test_install_reads_config_file():
    with tempfile.TemporaryDirectory() as tmpdir:
        (Path(tmpdir) / "accelerator.yaml").write_text(
            "frontend: react\ndatabase: sqlserver\nagents: [claude]\n"
        )
        result = CliRunner().invoke(main, ["install", "--target", tmpdir])
        assert result.exit_code == 0, result.output
        assert (Path(tmpdir) / "CLAUDE.md").is_file()
        assert "React" in (Path(tmpdir) / "docs/accelerator/frontend.md").read_text()


def test_invalid_option_is_usage_error():
    with tempfile.TemporaryDirectory() as tmpdir:
        result = CliRunner().invoke(main, ["install", "--target", tmpdir, "--frontend", "vue"])
        assert result.exit_code == 1
        assert list(Path(tmpdir).iterdir()) == []


def test_missing_catalog_option_is_usage_error():
    with tempfile.TemporaryDirectory() as tmpdir:
        result = CliRunner().invoke(main, ["install", "--target", tmpdir, "--database", "postgres", "--agent", "copilot"])
        assert result.exit_code == 1
        assert "--frontend" in result.output
        assert list(Path(tmpdir).iterdir()) == []


def test_missing_target_is_usage_error():
    result = CliRunner().invoke(main, ["install", *OPTIONS])
    assert result.exit_code == 1


def test_bad_config_is_usage_error():
    with tempfile.TemporaryDirectory() as tmpdir:
        (Path(tmpdir) / "accelerator.yaml").write_text("frontend: vue\n")
        result = CliRunner().invoke(main, ["install", "--target", tmpdir])
        assert result.exit_code == 1


def test_status_after_install():
    with tempfile.TemporaryDirectory() as tmpdir:
        _install(tmpdir)
        (Path(tmpdir) / "docs/accelerator/stack.yaml").write_text("edited: true\n")

        result = CliRunner().invoke(main, ["status", "--target", tmpdir, *OPTIONS])
        assert result.exit_code == 2
        assert "locally modified" in result.output


def test_validate_command():
    with tempfile.TemporaryDirectory() as tmpdir:
        result = CliRunner().invoke(main, ["validate", "--target", tmpdir, *OPTIONS])
        assert result.exit_code == 4

        _install(tmpdir)
        result = CliRunner().invoke(main, ["validate", "--target", tmpdir, *OPTIONS])
        assert result.exit_code == 0, result.output


def test_catalog_command():
    result = CliRunner().invoke(main, ["catalog", "--frontend", "react"])
    assert result.exit_code == 0
    assert "vscode-settings" in result.output
