"""Tests for option resolution and install configuration."""

import tempfile
from pathlib import Path

import pytest

from accelerator.exceptions import UsageError
from accelerator.models.options import Agent, Database, Frontend, resolve_context
from accelerator.utils.config import CONFIG_FILE, InstallConfig, load_config, parse_config


# --- Render Context Tests ---


def test_resolve_context_parses_enums():
    context = resolve_context("angular", "postgres", ["copilot"])
    assert context.frontend == Frontend.ANGULAR
    assert context.database == Database.POSTGRES
    assert context.agents == frozenset({Agent.COPILOT})


def test_resolve_context_expands_all_agents():
    context = resolve_context(agents=["all"])
    assert context.agents == frozenset(Agent)


def test_resolve_context_deduplicates_agents():
    context = resolve_context(agents=["claude", "claude", "all"])
    assert len(context.agents) == len(Agent)


def test_resolve_context_rejects_unknown_values():
    with pytest.raises(UsageError, match="vue"):
        resolve_context(frontend="vue")
    with pytest.raises(UsageError):
        resolve_context(database="mysql")
    with pytest.raises(UsageError):
        resolve_context(agents=["copilot", "emacs"])


def test_resolve_context_rejects_unknown_tokens():
    with pytest.raises(UsageError):
        resolve_context(tokens={"author": "me"})


def test_render_context_is_immutable():
    context = resolve_context("react")
    with pytest.raises(AttributeError):
        context.frontend = Frontend.ANGULAR


def test_render_context_tokens():
    context = resolve_context("react", None, ["cursor", "claude"], tokens={"project_name": "shop"})
    tokens = context.tokens()
    assert tokens["frontend"] == "react"
    assert tokens["database"] == ""
    assert tokens["agents"] == "claude, cursor"
    assert tokens["project_name"] == "shop"


def test_unset_frontend_is_unresolved():
    context = resolve_context(database="postgres")
    assert not context.is_resolved("frontend")
    assert context.is_resolved("database")
    assert context.is_resolved("agents")


# --- Config Tests ---


def test_config_defaults_when_file_absent():
    with tempfile.TemporaryDirectory() as tmpdir:
        config = load_config(None, tmpdir)
    assert config == InstallConfig()


def test_config_loaded_from_target_root():
    with tempfile.TemporaryDirectory() as tmpdir:
        (Path(tmpdir) / CONFIG_FILE).write_text(
            "frontend: react\ndatabase: sqlserver\nagents: [claude]\nworkers: 4\n"
            "tokens:\n  project_name: billing\n"
        )
        config = load_config(None, tmpdir)
    assert config.frontend == "react"
    assert config.agents == ["claude"]
    assert config.workers == 4
    assert config.tokens == {"project_name": "billing"}


def test_config_cli_overrides_win():
    config = parse_config({"frontend": "react", "agents": ["claude"]})
    merged = config.merged_with(frontend="angular", agents=())
    assert merged.frontend == "angular"
    assert merged.agents == ["claude"]


def test_config_explicit_path_must_exist():
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(UsageError):
            load_config(Path(tmpdir) / "missing.yaml", tmpdir)


def test_config_rejects_unknown_keys():
    with pytest.raises(UsageError, match="colour"):
        parse_config({"colour": "blue"})


def test_config_rejects_out_of_range_workers():
    with pytest.raises(UsageError):
        parse_config({"workers": 32})


def test_config_rejects_malformed_yaml():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "bad.yaml"
        path.write_text("frontend: [unclosed\n")
        with pytest.raises(UsageError):
            load_config(path, tmpdir)
