"""Tests for the manifest catalog and resolver."""

import tempfile
from pathlib import Path

import pytest
import yaml

from accelerator.exceptions import ManifestError
from accelerator.manifest.catalog import default_source_root, load_catalog, parse_catalog
from accelerator.manifest.models import MergeStrategy
from accelerator.manifest.resolver import group_by_destination, missing_options, resolve_entries
from accelerator.models.options import resolve_context


def _catalog(*entries: dict):
    return parse_catalog({"name": "test", "entries": list(entries)})


def _entry(entry_id: str, destination: str, **overrides) -> dict:
    data = {
        "id": entry_id,
        "source": f"{entry_id}.txt",
        "destination": destination,
        "strategy": "overwrite",
    }
    data.update(overrides)
    return data


# --- Catalog Tests ---


def test_bundled_catalog_loads():
    catalog = load_catalog(default_source_root())
    assert catalog.name == "developer-accelerator"
    ids = {e.id for e in catalog.entries}
    assert {"constitution", "vscode-settings", "agent-copilot"} <= ids


def test_bundled_catalog_templates_exist():
    root = default_source_root()
    for entry in load_catalog(root).entries:
        assert (root / "templates" / entry.source).is_file(), entry.source


def test_catalog_load_from_yaml():
    data = {
        "name": "custom",
        "version": "2",
        "entries": [_entry("readme", "README.md", strategy="create_if_missing", required=True)],
    }
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "catalog.yaml"
        path.write_text(yaml.dump(data))
        catalog = load_catalog(tmpdir)

    assert catalog.name == "custom"
    assert catalog.entries[0].strategy == MergeStrategy.CREATE_IF_MISSING
    assert catalog.entries[0].required


def test_catalog_missing_file():
    with tempfile.TemporaryDirectory() as tmpdir:
        with pytest.raises(ManifestError):
            load_catalog(tmpdir)


def test_catalog_rejects_invalid_strategy():
    with pytest.raises(ManifestError, match="invalid strategy"):
        _catalog(_entry("a", "a.txt", strategy="append"))


def test_catalog_rejects_missing_fields():
    with pytest.raises(ManifestError, match="destination"):
        _catalog({"id": "a", "source": "a.txt", "strategy": "overwrite"})


def test_catalog_rejects_unknown_predicate_values():
    with pytest.raises(ManifestError, match="vue"):
        _catalog(_entry("a", "a.txt", when={"frontend": ["vue"]}))


def test_catalog_rejects_paths_outside_target():
    with pytest.raises(ManifestError):
        _catalog(_entry("a", "../outside.txt"))


# --- Resolver Tests ---


def test_resolver_filters_by_predicate():
    catalog = _catalog(
        _entry("always", "always.txt"),
        _entry("ng", "fe.md", when={"frontend": ["angular"]}),
        _entry("react", "fe.md", when={"frontend": ["react"]}),
    )
    entries = resolve_entries(catalog, resolve_context(frontend="angular"))
    assert [e.id for e in entries] == ["always", "ng"]


def test_resolver_agent_predicate_matches_any_selected_agent():
    catalog = _catalog(_entry("agents-md", "AGENTS.md", when={"agents": ["copilot", "claude"]}))
    assert resolve_entries(catalog, resolve_context(agents=["claude"]))
    assert not resolve_entries(catalog, resolve_context(agents=["cursor"]))
    assert not resolve_entries(catalog, resolve_context())


def test_resolver_order_is_deterministic():
    entries = [_entry(name, f"{name}.txt") for name in ("zeta", "alpha", "mid")]
    first = resolve_entries(_catalog(*entries), resolve_context())
    second = resolve_entries(_catalog(*reversed(entries)), resolve_context())
    assert [e.id for e in first] == ["alpha", "mid", "zeta"]
    assert first == second


def test_resolver_deduplicates_identical_entries():
    catalog = _catalog(_entry("a", "a.txt"), _entry("a", "a.txt"))
    assert len(resolve_entries(catalog, resolve_context())) == 1


def test_resolver_rejects_divergent_duplicates():
    catalog = _catalog(_entry("a", "a.txt"), _entry("a", "b.txt"))
    with pytest.raises(ManifestError, match="more than once"):
        resolve_entries(catalog, resolve_context())


def test_resolver_rejects_exclusive_collision():
    catalog = _catalog(_entry("a", "same.txt"), _entry("b", "same.txt"))
    with pytest.raises(ManifestError, match="collide"):
        resolve_entries(catalog, resolve_context())


def test_resolver_allows_shared_create_if_missing():
    catalog = _catalog(
        _entry("a", "same.txt", strategy="create_if_missing", exclusive=False),
        _entry("b", "same.txt", strategy="create_if_missing", exclusive=False),
    )
    entries = resolve_entries(catalog, resolve_context())
    assert [[e.id for e in g] for g in group_by_destination(entries)] == [["a", "b"]]


def test_resolver_rejects_shared_non_create_entries():
    catalog = _catalog(
        _entry("a", "same.txt", exclusive=False),
        _entry("b", "same.txt", exclusive=False),
    )
    with pytest.raises(ManifestError, match="create_if_missing"):
        resolve_entries(catalog, resolve_context())


def test_resolver_rejects_unresolved_option():
    catalog = _catalog(_entry("pg", "db.md", when={"database": ["postgres"]}))
    with pytest.raises(ManifestError, match="unresolved option 'database'"):
        resolve_entries(catalog, resolve_context(frontend="react"))


def test_resolver_rejects_unknown_option_name():
    catalog = _catalog(_entry("x", "x.md", when={"cloud": ["azure"]}))
    with pytest.raises(ManifestError, match="unknown option 'cloud'"):
        resolve_entries(catalog, resolve_context())


def test_bundled_catalog_resolves_for_every_combination():
    catalog = load_catalog(default_source_root())
    for frontend in ("angular", "react"):
        for database in ("postgres", "sqlserver"):
            entries = resolve_entries(catalog, resolve_context(frontend, database, ["all"]))
            destinations = [e.destination for e in entries]
            assert ".vscode/settings.json" in destinations
            assert "CLAUDE.md" in destinations


def test_missing_options_lists_unset_predicate_options():
    catalog = _catalog(
        _entry("pg", "db.md", when={"database": ["postgres"]}),
        _entry("ng", "fe.md", when={"frontend": ["angular"]}),
        _entry("copilot", "agents.md", when={"agents": ["copilot"]}),
    )
    assert missing_options(catalog, resolve_context()) == ["database", "frontend"]
    assert missing_options(catalog, resolve_context(frontend="react")) == ["database"]
    assert missing_options(catalog, resolve_context("react", "postgres")) == []
