"""Catalog loading: the YAML manifest of installable entries.

The bundled catalog lives at ``accelerator/data/catalog.yaml`` next to the
templates it references. A template source checked out elsewhere (for
example as a git submodule) may ship its own ``catalog.yaml``.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml

from accelerator.exceptions import ManifestError
from accelerator.manifest.models import (
    DEFAULT_ARRAY_KEYS,
    Catalog,
    ManifestEntry,
    MergeStrategy,
    Predicate,
)
from accelerator.models.options import OPTION_ENUMS, OPTION_NAMES

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parent.parent / "data"
CATALOG_FILE = "catalog.yaml"
TEMPLATES_DIR = "templates"

_ENTRY_KEYS = {
    "id",
    "source",
    "destination",
    "strategy",
    "when",
    "required",
    "exclusive",
    "description",
    "references",
    "array_keys",
}


def default_source_root() -> Path:
    """Directory holding the bundled catalog and its ``templates/`` tree."""
    return DATA_DIR


def load_catalog(path: str | Path) -> Catalog:
    """Load a catalog from a YAML file.

    Raises:
        ManifestError: If the file is missing, unparsable or structurally invalid.
    """
    path = Path(path)
    if path.is_dir():
        path = path / CATALOG_FILE
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise ManifestError(f"Catalog not found: {path}", context={"path": str(path)}) from None
    except yaml.YAMLError as e:
        raise ManifestError(f"Invalid catalog YAML: {e}", context={"path": str(path)}) from e

    catalog = parse_catalog(data)
    logger.debug("Loaded catalog %s with %d entries from %s", catalog.name, len(catalog.entries), path)
    return catalog


def parse_catalog(data: dict) -> Catalog:
    """Build a :class:`Catalog` from already-parsed YAML/JSON data."""
    if not isinstance(data, dict):
        raise ManifestError("Catalog must be a mapping with an 'entries' list")

    entries_data = data.get("entries")
    if not isinstance(entries_data, list):
        raise ManifestError("Catalog is missing an 'entries' list")

    entries = [_parse_entry(item, i) for i, item in enumerate(entries_data)]
    return Catalog(
        name=str(data.get("name", "unnamed")),
        version=str(data.get("version", "1")),
        entries=entries,
    )


def _parse_entry(item: dict, index: int) -> ManifestEntry:
    if not isinstance(item, dict):
        raise ManifestError(f"Catalog entry {index + 1} is not a mapping")

    for key in ("id", "source", "destination", "strategy"):
        if not item.get(key):
            raise ManifestError(
                f"Catalog entry {index + 1} missing required field '{key}'",
                context={"entry": item.get("id", index + 1)},
            )

    entry_id = str(item["id"])
    unknown = sorted(set(item) - _ENTRY_KEYS)
    if unknown:
        raise ManifestError(
            f"Entry '{entry_id}' has unknown field(s): {', '.join(unknown)}",
            context={"entry": entry_id},
        )

    try:
        strategy = MergeStrategy(item["strategy"])
    except ValueError:
        allowed = ", ".join(s.value for s in MergeStrategy)
        raise ManifestError(
            f"Entry '{entry_id}' has invalid strategy '{item['strategy']}'. Must be one of: {allowed}",
            context={"entry": entry_id},
        ) from None

    when = item.get("when") or {}
    if not isinstance(when, dict):
        raise ManifestError(f"Entry '{entry_id}': 'when' must be a mapping", context={"entry": entry_id})
    predicate = Predicate.from_mapping(when)
    _check_predicate_values(entry_id, predicate)

    destination = _normalize_path(str(item["destination"]), entry_id)

    return ManifestEntry(
        id=entry_id,
        source=str(item["source"]),
        destination=destination,
        strategy=strategy,
        predicate=predicate,
        required=bool(item.get("required", False)),
        exclusive=bool(item.get("exclusive", True)),
        description=str(item.get("description", "")),
        references=tuple(_normalize_path(str(r), entry_id) for r in item.get("references", [])),
        array_keys=tuple(item.get("array_keys", DEFAULT_ARRAY_KEYS)),
    )


def _check_predicate_values(entry_id: str, predicate: Predicate) -> None:
    """Reject predicate values outside the closed option enums.

    Unknown option *names* are left for evaluation time, where they surface as
    unresolved options.
    """
    for option, values in predicate.conditions:
        if option not in OPTION_NAMES:
            continue
        allowed = {m.value for m in OPTION_ENUMS[option]}
        bad = sorted(values - allowed)
        if bad:
            raise ManifestError(
                f"Entry '{entry_id}' predicate has invalid {option} value(s): {', '.join(bad)}",
                context={"entry": entry_id, "option": option},
            )


def _normalize_path(raw: str, entry_id: str) -> str:
    """Return a POSIX-style path relative to the target root."""
    path = Path(raw.replace("\\", "/"))
    if path.is_absolute() or ".." in path.parts:
        raise ManifestError(
            f"Entry '{entry_id}' path must be relative to the target root: {raw}",
            context={"entry": entry_id, "path": raw},
        )
    return path.as_posix()
