"""Manifest resolver: selected options in, ordered entries out.

Resolution is deterministic. The same catalog and options always produce the
same entries in the same order (sorted by id), in any process.
"""

from __future__ import annotations

import logging
from collections import defaultdict

from accelerator.exceptions import ManifestError
from accelerator.manifest.models import Catalog, ManifestEntry, MergeStrategy
from accelerator.models.options import OPTION_NAMES, RenderContext

logger = logging.getLogger(__name__)


def resolve_entries(catalog: Catalog, context: RenderContext) -> list[ManifestEntry]:
    """Return the entries active for ``context``, sorted by id.

    Raises:
        ManifestError: On divergent duplicate ids, on destination collisions
            involving an exclusive entry, or when a predicate cannot be
            evaluated against ``context``.
    """
    unique = _deduplicate(catalog.entries)

    active = []
    for entry in unique.values():
        try:
            if entry.is_active(context):
                active.append(entry)
        except ManifestError as e:
            e.context.setdefault("entry", entry.id)
            raise ManifestError(f"Entry '{entry.id}': {e}", context=e.context) from e

    active.sort(key=lambda e: e.id)
    _check_destinations(active)

    logger.debug(
        "Resolved %d of %d entries for %s",
        len(active),
        len(catalog.entries),
        context.describe(),
    )
    return active


def missing_options(catalog: Catalog, context: RenderContext) -> list[str]:
    """Options some catalog predicate tests that ``context`` leaves unset, sorted."""
    missing = set()
    for entry in catalog.entries:
        for option in entry.predicate.options():
            if option in OPTION_NAMES and not context.is_resolved(option):
                missing.add(option)
    return sorted(missing)


def group_by_destination(entries: list[ManifestEntry]) -> list[list[ManifestEntry]]:
    """Group entries that share a destination, preserving resolved order.

    Groups are ordered by the position of their first entry.
    """
    groups: dict[str, list[ManifestEntry]] = {}
    for entry in entries:
        groups.setdefault(entry.destination, []).append(entry)
    return list(groups.values())


def _deduplicate(entries: list[ManifestEntry]) -> dict[str, ManifestEntry]:
    """Collapse entries listed more than once under the same id."""
    unique: dict[str, ManifestEntry] = {}
    for entry in entries:
        existing = unique.get(entry.id)
        if existing is None:
            unique[entry.id] = entry
        elif existing != entry:
            raise ManifestError(
                f"Entry id '{entry.id}' is defined more than once with different settings",
                context={"entry": entry.id},
            )
    return unique


def _check_destinations(entries: list[ManifestEntry]) -> None:
    by_path: dict[str, list[ManifestEntry]] = defaultdict(list)
    for entry in entries:
        by_path[entry.destination].append(entry)

    for path, writers in sorted(by_path.items()):
        if len(writers) < 2:
            continue
        ids = [e.id for e in writers]
        if any(e.exclusive for e in writers):
            raise ManifestError(
                f"Exclusive entries collide on '{path}': {', '.join(ids)}",
                context={"path": path, "entries": ids},
            )
        if any(e.strategy != MergeStrategy.CREATE_IF_MISSING for e in writers):
            raise ManifestError(
                f"Entries sharing '{path}' must all use create_if_missing: {', '.join(ids)}",
                context={"path": path, "entries": ids},
            )
