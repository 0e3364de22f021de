"""Merge strategy dispatcher: reconcile rendered content with the destination.

:func:`dispatch` is pure. It looks at the entry, the rendered template, the
current destination bytes and the provenance record, and returns a
:class:`Decision`. Writing the decision out is the engine's job.

Strategies:

- ``overwrite``: replace the file, unless it was edited locally.
- ``json_merge``: deep union of JSON objects, three-way when a baseline of the
  previously applied template is recorded.
- ``marked_region``: replace only the text between this entry's markers.
- ``create_if_missing``: write once, never touch again.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from accelerator.exceptions import EntryIOError, MergeConflict
from accelerator.manifest.models import ManifestEntry, MergeStrategy
from accelerator.sync.drift import DriftClassification, classify, content_hash
from accelerator.sync.provenance import ProvenanceRecord


class Action(Enum):
    """Resolved action for an entry.

    The dispatcher only decides WRITE, SKIP or CONFLICT; the engine adds
    ERROR and CANCELLED for entries that never reached a decision.
    """

    WRITE = "write"
    SKIP = "skip"
    CONFLICT = "conflict"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass
class Decision:
    """Outcome of dispatching one entry."""

    action: Action
    reason: str
    drift: DriftClassification
    content: bytes | None = None  # Destination content after the decision
    template_hash: str = ""
    baseline: str | None = None
    warning: bool = False
    adopt: bool = False  # Record provenance for existing content without writing
    conflict: MergeConflict | None = None

    @property
    def records_provenance(self) -> bool:
        return self.action == Action.WRITE or self.adopt


def dispatch(
    entry: ManifestEntry,
    rendered: bytes,
    current: bytes | None,
    record: ProvenanceRecord | None,
    force: bool = False,
) -> Decision:
    """Decide what to do with ``entry`` given its rendered template.

    Raises:
        EntryIOError: If JSON content (template or destination) cannot be parsed.
    """
    handler = _STRATEGIES[entry.strategy]
    return handler(entry, rendered, current, record, force)


# ---------------------------------------------------------------------------
# overwrite
# ---------------------------------------------------------------------------


def _overwrite(entry, rendered, current, record, force) -> Decision:
    t_hash = content_hash(rendered)

    if current is None:
        reason = "destination missing; reinstalling" if record else "destination absent"
        return Decision(Action.WRITE, reason, DriftClassification.NEW, content=rendered, template_hash=t_hash)

    c_hash = content_hash(current)
    if c_hash == t_hash:
        stale = record is None or record.content_hash != c_hash or record.template_hash != t_hash
        return Decision(
            Action.SKIP,
            "already matches template",
            DriftClassification.UNCHANGED,
            content=current,
            template_hash=t_hash,
            adopt=stale,
        )

    drift = classify(
        c_hash,
        record.content_hash if record else None,
        t_hash,
        record.template_hash if record else None,
    )

    if drift == DriftClassification.UPSTREAM_CHANGED:
        return Decision(Action.WRITE, "template changed upstream", drift, content=rendered, template_hash=t_hash)

    if drift == DriftClassification.LOCALLY_MODIFIED:
        what = "local edits" if record else "untracked existing file"
        if force:
            return Decision(
                Action.WRITE,
                f"{what} overwritten (--force)",
                drift,
                content=rendered,
                template_hash=t_hash,
                warning=True,
            )
        return Decision(
            Action.SKIP,
            f"{what} preserved; re-run with --force to overwrite",
            drift,
            template_hash=t_hash,
            warning=True,
        )

    return _conflict(
        entry,
        drift,
        "local edits and template changes both diverge from the installed version",
        current,
        rendered,
        t_hash,
    )


# ---------------------------------------------------------------------------
# json_merge
# ---------------------------------------------------------------------------

_MISSING = object()


def _json_merge(entry, rendered, current, record, force) -> Decision:
    t_hash = content_hash(rendered)
    template_tree = load_json_object(rendered, entry, "template")
    baseline_text = rendered.decode("utf-8")

    if current is None:
        content = dump_json(template_tree)
        reason = "destination missing; reinstalling" if record else "destination absent"
        return Decision(
            Action.WRITE,
            reason,
            DriftClassification.NEW,
            content=content,
            template_hash=t_hash,
            baseline=baseline_text,
        )

    current_tree = load_json_object(current, entry, "destination")
    c_hash = content_hash(current)

    base_tree = None
    if record is not None:
        local = c_hash != record.content_hash
        if t_hash == record.template_hash:
            if local:
                return Decision(
                    Action.SKIP,
                    "template unchanged; local customizations preserved",
                    DriftClassification.LOCALLY_MODIFIED,
                    template_hash=t_hash,
                )
            return Decision(Action.SKIP, "up to date", DriftClassification.UNCHANGED, template_hash=t_hash)
        drift = DriftClassification.BOTH_CHANGED if local else DriftClassification.UPSTREAM_CHANGED
        if record.baseline is not None:
            base_tree = load_json_object(record.baseline.encode("utf-8"), entry, "recorded baseline")
        elif local:
            # No baseline to tell the user's keys from the template's
            pending = dump_json(merge_json(current_tree, template_tree, None, entry.array_keys))
            return _conflict(
                entry,
                drift,
                "edited locally and changed in the template, with no recorded baseline to merge against",
                current,
                pending,
                t_hash,
            )
    else:
        drift = DriftClassification.LOCALLY_MODIFIED

    conflicts: list[str] = []
    merged = merge_json(current_tree, template_tree, base_tree, entry.array_keys, conflicts)
    content = dump_json(merged)

    if conflicts:
        return _conflict(
            entry,
            DriftClassification.BOTH_CHANGED,
            f"key(s) changed both locally and in the template: {', '.join(conflicts)}",
            current,
            content,
            t_hash,
        )

    if content == current:
        return Decision(
            Action.SKIP,
            "already contains template keys",
            DriftClassification.UNCHANGED,
            content=current,
            template_hash=t_hash,
            baseline=baseline_text,
            adopt=True,
        )

    reason = "merged template keys into existing file" if record is None else "merged template changes"
    return Decision(
        Action.WRITE,
        reason,
        drift,
        content=content,
        template_hash=t_hash,
        baseline=baseline_text,
    )


def merge_json(
    ours: dict,
    theirs: dict,
    base: dict | None,
    array_keys: tuple[str, ...] = (),
    conflicts: list[str] | None = None,
    prefix: str = "",
) -> dict:
    """Deep-merge template object ``theirs`` into destination object ``ours``.

    Destination-only keys are kept and template keys win, except that, when
    ``base`` (the template last applied) is given, values the user changed
    and the template did not are preserved, and keys the user deleted stay
    deleted. A key both sides changed differently is appended to
    ``conflicts`` and resolved in favour of the template in the returned
    object. Arrays under ``array_keys`` are unioned without duplicates.

    Inputs are never mutated.
    """
    if conflicts is None:
        conflicts = []

    result: dict[str, Any] = dict(ours)
    for key, new in theirs.items():
        path = f"{prefix}.{key}" if prefix else key
        base_value = base.get(key, _MISSING) if base is not None else _MISSING

        if key not in ours:
            if base_value is not _MISSING and base_value == new:
                continue
            result[key] = new
            continue

        old = ours[key]
        if isinstance(old, dict) and isinstance(new, dict):
            nested_base = None
            if base is not None:
                nested_base = base_value if isinstance(base_value, dict) else {}
            result[key] = merge_json(old, new, nested_base, array_keys, conflicts, path)
        elif key in array_keys and isinstance(old, list) and isinstance(new, list):
            removed = []
            if isinstance(base_value, list):
                removed = [item for item in base_value if item not in old]
            result[key] = _union(old, new, removed)
        elif old == new:
            continue
        elif base is None:
            result[key] = new
        elif base_value is not _MISSING and base_value == old:
            result[key] = new
        elif base_value is not _MISSING and base_value == new:
            continue
        else:
            conflicts.append(path)
            result[key] = new
    return result


def _union(old: list, new: list, removed: list) -> list:
    result = list(old)
    for item in new:
        if item not in result and item not in removed:
            result.append(item)
    return result


def load_json_object(data: bytes, entry: ManifestEntry, what: str) -> dict:
    """Parse ``data`` as a JSON object, or raise :class:`EntryIOError`."""
    try:
        tree = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise EntryIOError(
            f"Malformed JSON in {what} for {entry.destination}: {e}",
            context={"entry": entry.id, "path": entry.destination},
        ) from e
    if not isinstance(tree, dict):
        raise EntryIOError(
            f"Expected a JSON object in {what} for {entry.destination}",
            context={"entry": entry.id, "path": entry.destination},
        )
    return tree


def dump_json(tree: dict) -> bytes:
    return (json.dumps(tree, indent=2, ensure_ascii=False) + "\n").encode("utf-8")


# ---------------------------------------------------------------------------
# marked_region
# ---------------------------------------------------------------------------


def _marked_region(entry, rendered, current, record, force) -> Decision:
    t_hash = content_hash(rendered)
    body = _region_body(rendered)
    baseline_text = rendered.decode("utf-8", errors="replace")

    if current is None:
        content = render_block(entry, rendered)
        reason = "destination missing; reinstalling" if record else "destination absent"
        return Decision(
            Action.WRITE,
            reason,
            DriftClassification.NEW,
            content=content,
            template_hash=t_hash,
            baseline=baseline_text,
        )

    try:
        prefix, region, suffix = split_region(current, entry)
    except MergeConflict as e:
        pending = current + (b"" if current.endswith(b"\n") or not current else b"\n") + render_block(entry, rendered)
        e.current = current
        e.pending = pending
        return Decision(
            Action.CONFLICT,
            str(e),
            DriftClassification.BOTH_CHANGED,
            template_hash=t_hash,
            conflict=e,
        )

    if region == body:
        stale = record is None or record.template_hash != t_hash
        return Decision(
            Action.SKIP,
            "managed region up to date",
            DriftClassification.UNCHANGED,
            content=current,
            template_hash=t_hash,
            baseline=baseline_text,
            adopt=stale,
        )

    content = prefix + body + suffix

    if record is not None and record.baseline is None and content_hash(current) != record.content_hash:
        return _conflict(
            entry,
            DriftClassification.BOTH_CHANGED,
            "edited locally and changed in the template, with no recorded baseline for the managed region",
            current,
            content,
            t_hash,
        )

    if record is None or record.baseline is None:
        return Decision(
            Action.WRITE,
            "replaced managed region",
            DriftClassification.UPSTREAM_CHANGED,
            content=content,
            template_hash=t_hash,
            baseline=baseline_text,
        )

    base_body = _region_body(record.baseline.encode("utf-8"))
    base_hash = content_hash(base_body)
    drift = classify(content_hash(region), base_hash, content_hash(body), base_hash)

    if drift == DriftClassification.UPSTREAM_CHANGED:
        return Decision(
            Action.WRITE,
            "template changed upstream",
            drift,
            content=content,
            template_hash=t_hash,
            baseline=baseline_text,
        )

    if drift == DriftClassification.LOCALLY_MODIFIED:
        if force:
            return Decision(
                Action.WRITE,
                "local edits inside managed region overwritten (--force)",
                drift,
                content=content,
                template_hash=t_hash,
                baseline=baseline_text,
                warning=True,
            )
        return Decision(
            Action.SKIP,
            "local edits inside managed region preserved; re-run with --force to overwrite",
            drift,
            template_hash=t_hash,
            warning=True,
        )

    return _conflict(
        entry,
        DriftClassification.BOTH_CHANGED,
        "managed region edited locally and changed in the template",
        current,
        content,
        t_hash,
    )


def split_region(current: bytes, entry: ManifestEntry) -> tuple[bytes, bytes, bytes]:
    """Split ``current`` into (prefix incl. begin marker line, region, suffix from end marker).

    Raises:
        MergeConflict: Unless exactly one begin and one end marker appear, in order.
    """
    begin = entry.begin_marker.encode("utf-8")
    end = entry.end_marker.encode("utf-8")

    begins, ends = current.count(begin), current.count(end)
    if begins != 1 or ends != 1:
        raise MergeConflict(
            f"expected one marker pair for '{entry.id}' in {entry.destination}, "
            f"found {begins} begin / {ends} end",
            context={"entry": entry.id, "path": entry.destination},
        )

    b = current.index(begin)
    e = current.index(end)
    if e < b:
        raise MergeConflict(
            f"end marker precedes begin marker for '{entry.id}' in {entry.destination}",
            context={"entry": entry.id, "path": entry.destination},
        )

    body_start = b + len(begin)
    if current.startswith(b"\r\n", body_start):
        body_start += 2
    elif current.startswith(b"\n", body_start):
        body_start += 1

    return current[:body_start], current[body_start:e], current[e:]


def render_block(entry: ManifestEntry, rendered: bytes) -> bytes:
    """A complete marker-delimited block for a new destination."""
    return (
        entry.begin_marker.encode("utf-8")
        + b"\n"
        + _region_body(rendered)
        + entry.end_marker.encode("utf-8")
        + b"\n"
    )


def _region_body(rendered: bytes) -> bytes:
    if rendered and not rendered.endswith(b"\n"):
        return rendered + b"\n"
    return rendered


# ---------------------------------------------------------------------------
# create_if_missing
# ---------------------------------------------------------------------------


def _create_if_missing(entry, rendered, current, record, force) -> Decision:
    t_hash = content_hash(rendered)
    if current is None:
        return Decision(Action.WRITE, "destination absent", DriftClassification.NEW, content=rendered, template_hash=t_hash)
    drift = DriftClassification.UNCHANGED if record else DriftClassification.LOCALLY_MODIFIED
    return Decision(Action.SKIP, "destination exists; left untouched", drift, template_hash=t_hash)


# ---------------------------------------------------------------------------


def _conflict(entry, drift, message, current, pending, t_hash) -> Decision:
    conflict = MergeConflict(
        f"{entry.destination}: {message}",
        current=current,
        pending=pending,
        context={"entry": entry.id, "path": entry.destination},
    )
    return Decision(Action.CONFLICT, message, drift, template_hash=t_hash, conflict=conflict)


_STRATEGIES = {
    MergeStrategy.OVERWRITE: _overwrite,
    MergeStrategy.JSON_MERGE: _json_merge,
    MergeStrategy.MARKED_REGION: _marked_region,
    MergeStrategy.CREATE_IF_MISSING: _create_if_missing,
}
