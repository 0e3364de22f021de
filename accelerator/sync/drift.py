"""Drift classification: how an installed file relates to its last application.

Drift is derived, never stored. Each run compares four hashes:

- the current destination content,
- the content recorded when the entry was last applied,
- the freshly rendered template,
- the rendered template recorded when the entry was last applied.
"""

from __future__ import annotations

import hashlib
from enum import Enum


class DriftClassification(Enum):
    UNCHANGED = "unchanged"  # Nothing to do
    NEW = "new"  # Destination absent
    UPSTREAM_CHANGED = "upstream_changed"  # Template changed, destination untouched
    LOCALLY_MODIFIED = "locally_modified"  # Destination edited, template unchanged
    BOTH_CHANGED = "both_changed"  # Destination edited and template changed

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


def content_hash(data: bytes) -> str:
    """Stable content hash stored in provenance records."""
    return "sha256:" + hashlib.sha256(data).hexdigest()


def classify(
    current_hash: str | None,
    recorded_hash: str | None,
    template_hash: str,
    recorded_template_hash: str | None,
) -> DriftClassification:
    """Classify drift from the four hashes.

    ``current_hash`` is ``None`` when the destination does not exist;
    ``recorded_hash`` is ``None`` when there is no provenance record. An
    existing file with no record counts as a local modification unless it
    already matches the template.
    """
    if current_hash is None:
        return DriftClassification.NEW

    if recorded_hash is None:
        if current_hash == template_hash:
            return DriftClassification.UNCHANGED
        return DriftClassification.LOCALLY_MODIFIED

    local = current_hash != recorded_hash
    upstream = template_hash != (recorded_template_hash or recorded_hash)

    if local and upstream:
        return DriftClassification.BOTH_CHANGED
    if local:
        return DriftClassification.LOCALLY_MODIFIED
    if upstream:
        return DriftClassification.UPSTREAM_CHANGED
    return DriftClassification.UNCHANGED
