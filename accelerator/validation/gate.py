"""Validation gate: post-run checks over the materialized tree.

Runs after every entry has been processed and never mutates anything. Each
required entry must have produced a destination that exists, parses (for JSON
and YAML files), still carries its markers (for marked regions), and whose
declared cross-references resolve to existing files.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import PurePosixPath

import yaml

from accelerator.exceptions import EntryIOError, ValidationFailure
from accelerator.manifest.models import ManifestEntry, MergeStrategy
from accelerator.utils.fs import TargetFileSystem

JSON_SUFFIXES = {".json"}
YAML_SUFFIXES = {".yaml", ".yml"}


@dataclass
class Violation:
    """A single broken post-condition."""

    entry_id: str
    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path} ({self.entry_id}): {self.message}"


class ValidationGate:
    """Checks post-conditions of required entries against the target filesystem."""

    def __init__(self, fs: TargetFileSystem):
        self.fs = fs

    def check(self, entries: list[ManifestEntry]) -> list[Violation]:
        """Return all violations. An empty list means the gate passed."""
        violations: list[Violation] = []
        for entry in entries:
            if entry.required:
                violations.extend(self._check_entry(entry))
        return violations

    def enforce(self, entries: list[ManifestEntry]) -> None:
        """Like :meth:`check` but raise :class:`ValidationFailure` on any violation."""
        violations = self.check(entries)
        if violations:
            raise ValidationFailure(violations)

    def _check_entry(self, entry: ManifestEntry) -> list[Violation]:
        issues: list[Violation] = []

        try:
            data = self.fs.read_bytes(entry.destination)
        except EntryIOError as e:
            return [Violation(entry.id, entry.destination, f"unreadable: {e}")]
        if data is None:
            return [Violation(entry.id, entry.destination, "destination does not exist")]

        suffix = PurePosixPath(entry.destination).suffix.lower()
        if suffix in JSON_SUFFIXES:
            try:
                json.loads(data.decode("utf-8"))
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                issues.append(Violation(entry.id, entry.destination, f"invalid JSON: {e}"))
        elif suffix in YAML_SUFFIXES:
            try:
                yaml.safe_load(data.decode("utf-8"))
            except (UnicodeDecodeError, yaml.YAMLError) as e:
                issues.append(Violation(entry.id, entry.destination, f"invalid YAML: {e}"))

        if entry.strategy == MergeStrategy.MARKED_REGION:
            begins = data.count(entry.begin_marker.encode("utf-8"))
            ends = data.count(entry.end_marker.encode("utf-8"))
            if begins != 1 or ends != 1:
                issues.append(
                    Violation(entry.id, entry.destination, "managed region markers missing or duplicated")
                )

        for ref in entry.references:
            try:
                exists = self.fs.exists(ref)
            except EntryIOError:
                exists = False
            if not exists:
                issues.append(Violation(entry.id, entry.destination, f"referenced file '{ref}' does not exist"))

        return issues
