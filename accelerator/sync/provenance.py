"""Provenance: the per-path record of what was installed into a repository.

Every successful write of a manifest entry creates or updates one record. The
records live in a single JSON state file at the target root::

    {"schemaVersion": 2, "records": [{"destinationPath": ..., ...}]}

The engine persists the file after each individual entry succeeds, so an
interrupted run leaves a state file describing exactly the entries that
completed and a re-run resumes from there.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone

from accelerator.exceptions import StateFileError
from accelerator.utils.fs import TargetFileSystem

logger = logging.getLogger(__name__)

STATE_FILE = ".accelerator-state.json"
SCHEMA_VERSION = 2


@dataclass
class ProvenanceRecord:
    """What was written to a destination, by which entry, and when."""

    destination_path: str
    manifest_id: str
    content_hash: str
    accelerator_version: str = ""
    applied_at: str = ""  # ISO 8601 timestamp
    template_hash: str = ""  # Hash of the rendered template that was applied
    baseline: str | None = None  # Rendered template text, for three-way merges

    def to_dict(self) -> dict:
        data = {
            "destinationPath": self.destination_path,
            "manifestId": self.manifest_id,
            "contentHash": self.content_hash,
            "templateHash": self.template_hash,
            "acceleratorVersion": self.accelerator_version,
            "appliedAt": self.applied_at,
        }
        if self.baseline is not None:
            data["baseline"] = self.baseline
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ProvenanceRecord":
        return cls(
            destination_path=data["destinationPath"],
            manifest_id=data["manifestId"],
            content_hash=data["contentHash"],
            accelerator_version=data.get("acceleratorVersion", ""),
            applied_at=data.get("appliedAt", ""),
            template_hash=data.get("templateHash") or data["contentHash"],
            baseline=data.get("baseline"),
        )


def _migrate_v1(data: dict) -> dict:
    """Version 1 records carried no template hash or baseline.

    For the overwrite strategy the written content was the rendered template,
    so the content hash stands in for the template hash.
    """
    records = []
    for record in data.get("records", []):
        record = dict(record)
        record.setdefault("templateHash", record.get("contentHash", ""))
        records.append(record)
    return {"schemaVersion": 2, "records": records}


_MIGRATIONS = {
    1: _migrate_v1,
}


class ProvenanceStore:
    """Loads, updates and persists provenance records for one target repository."""

    def __init__(self, fs: TargetFileSystem, accelerator_version: str = "", state_file: str = STATE_FILE):
        self.fs = fs
        self.accelerator_version = accelerator_version
        self.state_file = state_file
        self._records: dict[str, ProvenanceRecord] | None = None
        self._lock = threading.RLock()

    def load(self) -> dict[str, ProvenanceRecord]:
        """Read the state file (once) and return records keyed by destination path.

        Raises:
            StateFileError: If the file is malformed or from a newer schema.
        """
        with self._lock:
            if self._records is None:
                self._records = self._read()
            return dict(self._records)

    def get(self, path: str) -> ProvenanceRecord | None:
        with self._lock:
            if self._records is None:
                self._records = self._read()
            return self._records.get(path)

    def records(self) -> list[ProvenanceRecord]:
        return [record for _, record in sorted(self.load().items())]

    def record_success(
        self,
        path: str,
        manifest_id: str,
        content_hash: str,
        template_hash: str = "",
        baseline: str | None = None,
    ) -> ProvenanceRecord:
        """Create or update the record for ``path`` after a successful write."""
        record = ProvenanceRecord(
            destination_path=path,
            manifest_id=manifest_id,
            content_hash=content_hash,
            accelerator_version=self.accelerator_version,
            applied_at=datetime.now(timezone.utc).isoformat(),
            template_hash=template_hash or content_hash,
            baseline=baseline,
        )
        with self._lock:
            if self._records is None:
                self._records = self._read()
            self._records[path] = record
        return record

    def persist(self) -> None:
        """Atomically rewrite the state file with the current records."""
        with self._lock:
            records = self._records or {}
            payload = {
                "schemaVersion": SCHEMA_VERSION,
                "records": [records[path].to_dict() for path in sorted(records)],
            }
            data = json.dumps(payload, indent=2, ensure_ascii=False) + "\n"
            self.fs.write_bytes(self.state_file, data.encode("utf-8"))

    def _read(self) -> dict[str, ProvenanceRecord]:
        raw = self.fs.read_bytes(self.state_file)
        if raw is None:
            return {}

        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise StateFileError(
                f"State file {self.state_file} is not valid JSON: {e}",
                context={"path": self.state_file},
            ) from e

        if not isinstance(data, dict) or not isinstance(data.get("schemaVersion"), int):
            raise StateFileError(
                f"State file {self.state_file} has no integer schemaVersion",
                context={"path": self.state_file},
            )

        version = data["schemaVersion"]
        if version > SCHEMA_VERSION:
            raise StateFileError(
                f"State file {self.state_file} uses schema {version}; "
                f"this version understands up to {SCHEMA_VERSION}",
                context={"path": self.state_file, "schemaVersion": version},
            )
        while version < SCHEMA_VERSION:
            migrate = _MIGRATIONS.get(version)
            if migrate is None:
                raise StateFileError(
                    f"No migration from state schema {version}",
                    context={"path": self.state_file, "schemaVersion": version},
                )
            logger.info("Migrating %s from schema %d", self.state_file, version)
            data = migrate(data)
            version = data["schemaVersion"]

        records: dict[str, ProvenanceRecord] = {}
        try:
            for item in data.get("records", []):
                record = ProvenanceRecord.from_dict(item)
                records[record.destination_path] = record
        except (KeyError, TypeError, AttributeError) as e:
            raise StateFileError(
                f"State file {self.state_file} has a malformed record: {e}",
                context={"path": self.state_file},
            ) from e
        return records
