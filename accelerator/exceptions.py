"""Error taxonomy for the scaffold composition engine.

Every error carries a ``context`` mapping so the CLI can report the entry,
path or option involved without parsing messages.
"""

from __future__ import annotations

from typing import Any, Mapping


class AcceleratorError(Exception):
    """Base exception for the accelerator engine."""

    context: dict[str, Any]

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context = dict(context) if context is not None else {}

    def to_json_error(self) -> dict[str, Any]:
        """Return a JSON-serializable error payload."""
        return {
            "message": str(self),
            "code": self.__class__.__name__,
            "context": self.context,
        }


class UsageError(AcceleratorError, ValueError):
    """Bad option values or configuration. Raised before any filesystem mutation."""


class ManifestError(AcceleratorError):
    """The catalog is inconsistent for the resolved options."""


class TemplateMissing(AcceleratorError, FileNotFoundError):
    """A template referenced by a manifest entry does not exist."""

    def __init__(self, ref: str, *, context: Mapping[str, Any] | None = None) -> None:
        AcceleratorError.__init__(self, f"Template not found: {ref}", context=context)
        self.ref = ref


class MergeConflict(AcceleratorError):
    """Local and upstream content both diverged from the last applied state.

    Never resolved automatically. ``current`` is what is on disk, ``pending``
    is what the engine would have written.
    """

    def __init__(
        self,
        message: str,
        *,
        current: bytes = b"",
        pending: bytes = b"",
        context: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context=context)
        self.current = current
        self.pending = pending


class ValidationFailure(AcceleratorError):
    """Post-run invariants do not hold for the materialized tree."""

    def __init__(self, violations: list, *, context: Mapping[str, Any] | None = None) -> None:
        summary = f"{len(violations)} validation violation(s)"
        super().__init__(summary, context=context)
        self.violations = violations


class EntryIOError(AcceleratorError, OSError):
    """Permission, disk or parse failure on a single entry."""


class StateFileError(AcceleratorError):
    """The provenance state file is unreadable or from a newer schema."""
