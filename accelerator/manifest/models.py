"""Manifest data models: the declarative description of installable files."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from accelerator.exceptions import ManifestError
from accelerator.models.options import OPTION_NAMES, RenderContext


class MergeStrategy(Enum):
    """How rendered content is reconciled with an existing destination."""

    OVERWRITE = "overwrite"
    JSON_MERGE = "json_merge"
    MARKED_REGION = "marked_region"
    CREATE_IF_MISSING = "create_if_missing"


DEFAULT_ARRAY_KEYS = ("recommendations", "unwantedRecommendations")


@dataclass(frozen=True)
class Predicate:
    """Activation condition for an entry.

    ``conditions`` maps an option name to the values that activate the entry.
    Every listed option must match; ``agents`` matches when any selected
    agent is listed. No conditions means always active.
    """

    conditions: tuple[tuple[str, frozenset[str]], ...] = ()

    @classmethod
    def from_mapping(cls, data: dict[str, list[str]] | None) -> "Predicate":
        items = []
        for option, values in sorted((data or {}).items()):
            if isinstance(values, str):
                values = [values]
            items.append((option, frozenset(str(v) for v in values)))
        return cls(conditions=tuple(items))

    def options(self) -> list[str]:
        return [option for option, _ in self.conditions]

    def evaluate(self, context: RenderContext) -> bool:
        """Evaluate against ``context``.

        Raises:
            ManifestError: If the predicate references an option that does not
                exist or that the context left unresolved.
        """
        for option, allowed in self.conditions:
            if option not in OPTION_NAMES:
                raise ManifestError(
                    f"Predicate references unknown option '{option}'",
                    context={"option": option},
                )
            if not context.is_resolved(option):
                raise ManifestError(
                    f"Predicate references unresolved option '{option}'",
                    context={"option": option},
                )
            if not context.values_for(option) & allowed:
                return False
        return True

    def to_mapping(self) -> dict[str, list[str]]:
        return {option: sorted(values) for option, values in self.conditions}


@dataclass(frozen=True)
class ManifestEntry:
    """A single installable file: where it comes from, where it goes, how it merges."""

    id: str
    source: str
    destination: str
    strategy: MergeStrategy
    predicate: Predicate = field(default_factory=Predicate)
    required: bool = False
    exclusive: bool = True
    description: str = ""
    references: tuple[str, ...] = ()
    array_keys: tuple[str, ...] = DEFAULT_ARRAY_KEYS

    def is_active(self, context: RenderContext) -> bool:
        return self.predicate.evaluate(context)

    @property
    def begin_marker(self) -> str:
        return f"<!-- accelerator:begin {self.id} -->"

    @property
    def end_marker(self) -> str:
        return f"<!-- accelerator:end {self.id} -->"


@dataclass
class Catalog:
    """The static list of installable entries."""

    name: str
    version: str = "1"
    entries: list[ManifestEntry] = field(default_factory=list)

    def get(self, entry_id: str) -> ManifestEntry | None:
        for entry in self.entries:
            if entry.id == entry_id:
                return entry
        return None
