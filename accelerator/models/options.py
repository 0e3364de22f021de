"""Install options and the immutable render context built from them.

Option values arrive as strings (CLI flags, YAML config) and are converted
into closed enums exactly once, in :func:`resolve_context`. Nothing past that
boundary sees a raw string option.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Mapping

from accelerator.exceptions import UsageError


class Frontend(Enum):
    ANGULAR = "angular"
    REACT = "react"


class Database(Enum):
    POSTGRES = "postgres"
    SQLSERVER = "sqlserver"


class Agent(Enum):
    COPILOT = "copilot"
    CURSOR = "cursor"
    CLAUDE = "claude"
    WINDSURF = "windsurf"


ALL_AGENTS = "all"

# Option names a manifest predicate may reference.
OPTION_NAMES = ("frontend", "database", "agents")

OPTION_ENUMS: dict[str, type[Enum]] = {
    "frontend": Frontend,
    "database": Database,
    "agents": Agent,
}

# Tokens the renderer substitutes. Anything else is left verbatim.
TOKEN_NAMES = ("frontend", "database", "agents", "accelerator_version", "project_name")


@dataclass(frozen=True)
class RenderContext:
    """Resolved option values plus substitution tokens."""

    frontend: Frontend | None = None
    database: Database | None = None
    agents: frozenset[Agent] = field(default_factory=frozenset)
    project_name: str = ""
    accelerator_version: str = ""

    def is_resolved(self, option: str) -> bool:
        """Whether a predicate may evaluate ``option`` against this context."""
        if option == "agents":
            return True
        return getattr(self, option) is not None

    def values_for(self, option: str) -> set[str]:
        """Return the selected value(s) of ``option`` as plain strings."""
        if option == "agents":
            return {a.value for a in self.agents}
        value = getattr(self, option)
        return {value.value} if value is not None else set()

    def tokens(self) -> dict[str, str]:
        """Token name -> substitution text."""
        return {
            "frontend": self.frontend.value if self.frontend else "",
            "database": self.database.value if self.database else "",
            "agents": ", ".join(sorted(a.value for a in self.agents)),
            "accelerator_version": self.accelerator_version,
            "project_name": self.project_name,
        }

    def describe(self) -> str:
        parts = [
            f"frontend={self.frontend.value if self.frontend else '-'}",
            f"database={self.database.value if self.database else '-'}",
            f"agents={','.join(sorted(a.value for a in self.agents)) or '-'}",
        ]
        return " ".join(parts)


def parse_agents(values: Iterable[str]) -> frozenset[Agent]:
    """Convert agent option strings into a set, expanding ``all``."""
    agents: set[Agent] = set()
    for raw in values:
        value = raw.strip().lower()
        if value == ALL_AGENTS:
            agents.update(Agent)
            continue
        agents.add(_parse_enum(Agent, value, "agent"))
    return frozenset(agents)


def resolve_context(
    frontend: str | None = None,
    database: str | None = None,
    agents: Iterable[str] = (),
    tokens: Mapping[str, str] | None = None,
    accelerator_version: str = "",
) -> RenderContext:
    """Validate raw option values and build a :class:`RenderContext`.

    Raises:
        UsageError: If any value is outside its closed set, or an unknown
            token name is supplied.
    """
    tokens = dict(tokens or {})
    unknown = sorted(set(tokens) - {"project_name"})
    if unknown:
        raise UsageError(
            f"Unknown substitution token(s): {', '.join(unknown)}",
            context={"tokens": unknown},
        )

    return RenderContext(
        frontend=_parse_enum(Frontend, frontend, "frontend") if frontend else None,
        database=_parse_enum(Database, database, "database") if database else None,
        agents=parse_agents(agents),
        project_name=tokens.get("project_name", ""),
        accelerator_version=accelerator_version,
    )


def _parse_enum(enum_cls: type[Enum], value: str, option: str):
    try:
        return enum_cls(value.strip().lower())
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise UsageError(
            f"Invalid {option} '{value}'. Must be one of: {allowed}",
            context={"option": option, "value": value},
        ) from None
