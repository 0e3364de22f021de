"""Install configuration: ``accelerator.yaml`` plus CLI overrides.

A target repository may keep its install options in ``accelerator.yaml`` at
its root so that re-runs (for example after a submodule update) need no flags::

    frontend: angular
    database: postgres
    agents: [copilot, claude]
    workers: 4
    tokens:
      project_name: billing-service
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml

from accelerator.exceptions import UsageError

CONFIG_FILE = "accelerator.yaml"
MAX_WORKERS = 8

_CONFIG_KEYS = {"frontend", "database", "agents", "workers", "templates", "tokens"}


@dataclass
class InstallConfig:
    """Raw install options before validation into a RenderContext."""

    frontend: str | None = None
    database: str | None = None
    agents: list[str] = field(default_factory=list)
    workers: int = 1
    templates: str | None = None
    tokens: dict[str, str] = field(default_factory=dict)

    def merged_with(
        self,
        frontend: str | None = None,
        database: str | None = None,
        agents: list[str] | tuple[str, ...] = (),
        workers: int | None = None,
        templates: str | None = None,
        tokens: dict[str, str] | None = None,
    ) -> "InstallConfig":
        """Return a copy with non-empty overrides applied."""
        merged_tokens = dict(self.tokens)
        merged_tokens.update({k: v for k, v in (tokens or {}).items() if v})
        result = InstallConfig(
            frontend=frontend or self.frontend,
            database=database or self.database,
            agents=list(agents) if agents else list(self.agents),
            workers=workers if workers is not None else self.workers,
            templates=templates or self.templates,
            tokens=merged_tokens,
        )
        _check_workers(result.workers)
        return result


def load_config(path: str | Path | None, target: str | Path) -> InstallConfig:
    """Load configuration from ``path``, or from ``<target>/accelerator.yaml`` if present.

    An explicit ``path`` must exist; the implicit one is optional.

    Raises:
        UsageError: If the file is missing (explicit path), unparsable, or has
            unknown keys or wrongly typed values.
    """
    if path is None:
        candidate = Path(target) / CONFIG_FILE
        if not candidate.is_file():
            return InstallConfig()
        path = candidate

    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise UsageError(f"Config file not found: {path}", context={"path": str(path)}) from None
    except yaml.YAMLError as e:
        raise UsageError(f"Invalid config YAML in {path}: {e}", context={"path": str(path)}) from e

    return parse_config(data, source=str(path))


def parse_config(data: dict, source: str = "<config>") -> InstallConfig:
    if not isinstance(data, dict):
        raise UsageError(f"{source}: config must be a mapping")

    unknown = sorted(set(data) - _CONFIG_KEYS)
    if unknown:
        raise UsageError(f"{source}: unknown config key(s): {', '.join(unknown)}")

    agents = data.get("agents", [])
    if isinstance(agents, str):
        agents = [agents]
    if not isinstance(agents, list):
        raise UsageError(f"{source}: 'agents' must be a list")

    tokens = data.get("tokens", {}) or {}
    if not isinstance(tokens, dict):
        raise UsageError(f"{source}: 'tokens' must be a mapping")

    workers = data.get("workers", 1)
    if not isinstance(workers, int) or isinstance(workers, bool):
        raise UsageError(f"{source}: 'workers' must be an integer")
    _check_workers(workers)

    templates = data.get("templates")
    return InstallConfig(
        frontend=_optional_str(data.get("frontend")),
        database=_optional_str(data.get("database")),
        agents=[str(a) for a in agents],
        workers=workers,
        templates=str(templates) if templates else None,
        tokens={str(k): str(v) for k, v in tokens.items()},
    )


def _optional_str(value) -> str | None:
    return str(value) if value else None


def _check_workers(workers: int) -> None:
    if not 1 <= workers <= MAX_WORKERS:
        raise UsageError(f"workers must be between 1 and {MAX_WORKERS}, got {workers}")
