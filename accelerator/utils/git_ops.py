"""Git operations: identify the revision of the template source checkout."""

from __future__ import annotations

import logging
from pathlib import Path

from git import GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo

logger = logging.getLogger(__name__)


def describe_source(path: str | Path) -> str:
    """Return ``git describe --tags --always`` for the checkout holding ``path``.

    Template sources are usually pulled in as a git submodule, so the
    description pins exactly which revision was applied. Returns an empty
    string when ``path`` is not inside a git work tree.
    """
    try:
        repo = Repo(path, search_parent_directories=True)
    except (InvalidGitRepositoryError, NoSuchPathError):
        return ""

    try:
        description = repo.git.describe("--tags", "--always", "--dirty")
    except GitCommandError as e:
        logger.debug("git describe failed for %s: %s", path, e)
        return ""
    finally:
        repo.close()
    return description.strip()


def accelerator_version(package_version: str, source_root: str | Path | None) -> str:
    """Version string recorded in provenance: package version plus source revision."""
    if source_root is None:
        return package_version
    revision = describe_source(source_root)
    return f"{package_version}+{revision}" if revision else package_version
