"""Accelerator CLI — install instruction files and editor templates into a repository."""

import difflib
import functools
import logging
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from accelerator import __version__
from accelerator.exceptions import (
    AcceleratorError,
    ManifestError,
    StateFileError,
    UsageError,
    ValidationFailure,
)
from accelerator.sync.engine import (
    EXIT_FATAL,
    EXIT_OK,
    EXIT_USAGE,
    EXIT_VALIDATION,
)
from accelerator.sync.merge import Action

console = Console()

FRONTENDS = ["angular", "react"]
DATABASES = ["postgres", "sqlserver"]
AGENTS = ["copilot", "cursor", "claude", "windsurf", "all"]

_ACTION_STYLES = {
    Action.WRITE: "green",
    Action.SKIP: "dim",
    Action.CONFLICT: "red",
    Action.ERROR: "red",
    Action.CANCELLED: "yellow",
}


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def install_options(func):
    """Options shared by every command that resolves a render context."""

    @click.option("--target", "-t", required=True, type=click.Path(file_okay=False), help="Repository to install into")
    @click.option("--frontend", type=click.Choice(FRONTENDS), default=None, help="Frontend framework")
    @click.option("--database", type=click.Choice(DATABASES), default=None, help="Database engine")
    @click.option("--agent", "agents", type=click.Choice(AGENTS), multiple=True, help="AI agent (repeatable)")
    @click.option(
        "--templates",
        type=click.Path(exists=True, file_okay=False),
        envvar="ACCELERATOR_TEMPLATES",
        default=None,
        help="Template source directory holding catalog.yaml and templates/",
    )
    @click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None, help="Config file (default: <target>/accelerator.yaml)")
    @click.option("--project-name", default=None, help="Value for the {{ project_name }} token")
    @click.option("--verbose", "-v", is_flag=True, help="Debug logging")
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        return func(*args, **kwargs)

    return wrapper


class AcceleratorGroup(click.Group):
    """Click group that reports command-line usage errors with exit code 1."""

    def make_context(self, *args, **kwargs):
        try:
            return super().make_context(*args, **kwargs)
        except click.UsageError as e:
            e.exit_code = EXIT_USAGE
            raise

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except click.UsageError as e:
            e.exit_code = EXIT_USAGE
            raise


@click.group(cls=AcceleratorGroup)
@click.version_option(version=__version__)
def main():
    """Accelerator — compose AI instruction files and editor templates into a repository.

    Files are chosen from a manifest catalog according to the selected
    frontend, database and agents, merged without destroying local
    customizations, and tracked in .accelerator-state.json so re-runs are
    idempotent.
    """


# ── Install ──────────────────────────────────────────────────────────


@main.command()
@install_options
@click.option("--workers", type=click.IntRange(1, 8), envvar="ACCELERATOR_WORKERS", default=None, help="Parallel workers for independent files")
@click.option("--force", is_flag=True, help="Overwrite locally modified files (conflicts are never overwritten)")
@click.option("--dry-run", is_flag=True, help="Report planned actions without writing")
def install(target, frontend, database, agents, templates, config_path, project_name, verbose, workers, force, dry_run):
    """Install or update accelerator files in TARGET."""
    _configure_logging(verbose)
    engine, context = _build(target, frontend, database, agents, templates, config_path, project_name, workers)

    mode = " (dry run)" if dry_run else ""
    console.print(f"\n[bold blue]Accelerator[/] — Installing into: {target}{mode}")
    console.print(f"  [dim]{context.describe()}[/]\n")

    try:
        report = engine.run(context, force=force, dry_run=dry_run)
    except (ManifestError, StateFileError) as e:
        _fail(e, EXIT_FATAL)

    for outcome in report.outcomes:
        style = _ACTION_STYLES[outcome.action]
        label = outcome.action.value.upper()
        console.print(f"  [{style}]{label:<9}[/] {outcome.entry.destination} [dim]({outcome.entry.id})[/]: {escape(outcome.reason)}")

    for outcome in report.conflicts:
        _print_conflict(outcome)

    if report.violations:
        console.print("\n[red]Validation FAILED:[/]")
        for violation in report.violations:
            console.print(f"  [red]x[/] {escape(str(violation))}")

    written = len(report.writes)
    verb = "would be written" if dry_run else "written"
    summary = (
        f"{written} {verb}, {len(report.conflicts)} conflict(s), "
        f"{len(report.warnings)} warning(s), {len(report.violations)} violation(s)"
    )
    console.print(Panel(summary, title=f"Exit {report.exit_code}"))
    sys.exit(report.exit_code)


# ── Status ───────────────────────────────────────────────────────────


@main.command()
@install_options
def status(target, frontend, database, agents, templates, config_path, project_name, verbose):
    """Show drift for every entry without writing anything."""
    _configure_logging(verbose)
    engine, context = _build(target, frontend, database, agents, templates, config_path, project_name, None)

    try:
        report = engine.run(context, dry_run=True)
        records = engine.store.load()
    except (ManifestError, StateFileError) as e:
        _fail(e, EXIT_FATAL)

    table = Table(title=f"Drift ({context.describe()})")
    table.add_column("Entry", style="cyan")
    table.add_column("Destination")
    table.add_column("Drift")
    table.add_column("Planned")
    table.add_column("Applied", style="dim")

    for outcome in report.outcomes:
        record = records.get(outcome.entry.destination)
        drift = outcome.drift.label if outcome.drift else "-"
        style = _ACTION_STYLES[outcome.action]
        table.add_row(
            outcome.entry.id,
            outcome.entry.destination,
            drift,
            f"[{style}]{outcome.action.value}[/]",
            record.accelerator_version if record else "",
        )

    console.print(table)
    sys.exit(report.exit_code)


# ── Validate ─────────────────────────────────────────────────────────


@main.command()
@install_options
def validate(target, frontend, database, agents, templates, config_path, project_name, verbose):
    """Run the post-install validation gate against TARGET."""
    _configure_logging(verbose)
    engine, context = _build(target, frontend, database, agents, templates, config_path, project_name, None)

    try:
        entries = engine.plan(context)
    except ManifestError as e:
        _fail(e, EXIT_FATAL)

    try:
        engine.gate.enforce(entries)
    except ValidationFailure as e:
        console.print("[red]Validation FAILED:[/]")
        for violation in e.violations:
            console.print(f"  [red]x[/] {escape(str(violation))}")
        sys.exit(EXIT_VALIDATION)

    console.print(f"  [green]v[/] {sum(1 for e in entries if e.required)} required entries valid")
    sys.exit(EXIT_OK)


# ── Catalog ──────────────────────────────────────────────────────────


@main.command(name="catalog")
@click.option("--frontend", type=click.Choice(FRONTENDS), default=None)
@click.option("--database", type=click.Choice(DATABASES), default=None)
@click.option("--agent", "agents", type=click.Choice(AGENTS), multiple=True)
@click.option("--templates", type=click.Path(exists=True, file_okay=False), envvar="ACCELERATOR_TEMPLATES", default=None)
def list_catalog(frontend, database, agents, templates):
    """List catalog entries and whether the given options activate them."""
    from accelerator.manifest.catalog import default_source_root, load_catalog
    from accelerator.models.options import resolve_context

    try:
        catalog = load_catalog(templates or default_source_root())
        context = resolve_context(frontend, database, agents)
    except ManifestError as e:
        _fail(e, EXIT_FATAL)
    except UsageError as e:
        _fail(e, EXIT_USAGE)

    table = Table(title=f"Catalog {catalog.name} v{catalog.version} ({len(catalog.entries)} entries)")
    table.add_column("Id", style="cyan")
    table.add_column("Destination")
    table.add_column("Strategy")
    table.add_column("Required", justify="center")
    table.add_column("Active", justify="center")

    for entry in sorted(catalog.entries, key=lambda e: e.id):
        try:
            active = "[green]Y[/]" if entry.is_active(context) else "[red]N[/]"
        except ManifestError:
            active = "[yellow]?[/]"
        required = "Y" if entry.required else ""
        table.add_row(entry.id, entry.destination, entry.strategy.value, required, active)

    console.print(table)


# ── Helpers ──────────────────────────────────────────────────────────


def _build(target, frontend, database, agents, templates, config_path, project_name, workers):
    """Resolve config and options into an engine and a render context.

    Exits with the usage code on bad options or configuration, and with the
    fatal code when the catalog cannot be loaded.
    """
    from accelerator.manifest.catalog import default_source_root, load_catalog
    from accelerator.manifest.resolver import missing_options
    from accelerator.models.options import resolve_context
    from accelerator.sync.engine import InstallEngine
    from accelerator.sync.provenance import ProvenanceStore
    from accelerator.templates.renderer import TemplateRenderer
    from accelerator.utils.config import load_config
    from accelerator.utils.fs import LocalFileSystem
    from accelerator.utils.git_ops import accelerator_version

    target_path = Path(target)
    try:
        config = load_config(config_path, target_path).merged_with(
            frontend=frontend,
            database=database,
            agents=agents,
            workers=workers,
            templates=templates,
            tokens={"project_name": project_name} if project_name else None,
        )
        config.tokens.setdefault("project_name", target_path.resolve().name)

        source_root = Path(config.templates) if config.templates else default_source_root()
        if not source_root.is_absolute() and config.templates and not templates:
            source_root = target_path / source_root
        version = accelerator_version(__version__, source_root if config.templates else None)

        context = resolve_context(
            config.frontend,
            config.database,
            config.agents,
            tokens=config.tokens,
            accelerator_version=version,
        )
    except UsageError as e:
        _fail(e, EXIT_USAGE)

    try:
        catalog = load_catalog(source_root)
    except ManifestError as e:
        _fail(e, EXIT_FATAL)

    missing = missing_options(catalog, context)
    if missing:
        flags = ", ".join(f"--{name}" for name in missing)
        _fail(UsageError(f"Missing option(s) required by catalog {catalog.name}: {flags}"), EXIT_USAGE)

    target_fs = LocalFileSystem(target_path)
    engine = InstallEngine(
        catalog,
        TemplateRenderer(LocalFileSystem(source_root)),
        target_fs,
        store=ProvenanceStore(target_fs, accelerator_version=version),
        workers=config.workers,
    )
    return engine, context


def _print_conflict(outcome) -> None:
    conflict = outcome.conflict
    console.print(f"\n[red]CONFLICT[/] {outcome.entry.destination}: {escape(outcome.reason)}")
    if conflict is None:
        return
    current = conflict.current.decode("utf-8", errors="replace").splitlines(keepends=True)
    pending = conflict.pending.decode("utf-8", errors="replace").splitlines(keepends=True)
    diff = difflib.unified_diff(
        current,
        pending,
        fromfile=f"{outcome.entry.destination} (current)",
        tofile=f"{outcome.entry.destination} (pending)",
    )
    for line in diff:
        line = line.rstrip("\n")
        if line.startswith("+") and not line.startswith("+++"):
            console.print(f"    [green]{escape(line)}[/]", highlight=False)
        elif line.startswith("-") and not line.startswith("---"):
            console.print(f"    [red]{escape(line)}[/]", highlight=False)
        else:
            console.print(f"    {line}", markup=False, highlight=False)
    console.print(
        "  [dim]Resolve by making the file match the pending content or deleting it, then re-run.[/]"
    )


def _fail(error: AcceleratorError, code: int):
    console.print(f"[red]Error:[/] {escape(str(error))}")
    sys.exit(code)


if __name__ == "__main__":
    main()
