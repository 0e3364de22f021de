"""Install engine: resolve, render, dispatch, write, record, validate.

Entries are processed in the resolver's order. With ``workers > 1`` entries
are grouped by destination and the groups run on a small thread pool; entries
sharing a destination always run one after another in a single group, since
every merge strategy reads the destination before writing it.

A fatal failure on a required entry cancels the groups that have not started
yet. Failures on optional entries are reported as warnings.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from accelerator.exceptions import AcceleratorError, EntryIOError, TemplateMissing
from accelerator.manifest.models import Catalog, ManifestEntry
from accelerator.manifest.resolver import group_by_destination, resolve_entries
from accelerator.models.options import RenderContext
from accelerator.sync.drift import DriftClassification, content_hash
from accelerator.sync.merge import Action, Decision, dispatch
from accelerator.sync.provenance import ProvenanceStore
from accelerator.templates.renderer import TemplateRenderer
from accelerator.utils.config import MAX_WORKERS
from accelerator.utils.fs import TargetFileSystem
from accelerator.validation.gate import ValidationGate, Violation

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_WARNINGS = 2
EXIT_CONFLICT = 3
EXIT_VALIDATION = 4
EXIT_FATAL = 5


@dataclass
class EntryOutcome:
    """What happened to one entry, and why."""

    entry: ManifestEntry
    action: Action
    reason: str
    drift: DriftClassification | None = None
    warning: bool = False
    fatal: bool = False
    decision: Decision | None = None
    error: AcceleratorError | None = None

    @property
    def conflict(self):
        return self.decision.conflict if self.decision else None

    def summary(self) -> str:
        drift = f" [{self.drift.label}]" if self.drift else ""
        return f"{self.action.value.upper():<9} {self.entry.destination}{drift}: {self.reason}"


@dataclass
class RunReport:
    """Result of one engine run."""

    context: RenderContext
    outcomes: list[EntryOutcome] = field(default_factory=list)
    violations: list[Violation] = field(default_factory=list)
    dry_run: bool = False

    @property
    def writes(self) -> list[EntryOutcome]:
        return [o for o in self.outcomes if o.action == Action.WRITE]

    @property
    def conflicts(self) -> list[EntryOutcome]:
        return [o for o in self.outcomes if o.action == Action.CONFLICT]

    @property
    def warnings(self) -> list[EntryOutcome]:
        return [o for o in self.outcomes if o.warning]

    @property
    def failed(self) -> bool:
        return any(o.fatal for o in self.outcomes)

    @property
    def exit_code(self) -> int:
        if self.failed:
            return EXIT_FATAL
        if self.conflicts:
            return EXIT_CONFLICT
        if self.violations:
            return EXIT_VALIDATION
        if self.warnings:
            return EXIT_WARNINGS
        return EXIT_OK


class InstallEngine:
    """Materializes catalog entries into a target repository."""

    def __init__(
        self,
        catalog: Catalog,
        renderer: TemplateRenderer,
        target: TargetFileSystem,
        store: ProvenanceStore | None = None,
        workers: int = 1,
    ):
        self.catalog = catalog
        self.renderer = renderer
        self.target = target
        self.store = store or ProvenanceStore(target)
        self.workers = max(1, min(workers, MAX_WORKERS))
        self.gate = ValidationGate(target)
        self._lock = threading.Lock()

    def plan(self, context: RenderContext) -> list[ManifestEntry]:
        """Resolve the ordered entry list without touching the target."""
        return resolve_entries(self.catalog, context)

    def run(self, context: RenderContext, force: bool = False, dry_run: bool = False) -> RunReport:
        """Apply every resolved entry, then run the validation gate.

        Raises:
            ManifestError: If the catalog cannot be resolved for ``context``.
            StateFileError: If the provenance state file cannot be loaded.
        """
        entries = self.plan(context)
        self.store.load()

        logger.info(
            "Applying %d entries to %s (%s%s)",
            len(entries),
            self.target.describe(),
            context.describe(),
            ", dry run" if dry_run else "",
        )

        cancel = threading.Event()
        groups = group_by_destination(entries)
        results: dict[str, EntryOutcome] = {}

        if self.workers == 1 or len(groups) < 2:
            for group in groups:
                results.update(self._run_group(group, context, force, dry_run, cancel))
        else:
            with ThreadPoolExecutor(max_workers=min(self.workers, len(groups))) as pool:
                futures = [
                    pool.submit(self._run_group, group, context, force, dry_run, cancel)
                    for group in groups
                ]
                for future in futures:
                    results.update(future.result())

        report = RunReport(
            context=context,
            outcomes=[results[e.id] for e in entries],
            dry_run=dry_run,
        )
        if not dry_run:
            report.violations = self.gate.check(entries)
        return report

    def _run_group(
        self,
        group: list[ManifestEntry],
        context: RenderContext,
        force: bool,
        dry_run: bool,
        cancel: threading.Event,
    ) -> dict[str, EntryOutcome]:
        outcomes = {}
        for entry in group:
            if cancel.is_set():
                outcomes[entry.id] = EntryOutcome(
                    entry, Action.CANCELLED, "cancelled after a required entry failed"
                )
                continue
            outcome = self._apply(entry, context, force, dry_run)
            if outcome.fatal:
                cancel.set()
            outcomes[entry.id] = outcome
        return outcomes

    def _apply(self, entry: ManifestEntry, context: RenderContext, force: bool, dry_run: bool) -> EntryOutcome:
        try:
            rendered = self.renderer.render(entry.source, context)
            current = self.target.read_bytes(entry.destination)
            record = self.store.get(entry.destination)
            decision = dispatch(entry, rendered, current, record, force=force)
        except (TemplateMissing, EntryIOError) as e:
            return self._failure(entry, e)

        if decision.action == Action.CONFLICT:
            logger.warning("Conflict on %s: %s", entry.destination, decision.reason)
            return EntryOutcome(entry, Action.CONFLICT, decision.reason, decision.drift, decision=decision)

        reason = decision.reason
        if dry_run:
            if decision.action == Action.WRITE:
                reason = f"would write: {reason}"
        else:
            try:
                if decision.action == Action.WRITE:
                    self.target.write_bytes(entry.destination, decision.content)
                    logger.debug("Wrote %s", entry.destination)
                if decision.records_provenance:
                    self._record(entry, decision)
            except EntryIOError as e:
                return self._failure(entry, e)

        if decision.warning:
            logger.warning("%s: %s", entry.destination, decision.reason)
        return EntryOutcome(
            entry,
            decision.action,
            reason,
            decision.drift,
            warning=decision.warning,
            decision=decision,
        )

    def _record(self, entry: ManifestEntry, decision: Decision) -> None:
        with self._lock:
            self.store.record_success(
                entry.destination,
                entry.id,
                content_hash(decision.content),
                template_hash=decision.template_hash,
                baseline=decision.baseline,
            )
            self.store.persist()

    def _failure(self, entry: ManifestEntry, error: AcceleratorError) -> EntryOutcome:
        if entry.required:
            logger.error("Required entry %s failed: %s", entry.id, error)
            return EntryOutcome(entry, Action.ERROR, str(error), fatal=True, error=error)
        logger.warning("Optional entry %s failed: %s", entry.id, error)
        return EntryOutcome(entry, Action.ERROR, str(error), warning=True, error=error)
