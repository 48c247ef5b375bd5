"""Sync results — per-item outcomes folded into per-environment and per-pack reports.

Per-item failures are data, not exceptions: each upsert appends an
:class:`ItemOutcome` and processing carries on. Only abort-level failures
(see :mod:`packsync.errors`) interrupt a pack.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


@dataclass
class ItemOutcome:
    """Result of upserting (or transitioning) a single CI or relation."""

    kind: str  # platform | component | depends_on | monitor | ... | ci_state | relation_state
    name: str
    ok: bool
    created: bool = False
    message: str = ""


@dataclass
class ReconcileReport:
    """Everything that happened while reconciling one environment."""

    ns_path: str
    env: str
    platform_saved: bool = False
    components: dict[str, int] = field(default_factory=dict)
    outcomes: list[ItemOutcome] = field(default_factory=list)

    def record(self, kind: str, name: str, ok: bool, created: bool = False, message: str = "") -> bool:
        self.outcomes.append(ItemOutcome(kind=kind, name=name, ok=ok, created=created, message=message))
        return ok

    @property
    def success(self) -> bool:
        """The environment was reconciled; individual item failures are tolerated."""
        return self.platform_saved

    @property
    def failures(self) -> list[ItemOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def created(self) -> list[ItemOutcome]:
        return [o for o in self.outcomes if o.ok and o.created]

    def summary(self) -> str:
        total = len(self.outcomes)
        failed = len(self.failures)
        status = "OK" if self.success else "ABORTED"
        return f"[{status}] {self.env}: {total - failed}/{total} item(s) saved, {len(self.created)} created"


@dataclass
class SweepReport:
    """State transitions applied by the sweep, across all scopes."""

    outcomes: list[ItemOutcome] = field(default_factory=list)
    retained: dict[str, set[str]] = field(default_factory=dict)

    def record(self, kind: str, name: str, ok: bool, message: str = "") -> bool:
        self.outcomes.append(ItemOutcome(kind=kind, name=name, ok=ok, message=message))
        return ok

    @property
    def failures(self) -> list[ItemOutcome]:
        return [o for o in self.outcomes if not o.ok]

    def transitioned(self, state: str) -> list[str]:
        """Names moved to *state* (``"default"`` or ``"pending_deletion"``)."""
        return [o.name for o in self.outcomes if o.ok and o.message == state]


class PackStatus(Enum):
    PUBLISHED = "published"
    SKIPPED = "skipped"
    IGNORED = "ignored"
    FAILED = "failed"


@dataclass
class PackResult:
    """Outcome of syncing a single pack."""

    pack: str
    version: str = ""
    status: PackStatus = PackStatus.SKIPPED
    signature: str = ""
    reason: str = ""
    error: str = ""
    sweep: SweepReport | None = None
    environments: list[ReconcileReport] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status != PackStatus.FAILED

    @property
    def item_failures(self) -> list[ItemOutcome]:
        failures = [f for r in self.environments for f in r.failures]
        if self.sweep:
            failures += self.sweep.failures
        return failures

    def summary(self) -> str:
        line = f"{self.pack} {self.version or '-'}: {self.status.value}"
        if self.reason:
            line += f" ({self.reason})"
        if self.error:
            line += f" — {self.error}"
        return line


@dataclass
class SyncReport:
    """Outcome of a whole sync run."""

    results: list[PackResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def failed(self) -> list[PackResult]:
        return [r for r in self.results if not r.ok]

    def by_status(self, status: PackStatus) -> list[PackResult]:
        return [r for r in self.results if r.status == status]
