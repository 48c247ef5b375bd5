"""Sweep — soft-delete what a mutable pack version no longer declares.

Before a mutable version is reloaded, every CI and relation already stored
under it is checked against the new definition. Anything no longer declared
moves to ``pending_deletion``; anything declared again moves back to
``default``. Nothing is physically removed.

Runs once per pack, over the ``_default`` scope and the scope of every Mode
CI found under the version namespace. Individual save failures are logged
and do not stop the sweep.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from packsync.cms.client import Entity, ResourceClient
from packsync.cms.models import Relation, State
from packsync.errors import ResourceClientError
from packsync.models.pack import DEFAULT_ENV, PackDefinition, ResourceSpec, relation_key
from packsync.sync.report import SweepReport

logger = logging.getLogger(__name__)

MODE_CLASS = "mgmt.Mode"


def next_state(declared: bool, current: State) -> State | None:
    """State to move to, or ``None`` when the item is already in the right one."""
    if declared and current == State.PENDING_DELETION:
        return State.DEFAULT
    if not declared and current != State.PENDING_DELETION:
        return State.PENDING_DELETION
    return None


def relation_inferred(
    pack: PackDefinition,
    short_name: str,
    from_name: str,
    to_name: str,
    resources: dict[str, ResourceSpec] | None = None,
) -> bool:
    """Whether a relation is implied by nested declarations rather than by key."""
    resources = pack.all_resources() if resources is None else resources
    source = resources.get(from_name)
    if short_name == "Payload":
        return source is not None and to_name in source.payloads
    if short_name == "WatchedBy":
        return source is not None and to_name in source.monitors
    if short_name == "Requires":
        return source is not None and to_name in resources
    if short_name == "Entrypoint":
        return to_name in pack.all_entrypoints()
    return False


class SweepEngine:
    """Reconciles stored item states of a mutable pack version."""

    def __init__(self, client: ResourceClient):
        self.client = client

    def sweep(
        self,
        pack: PackDefinition,
        version_ns: str,
        environments: Iterable[str] | None = None,
        version: str = "",
    ) -> SweepReport:
        """Sweep every environment scope under *version_ns*.

        When *environments* is not given, the scopes are ``_default`` plus
        every Mode CI currently stored under the version namespace.
        """
        if environments is None:
            environments = [ci.name for ci in self.client.find(version_ns, MODE_CLASS)]
        envs = [DEFAULT_ENV, *[e for e in environments if e != DEFAULT_ENV]]

        report = SweepReport()
        for env in envs:
            scope_ns = version_ns if env == DEFAULT_ENV else f"{version_ns}/{env}"
            extra = {"pack": pack.name, "version": version, "env": env}
            retained = self._sweep_relations(pack, scope_ns, report, extra)
            report.retained[env] = retained
            self._sweep_cis(pack, scope_ns, retained, set(envs), report, extra)
        return report

    def _sweep_relations(
        self,
        pack: PackDefinition,
        scope_ns: str,
        report: SweepReport,
        extra: dict,
    ) -> set[str]:
        pack_keys = pack.relation_keys()
        resources = pack.all_resources()
        retained: set[str] = set()

        relations = self.client.find_relations(ns_path=scope_ns, include_from_ci=True, include_to_ci=True)
        for rel in relations:
            from_name = rel.from_ci.name if rel.from_ci else ""
            to_name = rel.to_ci.name if rel.to_ci else ""
            declared = relation_key(from_name, rel.short_name, to_name) in pack_keys or relation_inferred(
                pack, rel.short_name, from_name, to_name, resources
            )
            if declared:
                retained.add(to_name)
            self._transition(rel, declared, f"{rel.relation_name} {from_name} <-> {to_name}", report, extra)
        return retained

    def _sweep_cis(
        self,
        pack: PackDefinition,
        scope_ns: str,
        retained: set[str],
        environments: set[str],
        report: SweepReport,
        extra: dict,
    ) -> None:
        declared_names = pack.declared_names() | retained | environments
        for ci in self.client.find(scope_ns):
            self._transition(ci, ci.name in declared_names, ci.name, report, extra)

    def _transition(
        self,
        entity: Entity,
        declared: bool,
        label: str,
        report: SweepReport,
        extra: dict,
    ) -> None:
        new_state = next_state(declared, entity.state)
        if new_state is None:
            return

        kind = "relation_state" if isinstance(entity, Relation) else "ci_state"
        entity.state = new_state
        # Endpoints were only fetched for matching; do not write them back.
        if isinstance(entity, Relation):
            entity.from_ci = None
            entity.to_ci = None

        try:
            ok = self.client.save(entity)
        except ResourceClientError as e:
            logger.error(
                "Failed to update state to %s for %s: %s",
                new_state.value,
                label,
                e,
                extra={**extra, "item": label, "error": str(e)},
            )
            report.record(kind, label, False, new_state.value)
            return

        if ok:
            logger.debug("Updated state to %s for %s", new_state.value, label, extra={**extra, "item": label})
        else:
            logger.error("Failed to update state to %s for %s", new_state.value, label, extra={**extra, "item": label})
        report.record(kind, label, ok, new_state.value)
