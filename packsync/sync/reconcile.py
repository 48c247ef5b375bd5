"""Graph reconciliation — upsert one environment of a pack into the graph store.

Steps run in a fixed order because later ones need the CI handles produced
by earlier ones:

    platform -> components -> depends_on -> managed_via -> entrypoint
             -> monitors -> payloads -> procedures -> variables -> policies

Every upsert looks the item up by identity, builds it when missing, overlays
the pack's attributes onto the declared keys and saves it. A failed save is
recorded in the :class:`~packsync.sync.report.ReconcileReport` and the next
item is processed; only a failed platform save stops the environment.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any

from packsync.cms.client import Direction, Entity, ResourceClient, find_first
from packsync.cms.models import ConfigurationItem, Relation
from packsync.errors import ResourceClientError
from packsync.models.pack import MANIFEST_PACKAGE, PackDefinition, ResourceSpec, package_for
from packsync.sync.report import ReconcileReport

logger = logging.getLogger(__name__)

REQUIRES = "mgmt.Requires"
ENTRYPOINT = "mgmt.Entrypoint"
MANAGED_VIA = f"{MANIFEST_PACKAGE}.ManagedVia"
PAYLOAD = f"{MANIFEST_PACKAGE}.Payload"
QPATH = f"{MANIFEST_PACKAGE}.Qpath"
CONTROLLED_BY = f"{MANIFEST_PACKAGE}.ControlledBy"
PROCEDURE = f"{MANIFEST_PACKAGE}.Procedure"


def flatten(values: Mapping[str, Any] | None, keys: tuple[str, ...] | None = None) -> dict[str, Any]:
    """JSON-encode structured values so they fit a flat string attribute.

    Only the names in *keys* are encoded when given; otherwise every dict value is.
    """
    flat = dict(values or {})
    for name, value in flat.items():
        if isinstance(value, dict) and (keys is None or name in keys):
            flat[name] = json.dumps(value, sort_keys=True)
    return flat


class GraphReconciler:
    """Upserts a pack template (platform, components, relations) under a namespace."""

    def __init__(self, client: ResourceClient, register: str = "", comments: str = ""):
        self.client = client
        self.register = register
        self.comments = comments

    def reconcile(
        self,
        ns_path: str,
        pack: PackDefinition,
        package: str,
        env: str,
        resources: Mapping[str, ResourceSpec],
    ) -> ReconcileReport:
        """Reconcile one environment; ``report.success`` is ``False`` if the platform failed."""
        report = ReconcileReport(ns_path=ns_path, env=env)
        extra = {"pack": pack.name, "version": pack.version, "env": env}
        logger.info("Reconciling %s into %s", pack.name, ns_path, extra=extra)

        platform = self._platform(ns_path, pack, package, report, extra)
        if platform is None:
            return report

        components = self._components(ns_path, platform, package, resources, report, extra)
        report.components = components
        self._depends_on(ns_path, pack, env, resources, components, report, extra)
        self._managed_via(ns_path, pack, resources, components, report, extra)
        self._entrypoint(ns_path, pack, env, resources, components, platform, report, extra)
        self._monitors(ns_path, package, resources, components, report, extra)
        self._payloads(ns_path, resources, components, report, extra)
        self._procedures(ns_path, pack, env, platform, report, extra)
        self._variables(ns_path, pack, package, env, platform, report, extra)
        self._policies(ns_path, pack, package, env, report, extra)

        logger.info(report.summary(), extra=extra)
        return report

    # -- persistence ---------------------------------------------------------

    def _persist(self, entity: Entity, item: str, extra: dict) -> bool:
        """Save *entity*; transport errors count as a failed save."""
        try:
            ok = self.client.save(entity)
        except ResourceClientError as e:
            logger.error("Could not save %s: %s", item, e, extra={**extra, "item": item, "error": str(e)})
            return False
        if not ok:
            logger.error("Could not save %s, skipping it", item, extra={**extra, "item": item})
        else:
            logger.debug("Saved %s", item, extra={**extra, "item": item})
        return ok

    def _stamp(self, *entities: Entity | None) -> None:
        for entity in entities:
            if entity is not None:
                entity.comments = self.comments

    # -- steps ---------------------------------------------------------------

    def _platform(
        self,
        ns_path: str,
        pack: PackDefinition,
        package: str,
        report: ReconcileReport,
        extra: dict,
    ) -> ConfigurationItem | None:
        class_name = f"{package}.{pack.type.capitalize()}"
        platform = find_first(self.client, ns_path, class_name, pack.name)
        created = platform is None
        if created:
            logger.info("Creating %s for template %s", class_name, pack.name, extra=extra)
            platform = self.client.build_ci(ns_path, class_name, pack.name)

        platform.attributes.apply(pack.platform_attributes)
        platform.attributes["description"] = pack.description
        platform.attributes["source"] = self.register
        platform.attributes["pack"] = pack.name.capitalize()
        platform.attributes["version"] = pack.version
        self._stamp(platform)

        item = f"{class_name} {pack.name}"
        ok = self._persist(platform, item, extra)
        report.platform_saved = report.record("platform", pack.name, ok, created and ok)
        if not ok:
            logger.error("Could not save %s, skipping template %s", class_name, pack.name, extra={**extra, "item": item})
            return None
        return platform

    def _components(
        self,
        ns_path: str,
        platform: ConfigurationItem,
        package: str,
        resources: Mapping[str, ResourceSpec],
        report: ReconcileReport,
        extra: dict,
    ) -> dict[str, int]:
        components: dict[str, int] = {}
        relations = self.client.find_relations(
            ci_id=platform.ci_id,
            direction=Direction.FROM,
            short_name="Requires",
            include_to_ci=True,
        )

        for name, resource in resources.items():
            class_name = resource.class_name(package)
            relation = next(
                (
                    r
                    for r in relations
                    if r.to_ci is not None and r.to_ci.name == name and r.to_ci.class_name == class_name
                ),
                None,
            )
            created = relation is None
            if created:
                logger.info("Creating resource %s", name, extra={**extra, "item": name})
                relation = self.client.build_relation(
                    REQUIRES,
                    ns_path,
                    from_ci_id=platform.ci_id,
                    to_ci=self.client.build_ci(ns_path, class_name, name),
                )

            relation.attributes["template"] = name
            relation.attributes.apply(resource.requires, require_value=True)
            relation.to_ci.attributes.apply(resource.attributes)
            self._stamp(relation, relation.to_ci)

            ok = self._persist(relation, f"resource {name}", extra)
            if ok:
                components[name] = relation.to_ci_id
            report.record("component", name, ok, created and ok)
        return components

    def _depends_on(
        self,
        ns_path: str,
        pack: PackDefinition,
        env: str,
        resources: Mapping[str, ResourceSpec],
        components: dict[str, int],
        report: ReconcileReport,
        extra: dict,
    ) -> None:
        self._component_links(
            ns_path, f"{package_for(env)}.DependsOn", "depends_on", pack.depends_on, resources, components, report, extra
        )

    def _managed_via(
        self,
        ns_path: str,
        pack: PackDefinition,
        resources: Mapping[str, ResourceSpec],
        components: dict[str, int],
        report: ReconcileReport,
        extra: dict,
    ) -> None:
        self._component_links(ns_path, MANAGED_VIA, "managed_via", pack.managed_via, resources, components, report, extra)

    def _component_links(
        self,
        ns_path: str,
        relation_name: str,
        kind: str,
        links: Mapping[str, Mapping[str, dict[str, Any]]],
        resources: Mapping[str, ResourceSpec],
        components: dict[str, int],
        report: ReconcileReport,
        extra: dict,
    ) -> None:
        """Component-to-component relations (DependsOn, ManagedVia)."""
        relations = self.client.find_relations(ns_path=ns_path, relation_name=relation_name)

        for source in resources:
            for target, attrs in (links.get(source) or {}).items():
                label = f"{source} -> {target}"
                if source not in components or target not in components:
                    # Target not part of this environment, or its component failed to save.
                    logger.debug("Skipping %s %s", kind, label, extra={**extra, "item": label})
                    continue

                relation = next(
                    (
                        r
                        for r in relations
                        if r.from_ci_id == components[source] and r.to_ci_id == components[target]
                    ),
                    None,
                )
                created = relation is None
                if created:
                    logger.info("Creating %s between %s and %s", kind, source, target, extra={**extra, "item": label})
                    relation = self.client.build_relation(
                        relation_name,
                        ns_path,
                        from_ci_id=components[source],
                        to_ci_id=components[target],
                    )

                relation.attributes.apply(attrs, require_value=True)
                self._stamp(relation)
                ok = self._persist(relation, f"{kind} {label}", extra)
                report.record(kind, label, ok, created and ok)

    def _entrypoint(
        self,
        ns_path: str,
        pack: PackDefinition,
        env: str,
        resources: Mapping[str, ResourceSpec],
        components: dict[str, int],
        platform: ConfigurationItem,
        report: ReconcileReport,
        extra: dict,
    ) -> None:
        entrypoints = pack.environment_entrypoints(env)
        relations = self.client.find_relations(
            ns_path=ns_path,
            relation_name=ENTRYPOINT,
            ci_id=platform.ci_id,
            direction=Direction.FROM,
        )

        for name in resources:
            if name not in entrypoints or name not in components:
                continue
            relation = next((r for r in relations if r.to_ci_id == components[name]), None)
            created = relation is None
            if created:
                logger.info("Creating entrypoint between platform and %s", name, extra={**extra, "item": name})
                relation = self.client.build_relation(
                    ENTRYPOINT,
                    ns_path,
                    from_ci_id=platform.ci_id,
                    to_ci_id=components[name],
                )

            relation.attributes.apply(entrypoints[name].get("attributes"), require_value=True)
            self._stamp(relation)
            ok = self._persist(relation, f"entrypoint {name}", extra)
            report.record("entrypoint", name, ok, created and ok)

    def _monitors(
        self,
        ns_path: str,
        package: str,
        resources: Mapping[str, ResourceSpec],
        components: dict[str, int],
        report: ReconcileReport,
        extra: dict,
    ) -> None:
        self._watched_targets(
            ns_path,
            relation_name=f"{package}.WatchedBy",
            class_name=f"{package}.Monitor",
            kind="monitor",
            targets={name: res.monitors for name, res in resources.items()},
            components=components,
            report=report,
            extra=extra,
            flatten_keys=None,
            fold_case=False,
        )

    def _payloads(
        self,
        ns_path: str,
        resources: Mapping[str, ResourceSpec],
        components: dict[str, int],
        report: ReconcileReport,
        extra: dict,
    ) -> None:
        self._watched_targets(
            ns_path,
            relation_name=PAYLOAD,
            class_name=QPATH,
            kind="payload",
            targets={name: res.payloads for name, res in resources.items()},
            components=components,
            report=report,
            extra=extra,
            flatten_keys=(),
            fold_case=True,
        )

    def _watched_targets(
        self,
        ns_path: str,
        *,
        relation_name: str,
        class_name: str,
        kind: str,
        targets: Mapping[str, Mapping[str, dict[str, Any]]],
        components: dict[str, int],
        report: ReconcileReport,
        extra: dict,
        flatten_keys: tuple[str, ...] | None,
        fold_case: bool,
    ) -> None:
        """Component -> named target CI relations (monitors, payloads).

        Legacy stores can hold several components linked to one target CI of
        the same name. A new relation therefore reuses an existing target CI
        found by name before a new one is created. Payload names match without
        regard to case; monitor names must match exactly.
        """
        relations = self.client.find_relations(
            ns_path=ns_path,
            relation_name=relation_name,
            target_class_name=class_name,
            include_to_ci=True,
        )
        def name_key(name: str) -> str:
            return name.lower() if fold_case else name

        by_name: dict[str, Relation] = {}
        for r in relations:
            if r.to_ci is not None:
                by_name.setdefault(name_key(r.to_ci.name), r)

        for source, declared in targets.items():
            if not declared:
                continue
            if source not in components:
                logger.debug("Skipping %ss of %s, component not saved", kind, source, extra={**extra, "item": source})
                continue
            for target_name, values in declared.items():
                label = f"{target_name} for {source}"
                item_extra = {**extra, "item": label}
                relation = next(
                    (
                        r
                        for r in relations
                        if r.from_ci_id == components[source] and r.to_ci is not None and r.to_ci.name == target_name
                    ),
                    None,
                )
                created = relation is None
                if created:
                    logger.info("Creating %s %s", kind, label, extra=item_extra)
                    relation = self.client.build_relation(relation_name, ns_path, from_ci_id=components[source])
                    shared = by_name.get(name_key(target_name))
                    if shared is not None and shared.to_ci is not None:
                        logger.warning(
                            "%s %s for component %s is not uniquely named, will re-use existing CI with the same name",
                            kind.capitalize(),
                            target_name,
                            source,
                            extra=item_extra,
                        )
                        relation.to_ci_id = shared.to_ci_id
                        self._stamp(relation)
                        if not self._persist(relation, f"{kind} relation {label}", extra):
                            report.record(kind, label, False)
                            continue
                        relation.to_ci = shared.to_ci
                    else:
                        relation.to_ci = self.client.build_ci(ns_path, class_name, target_name)

                relation.to_ci.attributes.apply(flatten(values, flatten_keys), require_value=True)
                self._stamp(relation, relation.to_ci)
                ok = self._persist(relation, f"{kind} {label}", extra)
                if ok:
                    relations.append(relation)
                    by_name.setdefault(name_key(target_name), relation)
                report.record(kind, label, ok, created and ok)

    def _procedures(
        self,
        ns_path: str,
        pack: PackDefinition,
        env: str,
        platform: ConfigurationItem,
        report: ReconcileReport,
        extra: dict,
    ) -> None:
        relations = self.client.find_relations(
            ns_path=ns_path,
            relation_name=CONTROLLED_BY,
            ci_id=platform.ci_id,
            direction=Direction.FROM,
            target_class_name=PROCEDURE,
            include_to_ci=True,
        )

        for name, attrs in pack.environment_procedures(env).items():
            relation = next((r for r in relations if r.to_ci is not None and r.to_ci.name == name), None)
            created = relation is None
            if created:
                logger.info("Creating procedure %s", name, extra={**extra, "item": name})
                relation = self.client.build_relation(
                    CONTROLLED_BY,
                    ns_path,
                    from_ci_id=platform.ci_id,
                    to_ci=self.client.build_ci(ns_path, PROCEDURE, name),
                )

            relation.to_ci.attributes.apply(flatten(attrs, ("arguments",)), require_value=True)
            self._stamp(relation, relation.to_ci)
            ok = self._persist(relation, f"procedure {name}", extra)
            report.record("procedure", name, ok, created and ok)

    def _variables(
        self,
        ns_path: str,
        pack: PackDefinition,
        package: str,
        env: str,
        platform: ConfigurationItem,
        report: ReconcileReport,
        extra: dict,
    ) -> None:
        relation_name = f"{package}.ValueFor"
        class_name = f"{package}.Localvar"
        relations = self.client.find_relations(
            relation_name=relation_name,
            ci_id=platform.ci_id,
            direction=Direction.TO,
            target_class_name=class_name,
            include_from_ci=True,
        )

        for name, attrs in pack.environment_variables(env).items():
            relation = next((r for r in relations if r.from_ci is not None and r.from_ci.name == name), None)
            created = relation is None
            if created:
                logger.info("Creating variable %s", name, extra={**extra, "item": name})
                relation = self.client.build_relation(
                    relation_name,
                    ns_path,
                    to_ci_id=platform.ci_id,
                    from_ci=self.client.build_ci(ns_path, class_name, name),
                )

            relation.from_ci.attributes.apply(attrs, require_value=True)
            self._stamp(relation, relation.from_ci)
            ok = self._persist(relation, f"variable {name}", extra)
            report.record("variable", name, ok, created and ok)

    def _policies(
        self,
        ns_path: str,
        pack: PackDefinition,
        package: str,
        env: str,
        report: ReconcileReport,
        extra: dict,
    ) -> None:
        class_name = f"{package}.Policy"
        existing = {p.name: p for p in self.client.find(ns_path, class_name)}

        for name, attrs in pack.environment_policies(env).items():
            policy = existing.get(name)
            created = policy is None
            if created:
                policy = self.client.build_ci(ns_path, class_name, name)

            policy.attributes.apply(attrs, require_value=True)
            self._stamp(policy)
            ok = self._persist(policy, f"policy {name}", extra)
            report.record("policy", name, ok, created and ok)
