"""Pack definition models.

A pack is the local, declarative side of a sync: a platform template with
its components (resources), the relations between them and per-environment
overrides. It is read-only input for one sync run; version resolution
produces a new instance via :func:`dataclasses.replace` instead of mutating.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any

from packsync.cms.models import relation_kind

DEFAULT_ENV = "_default"

# Packages (class name prefixes) used for the design template and for
# environment manifests.
CATALOG_PACKAGE = "mgmt.catalog"
MANIFEST_PACKAGE = "mgmt.manifest"


def package_for(env: str) -> str:
    return CATALOG_PACKAGE if env == DEFAULT_ENV else MANIFEST_PACKAGE


def relation_key(from_name: str, short_name: str, to_name: str) -> str:
    """Normalized relation key, e.g. ``"app::depends_on::db"``."""
    return f"{from_name}::{relation_kind(short_name)}::{to_name}"


@dataclass
class ResourceSpec:
    """One component template of a pack."""

    name: str
    cookbook: str = ""
    source: str = ""
    attributes: dict[str, Any] = field(default_factory=dict)
    requires: dict[str, Any] = field(default_factory=dict)
    monitors: dict[str, dict[str, Any]] = field(default_factory=dict)
    payloads: dict[str, dict[str, Any]] = field(default_factory=dict)

    def class_name(self, package: str) -> str:
        """Compose the component class, e.g. ``mgmt.catalog.oneops.1.Compute``.

        The last cookbook segment is capitalized; ``source`` (when set) is
        inserted between the package and the cookbook path.
        """
        parts = self.cookbook.split(".")
        parts[-1] = parts[-1].capitalize()
        if self.source:
            parts.insert(0, self.source)
        return ".".join([package, *parts])

    def merged(self, override: ResourceSpec) -> ResourceSpec:
        """Return this spec with an environment *override* layered on top."""
        return ResourceSpec(
            name=self.name,
            cookbook=override.cookbook or self.cookbook,
            source=override.source or self.source,
            attributes={**self.attributes, **override.attributes},
            requires={**self.requires, **override.requires},
            monitors=_merge_nested(self.monitors, override.monitors),
            payloads=_merge_nested(self.payloads, override.payloads),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "cookbook": self.cookbook,
            "source": self.source,
            "attributes": self.attributes,
            "requires": self.requires,
            "monitors": self.monitors,
            "payloads": self.payloads,
        }


@dataclass
class EnvironmentOverrides:
    """Per-environment additions and overrides."""

    resources: dict[str, ResourceSpec] = field(default_factory=dict)
    entrypoints: dict[str, dict[str, Any]] = field(default_factory=dict)
    procedures: dict[str, dict[str, Any]] = field(default_factory=dict)
    variables: dict[str, dict[str, Any]] = field(default_factory=dict)
    policies: dict[str, dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "resources": {n: r.to_dict() for n, r in self.resources.items()},
            "entrypoints": self.entrypoints,
            "procedures": self.procedures,
            "variables": self.variables,
            "policies": self.policies,
        }


@dataclass
class PackDefinition:
    """A named, versioned deployment template."""

    name: str
    version: str = ""
    type: str = "platform"
    description: str = ""
    category: str = ""
    owner: str = ""
    semver: bool = False
    ignore: bool = False

    # Carried over from the latest published version during resolution.
    enabled: bool = True
    visibility: Any = None

    platform_attributes: dict[str, Any] = field(default_factory=dict)
    resources: dict[str, ResourceSpec] = field(default_factory=dict)
    depends_on: dict[str, dict[str, dict[str, Any]]] = field(default_factory=dict)
    managed_via: dict[str, dict[str, dict[str, Any]]] = field(default_factory=dict)
    entrypoints: dict[str, dict[str, Any]] = field(default_factory=dict)
    procedures: dict[str, dict[str, Any]] = field(default_factory=dict)
    variables: dict[str, dict[str, Any]] = field(default_factory=dict)
    policies: dict[str, dict[str, Any]] = field(default_factory=dict)
    environments: dict[str, EnvironmentOverrides] = field(default_factory=dict)

    source_file: str = ""

    # -- per-environment views ----------------------------------------------

    @property
    def environment_names(self) -> list[str]:
        return list(self.environments)

    def design_resources(self) -> dict[str, ResourceSpec]:
        return dict(self.resources)

    def environment_resources(self, env: str) -> dict[str, ResourceSpec]:
        """Base resources with the environment's overrides applied."""
        if env == DEFAULT_ENV or env not in self.environments:
            return self.design_resources()
        merged = self.design_resources()
        for name, override in self.environments[env].resources.items():
            merged[name] = merged[name].merged(override) if name in merged else override
        return merged

    def environment_entrypoints(self, env: str) -> dict[str, dict[str, Any]]:
        return self._env_view(env, "entrypoints")

    def environment_procedures(self, env: str) -> dict[str, dict[str, Any]]:
        return self._env_view(env, "procedures")

    def environment_variables(self, env: str) -> dict[str, dict[str, Any]]:
        return self._env_view(env, "variables")

    def environment_policies(self, env: str) -> dict[str, dict[str, Any]]:
        return self._env_view(env, "policies")

    def _env_view(self, env: str, section: str) -> dict[str, dict[str, Any]]:
        base: dict[str, dict[str, Any]] = getattr(self, section)
        if env == DEFAULT_ENV or env not in self.environments:
            return dict(base)
        return _merge_nested(base, getattr(self.environments[env], section))

    # -- whole-pack views used by the sweep ----------------------------------

    def all_resources(self) -> dict[str, ResourceSpec]:
        """Resources across the design template and every environment."""
        resources = self.design_resources()
        for env in self.environments:
            resources.update(self.environment_resources(env))
        return resources

    def all_entrypoints(self) -> set[str]:
        names = set(self.entrypoints)
        for overrides in self.environments.values():
            names.update(overrides.entrypoints)
        return names

    def declared_names(self) -> set[str]:
        """Names of every CI the pack itself declares (platform included)."""
        names = {self.name, *self.all_resources()}
        for env in [DEFAULT_ENV, *self.environments]:
            names.update(self.environment_variables(env))
            names.update(self.environment_policies(env))
        return names

    def relation_keys(self) -> set[str]:
        """Normalized ``from::kind::to`` keys for every relation the pack implies."""
        keys: set[str] = set()
        for env in [DEFAULT_ENV, *self.environments]:
            for res_name, res in self.environment_resources(env).items():
                keys.add(relation_key(self.name, "Requires", res_name))
                keys.update(relation_key(res_name, "WatchedBy", m) for m in res.monitors)
                keys.update(relation_key(res_name, "Payload", p) for p in res.payloads)
            keys.update(relation_key(self.name, "Entrypoint", e) for e in self.environment_entrypoints(env))
            keys.update(relation_key(self.name, "ControlledBy", p) for p in self.environment_procedures(env))
            keys.update(relation_key(v, "ValueFor", self.name) for v in self.environment_variables(env))
        for src, targets in self.depends_on.items():
            keys.update(relation_key(src, "DependsOn", dst) for dst in targets)
        for src, targets in self.managed_via.items():
            keys.update(relation_key(src, "ManagedVia", dst) for dst in targets)
        return keys

    # -- change detection ----------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Normalized content used for the signature.

        Version, carried-over flags and run switches (semver/ignore) are not
        content and stay out of it.
        """
        return {
            "name": self.name,
            "type": self.type,
            "description": self.description,
            "category": self.category,
            "owner": self.owner,
            "platform": {"attributes": self.platform_attributes},
            "resources": {n: r.to_dict() for n, r in self.resources.items()},
            "depends_on": self.depends_on,
            "managed_via": self.managed_via,
            "entrypoints": self.entrypoints,
            "procedures": self.procedures,
            "variables": self.variables,
            "policies": self.policies,
            "environments": {n: e.to_dict() for n, e in self.environments.items()},
        }

    @property
    def signature(self) -> str:
        """Deterministic content hash of the pack definition."""
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(canonical.encode()).hexdigest()


def _merge_nested(
    base: dict[str, dict[str, Any]],
    override: dict[str, dict[str, Any]],
) -> dict[str, dict[str, Any]]:
    merged = {name: dict(values or {}) for name, values in base.items()}
    for name, values in override.items():
        merged.setdefault(name, {}).update(values or {})
    return merged
