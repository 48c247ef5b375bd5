"""Class schema registry for the graph store.

Ships the ``mgmt.*`` classes and relations the reconciler writes to, and
loads component class schemas from YAML files of the form::

    classes:
      mgmt.catalog.Compute:
        size: S
        cores: ""
    relations:
      mgmt.catalog.DependsOn:
        flex: "false"
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

import yaml

from packsync.cms.models import AttributeDescriptor, ClassSchema
from packsync.errors import PackLoadError

PACKAGES = ("mgmt.catalog", "mgmt.manifest")

_DEPENDS_ON_ATTRS = {
    "propagate_to": "from",
    "flex": "false",
    "min": "1",
    "current": "1",
    "max": "1",
    "converge": "false",
    "source": "",
}

_MONITOR_ATTRS = {
    "description": "",
    "source": "",
    "chart": "",
    "cmd": "",
    "cmd_line": "",
    "metrics": "",
    "thresholds": "",
    "duration": "5",
    "heartbeat": "false",
    "enable": "true",
}


def _builtin() -> list[ClassSchema]:
    schemas = [
        ClassSchema.of("mgmt.Pack", pack_type="", description="", category="", owner=""),
        ClassSchema.of("mgmt.Version", description="", commit="", enabled="true"),
        ClassSchema.of("mgmt.Mode", description=""),
        ClassSchema.of("mgmt.Requires", template="", constraint="1..1", services="", help=""),
        ClassSchema.of("mgmt.Entrypoint", description=""),
        ClassSchema.of("mgmt.manifest.ManagedVia", description=""),
        ClassSchema.of("mgmt.manifest.Payload", description=""),
        ClassSchema.of("mgmt.manifest.Qpath", description="", definition=""),
        ClassSchema.of("mgmt.manifest.ControlledBy", description=""),
        ClassSchema.of("mgmt.manifest.Procedure", description="", definition="", arguments=""),
    ]
    for package in PACKAGES:
        schemas += [
            ClassSchema.of(f"{package}.DependsOn", **_DEPENDS_ON_ATTRS),
            ClassSchema.of(f"{package}.WatchedBy", description=""),
            ClassSchema.of(f"{package}.Monitor", **_MONITOR_ATTRS),
            ClassSchema.of(f"{package}.ValueFor", description=""),
            ClassSchema.of(f"{package}.Localvar", value="", secure="false"),
            ClassSchema.of(f"{package}.Policy", description="", query="", docUrl="", mode="passive"),
            ClassSchema.of(
                f"{package}.Platform",
                description="",
                source="",
                pack="",
                version="",
                availability="default",
            ),
        ]
    return schemas


class SchemaRegistry:
    """Lookup of :class:`ClassSchema` by class or relation name."""

    def __init__(self, schemas: Iterable[ClassSchema] = ()):
        self._schemas: dict[str, ClassSchema] = {}
        for schema in schemas:
            self.register(schema)

    @classmethod
    def builtin(cls) -> SchemaRegistry:
        return cls(_builtin())

    def register(self, schema: ClassSchema) -> None:
        """Add or replace a schema. Replacing merges attributes, later wins."""
        existing = self._schemas.get(schema.name)
        if existing:
            merged = dict(existing.attributes)
            merged.update(schema.attributes)
            schema = ClassSchema(name=schema.name, attributes=merged)
        self._schemas[schema.name] = schema

    def get(self, name: str) -> ClassSchema | None:
        return self._schemas.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)

    def names(self) -> list[str]:
        return sorted(self._schemas)


def load_schemas(path: str | Path) -> list[ClassSchema]:
    """Load class and relation schemas from a YAML file."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise PackLoadError(f"Could not read schema file {path}: {e}") from e

    schemas = []
    for section in ("classes", "relations"):
        for name, attrs in (data.get(section) or {}).items():
            attrs = attrs or {}
            schemas.append(
                ClassSchema(
                    name=name,
                    attributes={
                        k: AttributeDescriptor(name=k, default="" if v is None else v)
                        for k, v in attrs.items()
                    },
                )
            )
    return schemas
