"""Graph store data models — configuration items, relations and class schemas.

Every CI and relation carries an attribute map whose keys are fixed by the
class (or relation) schema. Writes to undeclared attribute names are no-ops,
never errors: overrides are intersection-merged onto the declared keys.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping, MutableMapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class State(Enum):
    """Lifecycle state of a CI or relation."""

    DEFAULT = "default"
    PENDING_DELETION = "pending_deletion"


# Alternate-namespace tag carrying pack visibility on Version CIs.
VISIBILITY_ALT_NS_TAG = "enableForOrg"


@dataclass(frozen=True)
class CiKey:
    """Natural identity of a CI: unique within (namespace, class)."""

    ns_path: str
    class_name: str
    name: str

    def __str__(self) -> str:
        return f"{self.ns_path}/{self.class_name}/{self.name}"


@dataclass(frozen=True)
class AttributeDescriptor:
    """One declared attribute of a class or relation schema."""

    name: str
    default: Any = ""
    description: str = ""


@dataclass
class ClassSchema:
    """Fixed attribute schema for a CI class or a relation name."""

    name: str
    attributes: dict[str, AttributeDescriptor] = field(default_factory=dict)

    @classmethod
    def of(cls, name: str, **defaults: Any) -> ClassSchema:
        """Shorthand: ``ClassSchema.of("mgmt.Mode", description="")``."""
        return cls(
            name=name,
            attributes={k: AttributeDescriptor(name=k, default=v) for k, v in defaults.items()},
        )

    def defaults(self) -> dict[str, Any]:
        return {name: desc.default for name, desc in self.attributes.items()}

    def new_attributes(self) -> Attributes:
        return Attributes(self.defaults())


def is_present(value: Any) -> bool:
    """Truthiness used for override values: only ``None`` and ``False`` are absent."""
    return value is not None and value is not False


def overlay(
    current: Mapping[str, Any],
    overrides: Mapping[str, Any] | None,
    *,
    require_value: bool = False,
) -> dict[str, Any]:
    """Intersection-merge *overrides* onto *current*.

    Only keys already present in *current* are taken from *overrides*; the
    result never gains new keys. With ``require_value`` an override of
    ``None``/``False`` leaves the current value in place.
    """
    merged = dict(current)
    if not overrides:
        return merged
    for name in current:
        if name not in overrides:
            continue
        value = overrides[name]
        if require_value and not is_present(value):
            continue
        merged[name] = value
    return merged


class Attributes(MutableMapping):
    """Attribute map with a fixed key set.

    Assigning to an undeclared name is silently ignored, so attribute
    overrides coming from pack files can never introduce new keys.
    """

    def __init__(self, values: Mapping[str, Any] | None = None):
        self._values: dict[str, Any] = dict(values or {})

    def __getitem__(self, name: str) -> Any:
        return self._values[name]

    def __setitem__(self, name: str, value: Any) -> None:
        if name in self._values:
            self._values[name] = value

    def __delitem__(self, name: str) -> None:
        raise TypeError("attributes of a fixed schema cannot be removed")

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"Attributes({self._values!r})"

    def apply(self, overrides: Mapping[str, Any] | None, *, require_value: bool = False) -> None:
        """Overlay *overrides* in place (see :func:`overlay`)."""
        self._values = overlay(self._values, overrides, require_value=require_value)

    def declares(self, name: str) -> bool:
        return name in self._values

    def to_dict(self) -> dict[str, Any]:
        return dict(self._values)


@dataclass
class ConfigurationItem:
    """A node in the graph store.

    ``ci_id`` is assigned by the store on first save; ``0`` means unsaved.
    """

    ns_path: str
    class_name: str
    name: str
    attributes: Attributes = field(default_factory=Attributes)
    state: State = State.DEFAULT
    comments: str = ""
    alt_ns: dict[str, Any] = field(default_factory=dict)
    ci_id: int = 0

    @property
    def key(self) -> CiKey:
        return CiKey(self.ns_path, self.class_name, self.name)

    @property
    def is_new(self) -> bool:
        return self.ci_id == 0


def relation_kind(short_name: str) -> str:
    """``"DependsOn"`` -> ``"depends_on"``, ``"WatchedBy"`` -> ``"watched_by"``."""
    return "_".join(re.findall(r"[A-Z][a-z]+", short_name)).lower()


@dataclass
class Relation:
    """A typed edge between two CIs.

    A new relation may carry an unsaved ``to_ci`` (or ``from_ci``) with a
    zero id; the store creates the endpoint CI together with the relation.
    """

    relation_name: str
    ns_path: str
    from_ci_id: int = 0
    to_ci_id: int = 0
    attributes: Attributes = field(default_factory=Attributes)
    from_ci: ConfigurationItem | None = None
    to_ci: ConfigurationItem | None = None
    state: State = State.DEFAULT
    comments: str = ""
    relation_id: int = 0

    @property
    def short_name(self) -> str:
        return self.relation_name.rsplit(".", 1)[-1]

    @property
    def kind(self) -> str:
        return relation_kind(self.short_name)

    @property
    def is_new(self) -> bool:
        return self.relation_id == 0

    @property
    def identity(self) -> tuple[str, int, int]:
        return (self.relation_name, self.from_ci_id, self.to_ci_id)
