"""Resource access contract for the graph store.

The sync engine only talks to the store through :class:`ResourceClient`.
Two implementations ship with packsync: :class:`~packsync.cms.local.LocalResourceClient`
(file-backed or in-memory) and :class:`~packsync.cms.http.HttpResourceClient`.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Protocol, Union, runtime_checkable

from packsync.cms.models import ConfigurationItem, Relation

Entity = Union[ConfigurationItem, Relation]


class Direction(Enum):
    """Which end of a relation ``ci_id`` refers to."""

    FROM = "from"
    TO = "to"


@runtime_checkable
class ResourceClient(Protocol):
    """Typed read/query/upsert/destroy access to CIs and relations.

    ``save`` returns ``False`` when the store rejects the entity (validation)
    and raises :class:`~packsync.errors.ResourceClientError` on transport
    failure. ``build_*`` return unsaved entities whose attribute maps are
    initialised from the class schema.
    """

    def namespace_exists(self, ns_path: str) -> bool: ...

    def find(
        self,
        ns_path: str,
        class_name: str | None = None,
        name: str | None = None,
        *,
        include_alt_ns: str | None = None,
    ) -> list[ConfigurationItem]: ...

    def find_relations(
        self,
        *,
        ns_path: str | None = None,
        relation_name: str | None = None,
        short_name: str | None = None,
        ci_id: int | None = None,
        direction: Direction | None = None,
        target_class_name: str | None = None,
        include_from_ci: bool = False,
        include_to_ci: bool = False,
    ) -> list[Relation]: ...

    def build_ci(
        self,
        ns_path: str,
        class_name: str,
        name: str,
        *,
        attributes: dict[str, Any] | None = None,
        alt_ns: dict[str, Any] | None = None,
    ) -> ConfigurationItem: ...

    def build_relation(
        self,
        relation_name: str,
        ns_path: str,
        *,
        from_ci_id: int = 0,
        to_ci_id: int = 0,
        from_ci: ConfigurationItem | None = None,
        to_ci: ConfigurationItem | None = None,
    ) -> Relation: ...

    def save(self, entity: Entity) -> bool: ...

    def destroy(self, entity: Entity) -> bool: ...


def find_first(
    client: ResourceClient,
    ns_path: str,
    class_name: str,
    name: str,
    **kwargs: Any,
) -> ConfigurationItem | None:
    """Return the CI identified by (namespace, class, name), or ``None``."""
    found = client.find(ns_path, class_name, name, **kwargs)
    return found[0] if found else None
