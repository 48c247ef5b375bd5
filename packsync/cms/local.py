"""Local graph store implementation.

A simple, file-system-backed store for development, dry runs and tests.
CIs and relations are kept as JSON in a store directory, or purely in memory
when no directory is given. Behaves like the remote store where the sync
engine can observe it: ids are assigned on first save, class schemas are
enforced, duplicate identities are rejected and queries return copies.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from packsync.cms.client import Direction, Entity
from packsync.cms.models import Attributes, ConfigurationItem, Relation, State
from packsync.cms.schemas import SchemaRegistry

logger = logging.getLogger(__name__)


class LocalResourceClient:
    """File-based (or in-memory) :class:`~packsync.cms.client.ResourceClient`."""

    CIS_FILE = "cis.json"
    RELATIONS_FILE = "relations.json"
    NAMESPACES_FILE = "namespaces.json"

    def __init__(
        self,
        schemas: SchemaRegistry | None = None,
        store_dir: str | Path | None = None,
    ):
        self.schemas = schemas or SchemaRegistry.builtin()
        self.store_dir = Path(store_dir) if store_dir else None
        self._cis: dict[int, dict] = {}
        self._relations: dict[int, dict] = {}
        self._namespaces: set[str] = set()
        self._next_id = 1
        self.write_count = 0
        if self.store_dir:
            self.store_dir.mkdir(parents=True, exist_ok=True)
            self._load()

    # ------------------------------------------------------------------
    # Namespaces
    # ------------------------------------------------------------------

    def ensure_namespace(self, ns_path: str) -> None:
        """Register *ns_path* and all of its parents."""
        parts = [p for p in ns_path.split("/") if p]
        for i in range(1, len(parts) + 1):
            self._namespaces.add("/" + "/".join(parts[:i]))
        self._flush()

    def namespace_exists(self, ns_path: str) -> bool:
        return ns_path.rstrip("/") in self._namespaces

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find(
        self,
        ns_path: str,
        class_name: str | None = None,
        name: str | None = None,
        *,
        include_alt_ns: str | None = None,
    ) -> list[ConfigurationItem]:
        results = []
        for data in self._cis.values():
            if data["ns_path"] != ns_path:
                continue
            if class_name and data["class_name"] != class_name:
                continue
            if name is not None and data["name"] != name:
                continue
            results.append(self._dict_to_ci(data))
        return results

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
    ) -> list[Relation]:
        results = []
        for data in self._relations.values():
            if ns_path is not None and data["ns_path"] != ns_path:
                continue
            if relation_name and data["relation_name"] != relation_name:
                continue
            if short_name and data["relation_name"].rsplit(".", 1)[-1] != short_name:
                continue
            if ci_id is not None:
                if direction == Direction.FROM and data["from_ci_id"] != ci_id:
                    continue
                if direction == Direction.TO and data["to_ci_id"] != ci_id:
                    continue
                if direction is None and ci_id not in (data["from_ci_id"], data["to_ci_id"]):
                    continue
            if target_class_name:
                target_id = data["from_ci_id"] if direction == Direction.TO else data["to_ci_id"]
                target = self._cis.get(target_id)
                if not target or target["class_name"] != target_class_name:
                    continue
            results.append(self._dict_to_relation(data, include_from_ci, include_to_ci))
        return results

    # ------------------------------------------------------------------
    # Builders
    # ------------------------------------------------------------------

    def build_ci(
        self,
        ns_path: str,
        class_name: str,
        name: str,
        *,
        attributes: dict[str, Any] | None = None,
        alt_ns: dict[str, Any] | None = None,
    ) -> ConfigurationItem:
        attrs = self._new_attributes(class_name)
        attrs.apply(attributes)
        return ConfigurationItem(
            ns_path=ns_path,
            class_name=class_name,
            name=name,
            attributes=attrs,
            alt_ns=dict(alt_ns or {}),
        )

    def build_relation(
        self,
        relation_name: str,
        ns_path: str,
        *,
        from_ci_id: int = 0,
        to_ci_id: int = 0,
        from_ci: ConfigurationItem | None = None,
        to_ci: ConfigurationItem | None = None,
    ) -> Relation:
        return Relation(
            relation_name=relation_name,
            ns_path=ns_path,
            from_ci_id=from_ci_id or 0,
            to_ci_id=to_ci_id or 0,
            attributes=self._new_attributes(relation_name),
            from_ci=from_ci,
            to_ci=to_ci,
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def save(self, entity: Entity) -> bool:
        if isinstance(entity, Relation):
            ok = self._save_relation(entity)
        else:
            ok = self._save_ci(entity)
        if ok:
            self._flush()
        return ok

    def destroy(self, entity: Entity) -> bool:
        if isinstance(entity, Relation):
            if self._relations.pop(entity.relation_id, None) is None:
                return False
        else:
            if self._cis.pop(entity.ci_id, None) is None:
                return False
            # Relations cannot outlive their endpoints.
            for rel_id in [
                rid
                for rid, r in self._relations.items()
                if entity.ci_id in (r["from_ci_id"], r["to_ci_id"])
            ]:
                del self._relations[rel_id]
        self.write_count += 1
        self._flush()
        return True

    def _save_ci(self, ci: ConfigurationItem) -> bool:
        if ci.class_name not in self.schemas:
            logger.warning("Unknown class %s for CI %s", ci.class_name, ci.name)
            return False

        if ci.is_new:
            if self.find(ci.ns_path, ci.class_name, ci.name):
                logger.warning("CI %s already exists", ci.key)
                return False
            ci.ci_id = self._allocate_id()
        elif ci.ci_id not in self._cis:
            logger.warning("CI %s (id %d) no longer exists", ci.name, ci.ci_id)
            return False

        record = self._ci_to_dict(ci)
        if self._cis.get(ci.ci_id) != record:
            self._cis[ci.ci_id] = record
            self.write_count += 1
        return True

    def _save_relation(self, rel: Relation) -> bool:
        if rel.relation_name not in self.schemas:
            logger.warning("Unknown relation %s", rel.relation_name)
            return False

        for end in ("from", "to"):
            ci: ConfigurationItem | None = getattr(rel, f"{end}_ci")
            ci_id: int = getattr(rel, f"{end}_ci_id")
            if ci is not None and (ci_id == 0 or ci.ci_id == ci_id):
                # Nested endpoint: created or updated together with the relation.
                if not self._save_ci(ci):
                    return False
                setattr(rel, f"{end}_ci_id", ci.ci_id)
            elif ci_id not in self._cis:
                logger.warning("Relation %s %s endpoint %s does not exist", rel.relation_name, end, ci_id)
                return False

        if rel.is_new:
            if any(
                r["relation_name"] == rel.relation_name
                and r["from_ci_id"] == rel.from_ci_id
                and r["to_ci_id"] == rel.to_ci_id
                for r in self._relations.values()
            ):
                logger.warning("Relation %s %s already exists", rel.relation_name, rel.identity)
                return False
            rel.relation_id = self._allocate_id()
        elif rel.relation_id not in self._relations:
            return False

        record = self._relation_to_dict(rel)
        if self._relations.get(rel.relation_id) != record:
            self._relations[rel.relation_id] = record
            self.write_count += 1
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _allocate_id(self) -> int:
        new_id = self._next_id
        self._next_id += 1
        return new_id

    def _new_attributes(self, name: str) -> Attributes:
        schema = self.schemas.get(name)
        return schema.new_attributes() if schema else Attributes()

    def _dict_to_ci(self, data: dict) -> ConfigurationItem:
        attrs = self._new_attributes(data["class_name"])
        if not len(attrs):
            attrs = Attributes(data["attributes"])
        attrs.apply(data["attributes"])
        return ConfigurationItem(
            ns_path=data["ns_path"],
            class_name=data["class_name"],
            name=data["name"],
            attributes=attrs,
            state=State(data.get("state", "default")),
            comments=data.get("comments", ""),
            alt_ns=dict(data.get("alt_ns", {})),
            ci_id=data["ci_id"],
        )

    def _dict_to_relation(self, data: dict, include_from: bool, include_to: bool) -> Relation:
        attrs = self._new_attributes(data["relation_name"])
        if not len(attrs):
            attrs = Attributes(data["attributes"])
        attrs.apply(data["attributes"])
        from_ci = self._cis.get(data["from_ci_id"]) if include_from else None
        to_ci = self._cis.get(data["to_ci_id"]) if include_to else None
        return Relation(
            relation_name=data["relation_name"],
            ns_path=data["ns_path"],
            from_ci_id=data["from_ci_id"],
            to_ci_id=data["to_ci_id"],
            attributes=attrs,
            from_ci=self._dict_to_ci(from_ci) if from_ci else None,
            to_ci=self._dict_to_ci(to_ci) if to_ci else None,
            state=State(data.get("state", "default")),
            comments=data.get("comments", ""),
            relation_id=data["relation_id"],
        )

    def _load(self) -> None:
        cis = self._read_json(self.store_dir / self.CIS_FILE)
        relations = self._read_json(self.store_dir / self.RELATIONS_FILE)
        self._cis = {d["ci_id"]: d for d in cis}
        self._relations = {d["relation_id"]: d for d in relations}
        self._namespaces = set(self._read_json(self.store_dir / self.NAMESPACES_FILE))
        self._next_id = max([0, *self._cis, *self._relations]) + 1

    def _flush(self) -> None:
        if not self.store_dir:
            return
        self._write_json(self.store_dir / self.CIS_FILE, list(self._cis.values()))
        self._write_json(self.store_dir / self.RELATIONS_FILE, list(self._relations.values()))
        self._write_json(self.store_dir / self.NAMESPACES_FILE, sorted(self._namespaces))

    @staticmethod
    def _read_json(path: Path) -> list:
        if not path.exists():
            return []
        try:
            data = json.loads(path.read_text())
            return data if isinstance(data, list) else []
        except (json.JSONDecodeError, OSError):
            logger.warning("Corrupt store file %s, ignoring", path)
            return []

    @staticmethod
    def _write_json(path: Path, data: list) -> None:
        path.write_text(json.dumps(data, indent=2, default=str))

    @staticmethod
    def _ci_to_dict(ci: ConfigurationItem) -> dict:
        return {
            "ci_id": ci.ci_id,
            "ns_path": ci.ns_path,
            "class_name": ci.class_name,
            "name": ci.name,
            "attributes": ci.attributes.to_dict(),
            "state": ci.state.value,
            "comments": ci.comments,
            "alt_ns": dict(ci.alt_ns),
        }

    @staticmethod
    def _relation_to_dict(rel: Relation) -> dict:
        return {
            "relation_id": rel.relation_id,
            "relation_name": rel.relation_name,
            "ns_path": rel.ns_path,
            "from_ci_id": rel.from_ci_id,
            "to_ci_id": rel.to_ci_id,
            "attributes": rel.attributes.to_dict(),
            "state": rel.state.value,
            "comments": rel.comments,
        }
