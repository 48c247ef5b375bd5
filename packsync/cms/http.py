"""HTTP graph store client.

Maps the resource access contract onto a CMS-style REST API::

    GET    /cm/namespaces?nsPath=...
    GET    /cm/simple/cis?nsPath=...&ciClassName=...&ciName=...
    POST   /cm/simple/cis              PUT/DELETE /cm/simple/cis/{ciId}
    GET    /cm/simple/relations?...
    POST   /cm/simple/relations        PUT/DELETE /cm/simple/relations/{ciRelationId}
    GET    /md/classes/{className}     GET /md/relations/{relationName}

A 4xx answer to a write is a validation failure (``save`` returns ``False``);
transport errors and 5xx answers raise :class:`ResourceClientError`.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from packsync.cms.client import Direction, Entity
from packsync.cms.models import (
    AttributeDescriptor,
    Attributes,
    ClassSchema,
    ConfigurationItem,
    Relation,
    State,
)
from packsync.errors import ResourceClientError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


class HttpResourceClient:
    """httpx-backed :class:`~packsync.cms.client.ResourceClient`.

    Parameters
    ----------
    base_url : str
        Root of the CMS REST adapter, e.g. ``http://cms:8080/adapter/rest``.
    transport : httpx.BaseTransport | None
        Optional transport override (tests pass an ``httpx.MockTransport``).
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(base_url=base_url.rstrip("/"), timeout=timeout, transport=transport)
        self._schemas: dict[str, ClassSchema] = {}

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpResourceClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    # -- transport -----------------------------------------------------------

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise ResourceClientError(f"{method} {url} failed: {e}") from e
        if response.status_code >= 500:
            raise ResourceClientError(
                f"{method} {url} returned {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        return response

    def _get_list(self, url: str, params: dict[str, Any]) -> list[dict]:
        response = self._request("GET", url, params={k: v for k, v in params.items() if v is not None})
        if response.status_code == 404:
            return []
        if response.is_error:
            raise ResourceClientError(
                f"GET {url} returned {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        data = response.json()
        if isinstance(data, dict):
            return [data]
        return data or []

    # -- schemas -------------------------------------------------------------

    def _schema(self, name: str, relation: bool = False) -> ClassSchema:
        if name not in self._schemas:
            url = f"/md/{'relations' if relation else 'classes'}/{name}"
            response = self._request("GET", url)
            attrs: dict[str, AttributeDescriptor] = {}
            if response.is_success:
                for md in response.json().get("mdAttributes", []):
                    attr_name = md["attributeName"]
                    attrs[attr_name] = AttributeDescriptor(
                        name=attr_name,
                        default=md.get("defaultValue") or "",
                        description=md.get("description") or "",
                    )
            else:
                logger.warning("No metadata for %s (HTTP %d)", name, response.status_code)
            self._schemas[name] = ClassSchema(name=name, attributes=attrs)
        return self._schemas[name]

    # -- contract ------------------------------------------------------------

    def namespace_exists(self, ns_path: str) -> bool:
        return bool(self._get_list("/cm/namespaces", {"nsPath": ns_path}))

    def find(
        self,
        ns_path: str,
        class_name: str | None = None,
        name: str | None = None,
        *,
        include_alt_ns: str | None = None,
    ) -> list[ConfigurationItem]:
        params = {
            "nsPath": ns_path,
            "ciClassName": class_name,
            "ciName": name,
            "includeAltNs": include_alt_ns,
        }
        return [_ci_from_json(d) for d in self._get_list("/cm/simple/cis", params)]

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
        params = {
            "nsPath": ns_path,
            "relationName": relation_name,
            "relationShortName": short_name,
            "ciId": ci_id,
            "direction": direction.value if direction else None,
            "targetClassName": target_class_name,
            "includeFromCi": "true" if include_from_ci else None,
            "includeToCi": "true" if include_to_ci else None,
        }
        return [_relation_from_json(d) for d in self._get_list("/cm/simple/relations", params)]

    def build_ci(
        self,
        ns_path: str,
        class_name: str,
        name: str,
        *,
        attributes: dict[str, Any] | None = None,
        alt_ns: dict[str, Any] | None = None,
    ) -> ConfigurationItem:
        attrs = self._schema(class_name).new_attributes()
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
            attributes=self._schema(relation_name, relation=True).new_attributes(),
            from_ci=from_ci,
            to_ci=to_ci,
        )

    def save(self, entity: Entity) -> bool:
        if isinstance(entity, Relation):
            body = _relation_to_json(entity)
            url = "/cm/simple/relations"
            if not entity.is_new:
                url = f"{url}/{entity.relation_id}"
        else:
            body = _ci_to_json(entity)
            url = "/cm/simple/cis"
            if not entity.is_new:
                url = f"{url}/{entity.ci_id}"

        response = self._request("POST" if entity.is_new else "PUT", url, json=body)
        if response.is_error:
            logger.warning("Store rejected %s: %s", url, response.text)
            return False

        saved = response.json()
        if isinstance(entity, Relation):
            entity.relation_id = saved.get("ciRelationId", entity.relation_id)
            entity.from_ci_id = saved.get("fromCiId", entity.from_ci_id)
            entity.to_ci_id = saved.get("toCiId", entity.to_ci_id)
            for end in ("fromCi", "toCi"):
                nested = getattr(entity, "from_ci" if end == "fromCi" else "to_ci")
                if nested is not None and saved.get(end):
                    nested.ci_id = saved[end].get("ciId", nested.ci_id)
        else:
            entity.ci_id = saved.get("ciId", entity.ci_id)
        return True

    def destroy(self, entity: Entity) -> bool:
        if isinstance(entity, Relation):
            url = f"/cm/simple/relations/{entity.relation_id}"
        else:
            url = f"/cm/simple/cis/{entity.ci_id}"
        response = self._request("DELETE", url)
        if response.is_error:
            logger.warning("Store refused to delete %s: %s", url, response.text)
            return False
        return True


def _ci_from_json(data: dict) -> ConfigurationItem:
    return ConfigurationItem(
        ns_path=data.get("nsPath", ""),
        class_name=data.get("ciClassName", ""),
        name=data.get("ciName", ""),
        attributes=Attributes(data.get("ciAttributes") or {}),
        state=State(data.get("ciState") or "default"),
        comments=data.get("comments") or "",
        alt_ns=dict(data.get("altNs") or {}),
        ci_id=data.get("ciId", 0),
    )


def _ci_to_json(ci: ConfigurationItem) -> dict:
    return {
        "ciId": ci.ci_id,
        "nsPath": ci.ns_path,
        "ciClassName": ci.class_name,
        "ciName": ci.name,
        "ciAttributes": ci.attributes.to_dict(),
        "ciState": ci.state.value,
        "comments": ci.comments,
        "altNs": dict(ci.alt_ns),
    }


def _relation_from_json(data: dict) -> Relation:
    return Relation(
        relation_name=data.get("relationName", ""),
        ns_path=data.get("nsPath", ""),
        from_ci_id=data.get("fromCiId", 0),
        to_ci_id=data.get("toCiId", 0),
        attributes=Attributes(data.get("relationAttributes") or {}),
        from_ci=_ci_from_json(data["fromCi"]) if data.get("fromCi") else None,
        to_ci=_ci_from_json(data["toCi"]) if data.get("toCi") else None,
        state=State(data.get("relationState") or "default"),
        comments=data.get("comments") or "",
        relation_id=data.get("ciRelationId", 0),
    )


def _relation_to_json(rel: Relation) -> dict:
    body: dict[str, Any] = {
        "ciRelationId": rel.relation_id,
        "relationName": rel.relation_name,
        "nsPath": rel.ns_path,
        "fromCiId": rel.from_ci_id,
        "toCiId": rel.to_ci_id,
        "relationAttributes": rel.attributes.to_dict(),
        "relationState": rel.state.value,
        "comments": rel.comments,
    }
    if rel.from_ci is not None:
        body["fromCi"] = _ci_to_json(rel.from_ci)
    if rel.to_ci is not None:
        body["toCi"] = _ci_to_json(rel.to_ci)
    return body
