"""Pack file loading, discovery and pre-upload validation.

Pack files are YAML documents; see :func:`pack_from_dict` for the keys that
are understood. Discovery walks a search path of directories, and
:func:`validate_packs` refuses to start a sync when two files would publish
to the same group/name/version.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from typing import Any

import yaml

from packsync.errors import PackConflictError, PackLoadError
from packsync.models.pack import EnvironmentOverrides, PackDefinition, ResourceSpec

PACK_SUFFIXES = (".yaml", ".yml")


def load_pack(path: str | Path) -> PackDefinition:
    """Load a pack definition from a YAML file."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise PackLoadError(f"Could not load pack {path}: {e}") from e

    if not isinstance(data, dict) or not data.get("name"):
        raise PackLoadError(f"Pack file {path} must be a mapping with a 'name'")

    pack = pack_from_dict(data)
    pack.source_file = str(path)
    return pack


def pack_from_dict(data: dict[str, Any]) -> PackDefinition:
    """Build a :class:`PackDefinition` from its parsed YAML form."""
    environments = {}
    for env_name, env_data in (data.get("environments") or {}).items():
        env_data = env_data or {}
        environments[str(env_name).lower()] = EnvironmentOverrides(
            resources=_resources(env_data.get("resources")),
            entrypoints=_named_maps(env_data.get("entrypoints")),
            procedures=_named_maps(env_data.get("procedures")),
            variables=_named_maps(env_data.get("variables")),
            policies=_named_maps(env_data.get("policies")),
        )

    return PackDefinition(
        name=_text(data, "name").lower(),
        version=_text(data, "version"),
        type=_text(data, "type", "platform"),
        description=data.get("description", ""),
        category=data.get("category", ""),
        owner=data.get("owner", ""),
        semver=bool(data.get("semver", False)),
        ignore=bool(data.get("ignore", False)),
        platform_attributes=dict((data.get("platform") or {}).get("attributes") or {}),
        resources=_resources(data.get("resources")),
        depends_on=_relation_maps(data.get("depends_on")),
        managed_via=_relation_maps(data.get("managed_via")),
        entrypoints=_named_maps(data.get("entrypoints")),
        procedures=_named_maps(data.get("procedures")),
        variables=_named_maps(data.get("variables")),
        policies=_named_maps(data.get("policies")),
        environments=environments,
    )


def _text(data: dict[str, Any], key: str, default: str = "") -> str:
    # Floats are refused: YAML has already turned 1.10 into 1.1.
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise PackLoadError(f"Pack {key} {value!r} must be a string; quote it in the pack file")
    return str(value)


def discover_pack_files(pack_path: Iterable[str | Path]) -> list[Path]:
    """All pack files in the search path directories, in path order."""
    files: list[Path] = []
    for directory in pack_path:
        directory = Path(directory)
        if not directory.is_dir():
            continue
        files.extend(
            sorted(p for p in directory.iterdir() if p.is_file() and p.suffix in PACK_SUFFIXES)
        )
    return files


def resolve_pack_file(name: str, pack_path: Iterable[str | Path]) -> Path:
    """Find ``<name>.yaml`` (or ``.yml``) on the search path.

    An existing file path is returned unchanged.
    """
    direct = Path(name)
    if direct.is_file():
        return direct
    for directory in pack_path:
        for suffix in PACK_SUFFIXES:
            candidate = Path(directory) / f"{name}{suffix}"
            if candidate.is_file():
                return candidate
    raise PackLoadError(f"Pack {name} not found in search path")


def pack_key(group: str, pack: PackDefinition, default_version: str) -> str:
    """Collision key ``group**name**version`` for a loaded pack."""
    version = pack.version or default_version.split(".")[0]
    return f"{group}**{pack.name.lower()}**{version}"


def validate_packs(
    files: Iterable[str | Path],
    group: str,
    default_version: str,
) -> dict[str, str]:
    """Make sure no two pack files publish to the same group/name/version.

    Returns the key -> file map. Raises :class:`PackConflictError` on the
    first collision; nothing should be uploaded in that case.
    """
    pack_map: dict[str, str] = {}
    for file in files:
        key = pack_key(group, load_pack(file), default_version)
        if key in pack_map:
            raise PackConflictError(key, pack_map[key], str(file))
        pack_map[key] = str(file)
    return pack_map


def _resources(data: dict | None) -> dict[str, ResourceSpec]:
    resources = {}
    for name, spec in (data or {}).items():
        spec = spec or {}
        resources[name] = ResourceSpec(
            name=name,
            cookbook=spec.get("cookbook", ""),
            source=spec.get("source", ""),
            attributes=dict(spec.get("attributes") or {}),
            requires=dict(spec.get("requires") or {}),
            monitors=_named_maps(spec.get("monitors")),
            payloads=_named_maps(spec.get("payloads")),
        )
    return resources


def _named_maps(data: dict | None) -> dict[str, dict[str, Any]]:
    return {name: dict(values or {}) for name, values in (data or {}).items()}


def _relation_maps(data: dict | None) -> dict[str, dict[str, dict[str, Any]]]:
    return {src: _named_maps(targets) for src, targets in (data or {}).items()}
