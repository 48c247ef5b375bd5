"""Sync configuration — the explicit settings handed to the orchestrator.

Settings come from (highest first) CLI options, a YAML config file, the
environment and finally the defaults below.
"""

from __future__ import annotations

import getpass
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from packsync.errors import PackLoadError

DEFAULT_NSPATH = "/public"
DEFAULT_VERSION = "1"


@dataclass
class SyncConfig:
    """Everything one sync run needs to know besides the packs themselves."""

    register: str = ""
    nspath: str = DEFAULT_NSPATH
    default_version: str = DEFAULT_VERSION
    pack_path: list[Path] = field(default_factory=lambda: [Path("packs")])
    semver: bool = False
    reload: bool = False
    force_version: str | None = None
    comments: str = ""

    # Store selection: REST endpoint when set, local store otherwise.
    endpoint: str | None = None
    store_dir: Path | None = None
    schema_files: list[Path] = field(default_factory=list)
    log_dir: Path | None = None

    @property
    def packs_ns(self) -> str:
        return f"{self.nspath.rstrip('/')}/{self.register}/packs"

    def pack_ns(self, pack_name: str) -> str:
        return f"{self.packs_ns}/{pack_name}"

    def version_ns(self, pack_name: str, version: str) -> str:
        return f"{self.pack_ns(pack_name)}/{version}"


def default_comments(msg: str | None = None) -> str:
    """``"<user>:<program>"`` with an optional appended message."""
    try:
        user = os.environ.get("USER") or getpass.getuser()
    except (KeyError, OSError):
        user = "unknown"
    comments = f"{user}:{Path(sys.argv[0]).name if sys.argv and sys.argv[0] else 'packsync'}"
    if msg:
        comments += f" {msg}"
    return comments


def split_path(value: str | list | None) -> list[Path]:
    """Accept a colon-separated string or a list of directories."""
    if not value:
        return []
    if isinstance(value, str):
        return [Path(p) for p in value.split(":") if p]
    return [Path(p) for p in value]


def load_config(path: str | Path | None = None, **overrides: Any) -> SyncConfig:
    """Build a :class:`SyncConfig`.

    Args:
        path: Optional YAML file with any of the ``SyncConfig`` keys.
        overrides: Values that win over the file (``None`` values are ignored).
    """
    data: dict[str, Any] = {}
    if path:
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise PackLoadError(f"Could not read config {path}: {e}") from e

    data.update({k: v for k, v in overrides.items() if v is not None})

    config = SyncConfig(
        register=str(data.get("register", "")),
        nspath=str(data.get("nspath", DEFAULT_NSPATH)),
        default_version=str(data.get("default_version", data.get("version", DEFAULT_VERSION))),
        semver=bool(data.get("semver", False)) or bool(os.environ.get("SEMVER")),
        reload=bool(data.get("reload", False)),
        force_version=str(data["force_version"]) if data.get("force_version") else None,
        comments=data.get("comments") or default_comments(data.get("msg")),
        endpoint=data.get("endpoint") or None,
        store_dir=Path(data["store_dir"]) if data.get("store_dir") else None,
        schema_files=split_path(data.get("schema_files")),
        log_dir=Path(data["log_dir"]) if data.get("log_dir") else None,
    )
    pack_path = split_path(data.get("pack_path"))
    if pack_path:
        config.pack_path = pack_path
    return config
