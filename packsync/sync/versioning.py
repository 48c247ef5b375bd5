"""Version resolution — decide which version an upload publishes, if any.

Two lifecycle modes:

* **semver**: published versions are immutable. Content changes under a
  ``major.minor`` lineage produce a new patch; identical content is skipped.
* **mutable**: a single version (the major segment) is republished in place
  whenever its signature changes, or unconditionally on reload.

Resolution is pure: it reads the existing Version CIs it is handed and
returns a :class:`Resolution`; it never writes to the store.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from packsync.cms.models import VISIBILITY_ALT_NS_TAG, ConfigurationItem
from packsync.models.pack import PackDefinition

logger = logging.getLogger(__name__)


class VersionMode(Enum):
    SEMVER = "semver"
    MUTABLE = "mutable"


@dataclass
class Resolution:
    """What to do with a pack: skip it, or publish it at ``version``."""

    skip: bool
    version: str
    signature: str = ""
    reason: str = ""
    enabled: bool = True
    visibility: Any = None
    ignored: bool = False

    @property
    def publish(self) -> bool:
        return not self.skip


def split_version(raw: str) -> tuple[str, str, str]:
    """``"2.1.3"`` -> ``("2", "1", "3")``; missing segments are ``""``."""
    parts = (raw or "").split(".")
    parts += [""] * (3 - len(parts))
    return parts[0], parts[1], parts[2]


def patch_number(version_name: str) -> int:
    """Numeric patch of a version name; non-numeric or missing patches count as 0."""
    try:
        return int(split_version(version_name)[2])
    except ValueError:
        return 0


def inherit_flags(version_ci: ConfigurationItem | None) -> tuple[bool, Any]:
    """``(enabled, visibility)`` carried over from an existing Version CI."""
    if version_ci is None:
        return True, None
    return (
        str(version_ci.attributes.get("enabled", "true")) != "false",
        version_ci.alt_ns.get(VISIBILITY_ALT_NS_TAG),
    )


class VersionResolver:
    """Resolves the concrete version string for a pack upload."""

    def __init__(self, default_version: str = "1", reload: bool = False):
        self.default_version = default_version
        self.reload = reload

    def resolve(
        self,
        pack: PackDefinition,
        existing_versions: Sequence[ConfigurationItem],
        mode: VersionMode,
    ) -> Resolution:
        if mode == VersionMode.SEMVER:
            return self.resolve_semver(pack, existing_versions)
        return self.resolve_mutable(pack, existing_versions)

    # -- semver --------------------------------------------------------------

    def resolve_semver(
        self,
        pack: PackDefinition,
        existing_versions: Sequence[ConfigurationItem],
    ) -> Resolution:
        if pack.version:
            major, minor, patch = split_version(pack.version)
        else:
            # The global default only ever contributes major.minor.
            major, minor, _ = split_version(self.default_version)
            patch = ""
        minor = minor or "0"
        lineage = f"{major}.{minor}"
        extra = {"pack": pack.name, "version": lineage}

        same_major = [v for v in existing_versions if split_version(v.name)[0] == major]
        latest_patch: ConfigurationItem | None = None
        for version_ci in same_major:
            if split_version(version_ci.name)[1] != minor:
                continue
            if latest_patch is None or patch_number(version_ci.name) > patch_number(latest_patch.name):
                latest_patch = version_ci

        # Flags come from the latest patch of this minor, else from the
        # lexicographically last version of the same major.
        flag_source = latest_patch
        if flag_source is None and same_major:
            flag_source = max(same_major, key=lambda v: v.name)
        enabled, visibility = inherit_flags(flag_source)

        def result(skip: bool, version: str, reason: str, signature: str = "", ignored: bool = False) -> Resolution:
            return Resolution(
                skip=skip,
                version=version,
                signature=signature,
                reason=reason,
                enabled=enabled,
                visibility=visibility,
                ignored=ignored,
            )

        if pack.ignore:
            logger.info("Ignoring pack %s version %s", pack.name, pack.version or lineage, extra=extra)
            return result(True, pack.version or lineage, "ignored", ignored=True)

        signature = pack.signature

        if patch:
            version = f"{lineage}.{patch}"
            if any(v.name == version for v in same_major):
                logger.warning(
                    "Pack %s version %s explicitly specified but it already exists, will skip pack loading",
                    pack.name,
                    version,
                    extra=extra,
                )
                return result(True, version, "explicit version already exists")
            logger.info(
                "Pack %s version %s explicitly specified and it does not exist yet, will load",
                pack.name,
                version,
                extra=extra,
            )
            return result(False, version, "explicit version", signature)

        if latest_patch is None:
            logger.info("No patches found for %s version %s, start at patch 0", pack.name, lineage, extra=extra)
            return result(False, f"{lineage}.0", "first patch", signature)

        if latest_patch.attributes.get("commit") == signature:
            logger.info(
                "Pack %s latest patch version %s matches signature (%s), will skip pack loading",
                pack.name,
                latest_patch.name,
                signature,
                extra=extra,
            )
            return result(True, latest_patch.name, "signature match", signature)

        version = f"{lineage}.{patch_number(latest_patch.name) + 1}"
        logger.info(
            "Pack %s latest patch version %s signature differs, will load as %s",
            pack.name,
            latest_patch.name,
            version,
            extra=extra,
        )
        return result(False, version, "signature changed", signature)

    # -- mutable -------------------------------------------------------------

    def resolve_mutable(
        self,
        pack: PackDefinition,
        existing_versions: Sequence[ConfigurationItem],
    ) -> Resolution:
        version = split_version(pack.version or self.default_version)[0]
        extra = {"pack": pack.name, "version": version}

        if pack.ignore:
            logger.info("Ignoring pack %s version %s", pack.name, version, extra=extra)
            return Resolution(skip=True, version=version, reason="ignored", ignored=True)

        signature = pack.signature
        current = next((v for v in existing_versions if v.name == version), None)
        enabled, visibility = inherit_flags(current)

        def result(skip: bool, reason: str) -> Resolution:
            return Resolution(
                skip=skip,
                version=version,
                signature=signature,
                reason=reason,
                enabled=enabled,
                visibility=visibility,
            )

        if current is None:
            logger.info("Pack %s version %s not found", pack.name, version, extra=extra)
            return result(False, "new version")

        if current.attributes.get("commit") == signature:
            if self.reload:
                logger.info("Pack %s version %s matches signature, reloading", pack.name, version, extra=extra)
                return result(False, "reload")
            logger.info(
                "Pack %s version %s matches signature %s, use --reload to force load",
                pack.name,
                version,
                signature,
                extra=extra,
            )
            return result(True, "signature match")

        logger.warning(
            "Pack %s version %s signature is different from file signature %s",
            pack.name,
            version,
            signature,
            extra=extra,
        )
        return result(False, "signature changed")
