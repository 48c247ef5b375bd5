"""Pack sync orchestration — validate, resolve, publish.

One :class:`PackSyncOrchestrator` drives a whole run:

1. Pre-validation: no two pack files may publish to the same
   group/name/version, and the packs namespace of the register must exist.
   Either failure aborts the run before anything is written.
2. Per pack: resolve the version; on skip only refresh documentation.
3. On publish, stage the Pack and Version CIs (with an empty ``commit``),
   reconcile the design template and every environment, then stamp the
   Version CI with the signature. A failed semver publish destroys the
   Version CI it created, so no half-published immutable version survives.

Packs are processed sequentially; environments strictly in order, default first.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import replace
from pathlib import Path

from packsync.cms.client import ResourceClient, find_first
from packsync.cms.models import VISIBILITY_ALT_NS_TAG, ConfigurationItem
from packsync.config import SyncConfig
from packsync.errors import (
    ModeSetupError,
    NamespaceNotFoundError,
    PackSyncError,
    PlatformSaveError,
    PublishFailed,
    ResourceClientError,
)
from packsync.models.pack import DEFAULT_ENV, PackDefinition, package_for
from packsync.packs.loader import discover_pack_files, load_pack, resolve_pack_file, validate_packs
from packsync.sync.reconcile import GraphReconciler
from packsync.sync.report import PackResult, PackStatus, ReconcileReport, SyncReport
from packsync.sync.sweep import MODE_CLASS, SweepEngine
from packsync.sync.versioning import Resolution, VersionMode, VersionResolver

logger = logging.getLogger(__name__)

PACK_CLASS = "mgmt.Pack"
VERSION_CLASS = "mgmt.Version"

DocPublisher = Callable[[str, PackDefinition], None]


class PackSyncOrchestrator:
    """Synchronizes pack definitions into the graph store."""

    def __init__(
        self,
        client: ResourceClient,
        config: SyncConfig,
        doc_publisher: DocPublisher | None = None,
    ):
        self.client = client
        self.config = config
        self.doc_publisher = doc_publisher
        self.reconciler = GraphReconciler(client, register=config.register, comments=config.comments)
        self.sweeper = SweepEngine(client)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, selectors: Sequence[str] = (), all_packs: bool = False) -> SyncReport:
        """Sync the selected packs (or every pack on the search path).

        Raises :class:`PackSyncError` for run-level failures (nothing
        selected, a missing pack file, collisions, missing namespace).
        Pack-level failures are returned in the report.
        """
        if all_packs:
            files = discover_pack_files(self.config.pack_path)
        elif selectors:
            files = [resolve_pack_file(name, self.config.pack_path) for name in selectors]
        else:
            raise PackSyncError("You must specify the pack name or use the --all option.")

        known = discover_pack_files(self.config.pack_path)
        self.validate([*known, *(f for f in files if f not in known)])
        return self.sync_files(files, keep_going=all_packs)

    def validate(self, files: Iterable[str | Path]) -> None:
        """Pre-upload checks; raises on collision or a missing packs namespace."""
        validate_packs(files, self.config.register, self.config.default_version)
        if not self.client.namespace_exists(self.config.packs_ns):
            raise NamespaceNotFoundError(self.config.packs_ns)

    def sync_files(self, files: Iterable[str | Path], keep_going: bool = False) -> SyncReport:
        """Sync pack files in order.

        Without ``keep_going`` the run stops at the first failed pack.
        """
        report = SyncReport()
        for file in files:
            try:
                result = self.sync_pack(load_pack(file))
            except PackSyncError as e:
                result = _failed_result(file, e)
                logger.error(
                    "Failed to sync %s: %s",
                    file,
                    e,
                    extra={"pack": result.pack, "version": result.version, "error": str(e)},
                )
            report.results.append(result)
            if not result.ok and not keep_going:
                break
        return report

    # ------------------------------------------------------------------
    # Single pack
    # ------------------------------------------------------------------

    def sync_pack(self, pack: PackDefinition) -> PackResult:
        """Resolve and, when needed, publish one pack."""
        if self.config.force_version:
            pack = replace(pack, version=self.config.force_version)

        semver = self.config.semver or pack.semver
        if semver and self.config.reload:
            logger.warning(
                "Reload is not available in semver mode, pack versions are immutable. "
                "Change the pack content to publish a new patch version.",
                extra={"pack": pack.name},
            )

        resolver = VersionResolver(self.config.default_version, reload=self.config.reload and not semver)
        existing = self.client.find(
            self.config.pack_ns(pack.name), VERSION_CLASS, include_alt_ns=VISIBILITY_ALT_NS_TAG
        )
        resolution = resolver.resolve(pack, existing, VersionMode.SEMVER if semver else VersionMode.MUTABLE)

        pack = replace(
            pack,
            version=resolution.version,
            enabled=resolution.enabled,
            visibility=resolution.visibility,
        )
        result = PackResult(
            pack=pack.name,
            version=resolution.version,
            signature=resolution.signature,
            reason=resolution.reason,
        )
        version_ns = self.config.version_ns(pack.name, pack.version)

        if resolution.skip:
            # Documentation may have changed even when the pack has not.
            self._publish_docs(version_ns, pack)
            result.status = PackStatus.IGNORED if resolution.ignored else PackStatus.SKIPPED
            return result

        logger.info("Publishing pack %s version %s", pack.name, pack.version, extra=_extra(pack))
        if semver:
            self._publish_semver(pack, resolution, version_ns, result)
        else:
            self._publish_mutable(pack, resolution, version_ns, result)

        result.status = PackStatus.PUBLISHED
        logger.info(
            "Uploaded pack %s version %s [signature: %s]",
            pack.name,
            pack.version,
            resolution.signature,
            extra=_extra(pack),
        )
        return result

    def _publish_semver(
        self,
        pack: PackDefinition,
        resolution: Resolution,
        version_ns: str,
        result: PackResult,
    ) -> None:
        version_ci, created = self.setup_pack_version(pack)
        try:
            self._publish_docs(version_ns, pack)
            self._reconcile_all(pack, version_ns, result)
            self._stamp_commit(pack, version_ci, resolution.signature, required=True)
        except Exception as e:
            logger.error("%s", e, extra={**_extra(pack), "error": str(e)})
            raise PublishFailed(pack.name, pack.version, e, rolled_back=self._rollback(pack, version_ci, created)) from e

    def _publish_mutable(
        self,
        pack: PackDefinition,
        resolution: Resolution,
        version_ns: str,
        result: PackResult,
    ) -> None:
        try:
            result.sweep = self.sweeper.sweep(pack, version_ns, version=pack.version)
            version_ci, _ = self.setup_pack_version(pack)
            self._publish_docs(version_ns, pack)
            self._reconcile_all(pack, version_ns, result)
        except Exception as e:
            logger.error("%s", e, extra={**_extra(pack), "error": str(e)})
            raise PublishFailed(pack.name, pack.version, e) from e
        self._stamp_commit(pack, version_ci, resolution.signature)

    def _reconcile_all(self, pack: PackDefinition, version_ns: str, result: PackResult) -> None:
        """Design template first, then each environment under its own Mode CI."""
        report = self.reconciler.reconcile(
            version_ns, pack, package_for(DEFAULT_ENV), DEFAULT_ENV, pack.design_resources()
        )
        self._check_platform(pack, report)
        result.environments.append(report)

        for env in pack.environment_names:
            self.setup_mode(pack, env)
            report = self.reconciler.reconcile(
                f"{version_ns}/{env}",
                pack,
                package_for(env),
                env,
                pack.environment_resources(env),
            )
            self._check_platform(pack, report)
            result.environments.append(report)

    @staticmethod
    def _check_platform(pack: PackDefinition, report: ReconcileReport) -> None:
        if not report.success:
            raise PlatformSaveError(
                f"Could not save platform for pack {pack.name} version {pack.version} in {report.ns_path}"
            )

    # ------------------------------------------------------------------
    # Pack, Version and Mode CIs
    # ------------------------------------------------------------------

    def setup_pack_version(self, pack: PackDefinition) -> tuple[ConfigurationItem, bool]:
        """Upsert the Pack CI and stage the Version CI with an empty commit.

        Returns the Version CI and whether it was created by this call.
        """
        extra = _extra(pack)
        pack_ci = find_first(self.client, self.config.packs_ns, PACK_CLASS, pack.name)
        if pack_ci is None:
            logger.info("Creating pack CI %s", pack.name, extra=extra)
            pack_ci = self.client.build_ci(self.config.packs_ns, PACK_CLASS, pack.name)

        pack_ci.comments = self.config.comments
        pack_ci.attributes["pack_type"] = pack.type
        pack_ci.attributes["description"] = pack.description
        pack_ci.attributes["category"] = pack.category
        pack_ci.attributes["owner"] = pack.owner
        if not self.client.save(pack_ci):
            raise PackSyncError(f"Could not save pack CI {pack.name}")

        pack_ns = self.config.pack_ns(pack.name)
        version_ci = find_first(self.client, pack_ns, VERSION_CLASS, pack.version)
        created = version_ci is None
        if created:
            logger.info("Creating pack CI %s version %s", pack.name, pack.version, extra=extra)
            alt_ns = {VISIBILITY_ALT_NS_TAG: pack.visibility} if pack.visibility is not None else None
            version_ci = self.client.build_ci(
                pack_ns,
                VERSION_CLASS,
                pack.version,
                attributes={"enabled": "true" if pack.enabled else "false"},
                alt_ns=alt_ns,
            )

        version_ci.comments = self.config.comments
        version_ci.attributes["description"] = pack.description
        version_ci.attributes["commit"] = ""
        if not self.client.save(version_ci):
            raise PackSyncError(f"Could not save pack version CI for {pack.name} {pack.version}")
        return version_ci, created

    def setup_mode(self, pack: PackDefinition, env: str) -> ConfigurationItem:
        """Upsert the Mode CI of an environment; raises :class:`ModeSetupError` on failure."""
        version_ns = self.config.version_ns(pack.name, pack.version)
        mode = find_first(self.client, version_ns, MODE_CLASS, env)
        if mode is None:
            logger.info("Creating environment mode %s", env, extra={**_extra(pack), "env": env})
            mode = self.client.build_ci(version_ns, MODE_CLASS, env)

        mode.comments = self.config.comments
        mode.attributes["description"] = pack.description
        if not self.client.save(mode):
            raise ModeSetupError(
                f"Unable to setup namespace for pack {pack.name} version {pack.version} environment mode {env}"
            )
        return mode

    def _stamp_commit(
        self,
        pack: PackDefinition,
        version_ci: ConfigurationItem,
        signature: str,
        required: bool = False,
    ) -> None:
        """Record the signature on the Version CI.

        An immutable version without its signature would be republished as a
        new patch, so with *required* a failed save raises instead of warning.
        """
        version_ci.attributes["commit"] = signature
        if not self.client.save(version_ci):
            if required:
                raise PackSyncError(f"Failed to update signature for pack {pack.name} version {pack.version}")
            logger.warning(
                "Failed to update signature for pack %s version %s",
                pack.name,
                pack.version,
                extra=_extra(pack),
            )

    def _rollback(self, pack: PackDefinition, version_ci: ConfigurationItem, created: bool) -> bool:
        """Destroy a Version CI staged by a failed publish; ``True`` if it is gone."""
        if not created:
            return False
        logger.info("Attempting to clean up pack %s version %s", pack.name, pack.version, extra=_extra(pack))
        try:
            destroyed = self.client.destroy(version_ci)
        except ResourceClientError as e:
            logger.warning("Failed to clean up: %s", e, extra={**_extra(pack), "error": str(e)})
            return False
        if not destroyed:
            logger.warning("Failed to clean up pack %s version %s", pack.name, pack.version, extra=_extra(pack))
        return destroyed

    def _publish_docs(self, version_ns: str, pack: PackDefinition) -> None:
        if self.doc_publisher is not None:
            self.doc_publisher(version_ns, pack)


def _extra(pack: PackDefinition) -> dict:
    return {"pack": pack.name, "version": pack.version}


def _failed_result(file: str | Path, error: PackSyncError) -> PackResult:
    if isinstance(error, PublishFailed):
        return PackResult(pack=error.pack, version=error.version, status=PackStatus.FAILED, error=str(error))
    return PackResult(pack=Path(file).stem, status=PackStatus.FAILED, error=str(error))
