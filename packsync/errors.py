"""Exception taxonomy for pack synchronization.

Fatal errors abort the whole run (collisions, missing namespace), abort-pack
errors stop a single pack (platform or mode setup, failed publish), and
per-item save failures never raise at all; they are folded into reports.
"""

from __future__ import annotations


class PackSyncError(Exception):
    """Base class for all packsync errors."""


class ResourceClientError(PackSyncError):
    """Transport-level failure talking to the graph store."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class PackLoadError(PackSyncError):
    """A pack definition file could not be read or parsed."""


class PackConflictError(PackSyncError):
    """Two pack files resolve to the same group/name/version key."""

    def __init__(self, key: str, first: str, second: str):
        super().__init__(f"conflict of pack group-name-version: {key} {second} to {first}")
        self.key = key
        self.first = first
        self.second = second


class NamespaceNotFoundError(PackSyncError):
    """The packs namespace for the source register does not exist."""

    def __init__(self, ns_path: str):
        super().__init__(
            f"Can't find namespace {ns_path}. Please register your source first."
        )
        self.ns_path = ns_path


class ModeSetupError(PackSyncError):
    """An environment Mode CI could not be saved."""


class PlatformSaveError(PackSyncError):
    """The platform CI of a template could not be saved."""


class PublishFailed(PackSyncError):
    """Publishing a pack version failed after the Version CI was staged.

    ``rolled_back`` tells whether the staged Version CI was destroyed.
    """

    def __init__(self, pack: str, version: str, cause: BaseException, rolled_back: bool = False):
        super().__init__(f"Failed to publish pack {pack} version {version}: {cause}")
        self.pack = pack
        self.version = version
        self.cause = cause
        self.rolled_back = rolled_back
