"""Error taxonomy for the update engine.

Components report expected failures as return values. The orchestrator
turns those into the exceptions below, and its run loop treats every one
of them as retryable.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(Enum):
    """Kinds of failure reported on the status stream.

    CONNECTIVITY_UNAVAILABLE is reported while waiting for a network and
    never raised: the wait itself is unbounded.
    """

    CONNECTIVITY_UNAVAILABLE = "connectivity_unavailable"
    MANIFEST_UNAVAILABLE = "manifest_unreachable_or_malformed"
    DOWNLOAD_FAILED = "download_failed"
    CHECKSUM_MISMATCH = "checksum_mismatch"
    INSTALL_DISPATCH_FAILED = "install_dispatch_failed"


class UpdateError(Exception):
    """Base class for update iteration failures."""

    kind: ErrorKind
    retryable = True

    def __init__(self, message: str, *, detail: str = "") -> None:
        super().__init__(message)
        self.detail = detail


class ManifestUnavailable(UpdateError):
    kind = ErrorKind.MANIFEST_UNAVAILABLE


class DownloadFailed(UpdateError):
    """Transport error, non-2xx, redirect limit, or empty body."""

    kind = ErrorKind.DOWNLOAD_FAILED


class ChecksumMismatch(DownloadFailed):
    """Downloaded bytes did not match the manifest digest."""

    kind = ErrorKind.CHECKSUM_MISMATCH


class InstallDispatchFailed(UpdateError):
    kind = ErrorKind.INSTALL_DISPATCH_FAILED
