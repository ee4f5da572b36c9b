"""Data models for the update engine.

All models are plain dataclasses. ``Manifest.from_dict`` is the only parser
for remote input and fails closed: anything that does not satisfy the
manifest invariants yields ``None``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

_SHA256_RE = re.compile(r"^[0-9a-fA-F]{64}$")


# ------------------------------------------------------------------
# Remote manifest / installed state
# ------------------------------------------------------------------


@dataclass(frozen=True)
class Manifest:
    """Latest available build as described by the remote manifest."""

    build_number: int
    artifact_url: str
    checksum: str | None = None  # lower-case hex sha256

    @classmethod
    def from_dict(cls, data: Any) -> Manifest | None:
        """Parse the ``version.json`` payload, or return None if it is invalid."""
        if not isinstance(data, dict):
            return None

        build = data.get("version_code")
        # bool is an int subclass; "true" is not a build number
        if not isinstance(build, int) or isinstance(build, bool) or build <= 0:
            return None

        url = data.get("apk_url")
        if not isinstance(url, str) or not url.strip():
            return None

        checksum = data.get("sha256")
        if checksum is not None:
            if not isinstance(checksum, str):
                return None
            checksum = checksum.strip()
            if not checksum:
                checksum = None
            elif not _SHA256_RE.match(checksum):
                return None
            else:
                checksum = checksum.lower()

        return cls(build_number=build, artifact_url=url.strip(), checksum=checksum)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version_code": self.build_number,
            "apk_url": self.artifact_url,
            "sha256": self.checksum,
        }


@dataclass(frozen=True)
class InstalledState:
    """Installed build of the target package; ``None`` means not installed."""

    build_number: int | None = None

    @property
    def installed(self) -> bool:
        return self.build_number is not None

    def is_current(self, manifest: Manifest) -> bool:
        """True when the installed build is at least the manifest build."""
        return self.build_number is not None and self.build_number >= manifest.build_number


# ------------------------------------------------------------------
# Download outcome
# ------------------------------------------------------------------


class FailureReason(Enum):
    """Why an artifact fetch failed."""

    TRANSPORT = "transport"
    HTTP_STATUS = "http_status"
    TOO_MANY_REDIRECTS = "too_many_redirects"
    EMPTY_BODY = "empty_body"
    CHECKSUM_MISMATCH = "checksum_mismatch"
    IO = "io"


@dataclass(frozen=True)
class DownloadSuccess:
    path: Path
    byte_length: int


@dataclass(frozen=True)
class DownloadFailure:
    reason: FailureReason
    detail: str = ""


DownloadOutcome = DownloadSuccess | DownloadFailure


@dataclass(frozen=True)
class DownloadProgress:
    bytes_downloaded: int
    total_bytes: int | None = None
    percent: int | None = None


# ------------------------------------------------------------------
# Install
# ------------------------------------------------------------------


class InstallStrategy(Enum):
    """How an artifact was handed to the platform installer."""

    PRIVILEGED = "privileged"
    INTERACTIVE = "interactive"


class InstallResultStatus(Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class InstallResult:
    """Out-of-band completion report for a privileged install session."""

    status: InstallResultStatus
    package: str
    message: str = ""
    session_id: str = ""


# ------------------------------------------------------------------
# Orchestrator status
# ------------------------------------------------------------------


class OrchestratorState(Enum):
    """States of one update run."""

    IDLE = "idle"
    WAITING_FOR_CONNECTIVITY = "waiting_for_connectivity"
    CHECKING_VERSION = "checking_version"
    UP_TO_DATE = "up_to_date"
    DOWNLOADING = "downloading"
    INSTALLING = "installing"
    CLEANUP = "cleanup"
    RETRY_SCHEDULED = "retry_scheduled"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {OrchestratorState.UP_TO_DATE, OrchestratorState.CLEANUP, OrchestratorState.CANCELLED}
)


@dataclass(frozen=True)
class StatusEvent:
    """Status notification published on every transition and progress step."""

    phase: OrchestratorState
    message: str
    percent: int | None = None
    bytes_downloaded: int | None = None
    total_bytes: int | None = None
    error_kind: str | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "message": self.message,
            "percent": self.percent,
            "bytes_downloaded": self.bytes_downloaded,
            "total_bytes": self.total_bytes,
            "error_kind": self.error_kind,
            "timestamp": self.timestamp,
        }
