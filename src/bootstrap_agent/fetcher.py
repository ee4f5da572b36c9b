"""Artifact fetcher: stream the build to a private file and verify it.

Guarantees on return:

- ``DownloadSuccess``: ``destination`` exists, is non-empty, and (when a
  digest was supplied) matches it.
- ``DownloadFailure``: neither ``destination`` nor its ``.part`` file
  exists.

Bytes are written to ``<destination>.part`` and renamed into place only
after verification, so an interrupted run never leaves a file that looks
complete.  Every fetch starts by deleting whatever a previous run left.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import os
from collections.abc import Callable
from pathlib import Path

import httpx

from bootstrap_agent.constants import (
    DOWNLOAD_CHUNK_SIZE,
    HASH_CHUNK_SIZE,
    MAX_REDIRECTS,
    PARTIAL_SUFFIX,
    UNKNOWN_TOTAL_PROGRESS_STEP,
)
from bootstrap_agent.logging import get_logger
from bootstrap_agent.models import (
    DownloadFailure,
    DownloadOutcome,
    DownloadProgress,
    DownloadSuccess,
    FailureReason,
)

log = get_logger("bootstrap_agent.fetcher")

ProgressSink = Callable[[DownloadProgress], None]


def sha256_file(path: Path) -> str:
    """Return the lower-case hex SHA-256 digest of *path*."""
    digest = hashlib.sha256()
    with path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(HASH_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _content_length(resp: httpx.Response) -> int | None:
    # Decoded bytes no longer correspond to Content-Length
    if resp.headers.get("content-encoding", "identity").lower() != "identity":
        return None
    raw = resp.headers.get("content-length")
    if raw is None:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    return value if value > 0 else None


class ArtifactFetcher:
    """Downloads one artifact to a fixed destination path."""

    def __init__(
        self,
        destination: Path,
        timeout: float,
        *,
        max_redirects: int = MAX_REDIRECTS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._destination = Path(destination)
        self._timeout = timeout
        self._max_redirects = max_redirects
        self._transport = transport

    @property
    def destination(self) -> Path:
        return self._destination

    @property
    def partial_path(self) -> Path:
        return self._destination.with_name(self._destination.name + PARTIAL_SUFFIX)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def discard(self) -> None:
        """Remove the artifact and any partial download."""
        for path in (self.partial_path, self._destination):
            try:
                if path.exists():
                    path.unlink()
                    log.debug("artifact_deleted", path=str(path))
            except OSError as exc:
                log.warning("artifact_delete_failed", path=str(path), error=str(exc))

    async def fetch(
        self,
        url: str,
        expected_checksum: str | None = None,
        progress_sink: ProgressSink | None = None,
    ) -> DownloadOutcome:
        """Download *url* to ``destination`` and verify it."""
        self.discard()
        try:
            self._destination.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        except OSError as exc:
            return self._fail(FailureReason.IO, f"cannot create download dir: {exc}")

        log.info("download_started", url=url, destination=str(self._destination))
        try:
            result = await self._stream_to_partial(url, progress_sink)
        except asyncio.CancelledError:
            self.discard()
            raise
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            return self._fail(FailureReason.TRANSPORT, str(exc) or type(exc).__name__)
        except OSError as exc:
            return self._fail(FailureReason.IO, str(exc))
        except Exception as exc:
            log.exception("download_unexpected_error", url=url)
            return self._fail(FailureReason.TRANSPORT, f"unexpected error: {exc}")

        if isinstance(result, DownloadFailure):
            return self._fail(result.reason, result.detail)

        written, last_percent = result
        if written == 0:
            return self._fail(FailureReason.EMPTY_BODY, "server returned an empty body")

        try:
            if expected_checksum:
                actual = await asyncio.to_thread(sha256_file, self.partial_path)
                expected = expected_checksum.strip().lower()
                if not hmac.compare_digest(actual, expected):
                    log.error("checksum_mismatch", expected=expected, actual=actual)
                    return self._fail(
                        FailureReason.CHECKSUM_MISMATCH,
                        f"expected {expected}, got {actual}",
                    )
                log.info("checksum_verified", sha256=actual)
            os.replace(self.partial_path, self._destination)
        except asyncio.CancelledError:
            self.discard()
            raise
        except OSError as exc:
            return self._fail(FailureReason.IO, str(exc))

        if last_percent != 100:
            self._emit(progress_sink, DownloadProgress(written, written, 100))
        log.info("download_complete", path=str(self._destination), bytes=written)
        return DownloadSuccess(path=self._destination, byte_length=written)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fail(self, reason: FailureReason, detail: str) -> DownloadFailure:
        self.discard()
        log.warning("download_failed", reason=reason.value, detail=detail)
        return DownloadFailure(reason=reason, detail=detail)

    async def _stream_to_partial(
        self, url: str, progress_sink: ProgressSink | None
    ) -> tuple[int, int | None] | DownloadFailure:
        """Follow redirects by hand and write the final body to the partial file.

        Redirects are followed explicitly so that http -> https (and the
        reverse) hops are handled the same way as same-scheme ones.
        """
        current = httpx.URL(url)
        async with httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport,
            follow_redirects=False,
        ) as client:
            for hop in range(self._max_redirects + 1):
                async with client.stream(
                    "GET", current, headers={"Cache-Control": "no-cache"}
                ) as resp:
                    if resp.is_redirect:
                        location = resp.headers["location"]
                        current = current.join(location)
                        log.debug("download_redirect", hop=hop + 1, location=str(current))
                        continue
                    if not resp.is_success:
                        return DownloadFailure(
                            FailureReason.HTTP_STATUS, f"HTTP {resp.status_code} from {current}"
                        )
                    return await self._write_body(resp, progress_sink)

        return DownloadFailure(
            FailureReason.TOO_MANY_REDIRECTS,
            f"more than {self._max_redirects} redirects",
        )

    async def _write_body(
        self, resp: httpx.Response, progress_sink: ProgressSink | None
    ) -> tuple[int, int | None]:
        total = _content_length(resp)
        written = 0
        last_percent: int | None = None
        next_step = UNKNOWN_TOTAL_PROGRESS_STEP

        if total is not None:
            last_percent = 0
        self._emit(progress_sink, DownloadProgress(0, total, last_percent))

        with self.partial_path.open("wb") as fh:
            async for chunk in resp.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                fh.write(chunk)
                written += len(chunk)
                if total is not None:
                    percent = min(100, written * 100 // total)
                    if percent != last_percent:
                        last_percent = percent
                        self._emit(progress_sink, DownloadProgress(written, total, percent))
                elif written >= next_step:
                    next_step = (written // UNKNOWN_TOTAL_PROGRESS_STEP + 1) * (
                        UNKNOWN_TOTAL_PROGRESS_STEP
                    )
                    self._emit(progress_sink, DownloadProgress(written, None, None))

        return written, last_percent

    @staticmethod
    def _emit(sink: ProgressSink | None, progress: DownloadProgress) -> None:
        if sink is None:
            return
        try:
            sink(progress)
        except Exception as exc:
            log.debug("progress_sink_error", error=str(exc))
