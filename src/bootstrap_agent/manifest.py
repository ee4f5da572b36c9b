"""Version resolver: fetch and parse the remote manifest.

Expected payload::

    {"version_code": 5, "apk_url": "https://.../app.apk", "sha256": "..."}

A single bounded GET.  Every failure (transport error, non-2xx, bad JSON,
invalid fields) returns None; retrying is the orchestrator's job.
"""

from __future__ import annotations

import httpx

from bootstrap_agent.logging import get_logger
from bootstrap_agent.models import Manifest

log = get_logger("bootstrap_agent.manifest")


class ManifestResolver:
    """Fetches the latest-build manifest."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport

    async def fetch_manifest(self, url: str, timeout: float) -> Manifest | None:
        """GET *url* and parse it into a ``Manifest``, or None on any failure."""
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                resp = await client.get(
                    url,
                    headers={
                        "Accept": "application/json",
                        "Cache-Control": "no-cache",
                    },
                )
        except httpx.HTTPError as exc:
            log.warning("manifest_fetch_failed", url=url, error=str(exc))
            return None

        if not resp.is_success:
            log.warning("manifest_http_error", url=url, status=resp.status_code)
            return None

        try:
            data = resp.json()
        except ValueError:
            log.warning("manifest_invalid_json", url=url, body=resp.text[:200])
            return None

        manifest = Manifest.from_dict(data)
        if manifest is None:
            log.warning("manifest_invalid_content", url=url)
            return None

        log.info(
            "manifest_fetched",
            build=manifest.build_number,
            artifact_url=manifest.artifact_url,
            has_checksum=manifest.checksum is not None,
        )
        return manifest
