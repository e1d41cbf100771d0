"""GitHub Gist snapshot backend.

The whole user dataset lives in one private gist, found by its fixed
description rather than by a stored id::

    description: "Drafty App Data (Auto-sync)"
    files:
      drafty-data.json: <Snapshot JSON>

Routes used
-----------
GET   /gists          – list the token owner's gists (discovery)
POST  /gists          – create the snapshot gist
PATCH /gists/{id}     – overwrite the snapshot file
GET   /gists/{id}     – read the snapshot file
GET   /user           – cheap authenticated call used to check a token

Callers authenticate with ``Authorization: Bearer <token>``.  Any non-2xx
answer raises :class:`~drafty.errors.RemoteError`; transport failures and
timeouts raise :class:`~drafty.errors.RemoteUnavailable`.  Nothing is
retried here.

Environment variables (all optional; direct kwargs take precedence):
    DRAFTY_GIST_API_URL  – API base URL (default: https://api.github.com)
    DRAFTY_GIST_TIMEOUT  – request timeout in seconds (default: 10)
"""

from __future__ import annotations

import logging
import os
from typing import Any

import httpx

from drafty.errors import RemoteError, RemoteUnavailable
from drafty.models import Snapshot

logger = logging.getLogger(__name__)

GIST_DESCRIPTION = "Drafty App Data (Auto-sync)"
GIST_FILENAME = "drafty-data.json"
DEFAULT_API_URL = "https://api.github.com"

_PAGE_SIZE = 100


def _headers(token: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {token}",
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
    }


class GistClient:
    """Async client for the single snapshot gist of one token owner."""

    def __init__(
        self,
        token: str,
        *,
        api_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = (api_url or os.getenv("DRAFTY_GIST_API_URL", DEFAULT_API_URL)).rstrip("/")
        if timeout is None:
            timeout = float(os.getenv("DRAFTY_GIST_TIMEOUT", "10"))
        self._token = token
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=_headers(token),
            timeout=timeout,
            transport=transport,
        )
        # None until discovered or created
        self._remote_id: str | None = None

    @property
    def remote_id(self) -> str | None:
        return self._remote_id

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            raise RemoteUnavailable(f"{method} {url} failed: {exc}") from exc
        if not response.is_success:
            raise RemoteError(response.status_code, response.reason_phrase)
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise RemoteError(response.status_code, "response body is not JSON") from exc

    @staticmethod
    def _files_payload(snapshot: Snapshot) -> dict[str, Any]:
        return {GIST_FILENAME: {"content": snapshot.to_json()}}

    # ------------------------------------------------------------------
    # Resolve
    # ------------------------------------------------------------------

    async def discover(self) -> str | None:
        """Find the snapshot gist by description; the first match wins.

        A found id is cached for the lifetime of the client.  An absent
        result is not, so a gist created meanwhile by another device is
        picked up by the next call.
        """
        if self._remote_id is not None:
            return self._remote_id

        url: str | None = "/gists"
        params: dict[str, Any] | None = {"per_page": _PAGE_SIZE}
        found: str | None = None
        while url and found is None:
            response = await self._request("GET", url, params=params)
            gists = self._json(response)
            if not isinstance(gists, list):
                raise RemoteError(response.status_code, "expected a list of gists")
            for gist in gists:
                if isinstance(gist, dict) and gist.get("description") == GIST_DESCRIPTION:
                    found = str(gist["id"])
                    break
            # the "next" link already carries the query string
            url = response.links.get("next", {}).get("url")
            params = None

        logger.debug("Snapshot gist %s", f"found: {found}" if found else "not found")
        self._remote_id = found
        return found

    async def create(self, snapshot: Snapshot) -> str:
        """Create a private gist holding *snapshot* and remember its id."""
        response = await self._request(
            "POST",
            "/gists",
            json={"description": GIST_DESCRIPTION, "public": False, "files": self._files_payload(snapshot)},
        )
        data = self._json(response)
        if not isinstance(data, dict) or "id" not in data:
            raise RemoteError(response.status_code, "created gist has no id")
        self._remote_id = str(data["id"])
        logger.info("Created snapshot gist %s", self._remote_id)
        return self._remote_id

    # ------------------------------------------------------------------
    # Read / write
    # ------------------------------------------------------------------

    async def update(self, remote_id: str, snapshot: Snapshot) -> None:
        """Overwrite the snapshot file; the previous content is replaced wholesale."""
        await self._request("PATCH", f"/gists/{remote_id}", json={"files": self._files_payload(snapshot)})
        logger.info("Updated snapshot gist %s", remote_id)

    async def fetch(self, remote_id: str) -> Snapshot | None:
        """Read the snapshot file, or ``None`` when it is missing or empty.

        Raises :class:`~drafty.errors.InvalidEntity` when the file holds
        something other than a snapshot document.
        """
        response = await self._request("GET", f"/gists/{remote_id}")
        data = self._json(response)
        files = data.get("files") if isinstance(data, dict) else None
        entry = (files or {}).get(GIST_FILENAME)
        if not isinstance(entry, dict):
            return None

        content = entry.get("content")
        if entry.get("truncated") and entry.get("raw_url"):
            # GitHub inlines at most ~1 MB per file
            raw = await self._request("GET", entry["raw_url"])
            content = raw.text
        if not content:
            return None
        return Snapshot.from_json(content)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def test_token(self, token: str | None = None) -> bool:
        """Return ``True`` iff *token* (default: this client's) authenticates."""
        headers = _headers(token) if token is not None else None
        try:
            response = await self._client.get("/user", headers=headers)
        except httpx.TransportError as exc:
            logger.warning("Token check could not reach %s: %s", self._base_url, exc)
            return False
        except UnicodeEncodeError:
            # not representable in an HTTP header, so never a valid token
            return False
        return response.is_success

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "GistClient":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()
