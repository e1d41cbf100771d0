"""Shared fixtures: a file-backed LocalStore and an in-process fake Gist host.

The fake host implements just enough of the GitHub Gist REST API for
:class:`drafty.sync.gist.GistClient`, served through ``httpx.MockTransport``
so no test touches the network.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import httpx
import pytest

from drafty.store import LocalStore
from drafty.sync.gist import GistClient

GOOD_TOKEN = "ghp_good"
API_URL = "https://api.github.com"


class FakeGistHost:
    """Minimal Gist API: list, create, patch, and read gists for one token."""

    def __init__(self, token: str = GOOD_TOKEN) -> None:
        self.token = token
        self.gists: dict[str, dict[str, Any]] = {}
        self.requests: list[tuple[str, str]] = []
        #: When set, every gist request answers with this status
        self.fail_with: int | None = None
        #: When set, every request raises a connection error
        self.offline = False
        self._next_id = 1

    # ------------------------------------------------------------------ setup

    def add_gist(self, description: str, files: dict[str, Any] | None = None) -> str:
        gist_id = f"gist{self._next_id}"
        self._next_id += 1
        self.gists[gist_id] = {"id": gist_id, "description": description, "files": dict(files or {})}
        return gist_id

    def file_content(self, gist_id: str, filename: str) -> str:
        return self.gists[gist_id]["files"][filename]["content"]

    def count(self, method: str, path: str | None = None) -> int:
        return sum(1 for m, p in self.requests if m == method and (path is None or p == path))

    # ---------------------------------------------------------------- routing

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.requests.append((request.method, path))
        if self.offline:
            raise httpx.ConnectError("connection refused", request=request)
        if request.headers.get("Authorization") != f"Bearer {self.token}":
            return httpx.Response(401, json={"message": "Bad credentials"})
        if path == "/user":
            return httpx.Response(200, json={"login": "octocat"})
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, json={"message": "failure"})

        if path == "/gists" and request.method == "GET":
            listing = [{"id": g["id"], "description": g["description"]} for g in self.gists.values()]
            return httpx.Response(200, json=listing)
        if path == "/gists" and request.method == "POST":
            body = json.loads(request.content)
            gist_id = self.add_gist(body["description"], body["files"])
            self.gists[gist_id]["public"] = body["public"]
            return httpx.Response(201, json={"id": gist_id})

        gist_id = path.removeprefix("/gists/")
        gist = self.gists.get(gist_id)
        if gist is None:
            return httpx.Response(404, json={"message": "Not Found"})
        if request.method == "PATCH":
            body = json.loads(request.content)
            gist["files"].update(body["files"])
            return httpx.Response(200, json=gist)
        return httpx.Response(200, json=gist)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def client(self, token: str = GOOD_TOKEN) -> GistClient:
        return GistClient(token, api_url=API_URL, transport=self.transport())


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def store(tmp_path: Path):
    with LocalStore(tmp_path / "drafty.duckdb") as s:
        yield s


@pytest.fixture()
def host() -> FakeGistHost:
    return FakeGistHost()
