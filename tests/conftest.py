"""Shared fixtures: an in-memory content hub behind ``httpx.MockTransport``."""

from __future__ import annotations

import itertools
import json
from typing import Any, Dict, List, Optional, Set

import httpx
import pytest

from wchconnector.core.config import ConnectorSettings, Credentials

BASE_URL = "https://hub.example/api"
TENANT_URL = "https://tenant.example/api/t1"


class FakeHub:
    """Minimal stand-in for the login, search and categories endpoints.

    Every request is recorded in ``calls`` as ``(method, path, params, body)``
    with the path relative to the API root.
    """

    def __init__(self, tenant_url: Optional[str] = TENANT_URL):
        self.tenant_url = tenant_url
        self.calls: List[tuple] = []
        self.categories: Dict[str, Dict[str, Any]] = {}
        self.documents: Dict[str, List[Dict[str, Any]]] = {}
        self.fail_names: Set[str] = set()
        self.fail_ids: Set[str] = set()
        self.logins = 0
        self.valid_from = 0
        self._ids = itertools.count(1)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    # -- state helpers ------------------------------------------------------

    def add_category(self, name: str, parent: Optional[str] = None, category_id: Optional[str] = None) -> str:
        category_id = category_id or f"c{next(self._ids)}"
        self.categories[category_id] = {"id": category_id, "name": name, "parent": parent}
        return category_id

    def name_path(self, category_id: str) -> List[str]:
        path = []
        current: Optional[str] = category_id
        while current is not None:
            path.insert(0, self.categories[current]["name"])
            current = self.categories[current]["parent"]
        return path

    def descendants(self, category_id: str, recurse: bool = True) -> List[Dict[str, Any]]:
        items = []
        for child in [c for c in self.categories.values() if c["parent"] == category_id]:
            items.append({**child, "namePath": self.name_path(child["id"])})
            if recurse:
                items.extend(self.descendants(child["id"]))
        return items

    def calls_to(self, method: str, prefix: str = "/authoring/v1/categories") -> List[tuple]:
        return [call for call in self.calls if call[0] == method and call[1].startswith(prefix)]

    def expire_sessions(self) -> None:
        """Reject every session cookie handed out so far."""
        self.valid_from = self.logins + 1

    @staticmethod
    def _session_of(request: httpx.Request) -> int:
        for cookie in request.headers.get("cookie", "").split(";"):
            key, _, value = cookie.strip().partition("=")
            if key == "session" and value.isdigit():
                return int(value)
        return 0

    # -- request handling ---------------------------------------------------

    @staticmethod
    def _relative_path(url: httpx.URL) -> str:
        path = url.path
        for marker in ("/authoring/", "/delivery/", "/login/"):
            index = path.find(marker)
            if index >= 0:
                return path[index:]
        return path

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = self._relative_path(request.url)
        params = request.url.params
        body = json.loads(request.content) if request.content else None
        self.calls.append((request.method, path, params, body))

        if path == "/login/v1/basicauth":
            self.logins += 1
            headers = {"set-cookie": f"session={self.logins}; Path=/"}
            if self.tenant_url:
                headers["x-ibm-dx-tenant-base-url"] = self.tenant_url
            return httpx.Response(200, headers=headers, json={})
        if self._session_of(request) < self.valid_from:
            return httpx.Response(401, json={"message": "session expired"})
        if path == "/authoring/v1/search":
            return self._search(params)
        if path.startswith("/authoring/v1/categories"):
            return self._categories(request.method, path, params, body)
        if path.startswith(("/authoring/v1/assets", "/authoring/v1/types", "/authoring/v1/content")):
            return self._documents(request.method, path, body)
        return httpx.Response(404, json={"message": f"no route for {path}"})

    def _documents(self, method: str, path: str, body: Any) -> httpx.Response:
        item_id = path.rstrip("/").rsplit("/", 1)[-1]
        if item_id in self.fail_ids:
            return httpx.Response(500, json={"message": f"cannot change {item_id}"})
        if method == "DELETE":
            return httpx.Response(204)
        if method == "POST":
            return httpx.Response(201, json={"id": f"new-{next(self._ids)}", **body})
        return httpx.Response(200, json=body)

    def _search(self, params: httpx.QueryParams) -> httpx.Response:
        query = params.get("q", "*:*")
        rows = int(params.get("rows", 10))
        if query == "classification:taxonomy":
            documents = [
                {"id": f"taxonomy:{c['id']}", "name": c["name"]}
                for c in self.categories.values()
                if c["parent"] is None
            ]
        else:
            classification = query.split(":", 1)[1] if query.startswith("classification:") else "*"
            documents = list(self.documents.get(classification, []))
        return httpx.Response(200, json={"numFound": len(documents), "documents": documents[:rows]})

    def _categories(self, method: str, path: str, params: httpx.QueryParams, body: Any) -> httpx.Response:
        parts = path[len("/authoring/v1/categories"):].strip("/").split("/")
        category_id = parts[0] if parts[0] else None

        if method == "POST" and category_id is None:
            if body["name"] in self.fail_names:
                return httpx.Response(500, json={"message": "create failed"})
            parent = body.get("parent")
            if parent is not None and parent not in self.categories:
                return httpx.Response(400, json={"message": f"unknown parent {parent}"})
            new_id = self.add_category(body["name"], parent)
            return httpx.Response(201, json=self.categories[new_id])

        if category_id not in self.categories:
            return httpx.Response(404, json={"message": "not found"})

        if method == "GET" and parts[-1] == "children":
            items = self.descendants(category_id, params.get("recurse", "true") == "true")
            offset = int(params.get("offset", 0))
            limit = int(params.get("limit", 100))
            return httpx.Response(200, json={"items": items[offset:offset + limit]})
        if method == "PUT":
            if body["name"] in self.fail_names:
                return httpx.Response(500, json={"message": "update failed"})
            self.categories[category_id].update(name=body["name"], parent=body.get("parent"))
            return httpx.Response(200, json=self.categories[category_id])
        if method == "DELETE":
            for item in self.descendants(category_id):
                self.categories.pop(item["id"], None)
            del self.categories[category_id]
            return httpx.Response(204)
        return httpx.Response(405)


@pytest.fixture
def hub() -> FakeHub:
    """Empty fake content hub."""
    return FakeHub()


@pytest.fixture
def authoring_settings() -> ConnectorSettings:
    """Settings of an authenticated authoring connector."""
    return ConnectorSettings(
        endpoint="authoring",
        base_url=BASE_URL,
        tenant_id="t1",
        credentials=Credentials("editor@example.com", "secret"),
        max_sockets=10,
    )
