"""
Tests cho registry clients.

Test coverage:
- HttpRegistryClient: đường dẫn REST, header x-api-key / If-Match, unwrap {"data": ...}
- Ánh xạ lỗi: 404, 409/412, 5xx có marker xung đột, 5xx, lỗi kết nối, 4xx khác
- InMemoryRegistryClient: shallow merge, kiểm tra version, unavailable
- create_registry_client factory
"""

import json

import httpx
import pytest

from relayhub.config.settings import RegistrySettings
from relayhub.core.exceptions import (
    RegistryConflictError,
    RegistryError,
    RegistryNotFoundError,
    RegistryUnavailableError,
)
from relayhub.services.registry_client import (
    HttpRegistryClient,
    InMemoryRegistryClient,
    create_registry_client,
)

DOC = {"id": "owner-1_dev_1", "ownerId": "owner-1", "deviceId": "dev", "siteName": "Tank"}


def _client(handler) -> HttpRegistryClient:
    return HttpRegistryClient(
        "https://registry.example.com/api/",
        api_key="secret",
        transport=httpx.MockTransport(handler),
    )


class TestHttpRegistryClient:
    @pytest.mark.asyncio
    async def test_list_by_owner(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": [DOC], "success": True})

        client = _client(handler)
        docs = await client.list_by_owner("owner-1")
        await client.close()

        assert docs == [DOC]
        assert seen[0].method == "GET"
        assert seen[0].url.path == "/api/devices/owner-1"
        assert seen[0].headers["x-api-key"] == "secret"

    @pytest.mark.asyncio
    async def test_list_plain_array(self):
        client = _client(lambda request: httpx.Response(200, json=[DOC, "junk"]))

        assert await client.list_by_owner("owner-1") == [DOC]

    @pytest.mark.asyncio
    async def test_get_filters_owner_list(self):
        client = _client(lambda request: httpx.Response(200, json=[DOC]))

        assert (await client.get("owner-1", DOC["id"]))["siteName"] == "Tank"
        with pytest.raises(RegistryNotFoundError):
            await client.get("owner-1", "missing")

    @pytest.mark.asyncio
    async def test_create_posts_document(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            body = json.loads(request.content)
            return httpx.Response(201, json={**body, "updatedAt": "v1"})

        client = _client(handler)
        stored = await client.create(DOC)

        assert seen[0].method == "POST"
        assert seen[0].url.path == "/api/devices"
        assert stored["updatedAt"] == "v1"

    @pytest.mark.asyncio
    async def test_update_sends_if_match(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={**DOC, "status": "Connected", "updatedAt": "v2"})

        client = _client(handler)
        stored = await client.update(DOC["id"], {"status": "Connected"}, expected_updated_at="v1")
        await client.update(DOC["id"], {"status": "Connected"})

        assert seen[0].method == "PUT"
        assert seen[0].url.path == f"/api/devices/{DOC['id']}"
        assert seen[0].headers["if-match"] == "v1"
        assert json.loads(seen[0].content) == {"status": "Connected"}
        assert "if-match" not in seen[1].headers
        assert stored["updatedAt"] == "v2"

    @pytest.mark.asyncio
    async def test_delete(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        client = _client(handler)
        await client.delete(DOC["id"])

        assert seen[0].method == "DELETE"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status_code, body, expected",
        [
            (404, "not found", RegistryNotFoundError),
            (409, "conflict", RegistryConflictError),
            (412, "precondition failed", RegistryConflictError),
            (500, "ConditionalCheckFailedException: version", RegistryConflictError),
            (503, "maintenance", RegistryUnavailableError),
            (400, "bad request", RegistryError),
        ],
    )
    async def test_error_mapping(self, status_code, body, expected):
        client = _client(lambda request: httpx.Response(status_code, text=body))

        with pytest.raises(expected) as exc_info:
            await client.update(DOC["id"], {"siteName": "x"})

        assert type(exc_info.value) is expected
        assert exc_info.value.status_code == status_code

    @pytest.mark.asyncio
    async def test_connection_error_is_unavailable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = _client(handler)

        with pytest.raises(RegistryUnavailableError):
            await client.list_by_owner("owner-1")

    @pytest.mark.asyncio
    async def test_timeout_is_unavailable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        client = _client(handler)

        with pytest.raises(RegistryUnavailableError):
            await client.create(DOC)


class TestInMemoryRegistryClient:
    @pytest.mark.asyncio
    async def test_shallow_merge_and_version_stamp(self):
        registry = InMemoryRegistryClient()
        created = await registry.create(DOC)

        updated = await registry.update(
            DOC["id"], {"status": "Connected"}, expected_updated_at=created["updatedAt"]
        )

        assert updated["siteName"] == "Tank"
        assert updated["status"] == "Connected"
        assert updated["updatedAt"] != created["updatedAt"]
        assert registry.update_count(DOC["id"]) == 1

    @pytest.mark.asyncio
    async def test_stale_version_conflicts(self):
        registry = InMemoryRegistryClient()
        created = await registry.create(DOC)
        await registry.external_update(DOC["id"], {"siteName": "Other"})

        with pytest.raises(RegistryConflictError):
            await registry.update(DOC["id"], {"siteName": "Mine"}, created["updatedAt"])

    @pytest.mark.asyncio
    async def test_version_check_disabled(self):
        registry = InMemoryRegistryClient(check_versions=False)
        await registry.create(DOC)

        stored = await registry.update(DOC["id"], {"siteName": "Mine"}, "stale")

        assert stored["siteName"] == "Mine"

    @pytest.mark.asyncio
    async def test_duplicate_id_and_missing(self):
        registry = InMemoryRegistryClient()
        await registry.create(DOC)

        with pytest.raises(RegistryConflictError):
            await registry.create(DOC)
        with pytest.raises(RegistryNotFoundError):
            await registry.update("missing", {})
        with pytest.raises(RegistryNotFoundError):
            await registry.delete("missing")

    @pytest.mark.asyncio
    async def test_unavailable(self):
        registry = InMemoryRegistryClient()
        registry.available = False

        with pytest.raises(RegistryUnavailableError):
            await registry.list_by_owner("owner-1")

    @pytest.mark.asyncio
    async def test_returned_documents_are_copies(self):
        registry = InMemoryRegistryClient()
        stored = await registry.create(DOC)
        stored["siteName"] = "mutated"

        docs = await registry.list_by_owner("owner-1")

        assert docs[0]["siteName"] == "Tank"


class TestFactory:
    def test_empty_url_uses_in_memory(self):
        assert isinstance(create_registry_client(RegistrySettings(url="")), InMemoryRegistryClient)

    def test_url_uses_http(self):
        client = create_registry_client(RegistrySettings(url="https://registry.example.com"))

        assert isinstance(client, HttpRegistryClient)
        assert client.base_url == "https://registry.example.com"
