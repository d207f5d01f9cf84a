"""Unit tests for store.py - Resource store client."""

from contextlib import asynccontextmanager

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from config import StoreConfig
from store import (
    AlreadyExistsError,
    ConflictError,
    GroupVersionResource,
    NotFoundError,
    ResourceStore,
    StoreError,
)

GVR = GroupVersionResource("etcd.tkestack.io", "v1alpha1", "etcdclusters")


def _status(code: int, reason: str, message: str) -> web.Response:
    return web.json_response(
        {"kind": "Status", "status": "Failure", "reason": reason, "message": message},
        status=code,
    )


class FakeAPIServer:
    """In-memory stand-in for the custom resource endpoints."""

    def __init__(self):
        self.objects = {}
        self.requests = []
        self.version = 0

    def app(self) -> web.Application:
        app = web.Application(middlewares=[self._record])
        base = "/apis/{group}/{version}/namespaces/{ns}/{plural}"
        app.router.add_get(base, self.list)
        app.router.add_post(base, self.create)
        app.router.add_get(base + "/{name}", self.get)
        app.router.add_put(base + "/{name}", self.replace)
        app.router.add_delete(base + "/{name}", self.delete)
        app.router.add_get("/broken", self.broken)
        return app

    @web.middleware
    async def _record(self, request, handler):
        self.requests.append(request)
        return await handler(request)

    def _key(self, request, name=None):
        return (request.match_info["ns"], name or request.match_info["name"])

    async def list(self, request):
        ns = request.match_info["ns"]
        items = [obj for (n, _), obj in self.objects.items() if n == ns]
        return web.json_response({"kind": "List", "items": items})

    async def get(self, request):
        obj = self.objects.get(self._key(request))
        if obj is None:
            return _status(404, "NotFound", "not found")
        return web.json_response(obj)

    async def create(self, request):
        body = await request.json()
        key = self._key(request, body["metadata"]["name"])
        if key in self.objects:
            return _status(409, "AlreadyExists", "already exists")
        self.version += 1
        body["metadata"]["resourceVersion"] = str(self.version)
        self.objects[key] = body
        return web.json_response(body, status=201)

    async def replace(self, request):
        body = await request.json()
        key = self._key(request)
        current = self.objects.get(key)
        if current is None:
            return _status(404, "NotFound", "not found")
        if body["metadata"].get("resourceVersion") != current["metadata"]["resourceVersion"]:
            return _status(409, "Conflict", "the object has been modified")
        self.version += 1
        body["metadata"]["resourceVersion"] = str(self.version)
        self.objects[key] = body
        return web.json_response(body)

    async def delete(self, request):
        obj = self.objects.pop(self._key(request), None)
        if obj is None:
            return _status(404, "NotFound", "not found")
        return web.json_response({"kind": "Status", "status": "Success"})

    async def broken(self, request):
        return web.Response(status=500, text="internal error")


@asynccontextmanager
async def running_store(token="test-token"):
    fake = FakeAPIServer()
    server = TestServer(fake.app())
    await server.start_server()
    store = ResourceStore(f"http://{server.host}:{server.port}", token=token)
    await store.connect()
    try:
        yield store, fake
    finally:
        await store.close()
        await server.close()


def etcd_cluster(name="demo", size=3):
    return {
        "apiVersion": GVR.api_version,
        "kind": "EtcdCluster",
        "metadata": {"name": name, "namespace": "kstone"},
        "spec": {"size": size},
    }


class TestGroupVersionResource:
    """Tests for GroupVersionResource paths."""

    def test_api_version(self):
        assert GVR.api_version == "etcd.tkestack.io/v1alpha1"

    def test_paths(self):
        assert GVR.path("kstone") == (
            "/apis/etcd.tkestack.io/v1alpha1/namespaces/kstone/etcdclusters"
        )
        assert GVR.path("kstone", "demo").endswith("/etcdclusters/demo")


class TestResourceStoreSetup:
    """Tests for construction and session handling."""

    def test_from_config(self):
        cfg = StoreConfig(
            api_url="https://api.example.com/", token="abc", verify_ssl=False, timeout=3
        )
        store = ResourceStore.from_config(cfg)

        assert store.base_url == "https://api.example.com"
        assert store.token == "abc"
        assert store.verify_ssl is False
        assert store.timeout == 3

    def test_headers(self):
        assert ResourceStore("http://x", token="abc")._get_headers() == {
            "Accept": "application/json",
            "Authorization": "Bearer abc",
        }
        assert "Authorization" not in ResourceStore("http://x")._get_headers()

    @pytest.mark.asyncio
    async def test_not_connected(self):
        store = ResourceStore("http://x")
        with pytest.raises(RuntimeError, match="not connected"):
            await store.get(GVR, "kstone", "demo")

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        store = ResourceStore("http://x")
        await store.connect()
        await store.close()
        await store.close()
        assert store.session is None


@pytest.mark.asyncio
class TestResourceStoreCRUD:
    """Tests for CRUD calls against a fake API server."""

    async def test_create_and_get(self):
        async with running_store() as (store, fake):
            created = await store.create(GVR, "kstone", etcd_cluster())
            fetched = await store.get(GVR, "kstone", "demo")

        assert created["metadata"]["resourceVersion"] == "1"
        assert fetched["spec"] == {"size": 3}
        assert fake.requests[0].headers["Authorization"] == "Bearer test-token"

    async def test_get_missing_raises_not_found(self):
        async with running_store() as (store, _):
            with pytest.raises(NotFoundError) as exc_info:
                await store.get(GVR, "kstone", "missing")

        assert exc_info.value.status == 404
        assert exc_info.value.reason == "NotFound"

    async def test_create_twice_raises_already_exists(self):
        async with running_store() as (store, _):
            await store.create(GVR, "kstone", etcd_cluster())
            with pytest.raises(AlreadyExistsError):
                await store.create(GVR, "kstone", etcd_cluster())

    async def test_update(self):
        async with running_store() as (store, _):
            created = await store.create(GVR, "kstone", etcd_cluster())
            created["spec"]["size"] = 5
            updated = await store.update(GVR, "kstone", created)

        assert updated["spec"]["size"] == 5
        assert updated["metadata"]["resourceVersion"] == "2"

    async def test_stale_update_raises_conflict(self):
        async with running_store() as (store, _):
            created = await store.create(GVR, "kstone", etcd_cluster())
            await store.update(GVR, "kstone", dict(created))
            with pytest.raises(ConflictError) as exc_info:
                await store.update(GVR, "kstone", created)

        assert not isinstance(exc_info.value, AlreadyExistsError)
        assert exc_info.value.status == 409

    async def test_update_requires_name(self):
        async with running_store() as (store, _):
            with pytest.raises(ValueError):
                await store.update(GVR, "kstone", {"metadata": {}, "spec": {}})

    async def test_list_scoped_to_namespace(self):
        async with running_store() as (store, _):
            await store.create(GVR, "kstone", etcd_cluster("a"))
            await store.create(GVR, "kstone", etcd_cluster("b"))
            await store.create(GVR, "other", etcd_cluster("c"))
            items = await store.list(GVR, "kstone")

        assert sorted(i["metadata"]["name"] for i in items) == ["a", "b"]

    async def test_delete(self):
        async with running_store() as (store, _):
            await store.create(GVR, "kstone", etcd_cluster())
            await store.delete(GVR, "kstone", "demo")
            with pytest.raises(NotFoundError):
                await store.delete(GVR, "kstone", "demo")

    async def test_server_error(self):
        async with running_store() as (store, _):
            with pytest.raises(StoreError) as exc_info:
                await store._request("GET", "/broken")

        assert exc_info.value.status == 500
        assert "internal error" in str(exc_info.value)
        assert not isinstance(exc_info.value, NotFoundError)

    async def test_context_manager(self):
        fake = FakeAPIServer()
        server = TestServer(fake.app())
        await server.start_server()
        try:
            async with ResourceStore(f"http://{server.host}:{server.port}") as store:
                assert await store.list(GVR, "kstone") == []
            assert store.session is None
        finally:
            await server.close()
