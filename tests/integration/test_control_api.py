import httpx
import pytest

from localserve.server.api import create_app


@pytest.fixture
async def api(manager):
    app = create_app(manager)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest.mark.asyncio
async def test_health(api):
    resp = await api.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["servers"] == 0


@pytest.mark.asyncio
async def test_server_lifecycle(api, static_root):
    resp = await api.post("/v1/servers", json={"staticDir": str(static_root), "directoryListing": True})
    assert resp.status_code == 201
    info = resp.json()
    assert set(info) == {"id", "url", "port", "running", "staticDir", "directoryListing", "loggingEnabled"}
    assert info["running"] is True
    assert info["directoryListing"] is True

    async with httpx.AsyncClient(trust_env=False) as client:
        served = await client.get(f"{info['url']}/hello.txt")
    assert served.text == "hello world"

    listed = (await api.get("/v1/servers")).json()
    assert [s["id"] for s in listed] == [info["id"]]
    assert (await api.get(f"/v1/servers/{info['id']}")).json() == info

    resp = await api.delete(f"/v1/servers/{info['id']}")
    assert resp.status_code == 204
    assert (await api.get("/v1/servers")).json() == []


@pytest.mark.asyncio
async def test_unknown_server_is_structured_404(api):
    resp = await api.delete("/v1/servers/does-not-exist")
    assert resp.status_code == 404
    body = resp.json()
    assert body["code"] == "SERVER_001"
    assert body["details"] == {"server_id": "does-not-exist"}

    resp = await api.get("/v1/servers/does-not-exist")
    assert resp.json()["code"] == "SERVER_001"


@pytest.mark.asyncio
async def test_start_errors(api, tmp_path):
    resp = await api.post("/v1/servers", json={"staticDir": str(tmp_path / "missing")})
    assert resp.status_code == 404
    assert resp.json()["code"] == "FS_001"

    resp = await api.post("/v1/servers", json={"staticDir": str(tmp_path), "port": 99999})
    assert resp.status_code == 422

    assert (await api.get("/v1/servers")).json() == []


@pytest.mark.asyncio
async def test_port_conflict_is_409(api, static_root):
    first = (await api.post("/v1/servers", json={"staticDir": str(static_root)})).json()
    resp = await api.post("/v1/servers", json={"staticDir": str(static_root), "port": first["port"]})
    assert resp.status_code == 409
    assert resp.json()["code"] == "PORT_001"


@pytest.mark.asyncio
async def test_stop_all(api, static_root):
    for _ in range(3):
        assert (await api.post("/v1/servers", json={"staticDir": str(static_root)})).status_code == 201

    resp = await api.delete("/v1/servers")
    assert resp.status_code == 200
    assert resp.json() == {"stopped": 3, "failures": {}}
    assert (await api.get("/v1/servers")).json() == []


@pytest.mark.asyncio
async def test_port_availability(api, static_root):
    info = (await api.post("/v1/servers", json={"staticDir": str(static_root)})).json()

    resp = await api.get(f"/v1/ports/{info['port']}/available")
    assert resp.json() == {"port": info["port"], "host": "127.0.0.1", "available": False}

    await api.delete(f"/v1/servers/{info['id']}")
    resp = await api.get(f"/v1/ports/{info['port']}/available", params={"host": "127.0.0.1"})
    assert resp.json()["available"] is True


@pytest.mark.asyncio
async def test_create_test_directory(api, tmp_path):
    target = tmp_path / "demo"
    resp = await api.post("/v1/test-directories", json={"path": str(target)})
    assert resp.status_code == 201
    assert resp.json() == {"message": f"Test directory created successfully at '{target}'"}
    assert (target / "index.html").is_file()

    resp = await api.post("/v1/test-directories", json={"path": str(target)})
    assert resp.status_code == 409
    assert resp.json()["code"] == "FS_003"


@pytest.mark.asyncio
async def test_cors_allows_local_origins_only(api):
    allowed = await api.options(
        "/v1/servers",
        headers={"Origin": "http://localhost:5173", "Access-Control-Request-Method": "POST"},
    )
    assert allowed.status_code == 200
    assert allowed.headers["access-control-allow-origin"] == "http://localhost:5173"

    denied = await api.options(
        "/v1/servers",
        headers={"Origin": "http://evil.test", "Access-Control-Request-Method": "POST"},
    )
    assert denied.status_code == 400
