"""
End-to-end behaviour of ServerManager against real listeners on 127.0.0.1.
"""
import asyncio
import contextlib
import logging
import os

import httpx
import pytest

from localserve.errors import DirectoryNotFoundError, PortInUseError, ServerNotFoundError
from localserve.server.ports import PortAllocator

LARGE_FILE_SIZE = 64 * 1024 * 1024


def free_port() -> int:
    allocation = PortAllocator().resolve(0, "127.0.0.1")
    allocation.sock.close()
    return allocation.port


async def raw_get(port: int, target: str) -> bytes:
    """Send a request line verbatim; HTTP clients would normalize '..' away."""
    reader, writer = await asyncio.open_connection("127.0.0.1", port)
    try:
        writer.write(f"GET {target} HTTP/1.1\r\nHost: 127.0.0.1\r\nConnection: close\r\n\r\n".encode())
        await writer.drain()
        return await asyncio.wait_for(reader.read(), timeout=5)
    finally:
        writer.close()
        with contextlib.suppress(ConnectionError):
            await writer.wait_closed()


# ----------------------------------------------------------------------------
# Start / list
# ----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_ephemeral_servers_get_distinct_ports(manager, static_root):
    first = await manager.start_server({"port": 0, "staticDir": str(static_root)})
    second = await manager.start_server({"staticDir": str(static_root)})

    assert first.port != second.port
    assert first.id != second.id
    assert first.running and second.running
    assert first.url == f"http://127.0.0.1:{first.port}"

    listed = {info.id: info for info in await manager.list_servers()}
    assert set(listed) == {first.id, second.id}
    assert await manager.get_server(first.id) == first


@pytest.mark.asyncio
async def test_explicit_port_conflict(manager, static_root):
    port = free_port()
    first = await manager.start_server({"port": port, "staticDir": str(static_root)})
    assert first.port == port

    with pytest.raises(PortInUseError):
        await manager.start_server({"port": port, "staticDir": str(static_root)})

    assert [info.id for info in await manager.list_servers()] == [first.id]


@pytest.mark.asyncio
async def test_concurrent_starts_on_same_port(manager, static_root):
    port = free_port()
    results = await asyncio.gather(
        manager.start_server({"port": port, "staticDir": str(static_root)}),
        manager.start_server({"port": port, "staticDir": str(static_root)}),
        return_exceptions=True,
    )
    winners = [r for r in results if not isinstance(r, BaseException)]
    losers = [r for r in results if isinstance(r, BaseException)]
    assert len(winners) == 1
    assert len(losers) == 1 and isinstance(losers[0], PortInUseError)
    assert len(await manager.list_servers()) == 1


@pytest.mark.asyncio
async def test_missing_directory_leaves_registry_unchanged(manager, static_root, tmp_path):
    existing = await manager.start_server({"staticDir": str(static_root)})

    with pytest.raises(DirectoryNotFoundError):
        await manager.start_server({"staticDir": str(tmp_path / "does-not-exist")})
    with pytest.raises(DirectoryNotFoundError):
        await manager.start_server({"staticDir": str(static_root / "hello.txt")})

    assert [info.id for info in await manager.list_servers()] == [existing.id]


@pytest.mark.asyncio
@pytest.mark.parametrize("ticks", [0, 1, 3, 10, 50])
async def test_cancelled_start_leaves_port_free(manager, static_root, ticks):
    port = free_port()
    task = asyncio.create_task(manager.start_server({"port": port, "staticDir": str(static_root)}))
    for _ in range(ticks):
        await asyncio.sleep(0)
    task.cancel()

    try:
        info = await task
    except asyncio.CancelledError:
        assert await manager.list_servers() == []
    else:
        # Start completed before the cancel landed
        await manager.stop_server(info.id)

    assert manager.is_port_available(port) is True
    async with httpx.AsyncClient(trust_env=False) as client:
        with pytest.raises(httpx.ConnectError):
            await client.get(f"http://127.0.0.1:{port}/hello.txt")


@pytest.mark.asyncio
async def test_defaults_applied(manager, static_root):
    info = await manager.start_server({"staticDir": str(static_root)})
    assert info.directory_listing is False
    assert info.logging_enabled is False

    async with httpx.AsyncClient(trust_env=False) as client:
        resp = await client.get(f"{info.url}/hello.txt")
    assert resp.headers["access-control-allow-origin"] == "*"


# ----------------------------------------------------------------------------
# Serving
# ----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_serves_files_with_content_type(manager, static_root):
    info = await manager.start_server({"staticDir": str(static_root)})
    async with httpx.AsyncClient(base_url=info.url, trust_env=False) as client:
        css = await client.get("/style.css")
        html = await client.get("/page.html")
        missing = await client.get("/nope.css")

    assert css.status_code == 200
    assert css.headers["content-type"].startswith("text/css")
    assert css.text == "body { margin: 0; }"
    assert html.headers["content-type"].startswith("text/html")
    assert missing.status_code == 404


@pytest.mark.asyncio
@pytest.mark.parametrize("target", [
    "/../../etc/passwd",
    "/../secret.txt",
    "/assets/../../secret.txt",
    "/%2e%2e/secret.txt",
])
async def test_traversal_is_forbidden(manager, static_root, target):
    info = await manager.start_server({"staticDir": str(static_root)})
    response = await raw_get(info.port, target)
    assert response.startswith(b"HTTP/1.1 403")
    assert b"TOP SECRET" not in response
    assert b"root:" not in response


@pytest.mark.asyncio
async def test_directory_listing_toggle(manager, static_root):
    closed = await manager.start_server({"staticDir": str(static_root), "directoryListing": False})
    open_ = await manager.start_server({"staticDir": str(static_root), "directoryListing": True})

    async with httpx.AsyncClient(trust_env=False) as client:
        denied = await client.get(f"{closed.url}/")
        listing = await client.get(f"{open_.url}/", headers={"Accept": "application/json"})

    assert denied.status_code == 403
    assert listing.status_code == 200
    assert [e["name"] for e in listing.json()["entries"]] == sorted(os.listdir(static_root))


@pytest.mark.asyncio
async def test_cors_preflight_and_header(manager, static_root):
    info = await manager.start_server({"staticDir": str(static_root), "cors": True})
    async with httpx.AsyncClient(base_url=info.url, trust_env=False) as client:
        preflight = await client.options(
            "/hello.txt",
            headers={"Origin": "http://example.test", "Access-Control-Request-Method": "GET"},
        )
        resp = await client.get("/hello.txt", headers={"Origin": "http://example.test"})

    assert preflight.status_code == 204
    assert preflight.headers["access-control-allow-origin"] == "*"
    assert resp.headers["access-control-allow-origin"] == "*"


@pytest.mark.asyncio
async def test_cors_disabled(manager, static_root):
    info = await manager.start_server({"staticDir": str(static_root), "cors": False})
    async with httpx.AsyncClient(base_url=info.url, trust_env=False) as client:
        resp = await client.get("/hello.txt", headers={"Origin": "http://example.test"})
    assert "access-control-allow-origin" not in resp.headers


@pytest.mark.asyncio
async def test_request_logging(manager, static_root, caplog):
    caplog.set_level(logging.INFO, logger="localserve.access")
    info = await manager.start_server({"staticDir": str(static_root), "enableLogging": True})
    assert info.logging_enabled is True

    async with httpx.AsyncClient(base_url=info.url, trust_env=False) as client:
        await client.get("/hello.txt")

    # The line is written after the body is sent, so it may trail the response
    for _ in range(50):
        lines = [r.getMessage() for r in caplog.records if r.name == "localserve.access"]
        if lines:
            break
        await asyncio.sleep(0.02)
    assert any(f"[{info.url}] GET /hello.txt 200 " in line for line in lines)


# ----------------------------------------------------------------------------
# Stop
# ----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_stop_server(manager, static_root):
    info = await manager.start_server({"staticDir": str(static_root)})
    assert manager.is_port_available(info.port) is False

    await manager.stop_server(info.id)

    assert await manager.list_servers() == []
    assert manager.is_port_available(info.port) is True
    with pytest.raises(ServerNotFoundError):
        await manager.stop_server(info.id)
    with pytest.raises(ServerNotFoundError):
        await manager.get_server(info.id)


@pytest.mark.asyncio
async def test_concurrent_stops_of_same_server(manager, static_root):
    info = await manager.start_server({"staticDir": str(static_root)})
    results = await asyncio.gather(
        manager.stop_server(info.id),
        manager.stop_server(info.id),
        return_exceptions=True,
    )
    assert all(r is None or isinstance(r, ServerNotFoundError) for r in results)
    assert await manager.list_servers() == []


@pytest.mark.asyncio
async def test_stop_all_force_closes_slow_clients(manager, test_config, static_root, tmp_path):
    big_root = tmp_path / "big"
    big_root.mkdir()
    with open(big_root / "large.bin", "wb") as fh:
        fh.truncate(LARGE_FILE_SIZE)

    slow = await manager.start_server({"staticDir": str(big_root)})
    for _ in range(2):
        await manager.start_server({"staticDir": str(static_root)})
    slow_handle = await manager.registry.get(slow.id)

    # Start a download and then stop reading so the server cannot drain it
    reader, writer = await asyncio.open_connection("127.0.0.1", slow.port)
    writer.write(b"GET /large.bin HTTP/1.1\r\nHost: 127.0.0.1\r\n\r\n")
    await writer.drain()
    head = await asyncio.wait_for(reader.readuntil(b"\r\n\r\n"), timeout=5)
    assert head.startswith(b"HTTP/1.1 200")

    loop = asyncio.get_running_loop()
    started = loop.time()
    failures = await manager.stop_all_servers()
    elapsed = loop.time() - started

    shutdown = test_config.shutdown
    assert failures == {}
    assert await manager.list_servers() == []
    assert elapsed < shutdown.grace_period_seconds + shutdown.force_close_timeout_seconds + 2.0
    assert slow_handle.instance.shutdown_timed_out is True

    received = 0
    try:
        while True:
            chunk = await asyncio.wait_for(reader.read(1024 * 1024), timeout=5)
            if not chunk:
                break
            received += len(chunk)
    except ConnectionError:
        pass
    finally:
        writer.close()
        with contextlib.suppress(ConnectionError):
            await writer.wait_closed()
    assert received < LARGE_FILE_SIZE


@pytest.mark.asyncio
async def test_stop_all_with_nothing_running(manager):
    assert await manager.stop_all_servers() == {}


# ----------------------------------------------------------------------------
# Helpers exposed by the manager
# ----------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_is_port_available_rejects_port_zero(manager):
    assert manager.is_port_available(0) is False


@pytest.mark.asyncio
async def test_create_test_directory_then_serve(manager, tmp_path):
    demo = tmp_path / "demo"
    assert "created successfully" in manager.create_test_directory(str(demo))

    info = await manager.start_server({"staticDir": str(demo)})
    async with httpx.AsyncClient(trust_env=False) as client:
        resp = await client.get(f"{info.url}/")

    assert resp.status_code == 200
    assert "Local Web Server Test Page" in resp.text
