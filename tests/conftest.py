"""Pytest configuration for LocalServe."""
import os

import pytest

from localserve.base.config import LocalServeConfig, ShutdownConfig, set_config
from localserve.server.manager import ServerManager
from localserve.server.registry import ServerRegistry


def pytest_configure():
    # Keep test runs off the user's real data directory.
    os.environ.setdefault("LOCALSERVE_LOG_FILE", "false")


@pytest.fixture(autouse=True)
def _reset_global_config():
    set_config(None)
    yield
    set_config(None)


@pytest.fixture
def static_root(tmp_path):
    """
    site/
        hello.txt  app.js  style.css  page.html  blob.unknownext
        assets/logo.svg
        docs/index.html
    secret.txt          (outside the served root)
    """
    root = tmp_path / "site"
    root.mkdir()
    (root / "hello.txt").write_text("hello world")
    (root / "app.js").write_text("console.log('hi');")
    (root / "style.css").write_text("body { margin: 0; }")
    (root / "page.html").write_text("<h1>page</h1>")
    (root / "blob.unknownext").write_bytes(b"\x00\x01\x02")

    (root / "assets").mkdir()
    (root / "assets" / "logo.svg").write_text("<svg/>")

    (root / "docs").mkdir()
    (root / "docs" / "index.html").write_text("<h1>docs</h1>")

    (tmp_path / "secret.txt").write_text("TOP SECRET")
    return root


@pytest.fixture
def test_config():
    return LocalServeConfig(
        shutdown=ShutdownConfig(grace_period_seconds=0.5, force_close_timeout_seconds=1.0),
    )


@pytest.fixture
async def manager(test_config):
    mgr = ServerManager(ServerRegistry(), config=test_config)
    yield mgr
    await mgr.stop_all_servers()
