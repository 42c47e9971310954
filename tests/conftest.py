from __future__ import annotations

import pytest

from tests.utils.fake_cli import FakeCacheCli


_CLEARED_ENV = (
    "BORINGCACHE_API_TOKEN",
    "BORINGCACHE_DEFAULT_WORKSPACE",
    "BORINGCACHE_BIN",
    "BUILDCACHE_STATE_FILE",
    "BUILDCACHE_STATE_KEY",
    "GITHUB_OUTPUT",
    "GITHUB_RUN_ID",
    "GITHUB_RUN_ATTEMPT",
    "FAKE_PROXY_MODE",
    "FAKE_RESTORE_OUTPUT",
    "FAKE_RESTORE_EXIT",
    "FAKE_SAVE_EXIT",
)


@pytest.fixture(autouse=True)
def run_root(tmp_path, monkeypatch):
    for name in _CLEARED_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("BUILDCACHE_TMP_DIR", str(tmp_path / "tmp"))
    monkeypatch.setenv("BUILDCACHE_RUN_ID", "test")
    return tmp_path / "tmp" / "buildcache-test"


@pytest.fixture
def fake_cli(tmp_path, monkeypatch):
    cli = FakeCacheCli(tmp_path / "bin")
    monkeypatch.setenv("BORINGCACHE_BIN", str(cli.binary))
    monkeypatch.setenv("FAKE_CLI_LOG", str(cli.log))
    return cli


@pytest.fixture
def token(monkeypatch):
    monkeypatch.setenv("BORINGCACHE_API_TOKEN", "test-token")
    return "test-token"
