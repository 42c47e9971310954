from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from buildcache import config
from buildcache.config import (
    BuildRequest,
    CacheSettings,
    ConfigurationError,
    parse_boolean,
    parse_list,
    parse_multiline,
    resolve_workspace,
)


def test_parse_helpers():
    assert parse_boolean("true") is True
    assert parse_boolean("TRUE ") is True
    assert parse_boolean("yes") is False
    assert parse_boolean("", default=True) is True
    assert parse_boolean(None) is False

    assert parse_list("a, b,,c ") == ["a", "b", "c"]
    assert parse_list("") == []
    assert parse_multiline("KEY=1\n\n  OTHER=2  \n") == ["KEY=1", "OTHER=2"]


def test_resolve_workspace_prefers_explicit_value(monkeypatch):
    monkeypatch.setenv(config.DEFAULT_WORKSPACE_ENV, "env-org/env-project")
    assert resolve_workspace("org/project") == "org/project"
    assert resolve_workspace("") == "env-org/env-project"
    assert resolve_workspace(None) == "env-org/env-project"


def test_resolve_workspace_adds_default_org(monkeypatch):
    assert resolve_workspace("project") == "default/project"
    monkeypatch.setenv(config.DEFAULT_WORKSPACE_ENV, "envproject")
    assert resolve_workspace("  ") == "default/envproject"


def test_resolve_workspace_requires_a_value():
    with pytest.raises(ConfigurationError, match=config.DEFAULT_WORKSPACE_ENV):
        resolve_workspace("")


def test_default_cache_tag():
    assert config.default_cache_tag("ghcr.io/org/app") == "ghcr-io-org-app"
    assert config.default_cache_tag("") == "docker"
    assert config.default_cache_tag(None) == "docker"


def test_run_namespace(monkeypatch, tmp_path):
    monkeypatch.delenv("BUILDCACHE_RUN_ID")
    assert config.run_id() == "local"

    monkeypatch.setenv("GITHUB_RUN_ID", "12345")
    assert config.run_id() == "12345-1"
    monkeypatch.setenv("GITHUB_RUN_ATTEMPT", "2")
    assert config.run_id() == "12345-2"

    monkeypatch.setenv("BUILDCACHE_RUN_ID", "job/7")
    assert config.run_id() == "job-7"
    assert config.run_root() == tmp_path / "tmp" / "buildcache-job-7"
    assert config.default_cache_dirs() == (
        tmp_path / "tmp" / "buildcache-job-7" / "buildkit-cache-from",
        tmp_path / "tmp" / "buildcache-job-7" / "buildkit-cache-to",
    )


def test_state_and_output_files(monkeypatch, run_root, tmp_path):
    assert config.state_file() == run_root / "state.json"
    assert config.output_file() is None

    monkeypatch.setenv("BUILDCACHE_STATE_FILE", str(tmp_path / "custom.json"))
    monkeypatch.setenv("GITHUB_OUTPUT", str(tmp_path / "out"))
    assert config.state_file() == tmp_path / "custom.json"
    assert config.output_file() == tmp_path / "out"


def test_cli_binary_override(monkeypatch):
    assert config.cache_cli_binary() == "boringcache"
    monkeypatch.setenv(config.CLI_BIN_ENV, "/opt/bin/boringcache")
    assert config.cache_cli_binary() == "/opt/bin/boringcache"


def test_settings_defaults(run_root):
    settings = CacheSettings(workspace="org/project", cache_tag="my-app")
    assert settings.cache_backend == "local"
    assert settings.cache_mode == "max"
    assert settings.proxy_port == 5000
    assert settings.resolved_cache_dirs() == (
        run_root / "buildkit-cache-from",
        run_root / "buildkit-cache-to",
    )


@pytest.mark.parametrize(
    "overrides",
    [
        {"cache_mode": "full"},
        {"cache_backend": "s3"},
        {"proxy_port": 0},
        {"proxy_port": 70000},
        {"readiness_timeout_sec": 0},
        {"unknown": "field"},
    ],
)
def test_settings_reject_invalid_values(overrides):
    with pytest.raises(ValidationError):
        CacheSettings(workspace="org/project", cache_tag="my-app", **overrides)


def test_settings_reject_shared_cache_directory(tmp_path):
    shared = str(tmp_path / "cache")
    with pytest.raises(ValidationError, match="must be different directories"):
        CacheSettings(workspace="org/project", cache_tag="t", cache_dir_from=shared, cache_dir_to=shared)

    with pytest.raises(ValidationError):
        CacheSettings(
            workspace="org/project",
            cache_tag="t",
            cache_dir_from=shared,
            cache_dir_to=str(tmp_path / "other" / ".." / "cache"),
        )


def test_multi_platform_build_does_not_load():
    request = BuildRequest(workspace="org/project", cache_tag="app", image="app", platforms="linux/amd64,linux/arm64")
    assert request.load is False
    single = BuildRequest(workspace="org/project", cache_tag="app", image="app")
    assert single.load is True
    assert single.tags == ["latest"]
    assert Path(single.context) == Path(".")


def test_state_key_scopes_state_and_cache_dirs(monkeypatch, run_root):
    assert config.state_key(None) == ""
    assert config.step_root("") == run_root
    assert config.state_key(" web/app ") == "web-app"

    monkeypatch.setenv(config.STATE_KEY_ENV, "from-env")
    assert config.state_key(None) == "from-env"
    assert config.state_key("flag") == "flag"

    assert config.state_file("web") == run_root / "step-web" / "state.json"
    settings = CacheSettings(workspace="org/project", cache_tag="t", state_key="web")
    assert settings.resolved_cache_dirs() == (
        run_root / "step-web" / "buildkit-cache-from",
        run_root / "step-web" / "buildkit-cache-to",
    )
