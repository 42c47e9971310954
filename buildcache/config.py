"""
Inputs and environment-derived settings.

Flags arrive from argparse as plain strings; this module turns them into
validated pydantic request models and resolves everything that comes from
the environment (credential, default workspace, run namespace, temp root).
"""

from __future__ import annotations

import os
import re
import tempfile
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


TOKEN_ENV = "BORINGCACHE_API_TOKEN"
DEFAULT_WORKSPACE_ENV = "BORINGCACHE_DEFAULT_WORKSPACE"
CLI_BIN_ENV = "BORINGCACHE_BIN"
STATE_KEY_ENV = "BUILDCACHE_STATE_KEY"
DEFAULT_CLI_BIN = "boringcache"
DEFAULT_PROXY_PORT = 5000
DEFAULT_READINESS_TIMEOUT_SEC = 20.0

CacheMode = Literal["min", "max"]
CacheBackend = Literal["registry-proxy", "local"]

_SLUG_PATTERN = re.compile(r"[^a-zA-Z0-9]")


class ConfigurationError(ValueError):
    """Missing or invalid configuration; fatal for the current phase."""


def parse_boolean(value: Optional[str], default: bool = False) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == "true"


def parse_list(value: Optional[str], separator: str = ",") -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(separator) if item.strip()]


def parse_multiline(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [line.strip() for line in value.split("\n") if line.strip()]


def slugify(value: str) -> str:
    return _SLUG_PATTERN.sub("-", value)


def default_cache_tag(image: Optional[str]) -> str:
    return slugify(image) if image else "docker"


def resolve_workspace(value: Optional[str]) -> str:
    """Return ``<org>/<project>``, falling back to the default workspace env var."""
    workspace = (value or "").strip() or os.environ.get(DEFAULT_WORKSPACE_ENV, "").strip()
    if not workspace:
        raise ConfigurationError(
            f"Workspace is required. Set --workspace or the {DEFAULT_WORKSPACE_ENV} env var."
        )
    if "/" not in workspace:
        workspace = f"default/{workspace}"
    return workspace


def api_token() -> Optional[str]:
    return os.environ.get(TOKEN_ENV) or None


def cache_cli_binary() -> str:
    return os.environ.get(CLI_BIN_ENV) or DEFAULT_CLI_BIN


def run_id() -> str:
    explicit = os.environ.get("BUILDCACHE_RUN_ID", "").strip()
    if explicit:
        return slugify(explicit)
    github_run = os.environ.get("GITHUB_RUN_ID", "").strip()
    if github_run:
        attempt = os.environ.get("GITHUB_RUN_ATTEMPT", "").strip() or "1"
        return slugify(f"{github_run}-{attempt}")
    return "local"


def run_root() -> Path:
    """Per-run temp directory holding the proxy files and every step's directory."""
    base = os.environ.get("BUILDCACHE_TMP_DIR") or tempfile.gettempdir()
    return Path(base) / f"buildcache-{run_id()}"


def state_key(value: Optional[str] = None) -> str:
    """Key pairing one restore/build step with its save/post step; empty for the unnamed step."""
    key = (value or "").strip() or os.environ.get(STATE_KEY_ENV, "").strip()
    return slugify(key) if key else ""


def step_root(key: str = "") -> Path:
    """Cache dirs, state and summaries of one step. The unnamed step uses the run root."""
    root = run_root()
    return root / f"step-{key}" if key else root


def state_file(key: str = "") -> Path:
    override = os.environ.get("BUILDCACHE_STATE_FILE")
    if override:
        return Path(override)
    return step_root(key) / "state.json"


def output_file() -> Optional[Path]:
    value = os.environ.get("GITHUB_OUTPUT")
    return Path(value) if value else None


def default_cache_dirs(key: str = "") -> tuple[Path, Path]:
    root = step_root(key)
    return root / "buildkit-cache-from", root / "buildkit-cache-to"


class CacheSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    workspace: str = Field(..., description="Cache workspace, <org>/<project>")
    cache_tag: str = Field(..., description="Slug-safe cache tag")
    cache_backend: CacheBackend = "local"
    cache_mode: CacheMode = "max"
    proxy_port: int = DEFAULT_PROXY_PORT
    readiness_timeout_sec: float = DEFAULT_READINESS_TIMEOUT_SEC
    verbose: bool = False
    no_git: bool = False
    no_platform: bool = False
    exclude: str = ""
    cache_dir_from: Optional[str] = None
    cache_dir_to: Optional[str] = None
    state_key: str = ""

    @field_validator("proxy_port")
    @classmethod
    def _port_in_range(cls, value: int) -> int:
        if not 0 < value < 65536:
            raise ValueError(f"proxy port out of range: {value}")
        return value

    @field_validator("readiness_timeout_sec")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("readiness timeout must be positive")
        return value

    @model_validator(mode="after")
    def _distinct_cache_dirs(self) -> "CacheSettings":
        from_dir, to_dir = self.resolved_cache_dirs()
        if from_dir.resolve() == to_dir.resolve():
            raise ValueError(
                "cache_dir_from and cache_dir_to must be different directories"
            )
        return self

    def resolved_cache_dirs(self) -> tuple[Path, Path]:
        default_from, default_to = default_cache_dirs(self.state_key)
        from_dir = Path(self.cache_dir_from) if self.cache_dir_from else default_from
        to_dir = Path(self.cache_dir_to) if self.cache_dir_to else default_to
        return from_dir, to_dir


class BuildRequest(CacheSettings):
    image: str = Field(..., description="Image name without tag")
    context: str = "."
    dockerfile: str = "Dockerfile"
    tags: list[str] = Field(default_factory=lambda: ["latest"])
    build_args: list[str] = Field(default_factory=list)
    secrets: list[str] = Field(default_factory=list)
    target: str = ""
    platforms: str = ""
    push: bool = False
    load: bool = True
    no_cache: bool = False
    driver: str = "docker-container"
    driver_opts: list[str] = Field(default_factory=list)
    buildkitd_config_inline: str = ""

    @model_validator(mode="after")
    def _no_load_for_multi_platform(self) -> "BuildRequest":
        # --load cannot import a multi-platform result into the local image store.
        if self.platforms:
            self.load = False
        return self


class RestoreRequest(CacheSettings):
    builder: Optional[str] = None
    driver: str = "docker-container"
