"""
Thin wrapper over the ``docker buildx`` CLI.

Builder setup, QEMU registration, the build itself and the metadata file
it leaves behind. Cache directives are passed through untouched.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from buildcache.proxy.models import CacheDirective
from buildcache.runtime import info, run_command, run_streaming, warning


BUILDER_NAME = "buildcache-builder"
BINFMT_IMAGE = "tonistiigi/binfmt"


class BuildError(RuntimeError):
    """A buildx invocation failed."""


def effective_driver(driver: str) -> str:
    driver = driver or "docker-container"
    if driver == "docker":
        warning('Buildx driver "docker" does not support cache export; falling back to "docker-container".')
        return "docker-container"
    return driver


def effective_driver_opts(driver: str, driver_opts: list[str], registry_mode: bool) -> list[str]:
    opts = list(driver_opts)
    if registry_mode and driver == "docker-container":
        if not any(opt.startswith("network=") for opt in opts):
            info("Adding network=host to builder for registry proxy access")
            opts.append("network=host")
    return opts


def _write_buildkitd_config(config_inline: str, config_dir: Path) -> Optional[Path]:
    if not config_inline.strip():
        return None
    config_dir.mkdir(parents=True, exist_ok=True)
    path = config_dir / "buildkitd.toml"
    path.write_text(config_inline, encoding="utf-8")
    return path


def setup_builder(
    driver: str,
    driver_opts: list[str],
    buildkitd_config_inline: str,
    config_dir: Path,
    *,
    registry_mode: bool = False,
    name: str = BUILDER_NAME,
) -> str:
    """Create (or reuse) the named builder and make it current."""
    driver = effective_driver(driver)
    opts = effective_driver_opts(driver, driver_opts, registry_mode)
    config_path = _write_buildkitd_config(buildkitd_config_inline, config_dir)

    inspect = run_command(["docker", "buildx", "inspect", name])
    if inspect.exit_code == 0:
        info(f"Reusing buildx builder '{name}'")
        run_command(["docker", "buildx", "use", name])
        return name

    cmd = ["docker", "buildx", "create", "--name", name, "--driver", driver]
    for opt in opts:
        cmd.extend(["--driver-opt", opt])
    if config_path is not None:
        cmd.extend(["--config", str(config_path)])
    cmd.append("--use")

    result = run_command(cmd)
    if result.exit_code != 0:
        raise BuildError(f"Failed to create buildx builder (exit {result.exit_code}): {result.stderr.strip()}")
    info(f"Created buildx builder '{name}' (driver {driver})")
    return name


def bootstrap_builder(name: str) -> None:
    """Start the builder's node so its container exists before network inspection."""
    result = run_command(["docker", "buildx", "inspect", "--bootstrap", name], timeout_sec=300)
    if result.exit_code != 0:
        warning(f"Failed to bootstrap builder '{name}' (exit {result.exit_code})")


def get_builder_platforms(name: str) -> str:
    result = run_command(["docker", "buildx", "inspect", name])
    if result.exit_code != 0:
        return ""
    for line in result.stdout.splitlines():
        if line.strip().startswith("Platforms:"):
            return line.strip()[len("Platforms:"):].strip()
    return ""


def setup_qemu_if_needed(platforms: str) -> None:
    if not platforms:
        return
    result = run_command(
        ["docker", "run", "--privileged", "--rm", BINFMT_IMAGE, "--install", "all"],
        timeout_sec=600,
    )
    if result.exit_code != 0:
        raise BuildError(f"Failed to set up QEMU for multi-platform builds (exit {result.exit_code})")


@dataclass
class BuildOptions:
    dockerfile: str
    context: Path
    image: str
    builder: str
    metadata_file: Path
    tags: list[str] = field(default_factory=lambda: ["latest"])
    build_args: list[str] = field(default_factory=list)
    secrets: list[str] = field(default_factory=list)
    target: str = ""
    platforms: str = ""
    push: bool = False
    load: bool = False
    no_cache: bool = False
    cache: Optional[CacheDirective] = None


def build_command(opts: BuildOptions) -> list[str]:
    cmd = ["docker", "buildx", "build", "--builder", opts.builder, "-f", opts.dockerfile]
    for tag in opts.tags:
        cmd.extend(["-t", f"{opts.image}:{tag}"])
    for arg in opts.build_args:
        cmd.extend(["--build-arg", arg])
    for secret in opts.secrets:
        cmd.extend(["--secret", secret])
    if opts.target:
        cmd.extend(["--target", opts.target])
    if opts.platforms:
        cmd.extend(["--platform", opts.platforms])
    if opts.push:
        cmd.append("--push")
    if opts.load:
        cmd.append("--load")
    if opts.no_cache:
        cmd.append("--no-cache")
    if opts.cache is not None:
        cmd.extend(["--cache-from", opts.cache.cache_from, "--cache-to", opts.cache.cache_to])
    cmd.extend(["--metadata-file", str(opts.metadata_file), "."])
    return cmd


def build_image(opts: BuildOptions) -> None:
    env = os.environ.copy()
    env["DOCKER_BUILDKIT"] = "1"
    opts.metadata_file.parent.mkdir(parents=True, exist_ok=True)
    if opts.metadata_file.exists():
        opts.metadata_file.unlink()
    try:
        exit_code = run_streaming(build_command(opts), cwd=opts.context, env=env)
    except FileNotFoundError as exc:
        raise BuildError("docker CLI not found on PATH") from exc
    if exit_code != 0:
        raise BuildError(f"docker buildx build failed with exit code {exit_code}")


def read_metadata(path: Path) -> dict[str, str]:
    empty = {"image_id": "", "digest": ""}
    if not path.exists():
        return empty
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        warning(f"Failed to parse metadata file: {exc}")
        return empty
    return {
        "image_id": str(data.get("containerimage.config.digest") or ""),
        "digest": str(data.get("containerimage.digest") or ""),
    }
