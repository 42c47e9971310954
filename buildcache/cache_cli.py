from __future__ import annotations

import re
import subprocess
import sys
from pathlib import Path
from typing import Optional

from buildcache import config
from buildcache.runtime import CommandResult, info, notice, run_command


CACHE_COMMAND_TIMEOUT_SEC = 3600
MISS_PATTERNS = [
    re.compile(r"Cache miss", re.IGNORECASE),
    re.compile(r"No cache entries", re.IGNORECASE),
    re.compile(r"Found 0/", re.IGNORECASE),
]


class CacheCommandError(RuntimeError):
    """The cache CLI did not finish, or failed an operation that must succeed."""


def exec_cache_cli(args: list[str], binary: Optional[str] = None) -> CommandResult:
    cmd = [binary or config.cache_cli_binary(), *args]
    try:
        result = run_command(cmd, timeout_sec=CACHE_COMMAND_TIMEOUT_SEC)
    except FileNotFoundError as exc:
        raise CacheCommandError(f"Cache CLI not found: {cmd[0]}") from exc
    except subprocess.TimeoutExpired as exc:
        raise CacheCommandError(f"Cache CLI {args[0]} timed out after {exc.timeout:g}s") from exc
    if result.stdout:
        sys.stdout.write(result.stdout)
    if result.stderr:
        sys.stderr.write(result.stderr)
    return result


def was_cache_hit(result: CommandResult) -> bool:
    if result.exit_code != 0:
        return False
    output = result.output
    if not output:
        return True
    return not any(pattern.search(output) for pattern in MISS_PATTERNS)


def restore_cache(
    workspace: str,
    cache_tag: str,
    cache_dir: Path,
    *,
    verbose: bool = False,
    binary: Optional[str] = None,
) -> bool:
    """Pull ``cache_tag`` into ``cache_dir``; returns whether it was a hit."""
    if not config.api_token():
        notice(f"Skipping cache restore ({config.TOKEN_ENV} not set)")
        return False

    args = ["restore", workspace, f"{cache_tag}:{cache_dir}"]
    if verbose:
        args.append("--verbose")
    result = exec_cache_cli(args, binary=binary)
    if was_cache_hit(result):
        return True
    info("Cache miss")
    return False


def save_cache(
    workspace: str,
    cache_tag: str,
    cache_dir: Path,
    *,
    verbose: bool = False,
    exclude: str = "",
    binary: Optional[str] = None,
) -> bool:
    """Upload ``cache_dir`` under ``cache_tag``; returns False when there was nothing to do."""
    if not config.api_token():
        notice(f"Skipping cache save ({config.TOKEN_ENV} not set)")
        return False

    if not cache_dir.is_dir() or not any(cache_dir.iterdir()):
        notice("No cache files to save")
        return False

    args = ["save", workspace, f"{cache_tag}:{cache_dir}", "--force"]
    if verbose:
        args.append("--verbose")
    if exclude:
        args.extend(["--exclude", exclude])
    result = exec_cache_cli(args, binary=binary)
    if result.exit_code != 0:
        raise CacheCommandError(f"Cache save failed with exit code {result.exit_code}")
    info("Cache saved")
    return True
