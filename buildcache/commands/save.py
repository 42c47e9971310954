from __future__ import annotations

from pathlib import Path
from typing import Any

from buildcache import cache_cli, config
from buildcache.backends import save_backend
from buildcache.cache_cli import CacheCommandError
from buildcache.commands.common import new_phase
from buildcache.config import ConfigurationError
from buildcache.runtime import notice, warning


def _save_from_args(args: Any) -> str:
    """Save-only invocation without a preceding restore in this run."""
    try:
        workspace = config.resolve_workspace(getattr(args, "workspace", None))
    except ConfigurationError:
        notice("No workspace provided, skipping cache save")
        return "Cache save skipped: no workspace."

    image = getattr(args, "image", None) or ""
    cache_tag = getattr(args, "cache_tag", None) or config.default_cache_tag(image)
    cache_dir = getattr(args, "cache_dir_to", None)
    key = config.state_key(getattr(args, "state_key", None))
    cache_dir_path = Path(cache_dir) if cache_dir else config.default_cache_dirs(key)[1]
    try:
        saved = cache_cli.save_cache(
            workspace,
            cache_tag,
            cache_dir_path,
            verbose=bool(getattr(args, "verbose", False)),
            exclude=getattr(args, "exclude", None) or "",
        )
    except (CacheCommandError, OSError) as exc:
        warning(f"Save failed: {exc}")
        return f"Cache save failed: {exc}"
    return "Cache saved." if saved else "Cache save skipped."


def run(args: Any) -> int:
    phase_run, state, root = new_phase("save", args)
    if state.get("workspace") or state.get("proxyPid"):
        note = save_backend(state, root)
    else:
        note = _save_from_args(args)
    phase_run.add_note(note)
    return phase_run.finalize("pass", emit_json=bool(getattr(args, "json", False)))
