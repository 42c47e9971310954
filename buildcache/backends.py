"""
Restore and save halves of the two cache backends.

``restore_backend`` runs in the restore (or build) phase: it persists the
cross-phase identifiers, then either starts/reuses the registry proxy or
prepares the local import/export directories, and returns the cache
directives for the build. ``save_backend`` runs in a later process and
works purely from the persisted state.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from buildcache import cache_cli
from buildcache.cache_cli import CacheCommandError
from buildcache.config import CacheSettings
from buildcache.proxy.models import UNKNOWN_PID, CacheDirective, NetworkTopology, ProxyHandle
from buildcache.proxy.process import pid_marker_path, start_proxy, stop_proxy, wait_until_ready
from buildcache.proxy.refs import build_ref, local_cache_directives, registry_cache_directives
from buildcache.runtime import info, notice, warning
from buildcache.state import PhaseState


REGISTRY_PROXY = "registry-proxy"
LOCAL = "local"


@dataclass
class RestoreOutcome:
    backend: str
    cache_tag: str
    directives: CacheDirective
    registry_ref: str = ""
    cache_dir_from: str = ""
    cache_dir_to: str = ""
    cache_hit: bool = False
    proxy: Optional[ProxyHandle] = None

    def outputs(self) -> dict[str, str]:
        return {
            "cache-backend": self.backend,
            "cache-tag": self.cache_tag,
            "cache-from": self.directives.cache_from,
            "cache-to": self.directives.cache_to,
            "registry-ref": self.registry_ref,
            "cache-dir-from": self.cache_dir_from,
            "cache-dir-to": self.cache_dir_to,
            "cache-hit": "true" if self.cache_hit else "false",
            "proxy-port": str(self.proxy.port) if self.proxy else "",
        }


def persist_settings(state: PhaseState, settings: CacheSettings) -> None:
    from_dir, to_dir = settings.resolved_cache_dirs()
    state.save("workspace", settings.workspace)
    state.save("cacheTag", settings.cache_tag)
    state.save("cacheBackend", settings.cache_backend)
    state.save("cacheDirFrom", str(from_dir))
    state.save("cacheDirTo", str(to_dir))
    state.save("verbose", settings.verbose)
    state.save("exclude", settings.exclude)
    # A proxy recorded by an earlier restore on this state is not ours to stop.
    state.delete("proxyPid", "proxyPort")


def _restore_registry(
    settings: CacheSettings,
    topology: NetworkTopology,
    state: PhaseState,
    run_root: Path,
) -> RestoreOutcome:
    handle = start_proxy(
        settings.workspace,
        settings.cache_tag,
        topology.bind_host,
        settings.proxy_port,
        verbose=settings.verbose,
        no_git=settings.no_git,
        no_platform=settings.no_platform,
        run_root=run_root,
    )
    # Written before the readiness wait so the save phase can still reap a
    # proxy that never came up. A reused proxy is recorded as unowned.
    state.save("proxyPid", handle.pid if handle.owned else UNKNOWN_PID)
    state.save("proxyPort", handle.port)

    wait_until_ready(handle, timeout_sec=settings.readiness_timeout_sec)

    ref = build_ref(topology.ref_host, settings.proxy_port, settings.cache_tag)
    info(f"Registry cache reference: {ref}")
    return RestoreOutcome(
        backend=REGISTRY_PROXY,
        cache_tag=settings.cache_tag,
        directives=registry_cache_directives(ref, settings.cache_mode),
        registry_ref=ref,
        proxy=handle,
    )


def _restore_local(settings: CacheSettings) -> RestoreOutcome:
    from_dir, to_dir = settings.resolved_cache_dirs()
    directives = local_cache_directives(from_dir, to_dir, settings.cache_mode)
    from_dir.mkdir(parents=True, exist_ok=True)
    to_dir.mkdir(parents=True, exist_ok=True)

    try:
        cache_hit = cache_cli.restore_cache(
            settings.workspace,
            settings.cache_tag,
            from_dir,
            verbose=settings.verbose,
        )
    except CacheCommandError as exc:
        warning(f"Cache restore failed: {exc}")
        cache_hit = False

    if cache_hit:
        notice(f"Cache restored (tag: {settings.cache_tag})")
    else:
        notice(f"Cache miss (tag: {settings.cache_tag})")
    return RestoreOutcome(
        backend=LOCAL,
        cache_tag=settings.cache_tag,
        directives=directives,
        cache_dir_from=str(from_dir),
        cache_dir_to=str(to_dir),
        cache_hit=cache_hit,
    )


def restore_backend(
    settings: CacheSettings,
    topology: NetworkTopology,
    state: PhaseState,
    run_root: Path,
) -> RestoreOutcome:
    persist_settings(state, settings)
    if settings.cache_backend == REGISTRY_PROXY:
        return _restore_registry(settings, topology, state, run_root)
    return _restore_local(settings)


def _stop_recorded_proxy(state: PhaseState, run_root: Path) -> str:
    raw_pid = state.get("proxyPid")
    raw_port = state.get("proxyPort")
    # The recorded pid is single-use.
    state.delete("proxyPid", "proxyPort")
    if not raw_pid:
        notice("No registry proxy was recorded for this run; nothing to save")
        return "Registry proxy never started; nothing to save."

    try:
        pid = int(raw_pid)
    except ValueError:
        warning(f"Ignoring unreadable proxy PID in state: {raw_pid!r}")
        pid = UNKNOWN_PID
    marker = pid_marker_path(run_root, int(raw_port)) if raw_port.isdigit() else None
    if not stop_proxy(pid, marker=marker):
        return "Registry proxy not stopped by this run."
    info("Registry proxy cache sync complete")
    return "Registry proxy stopped; it syncs the cache on shutdown."


def save_backend(state: PhaseState, run_root: Path) -> str:
    """Finish the cache lifecycle recorded in ``state``; returns a one-line note.

    Never raises: by now the build has completed and is not affected by a
    stuck proxy or a failed upload.
    """
    if state.get("cacheBackend") == REGISTRY_PROXY:
        return _stop_recorded_proxy(state, run_root)

    workspace = state.get("workspace")
    cache_tag = state.get("cacheTag")
    cache_dir = state.get("cacheDirTo")
    if not workspace or not cache_tag or not cache_dir:
        notice("Cache save skipped because required state is missing")
        return "Cache save skipped: missing state."

    try:
        saved = cache_cli.save_cache(
            workspace,
            cache_tag,
            Path(cache_dir),
            verbose=state.get("verbose") == "true",
            exclude=state.get("exclude"),
        )
    except (CacheCommandError, OSError) as exc:
        warning(f"Save failed: {exc}")
        return f"Cache save failed: {exc}"
    return "Cache saved." if saved else "Cache save skipped."
