from __future__ import annotations

import os
import signal
import subprocess
import time
from pathlib import Path
from typing import Optional, Union

from buildcache import config
from buildcache.config import ConfigurationError
from buildcache.proxy.models import UNKNOWN_PID, ProxyHandle
from buildcache.proxy.readiness import POLL_INTERVAL_SEC, poll_until_ready, probe_host, probe_registry
from buildcache.runtime import atomic_write_text, info, read_tail, warning


GRACE_PERIOD_SEC = 2.0
DEFAULT_READINESS_TIMEOUT_SEC = config.DEFAULT_READINESS_TIMEOUT_SEC
LOG_FILE_NAME = "registry-proxy.log"


class ProxyError(RuntimeError):
    """The registry proxy could not be started or never became ready."""

    def __init__(self, message: str, log_excerpt: str = "") -> None:
        self.log_excerpt = log_excerpt
        if log_excerpt.strip():
            message = f"{message}\n--- registry proxy log ---\n{log_excerpt.rstrip()}"
        super().__init__(message)


def proxy_log_path(run_root: Path) -> Path:
    return run_root / LOG_FILE_NAME


def pid_marker_path(run_root: Path, port: int) -> Path:
    return run_root / f"registry-proxy-{port}.pid"


def read_pid_marker(path: Path) -> int:
    try:
        pid = int(path.read_text(encoding="utf-8").strip())
    except (OSError, ValueError):
        return UNKNOWN_PID
    return pid if pid > 0 else UNKNOWN_PID


def write_pid_marker(path: Path, pid: int) -> None:
    atomic_write_text(path, f"{pid}\n")


def process_is_alive(pid: int) -> bool:
    """Null-signal probe; never affects the target."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def handle_is_alive(handle: ProxyHandle) -> bool:
    # A child spawned by this process lingers as a zombie until reaped, which
    # the null-signal probe reports as alive; poll() reaps it.
    if handle.process is not None:
        return handle.process.poll() is None
    return process_is_alive(handle.pid)


def serve_command(
    binary: str,
    workspace: str,
    tag: str,
    bind_host: str,
    port: int,
    *,
    verbose: bool = False,
    no_git: bool = False,
    no_platform: bool = False,
) -> list[str]:
    cmd = [binary, "serve", workspace]
    if tag:
        cmd.append(tag)
    if no_git:
        cmd.append("--no-git")
    if no_platform:
        cmd.append("--no-platform")
    cmd.extend(["--host", bind_host, "--port", str(port)])
    if verbose:
        cmd.append("--verbose")
    return cmd


def spawn_detached(cmd: list[str], log_path: Path, env: Optional[dict[str, str]] = None) -> subprocess.Popen:
    """Start ``cmd`` in its own session with output going to ``log_path``; do not wait."""
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with open(log_path, "w", encoding="utf-8") as log_handle:
        return subprocess.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=log_handle,
            stderr=subprocess.STDOUT,
            start_new_session=True,
            close_fds=True,
            env=env if env is not None else os.environ.copy(),
        )


def start_proxy(
    workspace: str,
    tag: str,
    bind_host: str,
    port: int,
    *,
    verbose: bool = False,
    no_git: bool = False,
    no_platform: bool = False,
    run_root: Optional[Path] = None,
    binary: Optional[str] = None,
) -> ProxyHandle:
    """Spawn ``boringcache serve`` detached, or adopt one already answering on ``port``.

    Returns immediately after spawning; readiness is checked separately by
    ``wait_until_ready``.
    """
    if not config.api_token():
        raise ConfigurationError(f"{config.TOKEN_ENV} is required for registry proxy mode")

    root = run_root or config.run_root()
    marker = pid_marker_path(root, port)
    log_path = proxy_log_path(root)

    if probe_registry(probe_host(bind_host), port):
        pid = read_pid_marker(marker)
        if pid == UNKNOWN_PID:
            warning(
                f"A registry already answers on port {port} but {marker} is unreadable; "
                "it will not be managed by this run"
            )
        else:
            info(f"Reusing registry proxy already running on port {port} (PID: {pid})")
        return ProxyHandle(pid=pid, bind_host=bind_host, port=port, owned=False, log_path=log_path)

    cmd = serve_command(
        binary or config.cache_cli_binary(),
        workspace,
        tag,
        bind_host,
        port,
        verbose=verbose,
        no_git=no_git,
        no_platform=no_platform,
    )
    info(f"Starting registry proxy on {bind_host}:{port}...")
    try:
        process = spawn_detached(cmd, log_path)
    except OSError as exc:
        raise ProxyError(f"Failed to start registry proxy: {exc}") from exc
    if not process.pid:
        raise ProxyError("Failed to start registry proxy: no process id")

    write_pid_marker(marker, process.pid)
    info(f"Registry proxy started (PID: {process.pid}), log: {log_path}")
    return ProxyHandle(
        pid=process.pid,
        bind_host=bind_host,
        port=port,
        owned=True,
        log_path=log_path,
        process=process,
    )


def wait_until_ready(
    handle: ProxyHandle,
    timeout_sec: float = DEFAULT_READINESS_TIMEOUT_SEC,
    interval_sec: float = POLL_INTERVAL_SEC,
) -> None:
    is_alive = (lambda: handle_is_alive(handle)) if handle.owned else None
    ready, reason = poll_until_ready(
        probe_host(handle.bind_host),
        handle.port,
        timeout_sec=timeout_sec,
        interval_sec=interval_sec,
        is_alive=is_alive,
    )
    if ready:
        info("Registry proxy is ready")
        return

    excerpt = read_tail(handle.log_path) if handle.log_path else ""
    if reason == "exited":
        raise ProxyError(f"Registry proxy (PID: {handle.pid}) exited before becoming ready", excerpt)
    raise ProxyError(f"Registry proxy did not become ready within {timeout_sec:g}s", excerpt)


def _remove_marker(marker: Optional[Path], pid: int) -> None:
    if marker is None or read_pid_marker(marker) != pid:
        return
    try:
        marker.unlink()
    except OSError:
        pass


def stop_proxy(
    target: Union[ProxyHandle, int],
    grace_sec: float = GRACE_PERIOD_SEC,
    marker: Optional[Path] = None,
) -> bool:
    """SIGTERM, then SIGKILL after ``grace_sec``. Never raises.

    Returns False without signalling anything when the pid is the unknown
    owner sentinel, or when a bare pid no longer matches ``marker``.
    """
    handle = target if isinstance(target, ProxyHandle) else None
    pid = handle.pid if handle is not None else int(target)
    if pid <= 0:
        info("Registry proxy was not started by this run; leaving it running")
        return False
    # A bare pid from persisted state is only trusted while the marker still names it.
    if handle is None and marker is not None and read_pid_marker(marker) != pid:
        warning(f"PID marker {marker} does not name process {pid}; not signalling it")
        return False

    def alive() -> bool:
        return handle_is_alive(handle) if handle is not None else process_is_alive(pid)

    info(f"Stopping registry proxy (PID: {pid})...")
    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        info("Registry proxy had already exited")
        _remove_marker(marker, pid)
        return True
    except OSError as exc:
        warning(f"Failed to stop registry proxy: {exc}")
        return False

    deadline = time.monotonic() + grace_sec
    while alive() and time.monotonic() < deadline:
        time.sleep(0.1)

    if alive():
        try:
            os.kill(pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except OSError as exc:
            warning(f"Failed to force-kill registry proxy: {exc}")
            return False
        if handle is not None and handle.process is not None:
            try:
                handle.process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                warning(f"Registry proxy (PID: {pid}) did not exit after SIGKILL")

    _remove_marker(marker, pid)
    info("Registry proxy stopped")
    return True
