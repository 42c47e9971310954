from __future__ import annotations

import time
from http.client import HTTPException
from typing import Callable, Optional
from urllib.error import HTTPError, URLError
from urllib.request import ProxyHandler, Request, build_opener

from buildcache.proxy.models import ALL_INTERFACES, LOOPBACK


POLL_INTERVAL_SEC = 0.5
PROBE_TIMEOUT_SEC = 1.0
# A registry that requires auth for /v2/ is still a registry.
READY_STATUSES = (200, 401)

# The probe targets a loopback/gateway address; never route it through HTTP(S)_PROXY.
_opener = build_opener(ProxyHandler({}))


def probe_host(bind_host: str) -> str:
    if bind_host in ("", ALL_INTERFACES, "::"):
        return LOOPBACK
    return bind_host


def registry_status(host: str, port: int, timeout_sec: float = PROBE_TIMEOUT_SEC) -> Optional[int]:
    """HTTP status of ``GET /v2/``, or None when nothing answers."""
    request = Request(url=f"http://{host}:{port}/v2/", method="GET")
    try:
        with _opener.open(request, timeout=timeout_sec) as response:  # nosec B310
            return int(response.status)
    except HTTPError as exc:
        return int(exc.code)
    except (URLError, HTTPException, OSError, ValueError):
        return None


def probe_registry(host: str, port: int, timeout_sec: float = PROBE_TIMEOUT_SEC) -> bool:
    return registry_status(host, port, timeout_sec) in READY_STATUSES


def poll_until_ready(
    host: str,
    port: int,
    timeout_sec: float,
    interval_sec: float = POLL_INTERVAL_SEC,
    is_alive: Optional[Callable[[], bool]] = None,
) -> tuple[bool, str]:
    """Poll the registry root until it answers 200/401.

    Returns ``(True, "ready")``, ``(False, "exited")`` when ``is_alive`` reports
    the process gone first, or ``(False, "timeout")``. Sleeps are clipped to
    the deadline so a timeout lands within one interval of ``timeout_sec``.
    """
    deadline = time.monotonic() + timeout_sec
    while True:
        remaining = deadline - time.monotonic()
        probe_timeout = min(PROBE_TIMEOUT_SEC, max(remaining, 0.05))
        if probe_registry(host, port, timeout_sec=probe_timeout):
            return True, "ready"
        if is_alive is not None and not is_alive():
            return False, "exited"
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return False, "timeout"
        time.sleep(min(interval_sec, remaining))
