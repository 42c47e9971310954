from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from buildcache.proxy.readiness import poll_until_ready, probe_host, probe_registry, registry_status
from tests.utils.fake_cli import find_free_port


@contextmanager
def _registry_stub(status: int):
    class Handler(BaseHTTPRequestHandler):
        def do_GET(self):
            self.send_response(status)
            self.send_header("Content-Length", "0")
            self.end_headers()

        def log_message(self, *args):
            pass

    server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield server.server_address[1]
    finally:
        server.shutdown()
        server.server_close()


def test_probe_host_maps_wildcard_bind_to_loopback():
    assert probe_host("0.0.0.0") == "127.0.0.1"
    assert probe_host("") == "127.0.0.1"
    assert probe_host("172.17.0.1") == "172.17.0.1"


def test_registry_status_reports_error_codes():
    with _registry_stub(404) as port:
        assert registry_status("127.0.0.1", port) == 404
        assert probe_registry("127.0.0.1", port) is False


def test_nothing_listening_is_not_ready():
    assert registry_status("127.0.0.1", find_free_port(), timeout_sec=0.5) is None


def test_ready_on_200_within_one_interval():
    with _registry_stub(200) as port:
        started = time.monotonic()
        ready, reason = poll_until_ready("127.0.0.1", port, timeout_sec=5, interval_sec=0.5)
        elapsed = time.monotonic() - started
    assert (ready, reason) == (True, "ready")
    assert elapsed < 0.5


def test_unauthorized_registry_counts_as_ready():
    with _registry_stub(401) as port:
        assert poll_until_ready("127.0.0.1", port, timeout_sec=2)[0] is True


def test_404_times_out_at_deadline():
    timeout = 1.0
    interval = 0.2
    with _registry_stub(404) as port:
        started = time.monotonic()
        ready, reason = poll_until_ready("127.0.0.1", port, timeout_sec=timeout, interval_sec=interval)
        elapsed = time.monotonic() - started
    assert (ready, reason) == (False, "timeout")
    assert elapsed >= timeout
    # One interval of allowance plus scheduler jitter.
    assert elapsed <= timeout + interval + 0.3


def test_dead_process_stops_polling_early():
    calls = []

    def is_alive():
        calls.append(1)
        return len(calls) < 2

    started = time.monotonic()
    ready, reason = poll_until_ready(
        "127.0.0.1",
        find_free_port(),
        timeout_sec=10,
        interval_sec=0.1,
        is_alive=is_alive,
    )
    assert (ready, reason) == (False, "exited")
    assert time.monotonic() - started < 5
