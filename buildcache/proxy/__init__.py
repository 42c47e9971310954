from buildcache.proxy.models import (
    CacheDirective,
    NetworkTopology,
    ProxyHandle,
    UNKNOWN_PID,
)
from buildcache.proxy.process import (
    ProxyError,
    pid_marker_path,
    proxy_log_path,
    start_proxy,
    stop_proxy,
    wait_until_ready,
)
from buildcache.proxy.refs import build_ref, local_cache_directives, registry_cache_directives
from buildcache.proxy.topology import resolve_topology, topology_for_driver

__all__ = [
    "CacheDirective",
    "NetworkTopology",
    "ProxyError",
    "ProxyHandle",
    "UNKNOWN_PID",
    "build_ref",
    "local_cache_directives",
    "pid_marker_path",
    "proxy_log_path",
    "registry_cache_directives",
    "resolve_topology",
    "start_proxy",
    "stop_proxy",
    "topology_for_driver",
    "wait_until_ready",
]
