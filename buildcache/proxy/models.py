from __future__ import annotations

import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


LOOPBACK = "127.0.0.1"
ALL_INTERFACES = "0.0.0.0"
DEFAULT_BRIDGE_GATEWAY = "172.17.0.1"
HOST_NETWORK_MODE = "host"
BRIDGE_NETWORK_MODE = "bridge"
UNKNOWN_PID = -1


@dataclass
class ProxyHandle:
    pid: int
    bind_host: str
    port: int
    owned: bool = False
    log_path: Optional[Path] = None
    process: Optional[subprocess.Popen] = field(default=None, repr=False, compare=False)

    @property
    def is_known(self) -> bool:
        return self.pid > 0


@dataclass(frozen=True)
class NetworkTopology:
    network_mode: str
    bind_host: str
    ref_host: str

    @property
    def is_host(self) -> bool:
        return self.network_mode == HOST_NETWORK_MODE


@dataclass(frozen=True)
class CacheDirective:
    cache_from: str
    cache_to: str


LOOPBACK_TOPOLOGY = NetworkTopology(network_mode=HOST_NETWORK_MODE, bind_host=LOOPBACK, ref_host=LOOPBACK)
BRIDGE_FALLBACK_TOPOLOGY = NetworkTopology(
    network_mode=BRIDGE_NETWORK_MODE,
    bind_host=ALL_INTERFACES,
    ref_host=DEFAULT_BRIDGE_GATEWAY,
)
