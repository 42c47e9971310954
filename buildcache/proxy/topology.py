from __future__ import annotations

from typing import Any, Optional

import docker
from docker.errors import DockerException

from buildcache.proxy.models import (
    ALL_INTERFACES,
    BRIDGE_FALLBACK_TOPOLOGY,
    BRIDGE_NETWORK_MODE,
    HOST_NETWORK_MODE,
    LOOPBACK_TOPOLOGY,
    NetworkTopology,
)
from buildcache.runtime import info, warning


CONTAINER_DRIVER = "docker-container"


def builder_container_name(builder: str) -> str:
    # buildx names the first node of a docker-container builder "<builder>0".
    return f"buildx_buildkit_{builder}0"


def _network_gateway(client: Any, attrs: dict[str, Any], network_mode: str) -> Optional[str]:
    networks = (attrs.get("NetworkSettings") or {}).get("Networks") or {}
    name = network_mode if network_mode in networks else next(iter(networks), None)
    if name:
        gateway = (networks.get(name) or {}).get("Gateway")
        if gateway:
            return gateway

    network = client.networks.get(name or network_mode)
    for pool in (network.attrs.get("IPAM") or {}).get("Config") or []:
        gateway = (pool or {}).get("Gateway")
        if gateway:
            return gateway
    return None


def resolve_topology(container_name: str, client: Any = None) -> NetworkTopology:
    """Work out how the builder container reaches a proxy started on this host.

    Host networking shares loopback with the proxy. Any other network needs
    the proxy bound on all interfaces and addressed through the network
    gateway. Introspection problems never abort: the bridge default is used.
    """
    try:
        client = client or docker.from_env()
        attrs = client.containers.get(container_name).attrs or {}
    except DockerException as exc:
        warning(f"Could not inspect builder container '{container_name}': {exc}; assuming bridge network")
        return BRIDGE_FALLBACK_TOPOLOGY

    network_mode = (attrs.get("HostConfig") or {}).get("NetworkMode") or ""
    if not network_mode:
        warning(f"Builder container '{container_name}' reports no network mode; assuming bridge network")
        return BRIDGE_FALLBACK_TOPOLOGY
    if network_mode == HOST_NETWORK_MODE:
        info(f"Builder '{container_name}' uses host networking; proxy stays on loopback")
        return LOOPBACK_TOPOLOGY
    if network_mode == "default":
        network_mode = BRIDGE_NETWORK_MODE

    try:
        gateway = _network_gateway(client, attrs, network_mode)
    except DockerException as exc:
        warning(f"Could not inspect network '{network_mode}': {exc}")
        gateway = None

    if not gateway:
        warning(
            f"No gateway found for network '{network_mode}'; "
            f"using default {BRIDGE_FALLBACK_TOPOLOGY.ref_host}"
        )
        return NetworkTopology(
            network_mode=network_mode,
            bind_host=ALL_INTERFACES,
            ref_host=BRIDGE_FALLBACK_TOPOLOGY.ref_host,
        )

    info(f"Builder '{container_name}' is on network '{network_mode}' (gateway {gateway})")
    return NetworkTopology(network_mode=network_mode, bind_host=ALL_INTERFACES, ref_host=gateway)


def topology_for_driver(driver: str, builder: Optional[str], client: Any = None) -> NetworkTopology:
    if driver != CONTAINER_DRIVER or not builder:
        info(f"Builder driver '{driver}' does not run in a container; assuming loopback")
        return LOOPBACK_TOPOLOGY
    return resolve_topology(builder_container_name(builder), client=client)
