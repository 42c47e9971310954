from __future__ import annotations

import subprocess
from typing import Any

from pydantic import ValidationError

from buildcache.backends import REGISTRY_PROXY, restore_backend
from buildcache.commands.common import describe_config_error, new_phase, settings_kwargs
from buildcache.config import ConfigurationError, RestoreRequest
from buildcache.proxy.models import LOOPBACK_TOPOLOGY
from buildcache.proxy.process import ProxyError
from buildcache.proxy.topology import topology_for_driver
from buildcache.runtime import notice, warning


def _request_from_args(args: Any) -> RestoreRequest:
    kwargs = settings_kwargs(args)
    kwargs["builder"] = getattr(args, "builder", None) or None
    kwargs["driver"] = getattr(args, "driver", None) or "docker-container"
    return RestoreRequest(**kwargs)


def run(args: Any) -> int:
    phase_run, state, root = new_phase("restore", args)
    emit_json = bool(getattr(args, "json", False))

    try:
        request = _request_from_args(args)
    except (ConfigurationError, ValidationError) as exc:
        message = describe_config_error(exc)
        warning(message)
        phase_run.add_note(message)
        return phase_run.finalize("fail", emit_json=emit_json)

    topology = LOOPBACK_TOPOLOGY
    if request.cache_backend == REGISTRY_PROXY:
        if request.builder:
            topology = topology_for_driver(request.driver, request.builder)
        else:
            notice("No --builder given; assuming the builder shares the host network")

    try:
        outcome = restore_backend(request, topology, state, root)
    except (ConfigurationError, ProxyError, subprocess.SubprocessError, OSError, ValueError) as exc:
        warning(str(exc))
        phase_run.add_note(str(exc))
        return phase_run.finalize("fail", emit_json=emit_json)

    for name, value in outcome.outputs().items():
        phase_run.set_output(name, value)
    phase_run.add_note(
        f"{outcome.backend} cache ready (tag: {outcome.cache_tag}); "
        f"cache-from={outcome.directives.cache_from} cache-to={outcome.directives.cache_to}"
    )
    return phase_run.finalize("pass", emit_json=emit_json)
