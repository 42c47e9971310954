from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from buildcache import buildx
from buildcache.backends import REGISTRY_PROXY, restore_backend
from buildcache.cache_cli import CacheCommandError
from buildcache.commands.common import describe_config_error, new_phase, settings_kwargs
from buildcache.config import BuildRequest, ConfigurationError, parse_list, parse_multiline
from buildcache.proxy.models import LOOPBACK_TOPOLOGY
from buildcache.proxy.process import ProxyError
from buildcache.proxy.topology import CONTAINER_DRIVER, topology_for_driver
from buildcache.runtime import info, warning


def _request_from_args(args: Any) -> BuildRequest:
    kwargs = settings_kwargs(args)
    kwargs.update(
        {
            "image": getattr(args, "image", None) or "",
            "context": getattr(args, "context", None) or ".",
            "dockerfile": getattr(args, "dockerfile", None) or "Dockerfile",
            "tags": parse_list(getattr(args, "tags", None)) or ["latest"],
            "build_args": parse_multiline(getattr(args, "build_args", None)),
            "secrets": parse_multiline(getattr(args, "secrets", None)),
            "target": getattr(args, "target", None) or "",
            "platforms": getattr(args, "platforms", None) or "",
            "push": bool(getattr(args, "push", False)),
            "load": getattr(args, "load", None) is not False,
            "no_cache": bool(getattr(args, "no_cache", False)),
            "driver": getattr(args, "driver", None) or "docker-container",
            "driver_opts": parse_multiline(getattr(args, "driver_opts", None)),
            "buildkitd_config_inline": getattr(args, "buildkitd_config_inline", None) or "",
        }
    )
    if not kwargs["image"]:
        raise ConfigurationError("--image is required")
    return BuildRequest(**kwargs)


def run(args: Any) -> int:
    phase_run, state, root = new_phase("build", args)
    emit_json = bool(getattr(args, "json", False))

    try:
        request = _request_from_args(args)
    except (ConfigurationError, ValidationError) as exc:
        message = describe_config_error(exc)
        warning(message)
        phase_run.add_note(message)
        return phase_run.finalize("fail", emit_json=emit_json)

    registry_mode = request.cache_backend == REGISTRY_PROXY
    step_dir = phase_run.run_root
    metadata_file = step_dir / "docker-metadata.json"
    try:
        builder = buildx.setup_builder(
            request.driver,
            request.driver_opts,
            request.buildkitd_config_inline,
            step_dir,
            registry_mode=registry_mode,
        )
        phase_run.set_output("buildx-name", builder)
        phase_run.set_output("buildx-platforms", buildx.get_builder_platforms(builder))
        buildx.setup_qemu_if_needed(request.platforms)

        topology = LOOPBACK_TOPOLOGY
        if registry_mode:
            driver = buildx.effective_driver(request.driver)
            if driver == CONTAINER_DRIVER:
                buildx.bootstrap_builder(builder)
            topology = topology_for_driver(driver, builder)

        outcome = restore_backend(request, topology, state, root)
        for name, value in outcome.outputs().items():
            phase_run.set_output(name, value)

        buildx.build_image(
            buildx.BuildOptions(
                dockerfile=request.dockerfile,
                context=Path(request.context).resolve(),
                image=request.image,
                builder=builder,
                metadata_file=metadata_file,
                tags=request.tags,
                build_args=request.build_args,
                secrets=request.secrets,
                target=request.target,
                platforms=request.platforms,
                push=request.push,
                load=request.load,
                no_cache=request.no_cache,
                cache=outcome.directives,
            )
        )
    except (ConfigurationError, ValidationError) as exc:
        message = describe_config_error(exc)
        warning(message)
        phase_run.add_note(message)
        return phase_run.finalize("fail", emit_json=emit_json)
    except (ProxyError, buildx.BuildError, CacheCommandError, subprocess.SubprocessError, OSError, ValueError) as exc:
        warning(str(exc))
        phase_run.add_note(str(exc))
        return phase_run.finalize("fail", emit_json=emit_json)

    metadata = buildx.read_metadata(metadata_file)
    phase_run.set_output("image-id", metadata["image_id"])
    phase_run.set_output("digest", metadata["digest"])
    info(f"Build complete for {request.image}")
    phase_run.add_note(f"Built {request.image} with {outcome.backend} cache (tag: {outcome.cache_tag}).")
    return phase_run.finalize("pass", emit_json=emit_json)
