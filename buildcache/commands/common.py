from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import ValidationError

from buildcache import config
from buildcache.config import ConfigurationError
from buildcache.runtime import PhaseRun
from buildcache.state import PhaseState


def new_phase(phase: str, args: Any) -> tuple[PhaseRun, PhaseState, Path]:
    """Phase record and state for the step named by ``--state-key``, plus the run root.

    Proxy log and PID markers live in the run root so every step on a port
    sees the same marker.
    """
    key = config.state_key(getattr(args, "state_key", None))
    phase_run = PhaseRun(phase=phase, run_root=config.step_root(key), output_file=config.output_file())
    return phase_run, PhaseState(config.state_file(key)), config.run_root()


def settings_kwargs(args: Any) -> dict[str, Any]:
    """Map the cache flags shared by every restore-style command onto model fields."""
    image = getattr(args, "image", None) or ""
    kwargs: dict[str, Any] = {
        "workspace": config.resolve_workspace(getattr(args, "workspace", None)),
        "cache_tag": getattr(args, "cache_tag", None) or config.default_cache_tag(image),
        "cache_backend": getattr(args, "cache_backend", None) or "local",
        "cache_mode": getattr(args, "cache_mode", None) or "max",
        "proxy_port": int(getattr(args, "proxy_port", None) or config.DEFAULT_PROXY_PORT),
        "readiness_timeout_sec": float(
            getattr(args, "readiness_timeout", None) or config.DEFAULT_READINESS_TIMEOUT_SEC
        ),
        "verbose": bool(getattr(args, "verbose", False)),
        "no_git": bool(getattr(args, "no_git", False)),
        "no_platform": bool(getattr(args, "no_platform", False)),
        "exclude": getattr(args, "exclude", None) or "",
        "cache_dir_from": getattr(args, "cache_dir_from", None) or None,
        "cache_dir_to": getattr(args, "cache_dir_to", None) or None,
        "state_key": config.state_key(getattr(args, "state_key", None)),
    }
    return kwargs


def describe_config_error(exc: Exception) -> str:
    if isinstance(exc, ValidationError):
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'input'}: {error['msg']}"
            for error in exc.errors()
        )
        return f"Invalid configuration: {problems}"
    if isinstance(exc, ConfigurationError):
        return str(exc)
    return f"Invalid configuration: {exc}"
