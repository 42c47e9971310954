from __future__ import annotations

from pathlib import Path

from buildcache.proxy.models import CacheDirective


CACHE_MODES = ("min", "max")


def _check_mode(mode: str) -> None:
    if mode not in CACHE_MODES:
        raise ValueError(f"Unsupported cache mode '{mode}'; expected one of {', '.join(CACHE_MODES)}")


def build_ref(host: str, port: int, tag: str) -> str:
    return f"{host}:{port}/{tag}"


def registry_cache_directives(ref: str, mode: str) -> CacheDirective:
    """Import/export directives pointing buildx at the local plaintext registry proxy."""
    _check_mode(mode)
    return CacheDirective(
        cache_from=f"type=registry,ref={ref},registry.insecure=true",
        cache_to=f"type=registry,ref={ref},mode={mode},registry.insecure=true",
    )


def local_cache_directives(from_dir: Path | str, to_dir: Path | str, mode: str) -> CacheDirective:
    """Import from ``from_dir``, export to ``to_dir``; the two must differ."""
    _check_mode(mode)
    if Path(from_dir).resolve() == Path(to_dir).resolve():
        raise ValueError(f"Cache import and export directories must differ (both are {from_dir})")
    return CacheDirective(
        cache_from=f"type=local,src={from_dir}",
        cache_to=f"type=local,dest={to_dir},mode={mode}",
    )
