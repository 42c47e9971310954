"""Remote build cache for docker buildx, backed by the boringcache CLI."""

__version__ = "0.1.0"
