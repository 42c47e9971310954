from __future__ import annotations

import argparse
from collections.abc import Callable

from buildcache import config
from buildcache.commands import build, post, restore, save


CommandHandler = Callable[[argparse.Namespace], int]


def _add_json_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the phase summary JSON to stdout in addition to writing it under the run directory.",
    )


def _add_state_key_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--state-key",
        required=False,
        help=(
            "Name pairing a restore/build step with its save/post step when one run "
            f"has several (default: ${config.STATE_KEY_ENV})"
        ),
    )


def _add_cache_identity_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--workspace",
        required=False,
        help=f"Cache workspace <org>/<project> (default: ${config.DEFAULT_WORKSPACE_ENV})",
    )
    parser.add_argument("--cache-tag", required=False, help="Cache tag (default: slugified image name)")
    parser.add_argument("--verbose", action="store_true", help="Pass --verbose to the cache CLI")
    parser.add_argument("--exclude", required=False, help="Exclude pattern for cache save")


def _add_backend_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--cache-backend",
        choices=["local", "registry-proxy"],
        default="local",
        help="Cache through local directories or through the registry proxy",
    )
    parser.add_argument("--cache-mode", choices=["min", "max"], default="max", help="Cache export mode")
    parser.add_argument(
        "--proxy-port",
        type=int,
        default=config.DEFAULT_PROXY_PORT,
        help="Port the registry proxy listens on",
    )
    parser.add_argument(
        "--readiness-timeout",
        type=float,
        default=config.DEFAULT_READINESS_TIMEOUT_SEC,
        help="Seconds to wait for the registry proxy to answer",
    )
    parser.add_argument("--no-git", action="store_true", help="Disable git context enrichment in the proxy")
    parser.add_argument(
        "--no-platform",
        action="store_true",
        help="Disable platform context enrichment in the proxy",
    )
    parser.add_argument("--cache-dir-from", required=False, help="Local backend import directory")
    parser.add_argument("--cache-dir-to", required=False, help="Local backend export directory")


def _add_builder_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--driver", default="docker-container", help="Buildx driver")


def _configure_build(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--image", required=True, help="Image name without tag")
    parser.add_argument("--context", default=".", help="Build context directory")
    parser.add_argument("--dockerfile", default="Dockerfile", help="Dockerfile path relative to context")
    parser.add_argument("--tags", default="latest", help="Comma-separated image tags")
    parser.add_argument("--build-args", default="", help="Newline-separated KEY=VALUE build args")
    parser.add_argument("--secrets", default="", help="Newline-separated buildx secret specs")
    parser.add_argument("--target", default="", help="Target build stage")
    parser.add_argument("--platforms", default="", help="Comma-separated target platforms")
    parser.add_argument("--push", action="store_true", help="Push the image after building")
    parser.add_argument(
        "--load",
        dest="load",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Load the image into the local image store (ignored for multi-platform builds)",
    )
    parser.add_argument("--no-cache", action="store_true", help="Build without using the layer cache")
    parser.add_argument("--driver-opts", default="", help="Newline-separated buildx driver options")
    parser.add_argument("--buildkitd-config-inline", default="", help="Inline buildkitd.toml content")
    _add_builder_args(parser)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="buildcache",
        description="Remote build cache for docker buildx, one subcommand per pipeline phase",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    build_cmd = subparsers.add_parser("build", help="Set up the builder, restore the cache and build the image")
    _add_cache_identity_args(build_cmd)
    _add_backend_args(build_cmd)
    _configure_build(build_cmd)
    _add_state_key_arg(build_cmd)
    _add_json_arg(build_cmd)

    post_cmd = subparsers.add_parser("post", help="Save phase for `build`: stop the proxy or upload the cache")
    _add_state_key_arg(post_cmd)
    _add_json_arg(post_cmd)

    restore_cmd = subparsers.add_parser(
        "restore",
        help="Restore the cache (or start the proxy) and print cache directives for your own build",
    )
    _add_cache_identity_args(restore_cmd)
    _add_backend_args(restore_cmd)
    restore_cmd.add_argument("--image", required=False, help="Image name used to derive the cache tag")
    restore_cmd.add_argument(
        "--builder",
        required=False,
        help="Existing buildx builder whose network decides how the proxy is reached",
    )
    _add_builder_args(restore_cmd)
    _add_state_key_arg(restore_cmd)
    _add_json_arg(restore_cmd)

    save_cmd = subparsers.add_parser("save", help="Save phase for `restore`")
    _add_cache_identity_args(save_cmd)
    save_cmd.add_argument("--image", required=False, help="Image name used to derive the cache tag")
    save_cmd.add_argument("--cache-dir-to", required=False, help="Directory to upload when no state exists")
    _add_state_key_arg(save_cmd)
    _add_json_arg(save_cmd)

    return parser


def _build_handlers() -> dict[str, CommandHandler]:
    return {
        "build": build.run,
        "post": post.run,
        "restore": restore.run,
        "save": save.run,
    }


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    handler = _build_handlers().get(args.command)
    if handler is None:
        parser.error(f"No handler wired for command '{args.command}'")
    return handler(args)


if __name__ == "__main__":
    raise SystemExit(main())
