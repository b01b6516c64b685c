"""A command line tool for exercising the Docker client."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import shlex
import sys
from collections.abc import Iterable, Sequence

from crankshaft.container import Container
from crankshaft.docker import Docker
from crankshaft.engine import DockerError

LOG_ENV = "CRANKSHAFT_LOG"
"""The environment variable that, when set, names the log level."""

_OFF = logging.CRITICAL + 10
_LEVELS = (_OFF, logging.ERROR, logging.WARNING, logging.INFO, logging.DEBUG, logging.DEBUG)
_DEFAULT_LEVEL_INDEX = 1


def build_parser() -> argparse.ArgumentParser:
    """Returns the argument parser of the command."""
    parser = argparse.ArgumentParser(
        prog="docker-driver", description="Drive a Docker daemon from the command line."
    )
    parser.add_argument(
        "-v", "--verbose", action="count", default=0, help="increase logging verbosity"
    )
    parser.add_argument(
        "-q", "--quiet", action="count", default=0, help="decrease logging verbosity"
    )
    commands = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    create = commands.add_parser("create-container", help="create a container")
    create.add_argument("image", help="the name of the image")
    create.add_argument("name", help="the name of the container")
    create.add_argument("-t", "--tag", default="latest", help="the tag for the image")

    run_cmd = commands.add_parser(
        "run-container", help="run a container with a command and print the result"
    )
    run_cmd.add_argument("image", help="the name of the image")
    run_cmd.add_argument("name", help="the name of the container")
    run_cmd.add_argument("command_line", metavar="command", help="the command to run")
    run_cmd.add_argument("-t", "--tag", default="latest", help="the tag for the image")

    remove = commands.add_parser("remove-container", help="remove a container")
    remove.add_argument("name", help="the name of the container")
    remove.add_argument(
        "-f", "--force", action="store_true", default=False, help="force the removal"
    )

    ensure = commands.add_parser(
        "ensure-image", help="make sure an image is stored, pulling it if needed"
    )
    ensure.add_argument("image", help="the name of the image (tag defaults to `latest`)")

    commands.add_parser("list-images", help="list all images")

    remove_image = commands.add_parser("remove-image", help="remove an image")
    remove_image.add_argument("image", help="the name of the image")
    remove_image.add_argument("-t", "--tag", default="latest", help="the tag for the image")

    commands.add_parser("remove-all-images", help="remove all images")
    return parser


async def create_container(
    docker: Docker,
    image: str,
    tag: str,
    name: str,
    program: str,
    args: Iterable[str],
) -> Container:
    """Creates a container from `image:tag` that runs `program` with `args`."""
    return await (
        docker.container_builder()
        .image(f"{image}:{tag}")
        .program(program)
        .args(args)
        .try_build(name)
    )


async def _dispatch(args: argparse.Namespace, docker: Docker) -> None:
    command = args.command
    if command == "create-container":
        await create_container(
            docker,
            args.image,
            args.tag,
            args.name,
            "/usr/bin/env",
            ["bash", "-c", "echo 'hello, world!'"],
        )
    elif command == "run-container":
        try:
            words = shlex.split(args.command_line)
        except ValueError:
            words = []
        if not words:
            raise ValueError(f"invalid command `{args.command_line}`")
        program, *rest = words
        container = await create_container(
            docker, args.image, args.tag, args.name, program, rest
        )
        status = await container.run(args.name, lambda: None)
        print(f"exit code: {status}")
    elif command == "remove-container":
        container = docker.container_from_name(args.name, None, None)
        if args.force:
            await container.force_remove()
        else:
            await container.remove()
    elif command == "ensure-image":
        await docker.ensure_image(args.image)
    elif command == "list-images":
        await docker.list_images()
    elif command == "remove-image":
        await docker.remove_image(args.image, args.tag)
    elif command == "remove-all-images":
        await docker.remove_all_images()
    else:
        raise ValueError(f"unknown command `{command}`")


async def run(args: argparse.Namespace, docker: Docker | None = None) -> None:
    """Carries out the parsed command; connects with defaults when `docker` is None."""
    if docker is not None:
        await _dispatch(args, docker)
        return
    async with Docker.with_defaults() as owned:
        await _dispatch(args, owned)


def _configure_logging(args: argparse.Namespace) -> None:
    named = os.environ.get(LOG_ENV)
    level = logging.getLevelName(named.upper()) if named else None
    if not isinstance(level, int):
        index = _DEFAULT_LEVEL_INDEX + args.verbose - args.quiet
        level = _LEVELS[max(0, min(index, len(_LEVELS) - 1))]
    logging.basicConfig(level=level)


def main(argv: Sequence[str] | None = None) -> int:
    """Runs the command line tool and returns its exit status."""
    args = build_parser().parse_args(argv)
    _configure_logging(args)
    try:
        asyncio.run(run(args))
    except (DockerError, ValueError) as error:
        print(f"error: {error}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())