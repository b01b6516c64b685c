"""Creating, running and removing Docker containers."""

from __future__ import annotations

import contextlib
import io
import logging
import os
import tarfile
from collections.abc import AsyncGenerator, Callable, Iterable, Mapping
from pathlib import Path
from typing import Any, BinaryIO

from crankshaft.engine import (
    ContainerWaitError,
    EngineClient,
    LogStream,
    MessageError,
    MissingBuilderFieldError,
)

logger = logging.getLogger(__name__)

_UPLOAD_MODE = 0o644


def _optional_path(path: str | os.PathLike[str] | None) -> Path | None:
    return None if path is None else Path(path)


class Container:
    """A created container on a Docker daemon."""

    def __init__(
        self,
        client: EngineClient,
        id: str,
        stdout: str | os.PathLike[str] | None = None,
        stderr: str | os.PathLike[str] | None = None,
    ) -> None:
        self.client = client
        self.id = id
        self.stdout = _optional_path(stdout)
        self.stderr = _optional_path(stderr)

    def __repr__(self) -> str:
        return f"Container(id={self.id!r}, stdout={self.stdout!r}, stderr={self.stderr!r})"

    async def upload_file(self, path: str, contents: bytes) -> None:
        """Places `contents` at `path` inside the container."""
        path = path.lstrip("/")
        info = tarfile.TarInfo(name=path)
        info.size = len(contents)
        info.mode = _UPLOAD_MODE

        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w", format=tarfile.GNU_FORMAT) as archive:
            archive.addfile(info, io.BytesIO(bytes(contents)))

        await self.client.upload_to_container(self.id, "/", buffer.getvalue())

    async def run(self, name: str, started: Callable[[], Any]) -> int:
        """Starts the container, waits for it to exit and returns its exit code.

        `started` is called once the container has been started. Output is
        written to the stdout and stderr files, where those are set.
        """
        stream: AsyncGenerator[Any, None] | None = None
        if self.stdout is not None or self.stderr is not None:
            logger.debug("attaching to container `%s` (task `%s`)", self.id, name)
            stream = await self.client.attach_container(
                self.id, stdout=self.stdout is not None, stderr=self.stderr is not None
            )

        async with contextlib.AsyncExitStack() as stack:
            if stream is not None:
                stack.push_async_callback(stream.aclose)

            logger.info("starting container `%s` (task `%s`)", self.id, name)
            await self.client.start_container(self.id)
            started()
            logger.info("container `%s` (task `%s`) has started", self.id, name)

            if stream is not None:
                await self._write_output(stream)

        logger.debug("waiting for container `%s` (task `%s`) to exit", self.id, name)
        exit_code = await self._wait()
        logger.info(
            "container `%s` (task `%s`) has exited with exit status: %d", self.id, name, exit_code
        )
        return exit_code

    async def _write_output(self, stream: AsyncGenerator[Any, None]) -> None:
        with contextlib.ExitStack() as files:
            sinks: dict[LogStream, tuple[BinaryIO, Path, str]] = {}
            for kind, path, label in (
                (LogStream.STDOUT, self.stdout, "stdout"),
                (LogStream.STDERR, self.stderr, "stderr"),
            ):
                if path is None:
                    continue
                try:
                    handle = files.enter_context(open(path, "wb"))
                except OSError as error:
                    raise MessageError(
                        f"failed to create {label} file `{path}`: {error}"
                    ) from error
                sinks[kind] = (handle, path, label)

            async for output in stream:
                sink = sinks.get(output.stream)
                if sink is None:
                    continue
                handle, path, label = sink
                try:
                    handle.write(output.message)
                except OSError as error:
                    raise MessageError(
                        f"failed to write to {label} file `{path}`: {error}"
                    ) from error

    async def _wait(self) -> int:
        exit_code: int | None = None
        try:
            result = await self.client.wait_container(self.id)
        except ContainerWaitError as error:
            exit_code = error.code
        else:
            if result is not None:
                exit_code = result.get("StatusCode", 0)

        if exit_code is None:
            details = await self.client.inspect_container(self.id)
            state = (details or {}).get("State")
            if state is None:
                raise MessageError("Docker reported a container without a state")
            exit_code = state.get("ExitCode")
            if exit_code is None:
                raise MessageError("Docker reported a finished container without an exit code")

        return int(exit_code)

    async def _remove(self, force: bool) -> None:
        await self.client.remove_container(self.id, force=force)

    async def remove(self) -> None:
        """Removes the container without force."""
        logger.debug("removing container `%s`", self.id)
        await self._remove(False)

    async def force_remove(self) -> None:
        """Removes the container, stopping it first if it is running."""
        logger.debug("force removing container `%s`", self.id)
        await self._remove(True)


class ContainerBuilder:
    """Collects the settings of a container and then creates it."""

    def __init__(self, client: EngineClient) -> None:
        self.client = client
        self._image: str | None = None
        self._program: str | None = None
        self._args: list[str] = []
        self._stdout: Path | None = None
        self._stderr: Path | None = None
        self._env: dict[str, str] = {}
        self._work_dir: str | None = None
        self._host_config: Mapping[str, Any] | None = None

    def image(self, image: str) -> ContainerBuilder:
        """Sets the image, such as `ubuntu:latest`."""
        self._image = str(image)
        return self

    def program(self, program: str) -> ContainerBuilder:
        """Sets the program to run."""
        self._program = str(program)
        return self

    def arg(self, arg: str) -> ContainerBuilder:
        """Adds one argument."""
        self._args.append(str(arg))
        return self

    def args(self, args: Iterable[str]) -> ContainerBuilder:
        """Adds several arguments."""
        self._args.extend(str(arg) for arg in args)
        return self

    def stdout(self, path: str | os.PathLike[str]) -> ContainerBuilder:
        """Sets the file the container's stdout is written to."""
        self._stdout = Path(path)
        return self

    def stderr(self, path: str | os.PathLike[str]) -> ContainerBuilder:
        """Sets the file the container's stderr is written to."""
        self._stderr = Path(path)
        return self

    def env(self, name: str, value: str) -> ContainerBuilder:
        """Sets one environment variable."""
        self._env[str(name)] = str(value)
        return self

    def envs(
        self, variables: Mapping[str, str] | Iterable[tuple[str, str]]
    ) -> ContainerBuilder:
        """Sets several environment variables."""
        items = variables.items() if isinstance(variables, Mapping) else variables
        for name, value in items:
            self._env[str(name)] = str(value)
        return self

    def work_dir(self, work_dir: str) -> ContainerBuilder:
        """Sets the working directory."""
        self._work_dir = str(work_dir)
        return self

    def host_config(self, host_config: Mapping[str, Any]) -> ContainerBuilder:
        """Sets the host configuration sent as `HostConfig`."""
        self._host_config = host_config
        return self

    async def try_build(self, name: str) -> Container:
        """Creates the container (without starting it)."""
        if self._image is None:
            raise MissingBuilderFieldError("image")
        if self._program is None:
            raise MissingBuilderFieldError("program")

        body: dict[str, Any] = {
            "Cmd": [self._program, *self._args],
            "Image": self._image,
            # The full command is given, so the image's entrypoint is overridden.
            "Entrypoint": [""],
            "AttachStdout": self._stdout is not None,
            "AttachStderr": self._stderr is not None,
            "Env": [f"{key}={value}" for key, value in self._env.items()],
        }
        if self._work_dir is not None:
            body["WorkingDir"] = self._work_dir
        if self._host_config is not None:
            body["HostConfig"] = dict(self._host_config)

        response = await self.client.create_container(name, body)
        container_id = response["Id"]
        logger.info("created container `%s` (task `%s`)", container_id, name)
        for warning in response.get("Warnings") or []:
            logger.warning("%s", warning)

        return Container(self.client, container_id, self._stdout, self._stderr)