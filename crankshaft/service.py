"""Running tasks as single-replica Docker swarm services."""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
import os
from collections.abc import Callable, Iterable, Mapping
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

TASK_POLL_INTERVAL = 0.1
"""Seconds to wait before asking again when a service has no task yet."""

START_POLL_INTERVAL = 1.0
"""Seconds to wait before asking again when a task has not yet started."""


class TaskState(enum.Enum):
    """The state of a swarm task."""

    NEW = "new"
    ALLOCATED = "allocated"
    PENDING = "pending"
    ASSIGNED = "assigned"
    ACCEPTED = "accepted"
    PREPARING = "preparing"
    READY = "ready"
    STARTING = "starting"
    RUNNING = "running"
    COMPLETE = "complete"
    SHUTDOWN = "shutdown"
    FAILED = "failed"
    REJECTED = "rejected"
    REMOVE = "remove"
    ORPHANED = "orphaned"


_WAITING = frozenset(
    {
        TaskState.NEW,
        TaskState.PENDING,
        TaskState.ALLOCATED,
        TaskState.ASSIGNED,
        TaskState.ACCEPTED,
        TaskState.READY,
        TaskState.PREPARING,
    }
)
_ACTIVE = frozenset({TaskState.STARTING, TaskState.RUNNING})
_FAILED = frozenset(
    {
        TaskState.FAILED,
        TaskState.SHUTDOWN,
        TaskState.REJECTED,
        TaskState.ORPHANED,
        TaskState.REMOVE,
    }
)


def _optional_path(path: str | os.PathLike[str] | None) -> Path | None:
    return None if path is None else Path(path)


def _container_id(status: Mapping[str, Any], what: str) -> str:
    container_status = status.get("ContainerStatus")
    if container_status is None:
        raise MessageError(f"Docker daemon reported a {what} task with no container status")
    container_id = container_status.get("ContainerID")
    if container_id is None:
        raise MessageError(f"Docker reported a {what} task with no container id")
    return container_id


class Service:
    """A swarm service that runs one replica of one task, never restarted."""

    def __init__(
        self,
        client: EngineClient,
        id: str,
        stdout: str | os.PathLike[str] | None = None,
        stderr: str | os.PathLike[str] | None = None,
        *,
        task_poll_interval: float = TASK_POLL_INTERVAL,
        start_poll_interval: float = START_POLL_INTERVAL,
    ) -> None:
        self.client = client
        self.id = id
        self.stdout = _optional_path(stdout)
        self.stderr = _optional_path(stderr)
        self.task_poll_interval = task_poll_interval
        self.start_poll_interval = start_poll_interval

    def __repr__(self) -> str:
        return f"Service(id={self.id!r}, stdout={self.stdout!r}, stderr={self.stderr!r})"

    async def run(self, name: str, started: Callable[[], Any]) -> int:
        """Waits for the service's task to finish and returns its exit code.

        `started` is called once the task has started, completed or failed.
        """
        container_id, exit_code = await self._await_task(name, started)

        if self.stdout is not None or self.stderr is not None:
            await self._write_output(container_id)

        return exit_code

    async def _await_task(self, name: str, started: Callable[[], Any]) -> tuple[str, int]:
        while True:
            logger.debug("polling tasks for service `%s` (task `%s`)", self.id, name)
            tasks = await self.client.list_tasks(filters={"service": [self.id]})

            if not tasks:
                await asyncio.sleep(self.task_poll_interval)
                continue

            if len(tasks) != 1:
                raise MessageError(
                    f"Docker service task count should always be 1, found {len(tasks)}"
                )

            status = tasks[0].get("Status")
            if status is None:
                raise MessageError("Docker daemon reported a task with no status")

            raw_state = status.get("State")
            try:
                state = None if raw_state is None else TaskState(raw_state)
            except ValueError:
                raise MessageError(f"Docker reported an unknown task state `{raw_state}`") from None

            if state is None or state in _WAITING:
                logger.debug(
                    "task has not yet started for service `%s` (task `%s`)", self.id, name
                )
                await asyncio.sleep(self.start_poll_interval)
                continue

            if state in _ACTIVE:
                container_id = _container_id(status, "starting or running")
                logger.info(
                    "service `%s` (task `%s`) has started container `%s`",
                    self.id,
                    name,
                    container_id,
                )
                started()
                return container_id, await self._wait(container_id)

            if state is TaskState.COMPLETE:
                container_id = _container_id(status, "completed")
                logger.info(
                    "container `%s` for service `%s` (task `%s`) has completed",
                    container_id,
                    self.id,
                    name,
                )
                started()
                exit_code = status["ContainerStatus"].get("ExitCode")
                if exit_code is None:
                    raise MessageError("Docker reported a completed task with no exit code")
                return container_id, int(exit_code)

            # Every remaining state is a failure.
            assert state in _FAILED
            started()
            message = (
                status.get("Err")
                or status.get("Message")
                or "no error message was provided by the Docker daemon"
            )
            raise MessageError(f"Docker task failed: {message}")

    async def _wait(self, container_id: str) -> int:
        exit_code: int | None = None
        try:
            result = await self.client.wait_container(container_id)
        except ContainerWaitError as error:
            exit_code = error.code
        else:
            if result is not None:
                exit_code = result.get("StatusCode", 0)

        if exit_code is None:
            details = await self.client.inspect_container(container_id)
            state = (details or {}).get("State")
            if state is None:
                raise MessageError("Docker reported a container without a state")
            exit_code = state.get("ExitCode")
            if exit_code is None:
                raise MessageError("Docker reported a finished container without an exit code")

        return int(exit_code)

    async def _write_output(self, container_id: str) -> None:
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

            async for output in self.client.logs(
                container_id, stdout=self.stdout is not None, stderr=self.stderr is not None
            ):
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

    async def delete(self) -> None:
        """Deletes the service."""
        logger.debug("deleting Docker service `%s`", self.id)
        await self.client.delete_service(self.id)


class ServiceBuilder:
    """Collects the settings of a service and then creates it."""

    def __init__(self, client: EngineClient) -> None:
        self.client = client
        self._image: str | None = None
        self._program: str | None = None
        self._args: list[str] = []
        self._stdout: Path | None = None
        self._stderr: Path | None = None
        self._env: dict[str, str] = {}
        self._work_dir: str | None = None
        self._mounts: list[dict[str, Any]] = []
        self._resources: Mapping[str, Any] | None = None

    def image(self, image: str) -> ServiceBuilder:
        """Sets the image, such as `ubuntu:latest`."""
        self._image = str(image)
        return self

    def program(self, program: str) -> ServiceBuilder:
        """Sets the program to run."""
        self._program = str(program)
        return self

    def arg(self, arg: str) -> ServiceBuilder:
        """Adds one argument."""
        self._args.append(str(arg))
        return self

    def args(self, args: Iterable[str]) -> ServiceBuilder:
        """Adds several arguments."""
        self._args.extend(str(arg) for arg in args)
        return self

    def env(self, name: str, value: str) -> ServiceBuilder:
        """Sets one environment variable."""
        self._env[str(name)] = str(value)
        return self

    def envs(self, variables: Mapping[str, str] | Iterable[tuple[str, str]]) -> ServiceBuilder:
        """Sets several environment variables."""
        items = variables.items() if isinstance(variables, Mapping) else variables
        for name, value in items:
            self._env[str(name)] = str(value)
        return self

    def stdout(self, path: str | os.PathLike[str]) -> ServiceBuilder:
        """Sets the file the task's stdout is written to."""
        self._stdout = Path(path)
        return self

    def stderr(self, path: str | os.PathLike[str]) -> ServiceBuilder:
        """Sets the file the task's stderr is written to."""
        self._stderr = Path(path)
        return self

    def work_dir(self, work_dir: str) -> ServiceBuilder:
        """Sets the working directory."""
        self._work_dir = str(work_dir)
        return self

    def mount(self, mount: Mapping[str, Any]) -> ServiceBuilder:
        """Adds one mount to the task template."""
        self._mounts.append(dict(mount))
        return self

    def mounts(self, mounts: Iterable[Mapping[str, Any]]) -> ServiceBuilder:
        """Adds several mounts to the task template."""
        self._mounts.extend(dict(mount) for mount in mounts)
        return self

    def resources(self, resources: Mapping[str, Any]) -> ServiceBuilder:
        """Sets the task resources sent as `Resources`."""
        self._resources = resources
        return self

    async def try_build(self, name: str) -> Service:
        """Creates the service."""
        if self._image is None:
            raise MissingBuilderFieldError("image")
        if self._program is None:
            raise MissingBuilderFieldError("program")

        container_spec: dict[str, Any] = {
            "Image": self._image,
            "Command": [self._program],
            "Args": list(self._args),
            "Env": [f"{key}={value}" for key, value in self._env.items()],
            "Mounts": list(self._mounts),
        }
        if self._work_dir is not None:
            container_spec["Dir"] = self._work_dir

        task_template: dict[str, Any] = {
            "ContainerSpec": container_spec,
            "RestartPolicy": {"Condition": "none"},
        }
        if self._resources is not None:
            task_template["Resources"] = dict(self._resources)

        spec = {
            "Name": name,
            "Mode": {"Replicated": {"Replicas": 1}},
            "TaskTemplate": task_template,
        }

        response = await self.client.create_service(spec)
        service_id = (response or {}).get("ID")
        if service_id is None:
            raise MessageError("service must have an identifier")
        logger.info("created service `%s` (task `%s`)", service_id, name)

        for warning in response.get("Warnings") or []:
            logger.warning("Docker daemon: %s", warning)

        return Service(self.client, service_id, self._stdout, self._stderr)