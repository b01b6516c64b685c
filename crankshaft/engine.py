"""An asynchronous client for the Docker Engine API."""

from __future__ import annotations

import contextlib
import enum
import json
import os
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import aiohttp

DEFAULT_SOCKET_PATH = "/var/run/docker.sock"
"""The socket used when `DOCKER_HOST` names no UNIX socket."""

DEFAULT_HTTP_HOST = "localhost:2375"
"""The address used for HTTP connections when `DOCKER_HOST` is unset."""

_SOCKET_BASE_URL = "http://localhost"
_FRAME_HEADER_SIZE = 8


class DockerError(Exception):
    """An error reported by, or met while talking to, the Docker daemon."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class MissingBuilderFieldError(DockerError):
    """A builder was asked to build without a required field."""

    def __init__(self, field: str) -> None:
        super().__init__(f"missing required builder field `{field}`")
        self.field = field


class MessageError(DockerError):
    """An error described only by its message."""


class ContainerWaitError(DockerError):
    """A waited-on container exited with a non-zero status code."""

    def __init__(self, code: int, error: str = "") -> None:
        message = f"container exited with status code {code}"
        if error:
            message = f"{message}: {error}"
        super().__init__(message)
        self.code = code
        self.error = error


class LogStream(enum.Enum):
    """The stream a piece of container output came from."""

    STDIN = "stdin"
    STDOUT = "stdout"
    STDERR = "stderr"
    CONSOLE = "console"


_FRAME_STREAMS = {0: LogStream.STDIN, 1: LogStream.STDOUT, 2: LogStream.STDERR}


@dataclass(frozen=True)
class LogOutput:
    """A piece of output from a container."""

    stream: LogStream
    message: bytes


def _looks_like_header(prefix: bytes | bytearray) -> bool:
    if not prefix:
        return True
    return prefix[0] in _FRAME_STREAMS and not any(prefix[1:4])


class _FrameDecoder:
    """Splits a multiplexed output stream into frames as bytes arrive.

    Output that does not start with a frame header (a TTY container) is
    passed through as console output.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._raw = False

    def feed(self, chunk: bytes) -> list[LogOutput]:
        if self._raw:
            return [LogOutput(LogStream.CONSOLE, bytes(chunk))] if chunk else []
        self._buffer.extend(chunk)
        outputs = []
        while self._buffer:
            if not _looks_like_header(self._buffer[:4]):
                self._raw = True
                outputs.append(LogOutput(LogStream.CONSOLE, bytes(self._buffer)))
                self._buffer.clear()
                break
            if len(self._buffer) < _FRAME_HEADER_SIZE:
                break
            size = int.from_bytes(self._buffer[4:_FRAME_HEADER_SIZE], "big")
            end = _FRAME_HEADER_SIZE + size
            if len(self._buffer) < end:
                break
            stream = _FRAME_STREAMS[self._buffer[0]]
            outputs.append(LogOutput(stream, bytes(self._buffer[_FRAME_HEADER_SIZE:end])))
            del self._buffer[:end]
        return outputs

    def finish(self) -> None:
        if self._buffer:
            raise ValueError(
                f"output stream ended inside a frame ({len(self._buffer)} bytes left over)"
            )


def decode_frames(data: bytes) -> list[LogOutput]:
    """Decodes a complete multiplexed output stream into its frames."""
    decoder = _FrameDecoder()
    outputs = decoder.feed(data)
    decoder.finish()
    return outputs


def _query(params: Mapping[str, Any] | None) -> dict[str, str]:
    result = {}
    for key, value in (params or {}).items():
        if value is None:
            continue
        if isinstance(value, bool):
            result[key] = "true" if value else "false"
        elif isinstance(value, (Mapping, list)):
            result[key] = json.dumps(value)
        else:
            result[key] = str(value)
    return result


def _part(value: str) -> str:
    return quote(value, safe="/:@")


async def _error_message(response: aiohttp.ClientResponse) -> str:
    text = await response.text()
    try:
        body = json.loads(text)
    except ValueError:
        body = None
    if isinstance(body, Mapping) and isinstance(body.get("message"), str):
        return body["message"]
    return text.strip() or (response.reason or f"HTTP status {response.status}")


async def _json_lines(response: aiohttp.ClientResponse) -> AsyncIterator[Any]:
    async for line in response.content:
        text = line.strip()
        if not text:
            continue
        try:
            yield json.loads(text)
        except ValueError as error:
            raise DockerError(f"invalid JSON from the Docker daemon: {error}") from error


async def _decode_stream(response: aiohttp.ClientResponse) -> AsyncIterator[LogOutput]:
    decoder = _FrameDecoder()
    async for chunk in response.content.iter_any():
        for output in decoder.feed(chunk):
            yield output
    try:
        decoder.finish()
    except ValueError as error:
        raise DockerError(str(error)) from error


async def _owned_stream(
    response: aiohttp.ClientResponse, stack: contextlib.AsyncExitStack
) -> AsyncIterator[LogOutput]:
    async with stack:
        async for output in _decode_stream(response):
            yield output


def _http_url(host: str) -> str:
    if "://" not in host:
        return f"http://{host}"
    scheme, rest = host.split("://", 1)
    if scheme == "tcp":
        return f"http://{rest}"
    if scheme in {"http", "https"}:
        return host
    raise DockerError(f"unsupported Docker host `{host}`")


class EngineClient:
    """A connection to a Docker daemon over a UNIX socket or HTTP."""

    def __init__(
        self,
        base_url: str = _SOCKET_BASE_URL,
        *,
        socket_path: str | None = None,
        api_version: str | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.socket_path = socket_path
        self.api_version = api_version
        self._session: aiohttp.ClientSession | None = None

    @classmethod
    def with_socket_defaults(cls) -> EngineClient:
        """Connects to the UNIX socket in `DOCKER_HOST`, or the default one."""
        host = os.environ.get("DOCKER_HOST", "")
        path = host.removeprefix("unix://") if host.startswith("unix://") else DEFAULT_SOCKET_PATH
        return cls(socket_path=path)

    @classmethod
    def with_http_defaults(cls) -> EngineClient:
        """Connects over HTTP to `DOCKER_HOST`, or to the default address."""
        return cls(_http_url(os.environ.get("DOCKER_HOST") or DEFAULT_HTTP_HOST))

    @classmethod
    def with_defaults(cls) -> EngineClient:
        """Connects as `DOCKER_HOST` says, defaulting to the local socket."""
        host = os.environ.get("DOCKER_HOST")
        if not host or host.startswith("unix://"):
            return cls.with_socket_defaults()
        if host.startswith(("tcp://", "http://", "https://")):
            return cls(_http_url(host))
        raise DockerError(f"unsupported Docker host `{host}`")

    async def __aenter__(self) -> EngineClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = (
                aiohttp.UnixConnector(path=self.socket_path) if self.socket_path else None
            )
            self._session = aiohttp.ClientSession(
                connector=connector, timeout=aiohttp.ClientTimeout(total=None)
            )
        return self._session

    def _url(self, path: str) -> str:
        prefix = f"/v{self.api_version}" if self.api_version else ""
        return f"{self.base_url}{prefix}{path}"

    @contextlib.asynccontextmanager
    async def _open(
        self, method: str, path: str, *, params: Mapping[str, Any] | None = None, **kwargs: Any
    ) -> AsyncIterator[aiohttp.ClientResponse]:
        try:
            async with self._client().request(
                method, self._url(path), params=_query(params), **kwargs
            ) as response:
                if response.status >= 400:
                    raise DockerError(await _error_message(response), status_code=response.status)
                yield response
        except aiohttp.ClientError as error:
            raise DockerError(f"failed to talk to the Docker daemon: {error}") from error

    async def _json(
        self, method: str, path: str, *, params: Mapping[str, Any] | None = None, **kwargs: Any
    ) -> Any:
        async with self._open(method, path, params=params, **kwargs) as response:
            text = await response.text()
        if not text.strip():
            return None
        try:
            return json.loads(text)
        except ValueError as error:
            raise DockerError(f"invalid JSON from the Docker daemon: {error}") from error

    async def list_images(
        self, all: bool = False, filters: Mapping[str, list[str]] | None = None
    ) -> list[dict[str, Any]]:
        """Lists the images the daemon holds."""
        return await self._json(
            "GET", "/images/json", params={"all": all, "filters": filters}
        ) or []

    async def create_image(
        self, from_image: str, tag: str | None = None
    ) -> AsyncIterator[dict[str, Any]]:
        """Pulls an image, yielding each progress update."""
        async with self._open(
            "POST", "/images/create", params={"fromImage": from_image, "tag": tag}
        ) as response:
            async for update in _json_lines(response):
                if isinstance(update, Mapping) and update.get("error"):
                    detail = update.get("errorDetail") or {}
                    raise DockerError(detail.get("message") or str(update["error"]))
                yield update

    async def remove_image(self, name: str) -> list[dict[str, Any]]:
        """Removes an image, returning the untagged and deleted items."""
        return await self._json("DELETE", f"/images/{_part(name)}") or []

    async def create_container(self, name: str, body: Mapping[str, Any]) -> dict[str, Any]:
        """Creates a container; the reply holds its `Id` and `Warnings`."""
        return await self._json(
            "POST", "/containers/create", params={"name": name}, json=dict(body)
        )

    async def start_container(self, id: str) -> None:
        """Starts a created container."""
        await self._json("POST", f"/containers/{_part(id)}/start")

    async def attach_container(
        self, id: str, stdout: bool = False, stderr: bool = False
    ) -> AsyncIterator[LogOutput]:
        """Attaches to a container and returns its output stream."""
        stack = contextlib.AsyncExitStack()
        response = await stack.enter_async_context(
            self._open(
                "POST",
                f"/containers/{_part(id)}/attach",
                params={"stdout": stdout, "stderr": stderr, "stream": True},
            )
        )
        return _owned_stream(response, stack)

    async def wait_container(self, id: str) -> dict[str, Any] | None:
        """Waits for a container to exit.

        Returns the daemon's reply, or None when it sent none; a non-zero
        status code raises `ContainerWaitError`.
        """
        result = await self._json("POST", f"/containers/{_part(id)}/wait")
        if result is None:
            return None
        code = result.get("StatusCode", 0)
        if code != 0:
            raise ContainerWaitError(code, (result.get("Error") or {}).get("Message") or "")
        return result

    async def inspect_container(self, id: str) -> dict[str, Any]:
        """Returns the low-level details of a container."""
        return await self._json("GET", f"/containers/{_part(id)}/json")

    async def remove_container(self, id: str, force: bool = False) -> None:
        """Removes a container."""
        await self._json("DELETE", f"/containers/{_part(id)}", params={"force": force})

    async def upload_to_container(self, id: str, path: str, data: bytes) -> None:
        """Extracts a tar archive into a container at `path`."""
        await self._json(
            "PUT",
            f"/containers/{_part(id)}/archive",
            params={"path": path},
            data=bytes(data),
            headers={"Content-Type": "application/x-tar"},
        )

    async def logs(
        self, id: str, stdout: bool = False, stderr: bool = False
    ) -> AsyncIterator[LogOutput]:
        """Yields the output a container has written so far."""
        async with self._open(
            "GET", f"/containers/{_part(id)}/logs", params={"stdout": stdout, "stderr": stderr}
        ) as response:
            async for output in _decode_stream(response):
                yield output

    async def list_nodes(self) -> list[dict[str, Any]]:
        """Lists the nodes of the swarm."""
        return await self._json("GET", "/nodes") or []

    async def info(self) -> dict[str, Any]:
        """Returns system-wide information."""
        return await self._json("GET", "/info")

    async def create_service(self, spec: Mapping[str, Any]) -> dict[str, Any]:
        """Creates a swarm service; the reply holds its `ID` and `Warnings`."""
        return await self._json("POST", "/services/create", json=dict(spec))

    async def delete_service(self, id: str) -> None:
        """Deletes a swarm service."""
        await self._json("DELETE", f"/services/{_part(id)}")

    async def list_tasks(
        self, filters: Mapping[str, list[str]] | None = None
    ) -> list[dict[str, Any]]:
        """Lists swarm tasks matching `filters`."""
        return await self._json("GET", "/tasks", params={"filters": filters}) or []

    async def close(self) -> None:
        """Closes the connection to the daemon."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None