"""A Docker client covering images, containers, swarm nodes and services."""

from __future__ import annotations

import os
from typing import Any

from crankshaft import images
from crankshaft.container import Container, ContainerBuilder
from crankshaft.engine import EngineClient
from crankshaft.service import ServiceBuilder


class Docker:
    """A Docker client built on an `EngineClient` connection."""

    def __init__(self, client: EngineClient) -> None:
        self._client = client

    def __repr__(self) -> str:
        return f"Docker({self._client!r})"

    @classmethod
    def with_socket_defaults(cls) -> Docker:
        """Connects through the default UNIX socket."""
        return cls(EngineClient.with_socket_defaults())

    @classmethod
    def with_http_defaults(cls) -> Docker:
        """Connects through the default HTTP address."""
        return cls(EngineClient.with_http_defaults())

    @classmethod
    def with_defaults(cls) -> Docker:
        """Connects with the default connection details."""
        return cls(EngineClient.with_defaults())

    @property
    def inner(self) -> EngineClient:
        """The underlying engine connection."""
        return self._client

    async def __aenter__(self) -> Docker:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Closes the connection to the daemon."""
        await self._client.close()

    async def list_images(self) -> list[dict[str, Any]]:
        """Returns every image stored on the daemon."""
        return await images.list_images(self)

    async def ensure_image(self, image: str) -> None:
        """Makes sure `image` is on the daemon, pulling it (as `latest` when untagged)."""
        await images.ensure_image(self, image)

    async def remove_image(self, name: str, tag: str) -> list[dict[str, Any]]:
        """Removes an image from the daemon."""
        return await images.remove_image(self, name, tag)

    async def remove_all_images(self) -> list[dict[str, Any]]:
        """Removes every image from the daemon."""
        return await images.remove_all_images(self)

    def container_builder(self) -> ContainerBuilder:
        """Returns a builder for a new container."""
        return ContainerBuilder(self._client)

    def container_from_name(
        self,
        id: str,
        stdout: str | os.PathLike[str] | None = None,
        stderr: str | os.PathLike[str] | None = None,
    ) -> Container:
        """Returns a handle to an existing container with a known id."""
        return Container(self._client, str(id), stdout, stderr)

    async def nodes(self) -> list[dict[str, Any]]:
        """Lists the nodes of the swarm the daemon has joined."""
        return await self._client.list_nodes()

    def service_builder(self) -> ServiceBuilder:
        """Returns a builder for a new swarm service."""
        return ServiceBuilder(self._client)

    async def info(self) -> dict[str, Any]:
        """Returns system-wide information."""
        return await self._client.info()