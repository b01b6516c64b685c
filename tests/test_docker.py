from pathlib import Path

import pytest

from crankshaft import engine
from crankshaft.container import Container, ContainerBuilder
from crankshaft.docker import Docker
from crankshaft.engine import DockerError
from crankshaft.service import ServiceBuilder


class FakeEngine:
    def __init__(self, images=None, local=None):
        self.images = images or []
        self.local = local or []
        self.calls = []
        self.closed = False

    async def list_images(self, all=False, filters=None):
        self.calls.append(("list_images", all, filters))
        if filters is not None:
            return list(self.local)
        return list(self.images)

    async def create_image(self, from_image, tag=None):
        self.calls.append(("create_image", from_image, tag))
        yield {"status": "Pulling"}

    async def remove_image(self, name):
        self.calls.append(("remove_image", name))
        return [{"Untagged": name}]

    async def list_nodes(self):
        self.calls.append(("list_nodes",))
        return [{"ID": "node-1"}]

    async def info(self):
        self.calls.append(("info",))
        return {"Name": "daemon"}

    async def close(self):
        self.closed = True


def test_with_socket_defaults_uses_default_socket(monkeypatch):
    monkeypatch.delenv("DOCKER_HOST", raising=False)
    docker = Docker.with_socket_defaults()
    assert docker.inner.socket_path == engine.DEFAULT_SOCKET_PATH


def test_with_http_defaults_reads_docker_host(monkeypatch):
    monkeypatch.setenv("DOCKER_HOST", "tcp://example.com:2375")
    docker = Docker.with_http_defaults()
    assert docker.inner.base_url == "http://example.com:2375"
    assert docker.inner.socket_path is None


def test_with_defaults_uses_unix_socket_from_host(monkeypatch):
    monkeypatch.setenv("DOCKER_HOST", "unix:///tmp/custom.sock")
    docker = Docker.with_defaults()
    assert docker.inner.socket_path == "/tmp/custom.sock"


def test_with_defaults_rejects_unsupported_host(monkeypatch):
    monkeypatch.setenv("DOCKER_HOST", "ssh://example.com")
    with pytest.raises(DockerError):
        Docker.with_defaults()


def test_inner_returns_client():
    fake = FakeEngine()
    assert Docker(fake).inner is fake


@pytest.mark.asyncio
async def test_list_images_lists_all():
    fake = FakeEngine(images=[{"Id": "sha256:abc", "RepoTags": ["ubuntu:latest"]}])
    result = await Docker(fake).list_images()
    assert result == [{"Id": "sha256:abc", "RepoTags": ["ubuntu:latest"]}]
    assert fake.calls == [("list_images", True, None)]


@pytest.mark.asyncio
async def test_ensure_image_pulls_latest_when_untagged():
    fake = FakeEngine()
    await Docker(fake).ensure_image("ubuntu")
    assert ("create_image", "ubuntu", "latest") in fake.calls


@pytest.mark.asyncio
async def test_ensure_image_skips_pull_when_present():
    fake = FakeEngine(local=[{"Id": "sha256:abc"}])
    result = await Docker(fake).ensure_image("ubuntu:22.04")
    assert result is None
    assert fake.calls == [("list_images", False, {"reference": ["ubuntu:22.04"]})]


@pytest.mark.asyncio
async def test_remove_image_returns_items():
    fake = FakeEngine()
    result = await Docker(fake).remove_image("ubuntu", "latest")
    assert result == [{"Untagged": "ubuntu"}]


@pytest.mark.asyncio
async def test_remove_all_images_removes_each_tag():
    fake = FakeEngine(images=[{"Id": "sha256:abc", "RepoTags": ["a:1", "a:2"]}])
    result = await Docker(fake).remove_all_images()
    assert len(result) == 2
    assert [call for call in fake.calls if call[0] == "remove_image"] == [
        ("remove_image", "sha256:abc"),
        ("remove_image", "sha256:abc"),
    ]


def test_container_builder_shares_client():
    fake = FakeEngine()
    builder = Docker(fake).container_builder()
    assert isinstance(builder, ContainerBuilder)
    assert builder.client is fake


def test_container_from_name_keeps_paths():
    fake = FakeEngine()
    container = Docker(fake).container_from_name("box", "out.txt", None)
    assert isinstance(container, Container)
    assert container.id == "box"
    assert container.stdout == Path("out.txt")
    assert container.stderr is None
    assert container.client is fake


def test_service_builder_shares_client():
    fake = FakeEngine()
    builder = Docker(fake).service_builder()
    assert isinstance(builder, ServiceBuilder)
    assert builder.client is fake


@pytest.mark.asyncio
async def test_nodes_and_info_pass_through():
    fake = FakeEngine()
    docker = Docker(fake)
    assert await docker.nodes() == [{"ID": "node-1"}]
    assert await docker.info() == {"Name": "daemon"}


@pytest.mark.asyncio
async def test_context_manager_closes_client():
    fake = FakeEngine()
    async with Docker(fake) as docker:
        assert docker.inner is fake
    assert fake.closed is True