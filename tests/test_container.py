import io
import tarfile

import pytest

from crankshaft.container import Container, ContainerBuilder
from crankshaft.engine import (
    ContainerWaitError,
    DockerError,
    LogOutput,
    LogStream,
    MessageError,
    MissingBuilderFieldError,
)


class FakeEngine:
    def __init__(self, wait=None, wait_error=None, outputs=(), inspect=None):
        self.events = []
        self.wait = wait
        self.wait_error = wait_error
        self.outputs = list(outputs)
        self.inspect = inspect
        self.created = None
        self.uploaded = None
        self.attach_args = None
        self.removed = []

    async def create_container(self, name, body):
        self.created = (name, body)
        return {"Id": "abc123", "Warnings": ["low memory"]}

    async def attach_container(self, id, stdout=False, stderr=False):
        self.events.append("attach")
        self.attach_args = (id, stdout, stderr)
        outputs = self.outputs

        async def stream():
            for output in outputs:
                yield output

        return stream()

    async def start_container(self, id):
        self.events.append("start")

    async def wait_container(self, id):
        self.events.append("wait")
        if self.wait_error is not None:
            raise self.wait_error
        return self.wait

    async def inspect_container(self, id):
        self.events.append("inspect")
        return self.inspect

    async def upload_to_container(self, id, path, data):
        self.uploaded = (id, path, data)

    async def remove_container(self, id, force=False):
        self.removed.append((id, force))


@pytest.mark.asyncio
async def test_try_build_requires_image():
    builder = ContainerBuilder(FakeEngine()).program("/usr/bin/env")
    with pytest.raises(MissingBuilderFieldError) as info:
        await builder.try_build("task")
    assert info.value.field == "image"


@pytest.mark.asyncio
async def test_try_build_requires_program():
    builder = ContainerBuilder(FakeEngine()).image("ubuntu:latest")
    with pytest.raises(MissingBuilderFieldError) as info:
        await builder.try_build("task")
    assert info.value.field == "program"


@pytest.mark.asyncio
async def test_try_build_sends_body():
    engine = FakeEngine()
    container = await (
        ContainerBuilder(engine)
        .image("ubuntu:latest")
        .program("/usr/bin/env")
        .args(["bash", "-c"])
        .arg("echo 'hello, world!'")
        .env("A", "1")
        .envs({"B": "2"})
        .build_done()
        if False
        else ContainerBuilder(engine)
        .image("ubuntu:latest")
        .program("/usr/bin/env")
        .args(["bash", "-c"])
        .arg("echo 'hello, world!'")
        .env("A", "1")
        .envs({"B": "2"})
        .try_build("task")
    )
    name, body = engine.created
    assert name == "task"
    assert body["Cmd"] == ["/usr/bin/env", "bash", "-c", "echo 'hello, world!'"]
    assert body["Image"] == "ubuntu:latest"
    assert body["Entrypoint"] == [""]
    assert body["AttachStdout"] is False
    assert body["AttachStderr"] is False
    assert body["Env"] == ["A=1", "B=2"]
    assert "WorkingDir" not in body
    assert "HostConfig" not in body
    assert container.id == "abc123"
    assert container.stdout is None and container.stderr is None


@pytest.mark.asyncio
async def test_try_build_optional_fields(tmp_path):
    engine = FakeEngine()
    out = tmp_path / "out.txt"
    container = await (
        ContainerBuilder(engine)
        .image("ubuntu")
        .program("ls")
        .work_dir("/work")
        .host_config({"Memory": 1024})
        .stdout(out)
        .envs([("X", "first"), ("Y", "y"), ("X", "second")])
        .try_build("task")
    )
    _, body = engine.created
    assert body["WorkingDir"] == "/work"
    assert body["HostConfig"] == {"Memory": 1024}
    assert body["AttachStdout"] is True
    assert body["AttachStderr"] is False
    assert body["Env"] == ["X=second", "Y=y"]
    assert container.stdout == out


@pytest.mark.asyncio
async def test_upload_file_builds_tar():
    engine = FakeEngine()
    container = Container(engine, "abc123")
    await container.upload_file("/data/input.txt", b"contents")
    id, path, data = engine.uploaded
    assert id == "abc123"
    assert path == "/"
    with tarfile.open(fileobj=io.BytesIO(data)) as archive:
        members = archive.getmembers()
        assert [member.name for member in members] == ["data/input.txt"]
        assert members[0].mode == 0o644
        assert archive.extractfile(members[0]).read() == b"contents"


@pytest.mark.asyncio
async def test_run_without_output_returns_status():
    engine = FakeEngine(wait={"StatusCode": 0})
    calls = []
    code = await Container(engine, "abc123").run("task", lambda: calls.append(True))
    assert code == 0
    assert calls == [True]
    assert engine.events == ["start", "wait"]
    assert engine.attach_args is None


@pytest.mark.asyncio
async def test_run_uses_wait_error_code():
    engine = FakeEngine(wait_error=ContainerWaitError(3))
    code = await Container(engine, "abc123").run("task", lambda: None)
    assert code == 3


@pytest.mark.asyncio
async def test_run_inspects_when_wait_is_empty():
    engine = FakeEngine(wait=None, inspect={"State": {"ExitCode": 7}})
    code = await Container(engine, "abc123").run("task", lambda: None)
    assert code == 7
    assert engine.events == ["start", "wait", "inspect"]


@pytest.mark.asyncio
async def test_run_missing_state_raises():
    engine = FakeEngine(wait=None, inspect={})
    with pytest.raises(MessageError):
        await Container(engine, "abc123").run("task", lambda: None)


@pytest.mark.asyncio
async def test_run_propagates_other_errors():
    engine = FakeEngine(wait_error=DockerError("boom", status_code=500))
    with pytest.raises(DockerError) as info:
        await Container(engine, "abc123").run("task", lambda: None)
    assert info.value.message == "boom"


@pytest.mark.asyncio
async def test_run_writes_output_streams(tmp_path):
    out = tmp_path / "stdout"
    err = tmp_path / "stderr"
    engine = FakeEngine(
        wait={"StatusCode": 0},
        outputs=[
            LogOutput(LogStream.STDOUT, b"one "),
            LogOutput(LogStream.STDERR, b"oops"),
            LogOutput(LogStream.STDOUT, b"two"),
        ],
    )
    events = []
    container = Container(engine, "abc123", out, err)
    code = await container.run("task", lambda: events.append(list(engine.events)))
    assert code == 0
    assert events == [["attach", "start"]]
    assert engine.attach_args == ("abc123", True, True)
    assert out.read_bytes() == b"one two"
    assert err.read_bytes() == b"oops"


@pytest.mark.asyncio
async def test_run_only_stdout_requested(tmp_path):
    out = tmp_path / "stdout"
    engine = FakeEngine(
        wait={"StatusCode": 0},
        outputs=[LogOutput(LogStream.STDOUT, b"hello")],
    )
    await Container(engine, "abc123", stdout=out).run("task", lambda: None)
    assert engine.attach_args == ("abc123", True, False)
    assert out.read_bytes() == b"hello"


@pytest.mark.asyncio
async def test_run_fails_to_create_stdout_file(tmp_path):
    out = tmp_path / "missing" / "stdout"
    engine = FakeEngine(wait={"StatusCode": 0})
    with pytest.raises(MessageError) as info:
        await Container(engine, "abc123", stdout=out).run("task", lambda: None)
    assert "failed to create stdout file" in str(info.value)
    assert "wait" not in engine.events


@pytest.mark.asyncio
async def test_remove_and_force_remove():
    engine = FakeEngine()
    container = Container(engine, "abc123")
    await container.remove()
    await container.force_remove()
    assert engine.removed == [("abc123", False), ("abc123", True)]