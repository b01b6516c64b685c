from __future__ import annotations

import pytest

from crankshaft.engine import (
    ContainerWaitError,
    LogOutput,
    LogStream,
    MessageError,
    MissingBuilderFieldError,
)
from crankshaft.service import Service, ServiceBuilder, TaskState


class FakeClient:
    def __init__(self, tasks=None, wait=None, wait_error=None, inspect=None, logs=(),
                 create_response=None):
        self.task_replies = list(tasks or [])
        self.wait_reply = wait
        self.wait_error = wait_error
        self.inspect_reply = inspect
        self.log_outputs = list(logs)
        self.create_response = create_response
        self.calls = []
        self.specs = []

    async def list_tasks(self, filters=None):
        self.calls.append(("list_tasks", filters))
        return self.task_replies.pop(0)

    async def wait_container(self, id):
        self.calls.append(("wait_container", id))
        if self.wait_error is not None:
            raise self.wait_error
        return self.wait_reply

    async def inspect_container(self, id):
        self.calls.append(("inspect_container", id))
        return self.inspect_reply

    async def logs(self, id, stdout=False, stderr=False):
        self.calls.append(("logs", id, stdout, stderr))
        for output in self.log_outputs:
            yield output

    async def delete_service(self, id):
        self.calls.append(("delete_service", id))

    async def create_service(self, spec):
        self.specs.append(spec)
        return self.create_response


def task(state, **status):
    body = dict(status)
    if state is not None:
        body["State"] = state
    return {"Status": body}


def make_service(client, stdout=None, stderr=None):
    return Service(
        client, "svc", stdout, stderr, task_poll_interval=0, start_poll_interval=0
    )


def test_task_state_values_match_wire_names():
    assert TaskState("running") is TaskState.RUNNING
    assert TaskState("complete") is TaskState.COMPLETE


@pytest.mark.asyncio
async def test_run_waits_for_start_then_returns_exit_code():
    client = FakeClient(
        tasks=[
            [],
            [task("pending")],
            [task(None)],
            [task("running", ContainerStatus={"ContainerID": "c1"})],
        ],
        wait={"StatusCode": 0},
    )
    calls = []
    code = await make_service(client).run("job", lambda: calls.append(1))
    assert code == 0
    assert calls == [1]
    assert ("wait_container", "c1") in client.calls
    assert client.calls[0] == ("list_tasks", {"service": ["svc"]})


@pytest.mark.asyncio
async def test_run_uses_wait_error_code():
    client = FakeClient(
        tasks=[[task("starting", ContainerStatus={"ContainerID": "c1"})]],
        wait_error=ContainerWaitError(3),
    )
    assert await make_service(client).run("job", lambda: None) == 3


@pytest.mark.asyncio
async def test_run_falls_back_to_inspect():
    client = FakeClient(
        tasks=[[task("running", ContainerStatus={"ContainerID": "c1"})]],
        wait=None,
        inspect={"State": {"ExitCode": 7}},
    )
    assert await make_service(client).run("job", lambda: None) == 7
    assert ("inspect_container", "c1") in client.calls


@pytest.mark.asyncio
async def test_inspect_without_state_raises():
    client = FakeClient(
        tasks=[[task("running", ContainerStatus={"ContainerID": "c1"})]],
        wait=None,
        inspect={},
    )
    with pytest.raises(MessageError):
        await make_service(client).run("job", lambda: None)


@pytest.mark.asyncio
async def test_complete_task_uses_reported_exit_code():
    client = FakeClient(
        tasks=[[task("complete", ContainerStatus={"ContainerID": "c9", "ExitCode": 5})]]
    )
    calls = []
    assert await make_service(client).run("job", lambda: calls.append(1)) == 5
    assert calls == [1]
    assert not any(call[0] == "wait_container" for call in client.calls)


@pytest.mark.asyncio
async def test_failed_task_raises_with_error():
    client = FakeClient(tasks=[[task("failed", Err="boom", Message="other")]])
    calls = []
    with pytest.raises(MessageError, match="Docker task failed: boom"):
        await make_service(client).run("job", lambda: calls.append(1))
    assert calls == [1]


@pytest.mark.asyncio
async def test_rejected_task_uses_message_then_fallback():
    client = FakeClient(tasks=[[task("rejected", Message="no node")]])
    with pytest.raises(MessageError, match="Docker task failed: no node"):
        await make_service(client).run("job", lambda: None)

    client = FakeClient(tasks=[[task("shutdown")]])
    with pytest.raises(
        MessageError, match="no error message was provided by the Docker daemon"
    ):
        await make_service(client).run("job", lambda: None)


@pytest.mark.asyncio
async def test_more_than_one_task_is_an_error():
    client = FakeClient(tasks=[[task("running"), task("running")]])
    with pytest.raises(MessageError):
        await make_service(client).run("job", lambda: None)


@pytest.mark.asyncio
async def test_task_without_status_is_an_error():
    client = FakeClient(tasks=[[{}]])
    with pytest.raises(MessageError):
        await make_service(client).run("job", lambda: None)


@pytest.mark.asyncio
async def test_output_is_written_to_files(tmp_path):
    out = tmp_path / "out.txt"
    err = tmp_path / "err.txt"
    client = FakeClient(
        tasks=[[task("running", ContainerStatus={"ContainerID": "c1"})]],
        wait={"StatusCode": 0},
        logs=[
            LogOutput(LogStream.STDOUT, b"hello "),
            LogOutput(LogStream.STDERR, b"oops"),
            LogOutput(LogStream.STDOUT, b"world"),
        ],
    )
    await make_service(client, out, err).run("job", lambda: None)
    assert out.read_bytes() == b"hello world"
    assert err.read_bytes() == b"oops"
    assert ("logs", "c1", True, True) in client.calls


@pytest.mark.asyncio
async def test_no_logs_requested_without_files():
    client = FakeClient(
        tasks=[[task("running", ContainerStatus={"ContainerID": "c1"})]],
        wait={"StatusCode": 0},
    )
    await make_service(client).run("job", lambda: None)
    assert not any(call[0] == "logs" for call in client.calls)


@pytest.mark.asyncio
async def test_delete_calls_daemon():
    client = FakeClient()
    await make_service(client).delete()
    assert client.calls == [("delete_service", "svc")]


@pytest.mark.asyncio
async def test_builder_requires_image_and_program():
    with pytest.raises(MissingBuilderFieldError) as info:
        await ServiceBuilder(FakeClient()).program("ls").try_build("x")
    assert info.value.field == "image"

    with pytest.raises(MissingBuilderFieldError) as info:
        await ServiceBuilder(FakeClient()).image("ubuntu").try_build("x")
    assert info.value.field == "program"


@pytest.mark.asyncio
async def test_builder_creates_single_replica_spec(tmp_path):
    client = FakeClient(create_response={"ID": "abc", "Warnings": None})
    mount = {"Type": "bind", "Source": "/a", "Target": "/b"}
    service = await (
        ServiceBuilder(client)
        .image("ubuntu:latest")
        .program("bash")
        .arg("-c")
        .args(["echo hi"])
        .env("A", "1")
        .envs({"B": "2"})
        .work_dir("/work")
        .mount(mount)
        .mounts([mount])
        .resources({"Limits": {"NanoCPUs": 1}})
        .stdout(tmp_path / "o")
        .stderr(tmp_path / "e")
        .try_build("job")
    )
    assert service.id == "abc"
    assert service.stdout == tmp_path / "o"
    assert service.stderr == tmp_path / "e"

    spec = client.specs[0]
    assert spec["Name"] == "job"
    assert spec["Mode"] == {"Replicated": {"Replicas": 1}}
    template = spec["TaskTemplate"]
    assert template["RestartPolicy"] == {"Condition": "none"}
    assert template["Resources"] == {"Limits": {"NanoCPUs": 1}}
    container = template["ContainerSpec"]
    assert container["Image"] == "ubuntu:latest"
    assert container["Command"] == ["bash"]
    assert container["Args"] == ["-c", "echo hi"]
    assert container["Env"] == ["A=1", "B=2"]
    assert container["Dir"] == "/work"
    assert container["Mounts"] == [mount, mount]


@pytest.mark.asyncio
async def test_builder_without_id_raises():
    client = FakeClient(create_response={"Warnings": []})
    with pytest.raises(MessageError):
        await ServiceBuilder(client).image("ubuntu").program("ls").try_build("job")