# crankshaft

Configuration for task execution backends (Docker, generic command-driven
schedulers and TES), plus an asynchronous client for the Docker Engine API
that runs tasks in containers or in single-replica swarm services.

## Installation

```
pip install crankshaft
```

Python 3.11 or later is needed.

## Configuration

The global configuration is `crankshaft.settings.Config`, which holds a list
of `BackendConfig` objects under `backends`.

`Config.load()` reads, merging each source over the ones before it:

1. `<user config dir>/crankshaft/Crankshaft`
2. `<current directory>/Crankshaft`
3. environment variables starting with `CRANKSHAFT_` (the prefix is removed
   and the rest lowercased to give a top-level key)

A path without an extension is looked up as `.toml`, `.json`, `.yaml` and
`.yml`, in that order. Both files must exist: a missing one raises
`ConfigError`. `Config.load_with_paths(paths)` reads the same sources and then
each path given. To read one file alone, use `Config.from_file(path)`; to read
an already parsed mapping, `Config.from_dict(data)`. Every problem with the
configuration is raised as `ConfigError`.

Keys are kebab-case. The `kind` key chooses the backend type, and that type's
own keys sit beside `name`, `max-tasks` and `defaults`:

```toml
[[backends]]
name = "local"
kind = "Docker"
max-tasks = 10
cleanup = true

[[backends]]
name = "cluster"
kind = "Generic"
max-tasks = 100
shell = "bash"
max-attempts = 4
submit = "sbatch --wrap ~{command}"
monitor = "squeue -j ~{job_id}"
kill = "scancel ~{job_id}"
defaults = { cpu = 1.0, ram = 4.0, disk = 50.0 }

[[backends]]
name = "tes"
kind = "TES"
max-tasks = 20
url = "http://localhost:8000"
interval = 5
http = { retries = 3, auth = { type = "bearer", token = "token" } }
```

- `Docker` (`DockerConfig`): `cleanup`, true by default.
- `Generic` (`GenericConfig`): `submit`, `monitor`, `kill`, and optionally
  `job-id-regex`, `monitor-frequency`, `attributes`, and the driver keys
  `locale` (`{ kind = "Local" }` or `{ kind = "SSH", host = "...", port = 22 }`),
  `shell` (`bash` or `sh`) and `max-attempts`.
- `TES` (`TesConfig`): `url`, `http` (required, may be empty) with optional
  `auth` (`basic` with `username`/`password`, or `bearer` with `token`) and
  `retries`, and an optional `interval`.
- `defaults` (`Defaults`): `cpu`, `cpu-limit`, `ram`, `ram-limit`, `disk`
  (memory and disk in GiB).

```python
from crankshaft.settings import Config

config = Config.from_file("Crankshaft.toml")
for backend in config.backends:
    print(backend.name, backend.max_tasks)
    generic = backend.as_generic()
    if generic is not None:
        print(generic.resolve_submit({"command": "echo hi"}))
```

`as_docker`, `as_generic` and `as_tes` return the backend's settings or
`None`; `unwrap_docker`, `unwrap_generic` and `unwrap_tes` raise `ValueError`
instead. Every configuration class has `from_dict` and `to_dict`.

### Placeholders

`crankshaft.generic_config.substitute(text, replacements)` replaces each
`~{key}` whose key is in `replacements` and leaves the others alone.
`resolve_submit`, `resolve_monitor` and `resolve_kill` fill in the given
substitutions, then the backend's `attributes`, collapse runs of whitespace
into single spaces, and raise `UnresolvedSubstitutionError` if a placeholder
is left.

`Shell.args(args)` yields `/usr/bin/env`, the shell name and `-c`, followed by
`args`. `BasicAuth.header_value()` and `BearerAuth.header_value()` give the
`Authorization` header value.

## Running containers

`crankshaft.docker.Docker` talks to the daemon through
`crankshaft.engine.EngineClient`. `Docker.with_defaults()` follows
`DOCKER_HOST` (`unix://`, `tcp://`, `http://` or `https://`) and otherwise uses
`/var/run/docker.sock`; `with_socket_defaults()` and `with_http_defaults()`
choose a transport explicitly.

```python
import asyncio
from crankshaft.docker import Docker

async def main():
    async with Docker.with_defaults() as docker:
        await docker.ensure_image("ubuntu:latest")
        container = await (
            docker.container_builder()
            .image("ubuntu:latest")
            .program("/usr/bin/env")
            .args(["bash", "-c", "echo hello"])
            .env("GREETING", "hello")
            .stdout("stdout.txt")
            .try_build("hello")
        )
        exit_code = await container.run("hello", lambda: None)
        print("exit code:", exit_code)
        await container.remove()

asyncio.run(main())
```

`Container.run` starts the container, calls the callback once it has started,
writes its output to the stdout and stderr files that were set, and returns
the exit code. `Container.upload_file(path, contents)` places a file inside
the container. `remove()` and `force_remove()` delete it.

`Docker` also offers `list_images`, `ensure_image` (pulls as `latest` when no
tag is given), `remove_image`, `remove_all_images`, `container_from_name`,
`nodes` and `info`. Failures raise `DockerError` or one of its subclasses
(`MissingBuilderFieldError`, `MessageError`, `ContainerWaitError`).

### Swarm services

On a daemon that has joined a swarm, `docker.service_builder()` returns a
`ServiceBuilder` (with `image`, `program`, `args`, `env`, `work_dir`,
`mount`, `mounts`, `resources`, `stdout`, `stderr`). `try_build(name)`
creates a service with one replica that is never restarted. `Service.run`
polls the task until it starts, waits for it, writes the logs and returns the
exit code; a failed, rejected or shut-down task raises `MessageError`.
`Service.delete()` removes the service.

## Command line

The `docker-driver` command tries out the Docker client:

```
docker-driver create-container ubuntu my-container --tag latest
docker-driver run-container ubuntu my-container "echo 'hello, world!'"
docker-driver remove-container my-container --force
docker-driver ensure-image ubuntu:22.04
docker-driver list-images
docker-driver remove-image ubuntu --tag latest
docker-driver remove-all-images
```

`create-container` creates a container that runs
`/usr/bin/env bash -c "echo 'hello, world!'"`. `run-container` splits the
command shell-style, runs it and prints `exit code: <n>`. The image commands
print nothing themselves; what they find is logged at debug level.

Only errors are logged by default. Use `-v` (repeated for more detail) or
`-q` to change this, or set `CRANKSHAFT_LOG` to a level name such as `DEBUG`.

## What this package does not do

The backend configuration is only read, checked and resolved: nothing here
submits jobs to a generic scheduler, opens SSH connections, or talks to a TES
server. Running tasks is limited to Docker containers and Docker swarm
services through the client described above.