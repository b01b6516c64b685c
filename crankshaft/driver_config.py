"""Configuration of the command driver used by generic execution backends."""

from __future__ import annotations

import enum
import itertools
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any

ENV_PATH = "/usr/bin/env"
"""The expected path of the `env` binary."""

DEFAULT_MAX_ATTEMPTS = 4
"""The default number of times a single execution within a task is tried."""

DEFAULT_SSH_PORT = 22
"""The default port for SSH connections."""

_U16_MAX = 0xFFFF
_U32_MAX = 0xFFFF_FFFF


def _require_mapping(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ValueError(f"{what} must be a mapping, not {type(data).__name__}")
    return data


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _optional_str(data: Mapping[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is not None and not isinstance(value, str):
        raise ValueError(f"invalid type for `{key}`: expected a string")
    return value


@dataclass(frozen=True)
class SshConfig:
    """Connection details for running commands over SSH."""

    host: str
    port: int = DEFAULT_SSH_PORT
    username: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.host, str):
            raise ValueError("the SSH host must be a string")
        if not _is_int(self.port) or not 0 <= self.port <= _U16_MAX:
            raise ValueError(f"invalid SSH port `{self.port}`")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SshConfig:
        """Reads an SSH configuration from a mapping."""
        data = _require_mapping(data, "SSH configuration")
        if "host" not in data:
            raise ValueError("missing field `host`")
        if "port" not in data:
            raise ValueError("missing field `port`")
        host = data["host"]
        if not isinstance(host, str):
            raise ValueError("invalid type for `host`: expected a string")
        return cls(host=host, port=data["port"], username=_optional_str(data, "username"))

    def to_dict(self) -> dict[str, Any]:
        """Returns the configuration as a plain mapping."""
        result: dict[str, Any] = {"host": self.host, "port": self.port}
        if self.username is not None:
            result["username"] = self.username
        return result


@dataclass(frozen=True)
class Locale:
    """Where commands are executed: locally, or remotely when `ssh` is set."""

    ssh: SshConfig | None = None

    @classmethod
    def local(cls) -> Locale:
        """Returns the local locale."""
        return cls()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Locale:
        """Reads a locale tagged by its `kind` key."""
        data = _require_mapping(data, "locale")
        kind = data.get("kind")
        if kind == "Local":
            return cls()
        if kind == "SSH":
            fields = {key: value for key, value in data.items() if key != "kind"}
            return cls(ssh=SshConfig.from_dict(fields))
        if kind is None:
            raise ValueError("missing field `kind`")
        raise ValueError(f"unknown locale kind `{kind}`; expected `Local` or `SSH`")

    def to_dict(self) -> dict[str, Any]:
        """Returns the locale as a plain mapping tagged by `kind`."""
        if self.ssh is None:
            return {"kind": "Local"}
        return {"kind": "SSH", **self.ssh.to_dict()}


class Shell(enum.Enum):
    """A shell within which commands are run."""

    BASH = "bash"
    SH = "sh"

    def args(self, args: Iterable[str]) -> Iterator[str]:
        """Yields the shell invocation followed by `args`."""
        return itertools.chain((ENV_PATH, self.value, "-c"), args)


@dataclass(frozen=True)
class MaxAttempts:
    """The maximum number of attempts for a command execution."""

    value: int = DEFAULT_MAX_ATTEMPTS

    def __post_init__(self) -> None:
        if not _is_int(self.value) or not 0 <= self.value <= _U32_MAX:
            raise ValueError(f"invalid maximum number of attempts `{self.value}`")

    def __int__(self) -> int:
        return self.value


@dataclass(frozen=True)
class DriverConfig:
    """Configuration of the command driver within a generic backend."""

    locale: Locale | None = None
    shell: Shell | None = None
    max_attempts: MaxAttempts | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DriverConfig:
        """Reads a driver configuration; unrelated keys are ignored."""
        data = _require_mapping(data, "driver configuration")

        locale = data.get("locale")
        shell = data.get("shell")
        attempts = data.get("max-attempts")

        if shell is not None:
            if not isinstance(shell, str):
                raise ValueError("invalid type for `shell`: expected a string")
            try:
                shell = Shell(shell)
            except ValueError:
                raise ValueError(f"unknown shell `{shell}`; expected `bash` or `sh`") from None

        return cls(
            locale=None if locale is None else Locale.from_dict(locale),
            shell=shell,
            max_attempts=None if attempts is None else MaxAttempts(attempts),
        )

    def to_dict(self) -> dict[str, Any]:
        """Returns the configuration as a plain mapping."""
        result: dict[str, Any] = {}
        if self.locale is not None:
            result["locale"] = self.locale.to_dict()
        if self.shell is not None:
            result["shell"] = self.shell.value
        if self.max_attempts is not None:
            result["max-attempts"] = self.max_attempts.value
        return result