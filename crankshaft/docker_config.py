"""Configuration of the Docker execution backend."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

DEFAULT_CLEANUP = True
"""Whether containers are removed after their tasks complete by default."""


@dataclass(frozen=True)
class DockerConfig:
    """Configuration of a Docker execution backend."""

    cleanup: bool = DEFAULT_CLEANUP

    def __post_init__(self) -> None:
        if not isinstance(self.cleanup, bool):
            raise ValueError("invalid type for `cleanup`: expected a boolean")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DockerConfig:
        """Reads a Docker configuration; `cleanup` defaults to true."""
        if not isinstance(data, Mapping):
            raise ValueError(f"Docker configuration must be a mapping, not {type(data).__name__}")
        return cls(cleanup=data.get("cleanup", DEFAULT_CLEANUP))

    def to_dict(self) -> dict[str, Any]:
        """Returns the configuration as a plain mapping."""
        return {"cleanup": self.cleanup}