"""Configuration of a single execution backend."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from crankshaft.defaults import Defaults
from crankshaft.docker_config import DockerConfig
from crankshaft.generic_config import GenericConfig
from crankshaft.tes_config import TesConfig

Kind = DockerConfig | GenericConfig | TesConfig
"""A kind of execution backend."""

_TAGS: dict[str, type] = {
    "Docker": DockerConfig,
    "Generic": GenericConfig,
    "TES": TesConfig,
}

_OWN_KEYS = frozenset({"name", "max-tasks", "defaults"})


def kind_from_dict(data: Mapping[str, Any]) -> Kind:
    """Reads a backend kind tagged by its `kind` key."""
    if not isinstance(data, Mapping):
        raise ValueError(f"backend kind must be a mapping, not {type(data).__name__}")
    if "kind" not in data:
        raise ValueError("missing field `kind`")
    tag = data["kind"]
    config_type = _TAGS.get(tag) if isinstance(tag, str) else None
    if config_type is None:
        expected = ", ".join(f"`{name}`" for name in _TAGS)
        raise ValueError(f"unknown backend kind `{tag}`; expected one of {expected}")
    fields = {key: value for key, value in data.items() if key != "kind"}
    return config_type.from_dict(fields)


def kind_to_dict(kind: Kind) -> dict[str, Any]:
    """Returns a backend kind as a mapping tagged by `kind`."""
    for tag, config_type in _TAGS.items():
        if isinstance(kind, config_type):
            return {"kind": tag, **kind.to_dict()}
    raise TypeError(f"unknown backend kind type `{type(kind).__name__}`")


@dataclass(frozen=True, kw_only=True)
class BackendConfig:
    """A named execution backend with its kind, task limit and defaults."""

    name: str
    kind: Kind
    max_tasks: int
    defaults: Defaults | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str):
            raise ValueError("invalid type for `name`: expected a string")
        if not isinstance(self.kind, tuple(_TAGS.values())):
            raise ValueError(f"invalid backend kind `{self.kind!r}`")
        if (
            isinstance(self.max_tasks, bool)
            or not isinstance(self.max_tasks, int)
            or self.max_tasks < 0
        ):
            raise ValueError("invalid value for `max-tasks`: expected a non-negative integer")

    def as_docker(self) -> DockerConfig | None:
        """Returns the Docker configuration, if this is a Docker backend."""
        return self.kind if isinstance(self.kind, DockerConfig) else None

    def as_generic(self) -> GenericConfig | None:
        """Returns the generic configuration, if this is a generic backend."""
        return self.kind if isinstance(self.kind, GenericConfig) else None

    def as_tes(self) -> TesConfig | None:
        """Returns the TES configuration, if this is a TES backend."""
        return self.kind if isinstance(self.kind, TesConfig) else None

    def unwrap_docker(self) -> DockerConfig:
        """Returns the Docker configuration or raises if the kind differs."""
        config = self.as_docker()
        if config is None:
            raise ValueError("the backend kind is not `Docker`")
        return config

    def unwrap_generic(self) -> GenericConfig:
        """Returns the generic configuration or raises if the kind differs."""
        config = self.as_generic()
        if config is None:
            raise ValueError("the backend kind is not `Generic`")
        return config

    def unwrap_tes(self) -> TesConfig:
        """Returns the TES configuration or raises if the kind differs."""
        config = self.as_tes()
        if config is None:
            raise ValueError("the backend kind is not `TES`")
        return config

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BackendConfig:
        """Reads a backend; the kind's own keys sit beside `name` and `max-tasks`."""
        if not isinstance(data, Mapping):
            raise ValueError(f"backend configuration must be a mapping, not {type(data).__name__}")
        for key in ("name", "max-tasks"):
            if key not in data:
                raise ValueError(f"missing field `{key}`")
        defaults = data.get("defaults")
        kind_fields = {key: value for key, value in data.items() if key not in _OWN_KEYS}
        return cls(
            name=data["name"],
            kind=kind_from_dict(kind_fields),
            max_tasks=data["max-tasks"],
            defaults=None if defaults is None else Defaults.from_dict(defaults),
        )

    def to_dict(self) -> dict[str, Any]:
        """Returns the backend as a plain mapping."""
        result: dict[str, Any] = {
            "name": self.name,
            **kind_to_dict(self.kind),
            "max-tasks": self.max_tasks,
        }
        if self.defaults is not None:
            result["defaults"] = self.defaults.to_dict()
        return result