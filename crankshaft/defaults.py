"""Default resource requests for execution backends."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, fields
from typing import Any


def _optional_float(data: Mapping[str, Any], key: str) -> float | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"invalid type for `{key}`: expected a number")
    return float(value)


@dataclass(frozen=True)
class Defaults:
    """Default CPU, memory (GiB) and disk (GiB) requests and limits."""

    cpu: float | None = None
    cpu_limit: float | None = None
    ram: float | None = None
    ram_limit: float | None = None
    disk: float | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Defaults:
        """Reads defaults from a mapping with kebab-case keys."""
        if not isinstance(data, Mapping):
            raise ValueError(f"defaults must be a mapping, not {type(data).__name__}")
        return cls(
            **{
                item.name: _optional_float(data, item.name.replace("_", "-"))
                for item in fields(cls)
            }
        )

    def to_dict(self) -> dict[str, float]:
        """Returns the set values under kebab-case keys."""
        return {
            item.name.replace("_", "-"): value
            for item in fields(self)
            if (value := getattr(self, item.name)) is not None
        }