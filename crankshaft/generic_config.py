"""Configuration of generic, command-driven execution backends."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from crankshaft.driver_config import DriverConfig

_WHITESPACE = re.compile(r"\s+")
_PLACEHOLDER = re.compile(r"~\{([^}]*)\}")


class UnresolvedSubstitutionError(ValueError):
    """A resolved command still holds substitution placeholders."""

    def __init__(self, command: str) -> None:
        super().__init__(f"unresolved substitutions in command `{command}`")
        self.command = command


def substitute(input: str, replacements: Mapping[str, str]) -> str:
    """Replaces each `~{key}` placeholder whose key is in `replacements`."""

    def replace(match: re.Match[str]) -> str:
        value = replacements.get(match.group(1))
        return match.group(0) if value is None else str(value)

    return _PLACEHOLDER.sub(replace, input)


def _require_str(data: Mapping[str, Any], key: str) -> str:
    if key not in data:
        raise ValueError(f"missing field `{key}`")
    value = data[key]
    if not isinstance(value, str):
        raise ValueError(f"invalid type for `{key}`: expected a string")
    return value


@dataclass(frozen=True, kw_only=True)
class GenericConfig:
    """Configuration of a generic execution backend."""

    submit: str
    monitor: str
    kill: str
    driver: DriverConfig = field(default_factory=DriverConfig)
    job_id_regex: str | None = None
    monitor_frequency: int | None = None
    attributes: dict[str, str] = field(default_factory=dict)

    def _resolve(self, command: str, substitutions: Mapping[str, str]) -> str:
        result = substitute(command, substitutions)
        if self.attributes:
            result = substitute(result, self.attributes)
        result = _WHITESPACE.sub(" ", result.strip())
        if _PLACEHOLDER.search(result):
            raise UnresolvedSubstitutionError(result)
        return result

    def resolve_submit(self, substitutions: Mapping[str, str]) -> str:
        """Returns the submit command with all substitutions resolved."""
        return self._resolve(self.submit, substitutions)

    def resolve_monitor(self, substitutions: Mapping[str, str]) -> str:
        """Returns the monitor command with all substitutions resolved."""
        return self._resolve(self.monitor, substitutions)

    def resolve_kill(self, substitutions: Mapping[str, str]) -> str:
        """Returns the kill command with all substitutions resolved."""
        return self._resolve(self.kill, substitutions)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GenericConfig:
        """Reads a generic configuration; driver keys sit at the same level."""
        if not isinstance(data, Mapping):
            raise ValueError(f"generic configuration must be a mapping, not {type(data).__name__}")

        job_id_regex = data.get("job-id-regex")
        if job_id_regex is not None and not isinstance(job_id_regex, str):
            raise ValueError("invalid type for `job-id-regex`: expected a string")

        frequency = data.get("monitor-frequency")
        if frequency is not None and (
            isinstance(frequency, bool) or not isinstance(frequency, int) or frequency < 0
        ):
            raise ValueError("invalid value for `monitor-frequency`: expected a non-negative integer")

        attributes = data.get("attributes") or {}
        if not isinstance(attributes, Mapping) or not all(
            isinstance(key, str) and isinstance(value, str) for key, value in attributes.items()
        ):
            raise ValueError("invalid type for `attributes`: expected a mapping of strings")

        return cls(
            driver=DriverConfig.from_dict(data),
            submit=_require_str(data, "submit"),
            job_id_regex=job_id_regex,
            monitor=_require_str(data, "monitor"),
            monitor_frequency=frequency,
            kill=_require_str(data, "kill"),
            attributes=dict(attributes),
        )

    def to_dict(self) -> dict[str, Any]:
        """Returns the configuration as a plain mapping."""
        result: dict[str, Any] = {**self.driver.to_dict(), "submit": self.submit}
        if self.job_id_regex is not None:
            result["job-id-regex"] = self.job_id_regex
        result["monitor"] = self.monitor
        if self.monitor_frequency is not None:
            result["monitor-frequency"] = self.monitor_frequency
        result["kill"] = self.kill
        if self.attributes:
            result["attributes"] = dict(self.attributes)
        return result