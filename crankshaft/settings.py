"""The global configuration and the sources it is loaded from."""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import platformdirs
import yaml

from crankshaft.backend import BackendConfig

ENV_PREFIX = "CRANKSHAFT"
"""The prefix of environment variables that influence the configuration."""

FILE_NAME = "Crankshaft"
"""The file name, without extension, of configuration files."""


class ConfigError(Exception):
    """The configuration could not be found, read or understood."""


def _parse_toml(text: str) -> Any:
    return tomllib.loads(text)


def _parse_json(text: str) -> Any:
    return json.loads(text)


def _parse_yaml(text: str) -> Any:
    value = yaml.safe_load(text)
    return {} if value is None else value


_FORMATS: dict[str, Callable[[str], Any]] = {
    "toml": _parse_toml,
    "json": _parse_json,
    "yaml": _parse_yaml,
    "yml": _parse_yaml,
}


def _find_file(path: Path) -> tuple[Path, Callable[[str], Any]]:
    if path.is_file():
        parser = _FORMATS.get(path.suffix.lstrip(".").lower())
        if parser is None:
            raise ConfigError(f'configuration file "{path}" is not of a supported format')
        return path, parser
    for extension, parser in _FORMATS.items():
        candidate = Path(f"{path}.{extension}")
        if candidate.is_file():
            return candidate, parser
    raise ConfigError(f'configuration file "{path}" not found')


def _read_file(path: Path) -> dict[str, Any]:
    found, parser = _find_file(path)
    try:
        data = parser(found.read_text(encoding="utf-8"))
    except OSError as error:
        raise ConfigError(f'failed to read "{found}": {error}') from error
    except (tomllib.TOMLDecodeError, json.JSONDecodeError, yaml.YAMLError) as error:
        raise ConfigError(f'failed to parse "{found}": {error}') from error
    if not isinstance(data, Mapping):
        raise ConfigError(f'configuration file "{found}" does not hold a table')
    return dict(data)


def _environment() -> dict[str, str]:
    prefix = f"{ENV_PREFIX}_"
    return {
        key[len(prefix):].lower(): value
        for key, value in os.environ.items()
        if key.upper().startswith(prefix) and len(key) > len(prefix)
    }


def _merge(base: dict[str, Any], overlay: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = _merge(dict(current), value)
        else:
            merged[key] = value
    return merged


def _default_paths() -> list[Path]:
    paths = []
    config_dir = platformdirs.user_config_path()
    if config_dir is not None:
        paths.append(Path(config_dir) / "crankshaft" / FILE_NAME)
    try:
        paths.append(Path.cwd() / FILE_NAME)
    except OSError:
        pass
    return paths


@dataclass(frozen=True)
class Config:
    """The global configuration: every registered backend.

    Loading reads `<config dir>/crankshaft/Crankshaft.*`, then
    `<cwd>/Crankshaft.*`, then `CRANKSHAFT_*` environment variables;
    later sources override earlier ones.
    """

    backends: list[BackendConfig] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Config:
        """Reads the configuration from a mapping."""
        if not isinstance(data, Mapping):
            raise ConfigError(f"configuration must be a mapping, not {type(data).__name__}")
        if "backends" not in data:
            raise ConfigError("missing field `backends`")
        backends = data["backends"]
        if not isinstance(backends, list):
            raise ConfigError("invalid type for `backends`: expected a sequence")
        try:
            return cls(backends=[BackendConfig.from_dict(item) for item in backends])
        except ValueError as error:
            raise ConfigError(str(error)) from error

    @classmethod
    def from_file(cls, path: str | os.PathLike[str]) -> Config:
        """Reads the configuration from a single file."""
        return cls.from_dict(_read_file(Path(path)))

    @classmethod
    def load(cls) -> Config:
        """Loads the configuration from the default sources."""
        return cls.load_with_paths(())

    @classmethod
    def load_with_paths(cls, paths: Iterable[str | os.PathLike[str]]) -> Config:
        """Loads the default sources, then each of `paths` in order."""
        data: dict[str, Any] = {}
        for path in _default_paths():
            data = _merge(data, _read_file(path))
        data = _merge(data, _environment())
        for path in paths:
            data = _merge(data, _read_file(Path(path)))
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        """Returns the configuration as a plain mapping."""
        return {"backends": [backend.to_dict() for backend in self.backends]}