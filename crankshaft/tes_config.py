"""Configuration of the TES execution backend."""

from __future__ import annotations

import base64
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

_U32_MAX = 0xFFFF_FFFF
_U64_MAX = 0xFFFF_FFFF_FFFF_FFFF


def _require_mapping(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ValueError(f"{what} must be a mapping, not {type(data).__name__}")
    return data


def _require_str(data: Mapping[str, Any], key: str) -> str:
    if key not in data:
        raise ValueError(f"missing field `{key}`")
    value = data[key]
    if not isinstance(value, str):
        raise ValueError(f"invalid type for `{key}`: expected a string")
    return value


def _optional_uint(data: Mapping[str, Any], key: str, maximum: int) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= maximum:
        raise ValueError(f"invalid value for `{key}`: expected a non-negative integer")
    return value


@dataclass(frozen=True)
class BasicAuth:
    """HTTP basic authentication."""

    username: str
    password: str

    def header_value(self) -> str:
        """Returns the `Authorization` header value."""
        encoded = base64.b64encode(f"{self.username}:{self.password}".encode()).decode("ascii")
        return f"Basic {encoded}"

    def to_dict(self) -> dict[str, Any]:
        """Returns the authentication as a mapping tagged by `type`."""
        return {"type": "basic", "username": self.username, "password": self.password}


@dataclass(frozen=True)
class BearerAuth:
    """HTTP bearer token authentication."""

    token: str

    def header_value(self) -> str:
        """Returns the `Authorization` header value."""
        return f"Bearer {self.token}"

    def to_dict(self) -> dict[str, Any]:
        """Returns the authentication as a mapping tagged by `type`."""
        return {"type": "bearer", "token": self.token}


HttpAuth = BasicAuth | BearerAuth


def auth_from_dict(data: Mapping[str, Any]) -> HttpAuth:
    """Reads an authentication configuration tagged by its `type` key."""
    data = _require_mapping(data, "authentication")
    kind = data.get("type")
    if kind == "basic":
        return BasicAuth(
            username=_require_str(data, "username"),
            password=_require_str(data, "password"),
        )
    if kind == "bearer":
        return BearerAuth(token=_require_str(data, "token"))
    if kind is None:
        raise ValueError("missing field `type`")
    raise ValueError(f"unknown authentication type `{kind}`; expected `basic` or `bearer`")


@dataclass(frozen=True)
class HttpConfig:
    """HTTP settings for the TES backend."""

    auth: HttpAuth | None = None
    retries: int | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> HttpConfig:
        """Reads HTTP settings from a mapping."""
        data = _require_mapping(data, "HTTP configuration")
        auth = data.get("auth")
        return cls(
            auth=None if auth is None else auth_from_dict(auth),
            retries=_optional_uint(data, "retries", _U32_MAX),
        )

    def to_dict(self) -> dict[str, Any]:
        """Returns the settings as a plain mapping."""
        result: dict[str, Any] = {}
        if self.auth is not None:
            result["auth"] = self.auth.to_dict()
        if self.retries is not None:
            result["retries"] = self.retries
        return result


def _validate_url(url: Any) -> str:
    if not isinstance(url, str):
        raise ValueError("invalid type for `url`: expected a string")
    try:
        parts = urlsplit(url)
    except ValueError as error:
        raise ValueError(f"invalid URL `{url}`: {error}") from None
    if not parts.scheme:
        raise ValueError(f"invalid URL `{url}`: relative URL without a base")
    if parts.scheme in {"http", "https"} and not parts.hostname:
        raise ValueError(f"invalid URL `{url}`: empty host")
    return url


@dataclass(frozen=True)
class TesConfig:
    """Configuration of a TES execution backend."""

    url: str
    http: HttpConfig = field(default_factory=HttpConfig)
    interval: int | None = None

    def __post_init__(self) -> None:
        _validate_url(self.url)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> TesConfig:
        """Reads a TES configuration from a mapping."""
        data = _require_mapping(data, "TES configuration")
        if "url" not in data:
            raise ValueError("missing field `url`")
        if "http" not in data:
            raise ValueError("missing field `http`")
        return cls(
            url=_validate_url(data["url"]),
            http=HttpConfig.from_dict(data["http"]),
            interval=_optional_uint(data, "interval", _U64_MAX),
        )

    def to_dict(self) -> dict[str, Any]:
        """Returns the configuration as a plain mapping."""
        result: dict[str, Any] = {"url": self.url, "http": self.http.to_dict()}
        if self.interval is not None:
            result["interval"] = self.interval
        return result