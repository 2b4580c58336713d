"""Configuration models for the agent and the desktop client."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, field_validator

from android_app_bridge.agent.auth import DEFAULT_MAX_AUTH_FAILURES
from android_app_bridge.errors import BridgeError
from android_app_bridge.protocol.constants import PROTOCOL_VERSION
from android_app_bridge.validation import validate_package, validate_token

ENV_PREFIX = "ANDROID_APP_BRIDGE_"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env(name: str) -> str | None:
    value = os.environ.get(f"{ENV_PREFIX}{name}")
    return value if value not in (None, "") else None


def _env_values(names: dict[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for field_name, env_name in names.items():
        raw = _env(env_name)
        if raw is not None:
            values[field_name] = raw
    return values


class _BridgeConfig(BaseModel):
    package: str
    protocol_version: int = PROTOCOL_VERSION
    socket_dir: Path | None = None

    @field_validator("package")
    @classmethod
    def _check_package(cls, value: str) -> str:
        try:
            validate_package(value)
        except BridgeError as exc:
            raise ValueError(exc.message) from exc
        return value

    @field_validator("token", check_fields=False)
    @classmethod
    def _check_token(cls, value: int) -> int:
        try:
            validate_token(value)
        except BridgeError as exc:
            raise ValueError(exc.message) from exc
        return value


class AgentConfig(_BridgeConfig):
    """Settings for an agent embedded in an app process."""

    token: int
    max_auth_failures: int = DEFAULT_MAX_AUTH_FAILURES
    extracted_resources: bool = False

    @field_validator("max_auth_failures")
    @classmethod
    def _check_threshold(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_auth_failures must be positive")
        return value

    @classmethod
    def from_env(cls, **overrides: Any) -> AgentConfig:
        """Build from ``ANDROID_APP_BRIDGE_*`` variables; overrides win."""
        values = _env_values(
            {
                "package": "PACKAGE",
                "token": "TOKEN",
                "protocol_version": "PROTOCOL_VERSION",
                "max_auth_failures": "MAX_AUTH_FAILURES",
                "socket_dir": "SOCKET_DIR",
            }
        )
        raw_extracted = _env("EXTRACTED_RESOURCES")
        if raw_extracted is not None:
            values["extracted_resources"] = raw_extracted.lower() in _TRUE_VALUES
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


class ClientConfig(_BridgeConfig):
    """Settings for desktop-side invocations against one app."""

    token: int = 0
    serial: str | None = None
    strict_version: bool = True

    @classmethod
    def from_env(cls, **overrides: Any) -> ClientConfig:
        """Build from ``ANDROID_APP_BRIDGE_*`` variables; overrides win."""
        values = _env_values(
            {
                "package": "PACKAGE",
                "token": "TOKEN",
                "serial": "SERIAL",
                "protocol_version": "PROTOCOL_VERSION",
                "socket_dir": "SOCKET_DIR",
            }
        )
        raw_strict = _env("STRICT_VERSION")
        if raw_strict is not None:
            values["strict_version"] = raw_strict.lower() in _TRUE_VALUES
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
