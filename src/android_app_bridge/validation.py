"""Validation helpers for user input."""

from __future__ import annotations

import re

from android_app_bridge.errors import invalid_package_error, invalid_token_error

# Package name: starts with letter, segments separated by dots, each segment alphanumeric/underscore
PACKAGE_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*(\.[a-zA-Z][a-zA-Z0-9_]*)+$")

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1


def validate_package(package: str) -> None:
    """Validate Android package name format.

    Args:
        package: Package name to validate

    Raises:
        BridgeError: If package name is invalid
    """
    if not PACKAGE_PATTERN.match(package):
        raise invalid_package_error(package)


def validate_token(token: int) -> None:
    """Validate that a token fits the int64 wire encoding.

    Raises:
        BridgeError: If token is not an int or is out of range
    """
    if isinstance(token, bool) or not isinstance(token, int):
        raise invalid_token_error(token)
    if not INT64_MIN <= token <= INT64_MAX:
        raise invalid_token_error(token)
