"""Error model - Actionable errors with remediation hints."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class BridgeError(Exception):
    """
    Base error with context and remediation guidance.

    Raised on both ends of the control channel. Protocol-level errors end the
    offending connection; transport-level errors are surfaced to the caller
    unchanged.
    """

    code: str
    message: str
    context: dict[str, Any] = field(default_factory=dict)
    remediation: str = ""

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "code": self.code,
            "message": self.message,
            "context": self.context,
            "remediation": self.remediation,
        }


TRANSPORT_ERROR_CODES = frozenset(
    {"ERR_DEVICE_OFFLINE", "ERR_ADB_COMMAND", "ERR_TIMEOUT", "ERR_SYNC_FAILED"}
)


def is_transport_failure(error: BaseException) -> bool:
    """Return True if the error came from the device transport layer."""
    return isinstance(error, BridgeError) and error.code in TRANSPORT_ERROR_CODES


# Protocol errors


def bad_magic_error(received: int, expected: int) -> BridgeError:
    """Create error for a connection that did not start with the protocol header."""
    return BridgeError(
        code="ERR_BAD_MAGIC",
        message=f"Unrecognized header format {received:#x}",
        context={"received": received, "expected": expected},
        remediation="Only protocol clients may connect to the agent socket.",
    )


def protocol_mismatch_error(local_version: int, remote_version: int) -> BridgeError:
    """Create error for mismatched protocol versions."""
    return BridgeError(
        code="ERR_PROTOCOL_MISMATCH",
        message=(
            f"Protocol version mismatch: local is {local_version}, "
            f"remote is {remote_version}"
        ),
        context={"local_version": local_version, "remote_version": remote_version},
        remediation="Redeploy the app so the agent and desktop tool use the same version.",
    )


def auth_failed_error(failures: int) -> BridgeError:
    """Create error for a rejected token."""
    return BridgeError(
        code="ERR_AUTH_FAILED",
        message="Mismatched identity token from client",
        context={"failures": failures},
        remediation="Use the token the agent was provisioned with.",
    )


def truncated_stream_error(expected: int, received: int) -> BridgeError:
    """Create error for a stream that ended mid-value."""
    return BridgeError(
        code="ERR_TRUNCATED_STREAM",
        message=f"Stream ended after {received} of {expected} bytes",
        context={"expected": expected, "received": received},
        remediation="The peer closed the connection; retry the operation.",
    )


def malformed_stream_error(reason: str) -> BridgeError:
    """Create error for bytes that cannot be decoded as the expected value."""
    return BridgeError(
        code="ERR_MALFORMED_STREAM",
        message=f"Malformed stream: {reason}",
        context={"reason": reason},
        remediation="Check both ends speak the same protocol version.",
    )


def stream_closed_error(reason: str) -> BridgeError:
    """Create error for writing to a peer that has already closed."""
    return BridgeError(
        code="ERR_STREAM_CLOSED",
        message=f"Connection closed by peer: {reason}",
        context={"reason": reason},
        remediation="The agent ended the connection; check its log and retry.",
    )


def unknown_command_error(code: int) -> BridgeError:
    """Create error for an unrecognized command code."""
    return BridgeError(
        code="ERR_UNKNOWN_COMMAND",
        message=f"Unexpected message type: {code}",
        context={"command_code": code},
        remediation="Check both ends speak the same protocol version.",
    )


# Transport errors


def device_offline_error(serial: str) -> BridgeError:
    """Create error for offline device."""
    return BridgeError(
        code="ERR_DEVICE_OFFLINE",
        message=f"Device offline: {serial}",
        context={"serial": serial},
        remediation="Check device connection with 'adb devices' and reconnect.",
    )


def adb_command_error(command: str, reason: str) -> BridgeError:
    """Create error for an adb request the device rejected."""
    return BridgeError(
        code="ERR_ADB_COMMAND",
        message=f"adb command failed: {command}",
        context={"command": command, "reason": reason},
        remediation="Check the app is running and its agent socket is open, then retry.",
    )


def timeout_error(operation: str, timeout_s: float | None) -> BridgeError:
    """Create error for a transport operation that timed out."""
    return BridgeError(
        code="ERR_TIMEOUT",
        message=f"Operation timed out: {operation}",
        context={"operation": operation, "timeout_s": timeout_s},
        remediation="Check the device is responsive and retry.",
    )


def sync_error(path: str, reason: str) -> BridgeError:
    """Create error for a failed file push or pull."""
    return BridgeError(
        code="ERR_SYNC_FAILED",
        message=f"File transfer failed: {path}",
        context={"path": path, "reason": reason},
        remediation="Check the remote path is writable and the device has free space.",
    )


# Input validation errors


def invalid_package_error(package: str) -> BridgeError:
    """Create error for invalid package name."""
    return BridgeError(
        code="ERR_INVALID_PACKAGE",
        message=f"Invalid package name: {package}",
        context={"package": package},
        remediation="Package names must be like 'com.example.app'.",
    )


def invalid_token_error(token: object) -> BridgeError:
    """Create error for a token outside the signed 64-bit range."""
    return BridgeError(
        code="ERR_INVALID_TOKEN",
        message="Token must be a signed 64-bit integer",
        context={"type": type(token).__name__},
        remediation="Generate a token with 'android-app-bridge agent token'.",
    )
