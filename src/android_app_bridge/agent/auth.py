"""Token authentication with a process-wide failure circuit breaker."""

from __future__ import annotations

import hmac
import secrets
import threading

import structlog

from android_app_bridge.protocol.codec import WireReader, encode_long
from android_app_bridge.validation import validate_token

logger = structlog.get_logger()

DEFAULT_MAX_AUTH_FAILURES = 50


def generate_token() -> int:
    """Generate a random signed 64-bit token."""
    return secrets.randbits(64) - 2**63


class FailureCounter:
    """Monotonic count of rejected tokens, shared by every connection.

    Trips once the count exceeds ``threshold``. There is no reset.
    """

    def __init__(self, threshold: int = DEFAULT_MAX_AUTH_FAILURES) -> None:
        self.threshold = threshold
        self._count = 0
        self._lock = threading.Lock()

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    @property
    def tripped(self) -> bool:
        with self._lock:
            return self._count > self.threshold

    def record_failure(self) -> int:
        """Increment the count and return the new value."""
        with self._lock:
            self._count += 1
            return self._count


class Authenticator:
    """Checks the int64 token that precedes a privileged command."""

    def __init__(self, token: int, counter: FailureCounter | None = None) -> None:
        validate_token(token)
        self._expected = encode_long(token)
        self.counter = counter or FailureCounter()

    async def authenticate(self, reader: WireReader) -> bool:
        """Read one token from the stream and compare it to ours.

        On mismatch the shared failure counter is incremented; the caller must
        then close the connection.
        """
        received = await reader.read_long()
        if hmac.compare_digest(encode_long(received), self._expected):
            return True
        failures = self.counter.record_failure()
        logger.warning(
            "auth_token_mismatch",
            failures=failures,
            threshold=self.counter.threshold,
        )
        return False
