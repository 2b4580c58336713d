"""Session handshake - one magic + version round trip per connection."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from android_app_bridge.errors import bad_magic_error, protocol_mismatch_error
from android_app_bridge.protocol.codec import WireReader, WireWriter
from android_app_bridge.protocol.constants import PROTOCOL_IDENTIFIER, PROTOCOL_VERSION

logger = structlog.get_logger()


@dataclass(frozen=True)
class HandshakeResult:
    """Outcome of the agent side of the handshake."""

    local_version: int
    remote_version: int

    @property
    def compatible(self) -> bool:
        return self.local_version == self.remote_version


async def client_handshake(
    reader: WireReader,
    writer: WireWriter,
    version: int = PROTOCOL_VERSION,
    *,
    strict: bool = True,
) -> int:
    """Send the protocol header and return the agent's version.

    With ``strict`` a version mismatch raises ``ERR_PROTOCOL_MISMATCH``.
    Without it the mismatch is only logged; note that a mismatched agent
    closes the connection, so the following command will usually fail.
    """
    writer.write_long(PROTOCOL_IDENTIFIER)
    writer.write_int(version)
    await writer.drain()

    agent_version = await reader.read_int()
    if agent_version != version:
        logger.warning(
            "protocol_version_mismatch",
            client_version=version,
            agent_version=agent_version,
            strict=strict,
        )
        if strict:
            raise protocol_mismatch_error(version, agent_version)
    return agent_version


async def agent_handshake(
    reader: WireReader,
    writer: WireWriter,
    version: int = PROTOCOL_VERSION,
) -> HandshakeResult:
    """Validate the client's header and always reply with our version.

    Raises ``ERR_BAD_MAGIC`` without writing anything when the header is not
    ours. A version mismatch is reported through ``HandshakeResult`` after the
    reply has been sent, so the client can detect the skew.
    """
    magic = await reader.read_long()
    if magic != PROTOCOL_IDENTIFIER:
        raise bad_magic_error(magic, PROTOCOL_IDENTIFIER)

    client_version = await reader.read_int()
    writer.write_int(version)
    await writer.drain()

    result = HandshakeResult(local_version=version, remote_version=client_version)
    if not result.compatible:
        logger.warning(
            "protocol_version_mismatch",
            agent_version=version,
            client_version=client_version,
        )
    return result
