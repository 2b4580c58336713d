"""Build identifier transfer, outside the live socket protocol."""

from __future__ import annotations

import structlog

from android_app_bridge.desktop.transport import DeviceTransport
from android_app_bridge.paths import build_id_path
from android_app_bridge.validation import validate_package

logger = structlog.get_logger()


async def transfer_build_id_to_device(
    transport: DeviceTransport, package: str, build_id: str
) -> str:
    """Record ``build_id`` as the last deployed build of ``package``.

    Returns the remote path written. Transport failures propagate.
    """
    validate_package(package)
    remote = build_id_path(package)
    await transport.push_text(remote, build_id)
    logger.info("build_id_pushed", serial=transport.serial, package=package, remote=remote)
    return remote


async def get_device_build_id(transport: DeviceTransport, package: str) -> str | None:
    """Read the last deployed build id, or None if none was ever recorded."""
    validate_package(package)
    text = await transport.pull_text(build_id_path(package))
    if text is None:
        logger.debug("build_id_absent", serial=transport.serial, package=package)
        return None
    return text.strip()
