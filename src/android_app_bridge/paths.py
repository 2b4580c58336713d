"""Device paths and local socket addresses derived from the package id."""

from __future__ import annotations

import sys
from pathlib import Path

DEVICE_TEMP_DIR = "/data/local/tmp"
BUILD_ID_TXT = "build-id.txt"


def build_id_path(package: str) -> str:
    """Remote path of the build identifier file for a package."""
    return f"{DEVICE_TEMP_DIR}/{package}-{BUILD_ID_TXT}"


def socket_name(package: str) -> str:
    """Name of the agent's local socket; the package id itself."""
    return package


def local_socket_address(name: str, socket_dir: Path | None = None) -> str:
    """Resolve a socket name to an address ``asyncio`` unix sockets accept.

    Without ``socket_dir`` the Linux abstract namespace is used, matching
    Android's ``LocalServerSocket``. With it, a filesystem socket
    ``<socket_dir>/<name>.sock`` is used instead.
    """
    if socket_dir is not None:
        return str(Path(socket_dir) / f"{name}.sock")
    if not sys.platform.startswith("linux"):
        raise ValueError("Abstract sockets require Linux; pass socket_dir")
    return f"\0{name}"
