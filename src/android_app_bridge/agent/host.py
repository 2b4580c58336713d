"""Host capabilities the agent acts on: UI surfaces and resource files."""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Any, Protocol

import structlog

logger = structlog.get_logger()

SurfaceHandle = Any


class HostSurfaceProvider(Protocol):
    """UI surface operations of the hosting process.

    All methods may block; the dispatcher calls them off the event loop.
    """

    def current_foreground_surface(self) -> SurfaceHandle | None: ...

    def restart(self, surface: SurfaceHandle) -> None: ...

    def show_message(self, surface: SurfaceHandle, text: str) -> None: ...


class ResourceFiles(Protocol):
    """Resolves on-device file sizes and checksums for PATH_* commands."""

    extracted_resources: bool

    def file_size(self, path: str) -> int: ...

    def checksum(self, path: str) -> bytes | None: ...


class LoggingSurfaceProvider:
    """Surface provider for running an agent outside an app.

    Reports a single foreground surface and logs what would be shown or
    restarted.
    """

    def __init__(self, name: str = "main", foreground: bool = True) -> None:
        self.name = name
        self.foreground = foreground
        self.messages: list[str] = []
        self.restarts = 0

    def current_foreground_surface(self) -> str | None:
        return self.name if self.foreground else None

    def restart(self, surface: str) -> None:
        self.restarts += 1
        logger.info("surface_restarted", surface=surface, restarts=self.restarts)

    def show_message(self, surface: str, text: str) -> None:
        self.messages.append(text)
        logger.info("surface_message", surface=surface, text=text)


class DirectoryResourceFiles:
    """Resource files rooted at a local directory.

    Sizes are ``-1`` and checksums ``None`` for paths that are missing or
    resolve outside the root.
    """

    def __init__(self, root: Path, extracted_resources: bool = True) -> None:
        self.root = Path(root).resolve()
        self.extracted_resources = extracted_resources

    def _resolve(self, path: str) -> Path | None:
        candidate = (self.root / path.lstrip("/")).resolve()
        if candidate != self.root and self.root not in candidate.parents:
            logger.warning("resource_path_outside_root", path=path)
            return None
        if not candidate.is_file():
            return None
        return candidate

    def file_size(self, path: str) -> int:
        resolved = self._resolve(path)
        if resolved is None:
            return -1
        return resolved.stat().st_size

    def checksum(self, path: str) -> bytes | None:
        resolved = self._resolve(path)
        if resolved is None:
            return None
        digest = hashlib.md5()
        with resolved.open("rb") as fh:
            for chunk in iter(lambda: fh.read(64 * 1024), b""):
                digest.update(chunk)
        return digest.digest()


class DisabledResourceFiles:
    """Resource files with extracted-resources mode off."""

    extracted_resources = False

    def file_size(self, path: str) -> int:
        return -1

    def checksum(self, path: str) -> bytes | None:
        return None
