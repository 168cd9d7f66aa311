"""Temporary object management.

A TempRegistry records mount points and scratch files as they are created and
destroys them when drained. Draining is best effort: every failure is logged
and skipped so one stuck mount does not keep the rest from being cleaned.

Use it as a context manager to drain on both normal and error exits:

    with TempRegistry() as registry:
        mount_point = registry.make_temp_dir()
        mount_partition(image, 3, mount_point)
        ...

Objects registered in a process that is killed before draining are left
behind.
"""

from __future__ import annotations

import os
import tempfile
import threading
from typing import Optional

from cros_image_tools.domain.models import PathLike
from cros_image_tools.logging import LoggerFactory

from .commands import run_quiet_command, sudo_command


log = LoggerFactory.for_temp()

TEMP_PREFIX = "cros_image_"


class TempRegistry:
    """Registry of filesystem objects to remove at scope exit."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._objects: list[str] = []

    def __enter__(self) -> TempRegistry:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup_all()

    def __len__(self) -> int:
        with self._lock:
            return len(self._objects)

    @property
    def pending(self) -> list[str]:
        with self._lock:
            return list(self._objects)

    def register(self, *paths: PathLike) -> None:
        """Add temporary objects for cleanup_all to clean."""
        with self._lock:
            self._objects.extend(str(path) for path in paths)
        for path in paths:
            log.debug(f"Registered temporary object {path}")

    def make_temp_dir(self, prefix: str = TEMP_PREFIX) -> str:
        path = tempfile.mkdtemp(prefix=prefix)
        self.register(path)
        return path

    def make_temp_file(self, prefix: str = TEMP_PREFIX, suffix: str = "") -> str:
        fd, path = tempfile.mkstemp(prefix=prefix, suffix=suffix)
        os.close(fd)
        self.register(path)
        return path

    def cleanup_all(self) -> list[str]:
        """Cleans objects registered since the last drain.

        Returns:
            The distinct paths processed, in registration order.
        """
        with self._lock:
            objects, self._objects = self._objects, []

        cleaned: list[str] = []
        for path in dict.fromkeys(objects):
            cleaned.append(path)
            if os.path.isdir(path):
                _remove_mount_point(path)
            else:
                _remove_file(path)
        return cleaned


def _remove_mount_point(path: str) -> None:
    if os.path.ismount(path):
        if not run_quiet_command(sudo_command(["umount", "-d", path])):
            log.warning(f"Failed to unmount temporary mount point {path}")
    try:
        os.rmdir(path)
        return
    except PermissionError:
        pass
    except OSError as error:
        log.warning(f"Failed to remove temporary directory {path}: {error}")
        return
    if not run_quiet_command(sudo_command(["rmdir", path])):
        log.warning(f"Failed to remove temporary directory {path}")


def _remove_file(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as error:
        log.warning(f"Failed to remove temporary file {path}: {error}")


default_registry = TempRegistry()


def add_temp(*paths: PathLike) -> None:
    """Add temporary objects into the process-wide registry."""
    default_registry.register(*paths)


def clean_temp(registry: Optional[TempRegistry] = None) -> list[str]:
    """Cleans objects tracked by add_temp."""
    return (registry or default_registry).cleanup_all()
