"""Custom exceptions for disk image operations.

This module defines a hierarchy of exceptions for image operations so callers
can tell a missing partition tool apart from a missing partition, and a failed
mount apart from a failed copy.

Exception Hierarchy:
    ImageError (base)
        ├── CommandError
        │   └── CommandFailedError
        ├── PartitionError
        │   ├── ToolUnavailableError
        │   ├── PartitionNotFoundError
        │   └── PartitionTableParseError
        ├── MountError
        │   ├── MapError
        │   └── UnmountFailedError
        └── CopyError
            └── InsufficientSpaceError

Usage:
    from cros_image_tools.storage.exceptions import PartitionNotFoundError

    if geometry is None:
        raise PartitionNotFoundError(image, number)
"""

from __future__ import annotations


class ImageError(Exception):
    """Base exception for all image operations."""


class CommandError(ImageError):
    """Base exception for external command errors."""


class CommandFailedError(CommandError):
    """An external command exited with a non-zero status."""

    def __init__(self, command: list[str], returncode: int, message: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.message = message
        text = f"Command failed ({' '.join(self.command)})"
        if message:
            text += f": {message}"
        super().__init__(text)


class PartitionError(ImageError):
    """Base exception for partition lookup errors."""


class ToolUnavailableError(PartitionError):
    """No partition inspection tool is usable for the image."""

    def __init__(self, image: str, tried: list[str] | None = None):
        self.image = str(image)
        self.tried = list(tried or [])
        msg = f"No partition tool available for {self.image}"
        if self.tried:
            msg += f" (tried: {', '.join(self.tried)})"
        super().__init__(msg)


class PartitionNotFoundError(PartitionError):
    """Partition number is not present in the image's partition table."""

    def __init__(self, image: str, number: int):
        self.image = str(image)
        self.number = number
        super().__init__(f"failed to find partition #{number} from: {self.image}")


class PartitionTableParseError(PartitionError):
    """A partition tool listed the partition but its output could not be read."""

    def __init__(self, tool: str, image: str, number: int, output: str = ""):
        self.tool = tool
        self.image = str(image)
        self.number = number
        self.output = output
        super().__init__(
            f"Unable to parse {tool} output for partition #{number} of {self.image}"
        )


class MountError(ImageError):
    """Base exception for mount and loop mapping errors."""


class MapError(MountError):
    """Failed to map a partition to a loop device."""

    def __init__(self, image: str, number: int, reason: str = ""):
        self.image = str(image)
        self.number = number
        self.reason = reason
        msg = f"Failed to map partition #{number} of {self.image}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class UnmountFailedError(MountError):
    """Failed to unmount a partition mount point."""

    def __init__(self, mount_point: str, reason: str = ""):
        self.mount_point = str(mount_point)
        self.reason = reason
        msg = f"Failed to unmount {self.mount_point}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class CopyError(ImageError):
    """Base exception for partition copy errors."""


class InsufficientSpaceError(CopyError):
    """Destination partition is smaller than the source partition."""

    def __init__(
        self,
        source_name: str,
        source_size: int,
        destination_name: str,
        destination_size: int,
    ):
        self.source_name = source_name
        self.source_size = source_size
        self.destination_name = destination_name
        self.destination_size = destination_size
        super().__init__(
            f"Destination {destination_name} ({destination_size} sectors) "
            f"is too small for source {source_name} ({source_size} sectors)"
        )
