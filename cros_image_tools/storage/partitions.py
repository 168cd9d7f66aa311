"""Partition-level access to raw disk images.

Every operation resolves the partition through a PartitionLocator first, so a
missing tool or partition fails before anything touches the image.

Functions:
    - dump_partition(): stream a partition's bytes to a file object
    - read_partition(): return a partition's bytes
    - partition_extent(): byte range of a partition
    - map_partition() / unmap_partition(): loop device for one partition
    - mount_partition() / unmount_partition(): loop mount with offset+sizelimit
    - mapped_partition() / mounted_partition(): context managers pairing the above

Mapping and mounting need root; commands are prefixed with sudo when the
process is unprivileged and the ``use_sudo`` setting is on.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import BinaryIO, Iterator, Optional

from cros_image_tools.domain import Extent, PartitionRef
from cros_image_tools.domain.models import PathLike
from cros_image_tools.logging import LoggerFactory

from .commands import run_checked_command, run_quiet_command, sudo_command
from .exceptions import CommandFailedError, MapError, MountError, UnmountFailedError
from .extent import dump_extent, read_extent
from .locator import PartitionLocator
from .progress import ProgressCallback
from .temp import TempRegistry


log = LoggerFactory.for_partition()

DEFAULT_MOUNT_OPTIONS = "ro"


def dump_partition(
    image: PathLike,
    number: int,
    sink: BinaryIO,
    *,
    locator: Optional[PartitionLocator] = None,
    progress: Optional[ProgressCallback] = None,
) -> int:
    """Dumps a specific partition from given image file into sink."""
    geometry = (locator or PartitionLocator()).locate(image, number)
    return dump_extent(image, geometry.offset, geometry.size, sink, progress=progress)


def read_partition(
    image: PathLike, number: int, *, locator: Optional[PartitionLocator] = None
) -> bytes:
    geometry = (locator or PartitionLocator()).locate(image, number)
    return read_extent(image, geometry.offset, geometry.size)


def partition_extent(
    image: PathLike, number: int, *, locator: Optional[PartitionLocator] = None
) -> Extent:
    """Byte range of a partition, as losetup and mount take it."""
    geometry = (locator or PartitionLocator()).locate(image, number)
    return Extent.from_geometry(image, geometry)


def map_partition(
    image: PathLike, number: int, *, locator: Optional[PartitionLocator] = None
) -> str:
    """Maps a specific partition from given image file to a loop device.

    Returns:
        The loop device path (e.g. /dev/loop3). Pass it to unmap_partition.

    Raises:
        PartitionNotFoundError / ToolUnavailableError: lookup failed.
        MapError: losetup failed or printed no device.
    """
    extent = partition_extent(image, number, locator=locator)
    command = sudo_command(
        [
            "losetup",
            "--offset",
            str(extent.offset),
            "--sizelimit",
            str(extent.length),
            "-f",
            "--show",
            str(image),
        ]
    )
    try:
        device = run_checked_command(command).strip()
    except CommandFailedError as error:
        raise MapError(str(image), number, error.message) from error
    if not device:
        raise MapError(str(image), number, "losetup printed no device")
    log.info(f"Mapped {PartitionRef.of(image, number).format_label()} to {device}")
    return device


def unmap_partition(device: str) -> bool:
    """Unmaps a loop device created by map_partition.

    Failures are logged and reported through the return value, never raised.
    """
    if run_quiet_command(sudo_command(["losetup", "-d", device])):
        log.info(f"Unmapped {device}")
        return True
    log.warning(f"Failed to detach loop device {device}")
    return False


def build_mount_options(offset_bytes: int, size_bytes: int, options: str = "") -> str:
    options = options.strip(",") or DEFAULT_MOUNT_OPTIONS
    return f"loop,offset={offset_bytes},sizelimit={size_bytes},{options}"


def mount_partition(
    image: PathLike,
    number: int,
    mount_point: PathLike,
    options: str = "",
    *,
    locator: Optional[PartitionLocator] = None,
) -> None:
    """Mounts a specific partition inside a given image file.

    Args:
        image: Image file to mount from.
        number: Partition number.
        mount_point: Existing directory to mount on.
        options: Extra mount options (e.g. "rw"); read-only when empty.

    Raises:
        MountError: mount failed.
    """
    extent = partition_extent(image, number, locator=locator)
    command = sudo_command(
        [
            "mount",
            "-o",
            build_mount_options(extent.offset, extent.length, options),
            str(image),
            str(mount_point),
        ]
    )
    try:
        run_checked_command(command)
    except CommandFailedError as error:
        raise MountError(
            f"Failed to mount partition #{number} of {image} at {mount_point}: "
            f"{error.message}"
        ) from error
    log.info(f"Mounted {PartitionRef.of(image, number).format_label()} at {mount_point}")


def unmount_partition(mount_point: PathLike) -> None:
    """Unmounts a partition mount point by mount_partition, detaching its loop device."""
    try:
        run_checked_command(sudo_command(["umount", "-d", str(mount_point)]))
    except CommandFailedError as error:
        raise UnmountFailedError(str(mount_point), error.message) from error
    log.info(f"Unmounted {mount_point}")


@contextmanager
def mapped_partition(
    image: PathLike, number: int, *, locator: Optional[PartitionLocator] = None
) -> Iterator[str]:
    device = map_partition(image, number, locator=locator)
    try:
        yield device
    finally:
        unmap_partition(device)


@contextmanager
def mounted_partition(
    image: PathLike,
    number: int,
    mount_point: Optional[PathLike] = None,
    options: str = "",
    *,
    locator: Optional[PartitionLocator] = None,
    registry: Optional[TempRegistry] = None,
) -> Iterator[str]:
    """Mount a partition for the duration of the block.

    Without a mount point a temporary directory is created and registered in
    registry (a private one when none is given); the registry removes it
    after unmounting.
    """
    owned_registry = None
    if mount_point is None:
        if registry is None:
            registry = owned_registry = TempRegistry()
        mount_point = registry.make_temp_dir()
    try:
        mount_partition(image, number, mount_point, options, locator=locator)
        try:
            yield str(mount_point)
        finally:
            unmount_partition(mount_point)
    finally:
        if owned_registry is not None:
            owned_registry.cleanup_all()
