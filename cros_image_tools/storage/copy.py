"""Copy a partition from one image into a partition slot of another."""

from __future__ import annotations

import subprocess
from contextlib import suppress
from typing import Optional

from cros_image_tools.domain import SECTOR_SIZE, BlockGeometry, PartitionRef
from cros_image_tools.domain.models import PathLike
from cros_image_tools.logging import LoggerFactory, operation_context

from .exceptions import CommandFailedError, InsufficientSpaceError
from .extent import BUFFER_RATIO
from .locator import PartitionLocator
from .partitions import dump_partition
from .progress import ProgressCallback


log = LoggerFactory.for_copy()


def destination_geometry(dst_offset: int, length: int) -> BlockGeometry:
    """dd block size and seek for writing length sectors at dst_offset.

    Only the destination offset and the source length take part in the
    alignment test; the source offset is not checked here. The source read
    goes through dump_partition, which decides its own block size, so the
    bytes written are the same whichever block size each side picks.
    """
    if dst_offset % BUFFER_RATIO == 0 and length % BUFFER_RATIO == 0:
        return BlockGeometry(
            block_size=SECTOR_SIZE * BUFFER_RATIO,
            position=dst_offset // BUFFER_RATIO,
            count=length // BUFFER_RATIO,
        )
    return BlockGeometry(block_size=SECTOR_SIZE, position=dst_offset, count=length)


def build_write_command(dst_image: PathLike, geometry: BlockGeometry) -> list[str]:
    return [
        "dd",
        f"of={dst_image}",
        f"bs={geometry.block_size}",
        f"seek={geometry.position}",
        "conv=notrunc",
        "oflag=dsync",
        "status=none",
    ]


def copy_partition(
    src_image: PathLike,
    src_part: int,
    dst_image: PathLike,
    dst_part: int,
    *,
    locator: Optional[PartitionLocator] = None,
    progress: Optional[ProgressCallback] = None,
) -> int:
    """Copy a partition from one image to another.

    Both partitions are resolved before either image is touched. The
    destination file is written in place and never truncated; bytes of the
    destination slot past the source length are left as they were.

    Returns:
        Number of bytes copied.

    Raises:
        PartitionNotFoundError / ToolUnavailableError: lookup failed.
        InsufficientSpaceError: source partition is larger than the
            destination partition; nothing is written.
        CommandFailedError: dd failed on either side.
    """
    locator = locator or PartitionLocator()
    source = PartitionRef.of(src_image, src_part)
    target = PartitionRef.of(dst_image, dst_part)

    src_geometry = locator.locate(src_image, src_part)
    dst_geometry = locator.locate(dst_image, dst_part)
    if src_geometry.size > dst_geometry.size:
        raise InsufficientSpaceError(
            source.format_label(),
            src_geometry.size,
            target.format_label(),
            dst_geometry.size,
        )

    geometry = destination_geometry(dst_geometry.offset, src_geometry.size)
    command = build_write_command(dst_image, geometry)

    with operation_context(
        "copy", source=source.format_label(), target=target.format_label()
    ) as op_log:
        op_log.debug(f"Running command: {' '.join(command)}")
        writer = subprocess.Popen(command, stdin=subprocess.PIPE, stderr=subprocess.PIPE)
        copied = None
        try:
            copied = dump_partition(
                src_image, src_part, writer.stdin, locator=locator, progress=progress
            )
            writer.stdin.close()
        except BrokenPipeError:
            # The writer exited early; its exit status and stderr say why.
            with suppress(BrokenPipeError):
                writer.stdin.close()
        except BaseException:
            writer.kill()
            writer.wait()
            raise
        stderr = writer.stderr.read().decode("utf-8", errors="replace").strip()
        writer.stderr.close()
        returncode = writer.wait()
        if returncode != 0:
            raise CommandFailedError(command, returncode, stderr)
        if copied is None:
            raise CommandFailedError(command, returncode, "dd stopped reading its input")
        op_log.info(f"Copied {copied} bytes from {source.format_label()} to {target.format_label()}")
    return copied
