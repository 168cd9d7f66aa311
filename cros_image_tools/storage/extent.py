"""Raw extent reads with dd.

Offsets and counts are in 512-byte sectors. When both are multiples of
BUFFER_RATIO the transfer is rescaled to 2 MiB blocks; the bytes produced are
identical, only the number of read calls changes.
"""

from __future__ import annotations

import io
import subprocess
from typing import BinaryIO, Optional

from cros_image_tools.domain import SECTOR_SIZE, BlockGeometry
from cros_image_tools.domain.models import PathLike
from cros_image_tools.logging import LoggerFactory

from .exceptions import CommandFailedError
from .progress import ProgressCallback, log_progress


log = LoggerFactory.for_extent()

# 2M / 512 = 4096
BUFFER_RATIO = 4096
CHUNK_SIZE = 1024 * 1024


def align_extent(offset: int, count: int, block_size: int = SECTOR_SIZE) -> BlockGeometry:
    """Try to use a larger buffer if offset and count can be re-aligned."""
    if offset % BUFFER_RATIO == 0 and count % BUFFER_RATIO == 0:
        return BlockGeometry(
            block_size=block_size * BUFFER_RATIO,
            position=offset // BUFFER_RATIO,
            count=count // BUFFER_RATIO,
        )
    return BlockGeometry(block_size=block_size, position=offset, count=count)


def build_dump_command(image: PathLike, geometry: BlockGeometry) -> list[str]:
    return [
        "dd",
        f"if={image}",
        f"bs={geometry.block_size}",
        f"skip={geometry.position}",
        f"count={geometry.count}",
        "status=none",
    ]


def dump_extent(
    image: PathLike,
    offset: int,
    sectors: int,
    sink: BinaryIO,
    *,
    optimize: bool = True,
    progress: Optional[ProgressCallback] = None,
) -> int:
    """Dumps a file by given offset and size (in sectors) into sink.

    Args:
        image: Image file or block device to read.
        offset: Start of the extent, in sectors.
        sectors: Length of the extent, in sectors.
        sink: Binary file object receiving the bytes.
        optimize: Use 2 MiB blocks when the extent is aligned; False forces
            512-byte blocks.
        progress: Optional observer called with (bytes_copied, total_bytes).

    Returns:
        Number of bytes written to sink.

    Raises:
        CommandFailedError: If dd fails (missing image, unreadable device).
    """
    if optimize:
        geometry = align_extent(offset, sectors)
    else:
        geometry = BlockGeometry(block_size=SECTOR_SIZE, position=offset, count=sectors)
    command = build_dump_command(image, geometry)
    total_bytes = geometry.byte_count
    log.debug(f"Running command: {' '.join(command)}")

    process = subprocess.Popen(command, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    copied = 0
    try:
        for chunk in iter(lambda: process.stdout.read(CHUNK_SIZE), b""):
            sink.write(chunk)
            copied += len(chunk)
            if progress is not None:
                progress(copied, total_bytes)
            log_progress(str(image), copied, total_bytes)
        stderr = process.stderr.read().decode("utf-8", errors="replace").strip()
    except BaseException:
        process.kill()
        process.wait()
        raise
    finally:
        process.stdout.close()
        process.stderr.close()
    returncode = process.wait()
    if returncode != 0:
        raise CommandFailedError(command, returncode, stderr)
    flush = getattr(sink, "flush", None)
    if flush is not None:
        flush()
    log.debug(f"Dumped {copied} bytes from {image} at sector {offset}")
    return copied


def read_extent(
    image: PathLike, offset: int, sectors: int, *, optimize: bool = True
) -> bytes:
    """Return the bytes of an extent."""
    buffer = io.BytesIO()
    dump_extent(image, offset, sectors, buffer, optimize=optimize)
    return buffer.getvalue()
