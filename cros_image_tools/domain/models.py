"""Domain model for disk image partition operations.

Sizes and offsets are carried in 512-byte sectors unless a property name says
otherwise.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Union


SECTOR_SIZE = 512

PathLike = Union[str, Path]


# ==============================================================================
# Partition Domain
# ==============================================================================


@dataclass(frozen=True)
class PartitionRef:
    """A partition inside an image, identified by its table number."""

    image: Path
    number: int  # 1-based, as listed in the on-disk table

    @classmethod
    def of(cls, image: PathLike, number: int) -> PartitionRef:
        return cls(image=Path(image), number=int(number))

    def format_label(self) -> str:
        """Format a label for log lines, e.g. "chromiumos_image.bin#3"."""
        return f"{self.image.name}#{self.number}"


@dataclass(frozen=True)
class PartitionGeometry:
    """Start and length of a partition, in sectors."""

    offset: int
    size: int

    @property
    def offset_bytes(self) -> int:
        return self.offset * SECTOR_SIZE

    @property
    def size_bytes(self) -> int:
        return self.size * SECTOR_SIZE


@dataclass(frozen=True)
class Extent:
    """A contiguous byte range of an image.

    offset + length <= image length is not checked here; dd or the partition
    tool reports violations.
    """

    image: Path
    offset: int  # bytes
    length: int  # bytes

    @classmethod
    def from_geometry(cls, image: PathLike, geometry: PartitionGeometry) -> Extent:
        return cls(
            image=Path(image),
            offset=geometry.offset_bytes,
            length=geometry.size_bytes,
        )


@dataclass(frozen=True)
class BlockGeometry:
    """dd arguments for one transfer: block size plus skip/seek and count."""

    block_size: int
    position: int  # in blocks of block_size
    count: int  # in blocks of block_size

    @property
    def byte_count(self) -> int:
        return self.block_size * self.count

    @property
    def byte_position(self) -> int:
        return self.block_size * self.position


# ==============================================================================
# Kernel Domain
# ==============================================================================


class BootType(str, Enum):
    """Intended use of a signed kernel partition."""

    INVALID = "invalid"
    SSD = "ssd"
    RECOVERY = "recovery"
    USB = "usb"
    FACTORY_INSTALL = "factory_install"
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class KeyBlockHeader:
    """Fields of a kernel key block header needed for boot type checks."""

    magic: bytes
    header_version_major: int
    header_version_minor: int
    key_block_size: int
    flags: int
