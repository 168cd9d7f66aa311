"""Domain models for disk image partition operations."""

from __future__ import annotations

from .models import (
    SECTOR_SIZE,
    BlockGeometry,
    BootType,
    Extent,
    KeyBlockHeader,
    PartitionGeometry,
    PartitionRef,
)


__all__ = [
    "SECTOR_SIZE",
    "BlockGeometry",
    "BootType",
    "Extent",
    "KeyBlockHeader",
    "PartitionGeometry",
    "PartitionRef",
]
