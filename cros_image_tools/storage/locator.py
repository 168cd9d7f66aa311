"""Partition geometry lookup with graceful tool fallback.

Three backends are supported, tried in priority order:

    - cgpt: the GPT tool shipped with Chromium OS (``cgpt show -b/-s -i N``)
    - parted: machine readable listing in sector units (``parted -m ... unit s print``)
    - unpack_partitions: the ``unpack_partitions.sh`` manifest generated next
      to build images, for hosts with neither tool installed

Each backend probes its own availability. The locator uses the first backend
that resolves the partition; when no backend is usable at all it raises
ToolUnavailableError, and when the usable ones cannot find the partition it
raises PartitionNotFoundError.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable, Optional, Sequence

from cros_image_tools.config import settings
from cros_image_tools.domain import PartitionGeometry, PartitionRef
from cros_image_tools.domain.models import PathLike
from cros_image_tools.logging import LoggerFactory

from .commands import has_command, run_checked_command
from .exceptions import (
    CommandError,
    PartitionNotFoundError,
    PartitionTableParseError,
    ToolUnavailableError,
)


log = LoggerFactory.for_locator()

UNPACK_MANIFEST_NAME = "unpack_partitions.sh"


class PartitionTableStrategy:
    """One way of reading a partition table."""

    name = "base"

    def is_available(self, image: Path) -> bool:
        raise NotImplementedError

    def try_resolve(self, image: Path, number: int) -> Optional[PartitionGeometry]:
        """Return the partition geometry, or None if this tool cannot find it."""
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class CgptStrategy(PartitionTableStrategy):
    name = "cgpt"

    def is_available(self, image: Path) -> bool:
        return has_command("cgpt")

    def _show(self, flag: str, image: Path, number: int) -> Optional[int]:
        try:
            output = run_checked_command(
                ["cgpt", "show", flag, "-i", str(number), str(image)]
            ).strip()
        except CommandError as error:
            log.debug(f"cgpt could not read partition #{number}: {error}")
            return None
        if not output.isdigit():
            log.debug(f"cgpt returned no value for partition #{number}: {output!r}")
            return None
        return int(output)

    def try_resolve(self, image: Path, number: int) -> Optional[PartitionGeometry]:
        offset = self._show("-b", image, number)
        if offset is None:
            return None
        size = self._show("-s", image, number)
        if not size:
            # cgpt prints 0 for an unused table entry
            return None
        return PartitionGeometry(offset=offset, size=size)


class PartedStrategy(PartitionTableStrategy):
    name = "parted"

    def is_available(self, image: Path) -> bool:
        return has_command("parted")

    def try_resolve(self, image: Path, number: int) -> Optional[PartitionGeometry]:
        try:
            output = run_checked_command(
                ["parted", "-m", str(image), "unit", "s", "print"]
            )
        except CommandError as error:
            log.debug(f"parted could not read {image}: {error}")
            return None
        return parse_parted_output(output, number, image=image)


class UnpackManifestStrategy(PartitionTableStrategy):
    name = "unpack_partitions"

    def manifest_path(self, image: Path) -> Path:
        return image.parent / UNPACK_MANIFEST_NAME

    def is_available(self, image: Path) -> bool:
        manifest = self.manifest_path(image)
        try:
            return manifest.is_file() and manifest.stat().st_size > 0
        except OSError:
            return False

    def try_resolve(self, image: Path, number: int) -> Optional[PartitionGeometry]:
        text = self.manifest_path(image).read_text(encoding="utf-8", errors="replace")
        return parse_unpack_manifest(text, number)


def parse_parted_sector(value: str) -> int:
    """Parse a parted sector field such as "2048s"."""
    value = value.strip()
    if value.endswith("s"):
        value = value[:-1]
    return int(value)


def parse_parted_output(
    output: str, number: int, *, image: PathLike = "<image>"
) -> Optional[PartitionGeometry]:
    """Extract partition geometry from ``parted -m unit s print`` output.

    Returns None when the partition is not listed. A listed partition whose
    fields cannot be read raises PartitionTableParseError.
    """
    prefix = f"{number}:"
    line = next(
        (line.strip() for line in output.splitlines() if line.startswith(prefix)),
        None,
    )
    if line is None:
        return None
    fields = line.rstrip(";").split(":")
    try:
        return PartitionGeometry(
            offset=parse_parted_sector(fields[1]),
            size=parse_parted_sector(fields[3]),
        )
    except (IndexError, ValueError) as error:
        raise PartitionTableParseError("parted", str(image), number, line) from error


def parse_unpack_manifest(text: str, number: int) -> Optional[PartitionGeometry]:
    """Extract partition geometry from an unpack_partitions.sh manifest.

    Matching lines look like ``#     69632    33554432       1  Label: "STATE"``:
    the second and third whitespace columns hold start and size.
    """
    pattern = re.compile(rf" {number} +Label:")
    for line in text.splitlines():
        if not pattern.search(line):
            continue
        columns = line.split()
        try:
            return PartitionGeometry(offset=int(columns[1]), size=int(columns[2]))
        except (IndexError, ValueError):
            log.debug(f"Skipping malformed manifest line: {line!r}")
    return None


STRATEGY_TYPES = {
    CgptStrategy.name: CgptStrategy,
    PartedStrategy.name: PartedStrategy,
    UnpackManifestStrategy.name: UnpackManifestStrategy,
}


def default_strategies() -> list[PartitionTableStrategy]:
    """Build the strategy list from the ``partition_tools`` setting."""
    return [STRATEGY_TYPES[name]() for name in settings.get_partition_tools()]


class PartitionLocator:
    """Resolve partition offsets and sizes using the best available tool."""

    def __init__(self, strategies: Optional[Iterable[PartitionTableStrategy]] = None):
        self.strategies: Sequence[PartitionTableStrategy] = (
            list(strategies) if strategies is not None else default_strategies()
        )

    def available_strategies(self, image: PathLike) -> list[PartitionTableStrategy]:
        image = Path(image)
        return [strategy for strategy in self.strategies if strategy.is_available(image)]

    def locate(self, image: PathLike, number: int) -> PartitionGeometry:
        image = Path(image)
        number = int(number)
        available = self.available_strategies(image)
        if not available:
            raise ToolUnavailableError(
                str(image), [strategy.name for strategy in self.strategies]
            )
        for strategy in available:
            geometry = strategy.try_resolve(image, number)
            if geometry is not None:
                log.debug(
                    f"{PartitionRef.of(image, number).format_label()} via "
                    f"{strategy.name}: offset={geometry.offset} size={geometry.size}"
                )
                return geometry
            log.debug(f"{strategy.name} did not find partition #{number} in {image}")
        raise PartitionNotFoundError(str(image), number)

    def offset(self, image: PathLike, number: int) -> int:
        return self.locate(image, number).offset

    def size(self, image: PathLike, number: int) -> int:
        return self.locate(image, number).size


def has_part_tools() -> bool:
    """Finds if current system has tools for partition commands."""
    return has_command("cgpt") or has_command("parted")


def part_offset(image: PathLike, number: int, locator: Optional[PartitionLocator] = None) -> int:
    """Partition start, in sectors."""
    return (locator or PartitionLocator()).offset(image, number)


def part_size(image: PathLike, number: int, locator: Optional[PartitionLocator] = None) -> int:
    """Partition length, in sectors."""
    return (locator or PartitionLocator()).size(image, number)


def locate_partition(
    image: PathLike, number: int, locator: Optional[PartitionLocator] = None
) -> PartitionGeometry:
    return (locator or PartitionLocator()).locate(image, number)
