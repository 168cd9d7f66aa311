"""Boot type detection for signed Chromium OS kernel partitions.

A kernel partition starts with a key block header (vboot_struct.h):

    offset  size  field
         0     8  magic "CHROMEOS"
         8     4  header version major
        12     4  header version minor
        16     8  key block size
        24    24  key block signature descriptor
        48    24  key block checksum descriptor
        72     8  key block flags (only the low byte is used)

The flags tell which firmware modes accept the kernel. Recovery and USB
kernels share the same flags and are told apart by the kernel command line.
"""

from __future__ import annotations

import re
import struct
from contextlib import nullcontext
from typing import Optional

from cros_image_tools.config import settings
from cros_image_tools.domain import BootType, KeyBlockHeader
from cros_image_tools.domain.models import PathLike
from cros_image_tools.logging import LoggerFactory

from .commands import find_command, run_checked_command
from .exceptions import CommandError
from .locator import PartitionLocator
from .partitions import dump_partition
from .temp import TempRegistry


log = LoggerFactory.for_kernel()

KEY_BLOCK_MAGIC = b"CHROMEOS"
KEY_BLOCK_FLAG_OFFSET = 72  # magic:8 major:4 minor:4 size:8 2*(sig:8*3)
KEY_BLOCK_HEADER = struct.Struct("<8sIIQ24s24sB")

KEY_BLOCK_FLAG_DEVELOPER_0 = 1  # Developer switch off
KEY_BLOCK_FLAG_DEVELOPER_1 = 2  # Developer switch on
KEY_BLOCK_FLAG_RECOVERY_0 = 4  # Not recovery mode
KEY_BLOCK_FLAG_RECOVERY_1 = 8  # Recovery mode

DEVELOPER_FLAGS = KEY_BLOCK_FLAG_DEVELOPER_0 | KEY_BLOCK_FLAG_DEVELOPER_1

# Same minimum run length as strings(1)
_PRINTABLE_RUN = re.compile(rb"[\x20-\x7e\t]{4,}")
_ROOT_PARAM = re.compile(r"(?<![\w])root=")


def parse_key_block(data: bytes) -> Optional[KeyBlockHeader]:
    """Decode the fixed header fields, or None if data is not a key block."""
    if data[: len(KEY_BLOCK_MAGIC)] != KEY_BLOCK_MAGIC:
        return None
    if len(data) < KEY_BLOCK_HEADER.size:
        log.debug(f"Key block header truncated at {len(data)} bytes")
        return None
    magic, major, minor, size, _signature, _checksum, flags = (
        KEY_BLOCK_HEADER.unpack_from(data)
    )
    return KeyBlockHeader(
        magic=magic,
        header_version_major=major,
        header_version_minor=minor,
        key_block_size=size,
        flags=flags,
    )


def read_key_block(path: PathLike) -> Optional[KeyBlockHeader]:
    with open(path, "rb") as handle:
        return parse_key_block(handle.read(KEY_BLOCK_HEADER.size))


def has_word(text: str, word: str) -> bool:
    """Match word the way ``grep -w`` does."""
    return re.search(rf"(?<![\w]){re.escape(word)}(?![\w])", text) is not None


def scan_printable_strings(data: bytes) -> list[str]:
    return [run.decode("ascii") for run in _PRINTABLE_RUN.findall(data)]


def scan_kernel_config(path: PathLike) -> str:
    """Best-effort command line lookup through printable strings.

    Without dump_kernel_config the command line is guessed from printable
    runs holding both a root= parameter and cros_recovery. This can both miss
    a command line and pick up unrelated text.
    """
    with open(path, "rb") as handle:
        data = handle.read()
    lines = [
        line
        for line in scan_printable_strings(data)
        if _ROOT_PARAM.search(line) and has_word(line, "cros_recovery")
    ]
    return "\n".join(lines)


def read_kernel_config(path: PathLike) -> str:
    """Return the kernel command line embedded in a kernel partition."""
    tool_name = settings.get_setting("kernel_config_tool", "dump_kernel_config")
    tool = find_command(tool_name) if tool_name else None
    if tool:
        try:
            return run_checked_command([tool, str(path)])
        except CommandError as error:
            log.warning(f"{tool_name} failed, scanning strings instead: {error}")
    return scan_kernel_config(path)


def classify_flags(flags: int, path: Optional[PathLike] = None) -> BootType:
    """Map key block flags to a boot type.

    path is only read when the flags describe a developer-mode recovery
    kernel and the command line is needed.
    """
    if flags & KEY_BLOCK_FLAG_RECOVERY_0:
        return BootType.SSD
    if flags & KEY_BLOCK_FLAG_RECOVERY_1:
        if (flags & DEVELOPER_FLAGS) == KEY_BLOCK_FLAG_DEVELOPER_0:
            return BootType.FACTORY_INSTALL
        # Recovery or USB. Check "cros_recovery" in kernel config.
        kernel_config = read_kernel_config(path) if path is not None else ""
        if has_word(kernel_config, "cros_recovery") and has_word(
            kernel_config, "kern_b_hash"
        ):
            return BootType.RECOVERY
        return BootType.USB
    return BootType.UNKNOWN


def classify_boot_type(path: PathLike) -> BootType:
    """Determines the boot type of a Chromium OS kernel partition.

    Args:
        path: File holding the kernel partition (key block first).

    Returns:
        BootType; INVALID when the magic does not match, which is the normal
        answer for anything that is not a signed kernel.
    """
    header = read_key_block(path)
    if header is None:
        return BootType.INVALID
    boot_type = classify_flags(header.flags, path)
    log.debug(f"{path}: key block flags {header.flags:#x} -> {boot_type}")
    return boot_type


def classify_partition_boot_type(
    image: PathLike,
    number: int,
    *,
    locator: Optional[PartitionLocator] = None,
    registry: Optional[TempRegistry] = None,
) -> BootType:
    """Dump a kernel partition to a scratch file and classify it."""
    with TempRegistry() if registry is None else nullcontext(registry) as scratch:
        kernel_file = scratch.make_temp_file(suffix=".kernel")
        with open(kernel_file, "wb") as sink:
            dump_partition(image, number, sink, locator=locator)
        return classify_boot_type(kernel_file)

