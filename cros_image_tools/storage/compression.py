"""Compressor selection for redistributed images.

Only picks the best installed gzip/bzip2 program; the codecs themselves are
never implemented here.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from cros_image_tools.domain.models import PathLike
from cros_image_tools.logging import LoggerFactory

from .commands import has_command, run_checked_command


log = LoggerFactory.for_system()

COMPRESSED_SUFFIXES = {"gzip": ".gz", "bzip2": ".bz2"}


def gzip_command(*args: str) -> list[str]:
    """Finds the best gzip compressor."""
    if has_command("pigz"):
        # -b 32 (max window size of Deflate) gives the smallest output
        return ["pigz", "-b", "32", *args]
    return ["gzip", *args]


def bzip2_command(*args: str) -> list[str]:
    """Finds the best bzip2 compressor."""
    if has_command("pbzip2"):
        return ["pbzip2", *args]
    return ["bzip2", *args]


def get_compression_command(method: str, *args: str) -> list[str]:
    if method == "gzip":
        return gzip_command(*args)
    if method == "bzip2":
        return bzip2_command(*args)
    raise ValueError(f"Unsupported compression method: {method}")


def compress_file(path: PathLike, method: str = "gzip", keep: bool = True) -> Path:
    """Compress path in place and return the compressed file path."""
    path = Path(path)
    options = ["-f"]
    if keep:
        options.append("-k")
    command = get_compression_command(method, *options, str(path))
    run_checked_command(command)
    compressed = path.with_name(path.name + COMPRESSED_SUFFIXES[method])
    log.info(f"Compressed {path} with {command[0]} -> {compressed}")
    return compressed


def detect_compression(path: PathLike) -> Optional[str]:
    """Return the compression method implied by a file name, if any."""
    name = Path(path).name
    for method, suffix in COMPRESSED_SUFFIXES.items():
        if name.endswith(suffix):
            return method
    return None
