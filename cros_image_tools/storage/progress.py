"""Progress formatting for long partition dumps and copies.

Progress reporting is cosmetic: observers only see byte counts and never
touch the data stream.
"""

from __future__ import annotations

import sys
import time
from typing import Callable, Optional, TextIO

from cros_image_tools.logging import LoggerFactory, ThrottledLogger


ProgressCallback = Callable[[int, Optional[int]], None]

_throttled = ThrottledLogger(LoggerFactory.for_progress(), interval_seconds=2.0)


def human_size(size_bytes: Optional[float]) -> str:
    if size_bytes is None:
        return "-"
    size = float(size_bytes)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if size < 1024.0 or unit == "TB":
            if unit == "B":
                return f"{int(size)}{unit}"
            return f"{size:.1f}{unit}"
        size /= 1024.0
    return f"{size:.1f}TB"


def format_eta(seconds):
    """Format ETA in HH:MM:SS or MM:SS format."""
    if seconds is None:
        return None
    seconds = int(seconds)
    if seconds < 0:
        return None
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours:d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def format_progress_line(bytes_copied, total_bytes, rate=None, eta=None):
    """Format a one-line status like ``12.0MB / 64.0MB 18.8% 4.0MB/s ETA 00:13``."""
    parts = [human_size(bytes_copied)]
    if total_bytes:
        parts.append(f"/ {human_size(total_bytes)}")
        parts.append(f"{(bytes_copied / total_bytes) * 100:.1f}%")
    if rate:
        parts.append(f"{human_size(rate)}/s")
    if eta:
        parts.append(f"ETA {eta}")
    return " ".join(parts)


class ConsoleProgress:
    """Progress observer printing a refreshed status line to a terminal."""

    def __init__(self, stream: Optional[TextIO] = None, refresh_interval: float = 0.5):
        self.stream = stream or sys.stderr
        self.refresh_interval = refresh_interval
        self.start_time: Optional[float] = None
        self.last_update = 0.0
        self.last_line = ""

    def __call__(self, bytes_copied: int, total_bytes: Optional[int]) -> None:
        now = time.time()
        if self.start_time is None:
            self.start_time = now
        finished = bool(total_bytes) and bytes_copied >= total_bytes
        if not finished and now - self.last_update < self.refresh_interval:
            return
        self.last_update = now
        elapsed = now - self.start_time
        rate = bytes_copied / elapsed if elapsed > 0 else None
        eta = None
        if rate and total_bytes and bytes_copied <= total_bytes:
            eta = format_eta((total_bytes - bytes_copied) / rate)
        line = format_progress_line(bytes_copied, total_bytes, rate, eta)
        padding = " " * max(0, len(self.last_line) - len(line))
        self.stream.write(f"\r{line}{padding}")
        if finished:
            self.stream.write("\n")
        self.stream.flush()
        self.last_line = line


def log_progress(key: str, bytes_copied: int, total_bytes: Optional[int]) -> None:
    """Emit a throttled TRACE record for a transfer."""
    _throttled.trace(key, format_progress_line(bytes_copied, total_bytes))
