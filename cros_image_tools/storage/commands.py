"""External command probing and execution."""

from __future__ import annotations

import os
import shutil
import subprocess
from typing import Optional, Sequence

from cros_image_tools.config import settings
from cros_image_tools.logging import LoggerFactory

from .exceptions import CommandFailedError


log = LoggerFactory.for_system()


def has_command(name: str) -> bool:
    """Check if given command is available in current system."""
    return shutil.which(name) is not None


def find_command(*names: str) -> Optional[str]:
    """Return the path of the first installed command among names."""
    for name in names:
        path = shutil.which(name)
        if path:
            return path
    return None


def needs_sudo() -> bool:
    if not settings.get_bool("use_sudo", True):
        return False
    return os.geteuid() != 0


def sudo_command(command: Sequence[str]) -> list[str]:
    """Prefix command with sudo when running unprivileged."""
    if needs_sudo():
        return ["sudo", *command]
    return list(command)


def run_checked_command(command: Sequence[str], input_text: Optional[str] = None) -> str:
    """Run a command and raise CommandFailedError if it fails."""
    command = list(command)
    log.debug(f"Running command: {' '.join(command)}")
    result = subprocess.run(
        command,
        input=input_text,
        text=True,
        errors="replace",
        capture_output=True,
    )
    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        stdout = (result.stdout or "").strip()
        message = stderr or stdout or "Command failed"
        raise CommandFailedError(command, result.returncode, message)
    return result.stdout


def run_quiet_command(command: Sequence[str]) -> bool:
    """Run a command, discarding output; returns True on success.

    Used on best-effort paths (cleanup, unmapping) where failure is not fatal.
    """
    command = list(command)
    log.debug(f"Running command: {' '.join(command)}")
    try:
        result = subprocess.run(
            command,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except OSError as error:
        log.debug(f"Unable to run {command[0]}: {error}")
        return False
    return result.returncode == 0


__all__ = [
    "find_command",
    "has_command",
    "needs_sudo",
    "run_checked_command",
    "run_quiet_command",
    "sudo_command",
]
