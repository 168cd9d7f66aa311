"""
Pytest configuration and shared fixtures for cros-image-tools tests.

This module provides common fixtures and utilities used across all test modules.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, List, Tuple

import pytest

from cros_image_tools.config import settings
from cros_image_tools.domain import SECTOR_SIZE, PartitionGeometry
from cros_image_tools.logging import logger
from cros_image_tools.storage.exceptions import PartitionNotFoundError
from cros_image_tools.storage.temp import TempRegistry


# ==============================================================================
# Settings Fixtures
# ==============================================================================


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """
    Keep every test away from the user's settings file.

    Settings are reset to defaults with sudo disabled so command lists can be
    asserted without a "sudo" prefix.
    """
    monkeypatch.setattr(
        "cros_image_tools.config.settings.SETTINGS_PATH",
        tmp_path / ".config" / "cros-image-tools" / "settings.json",
    )
    settings.settings_store.values = dict(settings.DEFAULT_SETTINGS)
    settings.settings_store.values["partition_tools"] = list(
        settings.DEFAULT_PARTITION_TOOLS
    )
    settings.settings_store.values["use_sudo"] = False
    yield settings.settings_store
    settings.settings_store.values = dict(settings.DEFAULT_SETTINGS)


@pytest.fixture
def temp_settings_file(tmp_path) -> Path:
    """
    Fixture providing a temporary settings file path.

    Returns:
        Path to a temporary settings file (directory created, file absent).
    """
    settings_dir = tmp_path / ".config" / "cros-image-tools"
    settings_dir.mkdir(parents=True, exist_ok=True)
    return settings_dir / "settings.json"


# ==============================================================================
# Subprocess Mock Fixtures
# ==============================================================================


@pytest.fixture
def mock_subprocess_run(mocker):
    """
    Fixture providing a mock for subprocess.run.

    Returns:
        Mock object for subprocess.run
    """
    return mocker.patch("subprocess.run")


# ==============================================================================
# Image Fixtures
# ==============================================================================


def sector_pattern(first: int, count: int) -> bytes:
    """Bytes for sectors [first, first + count), each filled with its index."""
    return b"".join(
        index.to_bytes(4, "little") * (SECTOR_SIZE // 4)
        for index in range(first, first + count)
    )


@pytest.fixture
def make_image(tmp_path) -> Callable[..., Path]:
    """
    Fixture returning a builder for patterned image files.

    Every sector holds its own index, so a read at the wrong offset or with
    the wrong block size shows up as different bytes.
    """

    def _make(name: str = "image.bin", sectors: int = 64, fill: bytes = b"") -> Path:
        path = tmp_path / name
        if fill:
            path.write_bytes(fill * (sectors * SECTOR_SIZE // len(fill)))
        else:
            path.write_bytes(sector_pattern(0, sectors))
        return path

    return _make


def key_block(flags: int, cmdline: str = "", size: int = 4096) -> bytes:
    """Build a minimal kernel partition: key block header then a command line."""
    header = b"CHROMEOS" + b"\x00" * 64 + bytes([flags])
    body = header + b"\x00" * 55
    if cmdline:
        body += cmdline.encode("ascii") + b"\x00"
    return body.ljust(size, b"\x00")


@pytest.fixture
def make_kernel(tmp_path) -> Callable[..., Path]:
    """Fixture returning a builder for kernel partition files."""

    def _make(flags: int, cmdline: str = "", name: str = "kernel.bin") -> Path:
        path = tmp_path / name
        path.write_bytes(key_block(flags, cmdline))
        return path

    return _make


# ==============================================================================
# Locator Fixtures
# ==============================================================================


class StaticLocator:
    """Locator answering from a fixed table of (image, number) -> geometry."""

    def __init__(self, table: Dict[Tuple[Path, int], PartitionGeometry]):
        self.table = {(Path(image), number): geo for (image, number), geo in table.items()}
        self.calls: List[Tuple[Path, int]] = []

    def locate(self, image, number) -> PartitionGeometry:
        key = (Path(image), int(number))
        self.calls.append(key)
        try:
            return self.table[key]
        except KeyError:
            raise PartitionNotFoundError(str(image), number) from None

    def offset(self, image, number) -> int:
        return self.locate(image, number).offset

    def size(self, image, number) -> int:
        return self.locate(image, number).size


@pytest.fixture
def static_locator() -> Callable[..., StaticLocator]:
    """
    Fixture returning a factory for StaticLocator.

    Usage:
        locator = static_locator({(image, 3): PartitionGeometry(4, 8)})
    """
    return StaticLocator


# ==============================================================================
# Temp / Logging Fixtures
# ==============================================================================


@pytest.fixture
def registry():
    """Fresh TempRegistry drained after the test."""
    temp_registry = TempRegistry()
    yield temp_registry
    temp_registry.cleanup_all()


@pytest.fixture
def log_records():
    """Capture loguru records emitted during the test."""
    records: list[dict] = []

    def sink(message):
        records.append(message.record)

    handler_id = logger.add(sink, level="TRACE", enqueue=False)
    yield records
    logger.remove(handler_id)
