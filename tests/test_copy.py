"""Tests for partition copies between images, using real dd."""

import pytest

from cros_image_tools.domain import SECTOR_SIZE, BlockGeometry, PartitionGeometry
from cros_image_tools.storage import copy as copy_module
from cros_image_tools.storage.copy import (
    build_write_command,
    copy_partition,
    destination_geometry,
)
from cros_image_tools.storage.exceptions import (
    CommandFailedError,
    InsufficientSpaceError,
    PartitionNotFoundError,
)


def sectors(data: bytes, start: int, count: int) -> bytes:
    return data[start * SECTOR_SIZE : (start + count) * SECTOR_SIZE]


class TestDestinationGeometry:
    def test_aligned(self):
        assert destination_geometry(8192, 4096) == BlockGeometry(2 * 1024 * 1024, 2, 1)

    def test_unaligned_destination(self):
        assert destination_geometry(100, 4096) == BlockGeometry(SECTOR_SIZE, 100, 4096)

    def test_unaligned_length(self):
        assert destination_geometry(8192, 10) == BlockGeometry(SECTOR_SIZE, 8192, 10)

    def test_write_command(self):
        assert build_write_command("/tmp/b.bin", BlockGeometry(512, 2, 8)) == [
            "dd",
            "of=/tmp/b.bin",
            "bs=512",
            "seek=2",
            "conv=notrunc",
            "oflag=dsync",
            "status=none",
        ]


class TestCopyPartition:
    def test_copies_into_larger_slot(self, make_image, static_locator):
        """Bytes past the source length in the destination slot stay untouched."""
        src = make_image("src.bin", sectors=32)
        dst = make_image("dst.bin", sectors=32, fill=b"\xee")
        locator = static_locator(
            {
                (src, 3): PartitionGeometry(offset=4, size=8),
                (dst, 5): PartitionGeometry(offset=2, size=12),
            }
        )
        before = dst.read_bytes()

        copied = copy_partition(src, 3, dst, 5, locator=locator)

        after = dst.read_bytes()
        assert copied == 8 * SECTOR_SIZE
        assert len(after) == len(before)
        assert sectors(after, 2, 8) == sectors(src.read_bytes(), 4, 8)
        assert sectors(after, 0, 2) == sectors(before, 0, 2)
        assert sectors(after, 10, 22) == sectors(before, 10, 22)

    def test_aligned_copy(self, make_image, static_locator):
        src = make_image("src.bin", sectors=8192)
        dst = make_image("dst.bin", sectors=16384, fill=b"\x5a")
        locator = static_locator(
            {
                (src, 3): PartitionGeometry(offset=4096, size=4096),
                (dst, 3): PartitionGeometry(offset=8192, size=8192),
            }
        )
        before = dst.read_bytes()

        copy_partition(src, 3, dst, 3, locator=locator)

        after = dst.read_bytes()
        assert sectors(after, 8192, 4096) == sectors(src.read_bytes(), 4096, 4096)
        assert sectors(after, 12288, 4096) == sectors(before, 12288, 4096)
        assert sectors(after, 0, 8192) == sectors(before, 0, 8192)

    def test_mixed_alignment(self, make_image, static_locator):
        """Unaligned source offset with an aligned destination still copies exactly."""
        src = make_image("src.bin", sectors=4200)
        dst = make_image("dst.bin", sectors=8192, fill=b"\x00")
        locator = static_locator(
            {
                (src, 1): PartitionGeometry(offset=100, size=4096),
                (dst, 1): PartitionGeometry(offset=4096, size=4096),
            }
        )

        copy_partition(src, 1, dst, 1, locator=locator)

        assert sectors(dst.read_bytes(), 4096, 4096) == sectors(src.read_bytes(), 100, 4096)

    def test_source_too_large_writes_nothing(self, mocker, make_image, static_locator):
        src = make_image("src.bin", sectors=32)
        dst = make_image("dst.bin", sectors=32, fill=b"\xee")
        locator = static_locator(
            {
                (src, 3): PartitionGeometry(offset=4, size=10),
                (dst, 3): PartitionGeometry(offset=4, size=8),
            }
        )
        popen = mocker.patch.object(copy_module.subprocess, "Popen")
        before = dst.read_bytes()

        with pytest.raises(InsufficientSpaceError) as excinfo:
            copy_partition(src, 3, dst, 3, locator=locator)

        assert excinfo.value.source_size == 10
        assert excinfo.value.destination_size == 8
        popen.assert_not_called()
        assert dst.read_bytes() == before

    def test_missing_destination_partition(self, make_image, static_locator):
        src = make_image("src.bin", sectors=16)
        dst = make_image("dst.bin", sectors=16, fill=b"\xee")
        locator = static_locator({(src, 3): PartitionGeometry(offset=0, size=4)})

        with pytest.raises(PartitionNotFoundError):
            copy_partition(src, 3, dst, 3, locator=locator)

        assert dst.read_bytes() == b"\xee" * 16 * SECTOR_SIZE

    def test_unwritable_destination(self, make_image, static_locator, tmp_path):
        src = make_image("src.bin", sectors=16)
        dst = tmp_path / "missing-dir" / "dst.bin"
        locator = static_locator(
            {
                (src, 3): PartitionGeometry(offset=0, size=4),
                (dst, 3): PartitionGeometry(offset=0, size=4),
            }
        )

        with pytest.raises(CommandFailedError) as excinfo:
            copy_partition(src, 3, dst, 3, locator=locator)

        assert excinfo.value.command[0] == "dd"
        assert "oflag=dsync" in excinfo.value.command
