import argparse
import sys
from pathlib import Path

from cros_image_tools.__version__ import __version__
from cros_image_tools.config import settings
from cros_image_tools.logging import LoggerFactory, setup_logging
from cros_image_tools.storage.compression import compress_file
from cros_image_tools.storage.copy import copy_partition
from cros_image_tools.storage.exceptions import ImageError
from cros_image_tools.storage.kernel import classify_boot_type
from cros_image_tools.storage.locator import PartitionLocator, has_part_tools
from cros_image_tools.storage.partitions import (
    dump_partition,
    map_partition,
    mount_partition,
    unmap_partition,
    unmount_partition,
)
from cros_image_tools.storage.progress import ConsoleProgress


def _progress_observer(args):
    if args.progress or settings.get_bool("show_progress"):
        return ConsoleProgress()
    return None


def cmd_offset(args, locator):
    print(locator.offset(args.image, args.partition))
    return 0


def cmd_size(args, locator):
    print(locator.size(args.image, args.partition))
    return 0


def cmd_dump(args, locator):
    progress = _progress_observer(args)
    if args.output and args.output != "-":
        with open(args.output, "wb") as sink:
            dump_partition(args.image, args.partition, sink, locator=locator, progress=progress)
    else:
        dump_partition(
            args.image, args.partition, sys.stdout.buffer, locator=locator, progress=progress
        )
    return 0


def cmd_map(args, locator):
    print(map_partition(args.image, args.partition, locator=locator))
    return 0


def cmd_unmap(args, locator):
    return 0 if unmap_partition(args.device) else 1


def cmd_mount(args, locator):
    mount_partition(
        args.image, args.partition, args.mount_point, args.options, locator=locator
    )
    return 0


def cmd_umount(args, locator):
    unmount_partition(args.mount_point)
    return 0


def cmd_copy(args, locator):
    copy_partition(
        args.src_image,
        args.src_partition,
        args.dst_image,
        args.dst_partition,
        locator=locator,
        progress=_progress_observer(args),
    )
    return 0


def cmd_boot_type(args, locator):
    print(classify_boot_type(args.kernel))
    return 0


def cmd_has_part_tools(args, locator):
    return 0 if has_part_tools() else 1


def cmd_compress(args, locator):
    print(compress_file(args.file, method=args.method, keep=not args.no_keep))
    return 0


def build_parser():
    parser = argparse.ArgumentParser(
        prog="cros-image-tools",
        description="Inspect, dump, mount and copy partitions of disk images",
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Enable trace output (very verbose)")
    parser.add_argument("--log-dir", type=Path, default=None, help="Directory for log files")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_partition_args(sub):
        sub.add_argument("image", help="disk image file or block device")
        sub.add_argument("partition", type=int, help="partition number")

    sub = subparsers.add_parser("offset", help="print partition start (sectors)")
    add_partition_args(sub)
    sub.set_defaults(func=cmd_offset)

    sub = subparsers.add_parser("size", help="print partition length (sectors)")
    add_partition_args(sub)
    sub.set_defaults(func=cmd_size)

    sub = subparsers.add_parser("dump", help="dump partition contents")
    add_partition_args(sub)
    sub.add_argument("-o", "--output", help="output file (default: stdout)")
    sub.add_argument("--progress", action="store_true", help="show progress on stderr")
    sub.set_defaults(func=cmd_dump)

    sub = subparsers.add_parser("map", help="map partition to a loop device")
    add_partition_args(sub)
    sub.set_defaults(func=cmd_map)

    sub = subparsers.add_parser("unmap", help="detach a loop device")
    sub.add_argument("device", help="loop device returned by map")
    sub.set_defaults(func=cmd_unmap)

    sub = subparsers.add_parser("mount", help="mount partition (read-only by default)")
    add_partition_args(sub)
    sub.add_argument("mount_point", help="existing directory")
    sub.add_argument("-o", "--options", default="", help="extra mount options, e.g. rw")
    sub.set_defaults(func=cmd_mount)

    sub = subparsers.add_parser("umount", help="unmount a partition mount point")
    sub.add_argument("mount_point")
    sub.set_defaults(func=cmd_umount)

    sub = subparsers.add_parser("copy", help="copy a partition into another image")
    sub.add_argument("src_image")
    sub.add_argument("src_partition", type=int)
    sub.add_argument("dst_image")
    sub.add_argument("dst_partition", type=int)
    sub.add_argument("--progress", action="store_true", help="show progress on stderr")
    sub.set_defaults(func=cmd_copy)

    sub = subparsers.add_parser("boot-type", help="classify a kernel partition dump")
    sub.add_argument("kernel", help="file holding the kernel partition")
    sub.set_defaults(func=cmd_boot_type)

    sub = subparsers.add_parser(
        "has-part-tools", help="exit 0 when cgpt or parted is installed"
    )
    sub.set_defaults(func=cmd_has_part_tools)

    sub = subparsers.add_parser("compress", help="compress a file with the best compressor")
    sub.add_argument("file")
    sub.add_argument("-m", "--method", choices=["gzip", "bzip2"], default="gzip")
    sub.add_argument("--no-keep", action="store_true", help="remove the input file")
    sub.set_defaults(func=cmd_compress)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(debug=args.debug, trace=args.trace, log_dir=args.log_dir)
    log = LoggerFactory.for_system()
    log.debug(f"cros-image-tools {__version__}: {args.command}")

    try:
        return args.func(args, PartitionLocator())
    except (ImageError, OSError) as error:
        log.debug(f"{args.command} failed: {error!r}")
        print(f"ERROR: {error}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
