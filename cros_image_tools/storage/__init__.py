"""Partition-level operations on raw disk images.

Main Modules:
    - locator: find partition offsets and sizes with cgpt, parted or a manifest
    - extent: stream byte ranges out of an image with dd
    - partitions: dump, map and mount partitions
    - copy: copy one partition into a slot of another image
    - kernel: classify the boot type of a signed kernel partition
    - temp: track temporary mount points and files for cleanup
"""
