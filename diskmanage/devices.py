"""Device name normalisation and block device validation."""

import os
import re
import stat

from .errors import InvalidBlockDeviceError, PartitionError
from .sysfs import read_firstline


DEV_PREFIX = '/dev/'

# Kernel naming families handled as local disks:
# - hdX, sdX, vdX, xvdX  ide, scsi/sata, virtio and xen block devices
# - nvmeXnY               nvme namespaces
# - cciss!cXdY            cciss controller disks (cciss/cXdY under /dev)
DISK_NAME_PATTERNS = (
    re.compile(r'^(h|s|x?v)d[a-z]+$'),
    re.compile(r'^nvme\d+n\d+$'),
    re.compile(r'^cciss!c\d+d\d+$'),
)
NVME_NAME_PATTERN = re.compile(r'^nvme\d+n\d+$')

MAX_PARTITION_NUMBER = 128


def strip_dev(devpath: str) -> str:
    """'/dev/sda' -> 'sda'; names without the prefix are returned unchanged."""
    if devpath.startswith(DEV_PREFIX):
        return devpath[len(DEV_PREFIX):]
    return devpath


def to_sysfs_name(name: str) -> str:
    """Translate a /dev relative name into its sysfs form (cciss/c0d0 -> cciss!c0d0)."""
    return name.replace('/', '!')


def from_sysfs_name(name: str) -> str:
    """Translate a sysfs name back into its /dev relative form."""
    return name.replace('!', '/')


def is_whitelisted_disk(sysfs_name: str) -> bool:
    return any(pattern.match(sysfs_name) for pattern in DISK_NAME_PATTERNS)


def is_nvme_disk(sysfs_name: str) -> bool:
    return bool(NVME_NAME_PATTERN.match(sysfs_name))


def _is_block_special(path: str) -> bool:
    try:
        return stat.S_ISBLK(os.stat(path).st_mode)
    except OSError:
        return False


def assert_blockdev(dev: str, noerr: bool = False) -> bool:
    """
    Check that dev is a block special file under /dev.

    Raises:
        InvalidBlockDeviceError: If the check fails and noerr is False
    """
    if not dev or not dev.startswith(DEV_PREFIX) or not _is_block_special(dev):
        if noerr:
            return False
        raise InvalidBlockDeviceError("not a valid block device")
    return True


def verify_blockdev_path(rel_path: str) -> str:
    """
    Resolve a (possibly symlinked) path to its canonical /dev block device node.

    Returns:
        The absolute /dev path

    Raises:
        InvalidBlockDeviceError: If the path is missing, resolves outside /dev
            or is not a block device
    """
    if not rel_path:
        raise InvalidBlockDeviceError("missing path")

    path = os.path.realpath(rel_path)
    if not path:
        raise InvalidBlockDeviceError(f"failed to get absolute path to {rel_path}")
    if not path.startswith(DEV_PREFIX) or path == DEV_PREFIX:
        raise InvalidBlockDeviceError(f"got unusual device path '{path}'")

    assert_blockdev(path)
    return path


def get_partnum(part_path: str, sys_dev_block: str = '/sys/dev/block') -> int:
    """
    Look up the partition number of a partition device node.

    Raises:
        PartitionError: If the node is not a block device, not a partition,
            or the number is out of range
    """
    try:
        st = os.stat(part_path)
    except OSError:
        st = None

    if st is None or not stat.S_ISBLK(st.st_mode) or not st.st_rdev:
        raise PartitionError(f"error detecting block device '{part_path}'")

    major = os.major(st.st_rdev)
    minor = os.minor(st.st_rdev)
    partnum = read_firstline(os.path.join(sys_dev_block, f"{major}:{minor}", 'partition'))
    if partnum is None:
        raise PartitionError("Partition does not exist")

    match = re.search(r'(\d+)', partnum)
    if not match:
        raise PartitionError("Failed to get partition number")

    number = int(match.group(1))
    if number > MAX_PARTITION_NUMBER:
        raise PartitionError(f"Partition number {number} is invalid")
    return number


def get_blockdev(part_path: str, sys_class_block: str = '/sys/class/block') -> str:
    """
    Find the parent disk node of a partition, e.g. /dev/nvme0n1p1 -> /dev/nvme0n1.

    Raises:
        InvalidBlockDeviceError: If the parent cannot be determined
    """
    block_dev = None
    dev = None
    if part_path.startswith(DEV_PREFIX):
        dev = to_sysfs_name(strip_dev(part_path))
        try:
            link = os.readlink(os.path.join(sys_class_block, dev))
        except OSError:
            link = ''
        match = re.search(r'([^/]*)/' + re.escape(dev) + r'$', link)
        if match:
            block_dev = match.group(1)

    if block_dev is None:
        raise InvalidBlockDeviceError("Can't parse parent device")
    if block_dev not in dev:
        raise InvalidBlockDeviceError("No valid block device")

    block_path = DEV_PREFIX + from_sysfs_name(block_dev)
    if not _is_block_special(block_path):
        raise InvalidBlockDeviceError("Block device does not exists")
    return block_path


def is_partition(dev_path: str, sys_dev_block: str = '/sys/dev/block') -> bool:
    try:
        get_partnum(dev_path, sys_dev_block)
    except PartitionError:
        return False
    return True


def partition_path(disk_devpath: str, partition_sysfs_name: str) -> str:
    """
    Device node of a partition found under the disk's sysfs directory.

    The partition lives next to the disk node, e.g. /dev/cciss/c0d0 and
    cciss!c0d0p1 -> /dev/cciss/c0d0p1.
    """
    base = os.path.dirname(disk_devpath)
    return f"{base}/{from_sysfs_name(partition_sysfs_name).rsplit('/', 1)[-1]}"
