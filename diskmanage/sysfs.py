"""Readers for the kernel's /sys/block tree."""

import logging
import os
import re
from typing import List, Optional

from .models import SysfsInfo

logger = logging.getLogger(__name__)

# The kernel reports sizes in 512 byte sectors regardless of the real block size.
SECTOR_SIZE = 512

ISCSI_LINK_PATTERN = re.compile(r'host[^/]*/session[^/]*')


def read_firstline(path: str) -> Optional[str]:
    """Return the first line of a file without its newline, or None if unreadable."""
    try:
        with open(path, 'r') as f:
            line = f.readline()
    except OSError:
        return None
    return line.rstrip('\n')


def get_sysdir_size(sysdir: str) -> Optional[int]:
    """Size in bytes of the device described by a sysfs directory."""
    size = read_firstline(os.path.join(sysdir, 'size'))
    if not size:
        return None
    try:
        return int(size.strip()) * SECTOR_SIZE
    except ValueError:
        return None


def get_sysdir_info(sysdir: str) -> Optional[SysfsInfo]:
    """
    Read capacity, rotational flag, vendor and model of a disk.

    Args:
        sysdir: Directory such as /sys/block/sda

    Returns:
        SysfsInfo, or None when the device subtree or the size is missing
    """
    if not os.path.isdir(os.path.join(sysdir, 'device')):
        return None

    size = get_sysdir_size(sysdir)
    if not size:
        return None

    # queue/rotational is 1 for hdd, 0 for ssd
    rotational = None
    value = read_firstline(os.path.join(sysdir, 'queue', 'rotational'))
    if value is not None:
        try:
            rotational = int(value.strip())
        except ValueError:
            logger.debug(f"Unexpected rotational value '{value}' in {sysdir}")

    return SysfsInfo(
        size=size,
        rotational=rotational,
        vendor=(read_firstline(os.path.join(sysdir, 'device', 'vendor')) or '').strip() or 'unknown',
        model=(read_firstline(os.path.join(sysdir, 'device', 'model')) or '').strip() or 'unknown',
    )


def dir_is_empty(path: str) -> bool:
    """True if the directory has no entries or cannot be read."""
    try:
        with os.scandir(path) as entries:
            for _ in entries:
                return False
    except OSError:
        return True
    return True


def is_iscsi(sysdir: str) -> bool:
    """Detect iSCSI backed disks from the target of their /sys/block symlink."""
    if not os.path.islink(sysdir):
        return False
    try:
        target = os.readlink(sysdir)
    except OSError:
        return False
    return bool(ISCSI_LINK_PATTERN.search(target))


def list_entries(sysdir: str, pattern: str) -> List[str]:
    """Sorted directory entries whose whole name matches the regex pattern."""
    regex = re.compile(pattern)
    try:
        names = os.listdir(sysdir)
    except OSError:
        return []
    return sorted(name for name in names if regex.fullmatch(name))


def list_partitions(sysdir: str, name: str) -> List[str]:
    """Partition entries (e.g. sda1, nvme0n1p2) inside a disk's sysfs directory."""
    return list_entries(sysdir, re.escape(name) + r'.+')
