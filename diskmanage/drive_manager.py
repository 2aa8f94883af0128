"""Disk discovery and usage classification."""

import logging
import os
import re
from typing import Dict, Iterable, List, Optional, Union

from . import devices
from .config import DEFAULT_CONFIG, DiskConfig
from .errors import DiskInUseError, InvalidBlockDeviceError, SmartError
from .membership import (BIOS_BOOT_PARTTYPE, EFI_PARTTYPE, ZFS_RESERVED_PARTTYPE,
                         MembershipResolver, mounted_blockdevs)
from .models import (BIOS_BOOT, DEVICE_MAPPER, EFI, LVM, MOUNTED, PARTITIONS, ZFS,
                     ZFS_RESERVED, BlockRecord, CephRole, CephRoleCounts, CephVolumeInfo,
                     DiskFilter, DiskRecord, DiskType, FilterKind, MembershipSets,
                     PartitionRecord, Usage, UdevInfo, SysfsInfo)
from .smart_manager import SMARTManager, get_wear_leveling_info
from .sysfs import dir_is_empty, get_sysdir_info, get_sysdir_size, is_iscsi, list_entries, list_partitions
from .system_executor import SystemCommandExecutor
from .udev import get_udev_info

logger = logging.getLogger(__name__)

DiskFilterArg = Union[None, str, Iterable[str], DiskFilter]

# Mount point of OSDs created before ceph-volume (filestore, ceph-disk)
LEGACY_OSD_MOUNT_PATTERN = re.compile(r'^/var/lib/ceph/osd/ceph-(\d+)$')

PARTTYPE_USAGE = {
    BIOS_BOOT_PARTTYPE: BIOS_BOOT,
    EFI_PARTTYPE: EFI,
    ZFS_RESERVED_PARTTYPE: ZFS_RESERVED,
}


def derive_disk_type(sysfs_name: str, sysdata: SysfsInfo, udev: UdevInfo) -> DiskType:
    """
    Derive the disk type from the rotational flag and udev facts.

    Sets udev.rpm to 0 for flash and usb devices.
    """
    if sysdata.rotational == 0:
        udev.rpm = 0
        return DiskType.NVME if devices.is_nvme_disk(sysfs_name) else DiskType.SSD
    if sysdata.rotational == 1:
        if udev.rpm is not None:
            return DiskType.HDD
        if udev.usb:
            udev.rpm = 0
            return DiskType.USB
    return DiskType.UNKNOWN


def determine_usage(devpath: str, sysdir: str, sets: MembershipSets,
                    is_partition: bool) -> Optional[Usage]:
    """
    Usage of a disk or partition, most specific claim first.

    Device mapper holders are only checked for partitions here; disks check
    them after their partitions have been looked at.
    """
    if devpath in sets.lvm:
        return LVM
    if devpath in sets.zfs:
        return ZFS

    info = sets.lsblk.get(devpath)
    if info is not None:
        if info.parttype in PARTTYPE_USAGE:
            return PARTTYPE_USAGE[info.parttype]
        if info.fstype is not None:
            return Usage.of_filesystem(info.fstype)

    if devpath in sets.mounted:
        return MOUNTED

    if is_partition and not dir_is_empty(os.path.join(sysdir, 'holders')):
        return DEVICE_MAPPER
    return None


def _partition_from_volume(volume: Optional[CephVolumeInfo], **kwargs) -> PartitionRecord:
    if volume is None:
        return PartitionRecord(**kwargs)
    return PartitionRecord(
        osdid=int(volume.osdid) if volume.osdid is not None else -1,
        osdid_list=list(volume.osdid_list) if volume.osdid is not None else None,
        bluestore=volume.bluestore,
        encrypted=volume.encrypted,
        journals=volume.journal,
        db=volume.db,
        wal=volume.wal,
        **kwargs,
    )


class DriveManager:
    """Enumerates local disks and decides whether they are free to use."""

    def __init__(self,
                 config: Optional[DiskConfig] = None,
                 executor: Optional[SystemCommandExecutor] = None,
                 smart_manager: Optional[SMARTManager] = None,
                 resolver: Optional[MembershipResolver] = None):
        """
        Initialize the DriveManager.

        Args:
            config: Tool paths and sysfs locations
            executor: Command executor shared by all probes
            smart_manager: SMART probe, built on the executor when omitted
            resolver: Membership resolver, built on the executor when omitted
        """
        self.config = config or DEFAULT_CONFIG
        self.executor = executor or SystemCommandExecutor(
            self.config.tools, timeout=self.config.command_timeout)
        self._smart_manager = smart_manager or SMARTManager(self.executor)
        self._resolver = resolver or MembershipResolver(self.executor)

    # Config bound device helpers

    def is_partition(self, dev_path: str) -> bool:
        return devices.is_partition(dev_path, self.config.sys_dev_block)

    def get_partnum(self, part_path: str) -> int:
        return devices.get_partnum(part_path, self.config.sys_dev_block)

    def get_blockdev(self, part_path: str) -> str:
        return devices.get_blockdev(part_path, self.config.sys_class_block)

    def _sysdir(self, sysfs_name: str) -> str:
        return os.path.join(self.config.sys_block, sysfs_name)

    def _to_disk_name(self, name: str) -> str:
        """Bare sysfs name of the disk owning name (itself unless it is a partition)."""
        name = devices.strip_dev(name)
        dev_path = devices.DEV_PREFIX + name
        if self.is_partition(dev_path):
            try:
                name = devices.strip_dev(self.get_blockdev(dev_path))
            except InvalidBlockDeviceError as e:
                logger.warning(f"Could not find the disk of partition {dev_path}: {e}")
        return devices.to_sysfs_name(name)

    def get_disks(self,
                  disks: DiskFilterArg = None,
                  nosmart: bool = False,
                  include_partitions: bool = False) -> Dict[str, BlockRecord]:
        """
        Classify local disks (and optionally their partitions).

        Args:
            disks: None for all disks, a device name or a list of names.
                Partition names select their parent disk.
            nosmart: Skip the SMART query
            include_partitions: Add partitions to the result, keyed by their
                own name

        Returns:
            Mapping of /dev relative name (e.g. 'sda', 'cciss/c0d0') to record.
            Names that do not exist are simply absent.

        Raises:
            TypeError: If disks is not a string or list
        """
        disk_filter = DiskFilter.parse(disks)
        sets = self._resolver.resolve()

        if disk_filter.kind != FilterKind.ALL:
            disk_filter = disk_filter.map(self._to_disk_name)

        result: Dict[str, BlockRecord] = {}
        for dev in list_entries(self.config.sys_block, r'.+'):
            if not devices.is_whitelisted_disk(dev) or not disk_filter.matches(dev):
                continue

            sysdir = self._sysdir(dev)
            # remote and transient, not managed as local disks
            if is_iscsi(sysdir):
                logger.debug(f"Skipping iSCSI device {dev}")
                continue

            udev = get_udev_info(self.executor, sysdir)
            if udev is None:
                continue
            if not devices.assert_blockdev(udev.devpath, noerr=True):
                logger.debug(f"Skipping {dev}, {udev.devpath} is not a block device")
                continue
            sysdata = get_sysdir_info(sysdir)
            if sysdata is None:
                continue

            disk, partitions = self._classify_disk(dev, sysdir, udev, sysdata, sets,
                                                   nosmart, include_partitions)
            result[devices.from_sysfs_name(dev)] = disk
            if include_partitions:
                result.update(partitions)

        return result

    def _classify_disk(self, dev: str, sysdir: str, udev: UdevInfo, sysdata: SysfsInfo,
                       sets: MembershipSets, nosmart: bool, include_partitions: bool):
        disk_type = derive_disk_type(dev, sysdata, udev)
        devpath = udev.devpath

        disk = DiskRecord(
            devpath=devpath,
            vendor=sysdata.vendor,
            model=udev.model or sysdata.model,
            size=sysdata.size,
            serial=udev.serial,
            wwn=udev.wwn,
            gpt=udev.gpt,
            rpm=udev.rpm,
            type=disk_type,
            mounted=devpath in sets.mounted,
            by_id_link=udev.by_id_link,
        )

        if not nosmart:
            self._read_smart(disk)

        counts = CephRoleCounts()
        partitions = self._classify_partitions(dev, sysdir, disk, sets, counts)

        used = determine_usage(devpath, sysdir, sets, is_partition=False)
        if not include_partitions:
            for name in sorted(partitions):
                if used is None:
                    used = partitions[name].used
        elif partitions:
            # a filesystem signature next to a partition table is confusing to report
            used = PARTITIONS
        if used is None and partitions:
            used = PARTITIONS
        # multipath, software raid and the like
        if used is None and not dir_is_empty(os.path.join(sysdir, 'holders')):
            used = DEVICE_MAPPER
        disk.used = used

        volume = sets.ceph_volumes.get(devpath)
        if volume is not None:
            counts.add_volume(volume)

        disk.osdid = counts.osdid
        disk.osdid_list = counts.osdid_list
        disk.journals = counts.journals
        disk.db = counts.db
        disk.wal = counts.wal
        disk.bluestore = counts.bluestore
        disk.osdencrypted = counts.encrypted

        return disk, partitions

    def _read_smart(self, disk: DiskRecord) -> None:
        ssdlike = disk.type.is_ssdlike
        try:
            smartdata = self._smart_manager.get_smart_data(disk.devpath, health_only=not ssdlike)
        except (SmartError, InvalidBlockDeviceError) as e:
            logger.warning(f"SMART query for {disk.devpath} failed: {e}",
                           extra={'device': disk.devpath})
            return

        if smartdata.health:
            disk.health = smartdata.health
        if ssdlike:
            disk.wearout = get_wear_leveling_info(smartdata)

    def _classify_partitions(self, dev: str, sysdir: str, disk: DiskRecord,
                             sets: MembershipSets,
                             counts: CephRoleCounts) -> Dict[str, PartitionRecord]:
        partitions: Dict[str, PartitionRecord] = {}

        for part in list_partitions(sysdir, dev):
            part_devpath = devices.partition_path(disk.devpath, part)
            part_sysdir = os.path.join(sysdir, part)

            volume = sets.ceph_volumes.get(part_devpath)
            if volume is not None:
                counts.add_volume(volume)

            record = _partition_from_volume(
                volume,
                devpath=part_devpath,
                parent=disk.devpath,
                mounted=part_devpath in sets.mounted,
                gpt=disk.gpt,
                size=get_sysdir_size(part_sysdir) or 0,
                used=determine_usage(part_devpath, part_sysdir, sets, is_partition=True),
            )
            partitions[devices.from_sysfs_name(part)] = record

            # already counted through its logical volumes
            if volume is not None:
                continue

            mountpoint = sets.mounted.get(part_devpath)
            match = LEGACY_OSD_MOUNT_PATTERN.match(mountpoint) if mountpoint else None
            if match:
                # one OSD per disk
                counts.osdid = int(match.group(1))
                counts.osdid_list = [match.group(1)]
                record.osdid = counts.osdid
                record.osdid_list = counts.osdid_list

            role = sets.ceph_journals.get(part_devpath)
            if role is not None:
                counts.add_role(role)
                if role == CephRole.JOURNAL:
                    record.journals = 1
                elif role == CephRole.DB:
                    record.db = 1
                elif role == CephRole.WAL:
                    record.wal = 1
                else:
                    record.bluestore = True

        return partitions

    def disk_is_used(self, disk: str) -> bool:
        """
        Check whether a disk or partition is in use.

        Raises:
            InvalidBlockDeviceError: If disk is not a classified local disk
        """
        dev = devices.strip_dev(disk)
        disks = self.get_disks(dev, nosmart=True, include_partitions=True)
        if dev not in disks:
            raise InvalidBlockDeviceError(f"'{disk}' is not a valid local disk")
        return disks[dev].is_used

    def assert_disk_unused(self, dev: str) -> None:
        if self.disk_is_used(dev):
            raise DiskInUseError(f"device '{dev}' is already in use")

    def _partition_names(self, devpath: str) -> List[str]:
        dev = devices.to_sysfs_name(devices.strip_dev(devpath))
        return list_partitions(self._sysdir(dev), dev)

    def has_holder(self, devpath: str) -> Optional[str]:
        """The device or first partition held by device mapper, md etc., else None."""
        dev = devices.to_sysfs_name(devices.strip_dev(devpath))
        if not dir_is_empty(os.path.join(self.config.sys_class_block, dev, 'holders')):
            return devpath

        for part in self._partition_names(devpath):
            if not dir_is_empty(os.path.join(self.config.sys_class_block, part, 'holders')):
                return devices.partition_path(devpath, part)
        return None

    def is_mounted(self, devpath: str) -> Optional[str]:
        """The device or first partition found in the mount table, else None."""
        mounted = mounted_blockdevs()
        if devpath in mounted:
            return devpath

        for part in self._partition_names(devpath):
            part_path = devices.partition_path(devpath, part)
            if part_path in mounted:
                return part_path
        return None
