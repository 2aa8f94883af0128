"""Destructive disk operations: partitioning, type changes and wiping."""

import logging
import os
import re
from typing import Callable, List, Optional, TypeVar

from . import devices
from .config import DiskConfig
from .drive_manager import DriveManager
from .errors import (CommandError, DiskInUseError, DiskManageError, GptRequiredError,
                     InvalidBlockDeviceError, PartitionError)
from .locking import locked_disk_action
from .models import BestEffortResult
from .sysfs import get_sysdir_size, list_entries, list_partitions
from .system_executor import CommandType, SystemCommandExecutor

logger = logging.getLogger(__name__)

T = TypeVar('T')

MIB = 1024 * 1024
# zeroing the first 200 MiB clears partition tables and most metadata
MAX_WIPE_MIB = 200
MAX_WIPE_BYTES = MAX_WIPE_MIB * MIB
LINUX_FILESYSTEM_PARTTYPE = '8300'


class DiskActions:
    """Partitioning and wiping of local disks, guarded by the node-wide lock."""

    def __init__(self, manager: Optional[DriveManager] = None,
                 executor: Optional[SystemCommandExecutor] = None,
                 config: Optional[DiskConfig] = None):
        """
        Initialize DiskActions.

        Args:
            manager: DriveManager used for usage checks and disk lookups
            executor: Command executor, defaults to the manager's
            config: Configuration, defaults to the manager's
        """
        self.manager = manager or DriveManager(config=config, executor=executor)
        self.config = config or self.manager.config
        self.executor = executor or self.manager.executor

    def _validate(self, devpath: str) -> None:
        if not self.executor.validate_device_path(devpath):
            raise InvalidBlockDeviceError(f"Invalid device path: {devpath}")

    def _locked(self, action: Callable[[], T]) -> T:
        return locked_disk_action(action, config=self.config)

    def init_disk(self, disk: str, uuid: Optional[str] = None) -> bool:
        """
        Write a fresh GPT to an unused disk.

        Args:
            disk: Disk device node, e.g. '/dev/sdb'
            uuid: Disk GUID, random when omitted

        Raises:
            InvalidBlockDeviceError: If disk is not a block device
            PartitionError: If disk is a partition
            DiskInUseError: If disk is in use
            LockTimeoutError: If the disk lock cannot be taken
            CommandError: If sgdisk fails
        """
        devices.assert_blockdev(disk)
        self._validate(disk)

        if self.manager.is_partition(disk):
            raise PartitionError(f"{disk} is a partition")

        def locked() -> bool:
            if self.manager.disk_is_used(disk):
                raise DiskInUseError(f"disk {disk} is already in use")
            self.executor.run(CommandType.SGDISK, [disk, '-U', uuid or 'R'],
                              errmsg=f"unable to initialize disk {disk}")
            logger.info(f"Initialized GPT on {disk}", extra={'device': disk})
            return True

        return self._locked(locked)

    def append_partition(self, dev: str, size: int) -> str:
        """
        Add a partition of size bytes after the existing ones.

        Returns:
            Device node of the new partition, e.g. '/dev/nvme0n1p2'

        Raises:
            PartitionError: If the size is below one MiB or the new partition
                does not show up
            LockTimeoutError: If the disk lock cannot be taken
            CommandError: If sgdisk fails
        """
        self._validate(dev)
        return self._locked(lambda: self._append_partition(dev, size))

    def _append_partition(self, dev: str, size: int) -> str:
        devname = devices.to_sysfs_name(devices.strip_dev(dev))
        sysdir = os.path.join(self.config.sys_block, devname)

        numbered = re.compile(re.escape(devname) + r'.*?(\d+)')
        new_partid = 1
        for part in list_entries(sysdir, numbered.pattern):
            partid = int(numbered.fullmatch(part).group(1))
            if partid >= new_partid:
                new_partid = partid + 1

        size_mib = size // MIB
        if size_mib < 1:
            raise PartitionError(f"partition size must be at least 1 MiB, got {size} bytes")

        self.executor.run(CommandType.SGDISK, ['-n', f"{new_partid}:0:+{size_mib}M", dev],
                          errmsg=f"error creating partition '{new_partid}' on '{dev}'")

        # the node name does not always follow <disk><number>, e.g. nvme0n1p1
        created = list_entries(sysdir, re.escape(devname) + r'\D*' + str(new_partid))
        if not created:
            raise PartitionError(f"partition '{new_partid}' on '{dev}' not found after creation")
        return devices.partition_path(dev, created[-1])

    def change_parttype(self, partpath: str, parttype: str) -> None:
        """
        Set the GPT partition type code of a partition, e.g. '8300' or '8E00'.

        Raises:
            PartitionError: If partpath is not a partition
            GptRequiredError: If the disk is not GPT partitioned
            LockTimeoutError: If the disk lock cannot be taken
            CommandError: If sgdisk fails
        """
        self._locked(lambda: self._change_parttype(partpath, parttype))

    def _change_parttype(self, partpath: str, parttype: str) -> None:
        err = f"unable to change partition type for {partpath}"

        partnum = self.manager.get_partnum(partpath)
        blockdev = self.manager.get_blockdev(partpath)
        dev = devices.strip_dev(blockdev)

        info = self.manager.get_disks(dev, nosmart=True)
        if dev not in info:
            raise PartitionError(f"{err} - unable to get disk info for '{blockdev}'")
        if not info[dev].gpt:
            raise GptRequiredError(f"{err} - disk '{blockdev}' is not GPT partitioned")

        self.executor.run(CommandType.SGDISK, [f"-t{partnum}:{parttype}", blockdev], errmsg=err)

    def wipe_blockdev(self, devpath: str, trigger: bool = True) -> None:
        """
        Remove all signatures from a device and its partitions, then zero its start.

        A wiped partition gets the generic Linux filesystem type; failing to
        set it is only logged.

        Raises:
            InvalidBlockDeviceError: If the device size is unknown
            LockTimeoutError: If the disk lock cannot be taken
            CommandError: If wipefs or dd fail
        """
        self._validate(devpath)
        self._locked(lambda: self._wipe_blockdev(devpath, trigger))

    def _wipe_blockdev(self, devpath: str, trigger: bool) -> None:
        devname = devices.to_sysfs_name(devices.strip_dev(devpath))
        class_dir = os.path.join(self.config.sys_class_block, devname)

        size = get_sysdir_size(class_dir)
        if size is None:
            raise InvalidBlockDeviceError(f"Couldn't get the size of the device {devname}")
        # in bytes, devices below 200 MiB are zeroed completely
        count = min(size, MAX_WIPE_BYTES)

        to_wipe = [
            path for path in (devices.partition_path(devpath, part)
                              for part in list_partitions(class_dir, devname))
            if devices.assert_blockdev(path, noerr=True)
        ]
        if to_wipe:
            logger.info(f"found child partitions to wipe: {', '.join(to_wipe)}")
        # device last so failures on the partitions show first
        to_wipe.append(devpath)

        logger.info(f"wiping block device {devpath}", extra={'device': devpath})
        self.executor.run(CommandType.WIPEFS, ['--all'] + to_wipe,
                          errmsg=f"error wiping '{devpath}'")
        self.executor.run(
            CommandType.DD,
            ['if=/dev/zero', f"of={devpath}", 'bs=1M', 'iflag=count_bytes', 'conv=fdatasync',
             f"count={count}"],
            errmsg=f"error wiping '{devpath}'",
        )

        if self.manager.is_partition(devpath):
            try:
                self.change_parttype(devpath, LINUX_FILESYSTEM_PARTTYPE)
            except DiskManageError as e:
                logger.warning(f"{e}", extra={'device': devpath})

        if trigger:
            self.udevadm_trigger(devpath)

    def udevadm_trigger(self, *devs: str) -> BestEffortResult:
        """
        Ask udev to re-read the given devices.

        Works around udev keeping stale metadata after partition table or
        filesystem changes; failures are returned as warnings only.
        """
        result = BestEffortResult()
        if not devs:
            return result

        try:
            self.executor.run(CommandType.UDEVADM, ['trigger'] + list(devs))
        except CommandError as e:
            logger.warning(f"udevadm trigger failed: {e}")
            result.warnings.append(str(e))
        return result

    def claim_device(self, dev: str, action: Callable[[str], T],
                     parttype: Optional[str] = None) -> T:
        """
        Run action(devpath) on an unused device under the disk lock.

        The device is checked before taking the lock and again inside it,
        since another action may have claimed it in between. A partition is
        given parttype first when one is passed.

        Returns:
            Whatever action returns

        Raises:
            InvalidBlockDeviceError: If dev is not a /dev block device
            DiskInUseError: If the device is in use
            LockTimeoutError: If the lock cannot be taken
        """
        devpath = devices.verify_blockdev_path(dev)
        self._validate(devpath)
        self.manager.assert_disk_unused(devpath)

        def locked() -> T:
            self.manager.assert_disk_unused(devpath)
            if parttype and self.manager.is_partition(devpath):
                try:
                    self.change_parttype(devpath, parttype)
                except DiskManageError as e:
                    logger.warning(f"{e}", extra={'device': devpath})
            result = action(devpath)
            self.udevadm_trigger(devpath)
            return result

        return locked_disk_action(locked, config=self.config)

    def wipe_devices(self, devs: List[str]) -> BestEffortResult:
        """
        Wipe devices left behind by a destroyed storage, under the disk lock.

        udev is re-triggered once for all devices, also when a wipe fails;
        the failure is raised afterwards.
        """
        def locked() -> BestEffortResult:
            try:
                for dev in devs:
                    self.wipe_blockdev(dev, trigger=False)
            finally:
                trigger_result = self.udevadm_trigger(*devs)
            return trigger_result

        return locked_disk_action(locked, config=self.config)
