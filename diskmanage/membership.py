"""Resolvers for devices owned by LVM, ZFS, Ceph and the mount table."""

import json
import logging
import os
import re
from typing import Dict, List, Mapping, Optional, TypeVar

import psutil

from .errors import CommandError
from .models import CephRole, CephVolumeInfo, LsblkEntry, MembershipSets
from .system_executor import CommandType, SystemCommandExecutor

logger = logging.getLogger(__name__)

T = TypeVar('T')

# GPT partition type UUIDs
LVM_PARTTYPES = {
    'e6d6d379-f507-44c2-a23c-238f2a3df928': 'parttype',
}
# log and cache vdevs do not carry the ZFS type uuid, hence the zpool listing
ZFS_PARTTYPES = {
    '6a898cc3-1dd2-11b2-99a6-080020736631': 'parttype',  # apple
    '516e7cba-6ecf-11d6-8ff8-00022d09712b': 'parttype',  # bsd
}
CEPH_PARTTYPES = {
    '45b0969e-9b03-4f30-b4c6-b4b80ceff106': CephRole.JOURNAL,
    '30cd0809-c2b2-499c-8879-2d6b78529876': CephRole.DB,
    '5ce17fce-4087-4169-b7ff-056cc58473f9': CephRole.WAL,
    'cafecafe-9b03-4f30-b4c6-b4b80ceff106': CephRole.BLOCK,
}
BIOS_BOOT_PARTTYPE = '21686148-6449-6e6f-744e-656564454649'
EFI_PARTTYPE = 'c12a7328-f81f-11d2-ba4b-00a0c93ec93b'
ZFS_RESERVED_PARTTYPE = '6a945a3b-1dd2-11b2-99a6-080020736631'

# marker stored for devices reported by the subsystem's own listing command
COMMAND_MARKER = 'command'

CEPH_LVS_ARGS = [
    '-S', 'lv_name=~^osd-', '-o', 'devices,lv_name,lv_tags',
    '--noheadings', '--readonly', '--separator', ';',
]


def parse_lsblk_json(output: str) -> Dict[str, LsblkEntry]:
    """Map device path -> partition type and filesystem from `lsblk --json`."""
    if not output.strip():
        return {}
    try:
        parsed = json.loads(output)
    except json.JSONDecodeError as e:
        logger.warning(f"Could not parse lsblk output: {e}")
        return {}
    if not isinstance(parsed, dict):
        logger.warning(f"Unexpected lsblk output, expected an object: {output[:80]}")
        return {}

    info = {}
    for device in parsed.get('blockdevices') or []:
        path = device.get('path') if isinstance(device, dict) else None
        if not path:
            continue
        info[path] = LsblkEntry(parttype=device.get('parttype'), fstype=device.get('fstype'))
    return info


def parse_pvs_output(output: str) -> List[str]:
    """Physical volume paths from `pvs --noheadings -o pv_name`."""
    return [line.strip() for line in output.splitlines() if line.strip().startswith('/dev/')]


def parse_zpool_vdev_paths(output: str) -> List[str]:
    """Vdev device paths from `zpool list -HPLv` (rows indented by one tab)."""
    paths = []
    for line in output.splitlines():
        match = re.match(r'^\t([^\t]+)\t', line)
        if match:
            paths.append(match.group(1))
    return paths


def parse_ceph_lvs_output(output: str) -> Dict[str, CephVolumeInfo]:
    """
    Collect Ceph OSD data from the tags of `osd-*` logical volumes.

    Results are keyed by the raw device underlying the volume, not by the
    logical volume itself.
    """
    result: Dict[str, CephVolumeInfo] = {}

    for line in output.splitlines():
        fields = line.strip().split(';')
        if len(fields) < 3:
            continue

        # lvs reports devices as /dev/sdX(Y), Y being the start extent
        dev_match = re.match(r'^(/dev/[a-z]+[^(]*)', fields[0])
        type_match = re.match(r'^osd-([^-]+)-', fields[1])
        if not dev_match or not type_match:
            continue

        dev = dev_match.group(1)
        role = type_match.group(1)
        tags = fields[2]
        info = result.setdefault(dev, CephVolumeInfo())

        osd_match = re.search(r'ceph\.osd_id=([^,]+)', tags)
        if role in ('block', 'data') and osd_match:
            info.osdid = osd_match.group(1)
            info.osdid_list.append(osd_match.group(1))
            info.bluestore = role == 'block'
            if re.search(r'ceph\.encrypted=1', tags):
                info.encrypted = True
        elif not info.add_role(role):
            logger.debug(f"Ignoring ceph volume role '{role}' on {dev}")

    return result


def devices_by_parttype(lsblk_info: Mapping[str, LsblkEntry],
                        uuids: Mapping[str, T],
                        result: Optional[Dict[str, T]] = None) -> Dict[str, T]:
    """
    Add devices whose GPT partition type is in uuids to result.

    Existing entries are kept: live command results win over partition labels.
    """
    if result is None:
        result = {}
    for dev in sorted(lsblk_info):
        parttype = lsblk_info[dev].parttype
        if parttype is None or parttype not in uuids:
            continue
        result.setdefault(dev, uuids[parttype])
    return result


def mounted_blockdevs() -> Dict[str, str]:
    """Resolved /dev device path -> mount point for every mounted block device."""
    mounted = {}
    for partition in psutil.disk_partitions(all=True):
        if not partition.device.startswith('/dev/'):
            continue
        mounted[os.path.realpath(partition.device)] = partition.mountpoint
    return mounted


def mounted_paths() -> Dict[str, str]:
    """Resolved mount point -> mount source for every mount."""
    return {
        os.path.realpath(partition.mountpoint): partition.device
        for partition in psutil.disk_partitions(all=True)
    }


class MembershipResolver:
    """Builds the subsystem membership sets for one classification pass."""

    def __init__(self, executor: Optional[SystemCommandExecutor] = None):
        self._executor = executor or SystemCommandExecutor()

    def _run_optional(self, command_type: CommandType, args: List[str]) -> str:
        # the subsystem tools are optional installs: failing is only worth a warning
        try:
            return self._executor.run(command_type, args).stdout
        except CommandError as e:
            logger.warning(f"{command_type.value} listing failed: {e}")
            return ''

    def lsblk_info(self) -> Dict[str, LsblkEntry]:
        output = self._run_optional(CommandType.LSBLK, ['--json', '-o', 'path,parttype,fstype'])
        return parse_lsblk_json(output)

    def zfs_devices(self, lsblk_info: Mapping[str, LsblkEntry]) -> Dict[str, str]:
        result = {}
        if self._executor.is_available(CommandType.ZPOOL):
            output = self._run_optional(CommandType.ZPOOL, ['list', '-HPLv'])
            result = {path: COMMAND_MARKER for path in parse_zpool_vdev_paths(output)}
        else:
            logger.debug("zpool not installed, using partition types only")
        return devices_by_parttype(lsblk_info, ZFS_PARTTYPES, result)

    def lvm_devices(self, lsblk_info: Mapping[str, LsblkEntry]) -> Dict[str, str]:
        output = self._run_optional(CommandType.PVS, ['--noheadings', '--readonly', '-o', 'pv_name'])
        result = {path: COMMAND_MARKER for path in parse_pvs_output(output)}
        return devices_by_parttype(lsblk_info, LVM_PARTTYPES, result)

    def ceph_journals(self, lsblk_info: Mapping[str, LsblkEntry]) -> Dict[str, CephRole]:
        return devices_by_parttype(lsblk_info, CEPH_PARTTYPES)

    def ceph_volume_infos(self) -> Dict[str, CephVolumeInfo]:
        return parse_ceph_lvs_output(self._run_optional(CommandType.LVS, CEPH_LVS_ARGS))

    def resolve(self) -> MembershipSets:
        """Build every membership set; always completes before any device is classified."""
        mounted = mounted_blockdevs()
        lsblk_info = self.lsblk_info()
        return MembershipSets(
            lsblk=lsblk_info,
            ceph_journals=self.ceph_journals(lsblk_info),
            ceph_volumes=self.ceph_volume_infos(),
            zfs=self.zfs_devices(lsblk_info),
            lvm=self.lvm_devices(lsblk_info),
            mounted=mounted,
        )
