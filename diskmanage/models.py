"""Data models for disk inventory and classification."""

import collections.abc
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union


class DiskType(Enum):
    """Kind of block device as derived from sysfs and udev."""
    HDD = "hdd"
    SSD = "ssd"
    NVME = "nvme"
    USB = "usb"
    UNKNOWN = "unknown"
    PARTITION = "partition"

    @property
    def is_ssdlike(self) -> bool:
        return self in (DiskType.SSD, DiskType.NVME)


class UsageKind(Enum):
    """Reasons a device is not free to reuse, in classification precedence order."""
    LVM = "LVM"
    ZFS = "ZFS"
    BIOS_BOOT = "BIOS boot"
    EFI = "EFI"
    ZFS_RESERVED = "ZFS reserved"
    FILESYSTEM = "filesystem"
    MOUNTED = "mounted"
    DEVICE_MAPPER = "Device Mapper"
    PARTITIONS = "partitions"


@dataclass(frozen=True)
class Usage:
    """Why a device or partition is in use. A filesystem usage carries its name."""
    kind: UsageKind
    filesystem: Optional[str] = None

    @classmethod
    def of_filesystem(cls, fstype: str) -> 'Usage':
        return cls(UsageKind.FILESYSTEM, fstype)

    @property
    def label(self) -> str:
        if self.kind == UsageKind.FILESYSTEM:
            return self.filesystem or ''
        return self.kind.value

    def __str__(self) -> str:
        return self.label


LVM = Usage(UsageKind.LVM)
ZFS = Usage(UsageKind.ZFS)
BIOS_BOOT = Usage(UsageKind.BIOS_BOOT)
EFI = Usage(UsageKind.EFI)
ZFS_RESERVED = Usage(UsageKind.ZFS_RESERVED)
MOUNTED = Usage(UsageKind.MOUNTED)
DEVICE_MAPPER = Usage(UsageKind.DEVICE_MAPPER)
PARTITIONS = Usage(UsageKind.PARTITIONS)


class CephRole(Enum):
    """Ceph partition roles identified by GPT partition type."""
    JOURNAL = 1
    DB = 2
    WAL = 3
    BLOCK = 4


class FilterKind(Enum):
    ALL = "all"
    ONE = "one"
    MANY = "many"


@dataclass(frozen=True)
class DiskFilter:
    """Device name filter: all devices, a single name or a list of names."""
    kind: FilterKind = FilterKind.ALL
    names: Tuple[str, ...] = ()

    @classmethod
    def parse(cls, disks: Union[None, str, Iterable[str], 'DiskFilter']) -> 'DiskFilter':
        if disks is None:
            return cls()
        if isinstance(disks, DiskFilter):
            return disks
        if isinstance(disks, str):
            return cls(FilterKind.ONE, (disks,))
        if isinstance(disks, collections.abc.Iterable):
            return cls(FilterKind.MANY, tuple(disks))
        raise TypeError("disks is not a string or list")

    def map(self, func) -> 'DiskFilter':
        """Return a filter of the same kind with every name transformed."""
        return DiskFilter(self.kind, tuple(func(name) for name in self.names))

    def matches(self, name: str) -> bool:
        if self.kind == FilterKind.ALL:
            return True
        return name in self.names


@dataclass(frozen=True)
class LsblkEntry:
    """Partition type UUID and filesystem of one lsblk row."""
    parttype: Optional[str] = None
    fstype: Optional[str] = None


@dataclass
class CephVolumeInfo:
    """Ceph OSD information gathered from LVM tags for one raw device."""
    osdid: Optional[str] = None
    osdid_list: List[str] = field(default_factory=list)
    bluestore: bool = False
    encrypted: bool = False
    journal: int = 0
    db: int = 0
    wal: int = 0

    def add_role(self, role: str) -> bool:
        """Count a non-data OSD volume; returns False for roles we do not track."""
        if role in ('journal', 'db', 'wal'):
            setattr(self, role, getattr(self, role) + 1)
            return True
        return False


@dataclass
class CephRoleCounts:
    """Per-disk accumulator of Ceph roles found on the disk and its partitions."""
    osdid: int = -1
    osdid_list: Optional[List[str]] = None
    journals: int = 0
    db: int = 0
    wal: int = 0
    bluestore: bool = False
    encrypted: bool = False

    def add_volume(self, volume: CephVolumeInfo) -> None:
        self.journals += volume.journal
        self.db += volume.db
        self.wal += volume.wal
        if volume.osdid is not None:
            self.osdid = int(volume.osdid)
            self.osdid_list = list(volume.osdid_list)
            if volume.bluestore:
                self.bluestore = True
            if volume.encrypted:
                self.encrypted = True

    def add_role(self, role: CephRole) -> None:
        if role == CephRole.JOURNAL:
            self.journals += 1
        elif role == CephRole.DB:
            self.db += 1
        elif role == CephRole.WAL:
            self.wal += 1
        elif role == CephRole.BLOCK:
            self.bluestore = True


@dataclass
class MembershipSets:
    """Snapshot of subsystem ownership, rebuilt on every classification pass."""
    lsblk: Dict[str, LsblkEntry] = field(default_factory=dict)
    lvm: Dict[str, str] = field(default_factory=dict)
    zfs: Dict[str, str] = field(default_factory=dict)
    ceph_journals: Dict[str, CephRole] = field(default_factory=dict)
    ceph_volumes: Dict[str, CephVolumeInfo] = field(default_factory=dict)
    mounted: Dict[str, str] = field(default_factory=dict)


@dataclass
class UdevInfo:
    """Device identity reported by udev."""
    devpath: str
    serial: str = 'unknown'
    gpt: bool = False
    rpm: Optional[int] = None
    usb: bool = False
    model: Optional[str] = None
    wwn: str = 'unknown'
    by_id_link: Optional[str] = None


@dataclass
class SysfsInfo:
    """Capacity and descriptive facts read from /sys/block/<dev>."""
    size: int
    rotational: Optional[int] = None
    vendor: str = 'unknown'
    model: str = 'unknown'


@dataclass
class BlockRecord:
    """Fields shared by disks and partitions."""
    devpath: str
    size: int = 0
    gpt: bool = False
    mounted: bool = False
    used: Optional[Usage] = None
    osdid: int = -1
    osdid_list: Optional[List[str]] = None
    journals: int = 0
    db: int = 0
    wal: int = 0
    bluestore: bool = False

    @property
    def is_used(self) -> bool:
        return self.used is not None

    def _base_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'devpath': self.devpath,
            'size': self.size,
            'gpt': int(self.gpt),
            'osdid': self.osdid,
            'osdid-list': self.osdid_list,
        }
        if self.mounted:
            data['mounted'] = 1
        if self.used is not None:
            data['used'] = str(self.used)
        if self.journals:
            data['journals'] = self.journals
        if self.db:
            data['db'] = self.db
        if self.wal:
            data['wal'] = self.wal
        return data


@dataclass
class DiskRecord(BlockRecord):
    """Classification result for one physical or virtual disk."""
    vendor: str = 'unknown'
    model: str = 'unknown'
    serial: str = 'unknown'
    wwn: str = 'unknown'
    rpm: Optional[int] = None
    type: DiskType = DiskType.UNKNOWN
    health: str = 'UNKNOWN'
    wearout: Optional[float] = None
    by_id_link: Optional[str] = None
    osdencrypted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = self._base_dict()
        data.update({
            'vendor': self.vendor,
            'model': self.model,
            'serial': self.serial,
            'wwn': self.wwn,
            'rpm': -1 if self.rpm is None else self.rpm,
            'type': self.type.value,
            'health': self.health,
            'wearout': 'N/A' if self.wearout is None else self.wearout,
        })
        if self.by_id_link:
            data['by_id_link'] = self.by_id_link
        if self.osdid != -1:
            data['bluestore'] = int(self.bluestore)
            data['osdencrypted'] = int(self.osdencrypted)
        return data


@dataclass
class PartitionRecord(BlockRecord):
    """Classification result for one partition of a classified disk."""
    parent: str = ''
    type: DiskType = DiskType.PARTITION
    encrypted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = self._base_dict()
        data['parent'] = self.parent
        data['type'] = self.type.value
        if self.bluestore:
            data['bluestore'] = 1
        if self.encrypted:
            data['encrypted'] = 1
        return data


@dataclass
class SmartAttribute:
    """One row of the ATA SMART attribute table."""
    id: int
    name: str
    flags: str
    value: int
    worst: int
    threshold: int
    fail: str
    raw: str

    @property
    def normalized(self) -> int:
        return self.value


@dataclass
class SmartData:
    """Parsed smartctl output."""
    health: Optional[str] = None
    type: Optional[str] = None  # "ata", "text" or None
    attributes: List[SmartAttribute] = field(default_factory=list)
    text: Optional[str] = None
    wearout: Optional[float] = None


@dataclass
class ZpoolInfo:
    """One row of `zpool list`."""
    name: str
    size: int
    alloc: int
    free: int
    frag: float
    dedup: float
    health: str


@dataclass
class ZpoolVdev:
    """A node of the vdev tree printed by `zpool status`."""
    name: str
    level: int
    state: Optional[str] = None
    read: Optional[float] = None
    write: Optional[float] = None
    cksum: Optional[float] = None
    msg: str = ''
    children: List['ZpoolVdev'] = field(default_factory=list)

    @property
    def leaf(self) -> bool:
        return not self.children


@dataclass
class ZpoolStatus:
    """Header fields and vdev tree of one pool."""
    name: Optional[str] = None
    state: Optional[str] = None
    status: Optional[str] = None
    action: Optional[str] = None
    scan: Optional[str] = None
    errors: Optional[str] = None
    extra: Dict[str, str] = field(default_factory=dict)
    children: List[ZpoolVdev] = field(default_factory=list)

    level = 0

    @property
    def leaf(self) -> bool:
        return not self.children


@dataclass
class BestEffortResult:
    """Outcome of an operation whose failures are only reported as warnings."""
    warnings: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.warnings
