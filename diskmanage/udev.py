"""udev device property probe."""

import logging
import re
from typing import Dict, Iterable, Optional

from .errors import CommandError
from .models import UdevInfo
from .system_executor import CommandType, SystemCommandExecutor

logger = logging.getLogger(__name__)

# Stable names usable for destructive commands; nvme-eui links are skipped.
BY_ID_LINK_PATTERN = re.compile(r'^/dev/disk/by-id/(ata|scsi|nvme(?!-eui))')


def udevadm_properties(output: str, properties: Iterable[str] = ()) -> Dict[str, str]:
    """
    Split `udevadm info --query=property` output into a dict.

    Optionally pass the property names to keep; a requested property might
    not be returned if not present.

    Expected output format::
        DEVNAME=/dev/sda
        DEVTYPE=disk
        ID_BUS=ata
        ID_MODEL=SK_hynix_SC311_SATA_512GB
        ID_PART_TABLE_TYPE=gpt
        ...
    """
    wanted = set(properties)
    ret = {}
    for line in output.splitlines():
        if '=' not in line:
            continue
        prop, value = line.split('=', 1)
        if not wanted or prop in wanted:
            ret[prop] = value
    return ret


def parse_udev_info(output: str) -> Optional[UdevInfo]:
    """
    Build UdevInfo from `udevadm info --query=property` output.

    Returns:
        UdevInfo for disks and partitions, None for anything else (cdroms,
        other device types, missing device node)
    """
    props = udevadm_properties(output)
    if props.get('DEVTYPE') not in ('disk', 'partition'):
        return None
    if 'ID_CDROM' in props:
        return None

    # Some disks are not directly in /dev, e.g. /dev/cciss/c0d0
    devpath = props.get('DEVNAME')
    if not devpath:
        return None

    data = UdevInfo(devpath=devpath)

    serial = props.get('ID_SERIAL_SHORT', '').strip()
    if serial:
        data.serial = serial

    data.gpt = props.get('ID_PART_TABLE_TYPE') == 'gpt'

    # only spinning ATA disks report a rotation rate
    rpm = props.get('ID_ATA_ROTATION_RATE_RPM', '')
    if rpm.isdigit():
        data.rpm = int(rpm)

    data.usb = props.get('ID_BUS') == 'usb'

    if props.get('ID_MODEL'):
        data.model = props['ID_MODEL']

    if 'ID_WWN' in props:
        data.wwn = props['ID_WWN']

    by_id = [link for link in props.get('DEVLINKS', '').split()
             if BY_ID_LINK_PATTERN.match(link)]
    if by_id:
        data.by_id_link = by_id[0]

    return data


def get_udev_info(executor: SystemCommandExecutor, path: str) -> Optional[UdevInfo]:
    """
    Query udev for a sysfs directory (/sys/...) or a device node (/dev/...).

    Failures are logged and reported as "no data".
    """
    try:
        result = executor.run(CommandType.UDEVADM, ['info', '--query=property', path])
    except CommandError as e:
        logger.warning(f"udevadm query for {path} failed: {e}", extra={'device': path})
        return None
    return parse_udev_info(result.stdout)
