"""SMART health and wear-leveling probe."""

import logging
import re
from typing import Optional, Union

from .devices import assert_blockdev
from .errors import CommandError, SmartError
from .models import SmartAttribute, SmartData
from .system_executor import CommandType, SystemCommandExecutor

logger = logging.getLogger(__name__)

Number = Union[int, float]

# smartctl exit status bits 0 and 1 mark a fatal error; the other bits carry
# disk status information (see smartctl(8)).
SMART_FATAL_MASK = 0b00000011

# ATA SMART attributes ('-f brief'), e.g.:
# ID# ATTRIBUTE_NAME          FLAGS    VALUE WORST THRESH FAIL RAW_VALUE
#   1 Raw_Read_Error_Rate     POSR-K   100   100   000    -    0
ATA_ATTRIBUTE_PATTERN = re.compile(
    r'^([ \d]{2}\d)\s+(\S+)\s+(\S{6})\s+(\d+)\s+(\d+)\s+(\S+)\s+(\S+)\s+(.*)$'
)
HEALTH_PATTERN = re.compile(r'(?:Health Status|self\-assessment test result): (.*)$')
ATA_SECTION_PATTERN = re.compile(r'Vendor Specific SMART Attributes with Thresholds:')
TEXT_SECTION_PATTERN = re.compile(r'=== START OF (READ )?SMART DATA SECTION ===')
# NVMe and SAS, e.g. "Percentage Used:  3%" or "Percentage used endurance indicator: 3%"
PERCENTAGE_USED_PATTERN = re.compile(
    r'Percentage Used(?: endurance indicator)?:\s*(\d+(?:\.\d+)?)%', re.IGNORECASE
)

# Attribute names reporting remaining life in percent, as named in smartmontools'
# drivedb.h. Order matters, some drives define more than one.
WEAROUT_REGISTERS = (
    'Media_Wearout_Indicator',
    'SSD_Life_Left',
    'Wear_Leveling_Count',
    'Perc_Write/Erase_Ct_BC',
    'Perc_Rated_Life_Remain',
    'Remaining_Lifetime_Perc',
    'Percent_Lifetime_Remain',
    'Lifetime_Left',
    'PCT_Life_Remaining',
    'Lifetime_Remaining',
    'Percent_Life_Remaining',
    'Percent_Lifetime_Used',
    'Perc_Rated_Life_Used',
)


def _to_number(number: float) -> Number:
    return int(number) if number.is_integer() else number


def _threshold(value: str) -> int:
    # some disks report the default threshold as --- instead of 000
    if value == '---' or not value.isdigit():
        return 0
    return int(value)


def parse_smart_output(output: str) -> SmartData:
    """
    Parse `smartctl -H [-A -f brief]` output.

    The section header decides how the following lines are read: the ATA
    attribute table, or free text for NVMe/SAS devices.
    """
    data = SmartData()

    for line in output.splitlines():
        attr_match = ATA_ATTRIBUTE_PATTERN.match(line) if data.type == 'ata' else None
        if attr_match:
            data.attributes.append(SmartAttribute(
                id=int(attr_match.group(1)),
                name=attr_match.group(2),
                flags=attr_match.group(3),
                value=int(attr_match.group(4)),
                worst=int(attr_match.group(5)),
                threshold=_threshold(attr_match.group(6)),
                fail=attr_match.group(7),
                raw=attr_match.group(8),
            ))
            continue

        health_match = HEALTH_PATTERN.search(line)
        if health_match:
            data.health = health_match.group(1)
        elif ATA_SECTION_PATTERN.search(line):
            data.type = 'ata'
            data.text = None
        elif TEXT_SECTION_PATTERN.search(line):
            data.type = 'text'
        elif data.type == 'text':
            data.text = (data.text or '') + line + '\n'
            wear_match = PERCENTAGE_USED_PATTERN.search(line)
            if wear_match:
                data.wearout = _to_number(100 - float(wear_match.group(1)))
        elif 'SMART Disabled' in line:
            data.health = 'SMART Disabled'

    return data


def get_wear_leveling_info(smartdata: SmartData) -> Optional[Number]:
    """
    Remaining life in percent.

    Returns the value from the NVMe/SAS text when present, otherwise the
    normalized value of the first known wear-out attribute, or None.
    """
    if smartdata.wearout is not None:
        return smartdata.wearout

    for register in WEAROUT_REGISTERS:
        for attr in smartdata.attributes:
            if register in attr.name:
                return attr.value
    return None


class SMARTManager:
    """Runs smartctl for a device and parses the result."""

    def __init__(self, executor: Optional[SystemCommandExecutor] = None):
        """Initialize the SMART manager."""
        self._executor = executor or SystemCommandExecutor()

    def get_smart_data(self, device_path: str, health_only: bool = False) -> SmartData:
        """
        Query SMART health (and attributes unless health_only) for a device.

        Args:
            device_path: Device node (e.g. '/dev/sdb')
            health_only: Skip the attribute dump

        Returns:
            Parsed SmartData

        Raises:
            InvalidBlockDeviceError: If device_path is not a block device
            SmartError: If smartctl could not run or reported a fatal error
        """
        assert_blockdev(device_path)

        args = ['-H']
        if not health_only:
            args.extend(['-A', '-f', 'brief'])
        args.append(device_path)

        try:
            result = self._executor.run(CommandType.SMARTCTL, args, check=False)
        except CommandError as e:
            raise SmartError(f"Error getting S.M.A.R.T. data: {e}") from e

        if result.returncode & SMART_FATAL_MASK:
            raise SmartError(f"Error getting S.M.A.R.T. data: Exit code: {result.returncode}")

        if result.returncode:
            logger.debug(f"smartctl reported disk status bits {result.returncode} for {device_path}",
                         extra={'device': device_path, 'returncode': result.returncode})

        return parse_smart_output(result.stdout)
