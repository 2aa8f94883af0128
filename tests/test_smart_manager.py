"""Unit tests for SMARTManager and the smartctl output parser."""

import unittest
from unittest.mock import Mock, patch
import sys
import os

# Add the parent directory to the path so we can import the modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from diskmanage.errors import CommandError, InvalidBlockDeviceError, SmartError
from diskmanage.models import SmartAttribute, SmartData
from diskmanage.smart_manager import SMARTManager, get_wear_leveling_info, parse_smart_output
from diskmanage.system_executor import CommandResult, CommandType


ATA_OUTPUT = """smartctl 7.3 2022-02-28 r5338 [x86_64-linux-6.1.0] (local build)
Copyright (C) 2002-22, Bruce Allen, Christian Franke, www.smartmontools.org

=== START OF READ SMART DATA SECTION ===
SMART overall-health self-assessment test result: PASSED

SMART Attributes Data Structure revision number: 1
Vendor Specific SMART Attributes with Thresholds:
ID# ATTRIBUTE_NAME          FLAGS    VALUE WORST THRESH FAIL RAW_VALUE
  5 Reallocated_Sector_Ct   -O--CK   100   100   010    -    0
  9 Power_On_Hours          -O--CK   095   095   000    -    21044
177 Wear_Leveling_Count     PO--C-   094   094   000    -    63
194 Temperature_Celsius     -O---K   066   052   ---    -    34 (Min/Max 18/48)
233 Media_Wearout_Indicator -O--CK   099   099   000    -    0
"""

NVME_OUTPUT = """smartctl 7.3 2022-02-28 r5338 [x86_64-linux-6.1.0] (local build)

=== START OF SMART DATA SECTION ===
SMART overall-health self-assessment test result: PASSED

SMART/Health Information (NVMe Log 0x02)
Critical Warning:                   0x00
Temperature:                        38 Celsius
Available Spare:                    100%
Percentage Used:                    2%
Data Units Read:                    1,223,010 [626 GB]
"""

SAS_OUTPUT = """=== START OF READ SMART DATA SECTION ===
SMART Health Status: OK

Percentage used endurance indicator: 3%
Current Drive Temperature:     31 C
"""


class TestParseSmartOutput(unittest.TestCase):
    """Test cases for parse_smart_output."""

    def test_ata_attributes(self):
        """Test the ATA attribute table is parsed."""
        data = parse_smart_output(ATA_OUTPUT)

        self.assertEqual(data.type, 'ata')
        self.assertEqual(data.health, 'PASSED')
        self.assertIsNone(data.text)
        self.assertEqual(len(data.attributes), 5)

        power_on = data.attributes[1]
        self.assertEqual(power_on.id, 9)
        self.assertEqual(power_on.name, 'Power_On_Hours')
        self.assertEqual(power_on.flags, '-O--CK')
        self.assertEqual(power_on.value, 95)
        self.assertEqual(power_on.raw, '21044')

    def test_placeholder_threshold_is_zero(self):
        """Test a '---' threshold is read as zero."""
        data = parse_smart_output(ATA_OUTPUT)
        temperature = data.attributes[3]
        self.assertEqual(temperature.name, 'Temperature_Celsius')
        self.assertEqual(temperature.threshold, 0)
        self.assertEqual(temperature.raw, '34 (Min/Max 18/48)')

    def test_nvme_text(self):
        """Test NVMe free text gives health and wearout."""
        data = parse_smart_output(NVME_OUTPUT)

        self.assertEqual(data.type, 'text')
        self.assertEqual(data.health, 'PASSED')
        self.assertIn('Critical Warning:', data.text)
        self.assertEqual(data.wearout, 98)
        self.assertEqual(data.attributes, [])

    def test_endurance_indicator(self):
        """Test the SAS endurance indicator gives wearout."""
        data = parse_smart_output(SAS_OUTPUT)
        self.assertEqual(data.health, 'OK')
        self.assertEqual(data.wearout, 97)

    def test_decimal_percentage(self):
        """Test decimal percentages are rounded down."""
        data = parse_smart_output("=== START OF SMART DATA SECTION ===\nPercentage Used: 2.5%\n")
        self.assertEqual(data.wearout, 97.5)

    def test_smart_disabled(self):
        """Test a disabled SMART is reported as health."""
        data = parse_smart_output("SMART support is: Available\nSMART Disabled. Use option -s with argument 'on'\n")
        self.assertEqual(data.health, 'SMART Disabled')

    def test_empty_output(self):
        """Test empty output keeps unknown values."""
        data = parse_smart_output('')
        self.assertIsNone(data.health)
        self.assertIsNone(data.type)


class TestWearLeveling(unittest.TestCase):
    """Test cases for get_wear_leveling_info."""

    def _attr(self, name, value):
        return SmartAttribute(id=1, name=name, flags='PO--CK', value=value, worst=value,
                              threshold=0, fail='-', raw='0')

    def test_text_wearout_wins(self):
        """Test wearout from text takes precedence over attributes."""
        data = SmartData(wearout=97, attributes=[self._attr('Wear_Leveling_Count', 50)])
        self.assertEqual(get_wear_leveling_info(data), 97)

    def test_register_order(self):
        """Test the first matching wear attribute is used."""
        data = parse_smart_output(ATA_OUTPUT)
        # Media_Wearout_Indicator is listed before Wear_Leveling_Count
        self.assertEqual(get_wear_leveling_info(data), 99)

    def test_register_substring_match(self):
        """Test wear attributes match by substring."""
        data = SmartData(attributes=[self._attr('Unknown_SSD_Life_Left_Attr', 88)])
        self.assertEqual(get_wear_leveling_info(data), 88)

    def test_no_register(self):
        """Test unrelated attributes give no wearout."""
        data = SmartData(attributes=[self._attr('Power_On_Hours', 95)])
        self.assertIsNone(get_wear_leveling_info(data))


class TestSMARTManager(unittest.TestCase):
    """Test cases for SMARTManager class."""

    def setUp(self):
        """Set up test fixtures."""
        self.executor = Mock()
        self.smart_manager = SMARTManager(self.executor)

    @patch('diskmanage.smart_manager.assert_blockdev')
    def test_get_smart_data_full(self, mock_assert):
        """Test a full query reads attributes."""
        self.executor.run.return_value = CommandResult(0, ATA_OUTPUT, '')

        data = self.smart_manager.get_smart_data('/dev/sda')

        mock_assert.assert_called_once_with('/dev/sda')
        self.executor.run.assert_called_once_with(
            CommandType.SMARTCTL, ['-H', '-A', '-f', 'brief', '/dev/sda'], check=False)
        self.assertEqual(data.health, 'PASSED')

    @patch('diskmanage.smart_manager.assert_blockdev')
    def test_get_smart_data_health_only(self, mock_assert):
        """Test a health only query skips the attributes."""
        self.executor.run.return_value = CommandResult(0, NVME_OUTPUT, '')

        self.smart_manager.get_smart_data('/dev/sda', health_only=True)

        self.executor.run.assert_called_once_with(CommandType.SMARTCTL, ['-H', '/dev/sda'], check=False)

    @patch('diskmanage.smart_manager.assert_blockdev')
    def test_informational_exit_bits_are_not_errors(self, mock_assert):
        """Test higher exit bits are informational."""
        # bit 3: disk failing, bit 6: error log has entries
        self.executor.run.return_value = CommandResult(0b01001000, ATA_OUTPUT, '')

        data = self.smart_manager.get_smart_data('/dev/sda')

        self.assertEqual(len(data.attributes), 5)

    @patch('diskmanage.smart_manager.assert_blockdev')
    def test_fatal_exit_bits_raise(self, mock_assert):
        """Test exit bits 0 and 1 raise SmartError."""
        for code in (1, 2, 3):
            with self.subTest(code=code):
                self.executor.run.return_value = CommandResult(code, '', '')
                with self.assertRaises(SmartError) as ctx:
                    self.smart_manager.get_smart_data('/dev/sda')
                self.assertIn(f"Exit code: {code}", str(ctx.exception))

    @patch('diskmanage.smart_manager.assert_blockdev')
    def test_execution_error_raises_smart_error(self, mock_assert):
        """Test a failing smartctl raises SmartError."""
        self.executor.run.side_effect = CommandError("/usr/sbin/smartctl: command not found")

        with self.assertRaises(SmartError):
            self.smart_manager.get_smart_data('/dev/sda')

    def test_rejects_non_device(self):
        """Test non block devices are refused."""
        with self.assertRaises(InvalidBlockDeviceError):
            self.smart_manager.get_smart_data('/tmp/not-a-device')
        self.executor.run.assert_not_called()


if __name__ == '__main__':
    unittest.main()
