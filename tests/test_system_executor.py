"""Unit tests for SystemCommandExecutor."""

import unittest
from unittest.mock import Mock, patch
import subprocess

from diskmanage.config import ToolPaths
from diskmanage.errors import CommandError, ToolNotInstalledError
from diskmanage.system_executor import CommandResult, CommandType, SystemCommandExecutor


class TestSystemCommandExecutor(unittest.TestCase):
    """Test cases for SystemCommandExecutor class."""

    def setUp(self):
        """Set up test fixtures."""
        self.executor = SystemCommandExecutor(dry_run=True)
        self.executor_live = SystemCommandExecutor(dry_run=False)

    def test_validate_device_path_valid(self):
        """Test valid device path validation."""
        valid_paths = [
            '/dev/sda',
            '/dev/sdb1',
            '/dev/nvme0n1',
            '/dev/cciss/c0d0p1',
            '/dev/mapper/vg0-data'
        ]

        for path in valid_paths:
            with self.subTest(path=path):
                self.assertTrue(self.executor.validate_device_path(path))

    def test_validate_device_path_invalid(self):
        """Test invalid device path validation."""
        invalid_paths = [
            '/dev/../etc/passwd',
            '/dev/sda; rm -rf /',
            'sda1',
            '/home/user/file',
            '/dev/',
            ''
        ]

        for path in invalid_paths:
            with self.subTest(path=path):
                self.assertFalse(self.executor.validate_device_path(path))

    def test_binary_resolved_from_tool_paths(self):
        """Test binaries come from the configured tool paths."""
        executor = SystemCommandExecutor(tools=ToolPaths(sgdisk='/opt/gdisk/sgdisk'))
        self.assertEqual(executor.binary(CommandType.SGDISK), '/opt/gdisk/sgdisk')
        self.assertEqual(executor.binary(CommandType.LSBLK), '/bin/lsblk')

    def test_every_command_type_has_a_path(self):
        """Test every command type has a configured binary."""
        tools = ToolPaths()
        for command_type in CommandType:
            with self.subTest(command_type=command_type):
                self.assertTrue(getattr(tools, command_type.value).startswith('/'))

    @patch('diskmanage.system_executor.os.access', return_value=True)
    @patch('diskmanage.system_executor.os.path.isfile')
    def test_is_available(self, mock_isfile, mock_access):
        """Test availability requires an executable binary."""
        mock_isfile.return_value = True
        self.assertTrue(self.executor.is_available(CommandType.ZPOOL))
        mock_isfile.assert_called_with('/sbin/zpool')

        mock_isfile.return_value = False
        self.assertFalse(self.executor.is_available(CommandType.ZPOOL))

    def test_dry_run_mode(self):
        """Test dry run mode doesn't execute commands."""
        result = self.executor.run(CommandType.SGDISK, ['/dev/sdb', '-U', 'R'])

        self.assertTrue(result.success)
        self.assertEqual(result.stdout, "DRY RUN")
        history = self.executor.get_command_history()
        self.assertEqual(len(history), 1)
        self.assertTrue(history[0]['dry_run'])
        self.assertEqual(history[0]['command'], '/sbin/sgdisk /dev/sdb -U R')

    @patch('subprocess.run')
    def test_run_success(self, mock_run):
        """Test a successful command returns its output."""
        mock_run.return_value = Mock(returncode=0, stdout="  /dev/sda3\n", stderr="")

        result = self.executor_live.run(CommandType.PVS, ['--noheadings', '-o', 'pv_name'])

        self.assertEqual(result, CommandResult(0, "  /dev/sda3\n", ""))
        self.assertEqual(result.lines(), ["  /dev/sda3"])
        args, kwargs = mock_run.call_args
        self.assertEqual(args[0], ['/sbin/pvs', '--noheadings', '-o', 'pv_name'])
        self.assertTrue(kwargs['capture_output'])
        self.assertIsNone(kwargs['timeout'])

    @patch('subprocess.run')
    def test_run_failure_raises(self, mock_run):
        """Test a non-zero exit raises CommandError."""
        mock_run.return_value = Mock(returncode=4, stdout="",
                                     stderr="Warning: something\nProblem opening /dev/sdz\n")

        with self.assertRaises(CommandError) as ctx:
            self.executor_live.run(CommandType.SGDISK, ['/dev/sdz', '-U', 'R'],
                                   errmsg="unable to initialize disk /dev/sdz")

        self.assertEqual(str(ctx.exception),
                         "unable to initialize disk /dev/sdz - exit code 4: Problem opening /dev/sdz")
        self.assertEqual(ctx.exception.returncode, 4)

    @patch('subprocess.run')
    def test_run_failure_unchecked(self, mock_run):
        """Test unchecked failures are returned."""
        mock_run.return_value = Mock(returncode=4, stdout="partial", stderr="")

        result = self.executor_live.run(CommandType.SMARTCTL, ['-H', '/dev/sda'], check=False)

        self.assertFalse(result.success)
        self.assertEqual(result.returncode, 4)

    @patch('subprocess.run', side_effect=FileNotFoundError())
    def test_missing_binary(self, mock_run):
        """Test a missing binary raises ToolNotInstalledError."""
        with self.assertRaises(ToolNotInstalledError) as ctx:
            self.executor_live.run(CommandType.ZPOOL, ['list'])
        self.assertIn('/sbin/zpool: command not found', str(ctx.exception))

    @patch('subprocess.run', side_effect=subprocess.TimeoutExpired(cmd='dd', timeout=5))
    def test_timeout(self, mock_run):
        """Test the configured timeout is passed to subprocess."""
        executor = SystemCommandExecutor(timeout=5)
        with self.assertRaises(CommandError) as ctx:
            executor.run(CommandType.DD, ['if=/dev/zero', 'of=/dev/sdb'])
        self.assertIn('timed out', str(ctx.exception))
        self.assertEqual(mock_run.call_args[1]['timeout'], 5)

    def test_command_history(self):
        """Test command history tracking."""
        self.executor.clear_command_history()

        self.executor.run(CommandType.WIPEFS, ['--all', '/dev/sdb'])
        self.executor.run(CommandType.UDEVADM, ['trigger', '/dev/sdb'])

        history = self.executor.get_command_history()
        self.assertEqual([entry['type'] for entry in history], ['wipefs', 'udevadm'])

        self.executor.clear_command_history()
        self.assertEqual(len(self.executor.get_command_history()), 0)


if __name__ == '__main__':
    unittest.main()
