"""Shared fixtures: a fake sysfs tree, a scripted executor and a fake mount table."""

import fcntl
import json
import os
import sys
from collections import namedtuple
from contextlib import contextmanager
from unittest.mock import patch

import pytest

# Add the parent directory to the path so we can import the modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from diskmanage.config import DiskConfig
from diskmanage.errors import CommandError
from diskmanage.system_executor import CommandResult, CommandType, SystemCommandExecutor


MountEntry = namedtuple('MountEntry', 'device mountpoint fstype opts')


@contextmanager
def lock_held_elsewhere(lock_file):
    """Hold lock_file through a separate open file, as another process would."""
    fd = os.open(lock_file, os.O_CREAT | os.O_RDWR, 0o600)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX)
        yield
    finally:
        os.close(fd)


def udev_output(devname, devtype='disk', **props):
    """Build `udevadm info --query=property` output for a device."""
    lines = [
        f"DEVPATH=/devices/virtual/block/{devname}",
        f"DEVNAME=/dev/{devname}",
        f"DEVTYPE={devtype}",
    ]
    lines += [f"{key}={value}" for key, value in props.items()]
    return '\n'.join(lines) + '\n'


class FakeExecutor(SystemCommandExecutor):
    """SystemCommandExecutor answering from scripted responses instead of running tools."""

    def __init__(self):
        super().__init__()
        self.responses = {}
        self.calls = []
        self.available = set(CommandType)

    def script(self, command_type, response):
        """response: output string, CommandResult, exception, or callable(args)."""
        self.responses[command_type] = response

    def is_available(self, command_type):
        return command_type in self.available

    def run(self, command_type, args, check=True, errmsg=None):
        args = [str(arg) for arg in args]
        self.calls.append((command_type, args))
        self._command_history.append({'command': ' '.join(args), 'type': command_type.value,
                                      'dry_run': False})

        response = self.responses.get(command_type, '')
        if callable(response) and not isinstance(response, type):
            response = response(args)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, str):
            response = CommandResult(0, response, '')

        if check and response.returncode != 0:
            raise CommandError(f"{errmsg or 'command failed'} - exit code {response.returncode}",
                               command=args, returncode=response.returncode,
                               stderr=response.stderr)
        return response

    def calls_for(self, command_type):
        return [args for ct, args in self.calls if ct == command_type]


class FakeSysfs:
    """Minimal /sys/block, /sys/class/block and /sys/dev/block tree under a temp dir."""

    def __init__(self, root):
        self.root = str(root)
        self.sys_block = os.path.join(self.root, 'sys', 'block')
        self.sys_class_block = os.path.join(self.root, 'sys', 'class', 'block')
        self.sys_dev_block = os.path.join(self.root, 'sys', 'dev', 'block')
        for path in (self.sys_block, self.sys_class_block, self.sys_dev_block):
            os.makedirs(path)
        self.udev = {}
        self.lsblk = {}
        # /dev nodes treated as block special files
        self.nodes = set()

    @staticmethod
    def _write(path, content):
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, 'w') as f:
            f.write(content)

    def add_disk(self, name, sectors=2097152, rotational=1, vendor='ATA', model='TestDisk',
                 holders=(), udev_props=None, device_dir=True):
        sysdir = os.path.join(self.sys_block, name)
        os.makedirs(os.path.join(sysdir, 'holders'))
        if device_dir:
            self._write(os.path.join(sysdir, 'device', 'vendor'), f"{vendor}\n")
            self._write(os.path.join(sysdir, 'device', 'model'), f"{model}\n")
        self._write(os.path.join(sysdir, 'size'), f"{sectors}\n")
        if rotational is not None:
            self._write(os.path.join(sysdir, 'queue', 'rotational'), f"{rotational}\n")
        for holder in holders:
            os.makedirs(os.path.join(sysdir, 'holders', holder))
        os.symlink(sysdir, os.path.join(self.sys_class_block, name))

        devname = name.replace('!', '/')
        self.nodes.add(f"/dev/{devname}")
        props = {'ID_SERIAL_SHORT': f"SN-{name}"}
        props.update(udev_props or {})
        self.udev[sysdir] = udev_output(devname, **props)
        return sysdir

    def add_partition(self, disk, part, sectors=1048576, holders=(), parttype=None, fstype=None):
        sysdir = os.path.join(self.sys_block, disk, part)
        os.makedirs(os.path.join(sysdir, 'holders'))
        self._write(os.path.join(sysdir, 'size'), f"{sectors}\n")
        for holder in holders:
            os.makedirs(os.path.join(sysdir, 'holders', holder))
        os.symlink(sysdir, os.path.join(self.sys_class_block, part))
        self.nodes.add(f"/dev/{part.replace('!', '/')}")
        if parttype or fstype:
            self.set_lsblk(f"/dev/{part.replace('!', '/')}", parttype=parttype, fstype=fstype)
        return sysdir

    def set_lsblk(self, path, parttype=None, fstype=None):
        self.lsblk[path] = {'path': path, 'parttype': parttype, 'fstype': fstype}

    def make_iscsi(self, name):
        """Replace a disk's sysfs entry with a symlink shaped like an iSCSI session."""
        target = os.path.join(self.root, 'sys', 'devices', 'platform', 'host3', 'session1',
                              'target3:0:0', '3:0:0:0', 'block', name)
        os.makedirs(os.path.dirname(target))
        os.rename(os.path.join(self.sys_block, name), target)
        os.symlink(target, os.path.join(self.sys_block, name))

    def lsblk_output(self):
        return json.dumps({'blockdevices': list(self.lsblk.values())})

    def udev_response(self, args):
        if args[0] != 'info':
            return CommandResult(0, '', '')
        return CommandResult(0, self.udev.get(args[-1], ''), '')

    def is_block_special(self, path):
        return path in self.nodes

    def config(self):
        return DiskConfig(
            sys_block=self.sys_block,
            sys_class_block=self.sys_class_block,
            sys_dev_block=self.sys_dev_block,
            lock_file=os.path.join(self.root, 'diskmanage.lck'),
            lock_timeout=0.5,
        )


@pytest.fixture
def sysfs(tmp_path):
    fake = FakeSysfs(tmp_path)
    with patch('diskmanage.devices._is_block_special', side_effect=fake.is_block_special):
        yield fake


@pytest.fixture
def executor(sysfs):
    fake = FakeExecutor()
    fake.script(CommandType.UDEVADM, sysfs.udev_response)
    fake.script(CommandType.LSBLK, lambda args: sysfs.lsblk_output())
    return fake


@pytest.fixture
def mounts():
    """Entries returned by psutil.disk_partitions; tests append MountEntry items."""
    entries = []
    with patch('diskmanage.membership.psutil.disk_partitions', return_value=entries):
        yield entries
