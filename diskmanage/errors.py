"""Exception types raised by disk management operations."""

from typing import List, Optional


class DiskManageError(Exception):
    """Base class for all disk management failures."""
    pass


class CommandError(DiskManageError):
    """An external tool could not be run or exited unsuccessfully."""

    def __init__(self, message: str, command: Optional[List[str]] = None,
                 returncode: Optional[int] = None, stderr: str = ''):
        super().__init__(message)
        self.command = command or []
        self.returncode = returncode
        self.stderr = stderr


class ToolNotInstalledError(CommandError):
    """The external tool binary does not exist on this node."""
    pass


class InvalidBlockDeviceError(DiskManageError):
    """A path does not resolve to a usable local block device."""
    pass


class DiskInUseError(DiskManageError):
    """A device that must be free is claimed by something."""
    pass


class PartitionError(DiskManageError):
    """Partition lookup or creation failed."""
    pass


class GptRequiredError(PartitionError):
    """The operation only works on GPT partitioned disks."""
    pass


class SmartError(DiskManageError):
    """smartctl reported a fatal error."""
    pass


class LockTimeoutError(DiskManageError):
    """The node-wide disk lock could not be acquired in time."""
    pass
