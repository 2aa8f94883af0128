from __future__ import annotations

from .config import DiskConfig, ToolPaths, load_config
from .disk_actions import DiskActions
from .drive_manager import DriveManager
from .errors import (CommandError, DiskInUseError, DiskManageError, GptRequiredError,
                     InvalidBlockDeviceError, LockTimeoutError, PartitionError, SmartError,
                     ToolNotInstalledError)
from .locking import disk_lock, locked_disk_action
from .logging import init_logging
from .models import DiskFilter, DiskRecord, DiskType, PartitionRecord, Usage, UsageKind
from .smart_manager import SMARTManager
from .system_executor import CommandType, SystemCommandExecutor
from .zfs_manager import ZFSManager

__all__ = [
    "CommandError",
    "CommandType",
    "DiskActions",
    "DiskConfig",
    "DiskFilter",
    "DiskInUseError",
    "DiskManageError",
    "DiskRecord",
    "DiskType",
    "DriveManager",
    "GptRequiredError",
    "InvalidBlockDeviceError",
    "LockTimeoutError",
    "PartitionError",
    "PartitionRecord",
    "SMARTManager",
    "SmartError",
    "SystemCommandExecutor",
    "ToolNotInstalledError",
    "ToolPaths",
    "Usage",
    "UsageKind",
    "ZFSManager",
    "disk_lock",
    "init_logging",
    "load_config",
    "locked_disk_action",
]
