from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from typing import Optional

from dotenv import load_dotenv


ENV_PREFIX = 'DISKMANAGE_'


def _env_str(name: str, default: str) -> str:
    value = os.getenv(ENV_PREFIX + name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(ENV_PREFIX + name)
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    value = os.getenv(ENV_PREFIX + name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


@dataclass(frozen=True)
class ToolPaths:
    """Absolute paths of the external tools, one per CommandType."""
    smartctl: str = '/usr/sbin/smartctl'
    zpool: str = '/sbin/zpool'
    sgdisk: str = '/sbin/sgdisk'
    pvs: str = '/sbin/pvs'
    lvs: str = '/sbin/lvs'
    lsblk: str = '/bin/lsblk'
    udevadm: str = '/bin/udevadm'
    wipefs: str = '/sbin/wipefs'
    dd: str = '/bin/dd'

    @classmethod
    def from_env(cls) -> 'ToolPaths':
        # DISKMANAGE_SMARTCTL=/opt/bin/smartctl etc.
        defaults = cls()
        return cls(**{
            f.name: _env_str(f.name.upper(), getattr(defaults, f.name))
            for f in fields(cls)
        })


@dataclass(frozen=True)
class DiskConfig:
    """Runtime configuration shared by the probes, resolvers and mutators."""
    tools: ToolPaths = field(default_factory=ToolPaths)
    sys_block: str = '/sys/block'
    sys_class_block: str = '/sys/class/block'
    sys_dev_block: str = '/sys/dev/block'
    lock_file: str = '/run/lock/diskmanage.lck'
    lock_timeout: float = 10.0
    command_timeout: Optional[float] = None
    log_level: str = 'INFO'
    log_json: bool = False


DEFAULT_CONFIG = DiskConfig()


def load_config(env_file: Optional[str] = None) -> DiskConfig:
    """
    Build a DiskConfig from the environment.

    Args:
        env_file: Optional dotenv file loaded first; variables already set in
            the process environment win over the file.

    Returns:
        DiskConfig populated from DISKMANAGE_* variables and defaults
    """
    if env_file:
        load_dotenv(env_file, override=False)

    defaults = DEFAULT_CONFIG
    return DiskConfig(
        tools=ToolPaths.from_env(),
        sys_block=_env_str('SYS_BLOCK', defaults.sys_block),
        sys_class_block=_env_str('SYS_CLASS_BLOCK', defaults.sys_class_block),
        sys_dev_block=_env_str('SYS_DEV_BLOCK', defaults.sys_dev_block),
        lock_file=_env_str('LOCK_FILE', defaults.lock_file),
        lock_timeout=_env_float('LOCK_TIMEOUT', defaults.lock_timeout),
        command_timeout=_env_float('COMMAND_TIMEOUT', defaults.command_timeout),
        log_level=_env_str('LOG_LEVEL', defaults.log_level).upper(),
        log_json=_env_bool('LOG_JSON', defaults.log_json),
    )
