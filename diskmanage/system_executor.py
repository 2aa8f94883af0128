"""Command execution gateway for the external disk tools."""

import logging
import os
import re
import shlex
import subprocess
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from .config import ToolPaths
from .errors import CommandError, ToolNotInstalledError


logger = logging.getLogger(__name__)


class CommandType(Enum):
    """External tools the disk layer is allowed to run."""
    SMARTCTL = "smartctl"
    ZPOOL = "zpool"
    SGDISK = "sgdisk"
    PVS = "pvs"
    LVS = "lvs"
    LSBLK = "lsblk"
    UDEVADM = "udevadm"
    WIPEFS = "wipefs"
    DD = "dd"


@dataclass
class CommandResult:
    """Exit status and captured output of one command."""
    returncode: int
    stdout: str = ''
    stderr: str = ''

    @property
    def success(self) -> bool:
        return self.returncode == 0

    def lines(self) -> List[str]:
        return self.stdout.splitlines()


class SystemCommandExecutor:
    """Runs whitelisted disk tools with logging, history and dry-run support."""

    # /dev/sda, /dev/nvme0n1p1, /dev/cciss/c0d0, /dev/mapper/vg-lv
    DEVICE_PATH_PATTERN = re.compile(r'^/dev/[a-zA-Z0-9_-]+(/[a-zA-Z0-9_.-]+)?$')

    def __init__(self, tools: Optional[ToolPaths] = None, dry_run: bool = False,
                 timeout: Optional[float] = None):
        """
        Initialize the SystemCommandExecutor.

        Args:
            tools: Resolved tool paths (defaults to the standard locations)
            dry_run: If True, commands will be logged but not executed
            timeout: Optional per-command timeout in seconds; None waits forever
        """
        self.tools = tools or ToolPaths()
        self.dry_run = dry_run
        self.timeout = timeout
        self._command_history: List[Dict] = []

    def binary(self, command_type: CommandType) -> str:
        """Return the configured binary path for a tool."""
        return getattr(self.tools, command_type.value)

    def is_available(self, command_type: CommandType) -> bool:
        """Check whether the tool binary exists and is executable."""
        path = self.binary(command_type)
        return os.path.isfile(path) and os.access(path, os.X_OK)

    def run(self,
            command_type: CommandType,
            args: List[str],
            check: bool = True,
            errmsg: Optional[str] = None) -> CommandResult:
        """
        Execute a tool with the given arguments.

        Args:
            command_type: Which tool to run
            args: Command arguments
            check: Raise CommandError on a non-zero exit code
            errmsg: Message prefix used when the command fails

        Returns:
            CommandResult with exit code and captured output

        Raises:
            ToolNotInstalledError: If the binary does not exist
            CommandError: If the command cannot run, times out, or fails with check=True
        """
        full_command = [self.binary(command_type)] + [str(arg) for arg in args]
        command_str = ' '.join(shlex.quote(arg) for arg in full_command)
        logger.info(f"Executing command: {command_str}")

        self._command_history.append({
            'command': command_str,
            'type': command_type.value,
            'dry_run': self.dry_run
        })

        if self.dry_run:
            logger.info("DRY RUN: Command would be executed")
            return CommandResult(0, "DRY RUN", "")

        started = time.time()
        try:
            proc = subprocess.run(
                full_command,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False
            )
        except FileNotFoundError:
            raise ToolNotInstalledError(
                f"{full_command[0]}: command not found",
                command=full_command,
            )
        except subprocess.TimeoutExpired:
            logger.error(f"Command timed out: {command_str}")
            raise CommandError(
                f"{errmsg or 'command failed'}: {command_str} timed out",
                command=full_command,
            )
        except OSError as e:
            raise CommandError(
                f"{errmsg or 'command failed'}: {e}",
                command=full_command,
            )

        duration_ms = round((time.time() - started) * 1000, 2)
        result = CommandResult(proc.returncode, proc.stdout or '', proc.stderr or '')

        if result.success:
            logger.debug(f"Command executed successfully: {command_str}",
                         extra={'command': command_str, 'returncode': 0,
                                'duration_ms': duration_ms})
        elif check:
            logger.error(f"Command failed with return code {result.returncode}: {command_str}",
                         extra={'command': command_str, 'returncode': result.returncode})
            stderr = result.stderr.strip()
            message = errmsg or f"command '{command_str}' failed"
            detail = f"exit code {result.returncode}"
            if stderr:
                detail = f"{detail}: {stderr.splitlines()[-1]}"
            raise CommandError(f"{message} - {detail}", command=full_command,
                               returncode=result.returncode, stderr=result.stderr)

        return result

    def validate_device_path(self, path: str) -> bool:
        """Validate device path format."""
        return bool(self.DEVICE_PATH_PATTERN.match(path or ''))

    def get_command_history(self) -> List[Dict]:
        """Get the history of executed commands."""
        return self._command_history.copy()

    def clear_command_history(self) -> None:
        """Clear the command history."""
        self._command_history.clear()
