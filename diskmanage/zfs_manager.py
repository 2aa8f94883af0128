"""ZFS pool listing and status parsing."""

import logging
import re
from typing import List, Optional, Union

from .errors import ToolNotInstalledError
from .models import ZpoolInfo, ZpoolStatus, ZpoolVdev
from .system_executor import CommandType, SystemCommandExecutor

logger = logging.getLogger(__name__)

POOL_PROPERTIES = ('name', 'size', 'alloc', 'free', 'frag', 'dedup', 'health')

FIELD_PATTERN = re.compile(r'^\s*(\S+): (\S+.*)$')
CONTINUATION_PATTERN = re.compile(r'^\s+(\S+.*)$')
CONFIG_PATTERN = re.compile(r'^\s*config:')
# indent, name, state, read, write, cksum, message
VDEV_PATTERN = re.compile(r'^(\s+)(\S+)\s*(\S+)?(?:\s+(\S+)\s+(\S+)\s+(\S+))?\s*(.*)$')

# zpool status indents each vdev level by two spaces
INDENT_WIDTH = 2


def _number(value: Optional[str]) -> Union[int, float]:
    # non-numeric columns such as '-' count as 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    return int(number) if number.is_integer() else number


def parse_zpool_list(output: str) -> List[ZpoolInfo]:
    """Parse `zpool list -HpPLo name,size,alloc,free,frag,dedup,health`."""
    pools = []
    for line in output.splitlines():
        props = line.split()
        if not props:
            continue
        props += [None] * (len(POOL_PROPERTIES) - len(props))
        pools.append(ZpoolInfo(
            name=props[0],
            size=_number(props[1]),
            alloc=_number(props[2]),
            free=_number(props[3]),
            frag=_number(props[4]),
            dedup=_number(props[5]),
            health=props[6],
        ))
    return pools


def parse_zpool_status(output: str) -> ZpoolStatus:
    """
    Parse `zpool status -P <pool>` into header fields and a vdev tree.

    Header fields may wrap onto indented continuation lines. After `config:`
    every indented row is a vdev whose depth is its indentation divided by
    INDENT_WIDTH; the tree is rebuilt with an explicit stack of open nodes.
    An `errors:` field ends the config section.
    """
    pool = ZpoolStatus()
    fields = {}
    current_field = None
    in_config = False

    stack: List[Union[ZpoolStatus, ZpoolVdev]] = [pool]
    current_level = 0

    for line in output.splitlines():
        field_match = FIELD_PATTERN.match(line)
        if field_match:
            current_field = field_match.group(1)
            fields[current_field] = field_match.group(2)
            if current_field == 'errors':
                in_config = False
            continue

        if not in_config:
            continuation = CONTINUATION_PATTERN.match(line)
            if continuation:
                if current_field is not None:
                    fields[current_field] += ' ' + continuation.group(1)
            elif CONFIG_PATTERN.match(line):
                in_config = True
            continue

        vdev_match = VDEV_PATTERN.match(line)
        if not vdev_match:
            continue
        space, name, state, read, write, cksum, msg = vdev_match.groups()
        if name == 'NAME':
            continue

        level = len(space) // INDENT_WIDTH + 1
        vdev = ZpoolVdev(
            name=name,
            level=level,
            state=state,
            read=_number(read) if read is not None else None,
            write=_number(write) if write is not None else None,
            cksum=_number(cksum) if cksum is not None else None,
            msg=msg,
        )

        parent = stack.pop()
        if level == current_level:
            # parent is the previous sibling
            parent = stack.pop()
        elif level < current_level:
            while level <= parent.level and parent.level != 0:
                parent = stack.pop()
        parent.children.append(vdev)

        stack.append(parent)
        stack.append(vdev)
        current_level = level

    pool.name = fields.pop('pool', None)
    for key in ('state', 'status', 'action', 'scan', 'errors'):
        setattr(pool, key, fields.pop(key, None))
    pool.extra = fields
    return pool


class ZFSManager:
    """Read-only view of the ZFS pools on this node."""

    def __init__(self, executor: Optional[SystemCommandExecutor] = None):
        self._executor = executor or SystemCommandExecutor()

    def _assert_installed(self) -> None:
        if not self._executor.is_available(CommandType.ZPOOL):
            raise ToolNotInstalledError("zfsutils-linux not installed")

    def get_pool_data(self) -> List[ZpoolInfo]:
        """
        List pools with their capacity, fragmentation, dedup ratio and health.

        Raises:
            ToolNotInstalledError: If zpool is not installed
            CommandError: If the listing fails
        """
        self._assert_installed()
        result = self._executor.run(
            CommandType.ZPOOL, ['list', '-HpPLo', ','.join(POOL_PROPERTIES)],
            errmsg="zpool list failed",
        )
        return parse_zpool_list(result.stdout)

    def get_pool_status(self, name: str) -> ZpoolStatus:
        """Status and vdev tree of a single pool."""
        self._assert_installed()
        result = self._executor.run(
            CommandType.ZPOOL, ['status', '-P', name],
            errmsg=f"zpool status for '{name}' failed",
        )
        status = parse_zpool_status(result.stdout)
        logger.debug(f"Pool {name} is {status.state}")
        return status
