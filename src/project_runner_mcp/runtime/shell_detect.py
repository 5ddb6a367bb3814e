"""Host shell discovery.

project-runner-mcp runtime module v0.1.0

Reports which executable a dialect resolves to and, where the shell can
tell, its version. Used by the ``shell_info`` tool and logged at startup.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass

from .sequencer import DEFAULT_POSIX_SHELL, ShellDialect, default_dialect

__all__ = [
    "ShellInfo",
    "detect_shell",
]

logger = logging.getLogger(__name__)

POWERSHELL_VERSION_COMMAND = "$PSVersionTable.PSVersion.ToString(); $PSVersionTable.PSEdition"


@dataclass(frozen=True)
class ShellInfo:
    """Result of :func:`detect_shell`.

    Attributes:
        dialect: Dialect that was checked
        executable: Resolved executable path, None if not found
        version: Version text reported by the shell, None if unavailable
    """

    dialect: ShellDialect
    executable: str | None
    version: str | None = None

    @property
    def available(self) -> bool:
        return self.executable is not None

    def to_dict(self) -> dict[str, str | bool | None]:
        return {
            "dialect": self.dialect.value,
            "executable": self.executable,
            "version": self.version,
            "available": self.available,
        }


async def detect_shell(
    dialect: ShellDialect | None = None,
    shell_path: str | None = None,
    timeout: float = 5.0,
) -> ShellInfo:
    """Resolve the shell executable and ask it for its version.

    Never raises: a missing shell or a failing version query is reported
    through ``executable``/``version`` being None.
    """
    dialect = dialect or default_dialect()

    if dialect == ShellDialect.POWERSHELL:
        executable = shutil.which("powershell.exe") or shutil.which("powershell")
        argv = [executable, "-NoProfile", "-Command", POWERSHELL_VERSION_COMMAND] if executable else None
    else:
        candidate = shell_path or DEFAULT_POSIX_SHELL
        executable = shutil.which(candidate)
        if executable:
            executable = os.path.realpath(executable)
        # dash has no version flag; only shells that accept --version answer.
        argv = [executable, "--version"] if executable else None

    if argv is None:
        logger.warning(f"Shell for dialect {dialect.value} not found")
        return ShellInfo(dialect=dialect, executable=None)

    version = await _query_version(argv, timeout)
    return ShellInfo(dialect=dialect, executable=executable, version=version)


async def _query_version(argv: list[str], timeout: float) -> str | None:
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as e:
        logger.debug(f"Version query failed to start: {e}")
        return None

    try:
        stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.debug(f"Version query timed out after {timeout}s")
        process.kill()
        await process.wait()
        return None

    if process.returncode != 0 or not stdout:
        return None
    lines = [line.strip() for line in stdout.decode("utf-8", errors="replace").splitlines()]
    lines = [line for line in lines if line]
    if not lines:
        return None
    # PowerShell prints "5.1.19041.1" then "Desktop".
    return " ".join(lines[:2]) if len(lines) == 2 else lines[0]
