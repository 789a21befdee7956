"""Shell execution utilities.

Provides safe subprocess execution with proper error handling, and a
PowerShell runner used for hypervisor queries.
"""

import base64
import shutil
import subprocess
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Result of a shell command execution.

    Attributes:
        stdout: Standard output from the command.
        stderr: Standard error from the command.
        returncode: Exit code of the command.
    """

    stdout: str
    stderr: str
    returncode: int

    @property
    def success(self) -> bool:
        """Check if command executed successfully."""
        return self.returncode == 0


def run_command(
    args: list[str],
    *,
    timeout: float | None = 60.0,
) -> CommandResult:
    """Execute a shell command and return the result.

    Args:
        args: Command and arguments to execute.
        timeout: Maximum time in seconds to wait for command.

    Returns:
        CommandResult with stdout, stderr, and returncode.

    Raises:
        subprocess.TimeoutExpired: If command exceeds timeout.
        FileNotFoundError: If command executable is not found.
    """
    result = subprocess.run(
        args,
        capture_output=True,
        text=True,
        check=False,
        timeout=timeout,
    )
    return CommandResult(
        stdout=result.stdout,
        stderr=result.stderr,
        returncode=result.returncode,
    )


def command_exists(name: str) -> bool:
    """Check if a command exists in the system PATH.

    Args:
        name: Command name to check.

    Returns:
        True if command exists, False otherwise.
    """
    return shutil.which(name) is not None


def encode_powershell(script: str) -> str:
    """Encode a script for ``powershell.exe -EncodedCommand``.

    PowerShell expects base64 of the UTF-16LE script text, which avoids
    any quoting of the script on the command line.
    """
    return base64.b64encode(script.encode("utf-16-le")).decode("ascii")


def run_powershell(
    script: str,
    *,
    executable: str = "powershell.exe",
    timeout: float | None = 300.0,
) -> CommandResult:
    """Run a PowerShell script non-interactively.

    Args:
        script: Script text to execute.
        executable: PowerShell executable (powershell.exe or pwsh).
        timeout: Maximum time in seconds to wait for the script.

    Returns:
        CommandResult with stdout, stderr, and returncode.

    Raises:
        subprocess.TimeoutExpired: If the script exceeds timeout.
        FileNotFoundError: If the executable is not found.
    """
    return run_command(
        [
            executable,
            "-NoProfile",
            "-NonInteractive",
            "-ExecutionPolicy",
            "Bypass",
            "-EncodedCommand",
            encode_powershell(script),
        ],
        timeout=timeout,
    )
