"""Subprocess execution primitive.

Every external tool (ssh-agent, ssh-add, ssh, git) runs through here so
each call has a bounded timeout and captured output.
"""

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from typing import List, Mapping, Optional

from gitshift.constants import get_tool_timeout
from gitshift.primitives.errors import ExternalToolFailed, ExternalToolTimeout

logger = logging.getLogger(__name__)


@dataclass
class SubprocessResult:
    """Result of subprocess execution.

    Attributes:
        success: True if return code is 0.
        stdout: Standard output from process.
        stderr: Standard error from process.
        return_code: Exit code from process.
        duration_ms: Time taken for execution in milliseconds.
    """

    success: bool
    stdout: str
    stderr: str
    return_code: int
    duration_ms: float

    @property
    def output(self) -> str:
        """stdout and stderr joined, for error messages and pattern checks."""
        return "\n".join(part for part in (self.stdout, self.stderr) if part)


class SubprocessPrimitive:
    """Runs commands synchronously with a timeout.

    Non-zero exits come back as results; only a timeout or a missing
    executable raises.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout if timeout is not None else get_tool_timeout()

    def run(
        self,
        command: List[str],
        timeout: Optional[float] = None,
        env: Optional[Mapping[str, str]] = None,
        cwd: Optional[str] = None,
        input_data: Optional[str] = None,
    ) -> SubprocessResult:
        """Execute a command.

        Args:
            command: Executable followed by its arguments.
            timeout: Seconds before the process is killed (default: runner timeout).
            env: Full environment for the child (default: inherit os.environ).
            cwd: Working directory.
            input_data: Text piped to stdin. stdin is closed when None, so
                tools that would prompt (ssh-add with a passphrase) fail
                instead of hanging.

        Returns:
            SubprocessResult with execution details.

        Raises:
            ExternalToolTimeout: The process exceeded its timeout.
            ExternalToolFailed: The executable could not be started.
        """
        if not command:
            raise ValueError("command must not be empty")

        tool = os.path.basename(command[0])
        limit = timeout if timeout is not None else self.timeout
        start_time = time.time()
        logger.debug(f"Running {tool} with {len(command) - 1} args (timeout {limit:g}s)")

        try:
            proc = subprocess.run(
                command,
                input=input_data,
                stdin=subprocess.DEVNULL if input_data is None else None,
                capture_output=True,
                text=True,
                timeout=limit,
                env=dict(env) if env is not None else None,
                cwd=cwd,
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"{tool} timed out after {limit:g}s")
            raise ExternalToolTimeout(tool, limit)
        except FileNotFoundError as e:
            raise ExternalToolFailed(tool, 127, message=f"{tool} not found on PATH") from e
        except PermissionError as e:
            raise ExternalToolFailed(tool, 126, message=f"{tool} is not executable") from e

        duration_ms = (time.time() - start_time) * 1000
        return SubprocessResult(
            success=proc.returncode == 0,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
            return_code=proc.returncode,
            duration_ms=duration_ms,
        )
