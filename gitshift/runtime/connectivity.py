"""SSH connectivity probe against a hosting platform."""

import logging
import re
from dataclasses import asdict, dataclass
from typing import Optional

from gitshift.platform import PlatformSpec
from gitshift.primitives.errors import ExternalToolFailed, ExternalToolTimeout
from gitshift.primitives.subprocess import SubprocessPrimitive

logger = logging.getLogger(__name__)


@dataclass
class ConnectivityResult:
    """Outcome of ``ssh -T git@<host>``.

    Attributes:
        success: The platform accepted the key.
        host: Host probed.
        output: What ssh printed.
        error: Why the probe failed, None on success.
        account: Account name the platform greeted, when it names one.
    """

    success: bool
    host: str
    output: str = ""
    error: Optional[str] = None
    account: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


_GREETING_RES = (
    re.compile(r"Hi ([^!\s]+)!"),  # GitHub
    re.compile(r"Welcome to GitLab, @([^!\s]+)!"),
    re.compile(r"logged in as ([^\s.]+)"),  # Bitbucket
)


def greeted_account(output: str) -> Optional[str]:
    """Account name from an SSH endpoint greeting, or None."""
    for pattern in _GREETING_RES:
        match = pattern.search(output)
        if match:
            return match.group(1)
    return None


def probe_ssh_connection(
    platform: PlatformSpec,
    key_path: Optional[str] = None,
    runner: Optional[SubprocessPrimitive] = None,
    timeout: Optional[float] = None,
) -> ConnectivityResult:
    """Authenticate against the platform's SSH endpoint.

    The endpoint closes the session after authenticating (no shell), so ssh
    exits non-zero even on success; the greeting text decides.
    """
    runner = runner or SubprocessPrimitive()
    command = ["ssh", "-T", "-o", "BatchMode=yes", "-o", "ConnectTimeout=10"]
    if key_path:
        command += ["-i", key_path, "-o", "IdentitiesOnly=yes"]
    command.append(f"{platform.ssh_user}@{platform.host}")

    try:
        result = runner.run(command, timeout=timeout)
    except (ExternalToolTimeout, ExternalToolFailed) as e:
        return ConnectivityResult(success=False, host=platform.host, error=e.message)

    output = result.output.strip()
    if platform.greeting.lower() in output.lower():
        return ConnectivityResult(success=True, host=platform.host, output=output, account=greeted_account(output))

    logger.info(f"SSH probe of {platform.host} failed with exit code {result.return_code}")
    return ConnectivityResult(
        success=False,
        host=platform.host,
        output=output,
        error=f"ssh exited with code {result.return_code}",
    )
