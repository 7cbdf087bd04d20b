"""SSH agent controller.

Drives ssh-agent through ssh-add: flush every held key, load exactly one,
list what is loaded. A missing agent is started for the current process;
the parent shell only sees it through ``eval $(gitshift env)``.
"""

import logging
import os
import re
from typing import List, MutableMapping, Optional, Protocol

from gitshift.primitives.errors import AgentUnreachable, ExternalToolFailed
from gitshift.primitives.subprocess import SubprocessPrimitive, SubprocessResult

logger = logging.getLogger(__name__)

_AGENT_VAR_RE = re.compile(r"(SSH_AUTH_SOCK|SSH_AGENT_PID)=([^;\s]+);")
_FINGERPRINT_RE = re.compile(r"^\d+\s+(SHA256:[A-Za-z0-9+/]+)")

# ssh-add exit codes
_NO_IDENTITIES = 1
_NO_CONNECTION = 2


class AgentBackend(Protocol):
    """What the switcher needs from an agent; tests substitute a fake."""

    def reset(self) -> None: ...

    def load_only(self, key_path: str, fingerprint: Optional[str] = None) -> None: ...

    def list_fingerprints(self) -> List[str]: ...


def _is_no_identities(result: SubprocessResult) -> bool:
    return "no identities" in result.output.lower()


def _is_unreachable(result: SubprocessResult) -> bool:
    text = result.output.lower()
    return (
        result.return_code == _NO_CONNECTION
        or "could not open a connection" in text
        or "error connecting to agent" in text
    )


class AgentController:
    """ssh-agent driven through ssh-add."""

    def __init__(
        self,
        runner: Optional[SubprocessPrimitive] = None,
        env: Optional[MutableMapping[str, str]] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize the controller.

        Args:
            runner: Process runner (default: SubprocessPrimitive()).
            env: Environment holding SSH_AUTH_SOCK; updated in place when an
                agent is started (default: os.environ).
            timeout: Per-command timeout override.
        """
        self.runner = runner or SubprocessPrimitive()
        self.env = env if env is not None else os.environ
        self.timeout = timeout

    def _ssh_add(self, *args: str) -> SubprocessResult:
        return self.runner.run(["ssh-add", *args], timeout=self.timeout, env=dict(self.env))

    def is_reachable(self) -> bool:
        if not self.env.get("SSH_AUTH_SOCK"):
            return False
        result = self._ssh_add("-l")
        return result.return_code in (0, _NO_IDENTITIES) and not _is_unreachable(result)

    def ensure_agent(self) -> None:
        """Start ssh-agent for this process when none is reachable.

        Raises:
            AgentUnreachable: ssh-agent could not be started or parsed.
        """
        if self.is_reachable():
            return

        logger.info("No reachable SSH agent, starting ssh-agent")
        try:
            result = self.runner.run(["ssh-agent", "-s"], timeout=self.timeout, env=dict(self.env))
        except ExternalToolFailed as e:
            raise AgentUnreachable("ssh-agent is not available", cause=e)
        if not result.success:
            raise AgentUnreachable(f"ssh-agent failed to start: {result.output.strip()}")

        found = dict(_AGENT_VAR_RE.findall(result.stdout))
        if "SSH_AUTH_SOCK" not in found:
            raise AgentUnreachable("ssh-agent did not report SSH_AUTH_SOCK")
        self.env.update(found)
        logger.info(f"Started ssh-agent (pid {found.get('SSH_AGENT_PID', '?')})")

    def reset(self) -> None:
        """Remove every key from the agent. An already empty agent is fine.

        Raises:
            AgentUnreachable: No agent could be reached or started.
            ExternalToolFailed: ssh-add -D failed for another reason.
            ExternalToolTimeout: ssh-add did not answer in time.
        """
        self.ensure_agent()
        result = self._ssh_add("-D")
        if result.success or _is_no_identities(result):
            logger.debug("Agent flushed")
            return
        if _is_unreachable(result):
            raise AgentUnreachable(f"Cannot reach SSH agent: {result.output.strip()}")
        raise ExternalToolFailed("ssh-add", result.return_code, result.output)

    def load_only(self, key_path: str, fingerprint: Optional[str] = None) -> None:
        """Add key_path to the agent.

        Call reset() first; this only adds. When fingerprint is given the
        agent is checked to hold it afterwards.

        Raises:
            AgentUnreachable: Agent went away.
            ExternalToolFailed: ssh-add rejected the key (e.g. it needs a
                passphrase, stdin is closed) or the key is not listed after adding.
        """
        result = self._ssh_add(key_path)
        if not result.success:
            if _is_unreachable(result):
                raise AgentUnreachable(f"Cannot reach SSH agent: {result.output.strip()}")
            raise ExternalToolFailed("ssh-add", result.return_code, result.output)

        if fingerprint is not None and fingerprint not in self.list_fingerprints():
            raise ExternalToolFailed(
                "ssh-add",
                result.return_code,
                result.output,
                message=f"Key {key_path} was added but {fingerprint} is not listed by the agent",
            )
        logger.info(f"Loaded {key_path} into agent")

    def list_fingerprints(self) -> List[str]:
        """SHA256 fingerprints of the keys the agent holds.

        Raises:
            AgentUnreachable: No agent is reachable.
        """
        if not self.env.get("SSH_AUTH_SOCK"):
            raise AgentUnreachable("SSH_AUTH_SOCK is not set")
        result = self._ssh_add("-l", "-E", "sha256")
        if result.return_code == _NO_IDENTITIES and _is_no_identities(result):
            return []
        if _is_unreachable(result) or result.return_code == _NO_IDENTITIES:
            raise AgentUnreachable(f"Cannot reach SSH agent: {result.output.strip()}")
        if not result.success:
            raise ExternalToolFailed("ssh-add", result.return_code, result.output)

        fingerprints = []
        for line in result.stdout.splitlines():
            match = _FINGERPRINT_RE.match(line.strip())
            if match:
                fingerprints.append(match.group(1))
        return fingerprints

    def exports(self) -> dict:
        """Agent variables for the caller's shell."""
        return {
            name: self.env[name]
            for name in ("SSH_AUTH_SOCK", "SSH_AGENT_PID")
            if self.env.get(name)
        }
