"""Diagnostics and auto-fix.

Compares what the SSH config, the agent, git and the vault hold against the
identity that should be active, and repairs what can be repaired by
re-running the single switch step that owns the divergent state.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional

from gitshift.constants import Mode
from gitshift.models import GitScope, GitshiftConfig, Identity
from gitshift.primitives.errors import (
    AgentUnreachable,
    GitshiftError,
    InsecurePermissions,
    KeyUnavailable,
    VaultDecryptFailed,
    VaultEntryNotFound,
)
from gitshift.primitives.keys import KeyPairRecord
from gitshift.primitives.subprocess import SubprocessPrimitive
from gitshift.runtime.connectivity import probe_ssh_connection
from gitshift.utils.logger import log_context

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class IssueCode(str, Enum):
    NO_CURRENT_IDENTITY = "no_current_identity"
    UNKNOWN_IDENTITY = "unknown_identity"
    KEY_UNAVAILABLE = "key_unavailable"
    KEY_PERMISSIONS = "key_permissions"
    KEY_DIR_PERMISSIONS = "key_dir_permissions"
    SSH_CONFIG_MISSING = "ssh_config_missing"
    SSH_CONFIG_KEY_MISMATCH = "ssh_config_key_mismatch"
    SSH_CONFIG_PERMISSIONS = "ssh_config_permissions"
    SSH_CONFIG_UNREADABLE = "ssh_config_unreadable"
    AGENT_UNREACHABLE = "agent_unreachable"
    AGENT_KEY_MISMATCH = "agent_key_mismatch"
    GIT_EMAIL_MISMATCH = "git_email_mismatch"
    GIT_NAME_MISMATCH = "git_name_mismatch"
    GIT_UNREADABLE = "git_unreadable"
    VAULT_PERMISSIONS = "vault_permissions"
    VAULT_UNDECRYPTABLE = "vault_undecryptable"
    SSH_CONNECTIVITY = "ssh_connectivity"


@dataclass
class Issue:
    """One divergence between expected and actual state.

    Attributes:
        code: What kind of divergence.
        severity: info, warning or error.
        message: Human readable description.
        auto_fixable: auto_fix() knows a narrow repair.
        expected: Expected value, when there is one.
        actual: Observed value, when there is one.
    """

    code: IssueCode
    severity: Severity
    message: str
    auto_fixable: bool = False
    expected: Optional[str] = None
    actual: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "code": self.code.value,
            "severity": self.severity.value,
            "message": self.message,
            "auto_fixable": self.auto_fixable,
            "expected": self.expected,
            "actual": self.actual,
        }


@dataclass
class FixResult:
    issue: Issue
    fixed: bool
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {"issue": self.issue.to_dict(), "fixed": self.fixed, "error": self.error}


def _same_path(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return Path(a).expanduser().resolve() == Path(b).expanduser().resolve()


class Diagnostics:
    """Read-only checks plus targeted repairs, over an IdentitySwitcher's components."""

    def __init__(self, switcher, runner: Optional[SubprocessPrimitive] = None):
        self.switcher = switcher
        self.runner = runner

    def diagnose(
        self,
        config: GitshiftConfig,
        target: Optional[str] = None,
        probe: bool = False,
        repo_path: Optional[str] = None,
    ) -> List[Issue]:
        """Check every component against the target identity.

        Args:
            config: Loaded configuration.
            target: Identity to check against (default: the current one).
            probe: Also try an SSH login against the platform.
            repo_path: Repository to read for local git scope.

        Returns:
            Issues found; empty when everything agrees.
        """
        alias = target or config.current
        if not alias:
            return [Issue(IssueCode.NO_CURRENT_IDENTITY, Severity.WARNING, "No identity is active")]

        identity = config.get(alias)
        if identity is None:
            return [
                Issue(
                    IssueCode.UNKNOWN_IDENTITY,
                    Severity.ERROR,
                    f"Identity {alias!r} is not configured",
                    actual=alias,
                )
            ]

        issues: List[Issue] = []
        record = self._check_key(identity, issues)
        self._check_ssh_config(identity, issues)
        if record is not None and identity.isolation.ssh.isolate_agent:
            self._check_agent(record, issues)
        self._check_git(identity, repo_path, issues)
        self._check_vault(identity, issues)
        if probe and record is not None:
            self._check_connectivity(identity, issues)

        logger.info(f"Diagnosed {alias}: {len(issues)} issue(s)")
        return issues

    def _check_key(self, identity: Identity, issues: List[Issue]) -> Optional[KeyPairRecord]:
        if not identity.key_path:
            issues.append(Issue(IssueCode.KEY_UNAVAILABLE, Severity.ERROR, f"{identity.alias} has no SSH key"))
            return None
        try:
            record = self.switcher.key_store.validate(identity.key_path)
        except KeyUnavailable as e:
            issues.append(Issue(IssueCode.KEY_UNAVAILABLE, Severity.ERROR, e.message, actual=e.code))
            return None

        if record.private_mode & 0o077:
            issues.append(Issue(
                IssueCode.KEY_PERMISSIONS,
                Severity.ERROR,
                f"Private key {record.private_path} is accessible to other users",
                auto_fixable=True,
                expected=f"{Mode.PRIVATE_KEY:04o}",
                actual=f"{record.private_mode:04o}",
            ))
        if record.dir_mode & 0o077:
            issues.append(Issue(
                IssueCode.KEY_DIR_PERMISSIONS,
                Severity.WARNING,
                f"Key directory {Path(record.private_path).parent} is accessible to other users",
                auto_fixable=True,
                expected=f"{Mode.SECRET_DIR:04o}",
                actual=f"{record.dir_mode:04o}",
            ))
        return record

    def _check_ssh_config(self, identity: Identity, issues: List[Issue]) -> None:
        ssh_config = self.switcher.ssh_config
        host = self.switcher.platform_for(identity).host
        try:
            configured = ssh_config.managed_identity_file(host)
        except GitshiftError as e:
            issues.append(Issue(IssueCode.SSH_CONFIG_UNREADABLE, Severity.ERROR, e.message))
            return

        if configured is None:
            issues.append(Issue(
                IssueCode.SSH_CONFIG_MISSING,
                Severity.ERROR,
                f"No managed block for {host} in {ssh_config.config_path}",
                auto_fixable=True,
                expected=identity.key_path,
            ))
        elif not _same_path(configured, identity.key_path):
            issues.append(Issue(
                IssueCode.SSH_CONFIG_KEY_MISMATCH,
                Severity.ERROR,
                f"SSH config offers {configured} for {host}",
                auto_fixable=True,
                expected=identity.key_path,
                actual=configured,
            ))

        if not ssh_config.is_secure():
            issues.append(Issue(
                IssueCode.SSH_CONFIG_PERMISSIONS,
                Severity.WARNING,
                f"{ssh_config.config_path} is accessible to other users",
                auto_fixable=True,
                expected=f"{Mode.SECRET_FILE:04o}",
                actual=f"{ssh_config.current_mode():04o}",
            ))

    def _check_agent(self, record: KeyPairRecord, issues: List[Issue]) -> None:
        try:
            loaded = self.switcher.agent.list_fingerprints()
        except AgentUnreachable as e:
            issues.append(Issue(IssueCode.AGENT_UNREACHABLE, Severity.ERROR, e.message, auto_fixable=True))
            return
        except GitshiftError as e:
            issues.append(Issue(IssueCode.AGENT_UNREACHABLE, Severity.ERROR, e.message))
            return

        if loaded != [record.fingerprint]:
            issues.append(Issue(
                IssueCode.AGENT_KEY_MISMATCH,
                Severity.ERROR,
                f"Agent holds {len(loaded)} key(s); expected only {record.fingerprint}",
                auto_fixable=True,
                expected=record.fingerprint,
                actual=", ".join(loaded) or None,
            ))

    def _check_git(self, identity: Identity, repo_path: Optional[str], issues: List[Issue]) -> None:
        scope = identity.isolation.git.scope
        if scope == GitScope.LOCAL and repo_path is None:
            repo_path = str(Path.cwd())
        try:
            current = self.switcher.git.current_config(scope, repo_path)
        except GitshiftError as e:
            issues.append(Issue(IssueCode.GIT_UNREADABLE, Severity.WARNING, e.message))
            return

        if current.email != identity.email:
            issues.append(Issue(
                IssueCode.GIT_EMAIL_MISMATCH,
                Severity.ERROR,
                f"{scope.value} user.email is {current.email or 'unset'}",
                auto_fixable=True,
                expected=identity.email,
                actual=current.email,
            ))
        if current.name != identity.name:
            issues.append(Issue(
                IssueCode.GIT_NAME_MISMATCH,
                Severity.WARNING,
                f"{scope.value} user.name is {current.name or 'unset'}",
                auto_fixable=True,
                expected=identity.name,
                actual=current.name,
            ))

    def _check_vault(self, identity: Identity, issues: List[Issue]) -> None:
        vault = self.switcher.vault
        insecure = vault.insecure_paths(identity.alias)
        if insecure:
            issues.append(Issue(
                IssueCode.VAULT_PERMISSIONS,
                Severity.ERROR,
                f"{insecure[0]} is accessible to other users",
                auto_fixable=True,
            ))
        try:
            vault.retrieve(identity.alias)
        except VaultEntryNotFound:
            pass
        except VaultDecryptFailed as e:
            issues.append(Issue(IssueCode.VAULT_UNDECRYPTABLE, Severity.ERROR, e.message))

    def _check_connectivity(self, identity: Identity, issues: List[Issue]) -> None:
        platform = self.switcher.platform_for(identity)
        result = probe_ssh_connection(platform, identity.key_path, runner=self.runner)
        if not result.success:
            issues.append(Issue(
                IssueCode.SSH_CONNECTIVITY,
                Severity.WARNING,
                f"SSH login to {platform.host} failed: {result.error}",
                actual=result.output or None,
            ))

    def auto_fix(
        self,
        config: GitshiftConfig,
        issues: List[Issue],
        target: Optional[str] = None,
        repo_path: Optional[str] = None,
    ) -> List[FixResult]:
        """Repair fixable issues, running each repair action at most once.

        Args:
            config: Loaded configuration.
            issues: Output of diagnose().
            target: Identity the issues were computed for (default: current).
            repo_path: Repository for local git scope.

        Returns:
            One FixResult per issue; non-fixable issues come back unfixed.
        """
        alias = target or config.current
        identity = config.get(alias) if alias else None

        done = {}
        results = []
        for issue in issues:
            if not issue.auto_fixable or identity is None:
                results.append(FixResult(issue, fixed=False, error=None if issue.auto_fixable else "not auto-fixable"))
                continue

            action = self._action_for(issue.code)
            if action not in done:
                try:
                    self._run_action(action, identity, repo_path)
                    done[action] = None
                except (GitshiftError, OSError) as e:
                    done[action] = getattr(e, "message", str(e))
                    logger.warning(
                        f"Auto-fix {action} for {alias} failed: {done[action]}",
                        extra=log_context(alias=alias, action=action, issue=issue.code),
                    )
            error = done[action]
            results.append(FixResult(issue, fixed=error is None, error=error))
        return results

    @staticmethod
    def _action_for(code: IssueCode) -> str:
        if code in (IssueCode.KEY_PERMISSIONS, IssueCode.KEY_DIR_PERMISSIONS):
            return "key_permissions"
        if code in (IssueCode.SSH_CONFIG_MISSING, IssueCode.SSH_CONFIG_KEY_MISMATCH):
            return "ssh_config"
        if code == IssueCode.SSH_CONFIG_PERMISSIONS:
            return "ssh_config_permissions"
        if code in (IssueCode.AGENT_UNREACHABLE, IssueCode.AGENT_KEY_MISMATCH):
            return "agent"
        if code in (IssueCode.GIT_EMAIL_MISMATCH, IssueCode.GIT_NAME_MISMATCH):
            return "git_config"
        if code == IssueCode.VAULT_PERMISSIONS:
            return "vault_permissions"
        raise ValueError(f"No fix for {code.value}")

    def _run_action(self, action: str, identity: Identity, repo_path: Optional[str]) -> None:
        switcher = self.switcher
        if action == "key_permissions":
            switcher.key_store.fix_permissions(identity.key_path)
        elif action == "ssh_config":
            switcher.apply_ssh_config(identity)
        elif action == "ssh_config_permissions":
            switcher.ssh_config.fix_permissions()
        elif action == "agent":
            record = switcher.key_store.validate(identity.key_path)
            if record.private_mode & 0o077:
                raise InsecurePermissions(record.private_path, record.private_mode, Mode.PRIVATE_KEY)
            switcher.apply_agent(identity, record)
        elif action == "git_config":
            switcher.apply_git_config(identity, repo_path)
        elif action == "vault_permissions":
            switcher.vault.fix_permissions()
        logger.info(
            f"Auto-fix {action} applied for {identity.alias}",
            extra=log_context(alias=identity.alias, action=action),
        )
