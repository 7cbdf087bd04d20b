"""Git config writer.

Applies an identity's user.name, user.email and signing settings with
``git config``, globally or in one repository. core.sshCommand is only
pinned at repository scope; a global one would override every repository.
"""

import logging
import shlex
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import List, Optional

from gitshift.constants import SSH_COMMAND_SUFFIX
from gitshift.models import GitScope, Identity, SigningFormat
from gitshift.primitives.errors import ConfigurationError, ExternalToolFailed
from gitshift.primitives.subprocess import SubprocessPrimitive, SubprocessResult

logger = logging.getLogger(__name__)

# git config exit codes
_KEY_NOT_SET = 1
_NOTHING_TO_UNSET = 5


@dataclass
class GitIdentityConfig:
    """Identity-related git config values at one scope.

    Attributes:
        scope: "global" or "local".
        name: user.name, None when unset.
        email: user.email, None when unset.
        signing_key: user.signingkey, None when unset.
        gpg_sign: commit.gpgsign as written ("true"/"false"), None when unset.
        ssh_command: core.sshCommand, None when unset.
    """

    scope: str
    name: Optional[str] = None
    email: Optional[str] = None
    signing_key: Optional[str] = None
    gpg_sign: Optional[str] = None
    ssh_command: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


def ssh_command_for(key_path: str) -> str:
    """core.sshCommand value that offers only key_path."""
    return f"ssh -i {shlex.quote(key_path)} {SSH_COMMAND_SUFFIX}"


def is_gitshift_ssh_command(value: Optional[str]) -> bool:
    return bool(value) and value.startswith("ssh -i ") and value.endswith(SSH_COMMAND_SUFFIX)


class GitConfigWriter:
    """Writes identity settings with ``git config``."""

    def __init__(self, runner: Optional[SubprocessPrimitive] = None, timeout: Optional[float] = None):
        self.runner = runner or SubprocessPrimitive()
        self.timeout = timeout

    def _git(self, scope: GitScope, args: List[str], repo_path: Optional[str] = None) -> SubprocessResult:
        command = ["git"]
        if scope == GitScope.LOCAL:
            if not repo_path:
                raise ConfigurationError("Local git scope needs a repository path", field="repo_path")
            command += ["-C", str(repo_path)]
        command += ["config", f"--{scope.value}", *args]
        return self.runner.run(command, timeout=self.timeout)

    def _set(self, scope: GitScope, key: str, value: str, repo_path: Optional[str] = None) -> None:
        result = self._git(scope, [key, value], repo_path)
        if not result.success:
            raise ExternalToolFailed("git", result.return_code, result.output)

    def _unset(self, scope: GitScope, key: str, repo_path: Optional[str] = None) -> None:
        result = self._git(scope, ["--unset-all", key], repo_path)
        if not result.success and result.return_code != _NOTHING_TO_UNSET:
            raise ExternalToolFailed("git", result.return_code, result.output)

    def _get(self, scope: GitScope, key: str, repo_path: Optional[str] = None) -> Optional[str]:
        result = self._git(scope, ["--get", key], repo_path)
        if result.return_code == _KEY_NOT_SET and not result.stderr.strip():
            return None
        if not result.success:
            raise ExternalToolFailed("git", result.return_code, result.output)
        return result.stdout.strip()

    def _apply_signing(self, identity: Identity, scope: GitScope, repo_path: Optional[str]) -> None:
        signing = identity.signing
        if not signing.enabled:
            self._set(scope, "commit.gpgsign", "false", repo_path)
            self._set(scope, "tag.gpgsign", "false", repo_path)
            self._unset(scope, "user.signingkey", repo_path)
            return

        key = signing.key
        if key is None and signing.format == SigningFormat.SSH:
            key = identity.public_key_path
        if not key:
            raise ConfigurationError(
                f"Signing is enabled for {identity.alias!r} but no signing key is set",
                field="signing.key",
            )
        self._set(scope, "user.signingkey", key, repo_path)
        self._set(scope, "gpg.format", signing.format.value, repo_path)
        self._set(scope, "commit.gpgsign", "true", repo_path)
        self._set(scope, "tag.gpgsign", "true", repo_path)

    def _drop_own_ssh_command(self, scope: GitScope, repo_path: Optional[str] = None) -> None:
        if is_gitshift_ssh_command(self._get(scope, "core.sshCommand", repo_path)):
            self._unset(scope, "core.sshCommand", repo_path)

    def apply_global(self, identity: Identity) -> None:
        """Write name, email and signing to the global config.

        Also removes a global core.sshCommand in gitshift's own format,
        since it would pin every repository to one key.
        """
        self._set(GitScope.GLOBAL, "user.name", identity.name)
        self._set(GitScope.GLOBAL, "user.email", identity.email)
        self._apply_signing(identity, GitScope.GLOBAL, None)
        self._drop_own_ssh_command(GitScope.GLOBAL)
        logger.info(f"Applied global git identity for {identity.alias}")

    def apply_local(self, identity: Identity, repo_path: str) -> None:
        """Write name, email, signing and (optionally) core.sshCommand in repo_path."""
        repo = str(Path(repo_path))
        self._set(GitScope.LOCAL, "user.name", identity.name, repo)
        self._set(GitScope.LOCAL, "user.email", identity.email, repo)
        self._apply_signing(identity, GitScope.LOCAL, repo)
        if identity.key_path and identity.isolation.git.pin_ssh_command:
            self._set(GitScope.LOCAL, "core.sshCommand", ssh_command_for(identity.key_path), repo)
        else:
            self._drop_own_ssh_command(GitScope.LOCAL, repo)
        logger.info(f"Applied local git identity for {identity.alias} in {repo}")

    def apply(self, identity: Identity, repo_path: Optional[str] = None) -> None:
        """apply_global or apply_local, per the identity's git scope."""
        if identity.isolation.git.scope == GitScope.LOCAL:
            self.apply_local(identity, repo_path or str(Path.cwd()))
        else:
            self.apply_global(identity)

    def current_config(self, scope: GitScope = GitScope.GLOBAL, repo_path: Optional[str] = None) -> GitIdentityConfig:
        scope = GitScope(scope)
        return GitIdentityConfig(
            scope=scope.value,
            name=self._get(scope, "user.name", repo_path),
            email=self._get(scope, "user.email", repo_path),
            signing_key=self._get(scope, "user.signingkey", repo_path),
            gpg_sign=self._get(scope, "commit.gpgsign", repo_path),
            ssh_command=self._get(scope, "core.sshCommand", repo_path),
        )
