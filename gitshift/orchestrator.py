"""Identity switch orchestrator.

Runs a switch as a fixed sequence of steps:

    load_identity -> validate_key -> ssh_config -> agent -> git_config -> persist

Each step either completes or fails; a failure stops the sequence and the
report names every completed step plus the failed one. There is no
rollback. The current-identity pointer is written last, so an interrupted
switch leaves the previous identity as current and Diagnostics can name the
divergence.
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

import httpx

from gitshift.config_store import ConfigStore
from gitshift.models import GitshiftConfig, Identity, utc_now, validate_alias
from gitshift.platform import PLATFORMS, PlatformClient, PlatformSpec, client_for, get_platform
from gitshift.platform import verify_token as verify_platform_token
from gitshift.primitives.errors import (
    AgentStateMismatch,
    ConfigurationError,
    GitshiftError,
    KeyUnavailable,
    UnknownIdentity,
    VaultDecryptFailed,
    VaultEntryNotFound,
)
from gitshift.primitives.keys import KeyPairRecord, KeyStore
from gitshift.primitives.ssh_config import ManagedBlock
from gitshift.runtime.agent import AgentBackend, AgentController
from gitshift.runtime.git_config import GitConfigWriter
from gitshift.runtime.ssh_config import SSHConfigManager
from gitshift.runtime.vault import TokenVault
from gitshift.utils.logger import log_context

logger = logging.getLogger(__name__)


class SwitchStep(str, Enum):
    LOAD_IDENTITY = "load_identity"
    VALIDATE_KEY = "validate_key"
    SSH_CONFIG = "ssh_config"
    AGENT = "agent"
    GIT_CONFIG = "git_config"
    PERSIST = "persist"


@dataclass
class SwitchReport:
    """Outcome of one switch.

    Attributes:
        alias: Target identity.
        previous: Identity that was current before the switch.
        completed: Steps that finished, in order.
        skipped: Steps not needed for this identity (e.g. agent isolation off).
        failed_step: Step that failed, None on success.
        error: Error raised by the failed step.
        fingerprint: Fingerprint of the identity's key once validated.
        agent_fingerprints: Keys the agent reported after loading.
    """

    alias: str
    previous: Optional[str] = None
    completed: List[SwitchStep] = field(default_factory=list)
    skipped: List[SwitchStep] = field(default_factory=list)
    failed_step: Optional[SwitchStep] = None
    error: Optional[GitshiftError] = None
    fingerprint: Optional[str] = None
    agent_fingerprints: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed_step is None and SwitchStep.PERSIST in self.completed

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "alias": self.alias,
            "previous": self.previous,
            "completed": [step.value for step in self.completed],
            "skipped": [step.value for step in self.skipped],
            "failed_step": self.failed_step.value if self.failed_step else None,
            "error": self.error.to_dict() if self.error else None,
            "fingerprint": self.fingerprint,
            "agent_fingerprints": self.agent_fingerprints,
        }


def managed_blocks_for(identity: Identity, platform: PlatformSpec) -> List[ManagedBlock]:
    """Managed SSH host blocks that route the platform to identity's key."""
    return [
        ManagedBlock(
            host=platform.host,
            hostname=platform.host,
            user=platform.ssh_user,
            identity_file=identity.key_path,
            alias=identity.alias,
            identities_only=identity.isolation.ssh.force_identities_only,
        )
    ]


class IdentitySwitcher:
    """Coordinates key store, SSH config, agent, git config and the config store."""

    def __init__(
        self,
        config_store: Optional[ConfigStore] = None,
        key_store: Optional[KeyStore] = None,
        ssh_config: Optional[SSHConfigManager] = None,
        agent: Optional[AgentBackend] = None,
        git: Optional[GitConfigWriter] = None,
        vault: Optional[TokenVault] = None,
        platforms: Optional[Dict[str, PlatformSpec]] = None,
        http_transport: Optional[httpx.BaseTransport] = None,
    ):
        self.config_store = config_store or ConfigStore()
        self.key_store = key_store or KeyStore()
        self.ssh_config = ssh_config or SSHConfigManager()
        self.agent = agent if agent is not None else AgentController()
        self.git = git or GitConfigWriter()
        self.vault = vault or TokenVault()
        self.platforms = platforms or PLATFORMS
        self.http_transport = http_transport

    def platform_for(self, identity: Identity) -> PlatformSpec:
        if identity.platform in self.platforms:
            return self.platforms[identity.platform]
        return get_platform(identity.platform)

    # Steps, also used by auto-fix

    def load_identity(self, config: GitshiftConfig, alias: str) -> Identity:
        identity = config.get(alias)
        if identity is None:
            raise UnknownIdentity(alias)
        return identity

    def validate_key(self, identity: Identity) -> KeyPairRecord:
        if not identity.key_path:
            raise KeyUnavailable(f"Identity {identity.alias!r} has no SSH key configured")
        record = self.key_store.validate(identity.key_path)
        self.key_store.require_secure(record)
        return record

    def apply_ssh_config(self, identity: Identity) -> None:
        self.ssh_config.install(managed_blocks_for(identity, self.platform_for(identity)))

    def apply_agent(self, identity: Identity, record: KeyPairRecord) -> List[str]:
        """Reset the agent and load only record's key.

        Raises:
            AgentStateMismatch: The agent holds anything but that one key afterwards.
        """
        self.agent.reset()
        self.agent.load_only(record.private_path, record.fingerprint)
        loaded = self.agent.list_fingerprints()
        if loaded != [record.fingerprint]:
            raise AgentStateMismatch(record.fingerprint, loaded)
        return loaded

    def apply_git_config(self, identity: Identity, repo_path: Optional[str] = None) -> None:
        self.git.apply(identity, repo_path)

    # Switch

    def switch(self, config: GitshiftConfig, alias: str, repo_path: Optional[str] = None) -> SwitchReport:
        """Make alias the current identity.

        Args:
            config: Loaded configuration; its current pointer is updated and
                saved only when every earlier step succeeded.
            alias: Target identity.
            repo_path: Repository for local git scope (default: cwd).

        Returns:
            SwitchReport; check ``success``. Errors are reported, not raised.
        """
        report = SwitchReport(alias=alias, previous=config.current)
        step = SwitchStep.LOAD_IDENTITY
        logger.info(f"Switching identity {config.current or '-'} -> {alias}")

        try:
            identity = self.load_identity(config, alias)
            report.completed.append(step)

            step = SwitchStep.VALIDATE_KEY
            record = self.validate_key(identity)
            report.fingerprint = record.fingerprint
            report.completed.append(step)

            step = SwitchStep.SSH_CONFIG
            self.apply_ssh_config(identity)
            report.completed.append(step)

            step = SwitchStep.AGENT
            if identity.isolation.ssh.isolate_agent:
                report.agent_fingerprints = self.apply_agent(identity, record)
                report.completed.append(step)
            else:
                report.skipped.append(step)

            step = SwitchStep.GIT_CONFIG
            self.apply_git_config(identity, repo_path)
            report.completed.append(step)

            step = SwitchStep.PERSIST
            config.current = alias
            identity.last_used = utc_now()
            self.config_store.save(config)
            report.completed.append(step)
        except GitshiftError as e:
            report.failed_step = step
            report.error = e
        except OSError as e:
            report.failed_step = step
            report.error = GitshiftError(f"{step.value} failed: {e}", cause=e)

        if report.failed_step is not None:
            if step == SwitchStep.PERSIST:
                config.current = report.previous
            logger.error(
                f"Switch to {alias} failed at {report.failed_step.value}: {report.error.message}",
                extra=log_context(
                    alias=alias,
                    previous=report.previous,
                    completed=report.completed,
                    failed_step=report.failed_step,
                    error_code=report.error.code,
                ),
            )
        else:
            logger.info(
                f"Switched to {alias}",
                extra=log_context(
                    alias=alias,
                    previous=report.previous,
                    completed=report.completed,
                    skipped=report.skipped,
                    fingerprint=report.fingerprint,
                ),
            )
        return report

    # Identity management

    def add_identity(self, config: GitshiftConfig, identity: Identity) -> Identity:
        """Validate and add identity, then save.

        Raises:
            ConfigurationError: Invalid fields or alias already taken.
        """
        identity.validate()
        if identity.alias in config.identities:
            raise ConfigurationError(f"Identity {identity.alias!r} already exists", field="alias")
        if identity.key_path:
            identity.key_path = str(Path(identity.key_path).expanduser())
        config.identities[identity.alias] = identity
        self.config_store.save(config)
        logger.info(f"Added identity {identity.alias}")
        return identity

    def update_identity(self, config: GitshiftConfig, alias: str, **changes) -> Identity:
        """Replace fields of an identity, then save.

        Raises:
            UnknownIdentity: No such alias.
            ConfigurationError: Unknown field or invalid value.
        """
        identity = self.load_identity(config, alias)
        allowed = {f.name for f in dataclasses.fields(Identity)} - {"alias", "created_at"}
        unknown = set(changes) - allowed
        if unknown:
            name = sorted(unknown)[0]
            raise ConfigurationError(f"Cannot update field {name!r}", field=name)
        if changes.get("key_path"):
            changes["key_path"] = str(Path(changes["key_path"]).expanduser())

        updated = dataclasses.replace(identity, **changes).validate()
        config.identities[alias] = updated
        self.config_store.save(config)
        return updated

    def remove_identity(self, config: GitshiftConfig, alias: str) -> Identity:
        """Remove identity and its vault token. Key files are left alone.

        Raises:
            UnknownIdentity: No such alias.
        """
        identity = self.load_identity(config, validate_alias(alias))
        self.vault.delete(alias)
        del config.identities[alias]
        if config.current == alias:
            config.current = None
        self.config_store.save(config)
        logger.info(f"Removed identity {alias}")
        return identity

    def environment_for(self, config: GitshiftConfig, alias: Optional[str] = None) -> Dict[str, str]:
        """Variables a shell should export for alias (default: current identity)."""
        alias = alias or config.current
        if not alias:
            raise ConfigurationError("No current identity; pass an alias", field="current")
        identity = self.load_identity(config, alias)

        exports: Dict[str, str] = {}
        if isinstance(self.agent, AgentController):
            exports.update(self.agent.exports())
        exports["GIT_AUTHOR_NAME"] = identity.name
        exports["GIT_AUTHOR_EMAIL"] = identity.email
        exports["GIT_COMMITTER_NAME"] = identity.name
        exports["GIT_COMMITTER_EMAIL"] = identity.email

        env_settings = identity.isolation.environment
        if env_settings.export_token:
            try:
                exports[env_settings.token_env_var] = self.vault.retrieve(alias)
            except (VaultEntryNotFound, VaultDecryptFailed) as e:
                logger.warning(f"Token not exported for {alias}: {e.message}")
        return exports

    # Platform API

    def platform_client(self, identity: Identity) -> PlatformClient:
        """API client for identity, holding its decrypted vault token."""
        return client_for(identity, self.vault, transport=self.http_transport)

    def verify_token(self, identity: Identity) -> str:
        """Account the identity's stored token belongs to (owner-checked)."""
        return verify_platform_token(identity, self.vault, transport=self.http_transport)

    def upload_public_key(self, identity: Identity, title: Optional[str] = None) -> Dict:
        """Register identity's public key on its platform account.

        Raises:
            KeyUnavailable: Identity has no usable key.
            PlatformError: Upload rejected.
        """
        record = self.validate_key(identity)
        public_key = Path(record.public_path).read_text(encoding="utf-8")
        title = title or f"gitshift {identity.alias} ({record.fingerprint})"
        with self.platform_client(identity) as client:
            uploaded = client.upload_public_key(title, public_key)
        logger.info(f"Uploaded {record.fingerprint} to {identity.platform} for {identity.alias}")
        return uploaded

    def list_repos(self, identity: Identity) -> List[str]:
        with self.platform_client(identity) as client:
            return client.list_repos()
