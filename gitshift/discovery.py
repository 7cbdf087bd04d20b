"""Identity discovery from existing SSH keys.

Scans the key directory for valid key pairs and proposes one identity per
key. The alias comes from the file name (``id_ed25519_work`` -> ``work``,
a bare ``id_ed25519`` -> ``default``) and the email from the public key
comment. The platform account is only filled in when an SSH check against
the platform names it, since a guess would later fail the token owner
check.

A proposal is addable only when its key is not used by an identity yet,
its alias is free and its comment is an email address. Everything else is
listed with the reason it was skipped.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from gitshift.models import EMAIL_RE, GitshiftConfig, Identity
from gitshift.platform import PlatformSpec
from gitshift.primitives.keys import KeyPairRecord, KeyStore
from gitshift.primitives.subprocess import SubprocessPrimitive
from gitshift.runtime.connectivity import probe_ssh_connection

logger = logging.getLogger(__name__)

DEFAULT_ALIAS = "default"

_KEY_NAME_RE = re.compile(r"^id_(?:ed25519|rsa|ecdsa|dsa)(?:_(?P<rest>.+))?$")


@dataclass
class DiscoveredIdentity:
    """An identity proposed for one key pair.

    Attributes:
        alias: Suggested alias.
        email: Email from the key comment, None when the comment is not one.
        key: The key pair.
        platform_username: Account the platform greeted, when checked.
        in_agent: Key is loaded in the SSH agent (None when not checked).
        skip_reason: Why this proposal cannot be added, None when it can.
    """

    alias: str
    email: Optional[str]
    key: KeyPairRecord
    platform_username: str = ""
    in_agent: Optional[bool] = None
    skip_reason: Optional[str] = None

    @property
    def addable(self) -> bool:
        return self.skip_reason is None

    def to_identity(self, platform: str = "github", name: Optional[str] = None) -> Identity:
        """Identity for this proposal; name defaults to the account or alias."""
        return Identity(
            alias=self.alias,
            name=name or self.platform_username or self.alias,
            email=self.email or "",
            platform_username=self.platform_username,
            platform=platform,
            key_path=self.key.private_path,
            metadata={"description": f"Discovered from {Path(self.key.private_path).name}"},
        )

    def to_dict(self) -> dict:
        return {
            "alias": self.alias,
            "email": self.email,
            "platform_username": self.platform_username,
            "key_path": self.key.private_path,
            "fingerprint": self.key.fingerprint,
            "algorithm": self.key.algorithm,
            "in_agent": self.in_agent,
            "addable": self.addable,
            "skip_reason": self.skip_reason,
        }


def suggest_alias(private_path: str) -> str:
    """Alias for a key file name: the part after ``id_<algorithm>_``."""
    name = Path(private_path).name
    match = _KEY_NAME_RE.match(name)
    if match:
        name = match.group("rest") or DEFAULT_ALIAS
    name = re.sub(r"[^A-Za-z0-9._-]", "-", name).lstrip("._-")[:64]
    return name or DEFAULT_ALIAS


def _used_keys(config: GitshiftConfig) -> dict:
    used = {}
    for identity in config.identities.values():
        if identity.key_path:
            used[str(Path(identity.key_path).expanduser().resolve())] = identity.alias
    return used


def discover_identities(
    key_store: KeyStore,
    config: GitshiftConfig,
    agent_fingerprints: Optional[List[str]] = None,
    platform: Optional[PlatformSpec] = None,
    runner: Optional[SubprocessPrimitive] = None,
) -> List[DiscoveredIdentity]:
    """Propose identities for the key pairs in key_store.

    Args:
        key_store: Key directory to scan.
        config: Current configuration, for used keys and taken aliases.
        agent_fingerprints: Fingerprints loaded in the agent, to mark in_agent.
        platform: When given, each addable key is checked over SSH against
            this platform and the greeted account becomes platform_username.
        runner: Process runner for the SSH check.
    """
    used = _used_keys(config)
    taken = set(config.identities)
    found: List[DiscoveredIdentity] = []

    for record in key_store.list():
        email = record.email if EMAIL_RE.match(record.email or "") else None
        proposal = DiscoveredIdentity(alias=suggest_alias(record.private_path), email=email, key=record)
        if agent_fingerprints is not None:
            proposal.in_agent = record.fingerprint in agent_fingerprints

        owner = used.get(str(Path(record.private_path).resolve()))
        if owner:
            proposal.skip_reason = f"key already used by identity {owner!r}"
        elif proposal.alias in taken:
            proposal.skip_reason = f"alias {proposal.alias!r} already exists"
        elif email is None:
            proposal.skip_reason = "key comment is not an email address"
        else:
            # two keys can map to the same alias (id_rsa and id_ed25519)
            taken.add(proposal.alias)

        if platform is not None and proposal.addable:
            result = probe_ssh_connection(platform, record.private_path, runner=runner)
            if result.success and result.account:
                proposal.platform_username = result.account
            elif not result.success:
                logger.info(f"{record.private_path} not accepted by {platform.host}: {result.error}")

        found.append(proposal)

    logger.info(f"Discovered {len(found)} key(s), {sum(p.addable for p in found)} addable")
    return found
