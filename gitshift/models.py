"""Identity data model.

Identity plus one typed settings struct per isolation dimension (SSH,
Git, token, environment) and the signing settings. Each struct accepts only
its known option names; anything else is a ConfigurationError rather than a
silently ignored key.
"""

import re
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from gitshift.constants import CONFIG_VERSION, PLATFORM_NAMES
from gitshift.primitives.errors import ConfigurationError

ALIAS_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,63}$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def validate_alias(alias: str) -> str:
    """Return alias if it is usable as a file name and config key."""
    if not isinstance(alias, str) or not ALIAS_RE.match(alias):
        raise ConfigurationError(
            f"Invalid alias {alias!r}: use letters, digits, '.', '_' or '-' (max 64)",
            field="alias",
        )
    return alias


class GitScope(str, Enum):
    GLOBAL = "global"
    LOCAL = "local"


class SigningFormat(str, Enum):
    SSH = "ssh"
    OPENPGP = "openpgp"


def _coerce_enum(enum_cls, value, field_name: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ConfigurationError(f"{field_name} must be one of: {allowed} (got {value!r})", field=field_name)


def _settings_from_dict(cls, data: Optional[Dict[str, Any]], prefix: str):
    """Build a settings dataclass, rejecting unknown option names."""
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ConfigurationError(f"{prefix} must be a mapping", field=prefix)
    known = {f.name: f for f in fields(cls)}
    kwargs = {}
    for key, value in data.items():
        if key not in known:
            raise ConfigurationError(
                f"Unknown option {prefix}.{key} (known: {', '.join(sorted(known))})",
                field=f"{prefix}.{key}",
            )
        default = known[key].default
        if isinstance(default, bool) and not isinstance(value, bool):
            raise ConfigurationError(f"{prefix}.{key} must be true or false", field=f"{prefix}.{key}")
        if isinstance(default, Enum):
            value = _coerce_enum(type(default), value, f"{prefix}.{key}")
        kwargs[key] = value
    return cls(**kwargs)


def _settings_to_dict(settings) -> Dict[str, Any]:
    data = {}
    for f in fields(settings):
        value = getattr(settings, f.name)
        data[f.name] = value.value if isinstance(value, Enum) else value
    return data


@dataclass
class SSHIsolation:
    """SSH isolation options.

    Attributes:
        isolate_agent: Switch flushes the agent and loads only this key.
        force_identities_only: Managed host block carries ``IdentitiesOnly yes``.
    """

    isolate_agent: bool = True
    force_identities_only: bool = True


@dataclass
class GitIsolation:
    """Git isolation options.

    Attributes:
        scope: Write user.* globally or in the repository being switched.
        pin_ssh_command: At local scope, pin core.sshCommand to this key.
    """

    scope: GitScope = GitScope.GLOBAL
    pin_ssh_command: bool = True


@dataclass
class TokenIsolation:
    """Token isolation options.

    Attributes:
        verify_owner: Platform client checks the token belongs to platform_username.
    """

    verify_owner: bool = True


@dataclass
class EnvironmentIsolation:
    """Environment export options for ``gitshift env``.

    Attributes:
        export_token: Include the platform token in the exports.
        token_env_var: Variable that receives the token.
    """

    export_token: bool = False
    token_env_var: str = "GITHUB_TOKEN"


@dataclass
class IsolationSettings:
    ssh: SSHIsolation = field(default_factory=SSHIsolation)
    git: GitIsolation = field(default_factory=GitIsolation)
    token: TokenIsolation = field(default_factory=TokenIsolation)
    environment: EnvironmentIsolation = field(default_factory=EnvironmentIsolation)

    _SECTIONS = {
        "ssh": SSHIsolation,
        "git": GitIsolation,
        "token": TokenIsolation,
        "environment": EnvironmentIsolation,
    }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "IsolationSettings":
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ConfigurationError("isolation must be a mapping", field="isolation")
        unknown = set(data) - set(cls._SECTIONS)
        if unknown:
            name = sorted(unknown)[0]
            raise ConfigurationError(f"Unknown isolation section {name!r}", field=f"isolation.{name}")
        return cls(**{
            name: _settings_from_dict(section_cls, data.get(name), f"isolation.{name}")
            for name, section_cls in cls._SECTIONS.items()
        })

    def to_dict(self) -> Dict[str, Any]:
        return {name: _settings_to_dict(getattr(self, name)) for name in self._SECTIONS}


@dataclass
class SigningSettings:
    """Commit and tag signing.

    Attributes:
        enabled: Sign commits and tags.
        format: "ssh" or "openpgp".
        key: Signing key; for ssh format defaults to the identity's public key.
    """

    enabled: bool = False
    format: SigningFormat = SigningFormat.SSH
    key: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SigningSettings":
        return _settings_from_dict(cls, data, "signing")

    def to_dict(self) -> Dict[str, Any]:
        return _settings_to_dict(self)


@dataclass
class Identity:
    """A named developer identity on a hosting platform.

    Attributes:
        alias: Unique key, also used in file names.
        name: Git user.name.
        email: Git user.email.
        platform_username: Account name on the platform.
        platform: "github", "gitlab" or "bitbucket".
        key_path: Private SSH key path.
        isolation: Per-dimension isolation options.
        signing: Commit/tag signing settings.
        metadata: Free-form string pairs (description etc).
        created_at: ISO timestamp.
        last_used: ISO timestamp of the last successful switch.
    """

    alias: str
    name: str
    email: str
    platform_username: str = ""
    platform: str = "github"
    key_path: Optional[str] = None
    isolation: IsolationSettings = field(default_factory=IsolationSettings)
    signing: SigningSettings = field(default_factory=SigningSettings)
    metadata: Dict[str, str] = field(default_factory=dict)
    created_at: str = field(default_factory=utc_now)
    last_used: Optional[str] = None

    def validate(self) -> "Identity":
        """Check field values, raising ConfigurationError on the first bad one."""
        validate_alias(self.alias)
        if not self.name or not self.name.strip():
            raise ConfigurationError(f"Identity {self.alias!r} needs a name", field="name")
        if not self.email or not EMAIL_RE.match(self.email):
            raise ConfigurationError(f"Identity {self.alias!r} has invalid email {self.email!r}", field="email")
        if self.platform not in PLATFORM_NAMES:
            raise ConfigurationError(
                f"Unknown platform {self.platform!r} (known: {', '.join(PLATFORM_NAMES)})",
                field="platform",
            )
        if not all(isinstance(k, str) and isinstance(v, str) for k, v in self.metadata.items()):
            raise ConfigurationError("metadata must map strings to strings", field="metadata")
        return self

    @property
    def public_key_path(self) -> Optional[str]:
        return f"{self.key_path}.pub" if self.key_path else None

    @classmethod
    def from_dict(cls, alias: str, data: Dict[str, Any]) -> "Identity":
        """Build from a config mapping; the alias is the mapping's key."""
        if not isinstance(data, dict):
            raise ConfigurationError(f"Identity {alias!r} must be a mapping", field=alias)
        known = {f.name for f in fields(cls)} - {"alias"}
        unknown = set(data) - known
        if unknown:
            name = sorted(unknown)[0]
            raise ConfigurationError(f"Unknown field {name!r} in identity {alias!r}", field=f"{alias}.{name}")

        identity = cls(
            alias=alias,
            name=data.get("name", ""),
            email=data.get("email", ""),
            platform_username=data.get("platform_username") or "",
            platform=data.get("platform", "github"),
            key_path=data.get("key_path"),
            isolation=IsolationSettings.from_dict(data.get("isolation")),
            signing=SigningSettings.from_dict(data.get("signing")),
            metadata=dict(data.get("metadata") or {}),
            created_at=str(data.get("created_at") or utc_now()),
            last_used=str(data["last_used"]) if data.get("last_used") else None,
        )
        return identity.validate()

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": self.name,
            "email": self.email,
            "platform_username": self.platform_username,
            "platform": self.platform,
            "key_path": self.key_path,
            "isolation": self.isolation.to_dict(),
            "signing": self.signing.to_dict(),
            "metadata": dict(self.metadata),
            "created_at": self.created_at,
            "last_used": self.last_used,
        }
        return data


@dataclass
class GitshiftConfig:
    """Persisted configuration: identities and the current-identity pointer.

    Owned by ConfigStore and handed to the switcher on every call.
    """

    identities: Dict[str, Identity] = field(default_factory=dict)
    current: Optional[str] = None
    config_version: int = CONFIG_VERSION

    def get(self, alias: str) -> Optional[Identity]:
        return self.identities.get(alias)

    @property
    def current_identity(self) -> Optional[Identity]:
        return self.identities.get(self.current) if self.current else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "config_version": self.config_version,
            "current": self.current,
            "identities": {alias: identity.to_dict() for alias, identity in sorted(self.identities.items())},
        }
