"""gitshift primitives: pure building blocks with no switching policy."""

from gitshift.primitives.errors import (
    AgentUnreachable,
    ConfigMergeConflict,
    ConfigurationError,
    ExternalToolFailed,
    ExternalToolTimeout,
    GitshiftError,
    InsecurePermissions,
    KeyAlreadyExists,
    KeyCorrupt,
    KeyNotFound,
    KeyPolicyViolation,
    KeyUnavailable,
    KeyUnreadable,
    PlatformError,
    TokenOwnerMismatch,
    UnknownIdentity,
    VaultDecryptFailed,
    VaultEntryNotFound,
)
from gitshift.primitives.keys import KeyPairRecord, KeyStore, compute_fingerprint
from gitshift.primitives.ssh_config import (
    HostBlock,
    ManagedBlock,
    SSHConfigDocument,
    merge,
    parse,
    render,
)
from gitshift.primitives.subprocess import SubprocessPrimitive, SubprocessResult

__all__ = [
    # Errors
    "GitshiftError",
    "ConfigurationError",
    "UnknownIdentity",
    "KeyUnavailable",
    "KeyNotFound",
    "KeyUnreadable",
    "KeyCorrupt",
    "KeyPolicyViolation",
    "KeyAlreadyExists",
    "InsecurePermissions",
    "VaultEntryNotFound",
    "VaultDecryptFailed",
    "AgentUnreachable",
    "ExternalToolTimeout",
    "ExternalToolFailed",
    "ConfigMergeConflict",
    "TokenOwnerMismatch",
    "PlatformError",
    # Keys
    "KeyStore",
    "KeyPairRecord",
    "compute_fingerprint",
    # SSH config
    "SSHConfigDocument",
    "HostBlock",
    "ManagedBlock",
    "parse",
    "merge",
    "render",
    # Subprocess
    "SubprocessPrimitive",
    "SubprocessResult",
]
