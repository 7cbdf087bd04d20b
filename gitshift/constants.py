"""gitshift constants

Centralized names for on-disk locations, timeouts and marker strings.
Every location hangs off the gitshift home: $GITSHIFT_HOME, or the user's home.
"""

import os
from pathlib import Path

APP_NAME = "gitshift"

# Overrides the home directory for every path below (used by tests too).
HOME_ENV = "GITSHIFT_HOME"
TIMEOUT_ENV = "GITSHIFT_TOOL_TIMEOUT"

DEFAULT_TOOL_TIMEOUT = 30.0

CONFIG_VERSION = 1

SSH_DIR_NAME = ".ssh"
CONFIG_DIR_PARTS = (".config", APP_NAME)
TOKENS_DIR_NAME = "tokens"
LOGS_DIR_NAME = "logs"
CONFIG_FILE_NAME = "config.yaml"
TOKEN_SUFFIX = ".token"

# Prefix of the comment lines gitshift writes into ~/.ssh/config.
MARKER = "# gitshift:"
BACKUP_PREFIX = "config.gitshift-backup."
BACKUPS_KEPT = 5

# Hosts whose Host blocks gitshift owns in ~/.ssh/config.
PLATFORM_HOSTS = ("github.com", "gitlab.com", "bitbucket.org")
PLATFORM_NAMES = ("github", "gitlab", "bitbucket")

# Format of core.sshCommand values gitshift writes: "ssh -i <key> -o IdentitiesOnly=yes"
SSH_COMMAND_SUFFIX = "-o IdentitiesOnly=yes"

MIN_RSA_BITS = 3072
DEFAULT_RSA_BITS = 4096


class Mode:
    """POSIX permission bits gitshift enforces."""

    PRIVATE_KEY = 0o600
    PUBLIC_KEY = 0o644
    SECRET_DIR = 0o700
    SECRET_FILE = 0o600


class KeyAlgorithm:
    """Supported key algorithms."""

    ED25519 = "ed25519"
    RSA = "rsa"

    ALL = [ED25519, RSA]

    SSH_NAMES = {
        "ssh-ed25519": ED25519,
        "ssh-rsa": RSA,
    }


def get_home() -> Path:
    """Base directory that stands in for the user's home."""
    override = os.environ.get(HOME_ENV)
    if override:
        return Path(override)
    return Path.home()


def get_ssh_dir() -> Path:
    return get_home() / SSH_DIR_NAME


def get_config_dir() -> Path:
    return get_home().joinpath(*CONFIG_DIR_PARTS)


def get_tool_timeout() -> float:
    """Timeout for external tools, honouring GITSHIFT_TOOL_TIMEOUT."""
    raw = os.environ.get(TIMEOUT_ENV)
    if not raw:
        return DEFAULT_TOOL_TIMEOUT
    try:
        value = float(raw)
    except ValueError:
        return DEFAULT_TOOL_TIMEOUT
    return value if value > 0 else DEFAULT_TOOL_TIMEOUT
