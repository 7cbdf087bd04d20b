"""Token vault service.

Platform access tokens encrypted per identity with AES-256-GCM, one file
per identity under {GITSHIFT_HOME or ~}/.config/gitshift/tokens/.

File content: base64(nonce || ciphertext), with a fresh 96-bit nonce per
store. The key is SHA-256(alias + hostname + home directory name). Anyone
who can read the files can usually reconstruct those inputs, so this only
keeps tokens out of casual disk copies and backups; it is not a defence
against a local attacker.
"""

import base64
import binascii
import hashlib
import logging
import os
import socket
from pathlib import Path
from typing import List, Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from gitshift.constants import TOKEN_SUFFIX, TOKENS_DIR_NAME, Mode, get_config_dir, get_home
from gitshift.models import ALIAS_RE, validate_alias
from gitshift.primitives.errors import VaultDecryptFailed, VaultEntryNotFound
from gitshift.utils.fs import atomic_write, ensure_private_dir, file_mode
from gitshift.utils.logger import log_context

logger = logging.getLogger(__name__)

NONCE_SIZE = 12

TOKEN_TYPES = (
    ("github_pat_", "github_fine_grained"),
    ("ghp_", "github_personal"),
    ("gho_", "github_oauth"),
    ("ghu_", "github_user_to_server"),
    ("ghs_", "github_server_to_server"),
    ("ghr_", "github_refresh"),
    ("glpat-", "gitlab_personal"),
)


def detect_token_type(token: str) -> str:
    """Token kind from its well-known prefix, or "unknown"."""
    for prefix, kind in TOKEN_TYPES:
        if token.startswith(prefix):
            return kind
    return "unknown"


def mask_token(token: str) -> str:
    """Display form: the prefix and last four characters."""
    if len(token) <= 8:
        return "*" * len(token)
    for prefix, _ in TOKEN_TYPES:
        if token.startswith(prefix):
            return f"{prefix}...{token[-4:]}"
    return f"...{token[-4:]}"


class TokenVault:
    """Encrypted token files, keyed per identity."""

    def __init__(
        self,
        vault_dir: Optional[Union[str, Path]] = None,
        hostname: Optional[str] = None,
        home_name: Optional[str] = None,
    ):
        """Initialize the vault.

        Args:
            vault_dir: Directory for token files (default: config dir / tokens).
            hostname: Host name used in key derivation (default: this machine).
            home_name: Home directory leaf name used in key derivation.
        """
        self.vault_dir = Path(vault_dir) if vault_dir else get_config_dir() / TOKENS_DIR_NAME
        self._hostname = hostname if hostname is not None else socket.gethostname()
        self._home_name = home_name if home_name is not None else get_home().name

    def _derive_key(self, alias: str) -> bytes:
        seed = f"{alias}{self._hostname}{self._home_name}".encode("utf-8")
        return hashlib.sha256(seed).digest()

    def entry_path(self, alias: str) -> Path:
        return self.vault_dir / f"{validate_alias(alias)}{TOKEN_SUFFIX}"

    def exists(self, alias: str) -> bool:
        return self.entry_path(alias).is_file()

    def encrypt(self, alias: str, token: str) -> bytes:
        """Seal token for alias. Returns the base64 blob as stored on disk."""
        nonce = os.urandom(NONCE_SIZE)
        ciphertext = AESGCM(self._derive_key(alias)).encrypt(nonce, token.encode("utf-8"), None)
        return base64.b64encode(nonce + ciphertext)

    def decrypt_blob(self, alias: str, blob: bytes) -> str:
        """Open a stored blob with alias's key.

        Raises:
            VaultDecryptFailed: Bad encoding, truncated blob, or failed authentication.
        """
        try:
            raw = base64.b64decode(blob.strip(), validate=True)
        except (binascii.Error, ValueError) as e:
            raise VaultDecryptFailed(alias, cause=e)
        if len(raw) <= NONCE_SIZE:
            raise VaultDecryptFailed(alias)

        nonce, ciphertext = raw[:NONCE_SIZE], raw[NONCE_SIZE:]
        try:
            plaintext = AESGCM(self._derive_key(alias)).decrypt(nonce, ciphertext, None)
        except InvalidTag as e:
            raise VaultDecryptFailed(alias, cause=e)
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise VaultDecryptFailed(alias, cause=e)

    def store(self, alias: str, token: str) -> Path:
        """Encrypt and write the token for alias (0600 file in a 0700 directory)."""
        if not token:
            raise ValueError("token must not be empty")
        path = self.entry_path(alias)
        ensure_private_dir(self.vault_dir)
        atomic_write(path, self.encrypt(alias, token), mode=Mode.SECRET_FILE)
        logger.info(f"Stored token for {alias}", extra=log_context(alias=alias, kind=detect_token_type(token)))
        return path

    def retrieve(self, alias: str) -> str:
        """Decrypt the token for alias.

        Raises:
            VaultEntryNotFound: No token stored for alias.
            VaultDecryptFailed: Entry is tampered, corrupt, or sealed with another key.
        """
        path = self.entry_path(alias)
        try:
            blob = path.read_bytes()
        except FileNotFoundError:
            raise VaultEntryNotFound(alias)
        return self.decrypt_blob(alias, blob)

    def delete(self, alias: str) -> bool:
        """Remove the entry for alias. Returns False if there was none."""
        path = self.entry_path(alias)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.info(f"Deleted token for {alias}")
        return True

    def list_aliases(self) -> List[str]:
        if not self.vault_dir.is_dir():
            return []
        names = (p.name[: -len(TOKEN_SUFFIX)] for p in self.vault_dir.glob(f"*{TOKEN_SUFFIX}"))
        return sorted(name for name in names if ALIAS_RE.match(name))

    def insecure_paths(self, alias: Optional[str] = None) -> List[Path]:
        """Vault directory and entries that are accessible to group or others."""
        paths = []
        if self.vault_dir.is_dir() and file_mode(self.vault_dir) & 0o077:
            paths.append(self.vault_dir)
        entries = [self.entry_path(alias)] if alias else [self.entry_path(a) for a in self.list_aliases()]
        for entry in entries:
            if entry.is_file() and file_mode(entry) & 0o077:
                paths.append(entry)
        return paths

    def fix_permissions(self) -> None:
        """Reset the vault directory to 0700 and every entry to 0600."""
        if not self.vault_dir.is_dir():
            return
        os.chmod(self.vault_dir, Mode.SECRET_DIR)
        for alias in self.list_aliases():
            os.chmod(self.entry_path(alias), Mode.SECRET_FILE)
