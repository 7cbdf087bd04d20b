"""SSH config installer.

Applies gitshift.primitives.ssh_config merges to ~/.ssh/config on disk:
read, merge, render, back up the old file, atomically replace. The whole
read-modify-write runs under a per-path lock so two switches in one process
cannot interleave.
"""

import logging
import os
import shutil
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from gitshift.constants import BACKUP_PREFIX, BACKUPS_KEPT, PLATFORM_HOSTS, Mode, get_ssh_dir
from gitshift.primitives.errors import ConfigMergeConflict
from gitshift.primitives.ssh_config import (
    ManagedBlock,
    SSHConfigDocument,
    managed_identity_file,
    merge,
    parse,
    render,
)
from gitshift.utils.fs import atomic_write, ensure_private_dir, file_mode
from gitshift.utils.logger import log_context

logger = logging.getLogger(__name__)

# One lock per config path, kept for the life of the process. A process
# touches one or two config paths, so entries are never evicted.
_locks: Dict[str, threading.Lock] = {}
_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    key = os.path.abspath(path)
    with _locks_guard:
        if key not in _locks:
            _locks[key] = threading.Lock()
        return _locks[key]


class SSHConfigManager:
    """Owns the gitshift section of one SSH client config file."""

    def __init__(
        self,
        config_path: Optional[Union[str, Path]] = None,
        platform_hosts: Iterable[str] = PLATFORM_HOSTS,
        backups_kept: int = BACKUPS_KEPT,
    ):
        self.config_path = Path(config_path) if config_path else get_ssh_dir() / "config"
        self.platform_hosts = tuple(platform_hosts)
        self.backups_kept = backups_kept

    def read_text(self) -> str:
        try:
            return self.config_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""
        except UnicodeDecodeError as e:
            raise ConfigMergeConflict(f"{self.config_path} is not valid UTF-8: {e.reason}")

    def read_document(self) -> SSHConfigDocument:
        return parse(self.read_text())

    def install(self, managed_blocks: List[ManagedBlock], now: Optional[datetime] = None) -> Path:
        """Replace gitshift's host blocks with managed_blocks.

        Args:
            managed_blocks: Blocks to own after the install, one per host.
            now: Timestamp for the header and backup name (default: now).

        Returns:
            Path of the written config.

        Raises:
            ConfigMergeConflict: The existing file cannot be merged safely;
                nothing is written.
        """
        now = now or datetime.now(timezone.utc)
        with _lock_for(self.config_path):
            existing = self.read_text()
            document = merge(parse(existing), managed_blocks, self.platform_hosts)
            content = render(document, generated_at=now)

            ensure_private_dir(self.config_path.parent)

            backup_path = None
            if self.config_path.exists():
                backup_path = self.config_path.with_name(f"{BACKUP_PREFIX}{now:%Y%m%dT%H%M%S%f}")

            def take_backup():
                if backup_path is None:
                    return
                try:
                    os.link(self.config_path, backup_path)
                except OSError:
                    shutil.copy2(self.config_path, backup_path)

            atomic_write(self.config_path, content, mode=Mode.SECRET_FILE, before_replace=take_backup)

            if backup_path is not None:
                logger.debug(f"Backed up previous SSH config to {backup_path}")
                self._prune_backups()

        hosts = ", ".join(block.host for block in managed_blocks) or "none"
        logger.info(
            f"Installed managed SSH config for {hosts}",
            extra=log_context(
                path=str(self.config_path),
                hosts=hosts,
                backup=backup_path.name if backup_path else None,
            ),
        )
        return self.config_path

    def managed_identity_file(self, host: str) -> Optional[str]:
        """IdentityFile the managed block for host points at, or None."""
        return managed_identity_file(self.read_document(), host)

    def backups(self) -> List[Path]:
        """Backup files, oldest first."""
        directory = self.config_path.parent
        if not directory.is_dir():
            return []
        return sorted(directory.glob(f"{BACKUP_PREFIX}*"))

    def _prune_backups(self) -> None:
        backups = self.backups()
        for old in backups[: max(0, len(backups) - self.backups_kept)]:
            try:
                old.unlink()
            except OSError as e:
                logger.warning(f"Could not remove old SSH config backup {old}: {e.strerror}")

    def is_secure(self) -> bool:
        """Config is missing or owner-only."""
        if not self.config_path.exists():
            return True
        return not (file_mode(self.config_path) & 0o077)

    def current_mode(self) -> Optional[int]:
        return file_mode(self.config_path) if self.config_path.exists() else None

    def fix_permissions(self) -> None:
        if self.config_path.exists():
            os.chmod(self.config_path, Mode.SECRET_FILE)
        if self.config_path.parent.is_dir():
            os.chmod(self.config_path.parent, Mode.SECRET_DIR)
