"""Configuration store.

Loads and saves GitshiftConfig (identities + current pointer) as YAML.
Pure I/O with one explicit path; identity rules live in gitshift.models.
"""

import logging
from pathlib import Path
from typing import Optional, Union

import yaml

from gitshift.constants import CONFIG_FILE_NAME, CONFIG_VERSION, get_config_dir
from gitshift.models import GitshiftConfig, Identity, validate_alias
from gitshift.primitives.errors import ConfigurationError
from gitshift.utils.fs import atomic_write, ensure_private_dir

logger = logging.getLogger(__name__)


class ConfigStore:
    """Reads and writes config.yaml."""

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else get_config_dir() / CONFIG_FILE_NAME

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> GitshiftConfig:
        """Load the configuration.

        Returns:
            Loaded GitshiftConfig, or an empty one when the file is missing.

        Raises:
            ConfigurationError: Invalid YAML, wrong structure, or an invalid identity.
        """
        if not self.path.is_file():
            return GitshiftConfig()

        try:
            data = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {self.path}: {e}", cause=e)
        except OSError as e:
            raise ConfigurationError(f"Cannot read {self.path}: {e.strerror}", cause=e)

        if data is None:
            return GitshiftConfig()
        if not isinstance(data, dict):
            raise ConfigurationError(f"{self.path} must contain a mapping")

        version = data.get("config_version", CONFIG_VERSION)
        if version != CONFIG_VERSION:
            raise ConfigurationError(
                f"Unsupported config_version {version!r} in {self.path}", field="config_version"
            )

        raw_identities = data.get("identities") or {}
        if not isinstance(raw_identities, dict):
            raise ConfigurationError("identities must be a mapping of alias to identity", field="identities")

        identities = {}
        for alias, raw in raw_identities.items():
            alias = validate_alias(str(alias))
            identities[alias] = Identity.from_dict(alias, raw)

        current = data.get("current")
        if current is not None and current not in identities:
            # Keep the dangling pointer; diagnose reports it
            logger.warning(f"Current identity {current!r} is not configured")

        return GitshiftConfig(identities=identities, current=current, config_version=version)

    def save(self, config: GitshiftConfig) -> Path:
        """Write the configuration atomically with mode 0600."""
        ensure_private_dir(self.path.parent)
        content = yaml.safe_dump(config.to_dict(), sort_keys=False, default_flow_style=False)
        atomic_write(self.path, content)
        logger.debug(f"Saved config to {self.path}")
        return self.path
