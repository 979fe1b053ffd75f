"""
Configuration management for the folder server.

Handles loading and saving user configuration from:
- $FOLDERSERVER_CONFIG if set
- XDG config directory: ~/.config/folderserver/config.json
- Fallback: ~/.folderserver/config.json
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from folderserver.paths import DEFAULT_DELIMITER, PathPolicy
from folderserver.sorting import DEFAULT_SORT_FIELD, SORT_ATTRIBUTES, SortOptions

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "FOLDERSERVER_CONFIG"


@dataclass
class ServerConfig:
    """Web server configuration."""
    host: str = "127.0.0.1"
    port: int = 9010
    server_name: str = "folder-server"
    server_description: str = "Folder Server."


@dataclass
class ListingConfig:
    """Folder content listing defaults."""
    default_limit: int = 50
    max_limit: int = 100
    default_sort: str = DEFAULT_SORT_FIELD
    sort_fields: List[str] = field(default_factory=lambda: list(SORT_ATTRIBUTES))
    descending_marker: str = "-"

    def sort_options(self) -> SortOptions:
        return SortOptions(self.sort_fields, self.default_sort, self.descending_marker)


@dataclass
class PathConfig:
    """Folder path rules."""
    delimiter: str = DEFAULT_DELIMITER
    case_sensitive: bool = True

    def policy(self) -> PathPolicy:
        return PathPolicy(self.delimiter, self.case_sensitive)


@dataclass
class StoreConfig:
    """Store location and identifier settings."""
    default_path: Optional[str] = None
    id_prefix: str = ""


@dataclass
class FolderServerConfig:
    """Main folder server configuration."""
    server: ServerConfig = field(default_factory=ServerConfig)
    listing: ListingConfig = field(default_factory=ListingConfig)
    paths: PathConfig = field(default_factory=PathConfig)
    store: StoreConfig = field(default_factory=StoreConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "server": asdict(self.server),
            "listing": asdict(self.listing),
            "paths": asdict(self.paths),
            "store": asdict(self.store),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'FolderServerConfig':
        """Create from dictionary."""
        return cls(
            server=ServerConfig(**data.get("server", {})),
            listing=ListingConfig(**data.get("listing", {})),
            paths=PathConfig(**data.get("paths", {})),
            store=StoreConfig(**data.get("store", {})),
        )


def get_config_path() -> Path:
    """
    Get configuration file path.

    Follows XDG Base Directory specification:
    1. $FOLDERSERVER_CONFIG, if set
    2. ~/.config/folderserver/config.json
    3. Fallback: ~/.folderserver/config.json

    Returns:
        Path to config file
    """
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override)

    xdg_config_home = Path.home() / ".config"
    if xdg_config_home.exists():
        config_dir = xdg_config_home / "folderserver"
    else:
        config_dir = Path.home() / ".folderserver"

    return config_dir / "config.json"


def load_config() -> FolderServerConfig:
    """
    Load configuration from file.

    Returns:
        FolderServerConfig instance with loaded values or defaults
    """
    config_path = get_config_path()

    if not config_path.exists():
        return FolderServerConfig()

    try:
        with open(config_path, 'r') as f:
            data = json.load(f)
        return FolderServerConfig.from_dict(data)
    except (json.JSONDecodeError, OSError, TypeError) as e:
        logger.warning(f"Failed to load config from {config_path}: {e}. Using default configuration")
        return FolderServerConfig()


def save_config(config: FolderServerConfig) -> Path:
    """
    Save configuration to file.

    Args:
        config: Configuration to save

    Returns:
        Path the configuration was written to
    """
    config_path = get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, 'w') as f:
        json.dump(config.to_dict(), f, indent=2)

    logger.info(f"Configuration saved to {config_path}")
    return config_path


def update_config(
    server_host: Optional[str] = None,
    server_port: Optional[int] = None,
    default_limit: Optional[int] = None,
    default_sort: Optional[str] = None,
    case_sensitive: Optional[bool] = None,
    store_default_path: Optional[str] = None,
    id_prefix: Optional[str] = None,
) -> FolderServerConfig:
    """
    Update configuration.

    Only updates provided values, leaving others unchanged.
    """
    config = load_config()

    if server_host is not None:
        config.server.host = server_host
    if server_port is not None:
        config.server.port = server_port
    if default_limit is not None:
        config.listing.default_limit = default_limit
    if default_sort is not None:
        config.listing.default_sort = default_sort
    if case_sensitive is not None:
        config.paths.case_sensitive = case_sensitive
    if store_default_path is not None:
        config.store.default_path = store_default_path
    if id_prefix is not None:
        config.store.id_prefix = id_prefix

    # Fail before writing anything unusable
    config.listing.sort_options()
    config.paths.policy()

    save_config(config)
    return config
