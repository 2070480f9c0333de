"""
Configuration management for tomes.

Process-level settings (where the library lives, how to bind the server)
are loaded from:
- XDG config directory: ~/.config/tomes/config.json
- Fallback: ~/.tomes/config.json

Catalog settings (name, password, token, page size...) are stored in the
library database instead; see Library.options().
"""

import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, asdict, field

logger = logging.getLogger(__name__)


@dataclass
class ServerConfig:
    """Web server configuration."""
    host: str = "0.0.0.0"
    port: Optional[int] = None  # None: use the port stored with the library
    session_secret: Optional[str] = None


@dataclass
class LibraryConfig:
    """Library-related settings."""
    default_path: Optional[str] = None


@dataclass
class TomesConfig:
    """Main tomes configuration."""
    server: ServerConfig = field(default_factory=ServerConfig)
    library: LibraryConfig = field(default_factory=LibraryConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "server": asdict(self.server),
            "library": asdict(self.library),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TomesConfig':
        """Create from dictionary."""
        return cls(
            server=ServerConfig(**data.get("server", {})),
            library=LibraryConfig(**data.get("library", {})),
        )


def get_config_path() -> Path:
    """
    Get configuration file path.

    Follows XDG Base Directory specification:
    1. ~/.config/tomes/config.json
    2. Fallback: ~/.tomes/config.json
    """
    xdg_config_home = Path.home() / ".config"
    if xdg_config_home.exists():
        config_dir = xdg_config_home / "tomes"
    else:
        config_dir = Path.home() / ".tomes"

    return config_dir / "config.json"


def load_config(config_path: Optional[Path] = None) -> TomesConfig:
    """
    Load configuration from file.

    Returns:
        TomesConfig instance with loaded values or defaults
    """
    config_path = config_path or get_config_path()

    if not config_path.exists():
        return TomesConfig()

    try:
        with open(config_path, 'r') as f:
            data = json.load(f)
        return TomesConfig.from_dict(data)
    except (json.JSONDecodeError, OSError, TypeError) as e:
        logger.warning(f"Failed to load config from {config_path}: {e}; using defaults")
        return TomesConfig()


def save_config(config: TomesConfig, config_path: Optional[Path] = None) -> Path:
    """
    Save configuration to file.

    Returns:
        Path the configuration was written to
    """
    config_path = config_path or get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    with open(config_path, 'w') as f:
        json.dump(config.to_dict(), f, indent=2)

    logger.info(f"Configuration saved to {config_path}")
    return config_path


def update_config(
    server_host: Optional[str] = None,
    server_port: Optional[int] = None,
    session_secret: Optional[str] = None,
    library_default_path: Optional[str] = None,
    config_path: Optional[Path] = None,
) -> TomesConfig:
    """
    Update configuration.

    Only updates provided values, leaving others unchanged.
    """
    config = load_config(config_path)

    if server_host is not None:
        config.server.host = server_host
    if server_port is not None:
        config.server.port = server_port
    if session_secret is not None:
        config.server.session_secret = session_secret
    if library_default_path is not None:
        config.library.default_path = library_default_path

    save_config(config, config_path)
    return config
