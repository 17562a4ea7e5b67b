"""
castelar/config.py - Local configuration management

Reads user config from a platform-appropriate config directory:
  - macOS/Linux: ~/.castelar/config.toml
  - Windows: %APPDATA%\\castelar\\config.toml

Example:
    [tracker]
    db = "~/.castelar/castelar.db"
    undo_policy = "reverse"   # or "replay"

    [server]
    host = "0.0.0.0"
    port = 8000

    [impostor]
    impostors = 1
"""

import logging
import os
import sys
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from .history import UNDO_POLICIES

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================


def _get_config_dir() -> Path:
    """Get platform-appropriate config directory."""
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / "castelar"
    return Path.home() / ".castelar"


CONFIG_DIR = _get_config_dir()
CONFIG_PATH = CONFIG_DIR / "config.toml"

DEFAULT_DB_PATH = str(CONFIG_DIR / "castelar.db")
DEFAULT_UNDO_POLICY = "reverse"


# ============================================================================
# Data Types
# ============================================================================


@dataclass
class TrackerConfig:
    """Where matches are stored and how undo behaves."""

    db_path: str = DEFAULT_DB_PATH
    undo_policy: str = DEFAULT_UNDO_POLICY


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8000


@dataclass
class ImpostorConfig:
    impostors: int = 1  # default impostors per round


@dataclass
class CastelarConfig:
    """Top-level configuration."""

    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    impostor: ImpostorConfig = field(default_factory=ImpostorConfig)


# ============================================================================
# Parsing
# ============================================================================


def _expand(path: str | None) -> str | None:
    """Expand ~ in a path string."""
    if path is None:
        return None
    return str(Path(path).expanduser())


def _section(raw: dict, name: str) -> dict:
    data = raw.get(name, {})
    return data if isinstance(data, dict) else {}


def _parse_tracker(data: dict) -> TrackerConfig:
    policy = data.get("undo_policy", DEFAULT_UNDO_POLICY)
    if policy not in UNDO_POLICIES:
        logger.warning(
            f"Unknown undo_policy {policy!r}, using {DEFAULT_UNDO_POLICY!r}"
        )
        policy = DEFAULT_UNDO_POLICY
    return TrackerConfig(
        db_path=_expand(data.get("db")) or DEFAULT_DB_PATH,
        undo_policy=policy,
    )


def load_config(path: Path | None = None) -> CastelarConfig:
    """
    Read config from TOML file.

    Args:
        path: Override config file path (default: ~/.castelar/config.toml)

    Returns:
        CastelarConfig. Missing file or bad TOML returns defaults.
    """
    config_path = path or CONFIG_PATH

    if not config_path.exists():
        return CastelarConfig()

    try:
        with open(config_path, "rb") as f:
            raw = tomllib.load(f)
    except Exception as e:
        logger.warning(f"Failed to parse {config_path}: {e}")
        return CastelarConfig()

    server_data = _section(raw, "server")
    _server_defaults = ServerConfig()
    server = ServerConfig(
        host=server_data.get("host", _server_defaults.host),
        port=server_data.get("port", _server_defaults.port),
    )

    impostor = ImpostorConfig(
        impostors=_section(raw, "impostor").get("impostors", 1),
    )

    return CastelarConfig(
        tracker=_parse_tracker(_section(raw, "tracker")),
        server=server,
        impostor=impostor,
    )
