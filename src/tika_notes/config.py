"""Configuration constants and settings loading for the note search application."""

import logging
import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import ConfigError

logger = logging.getLogger(__name__)

# Search constants
PAGE_SIZE = 100
NEAR_WINDOW = 10
ELITE_SET_SIZE = 10
MAX_QUERY_DEPTH = 256
# Most index terms a prefix or wildcard word expands to
MAX_PREFIX_EXPANSION = 100

# Interactive loop redraw tick, in seconds
TICK_RATE = 0.25

DEFAULT_CONFIG_FILE = Path("~/.config/tika/config.toml")
DEFAULT_DATABASE = Path("~/.local/share/tika/db.sqlite3")


@dataclass
class Settings:
    source_glob: Optional[str] = None
    database: Path = DEFAULT_DATABASE.expanduser()
    page_size: int = PAGE_SIZE


def get_config_file(config_file: Optional[str] = None) -> Path:
    """Get the config file path, falling back to the per-user default."""
    if config_file:
        return Path(config_file).expanduser()
    env_file = os.environ.get("TIKA_CONFIG")
    if env_file:
        return Path(env_file).expanduser()
    return DEFAULT_CONFIG_FILE.expanduser()


def load_settings(
    config_file: Optional[str] = None,
    source: Optional[str] = None,
    database: Optional[str] = None,
) -> Settings:
    """Load settings from TOML, then apply command line overrides.

    A missing default config file is not an error; a missing file that was
    asked for explicitly is.
    """
    path = get_config_file(config_file)
    data = {}

    if path.is_file():
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid config file {path}: {e}") from e
        except OSError as e:
            raise ConfigError(f"Cannot read config file {path}: {e}") from e
        logger.info("Loaded config from %s", path)
    elif config_file:
        raise ConfigError(f"Config file not found: {path}")
    else:
        logger.debug("No config file at %s, using defaults", path)

    settings = Settings()

    source_glob = data.get("source-glob")
    if source_glob is not None and not isinstance(source_glob, str):
        raise ConfigError("'source-glob' must be a string")
    settings.source_glob = source or source_glob

    db_value = database or data.get("database")
    if db_value:
        if not isinstance(db_value, str):
            raise ConfigError("'database' must be a string")
        settings.database = Path(db_value).expanduser()

    page_size = data.get("page-size", PAGE_SIZE)
    if not isinstance(page_size, int) or isinstance(page_size, bool) or page_size < 1:
        raise ConfigError("'page-size' must be a positive integer")
    settings.page_size = page_size

    return settings
