# filetx/config.py
"""
Configuration management for filetx.
Uses TOML format for configuration files.
"""
import os
import sys
from pathlib import Path
from typing import Optional

# Reader (tomllib for >= 3.11, tomli for < 3.11)
if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

import tomli_w
from dotenv import load_dotenv
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from filetx.constants import (
    CONFIG_FILE,
    DEFAULT_BACKUP_DIR,
    DEFAULT_MAX_RETAINED_BACKUPS,
    ENV_BACKUP_DIR,
    ENV_DEBUG,
    ENV_MAX_BACKUPS,
)
from filetx.utils.logging import get_logger

logger = get_logger(__name__)


# --- Configuration Models ---

class BackupConfig(BaseModel):
    """Backup store settings."""
    backup_dir: Path = Field(DEFAULT_BACKUP_DIR, description="Directory holding file backups")
    max_retained: int = Field(DEFAULT_MAX_RETAINED_BACKUPS, ge=1, description="Backups kept per original path")


class TransactionConfig(BaseModel):
    """Transaction manager settings."""
    base_dir: Optional[Path] = Field(None, description="Directory relative operation paths are resolved against")


class AppConfig(BaseModel):
    """Application configuration settings."""
    backup: BackupConfig = Field(default_factory=BackupConfig, description="Backup configuration")
    transaction: TransactionConfig = Field(default_factory=TransactionConfig, description="Transaction configuration")
    debug: bool = Field(False, description="Enable debug logging")


# --- Configuration Manager ---

class ConfigManager:
    """Loads and saves the filetx configuration."""

    def __init__(self, config_file: Optional[Path] = None):
        self.config_file = Path(config_file) if config_file else CONFIG_FILE
        self._config: AppConfig = AppConfig()

    def _load_environment(self) -> None:
        """Apply overrides from environment variables and a .env file."""
        load_dotenv()

        backup_dir = os.getenv(ENV_BACKUP_DIR)
        if backup_dir:
            self._config.backup.backup_dir = Path(os.path.expanduser(backup_dir))

        max_backups = os.getenv(ENV_MAX_BACKUPS)
        if max_backups:
            try:
                self._config.backup = BackupConfig(
                    backup_dir=self._config.backup.backup_dir,
                    max_retained=int(max_backups),
                )
            except (ValueError, PydanticValidationError):
                logger.warning(f"Ignoring invalid {ENV_MAX_BACKUPS}={max_backups!r}")

        debug = os.getenv(ENV_DEBUG)
        if debug:
            self._config.debug = debug.strip().lower() in ("1", "true", "yes", "on")

    def load_config(self) -> AppConfig:
        """
        Load configuration from the TOML file, then apply environment overrides.

        A missing file means defaults; an unreadable or invalid file is
        logged and replaced by defaults.
        """
        self._config = AppConfig()

        if not self.config_file.exists():
            logger.debug(f"Configuration file not found at '{self.config_file}'. Using defaults.")
        else:
            try:
                logger.debug(f"Loading configuration from: {self.config_file}")
                with open(self.config_file, "rb") as f:  # TOML requires binary read mode
                    config_data = tomllib.load(f)
                self._config = AppConfig(**config_data)
            except tomllib.TOMLDecodeError as e:
                logger.error(f"Error decoding TOML configuration file ({self.config_file}): {e}")
                logger.error("Using default configuration and environment variables.")
                self._config = AppConfig()
            except PydanticValidationError as e:
                logger.error(f"Invalid configuration in {self.config_file}: {e}")
                logger.error("Using default configuration and environment variables.")
                self._config = AppConfig()
            except OSError as e:
                logger.error(f"I/O error accessing configuration file: {e}")
                logger.error("Using default configuration and environment variables.")
                self._config = AppConfig()

        self._load_environment()
        return self._config

    def save_config(self) -> Path:
        """Save the current configuration to the config file (as TOML)."""
        # TOML has no null, and Path needs converting to str
        config_dict = self._config.model_dump(mode="json", exclude_none=True)
        self.config_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_file, "wb") as f:
            tomli_w.dump(config_dict, f)
        logger.info(f"Configuration saved to {self.config_file}")
        return self.config_file

    @property
    def config(self) -> AppConfig:
        """Provides access to the current application configuration."""
        return self._config


# Global instance; call load_config() before relying on file or env values
config_manager = ConfigManager()
