"""
Constants for the filetx package.
"""
from pathlib import Path
import os
import tempfile

# Application information
APP_NAME = "filetx"
APP_VERSION = "0.1.0"
APP_DESCRIPTION = "Reversible multi-file transactions and compensating actions for coding agents"

# Paths
CONFIG_DIR = Path(os.path.expanduser("~/.config/filetx"))
CONFIG_FILE = CONFIG_DIR / "config.toml"
LOG_DIR = CONFIG_DIR / "logs"
DEFAULT_BACKUP_DIR = Path(tempfile.gettempdir()) / "filetx-backups"
JOURNAL_DIR_NAME = "journals"
BACKUP_INDEX_FILE = "index.json"
CORRUPT_INDEX_SUFFIX = ".corrupt"
JOURNAL_REF_SUFFIX = ".ref"

# Backups
DEFAULT_MAX_RETAINED_BACKUPS = 10
BACKUP_SUFFIX = ".bak"
PATH_DIGEST_LENGTH = 8  # hex chars of the original path's digest in backup names

# Environment overrides
ENV_BACKUP_DIR = "FILETX_BACKUP_DIR"
ENV_MAX_BACKUPS = "FILETX_MAX_BACKUPS"
ENV_DEBUG = "FILETX_DEBUG"

# Logging
LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | {extra[name]} | {message}"
LOG_ROTATION = "50 MB"
LOG_RETENTION = "10 days"
