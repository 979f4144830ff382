# tests/conftest.py
"""
Common test fixtures for filetx.
"""
import os
import shutil
import tempfile
from pathlib import Path

import pytest
from loguru import logger

from filetx.backup import BackupStore
from filetx.config import config_manager
from filetx.core.registry import registry
from filetx.transaction import TransactionManager


@pytest.fixture
def temp_dir():
    """Create a temporary working directory and chdir into it."""
    temp_dir = tempfile.mkdtemp()
    old_dir = os.getcwd()
    os.chdir(temp_dir)
    yield Path(temp_dir)
    os.chdir(old_dir)
    shutil.rmtree(temp_dir)


@pytest.fixture
def backup_dir(temp_dir):
    return temp_dir / ".backups"


@pytest.fixture
def backup_store(backup_dir):
    """A backup store isolated in the test's temp directory."""
    return BackupStore(backup_dir, max_retained=10)


@pytest.fixture
def manager(backup_store):
    """A transaction manager using the isolated backup store."""
    return TransactionManager(backup_store)


@pytest.fixture
def test_file(temp_dir):
    """Create a test file with content."""
    file_path = temp_dir / "test_file.txt"
    file_path.write_text("Original content")
    return file_path


@pytest.fixture(autouse=True)
def isolated_services(monkeypatch, tmp_path):
    """Keep shared services and log sinks from leaking between tests."""
    monkeypatch.setenv("FILETX_BACKUP_DIR", str(tmp_path / "env-backups"))
    monkeypatch.setattr(config_manager, "config_file", tmp_path / "config.toml")
    monkeypatch.setattr("filetx.utils.logging.LOG_DIR", tmp_path / "logs")
    registry.clear()
    yield
    registry.clear()
    logger.remove()
