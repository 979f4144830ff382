# filetx/api.py
"""
Public API for filetx components.

Provides lazily-built default instances wired from configuration, and async
wrappers for callers running inside an event loop. Commit, rollback and
compensating actions block on file and process I/O, so the wrappers run
them in a worker thread.
"""
import asyncio
from typing import List

from filetx.backup import BackupStore
from filetx.config import AppConfig, config_manager
from filetx.constants import JOURNAL_DIR_NAME
from filetx.core.registry import registry
from filetx.models import FileTransaction, RollbackAction, RollbackResult
from filetx.rollback import RollbackJournal, execute_action, journaled_backups
from filetx.transaction import TransactionManager


def get_config() -> AppConfig:
    """Get the application configuration, loading it on first use."""
    return registry.get_or_create("config", config_manager.load_config)


def get_backup_store() -> BackupStore:
    """Get the shared backup store."""
    def factory() -> BackupStore:
        backup_config = get_config().backup
        return BackupStore(backup_config.backup_dir, backup_config.max_retained)
    return registry.get_or_create("backup_store", factory)


def get_transaction_manager() -> TransactionManager:
    """Get the shared transaction manager."""
    def factory() -> TransactionManager:
        store = get_backup_store()
        journal_dir = store.backup_dir / JOURNAL_DIR_NAME
        return TransactionManager(
            store,
            base_dir=get_config().transaction.base_dir,
            protected_backups=lambda: journaled_backups(journal_dir),
        )
    return registry.get_or_create("transaction_manager", factory)


async def commit_async(manager: TransactionManager, tx_id: str) -> FileTransaction:
    """Commit a transaction without blocking the event loop."""
    return await asyncio.to_thread(manager.commit, tx_id)


async def rollback_async(manager: TransactionManager, tx_id: str) -> FileTransaction:
    """Roll back a transaction without blocking the event loop."""
    return await asyncio.to_thread(manager.rollback, tx_id)


async def execute_action_async(action: RollbackAction, step_id: str = "") -> RollbackResult:
    """Replay a compensating action without blocking the event loop."""
    return await asyncio.to_thread(execute_action, action, step_id)


async def execute_journal_async(journal: RollbackJournal) -> List[RollbackResult]:
    """Replay a rollback journal without blocking the event loop."""
    return await asyncio.to_thread(journal.execute_rollback)
