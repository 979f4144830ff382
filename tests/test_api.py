# tests/test_api.py
"""
Tests for the service registry, the api getters and the async wrappers.
"""
import pytest

from filetx.api import (
    commit_async,
    execute_action_async,
    execute_journal_async,
    get_backup_store,
    get_config,
    get_transaction_manager,
    rollback_async,
)
from filetx.core.registry import ServiceRegistry, registry
from filetx.models import FileOperation, RollbackAction, TransactionStatus
from filetx.rollback import RollbackJournal


def test_registry_is_singleton():
    assert ServiceRegistry.get_instance() is registry


def test_registry_register_and_factory():
    calls = []

    def factory():
        calls.append(1)
        return object()

    service = registry.register("plain", "value")
    registry.register_factory("lazy", factory)

    assert service == "value"
    assert registry.get("plain") == "value"
    assert calls == []
    built = registry.get("lazy")
    assert registry.get("lazy") is built
    assert calls == [1]
    assert registry.get("unknown") is None
    assert registry.list_services() == ["lazy", "plain"]


def test_registry_get_or_create():
    first = registry.get_or_create("thing", dict)
    assert registry.get_or_create("thing", list) is first

    registry.clear()
    assert registry.list_services() == []


def test_services_built_from_config(tmp_path):
    config = get_config()
    store = get_backup_store()
    manager = get_transaction_manager()

    assert config.backup.backup_dir == tmp_path / "env-backups"
    assert store.backup_dir == config.backup.backup_dir
    assert get_backup_store() is store
    assert manager.backup_store is store
    assert get_transaction_manager() is manager


@pytest.mark.asyncio
async def test_commit_and_rollback_async(temp_dir, test_file):
    manager = get_transaction_manager()
    tx_id = manager.begin()
    manager.add_operation(tx_id, FileOperation.update(test_file, "async content"))

    transaction = await commit_async(manager, tx_id)
    assert transaction.status == TransactionStatus.COMMITTED
    assert test_file.read_text() == "async content"

    transaction = await rollback_async(manager, tx_id)
    assert transaction.status == TransactionStatus.ROLLED_BACK
    assert test_file.read_text() == "Original content"


@pytest.mark.asyncio
async def test_execute_action_async(test_file):
    result = await execute_action_async(RollbackAction.delete_file(test_file), "step")

    assert result.step_id == "step"
    assert not test_file.exists()


@pytest.mark.asyncio
async def test_execute_journal_async(temp_dir):
    created = temp_dir / "created.txt"
    created.write_text("x")
    journal = RollbackJournal([("create", RollbackAction.delete_file(created))])

    results = await execute_journal_async(journal)

    assert [r.step_id for r in results] == ["create"]
    assert journal.verify_completeness() is True
    assert not created.exists()
