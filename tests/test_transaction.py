# tests/test_transaction.py
"""
Tests for the transaction manager.
"""
import uuid
from pathlib import Path
from unittest.mock import patch

import pytest

from filetx.errors import (
    ApplyFailed,
    BackupFailed,
    CompensationFailedError,
    InvalidStateError,
    RollbackFailed,
    TransactionNotFoundError,
    ValidationError,
)
from filetx.models import (
    FileOperation,
    OperationType,
    RollbackType,
    TransactionStatus,
    compute_checksum,
)
from filetx.transaction import TransactionManager


def test_begin_creates_pending_transaction(manager):
    """A new transaction is pending and empty."""
    tx_id = manager.begin()

    assert manager.status(tx_id) == TransactionStatus.PENDING
    transaction = manager.get(tx_id)
    assert transaction.id == tx_id
    assert transaction.operations == []
    assert transaction.completed_at is None


def test_unknown_transaction(manager):
    """Every entry point reports unknown ids."""
    fake_id = str(uuid.uuid4())

    with pytest.raises(TransactionNotFoundError):
        manager.get(fake_id)
    with pytest.raises(TransactionNotFoundError):
        manager.status(fake_id)
    with pytest.raises(TransactionNotFoundError):
        manager.add_operation(fake_id, FileOperation.create("a.txt", "hi"))
    with pytest.raises(TransactionNotFoundError):
        manager.commit(fake_id)
    with pytest.raises(TransactionNotFoundError):
        manager.rollback(fake_id)


def test_add_operation_preserves_order(manager, temp_dir):
    """Operations keep their insertion order and count."""
    tx_id = manager.begin()
    names = ["c.txt", "a.txt", "b.txt", "a.txt"]
    for name in names:
        manager.add_operation(tx_id, FileOperation.create(name, name))

    operations = manager.get(tx_id).operations
    assert len(operations) == len(names)
    assert [op.path.name for op in operations] == names
    assert all(op.path.is_absolute() for op in operations)
    assert all(op.backup_path is None for op in operations)


def test_add_operation_resolves_relative_paths(backup_store, temp_dir):
    """Relative paths are anchored to the manager's base directory."""
    base = temp_dir / "project"
    manager = TransactionManager(backup_store, base_dir=base)
    tx_id = manager.begin()
    manager.add_operation(tx_id, FileOperation(path="src/app.py", operation=OperationType.CREATE, content="x"))
    manager.add_operation(tx_id, FileOperation.create("src/util.py", "y"))
    manager.add_operation(tx_id, FileOperation.delete("old.txt"))

    paths = [op.path for op in manager.get(tx_id).operations]
    assert paths == [base / "src" / "app.py", base / "src" / "util.py", base / "old.txt"]

    manager.commit(tx_id)
    assert (base / "src" / "util.py").read_text() == "y"
    assert not (temp_dir / "src").exists()


def test_add_operation_after_commit_fails(manager, temp_dir):
    """Operations can only be added while the transaction is pending."""
    tx_id = manager.begin()
    manager.add_operation(tx_id, FileOperation.create("a.txt", "hi"))
    manager.commit(tx_id)

    with pytest.raises(InvalidStateError) as exc_info:
        manager.add_operation(tx_id, FileOperation.create("b.txt", "yo"))

    assert exc_info.value.current == "committed"
    assert exc_info.value.attempted == "add_operation"
    assert len(manager.get(tx_id).operations) == 1


def test_get_returns_snapshot(manager, temp_dir):
    """Mutating a returned transaction does not affect the registry."""
    tx_id = manager.begin()
    manager.add_operation(tx_id, FileOperation.create("a.txt", "hi"))

    snapshot = manager.get(tx_id)
    snapshot.operations.clear()
    snapshot.status = TransactionStatus.COMMITTED

    assert len(manager.get(tx_id).operations) == 1
    assert manager.status(tx_id) == TransactionStatus.PENDING


def test_create_commit_and_rollback(manager, temp_dir):
    """Created files appear on commit and disappear on rollback."""
    tx_id = manager.begin()
    manager.add_operation(tx_id, FileOperation.create("a.txt", "hi"))
    manager.add_operation(tx_id, FileOperation.create("b.txt", "yo"))

    manager.commit(tx_id)

    assert (temp_dir / "a.txt").read_text() == "hi"
    assert (temp_dir / "b.txt").read_text() == "yo"
    assert manager.status(tx_id) == TransactionStatus.COMMITTED

    manager.rollback(tx_id)

    assert not (temp_dir / "a.txt").exists()
    assert not (temp_dir / "b.txt").exists()
    assert manager.status(tx_id) == TransactionStatus.ROLLED_BACK


def test_create_many_distinct_paths(manager, temp_dir):
    """Any number of creates on distinct paths round-trips through rollback."""
    paths = [temp_dir / "nested" / f"dir{i}" / f"file{i}.txt" for i in range(12)]
    tx_id = manager.begin()
    for i, path in enumerate(paths):
        manager.add_operation(tx_id, FileOperation.create(path, f"content {i}"))

    manager.commit(tx_id)
    for i, path in enumerate(paths):
        assert path.read_text() == f"content {i}"

    manager.rollback(tx_id)
    assert not any(path.exists() for path in paths)


def test_update_commit_and_rollback(manager, temp_dir):
    """An update is restored to its original content on rollback."""
    target = temp_dir / "x.txt"
    target.write_text("orig")

    tx_id = manager.begin()
    manager.add_operation(tx_id, FileOperation.update("x.txt", "new"))
    committed = manager.commit(tx_id)

    assert target.read_text() == "new"
    backup_path = committed.operations[0].backup_path
    assert backup_path is not None
    assert backup_path.read_text() == "orig"

    manager.rollback(tx_id)
    assert target.read_text() == "orig"


def test_update_preserves_exact_bytes(manager, temp_dir):
    """Rollback restores binary content byte for byte."""
    target = temp_dir / "blob.bin"
    original = bytes(range(256)) * 4 + b"\r\n\x00tail"
    target.write_bytes(original)

    tx_id = manager.begin()
    manager.add_operation(tx_id, FileOperation.update(target, b"\xff\xfe replaced"))
    manager.commit(tx_id)
    assert target.read_bytes() == b"\xff\xfe replaced"

    manager.rollback(tx_id)
    assert target.read_bytes() == original


def test_delete_commit_and_rollback(manager, test_file):
    """A deleted file comes back with its prior bytes."""
    tx_id = manager.begin()
    manager.add_operation(tx_id, FileOperation.delete(test_file))
    manager.commit(tx_id)

    assert not test_file.exists()

    manager.rollback(tx_id)
    assert test_file.read_text() == "Original content"


def test_delete_missing_file_is_noop(manager, temp_dir):
    """Deleting an absent file neither fails nor creates anything on rollback."""
    target = temp_dir / "ghost.txt"
    tx_id = manager.begin()
    manager.add_operation(tx_id, FileOperation.delete(target))

    committed = manager.commit(tx_id)
    assert committed.operations[0].backup_path is None

    manager.rollback(tx_id)
    assert not target.exists()


def test_create_over_existing_file_is_backed_up(manager, test_file):
    """A create that overwrites a file still restores it on rollback."""
    tx_id = manager.begin()
    manager.add_operation(tx_id, FileOperation.create(test_file, "replaced"))
    manager.commit(tx_id)
    assert test_file.read_text() == "replaced"

    manager.rollback(tx_id)
    assert test_file.read_text() == "Original content"


def test_same_path_rollback_restores_pre_transaction_content(manager, test_file):
    """Two writes to one path roll back to the content before both."""
    tx_id = manager.begin()
    manager.add_operation(tx_id, FileOperation.update(test_file, "A"))
    manager.add_operation(tx_id, FileOperation.update(test_file, "B"))
    manager.commit(tx_id)

    assert test_file.read_text() == "B"

    manager.rollback(tx_id)
    assert test_file.read_text() == "Original content"


def test_same_path_created_then_updated(manager, temp_dir):
    """A file created and then rewritten in one transaction is removed on rollback."""
    target = temp_dir / "fresh.txt"
    tx_id = manager.begin()
    manager.add_operation(tx_id, FileOperation.create(target, "A"))
    manager.add_operation(tx_id, FileOperation.update(target, "B"))
    manager.commit(tx_id)
    assert target.read_text() == "B"

    manager.rollback(tx_id)
    assert not target.exists()


def test_rollback_requires_commit(manager, temp_dir):
    """A transaction that was never committed cannot be rolled back."""
    tx_id = manager.begin()
    manager.add_operation(tx_id, FileOperation.create("a.txt", "hi"))

    with pytest.raises(InvalidStateError) as exc_info:
        manager.rollback(tx_id)

    assert exc_info.value.current == "pending"
    assert manager.status(tx_id) == TransactionStatus.PENDING


def test_status_never_regresses(manager, temp_dir):
    """pending -> committed -> rolled_back, and no way back."""
    tx_id = manager.begin()
    manager.add_operation(tx_id, FileOperation.create("a.txt", "hi"))
    manager.commit(tx_id)

    with pytest.raises(InvalidStateError):
        manager.commit(tx_id)

    manager.rollback(tx_id)
    assert manager.status(tx_id) == TransactionStatus.ROLLED_BACK

    with pytest.raises(InvalidStateError):
        manager.rollback(tx_id)
    with pytest.raises(InvalidStateError):
        manager.commit(tx_id)
    with pytest.raises(InvalidStateError):
        manager.add_operation(tx_id, FileOperation.create("b.txt", "yo"))
    assert manager.status(tx_id) == TransactionStatus.ROLLED_BACK


def test_missing_content_fails_before_touching_disk(manager, temp_dir):
    """Pre-flight validation rejects a write without content."""
    tx_id = manager.begin()
    manager.add_operation(tx_id, FileOperation.create("a.txt", "hi"))
    manager.add_operation(tx_id, FileOperation(path=temp_dir / "b.txt", operation=OperationType.UPDATE))

    with pytest.raises(ValidationError) as exc_info:
        manager.commit(tx_id)

    assert exc_info.value.field == "content"
    assert not (temp_dir / "a.txt").exists()
    assert manager.status(tx_id) == TransactionStatus.ROLLED_BACK


def test_checksum_is_verified(manager, temp_dir):
    """A matching checksum commits; a mismatching one is rejected up front."""
    good = manager.begin()
    manager.add_operation(good, FileOperation.create("a.txt", "hi", checksum=compute_checksum("hi")))
    manager.commit(good)
    assert (temp_dir / "a.txt").read_text() == "hi"

    bad = manager.begin()
    manager.add_operation(bad, FileOperation.create("b.txt", "yo", checksum=compute_checksum("other")))
    with pytest.raises(ValidationError) as exc_info:
        manager.commit(bad)

    assert exc_info.value.field == "checksum"
    assert exc_info.value.path == str(temp_dir / "b.txt")
    assert not (temp_dir / "b.txt").exists()


def test_failed_commit_compensates_applied_operations(manager, temp_dir, test_file):
    """A mid-commit failure undoes earlier operations and reports the path."""
    blocker = temp_dir / "blocker"
    blocker.write_text("I am a file, not a directory")
    bad_target = blocker / "child.txt"

    tx_id = manager.begin()
    manager.add_operation(tx_id, FileOperation.create("new.txt", "created"))
    manager.add_operation(tx_id, FileOperation.update(test_file, "changed"))
    manager.add_operation(tx_id, FileOperation.create(bad_target, "never written"))

    with pytest.raises(ApplyFailed) as exc_info:
        manager.commit(tx_id)

    assert exc_info.value.path == str(bad_target)
    assert not (temp_dir / "new.txt").exists()
    assert test_file.read_text() == "Original content"
    assert manager.status(tx_id) == TransactionStatus.ROLLED_BACK


def test_failed_backup_compensates_applied_operations(manager, temp_dir):
    """A file that cannot be backed up aborts the commit cleanly."""
    directory = temp_dir / "a_directory"
    directory.mkdir()

    tx_id = manager.begin()
    manager.add_operation(tx_id, FileOperation.create("new.txt", "created"))
    manager.add_operation(tx_id, FileOperation.update(directory, "cannot replace a directory"))

    with pytest.raises(BackupFailed) as exc_info:
        manager.commit(tx_id)

    assert exc_info.value.path == str(directory)
    assert not (temp_dir / "new.txt").exists()
    assert directory.is_dir()
    assert manager.status(tx_id) == TransactionStatus.ROLLED_BACK


def test_failed_backup_index_write_compensates(manager, backup_store, temp_dir, test_file):
    """A backup that cannot be recorded aborts the commit and undoes earlier work."""
    tx_id = manager.begin()
    manager.add_operation(tx_id, FileOperation.create("a.txt", "created"))
    manager.add_operation(tx_id, FileOperation.update(test_file, "changed"))

    with patch.object(backup_store, "_save_index", side_effect=OSError("disk full")):
        with pytest.raises(BackupFailed) as exc_info:
            manager.commit(tx_id)

    assert exc_info.value.path == str(test_file)
    assert "disk full" in str(exc_info.value)
    assert not (temp_dir / "a.txt").exists()
    assert test_file.read_text() == "Original content"
    assert manager.status(tx_id) == TransactionStatus.ROLLED_BACK
    # The unrecorded backup file is not left behind
    assert list(backup_store.backup_dir.glob("*.bak")) == []
    assert backup_store.list_backups() == []


def test_unexpected_os_error_compensates(manager, backup_store, temp_dir, test_file):
    """An OS error escaping a step is reported as ApplyFailed after compensation."""
    tx_id = manager.begin()
    manager.add_operation(tx_id, FileOperation.create("a.txt", "created"))
    manager.add_operation(tx_id, FileOperation.update(test_file, "changed"))

    with patch.object(backup_store, "create_backup", side_effect=PermissionError("denied")):
        with pytest.raises(ApplyFailed) as exc_info:
            manager.commit(tx_id)

    assert exc_info.value.path == str(test_file)
    assert isinstance(exc_info.value.cause, PermissionError)
    assert not (temp_dir / "a.txt").exists()
    assert test_file.read_text() == "Original content"
    assert manager.status(tx_id) == TransactionStatus.ROLLED_BACK


def test_compensation_failure_reports_both_errors(manager, backup_store, temp_dir, test_file):
    """If undoing a failed commit also fails, both failures are reported."""
    blocker = temp_dir / "blocker"
    blocker.write_text("file")
    bad_target = blocker / "child.txt"

    original_create_backup = backup_store.create_backup

    def create_then_lose_backup(path):
        record = original_create_backup(path)
        record.backup_path.unlink()
        return record

    tx_id = manager.begin()
    manager.add_operation(tx_id, FileOperation.update(test_file, "changed"))
    manager.add_operation(tx_id, FileOperation.create(bad_target, "never written"))

    with patch.object(backup_store, "create_backup", side_effect=create_then_lose_backup):
        with pytest.raises(CompensationFailedError) as exc_info:
            manager.commit(tx_id)

    error = exc_info.value
    assert isinstance(error.original, ApplyFailed)
    assert error.original.path == str(bad_target)
    assert len(error.failures) == 1
    assert isinstance(error.failures[0], RollbackFailed)
    assert error.failures[0].path == str(test_file)
    assert str(bad_target) in str(error)
    assert "Backup file not found" in str(error)
    assert test_file.read_text() == "changed"
    assert manager.status(tx_id) == TransactionStatus.ROLLED_BACK


def test_compensation_continues_past_failures(manager, backup_store, temp_dir, test_file):
    """Compensation is best effort: later undo steps still run after one fails."""
    blocker = temp_dir / "blocker"
    blocker.write_text("file")

    original_create_backup = backup_store.create_backup

    def create_then_lose_backup(path):
        record = original_create_backup(path)
        record.backup_path.unlink()
        return record

    tx_id = manager.begin()
    manager.add_operation(tx_id, FileOperation.create("new.txt", "created"))
    manager.add_operation(tx_id, FileOperation.update(test_file, "changed"))
    manager.add_operation(tx_id, FileOperation.create(blocker / "child.txt", "x"))

    with patch.object(backup_store, "create_backup", side_effect=create_then_lose_backup):
        with pytest.raises(CompensationFailedError):
            manager.commit(tx_id)

    assert not (temp_dir / "new.txt").exists()


def test_rollback_failure_keeps_transaction_committed(manager, test_file):
    """A rollback that cannot restore a file can be retried once repaired."""
    tx_id = manager.begin()
    manager.add_operation(tx_id, FileOperation.update(test_file, "changed"))
    committed = manager.commit(tx_id)
    backup_path = committed.operations[0].backup_path
    saved = backup_path.read_bytes()
    backup_path.unlink()

    with pytest.raises(RollbackFailed) as exc_info:
        manager.rollback(tx_id)

    assert exc_info.value.path == str(test_file)
    assert manager.status(tx_id) == TransactionStatus.COMMITTED

    backup_path.write_bytes(saved)
    manager.rollback(tx_id)
    assert test_file.read_text() == "Original content"


def test_rollback_actions_describe_undo_in_reverse(manager, temp_dir, test_file):
    """A committed transaction can be exported as compensating actions."""
    tx_id = manager.begin()
    manager.add_operation(tx_id, FileOperation.create("new.txt", "created"))
    manager.add_operation(tx_id, FileOperation.update(test_file, "changed"))
    manager.commit(tx_id)

    actions = manager.rollback_actions(tx_id)

    assert [a.action_type for a in actions] == [RollbackType.RESTORE_FILE, RollbackType.DELETE_FILE]
    assert actions[0].data["file_path"] == str(test_file)
    assert actions[1].data["file_path"] == str(temp_dir / "new.txt")


def test_rollback_actions_require_commit(manager):
    tx_id = manager.begin()
    with pytest.raises(InvalidStateError):
        manager.rollback_actions(tx_id)


def test_retention_keeps_backups_of_committed_transactions(backup_dir, temp_dir, test_file):
    """Eviction never removes a backup a committed transaction still needs."""
    from filetx.backup import BackupStore

    store = BackupStore(backup_dir, max_retained=1)
    manager = TransactionManager(store)

    tx_id = manager.begin()
    manager.add_operation(tx_id, FileOperation.update(test_file, "A"))
    manager.add_operation(tx_id, FileOperation.update(test_file, "B"))
    manager.commit(tx_id)

    manager.rollback(tx_id)
    assert test_file.read_text() == "Original content"


def test_retention_evicts_backups_of_finished_transactions(backup_dir, test_file):
    """Backups that nothing references any more are evicted, oldest first."""
    from filetx.backup import BackupStore

    store = BackupStore(backup_dir, max_retained=2)
    manager = TransactionManager(store)

    for i in range(4):
        tx_id = manager.begin()
        manager.add_operation(tx_id, FileOperation.update(test_file, f"v{i}"))
        manager.commit(tx_id)
        manager.rollback(tx_id)

    tx_id = manager.begin()
    manager.add_operation(tx_id, FileOperation.update(test_file, "last"))
    manager.commit(tx_id)

    backups = store.list_backups(test_file)
    assert len(backups) == 3  # two retained plus the one still protected
    assert all(Path(b.backup_path).exists() for b in backups)


def test_list_transactions(manager):
    first = manager.begin()
    second = manager.begin()

    ids = [t.id for t in manager.list_transactions()]
    assert ids == [first, second]


def test_retention_respects_externally_protected_backups(backup_dir, test_file):
    """Backups reported by the protected_backups hook are never evicted."""
    from filetx.backup import BackupStore

    store = BackupStore(backup_dir, max_retained=1)
    kept = []
    manager = TransactionManager(store, protected_backups=lambda: kept)

    for i in range(3):
        tx_id = manager.begin()
        manager.add_operation(tx_id, FileOperation.update(test_file, f"v{i}"))
        committed = manager.commit(tx_id)
        if i == 0:
            kept.append(committed.operations[0].backup_path)
        manager.rollback(tx_id)

    remaining = {b.backup_path for b in store.list_backups(test_file)}
    assert kept[0] in remaining
    assert kept[0].read_text() == "Original content"
