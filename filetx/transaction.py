# filetx/transaction.py
"""
Transactions over ordered batches of file operations.

A transaction collects create/update/delete operations, applies them in
order on commit (backing up every file it is about to overwrite or remove)
and can later be rolled back by replaying those backups in reverse order.
A commit that fails part-way undoes whatever it already applied before
reporting the error.

Nothing here locks paths. Callers that may touch the same files from several
transactions at once must serialize that work themselves.
"""
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set

from filetx.backup import BackupStore
from filetx.constants import DEFAULT_BACKUP_DIR
from filetx.errors import (
    ApplyFailed,
    BackupFailed,
    CompensationFailedError,
    FileTxError,
    InvalidStateError,
    RollbackFailed,
    TransactionNotFoundError,
    ValidationError,
)
from filetx.models import (
    FileOperation,
    FileTransaction,
    OperationType,
    RollbackAction,
    TransactionStatus,
    compute_checksum,
    content_bytes,
)
from filetx.paths import PathResolver
from filetx.rollback import execute_action
from filetx.utils.logging import get_logger

logger = get_logger(__name__)


class TransactionManager:
    """Owns a registry of file transactions and their lifecycle."""

    def __init__(
        self,
        backup_store: Optional[BackupStore] = None,
        base_dir: Optional[Path] = None,
        protected_backups: Optional[Callable[[], Iterable[str]]] = None,
    ):
        """
        Initialize the transaction manager.

        Args:
            backup_store: Where backups are kept. Defaults to a store in the
                system temp directory.
            base_dir: Directory relative operation paths are resolved against.
                Defaults to the working directory at the time of the call.
            protected_backups: Called before retention runs; returns backup
                paths that something outside this manager (such as a saved
                undo journal) still needs and that must not be evicted.
        """
        self.backup_store = backup_store or BackupStore(DEFAULT_BACKUP_DIR)
        self.base_dir = Path(base_dir) if base_dir else None
        self.protected_backups = protected_backups
        self._transactions: Dict[str, FileTransaction] = {}
        self._lock = threading.RLock()

    def _get(self, tx_id: str) -> FileTransaction:
        transaction = self._transactions.get(tx_id)
        if transaction is None:
            raise TransactionNotFoundError(tx_id)
        return transaction

    def begin(self) -> str:
        """
        Start a new, empty transaction.

        Returns:
            Transaction ID
        """
        transaction = FileTransaction()
        with self._lock:
            self._transactions[transaction.id] = transaction
        logger.info(f"Started transaction {transaction.id}")
        return transaction.id

    def add_operation(self, tx_id: str, op: FileOperation) -> None:
        """
        Append an operation to a pending transaction.

        The operation's path is resolved and a copy is stored, so later
        changes to ``op`` do not affect the transaction.

        Raises:
            TransactionNotFoundError: If ``tx_id`` is unknown.
            InvalidStateError: If the transaction is no longer pending.
            ValidationError: If the path is invalid.
        """
        with self._lock:
            transaction = self._get(tx_id)
            if transaction.status != TransactionStatus.PENDING:
                raise InvalidStateError(tx_id, transaction.status.value, "add_operation")

            resolved = PathResolver.resolve(op.path, base=self.base_dir)
            transaction.operations.append(
                op.model_copy(update={"path": resolved, "backup_path": None}, deep=True)
            )
        logger.debug(f"Added {op.operation.value} {resolved} to transaction {tx_id}")

    def status(self, tx_id: str) -> TransactionStatus:
        with self._lock:
            return self._get(tx_id).status

    def get(self, tx_id: str) -> FileTransaction:
        """Return a snapshot of the transaction and its operations."""
        with self._lock:
            return self._get(tx_id).model_copy(deep=True)

    def list_transactions(self) -> List[FileTransaction]:
        with self._lock:
            transactions = [t.model_copy(deep=True) for t in self._transactions.values()]
        return sorted(transactions, key=lambda t: t.created_at)

    def commit(self, tx_id: str) -> FileTransaction:
        """
        Apply every operation of a pending transaction in order.

        Returns:
            A snapshot of the committed transaction, with the backup path of
            every overwritten or removed file filled in.

        Raises:
            ValidationError: An operation is malformed; nothing was touched.
            BackupFailed, ApplyFailed: A step failed and the changes already
                made were undone.
            CompensationFailedError: A step failed and undoing the changes
                already made failed as well.
        """
        with self._lock:
            transaction = self._get(tx_id)
            if transaction.status != TransactionStatus.PENDING:
                raise InvalidStateError(tx_id, transaction.status.value, "commit")

            try:
                self._validate(transaction)
            except ValidationError:
                self._finish(transaction, TransactionStatus.ROLLED_BACK)
                raise

            logger.info(f"Committing transaction {tx_id} with {len(transaction.operations)} operation(s)")
            applied: List[FileOperation] = []
            for op in transaction.operations:
                try:
                    self._apply(op, applied)
                except (FileTxError, OSError) as e:
                    error = e if isinstance(e, FileTxError) else ApplyFailed(op.path, e)
                    logger.error(f"Transaction {tx_id} failed at {op.path}: {error}")
                    self._finish(transaction, TransactionStatus.ROLLED_BACK)
                    failures = self._compensate(applied)
                    if failures:
                        raise CompensationFailedError(error, failures) from e
                    logger.info(f"Undid {len(applied)} applied operation(s) of transaction {tx_id}")
                    if error is e:
                        raise
                    raise error from e

            self._finish(transaction, TransactionStatus.COMMITTED)
            self._enforce_retention(transaction)
            logger.info(f"Committed transaction {tx_id}")
            return transaction.model_copy(deep=True)

    def rollback(self, tx_id: str) -> FileTransaction:
        """
        Restore the disk state from before a committed transaction.

        Operations are undone in reverse order, so a file written several
        times ends up with its pre-transaction content.

        Raises:
            InvalidStateError: If the transaction is not committed.
            RollbackFailed: If a file could not be restored or removed. The
                transaction stays committed and the call may be retried.
        """
        with self._lock:
            transaction = self._get(tx_id)
            if transaction.status != TransactionStatus.COMMITTED:
                raise InvalidStateError(tx_id, transaction.status.value, "rollback")

            logger.info(f"Rolling back transaction {tx_id}")
            for op in reversed(transaction.operations):
                execute_action(self._compensating_action(op), step_id=tx_id)

            self._finish(transaction, TransactionStatus.ROLLED_BACK)
            logger.info(f"Rolled back transaction {tx_id}")
            return transaction.model_copy(deep=True)

    def rollback_actions(self, tx_id: str) -> List[RollbackAction]:
        """
        Express the rollback of a committed transaction as actions.

        The actions are in replay order and can be stored in an undo history
        and executed later with filetx.rollback.execute_action.
        """
        with self._lock:
            transaction = self._get(tx_id)
            if transaction.status != TransactionStatus.COMMITTED:
                raise InvalidStateError(tx_id, transaction.status.value, "rollback_actions")
            return [self._compensating_action(op) for op in reversed(transaction.operations)]

    def _validate(self, transaction: FileTransaction) -> None:
        for op in transaction.operations:
            if not op.writes_content:
                continue
            if op.content is None:
                raise ValidationError(
                    f"{op.operation.value} of {op.path} requires content",
                    path=op.path,
                    field="content",
                )
            if op.checksum and compute_checksum(op.content) != op.checksum.lower():
                raise ValidationError(
                    f"Checksum mismatch for {op.path}",
                    path=op.path,
                    field="checksum",
                )

    def _apply(self, op: FileOperation, applied: List[FileOperation]) -> None:
        """Back up and apply one operation, recording it in ``applied`` once it has touched disk."""
        path = op.path
        existed = path.exists()

        if existed:
            record = self.backup_store.create_backup(path)
            if record is not None:
                op.backup_path = record.backup_path

        if op.operation == OperationType.DELETE:
            if not existed:
                logger.warning(f"File to delete does not exist, skipping: {path}")
                return
            try:
                path.unlink()
            except OSError as e:
                raise ApplyFailed(path, e) from e
            applied.append(op)
            logger.info(f"Deleted {path}")
            return

        # From here on the file may be partially written, so it must be undone
        applied.append(op)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content_bytes(op.content))
        except OSError as e:
            if not existed and not path.exists():
                applied.pop()
            raise ApplyFailed(path, e) from e
        logger.info(f"{'Updated' if existed else 'Created'} {path}")

    def _compensating_action(self, op: FileOperation) -> RollbackAction:
        if op.backup_path is not None:
            return RollbackAction.restore_file(op.path, op.backup_path)
        return RollbackAction.delete_file(op.path)

    def _compensate(self, applied: List[FileOperation]) -> List[FileTxError]:
        """Undo ``applied`` in reverse order, continuing past failures."""
        failures: List[FileTxError] = []
        for op in reversed(applied):
            try:
                execute_action(self._compensating_action(op))
            except RollbackFailed as e:
                logger.error(f"Could not undo change to {op.path}: {e}")
                failures.append(e)
        return failures

    def _finish(self, transaction: FileTransaction, status: TransactionStatus) -> None:
        transaction.status = status
        transaction.completed_at = datetime.now()

    def _protected_backups(self) -> Set[str]:
        protected = {
            str(op.backup_path)
            for t in self._transactions.values()
            if t.status == TransactionStatus.COMMITTED
            for op in t.operations
            if op.backup_path is not None
        }
        if self.protected_backups is not None:
            protected.update(str(p) for p in self.protected_backups())
        return protected

    def _enforce_retention(self, transaction: FileTransaction) -> None:
        protected = self._protected_backups()
        for path in {op.path for op in transaction.operations}:
            try:
                self.backup_store.enforce_retention(path, protected)
            except (OSError, BackupFailed) as e:
                logger.warning(f"Could not enforce backup retention for {path}: {e}")
