# filetx/__init__.py
"""
filetx: reversible multi-file transactions and compensating actions.

An agent's multi-file edit is applied as one transaction that can be undone
later; any other side effect can be described as a RollbackAction and
replayed through the same compensating-action handlers.
"""

from filetx.constants import APP_VERSION

__version__ = APP_VERSION

from filetx.backup import BackupStore
from filetx.errors import (
    ApplyFailed,
    BackupFailed,
    CompensationFailedError,
    FileTxError,
    InvalidRollbackActionError,
    InvalidStateError,
    RollbackFailed,
    TransactionNotFoundError,
    ValidationError,
)
from filetx.models import (
    BackupRecord,
    FileOperation,
    FileTransaction,
    OperationType,
    RollbackAction,
    RollbackResult,
    RollbackType,
    TransactionStatus,
    compute_checksum,
)
from filetx.paths import PathResolver
from filetx.rollback import RollbackJournal, execute_action
from filetx.transaction import TransactionManager

__all__ = [
    "ApplyFailed",
    "BackupFailed",
    "BackupRecord",
    "BackupStore",
    "CompensationFailedError",
    "FileOperation",
    "FileTransaction",
    "FileTxError",
    "InvalidRollbackActionError",
    "InvalidStateError",
    "OperationType",
    "PathResolver",
    "RollbackAction",
    "RollbackFailed",
    "RollbackJournal",
    "RollbackResult",
    "RollbackType",
    "TransactionManager",
    "TransactionNotFoundError",
    "TransactionStatus",
    "ValidationError",
    "compute_checksum",
    "execute_action",
]
