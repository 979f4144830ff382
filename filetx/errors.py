# filetx/errors.py
"""
Exception hierarchy for filetx.

Every error that involves a file carries the offending ``path``; errors that
wrap an OS or process failure keep it as ``cause``.
"""
from pathlib import Path
from typing import List, Optional, Sequence, Union

PathLike = Union[str, Path]


class FileTxError(Exception):
    """Base class for all filetx errors."""

    def __init__(
        self,
        message: str,
        path: Optional[PathLike] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.path = str(path) if path is not None else None
        self.cause = cause

    def __str__(self) -> str:
        return self.message


class ValidationError(FileTxError):
    """A path or action parameter is missing or invalid (a caller defect)."""

    def __init__(
        self,
        message: str,
        path: Optional[PathLike] = None,
        field: Optional[str] = None,
    ):
        super().__init__(message, path=path)
        self.field = field


class TransactionNotFoundError(FileTxError):
    """No transaction is registered under the given id."""

    def __init__(self, tx_id: str):
        super().__init__(f"Transaction not found: {tx_id}")
        self.tx_id = tx_id


class InvalidStateError(FileTxError):
    """An operation was attempted in a status that does not permit it."""

    def __init__(self, tx_id: str, current: str, attempted: str):
        super().__init__(
            f"Cannot {attempted} transaction {tx_id} in status '{current}'"
        )
        self.tx_id = tx_id
        self.current = current
        self.attempted = attempted


class BackupFailed(FileTxError):
    """A backup of ``path`` could not be created or restored."""

    def __init__(self, path: PathLike, cause: Optional[BaseException] = None, message: Optional[str] = None):
        super().__init__(
            message or f"Failed to back up {path}: {cause}",
            path=path,
            cause=cause,
        )


class ApplyFailed(FileTxError):
    """Applying a file operation to ``path`` failed."""

    def __init__(self, path: PathLike, cause: Optional[BaseException] = None, message: Optional[str] = None):
        super().__init__(
            message or f"Failed to apply change to {path}: {cause}",
            path=path,
            cause=cause,
        )


class RollbackFailed(FileTxError):
    """A compensating action for ``path`` or ``command`` failed."""

    def __init__(
        self,
        message: str,
        path: Optional[PathLike] = None,
        cause: Optional[BaseException] = None,
        command: Optional[str] = None,
        exit_code: Optional[int] = None,
        stderr: Optional[str] = None,
    ):
        super().__init__(message, path=path, cause=cause)
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr


class InvalidRollbackActionError(ValidationError, RollbackFailed):
    """A rollback action is missing a field its kind requires."""

    def __init__(self, message: str, field: str, action_type: str):
        FileTxError.__init__(self, message)
        self.field = field
        self.action_type = action_type
        self.command = None
        self.exit_code = None
        self.stderr = None


class CompensationFailedError(FileTxError):
    """
    A commit failed and undoing its partial work failed too.

    The filesystem may be in an indeterminate state; both the original error
    and every compensation failure are kept for manual repair.
    """

    def __init__(self, original: FileTxError, failures: Sequence[FileTxError]):
        self.original = original
        self.failures: List[FileTxError] = list(failures)
        details = "; ".join(str(f) for f in self.failures)
        super().__init__(
            f"{original} (automatic compensation also failed: {details})",
            path=original.path,
            cause=original,
        )
