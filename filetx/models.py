# filetx/models.py
"""
Records shared by the transaction manager, the backup store and the
compensating-action executor.
"""
import hashlib
import uuid
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from filetx.paths import PathResolver

Content = Union[str, bytes]


def compute_checksum(content: Content) -> str:
    """SHA-256 hex digest of the content as it will be written to disk."""
    return hashlib.sha256(content_bytes(content)).hexdigest()


def content_bytes(content: Content) -> bytes:
    """Encode text content as UTF-8; bytes pass through unchanged."""
    if isinstance(content, bytes):
        return content
    return content.encode("utf-8")


class TransactionStatus(str, Enum):
    """Lifecycle of a transaction."""
    PENDING = "pending"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class OperationType(str, Enum):
    """Kind of file mutation."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class FileOperation(BaseModel):
    """One file mutation belonging to a transaction.

    The constructors only validate ``path``; relative paths and ``~`` are
    resolved by TransactionManager.add_operation against its base directory.
    """

    path: Path
    operation: OperationType
    content: Optional[Content] = None
    backup_path: Optional[Path] = None
    checksum: Optional[str] = None

    @field_validator("path", mode="before")
    @classmethod
    def _reject_invalid_path(cls, value: Any) -> Any:
        if isinstance(value, (str, Path)):
            PathResolver.validate(value)
        return value

    @classmethod
    def create(cls, path: Union[str, Path], content: Content, checksum: Optional[str] = None) -> "FileOperation":
        return cls(path=path, operation=OperationType.CREATE, content=content, checksum=checksum)

    @classmethod
    def update(cls, path: Union[str, Path], content: Content, checksum: Optional[str] = None) -> "FileOperation":
        return cls(path=path, operation=OperationType.UPDATE, content=content, checksum=checksum)

    @classmethod
    def delete(cls, path: Union[str, Path]) -> "FileOperation":
        return cls(path=path, operation=OperationType.DELETE)

    @property
    def writes_content(self) -> bool:
        return self.operation in (OperationType.CREATE, OperationType.UPDATE)


class FileTransaction(BaseModel):
    """An ordered batch of file operations with a single-use lifecycle."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    status: TransactionStatus = TransactionStatus.PENDING
    operations: List[FileOperation] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None


class BackupRecord(BaseModel):
    """Association between an original path and its preserved bytes."""

    backup_id: str
    original_path: Path
    backup_path: Path
    created_at: datetime
    size: int
    checksum: str


class RollbackType(str, Enum):
    """The closed set of compensating-action kinds."""
    RESTORE_FILE = "restore_file"
    DELETE_FILE = "delete_file"
    RUN_COMMAND = "run_command"


class RollbackAction(BaseModel):
    """
    How to reverse one side effect.

    ``data`` carries the parameters the kind needs:

    - restore_file: ``file_path``, ``backup_path``
    - delete_file: ``file_path``
    - run_command: ``command``, optional ``args`` (list) and ``cwd``
    """

    model_config = ConfigDict(frozen=True)

    action_type: RollbackType
    data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def restore_file(cls, file_path: Union[str, Path], backup_path: Union[str, Path]) -> "RollbackAction":
        return cls(
            action_type=RollbackType.RESTORE_FILE,
            data={"file_path": str(file_path), "backup_path": str(backup_path)},
        )

    @classmethod
    def delete_file(cls, file_path: Union[str, Path]) -> "RollbackAction":
        return cls(action_type=RollbackType.DELETE_FILE, data={"file_path": str(file_path)})

    @classmethod
    def run_command(
        cls,
        command: str,
        args: Optional[List[str]] = None,
        cwd: Optional[Union[str, Path]] = None,
    ) -> "RollbackAction":
        data: Dict[str, Any] = {"command": command, "args": list(args or [])}
        if cwd is not None:
            data["cwd"] = str(cwd)
        return cls(action_type=RollbackType.RUN_COMMAND, data=data)


class RollbackResult(BaseModel):
    """Outcome of one compensating action.

    ``no_op`` is set when there was nothing to undo (for example a file that
    was already deleted), so callers can tell it apart from real work.
    """

    step_id: str = ""
    action_type: RollbackType
    success: bool = True
    message: str
    no_op: bool = False
