# filetx/rollback.py
"""
Compensating actions for reversible side effects.

This module replays RollbackAction records. It is used by the transaction
manager to undo file operations and by any other layer (undo/redo history,
workflow execution) that needs to reverse something it did:
- restore_file: copy a known backup back over a file
- delete_file: remove a file that was created (already-absent is fine)
- run_command: run an external undo command

The set of kinds is closed. A new kind gets a new RollbackType member and a
new branch in execute_action.
"""
import shutil
import subprocess
import threading
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, TypeAdapter

from filetx.constants import JOURNAL_REF_SUFFIX
from filetx.errors import (
    InvalidRollbackActionError,
    RollbackFailed,
    ValidationError,
)
from filetx.models import RollbackAction, RollbackResult, RollbackType
from filetx.paths import PathResolver
from filetx.utils.logging import get_logger

logger = get_logger(__name__)


def _require(action: RollbackAction, field: str) -> Any:
    value = action.data.get(field)
    if value is None or (isinstance(value, str) and not value):
        raise InvalidRollbackActionError(
            f"Missing {field} in {action.action_type.value} action",
            field=field,
            action_type=action.action_type.value,
        )
    return value


def _resolve(action: RollbackAction, field: str) -> Path:
    raw = _require(action, field)
    try:
        return PathResolver.resolve(raw, field=field)
    except ValidationError as e:
        raise InvalidRollbackActionError(
            f"Invalid {field} in {action.action_type.value} action: {e}",
            field=field,
            action_type=action.action_type.value,
        ) from e


def restore_file(action: RollbackAction, step_id: str = "") -> RollbackResult:
    """Copy the backup named in ``action`` back over its file."""
    file_path = _resolve(action, "file_path")
    backup_path = _resolve(action, "backup_path")
    logger.debug(f"Restoring {file_path} from backup {backup_path}")

    if not backup_path.is_file():
        raise RollbackFailed(
            f"Backup file not found: {backup_path}",
            path=file_path,
        )

    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(backup_path, file_path)
    except OSError as e:
        raise RollbackFailed(
            f"Failed to restore file {file_path} from backup: {e}",
            path=file_path,
            cause=e,
        ) from e

    logger.info(f"Restored {file_path} from backup {backup_path}")
    return RollbackResult(
        step_id=step_id,
        action_type=RollbackType.RESTORE_FILE,
        message=f"Restored {file_path} from backup",
    )


def delete_file(action: RollbackAction, step_id: str = "") -> RollbackResult:
    """Remove the file named in ``action``; an absent file counts as done."""
    file_path = _resolve(action, "file_path")

    if not file_path.exists() and not file_path.is_symlink():
        logger.warning(f"File to delete does not exist, skipping: {file_path}")
        return RollbackResult(
            step_id=step_id,
            action_type=RollbackType.DELETE_FILE,
            message=f"File {file_path} already deleted",
            no_op=True,
        )

    try:
        file_path.unlink()
    except OSError as e:
        raise RollbackFailed(
            f"Failed to delete file {file_path}: {e}",
            path=file_path,
            cause=e,
        ) from e

    logger.info(f"Deleted {file_path}")
    return RollbackResult(
        step_id=step_id,
        action_type=RollbackType.DELETE_FILE,
        message=f"Deleted {file_path}",
    )


def run_command(action: RollbackAction, step_id: str = "") -> RollbackResult:
    """Run the undo command in ``action`` and wait for it to finish."""
    command = str(_require(action, "command"))
    args = action.data.get("args") or []
    if not isinstance(args, (list, tuple)):
        raise InvalidRollbackActionError(
            f"args in {action.action_type.value} action must be a list",
            field="args",
            action_type=action.action_type.value,
        )
    args = [str(a) for a in args]
    cwd = action.data.get("cwd")
    if cwd is not None:
        cwd = _resolve(action, "cwd")

    logger.info(f"Running undo command: {command} {' '.join(args)}".rstrip())
    try:
        completed = subprocess.run(
            [command, *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as e:
        raise RollbackFailed(
            f"Failed to execute undo command {command}: {e}",
            cause=e,
            command=command,
        ) from e

    if completed.returncode != 0:
        stderr = (completed.stderr or "").strip()
        raise RollbackFailed(
            f"Undo command {command} failed with exit code {completed.returncode}: {stderr}",
            command=command,
            exit_code=completed.returncode,
            stderr=stderr,
        )

    logger.info(f"Undo command executed successfully: {command}")
    return RollbackResult(
        step_id=step_id,
        action_type=RollbackType.RUN_COMMAND,
        message=f"Executed undo command: {command}",
    )


def execute_action(action: RollbackAction, step_id: str = "") -> RollbackResult:
    """
    Replay one compensating action.

    Args:
        action: The action to execute.
        step_id: Identifier of the step the action undoes, echoed in the result.

    Returns:
        The result of the handler.

    Raises:
        RollbackFailed: If the action could not be carried out. Missing or
            invalid parameters raise InvalidRollbackActionError, which is
            also a ValidationError.
    """
    if action.action_type == RollbackType.RESTORE_FILE:
        return restore_file(action, step_id)
    elif action.action_type == RollbackType.DELETE_FILE:
        return delete_file(action, step_id)
    elif action.action_type == RollbackType.RUN_COMMAND:
        return run_command(action, step_id)
    raise InvalidRollbackActionError(
        f"Unsupported rollback action type: {action.action_type}",
        field="action_type",
        action_type=str(action.action_type),
    )


class JournalEntry(BaseModel):
    """A tracked compensating action and the step it undoes."""
    step_id: str
    action: RollbackAction


_entries_adapter = TypeAdapter(List[JournalEntry])


class RollbackJournal:
    """
    Ordered log of compensating actions for executed steps.

    Steps are undone last-in first-out. Entries are dropped once they have
    been replayed, so a rollback interrupted by a failure can be retried and
    resumes with the step that failed.
    """

    def __init__(self, entries: Optional[Sequence[Tuple[str, RollbackAction]]] = None):
        self._entries: List[JournalEntry] = [
            JournalEntry(step_id=step_id, action=action) for step_id, action in (entries or [])
        ]
        self._in_progress = False
        self._lock = threading.Lock()

    def track_action(self, step_id: str, action: RollbackAction) -> None:
        """Remember how to undo ``step_id``."""
        logger.debug(f"Tracking rollback action for step {step_id}: {action.action_type.value}")
        with self._lock:
            self._entries.append(JournalEntry(step_id=step_id, action=action))

    @property
    def entries(self) -> List[Tuple[str, RollbackAction]]:
        with self._lock:
            return [(e.step_id, e.action) for e in self._entries]

    @property
    def action_count(self) -> int:
        return len(self._entries)

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    def execute_rollback(self) -> List[RollbackResult]:
        """
        Undo every tracked step, most recent first.

        Raises:
            RollbackFailed: On the first failing action; the entries not yet
                undone (including the failing one) stay in the journal.
        """
        return self._replay(None)

    def execute_partial_rollback(self, step_ids: Sequence[str]) -> List[RollbackResult]:
        """Undo only the given steps, most recent first."""
        return self._replay(set(step_ids))

    def _replay(self, only: Optional[set]) -> List[RollbackResult]:
        with self._lock:
            pending = [e for e in reversed(self._entries) if only is None or e.step_id in only]
            if not pending:
                logger.info("No rollback actions to execute")
                return []

            logger.info(f"Starting rollback of {len(pending)} action(s)")
            self._in_progress = True
            results: List[RollbackResult] = []
            try:
                for entry in pending:
                    try:
                        results.append(execute_action(entry.action, entry.step_id))
                    except RollbackFailed as e:
                        logger.error(f"Rollback failed for step {entry.step_id}: {e}")
                        raise RollbackFailed(
                            f"Rollback failed for step {entry.step_id}: {e}",
                            path=e.path,
                            cause=e,
                            command=e.command,
                            exit_code=e.exit_code,
                            stderr=e.stderr,
                        ) from e
                    self._entries.remove(entry)
            finally:
                self._in_progress = False

        logger.info(f"Rollback completed: {len(results)} action(s) replayed")
        return results

    def verify_completeness(self) -> bool:
        """True when no rollback is running and nothing is left to undo."""
        if self._in_progress:
            logger.warning("Rollback verification requested while rollback is in progress")
            return False
        return not self._entries

    def backup_paths(self) -> List[str]:
        """Backups the tracked restore actions will copy from."""
        with self._lock:
            return [
                str(e.action.data["backup_path"])
                for e in self._entries
                if e.action.action_type == RollbackType.RESTORE_FILE and e.action.data.get("backup_path")
            ]

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
        logger.debug("Cleared all tracked rollback actions")

    def save(self, path: Union[str, Path]) -> Path:
        """Write the journal as JSON."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            path.write_bytes(_entries_adapter.dump_json(self._entries, indent=2))
        logger.debug(f"Saved rollback journal with {len(self._entries)} action(s) to {path}")
        return path

    @classmethod
    def load(cls, path: Union[str, Path]) -> "RollbackJournal":
        """Read a journal written by save()."""
        entries = _entries_adapter.validate_json(Path(path).read_bytes())
        journal = cls()
        journal._entries = entries
        return journal


def register_journal(journal_dir: Union[str, Path], journal_path: Union[str, Path], name: str) -> Optional[Path]:
    """
    Make a journal saved outside ``journal_dir`` visible to journaled_backups().

    A ``<name>.ref`` file holding the journal's location is written to
    ``journal_dir``. Journals saved inside ``journal_dir`` need no reference.

    Returns:
        The reference file, or None if none was needed.
    """
    journal_dir = Path(journal_dir)
    journal_path = PathResolver.resolve(journal_path)
    if journal_path.parent == PathResolver.resolve(journal_dir):
        return None
    ref_file = journal_dir / f"{name}{JOURNAL_REF_SUFFIX}"
    journal_dir.mkdir(parents=True, exist_ok=True)
    ref_file.write_text(str(journal_path), encoding="utf-8")
    logger.debug(f"Registered undo journal {journal_path} in {ref_file}")
    return ref_file


def journaled_backups(journal_dir: Union[str, Path]) -> List[str]:
    """
    Backup paths that saved undo journals will restore from.

    Looks at every ``*.json`` journal in ``journal_dir`` and every journal
    named by a ``*.ref`` file there. References to journals that no longer
    exist (already undone) are removed.
    """
    journal_dir = Path(journal_dir)
    if not journal_dir.is_dir():
        return []

    journal_files = sorted(journal_dir.glob("*.json"))
    for ref_file in sorted(journal_dir.glob(f"*{JOURNAL_REF_SUFFIX}")):
        try:
            target = Path(ref_file.read_text(encoding="utf-8").strip())
        except OSError as e:
            logger.warning(f"Skipping unreadable journal reference {ref_file}: {e}")
            continue
        if target.is_file():
            journal_files.append(target)
        else:
            logger.debug(f"Removing stale journal reference {ref_file}")
            ref_file.unlink(missing_ok=True)

    protected: List[str] = []
    for journal_file in journal_files:
        try:
            protected.extend(RollbackJournal.load(journal_file).backup_paths())
        except (OSError, ValueError) as e:
            logger.warning(f"Skipping unreadable undo journal {journal_file}: {e}")
    return protected
