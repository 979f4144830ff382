# filetx/backup.py
"""
Backup store for reversible file mutations.

Backups are plain copies of a file's bytes kept in a dedicated directory.
Names are derived from the original path plus a unique token and are opened
in exclusive-create mode, so concurrent backups never overwrite each other.
An index file in the backup directory keeps the association between each
backup and the path it preserves, which lets a later process list, restore
or prune backups made by an earlier one.
"""
import hashlib
import shutil
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from pydantic import TypeAdapter

from filetx.constants import (
    BACKUP_INDEX_FILE,
    BACKUP_SUFFIX,
    CORRUPT_INDEX_SUFFIX,
    DEFAULT_MAX_RETAINED_BACKUPS,
    PATH_DIGEST_LENGTH,
)
from filetx.errors import BackupFailed
from filetx.models import BackupRecord
from filetx.utils.logging import get_logger

logger = get_logger(__name__)

_records_adapter = TypeAdapter(List[BackupRecord])

_COPY_CHUNK_SIZE = 1024 * 1024


class BackupStore:
    """Creates, restores and evicts file backups in one directory."""

    def __init__(
        self,
        backup_dir: Union[str, Path],
        max_retained: int = DEFAULT_MAX_RETAINED_BACKUPS,
    ):
        """
        Initialize the backup store.

        The directory is only created when the first backup is written.

        Args:
            backup_dir: Directory holding backup files and the index.
            max_retained: Maximum number of backups kept per original path.
        """
        if max_retained < 1:
            raise ValueError(f"max_retained must be at least 1, got {max_retained}")
        self.backup_dir = Path(backup_dir)
        self.max_retained = max_retained
        self._lock = threading.RLock()
        self._records: Optional[Dict[str, BackupRecord]] = None

    @property
    def index_file(self) -> Path:
        return self.backup_dir / BACKUP_INDEX_FILE

    def _ensure_backup_dir(self) -> None:
        self.backup_dir.mkdir(parents=True, exist_ok=True)

    def _load_index(self) -> Dict[str, BackupRecord]:
        """Load the index on first use; keyed by backup path."""
        if self._records is not None:
            return self._records

        records: Dict[str, BackupRecord] = {}
        if self.index_file.exists():
            try:
                loaded = _records_adapter.validate_json(self.index_file.read_bytes())
                records = {str(r.backup_path): r for r in loaded}
            except OSError as e:
                logger.error(f"Error reading backup index {self.index_file}: {str(e)}")
            except ValueError as e:
                logger.error(f"Corrupt backup index {self.index_file}: {str(e)}")
                self._set_aside_corrupt_index()
        self._records = records
        return records

    def _set_aside_corrupt_index(self) -> None:
        """Keep an unreadable index for manual recovery instead of overwriting it."""
        corrupt_file = self.index_file.with_name(f"{BACKUP_INDEX_FILE}{CORRUPT_INDEX_SUFFIX}")
        try:
            self.index_file.replace(corrupt_file)
            logger.warning(f"Moved corrupt backup index to {corrupt_file}; starting a new index")
        except OSError as e:
            logger.error(f"Could not move corrupt backup index aside: {str(e)}")

    def _save_index(self) -> None:
        records = sorted(self._load_index().values(), key=lambda r: r.created_at)
        self._ensure_backup_dir()
        tmp_file = self.index_file.with_suffix(f".{uuid.uuid4().hex}.tmp")
        try:
            tmp_file.write_bytes(_records_adapter.dump_json(records, indent=2))
            tmp_file.replace(self.index_file)
        except OSError:
            tmp_file.unlink(missing_ok=True)
            raise

    def _backup_name(self, path: Path) -> str:
        digest = hashlib.sha256(str(path).encode("utf-8")).hexdigest()[:PATH_DIGEST_LENGTH]
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        return f"{path.name}.{digest}.{timestamp}.{uuid.uuid4().hex}{BACKUP_SUFFIX}"

    def create_backup(self, path: Union[str, Path]) -> Optional[BackupRecord]:
        """
        Create a backup of a file.

        Args:
            path: The file to back up.

        Returns:
            The backup record, or None if ``path`` does not exist (there is
            nothing to preserve).

        Raises:
            BackupFailed: If the file cannot be copied.
        """
        path = Path(path)
        if not path.exists():
            logger.debug(f"No backup needed, {path} does not exist")
            return None
        if not path.is_file():
            raise BackupFailed(path, message=f"Cannot back up {path}: not a regular file")

        backup_path = self.backup_dir / self._backup_name(path)
        created = False
        try:
            self._ensure_backup_dir()
            hasher = hashlib.sha256()
            size = 0
            # "xb" guarantees we never clobber another backup
            with open(path, "rb") as src, open(backup_path, "xb") as dst:
                created = True
                while True:
                    chunk = src.read(_COPY_CHUNK_SIZE)
                    if not chunk:
                        break
                    hasher.update(chunk)
                    size += len(chunk)
                    dst.write(chunk)
            shutil.copystat(path, backup_path)
        except OSError as e:
            if created:
                backup_path.unlink(missing_ok=True)
            raise BackupFailed(path, e) from e

        record = BackupRecord(
            backup_id=backup_path.name,
            original_path=path,
            backup_path=backup_path,
            created_at=datetime.now(),
            size=size,
            checksum=hasher.hexdigest(),
        )
        with self._lock:
            records = self._load_index()
            records[str(backup_path)] = record
            try:
                self._save_index()
            except OSError as e:
                # An unindexed backup could never be found again
                del records[str(backup_path)]
                backup_path.unlink(missing_ok=True)
                raise BackupFailed(path, e, message=f"Failed to record backup of {path}: {e}") from e

        logger.debug(f"Created backup of {path} at {backup_path}")
        return record

    def restore(self, backup_path: Union[str, Path], target_path: Union[str, Path]) -> None:
        """
        Copy a backup's bytes back onto ``target_path``.

        Raises:
            BackupFailed: If the backup is missing or cannot be copied.
        """
        backup_path = Path(backup_path)
        target_path = Path(target_path)
        if not backup_path.is_file():
            raise BackupFailed(
                target_path,
                message=f"Backup file not found for {target_path}: {backup_path}",
            )
        try:
            target_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(backup_path, target_path)
        except OSError as e:
            raise BackupFailed(target_path, e, message=f"Failed to restore {target_path} from {backup_path}: {e}") from e

        logger.info(f"Restored {target_path} from backup {backup_path}")

    def get(self, backup_path: Union[str, Path]) -> Optional[BackupRecord]:
        """Look up the record of a backup file."""
        with self._lock:
            return self._load_index().get(str(backup_path))

    def list_backups(self, path: Optional[Union[str, Path]] = None) -> List[BackupRecord]:
        """
        List backups, oldest first.

        Args:
            path: Only return backups of this original path.
        """
        with self._lock:
            records = list(self._load_index().values())
        if path is not None:
            records = [r for r in records if r.original_path == Path(path)]
        return sorted(records, key=lambda r: r.created_at)

    def remove(self, backup_path: Union[str, Path]) -> bool:
        """
        Delete a backup file and forget it.

        Returns:
            True if a backup was removed, False if it was unknown.
        """
        key = str(backup_path)
        with self._lock:
            records = self._load_index()
            if key not in records:
                return False
            Path(key).unlink(missing_ok=True)
            del records[key]
            self._save_index()
        logger.debug(f"Removed backup {key}")
        return True

    def enforce_retention(
        self,
        path: Union[str, Path],
        protected: Iterable[Union[str, Path]] = (),
    ) -> List[BackupRecord]:
        """
        Evict the oldest backups of ``path`` beyond ``max_retained``.

        Backups listed in ``protected`` are kept and do not count toward the
        limit, since something still needs them to undo a change.

        Returns:
            The evicted records.
        """
        keep = {str(p) for p in protected}
        with self._lock:
            candidates = [r for r in self.list_backups(path) if str(r.backup_path) not in keep]
            excess = len(candidates) - self.max_retained
            if excess <= 0:
                return []
            evicted = candidates[:excess]
            for record in evicted:
                self.remove(record.backup_path)

        logger.info(f"Evicted {len(evicted)} old backup(s) of {path}")
        return evicted

    def prune(
        self,
        max_retained: Optional[int] = None,
        protected: Iterable[Union[str, Path]] = (),
    ) -> List[BackupRecord]:
        """Apply the retention policy to every original path in the store."""
        if max_retained is not None:
            if max_retained < 1:
                raise ValueError(f"max_retained must be at least 1, got {max_retained}")
            self.max_retained = max_retained
        protected = list(protected)
        evicted: List[BackupRecord] = []
        with self._lock:
            for original in {r.original_path for r in self.list_backups()}:
                evicted.extend(self.enforce_retention(original, protected))
        return evicted

