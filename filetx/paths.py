# filetx/paths.py
"""
Path validation and resolution.

All paths handed to the transaction manager and the compensating-action
handlers go through PathResolver so that a home marker is expanded and empty
or NUL-containing input is rejected before it reaches the filesystem.
"""
import os
from pathlib import Path
from typing import Optional, Union

from filetx.errors import ValidationError
from filetx.utils.logging import get_logger

logger = get_logger(__name__)


class PathResolver:
    """Expands and validates paths."""

    @staticmethod
    def validate(path: Union[str, Path, None], field: str = "path") -> str:
        """
        Reject missing, empty or NUL-containing paths.

        Returns:
            The path as a string.
        """
        if path is None:
            raise ValidationError(f"{field} is required", field=field)

        raw = os.fspath(path)
        if not raw or not raw.strip():
            raise ValidationError(f"{field} cannot be empty", field=field)
        if "\0" in raw:
            raise ValidationError(f"{field} contains null bytes", path=raw.replace("\0", "\\0"), field=field)
        return raw

    @staticmethod
    def expand_home(path: Union[str, Path]) -> Path:
        """Expand a leading ``~`` to the user's home directory."""
        return Path(os.path.expanduser(os.fspath(path)))

    @classmethod
    def resolve(
        cls,
        path: Union[str, Path, None],
        base: Optional[Path] = None,
        field: str = "path",
    ) -> Path:
        """
        Validate a path, expand the home marker and make it absolute.

        Symlinks are not followed, so the returned path names the same
        directory entry the caller meant.

        Args:
            path: The path to resolve.
            base: Directory that relative paths are anchored to. Defaults to
                the current working directory.
            field: Name reported in validation errors.

        Returns:
            An absolute, normalized Path.
        """
        raw = cls.validate(path, field=field)
        expanded = cls.expand_home(raw)
        if not expanded.is_absolute():
            expanded = (Path(base) if base else Path.cwd()) / expanded
        resolved = Path(os.path.normpath(expanded))
        logger.debug(f"Resolved {field} '{raw}' to {resolved}")
        return resolved
