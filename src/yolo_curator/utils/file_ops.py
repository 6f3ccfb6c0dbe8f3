"""
File primitives used by staging and deletion.

`move_file` never overwrites: an existing destination is an error, so a
restore can't silently clobber a file that reappeared in the dataset.
"""

import logging
import shutil
from pathlib import Path

from ..core.exceptions import FileOperationError

logger = logging.getLogger(__name__)


def move_file(src, dest) -> Path:
    """Move `src` to `dest` (rename, or copy + remove across drives)."""
    src, dest = Path(src), Path(dest)
    if not src.exists():
        raise FileOperationError(f"Source file does not exist: {src}", src)
    if dest.exists():
        raise FileOperationError(f"Destination already exists: {dest}", dest)

    logger.debug("Moving %s -> %s", src, dest)
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(src), str(dest))
    except OSError as e:
        # A failed cross-device copy can leave a partial destination behind.
        if src.exists() and dest.exists():
            try:
                dest.unlink()
            except OSError:
                logger.error(f"Could not clean up partial copy {dest}")
        raise FileOperationError(f"Failed to move {src} to {dest}: {e}", src) from e
    return dest


def remove_file(path, missing_ok: bool = True) -> bool:
    """Delete a file. Returns True if something was removed."""
    path = Path(path)
    try:
        path.unlink()
    except FileNotFoundError:
        if missing_ok:
            return False
        raise FileOperationError(f"File does not exist: {path}", path)
    except OSError as e:
        raise FileOperationError(f"Failed to remove {path}: {e}", path) from e
    return True
