import logging
from pathlib import Path
from typing import Iterable, Union

from hookreel.errors import CleanupError

logger = logging.getLogger(__name__)


def remove_file(path: Union[str, Path]) -> bool:
    """
    Delete a single temporary file. Returns True when the file is gone afterwards.
    Failures are logged as CleanupError and never raised.
    """
    path = Path(path)
    try:
        if path.exists():
            path.unlink()
            logger.debug(f"Cleaned up file: {path}")
        return True
    except OSError as e:
        err = CleanupError(f"Could not remove {path}: {e}")
        logger.warning(str(err))
        return False


def cleanup_files(paths: Iterable[Union[str, Path]]) -> int:
    """Best-effort removal of every path. Returns how many could not be removed."""
    failures = 0
    for path in paths:
        if not remove_file(path):
            failures += 1
    return failures
