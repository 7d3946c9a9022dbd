"""
Atomic file writes.

Content goes to a uniquely named temp file in the target's directory and
is then renamed over the target, so readers see either the old or the new
file and a crash mid-write leaves the old file intact.
"""

import logging
import os
import tempfile
import time
from pathlib import Path

logger = logging.getLogger(__name__)

REPLACE_RETRIES = 5
REPLACE_BACKOFF = 0.05  # seconds, doubled after each attempt


def atomic_write_text(path: Path, content: str) -> None:
    """Write content to path atomically, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    tmp_path = Path(tmp_name)

    try:
        with open(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        replace_with_backoff(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise


def replace_with_backoff(src: Path, dst: Path, retries: int = REPLACE_RETRIES,
                         backoff: float = REPLACE_BACKOFF) -> None:
    """
    os.replace src over dst, retrying transient PermissionError.

    Some platforms refuse the rename while another process holds the
    target open. Retries sleep with exponential backoff.
    """
    delay = backoff
    for attempt in range(1, retries + 1):
        try:
            os.replace(src, dst)
            return
        except PermissionError:
            if attempt == retries:
                raise
            logger.debug(f"Rename onto {dst} refused (attempt {attempt}/{retries}), retrying in {delay:.2f}s")
            time.sleep(delay)
            delay *= 2
