"""
Progress log handling.

progress.txt is the oracle's notebook: it appends what it learned, and the
controller feeds the whole file back into the next prompt without reading
meaning into it.
"""

import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

PROGRESS_SKELETON = """# Progress Log

## Codebase Patterns
(The agent will document patterns discovered here)

## Session Log
(The agent will log progress here)
"""


def archive_progress(progress_file: Path, archive_dir: Path,
                     now: Optional[datetime] = None) -> Optional[Path]:
    """Copy an existing progress file to archive_dir with a timestamp.

    Returns the archive path, or None if there was nothing to archive.
    """
    if not progress_file.exists():
        return None

    archive_dir.mkdir(parents=True, exist_ok=True)
    timestamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
    target = archive_dir / f"progress_{timestamp}.txt"
    shutil.copy2(progress_file, target)
    logger.debug(f"Archived {progress_file} to {target}")
    return target


def ensure_progress_file(progress_file: Path) -> bool:
    """Create the progress file with the standard skeleton if missing.

    Returns True if the file was created.
    """
    if progress_file.exists():
        return False
    progress_file.parent.mkdir(parents=True, exist_ok=True)
    progress_file.write_text(PROGRESS_SKELETON)
    return True


def read_progress(progress_file: Path) -> str:
    """Current progress log content, or "" if the file is gone."""
    try:
        return progress_file.read_text()
    except FileNotFoundError:
        return ""
