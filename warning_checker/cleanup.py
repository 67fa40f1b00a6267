"""
Retention module for the JMA Warning Checker.

- Moves cached bulletins of retired publishers to the deleted directory
- Daily removal of old retired files and soft-deleted database rows
"""

import logging
import shutil
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, Union

from .database import Database

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 30


class Cleanup:
    """File and record retention for cached bulletins."""

    def __init__(
        self,
        database: Database,
        data_dir: Union[str, Path],
        deleted_dir: Union[str, Path],
        retention_days: int = DEFAULT_RETENTION_DAYS
    ):
        self.database = database
        self.data_dir = Path(data_dir)
        self.deleted_dir = Path(deleted_dir)
        self.retention_days = retention_days

    def retire_documents(self, names: Iterable[str]) -> int:
        """Move cached bulletins into the deleted directory."""
        moved = 0
        for name in names:
            source = self.data_dir / name
            if not source.is_file():
                logger.debug(f"Cached bulletin already gone: {name}")
                continue
            try:
                self.deleted_dir.mkdir(parents=True, exist_ok=True)
                shutil.move(str(source), str(self.deleted_dir / name))
                moved += 1
            except OSError as e:
                logger.warning(f"Failed to move {source} to {self.deleted_dir}: {e}")

        if moved:
            logger.info(f"Moved {moved} bulletins to {self.deleted_dir}")
        return moved

    def run_cleanup(self) -> None:
        logger.info("Starting cleanup task...")
        self.cleanup_old_files()
        self.cleanup_old_records()
        logger.info("Cleanup task completed")

    def cleanup_old_files(self, now: datetime = None) -> int:
        if not self.deleted_dir.exists():
            logger.debug("Deleted directory does not exist, skipping file cleanup")
            return 0

        cutoff = (now or datetime.now()) - timedelta(days=self.retention_days)
        deleted_count = 0

        for path in self.deleted_dir.iterdir():
            if not path.is_file():
                continue
            if datetime.fromtimestamp(path.stat().st_mtime) < cutoff:
                path.unlink()
                deleted_count += 1
                logger.debug(f"Deleted old file: {path}")

        if deleted_count:
            logger.info(f"Deleted {deleted_count} old XML files")
        return deleted_count

    def cleanup_old_records(self) -> int:
        purged = self.database.purge_deleted(self.retention_days)
        logger.info(f"Deleted {purged} old database records")
        return purged
