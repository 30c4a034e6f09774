"""
Retention policy enforcement for backups.

Removes backup directories under the destination root once they are
older than the configured retention window. Cleanup is advisory: a
directory that cannot be removed is logged and skipped.
"""

import os
import shutil
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Iterable, Optional

from autobackup.errors import SweepWarning


logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = '%Y%m%d%H%M%S'


@dataclass
class SweepResult:
    removed: List[str] = field(default_factory=list)
    kept: List[str] = field(default_factory=list)
    warnings: List[SweepWarning] = field(default_factory=list)
    skipped: bool = False


def parse_backup_timestamp(name: str) -> Optional[datetime]:
    """Return the run time encoded in a backup directory name, if any."""
    if len(name) != len('YYYYMMDDHHMMSS') or not name.isdigit():
        return None
    try:
        return datetime.strptime(name, TIMESTAMP_FORMAT)
    except ValueError:
        return None


class RetentionSweeper:
    """
    Deletes backup directories older than retention_days.

    A directory's age comes from the timestamp in its name when the name
    is a YYYYMMDDHHMMSS run stamp, and from its mtime otherwise.
    """

    def __init__(self, destination_root: str, retention_days: int):
        """
        Args:
            destination_root: Directory holding one subdirectory per run
            retention_days: Maximum age in days; 0 disables the sweep
        """
        self.destination_root = Path(destination_root)
        self.retention_days = retention_days

    def backup_age(self, directory: Path, now: datetime) -> timedelta:
        stamp = parse_backup_timestamp(directory.name)
        if stamp is None:
            stamp = datetime.fromtimestamp(directory.stat().st_mtime)
        return now - stamp

    def sweep(self, now: Optional[datetime] = None, protect: Iterable[str] = ()) -> SweepResult:
        """
        Remove every backup directory whose age strictly exceeds the window.

        Args:
            now: Reference time (defaults to the current local time)
            protect: Paths that are never removed (the current run's
                directory, the log directory)

        Returns:
            SweepResult with removed/kept paths and per-directory warnings
        """
        result = SweepResult()

        if self.retention_days <= 0:
            logger.info("Retention disabled (retention_days = 0), skipping cleanup.")
            result.skipped = True
            return result

        if not self.destination_root.is_dir():
            logger.warning(f"Destination root {self.destination_root} does not exist, nothing to clean up.")
            return result

        now = now or datetime.now()
        window = timedelta(days=self.retention_days)
        protected = {os.path.realpath(p) for p in protect}

        logger.info(
            f"Cleaning up backups older than {self.retention_days} days "
            f"in {self.destination_root}."
        )

        try:
            entries = sorted(self.destination_root.iterdir())
        except OSError as e:
            warning = SweepWarning(str(self.destination_root), str(e))
            logger.warning(str(warning))
            result.warnings.append(warning)
            return result

        for entry in entries:
            if entry.is_symlink() or not entry.is_dir():
                continue
            if os.path.realpath(entry) in protected:
                result.kept.append(str(entry))
                continue

            try:
                age = self.backup_age(entry, now)
            except OSError as e:
                warning = SweepWarning(str(entry), str(e))
                logger.warning(str(warning))
                result.warnings.append(warning)
                continue

            if age <= window:
                result.kept.append(str(entry))
                continue

            try:
                shutil.rmtree(entry)
                result.removed.append(str(entry))
                logger.info(f"Deleted old backup: {entry} (age {age.days} days)")
            except OSError as e:
                warning = SweepWarning(str(entry), str(e))
                logger.warning(str(warning))
                result.warnings.append(warning)

        if result.warnings:
            logger.warning(
                f"Cleanup finished with {len(result.warnings)} problem(s). "
                f"Please check permissions and paths."
            )
        else:
            logger.info(f"Cleanup of old backups complete ({len(result.removed)} removed).")

        return result
