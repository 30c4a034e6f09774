"""
Backup executor - orchestrates one complete backup run.

Workflow:
1. Acquire the run lock (abort if another run holds it)
2. Attach the log file, rotating it once if oversized
3. Validate source directories
4. Create a timestamped destination directory and the archive in it
5. Verify the archive
6. Sweep backups past the retention window
7. Send the status email (success or failure)
8. Release the lock
"""

import os
import time
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Callable

from autobackup import SUCCESS, attach_log_file, detach_log_file
from autobackup.config import BackupConfig
from autobackup.errors import BackupError, ArchiveCreationFailed, SweepWarning
from autobackup.lock import LockGuard
from .notify import Notifier, MailSender
from .sources import validate_sources, check_privileges
from .compression import Archiver, create_archiver, render_archive_name, format_size
from .verify import IntegrityChecker, StreamIntegrityChecker, verify_archive
from .retention import RetentionSweeper, SweepResult, TIMESTAMP_FORMAT


logger = logging.getLogger(__name__)


class RunState(Enum):
    START = 'start'
    CONFIG_LOADED = 'config_loaded'
    LOCKED = 'locked'
    VALIDATED = 'validated'
    ARCHIVED = 'archived'
    VERIFIED = 'verified'
    SWEPT = 'swept'
    DONE = 'done'
    FAILED = 'failed'


# Stage names used in failure reports, keyed by the last state reached
NEXT_STAGE = {
    RunState.CONFIG_LOADED: 'lock',
    RunState.LOCKED: 'validate',
    RunState.VALIDATED: 'archive',
    RunState.ARCHIVED: 'verify',
    RunState.VERIFIED: 'sweep',
    RunState.SWEPT: 'finish',
}


@dataclass
class BackupRun:
    """Outcome of one execution. Lives only as long as the process."""

    started_at: datetime
    timestamp: str
    state: RunState = RunState.CONFIG_LOADED
    backup_dir: Optional[str] = None
    archive_path: Optional[str] = None
    archive_size: Optional[int] = None
    duration: float = 0.0
    failed_stage: Optional[str] = None
    error: Optional[str] = None
    exit_code: int = 0
    sweep: Optional[SweepResult] = None

    @property
    def succeeded(self) -> bool:
        return self.state == RunState.DONE

    def fail(self, stage: str, error: Exception, exit_code: int):
        self.state = RunState.FAILED
        self.failed_stage = stage
        self.error = str(error)
        self.exit_code = exit_code


class BackupExecutor:
    """
    Runs the backup pipeline for one configuration.

    The archiver, integrity checker and mail sender are injectable so the
    pipeline can run against fakes.
    """

    def __init__(self, config: BackupConfig, archiver: Archiver = None,
                 checker: IntegrityChecker = None, mail_sender: MailSender = None,
                 clock: Callable[[], datetime] = None):
        """
        Args:
            config: Settings for this run
            archiver: Archive creator (default from config.archiver)
            checker: Integrity checker (default StreamIntegrityChecker)
            mail_sender: Mail relay (default from config.mail_transport)
            clock: Returns the current local time
        """
        self.config = config
        self.archiver = archiver or create_archiver(config.archiver)
        self.checker = checker or StreamIntegrityChecker()
        self.notifier = Notifier(config, mail_sender)
        self.clock = clock or datetime.now
        self.run = None

    def execute(self) -> BackupRun:
        """
        Execute one backup run.

        Never raises for pipeline failures; the returned BackupRun carries
        the outcome and the exit code.
        """
        started = self.clock()
        self.run = BackupRun(started_at=started, timestamp=started.strftime(TIMESTAMP_FORMAT))
        start_time = time.monotonic()

        lock = LockGuard(self.config.lock_path)
        log_handler = None

        try:
            lock.acquire()
            self.run.state = RunState.LOCKED

            log_handler = attach_log_file(self.config.log_path, self.config.max_log_size_bytes)
            logger.info("================== Backup Started ==================")

            self._execute_workflow()

            self.run.state = RunState.DONE

        except BackupError as e:
            self._record_failure(e.stage, e, e.exit_code)

        except Exception as e:
            stage = NEXT_STAGE.get(self.run.state, 'run')
            logger.exception(f"Unexpected error during '{stage}' stage")
            self._record_failure(stage, e, 1)

        finally:
            self.run.duration = time.monotonic() - start_time
            if self.run.state not in (RunState.DONE, RunState.FAILED):
                # Interrupted (SystemExit from a signal, KeyboardInterrupt)
                stage = NEXT_STAGE.get(self.run.state, 'run')
                self._record_failure(stage, RuntimeError("run was interrupted"), 1)
            try:
                self._finish()
            finally:
                detach_log_file(log_handler)
                lock.release()

        return self.run

    def _execute_workflow(self):
        """Validate, archive, verify and sweep."""
        config = self.config
        run = self.run

        # Step 1: Validate sources
        check_privileges(config.require_root)
        validate_sources(config.sources)
        run.state = RunState.VALIDATED

        # Step 2: Create destination directory and archive
        run.backup_dir = os.path.join(config.destination_root, run.timestamp)
        archive_name = render_archive_name(config.filename_template, run.started_at)
        run.archive_path = os.path.join(run.backup_dir, archive_name)
        self._create_backup_dir(run.backup_dir)

        logger.info(f"Starting archive creation for sources: {' '.join(config.sources)}")
        logger.info(f"Archive will be saved to: {run.archive_path}")
        self.archiver.create(config.sources, run.archive_path, config.exclude_patterns)
        logger.log(SUCCESS, "Backup archive created successfully.")
        run.state = RunState.ARCHIVED

        # Step 3: Verify
        logger.info("Verifying archive integrity...")
        run.archive_size = verify_archive(run.archive_path, config.min_archive_size_bytes, self.checker)
        logger.log(SUCCESS, f"Archive integrity check passed ({format_size(run.archive_size)}).")
        run.state = RunState.VERIFIED

        # Step 4: Retention, only after a verified backup
        sweeper = RetentionSweeper(config.destination_root, config.retention_days)
        try:
            run.sweep = sweeper.sweep(
                now=run.started_at,
                protect=(run.backup_dir, config.log_dir)
            )
        except OSError as e:
            # Cleanup never changes the outcome of a verified backup
            warning = SweepWarning(config.destination_root, str(e))
            logger.warning(str(warning))
            run.sweep = SweepResult(warnings=[warning])
        run.state = RunState.SWEPT

    def _create_backup_dir(self, backup_dir: str):
        try:
            os.makedirs(self.config.destination_root, exist_ok=True)
            os.mkdir(backup_dir)
        except FileExistsError:
            raise ArchiveCreationFailed(f"Backup directory already exists: {backup_dir}")
        except OSError as e:
            raise ArchiveCreationFailed(f"Failed to create backup destination directory {backup_dir}: {e}")
        logger.info(f"Backup destination created: {backup_dir}")

    def _record_failure(self, stage: str, error: Exception, exit_code: int):
        self.run.fail(stage, error, exit_code)
        logger.error(f"Backup failed during '{stage}' stage: {error}")
        if self.run.backup_dir and os.path.isdir(self.run.backup_dir) and stage in ('archive', 'verify'):
            logger.error(f"Partial output left for inspection in {self.run.backup_dir}")

    def _finish(self):
        """Log the outcome and send the report. Runs on every exit path."""
        run = self.run

        if run.succeeded:
            size = format_size(run.archive_size or 0)
            logger.log(
                SUCCESS,
                f"Backup completed in {run.duration:.1f} seconds. "
                f"Archive: {run.archive_path} ({size})."
            )

        self.notifier.notify(run)

        logger.info("Backup script finished.")


def execute_backup(config: BackupConfig, **kwargs) -> BackupRun:
    """
    Run one backup for config.

    Returns:
        BackupRun with the outcome
    """
    executor = BackupExecutor(config, **kwargs)
    return executor.execute()
