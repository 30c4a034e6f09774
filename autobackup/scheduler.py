"""
APScheduler configuration for running backups on a crontab schedule.

Used by `autobackup schedule` as a long-running alternative to a
system cron entry. Each tick reloads the configuration file and runs one
backup; the run lock still keeps an external invocation from overlapping.
"""

import logging

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from autobackup.config import load_config
from autobackup.errors import ConfigMissing, ConfigInvalid
from autobackup.backup.executor import execute_backup


logger = logging.getLogger(__name__)

BACKUP_JOB_ID = 'scheduled_backup'

# Global scheduler instance
scheduler = None


def init_scheduler(schedule: str, config_path: str = None):
    """
    Initialize and configure APScheduler.

    Args:
        schedule: Five-field crontab expression, e.g. '0 2 * * *'
        config_path: Configuration file reloaded on every run

    Raises:
        ConfigInvalid: If schedule is not a valid crontab expression
    """
    global scheduler

    if scheduler is not None:
        return scheduler

    try:
        trigger = CronTrigger.from_crontab(schedule)
    except ValueError as e:
        raise ConfigInvalid(f"schedule '{schedule}' is not a valid crontab expression: {e}")

    job_defaults = {
        'coalesce': True,  # Combine multiple pending runs into one
        'max_instances': 1,  # Only one run at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BlockingScheduler(job_defaults=job_defaults)

    scheduler.add_job(
        func=_execute_backup_wrapper,
        args=[config_path],
        trigger=trigger,
        id=BACKUP_JOB_ID,
        name=f"Backup ({schedule})",
        replace_existing=True
    )

    logger.info(f"Scheduled backup with crontab '{schedule}'")
    return scheduler


def start_scheduler():
    """
    Start the scheduler. Blocks until stop_scheduler() or a signal.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    logger.info("Scheduler starting; press Ctrl+C to stop")
    scheduler.start()


def stop_scheduler():
    """Stop the scheduler."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    scheduler = None


def _execute_backup_wrapper(config_path: str = None):
    """
    Run one backup from the scheduler thread.

    A broken configuration skips this tick instead of killing the daemon,
    so fixing the file is enough to recover.
    """
    try:
        config = load_config(config_path)
    except (ConfigMissing, ConfigInvalid) as e:
        logger.error(f"Scheduled backup skipped: {e}")
        return None

    run = execute_backup(config)
    if run.succeeded:
        logger.info(f"Scheduled backup completed: {run.archive_path}")
    else:
        logger.error(f"Scheduled backup failed during '{run.failed_stage}' stage: {run.error}")
    return run
