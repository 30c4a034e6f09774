"""Command line interface implemented with click."""

import signal
import logging

import click
import yaml

from autobackup import __version__, configure_logging, attach_log_file, detach_log_file
from autobackup.config import load_config
from autobackup.errors import BackupError, ConfigMissing, ConfigInvalid, ArchiveInvalid
from autobackup.lock import LockGuard
from autobackup.backup.executor import execute_backup
from autobackup.backup.verify import verify_archive
from autobackup.backup.retention import RetentionSweeper
from autobackup import scheduler as scheduler_module


logger = logging.getLogger(__name__)


def _exit_on_signal(signum, frame):
    # SystemExit unwinds through the executor's finally blocks,
    # so the lock is released and the failure report still goes out
    raise SystemExit(128 + signum)


def install_signal_handlers():
    for signum in (signal.SIGTERM, signal.SIGHUP):
        signal.signal(signum, _exit_on_signal)


def _load(ctx):
    try:
        return load_config(ctx.obj['config_path'])
    except (ConfigMissing, ConfigInvalid) as e:
        logger.critical(f"{e}. Exiting.")
        ctx.exit(e.exit_code)


@click.group()
@click.option('--config', 'config_path', type=click.Path(dir_okay=False), envvar='AUTOBACKUP_CONFIG',
              help='Configuration file (default: /etc/autobackup/config.yaml).')
@click.option('-v', '--verbose', is_flag=True, help='Log debug messages.')
@click.version_option(version=__version__, prog_name='autobackup')
@click.pass_context
def cli(ctx, config_path, verbose):
    """Scheduled tarball backups with locking, verification and retention."""
    configure_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path


@cli.command()
@click.pass_context
def run(ctx):
    """Run one backup now."""
    config = _load(ctx)
    install_signal_handlers()

    result = execute_backup(config)
    if result.succeeded:
        click.echo(result.archive_path)
    ctx.exit(result.exit_code)


@cli.command('check-config')
@click.pass_context
def check_config(ctx):
    """Validate the configuration and print the effective settings."""
    config = _load(ctx)
    click.echo(yaml.safe_dump(config.to_dict(), sort_keys=False), nl=False)


@cli.command()
@click.argument('archive', type=click.Path(dir_okay=False))
@click.option('--min-size', type=int, default=None,
              help='Minimum size in bytes (default: min_archive_size_bytes, or 1024).')
@click.pass_context
def verify(ctx, archive, min_size):
    """Check an existing archive's size and integrity."""
    if min_size is None:
        min_size = 1024
        if ctx.obj['config_path']:
            min_size = _load(ctx).min_archive_size_bytes

    try:
        size = verify_archive(archive, min_size)
    except ArchiveInvalid as e:
        click.echo(f"INVALID: {e}", err=True)
        ctx.exit(e.exit_code)

    click.echo(f"OK: {archive} ({size} bytes)")


@cli.command()
@click.pass_context
def prune(ctx):
    """Remove backups older than the retention window, without backing up."""
    config = _load(ctx)
    install_signal_handlers()

    try:
        with LockGuard(config.lock_path):
            handler = attach_log_file(config.log_path, config.max_log_size_bytes)
            try:
                sweeper = RetentionSweeper(config.destination_root, config.retention_days)
                result = sweeper.sweep(protect=(config.log_dir,))
            finally:
                detach_log_file(handler)
    except BackupError as e:
        logger.error(f"{e}. Exiting.")
        ctx.exit(e.exit_code)

    for path in result.removed:
        click.echo(f"removed {path}")


@cli.command()
@click.option('--cron', default=None, help="Crontab expression overriding the 'schedule' setting.")
@click.pass_context
def schedule(ctx, cron):
    """Run backups forever on a crontab schedule."""
    config = _load(ctx)
    expression = cron or config.schedule
    if not expression:
        logger.critical("No schedule configured; set 'schedule' or pass --cron. Exiting.")
        ctx.exit(ConfigInvalid.exit_code)

    try:
        scheduler_module.init_scheduler(expression, ctx.obj['config_path'])
    except ConfigInvalid as e:
        logger.critical(f"{e}. Exiting.")
        ctx.exit(e.exit_code)

    install_signal_handlers()
    try:
        scheduler_module.start_scheduler()
    except (KeyboardInterrupt, SystemExit):
        pass
    finally:
        scheduler_module.stop_scheduler()


def main():  # pragma: no cover
    cli(obj={})
