"""
Unit tests for the command line interface (autobackup/cli.py).
"""

import os
import logging
from unittest.mock import patch

import pytest
import yaml
from click.testing import CliRunner

from autobackup import cli as cli_module
from autobackup.cli import cli
from autobackup.lock import LockGuard


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def drop_console_handlers():
    """Console handlers bound to CliRunner streams must not outlive the test."""
    yield
    logger = logging.getLogger('autobackup')
    for handler in list(logger.handlers):
        if getattr(handler, '_autobackup_console', False):
            logger.removeHandler(handler)


@pytest.fixture(autouse=True)
def no_signal_handlers():
    with patch('autobackup.cli.install_signal_handlers'):
        yield


class TestRunCommand:

    def test_successful_run(self, runner, config_file, tmp_path):
        result = runner.invoke(cli, ['--config', config_file(), 'run'])

        assert result.exit_code == 0
        archive_path = result.stdout.strip().splitlines()[-1]
        assert archive_path.startswith(str(tmp_path / 'dst'))
        assert os.path.isfile(archive_path)

    def test_config_from_environment(self, runner, config_file):
        result = runner.invoke(cli, ['run'], env={'AUTOBACKUP_CONFIG': config_file()})

        assert result.exit_code == 0

    def test_missing_config(self, runner, tmp_path):
        result = runner.invoke(cli, ['--config', str(tmp_path / 'absent.yaml'), 'run'])

        assert result.exit_code == 3
        assert not (tmp_path / 'dst').exists()

    def test_invalid_config(self, runner, config_file, tmp_path):
        result = runner.invoke(cli, ['--config', config_file(retention_days='soon'), 'run'])

        assert result.exit_code == 4
        assert not (tmp_path / 'dst').exists()

    def test_missing_source(self, runner, config_file, tmp_path):
        path = config_file(sources=[str(tmp_path / 'nowhere')])

        result = runner.invoke(cli, ['--config', path, 'run'])

        assert result.exit_code == 6

    def test_already_running(self, runner, config_file, tmp_path):
        path = config_file()

        with LockGuard(str(tmp_path / 'run' / 'autobackup.lock')):
            result = runner.invoke(cli, ['--config', path, 'run'])

        assert result.exit_code == 5
        assert not (tmp_path / 'dst').exists()


class TestCheckConfigCommand:

    def test_prints_effective_settings(self, runner, config_file):
        result = runner.invoke(cli, ['--config', config_file(smtp_password='hunter2'), 'check-config'])

        assert result.exit_code == 0
        settings = yaml.safe_load(result.stdout)
        assert settings['retention_days'] == 7
        assert settings['filename_template'] == 'backup-%Y%m%d%H%M%S.tar.gz'
        assert 'hunter2' not in result.stdout

    def test_reports_every_problem(self, runner, config_file, caplog):
        path = config_file(drop=['destination_root'], retention_days=-1)

        result = runner.invoke(cli, ['--config', path, 'check-config'])

        assert result.exit_code == 4
        assert 'destination_root' in caplog.text
        assert 'retention_days' in caplog.text


class TestVerifyCommand:

    def test_valid_archive(self, runner, sample_archive):
        result = runner.invoke(cli, ['verify', str(sample_archive)])

        assert result.exit_code == 0
        assert result.stdout.startswith('OK: ')

    def test_truncated_archive(self, runner, sample_archive, tmp_path):
        data = sample_archive.read_bytes()
        truncated = tmp_path / 'truncated.tar.gz'
        truncated.write_bytes(data[:len(data) // 2])

        result = runner.invoke(cli, ['verify', str(truncated), '--min-size', '10'])

        assert result.exit_code == 8
        assert 'INVALID' in result.stderr

    def test_min_size_from_config(self, runner, config_file, sample_archive):
        path = config_file(min_archive_size_bytes=sample_archive.stat().st_size)

        result = runner.invoke(cli, ['--config', path, 'verify', str(sample_archive)])

        assert result.exit_code == 8


class TestPruneCommand:

    def test_removes_expired_backups(self, runner, config_file, tmp_path):
        expired = tmp_path / 'dst' / '20000101000000'
        current = tmp_path / 'dst' / '29991231000000'
        expired.mkdir(parents=True)
        current.mkdir()

        result = runner.invoke(cli, ['--config', config_file(), 'prune'])

        assert result.exit_code == 0
        assert f"removed {expired}" in result.stdout
        assert not expired.exists()
        assert current.exists()

    def test_respects_lock(self, runner, config_file, tmp_path):
        expired = tmp_path / 'dst' / '20000101000000'
        expired.mkdir(parents=True)
        path = config_file()

        with LockGuard(str(tmp_path / 'run' / 'autobackup.lock')):
            result = runner.invoke(cli, ['--config', path, 'prune'])

        assert result.exit_code == 5
        assert expired.exists()


class TestScheduleCommand:

    def test_no_schedule_configured(self, runner, config_file):
        result = runner.invoke(cli, ['--config', config_file(), 'schedule'])

        assert result.exit_code == 4

    def test_invalid_cron(self, runner, config_file):
        result = runner.invoke(cli, ['--config', config_file(), 'schedule', '--cron', 'nightly'])

        assert result.exit_code == 4
        assert cli_module.scheduler_module.scheduler is None

    @patch('autobackup.scheduler.BlockingScheduler')
    def test_starts_and_stops_scheduler(self, mock_scheduler_class, runner, config_file):
        mock_scheduler = mock_scheduler_class.return_value
        mock_scheduler.start.side_effect = KeyboardInterrupt
        mock_scheduler.running = True
        path = config_file(schedule='0 2 * * *')

        result = runner.invoke(cli, ['--config', path, 'schedule'])

        assert result.exit_code == 0
        mock_scheduler.start.assert_called_once()
        mock_scheduler.shutdown.assert_called_once_with(wait=False)
        assert cli_module.scheduler_module.scheduler is None


def test_version(runner):
    result = runner.invoke(cli, ['--version'])

    assert result.exit_code == 0
    assert '1.0.0' in result.stdout
