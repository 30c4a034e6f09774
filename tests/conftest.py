"""
Shared pytest fixtures for autobackup tests.

This module provides fixtures for:
- Source directories with incompressible content
- BackupConfig instances rooted in tmp_path
- YAML configuration files
- A recording fake for the mail relay
- Sample archives
"""

import os
import tarfile
import logging

import pytest
import yaml

from autobackup.config import BackupConfig
from autobackup.backup.notify import MailSender


class RecordingMailSender(MailSender):
    """Mail relay fake that keeps every message it is given."""

    def __init__(self, error=None):
        self.messages = []
        self.error = error

    def send(self, message):
        if self.error is not None:
            raise self.error
        self.messages.append(message)


@pytest.fixture(autouse=True)
def autobackup_log_level():
    """Let INFO and SUCCESS records through regardless of test order."""
    logger = logging.getLogger('autobackup')
    previous = logger.level
    logger.setLevel(logging.INFO)
    yield
    logger.setLevel(previous)


@pytest.fixture
def source_dirs(tmp_path):
    """
    Create two non-empty source directories.

    Random content keeps the compressed archive well above the
    minimum-size threshold.
    """
    sources = []
    for name in ('a', 'b'):
        source = tmp_path / 'sources' / name
        (source / 'nested').mkdir(parents=True)
        (source / f'{name}_data.bin').write_bytes(os.urandom(4096))
        (source / 'nested' / f'{name}_notes.txt').write_text(f'notes for {name}\n')
        sources.append(str(source))
    return sources


@pytest.fixture
def make_config(tmp_path, source_dirs):
    """
    Factory for BackupConfig with every path inside tmp_path.

    Usage:
        config = make_config(retention_days=7)
    """
    def _make(**overrides):
        values = {
            'sources': tuple(source_dirs),
            'destination_root': str(tmp_path / 'dst'),
            'retention_days': 7,
            'log_dir': str(tmp_path / 'logs'),
            'log_file': 'backup.log',
            'lock_path': str(tmp_path / 'run' / 'autobackup.lock'),
        }
        values.update(overrides)
        if isinstance(values['sources'], list):
            values['sources'] = tuple(values['sources'])
        return BackupConfig(**values)

    return _make


@pytest.fixture
def backup_config(make_config):
    return make_config()


@pytest.fixture
def config_file(tmp_path, source_dirs):
    """
    Write a YAML configuration file and return a writer for variants.

    Usage:
        path = config_file()                      # defaults
        path = config_file(retention_days='x')    # override a key
        path = config_file(drop=['sources'])      # remove a key
    """
    def _write(drop=(), **overrides):
        data = {
            'sources': list(source_dirs),
            'destination_root': str(tmp_path / 'dst'),
            'retention_days': 7,
            'log_dir': str(tmp_path / 'logs'),
            'lock_path': str(tmp_path / 'run' / 'autobackup.lock'),
        }
        data.update(overrides)
        for key in drop:
            data.pop(key, None)
        path = tmp_path / 'config.yaml'
        path.write_text(yaml.safe_dump(data))
        return str(path)

    return _write


@pytest.fixture
def mail_sender():
    return RecordingMailSender()


@pytest.fixture
def failing_mail_sender():
    from autobackup.errors import NotifyWarning
    return RecordingMailSender(error=NotifyWarning("'sendmail' command not found. Cannot send email notification."))


@pytest.fixture
def sample_archive(tmp_path):
    """
    Create a valid tar.gz archive comfortably above 1024 bytes.
    """
    test_dir = tmp_path / 'test_data'
    test_dir.mkdir()
    (test_dir / 'file1.bin').write_bytes(os.urandom(4096))
    (test_dir / 'file2.txt').write_text('Content 2')

    archive_path = tmp_path / 'test_archive.tar.gz'
    with tarfile.open(archive_path, 'w:gz') as tar:
        tar.add(test_dir, arcname='test_data')

    return archive_path
