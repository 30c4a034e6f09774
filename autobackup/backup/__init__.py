"""
Backup module for autobackup.

This module handles the core backup pipeline including:
- Source validation
- Archive creation
- Archive verification
- Retention policy enforcement
- Email status reports
- Execution orchestration
"""

from .executor import BackupExecutor, BackupRun, RunState, execute_backup
from .sources import validate_sources
from .compression import TarfileArchiver, TarCommandArchiver, create_archiver
from .verify import StreamIntegrityChecker, verify_archive
from .retention import RetentionSweeper
from .notify import Notifier

__all__ = [
    'BackupExecutor',
    'BackupRun',
    'RunState',
    'execute_backup',
    'validate_sources',
    'TarfileArchiver',
    'TarCommandArchiver',
    'create_archiver',
    'StreamIntegrityChecker',
    'verify_archive',
    'RetentionSweeper',
    'Notifier'
]
