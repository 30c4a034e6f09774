"""
Source validation for backup runs.

Every configured source must be an existing, readable directory before
anything is archived. A backup silently missing one of the requested
sources is worse than no backup, so the first bad path aborts the run.
"""

import os
import logging
from fnmatch import fnmatch
from pathlib import Path
from typing import Iterable, List

from autobackup.errors import SourceMissing, InsufficientPrivileges


logger = logging.getLogger(__name__)


def validate_sources(paths: Iterable[str]) -> List[str]:
    """
    Confirm every source path is a usable directory.

    Args:
        paths: Configured source directories

    Returns:
        The validated paths, in order

    Raises:
        SourceMissing: On the first path that is absent, not a directory,
            a broken symlink, or not readable
    """
    validated = []

    for path in paths:
        source_path = Path(path)

        if source_path.is_symlink() and not source_path.exists():
            raise SourceMissing(path, 'is a broken symlink')

        if not source_path.exists():
            raise SourceMissing(path, 'does not exist')

        if not source_path.is_dir():
            raise SourceMissing(path, 'is not a directory')

        if not os.access(source_path, os.R_OK | os.X_OK):
            raise SourceMissing(path, 'is not readable (permission denied)')

        validated.append(str(path))

    logger.info("All source directories verified.")
    return validated


def check_privileges(require_root: bool):
    """
    Raises:
        InsufficientPrivileges: If root is required and we are not root
    """
    if require_root and os.geteuid() != 0:
        raise InsufficientPrivileges(
            "This backup requires root privileges to read its sources. "
            "Run it as root or with sudo."
        )


def should_exclude(path: str, patterns: Iterable[str]) -> bool:
    """
    Check if a path should be excluded based on exclude patterns.

    Args:
        path: Filesystem path to check
        patterns: Glob patterns (e.g. *.pyc, __pycache__, **/.cache)

    Returns:
        True if path matches any exclude pattern, False otherwise
    """
    if not patterns:
        return False

    name = os.path.basename(path.rstrip('/'))

    for pattern in patterns:
        # Match against full path or just the name
        if fnmatch(path, pattern) or fnmatch(name, pattern):
            return True
        if pattern.startswith('**/') and fnmatch(name, pattern[3:]):
            return True

    return False
