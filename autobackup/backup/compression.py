"""
Archive creation for backup runs.

Two interchangeable archivers produce a single compressed tarball:
- TarfileArchiver: in-process, using the tarfile module
- TarCommandArchiver: shells out to GNU tar

Supported formats follow the archive file name:
- .tar.gz / .tgz: Gzip compressed tar
- .tar.bz2: Bzip2 compressed tar
- .tar.xz: LZMA compressed tar
- .tar: No compression
"""

import os
import logging
import tarfile
import subprocess
from datetime import datetime
from typing import List, Sequence

from autobackup.config import compression_for
from autobackup.errors import ArchiveCreationFailed
from .sources import should_exclude


logger = logging.getLogger(__name__)


class Archiver:
    """Creates one archive containing every source directory."""

    name = 'archiver'

    def create(self, source_paths: Sequence[str], archive_path: str,
               exclude_patterns: Sequence[str] = ()) -> str:
        """
        Args:
            source_paths: Validated source directories
            archive_path: Full path of the archive to write
            exclude_patterns: Glob patterns to leave out

        Returns:
            archive_path

        Raises:
            ArchiveCreationFailed: If the archive cannot be written
        """
        raise NotImplementedError


class TarfileArchiver(Archiver):
    """
    Writes the archive with the tarfile module.

    Members keep their absolute source path (tar drops the leading '/'),
    so `tar -C / -xf ARCHIVE` restores everything in place.
    """

    name = 'tarfile'

    def create(self, source_paths, archive_path, exclude_patterns=()):
        if not source_paths:
            raise ArchiveCreationFailed("No source paths provided")

        compression = compression_for(archive_path)
        if compression is None:
            raise ArchiveCreationFailed(f"Unsupported archive extension: {archive_path}")

        mode = f'w:{compression}' if compression else 'w'

        def exclude_filter(tarinfo):
            if should_exclude('/' + tarinfo.name, exclude_patterns):
                logger.debug(f"Excluded from archive: /{tarinfo.name}")
                return None
            return tarinfo

        try:
            with tarfile.open(archive_path, mode) as tar:
                for source_path in source_paths:
                    arcname = os.path.abspath(source_path)
                    tar.add(source_path, arcname=arcname, recursive=True, filter=exclude_filter)
        except (OSError, tarfile.TarError) as e:
            raise ArchiveCreationFailed(f"Failed to create archive {archive_path}: {e}")

        return archive_path


class TarCommandArchiver(Archiver):
    """Runs `tar --absolute-names -c` and checks its exit status."""

    name = 'tar'

    compression_flags = {
        'gz': '-z',
        'bz2': '-j',
        'xz': '-J',
        '': None,
    }

    def __init__(self, tar_binary: str = 'tar'):
        self.tar_binary = tar_binary

    def build_command(self, source_paths, archive_path, exclude_patterns=()) -> List[str]:
        compression = compression_for(archive_path)
        if compression is None:
            raise ArchiveCreationFailed(f"Unsupported archive extension: {archive_path}")

        command = [self.tar_binary, '--absolute-names', '-c', '-p']
        flag = self.compression_flags[compression]
        if flag:
            command.append(flag)
        command.extend(['-f', archive_path])
        command.extend(f'--exclude={pattern}' for pattern in exclude_patterns)
        command.append('--')
        command.extend(source_paths)
        return command

    def create(self, source_paths, archive_path, exclude_patterns=()):
        if not source_paths:
            raise ArchiveCreationFailed("No source paths provided")

        command = self.build_command(source_paths, archive_path, exclude_patterns)
        logger.debug(f"Running: {' '.join(command)}")

        try:
            result = subprocess.run(command, capture_output=True, text=True)
        except OSError as e:
            raise ArchiveCreationFailed(f"Cannot run {self.tar_binary}: {e}")

        if result.returncode != 0:
            stderr = (result.stderr or '').strip()
            raise ArchiveCreationFailed(
                f"{self.tar_binary} exited with code {result.returncode}: {stderr}",
                returncode=result.returncode
            )

        return archive_path


ARCHIVERS = {
    'tarfile': TarfileArchiver,
    'tar': TarCommandArchiver,
}


def create_archiver(name: str = 'tarfile') -> Archiver:
    """
    Raises:
        ValueError: If name is not a known archiver
    """
    if name not in ARCHIVERS:
        raise ValueError(
            f"Invalid archiver: {name}. "
            f"Valid options: {list(ARCHIVERS.keys())}"
        )
    return ARCHIVERS[name]()


def render_archive_name(template: str, when: datetime) -> str:
    """
    Expand strftime placeholders in the archive filename template.

    Example: 'backup-%Y%m%d%H%M%S.tar.gz' -> 'backup-20240115020000.tar.gz'
    """
    return when.strftime(template)


def get_archive_size(archive_path: str) -> int:
    """
    Get the size of an archive file in bytes.

    Raises:
        FileNotFoundError: If the archive does not exist
    """
    return os.path.getsize(archive_path)


def format_size(size_bytes: int) -> str:
    """Human readable size, e.g. 1536 -> '1.50 KB'."""
    size = float(size_bytes)
    for unit in ('B', 'KB', 'MB', 'GB'):
        if size < 1024:
            return f"{size:.0f} B" if unit == 'B' else f"{size:.2f} {unit}"
        size /= 1024
    return f"{size:.2f} TB"
