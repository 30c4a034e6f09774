"""
Archive verification.

An archiver can exit cleanly and still leave a truncated or corrupt file
behind (disk full, interrupted write), so every new archive is checked
independently: it must be larger than a minimum size and decompress
cleanly from start to end.
"""

import os
import bz2
import gzip
import lzma
import zlib
import logging
import tarfile

from autobackup.config import compression_for
from autobackup.errors import ArchiveInvalid
from .compression import get_archive_size


logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class IntegrityChecker:
    """Checks that an archive is structurally intact."""

    def check(self, archive_path: str):
        """
        Raises:
            ArchiveInvalid: If the archive is damaged
        """
        raise NotImplementedError


class StreamIntegrityChecker(IntegrityChecker):
    """
    Decompresses the whole archive and walks its member table.

    Reading the compressed stream to EOF validates the trailer checksum
    the way `gzip -t` does; walking the tar headers catches a stream that
    decompresses but does not hold a tar archive.
    """

    openers = {
        'gz': gzip.open,
        'bz2': bz2.open,
        'xz': lzma.open,
    }

    def check(self, archive_path):
        compression = compression_for(archive_path)
        if compression is None:
            raise ArchiveInvalid(archive_path, "unknown archive extension")

        opener = self.openers.get(compression)
        if opener is not None:
            try:
                with opener(archive_path, 'rb') as stream:
                    while stream.read(CHUNK_SIZE):
                        pass
            except (OSError, EOFError, zlib.error, lzma.LZMAError) as e:
                raise ArchiveInvalid(archive_path, f"compression integrity check failed: {e}")

        try:
            with tarfile.open(archive_path, 'r:*') as tar:
                members = tar.getmembers()
        except (OSError, EOFError, zlib.error, tarfile.TarError) as e:
            raise ArchiveInvalid(archive_path, f"tar structure is damaged: {e}")

        if not members:
            raise ArchiveInvalid(archive_path, "archive holds no members")

        logger.debug(f"Integrity check passed for {archive_path} ({len(members)} members)")


def verify_archive(archive_path: str, min_size: int, checker: IntegrityChecker = None) -> int:
    """
    Verify a freshly created archive.

    Args:
        archive_path: Archive to check
        min_size: The archive must be strictly larger than this many bytes
        checker: Integrity checker (defaults to StreamIntegrityChecker)

    Returns:
        Archive size in bytes

    Raises:
        ArchiveInvalid: If the archive is missing, too small or damaged
    """
    checker = checker or StreamIntegrityChecker()

    if not os.path.isfile(archive_path):
        raise ArchiveInvalid(archive_path, "file does not exist")

    size = get_archive_size(archive_path)
    if size <= min_size:
        raise ArchiveInvalid(
            archive_path,
            f"size {size} bytes is not above the {min_size} byte minimum"
        )

    checker.check(archive_path)
    return size
