"""
Error taxonomy for backup runs.

Fatal errors derive from BackupError and carry the pipeline stage they
belong to plus the process exit code the CLI reports for them.
Warnings are recorded and logged but never change a run's outcome.
"""


class BackupError(Exception):
    """Base class for errors that abort a run."""

    stage = 'run'
    exit_code = 1


class ConfigMissing(BackupError):
    """Raised when the configuration file cannot be found."""

    stage = 'config'
    exit_code = 3

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Configuration file not found: {path}")


class ConfigInvalid(BackupError):
    """Raised when configuration is present but unusable."""

    stage = 'config'
    exit_code = 4

    def __init__(self, problems):
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__("Invalid configuration: " + '; '.join(self.problems))


class AlreadyRunning(BackupError):
    """Raised when another run holds the lock."""

    stage = 'lock'
    exit_code = 5

    def __init__(self, lock_path: str):
        self.lock_path = lock_path
        super().__init__(f"Another backup run holds the lock: {lock_path}")


class SourceMissing(BackupError):
    """Raised when a configured source is not a usable directory."""

    stage = 'validate'
    exit_code = 6

    def __init__(self, path: str, reason: str = 'does not exist'):
        self.path = path
        self.reason = reason
        super().__init__(f"Source directory '{path}' {reason}")


class InsufficientPrivileges(BackupError):
    """Raised when root is required but the process is unprivileged."""

    stage = 'validate'
    exit_code = 6


class ArchiveCreationFailed(BackupError):
    """Raised when the archive step fails."""

    stage = 'archive'
    exit_code = 7

    def __init__(self, message: str, returncode=None):
        self.returncode = returncode
        super().__init__(message)


class ArchiveInvalid(BackupError):
    """Raised when a created archive fails verification."""

    stage = 'verify'
    exit_code = 8

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Archive {path} is invalid: {reason}")


class SweepWarning(Exception):
    """Part of the retention sweep could not be completed."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Could not clean up {path}: {reason}")


class NotifyWarning(Exception):
    """A notification could not be delivered."""
