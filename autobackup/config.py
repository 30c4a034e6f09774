import os
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Optional, Tuple, Dict, Any, List

import yaml

from autobackup.errors import ConfigMissing, ConfigInvalid


DEFAULT_CONFIG_PATH = '/etc/autobackup/config.yaml'

ARCHIVE_EXTENSIONS = {
    '.tar.gz': 'gz',
    '.tgz': 'gz',
    '.tar.bz2': 'bz2',
    '.tar.xz': 'xz',
    '.tar': '',
}

ARCHIVERS = ('tarfile', 'tar')
MAIL_TRANSPORTS = ('sendmail', 'smtp')


@dataclass(frozen=True)
class BackupConfig:
    """Settings for one backup run. Built once, never mutated."""

    sources: Tuple[str, ...]
    destination_root: str
    retention_days: int = 30
    filename_template: str = 'backup-%Y%m%d%H%M%S.tar.gz'
    log_dir: str = '/var/log/autobackup'
    log_file: str = 'backup.log'
    max_log_size_kb: int = 1024
    lock_path: str = '/var/run/autobackup.lock'
    notify_enabled: bool = False
    notify_recipient: Optional[str] = None

    exclude_patterns: Tuple[str, ...] = ()
    min_archive_size_bytes: int = 1024
    archiver: str = 'tarfile'
    require_root: bool = False
    schedule: Optional[str] = None

    # Mail relay
    mail_transport: str = 'sendmail'
    sendmail_command: Tuple[str, ...] = ('sendmail', '-t', '-oi')
    notify_sender: Optional[str] = None
    smtp_host: str = 'localhost'
    smtp_port: int = 25
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = field(default=None, repr=False)
    smtp_starttls: bool = False

    @property
    def log_path(self) -> str:
        return os.path.join(self.log_dir, self.log_file)

    @property
    def max_log_size_bytes(self) -> int:
        return self.max_log_size_kb * 1024

    @property
    def notifications_active(self) -> bool:
        return self.notify_enabled and bool(self.notify_recipient)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if data['smtp_password']:
            data['smtp_password'] = '********'
        for key in ('sources', 'exclude_patterns', 'sendmail_command'):
            data[key] = list(data[key])
        return data


REQUIRED_KEYS = ('sources', 'destination_root')
KNOWN_KEYS = tuple(BackupConfig.__dataclass_fields__)


def load_config(path: Optional[str] = None) -> BackupConfig:
    """
    Load and validate configuration from a YAML file.

    Args:
        path: Config file location. Defaults to $AUTOBACKUP_CONFIG or
            /etc/autobackup/config.yaml

    Returns:
        Fully populated BackupConfig

    Raises:
        ConfigMissing: If the file does not exist
        ConfigInvalid: If the file cannot be parsed or any value is bad
    """
    path = path or os.environ.get('AUTOBACKUP_CONFIG') or DEFAULT_CONFIG_PATH

    if not os.path.isfile(path):
        raise ConfigMissing(path)

    try:
        # PyYAML decodes bytes itself and raises ReaderError on bad encodings
        with open(path, 'rb') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigInvalid(f"Cannot parse {path}: {e}")
    except OSError as e:
        raise ConfigInvalid(f"Cannot read {path}: {e}")

    return config_from_dict(data)


def config_from_dict(data: Any) -> BackupConfig:
    """
    Build a BackupConfig from a parsed mapping.

    Every problem is collected before raising so the operator sees the
    whole list at once.

    Raises:
        ConfigInvalid: If any key is unknown, missing or malformed
    """
    if not isinstance(data, dict):
        raise ConfigInvalid("Top level of the configuration must be a mapping")

    problems: List[str] = []
    values: Dict[str, Any] = {}

    for key in data:
        if key not in KNOWN_KEYS:
            problems.append(f"Unknown setting: {key}")

    for key in REQUIRED_KEYS:
        if data.get(key) in (None, '', []):
            problems.append(f"Missing required setting: {key}")

    if 'sources' in data and data['sources'] not in (None, []):
        sources = _string_list(data['sources'], 'sources', problems)
        if sources is not None:
            values['sources'] = tuple(_absolute(s) for s in sources)

    for key in ('destination_root', 'log_dir', 'lock_path'):
        if data.get(key) not in (None, ''):
            text = _string(data[key], key, problems)
            if text is not None:
                values[key] = _absolute(text)

    for key in ('log_file', 'notify_recipient', 'notify_sender', 'smtp_host',
                'smtp_user', 'smtp_password', 'schedule'):
        if data.get(key) is not None:
            text = _string(data[key], key, problems)
            if text is not None:
                values[key] = text

    for key in ('notify_recipient', 'notify_sender'):
        if key in values and ('\n' in values[key] or '\r' in values[key]):
            problems.append(f"{key} must be a single line")

    for key, minimum in (('retention_days', 0), ('max_log_size_kb', 1),
                         ('min_archive_size_bytes', 0), ('smtp_port', 1)):
        if data.get(key) is not None:
            number = _integer(data[key], key, minimum, problems)
            if number is not None:
                values[key] = number

    for key in ('notify_enabled', 'require_root', 'smtp_starttls'):
        if data.get(key) is not None:
            flag = _boolean(data[key], key, problems)
            if flag is not None:
                values[key] = flag

    if data.get('exclude_patterns') is not None:
        patterns = _string_list(data['exclude_patterns'], 'exclude_patterns', problems)
        if patterns is not None:
            values['exclude_patterns'] = tuple(patterns)

    if data.get('sendmail_command') is not None:
        command = data['sendmail_command']
        if isinstance(command, str):
            command = command.split()
        command = _string_list(command, 'sendmail_command', problems)
        if command:
            values['sendmail_command'] = tuple(command)
        elif command is not None:
            problems.append("sendmail_command must not be empty")

    if data.get('filename_template') is not None:
        template = _string(data['filename_template'], 'filename_template', problems)
        if template is not None:
            if _has_separator(template):
                problems.append("filename_template must not contain a path separator")
            elif compression_for(template) is None:
                problems.append(
                    f"filename_template must end with one of {', '.join(ARCHIVE_EXTENSIONS)}"
                )
            else:
                values['filename_template'] = template

    for key, allowed in (('archiver', ARCHIVERS), ('mail_transport', MAIL_TRANSPORTS)):
        if data.get(key) is not None:
            if data[key] in allowed:
                values[key] = data[key]
            else:
                problems.append(f"{key} must be one of {', '.join(allowed)}")

    if 'log_file' in values:
        if '/' in values['log_file']:
            problems.append("log_file must be a bare file name; use log_dir for the directory")

    if problems:
        raise ConfigInvalid(problems)

    return BackupConfig(**values)


def compression_for(filename: str) -> Optional[str]:
    """
    Map an archive file name to its tarfile compression suffix.

    Returns:
        'gz', 'bz2', 'xz', '' for plain tar, or None for unknown extensions
    """
    for extension, compression in ARCHIVE_EXTENSIONS.items():
        if filename.endswith(extension):
            return compression
    return None


def _absolute(path: str) -> str:
    return os.path.abspath(os.path.expanduser(path))


def _string(value, key, problems):
    if isinstance(value, str) and value.strip():
        return value.strip()
    problems.append(f"{key} must be a non-empty string")
    return None


def _string_list(value, key, problems):
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        problems.append(f"{key} must be a list of strings")
        return None
    result = []
    for item in value:
        if not isinstance(item, str) or not item.strip():
            problems.append(f"{key} entries must be non-empty strings (got {item!r})")
            return None
        result.append(item.strip())
    return result


def _integer(value, key, minimum, problems):
    # bool is an int subclass; "yes" is not a day count
    if isinstance(value, bool) or not isinstance(value, int):
        if isinstance(value, str) and value.strip().isdigit():
            value = int(value.strip())
        else:
            problems.append(f"{key} must be an integer >= {minimum} (got {value!r})")
            return None
    if value < minimum:
        problems.append(f"{key} must be an integer >= {minimum} (got {value})")
        return None
    return value


def _boolean(value, key, problems):
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ('yes', 'no', 'true', 'false', 'on', 'off'):
        return value.strip().lower() in ('yes', 'true', 'on')
    problems.append(f"{key} must be a boolean (got {value!r})")
    return None


def _has_separator(template):
    # Directives like %D expand to text containing '/'
    sample = datetime(2000, 12, 31, 23, 59, 59).strftime(template)
    return any(sep in text for text in (template, sample) for sep in ('/', os.sep))
