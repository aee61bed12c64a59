from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

SETTINGS_FILE = Path(os.path.expanduser('~/.cache/devfiles/settings.json'))

MIN_COMMAND_TIMEOUT = 120
LISTING_FORMATS = {'null', 'ls'}

_TRUE_VALUES = {'1', 'true', 'yes', 'on'}


@dataclass(frozen=True)
class GatewayConfig:
    """Process-wide settings, built once at start-up and never mutated."""

    managed_root: str = '/var/www/html'
    sudo_enabled: bool = True
    config_dir: str = '/opt/claude-env'
    service_user: str = 'www-data'
    service_group: str = 'www-data'
    command_timeout: int = MIN_COMMAND_TIMEOUT
    sudo_command: Tuple[str, ...] = ('sudo', '-n')
    listing_format: str = 'null'
    tmp_dirs: Tuple[str, ...] = ('/tmp', '/var/tmp')
    max_upload_mb: int = 200

    def __post_init__(self) -> None:
        if self.listing_format not in LISTING_FORMATS:
            raise ValueError(f'Unknown listing format: {self.listing_format!r}')
        if self.command_timeout < MIN_COMMAND_TIMEOUT:
            object.__setattr__(self, 'command_timeout', MIN_COMMAND_TIMEOUT)

    @property
    def credentials_file(self) -> str:
        return os.path.join(self.config_dir, 'mysql_credentials.conf')

    @property
    def owner_spec(self) -> str:
        return f'{self.service_user}:{self.service_group}'

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> 'GatewayConfig':
        known = {f.name for f in fields(cls)}
        values = {key: _coerce(key, value) for key, value in data.items() if key in known}
        return cls(**values)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> 'GatewayConfig':
        env = os.environ if environ is None else environ
        settings_path = Path(os.path.expanduser(env.get('DEVFILES_SETTINGS') or str(SETTINGS_FILE)))
        data = _load_settings(settings_path)
        for name in (f.name for f in fields(cls)):
            raw = env.get(f'DEVFILES_{name.upper()}')
            if raw is not None and raw != '':
                data[name] = raw
        # DEVFILES_ROOT and DEVFILES_SUDO are the short forms the service unit uses
        if env.get('DEVFILES_ROOT'):
            data['managed_root'] = env['DEVFILES_ROOT']
        if env.get('DEVFILES_SUDO'):
            data['sudo_enabled'] = env['DEVFILES_SUDO']
        return cls.from_mapping(data)


def _coerce(key: str, value: Any) -> Any:
    if key == 'sudo_enabled':
        if isinstance(value, str):
            return value.strip().lower() in _TRUE_VALUES
        return bool(value)
    if key in {'command_timeout', 'max_upload_mb'}:
        return int(value)
    if key in {'sudo_command', 'tmp_dirs'}:
        if isinstance(value, str):
            return tuple(part for part in value.replace(',', ' ').split() if part)
        return tuple(str(part) for part in value)
    if key in {'managed_root', 'config_dir'}:
        return os.path.abspath(os.path.expanduser(str(value)))
    return str(value)


def _load_settings(path: Path) -> Dict[str, Any]:
    try:
        if path.is_file():
            with path.open('r', encoding='utf-8') as fh:
                data = json.load(fh)
                if isinstance(data, dict):
                    return data
    except (OSError, ValueError) as exc:
        print(f"Failed to load settings from {path}: {exc}")
    return {}
