from __future__ import annotations

import logging
import os
import re
from typing import Dict

from . import commands
from .config import GatewayConfig
from .errors import NotFound, PermissionDenied, SubprocessFailure
from .executor import PrivilegedExecutor

log = logging.getLogger(__name__)

KEY_PREFIX = 'DB_'
ASSIGNMENT_RE = re.compile(r'^\s*(DB_\w+)\s*=\s*"([^"]*)"\s*$', re.MULTILINE)
QUOTED_RE = re.compile(r'"([^"]*)"')

DEFAULT_CREDENTIALS = {'user': 'root', 'password': ''}
FALLBACK_KEYS = {'user': 'DB_USER', 'password': 'DB_PASSWORD'}


def parse_credentials(content: str) -> Dict[str, str]:
    credentials: Dict[str, str] = {}
    for key, value in ASSIGNMENT_RE.findall(content):
        credentials[key[len(KEY_PREFIX):].lower()] = value
    return credentials


class CredentialLoader:
    """Reads the database credentials file kept outside the managed tree."""

    def __init__(self, config: GatewayConfig, executor: PrivilegedExecutor) -> None:
        self.config = config
        self.executor = executor

    def _read(self, path: str) -> str:
        if not os.access(path, os.R_OK) and self.config.sudo_enabled:
            result = self.executor.run(commands.cat(path), elevate=True)
            if not result.ok:
                raise SubprocessFailure(
                    f'Impossibile leggere il file delle credenziali: {result.output.strip()}',
                    result.output,
                )
            return result.output
        try:
            with open(path, 'r', encoding='utf-8', errors='replace') as fh:
                return fh.read()
        except OSError as exc:
            raise PermissionDenied('Errore nella lettura del file delle credenziali') from exc

    def _grep_value(self, key: str, path: str) -> str:
        result = self.executor.run(commands.grep_key(key, path), elevate=True)
        if not result.ok or not result.output.strip():
            log.warning("credential fallback for %s returned nothing (status %s)", key, result.status)
            return ''
        match = QUOTED_RE.search(result.output)
        return match.group(1).strip() if match else ''

    def load(self) -> Dict[str, str]:
        path = self.config.credentials_file
        if not os.path.exists(path):
            if not os.path.isdir(self.config.config_dir):
                raise NotFound(f'Directory di configurazione non trovata: {self.config.config_dir}')
            raise NotFound(f'File di credenziali non trovato: {path}')

        credentials = parse_credentials(self._read(path))

        missing = [field for field in FALLBACK_KEYS if field not in credentials]
        if missing and self.config.sudo_enabled:
            for field in missing:
                value = self._grep_value(FALLBACK_KEYS[field], path)
                if value:
                    credentials[field] = value

        for field, default in DEFAULT_CREDENTIALS.items():
            credentials.setdefault(field, default)
        return credentials
