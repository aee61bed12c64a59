from __future__ import annotations

import grp
import os
import pwd
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from .commands import NULL_LISTING_FIELDS
from .config import GatewayConfig
from .errors import NotFound, PermissionDenied, SubprocessFailure
from .executor import PrivilegedExecutor
from .paths import format_mode, icon_for, is_protected_path, readable_size
from .resolver import CapabilityResolver, Operation

FileEntry = Dict[str, Any]

TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'

_WHITESPACE = re.compile(r'\s+')


def _owner_name(uid: int) -> str:
    try:
        return pwd.getpwuid(uid).pw_name
    except (KeyError, AttributeError):
        return str(uid)


def _group_name(gid: int) -> str:
    try:
        return grp.getgrgid(gid).gr_name
    except (KeyError, AttributeError):
        return str(gid)


def _timestamp(value: float) -> str:
    return datetime.fromtimestamp(value).strftime(TIMESTAMP_FORMAT)


def _join(directory: str, name: str) -> str:
    return directory.rstrip('/') + '/' + name


def file_entry(path: str, name: Optional[str] = None) -> FileEntry:
    """Build the entry record for ``path`` from a fresh ``stat``."""
    try:
        stat_info = os.stat(path)
    except FileNotFoundError:
        # dangling symlink
        stat_info = os.lstat(path)
    is_dir = os.path.isdir(path)
    name = name or os.path.basename(path.rstrip('/')) or path
    return {
        'name': name,
        'path': path,
        'size': '-' if is_dir else readable_size(stat_info.st_size),
        'type': 'directory' if is_dir else 'file',
        'icon': icon_for(name, is_dir),
        'permissions': format_mode(stat_info.st_mode),
        'owner': _owner_name(stat_info.st_uid),
        'owner_id': stat_info.st_uid,
        'group': _group_name(stat_info.st_gid),
        'group_id': stat_info.st_gid,
        'last_modified': _timestamp(stat_info.st_mtime),
        'is_writable': os.access(path, os.W_OK),
        'is_readable': os.access(path, os.R_OK),
        'is_executable': os.access(path, os.X_OK),
        'is_system': is_protected_path(path),
    }


def _entry_from_listing(
    directory: str,
    name: str,
    permissions: str,
    owner: str,
    group: str,
    size: str,
    last_modified: Optional[str] = None,
) -> FileEntry:
    is_dir = permissions.startswith('d')
    path = _join(directory, name)
    try:
        size_text = readable_size(int(size))
    except ValueError:
        size_text = size
    entry: FileEntry = {
        'name': name,
        'path': path,
        'size': '-' if is_dir else size_text,
        'type': 'directory' if is_dir else 'file',
        'icon': icon_for(name, is_dir),
        'permissions': permissions,
        'owner': owner,
        'group': group,
        'is_readable': 'r' in permissions,
        'is_writable': 'w' in permissions,
        'is_executable': 'x' in permissions,
        'is_system': is_protected_path(path),
    }
    if last_modified is not None:
        entry['last_modified'] = last_modified
    return entry


def parse_null_listing(directory: str, output: str) -> List[FileEntry]:
    """Parse ``find -printf`` output with NUL-terminated fields."""
    fields = output.split('\0')
    if fields and fields[-1] == '':
        fields.pop()
    entries: List[FileEntry] = []
    for start in range(0, len(fields) - NULL_LISTING_FIELDS + 1, NULL_LISTING_FIELDS):
        permissions, owner, group, size, mtime, name = fields[start:start + NULL_LISTING_FIELDS]
        if name in ('.', '..'):
            continue
        try:
            last_modified = _timestamp(float(mtime))
        except ValueError:
            last_modified = None
        entries.append(_entry_from_listing(directory, name, permissions, owner, group, size, last_modified))
    return entries


def parse_long_listing(directory: str, output: str) -> List[FileEntry]:
    """Parse ``ls -la`` output.

    Each line is split into nine whitespace-separated fields, so a name that
    starts with whitespace loses it and a name that contains a newline is
    split across lines. Use the NUL listing format when that matters.
    """
    lines = output.split('\n')
    if lines:
        lines.pop(0)  # "total N"
    entries: List[FileEntry] = []
    for line in lines:
        if not line.strip():
            continue
        parts = _WHITESPACE.split(line.strip(), 8)
        if len(parts) < 9:
            continue
        permissions, _links, owner, group, size = parts[:5]
        name = parts[8]
        if permissions.startswith('l') and ' -> ' in name:
            name = name.split(' -> ', 1)[0]
        if name in ('.', '..'):
            continue
        entries.append(_entry_from_listing(directory, name, permissions, owner, group, size))
    return entries


class DirectoryLister:
    def __init__(self, config: GatewayConfig, executor: PrivilegedExecutor, resolver: CapabilityResolver) -> None:
        self.config = config
        self.executor = executor
        self.resolver = resolver

    def list_native(self, directory: str) -> List[FileEntry]:
        entries: List[FileEntry] = []
        with os.scandir(directory) as iterator:
            for entry in iterator:
                if entry.name in ('.', '..'):
                    continue
                try:
                    entries.append(file_entry(_join(directory, entry.name), entry.name))
                except FileNotFoundError:
                    continue
        return entries

    def list_elevated(self, directory: str) -> List[FileEntry]:
        argv = self.resolver.fallback(Operation.LIST, directory)
        result = self.executor.run(argv, elevate=True)
        if not result.ok:
            raise SubprocessFailure(f'Directory non leggibile: {directory}', result.output, status=403)
        if self.config.listing_format == 'ls':
            return parse_long_listing(directory, result.output)
        return parse_null_listing(directory, result.output)

    def list(self, directory: str) -> Tuple[List[FileEntry], bool]:
        """Return ``(entries, elevated)``; entry order is whatever the source yields."""
        if not os.path.isdir(directory):
            raise NotFound(f'Directory non trovata: {directory}')
        if self.resolver.direct_ok(Operation.LIST, directory):
            try:
                return self.list_native(directory), False
            except PermissionError:
                if not self.config.sudo_enabled:
                    raise PermissionDenied(f'Directory non leggibile: {directory}')
        elif not self.config.sudo_enabled:
            raise PermissionDenied(f'Directory non leggibile: {directory}')
        return self.list_elevated(directory), True
