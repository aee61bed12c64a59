"""Allow-listed argv templates for everything the helper may run.

Each builder takes typed arguments and returns a complete argv list. Paths
are passed as single argv entries (after ``--`` where the tool accepts it),
so no value ever reaches a shell parser.
"""

from __future__ import annotations

import os
from typing import List, Sequence

from .errors import MalformedInput

Argv = List[str]

# find -printf: mode string, owner, group, size, mtime, name, all NUL-terminated
NULL_LISTING_FORMAT = '%M\\0%u\\0%g\\0%s\\0%T@\\0%f\\0'
NULL_LISTING_FIELDS = 6

CREDENTIAL_KEYS = ('DB_USER', 'DB_PASSWORD')
TMP_PATTERNS = ('*.tmp', '*.temp', '*.bak')
TMP_MAX_AGE_DAYS = 7


def _path(value: str) -> str:
    if not value or '\x00' in value:
        raise MalformedInput('Percorso non valido')
    return os.path.abspath(value)


def _glob_literal(text: str) -> str:
    out = []
    for char in text:
        if char in '*?[]\\':
            out.append('\\' + char)
        else:
            out.append(char)
    return ''.join(out)


def cat(path: str) -> Argv:
    return ['cat', '--', _path(path)]


def touch(path: str) -> Argv:
    return ['touch', '--', _path(path)]


def mkdir(path: str) -> Argv:
    return ['mkdir', '-p', '--', _path(path)]


def write_stdin(path: str) -> Argv:
    """Write whatever arrives on stdin to ``path`` without echoing it back."""
    return ['dd', f'of={_path(path)}', 'status=none']


def chmod(mode: str, path: str, recursive: bool = False) -> Argv:
    argv = ['chmod']
    if recursive:
        argv.append('-R')
    argv.extend([mode, '--', _path(path)])
    return argv


def chown(owner_spec: str, path: str, recursive: bool = False) -> Argv:
    argv = ['chown']
    if recursive:
        argv.append('-R')
    argv.extend([owner_spec, '--', _path(path)])
    return argv


def remove(path: str, recursive: bool = False) -> Argv:
    if recursive:
        return ['rm', '-rf', '--', _path(path)]
    return ['rm', '--', _path(path)]


def move(source: str, destination: str) -> Argv:
    return ['mv', '--', _path(source), _path(destination)]


def copy(source: str, destination: str, recursive: bool = False) -> Argv:
    argv = ['cp', '--preserve=mode']
    if recursive:
        argv.append('-R')
    argv.extend(['--', _path(source), _path(destination)])
    return argv


def list_null(directory: str) -> Argv:
    return ['find', _path(directory), '-mindepth', '1', '-maxdepth', '1', '-printf', NULL_LISTING_FORMAT]


def list_long(directory: str) -> Argv:
    return ['ls', '-la', '--', _path(directory)]


def search(directory: str, query: str) -> Argv:
    if '\x00' in query:
        raise MalformedInput('Query non valida')
    return [
        'find', _path(directory),
        '(', '-type', 'f', '-o', '-type', 'd', ')',
        '-name', f'*{_glob_literal(query)}*',
        '-print0',
    ]


def grep_key(key: str, path: str) -> Argv:
    if key not in CREDENTIAL_KEYS:
        raise MalformedInput(f'Chiave non consentita: {key}')
    return ['grep', '-m', '1', '-E', f'^[[:space:]]*{key}[[:space:]]*=', '--', _path(path)]


def fix_permissions(directory: str, owner_spec: str) -> Sequence[Argv]:
    target = _path(directory)
    return (
        ['find', target, '-type', 'd', '-exec', 'chmod', '2775', '{}', '+'],
        ['find', target, '-type', 'f', '-exec', 'chmod', '664', '{}', '+'],
        ['chown', '-R', owner_spec, '--', target],
    )


def cleanup_tmp(directory: str) -> Argv:
    names: Argv = []
    for pattern in TMP_PATTERNS:
        if names:
            names.append('-o')
        names.extend(['-name', pattern])
    return [
        'find', _path(directory), '-type', 'f',
        '(', *names, ')',
        '-mtime', f'+{TMP_MAX_AGE_DAYS}',
        '-delete',
    ]
