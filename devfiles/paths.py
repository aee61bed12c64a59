from __future__ import annotations

import os
import re
import stat
from typing import Dict, Optional

PROTECTED_PREFIXES = (
    '/etc/',
    '/boot/',
    '/bin/',
    '/sbin/',
    '/usr/bin/',
    '/usr/sbin/',
    '/lib/',
    '/lib64/',
    '/usr/lib/',
    '/opt/',
    '/root/',
    '/proc/',
    '/sys/',
    '/dev/',
)

OCTAL_MODE_RE = re.compile(r'^[0-7]{3,4}$')

SIZE_UNITS = ('B', 'KB', 'MB', 'GB', 'TB')

ICON_MAP: Dict[str, str] = {
    # web
    'html': 'html5',
    'htm': 'html5',
    'css': 'css3-alt',
    'js': 'js',
    'json': 'file-code',
    'php': 'php',
    'md': 'markdown',
    # programming
    'py': 'python',
    'java': 'java',
    'c': 'file-code',
    'cpp': 'file-code',
    'cs': 'file-code',
    'rb': 'gem',
    # data
    'sql': 'database',
    'db': 'database',
    'yml': 'file-code',
    'yaml': 'file-code',
    'xml': 'file-code',
    # config
    'conf': 'cogs',
    'ini': 'cogs',
    # shell
    'sh': 'terminal',
    'bash': 'terminal',
    # documents
    'txt': 'file-alt',
    'pdf': 'file-pdf',
    'doc': 'file-word',
    'docx': 'file-word',
    'xls': 'file-excel',
    'xlsx': 'file-excel',
    'ppt': 'file-powerpoint',
    'pptx': 'file-powerpoint',
    # images
    'jpg': 'file-image',
    'jpeg': 'file-image',
    'png': 'file-image',
    'gif': 'file-image',
    'svg': 'file-image',
    # archives
    'zip': 'file-archive',
    'tar': 'file-archive',
    'gz': 'file-archive',
    'rar': 'file-archive',
}

_TYPE_CHARS = (
    (stat.S_IFSOCK, 's'),
    (stat.S_IFLNK, 'l'),
    (stat.S_IFREG, '-'),
    (stat.S_IFBLK, 'b'),
    (stat.S_IFDIR, 'd'),
    (stat.S_IFCHR, 'c'),
    (stat.S_IFIFO, 'p'),
)

_CLASSES = (
    ('owner', stat.S_IRUSR, stat.S_IWUSR, stat.S_IXUSR),
    ('group', stat.S_IRGRP, stat.S_IWGRP, stat.S_IXGRP),
    ('others', stat.S_IROTH, stat.S_IWOTH, stat.S_IXOTH),
)


def is_protected_path(path: str) -> bool:
    for prefix in PROTECTED_PREFIXES:
        if path.startswith(prefix):
            return True
    return False


def _special(executable: bool, special: bool, set_char: str) -> str:
    if executable:
        return set_char if special else 'x'
    return set_char.upper() if special else '-'


def format_mode(mode: int) -> str:
    """Render raw ``st_mode`` bits the way ``ls -l`` prints them."""
    file_type = stat.S_IFMT(mode)
    info = 'u'
    for flag, char in _TYPE_CHARS:
        if file_type == flag:
            info = char
            break

    info += 'r' if mode & stat.S_IRUSR else '-'
    info += 'w' if mode & stat.S_IWUSR else '-'
    info += _special(bool(mode & stat.S_IXUSR), bool(mode & stat.S_ISUID), 's')

    info += 'r' if mode & stat.S_IRGRP else '-'
    info += 'w' if mode & stat.S_IWGRP else '-'
    info += _special(bool(mode & stat.S_IXGRP), bool(mode & stat.S_ISGID), 's')

    info += 'r' if mode & stat.S_IROTH else '-'
    info += 'w' if mode & stat.S_IWOTH else '-'
    info += _special(bool(mode & stat.S_IXOTH), bool(mode & stat.S_ISVTX), 't')
    return info


def format_permissions(path: str) -> str:
    try:
        return format_mode(os.stat(path).st_mode)
    except OSError:
        return 'unknown'


def mode_to_permissions(mode: int) -> Dict[str, Dict[str, bool]]:
    value = stat.S_IMODE(mode)

    def has(flag: int) -> bool:
        return (value & flag) == flag

    return {
        name: {'read': has(r), 'write': has(w), 'exec': has(x)}
        for name, r, w, x in _CLASSES
    }


def permissions_to_octal(perms: Dict[str, Dict[str, bool]]) -> str:
    """Turn a permission-editor checkbox map into a three digit mode string."""
    digits = []
    for name, _r, _w, _x in _CLASSES:
        bits = perms.get(name) or {}
        digit = (4 if bits.get('read') else 0) + (2 if bits.get('write') else 0) + (1 if bits.get('exec') else 0)
        digits.append(str(digit))
    return ''.join(digits)


def octal_to_permissions(value: str) -> Optional[Dict[str, Dict[str, bool]]]:
    if not OCTAL_MODE_RE.match(value or ''):
        return None
    return mode_to_permissions(int(value[-3:], 8))


def is_valid_octal_mode(value: str) -> bool:
    return bool(OCTAL_MODE_RE.match(value or ''))


def readable_size(size) -> str:
    try:
        size = float(size)
    except (TypeError, ValueError):
        return 'N/A'
    if size <= 0:
        return '0 B'
    index = 0
    while size >= 1024 and index < len(SIZE_UNITS) - 1:
        size /= 1024
        index += 1
    text = f'{round(size, 2):.2f}'.rstrip('0').rstrip('.')
    return f'{text} {SIZE_UNITS[index]}'


def icon_for(name: str, is_dir: bool = False) -> str:
    if is_dir:
        return 'folder'
    ext = os.path.splitext(name)[1].lstrip('.').lower()
    return ICON_MAP.get(ext, 'file')
