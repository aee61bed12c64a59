from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from . import commands
from .commands import Argv
from .config import GatewayConfig
from .errors import MalformedInput


class Operation:
    LIST = "list"
    READ = "read"
    WRITE = "write"
    CREATE = "create"
    CREATE_DIR = "create_dir"
    DELETE = "delete"
    RENAME = "rename"
    COPY = "copy"
    MOVE = "move"
    CHMOD = "chmod"
    UPLOAD = "upload"


@dataclass(frozen=True)
class Plan:
    """How one operation should run: natively, or through ``argv`` elevated."""

    operation: str
    direct: bool
    elevate: bool
    argv: Optional[Argv] = None


def _parent(path: str) -> str:
    return os.path.dirname(os.path.abspath(path)) or '/'


def _writable(path: str) -> bool:
    return os.access(path, os.W_OK)


def _readable(path: str) -> bool:
    return os.access(path, os.R_OK)


def _owned(path: str) -> bool:
    euid = os.geteuid()
    if euid == 0:
        return True
    try:
        return os.stat(path).st_uid == euid
    except OSError:
        return False


class CapabilityResolver:
    """Decides whether an operation can run as the service account.

    The checks mirror what the native primitive itself needs (readable target,
    writable parent and so on). A ``direct`` plan can still fail with
    ``PermissionError`` at call time; the gateway then asks :meth:`fallback`
    for the elevated command.
    """

    def __init__(self, config: GatewayConfig) -> None:
        self.config = config

    def direct_ok(self, operation: str, path: str, destination: Optional[str] = None) -> bool:
        if operation == Operation.LIST:
            return _readable(path) and os.access(path, os.X_OK)
        if operation == Operation.READ:
            return _readable(path)
        if operation == Operation.WRITE:
            if os.path.exists(path):
                return _writable(path)
            return _writable(_parent(path))
        if operation in (Operation.CREATE, Operation.CREATE_DIR, Operation.UPLOAD):
            return _writable(_parent(path))
        if operation == Operation.DELETE:
            if os.path.isdir(path) and not os.path.islink(path):
                return _writable(path) and _writable(_parent(path))
            return _writable(_parent(path))
        if operation in (Operation.RENAME, Operation.MOVE):
            # rename(2) needs the parents writable; the source itself only when
            # a directory changes parent and its ".." entry must be rewritten
            target_parent = _parent(destination or path)
            if not (_writable(_parent(path)) and _writable(target_parent)):
                return False
            if os.path.isdir(path) and not os.path.islink(path) and target_parent != _parent(path):
                return _writable(path)
            return True
        if operation == Operation.COPY:
            return _readable(path) and _writable(_parent(destination or path))
        if operation == Operation.CHMOD:
            return _owned(path)
        raise MalformedInput(f'Operazione sconosciuta: {operation}')

    def fallback(
        self,
        operation: str,
        path: str,
        destination: Optional[str] = None,
        mode: Optional[str] = None,
    ) -> Argv:
        if operation == Operation.LIST:
            if self.config.listing_format == 'ls':
                return commands.list_long(path)
            return commands.list_null(path)
        if operation == Operation.READ:
            return commands.cat(path)
        if operation == Operation.WRITE:
            return commands.write_stdin(path)
        if operation == Operation.CREATE:
            return commands.touch(path)
        if operation == Operation.CREATE_DIR:
            return commands.mkdir(path)
        if operation == Operation.DELETE:
            return commands.remove(path, recursive=os.path.isdir(path) and not os.path.islink(path))
        if operation in (Operation.RENAME, Operation.MOVE):
            return commands.move(path, destination or '')
        if operation == Operation.COPY:
            return commands.copy(path, destination or '', recursive=os.path.isdir(path))
        if operation == Operation.UPLOAD:
            return commands.copy(path, destination or '')
        if operation == Operation.CHMOD:
            return commands.chmod(mode or '', path)
        raise MalformedInput(f'Operazione sconosciuta: {operation}')

    def plan(
        self,
        operation: str,
        path: str,
        destination: Optional[str] = None,
        mode: Optional[str] = None,
    ) -> Plan:
        if self.direct_ok(operation, path, destination):
            return Plan(operation, direct=True, elevate=False)
        if not self.config.sudo_enabled:
            return Plan(operation, direct=False, elevate=False)
        return Plan(
            operation,
            direct=False,
            elevate=True,
            argv=self.fallback(operation, path, destination, mode),
        )
