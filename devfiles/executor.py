"""Runs helper commands, optionally through the superuser helper.

This is the only place in the package that spawns a process. Commands are
passed as argv lists built by :mod:`devfiles.commands`; nothing is ever
handed to a shell.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from .config import GatewayConfig
from .errors import CommandTimeout

__all__ = ["CommandResult", "PrivilegedExecutor"]

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    output: str
    status: int
    raw: bytes = field(default=b"", repr=False, compare=False)

    @property
    def ok(self) -> bool:
        return self.status == 0

    def to_dict(self) -> Dict[str, Any]:
        return {"output": self.output, "status": self.status}


class PrivilegedExecutor:
    def __init__(self, config: GatewayConfig) -> None:
        self.config = config

    def build_argv(self, argv: Sequence[str], elevate: bool = False) -> List[str]:
        if elevate:
            return [*self.config.sudo_command, *argv]
        return list(argv)

    def run(
        self,
        argv: Sequence[str],
        elevate: bool = False,
        stdin: Optional[Union[str, bytes]] = None,
    ) -> CommandResult:
        """Run ``argv`` and return its combined output and exit status.

        A nonzero exit is reported through ``status``. Exceeding the
        configured timeout raises :class:`CommandTimeout`.
        """
        full = self.build_argv(argv, elevate)
        printable = shlex.join(full)
        if elevate:
            log.info("elevated: %s", printable)
        else:
            log.debug("exec: %s", printable)

        if isinstance(stdin, str):
            stdin = stdin.encode("utf-8")
        try:
            proc = subprocess.run(
                full,
                input=stdin,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=self.config.command_timeout,
            )
        except subprocess.TimeoutExpired as exc:
            log.error("command timed out after %ss: %s", self.config.command_timeout, printable)
            raise CommandTimeout(
                f"Timeout dopo {self.config.command_timeout}s: {printable}"
            ) from exc
        except OSError as exc:
            log.warning("failed to spawn %s: %s", printable, exc)
            return CommandResult(output=str(exc), status=127)

        raw = proc.stdout or b""
        output = raw.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            log.warning("command exited %s: %s", proc.returncode, printable)
        return CommandResult(output=output, status=proc.returncode, raw=raw)
