"""Filesystem operation gateway.

Every public method maps to one request action. Each tries the native
primitive first and, when the service account lacks access and elevation is
enabled, runs the equivalent allow-listed command through the superuser
helper. Failures never escape as exceptions: they come back as an
:class:`Outcome` carrying the error message.
"""

from __future__ import annotations

import errno
import functools
import logging
import os
import shutil
import stat
import tempfile
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from . import commands
from .config import GatewayConfig
from .credentials import CredentialLoader
from .errors import (
    Conflict,
    GatewayError,
    MalformedInput,
    NotFound,
    PermissionDenied,
    SubprocessFailure,
    UploadTransportFailure,
)
from .executor import CommandResult, PrivilegedExecutor
from .lister import DirectoryLister, file_entry
from .paths import icon_for, is_valid_octal_mode, mode_to_permissions
from .resolver import CapabilityResolver, Operation
from .walk import copy_tree, remove_tree

__all__ = ["FileGateway", "Outcome"]

log = logging.getLogger(__name__)

FILE_MODE = 0o664
DIR_MODE = 0o2775


@dataclass
class Outcome:
    """Uniform result of a gateway operation."""

    success: bool = False
    error: Optional[str] = None
    elevated: bool = False
    new_path: Optional[str] = None
    content: Optional[str] = None
    raw: Optional[bytes] = field(default=None, repr=False)
    data: Any = None
    extra: Dict[str, Any] = field(default_factory=dict)
    status: int = 200

    @classmethod
    def ok(cls, **kwargs: Any) -> "Outcome":
        return cls(success=True, **kwargs)

    @classmethod
    def failure(cls, message: str, status: int = 500, **kwargs: Any) -> "Outcome":
        return cls(success=False, error=message, status=status, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        if self.error is not None:
            return {"error": self.error}
        payload: Dict[str, Any] = {"success": self.success}
        if self.elevated:
            payload["elevated"] = True
        if self.new_path is not None:
            payload["new_path"] = self.new_path
        if self.content is not None:
            payload["content"] = self.content
        payload.update(self.extra)
        return payload


def operation(generic_message: str) -> Callable:
    """Convert anything raised inside a gateway verb into a failed Outcome."""

    def decorator(func: Callable[..., Outcome]) -> Callable[..., Outcome]:
        @functools.wraps(func)
        def wrapper(self: "FileGateway", *args: Any, **kwargs: Any) -> Outcome:
            try:
                return func(self, *args, **kwargs)
            except GatewayError as exc:
                if isinstance(exc, SubprocessFailure) and exc.output:
                    log.warning("%s failed: %s", func.__name__, exc.output.strip())
                return Outcome.failure(exc.message, exc.status)
            except OSError as exc:
                log.warning("%s failed: %s", func.__name__, exc)
                return Outcome.failure(f"{generic_message}: {exc.strerror or exc}", 500)

        return wrapper

    return decorator


def _clean_name(name: Optional[str]) -> str:
    cleaned = os.path.basename((name or '').strip().rstrip('/'))
    if not cleaned or cleaned in {'.', '..'} or '\x00' in cleaned:
        raise MalformedInput('Nome non valido')
    return cleaned


def _join(directory: str, name: str) -> str:
    return directory.rstrip('/') + '/' + name


def _abs(path: Optional[str]) -> str:
    if not path or '\x00' in path:
        raise MalformedInput('Percorso non valido')
    return os.path.abspath(os.path.expanduser(path))


def _copy_leaf(source: str, destination: str) -> None:
    if os.path.islink(source):
        os.symlink(os.readlink(source), destination)
        return
    shutil.copyfile(source, destination)
    os.chmod(destination, stat.S_IMODE(os.stat(source).st_mode))


class FileGateway:
    def __init__(
        self,
        config: GatewayConfig,
        executor: Optional[PrivilegedExecutor] = None,
        resolver: Optional[CapabilityResolver] = None,
    ) -> None:
        self.config = config
        self.executor = executor or PrivilegedExecutor(config)
        self.resolver = resolver or CapabilityResolver(config)
        self.lister = DirectoryLister(config, self.executor, self.resolver)
        self.credentials = CredentialLoader(config, self.executor)

    # --- helpers -----------------------------------------------------------
    def _run_elevated(self, argv: List[str], failure: str, stdin: Optional[bytes] = None) -> CommandResult:
        result = self.executor.run(argv, elevate=True, stdin=stdin)
        if not result.ok:
            raise SubprocessFailure(f"{failure}: {result.output.strip()}", result.output)
        return result

    def _two_phase(
        self,
        op: str,
        path: str,
        native: Callable[[], None],
        *,
        denied: str,
        failure: str,
        destination: Optional[str] = None,
        mode: Optional[str] = None,
        stdin: Optional[bytes] = None,
    ) -> bool:
        """Run ``native`` or its elevated equivalent; return True if elevated."""
        plan = self.resolver.plan(op, path, destination, mode)
        if plan.direct:
            try:
                native()
                return False
            except PermissionError:
                if not self.config.sudo_enabled:
                    raise PermissionDenied(denied)
                log.info("%s on %s denied, retrying elevated", op, path)
                argv = self.resolver.fallback(op, path, destination, mode)
        elif not plan.elevate:
            raise PermissionDenied(denied)
        else:
            argv = plan.argv or []
        self._run_elevated(argv, failure, stdin=stdin)
        return True

    def _normalize_elevated(self, path: str, is_dir: bool) -> None:
        """Hand an artifact created as root back to the service account."""
        mode = format(DIR_MODE if is_dir else FILE_MODE, 'o')
        failure = "Errore nella normalizzazione dei permessi"
        self._run_elevated(commands.chmod(mode, path), failure)
        self._run_elevated(commands.chown(self.config.owner_spec, path), failure)

    def _normalize_native(self, path: str, is_dir: bool) -> None:
        os.chmod(path, DIR_MODE if is_dir else FILE_MODE)
        try:
            shutil.chown(path, self.config.service_user, self.config.service_group)
        except (PermissionError, LookupError) as exc:
            log.debug("chown %s to %s skipped: %s", path, self.config.owner_spec, exc)

    # --- read-only ---------------------------------------------------------
    @operation("Errore nel listare i file")
    def list_directory(self, directory: Optional[str] = None) -> Outcome:
        target = _abs(directory or self.config.managed_root)
        entries, elevated = self.lister.list(target)
        return Outcome.ok(data=entries, elevated=elevated)

    @operation("Errore nella lettura del file")
    def read(self, path: str) -> Outcome:
        target = _abs(path)
        if not os.path.exists(target):
            raise NotFound('File non trovato')
        if os.path.isdir(target):
            raise MalformedInput('Il percorso è una directory')

        plan = self.resolver.plan(Operation.READ, target)
        raw: Optional[bytes] = None
        if plan.direct:
            try:
                with open(target, 'rb') as fh:
                    raw = fh.read()
            except PermissionError:
                if not self.config.sudo_enabled:
                    raise PermissionDenied('File non leggibile')
        elif not plan.elevate:
            raise PermissionDenied('File non leggibile')

        elevated = raw is None
        if elevated:
            result = self._run_elevated(self.resolver.fallback(Operation.READ, target), 'File non leggibile')
            raw = result.raw

        return Outcome.ok(
            content=raw.decode('utf-8', errors='replace'),
            raw=raw,
            elevated=elevated,
            extra={'name': os.path.basename(target)},
        )

    @operation("Errore nel recupero dei dettagli")
    def details(self, path: str) -> Outcome:
        target = _abs(path)
        if not os.path.lexists(target):
            return Outcome.failure(
                'File non trovato', 404, data={'exists': False, 'error': 'File non trovato'}
            )
        try:
            info = file_entry(target)
            mode = os.stat(target).st_mode
        except OSError as exc:
            return Outcome.ok(data={
                'exists': True,
                'path': target,
                'name': os.path.basename(target),
                'type': 'directory' if os.path.isdir(target) else 'file',
                'error': f'Errore nel recupero dei dettagli: {exc.strerror or exc}',
            })
        info['exists'] = True
        info['mode_octal'] = format(stat.S_IMODE(mode) & 0o777, '03o')
        info['permission_bits'] = mode_to_permissions(mode)
        return Outcome.ok(data=info)

    @operation("Errore nella ricerca")
    def search(self, query: str, directory: Optional[str] = None) -> Outcome:
        query = query or ''
        if len(query) < 2:
            raise MalformedInput('Query di ricerca troppo breve')
        target = _abs(directory or self.config.managed_root)
        result = self.executor.run(commands.search(target, query))
        if not result.ok:
            raise SubprocessFailure(f'Errore nella ricerca: {result.output.strip()}', result.output)
        results = []
        for found in sorted(p for p in result.output.split('\0') if p.strip()):
            is_dir = os.path.isdir(found)
            name = os.path.basename(found)
            results.append({
                'name': name,
                'path': found,
                'type': 'directory' if is_dir else 'file',
                'icon': icon_for(name, is_dir),
            })
        return Outcome.ok(data=results)

    @operation("Errore nel recupero delle credenziali")
    def get_mysql_credentials(self) -> Outcome:
        return Outcome.ok(data=self.credentials.load())

    # --- mutations ---------------------------------------------------------
    @operation("Errore nella creazione del file")
    def create(self, directory: Optional[str], name: str) -> Outcome:
        parent = _abs(directory or self.config.managed_root)
        target = _join(parent, _clean_name(name))
        if os.path.lexists(target):
            raise Conflict('Il file esiste già')
        if not os.path.isdir(parent):
            raise NotFound(f'Directory non trovata: {parent}')

        def native() -> None:
            with open(target, 'x', encoding='utf-8'):
                pass
            self._normalize_native(target, is_dir=False)

        elevated = self._two_phase(
            Operation.CREATE, target, native,
            denied='Directory non scrivibile',
            failure='Errore nella creazione del file',
        )
        if elevated:
            self._normalize_elevated(target, is_dir=False)
        return Outcome.ok(elevated=elevated, extra={'path': target})

    @operation("Errore nella creazione della directory")
    def create_dir(self, directory: Optional[str], name: str) -> Outcome:
        parent = _abs(directory or self.config.managed_root)
        target = _join(parent, _clean_name(name))
        if os.path.lexists(target):
            raise Conflict('La directory esiste già')
        if not os.path.isdir(parent):
            raise NotFound(f'Directory non trovata: {parent}')

        def native() -> None:
            os.mkdir(target, 0o775)
            self._normalize_native(target, is_dir=True)

        elevated = self._two_phase(
            Operation.CREATE_DIR, target, native,
            denied='Directory non scrivibile',
            failure='Errore nella creazione della directory',
        )
        if elevated:
            self._normalize_elevated(target, is_dir=True)
        return Outcome.ok(elevated=elevated, extra={'path': target})

    @operation("Errore nel salvataggio del file")
    def save(self, path: str, content: str, sudo: bool = False) -> Outcome:
        target = _abs(path)
        existed = os.path.exists(target)
        if not existed and not sudo:
            raise NotFound('File non trovato')
        if existed and os.path.isdir(target):
            raise MalformedInput('Il percorso è una directory')
        data = (content or '').encode('utf-8')

        def native() -> None:
            with open(target, 'wb') as fh:
                fh.write(data)
            if not existed:
                self._normalize_native(target, is_dir=False)

        use_helper = sudo and self.config.sudo_enabled
        plan = self.resolver.plan(Operation.WRITE, target)
        if plan.direct:
            try:
                native()
                return Outcome.ok()
            except PermissionError:
                if not use_helper:
                    raise PermissionDenied('File non scrivibile')
        elif not use_helper:
            raise PermissionDenied('File non scrivibile')

        self._run_elevated(
            commands.write_stdin(target),
            'Errore nel salvataggio del file con sudo',
            stdin=data,
        )
        if not existed:
            self._normalize_elevated(target, is_dir=False)
        return Outcome.ok(elevated=True)

    @operation("Errore nell'eliminazione")
    def delete(self, path: str) -> Outcome:
        target = _abs(path)
        if not os.path.lexists(target):
            raise NotFound('Percorso non trovato')
        is_dir = os.path.isdir(target) and not os.path.islink(target)

        def native() -> None:
            if is_dir:
                remove_tree(target)
            else:
                os.unlink(target)

        elevated = self._two_phase(
            Operation.DELETE, target, native,
            denied='Percorso non scrivibile',
            failure="Errore nell'eliminazione con sudo",
        )
        return Outcome.ok(elevated=elevated)

    @operation("Errore nella rinomina")
    def rename(self, old_path: str, new_name: str) -> Outcome:
        source = _abs(old_path)
        name = _clean_name(new_name)
        if not os.path.lexists(source):
            raise NotFound('File o directory non trovato')
        destination = _join(os.path.dirname(source), name)
        if os.path.lexists(destination):
            raise Conflict('Esiste già un file o directory con questo nome')

        elevated = self._two_phase(
            Operation.RENAME, source, lambda: os.rename(source, destination),
            denied='Percorso non scrivibile',
            failure='Errore nella rinomina con sudo',
            destination=destination,
        )
        return Outcome.ok(elevated=elevated, new_path=destination)

    def _check_transfer(self, source: str, destination: str) -> None:
        if not os.path.lexists(source):
            raise NotFound('File o directory di origine non trovata')
        if os.path.lexists(destination):
            raise Conflict('Un file o directory con lo stesso nome esiste già nella destinazione')
        if not os.path.isdir(os.path.dirname(destination)):
            raise NotFound(f'Directory non trovata: {os.path.dirname(destination)}')

    def _discard_partial(self, path: str) -> None:
        """Remove a half-made copy; the elevated ``cp -R`` would nest into it."""
        if not os.path.lexists(path):
            return
        try:
            if os.path.isdir(path) and not os.path.islink(path):
                remove_tree(path)
            else:
                os.unlink(path)
        except OSError as exc:
            if not self.config.sudo_enabled:
                log.warning("partial copy left at %s: %s", path, exc)
                return
            self._run_elevated(
                commands.remove(path, recursive=True),
                'Impossibile rimuovere la copia parziale',
            )
        if os.path.lexists(path):
            raise SubprocessFailure(f'Impossibile rimuovere la copia parziale: {path}')

    @operation("Errore nella copia")
    def copy(self, source: str, destination: str) -> Outcome:
        src = _abs(source)
        dst = _abs(destination)
        self._check_transfer(src, dst)
        if os.path.isdir(src) and (dst + '/').startswith(src.rstrip('/') + '/'):
            raise MalformedInput('Impossibile copiare una directory dentro se stessa')
        is_dir = os.path.isdir(src) and not os.path.islink(src)

        def native() -> None:
            try:
                if is_dir:
                    copy_tree(src, dst, _copy_leaf)
                else:
                    _copy_leaf(src, dst)
            except PermissionError:
                self._discard_partial(dst)
                raise

        failure = 'Errore nella copia della directory con sudo' if is_dir else 'Errore nella copia del file con sudo'
        elevated = self._two_phase(
            Operation.COPY, src, native,
            denied='Origine non leggibile',
            failure=failure,
            destination=dst,
        )
        return Outcome.ok(elevated=elevated, new_path=dst)

    @operation("Errore nello spostamento")
    def move(self, source: str, destination: str) -> Outcome:
        src = _abs(source)
        dst = _abs(destination)
        self._check_transfer(src, dst)

        def native() -> None:
            try:
                os.rename(src, dst)
            except OSError as exc:
                if exc.errno != errno.EXDEV:
                    raise
                shutil.move(src, dst)

        elevated = self._two_phase(
            Operation.MOVE, src, native,
            denied='Percorso non scrivibile',
            failure='Errore nello spostamento con sudo',
            destination=dst,
        )
        return Outcome.ok(elevated=elevated, new_path=dst)

    @operation("Errore nella modifica dei permessi")
    def chmod(self, path: str, mode: str) -> Outcome:
        mode = str(mode or '').strip()
        if not is_valid_octal_mode(mode):
            raise MalformedInput('Formato permessi non valido')
        target = _abs(path)
        if not os.path.lexists(target):
            raise NotFound('Percorso non trovato')

        elevated = self._two_phase(
            Operation.CHMOD, target, lambda: os.chmod(target, int(mode, 8)),
            denied='Permessi insufficienti',
            failure='Errore nella modifica dei permessi con sudo',
            mode=mode,
        )
        return Outcome.ok(elevated=elevated)

    @operation("Errore nel caricamento del file")
    def upload(self, directory: Optional[str], stream: Any) -> Outcome:
        """Store an uploaded file (anything with ``filename`` and ``save``)."""
        filename = getattr(stream, 'filename', None) if stream is not None else None
        if not filename:
            raise UploadTransportFailure('Nessun file è stato caricato')
        parent = _abs(directory or self.config.managed_root)
        if not os.path.isdir(parent):
            raise NotFound(f'Directory non trovata: {parent}')
        target = _join(parent, _clean_name(filename))

        plan = self.resolver.plan(Operation.UPLOAD, target)
        if plan.direct:
            try:
                stream.save(target)
                os.chmod(target, FILE_MODE)
                return Outcome.ok(extra={'path': target})
            except PermissionError:
                if not self.config.sudo_enabled:
                    raise PermissionDenied('Directory non scrivibile')
        elif not plan.elevate:
            raise PermissionDenied('Directory non scrivibile')

        staged = self._stage_upload(stream)
        try:
            self._run_elevated(
                self.resolver.fallback(Operation.UPLOAD, staged, target),
                'Errore nel caricamento del file con sudo',
            )
        finally:
            try:
                os.unlink(staged)
            except OSError as exc:
                log.warning("could not remove staged upload %s: %s", staged, exc)
        self._normalize_elevated(target, is_dir=False)
        return Outcome.ok(elevated=True, extra={'path': target})

    def _stage_upload(self, stream: Any) -> str:
        try:
            fd, staged = tempfile.mkstemp(prefix='upload_', dir=tempfile.gettempdir())
        except FileNotFoundError as exc:
            raise UploadTransportFailure('Directory temporanea mancante', status=500) from exc
        except OSError as exc:
            raise UploadTransportFailure('Impossibile scrivere il file su disco', status=500) from exc
        try:
            os.close(fd)
            stream.save(staged)
        except OSError as exc:
            os.unlink(staged)
            raise UploadTransportFailure('Impossibile scrivere il file su disco', status=500) from exc
        return staged

    # --- maintenance -------------------------------------------------------
    def _maintenance(self, argvs: List[List[str]]) -> Outcome:
        results = [self.executor.run(argv, elevate=True) for argv in argvs]
        success = all(result.ok for result in results)
        if not success:
            log.warning("maintenance finished with failures: %s",
                        [result.status for result in results])
        return Outcome(
            success=success,
            extra={'results': [result.to_dict() for result in results]},
        )

    @operation("Errore nella riparazione dei permessi")
    def fix_permissions(self, directory: Optional[str] = None) -> Outcome:
        if not self.config.sudo_enabled:
            raise PermissionDenied('Operazione non consentita senza sudo')
        target = _abs(directory or self.config.managed_root)
        if not os.path.isdir(target):
            raise NotFound(f'Directory non trovata: {target}')
        return self._maintenance(list(commands.fix_permissions(target, self.config.owner_spec)))

    @operation("Errore nella pulizia dei file temporanei")
    def cleanup_tmp(self) -> Outcome:
        if not self.config.sudo_enabled:
            raise PermissionDenied('Operazione non consentita senza sudo')
        argvs = [commands.cleanup_tmp(d) for d in self.config.tmp_dirs if os.path.isdir(d)]
        return self._maintenance(argvs)
