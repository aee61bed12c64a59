import dataclasses
import grp
import os
import pwd
from typing import Iterable, List, Optional

import pytest

from devfiles.config import GatewayConfig
from devfiles.executor import CommandResult, PrivilegedExecutor
from devfiles.gateway import FileGateway
from devfiles.main import create_app
from devfiles.resolver import CapabilityResolver


def _current_user() -> str:
    return pwd.getpwuid(os.getuid()).pw_name


def _current_group() -> str:
    return grp.getgrgid(os.getgid()).gr_name


class DenyingResolver(CapabilityResolver):
    """Pretends the service account lacks access for the listed operations."""

    def __init__(self, config: GatewayConfig, denied: Iterable[str] = ()) -> None:
        super().__init__(config)
        self.denied = set(denied)

    def direct_ok(self, operation, path, destination=None):
        if operation in self.denied:
            return False
        return super().direct_ok(operation, path, destination)


class RecordingExecutor(PrivilegedExecutor):
    """Runs commands for real but records them.

    With ``sudo_command=()`` elevation is a no-op prefix, so the elevated
    code path executes the exact argv it would hand to sudo.
    """

    def __init__(self, config: GatewayConfig, scripted: Optional[List[CommandResult]] = None) -> None:
        super().__init__(config)
        self.calls: List[tuple] = []
        self.scripted = list(scripted or [])

    def run(self, argv, elevate=False, stdin=None):
        self.calls.append((list(argv), elevate))
        if self.scripted:
            return self.scripted.pop(0)
        return super().run(argv, elevate=elevate, stdin=stdin)

    @property
    def elevated_calls(self) -> List[List[str]]:
        return [argv for argv, elevate in self.calls if elevate]


@pytest.fixture
def managed_root(tmp_path):
    root = tmp_path / "html"
    root.mkdir()
    return root


@pytest.fixture
def config(managed_root, tmp_path):
    return GatewayConfig(
        managed_root=str(managed_root),
        sudo_enabled=True,
        config_dir=str(tmp_path / "conf"),
        service_user=_current_user(),
        service_group=_current_group(),
        sudo_command=(),
        tmp_dirs=(str(tmp_path / "tmp1"), str(tmp_path / "tmp2")),
    )


@pytest.fixture
def no_sudo_config(config):
    return dataclasses.replace(config, sudo_enabled=False)


@pytest.fixture
def executor(config):
    return RecordingExecutor(config)


@pytest.fixture
def gateway(config, executor):
    return FileGateway(config, executor=executor)


@pytest.fixture
def make_gateway():
    def factory(config, denied=(), scripted=None):
        executor = RecordingExecutor(config, scripted)
        resolver = DenyingResolver(config, denied)
        return FileGateway(config, executor=executor, resolver=resolver), executor

    return factory


@pytest.fixture
def client(config, gateway):
    app = create_app(config, gateway)
    app.config["TESTING"] = True
    return app.test_client()
