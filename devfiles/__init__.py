"""Privileged file manager backend for a single managed directory tree."""

from devfiles.config import GatewayConfig
from devfiles.gateway import FileGateway, Outcome

__all__ = ["FileGateway", "GatewayConfig", "Outcome"]
