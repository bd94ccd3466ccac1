"""Client for the Gitpod workspace-service JSON-RPC interface."""

from __future__ import annotations

from .config import ClientSettings, ConfigurationError, load_settings
from .connection import JsonRpcConnection
from .models import (
    GetWorkspacesOptions,
    SendHeartBeatOptions,
    User,
    WorkspaceInfo,
    WorkspaceInstance,
)
from .protocol import ConnectionClosedError, ResponseError, TransportError
from .server import GitpodServer, GitpodServerClient
from .service import ConnectionService, connect

__all__ = [
    "ClientSettings",
    "ConfigurationError",
    "ConnectionClosedError",
    "ConnectionService",
    "GetWorkspacesOptions",
    "GitpodServer",
    "GitpodServerClient",
    "JsonRpcConnection",
    "ResponseError",
    "SendHeartBeatOptions",
    "TransportError",
    "User",
    "WorkspaceInfo",
    "WorkspaceInstance",
    "connect",
    "load_settings",
]
