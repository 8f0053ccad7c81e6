"""
FileSystem - Remote file system client.

Operations are awaitables on a FileSystem instance; each also accepts
``success``/``error`` callbacks. A socket channel stays open next to the
HTTP operations for server-push events.

Client:
    - FileSystem(auth_token, api_origin, app_id) - Create and connect
    - create_client(config_path=None, **kwargs) - Create from config/env
    - set_auth_token(token) / set_api_origin(origin) - Rotate and reconnect

Operations:
    - readdir, stat, space, read, sign
    - mkdir, copy, move, rename, delete, upload, write

Socket Channel:
    - on(event, handler) / off(event, handler)
    - connection_state, socket_id
    - close()
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

from puterfs.shared.gate import GateLogger
from puterfs.FileSystem.api import APIClient
from puterfs.FileSystem.client import Authenticator, FileSystem
from puterfs.FileSystem.config import (
    DEFAULT_API_ORIGIN,
    FileSystemConfig,
    load_config,
    save_config,
)
from puterfs.FileSystem.connection import ConnectionManager
from puterfs.FileSystem.errors import (
    AuthenticationFailed,
    ChannelError,
    CredentialRequired,
    FileSystemError,
    NetworkError,
    ServerError,
)
from puterfs.FileSystem.events import DebugLogSubscriber, EventEmitter
from puterfs.FileSystem.invoker import OperationInvoker, normalize_options
from puterfs.FileSystem.models import (
    ClientSession,
    ConnectionState,
    Environment,
    OperationOptions,
    OperationRequest,
    ReconnectPolicy,
)
from puterfs.FileSystem.operations import resolve_path
from puterfs.FileSystem.transport import SocketChannel, SocketTransport

_log = GateLogger.get("FileSystem")


def create_client(
    config_path: Optional[Union[str, Path]] = None,
    **kwargs,
) -> FileSystem:
    """
    Create a FileSystem from the environment and optional JSON config.

    Must be called inside a running event loop unless auto_connect=False.

    Args:
        config_path: JSON config file (defaults to data/puterfs.json)
        **kwargs: Passed through to FileSystem

    Returns:
        Connected FileSystem client
    """
    config = load_config(config_path)
    client = FileSystem.from_config(config, **kwargs)
    _log.info(f"FileSystem client created for {config.api_origin}")
    return client


__all__ = [
    # Client
    "FileSystem",
    "Authenticator",
    "create_client",
    # Collaborators
    "APIClient",
    "ConnectionManager",
    "SocketChannel",
    "SocketTransport",
    "OperationInvoker",
    "normalize_options",
    "resolve_path",
    "EventEmitter",
    "DebugLogSubscriber",
    # Config
    "DEFAULT_API_ORIGIN",
    "FileSystemConfig",
    "load_config",
    "save_config",
    # Models
    "ClientSession",
    "ConnectionState",
    "Environment",
    "OperationOptions",
    "OperationRequest",
    "ReconnectPolicy",
    # Errors
    "FileSystemError",
    "AuthenticationFailed",
    "CredentialRequired",
    "NetworkError",
    "ServerError",
    "ChannelError",
]
