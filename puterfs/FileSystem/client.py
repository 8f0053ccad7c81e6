"""
FileSystem - Client Facade.

One FileSystem instance is one logical client: a session (credential,
origin, app id), an HTTP collaborator for operations, and one
ConnectionManager for the socket channel.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from puterfs.shared.gate import GateLogger, build_health_status
from puterfs.FileSystem.api import APIClient
from puterfs.FileSystem.config import FileSystemConfig
from puterfs.FileSystem.connection import ConnectionManager, Transport
from puterfs.FileSystem.errors import AuthenticationFailed
from puterfs.FileSystem.invoker import OperationInvoker, RequestBuilder
from puterfs.FileSystem.models import (
    ClientSession,
    ConnectionState,
    Environment,
    OperationOptions,
    OperationRequest,
)
from puterfs.FileSystem.operations import FileSystemOperations
from puterfs.FileSystem.transport import SocketTransport

_log = GateLogger.get("FileSystem")

Authenticator = Callable[[], Awaitable[Optional[str]]]


class FileSystem(FileSystemOperations):
    """
    Remote file system client.

    Handles:
    - Operations (readdir, stat, space, mkdir, copy, rename, upload,
      read, write, sign, delete, move)
    - The socket channel lifecycle
    - Credential and origin rotation
    """

    def __init__(
        self,
        auth_token: Optional[str],
        api_origin: str,
        app_id: Optional[str],
        *,
        env: Union[Environment, str] = Environment.APP,
        authenticator: Optional[Authenticator] = None,
        config: Optional[FileSystemConfig] = None,
        transport: Optional[Transport] = None,
        api: Optional[APIClient] = None,
        auto_connect: bool = True,
        debug: Optional[bool] = None,
    ):
        """
        Create a client and connect its socket channel.

        Args:
            auth_token: Credential, or None to authenticate on demand (web only)
            api_origin: Base URL of the API server
            app_id: ID of the calling app
            env: Runtime environment; only "web" can authenticate interactively
            authenticator: Coroutine function returning a new credential
            config: Timeouts, reconnect policy and debug flag
            transport: Socket channel factory (defaults to SocketTransport)
            api: HTTP collaborator (defaults to APIClient)
            auto_connect: Open the socket channel immediately
            debug: Log socket lifecycle events (defaults to config.debug)
        """
        self.config = config or FileSystemConfig()
        self.session = ClientSession(
            auth_token=auth_token, api_origin=api_origin, app_id=app_id
        )
        self.env = Environment(env)
        self.debug = self.config.debug if debug is None else debug

        self._authenticator = authenticator
        self._auth_task: Optional[asyncio.Future] = None

        self.api = api or APIClient(timeout=self.config.timeout)
        self.connection = ConnectionManager(
            self.session,
            transport or SocketTransport(
                policy=self.config.reconnection,
                connect_timeout=self.config.connect_timeout,
            ),
            debug=self.debug,
        )

        if auto_connect:
            self.connection.initialize()

    @classmethod
    def from_config(cls, config: FileSystemConfig, **kwargs) -> "FileSystem":
        """Create a client from a FileSystemConfig."""
        return cls(
            config.auth_token,
            config.api_origin,
            config.app_id,
            env=kwargs.pop("env", config.env),
            config=config,
            **kwargs,
        )

    # =========================================================================
    # Session
    # =========================================================================

    @property
    def auth_token(self) -> Optional[str]:
        return self.session.auth_token

    @property
    def api_origin(self) -> str:
        return self.session.api_origin

    @property
    def app_id(self) -> Optional[str]:
        return self.session.app_id

    @property
    def is_authenticated(self) -> bool:
        return self.session.is_authenticated

    def set_auth_token(self, auth_token: Optional[str]) -> None:
        """Replace the credential and reset the socket channel with it."""
        self.session.auth_token = auth_token
        self.connection.initialize()

    def set_api_origin(self, api_origin: str) -> None:
        """Replace the API origin and reset the socket channel against it."""
        self.session.api_origin = api_origin
        self.connection.initialize()

    async def ensure_authenticated(self) -> None:
        """
        Obtain a credential through the interactive authenticator.

        Concurrent callers share a single attempt.

        Raises:
            AuthenticationFailed: No authenticator, it raised, or it produced no credential
        """
        if self.session.auth_token:
            return
        if self._auth_task is None or self._auth_task.done():
            self._auth_task = asyncio.ensure_future(self._authenticate())
        await asyncio.shield(self._auth_task)

    async def _authenticate(self) -> None:
        if self._authenticator is None:
            raise AuthenticationFailed("Authentication required but no authenticator is configured")

        _log.info("No credential set; starting interactive authentication")
        try:
            token = await self._authenticator()
        except Exception as e:
            _log.warning(f"Authentication failed: {e}")
            raise AuthenticationFailed(
                "Authentication failed.",
                payload={"message": "Authentication failed.", "error": str(e)},
            ) from e

        if token:
            self.set_auth_token(token)
        if not self.session.auth_token:
            raise AuthenticationFailed("Authentication finished without a credential")

    # =========================================================================
    # Operations
    # =========================================================================

    async def _invoke(
        self,
        options: OperationOptions,
        request: Union[OperationRequest, RequestBuilder],
        name: str = "operation",
        transform: Optional[Callable[[Any], Any]] = None,
    ) -> Any:
        return await OperationInvoker(self, options, name).invoke(request, transform)

    # =========================================================================
    # Socket channel
    # =========================================================================

    @property
    def connection_state(self) -> ConnectionState:
        return self.connection.state

    @property
    def socket_id(self) -> Optional[str]:
        return self.connection.socket_id

    def on(self, event: str, handler=None):
        """Subscribe to socket lifecycle and server-push events."""
        return self.connection.on(event, handler)

    def off(self, event: str, handler=None) -> None:
        self.connection.off(event, handler)

    async def close(self) -> None:
        """Close the socket channel."""
        await self.connection.close()

    async def __aenter__(self) -> "FileSystem":
        if self.connection.channel is None:
            self.connection.initialize()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def get_health_status(self) -> Dict[str, Any]:
        """Get detailed health status."""
        details = self.session.to_dict()
        details.update(self.connection.get_status())
        details["env"] = self.env.value
        return build_health_status(
            component="FileSystem",
            initialized=self.connection.channel is not None,
            dependencies=["httpx", "websockets"],
            checks={
                "credential": self.is_authenticated,
                "socket_connected": self.connection.is_connected,
            },
            details=details,
        )

    def __repr__(self) -> str:
        return (
            f"FileSystem(api_origin={self.session.api_origin!r}, "
            f"app_id={self.session.app_id!r}, state={self.connection.state.value!r})"
        )


__all__ = ["FileSystem", "Authenticator"]
