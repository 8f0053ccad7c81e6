"""
FileSystem Models.

Pydantic models and records for the client session, connection state,
reconnect policy and per-call operation data.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field


class ConnectionState(str, Enum):
    """Socket channel lifecycle state."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class Environment(str, Enum):
    """Runtime the client runs in."""

    WEB = "web"
    APP = "app"
    GUI = "gui"
    SCRIPT = "script"

    @property
    def is_interactive(self) -> bool:
        """Whether a UI is available to obtain credentials on demand."""
        return self is Environment.WEB


class ClientSession(BaseModel):
    """Credential and server origin shared by every operation of one client."""

    auth_token: Optional[str] = Field(default=None, description="Opaque credential")
    api_origin: str = Field(description="Base URL of the API server")
    app_id: Optional[str] = Field(default=None, description="Calling application ID")

    @property
    def is_authenticated(self) -> bool:
        return bool(self.auth_token)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary. The credential is masked."""
        return {
            "authenticated": self.is_authenticated,
            "api_origin": self.api_origin,
            "app_id": self.app_id,
        }


class ReconnectPolicy(BaseModel):
    """Reconnection budget and exponential backoff for the socket channel."""

    enabled: bool = Field(default=True, description="Reconnect after transport drops")
    attempts: Optional[int] = Field(
        default=10, ge=0, description="Attempts before giving up (None = unlimited)"
    )
    delay: float = Field(default=1.0, ge=0, description="Initial delay in seconds")
    delay_max: float = Field(default=5.0, ge=0, description="Delay ceiling in seconds")
    randomization_factor: float = Field(default=0.5, ge=0, le=1)

    def exhausted(self, attempt: int) -> bool:
        """True when ``attempt`` more tries would exceed the budget."""
        if not self.enabled:
            return True
        return self.attempts is not None and attempt > self.attempts

    def backoff(self, attempt: int, rand: Optional[float] = None) -> float:
        """
        Delay before reconnect attempt number ``attempt`` (1-based).

        Args:
            attempt: Attempt number
            rand: Random value in [0, 1) for jitter (defaults to random.random())

        Returns:
            Delay in seconds
        """
        base = self.delay * (2 ** max(attempt - 1, 0))
        if self.randomization_factor:
            if rand is None:
                rand = random.random()
            deviation = rand * self.randomization_factor * base
            base = base - deviation if int(rand * 10) % 2 == 0 else base + deviation
        return max(0.0, min(base, self.delay_max))


@dataclass
class OperationOptions:
    """Canonical options record for one operation call."""

    params: Dict[str, Any] = field(default_factory=dict)
    success: Optional[Callable[[Any], Any]] = None
    error: Optional[Callable[[Any], Any]] = None

    def get(self, key: str, default: Any = None) -> Any:
        value = self.params.get(key)
        return default if value is None else value


@dataclass
class OperationRequest:
    """Wire description of one request/response exchange."""

    endpoint: str
    method: str = "POST"
    payload: Optional[Dict[str, Any]] = None
    query: Optional[Dict[str, Any]] = None
    form: Optional[Dict[str, Any]] = None
    files: Optional[List[Tuple[str, Tuple[str, bytes, str]]]] = None
    response_type: str = "json"

    @property
    def operation(self) -> str:
        return self.endpoint.strip("/")


__all__ = [
    "ConnectionState",
    "Environment",
    "ClientSession",
    "ReconnectPolicy",
    "OperationOptions",
    "OperationRequest",
]
