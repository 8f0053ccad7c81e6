"""Shared utilities for puterfs."""

from puterfs.shared.gate import (
    ConfigLoader,
    GateErrorHandler,
    GateLogger,
    PathUtils,
    build_health_status,
)

__all__ = [
    "ConfigLoader",
    "GateErrorHandler",
    "GateLogger",
    "PathUtils",
    "build_health_status",
]
