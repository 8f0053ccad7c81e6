"""
Shared utilities for puterfs.

Provides consolidated patterns used across the client:
- GateLogger: Namespaced logging with Python's logging module
- GateErrorHandler: Logging of faults raised by user-supplied callables
- build_health_status: Standardized health dict
- ConfigLoader: JSON config loading/saving
- PathUtils: Common path operations
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union


# =============================================================================
# GateLogger - Unified logging
# =============================================================================


class GateLogger:
    """
    Unified logging for all puterfs components.

    Each component gets its own logger under the "puterfs" namespace.
    """

    ROOT = "puterfs"

    _loggers: Dict[str, logging.Logger] = {}
    _configured = False

    @classmethod
    def _ensure_configured(cls):
        """Ensure basic logging is configured."""
        if cls._configured:
            return

        root_logger = logging.getLogger(cls.ROOT)
        if not root_logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                "[%(name)s] %(levelname)s: %(message)s"
            )
            handler.setFormatter(formatter)
            root_logger.addHandler(handler)
            root_logger.setLevel(logging.WARNING)

        cls._configured = True

    @classmethod
    def get(cls, component: str) -> logging.Logger:
        """
        Get a logger for a specific component.

        Args:
            component: Name of the component (e.g., "FileSystem.Connection")

        Returns:
            Logger instance for the component
        """
        cls._ensure_configured()

        logger_name = f"{cls.ROOT}.{component}"
        if logger_name not in cls._loggers:
            cls._loggers[logger_name] = logging.getLogger(logger_name)

        return cls._loggers[logger_name]

    @classmethod
    def set_level(cls, level: int, component: Optional[str] = None):
        """
        Set logging level.

        Args:
            level: Logging level (e.g., logging.DEBUG)
            component: Specific component to set level for, or None for all
        """
        if component:
            cls.get(component).setLevel(level)
        else:
            logging.getLogger(cls.ROOT).setLevel(level)


# =============================================================================
# GateErrorHandler - Faults in caller-supplied code
# =============================================================================


class GateErrorHandler:
    """
    Error handling for code the library calls but does not own.

    Callbacks and event subscribers are notified only; a fault inside
    one is logged with its traceback and the library carries on.
    """

    @staticmethod
    def handle(
        component: str,
        operation: str,
        exception: BaseException,
        default_return: Any = None,
    ) -> Any:
        """
        Log a fault raised by a callback.

        Args:
            component: Name of the component
            operation: What was being called
            exception: The exception that occurred
            default_return: Value to return

        Returns:
            The default_return value
        """
        logger = GateLogger.get(component)
        logger.error(
            f"{operation} failed: {exception!r}",
            exc_info=(type(exception), exception, exception.__traceback__),
        )
        return default_return

    @staticmethod
    def call(component: str, operation: str, func, *args) -> Any:
        """
        Invoke func(*args), logging instead of propagating its errors.

        Returns:
            The function's return value, or None if it raised
        """
        try:
            return func(*args)
        except Exception as e:
            return GateErrorHandler.handle(component, operation, e)


# =============================================================================
# Health status
# =============================================================================


def build_health_status(
    component: str,
    initialized: bool,
    dependencies: List[str],
    checks: Dict[str, bool],
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Build a standardized health status dict.

    Args:
        component: Name of the component
        initialized: Whether the component is initialized
        dependencies: List of dependency names
        checks: Dict of check name -> passed
        details: Additional details

    Returns:
        Standardized health status dict
    """
    all_checks_passed = all(checks.values()) if checks else True

    return {
        "component": component,
        "healthy": initialized and all_checks_passed,
        "initialized": initialized,
        "dependencies": dependencies,
        "checks": checks,
        "details": details or {},
    }


# =============================================================================
# ConfigLoader - JSON config loading
# =============================================================================


class ConfigLoader:
    """JSON config file handling."""

    @staticmethod
    def read(path: Union[str, Path]) -> Optional[Dict[str, Any]]:
        """
        Read a JSON object from disk.

        Returns:
            The parsed dict, or None if the file is missing or invalid
        """
        path = Path(path)

        if not path.exists():
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            GateLogger.get("ConfigLoader").error(f"Failed to load config from {path}: {e}")
            return None

        if not isinstance(data, dict):
            GateLogger.get("ConfigLoader").error(f"Config in {path} is not a JSON object")
            return None

        return data

    @staticmethod
    def save(
        path: Union[str, Path],
        config: Any,
        create_dirs: bool = True,
    ) -> bool:
        """
        Save a config object to a JSON file.

        Args:
            path: Path to save the config
            config: Config object with to_dict() or model_dump() method
            create_dirs: Create parent directories if needed

        Returns:
            True if successful
        """
        path = Path(path)

        try:
            if create_dirs:
                PathUtils.ensure_dirs(path)

            if hasattr(config, "to_dict"):
                data = config.to_dict()
            elif hasattr(config, "model_dump"):
                data = config.model_dump(mode="json")
            else:
                data = dict(config)

            with open(path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, default=str)

            return True

        except (OSError, TypeError, ValueError) as e:
            GateLogger.get("ConfigLoader").error(f"Failed to save config to {path}: {e}")
            return False


# =============================================================================
# PathUtils - Common path operations
# =============================================================================


class PathUtils:
    """Common local path utilities."""

    @staticmethod
    def ensure_dirs(*paths: Union[str, Path]) -> None:
        """
        Ensure directories exist for the given paths.

        For file paths, creates the parent directory.
        For directory paths, creates the directory.
        """
        for path in paths:
            path = Path(path)
            if path.suffix:
                path.parent.mkdir(parents=True, exist_ok=True)
            else:
                path.mkdir(parents=True, exist_ok=True)
