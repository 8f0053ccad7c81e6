"""
FileSystem Operation Invoker.

Turns one operation call into one HTTP exchange:

1. Normalize the caller's arguments into an OperationOptions record
2. Build the request from those options
3. Make sure a credential is present (prompting in interactive environments)
4. Send the request with the session's current credential and origin
5. Notify the caller's success/error callback and return or raise
"""

from __future__ import annotations

import inspect
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional, Sequence, Tuple, Union

from puterfs.shared.gate import GateErrorHandler, GateLogger
from puterfs.FileSystem.errors import CredentialRequired, FileSystemError
from puterfs.FileSystem.models import OperationOptions, OperationRequest

if TYPE_CHECKING:
    from puterfs.FileSystem.client import FileSystem

_log = GateLogger.get("FileSystem.Invoker")

CALLBACK_NAMES = ("success", "error")

RequestBuilder = Callable[[], OperationRequest]


def normalize_options(
    args: Tuple[Any, ...],
    kwargs: Dict[str, Any],
    positional: Sequence[str] = (),
) -> OperationOptions:
    """
    Normalize both calling conventions into one options record.

    Accepted forms (all equivalent):
        op({"path": "/a", "success": cb, "error": eb})
        op("/a", cb, eb)
        op("/a", success=cb, error=eb)

    Keyword arguments override keys from an options mapping.

    Args:
        args: Positional arguments as passed by the caller
        kwargs: Keyword arguments as passed by the caller
        positional: Parameter names the operation accepts positionally,
            in order; ``success`` and ``error`` follow them

    Returns:
        OperationOptions

    Raises:
        TypeError: Too many positional arguments or non-callable callbacks
    """
    params: Dict[str, Any] = {}

    if args and isinstance(args[0], Mapping):
        if len(args) > 1:
            raise TypeError("An options mapping must be the only positional argument")
        params.update(args[0])
    else:
        names = tuple(positional) + CALLBACK_NAMES
        if len(args) > len(names):
            raise TypeError(
                f"Expected at most {len(names)} positional arguments "
                f"({', '.join(names)}), got {len(args)}"
            )
        params.update(zip(names, args))

    params.update(kwargs)

    success = params.pop("success", None)
    error = params.pop("error", None)
    for name, callback in (("success", success), ("error", error)):
        if callback is not None and not callable(callback):
            raise TypeError(f"'{name}' callback must be callable")

    return OperationOptions(params=params, success=success, error=error)


def error_payload(error: BaseException) -> Any:
    """What the error callback receives for a failure."""
    if isinstance(error, FileSystemError):
        return error.payload
    return {"message": str(error), "code": type(error).__name__}


class OperationInvoker:
    """
    Dispatches a single operation.

    One instance per call; it holds the caller's callbacks and settles
    exactly once. Any failure from building the request onwards is
    reported to the error callback before it propagates.
    """

    def __init__(
        self,
        client: "FileSystem",
        options: OperationOptions,
        name: str = "operation",
    ):
        self._client = client
        self.options = options
        self.name = name

    async def invoke(
        self,
        request: Union[OperationRequest, RequestBuilder],
        transform: Optional[Callable[[Any], Any]] = None,
    ) -> Any:
        """
        Build the request, authenticate if needed, send it and settle.

        Args:
            request: The request, or a zero-argument callable building it
            transform: Applied to the server result before it is returned

        Returns:
            The (transformed) server result

        Raises:
            TypeError: Missing or invalid operation arguments
            OSError: A local upload source could not be read
            AuthenticationFailed: Interactive authentication was required and failed
            CredentialRequired: No credential in a non-interactive environment
            NetworkError: Transport, decoding or URL failure
            ServerError: Non-2xx response
        """
        try:
            if not isinstance(request, OperationRequest):
                request = request()
            self.name = request.operation

            await self._ensure_credential()
            session = self._client.session
            _log.debug(f"Dispatching {self.name} to {session.api_origin}")
            result = await self._client.api.send(
                request,
                api_origin=session.api_origin,
                auth_token=session.auth_token,
            )
            if transform is not None:
                result = transform(result)
        except Exception as e:
            await self._notify(self.options.error, error_payload(e), "error")
            raise

        await self._notify(self.options.success, result, "success")
        return result

    async def _ensure_credential(self) -> None:
        if self._client.session.auth_token:
            return

        if self._client.env.is_interactive:
            await self._client.ensure_authenticated()
            return

        raise CredentialRequired(
            f"'{self.name}' needs a credential: set an auth token "
            f"when running in the '{self._client.env.value}' environment"
        )

    async def _notify(
        self,
        callback: Optional[Callable[[Any], Any]],
        value: Any,
        kind: str,
    ) -> None:
        if callback is None:
            return
        label = f"{self.name} {kind} callback"
        result = GateErrorHandler.call("FileSystem.Invoker", label, callback, value)
        if inspect.isawaitable(result):
            try:
                await result
            except Exception as e:
                GateErrorHandler.handle("FileSystem.Invoker", label, e)


__all__ = ["normalize_options", "error_payload", "OperationInvoker"]
