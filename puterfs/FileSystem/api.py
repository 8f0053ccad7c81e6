"""
FileSystem API requests.

Performs one HTTP request/response exchange per operation with httpx and
maps the outcome onto the error taxonomy.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from puterfs.shared.gate import GateLogger
from puterfs.FileSystem.errors import NetworkError, ServerError
from puterfs.FileSystem.models import OperationRequest

_log = GateLogger.get("FileSystem.API")

DEFAULT_TIMEOUT = 30.0


def _parse_body(response: httpx.Response) -> Any:
    """Decode a response body as JSON, falling back to text."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class APIClient:
    """HTTP collaborator for file system operations."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            timeout: Request timeout in seconds
            transport: Optional httpx transport (httpx.MockTransport in tests)
        """
        self.timeout = timeout
        self._transport = transport

    @staticmethod
    def build_headers(auth_token: Optional[str]) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"
        return headers

    async def send(
        self,
        request: OperationRequest,
        *,
        api_origin: str,
        auth_token: Optional[str],
    ) -> Any:
        """
        Send one request.

        Args:
            request: What to send
            api_origin: Base URL of the API server
            auth_token: Credential to attach

        Returns:
            Parsed JSON (or bytes for binary reads)

        Raises:
            NetworkError: Transport, decoding, redirect or URL failure
            ServerError: Non-2xx response
        """
        url = api_origin.rstrip("/") + request.endpoint
        _log.debug(f"{request.method} {url}")

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.request(
                    request.method,
                    url,
                    headers=self.build_headers(auth_token),
                    params=request.query,
                    json=request.payload,
                    data=request.form,
                    files=request.files,
                )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            # Transport failures plus body decoding, redirect and URL errors
            _log.warning(f"{request.operation} failed: {e!r}")
            raise NetworkError(
                f"{request.operation} request failed: {e}",
                payload={"message": str(e), "code": type(e).__name__},
            ) from e

        return self._parse_response(request, response)

    def _parse_response(self, request: OperationRequest, response: httpx.Response) -> Any:
        if not response.is_success:
            body = _parse_body(response)
            message, code = response.reason_phrase or "Request failed", None
            if isinstance(body, dict):
                message = body.get("message") or message
                code = body.get("code")
            elif isinstance(body, str) and body:
                message = body
            payload = body if body is not None else {"message": message}
            _log.warning(f"{request.operation} returned {response.status_code}: {message}")
            raise ServerError(message, status=response.status_code, payload=payload, code=code)

        if request.response_type == "bytes":
            return response.content
        return _parse_body(response)


__all__ = ["APIClient", "DEFAULT_TIMEOUT"]
