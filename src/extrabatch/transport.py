"""Transport layer for reading and mutating spreadsheets.

Defines the Transport protocol and implementations:
- GoogleSheetsTransport: Production transport using Google Sheets API
- LocalFileTransport: Test transport reading from local golden files
"""

from __future__ import annotations

import json
import ssl
import urllib.parse
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import certifi
import httpx

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

# API constants
API_BASE = "https://sheets.googleapis.com/v4/spreadsheets"
DEFAULT_TIMEOUT = 60


class TransportError(Exception):
    """Base exception for transport errors."""


class NetworkError(TransportError):
    """Raised when the request never produced an HTTP response."""


class APIError(TransportError):
    """Raised when the API returns an error."""

    def __init__(self, message: str, status_code: int, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class AuthenticationError(APIError):
    """Raised when authentication fails (401/403)."""

    def __init__(self, message: str, status_code: int = 401, body: str = "") -> None:
        super().__init__(message, status_code, body)


class PermissionDeniedError(AuthenticationError):
    """Raised when the caller lacks access to the spreadsheet (403)."""

    def __init__(self, message: str, status_code: int = 403, body: str = "") -> None:
        super().__init__(message, status_code, body)


class NotFoundError(APIError):
    """Raised when spreadsheet is not found (404)."""

    def __init__(self, message: str, status_code: int = 404, body: str = "") -> None:
        super().__init__(message, status_code, body)


class RateLimitError(APIError):
    """Raised when the API rejects a call with 429 Too Many Requests."""

    def __init__(self, message: str, status_code: int = 429, body: str = "") -> None:
        super().__init__(message, status_code, body)


def error_from_response(response: httpx.Response) -> APIError:
    """Map an unsuccessful Google API response to an APIError subclass."""
    status = response.status_code
    body = response.text
    if status == 401:
        return AuthenticationError("Invalid or expired access token", body=body)
    if status == 403:
        if "quota" in body.lower():
            return APIError(
                f"API quota exceeded ({status}): {body}", status_code=status, body=body
            )
        return PermissionDeniedError(
            "Access denied. Check your scopes and permissions.", body=body
        )
    if status == 404:
        return NotFoundError(
            "Spreadsheet not found. Check the ID and sharing permissions.", body=body
        )
    if status == 429:
        return RateLimitError(f"Rate limit exceeded ({status}): {body}", body=body)
    return APIError(f"API error ({status}): {body}", status_code=status, body=body)


class Transport(ABC):
    """Abstract base class for spreadsheet transport.

    Implementations read spreadsheet metadata and values and apply
    batchUpdate mutations against a spreadsheet source (Google API,
    local files, etc.).
    """

    @abstractmethod
    async def get_spreadsheet(
        self,
        spreadsheet_id: str,
        *,
        fields: str | None = None,
        include_grid_data: bool = False,
        ranges: Sequence[str] = (),
    ) -> dict[str, Any]:
        """Fetch a Spreadsheet resource.

        Args:
            spreadsheet_id: The spreadsheet identifier
            fields: Optional partial-response field mask
            include_grid_data: Whether to include cell data
            ranges: A1 ranges limiting the returned grid data

        Returns:
            The Spreadsheet JSON object
        """
        ...

    @abstractmethod
    async def get_values(
        self,
        spreadsheet_id: str,
        range_a1: str,
        *,
        value_render_option: str = "UNFORMATTED_VALUE",
    ) -> list[list[Any]]:
        """Fetch the values of a single A1 range."""
        ...

    @abstractmethod
    async def batch_update(
        self,
        spreadsheet_id: str,
        requests: list[dict[str, Any]],
        *,
        include_spreadsheet_in_response: bool = False,
        response_include_grid_data: bool = False,
        response_ranges: Sequence[str] = (),
    ) -> dict[str, Any]:
        """Apply a list of requests in one spreadsheets.batchUpdate call.

        Returns:
            The BatchUpdateSpreadsheetResponse JSON object
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close any open connections."""
        ...


class GoogleSheetsTransport(Transport):
    """Production transport that talks to the Google Sheets API.

    Handles authentication, SSL, and HTTP communication.
    """

    def __init__(
        self,
        access_token: str,
        timeout: int = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize the transport.

        Args:
            access_token: OAuth2 access token with the spreadsheets scope
            timeout: Request timeout in seconds
        """
        self._access_token = access_token
        self._timeout = timeout
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        self._client = httpx.AsyncClient(
            timeout=timeout,
            verify=ssl_context,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            },
        )

    async def get_spreadsheet(
        self,
        spreadsheet_id: str,
        *,
        fields: str | None = None,
        include_grid_data: bool = False,
        ranges: Sequence[str] = (),
    ) -> dict[str, Any]:
        """Fetch a Spreadsheet resource from Google Sheets API."""
        params: list[tuple[str, str]] = []
        if include_grid_data:
            params.append(("includeGridData", "true"))
        if fields:
            params.append(("fields", fields))
        params.extend(("ranges", r) for r in ranges)

        url = f"{API_BASE}/{spreadsheet_id}"
        if params:
            url += "?" + urllib.parse.urlencode(params)
        return await self._request("GET", url)

    async def get_values(
        self,
        spreadsheet_id: str,
        range_a1: str,
        *,
        value_render_option: str = "UNFORMATTED_VALUE",
    ) -> list[list[Any]]:
        """Fetch values of one range from Google Sheets API."""
        encoded_range = urllib.parse.quote(range_a1, safe="")
        url = (
            f"{API_BASE}/{spreadsheet_id}/values/{encoded_range}"
            f"?valueRenderOption={value_render_option}"
        )
        response = await self._request("GET", url)
        values: list[list[Any]] = response.get("values", [])
        return values

    async def batch_update(
        self,
        spreadsheet_id: str,
        requests: list[dict[str, Any]],
        *,
        include_spreadsheet_in_response: bool = False,
        response_include_grid_data: bool = False,
        response_ranges: Sequence[str] = (),
    ) -> dict[str, Any]:
        """Send a batchUpdate request to Google Sheets API."""
        url = f"{API_BASE}/{spreadsheet_id}:batchUpdate"
        body: dict[str, Any] = {"requests": requests}
        if include_spreadsheet_in_response:
            body["includeSpreadsheetInResponse"] = True
            if response_include_grid_data:
                body["responseIncludeGridData"] = True
            if response_ranges:
                body["responseRanges"] = list(response_ranges)
        return await self._request("POST", url, json_body=body)

    async def _request(
        self,
        method: str,
        url: str,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make an authenticated request."""
        try:
            response = await self._client.request(method, url, json=json_body)
            response.raise_for_status()
            result: dict[str, Any] = response.json()
            return result
        except httpx.HTTPStatusError as e:
            raise error_from_response(e.response) from e
        except httpx.RequestError as e:
            raise NetworkError(f"Network error: {e}") from e

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()


class LocalFileTransport(Transport):
    """Test transport that reads from local golden files.

    Expected directory structure:
        golden_dir/
            <spreadsheet_id>/
                spreadsheet.json
                values.json          (optional: {"<A1 range>": [[...]]})
                batch_update.json    (optional: canned response)

    batch_update calls are recorded and answered with the canned response
    when present, otherwise with one empty reply per request.
    """

    def __init__(self, golden_dir: Path) -> None:
        """Initialize the transport.

        Args:
            golden_dir: Directory containing golden test files
        """
        self._golden_dir = golden_dir
        self._batch_updates: list[dict[str, Any]] = []

    def _read_json(self, spreadsheet_id: str, name: str) -> Any:
        path = self._golden_dir / spreadsheet_id / name
        if not path.exists():
            raise NotFoundError(f"Golden file not found: {path}")
        return json.loads(path.read_text())

    async def get_spreadsheet(
        self,
        spreadsheet_id: str,
        *,
        fields: str | None = None,
        include_grid_data: bool = False,
        ranges: Sequence[str] = (),
    ) -> dict[str, Any]:
        """Read spreadsheet from local file."""
        response: dict[str, Any] = self._read_json(spreadsheet_id, "spreadsheet.json")
        if not include_grid_data:
            for sheet in response.get("sheets", []):
                sheet.pop("data", None)
        return response

    async def get_values(
        self,
        spreadsheet_id: str,
        range_a1: str,
        *,
        value_render_option: str = "UNFORMATTED_VALUE",
    ) -> list[list[Any]]:
        """Read range values from local file."""
        path = self._golden_dir / spreadsheet_id / "values.json"
        if not path.exists():
            return []
        values: dict[str, list[list[Any]]] = json.loads(path.read_text())
        return values.get(range_a1, [])

    async def batch_update(
        self,
        spreadsheet_id: str,
        requests: list[dict[str, Any]],
        *,
        include_spreadsheet_in_response: bool = False,
        response_include_grid_data: bool = False,
        response_ranges: Sequence[str] = (),
    ) -> dict[str, Any]:
        """Record batch update requests (for testing)."""
        self._batch_updates.append(
            {"spreadsheet_id": spreadsheet_id, "requests": requests}
        )
        path = self._golden_dir / spreadsheet_id / "batch_update.json"
        if path.exists():
            canned: dict[str, Any] = json.loads(path.read_text())
            return canned
        response: dict[str, Any] = {
            "spreadsheetId": spreadsheet_id,
            "replies": [{} for _ in requests],
        }
        if include_spreadsheet_in_response:
            response["updatedSpreadsheet"] = await self.get_spreadsheet(
                spreadsheet_id, include_grid_data=response_include_grid_data
            )
        return response

    async def close(self) -> None:
        """No-op for local file transport."""
        pass

    @property
    def batch_updates(self) -> list[dict[str, Any]]:
        """Get recorded batch updates (for test assertions)."""
        return self._batch_updates
