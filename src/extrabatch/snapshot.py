"""Snapshots taken before high-risk batches.

BatchCompiler only needs ``create(spreadsheet_id) -> snapshot_id``.
DriveSnapshotService implements it by copying the spreadsheet file through
the Drive API; restoring from the copy is left to the caller.
"""

from __future__ import annotations

import ssl
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

import certifi
import httpx
from loguru import logger

from extrabatch.transport import DEFAULT_TIMEOUT, NetworkError, error_from_response

DRIVE_FILES_URL = "https://www.googleapis.com/drive/v3/files"


class SnapshotService(Protocol):
    async def create(self, spreadsheet_id: str) -> str:
        """Back up ``spreadsheet_id`` and return an id for the backup."""
        ...


@dataclass(frozen=True)
class Snapshot:
    source_spreadsheet_id: str
    copy_spreadsheet_id: str
    name: str
    created_at: str


class DriveSnapshotService:
    """Copies the spreadsheet file with Drive ``files.copy``."""

    def __init__(
        self,
        access_token: str,
        *,
        folder_id: str | None = None,
        timeout: int = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize the service.

        Args:
            access_token: OAuth2 access token with a Drive scope
            folder_id: Folder receiving the copies (defaults to the source's)
            timeout: Request timeout in seconds
        """
        self._folder_id = folder_id
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        self._client = httpx.AsyncClient(
            timeout=timeout,
            verify=ssl_context,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            },
        )
        self._snapshots: list[Snapshot] = []

    async def create(self, spreadsheet_id: str, name: str | None = None) -> str:
        """Copy the spreadsheet and return the id of the copy."""
        created_at = datetime.now(UTC).isoformat()
        name = name or f"Snapshot {created_at}"
        body: dict[str, object] = {"name": name}
        if self._folder_id:
            body["parents"] = [self._folder_id]

        try:
            response = await self._client.post(
                f"{DRIVE_FILES_URL}/{spreadsheet_id}/copy",
                params={"fields": "id,name", "supportsAllDrives": "true"},
                json=body,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise error_from_response(e.response) from e
        except httpx.RequestError as e:
            raise NetworkError(f"Network error: {e}") from e

        copy_id: str = response.json()["id"]
        self._snapshots.append(
            Snapshot(
                source_spreadsheet_id=spreadsheet_id,
                copy_spreadsheet_id=copy_id,
                name=name,
                created_at=created_at,
            )
        )
        logger.info(
            "Snapshot created",
            extra={"spreadsheet_id": spreadsheet_id, "snapshot_id": copy_id},
        )
        return copy_id

    def snapshots(self, spreadsheet_id: str | None = None) -> list[Snapshot]:
        """Snapshots created by this service, optionally for one spreadsheet."""
        return [
            s
            for s in self._snapshots
            if spreadsheet_id is None or s.source_spreadsheet_id == spreadsheet_id
        ]

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
