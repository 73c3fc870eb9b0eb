"""Tests for DriveSnapshotService."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import httpx
import pytest

from extrabatch.snapshot import DRIVE_FILES_URL, DriveSnapshotService
from extrabatch.transport import NetworkError, PermissionDeniedError

if TYPE_CHECKING:
    from collections.abc import Callable


def _service_with(
    handler: Callable[[httpx.Request], httpx.Response],
    folder_id: str | None = None,
) -> DriveSnapshotService:
    service = DriveSnapshotService("token-123", folder_id=folder_id)
    service._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return service


class TestDriveSnapshotService:
    """Tests for snapshot creation through Drive files.copy."""

    async def test_create_copies_file(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": "copy-1", "name": "Backup"})

        service = _service_with(handler, folder_id="folder-9")
        snapshot_id = await service.create("abc", name="Backup")
        await service.close()

        assert snapshot_id == "copy-1"
        request = seen[0]
        assert request.method == "POST"
        assert str(request.url).startswith(f"{DRIVE_FILES_URL}/abc/copy")
        assert request.url.params["supportsAllDrives"] == "true"
        assert json.loads(request.content) == {
            "name": "Backup",
            "parents": ["folder-9"],
        }

    async def test_default_name_and_history(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            assert body["name"].startswith("Snapshot ")
            assert "parents" not in body
            return httpx.Response(200, json={"id": "copy-2"})

        service = _service_with(handler)
        await service.create("abc")
        await service.close()

        assert [s.copy_spreadsheet_id for s in service.snapshots()] == ["copy-2"]
        assert service.snapshots("other") == []

    async def test_http_error_mapped(self) -> None:
        service = _service_with(lambda _: httpx.Response(403, text="forbidden"))

        with pytest.raises(PermissionDeniedError):
            await service.create("abc")
        await service.close()

        assert service.snapshots() == []

    async def test_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        service = _service_with(handler)
        with pytest.raises(NetworkError):
            await service.create("abc")
        await service.close()
