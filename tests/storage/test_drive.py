"""Tests for monk_journey.storage.drive — DriveClient over a mock transport."""

import json

import httpx
import pytest

from conftest import DRIVE_URL, FakeDrive
from monk_journey.storage.drive import (
    FOLDER_MIME_TYPE,
    DriveClient,
    RemoteStoreError,
)


@pytest.fixture
def client(drive: FakeDrive) -> DriveClient:
    return DriveClient(lambda: "token-1", base_url=DRIVE_URL, transport=drive.transport)


# ---------------------------------------------------------------------------
# Requests against the fake Drive
# ---------------------------------------------------------------------------

class TestDriveClient:
    async def test_create_and_find_folder(self, client: DriveClient, drive: FakeDrive) -> None:
        folder_id = await client.create_folder("MonkJourneySaves")
        folders = await client.find_folders("MonkJourneySaves")
        assert [f.id for f in folders] == [folder_id]
        assert drive.files[folder_id]["mimeType"] == FOLDER_MIME_TYPE

    async def test_find_folders_ignores_plain_files(self, client: DriveClient, drive: FakeDrive) -> None:
        parent = drive.add_folder("Other")
        drive.add_file("MonkJourneySaves", {}, parent)
        assert await client.find_folders("MonkJourneySaves") == []

    async def test_create_file_sends_multipart_body(self, client: DriveClient, drive: FakeDrive) -> None:
        parent = drive.add_folder()
        file_id = await client.create_file("monk_journey_difficulty", parent, '"hard"')

        request = drive.requests[-1]
        assert request.url.params["uploadType"] == "multipart"
        assert request.headers["Content-Type"].startswith("multipart/related; boundary=")
        assert drive.files[file_id]["name"] == "monk_journey_difficulty"
        assert drive.files[file_id]["parents"] == [parent]
        assert drive.files[file_id]["content"] == '"hard"'

    async def test_list_files_by_name(self, client: DriveClient, drive: FakeDrive) -> None:
        parent = drive.add_folder()
        wanted = drive.add_file("monk_journey_muted", True, parent)
        drive.add_file("monk_journey_difficulty", "hard", parent)

        files = await client.list_files(parent, name="monk_journey_muted")
        assert [f.id for f in files] == [wanted]
        assert files[0].modified_time is not None

    async def test_list_files_whole_folder(self, client: DriveClient, drive: FakeDrive) -> None:
        parent = drive.add_folder()
        elsewhere = drive.add_folder("Elsewhere")
        drive.add_file("a", 1, parent)
        drive.add_file("b", 2, parent)
        drive.add_file("c", 3, elsewhere)

        names = sorted(f.name for f in await client.list_files(parent))
        assert names == ["a", "b"]

    async def test_update_and_get_content(self, client: DriveClient, drive: FakeDrive) -> None:
        parent = drive.add_folder()
        file_id = drive.add_file("monk_journey_target_fps", 30, parent)

        await client.update_file(file_id, "60")
        assert await client.get_content(file_id) == "60"
        assert drive.requests[-2].url.params["uploadType"] == "media"

    async def test_delete_file(self, client: DriveClient, drive: FakeDrive) -> None:
        parent = drive.add_folder()
        file_id = drive.add_file("x", 1, parent)
        await client.delete_file(file_id)
        assert file_id not in drive.files

    async def test_bearer_token_sent(self, client: DriveClient, drive: FakeDrive) -> None:
        await client.find_folders("MonkJourneySaves")
        assert drive.requests[-1].headers["Authorization"] == "Bearer token-1"

    async def test_query_literals_are_escaped(self, client: DriveClient, drive: FakeDrive) -> None:
        await client.find_folders("Monk's Saves")
        assert "name='Monk\\'s Saves'" in drive.requests[-1].url.params["q"]


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

class TestDriveErrors:
    async def test_missing_file_is_404(self, client: DriveClient) -> None:
        with pytest.raises(RemoteStoreError) as exc:
            await client.get_content("nope")
        assert exc.value.status_code == 404
        assert not exc.value.unauthorized

    async def test_bad_token_is_unauthorized(self, drive: FakeDrive) -> None:
        client = DriveClient(lambda: "stale", base_url=DRIVE_URL, transport=drive.transport)
        with pytest.raises(RemoteStoreError) as exc:
            await client.find_folders("MonkJourneySaves")
        assert exc.value.unauthorized

    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = DriveClient(lambda: "t", base_url=DRIVE_URL, transport=httpx.MockTransport(handler))
        with pytest.raises(RemoteStoreError) as exc:
            await client.find_folders("MonkJourneySaves")
        assert exc.value.status_code is None

    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        client = DriveClient(lambda: "t", base_url=DRIVE_URL, transport=httpx.MockTransport(handler))
        with pytest.raises(RemoteStoreError, match="timed out"):
            await client.get_content("abc")

    async def test_malformed_listing(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>")

        client = DriveClient(lambda: "t", base_url=DRIVE_URL, transport=httpx.MockTransport(handler))
        with pytest.raises(RemoteStoreError):
            await client.list_files("folder")

    async def test_listing_entry_without_id(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"files": [{"name": "no-id"}]})

        client = DriveClient(lambda: "t", base_url=DRIVE_URL, transport=httpx.MockTransport(handler))
        with pytest.raises(RemoteStoreError, match="Unexpected response format"):
            await client.list_files("folder")

    async def test_create_without_id(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=json.dumps({"name": "x"}))

        client = DriveClient(lambda: "t", base_url=DRIVE_URL, transport=httpx.MockTransport(handler))
        with pytest.raises(RemoteStoreError, match="no file id"):
            await client.create_folder("x")
