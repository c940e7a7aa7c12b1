import asyncio
import json
import re
import shutil
from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx
import pytest

from monk_journey.auth import AuthSession, SignInError
from monk_journey.config import SyncSettings
from monk_journey.storage.drive import FOLDER_MIME_TYPE
from monk_journey.storage.local import LocalStore, MemoryMedium
from monk_journey.storage.remote import RemoteStore
from monk_journey.sync.orchestrator import StorageService

TEST_DATA_DIR = Path("data-tests")
DRIVE_URL = "https://drive.test"
NOW = 1_700_000_000.0


@pytest.fixture(autouse=True)
def clean_test_data():
    """Wipe data-tests/ before every test."""
    if TEST_DATA_DIR.exists():
        shutil.rmtree(TEST_DATA_DIR)
    yield
    # leave data-tests around after tests for inspection; CI can ignore it


# ---------------------------------------------------------------------------
# FakeDrive: in-memory Drive v3 behind httpx.MockTransport
# ---------------------------------------------------------------------------

_NAME_RE = re.compile(r"name='((?:[^'\\]|\\.)*)'")
_PARENT_RE = re.compile(r"'((?:[^'\\]|\\.)*)' in parents")
_FILE_PATH_RE = re.compile(r"^/(?:upload/)?drive/v3/files/([^/]+)$")


def _unescape(value: str) -> str:
    return value.replace("\\'", "'").replace("\\\\", "\\")


class FakeDrive:
    """Just enough of the Drive files API for the remote store.

    Every write bumps a fake clock by one second so modifiedTime orders
    writes. `token` is the only bearer accepted; anything else gets 401.
    `fail_status` makes every request (or only `fail_method` requests)
    answer with that status.
    """

    def __init__(self, token: str = "token-1") -> None:
        self.token = token
        self.files: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.latency = 0.0
        self.fail_status: int | None = None
        self.fail_method: str | None = None
        self._next_id = 0
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    # ── Seeding and inspection ──

    def _tick(self) -> str:
        self._clock += timedelta(seconds=1)
        return self._clock.isoformat().replace("+00:00", "Z")

    def _new_id(self, prefix: str) -> str:
        self._next_id += 1
        return f"{prefix}-{self._next_id}"

    def add_folder(self, name: str = "MonkJourneySaves") -> str:
        folder_id = self._new_id("folder")
        stamp = self._tick()
        self.files[folder_id] = {
            "id": folder_id, "name": name, "mimeType": FOLDER_MIME_TYPE,
            "parents": [], "content": "", "createdTime": stamp, "modifiedTime": stamp,
        }
        return folder_id

    def add_file(self, name: str, value, parent: str) -> str:
        """Seed a file holding json.dumps(value)."""
        return self._create(name, parent, json.dumps(value))

    def _create(self, name: str, parent: str, content: str) -> str:
        file_id = self._new_id("file")
        stamp = self._tick()
        self.files[file_id] = {
            "id": file_id, "name": name, "mimeType": "application/json",
            "parents": [parent], "content": content,
            "createdTime": stamp, "modifiedTime": stamp,
        }
        return file_id

    def folders(self) -> list[dict]:
        return [f for f in self.files.values() if f["mimeType"] == FOLDER_MIME_TYPE]

    def named(self, name: str) -> list[dict]:
        return [
            f for f in self.files.values()
            if f["name"] == name and f["mimeType"] != FOLDER_MIME_TYPE
        ]

    def value_of(self, name: str):
        files = self.named(name)
        assert len(files) == 1, f"expected one file named {name}, found {len(files)}"
        return json.loads(files[0]["content"])

    def count(self, method: str, path_prefix: str = "") -> int:
        return sum(
            1 for r in self.requests
            if r.method == method and r.url.path.startswith(path_prefix)
        )

    def writes(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method in ("POST", "PATCH", "DELETE")]

    # ── Request handling ──

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        await asyncio.sleep(self.latency)

        if self.fail_status and self.fail_method in (None, request.method):
            return httpx.Response(self.fail_status, json={"error": "injected"})
        if request.headers.get("Authorization") != f"Bearer {self.token}":
            return httpx.Response(401, json={"error": "unauthorized"})

        path = request.url.path
        if path == "/drive/v3/files" and request.method == "GET":
            return self._list(request.url.params.get("q", ""))
        if path == "/drive/v3/files" and request.method == "POST":
            body = json.loads(request.content)
            folder_id = self.add_folder(body["name"])
            return httpx.Response(200, json={"id": folder_id})
        if path == "/upload/drive/v3/files" and request.method == "POST":
            metadata, content = self._parse_multipart(request)
            file_id = self._create(metadata["name"], metadata["parents"][0], content)
            return httpx.Response(200, json={"id": file_id})

        match = _FILE_PATH_RE.match(path)
        if match is None:
            return httpx.Response(404)
        file = self.files.get(match.group(1))
        if file is None:
            return httpx.Response(404, json={"error": "not found"})

        if request.method == "GET":
            return httpx.Response(200, text=file["content"])
        if request.method == "PATCH":
            file["content"] = request.content.decode()
            file["modifiedTime"] = self._tick()
            return httpx.Response(200, json={"id": file["id"]})
        if request.method == "DELETE":
            del self.files[file["id"]]
            return httpx.Response(204)
        return httpx.Response(405)

    def _list(self, query: str) -> httpx.Response:
        files = list(self.files.values())
        name = _NAME_RE.search(query)
        if name:
            files = [f for f in files if f["name"] == _unescape(name.group(1))]
        parent = _PARENT_RE.search(query)
        if parent:
            files = [f for f in files if _unescape(parent.group(1)) in f["parents"]]
        if FOLDER_MIME_TYPE in query:
            files = [f for f in files if f["mimeType"] == FOLDER_MIME_TYPE]
        listed = [
            {k: f[k] for k in ("id", "name", "createdTime", "modifiedTime")}
            for f in files
        ]
        return httpx.Response(200, json={"files": listed})

    @staticmethod
    def _parse_multipart(request: httpx.Request) -> tuple[dict, str]:
        boundary = request.headers["Content-Type"].split("boundary=", 1)[1]
        parts = request.content.decode().split(f"--{boundary}")
        bodies = [p.split("\r\n\r\n", 1)[1].removesuffix("\r\n") for p in parts[1:3]]
        return json.loads(bodies[0]), bodies[1]


# ---------------------------------------------------------------------------
# FakeProvider: scripted identity provider
# ---------------------------------------------------------------------------

class FakeProvider:
    def __init__(self, token: str = "token-1", delay: float = 0.0, deny: bool = False) -> None:
        self.token = token
        self.delay = delay
        self.deny = deny
        self.calls: list[bool] = []
        self.revoked: list[str] = []

    async def request_token(self, silent: bool) -> str:
        self.calls.append(silent)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.deny:
            raise SignInError("user denied access")
        return self.token

    async def revoke(self, token: str) -> None:
        self.revoked.append(token)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def medium() -> MemoryMedium:
    return MemoryMedium()


@pytest.fixture
def local(medium: MemoryMedium) -> LocalStore:
    return LocalStore(medium)


@pytest.fixture
def drive() -> FakeDrive:
    return FakeDrive()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def auth(provider: FakeProvider, local: LocalStore) -> AuthSession:
    return AuthSession(provider, local, clock=lambda: NOW)


@pytest.fixture
def remote(auth: AuthSession, drive: FakeDrive) -> RemoteStore:
    return RemoteStore(auth, base_url=DRIVE_URL, transport=drive.transport)


@pytest.fixture
def settings() -> SyncSettings:
    return SyncSettings(
        data_dir=TEST_DATA_DIR,
        auto_login_timeout=0.05,
        enforced_login_timeout=0.2,
        default_debounce_ms=20,
    )


@pytest.fixture
async def make_service(local, remote, auth, settings):
    """Factory for StorageService; every service built is closed afterwards."""
    built: list[StorageService] = []

    def make(decide=None, **overrides) -> StorageService:
        service = StorageService(
            local, remote, auth,
            decide=decide,
            settings=settings.model_copy(update=overrides),
        )
        built.append(service)
        return service

    yield make
    for service in built:
        await service.aclose()


@pytest.fixture
async def service(make_service) -> StorageService:
    return make_service()
