"""Drive client — HTTP access to the remote object-storage API.

Speaks the Google Drive v3 REST shapes. Only the operations the remote store
needs are wrapped:

    find_folders(name)                  GET    /drive/v3/files?q=<folder query>
    create_folder(name)                 POST   /drive/v3/files
    list_files(parent, name=None)       GET    /drive/v3/files?q=<parent query>
    create_file(name, parent, content)  POST   /upload/drive/v3/files?uploadType=multipart
    update_file(file_id, content)       PATCH  /upload/drive/v3/files/{id}?uploadType=media
    get_content(file_id)                GET    /drive/v3/files/{id}?alt=media
    delete_file(file_id)                DELETE /drive/v3/files/{id}

Every request carries the bearer token returned by `token_getter`. Transport
failures and non-2xx responses raise RemoteStoreError; callers decide how to
report them.
"""

from __future__ import annotations

import json
import logging
from typing import Callable

import httpx
from pydantic import ValidationError

from monk_journey.models import RemoteObject

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
MULTIPART_BOUNDARY = "-------314159265358979323846"
LIST_FIELDS = "files(id,name,createdTime,modifiedTime)"


class DriveClient:
    """Async HTTP client for the Drive v3 files API.

    Args:
        token_getter: Returns the current access token, or None when signed
                      out. Read on every request.
        base_url:     API root. Defaults to "https://www.googleapis.com".
        timeout:      HTTP timeout in seconds. Defaults to 30.
        transport:    Optional httpx transport, e.g. httpx.MockTransport.
    """

    def __init__(
        self,
        token_getter: Callable[[], str | None],
        base_url: str = "https://www.googleapis.com",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token_getter = token_getter
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def _headers(self, content_type: str | None = None) -> dict[str, str]:
        headers: dict[str, str] = {}
        token = self._token_getter()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        content: str | None = None,
        json_body: dict | None = None,
        content_type: str | None = None,
    ) -> httpx.Response:
        url = f"{self._base_url}{path}"
        logger.debug("drive %s %s", method, url)
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.request(
                    method, url,
                    params=params,
                    content=content,
                    json=json_body,
                    headers=self._headers(content_type),
                )
                resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise RemoteStoreError(
                f"Drive returned HTTP {e.response.status_code} for {method} {path}",
                status_code=e.response.status_code,
            ) from e
        except httpx.TimeoutException as e:
            raise RemoteStoreError(f"Drive timed out after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise RemoteStoreError(f"Cannot reach Drive at {self._base_url}: {e}") from e
        return resp

    def _parse_files(self, resp: httpx.Response) -> list[RemoteObject]:
        try:
            files = resp.json().get("files", [])
        except (ValueError, AttributeError) as e:
            raise RemoteStoreError("Unexpected response format from Drive listing") from e
        try:
            return [RemoteObject.model_validate(f) for f in files]
        except (ValidationError, TypeError) as e:
            raise RemoteStoreError("Unexpected response format from Drive listing") from e

    def _parse_id(self, resp: httpx.Response) -> str:
        try:
            file_id = resp.json()["id"]
        except (ValueError, KeyError, TypeError) as e:
            raise RemoteStoreError("Drive response carries no file id") from e
        return file_id

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def find_folders(self, name: str) -> list[RemoteObject]:
        query = (
            f"name='{_escape(name)}' and mimeType='{FOLDER_MIME_TYPE}' "
            "and trashed=false"
        )
        resp = await self._request(
            "GET", "/drive/v3/files", params={"q": query, "fields": LIST_FIELDS},
        )
        return self._parse_files(resp)

    async def create_folder(self, name: str) -> str:
        resp = await self._request(
            "POST", "/drive/v3/files",
            json_body={"name": name, "mimeType": FOLDER_MIME_TYPE},
        )
        return self._parse_id(resp)

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def list_files(self, parent: str, name: str | None = None) -> list[RemoteObject]:
        """Files inside `parent`, optionally only those called `name`."""
        query = f"'{_escape(parent)}' in parents and trashed=false"
        if name is not None:
            query = f"name='{_escape(name)}' and {query}"
        resp = await self._request(
            "GET", "/drive/v3/files", params={"q": query, "fields": LIST_FIELDS},
        )
        return self._parse_files(resp)

    async def create_file(self, name: str, parent: str, content: str) -> str:
        metadata = json.dumps({"name": name, "parents": [parent]})
        body = (
            f"--{MULTIPART_BOUNDARY}\r\n"
            "Content-Type: application/json\r\n\r\n"
            f"{metadata}"
            f"\r\n--{MULTIPART_BOUNDARY}\r\n"
            "Content-Type: application/json\r\n\r\n"
            f"{content}"
            f"\r\n--{MULTIPART_BOUNDARY}--"
        )
        resp = await self._request(
            "POST", "/upload/drive/v3/files",
            params={"uploadType": "multipart"},
            content=body,
            content_type=f"multipart/related; boundary={MULTIPART_BOUNDARY}",
        )
        return self._parse_id(resp)

    async def update_file(self, file_id: str, content: str) -> None:
        await self._request(
            "PATCH", f"/upload/drive/v3/files/{file_id}",
            params={"uploadType": "media"},
            content=content,
            content_type="application/json",
        )

    async def get_content(self, file_id: str) -> str:
        resp = await self._request(
            "GET", f"/drive/v3/files/{file_id}", params={"alt": "media"},
        )
        return resp.text

    async def delete_file(self, file_id: str) -> None:
        await self._request("DELETE", f"/drive/v3/files/{file_id}")


def _escape(value: str) -> str:
    """Escape a literal for use inside a Drive query string."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


class RemoteStoreError(RuntimeError):
    """Raised when the remote API cannot be reached or answers with an error."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def unauthorized(self) -> bool:
        return self.status_code == 401
