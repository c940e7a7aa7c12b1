"""Remote store — key/value persistence in a remote save folder.

Each key is one file named after the key inside a single folder
("MonkJourneySaves") owned by the signed-in identity. Two lookups sit in
front of every operation:

    ensure_container()  locate-or-create the folder. Memoized: callers that
                        arrive while a lookup is in flight share its result,
                        so concurrent first writes create one folder, not
                        several.
    get_object_id(key)  key → file id, cached. When several files carry the
                        same name (two devices created it at once), the most
                        recently modified one wins and the others are deleted
                        in the background.

Every public operation is best effort: HTTP and transport failures are
logged and reported as False / None. A 401 answer means the token was
revoked; the auth session is signed out and the caches are dropped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Coroutine, Mapping

import httpx

from monk_journey.keys import DEFAULT_SCHEMA
from monk_journey.models import AuthState, RemoteObject, ValueKind
from monk_journey.storage import codec
from monk_journey.storage.drive import DriveClient, RemoteStoreError

if TYPE_CHECKING:
    from monk_journey.auth import AuthSession

logger = logging.getLogger(__name__)

DEFAULT_FOLDER_NAME = "MonkJourneySaves"


class RemoteStore:
    """Async key/value access to the remote save folder.

    Args:
        auth:        Auth session providing the bearer token.
        client:      Drive client. Built from the remaining arguments when
                     omitted.
        schema:      Declared kind per key. Defaults to the game's schema.
        folder_name: Name of the save folder.
        base_url:    API root for the default client.
        timeout:     HTTP timeout in seconds for the default client.
        transport:   Optional httpx transport for the default client.
    """

    def __init__(
        self,
        auth: AuthSession,
        client: DriveClient | None = None,
        schema: Mapping[str, ValueKind] | None = None,
        folder_name: str = DEFAULT_FOLDER_NAME,
        base_url: str = "https://www.googleapis.com",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._auth = auth
        self._client = client or DriveClient(
            lambda: auth.token, base_url=base_url, timeout=timeout, transport=transport,
        )
        self._schema = DEFAULT_SCHEMA if schema is None else schema
        self._folder_name = folder_name

        self._file_cache: dict[str, str] = {}
        self._folder_id: str | None = None
        self._folder_check_in_progress = False
        self._folder_task: asyncio.Future[str | None] | None = None
        # Bumped on every cache reset so lookups that started before a
        # sign-out do not repopulate the caches afterwards.
        self._generation = 0
        self._background: set[asyncio.Task] = set()

        self._unsubscribe = auth.subscribe(self._on_auth_change)

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def sign_in(self, silent: bool = False, timeout: float | None = None) -> bool:
        """Sign in and make sure the save folder exists."""
        if not await self._auth.sign_in(silent=silent, timeout=timeout):
            return False
        await self.ensure_container()
        return True

    async def sign_out(self) -> None:
        await self._auth.sign_out()
        self.reset_cache()

    def is_user_signed_in(self) -> bool:
        return self._auth.is_signed_in()

    def _on_auth_change(self, state: AuthState) -> None:
        if state.status == "signed_out":
            self.reset_cache()

    def reset_cache(self) -> None:
        self._file_cache.clear()
        self._folder_id = None
        self._folder_check_in_progress = False
        self._folder_task = None
        self._generation += 1

    @property
    def cached_ids(self) -> dict[str, str]:
        return dict(self._file_cache)

    @property
    def folder_id(self) -> str | None:
        return self._folder_id

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def drain(self) -> None:
        """Wait for background cleanup started by earlier lookups."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        self._unsubscribe()

    def _handle_error(self, error: RemoteStoreError, action: str) -> None:
        logger.error("Error %s: %s", action, error)
        if error.unauthorized:
            self._auth.handle_revoked()

    async def _delete_extras(self, extras: list[RemoteObject], label: str) -> None:
        for obj in extras:
            try:
                await self._client.delete_file(obj.id)
                logger.debug("Deleted duplicate %s with id %s", label, obj.id)
            except RemoteStoreError as e:
                logger.error("Error deleting duplicate %s %s: %s", label, obj.id, e)

    # ------------------------------------------------------------------
    # Folder and file resolution
    # ------------------------------------------------------------------

    async def ensure_container(self) -> str | None:
        """Id of the save folder, created when missing. None on failure."""
        if self._folder_id:
            return self._folder_id
        if self._folder_check_in_progress and self._folder_task is not None:
            logger.debug("Folder check already in progress, waiting for it")
            return await asyncio.shield(self._folder_task)

        self._folder_check_in_progress = True
        self._folder_task = asyncio.ensure_future(self._resolve_container(self._generation))
        return await asyncio.shield(self._folder_task)

    async def _resolve_container(self, generation: int) -> str | None:
        try:
            folders = await self._client.find_folders(self._folder_name)
            if folders:
                folder_id = folders[0].id
                if len(folders) > 1:
                    logger.warning(
                        "Found %d '%s' folders, keeping %s and deleting the others",
                        len(folders), self._folder_name, folder_id,
                    )
                    self._spawn(self._delete_extras(folders[1:], "folder"))
            else:
                logger.debug("Creating '%s' folder", self._folder_name)
                folder_id = await self._client.create_folder(self._folder_name)

            if generation == self._generation:
                self._folder_id = folder_id
            return folder_id
        except RemoteStoreError as e:
            self._handle_error(e, "ensuring save folder")
            return None
        finally:
            if generation == self._generation:
                self._folder_check_in_progress = False

    async def _require_container(self) -> str:
        folder_id = await self.ensure_container()
        if not folder_id:
            raise RemoteStoreError("Could not create or find save folder")
        return folder_id

    async def _lookup(self, key: str) -> str | None:
        """Resolve `key` to a file id. Raises RemoteStoreError on failure."""
        if key in self._file_cache:
            return self._file_cache[key]

        generation = self._generation
        folder_id = await self._require_container()
        files = await self._client.list_files(folder_id, name=key)
        if not files:
            return None

        if len(files) > 1:
            files = sorted(files, key=_modified_timestamp, reverse=True)
            logger.warning(
                "Found %d files named '%s', keeping %s and deleting the others",
                len(files), key, files[0].id,
            )
            self._spawn(self._delete_extras(files[1:], f"file '{key}'"))

        file_id = files[0].id
        if generation == self._generation:
            self._file_cache[key] = file_id
        return file_id

    async def get_object_id(self, key: str) -> str | None:
        """File id for `key`, or None when absent or unreachable."""
        try:
            return await self._lookup(key)
        except RemoteStoreError as e:
            self._handle_error(e, f"getting file id for key {key}")
            return None

    # ------------------------------------------------------------------
    # Data operations
    # ------------------------------------------------------------------

    async def save_data(self, key: str, value: Any) -> bool:
        if not self.is_user_signed_in():
            logger.warning("Not signed in, cannot save %s remotely", key)
            return False

        try:
            content = codec.serialize(self._schema.get(key), value)
        except (TypeError, ValueError) as e:
            logger.error("Cannot serialize value for key %s: %s", key, e)
            return False

        generation = self._generation
        file_id: str | None = None
        try:
            folder_id = await self._require_container()
            file_id = await self._lookup(key)
            if file_id:
                await self._client.update_file(file_id, content)
            else:
                new_id = await self._client.create_file(key, folder_id, content)
                if generation == self._generation:
                    self._file_cache[key] = new_id
        except RemoteStoreError as e:
            if e.status_code == 404 and file_id:
                self._file_cache.pop(key, None)
            self._handle_error(e, f"saving data for key {key}")
            return False
        logger.debug("Saved %s remotely", key)
        return True

    async def load_data(self, key: str) -> Any:
        if not self.is_user_signed_in():
            return None

        try:
            file_id = await self._lookup(key)
            if not file_id:
                return None
            content = await self._client.get_content(file_id)
        except RemoteStoreError as e:
            if e.status_code == 404:
                self._file_cache.pop(key, None)
            self._handle_error(e, f"loading data for key {key}")
            return None

        try:
            return codec.deserialize(self._schema.get(key), content)
        except ValueError as e:
            logger.error("Unreadable remote content for key %s: %s", key, e)
            return None

    async def delete_data(self, key: str) -> bool:
        if not self.is_user_signed_in():
            return False

        try:
            file_id = await self._lookup(key)
            if not file_id:
                return True
            await self._client.delete_file(file_id)
        except RemoteStoreError as e:
            if e.status_code == 404:
                self._file_cache.pop(key, None)
                return True
            self._handle_error(e, f"deleting data for key {key}")
            return False

        self._file_cache.pop(key, None)
        return True

    async def has_data(self, key: str) -> bool:
        if not self.is_user_signed_in():
            return False
        return await self.get_object_id(key) is not None

    async def list_keys(self) -> list[str] | None:
        """Names of all files in the save folder, None when unreachable.

        Names that occur once also prime the id cache.
        """
        if not self.is_user_signed_in():
            return None

        generation = self._generation
        try:
            folder_id = await self._require_container()
            files = await self._client.list_files(folder_id)
        except RemoteStoreError as e:
            self._handle_error(e, "listing remote keys")
            return None

        counts: dict[str, int] = {}
        for f in files:
            counts[f.name] = counts.get(f.name, 0) + 1
        if generation == self._generation:
            for f in files:
                if counts[f.name] == 1:
                    self._file_cache.setdefault(f.name, f.id)
        return sorted(counts)


def _modified_timestamp(obj: RemoteObject) -> float:
    return obj.modified_time.timestamp() if obj.modified_time else 0.0
