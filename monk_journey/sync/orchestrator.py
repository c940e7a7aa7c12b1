"""Storage service — keeps the local store and the remote store in step.

Gameplay code only talks to this service:

    save(key, value)     local write now, remote mirror in the background
    debounce_save(...)   coalesce bursts of writes to one save per window
    load(key)            local first; on a miss, remote + local backfill
    has(key) / delete(key)

Nothing here waits on the network on behalf of a save. Remote writes for the
same key are chained, so the remote converges to the last value even when an
earlier write is still in flight.

Startup (init):
  1. Silent auto-login, bounded by auto_login_timeout, when it was enabled
     by an earlier successful sign-in.
  2. Still signed out but signed in before → enforced login prompt through
     the decision interface, bounded by enforced_login_timeout. A timeout
     skips the prompt and disables auto-login.
  3. Signed in → reconciliation runs in the background; init returns.

Reconciliation (on every sign-in and at startup):
  sync_from_remote  remote-only keys are pulled into the local store;
                    keys present on both sides with different values go
                    through the conflict policy.
  sync_to_remote    keys only present locally are pushed.
  Local-only keys (auto-login flag, last sign-in time) take part in neither.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine

import httpx

from monk_journey.auth import AuthSession, IdentityProvider, OAuthTokenProvider
from monk_journey.config import SyncSettings
from monk_journey.keys import KEY_PREFIX, LOCAL_ONLY_KEYS, is_synced_key
from monk_journey.models import AuthState, StorageAction, StorageEvent, SyncReport
from monk_journey.storage.local import JsonFileMedium, LocalStore
from monk_journey.storage.remote import RemoteStore
from monk_journey.sync.policy import ConflictPolicy, Decider

logger = logging.getLogger(__name__)

StorageListener = Callable[[StorageEvent], None]


class StorageService:
    """Single entry point for persisted game state.

    Create one at application start and hand it to whatever needs storage;
    call aclose() at shutdown.

    Args:
        local:      Local store.
        remote:     Remote store.
        auth:       Auth session shared with the remote store.
        decide:     Decision interface for save-game conflicts and the
                    enforced login prompt.
        settings:   Timeouts and debounce defaults.
        key_prefix: Keys taking part in reconciliation start with this.
        policy:     Conflict policy. Defaults to ConflictPolicy(decide).
    """

    def __init__(
        self,
        local: LocalStore,
        remote: RemoteStore,
        auth: AuthSession,
        decide: Decider | None = None,
        settings: SyncSettings | None = None,
        key_prefix: str = KEY_PREFIX,
        policy: ConflictPolicy | None = None,
    ) -> None:
        self._local = local
        self._remote = remote
        self._auth = auth
        self._decide = decide
        self._settings = settings or SyncSettings()
        self._prefix = key_prefix
        self._policy = policy or ConflictPolicy(decide)

        self._pending_saves: dict[str, asyncio.TimerHandle] = {}
        self._remote_writes: dict[str, asyncio.Task] = {}
        self._background: set[asyncio.Task] = set()
        self._listeners: list[StorageListener] = []
        self._initialized = False
        self._syncing = False
        self._sync_task: asyncio.Future[SyncReport] | None = None

        self._unsubscribe_auth = auth.subscribe(self._on_auth_change)

        repaired = self._local.fix_existing_data()
        if repaired:
            logger.info("Repaired %d local records from an older format", repaired)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Sign in if possible and start reconciliation. Safe to call twice."""
        if self._initialized:
            return
        self._initialized = True

        try:
            if self._auth.should_attempt_auto_login():
                logger.debug("Attempting silent auto-login")
                signed_in = await self._remote.sign_in(
                    silent=True, timeout=self._settings.auto_login_timeout,
                )
                if not signed_in:
                    logger.debug("Silent auto-login failed")

            if not self.is_signed_in() and self._auth.last_login is not None:
                await self._enforced_login()
        except Exception:
            logger.exception("Error during storage init")

        if self.is_signed_in():
            self._spawn(self.reconcile())

    async def _enforced_login(self) -> bool:
        if self._decide is None:
            return False
        timeout = self._settings.enforced_login_timeout
        try:
            return await asyncio.wait_for(self._prompt_login(), timeout)
        except asyncio.TimeoutError:
            logger.warning("Login prompt timed out after %ss, continuing signed out", timeout)
            self._auth.set_auto_login(False)
            return False

    async def _prompt_login(self) -> bool:
        try:
            choice = await self._decide("enforced_login", self._auth.last_login, None)
        except Exception:
            logger.exception("Decision interface failed for the login prompt")
            return False
        if choice != "sign_in":
            logger.debug("Player skipped the login prompt")
            return False
        return await self._remote.sign_in(silent=False)

    async def aclose(self) -> None:
        """Cancel pending saves, finish background work, detach listeners."""
        for handle in self._pending_saves.values():
            handle.cancel()
        self._pending_saves.clear()
        self._unsubscribe_auth()
        await self.drain()
        await self._remote.aclose()
        self._listeners.clear()

    async def drain(self) -> None:
        """Wait until every background task (mirrors, syncs, cleanups) is done."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        await self._remote.drain()

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def subscribe(self, listener: StorageListener) -> Callable[[], None]:
        """Register for save/delete/update events. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, action: StorageAction, key: str, value: Any = None) -> None:
        event = StorageEvent(action=action, key=key, value=value)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Storage listener %r failed", listener)

    def _on_auth_change(self, state: AuthState) -> None:
        if state.status == "signed_in":
            logger.debug("Sign-in detected, scheduling reconciliation")
            self._spawn(self.reconcile())

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def is_signed_in(self) -> bool:
        return self._remote.is_user_signed_in()

    async def sign_in(self, silent: bool = False, timeout: float | None = None) -> bool:
        return await self._remote.sign_in(silent=silent, timeout=timeout)

    async def sign_out(self) -> None:
        await self._remote.sign_out()

    def _mirrors(self, key: str) -> bool:
        return key not in LOCAL_ONLY_KEYS and self.is_signed_in()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def save(self, key: str, value: Any) -> bool:
        """Write locally now; mirror remotely in the background when signed in."""
        self._cancel_pending(key)

        ok = self._local.save(key, value)
        if ok:
            self._emit("save", key, value)

        if self._mirrors(key):
            self._queue_remote_write(key, lambda: self._mirror_save(key, value))
        return ok

    def debounce_save(self, key: str, value: Any, delay_ms: int | None = None) -> bool:
        """Save `value` after `delay_ms` unless another write to `key` comes first.

        Returns True once the save is scheduled.
        """
        delay = self._settings.default_debounce_ms if delay_ms is None else delay_ms
        self._cancel_pending(key)
        loop = asyncio.get_running_loop()
        self._pending_saves[key] = loop.call_later(delay / 1000, self._fire_pending, key, value)
        return True

    def _fire_pending(self, key: str, value: Any) -> None:
        self._pending_saves.pop(key, None)
        self._spawn(self.save(key, value))

    def _cancel_pending(self, key: str) -> None:
        handle = self._pending_saves.pop(key, None)
        if handle is not None:
            handle.cancel()

    @property
    def pending_keys(self) -> list[str]:
        return list(self._pending_saves)

    async def delete(self, key: str) -> bool:
        self._cancel_pending(key)

        ok = self._local.delete(key)
        if self._mirrors(key):
            self._queue_remote_write(key, lambda: self._mirror_delete(key))
        if ok:
            self._emit("delete", key)
        return ok

    def _queue_remote_write(self, key: str, op: Callable[[], Awaitable[Any]]) -> asyncio.Task:
        previous = self._remote_writes.get(key)
        task = self._spawn(self._after(previous, op))
        self._remote_writes[key] = task
        task.add_done_callback(lambda t: self._forget_write(key, t))
        return task

    def _forget_write(self, key: str, task: asyncio.Task) -> None:
        if self._remote_writes.get(key) is task:
            del self._remote_writes[key]

    @staticmethod
    async def _after(previous: asyncio.Task | None, op: Callable[[], Awaitable[Any]]) -> Any:
        if previous is not None:
            await asyncio.gather(previous, return_exceptions=True)
        return await op()

    async def _mirror_save(self, key: str, value: Any) -> None:
        if not await self._remote.save_data(key, value):
            logger.error("Background sync of %s to the remote store failed", key)

    async def _mirror_delete(self, key: str) -> None:
        if not await self._remote.delete_data(key):
            logger.error("Background delete of %s from the remote store failed", key)

    async def _push_current(self, key: str) -> bool | None:
        """Push the local value of `key` once earlier writes for it have landed.

        The value is read when the write runs, not when it is queued. Returns
        None when there is no local value left to push.
        """

        async def push() -> bool | None:
            value = self._local.load(key)
            if value is None:
                return None
            return await self._remote.save_data(key, value)

        return await self._queue_remote_write(key, push)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def load(self, key: str) -> Any:
        value = self._local.load(key)
        if value is not None:
            return value
        if not self._mirrors(key):
            return None
        return await self._fetch_remote(key)

    def load_sync(self, key: str, default: Any = None) -> Any:
        """Local value or `default`, without waiting.

        On a miss while signed in the remote value is fetched in the
        background; subscribers get an "update" event when it lands.
        """
        value = self._local.load(key)
        if value is not None:
            return value
        if self._mirrors(key):
            self._spawn(self._fetch_remote(key))
        return default

    async def _fetch_remote(self, key: str) -> Any:
        value = await self._remote.load_data(key)
        if value is None:
            return None
        if self._local.save(key, value):
            self._emit("update", key, value)
        return value

    async def has(self, key: str) -> bool:
        if self._local.has(key):
            return True
        if not self._mirrors(key):
            return False
        return await self._remote.has_data(key)

    def has_sync(self, key: str) -> bool:
        return self._local.has(key)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reconcile(self) -> SyncReport:
        """Run one bidirectional pass. Overlapping calls join the running one."""
        if self._syncing and self._sync_task is not None:
            logger.debug("Reconciliation already running, joining it")
            return await asyncio.shield(self._sync_task)

        self._syncing = True
        self._sync_task = asyncio.ensure_future(self._reconcile())
        return await asyncio.shield(self._sync_task)

    async def _reconcile(self) -> SyncReport:
        try:
            if not self.is_signed_in():
                return SyncReport()
            report = await self.sync_from_remote()
            report = report.merge(await self.sync_to_remote())
            logger.info(
                "Reconciliation done: pulled=%d pushed=%d conflicts=%d errors=%d",
                len(report.pulled), len(report.pushed),
                len(report.conflicts), len(report.errors),
            )
            return report
        finally:
            self._syncing = False

    def _synced_local_keys(self) -> list[str]:
        return [k for k in self._local.keys(self._prefix) if k not in LOCAL_ONLY_KEYS]

    async def sync_from_remote(self) -> SyncReport:
        """Pull remote-only keys and settle conflicting ones."""
        report = SyncReport()
        if not self.is_signed_in():
            return report

        keys = set(self._synced_local_keys())
        remote_keys = await self._remote.list_keys()
        if remote_keys:
            keys.update(k for k in remote_keys if is_synced_key(k, self._prefix))

        logger.debug("Syncing %d keys from the remote store", len(keys))
        await asyncio.gather(*(self._sync_key_from_remote(k, report) for k in sorted(keys)))
        return report

    async def _sync_key_from_remote(self, key: str, report: SyncReport) -> None:
        try:
            if not await self._remote.has_data(key):
                return
            remote_value = await self._remote.load_data(key)
            if remote_value is None:
                report.errors.append(key)
                return

            if not self._local.has(key):
                if self._local.save(key, remote_value):
                    self._emit("update", key, remote_value)
                    report.pulled.append(key)
                    logger.debug("Pulled %s from the remote store", key)
                else:
                    report.errors.append(key)
                return

            local_value = self._local.load(key)
            if not self._policy.differs(local_value, remote_value):
                return

            logger.warning("Conflict detected for %s", key)
            report.conflicts.append(key)
            await self._resolve_conflict(key, local_value, remote_value, report)
        except Exception:
            logger.exception("Error syncing %s from the remote store", key)
            report.errors.append(key)

    async def _resolve_conflict(
        self, key: str, local_value: Any, remote_value: Any, report: SyncReport,
    ) -> None:
        choice = await self._policy.choose(key, local_value, remote_value)
        if choice == "remote" and self._policy.differs(self._local.load(key), local_value):
            # a newer save landed while the decision was pending; its mirror wins
            logger.info("%s changed during conflict resolution, keeping the newer local value", key)
            report.skipped.append(key)
        elif choice == "remote":
            if self._local.save(key, remote_value):
                self._emit("update", key, remote_value)
                report.resolved_remote.append(key)
            else:
                report.errors.append(key)
        elif choice == "local":
            pushed = await self._push_current(key)
            if pushed:
                report.resolved_local.append(key)
            elif pushed is None:
                report.skipped.append(key)
            else:
                report.errors.append(key)
        else:
            report.skipped.append(key)

    async def sync_to_remote(self) -> SyncReport:
        """Push keys that exist locally but not remotely."""
        report = SyncReport()
        if not self.is_signed_in():
            return report

        keys = self._synced_local_keys()
        logger.debug("Syncing %d keys to the remote store", len(keys))
        await asyncio.gather(*(self._push_if_missing(k, report) for k in keys))
        return report

    async def _push_if_missing(self, key: str, report: SyncReport) -> None:
        try:
            if await self._remote.has_data(key):
                return
            pushed = await self._push_current(key)
            if pushed:
                report.pushed.append(key)
                logger.debug("Pushed %s to the remote store", key)
            elif pushed is not None:
                report.errors.append(key)
        except Exception:
            logger.exception("Error syncing %s to the remote store", key)
            report.errors.append(key)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

def create_service(
    settings: SyncSettings | None = None,
    provider: IdentityProvider | None = None,
    decide: Decider | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> StorageService:
    """Build the default stack: JSON-file local store, Drive remote store,
    OAuth identity provider."""
    settings = settings or SyncSettings()
    local = LocalStore(
        JsonFileMedium(settings.local_store_path, quota_bytes=settings.local_quota_bytes)
    )
    provider = provider or OAuthTokenProvider(
        settings.client_id,
        settings.client_secret,
        timeout=settings.http_timeout,
        transport=transport,
    )
    auth = AuthSession(provider, local)
    remote = RemoteStore(
        auth,
        folder_name=settings.folder_name,
        base_url=settings.drive_url,
        timeout=settings.http_timeout,
        transport=transport,
    )
    return StorageService(local, remote, auth, decide=decide, settings=settings)
