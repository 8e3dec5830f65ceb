"""
Session coordination.

Connects the store, write scheduler and sync engine to the signals the host
application delivers: authentication changes and storage changes made by
other tabs or processes sharing the same backend.
"""

import logging
from collections.abc import Callable

from health_tracker_store.services.local_store import LocalStore
from health_tracker_store.services.scheduler import TaskScheduler, WriteScheduler
from health_tracker_store.services.sync_engine import SyncEngine
from health_tracker_store.utils.identifiers import generate_record_id

logger = logging.getLogger(__name__)

ExternalChangeListener = Callable[[str | None], None]


class SessionCoordinator:
    """
    Owns the signed-in session lifecycle.

    Local writes are forwarded to the write scheduler; sign-in pulls the
    account's data; sign-out flushes pending edits and wipes the device.
    """

    def __init__(
        self,
        store: LocalStore,
        engine: SyncEngine,
        task_scheduler: TaskScheduler | None = None,
        debounce_seconds: float = 2.0,
    ) -> None:
        """
        Initialize the coordinator.

        Args:
            store: Local store.
            engine: Sync engine for the same store.
            task_scheduler: Timer used for debounced pushes.
            debounce_seconds: Quiet period before a push.
        """
        self.store = store
        self.engine = engine
        self.scheduler = WriteScheduler(
            push=engine.sync_to_cloud,
            is_signed_in=engine.is_signed_in,
            task_scheduler=task_scheduler,
            delay=debounce_seconds,
        )
        self.origin_id = generate_record_id()
        self._external_change_listeners: list[ExternalChangeListener] = []
        self._unsubscribe_writes = store.on_write(self.scheduler.notify_write)

    @property
    def account_id(self) -> str | None:
        return self.engine.account_id

    def on_external_change(self, listener: ExternalChangeListener) -> None:
        """Register a callback fired after another writer's change was migrated."""
        self._external_change_listeners.append(listener)

    async def handle_auth_change(self, account_id: str | None) -> bool:
        """
        React to a sign-in, account switch or sign-out.

        Args:
            account_id: Opaque id of the signed-in account, or None on sign-out.

        Returns:
            Result of the pull on sign-in, True on sign-out.
        """
        if not account_id:
            await self.sign_out()
            return True

        previous = self.engine.account_id
        if previous and previous != account_id:
            logger.info(f"Switching account from {previous} to {account_id}")
            if self.scheduler.pending:
                await self.scheduler.force_sync()
            self.scheduler.cancel()
            self.engine.clear_all_local_data()

        self.engine.set_account(account_id)
        return await self.engine.sync_from_cloud()

    async def sign_out(self) -> None:
        """Flush pending edits, then wipe all local data and the owner marker."""
        if self.engine.is_signed_in() and self.scheduler.pending:
            await self.scheduler.force_sync()
        self.scheduler.cancel()
        self.engine.clear_all_local_data()
        self.engine.set_account(None)
        self.engine.clear_cache()
        logger.info("Signed out, local data cleared")

    def handle_storage_change(self, key: str | None, origin: str | None = None) -> bool:
        """
        React to a change written by another tab or process.

        Only settings and schema version changes (or a full clear, reported
        with no key) re-run the migration gate.

        Args:
            key: Changed backend key, or None when the whole storage was cleared.
            origin: Identifier of the writer; changes from this session are ignored.

        Returns:
            True if the migration gate ran.
        """
        if origin is not None and origin == self.origin_id:
            return False

        keys = self.store.keys
        if key is not None and key not in (keys.settings, keys.schema_version):
            return False

        migrated = self.store.migrate()
        for listener in list(self._external_change_listeners):
            try:
                listener(key)
            except Exception as e:
                logger.error(f"External change listener failed: {e}")
        return migrated

    def close(self) -> None:
        """Detach from the store and drop any pending push."""
        self.scheduler.cancel()
        self._unsubscribe_writes()
