"""
Synchronization between the local store and the remote account document.

Pull is an authoritative replace: collections present in the remote
document overwrite local ones wholesale. Push is a snapshot replace: the
five collections are written over the remote ones with a server timestamp,
merging at the top level of the document. Neither operation raises; both
report through the returned flag, the sync status and the log.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from health_tracker_store.domain.records import Collection, SyncStatus
from health_tracker_store.infrastructure.remote.document_store import (
    SERVER_TIMESTAMP,
    RemoteDocumentStore,
)
from health_tracker_store.services.local_store import LocalStore
from health_tracker_store.services.ownership import OwnershipGuard

logger = logging.getLogger(__name__)

StatusListener = Callable[[SyncStatus], None]
DataReadyListener = Callable[[bool], None]


class SyncEngine:
    """
    Pulls and pushes the store's collections for the signed-in account.

    Pulls are serialized: a pull started while another is running waits for
    it to finish. Pushes may overlap since each carries the full state and
    the last one to land wins.
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteDocumentStore,
        ownership: OwnershipGuard | None = None,
        seed_remote_on_first_use: bool = True,
    ) -> None:
        """
        Initialize the sync engine.

        Args:
            store: Local store to synchronize.
            remote: Remote document store.
            ownership: Owner marker guard (created over ``store`` if omitted).
            seed_remote_on_first_use: Push local data when the account has no
                remote document yet.
        """
        self.store = store
        self.remote = remote
        self.ownership = ownership or OwnershipGuard(store)
        self.seed_remote_on_first_use = seed_remote_on_first_use

        self.account_id: str | None = None
        self.status = SyncStatus.LOCAL_ONLY
        self.last_sync: datetime | None = None
        self.is_syncing = False

        self._pull_lock = asyncio.Lock()
        self._status_listeners: list[StatusListener] = []
        self._data_ready_listeners: list[DataReadyListener] = []

    # --- signals ---------------------------------------------------------

    def on_status(self, listener: StatusListener) -> None:
        self._status_listeners.append(listener)

    def on_data_ready(self, listener: DataReadyListener) -> None:
        """Register a callback fired after every pull with its success flag."""
        self._data_ready_listeners.append(listener)

    def _set_status(self, status: SyncStatus) -> None:
        self.status = status
        for listener in list(self._status_listeners):
            try:
                listener(status)
            except Exception as e:
                logger.error(f"Status listener failed: {e}")

    def _notify_data_ready(self, success: bool) -> None:
        for listener in list(self._data_ready_listeners):
            try:
                listener(success)
            except Exception as e:
                logger.error(f"Data-ready listener failed: {e}")

    # --- account state ---------------------------------------------------

    def set_account(self, account_id: str | None) -> None:
        self.account_id = account_id or None

    def is_signed_in(self) -> bool:
        return self.account_id is not None

    def clear_cache(self) -> None:
        """Forget sync bookkeeping after sign-out."""
        self.last_sync = None
        self._set_status(SyncStatus.LOCAL_ONLY)

    def clear_all_local_data(self) -> None:
        """Wipe every local collection and the owner marker."""
        self.store.clear_all()
        self.last_sync = None

    # --- pull ------------------------------------------------------------

    def _apply_document(self, document: dict[str, Any]) -> None:
        for collection in Collection:
            value = document.get(collection.value)
            if value is not None:
                self.store.replace_collection(collection, value)

    async def sync_from_cloud(self) -> bool:
        """
        Replace local collections with the signed-in account's remote document.

        On an account switch local data is wiped before the remote call. On
        any failure the pre-pull contents are restored exactly. The owner
        marker is set to the current account either way, and data-ready
        listeners fire after every attempt.

        A pull is bound to the account that started it. If the session signs
        out or switches account while the pull waits for the lock or for the
        remote, the pull leaves the store, the owner marker and the status
        alone and returns False.

        Returns:
            True if the pull succeeded.
        """
        account_id = self.account_id
        if not account_id:
            return False

        async with self._pull_lock:
            if self.account_id != account_id:
                logger.info(f"Skipping pull for {account_id}, the session changed account")
                return False

            self.is_syncing = True
            self._set_status(SyncStatus.SYNCING)

            snapshot = self.store.snapshot()
            document_found = False
            success = False
            superseded = False
            try:
                if self.ownership.is_account_switch(account_id):
                    logger.info(
                        f"Account switch from {self.ownership.owner()} to {account_id}, "
                        "clearing local data"
                    )
                    self.store.clear_collections()

                document = await self.remote.get(account_id)
                superseded = self.account_id != account_id
                if not superseded:
                    if document is not None:
                        document_found = True
                        self._apply_document(document)
                        logger.info("Data synced from cloud")
                    else:
                        logger.info("No cloud data found, keeping local data")
                    success = True
            except Exception as e:
                # The session already wiped the store when it changed account.
                superseded = self.account_id != account_id
                if not superseded:
                    logger.error(f"Sync from cloud failed: {e}")
                    if not self.store.restore(snapshot):
                        logger.error("Local snapshot could not be fully restored")
            finally:
                self.is_syncing = False

            if superseded:
                logger.warning(f"Discarding pull for {account_id}, the session changed account mid-pull")
                return False

            self.ownership.set_owner(account_id)
            if success:
                self.store.migrate()

        if success and not document_found and self.seed_remote_on_first_use:
            await self.sync_to_cloud(account_id)
        elif success:
            self.last_sync = self.store.clock.now()
            self._set_status(SyncStatus.SYNCED)
        else:
            self._set_status(SyncStatus.SYNC_FAILED)

        self._notify_data_ready(success)
        return success

    # --- push ------------------------------------------------------------

    async def sync_to_cloud(self, account_id: str | None = None) -> bool:
        """
        Write the current local collections to an account's remote document.

        Args:
            account_id: Target account; the signed-in account when None.

        Returns:
            True if the write succeeded. Local data is untouched either way.
        """
        account_id = account_id or self.account_id
        if not account_id:
            return False

        self._set_status(SyncStatus.SAVING)
        try:
            payload = {**self.store.serialized_state(), "lastUpdated": SERVER_TIMESTAMP}
            await self.remote.set(account_id, payload, merge=True)
        except Exception as e:
            logger.error(f"Sync to cloud failed: {e}")
            self._set_status(SyncStatus.SYNC_FAILED)
            return False

        self.last_sync = self.store.clock.now()
        self._set_status(SyncStatus.SYNCED)
        logger.info("Data synced to cloud")
        return True
