"""Ownership marker for the on-device cache."""

import logging

from health_tracker_store.services.local_store import LocalStore
from health_tracker_store.utils.exceptions import StorageWriteError

logger = logging.getLogger(__name__)


class OwnershipGuard:
    """
    Tracks which account last populated the local store.

    A pull for a different account than the recorded owner is a hard account
    switch: local data must be wiped before anything is fetched.
    """

    def __init__(self, store: LocalStore) -> None:
        self.store = store

    def owner(self) -> str | None:
        value = self.store.read_raw(self.store.keys.owner_account_id, None)
        return value if isinstance(value, str) and value else None

    def is_account_switch(self, account_id: str) -> bool:
        """
        Check whether pulling for ``account_id`` switches accounts.

        Args:
            account_id: Currently signed-in account.

        Returns:
            True when an owner is recorded and differs from ``account_id``.
        """
        owner = self.owner()
        return owner is not None and owner != account_id

    def set_owner(self, account_id: str) -> bool:
        try:
            self.store.write_raw(self.store.keys.owner_account_id, account_id)
        except StorageWriteError as e:
            logger.error(f"Failed to record owner {account_id}: {e}")
            return False
        return True
