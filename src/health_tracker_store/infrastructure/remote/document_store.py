"""
Remote document store contract.

One document per account id, read with a keyed get and written with a
top-level merge. A ``SERVER_TIMESTAMP`` placeholder in written data is
replaced by the store's own clock.
"""

import asyncio
import copy
import logging
from typing import Any, Protocol

from health_tracker_store.utils.exceptions import RemoteStoreError
from health_tracker_store.utils.timezone_utils import Clock, SystemClock, to_iso_timestamp

logger = logging.getLogger(__name__)


class _ServerTimestamp:
    """Placeholder resolved by the store at write time."""

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"

    def __deepcopy__(self, memo: dict[int, Any]) -> "_ServerTimestamp":
        return self


SERVER_TIMESTAMP: Any = _ServerTimestamp()


def resolve_server_timestamps(data: dict[str, Any], timestamp: str) -> dict[str, Any]:
    """Replace top-level ``SERVER_TIMESTAMP`` placeholders with ``timestamp``."""
    return {key: (timestamp if value is SERVER_TIMESTAMP else value) for key, value in data.items()}


class RemoteDocumentStore(Protocol):
    """Per-account document storage."""

    async def get(self, account_id: str) -> dict[str, Any] | None:
        """Return the account's document, or None if it does not exist."""
        ...

    async def set(self, account_id: str, data: dict[str, Any], merge: bool = True) -> None:
        """Write the account's document, merging top-level keys when ``merge``."""
        ...


class InMemoryDocumentStore:
    """
    Dictionary-backed document store.

    Documents are deep-copied on the way in and out so callers never share
    state with the store. ``fail_next_get``/``fail_next_set`` and ``latency``
    make network failures and slow round trips reproducible.
    """

    def __init__(self, clock: Clock | None = None, latency: float = 0.0) -> None:
        self.clock = clock or SystemClock()
        self.latency = latency
        self.documents: dict[str, dict[str, Any]] = {}
        self.fail_next_get: Exception | None = None
        self.fail_next_set: Exception | None = None
        self.get_calls = 0
        self.set_calls = 0

    async def _round_trip(self) -> None:
        await asyncio.sleep(self.latency)

    async def get(self, account_id: str) -> dict[str, Any] | None:
        self.get_calls += 1
        await self._round_trip()
        if self.fail_next_get is not None:
            error, self.fail_next_get = self.fail_next_get, None
            raise RemoteStoreError(f"Failed to read document {account_id}: {error}") from error
        document = self.documents.get(account_id)
        return copy.deepcopy(document) if document is not None else None

    async def set(self, account_id: str, data: dict[str, Any], merge: bool = True) -> None:
        self.set_calls += 1
        await self._round_trip()
        if self.fail_next_set is not None:
            error, self.fail_next_set = self.fail_next_set, None
            raise RemoteStoreError(f"Failed to write document {account_id}: {error}") from error

        incoming = copy.deepcopy(
            resolve_server_timestamps(data, to_iso_timestamp(self.clock.now()))
        )
        if merge and account_id in self.documents:
            self.documents[account_id] = {**self.documents[account_id], **incoming}
        else:
            self.documents[account_id] = incoming
        logger.debug(f"Stored document for {account_id} ({len(incoming)} keys)")
