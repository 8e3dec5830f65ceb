"""Unit tests for the sync engine."""

import asyncio
from typing import Any

import pytest
from conftest import FixedClock

from health_tracker_store.domain.records import SyncStatus
from health_tracker_store.infrastructure.remote.document_store import InMemoryDocumentStore
from health_tracker_store.services.local_store import LocalStore
from health_tracker_store.services.sync_engine import SyncEngine


class ObservingRemote(InMemoryDocumentStore):
    """Remote that records local state at the moment it is read, and read overlap."""

    def __init__(self, clock: FixedClock, latency: float = 0.0) -> None:
        super().__init__(clock=clock, latency=latency)
        self.store: LocalStore | None = None
        self.seen_workouts: list[dict[str, Any]] | None = None
        self.active_gets = 0
        self.max_active_gets = 0

    async def get(self, account_id: str) -> dict[str, Any] | None:
        if self.store is not None:
            self.seen_workouts = self.store.workouts.get_all()
        self.active_gets += 1
        self.max_active_gets = max(self.max_active_gets, self.active_gets)
        try:
            return await super().get(account_id)
        finally:
            self.active_gets -= 1


def make_engine(store: LocalStore, remote: InMemoryDocumentStore, account: str | None = "alice", **kwargs: Any) -> SyncEngine:
    engine = SyncEngine(store, remote, **kwargs)
    engine.set_account(account)
    return engine


@pytest.mark.asyncio
async def test_pull_replaces_local_collections(store: LocalStore, remote: InMemoryDocumentStore) -> None:
    """Test a pull overwrites local data with the remote document and migrates it."""
    store.workouts.add({"id": "local", "date": "2026-01-01"})
    remote.documents["alice"] = {
        "workouts": [{"id": "remote", "date": "2026-01-15T09:00:00.000Z", "type": "bogus"}],
        "goals": {"dailySteps": 8000},
        "settings": None,
    }
    engine = make_engine(store, remote)
    statuses: list[SyncStatus] = []
    ready: list[bool] = []
    engine.on_status(statuses.append)
    engine.on_data_ready(ready.append)

    if not await engine.sync_from_cloud():
        raise AssertionError("Expected pull to succeed")

    workouts = store.workouts.get_all()
    if [w["id"] for w in workouts] != ["remote"]:
        raise AssertionError(f"Expected remote workouts only, got {workouts}")
    if workouts[0]["date"] != "2026-01-15" or workouts[0]["type"] != "push":
        raise AssertionError(f"Expected pulled data normalized, got {workouts[0]}")
    if store.goals.get()["dailySteps"] != 8000:
        raise AssertionError("Expected remote goals applied")
    if engine.ownership.owner() != "alice":
        raise AssertionError("Expected owner recorded")
    if statuses != [SyncStatus.SYNCING, SyncStatus.SYNCED]:
        raise AssertionError(f"Unexpected statuses {statuses}")
    if ready != [True]:
        raise AssertionError(f"Expected one data-ready signal, got {ready}")
    if engine.last_sync is None:
        raise AssertionError("Expected last sync time recorded")


@pytest.mark.asyncio
async def test_account_switch_wipes_before_remote_read(store: LocalStore, clock: FixedClock) -> None:
    """Test another account's data is gone by the time the remote is read."""
    remote = ObservingRemote(clock)
    remote.store = store
    remote.documents["bob"] = {"workouts": [{"id": "bob-1", "date": "2026-01-20"}]}

    store.workouts.add({"id": "alice-1", "date": "2026-01-10"})
    make_engine(store, remote, "alice").ownership.set_owner("alice")

    engine = make_engine(store, remote, "bob")
    if not await engine.sync_from_cloud():
        raise AssertionError("Expected pull to succeed")

    if remote.seen_workouts != []:
        raise AssertionError(f"Expected local data wiped before remote read, saw {remote.seen_workouts}")
    if [w["id"] for w in store.workouts.get_all()] != ["bob-1"]:
        raise AssertionError("Expected only bob's data locally")
    if engine.ownership.owner() != "bob":
        raise AssertionError("Expected owner switched to bob")


@pytest.mark.asyncio
async def test_same_account_pull_does_not_wipe_first(store: LocalStore, clock: FixedClock) -> None:
    """Test a pull for the recorded owner reads the remote with local data intact."""
    remote = ObservingRemote(clock)
    remote.store = store
    remote.documents["alice"] = {"workouts": []}
    store.workouts.add({"id": "alice-1", "date": "2026-01-10"})

    engine = make_engine(store, remote, "alice")
    engine.ownership.set_owner("alice")
    await engine.sync_from_cloud()

    if remote.seen_workouts is None or len(remote.seen_workouts) != 1:
        raise AssertionError(f"Expected local data present during read, saw {remote.seen_workouts}")


@pytest.mark.asyncio
async def test_pull_failure_restores_snapshot_exactly(store: LocalStore, remote: InMemoryDocumentStore) -> None:
    """Test a failed pull after an account switch restores the exact previous text."""
    store.workouts.add({"id": "alice-1", "date": "2026-01-10", "notes": "keep me"})
    store.goals.set({"dailyProtein": 175})
    engine = make_engine(store, remote, "alice")
    engine.ownership.set_owner("alice")

    before = store.snapshot()
    remote.fail_next_get = ConnectionError("network down")
    ready: list[bool] = []
    engine.on_data_ready(ready.append)

    engine.set_account("bob")
    if await engine.sync_from_cloud():
        raise AssertionError("Expected pull to fail")

    if store.snapshot() != before:
        raise AssertionError("Expected collections restored byte for byte")
    if engine.ownership.owner() != "bob":
        raise AssertionError("Expected owner set even after a failed pull")
    if engine.status is not SyncStatus.SYNC_FAILED:
        raise AssertionError(f"Expected failed status, got {engine.status}")
    if ready != [False]:
        raise AssertionError(f"Expected failed data-ready signal, got {ready}")
    if engine.is_syncing:
        raise AssertionError("Expected syncing flag cleared")


@pytest.mark.asyncio
async def test_missing_remote_keeps_local_and_seeds(store: LocalStore, remote: InMemoryDocumentStore) -> None:
    """Test an account without a document keeps local data and receives it."""
    store.workouts.add({"id": "w1", "date": "2026-01-10"})
    engine = make_engine(store, remote)
    statuses: list[SyncStatus] = []
    engine.on_status(statuses.append)

    if not await engine.sync_from_cloud():
        raise AssertionError("Expected pull to succeed")

    if [w["id"] for w in store.workouts.get_all()] != ["w1"]:
        raise AssertionError("Expected local data kept")
    document = remote.documents.get("alice")
    if document is None or [w["id"] for w in document["workouts"]] != ["w1"]:
        raise AssertionError(f"Expected remote seeded with local data, got {document}")
    if statuses != [SyncStatus.SYNCING, SyncStatus.SAVING, SyncStatus.SYNCED]:
        raise AssertionError(f"Unexpected statuses {statuses}")


@pytest.mark.asyncio
async def test_missing_remote_without_seeding(store: LocalStore, remote: InMemoryDocumentStore) -> None:
    """Test seeding can be turned off."""
    engine = make_engine(store, remote, seed_remote_on_first_use=False)

    if not await engine.sync_from_cloud():
        raise AssertionError("Expected pull to succeed")
    if remote.set_calls != 0 or "alice" in remote.documents:
        raise AssertionError("Expected no remote write")
    if engine.status is not SyncStatus.SYNCED:
        raise AssertionError(f"Expected synced status, got {engine.status}")


@pytest.mark.asyncio
async def test_push_merges_and_stamps_server_time(store: LocalStore, remote: InMemoryDocumentStore, clock: FixedClock) -> None:
    """Test a push replaces collections but keeps unrelated remote fields."""
    remote.documents["alice"] = {"workouts": [{"id": "stale"}], "devices": ["phone"]}
    store.workouts.add({"id": "w1", "date": "2026-01-10"})
    engine = make_engine(store, remote)

    clock.advance(minutes=1)
    if not await engine.sync_to_cloud():
        raise AssertionError("Expected push to succeed")

    document = remote.documents["alice"]
    if document["devices"] != ["phone"]:
        raise AssertionError("Expected unrelated remote fields preserved")
    if [w["id"] for w in document["workouts"]] != ["w1"]:
        raise AssertionError("Expected workouts replaced wholesale")
    if document["lastUpdated"] != "2026-02-01T14:01:00.000Z":
        raise AssertionError(f"Unexpected lastUpdated {document['lastUpdated']}")
    for name in ("nutrition", "metrics", "goals", "settings"):
        if name not in document:
            raise AssertionError(f"Expected {name} in pushed document")


@pytest.mark.asyncio
async def test_push_failure_leaves_local_untouched(store: LocalStore, remote: InMemoryDocumentStore) -> None:
    """Test a failed push reports failure and keeps local data."""
    store.workouts.add({"id": "w1", "date": "2026-01-10"})
    before = store.snapshot()
    remote.fail_next_set = TimeoutError("slow network")
    engine = make_engine(store, remote)

    if await engine.sync_to_cloud():
        raise AssertionError("Expected push to fail")
    if engine.status is not SyncStatus.SYNC_FAILED:
        raise AssertionError(f"Expected failed status, got {engine.status}")
    if store.snapshot() != before:
        raise AssertionError("Expected local data untouched")


@pytest.mark.asyncio
async def test_signed_out_engine_does_nothing(store: LocalStore, remote: InMemoryDocumentStore) -> None:
    """Test pull and push are no-ops without an account."""
    engine = make_engine(store, remote, None)

    if await engine.sync_from_cloud() or await engine.sync_to_cloud():
        raise AssertionError("Expected both operations to report False")
    if remote.get_calls or remote.set_calls:
        raise AssertionError("Expected no remote calls")
    if engine.status is not SyncStatus.LOCAL_ONLY:
        raise AssertionError(f"Expected local-only status, got {engine.status}")


@pytest.mark.asyncio
async def test_concurrent_pulls_are_serialized(store: LocalStore, clock: FixedClock) -> None:
    """Test overlapping pulls never read the remote at the same time."""
    remote = ObservingRemote(clock, latency=0.01)
    remote.documents["alice"] = {"workouts": []}
    engine = make_engine(store, remote)

    results = await asyncio.gather(engine.sync_from_cloud(), engine.sync_from_cloud())

    if results != [True, True]:
        raise AssertionError(f"Expected both pulls to succeed, got {results}")
    if remote.get_calls != 2 or remote.max_active_gets != 1:
        raise AssertionError(f"Expected serialized reads, max overlap {remote.max_active_gets}")


@pytest.mark.asyncio
async def test_pull_discarded_when_account_changes_mid_read(store: LocalStore, clock: FixedClock) -> None:
    """Test a pull whose account was replaced during the read never seeds or marks the new account."""
    remote = InMemoryDocumentStore(clock=clock, latency=0.05)
    remote.documents["bob"] = {"workouts": [{"id": "bob-1", "date": "2026-01-20"}]}
    store.workouts.add({"id": "alice-1", "date": "2026-02-01"})
    engine = make_engine(store, remote, "alice")
    ready: list[bool] = []
    engine.on_data_ready(ready.append)

    pull = asyncio.create_task(engine.sync_from_cloud())
    await asyncio.sleep(0.01)
    engine.set_account("bob")

    if await pull:
        raise AssertionError("Expected the stale pull to report False")
    if remote.set_calls != 0 or "alice" in remote.documents:
        raise AssertionError("Expected no seed push from the stale pull")
    if [w["id"] for w in remote.documents["bob"]["workouts"]] != ["bob-1"]:
        raise AssertionError("Expected bob's document untouched")
    if engine.ownership.owner() is not None:
        raise AssertionError(f"Expected no owner marker, got {engine.ownership.owner()}")
    if ready or engine.is_syncing:
        raise AssertionError("Expected no data-ready signal and syncing cleared")


@pytest.mark.asyncio
async def test_failed_pull_after_sign_out_does_not_restore(store: LocalStore, clock: FixedClock) -> None:
    """Test a pull failing after sign-out leaves the wiped store empty."""
    remote = InMemoryDocumentStore(clock=clock, latency=0.05)
    remote.fail_next_get = ConnectionError("network down")
    store.workouts.add({"id": "alice-1", "date": "2026-02-01"})
    engine = make_engine(store, remote, "alice")
    engine.ownership.set_owner("alice")

    pull = asyncio.create_task(engine.sync_from_cloud())
    await asyncio.sleep(0.01)
    engine.clear_all_local_data()
    engine.set_account(None)
    engine.clear_cache()

    if await pull:
        raise AssertionError("Expected the stale pull to report False")
    if store.workouts.get_all() or engine.ownership.owner() is not None:
        raise AssertionError("Expected signed-out device to stay empty")
    if engine.status is not SyncStatus.LOCAL_ONLY:
        raise AssertionError(f"Expected local-only status, got {engine.status}")


@pytest.mark.asyncio
async def test_queued_pull_skipped_after_account_change(store: LocalStore, clock: FixedClock) -> None:
    """Test a pull waiting on the lock does nothing once its account is gone."""
    remote = InMemoryDocumentStore(clock=clock, latency=0.05)
    remote.documents["alice"] = {"workouts": [{"id": "alice-1", "date": "2026-02-01"}]}
    engine = make_engine(store, remote, "alice")

    first = asyncio.create_task(engine.sync_from_cloud())
    await asyncio.sleep(0)
    second = asyncio.create_task(engine.sync_from_cloud())
    await asyncio.sleep(0.01)
    engine.set_account(None)

    results = [await first, await second]
    if results != [False, False]:
        raise AssertionError(f"Expected both stale pulls to report False, got {results}")
    if remote.get_calls != 1:
        raise AssertionError(f"Expected the queued pull to skip the remote, got {remote.get_calls} reads")
    if store.workouts.get_all():
        raise AssertionError("Expected no remote data applied")


def test_clear_all_local_data(store: LocalStore, remote: InMemoryDocumentStore) -> None:
    """Test wiping removes collections and the owner marker."""
    store.workouts.add({"id": "w1", "date": "2026-01-10"})
    engine = make_engine(store, remote)
    engine.ownership.set_owner("alice")

    engine.clear_all_local_data()
    engine.clear_cache()

    if store.workouts.get_all() or engine.ownership.owner() is not None:
        raise AssertionError("Expected collections and owner cleared")
    if engine.status is not SyncStatus.LOCAL_ONLY:
        raise AssertionError(f"Expected local-only status, got {engine.status}")
