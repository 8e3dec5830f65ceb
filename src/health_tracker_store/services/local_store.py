"""
Local-first store for tracker collections.

Wraps a key-value backend with JSON serialization, collection helpers
(add/update/delete/find), the goals/settings/profile/onboarding singletons,
export/import, and snapshot/restore for destructive sync operations.
Public operations never raise: failures are logged and reported as False,
None or an empty result.
"""

import copy
import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from health_tracker_store.domain.records import (
    EXPORT_VERSION,
    RECORD_COLLECTIONS,
    SCHEMA_VERSION,
    Collection,
    ExportBundle,
)
from health_tracker_store.infrastructure.key_value.backends import KeyValueBackend
from health_tracker_store.services.migration import MigrationGate
from health_tracker_store.services.normalizer import SchemaNormalizer
from health_tracker_store.utils.exceptions import StorageWriteError
from health_tracker_store.utils.timezone_utils import (
    Clock,
    SystemClock,
    add_days,
    latest_timestamp,
    to_iso_timestamp,
    today_str,
)

logger = logging.getLogger(__name__)

WriteListener = Callable[[str], None]


@dataclass(frozen=True)
class StorageKeys:
    """Namespaced backend keys for every persisted value."""

    workouts: str
    nutrition: str
    metrics: str
    goals: str
    settings: str
    schema_version: str
    owner_account_id: str

    @classmethod
    def with_prefix(cls, prefix: str) -> "StorageKeys":
        return cls(
            workouts=f"{prefix}workouts",
            nutrition=f"{prefix}nutrition",
            metrics=f"{prefix}metrics",
            goals=f"{prefix}goals",
            settings=f"{prefix}settings",
            schema_version=f"{prefix}schema_version",
            owner_account_id=f"{prefix}owner_account_id",
        )

    def for_collection(self, collection: Collection | str) -> str:
        return str(getattr(self, Collection(collection).value))

    def collection_keys(self) -> dict[Collection, str]:
        return {collection: self.for_collection(collection) for collection in Collection}

    def all(self) -> list[str]:
        return [*self.collection_keys().values(), self.schema_version, self.owner_account_id]


class CollectionAccessor:
    """Per-collection view over the store's generic record helpers."""

    def __init__(self, store: "LocalStore", collection: Collection) -> None:
        self.store = store
        self.collection = collection
        self.key = store.keys.for_collection(collection)

    def get_all(self) -> list[dict[str, Any]]:
        return self.store.get(self.key)

    def add(self, record: dict[str, Any]) -> dict[str, Any] | None:
        return self.store.add(self.key, record)

    def update(self, record_id: str, updates: Mapping[str, Any]) -> dict[str, Any] | None:
        return self.store.update(self.key, record_id, updates)

    def delete(self, record_id: str) -> bool:
        return self.store.delete(self.key, record_id)

    def find_by_id(self, record_id: str) -> dict[str, Any] | None:
        return self.store.find_by_id(self.key, record_id)

    def find_by_date(self, date: str) -> Any:
        return self.store.find_by_date(self.key, date)

    def get_latest(self, count: int = 10) -> list[dict[str, Any]]:
        return self.store.get_latest(self.key, count)

    def get_by_date_range(self, start_date: str, end_date: str) -> list[dict[str, Any]]:
        return self.store.find_by_date_range(self.key, start_date, end_date)

    def get_count(self) -> int:
        return len(self.get_all())


class DailyCollectionAccessor(CollectionAccessor):
    """Collection holding at most one entry per calendar date."""

    def find_by_date(self, date: str) -> dict[str, Any] | None:
        matches = self.store.find_by_date(self.key, date)
        return matches[0] if matches else None


class MetricsAccessor(DailyCollectionAccessor):
    """Metrics collection with a helper for today's entry."""

    def get_or_create_today(self) -> dict[str, Any] | None:
        """
        Return today's metrics entry, creating an empty one if missing.

        Returns:
            Today's entry, or None if creating it failed.
        """
        today = today_str(self.store.clock)
        entry = self.find_by_date(today)
        if entry is None:
            entry = self.add(
                {
                    "date": today,
                    "weight": None,
                    "sleepHours": None,
                    "sleepQuality": None,
                    "steps": None,
                    "energyLevel": None,
                    "mood": None,
                    "workoutCompleted": False,
                    "nutritionCompleted": False,
                }
            )
        return entry


class GoalsAccessor:
    """Goals singleton."""

    def __init__(self, store: "LocalStore") -> None:
        self.store = store

    def get(self) -> dict[str, Any]:
        saved = self.store.read_raw(self.store.keys.goals, {})
        return self.store.normalizer.normalize_goals(saved)

    def set(self, goals: Mapping[str, Any] | None) -> bool:
        merged = {**self.get(), **dict(goals or {})}
        return self.store.set(self.store.keys.goals, self.store.normalizer.normalize_goals(merged))


class SettingsAccessor:
    """Settings singleton; nested profile and fasting window are merged, not replaced."""

    def __init__(self, store: "LocalStore") -> None:
        self.store = store

    def get(self) -> dict[str, Any]:
        saved = self.store.read_raw(self.store.keys.settings, {})
        return self.store.normalizer.normalize_settings(saved)

    def set(self, settings: Mapping[str, Any] | None) -> bool:
        """
        Merge updates into the stored settings.

        Args:
            settings: Partial settings.

        Returns:
            True if the normalized settings were persisted.
        """
        current = self.get()
        incoming = dict(settings or {})
        incoming_profile = incoming.get("profile")
        incoming_window = incoming.get("defaultFastingWindow")
        merged = {
            **current,
            **incoming,
            "profile": {
                **current["profile"],
                **(incoming_profile if isinstance(incoming_profile, dict) else {}),
            },
            "defaultFastingWindow": {
                **current["defaultFastingWindow"],
                **(incoming_window if isinstance(incoming_window, dict) else {}),
            },
        }
        normalized = self.store.normalizer.normalize_settings(merged)
        saved = self.store.set(self.store.keys.settings, normalized)
        if saved:
            self.store.migration.persist_schema_version(SCHEMA_VERSION)
        return saved

    def theme(self) -> str:
        return str(self.get()["theme"])


class ProfileAccessor:
    """Profile metadata, stored inside settings so it syncs with them."""

    def __init__(self, store: "LocalStore") -> None:
        self.store = store

    def get(self) -> dict[str, Any]:
        return dict(self.store.settings.get()["profile"])

    def set(self, updates: Mapping[str, Any] | None) -> bool:
        merged = {**self.get(), **dict(updates or {})}
        return self.store.settings.set({"profile": self.store.normalizer.normalize_profile(merged)})


class OnboardingAccessor:
    """Onboarding prompt state."""

    DEFAULT_DEFER_DAYS = 7

    def __init__(self, store: "LocalStore") -> None:
        self.store = store

    def should_prompt(self) -> bool:
        """
        Decide whether the onboarding prompt should be shown.

        Returns:
            False once onboarding is completed or while a deferral is active.
        """
        settings = self.store.settings.get()
        if settings["onboardingCompleted"]:
            return False
        deferred_until = settings["onboardingDeferredUntil"]
        if deferred_until and deferred_until >= today_str(self.store.clock):
            return False
        return True

    def complete(
        self,
        profile: Mapping[str, Any] | None = None,
        goals: Mapping[str, Any] | None = None,
    ) -> bool:
        """
        Mark onboarding complete, saving the supplied profile and goals.

        Args:
            profile: Profile fields gathered during onboarding.
            goals: Goal fields gathered during onboarding.

        Returns:
            True if the settings were persisted.
        """
        if isinstance(goals, Mapping):
            self.store.goals.set(goals)

        current = self.store.settings.get()
        merged_profile = (
            self.store.normalizer.normalize_profile({**current["profile"], **dict(profile)})
            if profile
            else current["profile"]
        )
        return self.store.settings.set(
            {
                "profile": merged_profile,
                "onboardingCompleted": True,
                "onboardingCompletedAt": to_iso_timestamp(self.store.clock.now()),
                "onboardingDeferredUntil": None,
            }
        )

    def defer(self, days: Any = DEFAULT_DEFER_DAYS) -> bool:
        """Suppress the prompt until ``days`` from today (at least one day)."""
        number = self.store.normalizer.to_number(days)
        span = max(1, int(number) if number else self.DEFAULT_DEFER_DAYS)
        return self.store.settings.set(
            {"onboardingDeferredUntil": add_days(self.store.clock, span)}
        )

    def reset(self) -> bool:
        return self.store.settings.set(
            {
                "onboardingCompleted": False,
                "onboardingCompletedAt": None,
                "onboardingDeferredUntil": None,
            }
        )


class LocalStore:
    """
    On-device store for the five tracker collections.

    Constructed once per process or session with an injected backend and
    clock. Normalization runs at construction (through the migration gate)
    and on explicit ``migrate`` calls, never on every collection read.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        clock: Clock | None = None,
        normalizer: SchemaNormalizer | None = None,
        key_prefix: str = "health_tracker_",
        migrate_on_init: bool = True,
    ) -> None:
        """
        Initialize the store.

        Args:
            backend: Key-value persistence backend.
            clock: Clock for timestamps and calendar dates.
            normalizer: Schema normalizer (built from the clock if omitted).
            key_prefix: Namespace prepended to every backend key.
            migrate_on_init: Run the migration gate immediately.
        """
        self.backend = backend
        self.clock = clock or SystemClock()
        self.normalizer = normalizer or SchemaNormalizer(self.clock)
        self.keys = StorageKeys.with_prefix(key_prefix)
        self.migration = MigrationGate(self)
        self._write_listeners: list[WriteListener] = []

        self.workouts = CollectionAccessor(self, Collection.WORKOUTS)
        self.nutrition = DailyCollectionAccessor(self, Collection.NUTRITION)
        self.metrics = MetricsAccessor(self, Collection.METRICS)
        self.goals = GoalsAccessor(self)
        self.settings = SettingsAccessor(self)
        self.profile = ProfileAccessor(self)
        self.onboarding = OnboardingAccessor(self)

        if migrate_on_init:
            self.migrate()

    # --- listeners -------------------------------------------------------

    def on_write(self, listener: WriteListener) -> Callable[[], None]:
        """
        Register a callback invoked with the key after every successful ``set``.

        Args:
            listener: Callback receiving the written key.

        Returns:
            Function that unregisters the listener.
        """
        self._write_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._write_listeners:
                self._write_listeners.remove(listener)

        return unsubscribe

    def _notify_write(self, key: str) -> None:
        for listener in list(self._write_listeners):
            try:
                listener(key)
            except Exception as e:
                logger.error(f"Write listener failed for {key}: {e}")

    # --- raw access ------------------------------------------------------

    def read_text(self, key: str) -> str | None:
        return self.backend.get(key)

    def write_text(self, key: str, text: str | None) -> None:
        """Write raw text, removing the key when ``text`` is None."""
        if text is None:
            self.backend.remove(key)
        else:
            self.backend.set(key, text)

    def read_raw(self, key: str, fallback: Any) -> Any:
        """
        Read and parse a JSON value.

        Args:
            key: Backend key.
            fallback: Value returned when the key is missing or corrupt.

        Returns:
            Parsed value or ``fallback``.
        """
        try:
            raw = self.backend.get(key)
            if raw is None:
                return copy.deepcopy(fallback)
            return json.loads(raw)
        except (ValueError, TypeError) as e:
            logger.error(f"Error reading {key} from storage: {e}")
            return copy.deepcopy(fallback)

    def write_raw(self, key: str, data: Any) -> None:
        """
        Serialize and write a JSON value without notifying listeners.

        Raises:
            StorageWriteError: If serialization or the backend write fails.
        """
        try:
            text = json.dumps(data, allow_nan=False)
        except (TypeError, ValueError) as e:
            raise StorageWriteError(f"Cannot serialize value for {key}: {e}") from e
        self.backend.set(key, text)

    # --- collection contract ---------------------------------------------

    def get(self, key: str) -> list[dict[str, Any]]:
        data = self.read_raw(key, [])
        return data if isinstance(data, list) else []

    def set(self, key: str, data: Any) -> bool:
        """
        Persist a value and notify write listeners.

        Args:
            key: Backend key.
            data: JSON-serializable value.

        Returns:
            True on success, False if the write was rejected.
        """
        try:
            self.write_raw(key, data)
        except StorageWriteError as e:
            logger.error(f"Error writing {key} to storage: {e}")
            return False
        self._notify_write(key)
        return True

    def add(self, key: str, item: Mapping[str, Any]) -> dict[str, Any] | None:
        """
        Append a record, assigning ``id`` and ``createdAt`` only when absent.

        Args:
            key: Collection key.
            item: Record to add.

        Returns:
            The stored record, or None if the write failed.
        """
        record = dict(item)
        record["id"] = record.get("id") or self.normalizer.id_factory()
        record["createdAt"] = record.get("createdAt") or to_iso_timestamp(self.clock.now())
        items = self.get(key)
        items.append(record)
        return record if self.set(key, items) else None

    def update(self, key: str, record_id: str, updates: Mapping[str, Any]) -> dict[str, Any] | None:
        """
        Shallow-merge updates into a record and stamp ``updatedAt``.

        Args:
            key: Collection key.
            record_id: Identifier of the record.
            updates: Fields to merge.

        Returns:
            The updated record, or None if the id is unknown or the write failed.
        """
        items = self.get(key)
        for index, item in enumerate(items):
            if isinstance(item, dict) and item.get("id") == record_id:
                updated = {
                    **item,
                    **dict(updates),
                    "updatedAt": latest_timestamp(self.clock, item.get("updatedAt")),
                }
                items[index] = updated
                return updated if self.set(key, items) else None
        return None

    def delete(self, key: str, record_id: str) -> bool:
        items = self.get(key)
        remaining = [item for item in items if not (isinstance(item, dict) and item.get("id") == record_id)]
        return self.set(key, remaining)

    def find_by_id(self, key: str, record_id: str) -> dict[str, Any] | None:
        for item in self.get(key):
            if isinstance(item, dict) and item.get("id") == record_id:
                return item
        return None

    def find_by_date(self, key: str, date: str) -> list[dict[str, Any]]:
        return [item for item in self.get(key) if isinstance(item, dict) and item.get("date") == date]

    def find_by_date_range(self, key: str, start_date: str, end_date: str) -> list[dict[str, Any]]:
        return [
            item
            for item in self.get(key)
            if isinstance(item, dict)
            and isinstance(item.get("date"), str)
            and start_date <= item["date"] <= end_date
        ]

    def get_latest(self, key: str, count: int = 10) -> list[dict[str, Any]]:
        items = [item for item in self.get(key) if isinstance(item, dict)]
        items.sort(key=lambda item: str(item.get("date") or ""), reverse=True)
        return items[: max(0, count)]

    # --- whole-store operations ------------------------------------------

    def migrate(self) -> bool:
        return self.migration.migrate()

    def serialized_state(self) -> dict[str, Any]:
        """
        Parsed current value of every collection, as pushed to the remote document.

        Returns:
            Mapping of collection name to stored value.
        """
        state: dict[str, Any] = {}
        for collection, key in self.keys.collection_keys().items():
            fallback: Any = [] if collection in RECORD_COLLECTIONS else {}
            state[collection.value] = self.read_raw(key, fallback)
        return state

    def snapshot(self) -> dict[str, str | None]:
        """Raw text of every collection key, for byte-for-byte restore."""
        return {key: self.read_text(key) for key in self.keys.collection_keys().values()}

    def restore(self, snapshot: Mapping[str, str | None]) -> bool:
        """
        Restore a snapshot taken with ``snapshot``.

        Returns:
            True if every key was restored.
        """
        restored = True
        for key, text in snapshot.items():
            try:
                self.write_text(key, text)
            except StorageWriteError as e:
                logger.error(f"Failed to restore {key}: {e}")
                restored = False
        return restored

    def replace_collection(self, collection: Collection | str, value: Any) -> None:
        """
        Overwrite a collection verbatim without notifying write listeners.

        Raises:
            StorageWriteError: If the write fails.
        """
        self.write_raw(self.keys.for_collection(collection), value)

    def clear_collections(self) -> None:
        """Remove the five collections, keeping the version and owner markers."""
        for key in self.keys.collection_keys().values():
            self.backend.remove(key)

    def clear_all(self) -> None:
        """Remove every key owned by the store, including the owner marker."""
        for key in self.keys.all():
            self.backend.remove(key)
        logger.info("All local data cleared")

    # --- export / import -------------------------------------------------

    def export_all(self) -> dict[str, Any]:
        """
        Export every collection with a version tag.

        Returns:
            Export bundle as a plain dictionary.
        """
        bundle = ExportBundle(
            version=EXPORT_VERSION,
            schemaVersion=SCHEMA_VERSION,
            exportedAt=to_iso_timestamp(self.clock.now()),
            workouts=self.workouts.get_all(),
            nutrition=self.nutrition.get_all(),
            metrics=self.metrics.get_all(),
            goals=self.goals.get(),
            settings=self.settings.get(),
        )
        return bundle.model_dump()

    def import_all(self, data: Any) -> bool:
        """
        Import any subset of an export, then re-run the migration gate.

        Supplied collections are written verbatim, so hand-edited or older
        files are normalized on the way in.

        Args:
            data: Parsed export bundle.

        Returns:
            True if every supplied collection was written and migrated.
        """
        try:
            collections = ExportBundle.model_validate(data).collections()
            for name, value in collections.items():
                self.replace_collection(name, value)
        except (ValidationError, StorageWriteError) as e:
            logger.error(f"Error importing data: {e}")
            return False

        migrated = self.migrate()
        for name in collections:
            self._notify_write(self.keys.for_collection(name))
        return migrated

