"""
Schema migration gate.

Detects the stored schema version, re-normalizes every collection and
persists the current version. Running it on every load makes the store
self-healing however old or malformed the stored data is.
"""

import logging
from typing import TYPE_CHECKING, Any

from health_tracker_store.domain.records import SCHEMA_VERSION, Collection
from health_tracker_store.utils.exceptions import StorageWriteError

if TYPE_CHECKING:
    from health_tracker_store.services.local_store import LocalStore

logger = logging.getLogger(__name__)


def _parse_version(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str):
        try:
            version = int(value.strip())
        except ValueError:
            return None
        return version if version > 0 else None
    return None


class MigrationGate:
    """Brings stored data up to the current schema version."""

    def __init__(self, store: "LocalStore") -> None:
        """
        Initialize the migration gate.

        Args:
            store: Store whose collections are migrated.
        """
        self.store = store
        self.last_detected_version: int | None = None

    def detect_schema_version(self) -> int:
        """
        Detect the stored schema version.

        Older stores embedded the version in the settings singleton, so that
        is consulted when the dedicated key is missing.

        Returns:
            Stored version, or 1 when none is recorded.
        """
        version = _parse_version(self.store.read_text(self.store.keys.schema_version))
        if version is not None:
            return version

        settings = self.store.read_raw(self.store.keys.settings, {})
        if isinstance(settings, dict):
            version = _parse_version(settings.get("schemaVersion"))
            if version is not None:
                return version
        return 1

    def persist_schema_version(self, version: int) -> bool:
        try:
            self.store.write_text(self.store.keys.schema_version, str(version))
        except StorageWriteError as e:
            logger.error(f"Failed to persist schema version: {e}")
            return False
        return True

    def normalize_all(self) -> None:
        """
        Normalize and rewrite every collection, then persist the current version.

        Raises:
            StorageWriteError: If any rewrite fails.
        """
        store = self.store
        normalizer = store.normalizer
        keys = store.keys

        workouts = normalizer.normalize_workouts(store.read_raw(keys.workouts, []))
        nutrition = normalizer.normalize_nutrition(store.read_raw(keys.nutrition, []))
        metrics = normalizer.normalize_metrics(store.read_raw(keys.metrics, []))
        goals = normalizer.normalize_goals(store.read_raw(keys.goals, {}))
        has_historical_data = len(workouts) + len(nutrition) + len(metrics) > 0
        settings = normalizer.normalize_settings(
            store.read_raw(keys.settings, {}), has_historical_data=has_historical_data
        )

        store.replace_collection(Collection.WORKOUTS, workouts)
        store.replace_collection(Collection.NUTRITION, nutrition)
        store.replace_collection(Collection.METRICS, metrics)
        store.replace_collection(Collection.GOALS, goals)
        store.replace_collection(Collection.SETTINGS, settings)
        store.write_text(keys.schema_version, str(SCHEMA_VERSION))

    def migrate(self) -> bool:
        """
        Run the migration.

        A stored version newer than this build understands is logged and
        normalized best-effort; it is never fatal.

        Returns:
            True if every collection was rewritten at the current version.
        """
        try:
            version = self.detect_schema_version()
            self.last_detected_version = version
            if version > SCHEMA_VERSION:
                logger.warning(
                    f"Stored schema version {version} is newer than app schema {SCHEMA_VERSION}."
                )
            self.normalize_all()
            return True
        except StorageWriteError as e:
            logger.error(f"Storage migration failed: {e}")
            return False
