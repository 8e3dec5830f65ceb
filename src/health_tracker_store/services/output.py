"""
Output service for export bundles.

Writes and reads the JSON export, and flattens the record collections into
per-collection CSV tables for spreadsheet use.
"""

import json
import logging
from pathlib import Path
from typing import Any

import pandas as pd

from health_tracker_store.domain.records import RECORD_COLLECTIONS
from health_tracker_store.utils.exceptions import ExportError

logger = logging.getLogger(__name__)


class OutputService:
    """
    Service for writing export data to files.

    Handles JSON bundles and CSV tables with complex fields serialized as JSON.
    """

    def __init__(self, output_dir: str | Path = "output") -> None:
        """
        Initialize output service.

        Args:
            output_dir: Directory for CSV tables.
        """
        self.output_dir = Path(output_dir)

    def write_export(self, bundle: dict[str, Any], path: str | Path) -> Path:
        """
        Write an export bundle as JSON.

        Args:
            bundle: Export produced by ``LocalStore.export_all``.
            path: Destination file.

        Returns:
            Path written.

        Raises:
            ExportError: If the file cannot be written.
        """
        target = Path(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, "w", encoding="utf-8") as f:
                json.dump(bundle, f, indent=2, ensure_ascii=False)
        except (OSError, TypeError, ValueError) as e:
            raise ExportError(f"Failed to write export to {target}: {e}") from e

        logger.info(f"Wrote export to {target}")
        return target

    def read_export(self, path: str | Path) -> dict[str, Any]:
        """
        Read an export bundle.

        Args:
            path: Export file.

        Returns:
            Parsed bundle.

        Raises:
            ExportError: If the file is missing, unreadable or not a JSON object.
        """
        source = Path(path)
        try:
            with open(source, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise ExportError(f"Failed to read export {source}: {e}") from e

        if not isinstance(data, dict):
            raise ExportError(f"Export {source} must contain a JSON object")
        return data

    def _to_frame(self, records: list[Any]) -> pd.DataFrame:
        """
        Flatten records into a table.

        Nested objects become dotted columns; lists are serialized to JSON.

        Args:
            records: Collection records.

        Returns:
            DataFrame with one row per record.
        """
        rows = [record for record in records if isinstance(record, dict)]
        if not rows:
            return pd.DataFrame()

        df = pd.json_normalize(rows)
        for column in df.columns:
            if df[column].apply(lambda value: isinstance(value, list)).any():
                df[column] = df[column].apply(
                    lambda value: json.dumps(value) if isinstance(value, list) else value
                )
        return df

    def write_collection_tables(self, bundle: dict[str, Any]) -> list[Path]:
        """
        Write workouts, nutrition and metrics to ``<collection>.csv`` files.

        Args:
            bundle: Export bundle.

        Returns:
            Paths of the tables written; empty collections are skipped.
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)
        written: list[Path] = []

        for collection in RECORD_COLLECTIONS:
            records = bundle.get(collection.value)
            df = self._to_frame(records if isinstance(records, list) else [])
            if df.empty:
                logger.warning(f"No {collection.value} records to write")
                continue

            csv_path = self.output_dir / f"{collection.value}.csv"
            df.to_csv(csv_path, index=False, encoding="utf-8")
            logger.info(f"Wrote {len(df)} {collection.value} rows to {csv_path}")
            written.append(csv_path)

        return written
