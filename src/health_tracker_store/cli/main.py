"""
Command-line interface for Health Tracker Store.

Provides commands for migrating, exporting, importing and syncing the
local store.
"""

import asyncio
import json
from typing import Any

import typer

from health_tracker_store.domain.records import RECORD_COLLECTIONS, SyncStatus
from health_tracker_store.infrastructure.key_value.backends import (
    FileBackend,
    KeyValueBackend,
    MemoryBackend,
)
from health_tracker_store.infrastructure.remote.document_store import (
    InMemoryDocumentStore,
    RemoteDocumentStore,
)
from health_tracker_store.infrastructure.remote.drive_store import DriveDocumentStore
from health_tracker_store.services.local_store import LocalStore
from health_tracker_store.services.output import OutputService
from health_tracker_store.services.sync_engine import SyncEngine
from health_tracker_store.utils.exceptions import ConfigurationError, HealthTrackerStoreError
from health_tracker_store.utils.logging_config import get_logger, setup_logging
from health_tracker_store.utils.parameters import ParameterLoader
from health_tracker_store.utils.timezone_utils import SystemClock

app = typer.Typer(help="Health Tracker Store - Local-first tracker data with account sync")

logger = get_logger(__name__)


def init_config(config_path: str = "config/config.yaml") -> ParameterLoader:
    """
    Initialize configuration and logging.

    Args:
        config_path: Path to configuration file.

    Returns:
        Parameter loader instance.
    """
    param_loader = ParameterLoader(config_path)
    setup_logging(param_loader.get_logging_config(), "health_tracker_store")
    return param_loader


def build_store(param_loader: ParameterLoader) -> LocalStore:
    """Create the local store described by the configuration."""
    storage_config = param_loader.get_storage_config()
    backend: KeyValueBackend
    if storage_config.backend == "memory":
        backend = MemoryBackend(quota_bytes=storage_config.quota_bytes)
    else:
        backend = FileBackend(storage_config.data_dir)

    return LocalStore(
        backend,
        clock=SystemClock(param_loader.get_timezone()),
        key_prefix=storage_config.key_prefix,
    )


def build_remote(param_loader: ParameterLoader) -> RemoteDocumentStore:
    """Create the remote document store described by the configuration."""
    remote_config = param_loader.get_remote_config()
    if remote_config.backend == "drive":
        if remote_config.drive is None:
            raise ConfigurationError("remote.drive must be configured for the drive backend")
        return DriveDocumentStore(remote_config.drive)
    logger.warning(
        "Using the in-memory remote: documents do not persist between commands, "
        "configure remote.backend: drive to sync across runs"
    )
    return InMemoryDocumentStore()


def build_engine(param_loader: ParameterLoader, store: LocalStore, account: str) -> SyncEngine:
    engine = SyncEngine(
        store,
        build_remote(param_loader),
        seed_remote_on_first_use=param_loader.get_sync_config().seed_remote_on_first_use,
    )
    engine.set_account(account)
    engine.on_status(lambda status: logger.info(f"Sync status: {status.value}"))
    return engine


@app.command()
def migrate(
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
) -> None:
    """
    Normalize all stored collections at the current schema version.
    """
    try:
        param_loader = init_config(config_path)
        store = build_store(param_loader)

        if not store.migrate():
            raise HealthTrackerStoreError("Migration failed, see log for details")

        typer.echo(
            f"Migrated from schema version {store.migration.last_detected_version} "
            f"to {store.settings.get()['schemaVersion']}"
        )

    except HealthTrackerStoreError as e:
        logger.error(f"Migration failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command()
def export(
    output: str = typer.Option("output/export.json", help="Export file to write"),
    csv_dir: str | None = typer.Option(None, help="Also write per-collection CSV tables here"),
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
) -> None:
    """
    Export all collections to a JSON bundle.
    """
    try:
        param_loader = init_config(config_path)
        store = build_store(param_loader)
        bundle = store.export_all()

        output_service = OutputService(csv_dir or "output")
        path = output_service.write_export(bundle, output)
        typer.echo(f"Export written to {path}")

        if csv_dir:
            for table in output_service.write_collection_tables(bundle):
                typer.echo(f"  - {table}")

    except HealthTrackerStoreError as e:
        logger.error(f"Export failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command(name="import")
def import_(
    input_file: str = typer.Argument(..., help="Export file to import"),
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
) -> None:
    """
    Import an export bundle (any subset of collections) and normalize it.
    """
    try:
        param_loader = init_config(config_path)
        store = build_store(param_loader)
        bundle = OutputService().read_export(input_file)

        if not store.import_all(bundle):
            raise HealthTrackerStoreError(f"Import of {input_file} failed, see log for details")

        for collection in RECORD_COLLECTIONS:
            count = len(store.get(store.keys.for_collection(collection)))
            typer.echo(f"{collection.value}: {count} records")

    except HealthTrackerStoreError as e:
        logger.error(f"Import failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command()
def pull(
    account: str = typer.Option(..., help="Account id whose remote document to pull"),
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
) -> None:
    """
    Replace local collections with the account's remote document.
    """
    try:
        param_loader = init_config(config_path)
        store = build_store(param_loader)
        engine = build_engine(param_loader, store, account)

        if not asyncio.run(engine.sync_from_cloud()):
            raise HealthTrackerStoreError("Pull failed, local data was left unchanged")
        typer.echo(f"Pulled data for {account}: {engine.status.value}")

    except HealthTrackerStoreError as e:
        logger.error(f"Pull failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command()
def push(
    account: str = typer.Option(..., help="Account id whose remote document to write"),
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
) -> None:
    """
    Write local collections to the account's remote document.
    """
    try:
        param_loader = init_config(config_path)
        store = build_store(param_loader)
        engine = build_engine(param_loader, store, account)

        if not asyncio.run(engine.sync_to_cloud()):
            raise HealthTrackerStoreError("Push failed, remote document is unchanged")
        typer.echo(f"Pushed data for {account}: {engine.status.value}")

    except HealthTrackerStoreError as e:
        logger.error(f"Push failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command()
def status(
    config_path: str = typer.Option("config/config.yaml", help="Path to configuration file"),
) -> None:
    """
    Show record counts, owner account and onboarding state.
    """
    try:
        param_loader = init_config(config_path)
        store = build_store(param_loader)
        owner = store.read_raw(store.keys.owner_account_id, None)

        summary: dict[str, Any] = {
            collection.value: len(store.get(store.keys.for_collection(collection)))
            for collection in RECORD_COLLECTIONS
        }
        summary["owner"] = owner or SyncStatus.LOCAL_ONLY.value
        summary["theme"] = store.settings.theme()
        summary["onboardingPending"] = store.onboarding.should_prompt()
        typer.echo(json.dumps(summary, indent=2))

    except HealthTrackerStoreError as e:
        logger.error(f"Status failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


if __name__ == "__main__":
    app()
