"""Unit tests for the Google Drive document store with a mocked Drive service."""

import io
import json
from typing import Any
from unittest.mock import MagicMock

import pytest
from conftest import FixedClock

from health_tracker_store.infrastructure.remote import drive_store
from health_tracker_store.infrastructure.remote.document_store import SERVER_TIMESTAMP
from health_tracker_store.infrastructure.remote.drive_store import DriveDocumentStore
from health_tracker_store.utils.exceptions import RemoteStoreError
from health_tracker_store.utils.parameters import DriveConfig


class FakeDownload:
    def __init__(self, buffer: io.BytesIO, request: bytes) -> None:
        buffer.write(request)

    def next_chunk(self) -> tuple[None, bool]:
        return None, True


class FakeUpload:
    def __init__(self, fd: io.BytesIO, mimetype: str, resumable: bool) -> None:
        self.document = json.loads(fd.getvalue().decode("utf-8"))


@pytest.fixture
def drive(monkeypatch: pytest.MonkeyPatch) -> tuple[DriveDocumentStore, MagicMock]:
    monkeypatch.setattr(drive_store, "MediaIoBaseDownload", FakeDownload)
    monkeypatch.setattr(drive_store, "MediaIoBaseUpload", FakeUpload)

    config = DriveConfig(auth_method="service_account", folder_id="folder-1")
    store = DriveDocumentStore(config, clock=FixedClock())
    service = MagicMock()
    store.service = service
    return store, service


def list_result(service: MagicMock, files: list[dict[str, Any]]) -> None:
    service.files.return_value.list.return_value.execute.return_value = {"files": files}


@pytest.mark.asyncio
async def test_get_missing_document(drive: tuple[DriveDocumentStore, MagicMock]) -> None:
    """Test an account without a file has no document."""
    store, service = drive
    list_result(service, [])

    if await store.get("alice") is not None:
        raise AssertionError("Expected None for a missing document")


@pytest.mark.asyncio
async def test_get_existing_document(drive: tuple[DriveDocumentStore, MagicMock]) -> None:
    """Test an existing file is downloaded and parsed."""
    store, service = drive
    list_result(service, [{"id": "file-1", "name": "alice.json"}])
    service.files.return_value.get_media.return_value = b'{"workouts": [{"id": "w1"}]}'

    document = await store.get("alice")
    if document != {"workouts": [{"id": "w1"}]}:
        raise AssertionError(f"Unexpected document {document}")


@pytest.mark.asyncio
async def test_set_merges_into_existing_document(drive: tuple[DriveDocumentStore, MagicMock]) -> None:
    """Test a merge-write keeps remote fields and resolves the server timestamp."""
    store, service = drive
    list_result(service, [{"id": "file-1", "name": "alice.json"}])
    service.files.return_value.get_media.return_value = b'{"devices": ["phone"], "workouts": [1]}'

    await store.set("alice", {"workouts": [], "lastUpdated": SERVER_TIMESTAMP})

    update = service.files.return_value.update
    if not update.called:
        raise AssertionError("Expected existing file to be updated")
    uploaded = update.call_args.kwargs["media_body"].document
    expected = {"devices": ["phone"], "workouts": [], "lastUpdated": "2026-02-01T14:00:00.000Z"}
    if uploaded != expected:
        raise AssertionError(f"Expected {expected}, got {uploaded}")


@pytest.mark.asyncio
async def test_set_creates_new_document(drive: tuple[DriveDocumentStore, MagicMock]) -> None:
    """Test the first write creates the account file in the folder."""
    store, service = drive
    list_result(service, [])

    await store.set("alice", {"goals": {}})

    create = service.files.return_value.create
    if not create.called:
        raise AssertionError("Expected a new file to be created")
    body = create.call_args.kwargs["body"]
    if body["name"] != "alice.json" or body["parents"] != ["folder-1"]:
        raise AssertionError(f"Unexpected file metadata {body}")


@pytest.mark.asyncio
async def test_api_errors_become_remote_errors(drive: tuple[DriveDocumentStore, MagicMock]) -> None:
    """Test Drive failures surface as RemoteStoreError."""
    store, service = drive
    service.files.return_value.list.return_value.execute.side_effect = OSError("connection reset")

    with pytest.raises(RemoteStoreError):
        await store.get("alice")


@pytest.mark.asyncio
async def test_query_values_are_escaped(drive: tuple[DriveDocumentStore, MagicMock]) -> None:
    """Test quotes and backslashes in an account id cannot break out of the Drive query."""
    store, service = drive
    list_result(service, [])

    await store.get("o'brien\\x")

    query = service.files.return_value.list.call_args.kwargs["q"]
    if "name='o\\'brien\\\\x.json'" not in query:
        raise AssertionError(f"Expected escaped account id in query, got {query!r}")
    if "'folder-1' in parents" not in query:
        raise AssertionError(f"Expected folder constraint kept, got {query!r}")
