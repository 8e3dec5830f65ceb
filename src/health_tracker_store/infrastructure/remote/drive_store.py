"""
Google Drive document store.

Keeps one ``<account_id>.json`` file per account in a Drive folder. Supports
OAuth2 and Service Account authentication. The Drive API client is blocking,
so every call runs in a worker thread.
"""

import asyncio
import io
import json
import logging
from pathlib import Path
from typing import Any

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google.oauth2.service_account import Credentials as ServiceAccountCredentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.http import MediaIoBaseDownload, MediaIoBaseUpload

from health_tracker_store.infrastructure.remote.document_store import resolve_server_timestamps
from health_tracker_store.utils.exceptions import AuthenticationError, RemoteStoreError
from health_tracker_store.utils.parameters import DriveConfig
from health_tracker_store.utils.timezone_utils import Clock, SystemClock, to_iso_timestamp

logger = logging.getLogger(__name__)

DOCUMENT_MIME_TYPE = "application/json"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"


def _quote(value: str) -> str:
    """Escape a value for a single-quoted Drive query string."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


class DriveDocumentStore:
    """
    Per-account JSON documents stored in a Google Drive folder.

    Authentication happens lazily on first use so constructing the store
    never touches the network.
    """

    def __init__(self, config: DriveConfig, clock: Clock | None = None) -> None:
        """
        Initialize Drive document store.

        Args:
            config: Drive configuration.
            clock: Clock used to resolve server timestamps.
        """
        self.config = config
        self.clock = clock or SystemClock()
        self.service: Any = None
        self._folder_id: str | None = config.folder_id

    def _authenticate(self) -> None:
        """
        Authenticate with Google Drive API.

        Raises:
            AuthenticationError: If authentication fails.
        """
        try:
            if self.config.auth_method == "oauth2":
                creds: Credentials | ServiceAccountCredentials = self._authenticate_oauth2()
            elif self.config.auth_method == "service_account":
                creds = self._authenticate_service_account()
            else:
                raise AuthenticationError(f"Unknown auth method: {self.config.auth_method}")

            self.service = build("drive", "v3", credentials=creds)
            logger.info(f"Authenticated with Google Drive using {self.config.auth_method}")

        except Exception as e:
            raise AuthenticationError(f"Authentication failed: {e}") from e

    def _authenticate_oauth2(self) -> Credentials:
        """
        Authenticate using OAuth2 installed app flow.

        Returns:
            Valid credentials.
        """
        oauth2 = self.config.oauth2
        if oauth2 is None:
            raise AuthenticationError("OAuth2 configuration missing")

        creds: Credentials | None = None
        token_path = Path(oauth2.token_path)

        if token_path.exists():
            creds = Credentials.from_authorized_user_file(str(token_path), oauth2.scopes)

        if not creds or not creds.valid:
            if creds and creds.expired and creds.refresh_token:
                creds.refresh(Request())
            else:
                flow = InstalledAppFlow.from_client_secrets_file(
                    oauth2.credentials_path, oauth2.scopes
                )
                creds = flow.run_local_server(port=0)

            token_path.parent.mkdir(parents=True, exist_ok=True)
            with open(token_path, "w") as token:
                token.write(creds.to_json())

        return creds

    def _authenticate_service_account(self) -> ServiceAccountCredentials:
        service_account = self.config.service_account
        if service_account is None:
            raise AuthenticationError("Service account configuration missing")
        creds = ServiceAccountCredentials.from_service_account_file(
            service_account.credentials_path,
            scopes=service_account.scopes,
        )
        return creds  # type: ignore[no-any-return]

    def _ensure_service(self) -> None:
        if self.service is None:
            self._authenticate()

    def _resolve_folder(self) -> str:
        """
        Resolve the folder holding account documents.

        Returns:
            Folder ID.

        Raises:
            RemoteStoreError: If no folder is configured or it cannot be found.
        """
        if self._folder_id:
            return self._folder_id

        if not self.config.folder_name:
            raise RemoteStoreError("No folder_id or folder_name configured")

        query = f"name='{_quote(self.config.folder_name)}' and mimeType='{FOLDER_MIME_TYPE}'"
        results = self.service.files().list(q=query, fields="files(id, name)").execute()
        files = results.get("files", [])
        if not files:
            raise RemoteStoreError(f"Folder not found: {self.config.folder_name}")

        self._folder_id = files[0]["id"]
        logger.info(f"Found folder '{self.config.folder_name}' with ID: {self._folder_id}")
        return self._folder_id

    def _find_document(self, account_id: str) -> str | None:
        folder_id = self._resolve_folder()
        query = (
            f"name='{_quote(account_id)}.json' and '{_quote(folder_id)}' in parents and trashed=false"
        )
        results = self.service.files().list(q=query, fields="files(id, name)").execute()
        files = results.get("files", [])
        return files[0]["id"] if files else None

    def _download(self, file_id: str) -> dict[str, Any]:
        buffer = io.BytesIO()
        request = self.service.files().get_media(fileId=file_id)
        downloader = MediaIoBaseDownload(buffer, request)
        done = False
        while not done:
            status, done = downloader.next_chunk()
            if status:
                logger.debug(f"Download progress: {int(status.progress() * 100)}%")

        document = json.loads(buffer.getvalue().decode("utf-8") or "{}")
        if not isinstance(document, dict):
            raise RemoteStoreError(f"Document {file_id} is not a JSON object")
        return document

    def _get_sync(self, account_id: str) -> dict[str, Any] | None:
        self._ensure_service()
        file_id = self._find_document(account_id)
        if file_id is None:
            return None
        return self._download(file_id)

    def _set_sync(self, account_id: str, data: dict[str, Any], merge: bool) -> None:
        self._ensure_service()
        file_id = self._find_document(account_id)

        document = resolve_server_timestamps(data, to_iso_timestamp(self.clock.now()))
        if merge and file_id is not None:
            document = {**self._download(file_id), **document}

        media = MediaIoBaseUpload(
            io.BytesIO(json.dumps(document).encode("utf-8")),
            mimetype=DOCUMENT_MIME_TYPE,
            resumable=False,
        )
        if file_id is None:
            metadata = {
                "name": f"{account_id}.json",
                "parents": [self._resolve_folder()],
                "mimeType": DOCUMENT_MIME_TYPE,
            }
            self.service.files().create(body=metadata, media_body=media, fields="id").execute()
        else:
            self.service.files().update(fileId=file_id, media_body=media).execute()
        logger.info(f"Uploaded document for account {account_id}")

    async def get(self, account_id: str) -> dict[str, Any] | None:
        """
        Fetch an account document.

        Args:
            account_id: Account whose document to read.

        Returns:
            Parsed document, or None if the account has none yet.

        Raises:
            RemoteStoreError: If the Drive request fails.
        """
        try:
            return await asyncio.to_thread(self._get_sync, account_id)
        except RemoteStoreError:
            raise
        except Exception as e:
            raise RemoteStoreError(f"Failed to read document for {account_id}: {e}") from e

    async def set(self, account_id: str, data: dict[str, Any], merge: bool = True) -> None:
        """
        Write an account document.

        Args:
            account_id: Account whose document to write.
            data: Top-level fields to write.
            merge: Keep remote fields absent from ``data`` when True.

        Raises:
            RemoteStoreError: If the Drive request fails.
        """
        try:
            await asyncio.to_thread(self._set_sync, account_id, data, merge)
        except RemoteStoreError:
            raise
        except Exception as e:
            raise RemoteStoreError(f"Failed to write document for {account_id}: {e}") from e
