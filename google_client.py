#!/usr/bin/env python3

import os
import logging
from typing import Optional, Dict, Any, List, Sequence, Tuple
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
SPREADSHEET_MIME_TYPE = "application/vnd.google-apps.spreadsheet"

DEFAULT_SCOPES = [
    "https://www.googleapis.com/auth/drive.file",
    "https://www.googleapis.com/auth/spreadsheets",
]


class AuthorizationError(Exception):
    """Raised when no usable OAuth token is available"""


def sheet_range(title: str, cell: str = "A1") -> str:
    """A1-notation range for a sheet title, quoted so any title is accepted"""
    escaped = title.replace("'", "''")
    return f"'{escaped}'!{cell}"


class GoogleClient:
    """Thin wrapper around the Drive v3 and Sheets v4 APIs with OAuth token handling"""

    def __init__(
        self,
        credentials_path: str,
        token_path: str,
        scopes: Optional[List[str]] = None,
    ):
        self.credentials_path = credentials_path
        self.token_path = token_path
        self.scopes = scopes or DEFAULT_SCOPES
        self.credentials: Optional[Credentials] = None
        self._drive = None
        self._sheets = None

    def authorize(self, interactive: bool = True) -> str:
        """
        Load the cached token, refreshing or running the consent flow as needed,
        and build the API services.

        Returns a short description of what happened. Raises AuthorizationError
        when no valid token exists and interactive consent is not allowed.
        """
        creds = None
        if os.path.exists(self.token_path):
            try:
                creds = Credentials.from_authorized_user_file(self.token_path, self.scopes)
            except (ValueError, OSError) as e:
                logger.warning(f"Ignoring unreadable token file {self.token_path}: {e}")
                creds = None

        if creds and creds.valid:
            message = "Token set"
        elif creds and creds.expired and creds.refresh_token:
            creds.refresh(Request())
            self._save_token(creds)
            message = "Token refreshed"
        else:
            if not interactive:
                raise AuthorizationError(
                    f"No valid token in {self.token_path}. Run: python cli.py authorize"
                )
            if not os.path.exists(self.credentials_path):
                raise AuthorizationError(f"OAuth client file not found: {self.credentials_path}")
            flow = InstalledAppFlow.from_client_secrets_file(self.credentials_path, self.scopes)
            creds = flow.run_local_server(port=0, open_browser=False)
            self._save_token(creds)
            message = "New token saved"

        self._build_services(creds)
        return message

    @property
    def drive(self):
        if self._drive is None:
            raise AuthorizationError("Google client used before authorize()")
        return self._drive

    @property
    def sheets(self):
        if self._sheets is None:
            raise AuthorizationError("Google client used before authorize()")
        return self._sheets

    def _build_services(self, creds: Credentials):
        self.credentials = creds
        self._drive = build("drive", "v3", credentials=creds, cache_discovery=False)
        self._sheets = build("sheets", "v4", credentials=creds, cache_discovery=False)

    def _save_token(self, creds: Credentials):
        token_dir = os.path.dirname(self.token_path)
        if token_dir:
            os.makedirs(token_dir, exist_ok=True)
        fd = os.open(self.token_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(creds.to_json())
        # O_CREAT mode does not apply to an existing file
        os.chmod(self.token_path, 0o600)
        logger.info(f"Saved OAuth token to {self.token_path}")

    def _execute(self, request, description: str) -> Dict[str, Any]:
        try:
            return request.execute()
        except HttpError as e:
            logger.error(f"Google API error while {description}: {e}")
            raise

    # Drive

    def list_files(
        self,
        query: Optional[str] = None,
        page_size: int = 100,
        fields: str = "nextPageToken, files(id, name, mimeType)",
    ) -> List[Dict[str, Any]]:
        """List files matching a Drive query, following pagination"""
        files: List[Dict[str, Any]] = []
        page_token = None
        while True:
            kwargs = {"pageSize": page_size, "fields": fields}
            if query:
                kwargs["q"] = query
            if page_token:
                kwargs["pageToken"] = page_token
            response = self._execute(self.drive.files().list(**kwargs), f"listing files ({query})")
            files.extend(response.get("files", []))
            page_token = response.get("nextPageToken")
            if not page_token:
                break
        logger.debug(f"Listed {len(files)} files for query {query!r}")
        return files

    def list_child_folders(self, parent_id: str) -> List[Dict[str, Any]]:
        return self.list_files(
            f"'{parent_id}' in parents and mimeType = '{FOLDER_MIME_TYPE}' and trashed = false"
        )

    def list_child_spreadsheets(self, parent_id: str) -> List[Dict[str, Any]]:
        return self.list_files(
            f"'{parent_id}' in parents and mimeType = '{SPREADSHEET_MIME_TYPE}' and trashed = false"
        )

    def get_file(self, file_id: str) -> Optional[Dict[str, Any]]:
        """Fetch file metadata, or None when the file is not visible to this account"""
        try:
            return self._execute(
                self.drive.files().get(fileId=file_id, fields="id, name, mimeType, trashed"),
                f"getting file {file_id}",
            )
        except HttpError as e:
            if e.resp.status == 404:
                return None
            raise

    def _create_file(self, name: str, mime_type: str, parents: List[str]) -> Dict[str, Any]:
        body = {"name": name, "mimeType": mime_type, "parents": parents}
        created = self._execute(
            self.drive.files().create(body=body, fields="id, name"),
            f"creating {mime_type} '{name}'",
        )
        logger.info(f"Created '{name}' ({created.get('id')}) under {parents}")
        return created

    def create_folder(self, name: str, parents: List[str]) -> Dict[str, Any]:
        return self._create_file(name, FOLDER_MIME_TYPE, parents)

    def create_spreadsheet(self, name: str, parents: List[str]) -> Dict[str, Any]:
        return self._create_file(name, SPREADSHEET_MIME_TYPE, parents)

    # Sheets

    def get_spreadsheet(self, spreadsheet_id: str, include_grid_data: bool = True) -> Dict[str, Any]:
        return self._execute(
            self.sheets.spreadsheets().get(
                spreadsheetId=spreadsheet_id, includeGridData=include_grid_data
            ),
            f"getting spreadsheet {spreadsheet_id}",
        )

    def _batch_update(
        self, spreadsheet_id: str, requests: List[Dict[str, Any]], description: str
    ) -> Dict[str, Any]:
        return self._execute(
            self.sheets.spreadsheets().batchUpdate(
                spreadsheetId=spreadsheet_id, body={"requests": requests}
            ),
            description,
        )

    def add_sheets(
        self,
        spreadsheet_id: str,
        titles: Sequence[str],
        row_count: int = 1000,
        column_count: int = 7,
    ) -> List[Dict[str, Any]]:
        """Add one sheet per title and return the new sheets' properties in order"""
        requests = [
            {
                "addSheet": {
                    "properties": {
                        "title": title,
                        "gridProperties": {"rowCount": row_count, "columnCount": column_count},
                    }
                }
            }
            for title in titles
        ]
        response = self._batch_update(
            spreadsheet_id, requests, f"adding sheets {list(titles)} to {spreadsheet_id}"
        )
        return [reply["addSheet"]["properties"] for reply in response.get("replies", [])]

    def rename_sheet(self, spreadsheet_id: str, sheet_id: int, title: str) -> Dict[str, Any]:
        return self._batch_update(
            spreadsheet_id,
            [
                {
                    "updateSheetProperties": {
                        "properties": {"sheetId": sheet_id, "title": title},
                        "fields": "title",
                    }
                }
            ],
            f"renaming sheet {sheet_id} in {spreadsheet_id} to '{title}'",
        )

    def resize_columns(
        self, spreadsheet_id: str, sheet_id: int, widths: Sequence[Tuple[int, int, int]]
    ) -> Dict[str, Any]:
        """Set pixel widths for column ranges given as (start, end, width) triples"""
        requests = [
            {
                "updateDimensionProperties": {
                    "range": {
                        "sheetId": sheet_id,
                        "dimension": "COLUMNS",
                        "startIndex": start,
                        "endIndex": end,
                    },
                    "properties": {"pixelSize": width},
                    "fields": "pixelSize",
                }
            }
            for start, end, width in widths
        ]
        return self._batch_update(
            spreadsheet_id, requests, f"resizing columns of sheet {sheet_id} in {spreadsheet_id}"
        )

    def append_rows(self, spreadsheet_id: str, title: str, rows: List[List[Any]]) -> Dict[str, Any]:
        return self._execute(
            self.sheets.spreadsheets().values().append(
                spreadsheetId=spreadsheet_id,
                range=sheet_range(title),
                valueInputOption="USER_ENTERED",
                insertDataOption="INSERT_ROWS",
                body={"values": rows},
            ),
            f"appending {len(rows)} rows to '{title}' in {spreadsheet_id}",
        )
