#!/usr/bin/env python3

import logging
import traceback
from datetime import datetime
from dataclasses import dataclass, field
from typing import Callable, Dict, Any, List
from models import (
    CategoryFolder,
    MonthSpreadsheet,
    SheetDescriptor,
    COLUMN_WIDTHS,
    NO_HEADER_ROW_LENGTH,
    is_month_name,
    month_name,
)
from google_client import GoogleClient
from index_store import IndexStore
from reconcile_engine import utc_now

logger = logging.getLogger(__name__)


@dataclass
class StartupReport:
    root_found: bool
    folders: int = 0
    current_spreadsheets: int = 0
    previous_spreadsheets: int = 0
    failed_folders: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.root_found and not self.failed_folders


class StartupSynchronizer:
    """Rebuild the local index from the remote folder hierarchy"""

    def __init__(
        self,
        google_client: GoogleClient,
        index_store: IndexStore,
        root_folder_id: str,
        timezone_name: str = "Asia/Bangkok",
        clock: Callable[[], datetime] = utc_now,
    ):
        self.google_client = google_client
        self.index_store = index_store
        self.root_folder_id = root_folder_id
        self.timezone_name = timezone_name
        self.clock = clock

    def run(self) -> StartupReport:
        self.index_store.clear()

        if not self.verify_root_folder():
            logger.critical(
                f"Logs folder {self.root_folder_id} not found or not visible to this account"
            )
            return StartupReport(root_found=False)

        report = StartupReport(root_found=True)
        month = month_name(self.clock(), self.timezone_name)

        try:
            children = self.google_client.list_child_folders(self.root_folder_id)
        except Exception as e:
            logger.error(f"Error listing log-kind folders under {self.root_folder_id}: {e}")
            logger.error(f"Startup sync traceback: {traceback.format_exc()}")
            report.failed_folders.append(self.root_folder_id)
            return report

        folders = []
        for child in children:
            folder = CategoryFolder(name=child["name"], id=child["id"], parent=self.root_folder_id)
            self.index_store.insert_folder(folder)
            folders.append(folder)
        report.folders = len(folders)
        print(f"Indexed {len(folders)} log-kind folders")

        for folder in folders:
            try:
                self._index_folder(folder, month, report)
            except Exception as e:
                logger.error(f"Error indexing spreadsheets of folder '{folder.name}': {e}")
                logger.error(f"Startup sync traceback: {traceback.format_exc()}")
                report.failed_folders.append(folder.name)

        return report

    def verify_root_folder(self) -> bool:
        try:
            found = self.google_client.get_file(self.root_folder_id)
        except Exception as e:
            logger.error(f"Error verifying logs folder {self.root_folder_id}: {e}")
            return False
        return bool(found) and not found.get("trashed", False)

    def _index_folder(self, folder: CategoryFolder, month: str, report: StartupReport):
        files = [
            f for f in self.google_client.list_child_spreadsheets(folder.id)
            if is_month_name(f.get("name", ""))
        ]
        current = [f for f in files if f["name"] == month]

        if current:
            for file in current:
                spreadsheet = self._load_spreadsheet(file, folder, include_grid_data=True)
                for sheet in spreadsheet.sheets:
                    self._resize(spreadsheet.id, sheet)
                self.index_store.insert_spreadsheet(spreadsheet)
                report.current_spreadsheets += 1
            return

        older = [f for f in files if f["name"] < month]
        if older:
            latest = max(older, key=lambda f: f["name"])
            # Only the titles matter here, they seed next month's sheets
            spreadsheet = self._load_spreadsheet(latest, folder, include_grid_data=False)
            self.index_store.insert_spreadsheet(spreadsheet)
            report.previous_spreadsheets += 1

    def _load_spreadsheet(
        self, file: Dict[str, Any], folder: CategoryFolder, include_grid_data: bool
    ) -> MonthSpreadsheet:
        data = self.google_client.get_spreadsheet(file["id"], include_grid_data=include_grid_data)
        sheets = [self._describe_sheet(sheet) for sheet in data.get("sheets", [])]
        return MonthSpreadsheet(name=file["name"], id=file["id"], parent=folder.id, sheets=sheets)

    def _describe_sheet(self, sheet: Dict[str, Any]) -> SheetDescriptor:
        properties = sheet["properties"]
        return SheetDescriptor(
            sheet_id=properties["sheetId"],
            title=properties["title"],
            row_length=self._count_data_rows(sheet),
        )

    @staticmethod
    def _count_data_rows(sheet: Dict[str, Any]) -> int:
        grid = sheet.get("data") or []
        if not grid:
            # Fetched without grid data
            return 0
        rows = grid[0].get("rowData", [])
        if not rows:
            return NO_HEADER_ROW_LENGTH
        return len(rows) - 1

    def _resize(self, spreadsheet_id: str, sheet: SheetDescriptor):
        try:
            self.google_client.resize_columns(spreadsheet_id, sheet.sheet_id, COLUMN_WIDTHS)
        except Exception as e:
            logger.warning(f"Failed to resize columns of sheet '{sheet.title}': {e}")

    def describe_index(self) -> List[Dict[str, Any]]:
        """Folder -> spreadsheets -> sheets tree of the current index"""
        tree = []
        for folder in self.index_store.list_folders():
            tree.append({
                "name": folder.name,
                "id": folder.id,
                "spreadsheets": [
                    {
                        "name": s.name,
                        "id": s.id,
                        "sheets": [
                            {"title": sh.title, "sheetId": sh.sheet_id, "rowLength": sh.row_length}
                            for sh in s.sheets
                        ],
                    }
                    for s in self.index_store.find_spreadsheets(folder.id)
                ],
            })
        return tree
