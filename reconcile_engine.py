#!/usr/bin/env python3

import logging
import traceback
from datetime import datetime, timezone
from typing import Callable, List, Optional, Any
from models import (
    CategoryFolder,
    MonthSpreadsheet,
    SheetDescriptor,
    LogEntry,
    OperationType,
    ReconcileOperation,
    ReconcileResult,
    COLUMN_WIDTHS,
    DEFAULT_SHEET_ID,
    HEADER_ROW,
    NO_HEADER_ROW_LENGTH,
    is_month_name,
    month_name,
)
from google_client import GoogleClient
from index_store import IndexStore

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StepFailed(Exception):
    """A reconciliation step failed; the chain stops here"""

    def __init__(self, operation: ReconcileOperation, cause: Exception):
        super().__init__(f"{operation.type.value} {operation.target} failed: {cause}")
        self.operation = operation
        self.cause = cause


class ReconcileEngine:
    """
    Resolve a log entry to its folder/spreadsheet/sheet, creating whatever is
    missing remotely, keep the index in step, and append the row.

    Each remote or index call is one step of an ordered pipeline; the first
    failing step aborts the rest. Nothing already done is rolled back.
    """

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

    def resolve_and_append(self, entry: LogEntry) -> ReconcileResult:
        operations: List[ReconcileOperation] = []
        try:
            now = self.clock()
            month = month_name(now, self.timezone_name)
            row = entry.to_row(now, self.timezone_name)

            folder = self.index_store.find_folder(entry.log_kind_name)
            if folder is None:
                folder = self._create_folder(entry.log_kind_name, operations)
                self._start_month(folder, month, None, entry, row, operations)
            else:
                spreadsheets = self.index_store.find_spreadsheets(folder.id)
                current = next((s for s in spreadsheets if s.name == month), None)
                if current is not None:
                    self._append_to_sheet(current, entry, row, operations)
                else:
                    previous = self._latest_previous(spreadsheets, month)
                    self._start_month(folder, month, previous, entry, row, operations)

            return ReconcileResult(entry=entry, operations=operations, success=True)

        except StepFailed as e:
            logger.error(
                f"Abandoned log entry {entry.log_kind_name}/{entry.sub_kind_name}: {e}"
            )
            logger.error(f"Reconcile traceback: {traceback.format_exc()}")
            return ReconcileResult(entry=entry, operations=operations, success=False, error=str(e))
        except Exception as e:
            logger.error(
                f"Error reconciling log entry {entry.log_kind_name}/{entry.sub_kind_name}: {e}"
            )
            logger.error(f"Reconcile traceback: {traceback.format_exc()}")
            return ReconcileResult(entry=entry, operations=operations, success=False, error=str(e))

    def _step(
        self,
        operations: List[ReconcileOperation],
        op_type: OperationType,
        target: str,
        func: Callable[..., Any],
        *args,
        **kwargs,
    ) -> Any:
        operation = ReconcileOperation(type=op_type, target=target)
        operations.append(operation)
        try:
            result = func(*args, **kwargs)
        except Exception as e:
            operation.error = str(e)
            raise StepFailed(operation, e) from e
        operation.completed = True
        return result

    def _latest_previous(
        self, spreadsheets: List[MonthSpreadsheet], month: str
    ) -> Optional[MonthSpreadsheet]:
        candidates = [s for s in spreadsheets if s.name != month and is_month_name(s.name)]
        if not candidates:
            return None
        return max(candidates, key=lambda s: s.name)

    def _create_folder(self, name: str, operations: List[ReconcileOperation]) -> CategoryFolder:
        created = self._step(
            operations,
            OperationType.CREATE_FOLDER,
            name,
            self.google_client.create_folder,
            name,
            [self.root_folder_id],
        )
        folder = CategoryFolder(
            name=created.get("name", name), id=created["id"], parent=self.root_folder_id
        )
        self._step(
            operations,
            OperationType.INDEX_INSERT,
            f"folder {folder.id}",
            self.index_store.insert_folder,
            folder,
        )
        logger.info(f"Created log-kind folder '{name}' ({folder.id})")
        return folder

    def _start_month(
        self,
        folder: CategoryFolder,
        month: str,
        previous: Optional[MonthSpreadsheet],
        entry: LogEntry,
        row: List[str],
        operations: List[ReconcileOperation],
    ):
        """Create this month's spreadsheet in the folder and write the entry into it"""
        created = self._step(
            operations,
            OperationType.CREATE_SPREADSHEET,
            f"{folder.name}/{month}",
            self.google_client.create_spreadsheet,
            month,
            [folder.id],
        )
        spreadsheet_id = created["id"]

        if previous is not None and previous.sheets:
            # The placeholder tab takes the first title, so no added title can clash with it
            first_title, *other_titles = [sheet.title for sheet in previous.sheets]
            self._step(
                operations,
                OperationType.RENAME_SHEET,
                f"{spreadsheet_id}: {DEFAULT_SHEET_ID} -> {first_title}",
                self.google_client.rename_sheet,
                spreadsheet_id,
                DEFAULT_SHEET_ID,
                first_title,
            )
            added = []
            if other_titles:
                added = self._step(
                    operations,
                    OperationType.ADD_SHEET,
                    f"{spreadsheet_id}: {', '.join(other_titles)}",
                    self.google_client.add_sheets,
                    spreadsheet_id,
                    other_titles,
                )
            self._step(
                operations,
                OperationType.APPEND_ROWS,
                f"{spreadsheet_id}: {first_title}",
                self.google_client.append_rows,
                spreadsheet_id,
                first_title,
                [HEADER_ROW],
            )
            sheets = [SheetDescriptor(sheet_id=DEFAULT_SHEET_ID, title=first_title, row_length=0)]
            sheets.extend(
                SheetDescriptor(
                    sheet_id=props["sheetId"],
                    title=props["title"],
                    row_length=NO_HEADER_ROW_LENGTH,
                )
                for props in added
            )
            spreadsheet = MonthSpreadsheet(
                name=month, id=spreadsheet_id, parent=folder.id, sheets=sheets
            )
            self._resize_sheets(spreadsheet_id, sheets, operations)
            self._step(
                operations,
                OperationType.INDEX_INSERT,
                f"spreadsheet {spreadsheet_id}",
                self.index_store.insert_spreadsheet,
                spreadsheet,
            )
            logger.info(
                f"Rolled over '{folder.name}' to {month} with {len(sheets)} sheets "
                f"carried from {previous.name}"
            )
            self._append_to_sheet(spreadsheet, entry, row, operations)
            return

        title = entry.sub_kind_name
        self._step(
            operations,
            OperationType.RENAME_SHEET,
            f"{spreadsheet_id}: {DEFAULT_SHEET_ID} -> {title}",
            self.google_client.rename_sheet,
            spreadsheet_id,
            DEFAULT_SHEET_ID,
            title,
        )
        self._step(
            operations,
            OperationType.APPEND_ROWS,
            f"{spreadsheet_id}: {title}",
            self.google_client.append_rows,
            spreadsheet_id,
            title,
            [HEADER_ROW, row],
        )
        sheet = SheetDescriptor(sheet_id=DEFAULT_SHEET_ID, title=title, row_length=1)
        spreadsheet = MonthSpreadsheet(
            name=month, id=spreadsheet_id, parent=folder.id, sheets=[sheet]
        )
        self._resize_sheets(spreadsheet_id, [sheet], operations)
        self._step(
            operations,
            OperationType.INDEX_INSERT,
            f"spreadsheet {spreadsheet_id}",
            self.index_store.insert_spreadsheet,
            spreadsheet,
        )
        logger.info(f"Started {month} spreadsheet for '{folder.name}' with sheet '{title}'")

    def _append_to_sheet(
        self,
        spreadsheet: MonthSpreadsheet,
        entry: LogEntry,
        row: List[str],
        operations: List[ReconcileOperation],
    ):
        title = entry.sub_kind_name
        sheet = self.index_store.find_sheet(spreadsheet.id, title)
        if sheet is not None:
            # Tab titles are unique regardless of case; write to the existing tab
            title = sheet.title

        if sheet is not None and not sheet.needs_header:
            # Row counters are only set when a sheet is created or indexed
            self._step(
                operations,
                OperationType.APPEND_ROWS,
                f"{spreadsheet.id}: {title}",
                self.google_client.append_rows,
                spreadsheet.id,
                title,
                [row],
            )
            return

        if sheet is not None:
            self._step(
                operations,
                OperationType.APPEND_ROWS,
                f"{spreadsheet.id}: {title}",
                self.google_client.append_rows,
                spreadsheet.id,
                title,
                [HEADER_ROW, row],
            )
            self._step(
                operations,
                OperationType.INDEX_UPDATE,
                f"spreadsheet {spreadsheet.id}: {title}",
                self.index_store.set_sheet_row_length,
                spreadsheet.id,
                sheet.sheet_id,
                1,
            )
            return

        added = self._step(
            operations,
            OperationType.ADD_SHEET,
            f"{spreadsheet.id}: {title}",
            self.google_client.add_sheets,
            spreadsheet.id,
            [title],
        )
        props = added[0]
        new_sheet = SheetDescriptor(sheet_id=props["sheetId"], title=props["title"], row_length=1)
        self._step(
            operations,
            OperationType.INDEX_UPDATE,
            f"spreadsheet {spreadsheet.id}: {title}",
            self.index_store.push_sheet,
            spreadsheet.id,
            new_sheet,
        )
        self._resize_sheets(spreadsheet.id, [new_sheet], operations)
        self._step(
            operations,
            OperationType.APPEND_ROWS,
            f"{spreadsheet.id}: {title}",
            self.google_client.append_rows,
            spreadsheet.id,
            title,
            [HEADER_ROW, row],
        )
        logger.info(f"Added sheet '{title}' to spreadsheet {spreadsheet.name} ({spreadsheet.id})")

    def _resize_sheets(
        self,
        spreadsheet_id: str,
        sheets: List[SheetDescriptor],
        operations: List[ReconcileOperation],
    ):
        # Cosmetic: a failed resize is logged and the chain goes on
        for sheet in sheets:
            try:
                self._step(
                    operations,
                    OperationType.RESIZE_COLUMNS,
                    f"{spreadsheet_id}: {sheet.sheet_id}",
                    self.google_client.resize_columns,
                    spreadsheet_id,
                    sheet.sheet_id,
                    COLUMN_WIDTHS,
                )
            except StepFailed as e:
                logger.warning(f"Failed to resize columns: {e}")
