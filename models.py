#!/usr/bin/env python3

import re
from datetime import datetime, timezone, tzinfo
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field
from enum import Enum
from dateutil import tz


MONTH_FORMAT = "%Y-%m"
MONTH_NAME_PATTERN = re.compile(r"^\d{4}-\d{2}$")

HEADER_ROW = ["current_date", "unix_time_to_date", "unix_time", "sub_sub_kind_name", "log_text"]

# (start column, end column exclusive, pixel width)
COLUMN_WIDTHS = [(0, 2, 350), (2, 3, 150), (3, 5, 400)]

# Sheet id the backend assigns to the placeholder tab of a new spreadsheet
DEFAULT_SHEET_ID = 0

# Row length of a seeded sheet that has not received its header row yet
NO_HEADER_ROW_LENGTH = -1


class ResourceType(Enum):
    """Record types as they appear in the local index"""
    FOLDER = "folder"
    SPREADSHEET = "spreadsheet"


class OperationType(Enum):
    CREATE_FOLDER = "create_folder"
    CREATE_SPREADSHEET = "create_spreadsheet"
    ADD_SHEET = "add_sheet"
    RENAME_SHEET = "rename_sheet"
    RESIZE_COLUMNS = "resize_columns"
    APPEND_ROWS = "append_rows"
    INDEX_INSERT = "index_insert"
    INDEX_UPDATE = "index_update"


@dataclass
class SheetDescriptor:
    sheet_id: int
    title: str
    row_length: int = 0

    @property
    def needs_header(self) -> bool:
        return self.row_length < 0

    def to_document(self) -> Dict[str, Any]:
        return {"sheetId": self.sheet_id, "title": self.title, "rowLength": self.row_length}

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "SheetDescriptor":
        return cls(
            sheet_id=document["sheetId"],
            title=document["title"],
            row_length=document.get("rowLength", 0),
        )


@dataclass
class CategoryFolder:
    """One top-level log category, backed by a Drive folder"""

    name: str
    id: str
    parent: str
    type: ResourceType = ResourceType.FOLDER

    def to_document(self) -> Dict[str, Any]:
        return {"name": self.name, "id": self.id, "parent": self.parent, "type": self.type.value}

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "CategoryFolder":
        return cls(name=document["name"], id=document["id"], parent=document["parent"])


@dataclass
class MonthSpreadsheet:
    """One calendar month of logs for a category, backed by a spreadsheet"""

    name: str
    id: str
    parent: str
    sheets: List[SheetDescriptor] = field(default_factory=list)
    type: ResourceType = ResourceType.SPREADSHEET

    def find_sheet(self, title: str) -> Optional[SheetDescriptor]:
        for sheet in self.sheets:
            if sheet.title == title:
                return sheet
        return None

    def to_document(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "id": self.id,
            "parent": self.parent,
            "type": self.type.value,
            "sheets": [sheet.to_document() for sheet in self.sheets],
        }

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "MonthSpreadsheet":
        return cls(
            name=document["name"],
            id=document["id"],
            parent=document["parent"],
            sheets=[SheetDescriptor.from_document(s) for s in document.get("sheets", [])],
        )


@dataclass
class LogEntry:
    """A validated log-append request"""

    log_kind_name: str
    sub_kind_name: str
    sub_sub_kind_name: str
    log_text: str
    unix_time: str
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_row(self, now: datetime, zone_name: str) -> List[str]:
        """Build the sheet row for this entry as of `now`"""
        event_time = datetime.fromtimestamp(int(self.unix_time), tz=timezone.utc)
        return [
            format_timestamp(now, zone_name),
            format_timestamp(event_time, zone_name),
            self.unix_time,
            self.sub_sub_kind_name,
            self.log_text,
        ]


@dataclass
class ReconcileOperation:
    type: OperationType
    target: str
    completed: bool = False
    error: Optional[str] = None


@dataclass
class ReconcileResult:
    entry: LogEntry
    operations: List[ReconcileOperation]
    success: bool
    error: Optional[str] = None

    @property
    def created_structure(self) -> bool:
        """Whether any folder, spreadsheet or sheet was created remotely"""
        structural = (
            OperationType.CREATE_FOLDER,
            OperationType.CREATE_SPREADSHEET,
            OperationType.ADD_SHEET,
        )
        return any(op.type in structural and op.completed for op in self.operations)


def get_zone(zone_name: str) -> tzinfo:
    """Resolve an IANA zone name, raising ValueError for unknown names"""
    zone = tz.gettz(zone_name)
    if zone is None:
        raise ValueError(f"Unknown timezone: {zone_name}")
    return zone


def month_name(moment: datetime, zone_name: str) -> str:
    """Month key (YYYY-MM) of `moment` on the wall clock of `zone_name`"""
    return moment.astimezone(get_zone(zone_name)).strftime(MONTH_FORMAT)


def is_month_name(name: str) -> bool:
    return bool(MONTH_NAME_PATTERN.match(name or ""))


def format_timestamp(moment: datetime, zone_name: str) -> str:
    """
    Render a timestamp the way rows have always been written, e.g.
    'Wed Nov 15 2023 05:13:20 GMT+07:00 (Asia/Bangkok)'.
    """
    local = moment.astimezone(get_zone(zone_name))
    offset = local.utcoffset()
    total_minutes = int(offset.total_seconds() // 60) if offset is not None else 0
    sign = "+" if total_minutes >= 0 else "-"
    hours, minutes = divmod(abs(total_minutes), 60)
    return f"{local:%a %b %d %Y %H:%M:%S} GMT{sign}{hours:02d}:{minutes:02d} ({zone_name})"
