#!/usr/bin/env python3

import copy
import logging
import threading
from typing import Dict, Any, Optional, List
from models import CategoryFolder, MonthSpreadsheet, SheetDescriptor, ResourceType

logger = logging.getLogger(__name__)


class IndexStoreError(Exception):
    """Raised when a query or update cannot be applied to the index"""


class IndexStore:
    """
    Embedded in-memory document store caching the remote folder hierarchy.

    Documents are plain dicts. Queries match by field equality, with
    ``{"field": {"$elemMatch": {...}}}`` for embedded arrays. Updates support
    ``$set`` and ``$push``; ``remove`` deletes by the same queries. All access
    is serialized by a re-entrant lock since the queue worker, the web server
    and the startup sync share one store.
    """

    def __init__(self):
        self._documents: List[Dict[str, Any]] = []
        self._lock = threading.RLock()

    # Generic document API

    def find(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Return copies of all documents matching the query, in insertion order"""
        with self._lock:
            return [copy.deepcopy(doc) for doc in self._documents if self._matches(doc, query)]

    def find_one(self, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with self._lock:
            for doc in self._documents:
                if self._matches(doc, query):
                    return copy.deepcopy(doc)
            return None

    def insert(self, document: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(document, dict):
            raise IndexStoreError(f"Documents must be dicts, got {type(document).__name__}")
        with self._lock:
            stored = copy.deepcopy(document)
            self._documents.append(stored)
            return copy.deepcopy(stored)

    def update(self, query: Dict[str, Any], update: Dict[str, Any], multi: bool = False) -> int:
        """Apply $set/$push to the first (or every, with multi) matching document"""
        unknown = set(update) - {"$set", "$push"}
        if unknown:
            raise IndexStoreError(f"Unsupported update operators: {sorted(unknown)}")

        with self._lock:
            updated = 0
            for doc in self._documents:
                if not self._matches(doc, query):
                    continue
                for key, value in update.get("$set", {}).items():
                    doc[key] = copy.deepcopy(value)
                for key, value in update.get("$push", {}).items():
                    existing = doc.setdefault(key, [])
                    if not isinstance(existing, list):
                        raise IndexStoreError(f"Cannot $push to non-array field '{key}'")
                    existing.append(copy.deepcopy(value))
                updated += 1
                if not multi:
                    break
            return updated

    def remove(self, query: Dict[str, Any], multi: bool = False) -> int:
        """Delete the first (or every, with multi) matching document"""
        with self._lock:
            kept = []
            removed = 0
            for doc in self._documents:
                if (multi or not removed) and self._matches(doc, query):
                    removed += 1
                    continue
                kept.append(doc)
            self._documents = kept
            return removed

    def clear(self):
        with self._lock:
            self._documents = []

    def count(self, query: Optional[Dict[str, Any]] = None) -> int:
        with self._lock:
            if not query:
                return len(self._documents)
            return sum(1 for doc in self._documents if self._matches(doc, query))

    def _matches(self, document: Dict[str, Any], query: Dict[str, Any]) -> bool:
        for key, expected in query.items():
            if isinstance(expected, dict) and "$elemMatch" in expected:
                elements = document.get(key)
                if not isinstance(elements, list):
                    return False
                criteria = expected["$elemMatch"]
                if not any(
                    isinstance(element, dict) and self._matches(element, criteria)
                    for element in elements
                ):
                    return False
            elif isinstance(expected, dict) and any(k.startswith("$") for k in expected):
                raise IndexStoreError(f"Unsupported query operator in {expected}")
            elif document.get(key) != expected:
                return False
        return True

    # Typed helpers for the lookups the reconciliation path needs

    def find_folder(self, name: str) -> Optional[CategoryFolder]:
        document = self.find_one({"type": ResourceType.FOLDER.value, "name": name})
        return CategoryFolder.from_document(document) if document else None

    def list_folders(self) -> List[CategoryFolder]:
        return [
            CategoryFolder.from_document(doc)
            for doc in self.find({"type": ResourceType.FOLDER.value})
        ]

    def insert_folder(self, folder: CategoryFolder):
        self.insert(folder.to_document())
        logger.debug(f"Indexed folder {folder.name} ({folder.id})")

    def find_spreadsheets(self, parent_id: str) -> List[MonthSpreadsheet]:
        return [
            MonthSpreadsheet.from_document(doc)
            for doc in self.find({"type": ResourceType.SPREADSHEET.value, "parent": parent_id})
        ]

    def insert_spreadsheet(self, spreadsheet: MonthSpreadsheet):
        self.insert(spreadsheet.to_document())
        logger.debug(
            f"Indexed spreadsheet {spreadsheet.name} ({spreadsheet.id}) "
            f"with {len(spreadsheet.sheets)} sheets"
        )

    def find_sheet(self, spreadsheet_id: str, title: str) -> Optional[SheetDescriptor]:
        """
        Look up a sheet by title within one spreadsheet record.

        An exact title wins; otherwise titles are compared case-insensitively,
        since the backend will not hold two tabs differing only in case.
        """
        document = self.find_one({"id": spreadsheet_id, "sheets": {"$elemMatch": {"title": title}}})
        if document is not None:
            for sheet in document["sheets"]:
                if sheet.get("title") == title:
                    return SheetDescriptor.from_document(sheet)

        document = self.find_one({"id": spreadsheet_id})
        if document is None:
            return None
        folded = title.casefold()
        for sheet in document.get("sheets", []):
            if str(sheet.get("title", "")).casefold() == folded:
                return SheetDescriptor.from_document(sheet)
        return None

    def push_sheet(self, spreadsheet_id: str, sheet: SheetDescriptor):
        updated = self.update({"id": spreadsheet_id}, {"$push": {"sheets": sheet.to_document()}})
        if not updated:
            raise IndexStoreError(f"Spreadsheet {spreadsheet_id} is not indexed")

    def set_sheet_row_length(self, spreadsheet_id: str, sheet_id: int, row_length: int):
        with self._lock:
            document = self.find_one({"id": spreadsheet_id})
            if document is None:
                raise IndexStoreError(f"Spreadsheet {spreadsheet_id} is not indexed")
            sheets = document.get("sheets", [])
            for sheet in sheets:
                if sheet.get("sheetId") == sheet_id:
                    sheet["rowLength"] = row_length
                    break
            else:
                raise IndexStoreError(f"Sheet {sheet_id} not found in spreadsheet {spreadsheet_id}")
            self.update({"id": spreadsheet_id}, {"$set": {"sheets": sheets}})

    def snapshot(self) -> Dict[str, Any]:
        """Summary of the index for status reporting"""
        with self._lock:
            folders = self.count({"type": ResourceType.FOLDER.value})
            spreadsheets = self.count({"type": ResourceType.SPREADSHEET.value})
            sheets = sum(
                len(doc.get("sheets", []))
                for doc in self._documents
                if doc.get("type") == ResourceType.SPREADSHEET.value
            )
        return {"folders": folders, "spreadsheets": spreadsheets, "sheets": sheets}
