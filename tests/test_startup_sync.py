#!/usr/bin/env python3

from datetime import datetime, timezone
from unittest.mock import Mock, call

from google_client import GoogleClient
from index_store import IndexStore
from models import COLUMN_WIDTHS, SheetDescriptor
from startup_sync import StartupSynchronizer

NOW = datetime(2023, 11, 20, tzinfo=timezone.utc)
ROOT = "root-folder"


def grid_sheet(sheet_id, title, rows=None):
    sheet = {"properties": {"sheetId": sheet_id, "title": title}}
    if rows is not None:
        sheet["data"] = [{"rowData": [{"values": []} for _ in range(rows)]}]
    return sheet


class TestStartupSynchronizer:

    def setup_method(self):
        self.google_client = Mock(spec=GoogleClient)
        self.google_client.get_file.return_value = {"id": ROOT, "name": "logs", "trashed": False}
        self.google_client.list_child_folders.return_value = [
            {"id": "f1", "name": "auth"},
            {"id": "f2", "name": "billing"},
        ]
        self.spreadsheets_by_folder = {"f1": [], "f2": []}
        self.google_client.list_child_spreadsheets.side_effect = (
            lambda folder_id: self.spreadsheets_by_folder[folder_id]
        )
        self.index_store = IndexStore()
        self.synchronizer = StartupSynchronizer(
            self.google_client, self.index_store, ROOT, "Asia/Bangkok", clock=lambda: NOW
        )

    def test_missing_root_folder(self):
        """Test a missing root folder stops the sync"""
        self.google_client.get_file.return_value = None

        report = self.synchronizer.run()

        assert not report.root_found
        assert not report.success
        self.google_client.list_child_folders.assert_not_called()

    def test_trashed_root_folder_counts_as_missing(self):
        """Test a trashed root folder counts as missing"""
        self.google_client.get_file.return_value = {"id": ROOT, "trashed": True}

        assert not self.synchronizer.run().root_found

    def test_root_lookup_error_counts_as_missing(self):
        """Test a failed root lookup counts as missing"""
        self.google_client.get_file.side_effect = Exception("network down")

        assert not self.synchronizer.run().root_found

    def test_indexes_folders(self):
        """Test child folders of the root are indexed"""
        report = self.synchronizer.run()

        assert report.success
        assert report.folders == 2
        assert [f.name for f in self.index_store.list_folders()] == ["auth", "billing"]
        assert self.index_store.find_folder("billing").parent == ROOT

    def test_current_month_spreadsheet_indexed_with_row_counts(self):
        """Test the current month is indexed with row counts and resized"""
        self.spreadsheets_by_folder["f1"] = [
            {"id": "ss-oct", "name": "2023-10"},
            {"id": "ss-nov", "name": "2023-11"},
        ]
        self.google_client.get_spreadsheet.return_value = {
            "sheets": [
                grid_sheet(0, "login", rows=4),
                grid_sheet(5, "logout", rows=0),
                grid_sheet(6, "signup", rows=1),
            ]
        }

        report = self.synchronizer.run()

        assert report.current_spreadsheets == 1
        assert report.previous_spreadsheets == 0
        self.google_client.get_spreadsheet.assert_called_once_with(
            "ss-nov", include_grid_data=True
        )
        spreadsheets = self.index_store.find_spreadsheets("f1")
        assert [s.name for s in spreadsheets] == ["2023-11"]
        assert spreadsheets[0].sheets == [
            SheetDescriptor(0, "login", 3),
            SheetDescriptor(5, "logout", -1),
            SheetDescriptor(6, "signup", 0),
        ]
        assert self.google_client.resize_columns.call_args_list == [
            call("ss-nov", 0, COLUMN_WIDTHS),
            call("ss-nov", 5, COLUMN_WIDTHS),
            call("ss-nov", 6, COLUMN_WIDTHS),
        ]

    def test_latest_previous_month_indexed_for_rollover(self):
        """Test only the latest older month is indexed, with titles only"""
        self.spreadsheets_by_folder["f1"] = [
            {"id": "ss-sep", "name": "2023-09"},
            {"id": "ss-oct", "name": "2023-10"},
            {"id": "ss-notes", "name": "notes"},
        ]
        self.google_client.get_spreadsheet.return_value = {
            "sheets": [grid_sheet(0, "login"), grid_sheet(3, "logout")]
        }

        report = self.synchronizer.run()

        assert report.previous_spreadsheets == 1
        self.google_client.get_spreadsheet.assert_called_once_with(
            "ss-oct", include_grid_data=False
        )
        self.google_client.resize_columns.assert_not_called()
        spreadsheets = self.index_store.find_spreadsheets("f1")
        assert [s.name for s in spreadsheets] == ["2023-10"]
        assert [s.title for s in spreadsheets[0].sheets] == ["login", "logout"]

    def test_resize_failure_does_not_fail_sync(self):
        """Test a failed resize does not fail the sync"""
        self.spreadsheets_by_folder["f1"] = [{"id": "ss-nov", "name": "2023-11"}]
        self.google_client.get_spreadsheet.return_value = {"sheets": [grid_sheet(0, "login", 2)]}
        self.google_client.resize_columns.side_effect = Exception("rate limited")

        report = self.synchronizer.run()

        assert report.success
        assert report.current_spreadsheets == 1

    def test_folder_failure_is_reported_and_others_continue(self):
        """Test a failing folder is reported and the others are still indexed"""
        self.spreadsheets_by_folder["f2"] = [{"id": "ss-nov", "name": "2023-11"}]
        self.google_client.get_spreadsheet.return_value = {"sheets": [grid_sheet(0, "charge", 2)]}

        def list_spreadsheets(folder_id):
            if folder_id == "f1":
                raise Exception("permission denied")
            return self.spreadsheets_by_folder[folder_id]

        self.google_client.list_child_spreadsheets.side_effect = list_spreadsheets

        report = self.synchronizer.run()

        assert report.root_found
        assert not report.success
        assert report.failed_folders == ["auth"]
        assert report.current_spreadsheets == 1
        assert self.index_store.find_spreadsheets("f2")[0].name == "2023-11"

    def test_rerun_rebuilds_index(self):
        """Test a second run rebuilds the index from scratch"""
        self.synchronizer.run()
        self.google_client.list_child_folders.return_value = [{"id": "f1", "name": "auth"}]

        self.synchronizer.run()

        assert [f.name for f in self.index_store.list_folders()] == ["auth"]

    def test_describe_index(self):
        """Test the index tree description"""
        self.spreadsheets_by_folder["f1"] = [{"id": "ss-nov", "name": "2023-11"}]
        self.google_client.get_spreadsheet.return_value = {"sheets": [grid_sheet(0, "login", 2)]}
        self.synchronizer.run()

        tree = self.synchronizer.describe_index()

        assert tree[0] == {
            "name": "auth",
            "id": "f1",
            "spreadsheets": [
                {
                    "name": "2023-11",
                    "id": "ss-nov",
                    "sheets": [{"title": "login", "sheetId": 0, "rowLength": 1}],
                }
            ],
        }
        assert tree[1]["spreadsheets"] == []
