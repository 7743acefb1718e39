#!/usr/bin/env python3

from datetime import datetime, timezone
from unittest.mock import Mock, call
from starlette.testclient import TestClient

from google_client import GoogleClient
from index_store import IndexStore
from models import COLUMN_WIDTHS, HEADER_ROW
from operations_queue import OperationsQueue
from reconcile_engine import ReconcileEngine
from request_validator import LogRequestValidator
from web_server import create_server

NOW = datetime(2023, 11, 20, tzinfo=timezone.utc)

ROW = [
    "Mon Nov 20 2023 07:00:00 GMT+07:00 (Asia/Bangkok)",
    "Wed Nov 15 2023 05:13:20 GMT+07:00 (Asia/Bangkok)",
    "1700000000",
    "attempt",
    "failed",
]


class TestLogIngestFlow:
    """POST / through to the Sheets calls, with only the Google client mocked"""

    def setup_method(self):
        self.google_client = Mock(spec=GoogleClient)
        self.google_client.create_folder.return_value = {"id": "f-auth", "name": "auth"}
        self.google_client.create_spreadsheet.return_value = {"id": "ss-1", "name": "2023-11"}
        self.index_store = IndexStore()
        engine = ReconcileEngine(
            self.google_client, self.index_store, "root", "Asia/Bangkok", clock=lambda: NOW
        )
        self.queue = OperationsQueue(engine)
        server = create_server(LogRequestValidator(), self.queue, self.index_store)
        self.client = TestClient(server.app)

    def post_entry(self):
        return self.client.post(
            "/",
            json={
                "log_kind_name": "auth",
                "sub_kind_name": "login",
                "sub_sub_kind_name": "attempt",
                "log_text": "failed",
                "unix_time": "1700000000",
            },
        )

    def test_first_entry_creates_structure(self):
        """Test the first entry creates folder, spreadsheet and sheet and shows in status"""
        response = self.post_entry()

        assert response.status_code == 200
        assert response.text == "done"
        assert self.queue.wait_for_empty_queue(timeout=5)

        self.google_client.create_folder.assert_called_once_with("auth", ["root"])
        self.google_client.create_spreadsheet.assert_called_once_with("2023-11", ["f-auth"])
        self.google_client.rename_sheet.assert_called_once_with("ss-1", 0, "login")
        self.google_client.append_rows.assert_called_once_with("ss-1", "login", [HEADER_ROW, ROW])
        self.google_client.resize_columns.assert_called_once_with("ss-1", 0, COLUMN_WIDTHS)

        status = self.client.get("/status").json()
        assert status["queue"]["succeeded"] == 1
        assert status["queue"]["structural_changes"] == 1
        assert status["index"] == {"folders": 1, "spreadsheets": 1, "sheets": 1}

    def test_back_to_back_entries_create_structure_once(self):
        """Test two quick identical entries create the structure only once"""
        assert self.post_entry().status_code == 200
        assert self.post_entry().status_code == 200
        assert self.queue.wait_for_empty_queue(timeout=5)

        assert self.google_client.create_folder.call_count == 1
        assert self.google_client.create_spreadsheet.call_count == 1
        assert self.google_client.append_rows.call_args_list == [
            call("ss-1", "login", [HEADER_ROW, ROW]),
            call("ss-1", "login", [ROW]),
        ]

    def test_background_failure_is_visible_in_status(self):
        """Test a storage failure after acknowledgement is reported by status"""
        self.google_client.create_spreadsheet.side_effect = Exception("quota exceeded")

        response = self.post_entry()

        # Acknowledged before storage is attempted
        assert response.status_code == 200
        assert self.queue.wait_for_empty_queue(timeout=5)

        status = self.client.get("/status").json()
        assert status["queue"]["failed"] == 1
        failure = status["queue"]["recent_failures"][0]
        assert failure["log_kind_name"] == "auth"
        assert "quota exceeded" in failure["error"]
