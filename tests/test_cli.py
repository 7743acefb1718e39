#!/usr/bin/env python3

import json
import os
import shutil
import tempfile
from unittest.mock import patch

import cli
from jwt_auth import JWTValidator
from startup_sync import StartupReport


class TestApiCommands:

    def test_keygen(self, capsys):
        """Test api keygen prints an export line"""
        assert cli.main(["api", "keygen"]) == 0

        out = capsys.readouterr().out
        assert "export JWT_SECRET='sk_" in out

    def test_token_create_requires_secret(self, capsys, monkeypatch):
        """Test token creation fails without JWT_SECRET"""
        monkeypatch.delenv("JWT_SECRET", raising=False)

        with patch("cli.load_dotenv"):
            assert cli.main(["api", "token", "create"]) == 1
        assert "JWT_SECRET" in capsys.readouterr().out

    def test_token_create(self, capsys, monkeypatch):
        """Test a created token validates with the requested scope and name"""
        secret = "sk_cli_test_secret"
        monkeypatch.setenv("JWT_SECRET", secret)

        assert cli.main(["api", "token", "create", "--name", "collector", "--scope", "ingest"]) == 0

        token = capsys.readouterr().out.split("Authorization: Bearer ")[1].strip()
        is_valid, payload, _ = JWTValidator(secret).validate_token(token)
        assert is_valid
        assert payload["scope"] == "ingest"
        assert payload["name"] == "collector"


class TestConfigCommand:

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config_file = os.path.join(self.temp_dir, "sheets_log.toml")

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_config_init(self):
        """Test config init writes the example once and refuses to overwrite"""
        assert cli.main(["--config", self.config_file, "config", "init"]) == 0
        assert os.path.exists(self.config_file)
        assert cli.main(["--config", self.config_file, "config", "init"]) == 1


class TestSyncCommand:

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config_file = os.path.join(self.temp_dir, "missing.toml")

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    @patch("cli.StartupSynchronizer")
    @patch("cli.GoogleClient")
    def test_sync_prints_index_as_json(self, mock_client, mock_synchronizer, capsys):
        """Test sync prints the rebuilt index as JSON with a summary"""
        synchronizer = mock_synchronizer.return_value
        synchronizer.run.return_value = StartupReport(root_found=True, folders=1)
        synchronizer.describe_index.return_value = [
            {"name": "auth", "id": "f1", "spreadsheets": []}
        ]

        result = cli.main(
            ["--config", self.config_file, "sync", "--root-folder-id", "root", "--json"]
        )

        assert result == 0
        mock_client.return_value.authorize.assert_called_once_with(interactive=False)
        out = capsys.readouterr().out
        assert json.dumps(synchronizer.describe_index.return_value, indent=2) in out
        assert "Folders: 1" in out

    @patch("cli.StartupSynchronizer")
    @patch("cli.GoogleClient")
    def test_sync_missing_root(self, mock_client, mock_synchronizer):
        """Test sync exits 1 when the root folder is missing"""
        mock_synchronizer.return_value.run.return_value = StartupReport(root_found=False)

        assert cli.main(["--config", self.config_file, "sync", "--root-folder-id", "root"]) == 1

    def test_no_command_prints_help(self, capsys):
        assert cli.main([]) == 1
        assert "usage" in capsys.readouterr().out
