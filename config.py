#!/usr/bin/env python3

import os
import logging
import tomllib
from typing import List, Dict, Optional, Any
from dataclasses import dataclass, field, fields
from pathlib import Path
from google_client import DEFAULT_SCOPES
from models import get_zone

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "sheets_log.toml"

# Environment variable -> ServiceConfig field
ENV_VARS = {
    "LOGS_DIRECTORY_ID": "root_folder_id",
    "GOOGLE_CREDENTIALS_FILE": "credentials_path",
    "GOOGLE_TOKEN_FILE": "token_path",
    "GOOGLE_SCOPES": "scopes",
    "LOG_TIMEZONE": "timezone",
    "HOST": "host",
    "PORT": "port",
    "JWT_SECRET": "jwt_secret",
    "ERROR_LOG_FILE": "error_log_file",
}


@dataclass
class ServiceConfig:
    """Settings read once at startup"""

    root_folder_id: str
    credentials_path: str = "./credentials.json"
    token_path: str = "./token.json"
    scopes: List[str] = field(default_factory=lambda: list(DEFAULT_SCOPES))
    timezone: str = "Asia/Bangkok"
    host: str = "0.0.0.0"
    port: int = 3000
    jwt_secret: str = ""
    error_log_file: str = "logs/error.log"

    def __post_init__(self):
        """Validate the configuration after initialization"""
        if not self.root_folder_id:
            raise ValueError("root_folder_id is required (LOGS_DIRECTORY_ID)")
        if not self.credentials_path:
            raise ValueError("credentials_path is required")
        if not self.token_path:
            raise ValueError("token_path is required")
        if isinstance(self.scopes, str):
            self.scopes = [s.strip() for s in self.scopes.split(",") if s.strip()]
        if not self.scopes:
            raise ValueError("At least one OAuth scope is required")
        if not self.timezone:
            raise ValueError("timezone is required")
        get_zone(self.timezone)
        try:
            self.port = int(self.port)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid port: {self.port}")
        if not 0 < self.port < 65536:
            raise ValueError(f"Port out of range: {self.port}")
        if self.jwt_secret and not self.jwt_secret.startswith("sk_"):
            raise ValueError("jwt_secret must start with 'sk_'. Run: python cli.py api keygen")


def read_config_file(config_file: Optional[str]) -> Dict[str, Any]:
    """Read the [service] table of a TOML config file, or {} if there is none"""
    config_path = Path(config_file or DEFAULT_CONFIG_FILE)
    if not config_path.exists():
        logger.info(f"Config file not found, using environment only: {config_path}")
        return {}

    with open(config_path, "rb") as f:
        config_data = tomllib.load(f)

    service = config_data.get("service", {})
    if not isinstance(service, dict):
        raise ValueError("[service] must be a table in TOML config")

    known = {f.name for f in fields(ServiceConfig)}
    unknown = set(service) - known
    if unknown:
        logger.warning(f"Ignoring unknown settings in {config_path}: {sorted(unknown)}")
    return {k: v for k, v in service.items() if k in known}


def load_service_config(
    config_file: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> ServiceConfig:
    """
    Merge settings from the TOML file, the environment and explicit overrides
    (command-line flags), later sources winning. None overrides are ignored.
    """
    environ = os.environ if environ is None else environ
    values = read_config_file(config_file)

    for env_name, field_name in ENV_VARS.items():
        if environ.get(env_name):
            values[field_name] = environ[env_name]

    for key, value in (overrides or {}).items():
        if value is not None:
            values[key] = value

    values.setdefault("root_folder_id", "")
    return ServiceConfig(**values)


def create_example_config(config_file: Optional[str] = None) -> bool:
    """Create an example configuration file"""
    example_content = """# Sheets log ingest configuration
# Environment variables and command-line flags override these values.

[service]
# Drive folder that holds one sub-folder per log kind (LOGS_DIRECTORY_ID)
root_folder_id = "1AbCdEfGhIjKlMnOpQrStUvWxYz"
credentials_path = "./credentials.json"
token_path = "./token.json"
scopes = [
    "https://www.googleapis.com/auth/drive.file",
    "https://www.googleapis.com/auth/spreadsheets",
]
# Timezone for month keys and timestamps written to rows
timezone = "Asia/Bangkok"
host = "0.0.0.0"
port = 3000
error_log_file = "logs/error.log"
# jwt_secret = "sk_..."  # Optional: require Bearer tokens on the API
"""

    config_path = Path(config_file or DEFAULT_CONFIG_FILE)
    if config_path.exists():
        logger.warning(f"Config file already exists: {config_path}")
        return False

    try:
        with open(config_path, "w") as f:
            f.write(example_content)
        logger.info(f"Created example config: {config_path}")
        return True
    except OSError as e:
        logger.error(f"Error creating example config: {e}")
        return False
