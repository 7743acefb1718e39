#!/usr/bin/env python3

import argparse
import os
import sys
import logging
from dotenv import load_dotenv
from config import ServiceConfig, load_service_config
from google_client import GoogleClient, AuthorizationError
from index_store import IndexStore
from reconcile_engine import ReconcileEngine
from startup_sync import StartupSynchronizer
from request_validator import LogRequestValidator
from operations_queue import OperationsQueue
from web_server import create_server

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


def configure_logging(error_log_file: str = "", verbose: bool = False):
    """Console logging plus an error-only log file"""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)
    if error_log_file:
        log_dir = os.path.dirname(error_log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handler = logging.FileHandler(error_log_file)
        handler.setLevel(logging.ERROR)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)


def startup_sync(synchronizer: StartupSynchronizer) -> bool:
    """Rebuild the local index from Drive; False when the logs folder is missing"""
    print("Running startup sync...")
    report = synchronizer.run()

    if not report.root_found:
        print("Error: logs folder not found, check LOGS_DIRECTORY_ID and the authorized account")
        return False

    print(
        f"Startup sync complete: {report.folders} folders, "
        f"{report.current_spreadsheets} current and {report.previous_spreadsheets} previous spreadsheets indexed"
    )
    if not report.success:
        for name in report.failed_folders:
            print(f"  ✗ Failed to index folder {name}")
    return True


def run_server(config: ServiceConfig):
    print(f"Logs folder: {config.root_folder_id}")
    print(f"Timezone: {config.timezone}")

    try:
        google_client = GoogleClient(config.credentials_path, config.token_path, config.scopes)
        print(google_client.authorize())

        index_store = IndexStore()
        synchronizer = StartupSynchronizer(
            google_client, index_store, config.root_folder_id, config.timezone
        )
        if not startup_sync(synchronizer):
            return 1

        reconcile_engine = ReconcileEngine(
            google_client, index_store, config.root_folder_id, config.timezone
        )
        operations_queue = OperationsQueue(reconcile_engine)
        web_server = create_server(
            LogRequestValidator(), operations_queue, index_store, config.jwt_secret
        )

        web_server.run(host=config.host, port=config.port)
        return 0

    except AuthorizationError as e:
        logger.error(f"Google authorization failed: {e}")
        return 1
    except KeyboardInterrupt:
        print("\nServer shutting down...")
        return 0
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        raise


def main(argv=None) -> int:
    load_dotenv()

    parser = argparse.ArgumentParser(description="Sheets log ingest server")
    parser.add_argument("--config", default=None, help="TOML config file (default: sheets_log.toml)")
    parser.add_argument("--host", default=None, help="Interface to listen on (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on (default: 3000)")
    parser.add_argument(
        "--root-folder-id",
        default=None,
        help="Drive folder holding one folder per log kind (default: from LOGS_DIRECTORY_ID env var)",
    )
    parser.add_argument("--credentials", default=None, help="OAuth client secrets JSON file")
    parser.add_argument("--token", default=None, help="Cached OAuth token file")
    parser.add_argument("--timezone", default=None, help="IANA timezone for months and timestamps")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    try:
        config = load_service_config(
            args.config,
            {
                "host": args.host,
                "port": args.port,
                "root_folder_id": args.root_folder_id,
                "credentials_path": args.credentials,
                "token_path": args.token,
                "timezone": args.timezone,
            },
        )
    except (ValueError, OSError) as e:
        print(f"Error: invalid configuration: {e}")
        return 1

    configure_logging(config.error_log_file, args.verbose)
    return run_server(config)


if __name__ == "__main__":
    sys.exit(main())
