#!/usr/bin/env python3

import argparse
import json
import os
import sys
import logging
from dotenv import load_dotenv
from config import load_service_config, create_example_config, DEFAULT_CONFIG_FILE
from google_client import GoogleClient, AuthorizationError
from index_store import IndexStore
from startup_sync import StartupSynchronizer
from jwt_auth import ALL_SCOPES, create_api_token, generate_jwt_secret

# Configure logging
logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


def _load_config(args):
    return load_service_config(
        args.config,
        {
            "root_folder_id": getattr(args, "root_folder_id", None),
            "credentials_path": args.credentials,
            "token_path": args.token,
        },
    )


def authorize_command(args):
    """Handle authorize command"""
    try:
        # The logs folder is not needed to obtain a token
        config = load_service_config(
            args.config,
            {
                "root_folder_id": "unused",
                "credentials_path": args.credentials,
                "token_path": args.token,
            },
        )
        client = GoogleClient(config.credentials_path, config.token_path, config.scopes)
        print(client.authorize(interactive=True))
        print(f"Token file: {os.path.abspath(config.token_path)}")
        return 0
    except (AuthorizationError, ValueError) as e:
        print(f"Error: {e}")
        return 1
    except Exception as e:
        logger.error(f"Error during authorization: {e}")
        return 1


def sync_command(args):
    """Handle sync command"""
    try:
        config = _load_config(args)
        client = GoogleClient(config.credentials_path, config.token_path, config.scopes)
        client.authorize(interactive=False)

        index_store = IndexStore()
        synchronizer = StartupSynchronizer(
            client, index_store, config.root_folder_id, config.timezone
        )
        print(f"Scanning logs folder: {config.root_folder_id}")
        report = synchronizer.run()

        if not report.root_found:
            print("Error: logs folder not found or not visible to the authorized account")
            return 1

        tree = synchronizer.describe_index()
        if args.json:
            print(json.dumps(tree, indent=2))
        else:
            for folder in tree:
                print(f"{folder['name']} ({folder['id']})")
                for spreadsheet in folder["spreadsheets"]:
                    print(f"  {spreadsheet['name']} ({spreadsheet['id']})")
                    for sheet in spreadsheet["sheets"]:
                        print(f"    - {sheet['title']}: {sheet['rowLength']} rows")

        print(f"\nSync complete:")
        print(f"  Folders: {report.folders}")
        print(f"  Current spreadsheets: {report.current_spreadsheets}")
        print(f"  Previous spreadsheets: {report.previous_spreadsheets}")
        print(f"  Failed folders: {len(report.failed_folders)}")

        return 1 if report.failed_folders else 0

    except (AuthorizationError, ValueError) as e:
        print(f"Error: {e}")
        return 1
    except Exception as e:
        logger.error(f"Error during sync: {e}")
        return 1


def config_init_command(args):
    """Handle config init command"""
    config_file = args.config or DEFAULT_CONFIG_FILE
    if create_example_config(config_file):
        print("Created example configuration:")
        print(f"  File: {os.path.abspath(config_file)}")
        return 0
    print("Configuration file already exists:")
    print(f"  File: {os.path.abspath(config_file)}")
    return 1


def api_keygen_command(args):
    """Handle api keygen command"""
    secret = generate_jwt_secret()
    print("\nGenerated API JWT signing secret:")
    print("=" * 50)
    print(secret)
    print("=" * 50)
    print("\nAdd to your environment:")
    print(f"export JWT_SECRET='{secret}'")
    return 0


def api_token_create_command(args):
    """Handle api token create command"""
    jwt_secret = os.getenv("JWT_SECRET")

    if not jwt_secret:
        print("Error: JWT_SECRET environment variable is required to create API tokens.")
        print("Run: python cli.py api keygen")
        return 1

    if not jwt_secret.startswith("sk_"):
        print("Error: JWT_SECRET must start with 'sk_' prefix.")
        print("Run: python cli.py api keygen")
        return 1

    scopes = args.scope or ALL_SCOPES
    token = create_api_token(jwt_secret, scopes, args.expires, args.name)
    print(f"\nAPI JWT Token (scopes: {' '.join(scopes)}, expires in {args.expires} days):")
    print("=" * 50)
    print(token)
    print("=" * 50)
    print("\nUse with API calls:")
    print(f"Authorization: Bearer {token}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Sheets log ingest CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # First run: obtain an OAuth token for the service
  python cli.py authorize

  # Show the folder/spreadsheet/sheet index as the server would build it
  python cli.py sync

  # Write an example config file
  python cli.py config init

  # API authentication (optional)
  python cli.py api keygen
  python cli.py api token create --name "collector" --scope ingest
        """,
    )

    parser.add_argument("--config", default=None, help="TOML config file (default: sheets_log.toml)")
    parser.add_argument("--credentials", default=None, help="OAuth client secrets JSON file")
    parser.add_argument("--token", default=None, help="Cached OAuth token file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    authorize_parser = subparsers.add_parser("authorize", help="Run the OAuth consent flow")
    authorize_parser.set_defaults(func=authorize_command)

    sync_parser = subparsers.add_parser("sync", help="Scan Drive and print the resulting index")
    sync_parser.add_argument(
        "--root-folder-id",
        default=None,
        help="Logs folder ID (default: from LOGS_DIRECTORY_ID env var)",
    )
    sync_parser.add_argument("--json", action="store_true", help="Print the index as JSON")
    sync_parser.set_defaults(func=sync_command)

    config_parser = subparsers.add_parser("config", help="Configuration file management")
    config_subparsers = config_parser.add_subparsers(dest="config_action", help="Config actions")
    config_init_parser = config_subparsers.add_parser("init", help="Create example config file")
    config_init_parser.set_defaults(func=config_init_command)

    api_parser = subparsers.add_parser("api", help="API authentication management")
    api_subparsers = api_parser.add_subparsers(dest="api_action", help="API actions")

    api_keygen_parser = api_subparsers.add_parser("keygen", help="Generate JWT signing secret")
    api_keygen_parser.set_defaults(func=api_keygen_command)

    api_token_parser = api_subparsers.add_parser("token", help="API token management")
    api_token_subparsers = api_token_parser.add_subparsers(dest="token_action", help="Token actions")
    api_token_create_parser = api_token_subparsers.add_parser("create", help="Create API token")
    api_token_create_parser.add_argument("--name", help="Name recorded in the token")
    api_token_create_parser.add_argument(
        "--expires", type=int, default=30, help="Days until expiry (default: 30)"
    )
    api_token_create_parser.add_argument(
        "--scope",
        action="append",
        choices=ALL_SCOPES,
        help="Scope to grant, repeatable (default: all scopes)",
    )
    api_token_create_parser.set_defaults(func=api_token_create_command)

    return parser


def main(argv=None):
    """Main CLI entry point"""
    load_dotenv()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
