"""ffbox: command-line client for the freee file box (receipts).

Usage examples:
    ffbox auth
    ffbox companies
    ffbox receipts list --fields id,status,amount
    ffbox receipts list --format json --created-start 2025-01-01
    ffbox receipts show 101 102
    ffbox receipts create --document-type receipt --amount 1200 scan.pdf
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import shlex
import signal
import subprocess
import sys
from datetime import date, datetime, timedelta
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Any, List, Optional

from ffbox import api
from ffbox.api import API_BASE_URL, AppConfig, TokenStore
from ffbox.config import (
    DEFAULT_ENV_FILE,
    Settings,
    config_path,
    find_config_file,
    init_config_file,
    load_env_file,
    load_settings,
    select_editor,
)
from ffbox.errors import ConfigError, FfboxError
from ffbox.fields import RECEIPT_FIELDS, parse_field_selection
from ffbox.formatter import OUTPUT_FORMATS, ReceiptFormatter, dump_json
from ffbox.models import (
    DESCRIPTION_MAX_LENGTH,
    DOCUMENT_TYPES,
    QUALIFIED_INVOICE_VALUES,
    Receipt,
    ReceiptCreateParams,
    ReceiptFile,
)
from ffbox.multipart import describe_receipt_create_params, encode_receipt_create_params

logger = logging.getLogger(__name__)

LIMIT_MIN = 1
LIMIT_MAX = 3000
DEFAULT_LIMIT = 50
DEFAULT_CREATED_WINDOW_DAYS = 30


def package_version() -> str:
    try:
        return version("ffbox")
    except PackageNotFoundError:
        return "dev"


def configure_logging(debug: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def load_app_settings() -> Settings:
    try:
        return load_settings()
    except ConfigError as exc:
        print(f"warning: failed to load config: {exc}", file=sys.stderr)
        print("warning: using default settings", file=sys.stderr)
        return Settings()


def _parse_company_id(raw: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise SystemExit(f"invalid company-id: {raw!r}") from exc


def load_config(args: argparse.Namespace, settings: Settings) -> AppConfig:
    env_file_data = load_env_file(Path(args.env_file))
    env_lookup = {**env_file_data, **os.environ}

    client_id = args.client_id or env_lookup.get("FREEEAPI_OAUTH2_CLIENT_ID")
    client_secret = args.client_secret or env_lookup.get("FREEEAPI_OAUTH2_CLIENT_SECRET")
    missing = [
        name
        for name, value in (
            ("FREEEAPI_OAUTH2_CLIENT_ID", client_id),
            ("FREEEAPI_OAUTH2_CLIENT_SECRET", client_secret),
        )
        if not value
    ]
    if missing:
        raise SystemExit(
            "Missing config keys: "
            + ", ".join(missing)
            + f". Pass --client-id/--client-secret or set them in {args.env_file} or the environment."
        )

    raw_company_id = args.company_id or env_lookup.get("FREEEAPI_COMPANY_ID")
    if raw_company_id:
        company_id: Optional[int] = _parse_company_id(raw_company_id)
    else:
        company_id = settings.company_id or None

    try:
        port = getattr(args, "port", None) or settings.callback_port
    except ValueError as exc:
        raise SystemExit(f"invalid oauth2.local_addr: {settings.local_addr!r}") from exc
    return AppConfig(
        client_id=client_id,  # type: ignore[arg-type]
        client_secret=client_secret,  # type: ignore[arg-type]
        redirect_uri=f"http://127.0.0.1:{port}/",
        callback_port=port,
        token_file=settings.token_file,
        company_id=company_id,
        base_url=args.base_url,
        debug=args.debug,
        request_timeout=args.timeout,
    )


def detect_company_id(config: AppConfig) -> int:
    if config.company_id is None:
        raise SystemExit(
            "company id is not specified. Use --company-id, FREEEAPI_COMPANY_ID "
            f"or freee.company_id in {config_path()}"
        )
    return config.company_id


# Argument types


def _date_arg(raw: str) -> str:
    try:
        datetime.strptime(raw, "%Y-%m-%d")
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"date must be yyyy-mm-dd: {raw}") from exc
    return raw


def _description_arg(raw: str) -> str:
    if len(raw) > DESCRIPTION_MAX_LENGTH:
        raise argparse.ArgumentTypeError(f"description must be at most {DESCRIPTION_MAX_LENGTH} characters")
    return raw


def _amount_arg(raw: str) -> int:
    try:
        amount = int(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"amount must be an integer: {raw}") from exc
    if amount < 0:
        raise argparse.ArgumentTypeError(f"amount must not be negative: {raw}")
    return amount


def parse_receipt_ids(raw_ids: List[str]) -> List[int]:
    if not raw_ids:
        raise SystemExit("please specify at least one receipt ID")
    ids: List[int] = []
    for i, raw_id in enumerate(raw_ids):
        try:
            ids.append(int(raw_id))
        except ValueError as exc:
            raise SystemExit(f"invalid receipt ID[{i}]: {raw_id}") from exc
    return ids


class ListFieldsAction(argparse.Action):
    """Print every selectable receipt field, one per line, and exit."""

    def __init__(self, option_strings: List[str], dest: str = argparse.SUPPRESS, help: Optional[str] = None):
        super().__init__(option_strings=option_strings, dest=dest, default=argparse.SUPPRESS, nargs=0, help=help)

    def __call__(self, parser: argparse.ArgumentParser, namespace: Any, values: Any, option_string: Any = None):
        for name in RECEIPT_FIELDS.all_names():
            print(name)
        parser.exit()


# Handlers for subcommands


def handle_auth(args: argparse.Namespace, config: AppConfig, store: TokenStore) -> None:
    tokens = api.start_auth_flow(config, config.callback_port, not args.no_browser)
    store.save(tokens)
    print(f"Tokens saved to {store.path}. Try: ffbox companies")


def handle_companies(args: argparse.Namespace, config: AppConfig, store: TokenStore) -> None:
    companies = api.get_companies(config, store)
    if companies is None:
        print("No companies found.")
        return
    for company in companies:
        print(dump_json(company))


def handle_receipts_list(args: argparse.Namespace, config: AppConfig, store: TokenStore) -> None:
    if not LIMIT_MIN <= args.limit <= LIMIT_MAX:
        raise SystemExit(f"limit must be between {LIMIT_MIN} and {LIMIT_MAX}")
    fields = parse_field_selection(args.fields)
    if fields:
        RECEIPT_FIELDS.resolve(fields)
    company_id = detect_company_id(config)

    payloads = api.get_receipts(
        config,
        store,
        company_id,
        start_date=args.created_start,
        end_date=args.created_end,
        limit=args.limit,
    )
    if payloads is None:
        print("No receipts found.")
        return
    receipts = [Receipt.from_dict(payload) for payload in payloads]
    logger.debug("Rendering %d receipts as %s with fields=%s", len(receipts), args.format, fields)
    ReceiptFormatter(sys.stdout, RECEIPT_FIELDS).write_list(receipts, fields, args.format)


def handle_receipts_show(args: argparse.Namespace, config: AppConfig, store: TokenStore) -> None:
    ids = parse_receipt_ids(args.ids)
    company_id = detect_company_id(config)
    formatter = ReceiptFormatter(sys.stdout, RECEIPT_FIELDS)
    # Fetched one at a time so output order and error attribution follow the IDs.
    for i, receipt_id in enumerate(ids):
        try:
            payload = api.get_receipt(config, store, company_id, receipt_id)
            receipt = Receipt.from_dict(payload) if payload is not None else None
            formatter.write_receipt(receipt, args.format)
        except FfboxError as exc:
            raise SystemExit(f"Error: receipt ID {receipt_id}: {exc}") from exc
        if args.format == "table" and i < len(ids) - 1:
            formatter.write_separator()


def build_create_params(args: argparse.Namespace, company_id: int, file_path: Path) -> ReceiptCreateParams:
    try:
        return ReceiptCreateParams(
            company_id=company_id,
            receipt=ReceiptFile.from_path(file_path),
            description=args.description or None,
            document_type=args.document_type or None,
            qualified_invoice=args.qualified_invoice or None,
            receipt_metadatum_amount=args.amount or None,
            receipt_metadatum_issue_date=args.issue_date or None,
            receipt_metadatum_partner_name=args.partner_name or None,
        )
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc


def handle_receipts_create(args: argparse.Namespace, config: AppConfig, store: TokenStore) -> None:
    if not args.files:
        raise SystemExit("please specify the file(s) to upload")
    company_id = detect_company_id(config)
    for raw_path in args.files:
        file_path = Path(raw_path)
        if not file_path.is_file():
            raise SystemExit(f"File not found: {file_path}")
        params = build_create_params(args, company_id, file_path)

        if args.dry_run:
            preview = {"file": str(file_path), "form": describe_receipt_create_params(params)}
            print(json.dumps(preview, indent=2, ensure_ascii=False))
            continue

        try:
            body, content_type = encode_receipt_create_params(params)
        except FfboxError as exc:
            raise SystemExit(f"Error: create receipt with file {file_path}: {exc}") from exc
        created = api.create_receipt(config, store, body, content_type)
        print(created.get("id"))


def handle_config_init(args: argparse.Namespace) -> None:
    path = config_path()
    if path.exists():
        print(f"config file already exists: {path}", file=sys.stderr)
        return
    init_config_file(path)
    print(f"config file created: {path}")


def handle_config_show(args: argparse.Namespace) -> None:
    path = find_config_file()
    settings = load_settings(path)
    if args.show_file_path:
        print(path)
    print(settings.dump(), end="")


def handle_config_edit(args: argparse.Namespace) -> None:
    path = config_path()
    if not path.exists():
        raise SystemExit(f"config file does not exist: {path}\nRun 'ffbox config init' to create it.")
    editor = select_editor()
    result = subprocess.run([*shlex.split(editor), str(path)])
    if result.returncode != 0:
        raise SystemExit(result.returncode)


# CLI assembly


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ffbox", description="Command-line client for the freee file box")
    parser.add_argument("--version", action="version", version=f"%(prog)s {package_version()}")
    parser.add_argument(
        "--env-file",
        default=str(DEFAULT_ENV_FILE),
        help="Path to .env file (default: .env)",
    )
    parser.add_argument("--base-url", default=API_BASE_URL, help="Override API base URL")
    parser.add_argument("--client-id", help="OAuth2 client ID (env: FREEEAPI_OAUTH2_CLIENT_ID)")
    parser.add_argument("--client-secret", help="OAuth2 client secret (env: FREEEAPI_OAUTH2_CLIENT_SECRET)")
    parser.add_argument("--company-id", help="freee company ID (env: FREEEAPI_COMPANY_ID)")
    parser.add_argument("--debug", action="store_true", help="Log HTTP calls and other debug output to stderr")
    parser.add_argument(
        "--timeout",
        type=float,
        default=60.0,
        help="HTTP request timeout in seconds (default: 60)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    auth_p = subparsers.add_parser("auth", help="Run OAuth flow and cache tokens")
    auth_p.add_argument("--port", type=int, help="Local port for OAuth callback (default: from config)")
    auth_p.add_argument("--no-browser", action="store_true", help="Do not auto-open the browser")
    auth_p.set_defaults(func=handle_auth, requires_auth=True)

    companies = subparsers.add_parser("companies", help="List the freee companies you belong to")
    companies.set_defaults(func=handle_companies, requires_auth=True)

    # Receipts
    receipts = subparsers.add_parser("receipts", help="File box (receipt) operations")
    rc_sub = receipts.add_subparsers(dest="action", required=True)

    today = date.today()
    rc_list = rc_sub.add_parser(
        "list",
        help="List receipts",
        description=(
            "List receipts. --created-start and --created-end filter on the date the receipt was "
            "registered in freee, which can differ from its issue date."
        ),
    )
    rc_list.add_argument(
        "--created-start",
        type=_date_arg,
        default=(today - timedelta(days=DEFAULT_CREATED_WINDOW_DAYS)).isoformat(),
        help="Registered on or after (YYYY-MM-DD, default: 30 days ago)",
    )
    rc_list.add_argument(
        "--created-end",
        type=_date_arg,
        default=today.isoformat(),
        help="Registered on or before (YYYY-MM-DD, default: today)",
    )
    rc_list.add_argument(
        "-n",
        "--limit",
        type=int,
        default=DEFAULT_LIMIT,
        help=f"Maximum number of receipts ({LIMIT_MIN}-{LIMIT_MAX}, default: {DEFAULT_LIMIT})",
    )
    rc_list.add_argument("--format", default="table", choices=OUTPUT_FORMATS, help="Output format")
    rc_list.add_argument("--fields", default="", help="Comma separated fields to show (e.g. id,status,amount)")
    rc_list.add_argument("--list-fields", action=ListFieldsAction, help="List available fields and exit")
    rc_list.set_defaults(func=handle_receipts_list, requires_auth=True)

    rc_show = rc_sub.add_parser("show", help="Show receipts by ID")
    rc_show.add_argument("ids", nargs="*", help="Receipt IDs")
    rc_show.add_argument("--format", default="table", choices=OUTPUT_FORMATS, help="Output format")
    rc_show.set_defaults(func=handle_receipts_show, requires_auth=True)

    rc_create = rc_sub.add_parser("create", help="Upload files as new receipts")
    rc_create.add_argument("files", nargs="*", help="Files to upload")
    rc_create.add_argument(
        "--description",
        type=_description_arg,
        help=f"Memo (up to {DESCRIPTION_MAX_LENGTH} characters)",
    )
    rc_create.add_argument("--document-type", choices=DOCUMENT_TYPES, help="Document type")
    rc_create.add_argument("--qualified-invoice", choices=QUALIFIED_INVOICE_VALUES, help="Qualified invoice status")
    rc_create.add_argument("--amount", type=_amount_arg, help="Amount")
    rc_create.add_argument("--issue-date", type=_date_arg, help="Issue date (YYYY-MM-DD)")
    rc_create.add_argument("--partner-name", help="Issuer name")
    rc_create.add_argument(
        "--dry-run",
        action="store_true",
        help="Preview the upload without calling the API",
    )
    rc_create.set_defaults(func=handle_receipts_create, requires_auth=True)

    # Config
    config = subparsers.add_parser("config", help="Manage the config file")
    cfg_sub = config.add_subparsers(dest="action", required=True)

    cfg_init = cfg_sub.add_parser("init", help="Create the config file with defaults")
    cfg_init.set_defaults(func=handle_config_init, requires_auth=False)

    cfg_show = cfg_sub.add_parser("show", help="Show the config file contents")
    cfg_show.add_argument("--show-file-path", action="store_true", help="Print the config file path first")
    cfg_show.set_defaults(func=handle_config_show, requires_auth=False)

    cfg_edit = cfg_sub.add_parser("edit", help="Open the config file in $VISUAL or $EDITOR")
    cfg_edit.set_defaults(func=handle_config_edit, requires_auth=False)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    if hasattr(signal, "SIGPIPE"):
        # Prevent BrokenPipeError when piping output
        signal.signal(signal.SIGPIPE, signal.SIG_DFL)

    args = build_parser().parse_args(argv)
    configure_logging(args.debug)

    try:
        if not args.requires_auth:
            args.func(args)
            return
        settings = load_app_settings()
        config = load_config(args, settings)
        store = TokenStore(config.token_file)
        args.func(args, config, store)
    except FfboxError as exc:
        raise SystemExit(f"Error: {exc}") from exc


if __name__ == "__main__":
    main()
