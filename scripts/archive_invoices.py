"""Entry point that archives Outlook invoice attachments to OneDrive and an Excel ledger."""

from __future__ import annotations

import argparse
import json
import logging
from dataclasses import asdict
from datetime import UTC, datetime, timedelta
from pathlib import Path
import sys

from dotenv import load_dotenv

# Ensure project root is on sys.path when running as a script
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from invoice_archiver.archive import OneDriveArchive
from invoice_archiver.config import Settings
from invoice_archiver.credential_store import SqliteCredentialStore
from invoice_archiver.credentials import CredentialManager, MsalTokenClient
from invoice_archiver.errors import ArchiverError
from invoice_archiver.graph_client import GraphClient
from invoice_archiver.ledger import ExcelLedger
from invoice_archiver.mail_source import OutlookMailSource
from invoice_archiver.models import SearchQuery
from invoice_archiver.naming import DocumentFilter
from invoice_archiver.processing_store import ProcessingStore
from invoice_archiver.scanner import ScanOrchestrator
from invoice_archiver.utils import ensure_utc

load_dotenv()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Archive Outlook invoice attachments to OneDrive and log them to Excel."
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("login", help="Authorize the mailbox with the device code flow")
    commands.add_parser("logout", help="Forget the stored credential")
    commands.add_parser("status", help="Show whether a usable credential is stored")

    scan = commands.add_parser("scan", help="Run one scan cycle")
    scan.add_argument("--since", type=parse_datetime, help="ISO8601 timestamp (UTC) to start from")
    scan.add_argument(
        "--since-days",
        type=int,
        help="Shortcut for '--since' expressed as N days ago (integers only)",
    )
    scan.add_argument(
        "--sender", action="append", default=[], help="Only scan mail from this address (repeatable)"
    )
    scan.add_argument("--max-messages", type=int, help="Limit how many messages to inspect")

    commands.add_parser("stats", help="Print document totals and recent runs")
    recent = commands.add_parser("recent", help="List recently archived documents")
    recent.add_argument("--limit", type=int, default=20)
    return parser


def parse_datetime(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(UTC)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid ISO timestamp: {value}") from exc


def resolve_since(args: argparse.Namespace) -> datetime | None:
    if args.since and args.since_days:
        raise SystemExit("Use either --since or --since-days, not both.")
    if args.since:
        return ensure_utc(args.since)
    if args.since_days:
        return datetime.now(tz=UTC) - timedelta(days=args.since_days)
    return None


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def default_query(settings: Settings) -> SearchQuery:
    return SearchQuery(
        keywords=settings.search_keywords,
        exclude_marker=settings.processed_marker,
        max_results=settings.search_max_results,
    )


def build_scanner(settings: Settings, credentials: CredentialManager) -> ScanOrchestrator:
    graph = GraphClient(credentials)
    return ScanOrchestrator(
        mail=OutlookMailSource(graph, settings.processed_marker, page_size=settings.graph_page_size),
        archive=OneDriveArchive(graph),
        ledger=ExcelLedger(graph, settings.ledger_sheet_name),
        store=ProcessingStore(settings.archiver_db),
        default_query=default_query(settings),
        document_filter=DocumentFilter(settings.document_extensions),
        archive_folder_name=settings.archive_folder_name,
        ledger_name=settings.ledger_name,
    )


def print_json(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    settings = Settings()
    configure_logging(settings.log_level)

    credentials = CredentialManager(
        SqliteCredentialStore(settings.archiver_db, principal=settings.credential_principal),
        MsalTokenClient(settings),
    )

    if args.command == "login":
        credentials.authorize()
        return
    if args.command == "logout":
        credentials.revoke()
        return
    if args.command == "status":
        print_json({"authenticated": credentials.is_authenticated(), "token": credentials.token_info()})
        return

    scanner = build_scanner(settings, credentials)

    if args.command == "stats":
        print_json(scanner.get_stats())
        return
    if args.command == "recent":
        print_json([asdict(doc) for doc in scanner.get_recent_documents(limit=args.limit)])
        return

    query = default_query(settings)
    query.received_since = resolve_since(args)
    query.senders = args.sender
    if args.max_messages:
        query.max_results = args.max_messages

    try:
        result = scanner.run_scan(query)
    except ArchiverError as exc:
        logging.error("Scan process failed: %s", exc)
        raise SystemExit(1) from exc

    logging.info(
        "Run complete: processed=%s documents=%s errors=%s",
        result.processed,
        len(result.documents),
        len(result.errors),
    )
    print_json(asdict(result))


if __name__ == "__main__":
    main()
