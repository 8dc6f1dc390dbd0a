#!/usr/bin/env python3
"""
Management commands for SDG Discovery.

    python scripts/manage.py init-db
    python scripts/manage.py seed
    python scripts/manage.py sync-prompts
    python scripts/manage.py discover 3
    python scripts/manage.py ingest 42
    python scripts/manage.py ingest-pending --limit 20
"""

import argparse
import json
import logging
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config.database import close_database, initialize_database, session_scope
from config.settings import get_settings
from observability.logging import setup_logging_from_settings
from pipelines.discovery import discover_documents_from_endpoint
from pipelines.ingest import download_and_extract_document, ingest_pending_documents
from prompts.registry import get_prompt_registry
from services.shared.errors import SDGDiscoveryError
from sources.loader import sync_organizations_to_db, sync_sources_to_db

logger = logging.getLogger("sdg.manage")


def cmd_init_db(args) -> None:
    logger.info("Database schema created")


def cmd_seed(args) -> None:
    with session_scope() as db:
        organizations = sync_organizations_to_db(db)
        sources = sync_sources_to_db(db)
    logger.info(f"Seeded {organizations} organizations and {sources} sources")


def cmd_sync_prompts(args) -> None:
    with session_scope() as db:
        count = get_prompt_registry().sync_to_db(db)
    logger.info(f"Synced {count} prompt templates")


def cmd_discover(args) -> None:
    with session_scope() as db:
        result = discover_documents_from_endpoint(db, args.endpoint_id)
    print(json.dumps(result.to_dict(), indent=2))


def cmd_ingest(args) -> None:
    with session_scope() as db:
        result = download_and_extract_document(db, args.document_id)
    print(json.dumps(result.to_dict(), indent=2))


def cmd_ingest_pending(args) -> None:
    with session_scope() as db:
        outcomes = ingest_pending_documents(db, source_id=args.source_id, limit=args.limit)
    failed = sum(1 for outcome in outcomes if not outcome['ok'])
    print(json.dumps(outcomes, indent=2, default=str))
    logger.info(f"Processed {len(outcomes)} documents, {failed} failed")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="SDG Discovery management commands")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create database tables").set_defaults(func=cmd_init_db)
    subparsers.add_parser("seed", help="Load organizations and sources from YAML").set_defaults(func=cmd_seed)
    subparsers.add_parser("sync-prompts", help="Store registry prompts in the database").set_defaults(
        func=cmd_sync_prompts)

    discover = subparsers.add_parser("discover", help="Discover documents from one endpoint")
    discover.add_argument("endpoint_id", type=int, help="Source endpoint id")
    discover.set_defaults(func=cmd_discover)

    ingest = subparsers.add_parser("ingest", help="Download and extract one document")
    ingest.add_argument("document_id", type=int, help="Document id")
    ingest.set_defaults(func=cmd_ingest)

    pending = subparsers.add_parser("ingest-pending", help="Download discovered documents in a batch")
    pending.add_argument("--source-id", type=int, default=None, help="Only documents of this source")
    pending.add_argument("--limit", type=int, default=10, help="Maximum documents to process")
    pending.set_defaults(func=cmd_ingest_pending)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging_from_settings(get_settings())
    initialize_database()

    try:
        args.func(args)
    except SDGDiscoveryError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    finally:
        close_database()
    return 0


if __name__ == "__main__":
    sys.exit(main())
