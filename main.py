"""
Command-line runner for one expense import.

    python main.py --sender noreply@bank.com --month 10 --year 2025 [--profile normal] [--owner KEY]

Prints the ImportSummary as JSON. Exit code 0 on success, including partial
success, 1 on invalid configuration or arguments, 2 on authentication failure.
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from expense_importer.config import ImporterSettings, get_settings
from expense_importer.email_processing import (
    EmailFieldExtractor,
    ExpenseCategorizer,
    ImportOrchestrator,
    ImportSummary,
)
from expense_importer.exceptions import AuthenticationError
from expense_importer.integrations import (
    GeminiClient,
    GmailMessageSource,
    RateLimitedFetcher,
    RateLimitProfile,
)
from expense_importer.storage import Database, SQLAlchemyExpenseStore
from expense_importer.utils import setup_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INVALID = 1
EXIT_AUTH_FAILURE = 2


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Import and categorize expenses from bank notification emails")
    parser.add_argument("--sender", required=True, help="Notification sender address")
    parser.add_argument("--month", required=True, type=int, help="Month to import (1-12)")
    parser.add_argument("--year", required=True, type=int, help="Year to import")
    parser.add_argument("--profile", default=None, help="Rate limit profile: conservative, normal or aggressive")
    parser.add_argument("--owner", default="default", help="Owner key for stored transactions")
    return parser.parse_args(argv)


def build_orchestrator(settings: ImporterSettings, profile_name: Optional[str] = None) -> ImportOrchestrator:
    """
    Wire the pipeline components from settings.

    Raises:
        AuthenticationError: If the Gmail access token is missing or expired
        ValueError: If the rate limit profile is unknown
    """
    profile = RateLimitProfile.from_config(profile_name or settings.RATE_LIMIT_PROFILE)

    source = GmailMessageSource.from_settings(settings, RateLimitedFetcher("gmail", profile))

    try:
        client = GeminiClient.from_settings(settings, RateLimitedFetcher("gemini", profile))
    except AuthenticationError as e:
        logger.warning(f"{e}; expenses will be categorized with keyword rules")
        client = None

    database = Database(settings.DATABASE_URL)
    database.init_db()

    return ImportOrchestrator(
        source=source,
        extractor=EmailFieldExtractor(
            default_currency=settings.DEFAULT_CURRENCY,
            default_location=settings.DEFAULT_LOCATION,
            timezone=settings.TIMEZONE,
        ),
        categorizer=ExpenseCategorizer(client),
        store=SQLAlchemyExpenseStore(database, timezone=settings.TIMEZONE),
        timezone=settings.TIMEZONE,
    )


async def run_import(args: argparse.Namespace, settings: ImporterSettings) -> ImportSummary:
    orchestrator = build_orchestrator(settings, args.profile)
    return await orchestrator.run(args.sender, args.month, args.year, owner_key=args.owner)


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return EXIT_INVALID

    setup_logging(settings.LOG_LEVEL, settings.LOG_DIR)

    try:
        summary = asyncio.run(run_import(args, settings))
    except AuthenticationError as e:
        logger.error(f"Authentication failed: {e}")
        print(json.dumps({"error": "authentication_failed", "service": e.service, "message": str(e)}))
        return EXIT_AUTH_FAILURE
    except ValueError as e:
        logger.error(f"Invalid import request: {e}")
        print(json.dumps({"error": "invalid_request", "message": str(e)}))
        return EXIT_INVALID

    print(json.dumps(summary.to_dict(), indent=2, ensure_ascii=False))
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
