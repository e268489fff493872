"""Command-line interface for the Zintle waitlist service."""

from __future__ import annotations
import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Sequence

import anyio
import httpx

from waitlist.analytics import AnalyticsEngine
from waitlist.config import Settings, load_settings
from waitlist.database import Database
from waitlist.mailer import Mailer

logger = logging.getLogger("zintle.main")

_KNOWN_COMMANDS = {"serve", "init-db", "stats", "send-update"}


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Zintle waitlist utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the waitlist database")

    serve_parser = subparsers.add_parser("serve", help="Start the waitlist web service")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address for the service")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("PORT", "3000")),
        help="Port for the HTTP service (default: $PORT or 3000)",
    )

    stats_parser = subparsers.add_parser("stats", help="Print the current signup counters")
    stats_parser.add_argument(
        "--service-url",
        default=None,
        help="Query a running service instead of the local database",
    )

    update_parser = subparsers.add_parser(
        "send-update", help="Email a progress update to every waitlist member"
    )
    update_parser.add_argument("subject", help="Subject line of the update")
    update_parser.add_argument("content_file", type=Path, help="File containing the HTML body")

    args_list = list(argv) if argv is not None else sys.argv[1:]

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in _KNOWN_COMMANDS:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _initialise_database(settings: Settings) -> Database:
    database = Database(settings.database_path)
    database.initialize()
    logger.info("Database initialised at %s", settings.database_path)
    return database


def _serve(*, settings: Settings, database: Database, host: str, port: int) -> None:
    from waitlist.service import create_app
    import uvicorn

    logger.info("Starting waitlist service on http://%s:%s", host, port)
    app = create_app(settings=settings, database=database)
    uvicorn.run(app, host=host, port=port, log_level="info")


def _show_stats(settings: Settings, database: Database | None, service_url: str | None) -> int:
    if service_url:
        endpoint = service_url.rstrip("/") + "/api/stats"
        try:
            response = httpx.get(endpoint, timeout=10.0)
        except httpx.HTTPError as exc:
            print(f"Failed to contact waitlist service: {exc}")
            return 1
        if response.status_code != 200:
            print(f"Service responded with {response.status_code}: {response.text.strip()}")
            return 1
        try:
            payload = response.json()
        except ValueError:
            print("Service returned an unexpected response format.")
            return 1
        total = payload.get("totalSignups", "?")
        spots = payload.get("spotsLeft", "?")
    else:
        assert database is not None
        stats = AnalyticsEngine(database, spots_total=settings.spots_total).basic_stats()
        total = stats.total_signups
        spots = stats.spots_left

    print(f"Total signups: {total}")
    print(f"Founder spots left: {spots}")
    return 0


def _send_update(settings: Settings, database: Database, subject: str, content_file: Path) -> int:
    try:
        content = content_file.read_text(encoding="utf-8")
    except OSError as exc:
        print(f"Unable to read {content_file}: {exc}")
        return 1
    if not subject.strip() or not content.strip():
        print("Subject and content are required.")
        return 1

    mailer = Mailer.from_settings(settings)
    emails = database.list_emails()
    result = anyio.run(mailer.send_broadcast, emails, subject, content)
    print(f"Progress update sent to {result.sent}/{result.total} users")
    for failure in (item for item in result.results if not item.success):
        print(f"  failed: {failure.email} ({failure.error})")
    return 0 if result.sent == result.total else 1


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    try:
        settings = load_settings()
    except ValueError as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc

    if args.command == "stats" and args.service_url:
        return _show_stats(settings, None, args.service_url)

    database = _initialise_database(settings)

    if args.command == "serve":
        _serve(settings=settings, database=database, host=args.host, port=args.port)
    elif args.command == "stats":
        return _show_stats(settings, database, None)
    elif args.command == "send-update":
        return _send_update(settings, database, args.subject, args.content_file)
    elif args.command == "init-db":
        print("Database initialisation complete.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
