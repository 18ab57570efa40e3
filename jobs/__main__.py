"""Command-line entrypoint for batch jobs."""

from __future__ import annotations

import argparse
import logging
import os
from dataclasses import replace

from jobs.config import load_settings
from jobs.ingest import main as run_ingest
from jobs.ingest import sweep_stale_uploads
from pipelines.model import UploadLog
from storage.db import connect, fetch_upload_logs


def _format_upload(log: UploadLog) -> str:
    uploaded = log.upload_date.isoformat(timespec="seconds") if log.upload_date else "?"
    line = (
        f"{log.id}: {log.filename} status={log.status} "
        f"records={log.records_processed} uploaded={uploaded}"
    )
    if log.error_message:
        line += f" error='{log.error_message}'"
    return line


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="SHF price-index job runner")
    subparsers = parser.add_subparsers(dest="command", required=True)

    ingest_parser = subparsers.add_parser(
        "ingest", help="Ingest an SHF CSV export into DuckDB"
    )
    source = ingest_parser.add_mutually_exclusive_group()
    source.add_argument("--file", help="Path to a downloaded SHF CSV export")
    source.add_argument("--url", help="URL of the export (defaults to SHF_CSV_URL)")
    ingest_parser.add_argument(
        "--log-level",
        help="Override LOG_LEVEL for this invocation (e.g. DEBUG, INFO)",
    )

    list_parser = subparsers.add_parser("list-uploads", help="Show recent upload log entries")
    list_parser.add_argument("--limit", type=int, default=20)

    sweep_parser = subparsers.add_parser(
        "sweep-stale", help="Mark uploads stuck in 'processing' as failed"
    )
    sweep_parser.add_argument(
        "--minutes",
        type=int,
        help="Age threshold in minutes (defaults to STALE_UPLOAD_MINUTES)",
    )

    args = parser.parse_args(argv)

    if args.command == "list-uploads":
        conn = connect()
        try:
            for log in fetch_upload_logs(conn, limit=args.limit):
                print(_format_upload(log))
        finally:
            conn.close()
        return 0

    if args.command == "sweep-stale":
        logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
        settings = load_settings()
        if args.minutes is not None:
            settings = replace(settings, stale_upload_minutes=args.minutes)
        swept = sweep_stale_uploads(settings=settings)
        print(f"Marked {swept} stale uploads as failed.")
        return 0

    if args.command == "ingest":
        if args.log_level:
            os.environ["LOG_LEVEL"] = args.log_level
        return run_ingest(args.file, url=args.url)

    parser.error("Unknown command")
    return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
