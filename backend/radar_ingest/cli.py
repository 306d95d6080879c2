"""Run one connector fetch from the command line and print the result as JSON.

Usage:
    cd backend
    python3 -m radar_ingest.cli list
    python3 -m radar_ingest.cli fetch rss --config '{"feed_url": "https://hnrss.org/frontpage"}' --normalize
    python3 -m radar_ingest.cli fetch x_posts --config '{"accounts": ["nasa"]}' \\
        --cursor '{"since_time": "2026-01-01T00:00:00Z"}' --max-items 20

The printed document is ``{"result": <FetchResult>, "drafts": [<ContentItemDraft>...]}``;
``drafts`` is empty unless ``--normalize`` is given. Exit code 2 means a
configuration error (unknown source type, bad config or cursor JSON).
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from radar_ingest.budget import RunBudget
from radar_ingest.connectors import get_connector, source_types
from radar_ingest.cursor import to_iso
from radar_ingest.exceptions import ConnectorConfigError, IngestError, NormalizeError
from radar_ingest.models import FetchLimits, FetchParams
from radar_ingest.settings import load_environment

logger = logging.getLogger("radar_ingest.cli")


def _json_arg(value: Optional[str], name: str) -> Dict[str, Any]:
    if not value:
        return {}
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        raise ConnectorConfigError(f"--{name} is not valid JSON: {e}") from e
    if not isinstance(parsed, dict):
        raise ConnectorConfigError(f"--{name} must be a JSON object")
    return parsed


def build_params(args: argparse.Namespace) -> FetchParams:
    window_end = args.window_end or to_iso(datetime.now(timezone.utc))
    window_start = args.window_start or to_iso(
        datetime.now(timezone.utc) - timedelta(hours=args.window_hours)
    )
    return FetchParams(
        user_id=args.user_id,
        source_id=args.source_id or f"cli-{args.source_type}",
        source_type=args.source_type,
        config=_json_arg(args.config, "config"),
        cursor=_json_arg(args.cursor, "cursor"),
        limits=FetchLimits(max_items=args.max_items),
        window_start=window_start,
        window_end=window_end,
    )


async def run_fetch(args: argparse.Namespace) -> Dict[str, Any]:
    connector = get_connector(args.source_type)
    params = build_params(args)
    budget = RunBudget.from_env()

    result = await connector.fetch(params, budget=budget)

    drafts: List[Dict[str, Any]] = []
    if args.normalize:
        for raw in result.raw_items:
            try:
                drafts.append(connector.normalize(raw, params).model_dump(mode="json"))
            except NormalizeError as e:
                logger.warning(f"Dropping raw item that could not be normalized: {e}")

    return {"result": result.model_dump(mode="json"), "drafts": drafts}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="radar-ingest",
        description="Fetch and normalize content from one radar source",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", help="List registered source types")

    fetch = subparsers.add_parser("fetch", help="Run one fetch")
    fetch.add_argument("source_type", help="Connector source type (see `list`)")
    fetch.add_argument("--config", help="Source config as a JSON object")
    fetch.add_argument("--cursor", help="Cursor from a previous run as a JSON object")
    fetch.add_argument("--max-items", type=int, default=50, help="Maximum raw items (default: 50)")
    fetch.add_argument("--window-start", help="ISO window start (default: now - window hours)")
    fetch.add_argument("--window-end", help="ISO window end (default: now)")
    fetch.add_argument(
        "--window-hours", type=int, default=24,
        help="Window length when --window-start is omitted (default: 24)",
    )
    fetch.add_argument("--user-id", default="cli", help="User ID recorded on provider calls")
    fetch.add_argument("--source-id", help="Source ID recorded on provider calls")
    fetch.add_argument(
        "--normalize", "-n", action="store_true",
        help="Also normalize raw items into drafts",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for CLI."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )
    load_environment()

    if args.command == "list":
        print(json.dumps(source_types(), indent=2))
        return 0

    try:
        output = asyncio.run(run_fetch(args))
    except ConnectorConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    except IngestError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(json.dumps(output, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
