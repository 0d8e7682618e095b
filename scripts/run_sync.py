"""
Run one Galaxy -> Zoho sync from CLI.
"""

from __future__ import annotations

import argparse
import json
import sys
from dataclasses import replace

from crm_sync.config import (
    LINK_STRATEGIES,
    clamp_chunk_size,
    get_galaxy_settings,
    get_http_settings,
    get_sync_run_settings,
    get_zoho_settings,
    parse_watermark_override,
    validate_settings,
)
from crm_sync.errors import ConfigurationError
from crm_sync.logging_utils import configure_logging
from crm_sync.services.sync_service import build_sync_service

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sync Galaxy customers into Zoho CRM Accounts.")
    parser.add_argument(
        "--full-resync",
        action="store_true",
        help="Ignore the stored watermark and fetch every record.",
    )
    parser.add_argument(
        "--watermark",
        default=None,
        help="Explicit watermark (non-negative integer) instead of querying Zoho.",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Process at most N primary records (development aid).",
    )
    parser.add_argument(
        "--chunk-size",
        dest="chunk_size",
        type=int,
        default=None,
        help="Records per upsert call (capped at 100).",
    )
    parser.add_argument(
        "--strategy",
        default=None,
        choices=sorted(LINK_STRATEGIES),
        help="Affiliate linking strategy.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Emit debug-level sync events.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        run = get_sync_run_settings()
        overrides: dict[str, object] = {}
        if args.full_resync:
            overrides["full_resync"] = True
        if args.watermark is not None:
            overrides["watermark_override"] = parse_watermark_override(args.watermark)
        if args.limit is not None:
            overrides["dev_limit"] = max(0, args.limit)
        if args.chunk_size is not None:
            overrides["chunk_size"] = clamp_chunk_size(args.chunk_size)
        if args.strategy is not None:
            overrides["link_strategy"] = args.strategy
        if args.verbose:
            overrides["verbose"] = True
        run = replace(run, **overrides)

        galaxy = get_galaxy_settings()
        zoho = get_zoho_settings()
        validate_settings(galaxy=galaxy, zoho=zoho, run=run)
    except ConfigurationError as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_CONFIG

    configure_logging(verbose=run.verbose)
    service = build_sync_service(galaxy=galaxy, zoho=zoho, http=get_http_settings(), run=run)
    summary = service.run_once()

    print(json.dumps(summary.to_dict(), indent=2))
    return EXIT_OK if summary.ok else EXIT_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
