"""Command-line entry point: scan one repository and print the report."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from .config import load_settings
from .github import GitHubClient
from .models import RepositoryRef
from .orchestrator import ScanOrchestrator
from .report import build_report, format_text_report

EXIT_CODES = {"PASS": 0, "CONDITIONAL": 1, "INCOMPLETE": 1, "FAIL": 2}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="repoguard", description="Scan a GitHub repository for security issues")
    parser.add_argument("repository", help="owner/name")
    parser.add_argument("--branch", "-b", dest="branches", action="append", default=[],
                        help="Branch candidate, tried in order (repeatable; default: main, master).")
    parser.add_argument("--token", default=None, help="GitHub token (defaults to $GITHUB_TOKEN).")
    parser.add_argument("--format", choices=["text", "json"], default="text")
    parser.add_argument("--max-concurrency", type=int, default=None)
    parser.add_argument("--max-files", type=int, default=None)
    parser.add_argument("--quiet", "-q", action="store_true", help="No per-file progress output.")
    return parser


def parse_repository(value: str) -> tuple[str, str]:
    owner, _, name = value.strip().strip("/").partition("/")
    if not owner or not name or "/" in name:
        raise argparse.ArgumentTypeError(f"expected owner/name, got {value!r}")
    return owner, name


async def run(args: argparse.Namespace) -> dict:
    settings = load_settings()
    owner, name = parse_repository(args.repository)
    overrides = {}
    if args.max_concurrency is not None:
        overrides["max_concurrency"] = args.max_concurrency
    if args.max_files is not None:
        overrides["max_files_per_scan"] = args.max_files
    ref = RepositoryRef(
        owner=owner, name=name,
        branch_candidates=tuple(args.branches) or ("main", "master"),
        auth_token=args.token or settings.token,
    )
    async with GitHubClient(settings.api_url, settings.timeout) as client:
        orchestrator = ScanOrchestrator(client, config=settings.scan_config(**overrides))
        handle = orchestrator.start_scan(ref)
        async for event in orchestrator.subscribe_progress(handle):
            if not args.quiet and event.path:
                print(f"[{event.files_scanned}/{event.files_total}] {event.path}", file=sys.stderr)
        session = await orchestrator.wait(handle)
        return build_report(session)


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        parse_repository(args.repository)
    except argparse.ArgumentTypeError as exc:
        parser.error(str(exc))
    logging.basicConfig(level=load_settings().log_level, format="%(levelname)s %(name)s: %(message)s")
    report = asyncio.run(run(args))
    if args.format == "json":
        print(json.dumps(report, indent=2, default=str))
    else:
        print(format_text_report(report))
    return EXIT_CODES[report["verdict"]]
