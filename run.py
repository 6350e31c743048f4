#!/usr/bin/env python3
"""
QA Runner CLI
Usage: python run.py cases.json [--concurrency 5] [--timeout 60000] [--json] [--verbose]
"""

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path

from qarunner.config import load_settings
from qarunner.core.batch import execute_all
from qarunner.core.report import print_batch_report


def main():
    parser = argparse.ArgumentParser(
        description="Execute QA test cases in a headless browser or over HTTP",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Examples:\n"
               "  python run.py cases.json\n"
               "  python run.py cases.json --concurrency 3 --base-url http://localhost:3000\n"
               "  CHROME_PATH=/usr/bin/chromium python run.py smoke.json --json",
    )
    parser.add_argument("file", help="JSON file with one test case or a list of test cases")
    parser.add_argument("--concurrency", type=int, default=None, help="Parallel runs per batch (1-10, default: 5)")
    parser.add_argument("--timeout", type=int, default=None, help="Per-test timeout in ms (default: 60000)")
    parser.add_argument("--base-url", default=None, help="Base URL for relative page URLs")
    parser.add_argument("--chrome", default=None, help="Path to the Chrome/Chromium executable")
    parser.add_argument("--json", action="store_true", help="Output results as JSON instead of a table")
    parser.add_argument("--verbose", action="store_true", help="Log browser and protocol activity")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        data = json.loads(Path(args.file).read_text())
    except (OSError, ValueError) as e:
        print(f"\n  Could not read test cases from {args.file}: {e}")
        sys.exit(2)
    cases = data if isinstance(data, list) else [data]

    settings = load_settings()
    overrides = {}
    if args.timeout:
        overrides["test_timeout_ms"] = args.timeout
    if args.base_url:
        overrides["base_url"] = args.base_url.rstrip("/")
    if args.chrome:
        overrides["executable_path"] = args.chrome
    settings = replace(settings, **overrides)

    if not args.json:
        print(f"\n  Running {len(cases)} test case(s) against {settings.base_url}\n")

    results = {}

    def on_result(raw, result):
        key = (raw.get("testId") or raw.get("title")) if isinstance(raw, dict) else None
        results[str(key or f"#{len(results) + 1}")] = result

    summary = asyncio.run(execute_all(
        cases,
        args.concurrency,
        settings,
        on_result=on_result,
        on_progress=None if args.json else _cli_progress,
    ))

    if args.json:
        output = {
            "summary": summary,
            "results": {k: r.to_dict() for k, r in results.items()},
        }
        print(json.dumps(output, indent=2))
    else:
        print_batch_report(summary, results)

    sys.exit(0 if summary["passed"] == summary["total"] else 1)


def _cli_progress(event_type: str, data: dict):
    if event_type == "test_complete":
        print(f"   [{data.get('executed', '?')}/{data.get('total', '?')}] "
              f"{data.get('testId', '')} {data.get('status', '').upper()} ({data.get('executionTime', '')})")


if __name__ == "__main__":
    main()
