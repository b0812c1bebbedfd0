#!/usr/bin/env python3
"""
Multi-Agent Website Cloning Pipeline

Entry point for running a single clone job from the command line.
Extracts the page, plans components, generates React code, validates it
visually, and writes the result to the output directory.

Usage:
    python -m sitecloner.main https://example.com
    python -m sitecloner.main https://example.com --instructions "Use a dark theme"
    python -m sitecloner.main https://example.com --max-retries 1
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from .config.settings import settings
from .errors import InvalidUrlError
from .output.formatter import OutputFormatter
from .pipeline.jobs import validate_url
from .pipeline.orchestrator import build_orchestrator
from .pipeline.state import JobStatus
from .store.job_store import InMemoryJobStateStore
from .utils.logging import configure_logging


def non_negative_int(value: str) -> int:
    """argparse type for counts that may be zero but not negative."""
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: {value!r}") from None
    if number < 0:
        raise argparse.ArgumentTypeError(f"must be >= 0, got {number}")
    return number


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Multi-agent website cloning pipeline"
    )

    parser.add_argument("url", help="Page to clone (absolute http/https URL)")

    parser.add_argument(
        "--instructions",
        default=None,
        help="Free-form customization applied on top of the original design",
    )

    parser.add_argument(
        "--max-retries",
        type=non_negative_int,
        default=settings.max_retries,
        help=f"Coder/QA retry budget (default: {settings.max_retries})",
    )

    parser.add_argument(
        "--output-dir",
        type=Path,
        default=settings.output_dir,
        help=f"Where run directories are written (default: {settings.output_dir})",
    )

    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Debug logging",
    )

    return parser.parse_args(argv)


async def main() -> int:
    """Main entry point."""
    args = parse_args()
    configure_logging(logging.DEBUG if args.verbose else logging.INFO)

    try:
        url = validate_url(args.url)
    except InvalidUrlError as e:
        print(f"❌ {e}")
        return 2

    if not (settings.gemini_api_key or settings.openai_api_key or settings.anthropic_api_key):
        print("❌ No model API key set (GEMINI_API_KEY, OPENAI_API_KEY or ANTHROPIC_API_KEY)")
        return 1

    print("=" * 60)
    print("🚀 Website Cloner")
    print("=" * 60)
    print(f"URL: {url}")
    print(f"Max retries: {args.max_retries}")
    if args.instructions:
        print(f"Instructions: {args.instructions}")

    store = InMemoryJobStateStore(ttl_seconds=settings.job_ttl_seconds)
    orchestrator = build_orchestrator(store, settings)
    orchestrator.max_retries = args.max_retries

    state = await orchestrator.run(url, args.instructions)

    run_dir = OutputFormatter(args.output_dir).save_run(state)
    print(f"\n📁 Output saved to: {run_dir}")

    print("\n" + "=" * 60)
    if state.status == JobStatus.COMPLETE:
        result = state.qa_result
        print("✅ Clone complete")
        if result:
            print(f"Score: {result.score}/100 ({'passed' if result.passed else 'below threshold'})")
        print(f"Retries: {state.retry_count}/{state.max_retries}")
    else:
        print("❌ Clone failed")
        for entry in state.error_log:
            print(f"   [{entry.stage}] {entry.message}")
    print(f"Cost: ${state.total_cost_usd:.4f}")
    print("=" * 60)

    return 0 if state.status == JobStatus.COMPLETE else 1


def cli() -> None:
    """CLI entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
