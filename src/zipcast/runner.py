#!/usr/bin/env python3
"""Main entry point for zipcast."""

import argparse
import asyncio
import sys
from pathlib import Path

from .config import load_request
from .errors import ExtractionError
from .executor import Executor
from .pipeline import HostOutcome, PipelineState


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Extract a zip archive and deploy it to multiple SSH hosts in parallel"
    )
    parser.add_argument(
        "config", type=Path, help="Path to the .env (or YAML) deployment settings"
    )
    parser.add_argument(
        "companion",
        type=Path,
        nargs="?",
        help="Config file uploaded next to install.sh (defaults to CONFIG itself)",
    )
    parser.add_argument(
        "--no-logs",
        action="store_true",
        help="Disable logging to files",
    )
    parser.add_argument(
        "--dashboard",
        action="store_true",
        help="Run with the TUI dashboard",
    )
    args = parser.parse_args(argv)

    # Load configuration
    try:
        request = load_request(args.config, args.companion)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    if not request.companion_path.exists():
        print(f"Error: Config file not found: {request.companion_path}", file=sys.stderr)
        return 1

    enable_logging = not args.no_logs

    if not args.dashboard:
        # Run without TUI dashboard (default)
        return _run_headless(request, enable_logging)

    # Imported lazily so headless runs don't pay for Textual
    from .dashboard import Dashboard

    app = Dashboard(request, enable_logging=enable_logging)
    app.run()

    return report_dashboard(app)


def report_dashboard(app) -> int:
    """Print the result lines once the dashboard closes; 1 if anything failed."""
    if app.extraction_error:
        print(f"Error: {app.extraction_error}", file=sys.stderr)
        return 1

    for outcome in app.outcomes:
        print(format_outcome(outcome))

    # Quitting early leaves hosts without an outcome
    unfinished = app.unfinished_hosts
    for host in unfinished:
        print(f"Failed to dispatch and execute on server {host}: did not finish")

    failed_hosts = [str(o.host) for o in app.outcomes if not o.succeeded] + unfinished
    if failed_hosts:
        print(f"\nFailed hosts: {', '.join(failed_hosts)}", file=sys.stderr)
        return 1

    return 0


def format_outcome(outcome: HostOutcome) -> str:
    """One human-readable result line for a host."""
    if outcome.succeeded:
        return f"Dispatch and execute on server {outcome.host} completed"
    return f"Failed to dispatch and execute on server {outcome.host}: {outcome.error}"


def _run_headless(request, enable_logging: bool) -> int:
    """Run executor without TUI dashboard."""
    # ANSI colors for different hosts
    colors = [
        "\033[36m",  # Cyan
        "\033[33m",  # Yellow
        "\033[35m",  # Magenta
        "\033[32m",  # Green
        "\033[34m",  # Blue
        "\033[91m",  # Light Red
        "\033[96m",  # Light Cyan
        "\033[93m",  # Light Yellow
    ]
    reset = "\033[0m"

    # Assign colors to hosts
    host_colors = {
        str(address): colors[i % len(colors)]
        for i, address in enumerate(request.hosts)
    }

    def on_output(host: str, line: str) -> None:
        color = host_colors.get(host, "")
        print(f"{color}[{host}]{reset} {line}")

    def on_status(host: str, status: PipelineState) -> None:
        color = host_colors.get(host, "")
        print(f"{color}[{host}]{reset} Status: {status.value}")

    def on_outcome(outcome: HostOutcome) -> None:
        print(format_outcome(outcome))

    executor = Executor(
        request,
        on_output=on_output,
        on_status=on_status,
        on_outcome=on_outcome,
        enable_logging=enable_logging,
    )

    try:
        outcomes = asyncio.run(executor.run_all())
    except ExtractionError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    # Check final status
    failed_hosts = [str(outcome.host) for outcome in outcomes if not outcome.succeeded]
    if failed_hosts:
        print(f"\nFailed hosts: {', '.join(failed_hosts)}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
