#!/usr/bin/env python3
"""
Command-line interface for the Carvizio notification service.

Usage:
    python cli.py [command] [options]

Commands:
    demo        Run demo scenarios
    flush       Force one digest flush
    prefs       Show a provider's effective preferences
    test        Run the test suite
    serve       Start the API server

Examples:
    python cli.py demo offer
    python cli.py demo all
    python cli.py flush
    python cli.py prefs 2
    python cli.py serve --reload
"""

import argparse
import asyncio
import subprocess
import sys

from shared.config import configure_logging


def run_demo(scenario: str) -> None:
    """Run a demo scenario."""
    from dispatch.demo import DEMOS, run_all

    if scenario == "all":
        asyncio.run(run_all())
    elif scenario in DEMOS:
        asyncio.run(DEMOS[scenario]())
    else:
        print(f"Unknown scenario: {scenario}")
        sys.exit(1)


def run_flush() -> None:
    """Flush pending digests once with the configured settings."""
    from dispatch.notification_service import build_notification_service

    async def flush():
        service = build_notification_service()
        try:
            summary = await service.force_flush()
        finally:
            await service.aclose()
        print(f"Flush summary: {summary.to_dict()}")

    asyncio.run(flush())


def show_preferences(provider_id: int) -> None:
    """Print a provider's effective preferences as JSON."""
    from shared.data_store import get_data_store
    from shared.preferences import PreferenceStore

    preferences = asyncio.run(PreferenceStore(get_data_store()).get(provider_id))
    print(preferences.model_dump_json(indent=2))


def run_tests(args: list[str]) -> None:
    """Run the test suite."""
    cmd = [sys.executable, "-m", "pytest"] + args
    subprocess.run(cmd)


def run_server(host: str, port: int, reload: bool) -> None:
    """Start the API server."""
    import uvicorn

    print(f"Starting server at http://{host}:{port}")
    print(f"API docs available at http://{host}:{port}/docs")
    uvicorn.run("api.main:app", host=host, port=port, reload=reload)


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Carvizio notification service CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s demo offer
  %(prog)s demo digest
  %(prog)s demo all
  %(prog)s flush
  %(prog)s test -v
  %(prog)s serve --reload
        """,
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Demo command
    demo_parser = subparsers.add_parser("demo", help="Run demo scenarios")
    demo_parser.add_argument(
        "scenario",
        nargs="?",
        default="all",
        choices=["offer", "digest", "preferences", "all"],
        help="Which scenario to run",
    )

    # Flush command
    subparsers.add_parser("flush", help="Force one digest flush")

    # Preferences command
    prefs_parser = subparsers.add_parser("prefs", help="Show a provider's effective preferences")
    prefs_parser.add_argument("provider_id", type=int, help="Service provider id")

    # Test command
    test_parser = subparsers.add_parser("test", help="Run the test suite")
    test_parser.add_argument(
        "pytest_args",
        nargs="*",
        default=[],
        help="Arguments to pass to pytest",
    )

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    args = parser.parse_args()

    if args.command in ("demo", "flush"):
        configure_logging(args.log_level)

    if args.command == "demo":
        run_demo(args.scenario)
    elif args.command == "flush":
        run_flush()
    elif args.command == "prefs":
        show_preferences(args.provider_id)
    elif args.command == "test":
        run_tests(args.pytest_args)
    elif args.command == "serve":
        run_server(args.host, args.port, args.reload)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
