#!/usr/bin/env python3
"""
Command-line interface for the notification engine.

Usage:
    python cli.py [command] [options]

Commands:
    demo        Run demo scenarios
    test        Run the test suite
    serve       Start the API server

Examples:
    python cli.py demo guest-responses
    python cli.py demo all
    python cli.py serve --reload
"""

import argparse
import subprocess
import sys

from shared.config import configure_logging, get_settings


DEMO_SCENARIOS = ["guest-responses", "invite-sent", "settings", "all"]


def run_demo(scenario: str) -> None:
    """Run a demo scenario."""
    from notifications.demo import (
        run_all_demos,
        run_guest_responses_demo,
        run_invite_sent_demo,
        run_settings_demo,
    )

    configure_logging(get_settings().log_level)

    if scenario == "guest-responses":
        run_guest_responses_demo()
    elif scenario == "invite-sent":
        run_invite_sent_demo()
    elif scenario == "settings":
        run_settings_demo()
    elif scenario == "all":
        run_all_demos()
    else:
        print(f"Unknown scenario: {scenario}")
        sys.exit(1)


def run_tests(args: list[str]) -> int:
    """Run the test suite."""
    cmd = [sys.executable, "-m", "pytest"] + args
    return subprocess.run(cmd).returncode


def run_server(host: str, port: int, reload: bool) -> None:
    """Start the API server."""
    cmd = [sys.executable, "-m", "uvicorn", "api.main:app", f"--host={host}", f"--port={port}"]
    if reload:
        cmd.append("--reload")

    print(f"Starting server at http://{host}:{port}")
    print(f"API docs available at http://{host}:{port}/docs")
    subprocess.run(cmd)


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Guest Notification Engine CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s demo guest-responses
  %(prog)s demo all
  %(prog)s test -v
  %(prog)s serve --reload
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Demo command
    demo_parser = subparsers.add_parser("demo", help="Run demo scenarios")
    demo_parser.add_argument(
        "scenario",
        choices=DEMO_SCENARIOS,
        help="Which scenario to run",
    )

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

    if args.command == "demo":
        run_demo(args.scenario)
    elif args.command == "test":
        sys.exit(run_tests(args.pytest_args))
    elif args.command == "serve":
        run_server(args.host, args.port, args.reload)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
