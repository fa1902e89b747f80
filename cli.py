#!/usr/bin/env python3
"""
Command-line interface for the campaign functions.

Usage:
    python cli.py [command] [options]

Commands:
    validate    Run the purchase validation workflow for one purchase
    dispatch    Send PENDING notification log entries
    tickets     Generate ticket codes for a tier
    test        Run the test suite
    serve       Start the API server

Examples:
    python cli.py validate P1
    python cli.py validate P4 --admin --action APPROVE --notes "Factura revisada"
    python cli.py dispatch --purchase-id P1
    python cli.py tickets T3 50
    python cli.py serve --reload
"""

import argparse
import json
import logging
import subprocess
import sys
from typing import Optional


def run_validate(purchase_id: str, admin: bool, action: Optional[str], notes: Optional[str]) -> None:
    """Validate one purchase and print the workflow response."""
    from campaign.errors import CampaignError
    from purchases.models import ProcessPurchaseRequest
    from purchases.workflow import PurchaseValidationWorkflow

    workflow = PurchaseValidationWorkflow()
    request = ProcessPurchaseRequest(
        purchase_id=purchase_id,
        admin_mode=admin,
        admin_action=action,
        admin_notes=notes,
    )
    try:
        response = workflow.process(request)
    except CampaignError as e:
        print(f"Error: {e.message}")
        sys.exit(1)

    print(json.dumps(response.model_dump(mode="json", by_alias=True), indent=2, ensure_ascii=False))


def run_dispatch(purchase_id: Optional[str]) -> None:
    """Send queued notifications."""
    from notifications.dispatcher import NotificationDispatcher

    summary = NotificationDispatcher().dispatch_pending(purchase_id)
    print(json.dumps(summary.model_dump(by_alias=True), indent=2))


def run_generate_tickets(tier: str, count: int, prefix: str) -> None:
    """Generate ticket pool rows for a tier and print them as JSON fixture rows."""
    from campaign.data_store import get_data_store

    tickets = get_data_store().generate_tickets(tier, count, prefix=prefix)
    rows = [t.model_dump(mode="json") for t in tickets]
    print(json.dumps(rows, indent=2))


def run_tests(args: list[str]) -> None:
    """Run the test suite."""
    cmd = [sys.executable, "-m", "pytest"] + args
    subprocess.run(cmd)


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
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(name)-24s | %(levelname)-5s | %(message)s",
        datefmt="%H:%M:%S",
    )

    parser = argparse.ArgumentParser(
        description="Campaign functions CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s validate P1
  %(prog)s validate P4 --admin --action REJECT --notes "Factura ilegible"
  %(prog)s dispatch
  %(prog)s tickets T2 100
  %(prog)s test -v
  %(prog)s serve --reload
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Validate command
    validate_parser = subparsers.add_parser("validate", help="Validate a purchase")
    validate_parser.add_argument("purchase_id", help="Purchase to validate")
    validate_parser.add_argument("--admin", action="store_true", help="Run in admin mode")
    validate_parser.add_argument(
        "--action",
        choices=["APPROVE", "REJECT"],
        default=None,
        help="Explicit admin decision (admin mode only)",
    )
    validate_parser.add_argument("--notes", default=None, help="Admin notes")

    # Dispatch command
    dispatch_parser = subparsers.add_parser("dispatch", help="Send pending notifications")
    dispatch_parser.add_argument("--purchase-id", default=None, help="Only this purchase")

    # Tickets command
    tickets_parser = subparsers.add_parser("tickets", help="Generate ticket codes")
    tickets_parser.add_argument("tier", help="Tier to generate for, e.g. T3")
    tickets_parser.add_argument("count", type=int, help="How many codes")
    tickets_parser.add_argument("--prefix", default="SKY", help="Code prefix")

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

    if args.command == "validate":
        run_validate(args.purchase_id, args.admin, args.action, args.notes)
    elif args.command == "dispatch":
        run_dispatch(args.purchase_id)
    elif args.command == "tickets":
        run_generate_tickets(args.tier, args.count, args.prefix)
    elif args.command == "test":
        run_tests(args.pytest_args)
    elif args.command == "serve":
        run_server(args.host, args.port, args.reload)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
