from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import timedelta
from signal import SIGINT, signal
from typing import TYPE_CHECKING

import uvicorn
from dotenv import load_dotenv

from milesbridge.api import create_app
from milesbridge.app import build_services
from milesbridge.config import configure_logging, get_server_config
from milesbridge.domain.transfer import Resolution

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from milesbridge.app import Services

log = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run and operate the milesbridge marketplace")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", type=str, help="Interface to bind (defaults to HOST or config)")
    serve.add_argument("--port", type=int, help="Port to bind (defaults to PORT or config)")
    serve.add_argument(
        "--no-poll",
        action="store_true",
        help="Do not run the escrow poller inside the API process",
    )

    poll = subparsers.add_parser("poll", help="Poll the escrow contract for deposits")
    poll.add_argument(
        "--once",
        action="store_true",
        help="Process a single block range and exit",
    )

    resolve = subparsers.add_parser("resolve", help="Resolve a disputed order")
    resolve.add_argument("order_id", type=str, help="Disputed order id")
    resolve.add_argument(
        "--action",
        type=str,
        required=True,
        choices=[resolution.value for resolution in Resolution],
        help="Release funds to the seller or refund the buyer",
    )

    retry = subparsers.add_parser("retry-release", help="Retry a failed escrow release")
    retry.add_argument("order_id", type=str, help="Order waiting in RELEASE_PENDING")

    stuck = subparsers.add_parser("stuck", help="List in-flight orders that stopped moving")
    stuck.add_argument(
        "--older-than-minutes",
        type=float,
        help="Idle threshold in minutes (defaults to STUCK_ORDER_AFTER_MINUTES)",
    )

    dead_letters = subparsers.add_parser("dead-letters", help="List items awaiting review")
    dead_letters.add_argument(
        "--all",
        action="store_true",
        dest="include_resolved",
        help="Include resolved entries",
    )

    return parser.parse_args(list(argv))


def _serve(args: argparse.Namespace) -> None:
    server = get_server_config()
    services = build_services()
    app = create_app(
        services,
        poll_in_process=server.poll_in_process and not args.no_poll,
        admin_token=server.admin_api_token,
    )
    if server.admin_api_token is None:
        log.warning("ADMIN_API_TOKEN is not set; /admin endpoints are disabled")
    try:
        # logging is already configured; keep uvicorn from replacing it
        uvicorn.run(
            app,
            host=args.host or server.host,
            port=args.port or server.port,
            log_config=None,
        )
    finally:
        services.close()


async def _poll(services: Services, *, once: bool) -> None:
    reconciler = services.reconciler
    if reconciler is None:
        raise ValueError("ESCROW_CONTRACT is not configured; nothing to poll")
    if once:
        result = await reconciler.tick()
        await reconciler.drain()
        log.info(
            "Processed blocks %s..%s: events=%s, escrowed=%s, dead_lettered=%s",
            result.from_block,
            result.to_block,
            result.events,
            len(result.escrowed),
            len(result.dead_lettered),
        )
        return
    await reconciler.run()


def _report_stuck(services: Services, older_than_minutes: float | None) -> None:
    minutes = (
        older_than_minutes
        if older_than_minutes is not None
        else services.execution_config.stuck_after_minutes
    )
    orders = services.orchestrator.stuck_orders(timedelta(minutes=minutes))
    log.info("%s orders idle for more than %s minutes", len(orders), minutes)
    for order in orders:
        log.info(
            "%s %s since %s: %s",
            order.id,
            order.status,
            order.updated_at.isoformat(),
            order.error_msg or "-",
        )


def _report_dead_letters(services: Services, *, include_resolved: bool) -> None:
    letters = services.marketplace.dead_letters(include_resolved=include_resolved)
    log.info("%s dead letters", len(letters))
    for letter in letters:
        log.info(
            "%s %s order=%s attempts=%s resolved=%s: %s",
            letter.kind,
            letter.reference,
            letter.order_id or "-",
            letter.attempts,
            letter.resolved_at.isoformat() if letter.resolved_at else "no",
            letter.reason,
        )


def _run(args: argparse.Namespace) -> None:
    if args.command == "serve":
        _serve(args)
        return

    services = build_services()
    try:
        if args.command == "poll":
            asyncio.run(_poll(services, once=args.once))
        elif args.command == "resolve":
            order = asyncio.run(services.orchestrator.resolve_dispute(args.order_id, args.action))
            log.info("Order %s is now %s", order.id, order.status)
        elif args.command == "retry-release":
            order = asyncio.run(services.orchestrator.retry_release(args.order_id))
            log.info("Order %s is now %s", order.id, order.status)
        elif args.command == "stuck":
            _report_stuck(services, args.older_than_minutes)
        elif args.command == "dead-letters":
            _report_dead_letters(services, include_resolved=args.include_resolved)
        else:
            raise ValueError(f"Unsupported command: {args.command}")
    finally:
        services.close()


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    configure_logging()
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    try:
        parsed_args = _parse_args(args_list)
        if getattr(parsed_args, "older_than_minutes", None) is not None and (
            parsed_args.older_than_minutes < 0
        ):
            raise ValueError("--older-than-minutes must be non-negative")  # noqa: TRY301
    except ValueError:
        log.exception("CLI validation error")
        sys.exit(2)

    try:
        _run(parsed_args)
    except Exception:
        log.exception("Command %s failed", parsed_args.command)
        sys.exit(1)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


def run() -> None:
    """Console script entry point: load `.env`, install the SIGINT handler, run."""
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
