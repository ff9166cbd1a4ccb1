"""``resolvehub-mock-backend``: serve the in-memory backend over HTTP."""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Sequence
from urllib.parse import urlsplit

import uvicorn

from resolvehub_client.config import settings
from resolvehub_client.mock_backend.app import (
    SEED_EXPERT_EMAIL,
    SEED_EXPERT_PASSWORD,
    Expert,
    MockState,
    create_app,
    seed_state,
)

logger = logging.getLogger(__name__)


def default_address(api_url: str) -> tuple[str, int]:
    """Host and port the clients will call, so both sides agree without flags."""
    parts = urlsplit(api_url)
    return parts.hostname or "127.0.0.1", parts.port or (443 if parts.scheme == "https" else 80)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    host, port = default_address(settings.api_url)
    parser = argparse.ArgumentParser(
        description="Serve an in-memory ResolveHub backend with a seeded expert and knowledge base."
    )
    parser.add_argument("--host", default=host, help=f"Interface to bind (from RESOLVEHUB_API_URL: {host}).")
    parser.add_argument("--port", type=int, default=port, help=f"Port to bind (from RESOLVEHUB_API_URL: {port}).")
    parser.add_argument(
        "--empty",
        action="store_true",
        help="Start without the sample ticket; experts, knowledge and useful numbers are still seeded.",
    )
    parser.add_argument("--expert-email", default=SEED_EXPERT_EMAIL, help="Login of the seeded expert.")
    parser.add_argument("--expert-password", default=SEED_EXPERT_PASSWORD, help="Password of the seeded expert.")
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Reload on source changes (always serves the default seed).",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"),
    )
    args = parser.parse_args(argv)
    customised = args.empty or (args.expert_email, args.expert_password) != (
        SEED_EXPERT_EMAIL,
        SEED_EXPERT_PASSWORD,
    )
    if args.reload and customised:
        parser.error("--reload cannot be combined with --empty or custom expert credentials")
    return args


def build_state(args: argparse.Namespace) -> MockState:
    state = seed_state()
    if args.empty:
        state.tickets.clear()
        state.messages.clear()
        state.resolved_at.clear()
        state.next_ticket_id = 1
    state.experts = [
        Expert(
            id=expert.id,
            name=expert.name,
            email=args.expert_email.strip().lower(),
            password=args.expert_password,
        )
        for expert in state.experts
    ]
    return state


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    logger.info("Starting ResolveHub mock backend on http://%s:%s", args.host, args.port)
    logger.info("Expert login: %s / %s", args.expert_email, args.expert_password)

    # uvicorn needs an import string to reload the module on file changes
    if args.reload:
        uvicorn.run(
            "resolvehub_client.mock_backend.app:app",
            host=args.host,
            port=args.port,
            reload=True,
            log_level=args.log_level.lower(),
        )
        return

    state = build_state(args)
    logger.info("%s tickets and %s knowledge entries loaded", len(state.tickets), len(state.knowledge))
    uvicorn.run(create_app(state), host=args.host, port=args.port, log_level=args.log_level.lower())


if __name__ == "__main__":
    main(sys.argv[1:])
