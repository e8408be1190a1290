"""
Exquisite CLI - Command-line interface for the game server.

Usage:
    exquisite serve [--host HOST] [--port PORT]   Run the API server
    exquisite init-db [--database-url URL]        Create database tables
    exquisite moderate <prompt>                   Check a prompt against the moderation gate
    exquisite code [--count N]                    Generate join codes
"""

import argparse
import logging
import sys

from .config import AppConfig, configure_logging

logger = logging.getLogger(__name__)


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Exquisite - Collaborative image editing game server",
        prog="exquisite",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Serve command
    serve_parser = subparsers.add_parser("serve", help="Run the API server")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port")
    serve_parser.add_argument("--reload", action="store_true", help="Reload on code changes")

    # Database setup
    db_parser = subparsers.add_parser("init-db", help="Create database tables")
    db_parser.add_argument("--database-url", help="SQLAlchemy URL (defaults to DATABASE_URL)")

    # Moderation check
    moderate_parser = subparsers.add_parser("moderate", help="Check a prompt")
    moderate_parser.add_argument("prompt", help="Prompt text")

    # Join codes
    code_parser = subparsers.add_parser("code", help="Generate join codes")
    code_parser.add_argument("--count", type=int, default=1, help="How many codes")

    args = parser.parse_args(argv)
    config = AppConfig.from_env()
    configure_logging(args.log_level or config.log_level)

    if args.command == "serve":
        return cmd_serve(args)
    elif args.command == "init-db":
        return cmd_init_db(args, config)
    elif args.command == "moderate":
        return cmd_moderate(args)
    elif args.command == "code":
        return cmd_code(args)
    else:
        parser.print_help()
        return 1


def cmd_serve(args):
    """Run the API server with uvicorn."""
    try:
        import uvicorn
    except ImportError:
        print("Error: uvicorn not installed. Install with: pip install uvicorn")
        return 1

    uvicorn.run(
        "exquisite.api.app:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
    )
    return 0


def cmd_init_db(args, config: AppConfig):
    """Create database tables."""
    from .store.sql import init_db, make_engine

    url = args.database_url or config.database_url
    if not url:
        print("Error: no database URL. Set DATABASE_URL or pass --database-url.")
        return 1

    init_db(make_engine(url))
    logger.info("Database tables created")
    print("Database initialized")
    return 0


def cmd_moderate(args):
    """Run a prompt through format validation and the blocked lists."""
    from .errors import InputValidationError
    from .moderation import ModerationGate

    gate = ModerationGate()
    try:
        gate.validate_format(args.prompt)
    except InputValidationError as e:
        print(f"Invalid: {e.message}")
        return 1

    result = gate.check(args.prompt)
    if result.flagged:
        print(f"Flagged: {result.reason}")
        return 1

    print(f"OK: {result.cleaned_prompt}")
    return 0


def cmd_code(args):
    """Print freshly generated join codes."""
    from .rooms.codes import generate_room_code

    for _ in range(max(args.count, 1)):
        print(generate_room_code())
    return 0


if __name__ == "__main__":
    sys.exit(main())
