"""
main.py — RecoChat Entry Point

Usage:
    recochat                                  # CLI REPL, default settings
    recochat --log-level DEBUG                # Verbose logging
    recochat --config path/to/config.yaml
    recochat --base-url https://agents.example.com --agent-id abc123
    recochat --ephemeral                      # Keep sessions in memory only
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _find_env_file() -> Optional[Path]:
    """Walk up from CWD looking for .env file."""
    cwd = Path.cwd()
    for d in [cwd, *cwd.parents]:
        candidate = d / ".env"
        if candidate.is_file():
            return candidate
    return None


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="recochat",
        description="RecoChat — conversational product recommendations in the terminal",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $RECOCHAT_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    parser.add_argument(
        "--base-url",
        default=None,
        help="Override service.base_url (recommendation service root URL)",
    )
    parser.add_argument(
        "--agent-id",
        default=None,
        help="Override service.agent_id",
    )
    parser.add_argument(
        "--ephemeral",
        action="store_true",
        default=False,
        help="Do not read or write the session file; history lasts for this run only",
    )
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace):
    """
    Load config, validate it fully, and set up logging.
    Returns (settings, log) ready for use.

    Exits with code 1 (after printing a clear message) if:
      - config.yaml has invalid values (Pydantic ValidationError)
      - cross-field problems are found (ConfigError from validate_all())
    """
    from pydantic import ValidationError

    from recochat.config.settings import ConfigError, load_settings
    from recochat.observability.logger import get_logger, setup_logging

    overrides = {
        "service": {"base_url": args.base_url, "agent_id": args.agent_id},
    }

    # -- Load and parse -------------------------------------------------------
    try:
        settings = load_settings(args.config, overrides=overrides)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {'.'.join(str(p) for p in e['loc']) or '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\n❌  Config validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your .env file and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except (OSError, ValueError, TypeError) as exc:
        print(
            f"\n❌  Failed to load config: {type(exc).__name__}: {exc}\n",
            file=sys.stderr,
        )
        sys.exit(1)

    # -- Cross-field validation -----------------------------------------------
    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    # -- Logging --------------------------------------------------------------
    # CLI --log-level flag overrides config.yaml
    log_level = args.log_level or settings.log_level

    setup_logging(
        level=log_level,
        log_dir=settings.log_dir,
        json_format=settings.log_json_format,
        console_output=settings.log_console_output,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )

    log = get_logger("recochat.main")
    return settings, log


async def main(argv: Optional[list[str]] = None) -> int:
    env_path = _find_env_file()
    if env_path:
        load_dotenv(dotenv_path=env_path)

    args = parse_args(argv)
    settings, log = bootstrap(args)

    log.info(
        "recochat.starting",
        version=settings.app.version,
        base_url=settings.service.base_url,
        agent_id=settings.agent_id,
        ephemeral=args.ephemeral,
        has_api_key=settings.agent_api_key is not None,
    )

    if not args.ephemeral:
        settings.storage_path.parent.mkdir(parents=True, exist_ok=True)

    from recochat.interfaces.cli import run_cli

    log.info("recochat.interface_starting", interface="cli")
    await run_cli(settings, log, ephemeral=args.ephemeral)
    return 0


def run() -> None:
    """Console-script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
