"""Composition root for the fiscal registration engine.

This module loads configuration, configures logging, builds the
process-scoped FiscalClient and selects the run mode.

Module Structure:
- Configuration loading via config module
- Client construction (adapters + core services)
- Entry point selection (daemon, CLI)
"""

import asyncio
import json
import logging
import sys
from typing import Any

from fiscalsync.adapters.cli.commands import CLICommandHandler
from fiscalsync.client import FiscalClient
from fiscalsync.config import load_settings


async def _run_cli_interactive(cli_handler: CLICommandHandler) -> None:
    """Read commands from stdin until 'exit' or EOF.

    Each line is a command name optionally followed by a JSON object of
    arguments, e.g. ``pending {"cash_register_code": "..."}``.
    """
    logger = logging.getLogger(__name__)
    logger.info("Fiscal CLI ready. Type 'help' for commands, 'exit' to leave.")

    loop = asyncio.get_running_loop()

    while True:
        try:
            # input() blocks, so run it off the event loop
            line = (await loop.run_in_executor(None, input, "fiscalsync> ")).strip()
        except EOFError:
            logger.info("End of input, leaving CLI")
            break
        except KeyboardInterrupt:
            logger.info("Interrupted, type 'exit' to leave")
            continue

        if not line:
            continue

        name, _, raw_args = line.partition(" ")
        name = name.lower()
        if name == "exit":
            logger.info("Leaving CLI")
            break
        if name == "help":
            _print_cli_help()
            continue

        try:
            args = json.loads(raw_args) if raw_args.strip() else {}
        except json.JSONDecodeError:
            logger.error(f"Arguments for {name!r} are not valid JSON, see 'help'")
            continue

        try:
            result = await _execute_cli_command(cli_handler, name, args)
        except Exception as e:
            logger.error(f"Command {name!r} failed: {e}", exc_info=True)
            result = {"status": "error", "operation": name, "message": str(e)}
        print(json.dumps(result, indent=2, default=str, ensure_ascii=False))


async def _execute_cli_command(
    cli_handler: CLICommandHandler,
    command: str,
    args: dict[str, Any],
) -> dict[str, Any]:
    """Execute a CLI command.

    Args:
        cli_handler: CLICommandHandler instance.
        command: Command name.
        args: Command arguments.

    Returns:
        Command result dictionary.

    Raises:
        ValueError: If command is not recognized or a parameter is missing.
    """
    if command == "status":
        return await cli_handler.get_status()

    elif command == "pending":
        return await cli_handler.list_pending(args.get("cash_register_code"))

    elif command == "lookup":
        if "okp" not in args:
            raise ValueError("Missing required parameter: okp")
        return await cli_handler.lookup_okp(args["okp"])

    elif command == "submit":
        if "file" not in args:
            raise ValueError("Missing required parameter: file")
        return await cli_handler.submit_document(
            file=args["file"],
            kind=args.get("kind", "receipt"),
            print_target=args.get("print"),
            email_to=args.get("email_to"),
        )

    elif command == "validate":
        if "document" not in args:
            raise ValueError("Missing required parameter: document")
        return await cli_handler.validate_document(
            document=args["document"],
            kind=args.get("kind", "receipt"),
        )

    elif command == "sync":
        return await cli_handler.sync()

    else:
        raise ValueError(f"Unknown command: {command}. Use 'help' for available commands.")


def _print_cli_help() -> None:
    """Print CLI help message."""
    help_text = """
Commands:

  status
    Show offline queue statistics.

    Example: status

  pending
    List deferred submissions awaiting the authority.
    Optional: cash_register_code

    Example: pending {"cash_register_code": "88812345678900001"}

  lookup
    Tell whether an offline code (OKP) is pending, reconciled or unknown.
    Required: okp

    Example: lookup {"okp": "0A1B2C3D-4E5F6071-8293A4B5-C6D7E8F9-0A1B2C3D"}

  submit
    Register a receipt or location stored as JSON.
    Required: file
    Optional: kind (receipt, location), print (pos, pdf, email), email_to

    Example: submit {"file": "receipt.json", "kind": "receipt", "print": "pos"}

  validate
    Check a document without submitting it.
    Required: document
    Optional: kind (receipt, location)

    Example: validate {"kind": "location", "document": {"cash_register_code": "88812345678900001", "other": {"text": "Taxi"}}}

  sync
    Reconcile all deferred submissions now.

    Example: sync

  help
    Show this help message.

  exit
    Exit the CLI.

Arguments are one JSON object on the same line as the command.
    """
    print(help_text)


def configure_logging(log_level: str, log_format: str) -> None:
    """Configure application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: Log format (json, text).
    """
    level = getattr(logging, log_level, logging.INFO)

    if log_format == "json":
        format_str = (
            '{"time": "%(asctime)s", "level": "%(levelname)s", '
            '"logger": "%(name)s", "message": "%(message)s"}'
        )
    else:
        format_str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )


async def bootstrap() -> None:
    """Build the fiscal client from settings and run the selected mode.

    Daemon mode reconciles deferred submissions until SIGTERM or SIGINT;
    CLI mode serves the interactive prompt until exit.

    Raises:
        SystemExit: If the run mode is unknown.
    """
    settings = load_settings()

    configure_logging("DEBUG" if settings.debug else settings.log_level, settings.log_format)
    logger = logging.getLogger(__name__)
    logger.info("Loading fiscal registration engine...")

    client = FiscalClient.from_settings(settings)
    logger.info(
        f"Authority: {settings.authority_url}, offline store: {settings.store_sqlite_path}"
    )

    logger.info(f"Run mode: {settings.run_mode}")

    async with client:
        if settings.run_mode == "daemon":
            client.scheduler.setup_signal_handlers()
            # The scheduler task ends when a signal triggers stop()
            await client.scheduler.start_background()

        elif settings.run_mode == "cli":
            logger.info("Serving interactive commands")
            cli_handler = CLICommandHandler(client)
            await _run_cli_interactive(cli_handler)

        else:
            logger.error(f"Unknown run mode: {settings.run_mode}")
            sys.exit(1)


def main() -> None:
    """Console entry point.

    Exit codes:
        0: Successful shutdown
        1: Fatal bootstrap or runtime error
        130: Interrupted by user (SIGINT/KeyboardInterrupt)
    """
    logger = logging.getLogger(__name__)
    try:
        asyncio.run(bootstrap())
    except KeyboardInterrupt:
        logger.warning("Interrupted, offline queue left for the next start")
        sys.exit(130)
    except asyncio.CancelledError:
        logger.info("Fiscal engine stopped")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
