"""
Command-line entry point for ``selfupgrade``.

``main()`` resolves the options and configuration once, builds exactly one
orchestrator, executes it and returns its exit code. Nothing here creates log
files; that is left to the orchestrator's first execute.
"""

from __future__ import annotations

import sys

import yaml
from pydantic import ValidationError

from selfupgrade.config import load_config, load_options
from selfupgrade.logging import get_logger, setup_logging
from selfupgrade.orchestrator import ExitCode, UpgradeOrchestrator

logger = get_logger(__name__)


def main(argv: list[str] | None = None) -> int:
    """
    Run one upgrade attempt.

    Args:
        argv: Command-line arguments (without the program name). If None,
            uses sys.argv.

    Returns:
        Process exit status: 0 on success, non-zero on failure.
    """
    if argv is None:
        argv = sys.argv[1:]

    options = load_options(argv)

    try:
        config = load_config(cli_args=argv)
    except (FileNotFoundError, ValidationError, yaml.YAMLError) as e:
        print(f"ERROR: invalid configuration: {e}", file=sys.stderr)
        return int(ExitCode.GENERIC_ERROR)

    setup_logging(config.logging)
    logger.debug(
        "Starting upgrade",
        extra={"dry_run": options.dry_run, "no_verify": options.no_verify},
    )

    orchestrator = UpgradeOrchestrator(options, config)
    try:
        return int(orchestrator.execute())
    except Exception as e:
        logger.exception("Upgrade aborted by an unexpected error", extra={"error": str(e)})
        print(f"ERROR: {e}", file=sys.stderr)
        return int(ExitCode.GENERIC_ERROR)
