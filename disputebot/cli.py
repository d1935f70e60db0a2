"""
Command-line flags and the one-shot actions behind them.
"""
import argparse
import platform

from rich.console import Console
from rich.table import Table

from . import __version__
from .config import load_config, validate_required_env
from .exceptions import ConfigurationError
from .utils.logging import get_logger

SENSITIVE_MARKERS = ("TOKEN", "SECRET", "KEY")


def parse_arguments(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="disputebot", description="Rental disputes assistant for Telegram")
    parser.add_argument("--debug", action="store_true", help="Log at DEBUG level.")
    parser.add_argument("--config-check", action="store_true", help="Validate configuration, print it and exit.")
    parser.add_argument("--version", action="store_true", help="Print version information and exit.")
    parser.add_argument("--host", help="Bind address (overrides HOST).")
    parser.add_argument("--port", type=int, help="Bind port (overrides PORT).")
    return parser.parse_args(argv)


def show_version_info() -> None:
    Console().print(f"disputebot {__version__} on Python {platform.python_version()}")


def _masked(key: str, value) -> str:
    if value and any(marker in key for marker in SENSITIVE_MARKERS):
        return "********"
    return "" if value is None else str(value)


def validate_configuration_only() -> bool:
    """Validate configuration and print the effective settings. Returns success."""
    logger = get_logger(__name__)
    config = load_config(reload=True)
    try:
        validate_required_env(config)
    except ConfigurationError as e:
        logger.critical(f"Configuration error: {e}", extra={"subsys": "core", "event": "config_fail"})
        return False

    table = Table(title="Effective configuration")
    table.add_column("Key", no_wrap=True)
    table.add_column("Value", overflow="fold")
    for key, value in config.items():
        table.add_row(key, _masked(key, value))
    Console().print(table)
    logger.info("Configuration is valid", extra={"subsys": "core", "event": "config_valid"})
    return True
