"""
Webhook server entry point - BOOTSTRAP ONLY
This module should contain NO business logic, only orchestration.
"""
import os
from typing import NoReturn

import uvicorn

from .cli import parse_arguments, show_version_info, validate_configuration_only
from .config import load_config, validate_required_env
from .exceptions import ConfigurationError
from .utils.logging import get_logger, init_logging, shutdown_logging_and_exit
from .web import create_app


def main(argv=None) -> NoReturn:
    """Parse arguments, validate configuration and serve the webhook until stopped."""
    args = parse_arguments(argv)

    if args.debug:
        os.environ['LOG_LEVEL'] = 'DEBUG'

    init_logging()
    logger = get_logger(__name__)

    if args.version:
        show_version_info()
        shutdown_logging_and_exit(0)

    if args.config_check:
        shutdown_logging_and_exit(0 if validate_configuration_only() else 1)

    try:
        config = load_config(reload=True)
        validate_required_env(config)
    except ConfigurationError as e:
        logger.critical(f"Startup validation failed: {e}", extra={'subsys': 'core', 'event': 'startup_fail'})
        shutdown_logging_and_exit(1)

    host = args.host or config["HOST"]
    port = args.port or config["PORT"]
    logger.info(f"🌐 Serving webhook on {host}:{port}", extra={'subsys': 'core', 'event': 'serve'})

    try:
        # log_config=None keeps uvicorn on the handlers installed by init_logging
        uvicorn.run(create_app(config), host=host, port=port, log_config=None)
    except Exception as e:
        logger.critical(f"Server exited with an error: {e}", exc_info=True)
        shutdown_logging_and_exit(1)

    shutdown_logging_and_exit(0)


if __name__ == "__main__":
    main()
