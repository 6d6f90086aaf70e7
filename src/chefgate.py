"""chefgate - gatekeeping reverse proxy for the Chef server.

    Returns:
        int: Exit code
"""
import logging
import os
import sys

from constants import Constants, ExitCodes
from common.logging_utils import configure_logging
from args import parse_args
from settings import ConfigError, ConfigHolder, load_config

logger = logging.getLogger(__name__)


def _setup_logging(args):
    """Configure logging based on CLI arguments.

    Args:
        args: Parsed CLI arguments.
    """
    if getattr(args, "LOG_LEVEL", None):
        os.environ[Constants.ENV_LOG_LEVEL] = str(args.LOG_LEVEL).upper()
    configure_logging()

    log_file = getattr(args, "LOG_FILE", None)
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s"
        ))
        logging.getLogger().addHandler(file_handler)
        logger.info("Logging to file: %s", log_file)


def main(argv=None):
    """Main entry point for the proxy."""
    args = parse_args(argv)
    try:
        _setup_logging(args)
    except OSError as e:
        logging.error("Cannot open log file: %s", e)
        return ExitCodes.FILE_ERROR.value

    try:
        config = load_config(args.CONFIG)
    except ConfigError as e:
        logging.error("%s", e)
        return ExitCodes.CONFIG_ERROR.value

    if args.CHECK_CONFIG:
        logger.info("Configuration %s is valid", args.CONFIG)
        return ExitCodes.SUCCESS.value

    # Lazy import to avoid loading aiohttp for --check-config
    from proxy.server import run_server_sync  # pylint: disable=import-outside-toplevel

    print(
        f"\n"
        f"  chefgate {Constants.VERSION}\n"
        f"  ==============\n"
        f"  Listening: http://{config.default.listen}:{config.default.port}\n"
        f"  Erchef:    {config.chef.erchef_url}\n"
        f"  Mode:      {config.default.mode}\n"
        f"\n"
        f"  Send SIGHUP to reload the configuration, Ctrl+C to stop\n"
    )
    run_server_sync(ConfigHolder(config, args.CONFIG))
    return ExitCodes.SUCCESS.value


if __name__ == "__main__":
    sys.exit(main())
