"""Argument parsing functionality for chefgate."""

import argparse
from constants import Constants


def build_parser():
    """Builds the command line parser."""
    parser = argparse.ArgumentParser(
        prog="chefgate",
        description=(
            "chefgate - gatekeeping reverse proxy for the Chef server"
        ),
        add_help=True,
    )

    parser.add_argument("-c", "--config",
                        dest="CONFIG",
                        help="Path to the YAML configuration file",
                        action="store",
                        type=str,
                        default=Constants.DEFAULT_CONFIG_FILE)
    parser.add_argument("--check-config",
                        dest="CHECK_CONFIG",
                        help="Validate the configuration file and exit",
                        action="store_true")
    parser.add_argument("--loglevel",
                        dest="LOG_LEVEL",
                        help="Set the logging level",
                        action="store",
                        type=str,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        default='INFO')
    parser.add_argument("--logfile",
                        dest="LOG_FILE",
                        help="Log output file",
                        action="store",
                        type=str)
    parser.add_argument("-v", "--version",
                        action="version",
                        version=f"%(prog)s {Constants.VERSION}")
    return parser


def parse_args(argv=None):
    """Parses the arguments passed to the program."""
    return build_parser().parse_args(argv)
