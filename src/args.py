"""Argument parsing functionality for nupack."""

import argparse


def parse_args(argv=None):
    """Parses the arguments passed to the program."""
    parser = argparse.ArgumentParser(
        prog="nupack",
        description=(
            "nupack - restore the packages referenced by a solution's packages.config files"
        ),
        add_help=True,
    )

    parser.add_argument("-s", "--solution",
                        dest="SOLUTION_DIR",
                        help="Solution directory to restore",
                        action="store", type=str,
                        required=True)
    parser.add_argument("--check",
                        dest="CHECK_ONLY",
                        help="Only report whether packages are missing; do not download anything.",
                        action="store_true")
    parser.add_argument("--source",
                        dest="SOURCES",
                        help="Package source URL or folder (repeatable; replaces the configured sources)",
                        action="append", type=str,
                        default=[])
    parser.add_argument("--cache-dir",
                        dest="CACHE_DIR",
                        help="Machine cache directory",
                        action="store", type=str)
    parser.add_argument("--no-cache",
                        dest="NO_CACHE",
                        help="Do not read from or write to the machine cache.",
                        action="store_true")
    parser.add_argument("--workers",
                        dest="WORKERS",
                        help="Number of packages fetched in parallel",
                        action="store", type=int)
    parser.add_argument("-o", "--output",
                        dest="OUTPUT",
                        help="Path to a JSON report file",
                        action="store",
                        type=str)
    parser.add_argument("-c", "--config",
                        dest="CONFIG",
                        help="Path to a YAML configuration file",
                        action="store",
                        type=str)
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
    parser.add_argument("-q", "--quiet",
                        dest="QUIET",
                        help="Do not output to console.",
                        action="store_true")

    return parser.parse_args(argv)
