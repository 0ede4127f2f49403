"""nupack - package restore for solutions using packages.config

    Returns:
        int: Exit code
"""
import json
import logging
import sys

from args import parse_args
from common.logging_utils import configure_logging, extra_context, is_debug_enabled
from constants import Constants, ExitCodes, _load_yaml_config, apply_config
from errors import FeedError, SolutionNotAvailableError
from registry.cache import MachineCache
from registry.sources import PackageSource, PackageSourceProvider
from restore.coordinator import RestoreCoordinator, RestoreReport, RestoreState
from restore.solution import Solution

logger = logging.getLogger(__name__)


def export_json(report, path):
    """Exports the restore report to a JSON file.

    Args:
        report (RestoreReport): Report of the finished run.
        path (str): File path to export the JSON.

    Returns:
        bool: True when the file was written.
    """
    try:
        with open(path, 'w', encoding='utf-8') as file:
            json.dump(report.as_dict(), file, ensure_ascii=False, indent=4)
        logging.info("JSON report has been successfully exported at: %s", path)
        return True
    except OSError as e:
        logging.error("JSON report couldn't be written to disk: %s", e)
        return False


def _caused_by_feed(error):
    while error is not None:
        if isinstance(error, FeedError):
            return True
        error = error.__cause__
    return False


def exit_code_for(report: RestoreReport) -> ExitCodes:
    """Map a finished report to the process exit code."""
    if report.state == RestoreState.FAILED:
        return ExitCodes.FILE_ERROR
    if not report.has_errors:
        return ExitCodes.SUCCESS
    errors = [f.error for f in report.failures if f.error is not None]
    if errors and all(_caused_by_feed(e) for e in errors):
        return ExitCodes.CONNECTION_ERROR
    return ExitCodes.RESTORE_ERRORS


def build_sources(args):
    """Package sources from ``--source`` flags, else from configuration."""
    if args.SOURCES:
        return PackageSourceProvider(
            PackageSource(f"source{i + 1}", url) for i, url in enumerate(args.SOURCES)
        )
    return PackageSourceProvider()


def print_summary(report: RestoreReport):
    for pkg_id, version in report.installed:
        print(f"Restored {pkg_id} {version}")
    for failure in report.failures:
        label = f"{failure.package_id} {failure.version}" if failure.package_id else "restore"
        print(f"FAILED  {label}: {failure.reason}")
    for conflict in report.conflicts:
        print(f"CONFLICT {conflict}")
    if not report.installed and not report.failures:
        print("All packages are already installed.")


def run(args) -> int:
    """Run one restore (or check) for the parsed arguments."""
    apply_config(_load_yaml_config(args.CONFIG))
    if args.CACHE_DIR:
        Constants.MACHINE_CACHE_DIR = args.CACHE_DIR
    if args.WORKERS is not None:
        Constants.MAX_FETCH_WORKERS = max(1, args.WORKERS)

    if is_debug_enabled(logger):
        logger.debug(
            "CLI start",
            extra=extra_context(event="function_entry", component="cli", action="run",
                                target=args.SOLUTION_DIR, check_only=args.CHECK_ONLY),
        )

    try:
        solution = Solution.open(args.SOLUTION_DIR)
    except SolutionNotAvailableError as exc:
        logger.error("%s", exc)
        return ExitCodes.FILE_ERROR.value

    if args.CHECK_ONLY:
        coordinator = RestoreCoordinator(solution, remotes=[])
        try:
            missing = coordinator.check_for_missing_packages()
        except (OSError, ValueError) as exc:
            logger.error("Couldn't read package references: %s", exc)
            return ExitCodes.FILE_ERROR.value
        if not args.QUIET:
            print("Packages are missing." if missing else "All packages are installed.")
        return ExitCodes.MISSING_PACKAGES.value if missing else ExitCodes.SUCCESS.value

    machine_cache = None if args.NO_CACHE else MachineCache(Constants.MACHINE_CACHE_DIR)
    coordinator = RestoreCoordinator(
        solution,
        remotes=build_sources(args).create_repositories(),
        machine_cache=machine_cache,
    )
    report = coordinator.run()

    if not args.QUIET:
        print_summary(report)
    if args.OUTPUT and not export_json(report, args.OUTPUT):
        return ExitCodes.FILE_ERROR.value
    return exit_code_for(report).value


def main(argv=None):
    """Main function of the program."""
    args = parse_args(argv)
    configure_logging("CRITICAL" if args.QUIET else args.LOG_LEVEL, args.LOG_FILE)
    logging.info("Arguments parsed.")
    sys.exit(run(args))


if __name__ == "__main__":
    main()
