"""Command line interface for lambda-packager."""

import argparse
import logging
import pathlib
import sys

from lambda_packager import __version__
from lambda_packager.builder import PackagingError, package_executable
from lambda_packager.deps import DependencyError


class _ArgumentParser(argparse.ArgumentParser):
    """Argument parser that reports usage errors with exit code 1."""

    def error(self, message: str) -> None:
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: error: {message}\n")


def _configure_logging(*, verbose: int, quiet: int) -> logging.Logger:
    """Configure the lambda-packager logger.

    :param verbose: Verbosity count (0+).
    :param quiet: Quietness count (0+).
    :returns: Configured logger.
    """

    level: int = logging.INFO
    if quiet >= 2:
        level = logging.ERROR
    elif quiet >= 1:
        level = logging.WARNING
    elif verbose >= 1:
        level = logging.DEBUG

    logger: logging.Logger = logging.getLogger("lambda_packager")
    logger.setLevel(level)
    logger.propagate = False

    handler: logging.Handler = logging.StreamHandler(stream=sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger.handlers.clear()
    logger.addHandler(handler)
    return logger


def build_parser() -> argparse.ArgumentParser:
    parser: argparse.ArgumentParser = _ArgumentParser(
        prog="packager",
        description=(
            "Package an executable and its shared libraries into a zip archive "
            "for a custom serverless runtime."
        ),
    )
    parser.add_argument(
        "executable",
        type=pathlib.Path,
        help="Path to the compiled executable to package.",
    )
    parser.add_argument(
        "-d",
        "--default-libc",
        action="store_true",
        help=(
            "Use the C library of the hosting runtime instead of bundling the one "
            "from this build host."
        ),
    )
    parser.add_argument(
        "-o",
        "--output-dir",
        type=pathlib.Path,
        default=None,
        help="Directory to write <executable>.zip into (defaults to the current directory).",
    )
    parser.add_argument(
        "--compresslevel",
        type=int,
        default=6,
        help="Deflate compression level for the archive (0-9).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Enable verbose logging.",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="count",
        default=0,
        help="Reduce logging. Pass twice to only show errors.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the lambda-packager CLI.

    :param argv: Optional argv list (excluding program name).
    :returns: Exit code.
    """

    parser: argparse.ArgumentParser = build_parser()
    ns = parser.parse_args(argv)

    if ns.executable.is_file() is False:
        parser.error(f"executable does not exist or is not a file: {ns.executable}")

    logger: logging.Logger = _configure_logging(verbose=ns.verbose, quiet=ns.quiet)
    try:
        package_executable(
            executable_path=ns.executable,
            include_libc=not ns.default_libc,
            output_dir=ns.output_dir,
            logger=logger,
            compresslevel=ns.compresslevel,
        )
    except (PackagingError, DependencyError) as e:
        logger.error(f"lambda-packager: error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
