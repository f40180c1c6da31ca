"""pkg-cruft: find leftovers of partial upgrades and removed packages.

Read-only and advisory. Exactly one subcommand per run:
- checkrestart  processes running deleted executables or libraries
- libcheck      packaged objects linking missing/unpackaged/compat/defunct libraries
- files         files under PREFIX not owned by any package
- dirs          directories under PREFIX holding no packaged files
- defunct       installed packages no longer available remotely

Environment: PREFIX, CONCURRENCY, IGNORE_UNPACKAGED, IGNORE_LDD.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time

from .commands import Command, Toolbox, run_audit
from .config import ConfigError, CruftConfig
from .probes import ProbeError

APP_NAME = "pkg_cruft"
EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 2

LOGGER = logging.getLogger(APP_NAME)


def configure_logging(level: int = logging.WARNING) -> logging.Logger:
    logger = logging.getLogger(APP_NAME)
    logger.setLevel(level)
    if logger.handlers:
        return logger
    sh = logging.StreamHandler(sys.stderr)
    sh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(sh)
    return logger


class UsageParser(argparse.ArgumentParser):
    """Report usage problems on stdout with status 1."""

    def error(self, message: str) -> None:  # type: ignore[override]
        self.print_usage(sys.stdout)
        print(f"{self.prog}: error: {message}")
        raise SystemExit(EXIT_FAILURE)


def build_parser() -> argparse.ArgumentParser:
    p = UsageParser(
        prog="pkg-cruft",
        add_help=False,
        description=__doc__.split("\n", 1)[0],
        epilog="Environment: PREFIX (default /usr/local), CONCURRENCY (1-32, default 16), "
        "IGNORE_UNPACKAGED and IGNORE_LDD (colon-separated globs relative to PREFIX).",
    )
    p.add_argument("command", choices=[c.value for c in Command])
    p.add_argument("-v", "--verbose", action="count", default=0, help="-v for progress, -vv for probe detail")
    return p


def _silence_stdout() -> None:
    devnull = os.open(os.devnull, os.O_WRONLY)
    os.dup2(devnull, sys.stdout.fileno())


def main(argv: list[str] | None = None, tools: Toolbox | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose > 1 else logging.INFO if args.verbose else logging.WARNING)

    command = Command(args.command)
    started = time.perf_counter()
    count = 0
    try:
        config = CruftConfig.from_env()
        for finding in run_audit(command, config, tools):
            print(finding)
            count += 1
        sys.stdout.flush()
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return EXIT_INTERRUPTED
    except BrokenPipeError:
        _silence_stdout()
        return EXIT_FAILURE
    except (ProbeError, ConfigError) as exc:
        LOGGER.error("audit_failed command=%s err=%s", command.value, exc)
        return EXIT_FAILURE

    LOGGER.info(
        "audit_complete command=%s findings=%s duration_sec=%.3f",
        command.value,
        count,
        time.perf_counter() - started,
    )
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())
