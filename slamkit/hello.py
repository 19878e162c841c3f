"""Greeting helpers and the hello command."""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence

GREETING = "Hello SLAM"


def print_hello() -> str:
    """Write the library greeting to standard output and return the line written."""
    line = f"{GREETING}\n"
    sys.stdout.write(line)
    sys.stdout.flush()
    return line


def _build_parser() -> argparse.ArgumentParser:
    return argparse.ArgumentParser(
        prog="hello",
        description="Print a greeting.",
    )


def main(argv: Sequence[str] | None = None) -> int:
    """Print the program greeting and return the exit status."""
    parser = _build_parser()
    parser.parse_args(list(sys.argv[1:] if argv is None else argv))
    sys.stdout.write(f"{GREETING}!\n")
    sys.stdout.flush()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())