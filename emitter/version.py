"""The ``version`` command."""

from __future__ import annotations

import argparse
from typing import Sequence

VERSION = "0"
COMMIT = "untracked"


def version_string() -> str:
    """Describe the version and commit of this build."""
    return f"emitter version {VERSION}, commit {COMMIT}"


def main(argv: Sequence[str] | None = None) -> int:
    """Print the version."""
    parser = argparse.ArgumentParser(prog="emitter version", description="Print the version.")
    parser.parse_args(argv)
    print(version_string())
    return 0