"""Shared output utilities for CLI verbs."""

import json
import sys
from typing import Dict, NoReturn


def print_result(result: Dict, compact: bool = False) -> None:
    """Print a result dict as JSON to stdout."""
    indent = None if compact else 2
    print(json.dumps(result, indent=indent, default=str))


def print_error(error: Dict) -> None:
    """Print an error object as JSON to stderr."""
    print(json.dumps({"error": error}, indent=2, default=str), file=sys.stderr)


def die(msg: str, code: int = 1) -> NoReturn:
    """Print error to stderr and exit."""
    print(f"error: {msg}", file=sys.stderr)
    sys.exit(code)
