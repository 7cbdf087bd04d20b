"""gitshift CLI entry point.

One verb module per command; each registers its subparser and a handler
taking (args, switcher). Results go to stdout as JSON, errors to stderr.
"""

import argparse
import logging
import sys
from typing import List, Optional

from gitshift import __version__
from gitshift.cli.output import print_error
from gitshift.cli.verbs import current, diagnose, env, identity, keys, repos, switch, token
from gitshift.orchestrator import IdentitySwitcher
from gitshift.primitives.errors import GitshiftError
from gitshift.utils.logger import get_logger, set_console_level


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gitshift",
        description="Switch Git hosting identities with isolated SSH keys, agent, git config and tokens",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging on stderr",
    )

    sub = parser.add_subparsers(dest="verb", required=True)

    identity.register(sub)
    switch.register(sub)
    current.register(sub)
    diagnose.register(sub)
    token.register(sub)
    keys.register(sub)
    repos.register(sub)
    env.register(sub)

    return parser


def main(argv: Optional[List[str]] = None, switcher: Optional[IdentitySwitcher] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logger = get_logger("gitshift")
    if args.debug:
        set_console_level(logger, logging.DEBUG)

    switcher = switcher or IdentitySwitcher()
    try:
        code = args.handler(args, switcher)
    except GitshiftError as e:
        logger.debug(f"{args.verb} failed", exc_info=True)
        print_error(e.to_dict())
        code = 1

    if argv is None:
        sys.exit(code or 0)
    return code or 0


if __name__ == "__main__":
    main()
