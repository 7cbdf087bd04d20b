"""gitshift token set|get|verify|delete|list"""

import getpass
import sys

from gitshift.cli.output import die, print_result
from gitshift.runtime.vault import detect_token_type, mask_token


def register(subparsers):
    p = subparsers.add_parser("token", help="Manage encrypted platform tokens")
    actions = p.add_subparsers(dest="action", required=True)

    store = actions.add_parser("set", help="Store a token (read from stdin or prompt)")
    store.add_argument("alias")
    store.set_defaults(handler=handle_set)

    get = actions.add_parser("get", help="Show a stored token, masked")
    get.add_argument("alias")
    get.add_argument("--reveal", action="store_true", help="Print the token in clear")
    get.set_defaults(handler=handle_get)

    verify = actions.add_parser("verify", help="Check which platform account a stored token belongs to")
    verify.add_argument("alias")
    verify.set_defaults(handler=handle_verify)

    delete = actions.add_parser("delete", help="Delete a stored token")
    delete.add_argument("alias")
    delete.set_defaults(handler=handle_delete)

    ls = actions.add_parser("list", help="Aliases with a stored token")
    ls.set_defaults(handler=handle_list)


def _read_token() -> str:
    if sys.stdin.isatty():
        return getpass.getpass("Token: ").strip()
    return sys.stdin.readline().strip()


def handle_set(args, switcher):
    config = switcher.config_store.load()
    switcher.load_identity(config, args.alias)
    value = _read_token()
    if not value:
        die("no token given")
    path = switcher.vault.store(args.alias, value)
    print_result({"alias": args.alias, "stored": str(path), "type": detect_token_type(value)})
    return 0


def handle_get(args, switcher):
    value = switcher.vault.retrieve(args.alias)
    print_result({
        "alias": args.alias,
        "type": detect_token_type(value),
        "token": value if args.reveal else mask_token(value),
    })
    return 0


def handle_verify(args, switcher):
    config = switcher.config_store.load()
    identity = switcher.load_identity(config, args.alias)
    account = switcher.verify_token(identity)
    print_result({
        "alias": args.alias,
        "platform": identity.platform,
        "account": account,
        "expected": identity.platform_username or None,
    })
    return 0


def handle_delete(args, switcher):
    print_result({"alias": args.alias, "deleted": switcher.vault.delete(args.alias)})
    return 0


def handle_list(args, switcher):
    print_result({"aliases": switcher.vault.list_aliases()})
    return 0
