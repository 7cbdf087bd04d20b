"""gitshift env [ALIAS]

Prints shell export lines; use as: eval "$(gitshift env)"
"""

import shlex


def register(subparsers):
    p = subparsers.add_parser("env", help="Print export lines for the current (or given) identity")
    p.add_argument("alias", nargs="?", help="Identity (default: current)")
    p.set_defaults(handler=handle)


def handle(args, switcher):
    config = switcher.config_store.load()
    for name, value in sorted(switcher.environment_for(config, args.alias).items()):
        print(f"export {name}={shlex.quote(value)}")
    return 0
