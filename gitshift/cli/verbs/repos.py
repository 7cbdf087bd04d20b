"""gitshift repos [ALIAS]"""

from gitshift.cli.output import print_result
from gitshift.primitives.errors import ConfigurationError


def register(subparsers):
    p = subparsers.add_parser("repos", help="List repositories visible to an identity's token")
    p.add_argument("alias", nargs="?", help="Identity (default: current)")
    p.set_defaults(handler=handle)


def handle(args, switcher):
    config = switcher.config_store.load()
    alias = args.alias or config.current
    if not alias:
        raise ConfigurationError("No current identity; pass an alias", field="current")
    identity = switcher.load_identity(config, alias)
    repos = switcher.list_repos(identity)
    print_result({"alias": alias, "platform": identity.platform, "count": len(repos), "repos": repos})
    return 0
