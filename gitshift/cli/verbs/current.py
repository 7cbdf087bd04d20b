"""gitshift current"""

from gitshift.cli.output import print_result


def register(subparsers):
    p = subparsers.add_parser("current", help="Show the current identity")
    p.set_defaults(handler=handle)


def handle(args, switcher):
    config = switcher.config_store.load()
    identity = config.current_identity
    if identity is None:
        print_result({"current": config.current})
        return 0 if config.current is None else 1
    print_result({
        "current": identity.alias,
        "name": identity.name,
        "email": identity.email,
        "platform": identity.platform,
        "key_path": identity.key_path,
        "last_used": identity.last_used,
    })
    return 0
