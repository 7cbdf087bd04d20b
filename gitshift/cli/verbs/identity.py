"""gitshift identity add|list|show|remove|discover"""

from gitshift.cli.output import print_result
from gitshift.discovery import discover_identities
from gitshift.models import GitScope, Identity, SigningFormat
from gitshift.platform import get_platform
from gitshift.primitives.errors import (
    AgentUnreachable,
    ConfigurationError,
    ExternalToolFailed,
    ExternalToolTimeout,
)


def register(subparsers):
    p = subparsers.add_parser("identity", help="Manage identities")
    actions = p.add_subparsers(dest="action", required=True)

    add = actions.add_parser("add", help="Add an identity")
    add.add_argument("alias", help="Short name, e.g. 'work'")
    add.add_argument("--name", required=True, help="Git user.name")
    add.add_argument("--email", required=True, help="Git user.email")
    add.add_argument("--username", default="", help="Account name on the platform")
    add.add_argument("--platform", default="github", choices=["github", "gitlab", "bitbucket"])
    key = add.add_mutually_exclusive_group()
    key.add_argument("--key", help="Existing private key path")
    key.add_argument("--generate-key", action="store_true",
                     help="Generate ~/.ssh/id_ed25519_<alias> for this identity")
    add.add_argument("--scope", default="global", choices=[s.value for s in GitScope],
                     help="Where git user.* is written on switch (default: global)")
    add.add_argument("--sign", action="store_true", help="Sign commits and tags")
    add.add_argument("--signing-format", default="ssh", choices=[f.value for f in SigningFormat])
    add.add_argument("--signing-key", help="Signing key (default for ssh: the identity's public key)")
    add.add_argument("--description", help="Free-form note stored in metadata")
    add.set_defaults(handler=handle_add)

    ls = actions.add_parser("list", help="List identities")
    ls.set_defaults(handler=handle_list)

    show = actions.add_parser("show", help="Show one identity")
    show.add_argument("alias")
    show.set_defaults(handler=handle_show)

    rm = actions.add_parser("remove", help="Remove an identity and its stored token")
    rm.add_argument("alias")
    rm.set_defaults(handler=handle_remove)

    disc = actions.add_parser("discover", help="Propose identities for existing SSH keys")
    disc.add_argument("--add", action="store_true", help="Add every addable proposal")
    disc.add_argument("--platform", default="github", choices=["github", "gitlab", "bitbucket"])
    disc.add_argument("--check-ssh", action="store_true",
                      help="Authenticate each key over SSH to learn its platform account")
    disc.set_defaults(handler=handle_discover)


def handle_add(args, switcher):
    config = switcher.config_store.load()
    identity = Identity(
        alias=args.alias,
        name=args.name,
        email=args.email,
        platform_username=args.username,
        platform=args.platform,
        key_path=args.key,
        metadata={"description": args.description} if args.description else {},
    )
    identity.isolation.git.scope = GitScope(args.scope)
    identity.signing.enabled = args.sign
    identity.signing.format = SigningFormat(args.signing_format)
    identity.signing.key = args.signing_key
    identity.validate()
    if identity.alias in config.identities:
        raise ConfigurationError(f"Identity {identity.alias!r} already exists", field="alias")

    result = {}
    if args.generate_key:
        path = switcher.key_store.default_key_path(identity.alias)
        record = switcher.key_store.generate(email=identity.email, path=path)
        identity.key_path = record.private_path
        result["key"] = record.to_dict()

    switcher.add_identity(config, identity)
    result["identity"] = {"alias": identity.alias, **identity.to_dict()}
    print_result(result)
    return 0


def handle_list(args, switcher):
    config = switcher.config_store.load()
    print_result({
        "current": config.current,
        "identities": [
            {
                "alias": i.alias,
                "name": i.name,
                "email": i.email,
                "platform": i.platform,
                "key_path": i.key_path,
                "current": i.alias == config.current,
                "last_used": i.last_used,
            }
            for i in sorted(config.identities.values(), key=lambda i: i.alias)
        ],
    })
    return 0


def handle_show(args, switcher):
    config = switcher.config_store.load()
    identity = switcher.load_identity(config, args.alias)
    print_result({
        "alias": identity.alias,
        "current": identity.alias == config.current,
        "token_stored": switcher.vault.exists(identity.alias),
        **identity.to_dict(),
    })
    return 0


def handle_remove(args, switcher):
    config = switcher.config_store.load()
    removed = switcher.remove_identity(config, args.alias)
    print_result({"removed": removed.alias, "current": config.current})
    return 0


def handle_discover(args, switcher):
    config = switcher.config_store.load()
    try:
        loaded = switcher.agent.list_fingerprints()
    except (AgentUnreachable, ExternalToolFailed, ExternalToolTimeout):
        # in_agent stays unknown
        loaded = None
    platform = switcher.platforms.get(args.platform) or get_platform(args.platform)
    found = discover_identities(
        switcher.key_store,
        config,
        agent_fingerprints=loaded,
        platform=platform if args.check_ssh else None,
    )

    added = []
    if args.add:
        for proposal in found:
            if proposal.addable:
                switcher.add_identity(config, proposal.to_identity(platform=args.platform))
                added.append(proposal.alias)
    print_result({"discovered": [p.to_dict() for p in found], "added": added})
    return 0
