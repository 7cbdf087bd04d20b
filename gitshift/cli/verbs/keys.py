"""gitshift keys generate|list|validate|upload"""

from gitshift.cli.output import print_result
from gitshift.constants import KeyAlgorithm


def register(subparsers):
    p = subparsers.add_parser("keys", help="Manage SSH key pairs")
    actions = p.add_subparsers(dest="action", required=True)

    gen = actions.add_parser("generate", help="Generate a key pair")
    gen.add_argument("alias", help="Identity alias, used in the file name")
    gen.add_argument("--email", required=True, help="Public key comment")
    gen.add_argument("--algorithm", default=KeyAlgorithm.ED25519, choices=KeyAlgorithm.ALL)
    gen.add_argument("--bits", type=int, help="RSA key size (at least 3072)")
    gen.add_argument("--dated", action="store_true", help="Append _YYYYMMDD to the file name")
    gen.add_argument("--overwrite", action="store_true")
    gen.set_defaults(handler=handle_generate)

    ls = actions.add_parser("list", help="List valid key pairs")
    ls.set_defaults(handler=handle_list)

    check = actions.add_parser("validate", help="Validate a key pair")
    check.add_argument("path")
    check.set_defaults(handler=handle_validate)

    upload = actions.add_parser("upload", help="Register an identity's public key on its platform account")
    upload.add_argument("alias")
    upload.add_argument("--title", help="Key title on the platform")
    upload.set_defaults(handler=handle_upload)


def handle_generate(args, switcher):
    store = switcher.key_store
    path = store.default_key_path(args.alias, args.algorithm, dated=args.dated)
    record = store.generate(
        email=args.email,
        path=path,
        algorithm=args.algorithm,
        bits=args.bits,
        overwrite=args.overwrite,
    )
    print_result(record.to_dict())
    return 0


def handle_list(args, switcher):
    print_result({"keys": [r.to_dict() for r in switcher.key_store.list()]})
    return 0


def handle_validate(args, switcher):
    record = switcher.key_store.validate(args.path)
    result = record.to_dict()
    result["secure"] = record.is_secure
    print_result(result)
    return 0 if record.is_secure else 1


def handle_upload(args, switcher):
    config = switcher.config_store.load()
    identity = switcher.load_identity(config, args.alias)
    uploaded = switcher.upload_public_key(identity, title=args.title)
    print_result({
        "alias": identity.alias,
        "platform": identity.platform,
        "key_path": identity.public_key_path,
        "id": uploaded.get("id"),
        "title": uploaded.get("title"),
    })
    return 0
