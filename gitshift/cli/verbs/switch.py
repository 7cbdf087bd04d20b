"""gitshift switch <alias> [--repo PATH]"""

from gitshift.cli.output import print_result


def register(subparsers):
    p = subparsers.add_parser("switch", help="Make an identity current")
    p.add_argument("alias", help="Identity to switch to")
    p.add_argument("--repo", help="Repository for identities with local git scope (default: cwd)")
    p.set_defaults(handler=handle)


def handle(args, switcher):
    config = switcher.config_store.load()
    report = switcher.switch(config, args.alias, repo_path=args.repo)
    result = report.to_dict()
    if not report.success:
        result["hint"] = f"run 'gitshift diagnose --target {args.alias}' to see what is out of step"
    print_result(result)
    return 0 if report.success else 1
