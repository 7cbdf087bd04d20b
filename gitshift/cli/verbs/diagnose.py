"""gitshift diagnose [--target ALIAS] [--probe] [--fix]"""

from gitshift.cli.output import print_result
from gitshift.diagnostics import Diagnostics


def register(subparsers):
    p = subparsers.add_parser("diagnose", help="Check that SSH config, agent, git and vault agree")
    p.add_argument("--target", help="Identity to check against (default: current)")
    p.add_argument("--repo", help="Repository for identities with local git scope")
    p.add_argument("--probe", action="store_true", help="Also try an SSH login to the platform")
    p.add_argument("--fix", action="store_true", help="Apply auto-fixes, then diagnose again")
    p.set_defaults(handler=handle)


def handle(args, switcher):
    config = switcher.config_store.load()
    diagnostics = Diagnostics(switcher)
    issues = diagnostics.diagnose(config, target=args.target, probe=args.probe, repo_path=args.repo)
    result = {"target": args.target or config.current, "issues": [i.to_dict() for i in issues]}

    if args.fix and issues:
        fixes = diagnostics.auto_fix(config, issues, target=args.target, repo_path=args.repo)
        result["fixes"] = [f.to_dict() for f in fixes]
        issues = diagnostics.diagnose(config, target=args.target, probe=args.probe, repo_path=args.repo)
        result["remaining"] = [i.to_dict() for i in issues]

    print_result(result)
    return 0 if not issues else 1
