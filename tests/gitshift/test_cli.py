"""Tests for the gitshift CLI verbs."""

import io
import json
import logging

import httpx
import pytest

from gitshift.cli.main import build_parser, main
from gitshift.config_store import ConfigStore


@pytest.fixture(autouse=True)
def reset_logger():
    """main() attaches handlers to the gitshift logger; drop them between tests."""
    yield
    logger = logging.getLogger("gitshift")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def run(capsys, switcher, *argv):
    code = main(list(argv), switcher=switcher)
    out, err = capsys.readouterr()
    return code, out, err


def error_of(err):
    """The JSON error object printed after any log lines."""
    return json.loads(err[err.index("{"):])["error"]


class TestParser:
    def test_verbs_registered(self):
        parser = build_parser()
        args = parser.parse_args(["switch", "work", "--repo", "/src/app"])
        assert args.alias == "work"
        assert args.repo == "/src/app"
        assert callable(args.handler)

    def test_verb_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestIdentityVerbs:
    def test_add_with_generated_key(self, capsys, switcher):
        code, out, _ = run(
            capsys, switcher,
            "identity", "add", "work", "--name", "Work Me", "--email", "w@co.com",
            "--username", "workme", "--generate-key", "--description", "Day job",
        )
        assert code == 0
        result = json.loads(out)
        assert result["key"]["fingerprint"].startswith("SHA256:")
        assert result["identity"]["metadata"] == {"description": "Day job"}
        stored = ConfigStore().load().get("work")
        assert stored.key_path == result["key"]["private_path"]
        assert stored.platform_username == "workme"

    def test_add_duplicate(self, capsys, switcher, config):
        code, _, err = run(capsys, switcher, "identity", "add", "work", "--name", "X", "--email", "x@co.com")
        assert code == 1
        assert error_of(err)["code"] == "CONFIGURATION_ERROR"

    def test_add_invalid_email(self, capsys, switcher):
        code, _, err = run(capsys, switcher, "identity", "add", "work", "--name", "X", "--email", "nope")
        assert code == 1
        assert error_of(err)["field"] == "email"

    def test_list(self, capsys, switcher, config):
        switcher.switch(config, "work")
        code, out, _ = run(capsys, switcher, "identity", "list")
        result = json.loads(out)
        assert code == 0
        assert result["current"] == "work"
        assert [i["alias"] for i in result["identities"]] == ["personal", "work"]
        assert [i["current"] for i in result["identities"]] == [False, True]

    def test_show_unknown(self, capsys, switcher, config):
        code, _, err = run(capsys, switcher, "identity", "show", "nobody")
        assert code == 1
        assert error_of(err) == {"code": "UNKNOWN_IDENTITY", "message": "Unknown identity: 'nobody'", "alias": "nobody"}

    def test_show(self, capsys, switcher, config):
        code, out, _ = run(capsys, switcher, "identity", "show", "personal")
        result = json.loads(out)
        assert result["email"] == "p@me.com"
        assert result["token_stored"] is False

    def test_remove(self, capsys, switcher, config):
        code, out, _ = run(capsys, switcher, "identity", "remove", "personal")
        assert code == 0
        assert json.loads(out)["removed"] == "personal"
        assert "personal" not in ConfigStore().load().identities


class TestSwitchVerbs:
    def test_switch_and_current(self, capsys, switcher, config):
        code, out, _ = run(capsys, switcher, "switch", "work")
        assert code == 0
        assert json.loads(out)["success"] is True

        code, out, _ = run(capsys, switcher, "current")
        assert code == 0
        assert json.loads(out)["email"] == "w@co.com"

    def test_switch_failure(self, capsys, switcher, config):
        code, out, _ = run(capsys, switcher, "switch", "nobody")
        result = json.loads(out)
        assert code == 1
        assert result["failed_step"] == "load_identity"
        assert result["error"]["code"] == "UNKNOWN_IDENTITY"
        assert "gitshift diagnose --target nobody" in result["hint"]

    def test_current_when_none(self, capsys, switcher, config):
        code, out, _ = run(capsys, switcher, "current")
        assert code == 0
        assert json.loads(out) == {"current": None}


class TestDiagnoseVerb:
    def test_clean(self, capsys, switcher, config):
        switcher.switch(config, "work")
        code, out, _ = run(capsys, switcher, "diagnose")
        assert code == 0
        assert json.loads(out) == {"target": "work", "issues": []}

    def test_fix(self, capsys, switcher, config, fake_git):
        switcher.switch(config, "work")
        fake_git.values["global"]["user.email"] = "drift@else.com"
        code, out, _ = run(capsys, switcher, "diagnose", "--fix")
        result = json.loads(out)
        assert code == 0
        assert [i["code"] for i in result["issues"]] == ["git_email_mismatch"]
        assert result["fixes"][0]["fixed"] is True
        assert result["remaining"] == []

    def test_issues_exit_nonzero(self, capsys, switcher, config, fake_git):
        switcher.switch(config, "work")
        fake_git.values["global"]["user.name"] = "Someone"
        code, out, _ = run(capsys, switcher, "diagnose")
        assert code == 1
        assert json.loads(out)["issues"][0]["code"] == "git_name_mismatch"


class TestTokenVerbs:
    def test_set_get_list_delete(self, capsys, switcher, config, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO("ghp_0123456789abcdefghij\n"))
        code, out, _ = run(capsys, switcher, "token", "set", "work")
        assert code == 0
        assert json.loads(out)["type"] == "github_personal"

        code, out, _ = run(capsys, switcher, "token", "get", "work")
        assert json.loads(out)["token"] == "ghp_...ghij"

        code, out, _ = run(capsys, switcher, "token", "get", "work", "--reveal")
        assert json.loads(out)["token"] == "ghp_0123456789abcdefghij"

        code, out, _ = run(capsys, switcher, "token", "list")
        assert json.loads(out) == {"aliases": ["work"]}

        code, out, _ = run(capsys, switcher, "token", "delete", "work")
        assert json.loads(out)["deleted"] is True

    def test_set_for_unknown_identity(self, capsys, switcher, config, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO("ghp_x\n"))
        code, _, err = run(capsys, switcher, "token", "set", "nobody")
        assert code == 1
        assert error_of(err)["code"] == "UNKNOWN_IDENTITY"

    def test_empty_token(self, capsys, switcher, config, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO("\n"))
        with pytest.raises(SystemExit):
            run(capsys, switcher, "token", "set", "work")

    def test_get_missing(self, capsys, switcher, config):
        code, _, err = run(capsys, switcher, "token", "get", "work")
        assert code == 1
        assert error_of(err)["code"] == "VAULT_ENTRY_NOT_FOUND"


class TestKeysVerbs:
    def test_generate_list_validate(self, capsys, switcher):
        code, out, _ = run(capsys, switcher, "keys", "generate", "oss", "--email", "oss@me.com")
        assert code == 0
        record = json.loads(out)
        assert record["private_mode"] == "0600"

        code, out, _ = run(capsys, switcher, "keys", "list")
        assert [k["fingerprint"] for k in json.loads(out)["keys"]] == [record["fingerprint"]]

        code, out, _ = run(capsys, switcher, "keys", "validate", record["private_path"])
        assert code == 0
        assert json.loads(out)["secure"] is True

    def test_generate_weak_rsa(self, capsys, switcher):
        code, _, err = run(
            capsys, switcher, "keys", "generate", "old", "--email", "o@me.com", "--algorithm", "rsa", "--bits", "2048"
        )
        assert code == 1
        assert error_of(err)["code"] == "KEY_POLICY_VIOLATION"


class TestEnvVerb:
    def test_exports(self, capsys, switcher, config):
        switcher.switch(config, "personal")
        code, out, _ = run(capsys, switcher, "env")
        assert code == 0
        assert "export GIT_AUTHOR_NAME='Personal Me'" in out.splitlines()
        assert "export GIT_COMMITTER_EMAIL=p@me.com" in out.splitlines()


def github(routes, seen):
    """MockTransport answering (method, path) from routes and recording requests."""
    def handler(request):
        seen.append(request)
        response = routes.get((request.method, request.url.path))
        return response if response is not None else httpx.Response(404)
    return httpx.MockTransport(handler)


class TestPlatformVerbs:
    def test_token_verify(self, capsys, switcher, config):
        switcher.vault.store("work", "ghp_worktoken")
        seen = []
        switcher.http_transport = github({("GET", "/user"): httpx.Response(200, json={"login": "work-user"})}, seen)

        code, out, _ = run(capsys, switcher, "token", "verify", "work")

        assert code == 0
        assert json.loads(out)["account"] == "work-user"
        assert seen[0].headers["Authorization"] == "token ghp_worktoken"

    def test_token_verify_wrong_account(self, capsys, switcher, config):
        switcher.vault.store("work", "ghp_personaltoken")
        switcher.http_transport = github({("GET", "/user"): httpx.Response(200, json={"login": "personal-user"})}, [])
        code, _, err = run(capsys, switcher, "token", "verify", "work")
        assert code == 1
        assert error_of(err)["code"] == "TOKEN_OWNER_MISMATCH"

    def test_keys_upload(self, capsys, switcher, config):
        switcher.vault.store("work", "ghp_worktoken")
        seen = []
        switcher.http_transport = github({
            ("GET", "/user"): httpx.Response(200, json={"login": "work-user"}),
            ("POST", "/user/keys"): httpx.Response(201, json={"id": 42, "title": "laptop"}),
        }, seen)

        code, out, _ = run(capsys, switcher, "keys", "upload", "work", "--title", "laptop")

        assert code == 0
        assert json.loads(out)["id"] == 42
        body = json.loads(seen[-1].read())
        with open(config.get("work").public_key_path) as f:
            assert body == {"title": "laptop", "key": f.read().strip()}

    def test_keys_upload_refused_by_owner_check(self, capsys, switcher, config):
        switcher.vault.store("work", "ghp_personaltoken")
        seen = []
        switcher.http_transport = github({("GET", "/user"): httpx.Response(200, json={"login": "personal-user"})}, seen)
        code, _, err = run(capsys, switcher, "keys", "upload", "work")
        assert code == 1
        assert error_of(err)["code"] == "TOKEN_OWNER_MISMATCH"
        assert [r.method for r in seen] == ["GET"]

    def test_repos_for_current(self, capsys, switcher, config):
        switcher.switch(config, "work")
        switcher.vault.store("work", "ghp_worktoken")
        switcher.http_transport = github({
            ("GET", "/user"): httpx.Response(200, json={"login": "work-user"}),
            ("GET", "/user/repos"): httpx.Response(200, json=[{"full_name": "co/api"}, {"full_name": "co/web"}]),
        }, [])

        code, out, _ = run(capsys, switcher, "repos")

        assert code == 0
        assert json.loads(out) == {"alias": "work", "platform": "github", "count": 2, "repos": ["co/api", "co/web"]}

    def test_repos_without_current(self, capsys, switcher, config):
        code, _, err = run(capsys, switcher, "repos")
        assert code == 1
        assert error_of(err)["code"] == "CONFIGURATION_ERROR"

    def test_repos_without_token(self, capsys, switcher, config):
        code, _, err = run(capsys, switcher, "repos", "personal")
        assert code == 1
        assert error_of(err)["code"] == "VAULT_ENTRY_NOT_FOUND"


class TestDiscoverVerb:
    def test_dry_run(self, capsys, switcher, config, key_store):
        key_store.generate(email="oss@me.com", path=key_store.key_dir / "id_ed25519_oss")

        code, out, _ = run(capsys, switcher, "identity", "discover")

        result = json.loads(out)
        assert code == 0
        assert result["added"] == []
        oss = [d for d in result["discovered"] if d["alias"] == "oss"][0]
        assert oss["addable"] is True
        assert oss["in_agent"] is False
        assert "oss" not in ConfigStore().load().identities

    def test_add(self, capsys, switcher, config, key_store):
        record = key_store.generate(email="oss@me.com", path=key_store.key_dir / "id_ed25519_oss")

        code, out, _ = run(capsys, switcher, "identity", "discover", "--add")

        assert code == 0
        assert json.loads(out)["added"] == ["oss"]
        stored = ConfigStore().load().get("oss")
        assert stored.email == "oss@me.com"
        assert stored.key_path == record.private_path
