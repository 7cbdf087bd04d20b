"""Tests for the git config writer."""

import shutil

import pytest

from gitshift.models import GitScope, Identity, SigningFormat, SigningSettings
from gitshift.primitives.errors import ConfigurationError, ExternalToolFailed
from gitshift.primitives.subprocess import SubprocessPrimitive
from gitshift.runtime.git_config import GitConfigWriter, is_gitshift_ssh_command, ssh_command_for


def make_identity(**kwargs):
    identity = Identity(alias="work", name="Work Me", email="w@co.com", key_path="/k/id_ed25519_work")
    for key, value in kwargs.items():
        setattr(identity, key, value)
    return identity


class TestSshCommand:
    def test_format(self):
        assert ssh_command_for("/k/id") == "ssh -i /k/id -o IdentitiesOnly=yes"

    def test_quotes_spaces(self):
        assert ssh_command_for("/my keys/id") == "ssh -i '/my keys/id' -o IdentitiesOnly=yes"

    def test_recognizes_own_format(self):
        assert is_gitshift_ssh_command(ssh_command_for("/k/id"))
        assert not is_gitshift_ssh_command("ssh -v")
        assert not is_gitshift_ssh_command(None)


class TestApplyGlobal:
    """GitConfigWriter.apply_global."""

    def test_sets_name_and_email(self, runner):
        runner.responder = lambda command: runner.fail(1) if "--get" in command else runner.ok()
        GitConfigWriter(runner=runner).apply_global(make_identity())
        assert ["git", "config", "--global", "user.name", "Work Me"] in runner.calls
        assert ["git", "config", "--global", "user.email", "w@co.com"] in runner.calls
        assert ["git", "config", "--global", "commit.gpgsign", "false"] in runner.calls
        assert not any("core.sshCommand" in call and "--get" not in call for call in runner.calls)

    def test_removes_own_global_ssh_command(self, runner):
        """A global core.sshCommand written by gitshift is removed."""
        def respond(command):
            if command[-2:] == ["--get", "core.sshCommand"]:
                return runner.ok(ssh_command_for("/k/old") + "\n")
            if "--get" in command:
                return runner.fail(1)
            return runner.ok()
        runner.responder = respond
        GitConfigWriter(runner=runner).apply_global(make_identity())
        assert ["git", "config", "--global", "--unset-all", "core.sshCommand"] in runner.calls

    def test_keeps_foreign_global_ssh_command(self, runner):
        def respond(command):
            if command[-2:] == ["--get", "core.sshCommand"]:
                return runner.ok("ssh -F ~/.ssh/other\n")
            return runner.ok()
        runner.responder = respond
        GitConfigWriter(runner=runner).apply_global(make_identity())
        assert ["git", "config", "--global", "--unset-all", "core.sshCommand"] not in runner.calls

    def test_failure_raises(self, runner):
        runner.responder = lambda command: runner.fail(3, stderr="error: could not lock config file")
        with pytest.raises(ExternalToolFailed) as exc_info:
            GitConfigWriter(runner=runner).apply_global(make_identity())
        assert exc_info.value.return_code == 3


class TestApplyLocal:
    def test_pins_ssh_command(self, runner, tmp_path):
        GitConfigWriter(runner=runner).apply_local(make_identity(), str(tmp_path))
        assert ["git", "-C", str(tmp_path), "config", "--local", "user.email", "w@co.com"] in runner.calls
        assert [
            "git", "-C", str(tmp_path), "config", "--local",
            "core.sshCommand", "ssh -i /k/id_ed25519_work -o IdentitiesOnly=yes",
        ] in runner.calls

    def test_pin_disabled_drops_own_command(self, runner, tmp_path):
        identity = make_identity()
        identity.isolation.git.pin_ssh_command = False

        def respond(command):
            if command[-2:] == ["--get", "core.sshCommand"]:
                return runner.ok(ssh_command_for("/k/old"))
            return runner.ok()
        runner.responder = respond
        GitConfigWriter(runner=runner).apply_local(identity, str(tmp_path))
        assert ["git", "-C", str(tmp_path), "config", "--local", "--unset-all", "core.sshCommand"] in runner.calls

    def test_apply_dispatches_on_scope(self, runner, tmp_path):
        identity = make_identity()
        identity.isolation.git.scope = GitScope.LOCAL
        GitConfigWriter(runner=runner).apply(identity, str(tmp_path))
        assert all("--local" in call for call in runner.calls)


class TestSigning:
    def test_ssh_signing_defaults_to_public_key(self, runner):
        identity = make_identity(signing=SigningSettings(enabled=True))
        runner.responder = lambda command: runner.fail(1) if "--get" in command else runner.ok()
        GitConfigWriter(runner=runner).apply_global(identity)
        assert ["git", "config", "--global", "user.signingkey", "/k/id_ed25519_work.pub"] in runner.calls
        assert ["git", "config", "--global", "gpg.format", "ssh"] in runner.calls
        assert ["git", "config", "--global", "commit.gpgsign", "true"] in runner.calls
        assert ["git", "config", "--global", "tag.gpgsign", "true"] in runner.calls

    def test_openpgp_needs_key(self, runner):
        identity = make_identity(signing=SigningSettings(enabled=True, format=SigningFormat.OPENPGP))
        with pytest.raises(ConfigurationError):
            GitConfigWriter(runner=runner).apply_global(identity)

    def test_disabled_unsets_key(self, runner):
        runner.responder = lambda command: runner.fail(5) if "--unset-all" in command else runner.ok()
        GitConfigWriter(runner=runner).apply_global(make_identity())
        assert ["git", "config", "--global", "--unset-all", "user.signingkey"] in runner.calls


class TestCurrentConfig:
    def test_reads_values(self, runner):
        values = {"user.name": "Work Me", "user.email": "w@co.com"}

        def respond(command):
            key = command[-1]
            return runner.ok(values[key] + "\n") if key in values else runner.fail(1)
        runner.responder = respond
        current = GitConfigWriter(runner=runner).current_config()
        assert current.name == "Work Me"
        assert current.email == "w@co.com"
        assert current.signing_key is None
        assert current.scope == "global"

    def test_local_scope_needs_repo(self, runner):
        with pytest.raises(ConfigurationError):
            GitConfigWriter(runner=runner).current_config(GitScope.LOCAL)


@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
class TestRealGit:
    """Against git with GIT_CONFIG_GLOBAL pointed at a temp file."""

    @pytest.fixture
    def writer(self, tmp_path, monkeypatch):
        monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(tmp_path / "gitconfig"))
        monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
        return GitConfigWriter()

    def test_global_round_trip(self, writer):
        writer.apply_global(make_identity())
        current = writer.current_config()
        assert (current.name, current.email) == ("Work Me", "w@co.com")
        assert current.gpg_sign == "false"
        assert current.ssh_command is None

    def test_switch_replaces_values(self, writer):
        writer.apply_global(make_identity())
        writer.apply_global(make_identity(alias="personal", name="Personal Me", email="p@me.com"))
        current = writer.current_config()
        assert (current.name, current.email) == ("Personal Me", "p@me.com")

    def test_local_scope(self, writer, tmp_path):
        repo = tmp_path / "repo"
        repo.mkdir()
        assert SubprocessPrimitive().run(["git", "init", "-q", str(repo)]).success
        writer.apply_local(make_identity(), str(repo))
        current = writer.current_config(GitScope.LOCAL, str(repo))
        assert current.email == "w@co.com"
        assert current.ssh_command == ssh_command_for("/k/id_ed25519_work")
        assert writer.current_config().email is None
