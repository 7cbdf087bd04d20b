"""Shared fixtures for gitshift tests: an isolated home, fake runner, fake agent and git."""

from typing import Callable, Dict, List, Optional

import pytest

from gitshift.config_store import ConfigStore
from gitshift.models import GitshiftConfig, Identity
from gitshift.orchestrator import IdentitySwitcher
from gitshift.primitives.errors import AgentUnreachable, ExternalToolFailed
from gitshift.primitives.keys import KeyStore
from gitshift.primitives.subprocess import SubprocessResult
from gitshift.runtime.git_config import GitIdentityConfig
from gitshift.runtime.ssh_config import SSHConfigManager
from gitshift.runtime.vault import TokenVault


@pytest.fixture(autouse=True)
def gitshift_home(tmp_path, monkeypatch):
    """Point GITSHIFT_HOME at a temp directory for every test."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("GITSHIFT_HOME", str(home))
    monkeypatch.delenv("GITSHIFT_TOOL_TIMEOUT", raising=False)
    return home


class FakeRunner:
    """Stands in for SubprocessPrimitive; answers through a responder callable."""

    def __init__(self, responder: Optional[Callable[[List[str]], SubprocessResult]] = None):
        self.calls: List[List[str]] = []
        self.envs: List[Optional[Dict[str, str]]] = []
        self.responder = responder or (lambda command: self.ok())

    @staticmethod
    def ok(stdout: str = "") -> SubprocessResult:
        return SubprocessResult(success=True, stdout=stdout, stderr="", return_code=0, duration_ms=1.0)

    @staticmethod
    def fail(return_code: int, stderr: str = "", stdout: str = "") -> SubprocessResult:
        return SubprocessResult(success=False, stdout=stdout, stderr=stderr, return_code=return_code, duration_ms=1.0)

    def run(self, command, timeout=None, env=None, cwd=None, input_data=None):
        self.calls.append(list(command))
        self.envs.append(dict(env) if env is not None else None)
        return self.responder(list(command))


class FakeAgent:
    """In-memory agent; fail_on names the operation that should fail."""

    def __init__(self):
        self.loaded: List[str] = []
        self.fail_on: Optional[str] = None
        self.unreachable = False
        self.calls: List[str] = []

    def reset(self):
        self.calls.append("reset")
        if self.fail_on == "reset":
            raise AgentUnreachable("agent went away")
        self.loaded = []

    def load_only(self, key_path, fingerprint=None):
        self.calls.append("load_only")
        if self.fail_on == "load":
            raise ExternalToolFailed("ssh-add", 1, "Could not add identity")
        self.loaded.append(fingerprint)

    def list_fingerprints(self):
        if self.unreachable:
            raise AgentUnreachable("SSH_AUTH_SOCK is not set")
        return list(self.loaded)


class FakeGit:
    """In-memory git config with the GitConfigWriter surface the switcher uses."""

    def __init__(self):
        self.values: Dict[str, Dict[str, str]] = {"global": {}, "local": {}}
        self.applied: List[str] = []

    def apply(self, identity, repo_path=None):
        scope = identity.isolation.git.scope.value
        self.values[scope]["user.name"] = identity.name
        self.values[scope]["user.email"] = identity.email
        self.applied.append(identity.alias)

    def current_config(self, scope="global", repo_path=None):
        scope = getattr(scope, "value", scope)
        values = self.values[scope]
        return GitIdentityConfig(scope=scope, name=values.get("user.name"), email=values.get("user.email"))


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def fake_agent():
    return FakeAgent()


@pytest.fixture
def fake_git():
    return FakeGit()


@pytest.fixture
def key_store(gitshift_home):
    return KeyStore()


@pytest.fixture
def switcher(fake_agent, fake_git, key_store):
    """Switcher over the temp home with fake agent and git."""
    return IdentitySwitcher(
        config_store=ConfigStore(),
        key_store=key_store,
        ssh_config=SSHConfigManager(),
        agent=fake_agent,
        git=fake_git,
        vault=TokenVault(hostname="testhost", home_name="tester"),
    )


@pytest.fixture
def config(switcher, key_store):
    """Config with identities work and personal, each with a generated ed25519 key."""
    cfg = GitshiftConfig()
    for alias, name, email in (
        ("work", "Work Me", "w@co.com"),
        ("personal", "Personal Me", "p@me.com"),
    ):
        record = key_store.generate(email=email, path=key_store.default_key_path(alias))
        switcher.add_identity(
            cfg,
            Identity(alias=alias, name=name, email=email, platform_username=f"{alias}-user", key_path=record.private_path),
        )
    return cfg
