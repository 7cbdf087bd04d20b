"""Tests for the identity model."""

import pytest

from gitshift.models import (
    GitScope,
    GitshiftConfig,
    Identity,
    IsolationSettings,
    SigningFormat,
    SigningSettings,
    validate_alias,
)
from gitshift.primitives.errors import ConfigurationError


class TestValidateAlias:
    @pytest.mark.parametrize("alias", ["work", "Work-2", "a.b_c", "x" * 64])
    def test_valid(self, alias):
        assert validate_alias(alias) == alias

    @pytest.mark.parametrize("alias", ["", "-work", "../evil", "a/b", "has space", "x" * 65, None])
    def test_invalid(self, alias):
        with pytest.raises(ConfigurationError):
            validate_alias(alias)


class TestIdentityValidate:
    def base(self, **kwargs):
        data = dict(alias="work", name="Work Me", email="w@co.com")
        data.update(kwargs)
        return Identity(**data)

    def test_valid(self):
        assert self.base().validate().alias == "work"

    def test_blank_name(self):
        with pytest.raises(ConfigurationError) as exc_info:
            self.base(name="  ").validate()
        assert exc_info.value.field == "name"

    @pytest.mark.parametrize("email", ["", "nobody", "a@b", "a b@c.com"])
    def test_bad_email(self, email):
        with pytest.raises(ConfigurationError):
            self.base(email=email).validate()

    def test_unknown_platform(self):
        with pytest.raises(ConfigurationError) as exc_info:
            self.base(platform="sourcehut").validate()
        assert exc_info.value.field == "platform"

    def test_public_key_path(self):
        assert self.base(key_path="/k/id").public_key_path == "/k/id.pub"
        assert self.base().public_key_path is None


class TestIsolationSettings:
    """Each isolation dimension accepts only its own options."""

    def test_defaults(self):
        settings = IsolationSettings.from_dict(None)
        assert settings.ssh.isolate_agent is True
        assert settings.ssh.force_identities_only is True
        assert settings.git.scope == GitScope.GLOBAL
        assert settings.token.verify_owner is True
        assert settings.environment.export_token is False

    def test_partial_section(self):
        settings = IsolationSettings.from_dict({"git": {"scope": "local"}})
        assert settings.git.scope == GitScope.LOCAL
        assert settings.git.pin_ssh_command is True
        assert settings.ssh.isolate_agent is True

    def test_unknown_option_rejected(self):
        """A typo is an error, not a silently ignored key."""
        with pytest.raises(ConfigurationError) as exc_info:
            IsolationSettings.from_dict({"ssh": {"isolate_agnet": False}})
        assert exc_info.value.field == "isolation.ssh.isolate_agnet"

    def test_unknown_section_rejected(self):
        with pytest.raises(ConfigurationError):
            IsolationSettings.from_dict({"network": {}})

    def test_bool_type_checked(self):
        with pytest.raises(ConfigurationError):
            IsolationSettings.from_dict({"ssh": {"isolate_agent": "no"}})

    def test_bad_enum(self):
        with pytest.raises(ConfigurationError) as exc_info:
            IsolationSettings.from_dict({"git": {"scope": "system"}})
        assert "global, local" in exc_info.value.message

    def test_to_dict_round_trip(self):
        data = {"ssh": {"isolate_agent": False}, "environment": {"export_token": True, "token_env_var": "GH_TOKEN"}}
        settings = IsolationSettings.from_dict(data)
        again = IsolationSettings.from_dict(settings.to_dict())
        assert again == settings
        assert settings.to_dict()["git"]["scope"] == "global"


class TestSigningSettings:
    def test_from_dict(self):
        signing = SigningSettings.from_dict({"enabled": True, "format": "openpgp", "key": "ABCDEF"})
        assert signing.format == SigningFormat.OPENPGP
        assert signing.to_dict() == {"enabled": True, "format": "openpgp", "key": "ABCDEF"}

    def test_unknown_field(self):
        with pytest.raises(ConfigurationError):
            SigningSettings.from_dict({"program": "gpg2"})


class TestIdentityFromDict:
    def test_full_round_trip(self):
        identity = Identity(
            alias="work",
            name="Work Me",
            email="w@co.com",
            platform_username="workme",
            platform="gitlab",
            key_path="/k/id",
            metadata={"description": "Day job"},
        )
        assert Identity.from_dict("work", identity.to_dict()) == identity

    def test_unknown_field(self):
        with pytest.raises(ConfigurationError) as exc_info:
            Identity.from_dict("work", {"name": "W", "email": "w@co.com", "ssh_key": "/k"})
        assert exc_info.value.field == "work.ssh_key"

    def test_not_a_mapping(self):
        with pytest.raises(ConfigurationError):
            Identity.from_dict("work", ["name"])

    def test_validates(self):
        with pytest.raises(ConfigurationError):
            Identity.from_dict("work", {"name": "W", "email": "not-an-email"})


class TestGitshiftConfig:
    def test_current_identity(self):
        identity = Identity(alias="work", name="W", email="w@co.com")
        config = GitshiftConfig(identities={"work": identity}, current="work")
        assert config.current_identity is identity
        assert GitshiftConfig(identities={"work": identity}).current_identity is None
        assert GitshiftConfig(current="gone").current_identity is None

    def test_to_dict_sorted(self):
        config = GitshiftConfig(identities={
            "zeta": Identity(alias="zeta", name="Z", email="z@co.com"),
            "alpha": Identity(alias="alpha", name="A", email="a@co.com"),
        })
        assert list(config.to_dict()["identities"]) == ["alpha", "zeta"]
