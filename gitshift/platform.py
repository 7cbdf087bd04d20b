"""Hosting platform abstraction.

Static facts per platform (SSH host, API base, SSH greeting) plus small
REST clients used with a token from the vault.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from gitshift.models import Identity
from gitshift.primitives.errors import ConfigurationError, PlatformError, TokenOwnerMismatch

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlatformSpec:
    """Static description of a hosting platform.

    Attributes:
        name: Registry key ("github").
        host: SSH host and managed Host pattern ("github.com").
        api_base: REST API root, None when gitshift has no client for it.
        greeting: Text the SSH endpoint prints after a successful key login.
        ssh_user: SSH user name.
    """

    name: str
    host: str
    api_base: Optional[str]
    greeting: str
    ssh_user: str = "git"


PLATFORMS: Dict[str, PlatformSpec] = {
    "github": PlatformSpec("github", "github.com", "https://api.github.com", "successfully authenticated"),
    "gitlab": PlatformSpec("gitlab", "gitlab.com", "https://gitlab.com/api/v4", "Welcome to GitLab"),
    "bitbucket": PlatformSpec("bitbucket", "bitbucket.org", None, "authenticated via ssh key"),
}


def get_platform(name: str) -> PlatformSpec:
    try:
        return PLATFORMS[name]
    except KeyError:
        raise ConfigurationError(f"Unknown platform {name!r}", field="platform")


class PlatformClient:
    """Base REST client. Subclasses fill in paths and header scheme."""

    user_path = "/user"
    keys_path = "/user/keys"
    repos_path = "/user/repos"
    login_field = "login"

    def __init__(
        self,
        token: str,
        api_base: str,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = 30.0,
    ):
        self.api_base = api_base.rstrip("/")
        self._client = httpx.Client(
            base_url=self.api_base,
            headers=self._auth_headers(token),
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    def _auth_headers(self, token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise PlatformError(f"{method} {path} failed: {e}", cause=e)
        if response.status_code >= 400:
            raise PlatformError(
                f"{method} {path} returned HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
            )
        return response

    def whoami(self) -> str:
        """Account name the token belongs to."""
        data = self._request("GET", self.user_path).json()
        return data[self.login_field]

    def upload_public_key(self, title: str, public_key: str) -> Dict[str, Any]:
        """Register an SSH public key on the account."""
        response = self._request("POST", self.keys_path, json={"title": title, "key": public_key.strip()})
        if response.status_code != 201:
            raise PlatformError(
                f"Key upload returned HTTP {response.status_code}, expected 201",
                status_code=response.status_code,
            )
        return response.json()

    def _repos_params(self) -> Dict[str, Any]:
        return {"per_page": 100}

    def _repo_name(self, item: Dict[str, Any]) -> str:
        return item["full_name"]

    def list_repos(self) -> List[str]:
        """Full names of repositories visible to the token, following pagination."""
        names: List[str] = []
        url: Optional[str] = self.repos_path
        params: Optional[Dict[str, Any]] = self._repos_params()
        while url:
            response = self._request("GET", url, params=params)
            names.extend(self._repo_name(item) for item in response.json())
            url = response.links.get("next", {}).get("url")
            params = None
        return names


class GitHubClient(PlatformClient):
    """GitHub REST v3."""

    def _auth_headers(self, token: str) -> Dict[str, str]:
        return {
            "Authorization": f"token {token}",
            "Accept": "application/vnd.github+json",
        }


class GitLabClient(PlatformClient):
    """GitLab REST v4."""

    repos_path = "/projects"
    login_field = "username"

    def _auth_headers(self, token: str) -> Dict[str, str]:
        return {"PRIVATE-TOKEN": token}

    def _repos_params(self) -> Dict[str, Any]:
        return {"per_page": 100, "membership": "true"}

    def _repo_name(self, item: Dict[str, Any]) -> str:
        return item["path_with_namespace"]


_CLIENTS = {
    "github": GitHubClient,
    "gitlab": GitLabClient,
}


def _open_client(identity: Identity, vault, transport: Optional[httpx.BaseTransport]) -> PlatformClient:
    spec = get_platform(identity.platform)
    client_cls = _CLIENTS.get(spec.name)
    if client_cls is None or spec.api_base is None:
        raise ConfigurationError(f"No API client for platform {spec.name!r}", field="platform")
    return client_cls(vault.retrieve(identity.alias), spec.api_base, transport=transport)


def _check_owner(identity: Identity, client: PlatformClient) -> str:
    owner = client.whoami()
    if identity.platform_username and owner.lower() != identity.platform_username.lower():
        raise TokenOwnerMismatch(identity.alias, identity.platform_username, owner)
    logger.debug(f"Token for {identity.alias} belongs to {owner}")
    return owner


def client_for(identity: Identity, vault, transport: Optional[httpx.BaseTransport] = None) -> PlatformClient:
    """API client for identity, authenticated with its vault token.

    When the identity's token isolation has verify_owner set, the token's
    account must equal platform_username.

    Raises:
        ConfigurationError: Platform has no API client.
        VaultEntryNotFound, VaultDecryptFailed: Token unavailable.
        TokenOwnerMismatch: Token belongs to a different account.
    """
    client = _open_client(identity, vault, transport)
    if identity.isolation.token.verify_owner and identity.platform_username:
        try:
            _check_owner(identity, client)
        except (PlatformError, TokenOwnerMismatch):
            client.close()
            raise
    return client


def verify_token(identity: Identity, vault, transport: Optional[httpx.BaseTransport] = None) -> str:
    """Account the identity's token belongs to.

    Checked against platform_username whenever one is set, whatever
    verify_owner says.

    Raises:
        TokenOwnerMismatch: Token belongs to a different account.
        PlatformError: The platform rejected the token or could not be reached.
    """
    with _open_client(identity, vault, transport) as client:
        return _check_owner(identity, client)
