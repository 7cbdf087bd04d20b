"""gitshift runtime services: components that touch the outside world."""

from gitshift.runtime.agent import AgentBackend, AgentController
from gitshift.runtime.connectivity import ConnectivityResult, probe_ssh_connection
from gitshift.runtime.git_config import GitConfigWriter, GitIdentityConfig
from gitshift.runtime.ssh_config import SSHConfigManager
from gitshift.runtime.vault import TokenVault, detect_token_type, mask_token

__all__ = [
    "AgentBackend",
    "AgentController",
    "ConnectivityResult",
    "probe_ssh_connection",
    "GitConfigWriter",
    "GitIdentityConfig",
    "SSHConfigManager",
    "TokenVault",
    "detect_token_type",
    "mask_token",
]
