"""Error types for gitshift.

Primitives return result objects with a success field for expected outcomes
(a command exiting non-zero is data, not an exception). These errors are for
cases the caller must act on:
- Primitives: unexpected errors, missing or corrupt inputs
- Runtime services: precondition failures (no key, no vault entry, no agent)

Every error carries a stable ``code`` so reports and the CLI can name the
failure without parsing messages.
"""

from typing import List, Optional


class GitshiftError(Exception):
    """Base exception for gitshift failures.

    Attributes:
        message: Error description.
        cause: Optional underlying exception being wrapped.
    """

    code = "GITSHIFT_ERROR"

    def __init__(self, message: str, cause: Optional[Exception] = None):
        """Initialize GitshiftError.

        Args:
            message: Description of the error.
            cause: Optional exception that triggered this error.
        """
        super().__init__(message)
        self.message = message
        self.cause = cause

    def to_dict(self) -> dict:
        """Serialize for reports and CLI output."""
        data = {"code": self.code, "message": self.message}
        for key, value in vars(self).items():
            if key in ("message", "cause") or value is None:
                continue
            data[key] = value
        if self.cause is not None:
            data["cause"] = str(self.cause)
        return data


class ConfigurationError(GitshiftError):
    """Configuration error (malformed file, invalid identity field, unknown option).

    Attributes:
        message: Description of the error.
        field: Optional field name that failed.
    """

    code = "CONFIGURATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None, cause: Optional[Exception] = None):
        super().__init__(message, cause)
        self.field = field


class UnknownIdentity(GitshiftError):
    """No identity is configured under the requested alias.

    Attributes:
        alias: The alias that was looked up.
    """

    code = "UNKNOWN_IDENTITY"

    def __init__(self, alias: str):
        super().__init__(f"Unknown identity: {alias!r}")
        self.alias = alias


class KeyUnavailable(GitshiftError):
    """An SSH key cannot be used.

    Base class for the specific key failures below so callers can catch
    the whole family.

    Attributes:
        path: Path to the private key.
    """

    code = "KEY_UNAVAILABLE"

    def __init__(self, message: str, path: Optional[str] = None, cause: Optional[Exception] = None):
        super().__init__(message, cause)
        self.path = path


class KeyNotFound(KeyUnavailable):
    """Private or public key file does not exist."""

    code = "KEY_NOT_FOUND"


class KeyUnreadable(KeyUnavailable):
    """Key file exists but cannot be read."""

    code = "KEY_UNREADABLE"


class KeyCorrupt(KeyUnavailable):
    """Key file cannot be parsed, or the public half does not match."""

    code = "KEY_CORRUPT"


class KeyPolicyViolation(KeyUnavailable):
    """Key is parseable but too weak (e.g. RSA below 3072 bits)."""

    code = "KEY_POLICY_VIOLATION"


class KeyAlreadyExists(GitshiftError):
    """Generation would overwrite an existing key.

    Attributes:
        path: Path that already exists.
    """

    code = "KEY_EXISTS"

    def __init__(self, path: str):
        super().__init__(f"Key already exists at {path}")
        self.path = path


class InsecurePermissions(GitshiftError):
    """A secret file or directory is accessible to group or others.

    Attributes:
        path: The offending path.
        actual: Current permission bits, as an octal string.
        expected: Required permission bits, as an octal string.
    """

    code = "INSECURE_PERMISSIONS"

    def __init__(self, path: str, actual: int, expected: int):
        super().__init__(
            f"Insecure permissions on {path}: {actual:04o} (expected {expected:04o})"
        )
        self.path = path
        self.actual = f"{actual:04o}"
        self.expected = f"{expected:04o}"


class VaultEntryNotFound(GitshiftError):
    """No token is stored for the alias."""

    code = "VAULT_ENTRY_NOT_FOUND"

    def __init__(self, alias: str):
        super().__init__(f"No token stored for identity {alias!r}")
        self.alias = alias


class VaultDecryptFailed(GitshiftError):
    """Stored token failed authentication: tampered, corrupt, or wrong key."""

    code = "VAULT_DECRYPT_FAILED"

    def __init__(self, alias: str, cause: Optional[Exception] = None):
        super().__init__(f"Token for identity {alias!r} could not be decrypted", cause)
        self.alias = alias


class AgentUnreachable(GitshiftError):
    """The SSH agent is not running or cannot be contacted."""

    code = "AGENT_UNREACHABLE"


class AgentStateMismatch(GitshiftError):
    """After a load-only the agent does not hold exactly the identity's key.

    Attributes:
        expected: Fingerprint that should be the only one loaded.
        actual: Fingerprints the agent reported.
    """

    code = "AGENT_STATE_MISMATCH"

    def __init__(self, expected: str, actual: List[str]):
        super().__init__(
            f"Agent holds {len(actual)} key(s) after loading {expected}: {', '.join(actual) or 'none'}"
        )
        self.expected = expected
        self.actual = list(actual)


class ExternalToolTimeout(GitshiftError):
    """An external command did not finish within its timeout.

    Attributes:
        tool: Executable name.
        timeout: Timeout in seconds.
    """

    code = "EXTERNAL_TOOL_TIMEOUT"

    def __init__(self, tool: str, timeout: float):
        super().__init__(f"{tool} timed out after {timeout:g} seconds")
        self.tool = tool
        self.timeout = timeout


class ExternalToolFailed(GitshiftError):
    """An external command failed.

    Attributes:
        tool: Executable name.
        return_code: Exit code (127 when the executable is missing).
        output: Combined stdout and stderr.
    """

    code = "EXTERNAL_TOOL_FAILED"

    def __init__(self, tool: str, return_code: int, output: str = "", message: Optional[str] = None):
        detail = output.strip()
        if message is None:
            message = f"{tool} exited with code {return_code}"
            if detail:
                message = f"{message}: {detail}"
        super().__init__(message)
        self.tool = tool
        self.return_code = return_code
        self.output = output


class ConfigMergeConflict(GitshiftError):
    """Existing SSH config cannot be merged without changing its meaning.

    Attributes:
        line: 1-based line number of the offending line, if known.
    """

    code = "CONFIG_MERGE_CONFLICT"

    def __init__(self, message: str, line: Optional[int] = None):
        if line is not None:
            message = f"{message} (line {line})"
        super().__init__(message)
        self.line = line


class TokenOwnerMismatch(GitshiftError):
    """Token belongs to a different platform account than the identity."""

    code = "TOKEN_OWNER_MISMATCH"

    def __init__(self, alias: str, expected: str, actual: str):
        super().__init__(
            f"Token for {alias!r} belongs to {actual!r}, expected {expected!r}"
        )
        self.alias = alias
        self.expected = expected
        self.actual = actual


class PlatformError(GitshiftError):
    """Platform API request failed.

    Attributes:
        status_code: HTTP status, when a response was received.
    """

    code = "PLATFORM_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None, cause: Optional[Exception] = None):
        super().__init__(message, cause)
        self.status_code = status_code
