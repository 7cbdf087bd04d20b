"""SSH client config parsing and merging.

Pure text transformation: parse an ~/.ssh/config, replace the host blocks
gitshift owns, render it back. Blocks gitshift does not own are carried
through verbatim and in order. No I/O; see gitshift.runtime.ssh_config for
the locked, atomic install.

Layout of a rendered file:

    <preamble: global directives, kept above every Host line>

    # gitshift: managed section, regenerated on every switch
    # gitshift: generated 2026-01-01T00:00:00Z
    # gitshift: host github.com for identity work
    Host github.com
        HostName github.com
        ...

    <foreign blocks, verbatim>
"""

import re
import shlex
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from gitshift.constants import MARKER, PLATFORM_HOSTS
from gitshift.primitives.errors import ConfigMergeConflict

_DIRECTIVE_RE = re.compile(r"^\s*([A-Za-z][A-Za-z0-9]*)(?:\s*=\s*|\s+)(.*?)\s*$")
_BLOCK_KEYWORDS = ("host", "match")

HEADER_LINE = f"{MARKER} managed section, regenerated on every switch"
TIMESTAMP_PREFIX = f"{MARKER} generated "
_BLOCK_MARKER_RE = re.compile(rf"^{re.escape(MARKER)} host (\S+) for identity \S+\s*$")


def _split_directive(line: str):
    """(keyword, value) for a directive line, or None for blanks and comments."""
    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None
    match = _DIRECTIVE_RE.match(line)
    if not match:
        # Keyword with no value
        return stripped, ""
    return match.group(1), match.group(2)


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1]
    return value


def _quote(value: str) -> str:
    if any(ch.isspace() for ch in value):
        return f'"{value}"'
    return value


@dataclass
class HostBlock:
    """A Host or Match block as found in the file.

    Attributes:
        keyword: "Host" or "Match" as written.
        patterns: Host patterns (Match criteria for Match blocks).
        header: The original Host/Match line.
        body: Lines after the header up to the next block, verbatim.
        leading: Column-0 comment lines directly above the header.
        marked: Preceded by a gitshift marker comment.
        line: 1-based line number of the header.
    """

    keyword: str
    patterns: List[str]
    header: str
    body: List[str] = field(default_factory=list)
    leading: List[str] = field(default_factory=list)
    marked: bool = False
    line: int = 0

    @property
    def is_match(self) -> bool:
        return self.keyword.lower() == "match"

    def get(self, keyword: str) -> Optional[str]:
        """First value of a directive in this block, unquoted."""
        wanted = keyword.lower()
        for raw in self.body:
            parsed = _split_directive(raw)
            if parsed and parsed[0].lower() == wanted:
                return _unquote(parsed[1])
        return None

    def is_managed(self, hosts: Iterable[str]) -> bool:
        """Owned by gitshift: marker-preceded, or a Host naming a platform host.

        Raises:
            ConfigMergeConflict: Host line mixes an owned host with other
                patterns, so it cannot be replaced without losing them.
        """
        if self.marked:
            return True
        if self.is_match:
            return False
        owned = set(hosts)
        hits = [p for p in self.patterns if p in owned]
        if not hits:
            return False
        if len(hits) != len(self.patterns):
            raise ConfigMergeConflict(
                f"Host line {self.header.strip()!r} mixes {', '.join(hits)} with other patterns",
                line=self.line,
            )
        return True

    def lines(self) -> List[str]:
        return [*self.leading, self.header, *self.body]


@dataclass
class ManagedBlock:
    """A host block gitshift writes for the current identity.

    Attributes:
        host: Host pattern, e.g. "github.com".
        identity_file: Private key path offered for this host.
        alias: Identity alias, recorded in the marker comment.
        hostname: Real host name (defaults to host).
        user: SSH user on the platform.
        identities_only: Emit ``IdentitiesOnly yes``.
    """

    host: str
    identity_file: str
    alias: str
    hostname: Optional[str] = None
    user: str = "git"
    identities_only: bool = True

    def marker(self) -> str:
        return f"{MARKER} host {self.host} for identity {self.alias}"

    def render_lines(self) -> List[str]:
        lines = [
            f"Host {self.host}",
            f"    HostName {self.hostname or self.host}",
            f"    User {self.user}",
            f"    IdentityFile {_quote(self.identity_file)}",
        ]
        if self.identities_only:
            lines.append("    IdentitiesOnly yes")
        lines.extend([
            "    PreferredAuthentications publickey",
            "    AddKeysToAgent no",
            # UseKeychain only exists on macOS builds of OpenSSH
            "    IgnoreUnknown UseKeychain",
            "    UseKeychain no",
        ])
        return lines


@dataclass
class SSHConfigDocument:
    """Parsed SSH config.

    Attributes:
        preamble: Lines before the first Host/Match line.
        blocks: Host/Match blocks in file order.
        managed: Blocks gitshift will write at the top (set by merge()).
    """

    preamble: List[str] = field(default_factory=list)
    blocks: List[HostBlock] = field(default_factory=list)
    managed: List[ManagedBlock] = field(default_factory=list)


def parse(text: str) -> SSHConfigDocument:
    """Parse SSH config text.

    The section header, timestamp and per-host marker lines gitshift writes
    are dropped wherever they appear. A per-host marker flags a block only
    when it sits directly on a Host line for exactly that host, so a marker
    left behind after its block was removed marks nothing. Other comments
    that happen to start with the marker prefix are kept as user text.

    Raises:
        ConfigMergeConflict: A Host/Match line without patterns, or with
            unbalanced quotes.
    """
    document = SSHConfigDocument()
    current = document.preamble
    pending_host: Optional[str] = None

    for number, raw in enumerate(text.splitlines(), start=1):
        line = raw.rstrip()
        if line == HEADER_LINE or line.startswith(TIMESTAMP_PREFIX):
            pending_host = None
            continue
        marker = _BLOCK_MARKER_RE.match(line)
        if marker:
            pending_host = marker.group(1)
            continue

        parsed = _split_directive(raw)
        if parsed is None:
            pending_host = None
            current.append(raw)
            continue

        keyword, value = parsed
        if keyword.lower() not in _BLOCK_KEYWORDS:
            pending_host = None
            current.append(raw)
            continue

        try:
            patterns = shlex.split(value, comments=False)
        except ValueError as e:
            raise ConfigMergeConflict(f"Cannot parse {keyword} line: {e}", line=number)
        if not patterns:
            raise ConfigMergeConflict(f"{keyword} line without patterns", line=number)

        leading: List[str] = []
        while current and current[-1].startswith("#"):
            leading.insert(0, current.pop())

        block = HostBlock(
            keyword=keyword,
            patterns=patterns,
            header=raw,
            leading=leading,
            marked=pending_host is not None and patterns == [pending_host],
            line=number,
        )
        pending_host = None
        document.blocks.append(block)
        current = block.body

    return document


def merge(
    document: SSHConfigDocument,
    managed_blocks: List[ManagedBlock],
    platform_hosts: Iterable[str] = PLATFORM_HOSTS,
) -> SSHConfigDocument:
    """Replace every managed block with managed_blocks.

    Args:
        document: Parsed existing config.
        managed_blocks: Blocks to own after the merge, at most one per host.
        platform_hosts: Hosts whose blocks gitshift owns even without a marker.

    Returns:
        New document: same preamble, foreign blocks in order, new managed blocks.

    Raises:
        ConfigMergeConflict: Duplicate hosts in managed_blocks, or a foreign
            Host line that mixes an owned host with other patterns.
    """
    hosts = [block.host for block in managed_blocks]
    if len(set(hosts)) != len(hosts):
        raise ConfigMergeConflict(f"More than one managed block for the same host: {hosts}")

    owned = set(platform_hosts) | set(hosts)
    foreign = [block for block in document.blocks if not block.is_managed(owned)]
    return SSHConfigDocument(
        preamble=list(document.preamble),
        blocks=foreign,
        managed=list(managed_blocks),
    )


def render(document: SSHConfigDocument, generated_at: Optional[datetime] = None) -> str:
    """Render a document back to config text."""
    lines = list(document.preamble)
    while lines and not lines[-1].strip():
        lines.pop()
    if lines:
        lines.append("")

    if document.managed:
        stamp = (generated_at or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H:%M:%SZ")
        lines.append(HEADER_LINE)
        lines.append(f"{TIMESTAMP_PREFIX}{stamp}")
        for block in document.managed:
            lines.append(block.marker())
            lines.extend(block.render_lines())
            lines.append("")

    for block in document.blocks:
        lines.extend(block.lines())

    while lines and not lines[-1].strip():
        lines.pop()
    return "\n".join(lines) + "\n" if lines else ""


def managed_identity_file(document: SSHConfigDocument, host: str) -> Optional[str]:
    """IdentityFile of the managed block for host, or None."""
    for managed in document.managed:
        if managed.host == host:
            return managed.identity_file
    for block in document.blocks:
        if block.marked and host in block.patterns:
            return block.get("IdentityFile")
    return None
