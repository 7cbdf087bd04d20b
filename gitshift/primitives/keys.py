"""SSH key store primitives.

Generates, inspects and validates OpenSSH key pairs on disk. Pure key
material handling with explicit permission control; no agent or config
side effects.
"""

import base64
import hashlib
import logging
import os
import stat
from dataclasses import asdict, dataclass
from datetime import date
from pathlib import Path
from typing import List, Optional, Tuple, Union

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519, rsa

from gitshift.constants import (
    DEFAULT_RSA_BITS,
    MIN_RSA_BITS,
    KeyAlgorithm,
    Mode,
    get_ssh_dir,
)
from gitshift.primitives.errors import (
    InsecurePermissions,
    KeyAlreadyExists,
    KeyCorrupt,
    KeyNotFound,
    KeyPolicyViolation,
    KeyUnreadable,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass
class KeyPairRecord:
    """What the key store knows about one key pair.

    Derived from disk on every call, never persisted.

    Attributes:
        private_path: Path to the private key.
        public_path: Path to the public key (``<private>.pub``).
        algorithm: "ed25519", "rsa" or "ecdsa".
        bits: Key size in bits.
        fingerprint: OpenSSH SHA256 fingerprint ("SHA256:...").
        email: Comment of the public key, usually an email address.
        private_mode: Permission bits of the private key.
        dir_mode: Permission bits of the directory holding the key.
        passphrase_protected: True when the private key is encrypted.
    """

    private_path: str
    public_path: str
    algorithm: str
    bits: int
    fingerprint: str
    email: str
    private_mode: int
    dir_mode: int
    passphrase_protected: bool = False

    @property
    def is_secure(self) -> bool:
        """Private key and its directory are owner-only."""
        return not (self.private_mode & 0o077) and not (self.dir_mode & 0o077)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["private_mode"] = f"{self.private_mode:04o}"
        data["dir_mode"] = f"{self.dir_mode:04o}"
        return data


def compute_fingerprint(public_key_line: str) -> str:
    """Compute the OpenSSH SHA256 fingerprint of a public key line.

    Same value ``ssh-keygen -lf`` and ``ssh-add -l -E sha256`` print:
    unpadded base64 of SHA-256 over the decoded key blob.

    Args:
        public_key_line: "<type> <base64-blob> [comment]"

    Returns:
        "SHA256:<base64>" fingerprint
    """
    parts = public_key_line.split()
    if len(parts) < 2:
        raise ValueError("public key line needs a type and a key blob")
    blob = base64.b64decode(parts[1], validate=True)
    digest = hashlib.sha256(blob).digest()
    return "SHA256:" + base64.b64encode(digest).decode("ascii").rstrip("=")


def _algorithm_of(key_type: str) -> str:
    if key_type in KeyAlgorithm.SSH_NAMES:
        return KeyAlgorithm.SSH_NAMES[key_type]
    if key_type.startswith("ecdsa-"):
        return "ecdsa"
    raise KeyCorrupt(f"Unsupported key type {key_type!r}")


def _key_bits(public_key) -> int:
    if isinstance(public_key, ed25519.Ed25519PublicKey):
        return 256
    return getattr(public_key, "key_size", 0)


def _mode(path: Path) -> int:
    return stat.S_IMODE(path.stat().st_mode)


def _write_secret(path: Path, data: bytes, mode: int) -> None:
    """Write data to a file created with mode, so it is never world readable."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    try:
        os.fchmod(fd, mode)
        os.write(fd, data)
    finally:
        os.close(fd)


class KeyStore:
    """Key pairs under a key directory (default ~/.ssh)."""

    def __init__(self, key_dir: Optional[PathLike] = None):
        self.key_dir = Path(key_dir) if key_dir else get_ssh_dir()

    def default_key_path(self, alias: str, algorithm: str = KeyAlgorithm.ED25519, dated: bool = False) -> Path:
        """Conventional private key path for an identity.

        ``id_<alg>_<alias>``, with a ``_YYYYMMDD`` suffix when dated.
        """
        name = f"id_{algorithm}_{alias}"
        if dated:
            name = f"{name}_{date.today():%Y%m%d}"
        return self.key_dir / name

    def generate(
        self,
        email: str,
        path: Optional[PathLike] = None,
        algorithm: str = KeyAlgorithm.ED25519,
        bits: Optional[int] = None,
        overwrite: bool = False,
    ) -> KeyPairRecord:
        """Generate a key pair and write it with secure permissions.

        Args:
            email: Comment for the public key.
            path: Private key path (default: ``<key_dir>/id_<alg>``).
            algorithm: "ed25519" (default) or "rsa".
            bits: RSA size, at least 3072 (default 4096). Ignored for ed25519.
            overwrite: Replace existing files instead of failing.

        Returns:
            KeyPairRecord for the new pair.

        Raises:
            KeyAlreadyExists: A file is in the way and overwrite is False.
            KeyPolicyViolation: Unsupported algorithm or RSA size too small.
        """
        private_path = Path(path) if path else self.key_dir / f"id_{algorithm}"
        public_path = Path(f"{private_path}.pub")

        if not overwrite:
            for existing in (private_path, public_path):
                if existing.exists():
                    raise KeyAlreadyExists(str(existing))

        if algorithm == KeyAlgorithm.ED25519:
            private_key = ed25519.Ed25519PrivateKey.generate()
        elif algorithm == KeyAlgorithm.RSA:
            bits = bits or DEFAULT_RSA_BITS
            if bits < MIN_RSA_BITS:
                raise KeyPolicyViolation(
                    f"RSA keys must be at least {MIN_RSA_BITS} bits (got {bits})",
                    path=str(private_path),
                )
            private_key = rsa.generate_private_key(public_exponent=65537, key_size=bits)
        else:
            raise KeyPolicyViolation(f"Unsupported key algorithm {algorithm!r}", path=str(private_path))

        private_bytes = private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.OpenSSH,
            encryption_algorithm=serialization.NoEncryption(),
        )
        public_line = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.OpenSSH,
            format=serialization.PublicFormat.OpenSSH,
        ).decode("ascii")
        if email:
            public_line = f"{public_line} {email}"

        key_dir = private_path.parent
        key_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(key_dir, Mode.SECRET_DIR)

        _write_secret(private_path, private_bytes, Mode.PRIVATE_KEY)
        public_path.write_text(public_line + "\n", encoding="ascii")
        os.chmod(public_path, Mode.PUBLIC_KEY)

        logger.info(f"Generated {algorithm} key at {private_path}")
        return self.validate(private_path)

    def validate(self, path: PathLike) -> KeyPairRecord:
        """Inspect a key pair and check it is usable.

        A passphrase protected private key cannot be opened here, so its
        details come from the ``.pub`` file alone.

        Raises:
            KeyNotFound: Private key (or, for an encrypted key, its .pub) is missing.
            KeyUnreadable: A key file cannot be read.
            KeyCorrupt: A key file is unparsable or the halves do not match.
            KeyPolicyViolation: RSA key below 3072 bits.
        """
        private_path = Path(path).expanduser()
        public_path = Path(f"{private_path}.pub")

        if not private_path.is_file():
            raise KeyNotFound(f"Private key not found at {private_path}", path=str(private_path))

        private_data = self._read(private_path)
        private_key, encrypted = self._load_private(private_path, private_data)

        derived_line = None
        if private_key is not None:
            derived_line = private_key.public_key().public_bytes(
                encoding=serialization.Encoding.OpenSSH,
                format=serialization.PublicFormat.OpenSSH,
            ).decode("ascii")

        email = ""
        if public_path.is_file():
            public_line = self._read(public_path).decode("utf-8", errors="replace").strip()
            parts = public_line.split(None, 2)
            if len(parts) < 2:
                raise KeyCorrupt(f"Malformed public key at {public_path}", path=str(private_path))
            try:
                serialization.load_ssh_public_key(f"{parts[0]} {parts[1]}".encode("ascii"))
            except (ValueError, UnsupportedAlgorithm) as e:
                raise KeyCorrupt(f"Unparsable public key at {public_path}", path=str(private_path), cause=e)
            if derived_line is not None and derived_line.split()[:2] != parts[:2]:
                raise KeyCorrupt(
                    f"Public key {public_path} does not match private key {private_path}",
                    path=str(private_path),
                )
            email = parts[2] if len(parts) > 2 else ""
            key_line = f"{parts[0]} {parts[1]}"
        elif derived_line is not None:
            key_line = derived_line
        else:
            raise KeyNotFound(
                f"Public key not found at {public_path} (needed for an encrypted private key)",
                path=str(private_path),
            )

        key_type = key_line.split()[0]
        algorithm = _algorithm_of(key_type)
        bits = _key_bits(serialization.load_ssh_public_key(key_line.encode("ascii")))

        if algorithm == KeyAlgorithm.RSA and bits < MIN_RSA_BITS:
            raise KeyPolicyViolation(
                f"RSA key at {private_path} is {bits} bits; at least {MIN_RSA_BITS} required",
                path=str(private_path),
            )

        return KeyPairRecord(
            private_path=str(private_path),
            public_path=str(public_path),
            algorithm=algorithm,
            bits=bits,
            fingerprint=compute_fingerprint(key_line),
            email=email,
            private_mode=_mode(private_path),
            dir_mode=_mode(private_path.parent),
            passphrase_protected=encrypted,
        )

    def list(self) -> List[KeyPairRecord]:
        """Valid key pairs in the key directory, sorted by path."""
        records = []
        if not self.key_dir.is_dir():
            return records
        for public_path in sorted(self.key_dir.glob("*.pub")):
            private_path = public_path.with_suffix("")
            if not private_path.is_file():
                continue
            try:
                records.append(self.validate(private_path))
            except (KeyNotFound, KeyUnreadable, KeyCorrupt, KeyPolicyViolation) as e:
                logger.info(f"Skipping {private_path}: {e.message}")
        return records

    def require_secure(self, record: KeyPairRecord) -> None:
        """Raise InsecurePermissions unless the key and its directory are owner-only."""
        if record.private_mode & 0o077:
            raise InsecurePermissions(record.private_path, record.private_mode, Mode.PRIVATE_KEY)
        if record.dir_mode & 0o077:
            raise InsecurePermissions(
                str(Path(record.private_path).parent), record.dir_mode, Mode.SECRET_DIR
            )

    def fix_permissions(self, path: PathLike) -> None:
        """Reset private key 0600, public key 0644 and key directory 0700."""
        private_path = Path(path).expanduser()
        public_path = Path(f"{private_path}.pub")
        os.chmod(private_path.parent, Mode.SECRET_DIR)
        if private_path.exists():
            os.chmod(private_path, Mode.PRIVATE_KEY)
        if public_path.exists():
            os.chmod(public_path, Mode.PUBLIC_KEY)
        logger.info(f"Fixed permissions for {private_path}")

    @staticmethod
    def _read(path: Path) -> bytes:
        try:
            return path.read_bytes()
        except PermissionError as e:
            raise KeyUnreadable(f"Cannot read {path}", path=str(path), cause=e)
        except OSError as e:
            raise KeyUnreadable(f"Cannot read {path}: {e.strerror}", path=str(path), cause=e)

    @staticmethod
    def _load_private(path: Path, data: bytes) -> Tuple[Optional[object], bool]:
        """Parse a private key. Returns (key, encrypted); key is None when encrypted."""
        loaders = [serialization.load_ssh_private_key, serialization.load_pem_private_key]
        last_error: Optional[Exception] = None
        for loader in loaders:
            try:
                return loader(data, password=None), False
            except TypeError:
                # Password was not given but private key is encrypted
                return None, True
            except (ValueError, UnsupportedAlgorithm) as e:
                last_error = e
        raise KeyCorrupt(f"Unparsable private key at {path}", path=str(path), cause=last_error)
