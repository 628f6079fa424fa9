"""
auth/keys.py -- RSA keypair provisioning for token signing.

Resolution order for obtain_keys(public_source, private_source):
  1. Either source is PEM text -> literal keys, no file I/O. If the two
     halves are not a matching pair, an in-memory pair is generated and an
     ERROR is logged; PEM text is never used as a path.
  2. Otherwise both are file paths. If both files exist and hold a valid,
     matching pair, load them.
  3. Otherwise generate a fresh 2048-bit RSA pair (e=65537), create the
     parent directories and write both files. Valid existing files are never
     overwritten; only absent or invalid ones are replaced.

"Valid" means: the public half loads as an RSA public key, the private half
loads as an unencrypted RSA private key, and the private key's public numbers
equal the public half. A mismatched pair would sign tokens that never verify.

KeyGenerationError is raised only when writing generated keys fails. In every
other case the caller gets usable keys.

Layer rule: may import from core/ (default paths). No imports from api/.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from auth.errors import KeyGenerationError
from auth.models import KeyMaterial
from core.config import DEFAULT_PRIVATE_KEY_PATH, DEFAULT_PUBLIC_KEY_PATH

logger = logging.getLogger("tokenward.keys")

_KEY_SIZE = 2048
_PUBLIC_EXPONENT = 65537
_PEM_MARKER = "-----BEGIN"


def is_valid_key_pair(public_pem: str, private_pem: str) -> bool:
    """Return True if both halves are RSA PEM keys belonging to the same pair."""
    try:
        public_key = serialization.load_pem_public_key(public_pem.encode("utf-8"))
        private_key = serialization.load_pem_private_key(private_pem.encode("utf-8"), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm):
        return False
    if not isinstance(public_key, rsa.RSAPublicKey) or not isinstance(private_key, rsa.RSAPrivateKey):
        return False
    return private_key.public_key().public_numbers() == public_key.public_numbers()


def generate_key_pair() -> KeyMaterial:
    """Generate a fresh 2048-bit RSA keypair as PEM text."""
    private_key = rsa.generate_private_key(public_exponent=_PUBLIC_EXPONENT, key_size=_KEY_SIZE)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return KeyMaterial(public_pem=public_pem.decode("utf-8"), private_pem=private_pem.decode("utf-8"))


def _looks_like_pem(source: str) -> bool:
    return source.lstrip().startswith(_PEM_MARKER)


def _read_pair(public_path: Path, private_path: Path) -> KeyMaterial | None:
    try:
        if not (public_path.is_file() and private_path.is_file()):
            return None
        public_pem = public_path.read_text(encoding="utf-8")
        private_pem = private_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Could not read key files %s / %s: %s", public_path, private_path, exc)
        return None
    if not is_valid_key_pair(public_pem, private_pem):
        logger.error("Key files %s / %s are not a valid RSA pair; generating new keys", public_path, private_path)
        return None
    return KeyMaterial(public_pem=public_pem, private_pem=private_pem)


def _write_pair(keys: KeyMaterial, public_path: Path, private_path: Path) -> None:
    try:
        public_path.parent.mkdir(parents=True, exist_ok=True)
        private_path.parent.mkdir(parents=True, exist_ok=True)
        public_path.write_text(keys.public_pem, encoding="utf-8")
        private_path.write_text(keys.private_pem, encoding="utf-8")
        os.chmod(private_path, 0o600)
    except OSError as exc:
        raise KeyGenerationError(
            "Unable to initialize RSA key pair! Tokens cannot be signed.",
            detail=f"{type(exc).__name__}: {exc}",
        ) from exc


def obtain_keys(public_source: str = "", private_source: str = "") -> KeyMaterial:
    """Resolve a usable keypair from literal PEM strings or file paths.

    Empty sources fall back to the default paths under ./rsa_keys/.
    """
    if _looks_like_pem(public_source) or _looks_like_pem(private_source):
        if is_valid_key_pair(public_source, private_source):
            return KeyMaterial(public_pem=public_source, private_pem=private_source)
        # PEM text is never a path. Nothing is written; tokens die with the process.
        logger.error(
            "PUBLIC_KEY / PRIVATE_KEY hold PEM text that is not a matching RSA pair; "
            "signing with an in-memory keypair until the configuration is fixed"
        )
        return generate_key_pair()

    public_path = Path(public_source or DEFAULT_PUBLIC_KEY_PATH)
    private_path = Path(private_source or DEFAULT_PRIVATE_KEY_PATH)

    loaded = _read_pair(public_path, private_path)
    if loaded is not None:
        logger.info("Loaded RSA keys from %s / %s", public_path, private_path)
        return loaded

    logger.warning("RSA keys were not loaded from %s / %s, generating new keys", public_path, private_path)
    keys = generate_key_pair()
    _write_pair(keys, public_path, private_path)
    return keys


class KeyProvider:
    """Owns the signing keypair for one authentication stack.

    Resolution happens once, at construction. The resulting KeyMaterial is
    immutable and safe to share across concurrent verifications.
    """

    def __init__(self, public_source: str = "", private_source: str = "") -> None:
        self.keys: KeyMaterial = obtain_keys(public_source, private_source)

    @property
    def public_key(self) -> str:
        return self.keys.public_pem

    @property
    def private_key(self) -> str:
        return self.keys.private_pem


def keys_equivalent(a: KeyProvider | KeyMaterial, b: KeyProvider | KeyMaterial) -> bool:
    """Return True if both resolve to byte-identical public and private PEM.

    Diagnostic helper (tests, CLI). Not used on any request path.
    """
    ka = a.keys if isinstance(a, KeyProvider) else a
    kb = b.keys if isinstance(b, KeyProvider) else b
    return (
        ka.public_pem.encode("utf-8") == kb.public_pem.encode("utf-8")
        and ka.private_pem.encode("utf-8") == kb.private_pem.encode("utf-8")
    )
