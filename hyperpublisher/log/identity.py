"""Deterministic key material derived from a 32-byte seed.

The same seed always yields the same key pairs, so publishing with a seed
reopens the same logical logs. Each log in a drive gets its own key pair,
derived from the seed and the log's name.
"""

import hashlib
import secrets
from dataclasses import dataclass

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from ..errors import InvalidArgument

SEED_LENGTH = 32
URL_SCHEME = "hyper://"
DISCOVERY_NAMESPACE = b"hypercore"


def random_seed() -> bytes:
    """Generate a fresh secret seed."""
    return secrets.token_bytes(SEED_LENGTH)


def parse_seed(seed: bytes | str | None) -> bytes:
    """Accept a seed as raw bytes or a hex string.

    Raises:
        InvalidArgument: If the seed is missing or not 32 bytes.
    """
    if seed is None or seed == "" or seed == b"":
        raise InvalidArgument("A seed is required", field="seed")

    if isinstance(seed, str):
        try:
            seed = bytes.fromhex(seed)
        except ValueError as e:
            raise InvalidArgument(f"Seed is not valid hex: {e}", field="seed") from e

    if len(seed) != SEED_LENGTH:
        raise InvalidArgument(
            f"Seed must be {SEED_LENGTH} bytes, got {len(seed)}", field="seed"
        )
    return bytes(seed)


def discovery_key(public_key: bytes) -> bytes:
    """Topic under which peers of a log find each other."""
    return hashlib.blake2b(DISCOVERY_NAMESPACE, key=public_key, digest_size=32).digest()


def url_for(public_key: bytes) -> str:
    return f"{URL_SCHEME}{public_key.hex()}"


def parse_url(url: str) -> bytes:
    """Extract the public key from a hyper:// URL (or bare hex key)."""
    key_hex = url[len(URL_SCHEME):] if url.startswith(URL_SCHEME) else url
    key_hex = key_hex.strip("/")
    try:
        key = bytes.fromhex(key_hex)
    except ValueError as e:
        raise InvalidArgument(f"Invalid drive URL: {url}", field="url") from e
    if len(key) != 32:
        raise InvalidArgument(f"Invalid drive URL: {url}", field="url")
    return key


def verify(public_key: bytes, message: bytes, signature: bytes) -> bool:
    """Check an Ed25519 signature against a raw public key."""
    try:
        Ed25519PublicKey.from_public_bytes(public_key).verify(signature, message)
    except InvalidSignature:
        return False
    return True


@dataclass(frozen=True)
class KeyPair:
    """Ed25519 key pair for one log. The secret is absent for replicas."""

    public_key: bytes
    private_key: Ed25519PrivateKey | None = None

    @classmethod
    def from_seed(cls, seed: bytes, name: str) -> "KeyPair":
        """Derive the key pair of the log called `name` under `seed`."""
        secret = hashlib.blake2b(
            name.encode("utf-8"), key=parse_seed(seed), digest_size=32
        ).digest()
        private_key = Ed25519PrivateKey.from_private_bytes(secret)
        public_key = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return cls(public_key=public_key, private_key=private_key)

    @classmethod
    def read_only(cls, public_key: bytes) -> "KeyPair":
        return cls(public_key=public_key)

    @property
    def writable(self) -> bool:
        return self.private_key is not None

    @property
    def discovery_key(self) -> bytes:
        return discovery_key(self.public_key)

    @property
    def url(self) -> str:
        return url_for(self.public_key)

    def sign(self, message: bytes) -> bytes:
        if self.private_key is None:
            raise InvalidArgument("Cannot sign without a secret key")
        return self.private_key.sign(message)


@dataclass(frozen=True)
class DriveKeys:
    """Key pairs for the two logs backing a drive."""

    metadata: KeyPair
    content: KeyPair

    @classmethod
    def from_seed(cls, seed: bytes | str) -> "DriveKeys":
        seed = parse_seed(seed)
        return cls(
            metadata=KeyPair.from_seed(seed, "metadata"),
            content=KeyPair.from_seed(seed, "content"),
        )

    @property
    def url(self) -> str:
        """Public identity of the drive: the metadata log's key."""
        return self.metadata.url
