"""
Password digests in RabbitMQ's native credential format.

A stored digest is ``base64(salt ++ H(salt ++ utf8(password)))`` with a
4 byte salt. Verification never recovers the plaintext: the salt is taken
from the stored digest, the candidate is hashed with it, and the two
encoded strings are compared.
"""

import base64
import binascii
import hashlib
import hmac
import secrets
from typing import Callable, Dict, Optional

from errors import ConfigurationError

SHA256 = "rabbit_password_hashing_sha256"
SHA512 = "rabbit_password_hashing_sha512"
DEFAULT_HASH_ALGORITHM = SHA256

SALT_LENGTH = 4

HASH_ALGORITHMS: Dict[str, Callable] = {
    SHA256: hashlib.sha256,
    SHA512: hashlib.sha512,
}


def _digest_factory(algorithm: str) -> Callable:
    try:
        return HASH_ALGORITHMS[algorithm]
    except KeyError:
        raise ConfigurationError(f"unknown password hashing algorithm {algorithm}")


def hash_password(
    password: str,
    algorithm: str = DEFAULT_HASH_ALGORITHM,
    salt: Optional[bytes] = None,
) -> str:
    """
    Produce a broker-compatible password digest.

    Args:
        password: Plaintext password.
        algorithm: One of the keys of ``HASH_ALGORITHMS``.
        salt: 4 salt bytes. A fresh random salt is generated when omitted.

    Returns:
        The base64-encoded salted digest.

    Raises:
        ConfigurationError: If the algorithm is unknown.
    """
    factory = _digest_factory(algorithm)
    if salt is None:
        salt = secrets.token_bytes(SALT_LENGTH)
    elif len(salt) != SALT_LENGTH:
        raise ValueError(f"salt must be {SALT_LENGTH} bytes, got {len(salt)}")

    digest = factory(salt + password.encode("utf-8")).digest()
    return base64.b64encode(salt + digest).decode("ascii")


def verify_password(
    password: str, stored_hash: str, algorithm: str = DEFAULT_HASH_ALGORITHM
) -> bool:
    """
    Check whether ``password`` produced ``stored_hash``.

    A stored digest that is not valid base64 or is too short to hold a salt
    never verifies.

    Raises:
        ConfigurationError: If the algorithm is unknown.
    """
    _digest_factory(algorithm)
    if not stored_hash:
        return False

    try:
        decoded = base64.b64decode(stored_hash, validate=True)
    except (binascii.Error, ValueError):
        return False
    if len(decoded) <= SALT_LENGTH:
        return False

    candidate = hash_password(password, algorithm, salt=decoded[:SALT_LENGTH])
    return hmac.compare_digest(candidate.encode("ascii"), stored_hash.encode("ascii"))


def generate_password(nbytes: int = 24) -> str:
    """Generate a random URL-safe password for a new broker user."""
    return secrets.token_urlsafe(nbytes)
