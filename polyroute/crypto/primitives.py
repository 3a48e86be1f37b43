"""
polyroute Cryptographic Primitives

Low-level cryptographic functions wrapping the cryptography library.

SECURITY NOTES:
- All randomness from os.urandom (kernel CSPRNG, safe for concurrent use)
- All comparisons use constant-time operations
- Passwords are kept only as scrypt verifiers

Dependencies:
- cryptography
"""

import os
import hmac
from typing import Optional

import numpy as np
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from ..errors import InvalidArgumentError


# Sampling word size for random_coefficients
_SAMPLE_BYTES = 8
_SAMPLE_RANGE = 1 << (8 * _SAMPLE_BYTES)


def random_bytes(length: int) -> bytes:
    """
    Generate cryptographically secure random bytes.

    Uses os.urandom() which reads from the kernel's CSPRNG.

    Args:
        length: Number of random bytes to generate

    Returns:
        bytes: Cryptographically secure random bytes

    Raises:
        InvalidArgumentError: If length is negative
    """
    if length < 0:
        raise InvalidArgumentError("Length must be non-negative")
    return os.urandom(length)


def random_coefficients(count: int, modulus: int) -> np.ndarray:
    """
    Draw independent uniform integers in [0, modulus).

    Rejection sampling over 64-bit words: words at or above the largest
    multiple of the modulus are redrawn, so the result has no modulo bias.

    Args:
        count: Number of values
        modulus: Exclusive upper bound (>= 2)

    Returns:
        int64 array of length count
    """
    if count < 0:
        raise InvalidArgumentError("Count must be non-negative")
    if modulus < 2:
        raise InvalidArgumentError(f"Invalid modulus: {modulus}")

    limit = (_SAMPLE_RANGE // modulus) * modulus
    values = np.empty(count, dtype=np.int64)
    filled = 0
    while filled < count:
        needed = count - filled
        words = np.frombuffer(random_bytes(needed * _SAMPLE_BYTES), dtype=np.uint64)
        accepted = words[words < np.uint64(limit)] if limit < _SAMPLE_RANGE else words
        accepted = (accepted % np.uint64(modulus)).astype(np.int64)
        values[filled:filled + len(accepted)] = accepted
        filled += len(accepted)
    return values


def blake2b_hash(
    data: bytes,
    digest_size: int = 32,
    person: Optional[bytes] = None,
) -> bytes:
    """
    Compute BLAKE2b hash of data.

    Args:
        data: Data to hash
        digest_size: Output hash size in bytes (1-64, default 32)
        person: Optional personalization string (up to 16 bytes)

    Returns:
        bytes: BLAKE2b digest, truncated to digest_size

    Raises:
        InvalidArgumentError: If parameters are invalid
    """
    if not 1 <= digest_size <= 64:
        raise InvalidArgumentError("Digest size must be 1-64 bytes")

    if person is not None and len(person) > 16:
        raise InvalidArgumentError("Personalization must be at most 16 bytes")

    # cryptography only exposes the full 64-byte BLAKE2b
    hasher = hashes.Hash(hashes.BLAKE2b(64))

    if person is not None:
        hasher.update(person.ljust(16, b'\x00'))

    hasher.update(data)
    return hasher.finalize()[:digest_size]


def derive_password_verifier(
    password: str,
    salt: bytes,
    n: int = 2 ** 14,
    r: int = 8,
    p: int = 1,
    length: int = 32,
) -> bytes:
    """
    Derive a password verifier with scrypt.

    Args:
        password: Device password
        salt: Random salt (stored alongside the verifier)
        n, r, p: scrypt cost parameters
        length: Verifier length in bytes

    Returns:
        bytes: Derived verifier
    """
    kdf = Scrypt(salt=salt, length=length, n=n, r=r, p=p)
    return kdf.derive(password.encode("utf-8"))


def constant_time_compare(a: bytes, b: bytes) -> bool:
    """
    Compare two byte strings in constant time.

    Uses hmac.compare_digest().

    Args:
        a: First byte string
        b: Second byte string

    Returns:
        bool: True if equal, False otherwise
    """
    return hmac.compare_digest(a, b)
