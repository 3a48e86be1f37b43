"""
polyroute Cryptographic Module

Provides the device-side identity layer:
- CSPRNG sampling of ring elements (os.urandom)
- Polynomial identities with rotation and a local contact map
- scrypt password verifiers and BLAKE2b fingerprints

All primitives use the cryptography library (OpenSSL backend).
"""

from .primitives import (
    random_bytes,
    random_coefficients,
    blake2b_hash,
    derive_password_verifier,
    constant_time_compare,
)

from .identity import (
    IdentityRegistry,
    generate_polynomial_id,
    polynomial_fingerprint,
)

__all__ = [
    # Primitives
    'random_bytes',
    'random_coefficients',
    'blake2b_hash',
    'derive_password_verifier',
    'constant_time_compare',
    # Identity
    'IdentityRegistry',
    'generate_polynomial_id',
    'polynomial_fingerprint',
]
