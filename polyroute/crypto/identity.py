"""
polyroute Identity Registry

Device-held polynomial identities for metadata privacy.

Only the device knows the mapping real identity <-> polynomial ID. Relays
see polynomials only.

Properties:
- Unlinkable: the polynomial ID is uniformly random in the ring
- Rotatable: rotation replaces the ID with no derivable link to the old one
- Local-only contacts: human-readable names -> contact polynomial IDs

SECURITY NOTES:
- The real identity and polynomial ID are never logged; logs carry a short
  BLAKE2b fingerprint instead
- The password is kept only as a salted scrypt verifier
- No rotation proof is produced (a zero-knowledge link between old and new
  IDs is a separate concern)
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

from ..config import IdentityConfig
from ..errors import InvalidArgumentError, NotFoundError
from ..ring.params import RingParameters, SAFE_PARAMS
from ..ring.polynomial import Polynomial
from .primitives import (
    blake2b_hash,
    constant_time_compare,
    derive_password_verifier,
    random_bytes,
    random_coefficients,
)


logger = logging.getLogger("polyroute.identity")


def generate_polynomial_id(params: RingParameters) -> Polynomial:
    """
    Draw a uniformly random ring element from the kernel CSPRNG.

    Args:
        params: Ring parameters

    Returns:
        Polynomial with n independent coefficients uniform in [0, q)
    """
    return Polynomial(params, random_coefficients(params.degree, params.modulus))


def polynomial_fingerprint(poly: Polynomial, digest_size: int = 8) -> str:
    """
    Short, non-reversible hex tag for a polynomial (safe to log).

    Args:
        poly: Polynomial to tag
        digest_size: Digest length in bytes

    Returns:
        Hex string of 2 * digest_size characters
    """
    return blake2b_hash(
        poly.as_array().tobytes(),
        digest_size=digest_size,
        person=b"polyroute-fprint",
    ).hex()


class IdentityRegistry:
    """
    One user's polynomial identity and device-local contact map.

    Usage:
        alice = IdentityRegistry.create("alice@example.com", "pw", params)
        alice.add_contact("Bob", bob_polynomial_id)
        bob_id = alice.lookup_contact_polynomial("Bob")

        # Periodic unlinkability
        alice.rotate()

    Thread Safety: contact and rotation operations are guarded by a lock.
    """

    def __init__(
        self,
        real_identity: str,
        polynomial_id: Polynomial,
        password_salt: bytes,
        password_verifier: bytes,
        config: Optional[IdentityConfig] = None,
    ):
        """
        Initialize from already-generated material. Use create().

        Args:
            real_identity: Phone number, email or username (never leaves the device)
            polynomial_id: Current unlinkable ID
            password_salt: scrypt salt
            password_verifier: scrypt output for the device password
            config: Identity configuration
        """
        self._real_identity = real_identity
        self._polynomial_id = polynomial_id
        self._created_at = datetime.now(timezone.utc)
        self._password_salt = password_salt
        self._password_verifier = password_verifier
        self._config = config or IdentityConfig()

        # name -> contact polynomial ID
        self._contacts: Dict[str, Polynomial] = {}

        self._lock = threading.RLock()

    @classmethod
    def create(
        cls,
        real_identity: str,
        password: str,
        params: RingParameters = SAFE_PARAMS,
        config: Optional[IdentityConfig] = None,
    ) -> 'IdentityRegistry':
        """
        Create an identity with a fresh random polynomial ID.

        Args:
            real_identity: Phone number, email or username
            password: Device password (kept only as a verifier)
            params: Ring parameters for the polynomial ID
            config: Identity configuration (scrypt cost, fingerprint size)

        Returns:
            IdentityRegistry with a new polynomial ID

        Raises:
            InvalidArgumentError: If real_identity or password is empty
        """
        if not real_identity:
            raise InvalidArgumentError("Real identity cannot be empty")
        if not password:
            raise InvalidArgumentError("Password cannot be empty")

        config = config or IdentityConfig()
        salt = random_bytes(config.salt_length)
        verifier = derive_password_verifier(
            password, salt, n=config.scrypt_n, r=config.scrypt_r, p=config.scrypt_p)

        identity = cls(
            real_identity,
            generate_polynomial_id(params),
            salt,
            verifier,
            config,
        )
        logger.info(f"Created polynomial identity {identity.fingerprint}")
        return identity

    @property
    def real_identity(self) -> str:
        return self._real_identity

    @property
    def polynomial_id(self) -> Polynomial:
        with self._lock:
            return self._polynomial_id

    @property
    def created_at(self) -> datetime:
        """When the current polynomial ID was generated (UTC)."""
        with self._lock:
            return self._created_at

    @property
    def params(self) -> RingParameters:
        return self._polynomial_id.params

    @property
    def fingerprint(self) -> str:
        """Loggable tag of the current polynomial ID."""
        return polynomial_fingerprint(self.polynomial_id, self._config.fingerprint_size)

    def verify_password(self, password: str) -> bool:
        """
        Check a password against the stored verifier.

        Args:
            password: Candidate password

        Returns:
            bool: True if it matches
        """
        candidate = derive_password_verifier(
            password,
            self._password_salt,
            n=self._config.scrypt_n,
            r=self._config.scrypt_r,
            p=self._config.scrypt_p,
            length=len(self._password_verifier),
        )
        return constant_time_compare(candidate, self._password_verifier)

    def rotate(self) -> None:
        """
        Replace the polynomial ID with a fresh random one.

        The old ID and its timestamp are discarded; nothing links them to
        the new ID.
        """
        with self._lock:
            old_fingerprint = self.fingerprint
            self._polynomial_id = generate_polynomial_id(self.params)
            self._created_at = datetime.now(timezone.utc)
            logger.info(f"Rotated polynomial identity {old_fingerprint} -> {self.fingerprint}")

    # Contact management (device-local only)

    def add_contact(self, contact_name: str, their_polynomial: Polynomial) -> None:
        """
        Add or overwrite a contact.

        Args:
            contact_name: Human-readable name
            their_polynomial: Contact's polynomial ID (exchanged out of band)

        Raises:
            InvalidArgumentError: If contact_name is empty
        """
        if not contact_name:
            raise InvalidArgumentError("Contact name cannot be empty")

        with self._lock:
            self._contacts[contact_name] = their_polynomial

    def remove_contact(self, contact_name: str) -> None:
        """
        Remove a contact.

        Raises:
            NotFoundError: If the contact does not exist
        """
        with self._lock:
            if contact_name not in self._contacts:
                raise NotFoundError(f"Contact not found: {contact_name}")
            del self._contacts[contact_name]

    def lookup_contact_polynomial(self, contact_name: str) -> Polynomial:
        """
        Look up a contact's polynomial ID.

        Raises:
            NotFoundError: If the contact does not exist
        """
        with self._lock:
            try:
                return self._contacts[contact_name]
            except KeyError:
                raise NotFoundError(f"Contact not found: {contact_name}") from None

    def list_contacts(self) -> List[str]:
        """All contact names (order unspecified)."""
        with self._lock:
            return list(self._contacts)

    def __repr__(self) -> str:
        return f"IdentityRegistry(id={self.fingerprint}, contacts={len(self._contacts)})"
