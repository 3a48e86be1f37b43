"""
polyroute Homomorphic Back End

Interface for an optional homomorphic encryption capability that mirrors
ring operations over ciphertexts. Every operation is depth-0: no noise
management (bootstrapping) is required.

Contract:
    decrypt(op(encrypt(a), encrypt(b))) == op(a, b) on the plaintext ring

Implementations:
- PlaintextBackend: identity back end for tests and local development.
  Ciphertexts carry the reduced coefficients in the clear.

A real scheme plugs in by subclassing HomomorphicBackend; routing logic
never depends on which back end is in use.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

import numpy as np

from ..errors import InvalidArgumentError
from .params import RingParameters
from .polynomial import Polynomial


@dataclass(frozen=True)
class Ciphertext:
    """
    Opaque ciphertext handle.

    Attributes:
        backend_id: Identifier of the back end that produced it
        payload: Scheme-specific data (never interpreted by routing code)
    """
    backend_id: str
    payload: Any


class HomomorphicBackend(ABC):
    """
    Depth-0 homomorphic operations over ring-element ciphertexts.
    """

    def __init__(self, params: RingParameters, key: Optional[bytes] = None):
        """
        Args:
            params: Ring parameters the back end encrypts under
            key: Scheme key material (format defined by the scheme)
        """
        self._params = params
        self._key = key

    @property
    def params(self) -> RingParameters:
        return self._params

    @property
    @abstractmethod
    def backend_id(self) -> str:
        """Stable identifier stamped on every ciphertext."""

    @abstractmethod
    def encrypt(self, coefficients: Sequence[int]) -> Ciphertext:
        """Encrypt a coefficient vector of at most n values."""

    @abstractmethod
    def decrypt(self, ciphertext: Ciphertext) -> List[int]:
        """Decrypt to a length-n coefficient vector."""

    @abstractmethod
    def add(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        """Enc(a) + Enc(b) -> Enc(a + b)."""

    @abstractmethod
    def subtract(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        """Enc(a) - Enc(b) -> Enc(a - b)."""

    @abstractmethod
    def multiply_scalar(self, a: Ciphertext, scalar: int) -> Ciphertext:
        """k * Enc(a) -> Enc(k * a) for a plaintext scalar k."""

    @abstractmethod
    def rotate(self, a: Ciphertext, positions: int) -> Ciphertext:
        """Enc(a) -> Enc(rotate(a, positions))."""

    def _check_owned(self, *ciphertexts: Ciphertext) -> None:
        for ct in ciphertexts:
            if ct.backend_id != self.backend_id:
                raise InvalidArgumentError(
                    f"Ciphertext from back end {ct.backend_id!r} "
                    f"used with {self.backend_id!r}")


class PlaintextBackend(HomomorphicBackend):
    """
    Identity back end: "ciphertexts" are the plaintext coefficients.

    Delegates every operation to Polynomial, which makes it the reference
    against which real schemes can be checked.
    """

    @property
    def backend_id(self) -> str:
        return f"plaintext-{self._params.degree}-{self._params.modulus}"

    def _wrap(self, poly: Polynomial) -> Ciphertext:
        return Ciphertext(backend_id=self.backend_id, payload=poly)

    def encrypt(self, coefficients: Sequence[int]) -> Ciphertext:
        return self._wrap(Polynomial.encode(self._params, coefficients))

    def decrypt(self, ciphertext: Ciphertext) -> List[int]:
        self._check_owned(ciphertext)
        return ciphertext.payload.decode()

    def add(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        self._check_owned(a, b)
        return self._wrap(a.payload.add(b.payload))

    def subtract(self, a: Ciphertext, b: Ciphertext) -> Ciphertext:
        self._check_owned(a, b)
        return self._wrap(a.payload.subtract(b.payload))

    def multiply_scalar(self, a: Ciphertext, scalar: int) -> Ciphertext:
        self._check_owned(a)
        return self._wrap(a.payload.multiply_scalar(scalar))

    def rotate(self, a: Ciphertext, positions: int) -> Ciphertext:
        self._check_owned(a)
        return self._wrap(a.payload.rotate(positions))


class EncryptedPolynomial:
    """
    Encrypted ring element with the Polynomial API.

    Usage:
        backend = PlaintextBackend(params)
        enc = EncryptedPolynomial.encrypt(Polynomial(params, [1, 2, 3]), backend)
        enc_sum = enc.add(other_enc)         # server side, blind
        plain = enc_sum.decrypt()            # client side only

    Immutable after construction.
    """

    __slots__ = ("_ciphertext", "_backend")

    def __init__(self, ciphertext: Ciphertext, backend: HomomorphicBackend):
        self._ciphertext = ciphertext
        self._backend = backend

    @classmethod
    def encrypt(cls, polynomial: Polynomial, backend: HomomorphicBackend) -> 'EncryptedPolynomial':
        """
        Encrypt a plaintext polynomial.

        Raises:
            InvalidArgumentError: If the polynomial's ring differs from the
                back end's
        """
        if polynomial.params != backend.params:
            raise InvalidArgumentError(
                f"Ring parameter mismatch: {polynomial.params} vs {backend.params}")
        return cls(backend.encrypt(polynomial.decode()), backend)

    def decrypt(self) -> Polynomial:
        """Decrypt to a plaintext polynomial (client side only)."""
        coeffs = self._backend.decrypt(self._ciphertext)
        return Polynomial(self._backend.params, np.asarray(coeffs, dtype=np.int64))

    @property
    def ciphertext(self) -> Ciphertext:
        return self._ciphertext

    def _check_same_backend(self, other: 'EncryptedPolynomial') -> None:
        if other._backend is not self._backend:
            raise InvalidArgumentError("Encrypted polynomials use different back ends")

    def add(self, other: 'EncryptedPolynomial') -> 'EncryptedPolynomial':
        self._check_same_backend(other)
        return EncryptedPolynomial(
            self._backend.add(self._ciphertext, other._ciphertext), self._backend)

    def subtract(self, other: 'EncryptedPolynomial') -> 'EncryptedPolynomial':
        self._check_same_backend(other)
        return EncryptedPolynomial(
            self._backend.subtract(self._ciphertext, other._ciphertext), self._backend)

    def multiply_scalar(self, scalar: int) -> 'EncryptedPolynomial':
        return EncryptedPolynomial(
            self._backend.multiply_scalar(self._ciphertext, scalar), self._backend)

    def rotate(self, positions: int) -> 'EncryptedPolynomial':
        return EncryptedPolynomial(
            self._backend.rotate(self._ciphertext, positions), self._backend)
