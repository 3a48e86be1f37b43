"""
polyroute Polynomial Ring Engine

Elements of Z_q[x]/(x^n + 1) and their arithmetic.

Every Polynomial is an immutable value: a RingParameters instance plus a
read-only int64 vector of exactly n coefficients in [0, q). All operations
return new instances.

Multiplication:
- Radix-2 Cooley-Tukey FFT of length next_power_of_two(2n), pointwise
  product, inverse FFT, rounding, then negacyclic fold (x^n = -1).
- Exact while n * (q - 1)^2 < 2^52 (RingParameters.fft_exact). Every
  preset qualifies: PRODUCTION peaks at 2^44. Larger rings fall back to
  an exact limb-split integer convolution.

Character projections:
- The coefficient vector is read as n/k interleaved cycles of length k;
  projection j extracts the j-th Fourier component of each cycle.
"""

from functools import lru_cache
from typing import Iterable, List, Optional, Tuple

import numpy as np

from ..errors import InvalidArgumentError
from .params import RingParameters


# Limb width for the exact convolution fallback. Keeps every partial sum
# below 2^63 for degree < 2^24.
_LIMB_BITS = 8
_LIMB_MASK = (1 << _LIMB_BITS) - 1


def round_half_away(values: np.ndarray) -> np.ndarray:
    """
    Round to nearest integer, halves away from zero.

    Args:
        values: Float array

    Returns:
        int64 array
    """
    return (np.sign(values) * np.floor(np.abs(values) + 0.5)).astype(np.int64)


@lru_cache(maxsize=64)
def _bit_reverse_indices(n: int) -> np.ndarray:
    """Bit-reversal permutation for an n-point radix-2 transform."""
    bits = n.bit_length() - 1
    indices = np.arange(n)
    reversed_indices = np.zeros(n, dtype=np.int64)
    for _ in range(bits):
        reversed_indices = (reversed_indices << 1) | (indices & 1)
        indices = indices >> 1
    return reversed_indices


def fft(values: np.ndarray, inverse: bool = False) -> np.ndarray:
    """
    Iterative radix-2 Cooley-Tukey transform.

    Args:
        values: Complex (or real) vector, length a power of two
        inverse: Compute the inverse transform (scaled by 1/n)

    Returns:
        Transformed complex vector (new array)
    """
    n = len(values)
    data = np.asarray(values, dtype=np.complex128)[_bit_reverse_indices(n)]
    sign = 1.0 if inverse else -1.0

    size = 2
    while size <= n:
        half = size // 2
        twiddle = np.exp(sign * 2j * np.pi * np.arange(half) / size)
        blocks = data.reshape(-1, size)
        even = blocks[:, :half].copy()
        odd = blocks[:, half:] * twiddle
        blocks[:, :half] = even + odd
        blocks[:, half:] = even - odd
        size *= 2

    if inverse:
        data /= n
    return data


@lru_cache(maxsize=64)
def _projection_basis(params: RingParameters) -> Tuple[np.ndarray, np.ndarray]:
    """
    Gather indices and cosine table for character projection.

    Returns:
        (indices, cosines): indices[s, m] = (s*k + m) mod n and
        cosines[m, j] = cos(2*pi*j*m / k) / k. For real coefficients,
        Re(omega^{-jm} * c) = cos(2*pi*j*m / k) * c.
    """
    n = params.degree
    k = params.num_characters
    slots = np.arange(n)[:, None]
    cycle = np.arange(k)[None, :]
    indices = (slots * k + cycle) % n

    phase = 2.0 * np.pi * np.outer(np.arange(k), np.arange(k)) / k
    cosines = np.cos(phase) / k
    indices.setflags(write=False)
    cosines.setflags(write=False)
    return indices, cosines


def _readonly(values: np.ndarray) -> np.ndarray:
    values.setflags(write=False)
    return values


class Polynomial:
    """
    Ring element of Z_q[x]/(x^n + 1).

    Usage:
        params = SAFE_PARAMS
        p = Polynomial(params, [1, 2, 3])       # zero-padded to n
        q = Polynomial.encode(params, [4, 5])   # length-checked
        r = p.add(q).rotate(1)
        r.decode()                              # list of n ints
    """

    __slots__ = ("_params", "_coeffs")

    def __init__(
        self,
        params: RingParameters,
        coefficients: Optional[Iterable[int]] = None,
    ):
        """
        Build a ring element.

        Values are reduced mod q; short input is zero-padded; long input is
        folded block-wise mod (x^n + 1): even blocks add, odd blocks
        subtract.

        Args:
            params: Ring parameters
            coefficients: Integer coefficients (default: zero polynomial)
        """
        self._params = params
        self._coeffs = _readonly(self._reduce(params, coefficients))

    @staticmethod
    def _reduce(params: RingParameters, coefficients) -> np.ndarray:
        n = params.degree
        q = params.modulus

        if coefficients is None:
            return np.zeros(n, dtype=np.int64)

        if isinstance(coefficients, np.ndarray) and coefficients.dtype.kind in "iu":
            values = np.mod(coefficients.astype(np.int64), q)
        else:
            # Python ints first: arbitrary-size input must not overflow
            values = np.array([int(c) % q for c in coefficients], dtype=np.int64)

        if len(values) <= n:
            padded = np.zeros(n, dtype=np.int64)
            padded[:len(values)] = values
            return padded

        # x^n = -1: block b of length n contributes (-1)^b
        num_blocks = -(-len(values) // n)
        padded = np.zeros(num_blocks * n, dtype=np.int64)
        padded[:len(values)] = values
        blocks = padded.reshape(num_blocks, n)
        signs = np.where(np.arange(num_blocks) % 2 == 0, 1, -1)[:, None]
        return np.mod((blocks * signs).sum(axis=0), q)

    @classmethod
    def _from_reduced(cls, params: RingParameters, coeffs: np.ndarray) -> 'Polynomial':
        """Wrap an already-reduced length-n vector without copying."""
        poly = cls.__new__(cls)
        poly._params = params
        poly._coeffs = _readonly(coeffs)
        return poly

    @classmethod
    def zero(cls, params: RingParameters) -> 'Polynomial':
        """Additive identity."""
        return cls(params)

    @classmethod
    def encode(cls, params: RingParameters, values: Iterable[int]) -> 'Polynomial':
        """
        Encode a value vector as a ring element.

        Args:
            params: Ring parameters
            values: At most n integers

        Returns:
            Polynomial with the values as leading coefficients

        Raises:
            InvalidArgumentError: If more than n values are given
        """
        values = list(values)
        if len(values) > params.degree:
            raise InvalidArgumentError(
                f"Too many values to encode: {len(values)} > {params.degree}")
        return cls(params, values)

    def decode(self) -> List[int]:
        """Coefficient vector as a list of n ints."""
        return self._coeffs.tolist()

    def as_array(self) -> np.ndarray:
        """Read-only int64 view of the coefficients."""
        return self._coeffs

    @property
    def params(self) -> RingParameters:
        return self._params

    def _check_compatible(self, other: 'Polynomial') -> None:
        if other._params != self._params:
            raise InvalidArgumentError(
                f"Ring parameter mismatch: {self._params} vs {other._params}")

    # Ring arithmetic

    def add(self, other: 'Polynomial') -> 'Polynomial':
        """Coefficient-wise sum mod q."""
        self._check_compatible(other)
        return self._from_reduced(
            self._params, np.mod(self._coeffs + other._coeffs, self._params.modulus))

    def subtract(self, other: 'Polynomial') -> 'Polynomial':
        """Coefficient-wise difference mod q."""
        self._check_compatible(other)
        return self._from_reduced(
            self._params, np.mod(self._coeffs - other._coeffs, self._params.modulus))

    def multiply_scalar(self, scalar: int) -> 'Polynomial':
        """Multiply every coefficient by an integer scalar mod q."""
        q = self._params.modulus
        return self._from_reduced(self._params, np.mod(self._coeffs * (int(scalar) % q), q))

    def negate(self) -> 'Polynomial':
        """Additive inverse."""
        return self._from_reduced(self._params, np.mod(-self._coeffs, self._params.modulus))

    def multiply(self, other: 'Polynomial') -> 'Polynomial':
        """
        Ring product mod (x^n + 1, q).

        Uses the FFT when the parameters guarantee exact rounding,
        otherwise an exact integer convolution.
        """
        self._check_compatible(other)
        if self._params.fft_exact:
            product = self._fft_convolve(self._coeffs, other._coeffs)
        else:
            product = self._exact_convolve(self._coeffs, other._coeffs)
        return Polynomial(self._params, product)

    def _fft_convolve(self, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        size = self._params.transform_size
        a_padded = np.zeros(size, dtype=np.complex128)
        b_padded = np.zeros(size, dtype=np.complex128)
        a_padded[:len(a)] = a
        b_padded[:len(b)] = b

        spectrum = fft(a_padded) * fft(b_padded)
        product = fft(spectrum, inverse=True)
        return np.rint(product.real).astype(np.int64)

    def _exact_convolve(self, a: np.ndarray, b: np.ndarray) -> np.ndarray:
        q = self._params.modulus
        result = np.zeros(2 * len(a) - 1, dtype=np.int64)
        remaining = b.copy()
        scale = 1
        while remaining.any():
            limb = remaining & _LIMB_MASK
            partial = np.mod(np.convolve(a, limb), q)
            result = np.mod(result + partial * scale, q)
            remaining >>= _LIMB_BITS
            scale = (scale << _LIMB_BITS) % q
        return result

    def rotate(self, positions: int) -> 'Polynomial':
        """
        Cyclic shift of coefficients.

        Args:
            positions: Shift right by this many slots (negative: left)
        """
        shift = positions % self._params.degree
        return self._from_reduced(self._params, np.roll(self._coeffs, shift))

    # Character projections

    def _projection_matrix(self) -> np.ndarray:
        """(n, k) float matrix; column j is projection j before rounding."""
        indices, cosines = _projection_basis(self._params)
        gathered = self._coeffs[indices].astype(np.float64)
        return gathered @ cosines

    def project_to_character(self, character_index: int) -> 'Polynomial':
        """
        Project onto one character of the cyclic basis.

        Args:
            character_index: j in [0, num_characters)

        Returns:
            Polynomial whose slot s holds the j-th Fourier component of
            cycle s, rounded and reduced mod q

        Raises:
            InvalidArgumentError: If the index is out of range
        """
        k = self._params.num_characters
        if not 0 <= character_index < k:
            raise InvalidArgumentError(
                f"Character index out of range: {character_index} (must be 0-{k - 1})")

        column = self._projection_matrix()[:, character_index]
        return self._from_reduced(
            self._params, np.mod(round_half_away(column), self._params.modulus))

    def project_to_all_characters(self) -> List['Polynomial']:
        """
        All k character projections, in order 0..k-1.

        num_characters is validated by RingParameters, so the result always
        has exactly k entries.
        """
        projected = np.mod(round_half_away(self._projection_matrix()), self._params.modulus)
        return [
            self._from_reduced(self._params, np.ascontiguousarray(projected[:, j]))
            for j in range(self._params.num_characters)
        ]

    # Value semantics

    def __eq__(self, other) -> bool:
        if not isinstance(other, Polynomial):
            return NotImplemented
        return self._params == other._params and np.array_equal(self._coeffs, other._coeffs)

    def __hash__(self) -> int:
        return hash((self._params, self._coeffs.tobytes()))

    def __len__(self) -> int:
        return self._params.degree

    def __repr__(self) -> str:
        head = ", ".join(str(c) for c in self._coeffs[:4])
        more = ", ..." if self._params.degree > 4 else ""
        return f"Polynomial(n={self._params.degree}, q={self._params.modulus}, [{head}{more}])"
