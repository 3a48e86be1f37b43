"""
polyroute Ring Parameters

Immutable configuration of the ring Z_q[x]/(x^n + 1):
- degree (n): power of two, length of every coefficient vector
- modulus (q): prime below 2^31
- num_characters (k): size of the character (DFT) basis, 1 <= k <= n

Parameters are passed explicitly to everything that builds a Polynomial,
so several ring sizes can coexist in one process.
"""

from dataclasses import dataclass

from ..errors import InvalidArgumentError


# Coefficients are stored as int64; the product of two reduced values
# must fit before reduction.
MAX_MODULUS = 2 ** 31

# Largest |integer| the FFT multiply may produce and still round exactly
FFT_EXACT_LIMIT = 2 ** 52

# Deterministic Miller-Rabin witnesses for every n < 3.3e24
_MR_WITNESSES = (2, 3, 5, 7, 11, 13, 17, 19, 23, 29, 31, 37, 41)


def next_power_of_two(n: int) -> int:
    """Smallest power of two >= n (1 for n <= 1)."""
    power = 1
    while power < n:
        power *= 2
    return power


def is_probable_prime(n: int) -> bool:
    """
    Primality test (deterministic Miller-Rabin for the supported range).

    Args:
        n: Integer to test

    Returns:
        True if n is prime
    """
    if n < 2:
        return False
    for p in _MR_WITNESSES:
        if n % p == 0:
            return n == p

    d = n - 1
    s = 0
    while d % 2 == 0:
        d //= 2
        s += 1

    for a in _MR_WITNESSES:
        x = pow(a, d, n)
        if x in (1, n - 1):
            continue
        for _ in range(s - 1):
            x = pow(x, 2, n)
            if x == n - 1:
                break
        else:
            return False
    return True


@dataclass(frozen=True)
class RingParameters:
    """
    Ring configuration shared by polynomials, codecs and routers.

    Raises:
        InvalidArgumentError: On construction, if any invariant fails
    """
    degree: int
    modulus: int
    num_characters: int

    def __post_init__(self):
        if self.degree < 1 or self.degree & (self.degree - 1):
            raise InvalidArgumentError(
                f"Degree must be a power of two: {self.degree}")

        if not 2 <= self.modulus < MAX_MODULUS:
            raise InvalidArgumentError(
                f"Modulus out of range: {self.modulus} (must be 2-{MAX_MODULUS - 1})")

        if not is_probable_prime(self.modulus):
            raise InvalidArgumentError(f"Modulus must be prime: {self.modulus}")

        if not 1 <= self.num_characters <= self.degree:
            raise InvalidArgumentError(
                f"Character count out of range: {self.num_characters} "
                f"(must be 1-{self.degree})")

    @property
    def transform_size(self) -> int:
        """FFT length used by polynomial multiplication."""
        return next_power_of_two(2 * self.degree)

    @property
    def fft_exact(self) -> bool:
        """
        Whether FFT multiplication rounds to the exact integer product.

        Each coefficient of the linear product is a sum of at most `degree`
        terms bounded by (q - 1)^2; double precision keeps unit accuracy
        below FFT_EXACT_LIMIT.
        """
        return self.degree * (self.modulus - 1) ** 2 < FFT_EXACT_LIMIT

    @classmethod
    def from_config(cls, ring_config) -> 'RingParameters':
        """
        Build parameters from a RingConfig section.

        Args:
            ring_config: polyroute.config.RingConfig

        Returns:
            Validated RingParameters
        """
        return cls(
            degree=ring_config.degree,
            modulus=ring_config.modulus,
            num_characters=ring_config.num_characters,
        )


# SAFE: local testing, ~10-100 users
SAFE_PARAMS = RingParameters(degree=64, modulus=65537, num_characters=8)

# MEDIUM: small networks, 100-1000 users
MEDIUM_PARAMS = RingParameters(degree=256, modulus=65537, num_characters=16)

# PRODUCTION: large networks
PRODUCTION_PARAMS = RingParameters(degree=4096, modulus=65537, num_characters=64)
