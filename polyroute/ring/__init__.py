"""
polyroute Ring Module

Polynomial ring engine for Z_q[x]/(x^n + 1):
- params.py     : RingParameters and preset parameter sets
- polynomial.py : Ring elements, FFT multiplication, character projections
- backend.py    : Depth-0 homomorphic back end interface
"""

from .params import (
    RingParameters,
    SAFE_PARAMS,
    MEDIUM_PARAMS,
    PRODUCTION_PARAMS,
    next_power_of_two,
    is_probable_prime,
)

from .polynomial import (
    Polynomial,
    fft,
    round_half_away,
)

from .backend import (
    Ciphertext,
    HomomorphicBackend,
    PlaintextBackend,
    EncryptedPolynomial,
)

__all__ = [
    # Parameters
    'RingParameters',
    'SAFE_PARAMS',
    'MEDIUM_PARAMS',
    'PRODUCTION_PARAMS',
    'next_power_of_two',
    'is_probable_prime',
    # Polynomial
    'Polynomial',
    'fft',
    'round_half_away',
    # Back end
    'Ciphertext',
    'HomomorphicBackend',
    'PlaintextBackend',
    'EncryptedPolynomial',
]
