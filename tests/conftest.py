"""
polyroute Test Configuration
============================

Shared fixtures: ring parameter sets, seeded RNG and a cheap scrypt
configuration for identity tests.
"""

import pytest
import numpy as np

from polyroute.config import IdentityConfig
from polyroute.ring import Polynomial, RingParameters, SAFE_PARAMS, MEDIUM_PARAMS


@pytest.fixture
def params():
    """Default ring: n=64, q=65537, k=8."""
    return SAFE_PARAMS


@pytest.fixture
def medium_params():
    """n=256, q=65537, k=16."""
    return MEDIUM_PARAMS


@pytest.fixture
def tiny_params():
    """n=8, q=17, k=4; small enough to check by hand."""
    return RingParameters(degree=8, modulus=17, num_characters=4)


@pytest.fixture
def rng():
    """Reproducible random number generator."""
    return np.random.default_rng(42)


@pytest.fixture
def random_poly(rng):
    """Factory for uniformly random polynomials."""
    def make(params):
        return Polynomial(params, rng.integers(0, params.modulus, params.degree))
    return make


@pytest.fixture
def fast_identity_config():
    """scrypt at minimal cost so identity tests stay fast."""
    return IdentityConfig(scrypt_n=2 ** 4, scrypt_r=8, scrypt_p=1)
