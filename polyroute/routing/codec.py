"""
polyroute Routing Codec

Algebraic routing via polynomial encoding.

- Additive masking: routed = message + destination; the recipient
  subtracts its own polynomial ID to recover the message. No integrity
  check at this layer (signatures are an external concern).
- Wreath-product weighting: output[p] = round(sum_j w[p][j] * P_j(input)[p])
  where P_j is the j-th character projection.
- Mailbox helpers: reversible bit layout of a 64-bit mailbox ID in the
  leading coefficients.

All operations are stateless and thread-safe.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .. import MAILBOX_ID_BITS
from ..errors import InvalidArgumentError, SolverError
from ..ring.polynomial import Polynomial, round_half_away


logger = logging.getLogger("polyroute.codec")

_MASK64 = (1 << MAILBOX_ID_BITS) - 1


class RoutingWeights:
    """
    Position-by-character routing weights, w[p][j].

    Immutable; rows are network positions, columns are characters.
    """

    __slots__ = ("_values",)

    def __init__(self, values):
        """
        Args:
            values: 2-D nested sequence or array of floats

        Raises:
            InvalidArgumentError: If values are not a finite 2-D matrix
        """
        array = np.array(values, dtype=np.float64)
        if array.size == 0 and array.ndim < 2:
            array = array.reshape(0, 0)
        if array.ndim != 2:
            raise InvalidArgumentError(
                f"Routing weights must be 2-D, got shape {array.shape}")
        if not np.all(np.isfinite(array)):
            raise InvalidArgumentError("Routing weights must be finite")
        array.setflags(write=False)
        self._values = array

    @classmethod
    def uniform(cls, num_positions: int, num_characters: int) -> 'RoutingWeights':
        """Every weight 1/num_characters (the untrained default)."""
        if num_positions < 0 or num_characters <= 0:
            raise InvalidArgumentError(
                f"Invalid dimensions: {num_positions} x {num_characters}")
        return cls(np.full((num_positions, num_characters), 1.0 / num_characters))

    @property
    def num_positions(self) -> int:
        return self._values.shape[0]

    @property
    def num_characters(self) -> int:
        return self._values.shape[1]

    def as_array(self) -> np.ndarray:
        """Read-only (positions, characters) float array."""
        return self._values

    def tolist(self) -> List[List[float]]:
        return self._values.tolist()

    def __getitem__(self, position: int) -> np.ndarray:
        return self._values[position]

    def __eq__(self, other) -> bool:
        if not isinstance(other, RoutingWeights):
            return NotImplemented
        return np.array_equal(self._values, other._values)

    def __hash__(self) -> int:
        return hash((self._values.shape, self._values.tobytes()))

    def __repr__(self) -> str:
        return f"RoutingWeights({self.num_positions}x{self.num_characters})"


@dataclass(frozen=True)
class RoutingExample:
    """
    Training example for learning routing weights.
    """
    source: Polynomial            # Source polynomial ID
    destination: Polynomial       # Destination polynomial ID
    message: Polynomial           # Message to route
    expected_output: Polynomial   # Expected routed polynomial

    # Restrict the example to one patch (None = trains every patch)
    patch_id: Optional[str] = None


def character_matrix(poly: Polynomial) -> np.ndarray:
    """
    Stack all character projections of a polynomial.

    Returns:
        (n, k) int64 array; column j is P_j(poly)
    """
    projections = poly.project_to_all_characters()
    return np.stack([p.as_array() for p in projections], axis=1)


class RoutingCodec:
    """
    Routing polynomial encoder/decoder.

    Usage:
        routed = RoutingCodec.encode_route(alice_id, bob_id, message)

        # Relay side (blind)
        routed = RoutingCodec.apply_routing_weights(routed, weights)

        # Bob's device
        message = RoutingCodec.extract_message(routed, bob_id)
    """

    @staticmethod
    def encode_route(
        source: Polynomial,
        destination: Polynomial,
        message: Polynomial,
    ) -> Polynomial:
        """
        Encode routing information: message + destination.

        The source is accepted but not mixed in; keyed or signed variants
        of the encoding use it.

        Args:
            source: Sender's polynomial ID
            destination: Recipient's polynomial ID
            message: Message polynomial

        Returns:
            Routed polynomial
        """
        return message.add(destination)

    @staticmethod
    def extract_message(routed: Polynomial, my_id: Polynomial) -> Polynomial:
        """
        Recover the message: routed - my_id.

        Yields the original message iff my_id is the destination used at
        encode time. Nothing here detects a wrong recipient.
        """
        return routed.subtract(my_id)

    @staticmethod
    def apply_routing_weights(input_poly: Polynomial, weights: RoutingWeights) -> Polynomial:
        """
        Apply wreath-product attention.

        For p < min(num_positions, n):
            output[p] = round(sum_j w[p][j] * P_j(input)[p])
        All other coefficients are zero.

        Args:
            input_poly: Input polynomial
            weights: Routing weights

        Returns:
            Weighted polynomial, or input_poly unchanged if the weights'
            character count differs from the ring's
        """
        params = input_poly.params
        if weights.num_characters != params.num_characters:
            logger.debug(
                f"Weight/character mismatch ({weights.num_characters} != "
                f"{params.num_characters}), passing input through")
            return input_poly

        projections = character_matrix(input_poly)
        limit = min(weights.num_positions, params.degree)

        output = np.zeros(params.degree, dtype=np.int64)
        weighted = np.sum(weights.as_array()[:limit] * projections[:limit], axis=1)
        output[:limit] = round_half_away(weighted)
        return Polynomial(params, output)

    @staticmethod
    def learn_routing_weights(
        examples: Sequence[RoutingExample],
        num_positions: int,
        num_characters: int,
    ) -> RoutingWeights:
        """
        Learn weights from examples, one least-squares solve per position.

        For each position p, minimizes over all examples
            sum_j w[p][j] * P_j(message)[p] - expected[p]
        in the L2 sense. Use SheafRouter when patches must also agree at
        boundaries.

        Args:
            examples: Training data
            num_positions: Network depth (1..n)
            num_characters: Character basis size (must equal the ring's)

        Returns:
            Learned routing weights

        Raises:
            InvalidArgumentError: On empty examples or invalid dimensions
            SolverError: If the solver fails to converge
        """
        if not examples:
            raise InvalidArgumentError("No training examples provided")
        if num_positions <= 0 or num_characters <= 0:
            raise InvalidArgumentError("Invalid dimensions")

        params = examples[0].message.params
        if num_positions > params.degree:
            raise InvalidArgumentError(
                f"Position count out of range: {num_positions} > {params.degree}")
        if num_characters != params.num_characters:
            raise InvalidArgumentError(
                f"Character count mismatch: {num_characters} != {params.num_characters}")
        for example in examples:
            if example.message.params != params or example.expected_output.params != params:
                raise InvalidArgumentError("Examples use different ring parameters")

        # (examples, n, k) and (examples, n)
        projections = np.stack([character_matrix(e.message) for e in examples]).astype(np.float64)
        targets = np.stack([e.expected_output.as_array() for e in examples]).astype(np.float64)

        weights = np.zeros((num_positions, num_characters))
        try:
            for p in range(num_positions):
                solution, _, _, _ = np.linalg.lstsq(projections[:, p, :], targets[:, p], rcond=None)
                weights[p] = solution
        except np.linalg.LinAlgError as e:
            raise SolverError(f"Least-squares solve failed: {e}") from e

        return RoutingWeights(weights)

    @staticmethod
    def embed_mailbox_id(mailbox_id: int, message: Polynomial) -> Polynomial:
        """
        Lay out a 64-bit mailbox ID ahead of a message.

        Bit i of the ID goes to coefficient i (i < 64); message coefficient
        m goes to slot 64 + m, truncated at n.

        Args:
            mailbox_id: Mailbox ID (masked to 64 bits)
            message: Message polynomial

        Returns:
            Embedded polynomial

        Raises:
            InvalidArgumentError: If the ring degree is below 64
        """
        params = message.params
        if params.degree < MAILBOX_ID_BITS:
            raise InvalidArgumentError(
                f"Degree {params.degree} too small for a {MAILBOX_ID_BITS}-bit mailbox ID")

        mailbox_id &= _MASK64
        coeffs = np.zeros(params.degree, dtype=np.int64)
        coeffs[:MAILBOX_ID_BITS] = [(mailbox_id >> i) & 1 for i in range(MAILBOX_ID_BITS)]
        room = params.degree - MAILBOX_ID_BITS
        coeffs[MAILBOX_ID_BITS:] = message.as_array()[:room]
        return Polynomial(params, coeffs)

    @staticmethod
    def extract_mailbox_id(poly: Polynomial) -> int:
        """
        Fold the leading 64 coefficients into a mailbox ID.

        XOR of rotl64(c_i, i) over i < 64. For a polynomial built by
        embed_mailbox_id every c_i is a single bit, so this returns the
        embedded ID exactly.

        Returns:
            Unsigned 64-bit mailbox ID
        """
        result = 0
        for i, coeff in enumerate(poly.decode()[:MAILBOX_ID_BITS]):
            value = coeff & _MASK64
            rotated = ((value << i) | (value >> (MAILBOX_ID_BITS - i))) & _MASK64 if i else value
            result ^= rotated
        return result
