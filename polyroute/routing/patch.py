"""
polyroute Patches

A patch is a named network region with its own local routing function
phi_patch, a ring homomorphism given by wreath-product weights. Patches
are immutable; learned weights produce new Patch instances.
"""

from dataclasses import dataclass
from typing import List

from ..errors import InvalidArgumentError
from ..ring.params import RingParameters
from ..ring.polynomial import Polynomial
from .codec import RoutingCodec, RoutingWeights


@dataclass(frozen=True)
class Patch:
    """
    Network region with local routing weights.
    """
    patch_id: str
    weights: RoutingWeights

    @classmethod
    def create(cls, patch_id: str, weights: RoutingWeights) -> 'Patch':
        """
        Create a patch.

        Raises:
            InvalidArgumentError: If patch_id is empty
        """
        if not patch_id:
            raise InvalidArgumentError("Patch ID cannot be empty")
        return cls(patch_id=patch_id, weights=weights)

    @classmethod
    def uniform(cls, patch_id: str, params: RingParameters) -> 'Patch':
        """Patch with untrained uniform weights over every position."""
        return cls.create(
            patch_id, RoutingWeights.uniform(params.degree, params.num_characters))

    def apply_local_routing(self, input_poly: Polynomial) -> Polynomial:
        """Apply phi_patch (wreath-product attention with this patch's weights)."""
        return RoutingCodec.apply_routing_weights(input_poly, self.weights)

    def project_to_characters(self, poly: Polynomial) -> List[Polynomial]:
        """All character projections of poly (DFT basis)."""
        return poly.project_to_all_characters()

    def with_weights(self, weights: RoutingWeights) -> 'Patch':
        """Same region, new weights."""
        return Patch(patch_id=self.patch_id, weights=weights)
