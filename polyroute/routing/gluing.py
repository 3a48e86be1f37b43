"""
polyroute Gluing Constraints

A gluing constraint asserts that two patches' composed routing functions
agree at a shared boundary:

    phi_B(phi_A(boundary)) = boundary

Constraints carry no solver state; SheafRouter derives their rows when it
assembles the global system.
"""

import math
from dataclasses import dataclass
from enum import IntEnum
from typing import Sequence

import numpy as np

from ..ring.polynomial import Polynomial


class GluingKind(IntEnum):
    """Kind of boundary agreement."""
    CONTINUITY = 1    # Adjacent patches agree at their shared boundary
    PERIODICITY = 2   # A cyclic chain returns to its start
    CUSTOM = 3        # Caller-defined boundary


@dataclass(frozen=True)
class GluingConstraint:
    """
    Boundary agreement between two patches.
    """
    patch_a: str
    patch_b: str
    boundary: Polynomial
    kind: GluingKind = GluingKind.CONTINUITY

    def distance(self, routed: Polynomial) -> float:
        """
        L2 distance between the decoded routed value and the boundary.

        Returns:
            Distance, or inf if the vectors differ in length
        """
        routed_coeffs = routed.as_array()
        boundary_coeffs = self.boundary.as_array()
        if len(routed_coeffs) != len(boundary_coeffs):
            return math.inf

        diff = routed_coeffs.astype(np.float64) - boundary_coeffs.astype(np.float64)
        return float(np.sqrt(np.dot(diff, diff)))

    def verify(self, routed: Polynomial, tolerance: float) -> bool:
        """
        Check routed ~= boundary.

        Args:
            routed: Polynomial after routing
            tolerance: Strict upper bound on the L2 distance

        Returns:
            True iff lengths match and the distance is below tolerance.
            An exact match always verifies, including at tolerance 0.
        """
        distance = self.distance(routed)
        return distance == 0.0 or distance < tolerance

    @property
    def is_anchored(self) -> bool:
        """Whether both patch IDs are set."""
        return bool(self.patch_a) and bool(self.patch_b)


class GluingConstraintBuilder:
    """
    Factory for gluing constraints.
    """

    @staticmethod
    def create_continuity(patch_a: str, patch_b: str, boundary: Polynomial) -> GluingConstraint:
        """phi_B(phi_A(boundary)) = boundary between adjacent patches."""
        return GluingConstraint(patch_a, patch_b, boundary, GluingKind.CONTINUITY)

    @staticmethod
    def create_periodicity(patch_ids: Sequence[str], start_boundary: Polynomial) -> GluingConstraint:
        """
        Close a cyclic chain: anchor its first and last patch.

        An empty chain leaves both anchors empty; such a constraint never
        contributes to the solve.
        """
        if patch_ids:
            first, last = patch_ids[0], patch_ids[-1]
        else:
            first, last = "", ""
        return GluingConstraint(first, last, start_boundary, GluingKind.PERIODICITY)

    @staticmethod
    def create_custom(patch_a: str, patch_b: str, boundary: Polynomial) -> GluingConstraint:
        """Constraint with a caller-chosen boundary."""
        return GluingConstraint(patch_a, patch_b, boundary, GluingKind.CUSTOM)
