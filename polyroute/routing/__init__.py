"""
polyroute Routing Module

Implements metadata-private routing over the polynomial ring:
- codec.py  : Additive route encoding, wreath-product weights, mailbox layout
- patch.py  : Network regions with local routing functions
- gluing.py : Boundary agreement constraints between patches
- sheaf.py  : Global least-squares learning and consistency checking
"""

from .codec import (
    RoutingWeights,
    RoutingExample,
    RoutingCodec,
    character_matrix,
)

from .patch import Patch

from .gluing import (
    GluingKind,
    GluingConstraint,
    GluingConstraintBuilder,
)

from .sheaf import (
    RouterState,
    RoutingProblem,
    RoutingResult,
    SheafRouter,
)

__all__ = [
    # Codec
    'RoutingWeights',
    'RoutingExample',
    'RoutingCodec',
    'character_matrix',
    # Patches
    'Patch',
    # Gluing
    'GluingKind',
    'GluingConstraint',
    'GluingConstraintBuilder',
    # Sheaf router
    'RouterState',
    'RoutingProblem',
    'RoutingResult',
    'SheafRouter',
]
