"""
polyroute Error Taxonomy

Every fallible operation raises one of these. Pure ring arithmetic never
raises; operations with preconditions check them before computing.

- InvalidArgumentError : malformed sizes, out-of-range indices, empty
                         identifiers, dimension mismatches, degenerate systems
- NotFoundError        : missing contacts
- FailedPreconditionError : routing before learning, relearning
- InternalError        : gluing violations, solver failures
"""


class PolyrouteError(Exception):
    """Base class for all polyroute errors."""
    pass


class InvalidArgumentError(PolyrouteError, ValueError):
    """Exception raised for malformed or out-of-range arguments."""
    pass


class NotFoundError(PolyrouteError, LookupError):
    """Exception raised when a named entry does not exist."""
    pass


class FailedPreconditionError(PolyrouteError, RuntimeError):
    """Exception raised when an operation runs in the wrong state."""
    pass


class InternalError(PolyrouteError, RuntimeError):
    """Exception raised when an invariant is found broken at run time."""
    pass


class SolverError(InternalError):
    """Exception raised when the least-squares solve fails numerically."""
    pass


class GluingViolationError(InternalError):
    """
    Exception raised when a routed polynomial disagrees with a gluing
    boundary.

    Attributes:
        patch_a: First patch of the violated constraint
        patch_b: Second patch of the violated constraint
        distance: L2 distance between routed value and boundary
    """

    def __init__(self, patch_a: str, patch_b: str, distance: float):
        self.patch_a = patch_a
        self.patch_b = patch_b
        self.distance = distance
        super().__init__(
            f"Gluing constraint violated: {patch_a} -> {patch_b} "
            f"(distance {distance:.6g})"
        )
