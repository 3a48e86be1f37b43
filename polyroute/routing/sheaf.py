"""
polyroute Sheaf Router

Learns per-patch routing weights and certifies that independently tuned
patches agree at their boundaries, with a global least-squares system:

    [A_local ]       [b_local ]
    [A_gluing] w  ~= [b_gluing]

The cohomological obstruction is the local residual ||A_local w* - b_local||^2
plus, for every gluing, the true continuity residual
||phi_B(phi_A(boundary)) - boundary||^2 under the learned weights. Zero
means every local example and every gluing constraint holds at once.

Unknowns:
- One block of n*k weights per patch, in problem order
- Inside a block, index j*n + p holds w[p][j] (character-major, matching
  the flattened character projections)

Local rows (per-coefficient regression):
- Example e trains patch m at position p:
      sum_j w_m[p][j] * P_j(message_e)[p] = expected_e[p]
- No examples: a single identity row (w[0] = 1) keeps the solve defined

Gluing rows (continuity phi_B(phi_A(boundary)) = boundary):
- The composition is bilinear in (w_A, w_B). With y = phi_A(boundary)
  evaluated exactly under the current weights of A, it is linear in w_B:
      sum_j w_B[p][j] * P_j(y)[p] = boundary[p]
- The solve is block-coordinate: each sweep rebuilds the gluing rows from
  the current weights and takes the minimum-norm correction of the whole
  system. Sweeps stop once the obstruction falls below the success
  threshold, stops decreasing, or RouterConfig.max_iterations is reached.
  The best sweep is kept.

State machine:
- UNLEARNED -> LEARNED exactly once, via learn_routing()
- route() and verify_consistency() are read-only
"""

import logging
import math
import threading
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List, Optional, Tuple

import numpy as np

from ..config import RouterConfig
from ..errors import (
    FailedPreconditionError,
    GluingViolationError,
    InvalidArgumentError,
    SolverError,
)
from ..ring.params import RingParameters, SAFE_PARAMS
from ..ring.polynomial import Polynomial
from .codec import RoutingCodec, RoutingExample, RoutingWeights, character_matrix
from .gluing import GluingConstraint
from .patch import Patch


logger = logging.getLogger("polyroute.sheaf")


class RouterState(IntEnum):
    """Sheaf router lifecycle."""
    UNLEARNED = 1
    LEARNED = 2


@dataclass
class RoutingProblem:
    """
    Network definition: patches, gluings and training examples.
    """
    patches: List[Patch]
    gluings: List[GluingConstraint] = field(default_factory=list)
    examples: List[RoutingExample] = field(default_factory=list)

    # Ring every polynomial and patch weight matrix in the problem uses
    params: RingParameters = SAFE_PARAMS


@dataclass
class RoutingResult:
    """
    Result of the global solve.
    """
    # Learned weights, one per patch in problem order
    patch_weights: List[RoutingWeights]

    # Cohomological obstruction (>= 0): local residual plus true gluing residual
    obstruction: float

    # obstruction below the success threshold
    success: bool

    # Patch IDs matching patch_weights
    patch_ids: List[str] = field(default_factory=list)

    # Solver sweeps performed
    iterations: int = 1

    def weights_for(self, patch_id: str) -> RoutingWeights:
        """Learned weights of one patch."""
        try:
            return self.patch_weights[self.patch_ids.index(patch_id)]
        except ValueError:
            raise InvalidArgumentError(f"Unknown patch: {patch_id}") from None


class SheafRouter:
    """
    Unified sheaf router.

    Usage:
        problem = RoutingProblem(
            patches=[Patch.uniform("east", params), Patch.uniform("west", params)],
            gluings=[GluingConstraintBuilder.create_continuity("east", "west", boundary)],
            examples=examples,
            params=params,
        )
        router = SheafRouter.create(problem)

        result = router.learn_routing()
        if not result.success:
            logger.warning(f"Obstruction {result.obstruction}")

        routed = router.route(message, alice_id, bob_id)

    verify_consistency() only reports a result's obstruction; it never
    filters or re-solves. Compare the value against your own tolerance.

    Thread Safety: route() and verify_consistency() are safe to call
    concurrently once learned. To relearn, create a new router.
    """

    def __init__(self, problem: RoutingProblem, config: Optional[RouterConfig] = None):
        """
        Initialize router. Use create(), which validates the problem.

        Args:
            problem: Network definition
            config: Router configuration (thresholds, sweep limit)
        """
        self._params = problem.params
        self._patches: Tuple[Patch, ...] = tuple(problem.patches)
        self._gluings: Tuple[GluingConstraint, ...] = tuple(problem.gluings)
        self._examples: Tuple[RoutingExample, ...] = tuple(problem.examples)
        self._config = config or RouterConfig()

        self._patch_index: Dict[str, int] = {
            patch.patch_id: i for i, patch in enumerate(self._patches)
        }

        self._state = RouterState.UNLEARNED
        self._result: Optional[RoutingResult] = None
        self._learned_patches: Tuple[Patch, ...] = ()
        self._system_shape: Tuple[int, int] = (0, 0)

        self._lock = threading.RLock()

    @classmethod
    def create(
        cls,
        problem: RoutingProblem,
        config: Optional[RouterConfig] = None,
    ) -> 'SheafRouter':
        """
        Create a router for a routing problem.

        Args:
            problem: Network definition
            config: Router configuration

        Returns:
            Router in the UNLEARNED state

        Raises:
            InvalidArgumentError: If there are no patches, patch IDs repeat,
                a patch's weights do not fit the ring, a gluing or example
                names an unknown patch, or a polynomial uses other ring
                parameters
        """
        if not problem.patches:
            raise InvalidArgumentError("No patches provided")

        patch_ids = [patch.patch_id for patch in problem.patches]
        if len(set(patch_ids)) != len(patch_ids):
            raise InvalidArgumentError(f"Duplicate patch IDs: {patch_ids}")
        known = set(patch_ids)

        params = problem.params
        for patch in problem.patches:
            weights = patch.weights
            if weights.num_characters != params.num_characters:
                raise InvalidArgumentError(
                    f"Patch {patch.patch_id} has {weights.num_characters} characters, "
                    f"ring has {params.num_characters}")
            if weights.num_positions > params.degree:
                raise InvalidArgumentError(
                    f"Patch {patch.patch_id} has {weights.num_positions} positions, "
                    f"ring degree is {params.degree}")

        for gluing in problem.gluings:
            if not gluing.is_anchored:
                logger.warning(f"Unanchored {gluing.kind.name} constraint will be ignored")
                continue
            for patch_id in (gluing.patch_a, gluing.patch_b):
                if patch_id not in known:
                    raise InvalidArgumentError(f"Gluing names unknown patch: {patch_id}")
            if gluing.boundary.params != params:
                raise InvalidArgumentError("Gluing boundary uses different ring parameters")

        for example in problem.examples:
            if example.patch_id is not None and example.patch_id not in known:
                raise InvalidArgumentError(f"Example names unknown patch: {example.patch_id}")
            if example.message.params != params or example.expected_output.params != params:
                raise InvalidArgumentError("Example uses different ring parameters")

        return cls(problem, config)

    @property
    def state(self) -> RouterState:
        with self._lock:
            return self._state

    @property
    def result(self) -> Optional[RoutingResult]:
        """Cached result of learn_routing(), or None."""
        with self._lock:
            return self._result

    @property
    def learned_patches(self) -> Tuple[Patch, ...]:
        """Patches carrying learned weights (empty before learning)."""
        with self._lock:
            return self._learned_patches

    @property
    def _block_size(self) -> int:
        return self._params.degree * self._params.num_characters

    @property
    def _anchored_gluings(self) -> List[GluingConstraint]:
        return [gluing for gluing in self._gluings if gluing.is_anchored]

    # Weight vectors

    def _initial_solution(self) -> np.ndarray:
        """
        Flatten every patch's starting weights into one unknown vector.

        Positions beyond a patch's weight matrix start at zero, which is how
        apply_routing_weights treats them.
        """
        n = self._params.degree
        k = self._params.num_characters
        blocks = []
        for patch in self._patches:
            full = np.zeros((n, k))
            full[:patch.weights.num_positions] = patch.weights.as_array()
            blocks.append(full.T.reshape(-1))
        return np.concatenate(blocks)

    def _block_weights(self, solution: np.ndarray, index: int) -> RoutingWeights:
        """(n, k) weights of one patch from the unknown vector."""
        n = self._params.degree
        k = self._params.num_characters
        block = self._block_size
        return RoutingWeights(solution[index * block:(index + 1) * block].reshape(k, n).T)

    def _unpack(self, solution: np.ndarray) -> List[RoutingWeights]:
        """Split the solution into (n, k) weights per patch."""
        return [self._block_weights(solution, i) for i in range(len(self._patches))]

    # System assembly

    def _local_rows(self, projections: np.ndarray) -> np.ndarray:
        """
        Per-coefficient regression rows of one patch block.

        Args:
            projections: (n, k) character matrix of a message

        Returns:
            (n, n*k) rows; row p holds P_j[p] at column j*n + p
        """
        n = self._params.degree
        k = self._params.num_characters
        rows = np.zeros((n, n * k))
        positions = np.arange(n)[:, None]
        columns = np.arange(k)[None, :] * n + positions
        rows[positions, columns] = projections
        return rows

    def _assemble_local_system(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Assemble A_local and b_local from the training examples.

        Returns:
            (A_local, b_local)
        """
        n = self._params.degree
        block = self._block_size
        num_unknowns = block * len(self._patches)

        row_blocks: List[np.ndarray] = []
        rhs_blocks: List[np.ndarray] = []

        for example in self._examples:
            projections = character_matrix(example.message).astype(np.float64)
            local = self._local_rows(projections)
            target = example.expected_output.as_array().astype(np.float64)

            for i, patch in enumerate(self._patches):
                if example.patch_id is not None and example.patch_id != patch.patch_id:
                    continue
                rows = np.zeros((n, num_unknowns))
                rows[:, i * block:(i + 1) * block] = local
                row_blocks.append(rows)
                rhs_blocks.append(target)

        if not row_blocks:
            # Trivial identity system keeps the solve well-defined
            rows = np.zeros((1, num_unknowns))
            rows[0, 0] = 1.0
            return rows, np.ones(1)

        return np.vstack(row_blocks), np.concatenate(rhs_blocks)

    def _gluing_rows(
        self,
        gluing: GluingConstraint,
        solution: np.ndarray,
    ) -> Tuple[int, np.ndarray, np.ndarray]:
        """
        Continuity rows of one constraint, linear in the weights of B.

        phi_A(boundary) is evaluated exactly (rounding and mod q included)
        under the current weights of A.

        Args:
            gluing: Anchored constraint
            solution: Current unknown vector

        Returns:
            (index_b, rows, rhs): B's patch index, (n, n*k) rows over B's
            block, and the (n,) boundary target
        """
        index_a = self._patch_index[gluing.patch_a]
        index_b = self._patch_index[gluing.patch_b]

        upstream = RoutingCodec.apply_routing_weights(
            gluing.boundary, self._block_weights(solution, index_a))
        rows = self._local_rows(character_matrix(upstream).astype(np.float64))
        return index_b, rows, gluing.boundary.as_array().astype(np.float64)

    def _assemble_gluing_system(self, solution: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Assemble A_gluing and b_gluing around the current weights.

        Returns:
            (A_gluing, b_gluing), possibly with zero rows
        """
        n = self._params.degree
        block = self._block_size
        num_unknowns = block * len(self._patches)

        row_blocks: List[np.ndarray] = []
        rhs_blocks: List[np.ndarray] = []

        for gluing in self._anchored_gluings:
            index_b, local, rhs = self._gluing_rows(gluing, solution)
            rows = np.zeros((n, num_unknowns))
            rows[:, index_b * block:(index_b + 1) * block] = local
            row_blocks.append(rows)
            rhs_blocks.append(rhs)

        if not row_blocks:
            return np.zeros((0, num_unknowns)), np.zeros(0)
        return np.vstack(row_blocks), np.concatenate(rhs_blocks)

    def _compose(self, gluing: GluingConstraint, solution: np.ndarray) -> Polynomial:
        """phi_B(phi_A(boundary)) under the weights in solution."""
        index_a = self._patch_index[gluing.patch_a]
        index_b = self._patch_index[gluing.patch_b]
        upstream = RoutingCodec.apply_routing_weights(
            gluing.boundary, self._block_weights(solution, index_a))
        return RoutingCodec.apply_routing_weights(
            upstream, self._block_weights(solution, index_b))

    def _obstruction(
        self,
        solution: np.ndarray,
        a_local: np.ndarray,
        b_local: np.ndarray,
    ) -> float:
        """Local least-squares residual plus true squared gluing distances."""
        residual = a_local @ solution - b_local
        obstruction = float(np.dot(residual, residual))
        for gluing in self._anchored_gluings:
            distance = gluing.distance(self._compose(gluing, solution))
            obstruction += distance * distance
        return obstruction

    def _solve_least_squares(self, matrix: np.ndarray, rhs: np.ndarray) -> np.ndarray:
        """
        w* = argmin ||A w - b||^2 via SVD (minimum-norm when under-determined).

        Raises:
            InvalidArgumentError: If the system is empty or not finite
            SolverError: If the SVD fails or the solution is not finite
        """
        if matrix.shape[0] == 0 or matrix.shape[1] == 0:
            raise InvalidArgumentError(f"Degenerate system: shape {matrix.shape}")
        if not (np.all(np.isfinite(matrix)) and np.all(np.isfinite(rhs))):
            raise InvalidArgumentError("System contains non-finite entries")

        try:
            solution, _, rank, _ = np.linalg.lstsq(matrix, rhs, rcond=None)
        except np.linalg.LinAlgError as e:
            raise SolverError(f"Least-squares solve failed: {e}") from e

        if not np.all(np.isfinite(solution)):
            raise SolverError("Least-squares solution is not finite")

        logger.debug(f"Solved {matrix.shape[0]}x{matrix.shape[1]} system, rank {rank}")
        return solution

    # Public operations

    def learn_routing(self) -> RoutingResult:
        """
        Learn routing weights with block-coordinate least-squares sweeps.

        Each sweep solves for the minimum-norm correction to the current
        weights. Without gluing constraints a single sweep is exact.

        Returns:
            RoutingResult with per-patch weights and the obstruction

        Raises:
            FailedPreconditionError: If the router has already learned
            InvalidArgumentError: If the assembled system is degenerate
            SolverError: If the solve fails numerically
        """
        with self._lock:
            if self._state == RouterState.LEARNED:
                raise FailedPreconditionError(
                    "Routing already learned; create a new router to relearn")

            a_local, b_local = self._assemble_local_system()
            solution = self._initial_solution()
            threshold = self._config.success_threshold
            max_iterations = max(1, self._config.max_iterations) if self._anchored_gluings else 1

            best_solution = solution
            best_obstruction = math.inf
            iterations = 0

            for iterations in range(1, max_iterations + 1):
                a_gluing, b_gluing = self._assemble_gluing_system(solution)
                matrix = np.vstack([a_local, a_gluing])
                rhs = np.concatenate([b_local, b_gluing])
                self._system_shape = matrix.shape

                if iterations == 1:
                    logger.info(
                        f"Assembled sheaf system: {a_local.shape[0]} local rows, "
                        f"{a_gluing.shape[0]} gluing rows, {matrix.shape[1]} unknowns")

                solution = solution + self._solve_least_squares(matrix, rhs - matrix @ solution)
                obstruction = self._obstruction(solution, a_local, b_local)
                logger.debug(f"Sweep {iterations}: obstruction {obstruction:.6g}")

                if obstruction >= best_obstruction:
                    break
                best_solution, best_obstruction = solution, obstruction
                if obstruction < threshold:
                    break

            success = best_obstruction < threshold
            patch_weights = self._unpack(best_solution)
            result = RoutingResult(
                patch_weights=patch_weights,
                obstruction=best_obstruction,
                success=success,
                patch_ids=[patch.patch_id for patch in self._patches],
                iterations=iterations,
            )

            self._learned_patches = tuple(
                patch.with_weights(weights)
                for patch, weights in zip(self._patches, patch_weights)
            )
            self._result = result
            self._state = RouterState.LEARNED

            if success:
                logger.info(
                    f"Routing learned in {iterations} sweep(s), "
                    f"obstruction {best_obstruction:.3g}")
            else:
                logger.warning(
                    f"Routing learned with nonzero obstruction {best_obstruction:.3g} "
                    f"after {iterations} sweep(s)")

            return result

    def route(
        self,
        message: Polynomial,
        source_id: Polynomial,
        dest_id: Polynomial,
    ) -> Polynomial:
        """
        Route a message through every patch and check the gluings.

        Args:
            message: Message polynomial
            source_id: Sender's polynomial ID
            dest_id: Recipient's polynomial ID

        Returns:
            Routed polynomial

        Raises:
            InvalidArgumentError: If a polynomial uses other ring parameters
            FailedPreconditionError: If learn_routing() has not succeeded
            GluingViolationError: On the first violated constraint
        """
        for poly in (message, source_id, dest_id):
            if poly.params != self._params:
                raise InvalidArgumentError(
                    f"Ring parameter mismatch: {poly.params} vs {self._params}")

        with self._lock:
            if self._state != RouterState.LEARNED:
                raise FailedPreconditionError(
                    "No routing weights learned. Call learn_routing() first.")
            patches = self._learned_patches

        routed = RoutingCodec.encode_route(source_id, dest_id, message)
        for patch in patches:
            routed = patch.apply_local_routing(routed)

        tolerance = self._config.gluing_tolerance
        for gluing in self._anchored_gluings:
            if not gluing.verify(routed, tolerance):
                distance = gluing.distance(routed)
                logger.warning(
                    f"Gluing violated: {gluing.patch_a} -> {gluing.patch_b} "
                    f"(distance {distance:.3g})")
                raise GluingViolationError(gluing.patch_a, gluing.patch_b, distance)

        return routed

    def verify_consistency(self, result: RoutingResult, tolerance: float = 1e-6) -> float:
        """
        Cohomological obstruction of a result.

        Args:
            result: Result of learn_routing()
            tolerance: Caller's tolerance; the value is returned unfiltered

        Returns:
            result.obstruction
        """
        return result.obstruction

    def get_stats(self) -> dict:
        """Get router statistics."""
        with self._lock:
            return {
                "state": self._state.name,
                "patch_count": len(self._patches),
                "gluing_count": len(self._gluings),
                "example_count": len(self._examples),
                "system_rows": self._system_shape[0],
                "system_unknowns": self._system_shape[1],
                "iterations": self._result.iterations if self._result else None,
                "obstruction": self._result.obstruction if self._result else None,
                "success": self._result.success if self._result else None,
            }
