"""
Sheaf Router Tests
==================

Problem validation, the global least-squares solve, the learned-state
machine and gluing checks at route time.
"""

import math
from concurrent.futures import ThreadPoolExecutor

import pytest
import numpy as np

from polyroute.config import RouterConfig
from polyroute.errors import (
    FailedPreconditionError,
    GluingViolationError,
    InternalError,
    InvalidArgumentError,
)
from polyroute.ring import Polynomial
from polyroute.routing import (
    GluingConstraintBuilder,
    Patch,
    RouterState,
    RoutingCodec,
    RoutingExample,
    RoutingProblem,
    RoutingWeights,
    SheafRouter,
    character_matrix,
)


HELLO = [72, 101, 108, 108, 111]


# =============================================================================
# Helper Functions
# =============================================================================

def make_example(params, message, expected, patch_id=None):
    """Example routed from and to the zero ID."""
    return RoutingExample(
        source=Polynomial.zero(params),
        destination=Polynomial.zero(params),
        message=message,
        expected_output=expected,
        patch_id=patch_id,
    )


def uniform_output(params, message):
    """What an untrained patch produces for message."""
    weights = RoutingWeights.uniform(params.degree, params.num_characters)
    return RoutingCodec.apply_routing_weights(message, weights)


def east_west_problem(params, boundary, examples=()):
    """Two uniform patches glued east -> west at boundary."""
    return RoutingProblem(
        patches=[Patch.uniform("east", params), Patch.uniform("west", params)],
        gluings=[GluingConstraintBuilder.create_continuity("east", "west", boundary)],
        examples=list(examples),
        params=params,
    )


# =============================================================================
# Tests: Problem Validation
# =============================================================================

class TestCreate:
    """SheafRouter.create() validation."""

    def test_no_patches(self, params):
        with pytest.raises(InvalidArgumentError):
            SheafRouter.create(RoutingProblem(patches=[], params=params))

    def test_duplicate_patch_ids(self, params):
        problem = RoutingProblem(
            patches=[Patch.uniform("a", params), Patch.uniform("a", params)],
            params=params,
        )
        with pytest.raises(InvalidArgumentError):
            SheafRouter.create(problem)

    def test_gluing_names_unknown_patch(self, params):
        problem = RoutingProblem(
            patches=[Patch.uniform("a", params)],
            gluings=[GluingConstraintBuilder.create_continuity("a", "z", Polynomial.zero(params))],
            params=params,
        )
        with pytest.raises(InvalidArgumentError):
            SheafRouter.create(problem)

    def test_example_names_unknown_patch(self, params):
        message = Polynomial.encode(params, HELLO)
        problem = RoutingProblem(
            patches=[Patch.uniform("a", params)],
            examples=[make_example(params, message, message, patch_id="z")],
            params=params,
        )
        with pytest.raises(InvalidArgumentError):
            SheafRouter.create(problem)

    def test_boundary_params_mismatch(self, params, medium_params):
        problem = RoutingProblem(
            patches=[Patch.uniform("a", params)],
            gluings=[GluingConstraintBuilder.create_continuity(
                "a", "a", Polynomial.zero(medium_params))],
            params=params,
        )
        with pytest.raises(InvalidArgumentError):
            SheafRouter.create(problem)

    def test_example_params_mismatch(self, params, medium_params):
        message = Polynomial.zero(medium_params)
        problem = RoutingProblem(
            patches=[Patch.uniform("a", params)],
            examples=[make_example(medium_params, message, message)],
            params=params,
        )
        with pytest.raises(InvalidArgumentError):
            SheafRouter.create(problem)

    def test_patch_characters_mismatch(self, params, medium_params):
        problem = RoutingProblem(
            patches=[Patch.uniform("a", params), Patch.uniform("b", medium_params)],
            params=params,
        )
        with pytest.raises(InvalidArgumentError):
            SheafRouter.create(problem)

    def test_patch_more_positions_than_degree(self, params):
        weights = RoutingWeights.uniform(params.degree + 1, params.num_characters)
        problem = RoutingProblem(patches=[Patch.create("a", weights)], params=params)
        with pytest.raises(InvalidArgumentError):
            SheafRouter.create(problem)

    def test_default_params_reject_other_ring(self, medium_params):
        # RoutingProblem defaults to the SAFE ring
        with pytest.raises(InvalidArgumentError):
            SheafRouter.create(RoutingProblem(patches=[Patch.uniform("a", medium_params)]))

    def test_short_patch_accepted(self, params):
        weights = RoutingWeights.uniform(4, params.num_characters)
        router = SheafRouter.create(
            RoutingProblem(patches=[Patch.create("a", weights)], params=params))
        result = router.learn_routing()
        assert result.success
        assert result.patch_weights[0].num_positions == params.degree

    def test_unanchored_gluing_accepted(self, params):
        problem = RoutingProblem(
            patches=[Patch.uniform("a", params)],
            gluings=[GluingConstraintBuilder.create_periodicity([], Polynomial(params, [1, 2, 3]))],
            params=params,
        )
        router = SheafRouter.create(problem)
        assert router.state == RouterState.UNLEARNED
        assert router.result is None
        assert router.learned_patches == ()


# =============================================================================
# Tests: Learning
# =============================================================================

class TestLearnRouting:
    """Global least-squares solve."""

    def test_one_patch_one_example(self, params):
        message = Polynomial.encode(params, HELLO)
        problem = RoutingProblem(
            patches=[Patch.uniform("solo", params)],
            examples=[make_example(params, message, uniform_output(params, message))],
            params=params,
        )
        result = SheafRouter.create(problem).learn_routing()

        assert math.isfinite(result.obstruction)
        assert result.obstruction >= 0.0
        assert result.success
        assert len(result.patch_weights) == 1
        weights = result.patch_weights[0]
        assert (weights.num_positions, weights.num_characters) == (params.degree, params.num_characters)

    def test_unrealizable_example_leaves_obstruction(self, params):
        # Coefficients 1-4 of "Hello" sit in cycles whose projections vanish
        message = Polynomial.encode(params, HELLO)
        problem = RoutingProblem(
            patches=[Patch.uniform("solo", params)],
            examples=[make_example(params, message, message)],
            params=params,
        )
        result = SheafRouter.create(problem).learn_routing()
        assert not result.success
        assert result.obstruction == pytest.approx(101 ** 2 + 108 ** 2 + 108 ** 2 + 111 ** 2)

    def test_no_examples_uses_identity_row(self, params):
        problem = RoutingProblem(patches=[Patch.uniform("solo", params)], params=params)
        result = SheafRouter.create(problem).learn_routing()
        assert result.success
        assert result.obstruction == pytest.approx(0.0, abs=1e-12)
        assert result.iterations == 1

        # Minimum-norm correction of the uniform start moves only w[0][0]
        learned = result.patch_weights[0].as_array()
        assert learned[0, 0] == pytest.approx(1.0)
        untouched = np.ones_like(learned, dtype=bool)
        untouched[0, 0] = False
        assert np.allclose(learned[untouched], 1.0 / params.num_characters)

    def test_examples_restricted_to_patch(self, params, random_poly):
        east_msg, west_msg = random_poly(params), random_poly(params)
        problem = RoutingProblem(
            patches=[Patch.uniform("east", params), Patch.uniform("west", params)],
            examples=[
                make_example(params, east_msg, uniform_output(params, east_msg), "east"),
                make_example(params, west_msg, uniform_output(params, west_msg), "west"),
            ],
            params=params,
        )
        result = SheafRouter.create(problem).learn_routing()

        assert result.success
        assert result.patch_ids == ["east", "west"]
        east = result.weights_for("east")
        west = result.weights_for("west")
        assert RoutingCodec.apply_routing_weights(east_msg, east) == uniform_output(params, east_msg)
        assert RoutingCodec.apply_routing_weights(west_msg, west) == uniform_output(params, west_msg)
        with pytest.raises(InvalidArgumentError):
            result.weights_for("north")

    def test_zero_boundary_keeps_consistent_system(self, params):
        message = Polynomial.encode(params, HELLO)
        problem = east_west_problem(
            params, Polynomial.zero(params),
            [make_example(params, message, uniform_output(params, message))])
        result = SheafRouter.create(problem).learn_routing()
        assert result.success
        assert result.obstruction < 1e-6

    def test_zero_boundary_rows_are_zero(self, params):
        router = SheafRouter.create(east_west_problem(params, Polynomial.zero(params)))
        matrix, rhs = router._assemble_gluing_system(router._initial_solution())
        block = params.degree * params.num_characters
        assert matrix.shape == (params.degree, 2 * block)
        assert not matrix.any()
        assert not rhs.any()

    def test_nonzero_boundary_rows_touch_downstream_patch(self, params):
        router = SheafRouter.create(east_west_problem(params, Polynomial(params, [100, 200, 300])))
        matrix, rhs = router._assemble_gluing_system(router._initial_solution())
        block = params.degree * params.num_characters
        assert not matrix[:, :block].any()
        assert matrix[:, block:].any()
        assert list(rhs[:4]) == [100.0, 200.0, 300.0, 0.0]

    def test_gluing_rows_match_composed_map(self, tiny_params, rng, random_poly):
        n, k = tiny_params.degree, tiny_params.num_characters
        east = Patch.create("east", RoutingWeights(rng.uniform(-1.0, 1.0, (n, k))))
        west = Patch.create("west", RoutingWeights(rng.uniform(-1.0, 1.0, (n, k))))
        boundary = random_poly(tiny_params)
        gluing = GluingConstraintBuilder.create_continuity("east", "west", boundary)
        router = SheafRouter.create(RoutingProblem(
            patches=[east, west], gluings=[gluing], params=tiny_params))

        solution = router._initial_solution()
        index_b, rows, rhs = router._gluing_rows(gluing, solution)
        assert index_b == 1
        assert np.array_equal(rhs, boundary.as_array())

        # Rows reproduce phi_west(phi_east(boundary)) before rounding
        projections = character_matrix(east.apply_local_routing(boundary))
        west_block = solution[n * k:]

        def unrounded(w):
            return np.sum(w.reshape(k, n).T * projections, axis=1)

        assert np.allclose(rows @ west_block, unrounded(west_block))
        assert np.allclose(unrounded(west_block), np.sum(west.weights.as_array() * projections, axis=1))

        # Finite differences agree with the rows column by column
        step = 1e-3
        for column in (0, n + 1, n * k - 1):
            bumped = west_block.copy()
            bumped[column] += step
            slope = (unrounded(bumped) - unrounded(west_block)) / step
            assert np.allclose(slope, rows[:, column])

        assert router._compose(gluing, solution) == west.apply_local_routing(
            east.apply_local_routing(boundary))

    def test_unanchored_gluing_adds_no_rows(self, params):
        problem = RoutingProblem(
            patches=[Patch.uniform("a", params)],
            gluings=[GluingConstraintBuilder.create_periodicity([], Polynomial(params, [1]))],
            params=params,
        )
        router = SheafRouter.create(problem)
        matrix, _ = router._assemble_gluing_system(router._initial_solution())
        assert matrix.shape[0] == 0

    def test_learn_twice(self, params):
        router = SheafRouter.create(
            RoutingProblem(patches=[Patch.uniform("a", params)], params=params))
        router.learn_routing()
        with pytest.raises(FailedPreconditionError):
            router.learn_routing()
        assert router.state == RouterState.LEARNED

    def test_success_threshold_from_config(self, params):
        message = Polynomial.encode(params, HELLO)
        problem = RoutingProblem(
            patches=[Patch.uniform("solo", params)],
            examples=[make_example(params, message, message)],
            params=params,
        )
        router = SheafRouter.create(problem, RouterConfig(success_threshold=1e9))
        assert router.learn_routing().success

    def test_verify_consistency(self, params):
        router = SheafRouter.create(
            RoutingProblem(patches=[Patch.uniform("a", params)], params=params))
        result = router.learn_routing()
        assert router.verify_consistency(result) == result.obstruction
        assert router.verify_consistency(result, tolerance=0.0) == result.obstruction

    def test_stats(self, params):
        router = SheafRouter.create(
            RoutingProblem(patches=[Patch.uniform("a", params)], params=params))
        assert router.get_stats()["state"] == "UNLEARNED"
        assert router.get_stats()["iterations"] is None
        router.learn_routing()
        stats = router.get_stats()
        assert stats["state"] == "LEARNED"
        assert stats["system_rows"] == 1
        assert stats["system_unknowns"] == params.degree * params.num_characters
        assert stats["iterations"] == 1
        assert stats["success"] is True


# =============================================================================
# Tests: Gluing Continuity
# =============================================================================

class TestContinuity:
    """Learned weights against the composed patch maps."""

    def test_nonzero_boundary_is_glued(self, params):
        boundary = Polynomial(params, [100, 200, 300])
        router = SheafRouter.create(east_west_problem(params, boundary))
        result = router.learn_routing()

        assert result.success
        assert result.obstruction < 1e-6
        assert 1 <= result.iterations <= RouterConfig().max_iterations

        east, west = router.learned_patches
        assert west.apply_local_routing(east.apply_local_routing(boundary)) == boundary

    def test_glued_with_examples(self, params, random_poly):
        boundary = Polynomial(params, [100, 200, 300])
        message = random_poly(params)
        problem = east_west_problem(
            params, boundary,
            [make_example(params, message, uniform_output(params, message), "east")])
        router = SheafRouter.create(problem)
        result = router.learn_routing()

        east, west = router.learned_patches
        composed = west.apply_local_routing(east.apply_local_routing(boundary))
        distance = problem.gluings[0].distance(composed)
        assert result.obstruction >= distance ** 2 - 1e-6
        if result.success:
            assert composed == boundary
            assert east.apply_local_routing(message) == uniform_output(params, message)

    def test_unreachable_boundary_reports_true_residual(self, params):
        # phi(boundary) keeps a single unit coefficient, whose character
        # projections all round to zero
        boundary = Polynomial(params, [1, 2, 3])
        problem = RoutingProblem(
            patches=[Patch.uniform("solo", params)],
            gluings=[GluingConstraintBuilder.create_continuity("solo", "solo", boundary)],
            params=params,
        )
        router = SheafRouter.create(problem)
        result = router.learn_routing()

        assert not result.success
        assert result.obstruction == pytest.approx(14.0)
        solo = router.learned_patches[0]
        assert solo.apply_local_routing(solo.apply_local_routing(boundary)) == Polynomial.zero(params)

    def test_sweep_limit_from_config(self, params):
        boundary = Polynomial(params, [100, 200, 300])
        router = SheafRouter.create(
            east_west_problem(params, boundary), RouterConfig(max_iterations=1))
        result = router.learn_routing()
        assert result.iterations == 1


# =============================================================================
# Tests: Routing
# =============================================================================

class TestRoute:
    """Routing through learned patches."""

    def test_route_before_learning(self, params):
        router = SheafRouter.create(
            RoutingProblem(patches=[Patch.uniform("a", params)], params=params))
        zero = Polynomial.zero(params)
        with pytest.raises(FailedPreconditionError):
            router.route(zero, zero, zero)

    def test_route_rejects_other_ring(self, params, medium_params):
        router = SheafRouter.create(
            RoutingProblem(patches=[Patch.uniform("a", params)], params=params))
        router.learn_routing()

        zero = Polynomial.zero(params)
        other = Polynomial.zero(medium_params)
        for args in ((other, zero, zero), (zero, other, zero), (zero, zero, other)):
            with pytest.raises(InvalidArgumentError):
                router.route(*args)

    def test_violated_gluing(self, params):
        problem = RoutingProblem(
            patches=[Patch.uniform("solo", params)],
            gluings=[GluingConstraintBuilder.create_continuity(
                "solo", "solo", Polynomial(params, [1, 2, 3]))],
            params=params,
        )
        router = SheafRouter.create(problem)
        router.learn_routing()

        zero = Polynomial.zero(params)
        with pytest.raises(GluingViolationError) as excinfo:
            router.route(zero, zero, zero)

        assert isinstance(excinfo.value, InternalError)
        assert (excinfo.value.patch_a, excinfo.value.patch_b) == ("solo", "solo")
        assert excinfo.value.distance == pytest.approx(math.sqrt(14))

    def test_satisfied_gluing(self, params):
        problem = RoutingProblem(
            patches=[Patch.uniform("solo", params)],
            gluings=[GluingConstraintBuilder.create_continuity(
                "solo", "solo", Polynomial.zero(params))],
            params=params,
        )
        router = SheafRouter.create(problem)
        router.learn_routing()

        zero = Polynomial.zero(params)
        assert router.route(zero, zero, zero) == zero

    def test_route_applies_learned_patches(self, params, random_poly):
        message = random_poly(params)
        expected = uniform_output(params, message)
        problem = RoutingProblem(
            patches=[Patch.uniform("solo", params)],
            examples=[make_example(params, message, expected)],
            params=params,
        )
        router = SheafRouter.create(problem)
        router.learn_routing()

        routed = router.route(message, random_poly(params), Polynomial.zero(params))
        assert routed == expected

    def test_route_composes_patches_in_order(self, params, random_poly):
        problem = RoutingProblem(
            patches=[Patch.uniform("a", params), Patch.uniform("b", params)],
            params=params,
        )
        router = SheafRouter.create(problem)
        router.learn_routing()

        message, dest = random_poly(params), random_poly(params)
        expected = RoutingCodec.encode_route(Polynomial.zero(params), dest, message)
        for patch in router.learned_patches:
            expected = patch.apply_local_routing(expected)
        assert router.route(message, Polynomial.zero(params), dest) == expected

    def test_concurrent_routes(self, params, random_poly):
        router = SheafRouter.create(
            RoutingProblem(patches=[Patch.uniform("a", params)], params=params))
        router.learn_routing()

        messages = [random_poly(params) for _ in range(8)]
        dest = random_poly(params)
        zero = Polynomial.zero(params)
        expected = [router.route(m, zero, dest) for m in messages]

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(lambda m: router.route(m, zero, dest), messages))
        assert results == expected
