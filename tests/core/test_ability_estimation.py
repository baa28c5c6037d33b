"""
Tests for maximum-likelihood ability estimation.

Tests cover:
- Closed-form solutions for small Rasch response patterns
- Order independence of the composed log-likelihood
- Response sets without outcome variation (with and without a prior)
- Divergence, non-convergence and configuration errors
- Standard errors and the composed likelihood functions
"""

import itertools
import math

import pytest

from catquiz.core.cat.ability_estimation import (
    AbilityPrior,
    ability_standard_error,
    estimate_abilities,
    estimate_person_ability,
    likelihood_function,
    log_likelihood_function,
)
from catquiz.core.exceptions import (
    ConfigurationError,
    InsufficientDataError,
    NumericFailure,
)
from catquiz.schemas.irt import ResponseSet


@pytest.fixture
def rasch_items(make_item):
    return {
        item.item_id: item
        for item in [
            make_item("R1", 0.0, model="1pl"),
            make_item("R2", 0.0, model="1pl"),
            make_item("R3", 0.0, model="1pl"),
            make_item("R4", -1.0, model="1pl"),
            make_item("R5", 1.0, model="1pl"),
        ]
    }


class TestKnownSolutions:
    """Response patterns with closed-form maximum-likelihood estimates."""

    def test_balanced_pattern_gives_zero(self, registry, rasch_items, make_response):
        """One correct and one incorrect answer on b=0 items gives theta=0."""
        responses = ResponseSet([make_response("R1", True), make_response("R2", False)])
        estimate = estimate_person_ability(responses, rasch_items, registry=registry)
        assert estimate.ability == pytest.approx(0.0, abs=1e-6)
        assert type(estimate.ability) is float
        assert estimate.converged

    def test_two_of_three_correct(self, registry, rasch_items, make_response):
        """Two of three correct on b=0 items gives P=2/3, theta=log(2)."""
        responses = ResponseSet(
            [
                make_response("R1", True),
                make_response("R2", True),
                make_response("R3", False),
            ]
        )
        estimate = estimate_person_ability(responses, rasch_items, registry=registry)
        assert estimate.ability == pytest.approx(math.log(2.0), abs=1e-4)
        # I = 3 * (2/3) * (1/3) = 2/3
        assert estimate.standard_error == pytest.approx(math.sqrt(1.5), abs=1e-3)

    def test_symmetric_difficulties(self, registry, rasch_items, make_response):
        """Easy item correct and hard item incorrect is symmetric around zero."""
        responses = ResponseSet([make_response("R4", True), make_response("R5", False)])
        estimate = estimate_person_ability(responses, rasch_items, registry=registry)
        assert estimate.ability == pytest.approx(0.0, abs=1e-6)

    def test_more_correct_answers_raise_ability(self, registry, item_bank, make_response):
        low = ResponseSet(
            [make_response("Q1", True), make_response("Q3", False), make_response("Q4", False)]
        )
        high = ResponseSet(
            [make_response("Q1", True), make_response("Q3", True), make_response("Q4", False)]
        )
        assert (
            estimate_person_ability(high, item_bank, registry=registry).ability
            > estimate_person_ability(low, item_bank, registry=registry).ability
        )


class TestOrderIndependence:
    """The estimate depends on the outcome pattern, not the response order."""

    def test_all_permutations_agree(self, registry, item_bank, make_response):
        records = [
            make_response("Q1", True),
            make_response("Q2", False),
            make_response("Q3", True),
            make_response("Q4", False),
        ]
        estimates = [
            estimate_person_ability(ResponseSet(order), item_bank, registry=registry).ability
            for order in itertools.permutations(records)
        ]
        assert max(estimates) - min(estimates) < 1e-9


class TestInsufficientData:
    """Response sets without a finite maximum-likelihood estimate."""

    def test_single_correct_response(self, registry, item_bank, make_response):
        """One correct answer has no finite maximizer."""
        with pytest.raises(InsufficientDataError):
            estimate_person_ability(
                ResponseSet([make_response("Q3", True)]), item_bank, registry=registry
            )

    def test_all_incorrect(self, registry, item_bank, make_response):
        responses = ResponseSet([make_response(f"Q{i}", False) for i in range(1, 6)])
        with pytest.raises(InsufficientDataError):
            estimate_person_ability(responses, item_bank, registry=registry)

    def test_no_parameters_for_any_response(self, registry, make_response):
        with pytest.raises(InsufficientDataError):
            estimate_person_ability(
                ResponseSet([make_response("X", True)]), {}, registry=registry
            )

    def test_prior_makes_uniform_pattern_estimable(self, registry, item_bank, make_response):
        """With a prior, a single correct answer gives a finite positive ability."""
        estimate = estimate_person_ability(
            ResponseSet([make_response("Q3", True)]),
            item_bank,
            registry=registry,
            prior=AbilityPrior(0.0, 1.0),
        )
        assert 0.0 < estimate.ability < 1.0

    def test_divergent_estimate_hits_sanity_bound(self, registry, make_item, make_response):
        """A pattern whose maximizer lies far out is reported, not returned."""
        items = {
            "far1": make_item("far1", 20.0, model="1pl"),
            "far2": make_item("far2", 21.0, model="1pl"),
        }
        responses = ResponseSet([make_response("far1", True), make_response("far2", False)])
        with pytest.raises(InsufficientDataError) as exc_info:
            estimate_person_ability(responses, items, registry=registry)
        assert exc_info.value.last_iterate is not None


class TestFailures:
    """Numeric and configuration failures."""

    def test_iteration_cap_raises_numeric_failure(self, registry, rasch_items, make_response):
        responses = ResponseSet(
            [
                make_response("R1", True),
                make_response("R2", True),
                make_response("R3", False),
            ]
        )
        with pytest.raises(NumericFailure) as exc_info:
            estimate_person_ability(
                responses, rasch_items, registry=registry, max_iterations=1
            )
        assert not isinstance(exc_info.value, InsufficientDataError)
        assert exc_info.value.iterations == 1

    def test_unknown_model_raises(self, registry, make_item, make_response):
        items = {"Q": make_item("Q", 0.0, model="4pl")}
        responses = ResponseSet([make_response("Q", True), make_response("Q", False)])
        with pytest.raises(ConfigurationError):
            estimate_person_ability(responses, items, registry=registry)

    def test_dimension_mismatch_raises(self, registry, make_item, make_response):
        items = {"Q": make_item("Q", 0.0, model="2pl")}
        with pytest.raises(ConfigurationError):
            estimate_person_ability(
                ResponseSet([make_response("Q", True)]), items, registry=registry
            )

    def test_several_persons_raise(self, registry, item_bank, make_response):
        responses = ResponseSet(
            [make_response("Q1", True, person_id=1), make_response("Q2", False, person_id=2)]
        )
        with pytest.raises(ConfigurationError):
            estimate_person_ability(responses, item_bank, registry=registry)


class TestHelpers:
    """Tests for standard errors and composed likelihoods."""

    def test_standard_error_with_prior(self, registry, rasch_items):
        """SE = 1 / sqrt(I + 1/sigma^2)."""
        se = ability_standard_error(
            0.0, [rasch_items["R1"]], prior=AbilityPrior(0.0, 1.0), registry=registry
        )
        assert se == pytest.approx(1.0 / math.sqrt(1.25))

    def test_standard_error_without_information(self, registry):
        assert ability_standard_error(0.0, [], registry=registry) is None

    def test_likelihood_is_product(self, registry, rasch_items, make_response):
        responses = ResponseSet([make_response("R1", True), make_response("R2", False)])
        assert likelihood_function(responses, rasch_items, registry)(0.0) == pytest.approx(0.25)
        assert log_likelihood_function(responses, rasch_items, registry)(
            0.0
        ) == pytest.approx(math.log(0.25))

    def test_estimate_abilities_skips_unestimable_persons(
        self, registry, rasch_items, make_response
    ):
        responses = ResponseSet(
            [
                make_response("R1", True, person_id=1),
                make_response("R2", False, person_id=1),
                make_response("R1", True, person_id=2),
            ]
        )
        abilities = estimate_abilities(responses, rasch_items, registry=registry)
        assert set(abilities) == {1}
        assert abilities[1] == pytest.approx(0.0, abs=1e-6)

    def test_prior_sd_must_be_positive(self):
        with pytest.raises(ConfigurationError):
            AbilityPrior(0.0, 0.0)
