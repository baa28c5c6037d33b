"""
Tests for the IRT response models.

Closed-form derivatives are checked against central finite differences of the
log-likelihood, item Hessians for symmetry, and the models for stability with
extreme and poorly behaved parameters.
"""

import math

import numpy as np
import pytest

from catquiz.core.cat.irt_models import (
    BirnbaumModel,
    DemoModel,
    ModelRegistry,
    RaschModel,
    ThreeParameterModel,
    log_sigmoid,
    safe_log,
    sigmoid,
)
from catquiz.core.exceptions import ConfigurationError

H = 1e-5

MODEL_CASES = [
    (RaschModel(), (0.4,)),
    (RaschModel(), (-1.3,)),
    (BirnbaumModel(), (0.3, 1.4)),
    (BirnbaumModel(), (-0.8, 0.6)),
    (BirnbaumModel(), (0.5, -0.9)),
    (ThreeParameterModel(), (0.2, 1.2, 0.2)),
    (ThreeParameterModel(), (-0.5, 0.7, 0.1)),
]
ABILITIES = [-1.7, 0.0, 0.9]


def _numeric_item_gradient(model, theta, params, correct):
    grad = []
    for i in range(len(params)):
        up = list(params)
        down = list(params)
        up[i] += H
        down[i] -= H
        grad.append(
            (model.log_likelihood(theta, up, correct) - model.log_likelihood(theta, down, correct))
            / (2 * H)
        )
    return np.array(grad)


class TestSigmoidHelpers:
    """Tests for the numerically stable helpers."""

    def test_sigmoid_extremes(self):
        """No overflow for large logits."""
        assert sigmoid(1000.0) == pytest.approx(1.0)
        assert sigmoid(-1000.0) == pytest.approx(0.0)
        assert sigmoid(0.0) == pytest.approx(0.5)

    def test_log_sigmoid_matches_naive(self):
        for x in (-3.0, -0.2, 0.0, 1.5, 4.0):
            assert log_sigmoid(x) == pytest.approx(math.log(1.0 / (1.0 + math.exp(-x))))

    def test_log_sigmoid_extremes_are_finite(self):
        assert log_sigmoid(-800.0) == pytest.approx(-800.0)
        assert log_sigmoid(800.0) == pytest.approx(0.0)

    def test_safe_log_of_non_positive(self):
        """Non-positive input maps to -inf instead of raising."""
        assert safe_log(0.0) == -math.inf
        assert safe_log(-1.0) == -math.inf
        assert safe_log(math.e) == pytest.approx(1.0)


class TestAbilityDerivatives:
    """Ability derivatives against finite differences."""

    @pytest.mark.parametrize("model,params", MODEL_CASES)
    @pytest.mark.parametrize("theta", ABILITIES)
    @pytest.mark.parametrize("correct", [True, False])
    def test_gradient(self, model, params, theta, correct):
        numeric = (
            model.log_likelihood(theta + H, params, correct)
            - model.log_likelihood(theta - H, params, correct)
        ) / (2 * H)
        assert model.ability_gradient(theta, params, correct) == pytest.approx(
            numeric, rel=1e-5, abs=1e-7
        )

    @pytest.mark.parametrize("model,params", MODEL_CASES)
    @pytest.mark.parametrize("theta", ABILITIES)
    @pytest.mark.parametrize("correct", [True, False])
    def test_hessian(self, model, params, theta, correct):
        numeric = (
            model.ability_gradient(theta + H, params, correct)
            - model.ability_gradient(theta - H, params, correct)
        ) / (2 * H)
        assert model.ability_hessian(theta, params, correct) == pytest.approx(
            numeric, rel=1e-5, abs=1e-7
        )


class TestItemDerivatives:
    """Item-parameter derivatives against finite differences."""

    @pytest.mark.parametrize("model,params", MODEL_CASES)
    @pytest.mark.parametrize("theta", ABILITIES)
    @pytest.mark.parametrize("correct", [True, False])
    def test_gradient(self, model, params, theta, correct):
        numeric = _numeric_item_gradient(model, theta, params, correct)
        np.testing.assert_allclose(
            model.item_gradient(theta, params, correct), numeric, rtol=1e-5, atol=1e-7
        )

    @pytest.mark.parametrize("model,params", MODEL_CASES)
    @pytest.mark.parametrize("theta", ABILITIES)
    @pytest.mark.parametrize("correct", [True, False])
    def test_hessian(self, model, params, theta, correct):
        size = len(params)
        numeric = np.zeros((size, size))
        for j in range(size):
            up = list(params)
            down = list(params)
            up[j] += H
            down[j] -= H
            numeric[:, j] = (
                model.item_gradient(theta, up, correct)
                - model.item_gradient(theta, down, correct)
            ) / (2 * H)
        np.testing.assert_allclose(
            model.item_hessian(theta, params, correct), numeric, rtol=1e-5, atol=1e-7
        )

    @pytest.mark.parametrize("model,params", MODEL_CASES)
    def test_hessian_is_symmetric(self, model, params):
        """Mixed partials are mirrored across the diagonal."""
        for correct in (True, False):
            hessian = model.item_hessian(0.3, params, correct)
            np.testing.assert_array_equal(hessian, hessian.T)


class TestFisherInformation:
    """Tests for item information."""

    def test_rasch_peak_at_difficulty(self):
        """1PL information peaks at 0.25 where theta equals b."""
        assert RaschModel().fisher_information(0.5, (0.5,)) == pytest.approx(0.25)

    def test_2pl_scales_with_discrimination(self):
        """2PL information at theta = b is a^2 / 4."""
        assert BirnbaumModel().fisher_information(0.0, (0.0, 2.0)) == pytest.approx(1.0)

    def test_3pl_without_guessing_matches_2pl(self):
        """With c = 0 the 3PL reduces to the 2PL."""
        for theta in ABILITIES:
            assert ThreeParameterModel().fisher_information(
                theta, (0.3, 1.2, 0.0)
            ) == pytest.approx(BirnbaumModel().fisher_information(theta, (0.3, 1.2)))

    def test_3pl_guessing_lowers_information(self):
        full = ThreeParameterModel().fisher_information(0.0, (0.0, 1.0, 0.0))
        guessed = ThreeParameterModel().fisher_information(0.0, (0.0, 1.0, 0.25))
        assert guessed < full

    @pytest.mark.parametrize("model,params", MODEL_CASES)
    def test_information_is_non_negative(self, model, params):
        for theta in ABILITIES:
            assert model.fisher_information(theta, params) >= 0.0


class TestEdgeCases:
    """Stability and validation edge cases."""

    def test_negative_discrimination_evaluates(self):
        """A negative discrimination yields finite values without raising."""
        model = BirnbaumModel()
        params = (0.0, -1.5)
        assert model.likelihood(1.0, params) < 0.5
        assert math.isfinite(model.log_likelihood(1.0, params, True))
        assert math.isfinite(model.ability_gradient(1.0, params, False))
        assert model.fisher_information(1.0, params) > 0.0

    def test_extreme_logits_are_finite(self):
        model = BirnbaumModel()
        assert math.isfinite(model.log_likelihood(50.0, (0.0, 30.0), False))
        assert math.isfinite(model.ability_hessian(50.0, (0.0, 30.0), True))

    def test_3pl_guessing_is_the_lower_asymptote(self):
        assert ThreeParameterModel().likelihood(-50.0, (0.0, 1.0, 0.2)) == pytest.approx(0.2)

    def test_3pl_guessing_not_clamped(self):
        """A guessing value above one gives -inf instead of raising."""
        assert ThreeParameterModel().log_likelihood(0.0, (0.0, 1.0, 1.5), False) == -math.inf

    def test_wrong_parameter_count_raises(self):
        with pytest.raises(ConfigurationError):
            BirnbaumModel().likelihood(0.0, (0.1,))

    def test_demo_model(self):
        """The demo model is constant and cannot estimate items."""
        model = DemoModel()
        assert model.dimension == 1
        assert model.likelihood(3.0, ()) == 0.5
        assert model.ability_gradient(3.0, (), True) == 0.0
        assert model.ability_hessian(3.0, (), False) == 0.0
        assert model.fisher_information(-2.0, ()) == 1.0
        with pytest.raises(ConfigurationError):
            model.item_gradient(0.0, (), True)

    @pytest.mark.parametrize(
        "model,dimension",
        [(RaschModel(), 2), (BirnbaumModel(), 3), (ThreeParameterModel(), 4)],
    )
    def test_dimension_counts_ability(self, model, dimension):
        assert model.dimension == dimension
        assert len(model.parameter_names) == dimension - 1


class TestModelRegistry:
    """Tests for model resolution."""

    def test_resolves_installed_models(self, registry):
        assert isinstance(registry.get("2pl"), BirnbaumModel)
        assert registry.get("2pl") is registry.get("2pl")

    def test_unknown_model_raises(self, registry):
        with pytest.raises(ConfigurationError):
            registry.get("4pl")

    def test_uninstalled_model_raises(self):
        registry = ModelRegistry(["1pl"])
        assert "2pl" not in registry
        with pytest.raises(ConfigurationError):
            registry.get("2pl")

    def test_unknown_identifier_at_construction(self):
        with pytest.raises(ConfigurationError):
            ModelRegistry(["1pl", "nope"])

    def test_installation_order_is_kept(self):
        assert ModelRegistry(["3pl", "1pl"]).names() == ["3pl", "1pl"]
