"""
Maximum-likelihood ability estimation for Computerized Adaptive Testing.

Each response contributes one term to the log-likelihood of the person's
ability. The per-response ability gradient and Hessian terms are composed
into one aggregate gradient and Hessian (pointwise sums), and the resulting
one-dimensional root-finding problem is solved with Newton-Raphson starting
from ability 0.0.

An optional Gaussian prior turns the solve into a maximum a posteriori
(MAP) estimate:

    d/dtheta log posterior   = sum_i d/dtheta log L_i - (theta - mu) / sigma^2
    d2/dtheta2 log posterior = sum_i d2/dtheta2 log L_i - 1 / sigma^2

Without a prior, a response pattern in which every answer has the same
outcome has no finite maximizer. That case is reported as
InsufficientDataError rather than returned as an extreme value.
"""

import logging
import math
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional

import numpy as np

from catquiz.core.cat.irt_models import IRTModel, ModelRegistry, default_registry
from catquiz.core.cat.mathcat import compose_multiply, compose_plus, newton_raphson
from catquiz.core.config import settings
from catquiz.core.exceptions import ConfigurationError, InsufficientDataError, NumericFailure
from catquiz.schemas.irt import ItemParameter, ResponseSet

logger = logging.getLogger(__name__)

# Starting point of every ability solve
ABILITY_START = 0.0


@dataclass(frozen=True)
class AbilityPrior:
    """Gaussian prior on ability."""

    mean: float = 0.0
    sd: float = 1.0

    def __post_init__(self):
        if not self.sd > 0:
            raise ConfigurationError(
                "Prior standard deviation must be positive", context={"sd": self.sd}
            )

    @property
    def precision(self) -> float:
        return 1.0 / self.sd**2

    @classmethod
    def from_settings(cls) -> Optional["AbilityPrior"]:
        """The configured prior, or None when CAT_PRIOR_SD is unset."""
        if settings.CAT_PRIOR_SD is None:
            return None
        return cls(mean=settings.CAT_PRIOR_MEAN, sd=settings.CAT_PRIOR_SD)


@dataclass(frozen=True)
class AbilityEstimate:
    """Result of one ability solve."""

    ability: float
    standard_error: Optional[float]
    iterations: int
    converged: bool


@dataclass(frozen=True)
class _ScoredResponse:
    """A response bound to the model and parameters of its item."""

    model: IRTModel
    params: tuple
    correct: bool

    def gradient(self, x: np.ndarray) -> float:
        return self.model.ability_gradient(float(x[0]), self.params, self.correct)

    def hessian(self, x: np.ndarray) -> float:
        return self.model.ability_hessian(float(x[0]), self.params, self.correct)

    def log_likelihood(self, theta: float) -> float:
        return self.model.log_likelihood(theta, self.params, self.correct)

    def likelihood(self, theta: float) -> float:
        return self.model.response_likelihood(theta, self.params, self.correct)


def _bind_responses(
    responses: ResponseSet,
    item_parameters: Mapping[str, ItemParameter],
    registry: ModelRegistry,
) -> List[_ScoredResponse]:
    """Attach model and parameters to every response that has them."""
    scored = []
    skipped = 0
    for record in responses:
        item = item_parameters.get(record.item_id)
        if item is None:
            skipped += 1
            continue
        model = registry.get(item.model)
        item.validate_dimension(model.dimension)
        scored.append(_ScoredResponse(model, tuple(item.params), record.is_correct))
    if skipped:
        logger.debug(f"Skipped {skipped} responses without item parameters")
    return scored


def _check_single_person(responses: ResponseSet) -> None:
    persons = {r.person_id for r in responses}
    if len(persons) > 1:
        raise ConfigurationError(
            "Ability estimation expects responses of a single person",
            context={"persons": sorted(persons)},
        )


def log_likelihood_function(
    responses: ResponseSet,
    item_parameters: Mapping[str, ItemParameter],
    registry: Optional[ModelRegistry] = None,
) -> Callable[[float], float]:
    """Log-likelihood of the response pattern as a function of ability."""
    scored = _bind_responses(responses, item_parameters, registry or default_registry)
    return compose_plus(*(s.log_likelihood for s in scored))


def likelihood_function(
    responses: ResponseSet,
    item_parameters: Mapping[str, ItemParameter],
    registry: Optional[ModelRegistry] = None,
) -> Callable[[float], float]:
    """Raw (non-log) likelihood of the response pattern as a function of ability."""
    scored = _bind_responses(responses, item_parameters, registry or default_registry)
    return compose_multiply(*(s.likelihood for s in scored))


def total_information(
    ability: float,
    item_parameters: List[ItemParameter],
    registry: Optional[ModelRegistry] = None,
) -> float:
    """Sum of item information at ``ability``."""
    registry = registry or default_registry
    return sum(
        registry.get(item.model).fisher_information(ability, item.params)
        for item in item_parameters
    )


def ability_standard_error(
    ability: float,
    item_parameters: List[ItemParameter],
    prior: Optional[AbilityPrior] = None,
    registry: Optional[ModelRegistry] = None,
) -> Optional[float]:
    """
    Standard error of an ability estimate.

    SE = 1 / sqrt(I(theta) + 1/sigma^2), with the prior term omitted when no
    prior is given. Returns None when the total information is not positive.
    """
    information = total_information(ability, item_parameters, registry)
    if prior is not None:
        information += prior.precision
    if not information > 0 or not math.isfinite(information):
        return None
    return 1.0 / math.sqrt(information)


def estimate_person_ability(
    responses: ResponseSet,
    item_parameters: Mapping[str, ItemParameter],
    registry: Optional[ModelRegistry] = None,
    prior: Optional[AbilityPrior] = None,
    start: float = ABILITY_START,
    max_iterations: Optional[int] = None,
    tolerance: Optional[float] = None,
    sanity_bound: Optional[float] = None,
) -> AbilityEstimate:
    """
    Estimate one person's ability from their responses.

    Args:
        responses: Responses of a single person.
        item_parameters: Parameters keyed by item id. Responses to items
            without parameters are ignored.
        registry: Model registry; defaults to the installed models.
        prior: Optional Gaussian prior (MAP estimate).
        start: Starting ability.
        max_iterations: Newton-Raphson cap, CAT_ABILITY_MAX_ITERATIONS if None.
        tolerance: Step-norm tolerance, CAT_NEWTON_TOLERANCE if None.
        sanity_bound: |ability| beyond which the estimate counts as divergent,
            CAT_ABILITY_SANITY_BOUND if None.

    Returns:
        AbilityEstimate with the ability, its standard error and solver stats.

    Raises:
        InsufficientDataError: If no prior is given and the outcomes have no
            variation, or if the estimate leaves the sanity bound.
        NumericFailure: If the solver does not converge or produces NaN/Inf.
        ConfigurationError: For unknown models, parameter length mismatches,
            or responses of more than one person.
    """
    registry = registry or default_registry
    max_iterations = max_iterations or settings.CAT_ABILITY_MAX_ITERATIONS
    tolerance = tolerance or settings.CAT_NEWTON_TOLERANCE
    sanity_bound = sanity_bound or settings.CAT_ABILITY_SANITY_BOUND

    _check_single_person(responses)
    scored = _bind_responses(responses, item_parameters, registry)
    if not scored:
        raise InsufficientDataError("No responses with item parameters")

    if prior is None and len({s.correct for s in scored}) < 2:
        raise InsufficientDataError(
            "All responses share the same outcome; ability has no finite maximum",
            context={"responses": len(scored)},
        )

    gradient_terms: List[Callable[[np.ndarray], float]] = [s.gradient for s in scored]
    hessian_terms: List[Callable[[np.ndarray], float]] = [s.hessian for s in scored]
    if prior is not None:
        gradient_terms.append(lambda x: -(float(x[0]) - prior.mean) * prior.precision)
        hessian_terms.append(lambda x: -prior.precision)

    result = newton_raphson(
        [compose_plus(*gradient_terms)],
        [[compose_plus(*hessian_terms)]],
        start=[start],
        tolerance=tolerance,
        max_iterations=max_iterations,
        epsilon=settings.CAT_PIVOT_EPSILON,
    )
    ability = float(result.x[0])

    if not result.finite:
        raise NumericFailure(
            "Ability estimate is not finite",
            last_iterate=result.x,
            iterations=result.iterations,
        )
    if abs(ability) > sanity_bound:
        raise InsufficientDataError(
            "Ability estimate diverged beyond the sanity bound",
            last_iterate=result.x,
            iterations=result.iterations,
            context={"ability": round(ability, 3), "bound": sanity_bound},
        )
    if not result.converged:
        raise NumericFailure(
            f"Ability estimate did not converge in {result.iterations} iterations",
            last_iterate=result.x,
            iterations=result.iterations,
        )

    information = sum(s.model.fisher_information(ability, s.params) for s in scored)
    if prior is not None:
        information += prior.precision
    standard_error = 1.0 / math.sqrt(information) if information > 0 else None

    logger.debug(
        f"Ability estimated: {ability:.4f} after {result.iterations} iterations",
        extra={"iterations": result.iterations, "ability": ability},
    )
    return AbilityEstimate(
        ability=ability,
        standard_error=standard_error,
        iterations=result.iterations,
        converged=True,
    )


def estimate_abilities(
    responses: ResponseSet,
    item_parameters: Mapping[str, ItemParameter],
    registry: Optional[ModelRegistry] = None,
    prior: Optional[AbilityPrior] = None,
) -> Dict[int, float]:
    """
    Estimate every person in ``responses``.

    Persons whose estimate fails with a NumericFailure are left out; a
    ConfigurationError still propagates.
    """
    abilities = {}
    for person_id, person_responses in responses.by_person().items():
        try:
            estimate = estimate_person_ability(
                person_responses, item_parameters, registry=registry, prior=prior
            )
        except NumericFailure as e:
            logger.debug(f"No ability for person {person_id}: {e.message}")
            continue
        abilities[person_id] = estimate.ability
    return abilities

