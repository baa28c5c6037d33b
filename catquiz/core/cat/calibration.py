"""
Item parameter estimation.

Fixes each respondent's ability and solves for an item's free parameters by
multivariate Newton-Raphson on the composed item log-likelihood gradient and
Hessian.

Functions:
    estimate_initial_item_difficulty - Classical-test-theory start value
    estimate_item_params - Maximum-likelihood parameters of one item
    select_item_parameters - Pick one usable parameter record per item
    run_calibration_job - Alternate ability and item estimation, update stores
"""

import logging
import math
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, TypedDict, Union

import numpy as np

from catquiz.core.cat.ability_estimation import AbilityPrior, estimate_abilities
from catquiz.core.cat.irt_models import IRTModel, ModelRegistry, default_registry
from catquiz.core.cat.mathcat import compose_plus, newton_raphson
from catquiz.core.config import settings
from catquiz.core.exceptions import (
    ConfigurationError,
    InsufficientDataError,
    NumericFailure,
)
from catquiz.models.types import ItemParamStatus
from catquiz.schemas.irt import ItemParameter, ResponseSet

logger = logging.getLogger(__name__)

# --- Initial difficulty ---

# Added to the failure share in -log(p / (1 - p + e)) so that p = 1 stays finite
INITIAL_DIFFICULTY_OFFSET = 1e-5

# Keeps p away from 0, where the log is undefined
P_VALUE_CLAMP_MIN = 1e-5
P_VALUE_CLAMP_MAX = 1.0 - 1e-5

# --- Calibration job ---

# Ability/item alternation rounds
CALIBRATION_ROUNDS = 3

# Responses an item needs before it is calibrated
MIN_RESPONSES_FOR_CALIBRATION = 2


class CalibrationJobSummary(TypedDict):
    """Summary statistics from a calibration job run."""

    calibrated: int
    skipped: int
    mean_difficulty: float
    mean_params: List[float]
    timestamp: str


def estimate_initial_item_difficulty(fractions: Iterable[float]) -> float:
    """
    Classical-test-theory start value for an item difficulty.

    b = -log(p / (1 - p + 1e-5)) with p the share of correct answers.

    Raises:
        InsufficientDataError: If ``fractions`` is empty.
    """
    values = list(fractions)
    if not values:
        raise InsufficientDataError("No responses to derive an initial difficulty from")
    p = sum(1 for f in values if f == 1) / len(values)
    p = max(P_VALUE_CLAMP_MIN, min(P_VALUE_CLAMP_MAX, p))
    return -math.log(p / (1.0 - p + INITIAL_DIFFICULTY_OFFSET))


def estimate_item_params(
    responses: ResponseSet,
    model: Union[str, IRTModel],
    abilities: Mapping[int, float],
    registry: Optional[ModelRegistry] = None,
    start: Optional[Sequence[float]] = None,
    max_iterations: Optional[int] = None,
    tolerance: Optional[float] = None,
) -> Tuple[float, ...]:
    """
    Estimate the free parameters of one item.

    Args:
        responses: Responses to a single item.
        model: Model instance or identifier.
        abilities: Fixed ability per person id. Responses of persons without
            an ability are ignored.
        registry: Used to resolve a model identifier.
        start: Starting vector; CAT_ITEM_START_VALUE for every parameter if None.
        max_iterations: Newton-Raphson cap, CAT_ITEM_MAX_ITERATIONS if None.
        tolerance: Step-norm tolerance, CAT_NEWTON_TOLERANCE if None.

    Returns:
        The estimated parameters in the model's parameter order.

    Raises:
        ConfigurationError: If the model cannot estimate item parameters, the
            start vector has the wrong length, or responses cover more than
            one item.
        InsufficientDataError: If no usable responses remain or they all share
            the same outcome.
        NumericFailure: If the solver does not converge or produces NaN/Inf.
    """
    if isinstance(model, str):
        model = (registry or default_registry).get(model)
    if not model.supports_item_estimation:
        raise ConfigurationError(
            f"Model '{model.name}' does not support item parameter estimation",
            context={"model": model.name},
        )

    items = {r.item_id for r in responses}
    if len(items) > 1:
        raise ConfigurationError(
            "Item estimation expects responses to a single item",
            context={"items": sorted(items)},
        )

    size = model.dimension - 1
    if start is None:
        start = [settings.CAT_ITEM_START_VALUE] * size
    start = model.check_params(start)

    observations = [
        (abilities[r.person_id], r.is_correct)
        for r in responses
        if r.person_id in abilities
    ]
    if not observations:
        raise InsufficientDataError("No responses with known abilities")
    if len({correct for _, correct in observations}) < 2:
        raise InsufficientDataError(
            "All responses share the same outcome; item parameters are not identified",
            context={"responses": len(observations)},
        )

    gradient = compose_plus(
        *(_item_term(model.item_gradient, theta, correct) for theta, correct in observations)
    )
    hessian = compose_plus(
        *(_item_term(model.item_hessian, theta, correct) for theta, correct in observations)
    )

    result = newton_raphson(
        gradient,
        hessian,
        start=start,
        tolerance=tolerance or settings.CAT_NEWTON_TOLERANCE,
        max_iterations=max_iterations or settings.CAT_ITEM_MAX_ITERATIONS,
        epsilon=settings.CAT_PIVOT_EPSILON,
    )
    if result.degraded:
        raise NumericFailure(
            f"Item estimation for model '{model.name}' did not converge",
            last_iterate=result.x,
            iterations=result.iterations,
            context={"item_id": next(iter(items), None), "finite": result.finite},
        )
    return tuple(float(v) for v in result.x)


def _item_term(derivative, theta: float, correct: bool):
    """Bind one observation to an item-derivative method."""

    def term(x: np.ndarray) -> np.ndarray:
        return derivative(theta, x, correct)

    return term


def select_item_parameters(
    candidates: Mapping[str, Iterable[ItemParameter]],
    registry: Optional[ModelRegistry] = None,
) -> Dict[str, ItemParameter]:
    """
    Choose one parameter record per item.

    ``candidates`` maps a model identifier to the parameter records stored
    for that model. Records with an unusable status are ignored. A manually
    set record beats an automatically calculated one; among equals, the model
    installed first wins.
    """
    registry = registry or default_registry
    order = {name: index for index, name in enumerate(registry.names())}

    chosen: Dict[str, ItemParameter] = {}
    for model_name in sorted(candidates, key=lambda name: order.get(name, len(order))):
        if model_name not in registry:
            logger.debug(f"Ignoring parameters of uninstalled model '{model_name}'")
            continue
        for item in candidates[model_name]:
            if not item.status.is_usable:
                continue
            current = chosen.get(item.item_id)
            if current is None or (
                item.status == ItemParamStatus.SET_MANUALLY
                and current.status != ItemParamStatus.SET_MANUALLY
            ):
                chosen[item.item_id] = item
    return chosen


def run_calibration_job(
    responses: ResponseSet,
    model: Union[str, IRTModel],
    item_store=None,
    registry: Optional[ModelRegistry] = None,
    rounds: int = CALIBRATION_ROUNDS,
    min_responses: int = MIN_RESPONSES_FOR_CALIBRATION,
    prior: Optional[AbilityPrior] = None,
) -> CalibrationJobSummary:
    """
    Calibrate every item in ``responses`` under one model.

    Steps:
        1. Seed each item with its classical difficulty (other parameters at
           their start value).
        2. Estimate abilities from the current item parameters.
        3. Re-estimate every item with the abilities fixed.
        4. Repeat 2-3 for ``rounds`` rounds.
        5. Save the results (failed items tagged not_calculated) and
           summarize.

    Args:
        responses: All responses to calibrate from.
        model: Model instance or identifier.
        item_store: Optional ItemParameterStore receiving the results.
        registry: Model registry.
        rounds: Number of ability/item alternations.
        min_responses: Items with fewer responses are skipped.
        prior: Prior for the ability step; a standard normal prior if None,
            so that persons with uniform answers still get an ability.

    Returns:
        CalibrationJobSummary with counts and statistics.

    Raises:
        ConfigurationError: If the model cannot estimate item parameters.
    """
    registry = registry or default_registry
    if isinstance(model, str):
        model = registry.get(model)
    if not model.supports_item_estimation:
        raise ConfigurationError(
            f"Model '{model.name}' does not support item parameter estimation",
            context={"model": model.name},
        )
    prior = prior or AbilityPrior()
    now = datetime.now(timezone.utc)

    logger.info(
        f"Starting calibration job: model={model.name}, rounds={rounds}, "
        f"responses={len(responses)}"
    )

    by_item = responses.by_item()
    eligible = {
        item_id: item_responses
        for item_id, item_responses in by_item.items()
        if len(item_responses) >= min_responses
    }
    skipped = len(by_item) - len(eligible)

    start_tail = [settings.CAT_ITEM_START_VALUE] * (model.dimension - 2)
    current: Dict[str, ItemParameter] = {
        item_id: ItemParameter(
            item_id=item_id,
            model=model.name,
            params=(
                estimate_initial_item_difficulty(r.fraction for r in item_responses),
                *start_tail,
            ),
            status=ItemParamStatus.NOT_CALCULATED,
        )
        for item_id, item_responses in eligible.items()
    }
    failed: Dict[str, bool] = {item_id: False for item_id in eligible}

    for round_index in range(rounds):
        abilities = estimate_abilities(responses, current, registry=registry, prior=prior)
        for item_id, item_responses in eligible.items():
            try:
                params = estimate_item_params(
                    item_responses, model, abilities, start=current[item_id].params
                )
            except NumericFailure as e:
                failed[item_id] = True
                logger.debug(f"Round {round_index + 1}: item {item_id} not estimated: {e}")
                continue
            failed[item_id] = False
            current[item_id] = current[item_id].with_params(
                params, ItemParamStatus.CALCULATED
            )

    results = []
    for item_id, item in current.items():
        if failed[item_id] or item.status != ItemParamStatus.CALCULATED:
            item = item.model_copy(update={"status": ItemParamStatus.NOT_CALCULATED})
            skipped += 1
        else:
            results.append(item)
        if item_store is not None:
            item_store.save(item)

    calibrated = len(results)
    if results:
        matrix = np.array([item.params for item in results])
        mean_params = [float(v) for v in matrix.mean(axis=0)]
    else:
        mean_params = [0.0] * (model.dimension - 1)

    summary: CalibrationJobSummary = {
        "calibrated": calibrated,
        "skipped": skipped,
        "mean_difficulty": mean_params[0] if mean_params else 0.0,
        "mean_params": mean_params,
        "timestamp": now.isoformat(),
    }

    if skipped:
        logger.warning(f"Calibration job skipped {skipped} items")
    logger.info(
        f"Calibration job complete: {calibrated} calibrated, {skipped} skipped. "
        f"Mean b={summary['mean_difficulty']:.2f}"
    )
    return summary
