"""
Test strategies: named, ordered stage lists.

Stages are instantiated per call so that no stage instance outlives one
pipeline run.
"""

import logging
from typing import Callable, Dict, List, Optional

from catquiz.core.cat.ability_update import AddScaleStandardError, UpdatePersonAbility
from catquiz.core.cat.item_selection import (
    FilterByStandardError,
    FisherInformation,
    LastTimePlayedPenalty,
    NumberOfGeneralAttempts,
    StrategyClassicScore,
    StrategyFastestScore,
)
from catquiz.core.cat.pipeline import PipelineContext, PreselectTask, Result, run_pipeline
from catquiz.core.cat.preselect_tasks import (
    CheckItemParams,
    CheckPageReload,
    FirstQuestionSelector,
    MaximumQuestionsCheck,
    MaybeRemoveScale,
    MaybeReturnPilot,
    NoRemainingQuestions,
    RemovePlayedQuestions,
    RemoveUncalculated,
)
from catquiz.core.config import settings
from catquiz.core.exceptions import ConfigurationError
from catquiz.models.types import StrategyName
from catquiz.schemas.irt import Question

logger = logging.getLogger(__name__)


def fastest_stages() -> List[PreselectTask]:
    """Maximum-information selection with early convergence."""
    return [
        CheckItemParams(),
        CheckPageReload(),
        FirstQuestionSelector(),
        UpdatePersonAbility(),
        FisherInformation(),
        AddScaleStandardError(),
        MaximumQuestionsCheck(),
        RemovePlayedQuestions(),
        MaybeReturnPilot(),
        RemoveUncalculated(),
        MaybeRemoveScale(),
        NoRemainingQuestions(),
        LastTimePlayedPenalty(),
        FilterByStandardError(),
        StrategyFastestScore(),
    ]


def classical_stages() -> List[PreselectTask]:
    """Probability-matching selection with exposure spreading."""
    return [
        MaximumQuestionsCheck(),
        CheckPageReload(),
        RemovePlayedQuestions(),
        MaybeRemoveScale(),
        NoRemainingQuestions(),
        FirstQuestionSelector(),
        UpdatePersonAbility(),
        LastTimePlayedPenalty(),
        NumberOfGeneralAttempts(),
        StrategyClassicScore(),
    ]


STRATEGIES: Dict[str, Callable[[], List[PreselectTask]]] = {
    StrategyName.FASTEST.value: fastest_stages,
    StrategyName.CLASSICAL.value: classical_stages,
}


def get_strategy(name: Optional[str] = None) -> List[PreselectTask]:
    """
    Build the stage list of a strategy.

    Args:
        name: Strategy identifier; CAT_DEFAULT_STRATEGY if None.

    Raises:
        ConfigurationError: If the strategy is unknown.
    """
    name = name or settings.CAT_DEFAULT_STRATEGY
    factory = STRATEGIES.get(name)
    if factory is None:
        raise ConfigurationError(
            f"Unknown strategy '{name}'", context={"known": sorted(STRATEGIES)}
        )
    return factory()


def select_next_question(
    context: PipelineContext, strategy: Optional[str] = None
) -> Result[Question]:
    """Run the strategy's pipeline once over ``context``."""
    stages = get_strategy(strategy)
    logger.debug(
        f"Running {len(stages)} stages for person {context.person_id}",
        extra={"scale_id": context.scale_id, "person_id": context.person_id},
    )
    return run_pipeline(context, stages)
