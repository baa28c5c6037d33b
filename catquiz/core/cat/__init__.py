"""
CAT (Computerized Adaptive Testing) engine.

This module provides IRT parameter estimation and the adaptive question
selection pipeline.
"""

from .ability_estimation import (
    AbilityEstimate,
    AbilityPrior,
    ability_standard_error,
    estimate_abilities,
    estimate_person_ability,
)
from .calibration import (
    CalibrationJobSummary,
    estimate_initial_item_difficulty,
    estimate_item_params,
    run_calibration_job,
    select_item_parameters,
)
from .engine import AttemptState, CATSessionManager
from .irt_models import (
    BirnbaumModel,
    DemoModel,
    IRTModel,
    ModelRegistry,
    RaschModel,
    ThreeParameterModel,
    default_registry,
)
from .mathcat import (
    NewtonResult,
    compose_multiply,
    compose_plus,
    invert_matrix,
    newton_raphson,
)
from .pipeline import ItemCandidate, PipelineContext, PreselectTask, Result, run_pipeline
from .stores import (
    AttemptStateCache,
    InMemoryItemParameterStore,
    InMemoryPersonAbilityStore,
    InMemoryResponseRepository,
    ItemParameterStore,
    PersonAbilityStore,
    ResponseRepository,
)
from .strategies import get_strategy, select_next_question

__all__ = [
    "estimate_person_ability",
    "estimate_abilities",
    "ability_standard_error",
    "AbilityEstimate",
    "AbilityPrior",
    "estimate_item_params",
    "estimate_initial_item_difficulty",
    "select_item_parameters",
    "run_calibration_job",
    "CalibrationJobSummary",
    "CATSessionManager",
    "AttemptState",
    "IRTModel",
    "RaschModel",
    "BirnbaumModel",
    "ThreeParameterModel",
    "DemoModel",
    "ModelRegistry",
    "default_registry",
    "compose_plus",
    "compose_multiply",
    "invert_matrix",
    "newton_raphson",
    "NewtonResult",
    "Result",
    "PipelineContext",
    "PreselectTask",
    "ItemCandidate",
    "run_pipeline",
    "select_next_question",
    "get_strategy",
    "ResponseRepository",
    "ItemParameterStore",
    "PersonAbilityStore",
    "InMemoryResponseRepository",
    "InMemoryItemParameterStore",
    "InMemoryPersonAbilityStore",
    "AttemptStateCache",
]
