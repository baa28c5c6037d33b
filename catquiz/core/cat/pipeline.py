"""
Selection pipeline plumbing.

A strategy is an ordered list of stages. Each stage receives the shared
PipelineContext and a continuation ``next_`` that runs the remaining stages.
A stage either updates the context and returns ``next_(context)``, or returns
a Result itself, which short-circuits every later stage.

The list is folded right to left into nested continuations once per call:

    run_pipeline(context, [A, B, C])
        == A.run(context, lambda c: B.run(c, lambda c: C.run(c, fallback)))

``fallback`` is reached only when every stage forwarded control, i.e. no
stage chose a question; it fails with FETCH_NEXT_QUESTION_FAILED.
"""

import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, FrozenSet, Generic, List, Optional, Sequence, Set, TypeVar

from catquiz.core.cat.ability_estimation import AbilityPrior
from catquiz.core.cat.irt_models import ModelRegistry, default_registry
from catquiz.core.config import settings
from catquiz.models.types import Status
from catquiz.schemas.irt import ItemParameter, Question, ResponseSet

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value (``status`` OK) or a failure status."""

    value: Optional[T] = None
    status: Status = Status.OK

    @classmethod
    def ok(cls, value: T) -> "Result[T]":
        return cls(value=value, status=Status.OK)

    @classmethod
    def err(cls, status: Status) -> "Result[T]":
        if status == Status.OK:
            raise ValueError("An error result needs a failure status")
        return cls(value=None, status=status)

    def is_ok(self) -> bool:
        return self.status == Status.OK

    def is_err(self) -> bool:
        return not self.is_ok()

    def unwrap(self) -> T:
        """Return the value or raise ValueError for an error result."""
        if self.is_err():
            raise ValueError(f"Called unwrap on an error result: {self.status.value}")
        return self.value


@dataclass
class ItemCandidate:
    """A question under consideration, with the scores stages attach to it."""

    question: Question
    fisher_information: Optional[float] = None
    penalty: float = 0.0
    exposure_factor: float = 1.0
    score: Optional[float] = None

    @property
    def item_id(self) -> str:
        return self.question.item_id

    @property
    def scale_id(self) -> int:
        return self.question.scale_id


@dataclass
class PipelineContext:
    """
    Mutable state shared by the stages of one "fetch next question" call.

    Built fresh for every call and discarded afterwards; attempt-level state
    lives in AttemptState and is copied in and out by the engine.
    """

    person_id: int
    scale_id: int
    candidates: List[ItemCandidate]
    responses: ResponseSet = field(default_factory=ResponseSet)
    item_parameters: Dict[str, ItemParameter] = field(default_factory=dict)
    person_abilities: Dict[int, float] = field(default_factory=dict)
    standard_errors: Dict[int, float] = field(default_factory=dict)
    questions_attempted: int = 0
    max_questions: int = field(default_factory=lambda: settings.CAT_MAX_QUESTIONS)
    min_questions: int = field(default_factory=lambda: settings.CAT_MIN_QUESTIONS)
    update_threshold: float = field(default_factory=lambda: settings.CAT_UPDATE_THRESHOLD)
    penalty_threshold: float = field(default_factory=lambda: settings.CAT_PENALTY_THRESHOLD)
    pilot_ratio: float = field(default_factory=lambda: settings.CAT_PILOT_RATIO)
    standard_error_threshold: float = field(
        default_factory=lambda: settings.CAT_STANDARD_ERROR_THRESHOLD
    )
    max_general_attempts: int = field(
        default_factory=lambda: settings.CAT_MAX_GENERAL_ATTEMPTS
    )
    prior: Optional[AbilityPrior] = field(default_factory=AbilityPrior.from_settings)
    last_question: Optional[Question] = None
    played_question_ids: Set[str] = field(default_factory=set)
    pilot_item_ids: Set[str] = field(default_factory=set)
    excluded_scales: Set[int] = field(default_factory=set)
    previous_fingerprint: Optional[FrozenSet[Any]] = None
    now: datetime = field(default_factory=datetime.now)
    rng: random.Random = field(default_factory=random.Random)
    registry: ModelRegistry = field(default_factory=lambda: default_registry)
    selected_question: Optional[Question] = None
    status: Optional[Status] = None

    def __post_init__(self):
        # Pilots are collected before any stage filters the pool
        self.pilot_item_ids = set(self.pilot_item_ids)
        self.pilot_item_ids.update(c.item_id for c in self.candidates if c.question.is_pilot)
        if self.last_question is not None and self.last_question.is_pilot:
            self.pilot_item_ids.add(self.last_question.item_id)

    @property
    def ability(self) -> float:
        """Current ability on the tested scale, 0.0 before the first estimate."""
        return self.person_abilities.get(self.scale_id, 0.0)

    def parameters_for(self, item_id: str) -> Optional[ItemParameter]:
        item = self.item_parameters.get(item_id)
        if item is None or not item.status.is_usable:
            return None
        return item

    def usable_item_parameters(self) -> Dict[str, ItemParameter]:
        """Item parameters whose status allows scoring."""
        return {
            item_id: item
            for item_id, item in self.item_parameters.items()
            if item.status.is_usable
        }


Continuation = Callable[[PipelineContext], Result[Question]]


class PreselectTask(ABC):
    """One stage of the selection pipeline."""

    @property
    def name(self) -> str:
        return type(self).__name__

    @abstractmethod
    def run(self, context: PipelineContext, next_: Continuation) -> Result[Question]:
        """Update ``context`` and forward to ``next_``, or return a terminal Result."""

    def __repr__(self) -> str:
        return f"{self.name}()"


def _fallback(context: PipelineContext) -> Result[Question]:
    logger.warning(
        "Pipeline ended without selecting a question",
        extra={"scale_id": context.scale_id, "person_id": context.person_id},
    )
    return Result.err(Status.FETCH_NEXT_QUESTION_FAILED)


def _bind(stage: PreselectTask, next_: Continuation) -> Continuation:
    def continuation(context: PipelineContext) -> Result[Question]:
        return stage.run(context, next_)

    return continuation


def run_pipeline(
    context: PipelineContext, stages: Sequence[PreselectTask]
) -> Result[Question]:
    """
    Run ``stages`` over ``context`` and return the first terminal Result.

    Stops with the first Result a stage returns; every stage forwards through
    the continuation it is given, so each stage runs at most once.
    """
    chain: Continuation = _fallback
    for stage in reversed(list(stages)):
        chain = _bind(stage, chain)

    result = chain(context)
    context.status = result.status
    if result.is_ok():
        context.selected_question = result.value
    return result
