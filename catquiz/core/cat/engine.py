"""
CATSessionManager: orchestrator for adaptive test attempts.

Each "fetch next question" call reads the person's responses and the item
parameters from the collaborator stores, builds a fresh PipelineContext from
the attempt's state, runs the strategy pipeline once, and writes the outcome
back: abilities to the person-ability store, played questions and the stop
reason to the AttemptState. The engine itself keeps no per-attempt state
between calls.
"""
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Set

from catquiz.core.cat.ability_estimation import AbilityPrior
from catquiz.core.cat.irt_models import ModelRegistry, default_registry
from catquiz.core.cat.pipeline import ItemCandidate, PipelineContext, Result
from catquiz.core.cat.stores import (
    AttemptStateCache,
    ItemParameterStore,
    PersonAbilityStore,
    ResponseRepository,
)
from catquiz.core.cat.strategies import get_strategy, select_next_question
from catquiz.core.config import settings
from catquiz.core.logging_config import attempt_context
from catquiz.models.types import Status
from catquiz.schemas.irt import PersonParameter, Question

logger = logging.getLogger(__name__)


@dataclass
class AttemptState:
    """State of one attempt, carried from one call to the next."""

    attempt_id: str
    person_id: int
    scale_id: int
    strategy: str = field(default_factory=lambda: settings.CAT_DEFAULT_STRATEGY)
    max_questions: int = field(default_factory=lambda: settings.CAT_MAX_QUESTIONS)
    min_questions: int = field(default_factory=lambda: settings.CAT_MIN_QUESTIONS)
    prior: Optional[AbilityPrior] = field(default_factory=AbilityPrior.from_settings)
    person_abilities: Dict[int, float] = field(default_factory=dict)
    standard_errors: Dict[int, float] = field(default_factory=dict)
    played_question_ids: List[str] = field(default_factory=list)
    played_by_scale: Dict[int, List[str]] = field(default_factory=dict)
    excluded_scales: Set[int] = field(default_factory=set)
    last_question: Optional[Question] = None
    pilot_question_ids: Set[str] = field(default_factory=set)
    stop_reason: Optional[Status] = None
    response_fingerprint: Optional[FrozenSet[Any]] = None
    rng: random.Random = field(default_factory=random.Random)

    @property
    def questions_attempted(self) -> int:
        return len(self.played_question_ids)

    @property
    def pilot_questions_played(self) -> int:
        return len(self.pilot_question_ids)

    @property
    def is_finished(self) -> bool:
        return self.stop_reason is not None


class CATSessionManager:
    """
    Orchestrator for adaptive test attempts.

    Manages:
    - Attempt initialization with previously stored abilities
    - One pipeline run per "fetch next question" call
    - Write-back of abilities, played questions and stop reasons
    """

    def __init__(
        self,
        responses: ResponseRepository,
        item_parameters: ItemParameterStore,
        abilities: PersonAbilityStore,
        cache: Optional[AttemptStateCache] = None,
        registry: Optional[ModelRegistry] = None,
    ):
        self.responses = responses
        self.item_parameters = item_parameters
        self.abilities = abilities
        self.cache = cache or AttemptStateCache()
        self.registry = registry or default_registry

    def start_attempt(
        self,
        attempt_id: str,
        person_id: int,
        scale_id: int,
        strategy: Optional[str] = None,
        max_questions: Optional[int] = None,
        min_questions: Optional[int] = None,
        prior: Optional[AbilityPrior] = None,
        seed: Optional[int] = None,
    ) -> AttemptState:
        """
        Create and cache the state of a new attempt.

        Args:
            attempt_id: Unique attempt identifier.
            person_id: Person taking the test.
            scale_id: Scale under test.
            strategy: Strategy identifier; CAT_DEFAULT_STRATEGY if None.
            max_questions: CAT_MAX_QUESTIONS if None.
            min_questions: CAT_MIN_QUESTIONS if None.
            prior: Ability prior; the configured prior if None.
            seed: Seed for pilot-question draws.

        Raises:
            ConfigurationError: If the strategy is unknown.
        """
        strategy = strategy or settings.CAT_DEFAULT_STRATEGY
        get_strategy(strategy)

        state = AttemptState(
            attempt_id=attempt_id,
            person_id=person_id,
            scale_id=scale_id,
            strategy=strategy,
            rng=random.Random(seed),
        )
        if max_questions is not None:
            state.max_questions = max_questions
        if min_questions is not None:
            state.min_questions = min_questions
        if prior is not None:
            state.prior = prior

        for stored_scale, parameter in self.abilities.get_all(person_id).items():
            state.person_abilities[stored_scale] = parameter.ability
            if parameter.standard_error is not None:
                state.standard_errors[stored_scale] = parameter.standard_error

        self.cache.set(attempt_id, state)
        logger.info(
            f"Started attempt {attempt_id} for person {person_id} on scale {scale_id} "
            f"with strategy '{strategy}'"
        )
        return state

    def fetch_next_question(
        self,
        attempt: AttemptState,
        candidates: Sequence[Question],
        now: Optional[datetime] = None,
    ) -> Result[Question]:
        """
        Select the next question of an attempt.

        Args:
            attempt: Attempt state; updated in place.
            candidates: The question pool of the tested scale and its subscales.
            now: Current time for recency penalties; datetime.now() if None.

        Returns:
            Ok(question) or Err(status). Once an attempt has stopped, every
            further call returns its stop reason.

        Raises:
            ConfigurationError: For setup defects found while estimating or
                selecting.
        """
        with attempt_context(attempt.attempt_id):
            if attempt.stop_reason is not None:
                return Result.err(attempt.stop_reason)

            context = self._build_context(attempt, candidates, now or datetime.now())
            result = select_next_question(context, attempt.strategy)
            self._write_back(attempt, context)

            if result.is_ok():
                self._record_question(attempt, result.value)
            else:
                attempt.stop_reason = result.status
                logger.info(
                    f"Attempt stopped: {result.status.value}",
                    extra={"status": result.status.value, "scale_id": attempt.scale_id},
                )
            return result

    def fetch_for_attempt(
        self,
        attempt_id: str,
        candidates: Sequence[Question],
        now: Optional[datetime] = None,
    ) -> Result[Question]:
        """fetch_next_question on the cached state, as one atomic update."""
        return self.cache.update(
            attempt_id,
            lambda state: self.fetch_next_question(state, candidates, now),
        )

    def get_attempt(self, attempt_id: str) -> Optional[AttemptState]:
        return self.cache.get(attempt_id)

    def _build_context(
        self, attempt: AttemptState, candidates: Sequence[Question], now: datetime
    ) -> PipelineContext:
        item_ids = [q.item_id for q in candidates]
        if attempt.last_question is not None:
            item_ids.append(attempt.last_question.item_id)

        return PipelineContext(
            person_id=attempt.person_id,
            scale_id=attempt.scale_id,
            candidates=[ItemCandidate(question=q) for q in candidates],
            responses=self.responses.get_responses(attempt.person_id, item_ids),
            item_parameters=self.item_parameters.get_item_parameters(item_ids),
            person_abilities=dict(attempt.person_abilities),
            standard_errors=dict(attempt.standard_errors),
            questions_attempted=attempt.questions_attempted,
            max_questions=attempt.max_questions,
            min_questions=attempt.min_questions,
            prior=attempt.prior,
            last_question=attempt.last_question,
            played_question_ids=set(attempt.played_question_ids),
            pilot_item_ids=set(attempt.pilot_question_ids),
            excluded_scales=set(attempt.excluded_scales),
            previous_fingerprint=attempt.response_fingerprint,
            now=now,
            rng=attempt.rng,
            registry=self.registry,
        )

    def _write_back(self, attempt: AttemptState, context: PipelineContext) -> None:
        for scale_id, ability in context.person_abilities.items():
            if attempt.person_abilities.get(scale_id) == ability:
                continue
            self.abilities.save(
                PersonParameter(
                    person_id=attempt.person_id,
                    scale_id=scale_id,
                    ability=ability,
                    standard_error=context.standard_errors.get(scale_id),
                )
            )
        attempt.person_abilities = dict(context.person_abilities)
        attempt.standard_errors = dict(context.standard_errors)
        attempt.excluded_scales = set(context.excluded_scales)
        attempt.response_fingerprint = context.previous_fingerprint

    def _record_question(self, attempt: AttemptState, question: Question) -> None:
        if question.item_id in attempt.played_question_ids:
            # Page reload: the question is already recorded
            return
        attempt.played_question_ids.append(question.item_id)
        attempt.played_by_scale.setdefault(question.scale_id, []).append(question.item_id)
        attempt.last_question = question
        if question.is_pilot:
            attempt.pilot_question_ids.add(question.item_id)
        logger.debug(
            f"Question {question.item_id} selected ({attempt.questions_attempted} played)",
            extra={"item_id": question.item_id, "scale_id": question.scale_id},
        )
