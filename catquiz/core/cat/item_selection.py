"""
Scoring stages of the selection pipeline.

The "fastest" strategy ranks candidates by Fisher information at the current
ability, discounted by how recently the person saw the question:

    score = (1 - penalty / penalty_threshold) * I(theta)
    penalty = max(0, penalty_threshold - seconds since last seen)

The "classical" strategy prefers questions the person answers correctly with
probability close to one half and spreads exposure over the pool:

    score = (1 - 2 * |P(theta) - 0.5|) * exposure_factor * (1 - penalty / threshold)
    exposure_factor = max(0, 1 - general_attempts / (max_general_attempts + 1))

Both scoring stages return the highest-scoring candidate; the earliest
candidate wins ties.

References:
    - Lord, F. M. (1980). Applications of item response theory to practical
      testing problems. Hillsdale, NJ: Erlbaum.
"""

import logging
from typing import Optional

from catquiz.core.cat.pipeline import (
    Continuation,
    ItemCandidate,
    PipelineContext,
    PreselectTask,
    Result,
)
from catquiz.models.types import Status
from catquiz.schemas.irt import Question

logger = logging.getLogger(__name__)


def _recency_factor(candidate: ItemCandidate, context: PipelineContext) -> float:
    return 1.0 - candidate.penalty / context.penalty_threshold


def _pick_highest(context: PipelineContext, stage: str) -> Result[Question]:
    best: Optional[ItemCandidate] = None
    for candidate in context.candidates:
        if best is None or candidate.score > best.score:
            best = candidate
    if best is None:
        logger.info(
            "No candidate left to score",
            extra={"scale_id": context.scale_id, "stage": stage},
        )
        return Result.err(Status.NO_REMAINING_QUESTIONS)
    logger.debug(
        f"Selected {best.item_id} with score {best.score:.4f}",
        extra={"item_id": best.item_id, "scale_id": best.scale_id, "stage": stage},
    )
    return Result.ok(best.question)


class FisherInformation(PreselectTask):
    """Attach the Fisher information at the current ability to every candidate."""

    def run(self, context: PipelineContext, next_: Continuation) -> Result[Question]:
        for candidate in context.candidates:
            item = context.parameters_for(candidate.item_id)
            if item is None:
                candidate.fisher_information = None
                continue
            model = context.registry.get(item.model)
            ability = context.person_abilities.get(candidate.scale_id, context.ability)
            candidate.fisher_information = model.fisher_information(ability, item.params)
        return next_(context)


class LastTimePlayedPenalty(PreselectTask):
    """Penalize questions the person saw within the last ``penalty_threshold`` seconds."""

    def run(self, context: PipelineContext, next_: Continuation) -> Result[Question]:
        for candidate in context.candidates:
            seen = candidate.question.last_attempt_time
            if seen is None:
                candidate.penalty = 0.0
                continue
            elapsed = (context.now - seen).total_seconds()
            candidate.penalty = max(0.0, context.penalty_threshold - elapsed)
        return next_(context)


class FilterByStandardError(PreselectTask):
    """
    Skip subscales that are already measured precisely enough.

    Questions of a subscale whose standard error is below
    ``standard_error_threshold`` are removed. The tested scale itself is
    never filtered.
    """

    def run(self, context: PipelineContext, next_: Continuation) -> Result[Question]:
        precise = {
            scale_id
            for scale_id, se in context.standard_errors.items()
            if scale_id != context.scale_id and se < context.standard_error_threshold
        }
        if precise:
            logger.debug(f"Skipping precisely measured subscales {sorted(precise)}")
            context.candidates = [c for c in context.candidates if c.scale_id not in precise]
        return next_(context)


class NumberOfGeneralAttempts(PreselectTask):
    """Discount questions that were played often by anyone."""

    def run(self, context: PipelineContext, next_: Continuation) -> Result[Question]:
        for candidate in context.candidates:
            share = candidate.question.general_attempts / (context.max_general_attempts + 1)
            candidate.exposure_factor = max(0.0, 1.0 - share)
        return next_(context)


class StrategyFastestScore(PreselectTask):
    """Score by recency-discounted Fisher information and return the best question."""

    def run(self, context: PipelineContext, next_: Continuation) -> Result[Question]:
        for candidate in context.candidates:
            information = candidate.fisher_information or 0.0
            candidate.score = _recency_factor(candidate, context) * information
        return _pick_highest(context, self.name)


class StrategyClassicScore(PreselectTask):
    """Score by closeness of P(correct) to one half and return the best question."""

    def run(self, context: PipelineContext, next_: Continuation) -> Result[Question]:
        for candidate in context.candidates:
            item = context.parameters_for(candidate.item_id)
            if item is None:
                candidate.score = 0.0
                continue
            model = context.registry.get(item.model)
            p = model.likelihood(context.ability, item.params)
            closeness = 1.0 - 2.0 * abs(p - 0.5)
            candidate.score = (
                closeness * candidate.exposure_factor * _recency_factor(candidate, context)
            )
        return _pick_highest(context, self.name)
