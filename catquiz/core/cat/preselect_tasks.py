"""
Guard and filter stages of the selection pipeline.

Guards end the call with a terminal Result when the attempt cannot or should
not continue; filters narrow ``context.candidates`` and forward. Scoring
stages live in item_selection, the ability update in ability_update.
"""

import logging
from typing import List

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


class CheckItemParams(PreselectTask):
    """Stop when no candidate has usable item parameters."""

    def run(self, context: PipelineContext, next_: Continuation) -> Result[Question]:
        if not any(context.parameters_for(c.item_id) for c in context.candidates):
            logger.info(
                "No candidate has usable item parameters",
                extra={"scale_id": context.scale_id, "stage": self.name},
            )
            return Result.err(Status.NO_ITEM_PARAMETERS)
        return next_(context)


class CheckPageReload(PreselectTask):
    """Return the last question again if it has not been answered yet."""

    def run(self, context: PipelineContext, next_: Continuation) -> Result[Question]:
        last = context.last_question
        if last is not None and context.responses.for_item(last.item_id) is None:
            logger.debug(f"Question {last.item_id} is still unanswered, showing it again")
            return Result.ok(last)
        return next_(context)


class FirstQuestionSelector(PreselectTask):
    """
    Choose the opening question.

    Only acts before anything was played in the attempt: picks the calibrated,
    non-pilot question whose difficulty is closest to the current ability.
    The first such question in candidate order wins ties.
    """

    def run(self, context: PipelineContext, next_: Continuation) -> Result[Question]:
        if context.last_question is not None or context.questions_attempted > 0:
            return next_(context)

        best = None
        best_distance = None
        for candidate in context.candidates:
            if candidate.question.is_pilot or candidate.scale_id in context.excluded_scales:
                continue
            item = context.parameters_for(candidate.item_id)
            if item is None or item.difficulty is None:
                continue
            distance = abs(item.difficulty - context.ability)
            if best_distance is None or distance < best_distance:
                best, best_distance = candidate, distance

        if best is None:
            logger.info(
                "No question qualifies as first question",
                extra={"scale_id": context.scale_id, "stage": self.name},
            )
            return Result.err(Status.EMPTY_FIRST_QUESTION_LIST)
        return Result.ok(best.question)


class MaximumQuestionsCheck(PreselectTask):
    """Stop once the configured number of questions was attempted."""

    def run(self, context: PipelineContext, next_: Continuation) -> Result[Question]:
        if context.questions_attempted >= context.max_questions:
            logger.info(
                f"Reached maximum of {context.max_questions} questions",
                extra={"scale_id": context.scale_id, "stage": self.name},
            )
            return Result.err(Status.REACHED_MAXIMUM_QUESTIONS)
        return next_(context)


class RemovePlayedQuestions(PreselectTask):
    """Drop questions that were already shown or answered in this attempt."""

    def run(self, context: PipelineContext, next_: Continuation) -> Result[Question]:
        played = set(context.played_question_ids)
        played.update(r.item_id for r in context.responses)
        context.candidates = [c for c in context.candidates if c.item_id not in played]
        return next_(context)


class MaybeReturnPilot(PreselectTask):
    """
    Decide whether this call administers a pilot question.

    With probability ``pilot_ratio`` (drawn from the context's RNG) the
    candidate list is narrowed to pilot questions; otherwise pilot questions
    are removed. Without pilot candidates nothing changes.
    """

    def run(self, context: PipelineContext, next_: Continuation) -> Result[Question]:
        pilots = [c for c in context.candidates if c.question.is_pilot]
        if not pilots:
            return next_(context)

        if context.rng.random() < context.pilot_ratio:
            logger.debug(f"Administering one of {len(pilots)} pilot questions")
            context.candidates = pilots
        else:
            context.candidates = [c for c in context.candidates if not c.question.is_pilot]
        return next_(context)


class RemoveUncalculated(PreselectTask):
    """Drop non-pilot questions without usable item parameters."""

    def run(self, context: PipelineContext, next_: Continuation) -> Result[Question]:
        kept: List[ItemCandidate] = []
        for candidate in context.candidates:
            if candidate.question.is_pilot or context.parameters_for(candidate.item_id):
                kept.append(candidate)
        removed = len(context.candidates) - len(kept)
        if removed:
            logger.debug(f"Removed {removed} questions without usable parameters")
        context.candidates = kept
        return next_(context)


class MaybeRemoveScale(PreselectTask):
    """Drop questions of scales excluded earlier in the attempt."""

    def run(self, context: PipelineContext, next_: Continuation) -> Result[Question]:
        if context.excluded_scales:
            context.candidates = [
                c for c in context.candidates if c.scale_id not in context.excluded_scales
            ]
        return next_(context)


class NoRemainingQuestions(PreselectTask):
    """Stop when the candidate list is empty."""

    def run(self, context: PipelineContext, next_: Continuation) -> Result[Question]:
        if not context.candidates:
            logger.info(
                "No questions remaining",
                extra={"scale_id": context.scale_id, "stage": self.name},
            )
            return Result.err(Status.NO_REMAINING_QUESTIONS)
        return next_(context)
