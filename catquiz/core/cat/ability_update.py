"""
Ability update stages.

UpdatePersonAbility re-estimates the person's ability after every answered
question and decides whether testing on the scale should go on:

    no answered last question   -> forward unchanged
    last question was a pilot   -> forward unchanged
    responses unchanged         -> forward unchanged
    no outcome variation        -> forward unchanged (only without a prior)
    otherwise                   -> estimate; on a numeric failure keep the
                                   previous ability (0.0 if none) and forward
    converged                   -> exclude the scale, AbortPersonabilityNotChanged

Converged means the ability moved less than ``update_threshold`` and at least
``min_questions`` questions were attempted. Only responses to non-pilot items
with usable parameters are scored.
"""

import logging
from typing import Dict, List

from catquiz.core.cat.ability_estimation import ability_standard_error, estimate_person_ability
from catquiz.core.cat.pipeline import Continuation, PipelineContext, PreselectTask, Result
from catquiz.core.exceptions import NumericFailure
from catquiz.models.types import Status
from catquiz.schemas.irt import ItemParameter, Question, ResponseSet

logger = logging.getLogger(__name__)


def scoring_responses(context: PipelineContext) -> ResponseSet:
    """The person's responses that may feed ability estimation."""
    return ResponseSet(
        r
        for r in context.responses.for_person(context.person_id)
        if r.item_id not in context.pilot_item_ids
    )


class UpdatePersonAbility(PreselectTask):
    """Re-estimate ability from the responses so far."""

    def run(self, context: PipelineContext, next_: Continuation) -> Result[Question]:
        last = context.last_question
        if last is None or context.responses.for_item(last.item_id) is None:
            return next_(context)
        if last.is_pilot:
            logger.debug(f"Pilot question {last.item_id} does not update the ability")
            return next_(context)

        usable = context.usable_item_parameters()
        responses = scoring_responses(context).for_items(usable)
        fingerprint = responses.fingerprint()
        if fingerprint == context.previous_fingerprint:
            return next_(context)
        context.previous_fingerprint = fingerprint

        if context.prior is None and not responses.has_outcome_variation():
            logger.debug(
                "Responses have no outcome variation, keeping the current ability",
                extra={"scale_id": context.scale_id},
            )
            return next_(context)

        old_ability = context.person_abilities.get(context.scale_id, 0.0)
        try:
            estimate = estimate_person_ability(
                responses,
                usable,
                registry=context.registry,
                prior=context.prior,
            )
        except NumericFailure as e:
            logger.warning(
                f"Ability update failed, keeping {old_ability:.3f}: {e}",
                extra={
                    "scale_id": context.scale_id,
                    "person_id": context.person_id,
                    "iterations": e.iterations,
                },
            )
            context.person_abilities[context.scale_id] = old_ability
            return next_(context)

        new_ability = estimate.ability
        context.person_abilities[context.scale_id] = new_ability
        if estimate.standard_error is not None:
            context.standard_errors[context.scale_id] = estimate.standard_error

        if (
            abs(new_ability - old_ability) < context.update_threshold
            and context.questions_attempted >= context.min_questions
        ):
            context.excluded_scales.add(context.scale_id)
            logger.info(
                f"Ability converged at {new_ability:.3f}",
                extra={
                    "scale_id": context.scale_id,
                    "ability": new_ability,
                    "stage": self.name,
                },
            )
            return Result.err(Status.ABORT_PERSONABILITY_NOT_CHANGED)

        logger.debug(
            f"Ability updated {old_ability:.3f} -> {new_ability:.3f}",
            extra={"scale_id": context.scale_id, "ability": new_ability},
        )
        return next_(context)


class AddScaleStandardError(PreselectTask):
    """Attach the standard error of every candidate scale to the context."""

    def run(self, context: PipelineContext, next_: Continuation) -> Result[Question]:
        scale_of: Dict[str, int] = {c.item_id: c.scale_id for c in context.candidates}
        if context.last_question is not None:
            scale_of[context.last_question.item_id] = context.last_question.scale_id

        answered: Dict[int, List[ItemParameter]] = {}
        for record in scoring_responses(context):
            scale_id = scale_of.get(record.item_id)
            item = context.parameters_for(record.item_id)
            if scale_id is None or item is None:
                continue
            answered.setdefault(scale_id, []).append(item)

        for scale_id, items in answered.items():
            ability = context.person_abilities.get(scale_id, context.ability)
            se = ability_standard_error(ability, items, context.prior, context.registry)
            if se is not None:
                context.standard_errors[scale_id] = se
        return next_(context)
