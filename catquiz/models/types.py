"""Shared domain enums for catquiz.

This module is the single source of truth for status codes used across the
estimator, the selection pipeline, and the persistence collaborators.

Usage:
    from catquiz.models.types import ItemParamStatus, Status
"""

import enum


class ItemParamStatus(str, enum.Enum):
    """Origin of an item parameter record."""

    UNSET = "unset"
    CALCULATED = "calculated"
    SET_MANUALLY = "set_manually"
    NOT_CALCULATED = "not_calculated"

    @property
    def is_usable(self) -> bool:
        """Whether parameters with this status may be used for selection and scoring."""
        return self in (ItemParamStatus.CALCULATED, ItemParamStatus.SET_MANUALLY)


class Status(str, enum.Enum):
    """Outcome codes of the selection pipeline.

    Every value other than OK describes why no question was returned. Some of
    them (maximum questions, unchanged ability, exhausted pool) are expected
    ways for an attempt to end rather than faults.
    """

    OK = "ok"
    ERROR_GENERAL = "error"
    NO_REMAINING_QUESTIONS = "noremainingquestions"
    FETCH_NEXT_QUESTION_FAILED = "errorfetchnextquestion"
    REACHED_MAXIMUM_QUESTIONS = "reachedmaximumquestions"
    ABORT_PERSONABILITY_NOT_CHANGED = "abortpersonabilitynotchanged"
    EMPTY_FIRST_QUESTION_LIST = "emptyfirstquestionlist"
    NO_ITEM_PARAMETERS = "noitemparams"

    @property
    def is_termination(self) -> bool:
        """Whether this status is an expected end of the attempt."""
        return self in (
            Status.NO_REMAINING_QUESTIONS,
            Status.REACHED_MAXIMUM_QUESTIONS,
            Status.ABORT_PERSONABILITY_NOT_CHANGED,
        )


class ModelName(str, enum.Enum):
    """Identifiers of the installed IRT response models."""

    RASCH_1PL = "1pl"
    BIRNBAUM_2PL = "2pl"
    BIRNBAUM_3PL = "3pl"
    DEMO = "demo"


class StrategyName(str, enum.Enum):
    """Identifiers of the item selection strategies."""

    FASTEST = "fastest"
    CLASSICAL = "classical"
