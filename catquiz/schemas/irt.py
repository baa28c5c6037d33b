"""
Pydantic records exchanged between the engine and its storage collaborators.

Responses are validated at ingestion: the closed-form likelihood branches only
cover fully correct (fraction 1) and fully incorrect (fraction 0) answers, so
any other fraction is rejected here instead of being silently misclassified.
"""
from datetime import datetime
from typing import Dict, FrozenSet, Iterable, Iterator, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from catquiz.core.exceptions import ConfigurationError, PartialResponseError
from catquiz.models.types import ItemParamStatus


class ItemParameter(BaseModel):
    """Free parameters of one item under one model."""

    model_config = ConfigDict(frozen=True)

    item_id: str = Field(..., min_length=1, description="Item identifier")
    model: str = Field(..., description="Model identifier, e.g. '2pl'")
    params: Tuple[float, ...] = Field(
        default=(),
        description="Ordered free parameters (difficulty, discrimination, guessing)",
    )
    status: ItemParamStatus = Field(
        default=ItemParamStatus.UNSET, description="Origin of the parameter values"
    )

    @property
    def difficulty(self) -> Optional[float]:
        """First free parameter, or None for models without one."""
        return self.params[0] if self.params else None

    def validate_dimension(self, dimension: int) -> "ItemParameter":
        """
        Check the vector length against a model dimension.

        Args:
            dimension: Model dimension including the ability parameter.

        Returns:
            self, for chaining.

        Raises:
            ConfigurationError: If ``len(params) != dimension - 1``.
        """
        if len(self.params) != dimension - 1:
            raise ConfigurationError(
                "Item parameter vector does not match the model dimension",
                context={
                    "item_id": self.item_id,
                    "model": self.model,
                    "expected": dimension - 1,
                    "actual": len(self.params),
                },
            )
        return self

    def with_params(
        self, params: Iterable[float], status: ItemParamStatus
    ) -> "ItemParameter":
        """Return a copy carrying new values and status."""
        return self.model_copy(
            update={"params": tuple(float(p) for p in params), "status": status}
        )


class PersonParameter(BaseModel):
    """Ability estimate of one person on one scale."""

    person_id: int
    scale_id: int
    ability: float
    standard_error: Optional[float] = Field(default=None, ge=0.0)


class ResponseRecord(BaseModel):
    """
    One answered item. Only fractions 0 and 1 are accepted.

    Direct construction reports a partial fraction as a pydantic
    ValidationError; ``from_fraction`` is the ingestion entry point and raises
    PartialResponseError instead.
    """

    model_config = ConfigDict(frozen=True)

    person_id: int
    item_id: str = Field(..., min_length=1)
    fraction: float
    timestamp: datetime = Field(default_factory=datetime.now)

    @field_validator("fraction")
    @classmethod
    def reject_partial_credit(cls, v: float) -> float:
        """Partial credit has no closed-form likelihood branch."""
        if not _is_binary(v):
            raise ValueError(f"Response fraction must be 0 or 1, got {v}")
        return float(v)

    @classmethod
    def from_fraction(
        cls,
        person_id: int,
        item_id: str,
        fraction: float,
        timestamp: Optional[datetime] = None,
    ) -> "ResponseRecord":
        """
        Build a record from a raw answer.

        Raises:
            PartialResponseError: If ``fraction`` is neither 0 nor 1.
        """
        if not _is_binary(fraction):
            raise PartialResponseError(
                f"Response fraction must be 0 or 1, got {fraction}"
            )
        values = {"person_id": person_id, "item_id": item_id, "fraction": fraction}
        if timestamp is not None:
            values["timestamp"] = timestamp
        return cls(**values)

    @property
    def is_correct(self) -> bool:
        return self.fraction == 1.0


def _is_binary(fraction: float) -> bool:
    return fraction in (0.0, 1.0)


class Question(BaseModel):
    """A candidate question as supplied by the question pool."""

    model_config = ConfigDict(frozen=True)

    item_id: str = Field(..., min_length=1)
    scale_id: int
    is_pilot: bool = False
    last_attempt_time: Optional[datetime] = Field(
        default=None, description="When this person last saw the question"
    )
    general_attempts: int = Field(
        default=0, ge=0, description="How often the question was played by anyone"
    )


class ResponseSet:
    """
    Immutable collection of responses for one estimation call.

    Grouping helpers return new ResponseSets; nothing is ever mutated in place.
    """

    __slots__ = ("_records",)

    def __init__(self, records: Iterable[ResponseRecord] = ()):
        self._records: Tuple[ResponseRecord, ...] = tuple(records)

    def __iter__(self) -> Iterator[ResponseRecord]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __bool__(self) -> bool:
        return bool(self._records)

    def __repr__(self) -> str:
        return f"ResponseSet({len(self._records)} responses)"

    @property
    def records(self) -> Tuple[ResponseRecord, ...]:
        return self._records

    def item_ids(self) -> List[str]:
        """Distinct item ids in first-seen order."""
        return list(dict.fromkeys(r.item_id for r in self._records))

    def by_person(self) -> Dict[int, "ResponseSet"]:
        grouped: Dict[int, List[ResponseRecord]] = {}
        for record in self._records:
            grouped.setdefault(record.person_id, []).append(record)
        return {key: ResponseSet(value) for key, value in grouped.items()}

    def by_item(self) -> Dict[str, "ResponseSet"]:
        grouped: Dict[str, List[ResponseRecord]] = {}
        for record in self._records:
            grouped.setdefault(record.item_id, []).append(record)
        return {key: ResponseSet(value) for key, value in grouped.items()}

    def for_person(self, person_id: int) -> "ResponseSet":
        return ResponseSet(r for r in self._records if r.person_id == person_id)

    def for_items(self, item_ids: Iterable[str]) -> "ResponseSet":
        wanted = set(item_ids)
        return ResponseSet(r for r in self._records if r.item_id in wanted)

    def for_item(self, item_id: str) -> Optional[ResponseRecord]:
        """Most recent response to ``item_id``, if any."""
        matches = [r for r in self._records if r.item_id == item_id]
        if not matches:
            return None
        return max(matches, key=lambda r: r.timestamp)

    def has_outcome_variation(self) -> bool:
        """True if both correct and incorrect outcomes are present."""
        outcomes = {r.is_correct for r in self._records}
        return len(outcomes) > 1

    def fingerprint(self) -> FrozenSet[Tuple[int, str, float]]:
        """Order-independent snapshot used to detect new or changed answers."""
        return frozenset((r.person_id, r.item_id, r.fraction) for r in self._records)
