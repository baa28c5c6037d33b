"""
Pytest configuration and shared fixtures for testing.
"""
from datetime import datetime, timedelta
from typing import Callable, Dict, List

import pytest

from catquiz.core.cat.irt_models import ModelRegistry
from catquiz.core.cat.pipeline import ItemCandidate, PipelineContext
from catquiz.models.types import ItemParamStatus
from catquiz.schemas.irt import ItemParameter, Question, ResponseRecord, ResponseSet

PERSON_ID = 7
SCALE_ID = 1
SUBSCALE_ID = 2

# Fixed clock so recency penalties are deterministic
NOW = datetime(2024, 3, 1, 12, 0, 0)


@pytest.fixture
def registry() -> ModelRegistry:
    """Registry with every model installed."""
    return ModelRegistry(["1pl", "2pl", "3pl", "demo"])


@pytest.fixture
def make_item() -> Callable[..., ItemParameter]:
    def _make(item_id: str, *params: float, model: str = "2pl", status=ItemParamStatus.CALCULATED):
        return ItemParameter(item_id=item_id, model=model, params=params, status=status)

    return _make


@pytest.fixture
def make_response() -> Callable[..., ResponseRecord]:
    counter = {"n": 0}

    def _make(item_id: str, correct: bool, person_id: int = PERSON_ID):
        counter["n"] += 1
        return ResponseRecord(
            person_id=person_id,
            item_id=item_id,
            fraction=1.0 if correct else 0.0,
            timestamp=NOW + timedelta(seconds=counter["n"]),
        )

    return _make


@pytest.fixture
def item_bank(make_item) -> Dict[str, ItemParameter]:
    """Five 2PL items spread over the ability range."""
    items = [
        make_item("Q1", -1.5, 1.0),
        make_item("Q2", -0.5, 1.2),
        make_item("Q3", 0.0, 0.8),
        make_item("Q4", 0.7, 1.5),
        make_item("Q5", 1.6, 1.1),
    ]
    return {item.item_id: item for item in items}


@pytest.fixture
def questions() -> List[Question]:
    """Questions of the main scale matching item_bank."""
    return [Question(item_id=f"Q{i}", scale_id=SCALE_ID) for i in range(1, 6)]


@pytest.fixture
def make_context(registry, item_bank, questions) -> Callable[..., PipelineContext]:
    """Build a PipelineContext over the item bank; keyword arguments override fields."""

    def _make(**overrides):
        values = dict(
            person_id=PERSON_ID,
            scale_id=SCALE_ID,
            candidates=[ItemCandidate(question=q) for q in questions],
            responses=ResponseSet(),
            item_parameters=dict(item_bank),
            max_questions=25,
            min_questions=1,
            update_threshold=0.001,
            penalty_threshold=86400.0,
            pilot_ratio=0.0,
            standard_error_threshold=0.3,
            max_general_attempts=1000,
            prior=None,
            now=NOW,
            registry=registry,
        )
        values.update(overrides)
        return PipelineContext(**values)

    return _make
