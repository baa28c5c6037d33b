"""
Tests for the scoring stages.

At ability 0 the item bank's Fisher information is highest for Q4
(b=0.7, a=1.5, I ~ 0.432), followed by Q2 (b=-0.5, a=1.2, I ~ 0.329).
"""

from datetime import datetime, timedelta

import pytest

from catquiz.core.cat.item_selection import (
    FilterByStandardError,
    FisherInformation,
    LastTimePlayedPenalty,
    NumberOfGeneralAttempts,
    StrategyClassicScore,
    StrategyFastestScore,
)
from catquiz.core.cat.pipeline import ItemCandidate, Result, run_pipeline
from catquiz.models.types import ItemParamStatus, Status
from catquiz.schemas.irt import Question

NOW = datetime(2024, 3, 1, 12, 0, 0)


def forward(context):
    return Result.ok(None)


class TestFisherInformation:
    def test_information_at_current_ability(self, make_context):
        context = make_context()
        FisherInformation().run(context, forward)
        by_id = {c.item_id: c.fisher_information for c in context.candidates}
        # 2PL at theta = b: a^2 / 4
        assert by_id["Q3"] == pytest.approx(0.8**2 / 4)
        assert max(by_id, key=by_id.get) == "Q4"

    def test_missing_parameters_give_none(self, make_context, item_bank, make_item):
        items = dict(item_bank)
        items["Q2"] = make_item("Q2", 0.0, 1.0, status=ItemParamStatus.NOT_CALCULATED)
        context = make_context(item_parameters=items)
        FisherInformation().run(context, forward)
        assert context.candidates[1].fisher_information is None

    def test_subscale_uses_its_own_ability(self, make_context):
        candidates = [ItemCandidate(Question(item_id="Q5", scale_id=2))]
        context = make_context(candidates=candidates, person_abilities={1: -3.0, 2: 1.6})
        FisherInformation().run(context, forward)
        assert candidates[0].fisher_information == pytest.approx(1.1**2 / 4)


class TestLastTimePlayedPenalty:
    def test_penalty_from_elapsed_time(self, make_context):
        candidates = [
            ItemCandidate(Question(item_id="Q1", scale_id=1)),
            ItemCandidate(
                Question(item_id="Q2", scale_id=1, last_attempt_time=NOW - timedelta(hours=1))
            ),
            ItemCandidate(
                Question(item_id="Q3", scale_id=1, last_attempt_time=NOW - timedelta(days=2))
            ),
        ]
        context = make_context(candidates=candidates, penalty_threshold=86400.0)
        LastTimePlayedPenalty().run(context, forward)
        assert [c.penalty for c in candidates] == [0.0, pytest.approx(82800.0), 0.0]


class TestFilterByStandardError:
    def test_precise_subscales_are_skipped(self, make_context):
        candidates = [
            ItemCandidate(Question(item_id="Q1", scale_id=1)),
            ItemCandidate(Question(item_id="Q2", scale_id=2)),
            ItemCandidate(Question(item_id="Q3", scale_id=3)),
        ]
        context = make_context(
            candidates=candidates,
            standard_errors={1: 0.1, 2: 0.2, 3: 0.9},
            standard_error_threshold=0.3,
        )
        FilterByStandardError().run(context, forward)
        assert [c.item_id for c in context.candidates] == ["Q1", "Q3"]


class TestNumberOfGeneralAttempts:
    def test_exposure_factor(self, make_context):
        candidates = [
            ItemCandidate(Question(item_id="Q1", scale_id=1, general_attempts=0)),
            ItemCandidate(Question(item_id="Q2", scale_id=1, general_attempts=500)),
            ItemCandidate(Question(item_id="Q3", scale_id=1, general_attempts=5000)),
        ]
        context = make_context(candidates=candidates, max_general_attempts=999)
        NumberOfGeneralAttempts().run(context, forward)
        assert [c.exposure_factor for c in candidates] == [1.0, pytest.approx(0.5), 0.0]


class TestStrategyFastestScore:
    def test_highest_information_wins(self, make_context):
        stages = [FisherInformation(), LastTimePlayedPenalty(), StrategyFastestScore()]
        assert run_pipeline(make_context(), stages).unwrap().item_id == "Q4"

    def test_recently_played_question_is_discounted(self, make_context, questions):
        candidates = [ItemCandidate(q) for q in questions]
        candidates[3] = ItemCandidate(
            Question(item_id="Q4", scale_id=1, last_attempt_time=NOW - timedelta(minutes=1))
        )
        stages = [FisherInformation(), LastTimePlayedPenalty(), StrategyFastestScore()]
        result = run_pipeline(make_context(candidates=candidates), stages)
        assert result.unwrap().item_id == "Q2"

    def test_tie_goes_to_earliest(self, make_context, make_item):
        items = {"A": make_item("A", 0.0, 1.0), "B": make_item("B", 0.0, 1.0)}
        candidates = [
            ItemCandidate(Question(item_id="A", scale_id=1)),
            ItemCandidate(Question(item_id="B", scale_id=1)),
        ]
        context = make_context(candidates=candidates, item_parameters=items)
        stages = [FisherInformation(), StrategyFastestScore()]
        assert run_pipeline(context, stages).unwrap().item_id == "A"

    def test_empty_candidates(self, make_context):
        result = StrategyFastestScore().run(make_context(candidates=[]), forward)
        assert result.status == Status.NO_REMAINING_QUESTIONS


class TestStrategyClassicScore:
    def test_probability_closest_to_half_wins(self, make_context):
        """At ability 0 only Q3 (b=0) has P exactly one half."""
        result = StrategyClassicScore().run(make_context(), forward)
        assert result.unwrap().item_id == "Q3"

    def test_exposure_moves_selection(self, make_context, questions):
        candidates = [ItemCandidate(q) for q in questions]
        candidates[2] = ItemCandidate(
            Question(item_id="Q3", scale_id=1, general_attempts=1000)
        )
        context = make_context(candidates=candidates, max_general_attempts=1000)
        stages = [NumberOfGeneralAttempts(), StrategyClassicScore()]
        assert run_pipeline(context, stages).unwrap().item_id != "Q3"

    def test_score_formula(self, make_context):
        context = make_context(person_abilities={1: 0.7})
        StrategyClassicScore().run(context, forward)
        scores = {c.item_id: c.score for c in context.candidates}
        assert scores["Q4"] == pytest.approx(1.0)
        assert 0.0 <= min(scores.values())
