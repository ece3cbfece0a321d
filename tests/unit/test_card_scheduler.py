"""
Tests for the card scheduler state machine.
"""

from datetime import timedelta

import pytest

from src.review.card_scheduler import CardScheduler, round_half_up
from src.review.config import SchedulerConfig
from src.review.errors import ValidationError
from src.review.models import LearningState, new_card


class TestNewCards:
    def test_first_review_enters_learning(self, scheduler, scorer, make_card, now):
        quality = scorer.calculate_quality(True, 0.9, 95, 2.0).quality
        assert quality == 5

        result = scheduler.update(make_card(), quality, now=now, response_time_ms=2000)

        card = result.card
        assert card.learning_state == LearningState.LEARNING
        assert card.learning_step == 0
        assert not card.graduated
        assert card.next_review == now + timedelta(minutes=1)
        assert result.previous_state == LearningState.NEW
        assert result.state_changed

    def test_single_learning_step_graduates_immediately(self, make_card, now):
        config = SchedulerConfig(learning_steps=[1])
        scheduler = CardScheduler(config)

        card = scheduler.update(make_card(), 5, now=now, response_time_ms=2000).card

        assert card.learning_state == LearningState.REVIEW
        assert card.graduated
        assert card.interval >= config.graduating_interval
        assert card.interval == config.easy_interval
        assert now < card.next_review <= now + timedelta(days=config.easy_interval)

    def test_failed_first_review_still_learning(self, scheduler, make_card, now):
        card = scheduler.update(make_card(), 0, now=now).card
        assert card.learning_state == LearningState.LEARNING
        assert card.lapses == 0


class TestLearning:
    def test_walks_steps_then_graduates(self, scheduler, make_card, now):
        card = scheduler.update(make_card(), 4, now=now).card
        assert card.learning_step == 0

        result = scheduler.update(card, 4, now=now + timedelta(minutes=1))
        card = result.card
        assert card.learning_state == LearningState.LEARNING
        assert card.learning_step == 1
        assert result.discrete_due == now + timedelta(minutes=11)

        card = scheduler.update(card, 4, now=now + timedelta(minutes=11)).card
        assert card.learning_state == LearningState.REVIEW
        assert card.graduated
        assert card.interval == 4  # easy interval for quality >= 4

    def test_hard_pass_graduates_with_graduating_interval(self, scheduler, make_card, now):
        card = make_card(learning_state=LearningState.LEARNING, learning_step=1)
        card = scheduler.update(card, 3, now=now).card
        assert card.learning_state == LearningState.REVIEW
        assert card.interval == 1

    def test_failure_in_learning_lapses(self, scheduler, make_card, now):
        card = make_card(learning_state=LearningState.LEARNING, learning_step=1)
        card = scheduler.update(card, 1, now=now).card
        assert card.learning_state == LearningState.RELEARNING
        assert card.lapses == 1


class TestReview:
    def test_good_review_grows_interval(self, scheduler, review_card, now):
        card = scheduler.update(review_card(), 4, now=now).card

        assert card.learning_state == LearningState.REVIEW
        assert card.interval == 15  # round(6 * 2.5 * 1.0)
        assert card.ease_factor == pytest.approx(2.6)

    def test_hard_review_reduces_ease(self, scheduler, review_card, now):
        card = scheduler.update(review_card(), 3, now=now).card
        assert card.interval == 15
        assert card.ease_factor == pytest.approx(2.35)

    def test_interval_rounds_half_up(self, scheduler, review_card, now):
        card = scheduler.update(review_card(interval=1.0), 4, now=now).card
        assert card.interval == 3  # 2.5 -> 3

    def test_interval_modifier(self, review_card, now):
        scheduler = CardScheduler(SchedulerConfig(interval_modifier=0.5))
        card = scheduler.update(review_card(), 4, now=now).card
        assert card.interval == 8  # round(7.5)

    def test_interval_capped_by_max(self, review_card, now):
        scheduler = CardScheduler(SchedulerConfig(max_interval=100))
        card = scheduler.update(review_card(interval=90.0), 5, now=now).card
        assert card.interval == 100

    def test_ease_capped(self, scheduler, review_card, now):
        card = scheduler.update(review_card(ease_factor=3.45), 5, now=now).card
        assert card.ease_factor == 3.5

    def test_failure_goes_to_relearning(self, scheduler, scorer, review_card, now):
        quality = scorer.calculate_quality(False, 0.2, 30).quality
        assert quality == 0

        result = scheduler.update(review_card(lapses=2), quality, now=now)

        card = result.card
        assert card.learning_state == LearningState.RELEARNING
        assert card.lapses == 3
        assert card.interval == 1
        assert not card.graduated
        assert card.ease_factor == pytest.approx(2.3)
        assert card.next_review == now + timedelta(minutes=1)

    def test_ease_floor_on_lapse(self, scheduler, review_card, now):
        card = scheduler.update(review_card(ease_factor=1.35), 0, now=now).card
        assert card.ease_factor == 1.3

    def test_next_review_never_later_than_discrete_due(self, scheduler, review_card, now):
        result = scheduler.update(review_card(), 5, now=now)
        assert result.card.next_review == min(result.discrete_due, result.memory_due)


class TestRelearning:
    def test_pass_returns_to_review(self, scheduler, review_card, now):
        lapsed = scheduler.update(review_card(), 0, now=now).card
        card = scheduler.update(lapsed, 4, now=now + timedelta(minutes=10)).card

        assert card.learning_state == LearningState.REVIEW
        assert card.graduated
        assert card.interval == 1
        assert card.lapses == 1

    def test_fail_restarts_without_extra_lapse(self, scheduler, review_card, now):
        lapsed = scheduler.update(review_card(), 0, now=now).card
        card = scheduler.update(lapsed, 0, now=now + timedelta(minutes=10)).card

        assert card.learning_state == LearningState.RELEARNING
        assert card.learning_step == 0
        assert card.lapses == 1


class TestChronicDifficulty:
    def test_flag_at_threshold(self, scheduler, review_card, now):
        result = scheduler.update(review_card(lapses=7), 0, now=now)
        assert result.chronic_difficulty
        assert result.card.lapses == 8

    def test_below_threshold(self, scheduler, review_card, now):
        assert not scheduler.update(review_card(lapses=5), 0, now=now).chronic_difficulty


class TestBookkeeping:
    def test_streak(self, scheduler, review_card, now):
        card = scheduler.update(review_card(correct_streak=2), 4, now=now).card
        assert card.correct_streak == 3
        card = scheduler.update(card, 1, now=now + timedelta(days=1)).card
        assert card.correct_streak == 0

    def test_average_response_time(self, scheduler, review_card, now):
        card = review_card(total_reviews=1, average_response_time=2000.0)
        updated = scheduler.update(card, 4, now=now, response_time_ms=4000).card
        assert updated.average_response_time == pytest.approx(3000.0)

    def test_missing_response_time_keeps_average(self, scheduler, review_card, now):
        card = review_card(total_reviews=1, average_response_time=2000.0)
        assert scheduler.update(card, 4, now=now).card.average_response_time == 2000.0

    def test_last_quality_and_memory_refresh(self, scheduler, review_card, now):
        card = scheduler.update(review_card(), 4, now=now).card
        assert card.last_quality == 4
        assert card.total_reviews == 5
        assert card.last_reviewed == now

    def test_input_card_untouched(self, scheduler, review_card, now):
        card = review_card()
        scheduler.update(card, 0, now=now)
        assert card.learning_state == LearningState.REVIEW
        assert card.lapses == 0


class TestNeverRegressesTime:
    @pytest.mark.parametrize("quality", range(6))
    @pytest.mark.parametrize(
        "state", [LearningState.NEW, LearningState.LEARNING, LearningState.REVIEW, LearningState.RELEARNING]
    )
    def test_next_review_after_now(self, scheduler, make_card, now, quality, state):
        card = make_card(
            learning_state=state,
            memory_strength=0.2,
            last_reviewed=now - timedelta(days=40),
            next_review=now - timedelta(days=10),
        )
        result = scheduler.update(card, quality, now=now)
        assert result.card.next_review > now
        assert result.card.next_review >= result.card.last_reviewed


class TestValidation:
    @pytest.mark.parametrize("quality", [-1, 6, 3.0, True, "4", None])
    def test_rejects_bad_quality(self, scheduler, make_card, now, quality):
        with pytest.raises(ValidationError) as exc:
            scheduler.update(make_card(), quality, now=now)
        assert exc.value.field == "quality"

    def test_rejects_card_without_identity(self, scheduler, make_card, now):
        with pytest.raises(ValidationError) as exc:
            scheduler.update(make_card(user_id=""), 4, now=now)
        assert exc.value.field == "user_id"

    def test_new_card_factory(self, config, now):
        card = new_card("u1", "s1", config=config, now=now)
        assert card.learning_state == LearningState.NEW
        assert card.memory_strength == 0.5
        assert card.interval == 1.0
        assert card.next_review == now


@pytest.mark.parametrize("value,expected", [(2.5, 3), (14.5, 15), (15.0, 15), (7.49, 7)])
def test_round_half_up(value, expected):
    assert round_half_up(value) == expected


@pytest.mark.parametrize(
    "qualities",
    [
        [5] * 20,
        [0] * 20,
        [3] * 20,
        [5, 0, 4, 3, 1, 5, 2, 5, 5, 0] * 3,
        [0, 5] * 15,
    ],
    ids=["all-perfect", "all-blackout", "all-hard", "mixed", "alternating"],
)
def test_ease_factor_stays_in_bounds(scheduler, review_card, now, qualities):
    card = review_card()
    at = now
    for quality in qualities:
        card = scheduler.update(card, quality, now=at).card
        assert 1.3 <= card.ease_factor <= 3.5
        at = max(at, card.next_review) + timedelta(minutes=1)
