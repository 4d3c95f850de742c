"""
Unit tests for spaced repetition, memory decay and urgency scoring.
"""

from datetime import UTC, datetime, timedelta

import pytest

from src.planner.decay import (
    REVIEW_INTERVALS_DAYS,
    calculate_memory_decay_level,
    combined_topic_urgency,
    get_days_until_review,
    get_next_review_date,
    get_urgency_score,
    is_topic_due_for_review,
    spaced_repetition_interval,
)
from src.planner.models import DecayLevel

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=UTC)


def days_ago(days: float) -> datetime:
    return NOW - timedelta(days=days)


class TestSpacedRepetitionInterval:
    """Tests for the review interval ladder."""

    @pytest.mark.parametrize("count,expected", [(0, 1), (1, 3), (2, 7), (3, 14), (4, 30)])
    def test_ladder(self, count, expected):
        assert spaced_repetition_interval(count) == expected

    @pytest.mark.parametrize("count", [4, 5, 10, 100])
    def test_clamps_to_last_interval(self, count):
        """Any count past the ladder uses 30 days."""
        assert spaced_repetition_interval(count) == 30

    def test_negative_count_uses_first_interval(self):
        assert spaced_repetition_interval(-3) == REVIEW_INTERVALS_DAYS[0]


class TestMemoryDecayLevel:
    """Tests for decay classification."""

    @pytest.mark.parametrize("count", [0, 1, 4, 50])
    def test_never_reviewed_is_red(self, count):
        assert calculate_memory_decay_level(None, count, NOW) == DecayLevel.RED

    def test_thresholds_for_seven_day_interval(self):
        """reviewCount 2 -> 7 day interval: green < 3.5 <= yellow < 7 <= orange < 10.5 <= red."""
        assert calculate_memory_decay_level(days_ago(3), 2, NOW) == DecayLevel.GREEN
        assert calculate_memory_decay_level(days_ago(4), 2, NOW) == DecayLevel.YELLOW
        assert calculate_memory_decay_level(days_ago(6), 2, NOW) == DecayLevel.YELLOW
        assert calculate_memory_decay_level(days_ago(7), 2, NOW) == DecayLevel.ORANGE
        assert calculate_memory_decay_level(days_ago(10), 2, NOW) == DecayLevel.ORANGE
        assert calculate_memory_decay_level(days_ago(11), 2, NOW) == DecayLevel.RED

    def test_partial_days_are_floored(self):
        """23 hours counts as 0 days, so a one-day interval is still green."""
        assert calculate_memory_decay_level(NOW - timedelta(hours=23), 0, NOW) == DecayLevel.GREEN
        assert calculate_memory_decay_level(NOW - timedelta(hours=25), 0, NOW) == DecayLevel.ORANGE

    def test_naive_datetimes_are_utc(self):
        naive = days_ago(3).replace(tzinfo=None)
        assert calculate_memory_decay_level(naive, 2, NOW) == DecayLevel.GREEN


class TestDueForReview:
    """Tests for due-ness and next review dates."""

    def test_never_reviewed_is_due(self):
        assert is_topic_due_for_review(None, 0, NOW) is True

    def test_just_reviewed_is_not_due(self):
        assert is_topic_due_for_review(NOW, 1, NOW) is False

    def test_due_once_interval_elapsed(self):
        assert is_topic_due_for_review(days_ago(3), 1, NOW) is True
        assert is_topic_due_for_review(days_ago(2.9), 1, NOW) is False

    def test_next_review_date(self):
        assert get_next_review_date(None, 0) is None
        assert get_next_review_date(NOW, 2) == NOW + timedelta(days=7)

    def test_days_until_review_rounds_up(self):
        assert get_days_until_review(None, 0, NOW) is None
        assert get_days_until_review(NOW - timedelta(hours=12), 1, NOW) == 3
        assert get_days_until_review(days_ago(5), 1, NOW) == -2


class TestUrgencyScore:
    """Tests for goal urgency."""

    @pytest.mark.parametrize(
        "days,expected_time_score",
        [(-3, 50), (0, 50), (7, 50), (8, 40), (14, 40), (30, 30), (60, 20), (61, 10)],
    )
    def test_time_score_bands(self, days, expected_time_score):
        # priority 0 isolates the time component
        deadline = NOW + timedelta(days=days, hours=1)
        assert get_urgency_score(deadline, 0, NOW) == expected_time_score

    def test_priority_component(self):
        deadline = NOW + timedelta(days=90)
        assert get_urgency_score(deadline, 5, NOW) == 60
        assert get_urgency_score(deadline, 3, NOW) == 40

    def test_caps_at_100(self):
        assert get_urgency_score(NOW, 5, NOW) == 100
        assert get_urgency_score(NOW, 9, NOW) == 100

    def test_non_decreasing_in_priority(self):
        for days in (-1, 5, 12, 25, 45, 120):
            deadline = NOW + timedelta(days=days)
            scores = [get_urgency_score(deadline, p, NOW) for p in range(1, 6)]
            assert scores == sorted(scores)


class TestCombinedUrgency:
    """Tests for review-queue ranking."""

    def test_decay_dominates_goal_urgency(self):
        assert combined_topic_urgency(DecayLevel.RED, 0) >= combined_topic_urgency(DecayLevel.ORANGE, 100)
        assert combined_topic_urgency(DecayLevel.ORANGE, 0) > combined_topic_urgency(DecayLevel.YELLOW, 0)

    def test_goal_urgency_breaks_ties(self):
        assert combined_topic_urgency(DecayLevel.RED, 90) > combined_topic_urgency(DecayLevel.RED, 30)
        assert combined_topic_urgency(DecayLevel.RED, 100) == 100.0
