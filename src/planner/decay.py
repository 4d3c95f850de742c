"""
Memory decay, spaced repetition and urgency scoring.

Pure functions: every result is determined by the arguments and ``now``
(defaults to the current UTC time). Nothing here reads or writes stored state.

Review intervals follow a fixed ladder (1, 3, 7, 14, 30 days). A topic's decay
level compares the days since its last review against its current interval:

    days <  0.5 * interval  -> green
    days <  1.0 * interval  -> yellow
    days <  1.5 * interval  -> orange
    otherwise (or never)    -> red
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from .models import DecayLevel, ensure_utc, utc_now

REVIEW_INTERVALS_DAYS: tuple[int, ...] = (1, 3, 7, 14, 30)

SECONDS_PER_DAY = 86400


def _elapsed_days(start: datetime, end: datetime) -> float:
    return (ensure_utc(end) - ensure_utc(start)).total_seconds() / SECONDS_PER_DAY


# =============================================================================
# Spaced Repetition
# =============================================================================


def spaced_repetition_interval(review_count: int) -> int:
    """
    Target days between reviews for a topic reviewed ``review_count`` times.

    Counts past the end of the ladder use the last interval (30 days).
    """
    index = min(max(review_count, 0), len(REVIEW_INTERVALS_DAYS) - 1)
    return REVIEW_INTERVALS_DAYS[index]


def get_next_review_date(last_reviewed: datetime | None, review_count: int) -> datetime | None:
    """Date the topic becomes due again, or None if it was never reviewed."""
    if last_reviewed is None:
        return None
    return ensure_utc(last_reviewed) + timedelta(days=spaced_repetition_interval(review_count))


def is_topic_due_for_review(
    last_reviewed: datetime | None,
    review_count: int,
    now: datetime | None = None,
) -> bool:
    """A never-reviewed topic is always due; otherwise due once the interval has elapsed."""
    next_review = get_next_review_date(last_reviewed, review_count)
    if next_review is None:
        return True
    return ensure_utc(now or utc_now()) >= next_review


def get_days_until_review(
    last_reviewed: datetime | None,
    review_count: int,
    now: datetime | None = None,
) -> int | None:
    """Whole days (rounded up) until the next review; negative when overdue."""
    next_review = get_next_review_date(last_reviewed, review_count)
    if next_review is None:
        return None
    return math.ceil(_elapsed_days(now or utc_now(), next_review))


def calculate_memory_decay_level(
    last_reviewed: datetime | None,
    review_count: int,
    now: datetime | None = None,
) -> DecayLevel:
    """Classify how overdue a topic is relative to its spaced repetition interval."""
    if last_reviewed is None:
        return DecayLevel.RED

    days_since_review = math.floor(_elapsed_days(last_reviewed, now or utc_now()))
    interval = spaced_repetition_interval(review_count)

    if days_since_review < interval * 0.5:
        return DecayLevel.GREEN
    if days_since_review < interval:
        return DecayLevel.YELLOW
    if days_since_review < interval * 1.5:
        return DecayLevel.ORANGE
    return DecayLevel.RED


# =============================================================================
# Urgency
# =============================================================================


def get_urgency_score(deadline: datetime, priority: int, now: datetime | None = None) -> int:
    """
    Score a goal 0-100 from its priority (up to 50) and deadline proximity (up to 50).

    Overdue goals and goals due within a week get the full time score.
    """
    days_until_deadline = math.floor(_elapsed_days(now or utc_now(), deadline))
    priority_score = (priority / 5) * 50

    if days_until_deadline <= 7:
        time_score = 50
    elif days_until_deadline <= 14:
        time_score = 40
    elif days_until_deadline <= 30:
        time_score = 30
    elif days_until_deadline <= 60:
        time_score = 20
    else:
        time_score = 10

    return min(100, round(priority_score + time_score))


def combined_topic_urgency(decay_level: DecayLevel, goal_urgency: int) -> float:
    """
    Review-queue ranking key.

    Decay dominates; goal urgency only separates topics with the same decay level.
    """
    return decay_level.weight * 20 + goal_urgency * 0.2


# =============================================================================
# Mastery
# =============================================================================


def _base_mastery_increase(review_count: int) -> int:
    """Base gain for the ``review_count``-th review (count after incrementing)."""
    if review_count <= 1:
        return 20
    if review_count == 2:
        return 18
    if review_count <= 5:
        return 12 + (5 - review_count)
    if review_count <= 10:
        return 8 + (10 - review_count) * 6 // 10
    if review_count <= 20:
        return 5 + (20 - review_count) // 5
    return max(3, 3 + max(0, 30 - review_count) // 5)


def _duration_bonus(duration_minutes: float) -> int:
    if duration_minutes >= 90:
        return 8
    if duration_minutes >= 60:
        return 5
    if duration_minutes >= 45:
        return 3
    if duration_minutes >= 30:
        return 1
    return 0


def _diminishing_returns_percent(current_mastery: int) -> int:
    if current_mastery >= 95:
        return 20
    if current_mastery >= 85:
        return 40
    if current_mastery >= 70:
        return 60
    if current_mastery >= 50:
        return 80
    return 100


def calculate_mastery_increase(
    review_count: int,
    duration_minutes: float,
    current_mastery: int,
) -> int:
    """
    Mastery points gained from one study session.

    Args:
        review_count: Topic review count after counting this session
        duration_minutes: Session length
        current_mastery: Mastery level before this session

    Returns:
        Gain of at least 1
    """
    raw_increase = _base_mastery_increase(review_count) + _duration_bonus(duration_minutes)
    scaled = raw_increase * _diminishing_returns_percent(current_mastery) // 100
    return max(1, scaled)


def apply_session_to_mastery(
    current_mastery: int,
    review_count: int,
    duration_minutes: float,
) -> int:
    """New mastery level after a session, capped at 100."""
    increase = calculate_mastery_increase(review_count, duration_minutes, current_mastery)
    return min(100, current_mastery + increase)
