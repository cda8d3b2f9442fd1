import pytest
import random
import datetime
import math
from uuid import uuid4

from pydantic import ValidationError

from rotecore.exceptions import InvalidStateError, SchedulerError
from rotecore.models import Grade, Item, LearningState
from rotecore.scheduler import (
    SchedulerConfig,
    StepScheduler,
    due_items,
    parse_grade,
    reset_item,
)

# Helper to create datetime objects easily
UTC = datetime.timezone.utc
MINUTE = datetime.timedelta(minutes=1)
DAY = datetime.timedelta(days=1)


def make_item(**fields) -> Item:
    fields.setdefault("front", "Q")
    fields.setdefault("back", "A")
    return Item(**fields)


def assert_jittered(actual: datetime.datetime, now, days: float):
    low = now + datetime.timedelta(days=days * 0.95)
    high = now + datetime.timedelta(days=days * 1.05)
    assert low <= actual <= high


# --- Grades ---


@pytest.mark.parametrize("value", [0, 5, -1, "x", None])
def test_invalid_grade_input(scheduler, new_item, now, value):
    with pytest.raises(ValueError, match=r"Invalid grade: .* Must be 1-4"):
        scheduler.apply_grade(new_item, value, now)


def test_parse_grade_accepts_ints_and_members():
    assert parse_grade(1) is Grade.Again
    assert parse_grade(Grade.Easy) is Grade.Easy


# --- New / Learning ---


class TestLearning:
    def test_new_item_again(self, scheduler, new_item, now):
        item, record = scheduler.apply_grade(new_item, Grade.Again, now)
        assert item.learning_state == LearningState.Learning
        assert item.step_index == 0
        assert item.due_at == now + MINUTE
        assert record.review_type == "learn"

    def test_new_item_hard_stays_on_step(self, scheduler, new_item, now):
        item, _ = scheduler.apply_grade(new_item, Grade.Hard, now)
        assert item.learning_state == LearningState.Learning
        assert item.step_index == 0
        assert item.due_at == now + MINUTE

    def test_hard_on_later_step_repeats_that_step(self, scheduler, now):
        item = make_item(learning_state=LearningState.Learning, step_index=2)
        updated, _ = scheduler.apply_grade(item, Grade.Hard, now)
        assert updated.step_index == 2
        assert updated.due_at == now + 60 * MINUTE

    def test_good_advances_one_step(self, scheduler, new_item, now):
        item, _ = scheduler.apply_grade(new_item, Grade.Good, now)
        assert item.learning_state == LearningState.Learning
        assert item.step_index == 1
        assert item.due_at == now + 10 * MINUTE

    def test_again_returns_to_first_step(self, scheduler, now):
        item = make_item(learning_state=LearningState.Learning, step_index=3)
        updated, _ = scheduler.apply_grade(item, Grade.Again, now)
        assert updated.step_index == 0
        assert updated.due_at == now + MINUTE

    def test_good_on_last_step_graduates(self, scheduler, now):
        item = make_item(learning_state=LearningState.Learning, step_index=3)
        updated, record = scheduler.apply_grade(item, Grade.Good, now)
        assert updated.learning_state == LearningState.Reviewing
        assert updated.interval_days == 1
        assert updated.step_index == 0
        assert updated.due_at == now + DAY
        assert record.review_type == "learn"

    @pytest.mark.parametrize("state", [LearningState.New, LearningState.Learning])
    def test_easy_graduates_immediately(self, scheduler, now, state):
        item = make_item(learning_state=state, step_index=1)
        updated, _ = scheduler.apply_grade(item, Grade.Easy, now)
        assert updated.learning_state == LearningState.Reviewing
        assert updated.interval_days == 4
        assert updated.step_index == 0
        assert updated.due_at == now + 4 * DAY

    def test_learning_does_not_touch_ease(self, scheduler, now):
        item = make_item(learning_state=LearningState.Learning, ease_factor=1.9)
        for grade in Grade:
            updated, _ = scheduler.apply_grade(item, grade, now)
            assert updated.ease_factor == 1.9


# --- Reviewing ---


class TestReviewing:
    def test_again_lapses_to_relearning(self, scheduler, reviewing_item, now):
        item, record = scheduler.apply_grade(reviewing_item, Grade.Again, now)
        assert item.learning_state == LearningState.Relearning
        assert item.step_index == 0
        assert item.interval_days == 0
        assert item.streak == 0
        assert item.ease_factor == pytest.approx(2.3)
        assert item.due_at == now + 10 * MINUTE
        assert record.review_type == "review"
        assert record.ease_factor_after == pytest.approx(2.3)
        assert record.interval_days_after == 0

    def test_again_floors_ease(self, scheduler, now):
        item = make_item(
            learning_state=LearningState.Reviewing,
            ease_factor=1.4,
            interval_days=5,
        )
        updated, _ = scheduler.apply_grade(item, Grade.Again, now)
        assert updated.ease_factor == pytest.approx(1.3)

    def test_hard(self, scheduler, reviewing_item, now):
        item, _ = scheduler.apply_grade(reviewing_item, Grade.Hard, now)
        assert item.learning_state == LearningState.Reviewing
        assert item.interval_days == pytest.approx(12.0)
        assert item.ease_factor == pytest.approx(2.35)
        assert item.streak == 2
        assert_jittered(item.due_at, now, 12.0)

    def test_hard_interval_floor_and_streak_floor(self, scheduler, now):
        item = make_item(
            learning_state=LearningState.Reviewing,
            interval_days=0.5,
            streak=0,
        )
        updated, _ = scheduler.apply_grade(item, Grade.Hard, now)
        assert updated.interval_days == 1.0
        assert updated.streak == 0

    def test_good(self, scheduler, reviewing_item, now):
        item, _ = scheduler.apply_grade(reviewing_item, Grade.Good, now)
        assert item.interval_days == pytest.approx(25.0)
        assert item.ease_factor == 2.5
        assert item.streak == 4
        assert_jittered(item.due_at, now, 25.0)

    def test_easy(self, scheduler, now):
        item = make_item(
            learning_state=LearningState.Reviewing,
            interval_days=10,
            ease_factor=2.0,
        )
        updated, _ = scheduler.apply_grade(item, Grade.Easy, now)
        assert updated.ease_factor == pytest.approx(2.15)
        assert updated.interval_days == pytest.approx(10 * 2.15 * 1.3)
        assert updated.streak == 1

    def test_easy_caps_ease(self, scheduler, reviewing_item, now):
        item, _ = scheduler.apply_grade(reviewing_item, Grade.Easy, now)
        assert item.ease_factor == 2.5

    @pytest.mark.parametrize(
        "grade, expected", [(Grade.Good, 1.0), (Grade.Easy, 4.0)]
    )
    def test_zero_interval_uses_graduation_intervals(
        self, scheduler, now, grade, expected
    ):
        item = make_item(learning_state=LearningState.Reviewing, interval_days=0)
        updated, _ = scheduler.apply_grade(item, grade, now)
        assert updated.interval_days == expected


# --- Relearning ---


class TestRelearning:
    def _relearning(self, **fields):
        fields.setdefault("learning_state", LearningState.Relearning)
        fields.setdefault("interval_days", 8.0)
        fields.setdefault("ease_factor", 2.0)
        return make_item(**fields)

    def test_again(self, scheduler, now):
        updated, record = scheduler.apply_grade(
            self._relearning(step_index=1), Grade.Again, now
        )
        assert updated.learning_state == LearningState.Relearning
        assert updated.step_index == 0
        assert updated.due_at == now + 10 * MINUTE
        assert record.review_type == "relearn"

    def test_hard(self, scheduler, now):
        updated, _ = scheduler.apply_grade(
            self._relearning(step_index=1), Grade.Hard, now
        )
        assert updated.step_index == 1
        assert updated.due_at == now + 60 * MINUTE

    def test_good_advances(self, scheduler, now):
        updated, _ = scheduler.apply_grade(self._relearning(), Grade.Good, now)
        assert updated.learning_state == LearningState.Relearning
        assert updated.step_index == 1
        assert updated.due_at == now + 60 * MINUTE
        assert updated.interval_days == 8.0

    def test_good_on_last_step_returns_to_reviewing(self, scheduler, now):
        updated, _ = scheduler.apply_grade(
            self._relearning(step_index=1), Grade.Good, now
        )
        assert updated.learning_state == LearningState.Reviewing
        assert updated.step_index == 0
        assert updated.interval_days == pytest.approx(4.0)
        assert_jittered(updated.due_at, now, 4.0)

    def test_good_interval_floor(self, scheduler, now):
        updated, _ = scheduler.apply_grade(
            self._relearning(step_index=1, interval_days=0), Grade.Good, now
        )
        assert updated.interval_days == 1.0

    def test_easy(self, scheduler, now):
        updated, _ = scheduler.apply_grade(self._relearning(), Grade.Easy, now)
        assert updated.learning_state == LearningState.Reviewing
        assert updated.interval_days == pytest.approx(6.0)
        assert updated.step_index == 0

    def test_easy_interval_floor(self, scheduler, now):
        updated, _ = scheduler.apply_grade(
            self._relearning(interval_days=0), Grade.Easy, now
        )
        assert updated.interval_days == 2.0

    def test_relearning_does_not_touch_ease(self, scheduler, now):
        for grade in Grade:
            updated, _ = scheduler.apply_grade(self._relearning(), grade, now)
            assert updated.ease_factor == 2.0


# --- Bookkeeping ---


def test_apply_grade_bookkeeping(scheduler, new_item, now):
    item, record = scheduler.apply_grade(new_item, Grade.Good, now)
    assert item.id == new_item.id
    assert item.last_reviewed_at == now
    assert item.modified_at == now
    assert item.review_count == new_item.review_count + 1
    assert record.item_id == new_item.id
    assert record.timestamp == now
    assert record.grade is Grade.Good
    assert record.review_id is None


def test_apply_grade_does_not_modify_input(scheduler, reviewing_item, now):
    before = reviewing_item.model_dump()
    scheduler.apply_grade(reviewing_item, Grade.Again, now)
    assert reviewing_item.model_dump() == before


def test_naive_now_is_treated_as_utc(scheduler, new_item):
    naive = datetime.datetime(2024, 1, 1, 12, 0)
    item, _ = scheduler.apply_grade(new_item, Grade.Again, naive)
    assert item.due_at == datetime.datetime(2024, 1, 1, 12, 1, tzinfo=UTC)


def test_now_defaults_to_current_time(scheduler, new_item):
    before = datetime.datetime.now(UTC)
    item, _ = scheduler.apply_grade(new_item, Grade.Again)
    assert before <= item.last_reviewed_at <= datetime.datetime.now(UTC)


def test_compute_next_state_returns_scheduling_fields(scheduler, now):
    item = make_item(learning_state=LearningState.Learning, step_index=3)
    output = scheduler.compute_next_state(item, 3, now)
    assert output.learning_state == LearningState.Reviewing
    assert output.interval_days == 1
    assert output.review_type == "learn"


# --- Invariant checks on entry ---


@pytest.mark.parametrize(
    "fields, bad_field",
    [
        ({"ease_factor": 1.0}, "ease_factor"),
        ({"ease_factor": 3.0}, "ease_factor"),
        ({"interval_days": -1.0}, "interval_days"),
        ({"interval_days": math.inf}, "interval_days"),
        ({"learning_state": LearningState.Learning, "step_index": 4}, "step_index"),
        ({"learning_state": LearningState.Relearning, "step_index": 2}, "step_index"),
    ],
)
def test_corrupt_items_are_rejected(scheduler, now, fields, bad_field):
    item = make_item(**fields)
    with pytest.raises(InvalidStateError) as exc_info:
        scheduler.apply_grade(item, Grade.Good, now)
    assert exc_info.value.field == bad_field
    assert exc_info.value.item_id == item.id
    assert isinstance(exc_info.value, SchedulerError)
    assert isinstance(exc_info.value, ValueError)


def test_step_index_is_ignored_while_reviewing(scheduler, now):
    item = make_item(
        learning_state=LearningState.Reviewing, step_index=9, interval_days=3
    )
    updated, _ = scheduler.apply_grade(item, Grade.Good, now)
    assert updated.learning_state == LearningState.Reviewing


# --- Concrete scenarios ---


def test_four_goods_graduate_a_new_item(scheduler, new_item, now):
    item = new_item
    expected_steps = [1, 2, 3]
    for step in expected_steps:
        item, _ = scheduler.apply_grade(item, Grade.Good, now)
        assert item.learning_state == LearningState.Learning
        assert item.step_index == step

    item, _ = scheduler.apply_grade(item, Grade.Good, now)
    assert item.learning_state == LearningState.Reviewing
    assert item.interval_days == 1
    assert item.due_at == now + DAY
    assert item.review_count == 4


def test_reviewing_good_multiplies_interval_by_ease(scheduler, now):
    item = make_item(
        learning_state=LearningState.Reviewing,
        interval_days=10,
        ease_factor=2.0,
    )
    updated, _ = scheduler.apply_grade(item, Grade.Good, now)
    assert updated.interval_days == pytest.approx(20.0)
    assert updated.ease_factor == 2.0
    assert_jittered(updated.due_at, now, 20.0)


def test_reviewing_again_lapses(scheduler, now):
    item = make_item(
        learning_state=LearningState.Reviewing,
        interval_days=10,
        ease_factor=2.0,
        streak=5,
    )
    updated, _ = scheduler.apply_grade(item, Grade.Again, now)
    assert updated.learning_state == LearningState.Relearning
    assert updated.step_index == 0
    assert updated.due_at == now + 10 * MINUTE
    assert updated.ease_factor == pytest.approx(1.8)


def test_relearning_last_step_good_halves_interval(scheduler, now):
    item = make_item(
        learning_state=LearningState.Relearning,
        step_index=1,
        interval_days=8,
        ease_factor=2.0,
    )
    updated, _ = scheduler.apply_grade(item, Grade.Good, now)
    assert updated.learning_state == LearningState.Reviewing
    assert updated.interval_days == pytest.approx(4.0)
    assert_jittered(updated.due_at, now, 4.0)


# --- Properties over random grade sequences ---


@pytest.mark.parametrize("seed", range(20))
def test_invariants_hold_over_random_sequences(seed):
    rng = random.Random(seed)
    scheduler = StepScheduler(rng=random.Random(seed))
    now = datetime.datetime(2024, 1, 1, tzinfo=UTC)
    item = make_item(due_at=now)

    for _ in range(60):
        before_state = item.learning_state
        before_streak = item.streak
        grade = Grade(rng.randint(1, 4))
        item, record = scheduler.apply_grade(item, grade, now)

        assert 1.3 <= item.ease_factor <= 2.5
        assert item.interval_days >= 0
        assert item.due_at >= now
        assert item.due_at >= item.last_reviewed_at
        if item.learning_state == LearningState.Learning:
            assert item.step_index < 4
        if item.learning_state == LearningState.Relearning:
            assert item.step_index < 2
        if before_state == LearningState.Reviewing and grade == Grade.Again:
            assert item.learning_state == LearningState.Relearning
            assert item.streak == 0
            assert item.interval_days == 0
        if before_state == LearningState.Reviewing and grade.is_correct:
            assert item.streak == before_streak + 1
        assert record.review_type == before_state.review_type

        now = max(now, item.due_at) + datetime.timedelta(
            minutes=rng.randint(0, 600)
        )


@pytest.mark.parametrize("grade", list(Grade))
@pytest.mark.parametrize("state", list(LearningState))
def test_replays_are_deterministic(state, grade):
    now = datetime.datetime(2024, 3, 1, 8, 30, tzinfo=UTC)
    item = make_item(
        id=uuid4(),
        learning_state=state,
        interval_days=6.0,
        ease_factor=2.1,
    )
    first = StepScheduler(rng=random.Random(7)).apply_grade(item, grade, now)
    second = StepScheduler(rng=random.Random(7)).apply_grade(item, grade, now)
    assert first == second


def test_jitter_stays_within_configured_range():
    now = datetime.datetime(2024, 1, 1, tzinfo=UTC)
    item = make_item(learning_state=LearningState.Reviewing, interval_days=100)
    scheduler = StepScheduler(rng=random.Random(3))
    for _ in range(200):
        updated, _ = scheduler.apply_grade(item, Grade.Good, now)
        assert_jittered(updated.due_at, now, 250.0)


def test_consecutive_easy_grades_stay_bounded(scheduler, new_item, now):
    item = new_item
    for _ in range(40):
        item, record = scheduler.apply_grade(item, Grade.Easy, now)
        assert item.interval_days <= 36500
        assert item.due_at >= now
    assert item.interval_days == 36500
    assert record.interval_days_after == 36500
    assert_jittered(item.due_at, now, 36500)


@pytest.mark.parametrize(
    "state, grade",
    [
        (LearningState.Reviewing, Grade.Good),
        (LearningState.Reviewing, Grade.Hard),
        (LearningState.Reviewing, Grade.Easy),
        (LearningState.Relearning, Grade.Easy),
    ],
)
def test_huge_stored_interval_is_capped(scheduler, now, state, grade):
    item = make_item(learning_state=state, interval_days=2e6)
    updated, _ = scheduler.apply_grade(item, grade, now)
    assert updated.learning_state == LearningState.Reviewing
    assert updated.interval_days == 36500
    assert_jittered(updated.due_at, now, 36500)


def test_custom_interval_ceiling(now):
    config = SchedulerConfig(max_interval_days=30.0)
    scheduler = StepScheduler(config=config, rng=random.Random(0))
    item = make_item(learning_state=LearningState.Reviewing, interval_days=20.0)
    updated, _ = scheduler.apply_grade(item, Grade.Good, now)
    assert updated.interval_days == 30.0


def test_due_time_saturates_near_the_end_of_time():
    late = datetime.datetime(9999, 6, 1, tzinfo=UTC)
    item = make_item(learning_state=LearningState.Reviewing, interval_days=3000)
    updated, _ = StepScheduler(rng=random.Random(1)).apply_grade(
        item, Grade.Good, late
    )
    assert updated.due_at == datetime.datetime.max.replace(tzinfo=UTC)


# --- Configuration ---


class TestSchedulerConfig:
    def test_defaults(self):
        config = SchedulerConfig()
        assert config.learning_steps == tuple(
            datetime.timedelta(minutes=m) for m in (1, 10, 60, 240)
        )
        assert config.relearning_steps == (10 * MINUTE, 60 * MINUTE)
        assert (config.min_ease, config.max_ease) == (1.3, 2.5)
        assert config.lapse_threshold == datetime.timedelta(days=14)

    def test_custom_steps_change_policy(self, now):
        config = SchedulerConfig(learning_steps=(5 * MINUTE,))
        scheduler = StepScheduler(config=config, rng=random.Random(0))
        updated, _ = scheduler.apply_grade(make_item(), Grade.Good, now)
        assert updated.learning_state == LearningState.Reviewing

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"learning_steps": ()},
            {"relearning_steps": (datetime.timedelta(0),)},
            {"initial_ease": 3.0},
            {"min_ease": 2.6},
            {"jitter_min": 1.1, "jitter_max": 1.0},
            {"jitter_min": 0},
            {"max_interval_days": 2.0},
            {"max_interval_days": math.inf},
            {"ease_deltas": {Grade.Again: -0.2}},
        ],
    )
    def test_invalid_configs(self, kwargs):
        with pytest.raises(ValidationError):
            SchedulerConfig(**kwargs)

    def test_is_frozen(self):
        with pytest.raises(ValidationError):
            SchedulerConfig().min_ease = 1.0


# --- Reset and due selection ---


def test_reset_item(reviewing_item, now):
    item = reset_item(reviewing_item, now)
    assert item.learning_state == LearningState.New
    assert item.step_index == 0
    assert item.interval_days == 0
    assert item.ease_factor == 2.5
    assert item.streak == 0
    assert item.due_at == now
    assert item.last_reviewed_at is None
    assert item.review_count == reviewing_item.review_count
    assert item.id == reviewing_item.id


def test_due_items_filters_and_orders(now):
    later = make_item(due_at=now - MINUTE)
    earlier = make_item(due_at=now - DAY)
    exactly_now = make_item(due_at=now)
    future = make_item(due_at=now + MINUTE)
    legacy = make_item(due_at=None)

    result = due_items([later, future, exactly_now, legacy, earlier], now)
    assert result == [legacy, earlier, later, exactly_now]
