import pytest
from datetime import datetime, timedelta, timezone
from uuid import UUID

from pydantic import ValidationError

from rotecore.models import (
    Grade,
    Item,
    LearningState,
    ReviewRecord,
    ensure_utc,
)

UTC = timezone.utc


class TestItem:
    def test_defaults(self):
        item = Item(front="Q", back="A")
        assert isinstance(item.id, UUID)
        assert item.learning_state == LearningState.New
        assert item.step_index == 0
        assert item.ease_factor == 2.5
        assert item.interval_days == 0.0
        assert item.streak == 0
        assert item.review_count == 0
        assert item.last_reviewed_at is None
        assert item.deck_name == "Default"
        assert item.due_at is not None and item.due_at.tzinfo is not None

    def test_is_frozen(self):
        item = Item(front="Q", back="A")
        with pytest.raises(ValidationError):
            item.ease_factor = 2.0

    def test_extra_fields_forbidden(self):
        with pytest.raises(ValidationError):
            Item(front="Q", back="A", history="[]")

    def test_front_is_required_and_bounded(self):
        with pytest.raises(ValidationError):
            Item(back="A")
        with pytest.raises(ValidationError):
            Item(front="x" * 1025, back="A")

    @pytest.mark.parametrize("tag", ["Bad Tag", "UPPER", "trailing-", "under_score"])
    def test_tags_must_be_kebab_case(self, tag):
        with pytest.raises(ValidationError, match="kebab-case"):
            Item(front="Q", back="A", tags={tag})

    def test_valid_tags(self):
        item = Item(front="Q", back="A", tags={"python-3", "basics"})
        assert item.tags == frozenset({"python-3", "basics"})

    def test_naive_timestamps_become_utc(self):
        naive = datetime(2024, 1, 1, 12, 0)
        item = Item(front="Q", back="A", due_at=naive, last_reviewed_at=naive)
        assert item.due_at == datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
        assert item.last_reviewed_at.tzinfo == UTC

    def test_aware_timestamps_are_converted_to_utc(self):
        plus_two = timezone(timedelta(hours=2))
        item = Item(
            front="Q", back="A", due_at=datetime(2024, 1, 1, 14, 0, tzinfo=plus_two)
        )
        assert item.due_at == datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
        assert item.due_at.tzinfo == UTC

    def test_negative_counters_rejected(self):
        with pytest.raises(ValidationError):
            Item(front="Q", back="A", step_index=-1)
        with pytest.raises(ValidationError):
            Item(front="Q", back="A", review_count=-1)

    def test_out_of_range_ease_can_be_loaded(self):
        # Legacy rows must load so that they can be repaired.
        item = Item(front="Q", back="A", ease_factor=0.0, interval_days=-3)
        assert item.ease_factor == 0.0
        assert item.interval_days == -3

    def test_is_due(self):
        due = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
        item = Item(front="Q", back="A", due_at=due)
        assert item.is_due(due)
        assert item.is_due(due + timedelta(seconds=1))
        assert not item.is_due(due - timedelta(seconds=1))

    def test_item_without_due_time_is_due(self):
        item = Item(front="Q", back="A", due_at=None)
        assert item.is_due(datetime(2000, 1, 1, tzinfo=UTC))


class TestEnums:
    def test_grade_values(self):
        assert [int(g) for g in Grade] == [1, 2, 3, 4]
        assert Grade.Again.score == 0
        assert Grade.Easy.score == 3

    def test_grade_correctness(self):
        assert not Grade.Again.is_correct
        assert not Grade.Hard.is_correct
        assert Grade.Good.is_correct
        assert Grade.Easy.is_correct

    @pytest.mark.parametrize(
        "state, review_type",
        [
            (LearningState.New, "learn"),
            (LearningState.Learning, "learn"),
            (LearningState.Reviewing, "review"),
            (LearningState.Relearning, "relearn"),
        ],
    )
    def test_review_type_by_state(self, state, review_type):
        assert state.review_type == review_type


class TestReviewRecord:
    def _record(self, **overrides):
        data = dict(
            item_id=UUID("11111111-1111-1111-1111-111111111111"),
            timestamp=datetime(2024, 1, 1, 12, 0),
            grade=3,
            ease_factor_after=2.5,
            interval_days_after=1.0,
        )
        data.update(overrides)
        return ReviewRecord(**data)

    def test_defaults_and_coercion(self):
        record = self._record()
        assert record.review_id is None
        assert record.grade is Grade.Good
        assert record.review_type == "review"
        assert record.timestamp.tzinfo == UTC

    def test_invalid_review_type(self):
        with pytest.raises(ValidationError, match="Invalid review_type"):
            self._record(review_type="cram")

    def test_invalid_grade(self):
        with pytest.raises(ValidationError):
            self._record(grade=5)

    def test_negative_interval_rejected(self):
        with pytest.raises(ValidationError):
            self._record(interval_days_after=-1.0)


def test_ensure_utc_keeps_utc_instance():
    ts = datetime(2024, 1, 1, tzinfo=UTC)
    assert ensure_utc(ts) is ts
