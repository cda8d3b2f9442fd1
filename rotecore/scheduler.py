# rotecore/scheduler.py

"""
Defines the BaseScheduler abstract class and the StepScheduler, the
four-state step-table scheduler used by rotecore.
"""

import logging
import math
import random
from abc import ABC, abstractmethod
import datetime
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .constants import (
    EASE_DELTAS,
    EASY_BONUS,
    EASY_INTERVAL_DAYS,
    GRADUATING_INTERVAL_DAYS,
    HARD_INTERVAL_MULTIPLIER,
    INITIAL_EASE,
    JITTER_MAX,
    JITTER_MIN,
    LAPSE_THRESHOLD,
    LEARNING_STEPS_MINUTES,
    MAX_EASE,
    MAX_INTERVAL_DAYS,
    MIN_EASE,
    RELEARN_EASY_MIN_DAYS,
    RELEARN_EASY_MULTIPLIER,
    RELEARN_GOOD_MULTIPLIER,
    RELEARNING_STEPS_MINUTES,
)
from .exceptions import InvalidStateError
from .models import Grade, Item, LearningState, ReviewRecord, ensure_utc, utc_now

logger = logging.getLogger(__name__)

GradeLike = Union[Grade, int]


def parse_grade(value: GradeLike) -> Grade:
    """Maps a grade value (1-4 or a Grade member) to Grade and validates."""
    try:
        return Grade(int(value))
    except (TypeError, ValueError):
        raise ValueError(
            f"Invalid grade: {value}. Must be 1-4 "
            "(1=Again, 2=Hard, 3=Good, 4=Easy)."
        ) from None


@dataclass
class SchedulerOutput:
    learning_state: LearningState
    step_index: int
    ease_factor: float
    interval_days: float
    streak: int
    due_at: datetime.datetime
    review_type: str


class SchedulerConfig(BaseModel):
    """Configuration for the step-table scheduler.

    Swapping an instance swaps the scheduling policy without touching the
    transition logic.
    """

    model_config = ConfigDict(frozen=True)

    learning_steps: Tuple[datetime.timedelta, ...] = Field(
        default_factory=lambda: tuple(
            datetime.timedelta(minutes=m) for m in LEARNING_STEPS_MINUTES
        )
    )
    relearning_steps: Tuple[datetime.timedelta, ...] = Field(
        default_factory=lambda: tuple(
            datetime.timedelta(minutes=m) for m in RELEARNING_STEPS_MINUTES
        )
    )
    min_ease: float = MIN_EASE
    max_ease: float = MAX_EASE
    initial_ease: float = INITIAL_EASE
    ease_deltas: Dict[Grade, float] = Field(
        default_factory=lambda: {Grade(k): v for k, v in EASE_DELTAS.items()}
    )
    jitter_min: float = JITTER_MIN
    jitter_max: float = JITTER_MAX
    lapse_threshold: datetime.timedelta = LAPSE_THRESHOLD

    graduating_interval_days: float = GRADUATING_INTERVAL_DAYS
    easy_interval_days: float = EASY_INTERVAL_DAYS
    hard_interval_multiplier: float = HARD_INTERVAL_MULTIPLIER
    easy_bonus: float = EASY_BONUS
    relearn_good_multiplier: float = RELEARN_GOOD_MULTIPLIER
    relearn_easy_multiplier: float = RELEARN_EASY_MULTIPLIER
    relearn_easy_min_days: float = RELEARN_EASY_MIN_DAYS
    max_interval_days: float = MAX_INTERVAL_DAYS

    @model_validator(mode="after")
    def check_policy(self) -> "SchedulerConfig":
        if not self.learning_steps or not self.relearning_steps:
            raise ValueError("Step tables must not be empty.")
        if any(
            step <= datetime.timedelta(0)
            for step in self.learning_steps + self.relearning_steps
        ):
            raise ValueError("Steps must be positive durations.")
        if not (self.min_ease <= self.initial_ease <= self.max_ease):
            raise ValueError(
                "Ease bounds must satisfy min_ease <= initial_ease <= max_ease."
            )
        if not (0 < self.jitter_min <= self.jitter_max):
            raise ValueError("Jitter range must satisfy 0 < min <= max.")
        missing = set(Grade) - set(self.ease_deltas)
        if missing:
            raise ValueError(
                f"ease_deltas is missing grades: {sorted(g.name for g in missing)}"
            )
        if not (
            math.isfinite(self.max_interval_days)
            and self.max_interval_days
            >= max(
                self.graduating_interval_days,
                self.easy_interval_days,
                self.relearn_easy_min_days,
            )
        ):
            raise ValueError(
                "max_interval_days must be finite and at least every "
                "graduation interval."
            )
        return self


class BaseScheduler(ABC):
    """
    Abstract base class for all schedulers in rotecore.
    """

    @abstractmethod
    def compute_next_state(
        self, item: Item, grade: GradeLike, now: datetime.datetime
    ) -> SchedulerOutput:
        """
        Computes the next scheduling state of an item for a new grade.

        Args:
            item: The Item whose current state is graded.
            grade: The grade for this review (1=Again, 2=Hard, 3=Good, 4=Easy).
            now: The timestamp of the review.

        Returns:
            A SchedulerOutput object containing the new state.

        Raises:
            ValueError: If the grade is invalid.
            InvalidStateError: If the item already breaks an invariant.
        """
        pass

    def apply_grade(
        self,
        item: Item,
        grade: GradeLike,
        now: Optional[datetime.datetime] = None,
    ) -> Tuple[Item, ReviewRecord]:
        """
        Applies a grade to an item and returns the updated item together with
        the review record describing the grade application.

        The input item is not modified.
        """
        grade = parse_grade(grade)
        now = ensure_utc(now or utc_now())
        output = self.compute_next_state(item, grade, now)

        updated_item = item.model_copy(
            update={
                "learning_state": output.learning_state,
                "step_index": output.step_index,
                "ease_factor": output.ease_factor,
                "interval_days": output.interval_days,
                "streak": output.streak,
                "due_at": output.due_at,
                "last_reviewed_at": now,
                "review_count": item.review_count + 1,
                "modified_at": now,
            }
        )
        record = ReviewRecord(
            item_id=item.id,
            timestamp=now,
            grade=grade,
            ease_factor_after=output.ease_factor,
            interval_days_after=output.interval_days,
            review_type=output.review_type,
        )
        logger.debug(
            f"Item {item.id}: {item.learning_state.name} --{grade.name}--> "
            f"{output.learning_state.name}, due {output.due_at.isoformat()}"
        )
        return updated_item, record


class StepScheduler(BaseScheduler):
    """
    Step-table scheduler: New -> Learning -> Reviewing <-> Relearning.

    Learning and relearning walk fixed minute-scale step tables; Reviewing
    grows a day-scale interval by the ease factor. Day-scale due times are
    jittered with the injected random source.
    """

    def __init__(
        self,
        config: Optional[SchedulerConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        if config is None:
            config = SchedulerConfig()
        self.config = config
        self.rng = rng if rng is not None else random.Random()

    def compute_next_state(
        self, item: Item, grade: GradeLike, now: datetime.datetime
    ) -> SchedulerOutput:
        grade = parse_grade(grade)
        now = ensure_utc(now)
        self._check_invariants(item)

        if item.learning_state in (LearningState.New, LearningState.Learning):
            return self._grade_learning(item, grade, now)
        if item.learning_state == LearningState.Reviewing:
            return self._grade_reviewing(item, grade, now)
        return self._grade_relearning(item, grade, now)

    def _check_invariants(self, item: Item) -> None:
        cfg = self.config
        if not (cfg.min_ease <= item.ease_factor <= cfg.max_ease):
            raise InvalidStateError(
                f"Item {item.id} has ease_factor {item.ease_factor}, outside "
                f"[{cfg.min_ease}, {cfg.max_ease}].",
                item_id=item.id,
                field="ease_factor",
                value=item.ease_factor,
            )
        if not (math.isfinite(item.interval_days) and item.interval_days >= 0):
            raise InvalidStateError(
                f"Item {item.id} has invalid interval_days "
                f"{item.interval_days}.",
                item_id=item.id,
                field="interval_days",
                value=item.interval_days,
            )
        steps = self._steps_for(item.learning_state)
        if steps is not None and item.step_index >= len(steps):
            raise InvalidStateError(
                f"Item {item.id} has step_index {item.step_index}, outside the "
                f"{len(steps)}-step table of state {item.learning_state.name}.",
                item_id=item.id,
                field="step_index",
                value=item.step_index,
            )

    def _steps_for(
        self, state: LearningState
    ) -> Optional[Tuple[datetime.timedelta, ...]]:
        if state in (LearningState.New, LearningState.Learning):
            return self.config.learning_steps
        if state == LearningState.Relearning:
            return self.config.relearning_steps
        return None

    def _jittered_due(
        self, now: datetime.datetime, interval_days: float
    ) -> datetime.datetime:
        jitter = self.rng.uniform(self.config.jitter_min, self.config.jitter_max)
        try:
            return now + datetime.timedelta(days=interval_days * jitter)
        except OverflowError:
            return datetime.datetime.max.replace(tzinfo=datetime.timezone.utc)

    def _capped(self, interval_days: float) -> float:
        return min(interval_days, self.config.max_interval_days)

    def _output(
        self,
        item: Item,
        state: LearningState,
        due_at: datetime.datetime,
        **changes,
    ) -> SchedulerOutput:
        return SchedulerOutput(
            learning_state=state,
            step_index=changes.get("step_index", item.step_index),
            ease_factor=changes.get("ease_factor", item.ease_factor),
            interval_days=changes.get("interval_days", item.interval_days),
            streak=changes.get("streak", item.streak),
            due_at=due_at,
            review_type=item.learning_state.review_type,
        )

    def _grade_learning(
        self, item: Item, grade: Grade, now: datetime.datetime
    ) -> SchedulerOutput:
        cfg = self.config
        steps = cfg.learning_steps

        if grade == Grade.Again:
            return self._output(
                item, LearningState.Learning, now + steps[0], step_index=0
            )

        if grade == Grade.Hard:
            return self._output(
                item, LearningState.Learning, now + steps[item.step_index]
            )

        if grade == Grade.Good:
            next_step = item.step_index + 1
            if next_step >= len(steps):
                return self._output(
                    item,
                    LearningState.Reviewing,
                    now + datetime.timedelta(days=cfg.graduating_interval_days),
                    step_index=0,
                    interval_days=cfg.graduating_interval_days,
                )
            return self._output(
                item,
                LearningState.Learning,
                now + steps[next_step],
                step_index=next_step,
            )

        # Easy graduates immediately.
        return self._output(
            item,
            LearningState.Reviewing,
            now + datetime.timedelta(days=cfg.easy_interval_days),
            step_index=0,
            interval_days=cfg.easy_interval_days,
        )

    def _grade_reviewing(
        self, item: Item, grade: Grade, now: datetime.datetime
    ) -> SchedulerOutput:
        cfg = self.config
        ease = min(
            cfg.max_ease,
            max(cfg.min_ease, item.ease_factor + cfg.ease_deltas[grade]),
        )

        if grade == Grade.Again:
            return self._output(
                item,
                LearningState.Relearning,
                now + cfg.relearning_steps[0],
                step_index=0,
                ease_factor=ease,
                interval_days=0.0,
                streak=0,
            )

        if grade == Grade.Hard:
            interval = max(1.0, item.interval_days * cfg.hard_interval_multiplier)
            streak = max(0, item.streak - 1)
        elif grade == Grade.Good:
            if item.interval_days == 0:
                interval = cfg.graduating_interval_days
            else:
                interval = item.interval_days * ease
            streak = item.streak + 1
        else:
            if item.interval_days == 0:
                interval = cfg.easy_interval_days
            else:
                interval = item.interval_days * ease * cfg.easy_bonus
            streak = item.streak + 1
        interval = self._capped(interval)

        return self._output(
            item,
            LearningState.Reviewing,
            self._jittered_due(now, interval),
            ease_factor=ease,
            interval_days=interval,
            streak=streak,
        )

    def _grade_relearning(
        self, item: Item, grade: Grade, now: datetime.datetime
    ) -> SchedulerOutput:
        cfg = self.config
        steps = cfg.relearning_steps

        if grade == Grade.Again:
            return self._output(
                item, LearningState.Relearning, now + steps[0], step_index=0
            )

        if grade == Grade.Hard:
            return self._output(
                item, LearningState.Relearning, now + steps[item.step_index]
            )

        if grade == Grade.Good:
            next_step = item.step_index + 1
            if next_step < len(steps):
                return self._output(
                    item,
                    LearningState.Relearning,
                    now + steps[next_step],
                    step_index=next_step,
                )
            interval = max(1.0, item.interval_days * cfg.relearn_good_multiplier)
        else:
            interval = max(
                cfg.relearn_easy_min_days,
                item.interval_days * cfg.relearn_easy_multiplier,
            )
        interval = self._capped(interval)

        return self._output(
            item,
            LearningState.Reviewing,
            self._jittered_due(now, interval),
            step_index=0,
            interval_days=interval,
        )


def reset_item(
    item: Item,
    now: Optional[datetime.datetime] = None,
    config: Optional[SchedulerConfig] = None,
) -> Item:
    """
    Returns the item with its learning progress discarded.

    The item goes back to New and is due immediately. Its review count and
    its ledger entries are kept.
    """
    if config is None:
        config = SchedulerConfig()
    now = ensure_utc(now or utc_now())
    return item.model_copy(
        update={
            "learning_state": LearningState.New,
            "step_index": 0,
            "ease_factor": config.initial_ease,
            "interval_days": 0.0,
            "streak": 0,
            "due_at": now,
            "last_reviewed_at": None,
            "modified_at": now,
        }
    )


def due_items(
    items: Iterable[Item], now: Optional[datetime.datetime] = None
) -> List[Item]:
    """
    Selects the items due at ``now`` (``due_at <= now``), earliest first.

    Items without a due time are due and sort first.
    """
    now = ensure_utc(now or utc_now())
    due = [item for item in items if item.is_due(now)]
    return sorted(
        due,
        key=lambda item: (
            item.due_at is not None,
            item.due_at or now,
        ),
    )
