"""
Repair of items loaded from storage.

Rows written by older versions, or only partially initialized, may lack a due
time or carry out-of-range numbers. ``normalize`` fills those gaps and clamps
the values so that the item can be handed to the scheduler again. It never
raises.
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from .models import Item, LearningState, ensure_utc, utc_now
from .scheduler import SchedulerConfig

logger = logging.getLogger(__name__)


def _steps_len(item: Item, config: SchedulerConfig) -> Optional[int]:
    if item.learning_state in (LearningState.New, LearningState.Learning):
        return len(config.learning_steps)
    if item.learning_state == LearningState.Relearning:
        return len(config.relearning_steps)
    return None


def normalize(
    item: Item,
    now: Optional[datetime] = None,
    config: Optional[SchedulerConfig] = None,
) -> Item:
    """
    Return ``item`` with missing scheduling fields filled in and
    out-of-range values clamped.

    Rules, in order:
      * a negative or non-finite interval becomes 0, and one above the
        configured maximum is clamped to it;
      * an ease factor of 0 (never initialized) becomes the initial ease;
        any other out-of-range ease is clamped into the configured bounds;
      * a step index past the end of the active step table is moved to the
        last step;
      * a missing due time is derived from the last review plus the stored
        interval. If the last review is older than the lapse threshold the
        item is treated as forgotten: interval 0, initial ease, due now.
        Items never reviewed become due now.

    The same instance is returned when nothing needed repair.
    """
    if config is None:
        config = SchedulerConfig()
    now = ensure_utc(now or utc_now())
    changes: Dict[str, Any] = {}

    interval = item.interval_days
    if not (math.isfinite(interval) and interval >= 0):
        interval = 0.0
        changes["interval_days"] = interval
    elif interval > config.max_interval_days:
        interval = config.max_interval_days
        changes["interval_days"] = interval

    ease = item.ease_factor
    if ease == 0:
        ease = config.initial_ease
        changes["ease_factor"] = ease
    elif not (config.min_ease <= ease <= config.max_ease):
        ease = min(config.max_ease, max(config.min_ease, ease))
        changes["ease_factor"] = ease

    steps_len = _steps_len(item, config)
    if steps_len is not None and item.step_index >= steps_len:
        changes["step_index"] = steps_len - 1

    if item.due_at is None:
        if item.last_reviewed_at is None:
            changes["due_at"] = now
        elif now - item.last_reviewed_at > config.lapse_threshold:
            logger.info(
                f"Item {item.id} last reviewed {item.last_reviewed_at.isoformat()}; "
                "treating as lapsed and rescheduling now."
            )
            changes["interval_days"] = 0.0
            changes["ease_factor"] = config.initial_ease
            changes["due_at"] = now
        else:
            try:
                changes["due_at"] = item.last_reviewed_at + timedelta(days=interval)
            except OverflowError:
                changes["due_at"] = datetime.max.replace(tzinfo=timezone.utc)

    if not changes:
        return item

    logger.warning(f"Repaired item {item.id}: {sorted(changes)}")
    return item.model_copy(update=changes)
