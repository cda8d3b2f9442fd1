"""
Scheduling constants.

Static defaults for the step-table scheduler. No runtime configuration or
path defaults here, pure constants only; SchedulerConfig turns them into a
swappable policy.
"""
from datetime import timedelta
from typing import Dict, Tuple

# Learning steps, in minutes. A new item walks these before graduating.
LEARNING_STEPS_MINUTES: Tuple[int, ...] = (1, 10, 60, 240)

# Relearning steps, in minutes, after a lapse in the Reviewing state.
RELEARNING_STEPS_MINUTES: Tuple[int, ...] = (10, 60)

# Ease factor bounds and the value every new item starts with.
MIN_EASE: float = 1.3
MAX_EASE: float = 2.5
INITIAL_EASE: float = 2.5

# Ease adjustment per grade while Reviewing, keyed by grade value
# (1=Again, 2=Hard, 3=Good, 4=Easy).
EASE_DELTAS: Dict[int, float] = {
    1: -0.2,
    2: -0.15,
    3: 0.0,
    4: 0.15,
}

# Multiplicative jitter applied to day-scale intervals so that items
# introduced together do not all fall due on the same day.
JITTER_MIN: float = 0.95
JITTER_MAX: float = 1.05

# A legacy item whose last review is older than this is treated as forgotten.
LAPSE_THRESHOLD: timedelta = timedelta(days=14)

# Interval arithmetic (days).
GRADUATING_INTERVAL_DAYS: float = 1.0
EASY_INTERVAL_DAYS: float = 4.0
HARD_INTERVAL_MULTIPLIER: float = 1.2
EASY_BONUS: float = 1.3
RELEARN_GOOD_MULTIPLIER: float = 0.5
RELEARN_EASY_MULTIPLIER: float = 0.75
RELEARN_EASY_MIN_DAYS: float = 2.0

# Ceiling on any day-scale interval, about a century.
MAX_INTERVAL_DAYS: float = 36500.0
