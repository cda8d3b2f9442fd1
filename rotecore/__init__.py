"""Rotecore - a step-table spaced repetition scheduler with a review ledger."""

from .models import Item, ReviewRecord, ItemStats, LearningState, Grade
from .scheduler import SchedulerConfig, StepScheduler, due_items, reset_item
from .ledger import ReviewLedger, compute_item_stats
from .migration import normalize
from .db import ItemDatabase

__all__ = [
    "Item",
    "ReviewRecord",
    "ItemStats",
    "LearningState",
    "Grade",
    "SchedulerConfig",
    "StepScheduler",
    "due_items",
    "reset_item",
    "ReviewLedger",
    "compute_item_stats",
    "normalize",
    "ItemDatabase",
]
