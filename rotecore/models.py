"""
Value types for items, their review records and derived statistics.

Items and records are frozen: the scheduler and the migrator return new
instances instead of mutating the ones they are given.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from enum import IntEnum
from typing import FrozenSet, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import INITIAL_EASE

# Regex for Kebab-case validation (e.g., "my-cool-tag", "learning-python-3")
KEBAB_CASE_REGEX_PATTERN = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"


def ensure_utc(ts: datetime) -> datetime:
    """Ensures the given datetime is UTC. Assumes UTC if naive."""
    if ts.tzinfo is None or ts.tzinfo.utcoffset(ts) is None:
        return ts.replace(tzinfo=timezone.utc)
    if ts.tzinfo != timezone.utc:
        return ts.astimezone(timezone.utc)
    return ts


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LearningState(IntEnum):
    """
    Scheduling phase of an item. Governs which transition rules apply.
    """

    New = 0
    Learning = 1
    Reviewing = 2
    Relearning = 3

    @property
    def review_type(self) -> str:
        """Ledger label for a review graded while in this state."""
        return _REVIEW_TYPE_MAP[self]


_REVIEW_TYPE_MAP = {
    LearningState.New: "learn",
    LearningState.Learning: "learn",
    LearningState.Reviewing: "review",
    LearningState.Relearning: "relearn",
}


class Grade(IntEnum):
    """
    The user's self-reported recall quality for one review.
    """

    Again = 1
    Hard = 2
    Good = 3
    Easy = 4

    @property
    def is_correct(self) -> bool:
        """Good and Easy count as correct recalls."""
        return self >= Grade.Good

    @property
    def score(self) -> int:
        """Zero-based score (Again=0 .. Easy=3) used for grade averages."""
        return int(self) - 1


class Item(BaseModel):
    """
    A learnable unit together with its scheduling state.

    Numeric invariants (ease bounds, non-negative interval, step index within
    the active step table) are deliberately not enforced here so that rows
    written by older versions can still be loaded and repaired by
    ``rotecore.migration.normalize``. The scheduler checks them on entry.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: UUID = Field(
        default_factory=uuid.uuid4,
        description="Unique UUIDv4 for the item. Auto-generated, immutable.",
    )
    learning_state: LearningState = Field(
        default=LearningState.New,
        description="Current scheduling phase.",
    )
    step_index: int = Field(
        default=0,
        ge=0,
        description="Position in the learning/relearning step table.",
    )
    ease_factor: float = Field(
        default=INITIAL_EASE,
        description="Interval growth multiplier while Reviewing.",
    )
    interval_days: float = Field(
        default=0.0,
        description="Last scheduled gap between reviews, in days.",
    )
    streak: int = Field(
        default=0,
        ge=0,
        description="Consecutive non-Again reviews while Reviewing.",
    )
    due_at: Optional[datetime] = Field(
        default_factory=utc_now,
        description="UTC timestamp from which the item is eligible for review.",
    )
    last_reviewed_at: Optional[datetime] = Field(
        default=None,
        description="UTC timestamp of the most recent grade application.",
    )
    review_count: int = Field(
        default=0,
        ge=0,
        description="Number of grades applied to this item.",
    )

    deck_name: str = Field(
        default="Default",
        min_length=1,
        description="Deck the item belongs to (e.g., 'Languages::Dutch').",
    )
    front: str = Field(
        ...,
        max_length=1024,
        description="Prompt text.",
    )
    back: str = Field(
        ...,
        max_length=1024,
        description="Answer text.",
    )
    tags: FrozenSet[str] = Field(
        default_factory=frozenset,
        description="Unique kebab-case tags.",
    )
    added_at: datetime = Field(
        default_factory=utc_now,
        description="UTC timestamp when the item was first added.",
    )
    modified_at: datetime = Field(
        default_factory=utc_now,
        description="UTC timestamp of last modification.",
    )

    @field_validator("tags")
    @classmethod
    def validate_tags_kebab_case(cls, tags: FrozenSet[str]) -> FrozenSet[str]:
        """Ensure each tag matches the kebab-case pattern."""
        for tag in tags:
            if not re.match(KEBAB_CASE_REGEX_PATTERN, tag):
                raise ValueError(f"Tag '{tag}' is not in kebab-case.")
        return tags

    @field_validator("due_at", "last_reviewed_at", "added_at", "modified_at")
    @classmethod
    def normalize_timestamps(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v) if v is not None else None

    def is_due(self, now: Optional[datetime] = None) -> bool:
        """Whether the item is eligible for review at ``now``.

        Items without a due time (legacy rows) are always due.
        """
        if self.due_at is None:
            return True
        return ensure_utc(now or utc_now()) >= self.due_at


class ReviewRecord(BaseModel):
    """
    Immutable ledger entry written once per grade application.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    review_id: Optional[int] = Field(
        default=None,
        description="Auto-incrementing PK from reviews table (None if new).",
    )
    item_id: UUID = Field(
        ...,
        description="UUID of the reviewed item (links to Item.id).",
    )
    timestamp: datetime = Field(
        ...,
        description="UTC timestamp of the grade application.",
    )
    grade: Grade
    ease_factor_after: float = Field(..., ge=0)
    interval_days_after: float = Field(..., ge=0)
    review_type: str = Field(
        default="review",
        description="Phase the item was in when graded (learn/review/relearn).",
    )

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_validator("review_type")
    @classmethod
    def check_review_type_is_allowed(cls, v: str) -> str:
        """Ensures review_type is one of the known phases."""
        allowed_review_types = {"learn", "review", "relearn"}
        if v not in allowed_review_types:
            raise ValueError(
                f"Invalid review_type: '{v}'. "
                f"Allowed: {allowed_review_types}."
            )
        return v


class ItemStats(BaseModel):
    """Per-item performance summary computed from its review records."""

    model_config = ConfigDict(frozen=True)

    total_reviews: int = 0
    correct_reviews: int = 0
    average_grade: float = 0.0
    retention: float = 0.0
