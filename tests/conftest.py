import random
import sys
import pytest
from pathlib import Path
from typing import Generator
from datetime import datetime, timezone

from rotecore.models import Item, LearningState
from rotecore.db import ItemDatabase
from rotecore.scheduler import StepScheduler

UTC = timezone.utc
NOW = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


# each test runs on cwd to its temp dir
@pytest.fixture(autouse=True)
def go_to_tmpdir(request):
    """
    Run each test with its tmpdir as the working directory, so that a stray
    .env file or relative database path never touches the repository.
    """
    tmpdir = request.getfixturevalue("tmpdir")
    sys.path.insert(0, str(tmpdir))
    with tmpdir.as_cwd():
        yield


# --- Scheduler Fixtures ---
@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def scheduler() -> StepScheduler:
    """A StepScheduler with a seeded random source."""
    return StepScheduler(rng=random.Random(42))


@pytest.fixture
def new_item() -> Item:
    return Item(front="Q", back="A", due_at=NOW, added_at=NOW, modified_at=NOW)


@pytest.fixture
def reviewing_item() -> Item:
    """A graduated item with a 10 day interval and default ease."""
    return Item(
        front="Q",
        back="A",
        learning_state=LearningState.Reviewing,
        interval_days=10.0,
        ease_factor=2.5,
        streak=3,
        due_at=NOW,
        last_reviewed_at=datetime(2023, 12, 22, 12, 0, tzinfo=UTC),
        review_count=6,
        added_at=datetime(2023, 12, 1, tzinfo=UTC),
        modified_at=datetime(2023, 12, 22, 12, 0, tzinfo=UTC),
    )


# --- Database Fixtures ---
@pytest.fixture
def db_path_memory() -> str:
    return ":memory:"


@pytest.fixture
def db_path_file(tmp_path: Path) -> Path:
    return tmp_path / "test_rote.db"


@pytest.fixture(params=["memory", "file"])
def db_manager(
    request, db_path_memory: str, db_path_file: Path
) -> Generator[ItemDatabase, None, None]:
    """
    An ItemDatabase, in-memory or file-backed depending on the parameter.
    The connection is closed on teardown.
    """
    if request.param == "memory":
        db_man = ItemDatabase(db_path_memory)
    else:
        db_man = ItemDatabase(db_path_file)
    try:
        yield db_man
    finally:
        db_man.close_connection()


@pytest.fixture
def initialized_db_manager(db_manager: ItemDatabase) -> ItemDatabase:
    db_manager.initialize_schema()
    return db_manager


@pytest.fixture
def sample_item1() -> Item:
    return Item(
        id="11111111-1111-1111-1111-111111111111",
        deck_name="Deck A::Sub1",
        front="Sample Front",
        back="Sample Back",
        tags={"tag1", "tag2"},
        due_at=datetime(2023, 1, 1, 10, 0, tzinfo=UTC),
        added_at=datetime(2023, 1, 1, 10, 0, tzinfo=UTC),
        modified_at=datetime(2023, 1, 1, 10, 0, tzinfo=UTC),
    )


@pytest.fixture
def sample_item2() -> Item:
    return Item(
        id="22222222-2222-2222-2222-222222222222",
        deck_name="Deck A::Sub1",
        front="Another Front",
        back="Another Back",
        tags={"tag1"},
        due_at=datetime(2023, 1, 2, 10, 0, tzinfo=UTC),
        added_at=datetime(2023, 1, 2, 10, 0, tzinfo=UTC),
        modified_at=datetime(2023, 1, 2, 10, 0, tzinfo=UTC),
    )


@pytest.fixture
def sample_item3_deck_b() -> Item:
    """An item in "Deck B" that is not due until 2030."""
    return Item(
        id="33333333-3333-3333-3333-333333333333",
        deck_name="Deck B",
        front="Deck B Front",
        back="Deck B Back",
        tags={"tag3"},
        learning_state=LearningState.Reviewing,
        interval_days=30.0,
        due_at=datetime(2030, 1, 1, tzinfo=UTC),
        last_reviewed_at=datetime(2023, 1, 3, 10, 0, tzinfo=UTC),
        review_count=5,
        added_at=datetime(2023, 1, 3, 10, 0, tzinfo=UTC),
        modified_at=datetime(2023, 1, 3, 10, 0, tzinfo=UTC),
    )
