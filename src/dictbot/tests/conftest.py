"""Test configuration."""
import os
from pathlib import Path
from typing import Any, Dict, Generator

import pytest
from dotenv import load_dotenv
from faker import Faker

# Set test environment before any imports
os.environ["ENV"] = "test"

# Load test environment variables
test_env_path = Path(__file__).parent.parent.parent.parent / ".env.test"
load_dotenv(test_env_path)
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "test_token")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LESSON_BASE_URL", "http://lessons.test/data")

# Import after environment setup
from sqlalchemy.orm import Session  # noqa: E402

from dictbot.config import ensure_directories  # noqa: E402
from dictbot.models.base import Base, SessionLocal, engine, init_db  # noqa: E402
from dictbot.models.models import User  # noqa: E402

fake = Faker()


@pytest.fixture(autouse=True)
def setup_test_environment():
    """Set up test environment before each test."""
    # Ensure test directories exist
    ensure_directories()

    yield


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create a fresh database session on empty tables for each test."""
    Base.metadata.drop_all(bind=engine)
    init_db()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def user(db: Session) -> User:
    """Create a test user."""
    user = User(telegram_id=fake.random_int(min=1000, max=10**9), username=fake.user_name())
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def unit_payload() -> Dict[str, Any]:
    """Lesson document of a small unit."""
    return {
        "unit_id": "unit5",
        "unit_title": "Unit 5: Animals",
        "unit_description": "Pets and farm animals",
        "words": [
            {"id": "w1", "english": "cat", "translation": "貓", "audio": "w1.mp3", "hint": "It says meow"},
            {"id": "w2", "english": "dog", "translation": "狗", "audio": "w2.mp3"},
            {"id": "w3", "english": "horse", "translation": "馬", "audio": "w3.mp3"},
        ],
        "sentences": [
            {"id": "s1", "english": "The cat is sleeping.", "translation": "貓在睡覺。", "audio": "s1.mp3"},
        ],
    }


@pytest.fixture
def index_payload() -> Dict[str, Any]:
    """Unit catalog document."""
    return {
        "units": [
            {"id": "unit5", "title": "Unit 5: Animals", "description": "Pets and farm animals"},
            {"id": "unit6", "title": "Unit 6: Food", "dataUrl": "http://cdn.test/lessons/food.json"},
        ]
    }
