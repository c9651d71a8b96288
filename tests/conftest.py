"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests:
an in-memory SQLite database, and fakes for the generator, document
storage, sleeping and the clock.
"""
import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from studyforge.db.database import init_db  # noqa: E402
from studyforge.errors import DocumentDownloadError  # noqa: E402
from studyforge.generation.schemas import (  # noqa: E402
    GeneratedFlashcard,
    GeneratedQuizQuestion,
    GenerationResult,
    QuizPayload,
    RevisionNotePayload,
    StudySetMetadata,
    StudySetPayload,
)


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (require database)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        path = str(item.fspath)
        if "unit" in path:
            item.add_marker(pytest.mark.unit)
        elif "integration" in path:
            item.add_marker(pytest.mark.integration)
        elif "smoke" in path:
            item.add_marker(pytest.mark.smoke)


# ========================================
# Database
# ========================================


@pytest.fixture
def engine():
    """Fresh in-memory database with all tables."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


# ========================================
# Time
# ========================================


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 15, 9, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self):
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def sleep():
    return RecordingSleep()


# ========================================
# Collaborator fakes
# ========================================


class FakeStorage:
    """In-memory document storage keyed by 'bucket/object/path'."""

    def __init__(self, files: dict[str, bytes] | None = None):
        self.files = dict(files or {})
        self.downloads: list[tuple[str, str]] = []

    def download(self, bucket: str, object_path: str) -> bytes:
        self.downloads.append((bucket, object_path))
        key = f"{bucket}/{object_path}"
        if key not in self.files:
            raise DocumentDownloadError(f"Object not found: {key}", status_code=404)
        return self.files[key]


class FakeGenerator:
    """Generator returning canned study sets and recording its inputs."""

    def __init__(self, flashcards: int = 5, quiz: int = 3, tokens: int = 1200):
        self.flashcards = flashcards
        self.quiz = quiz
        self.tokens = tokens
        self.calls: list[tuple[str, str, dict | None]] = []

    def _result(self, data):
        return GenerationResult(
            data=data,
            tokens_used=self.tokens,
            prompt_tokens=self.tokens - 200,
            completion_tokens=200,
            model="fake-model",
        )

    def generate_study_set(self, text, metadata=None):
        self.calls.append(("collection", text, metadata))
        payload = StudySetPayload(
            flashcards=[
                GeneratedFlashcard(question=f"Question {i}?", answer=f"Answer {i}", tags=["biology"])
                for i in range(self.flashcards)
            ],
            quiz=[
                GeneratedQuizQuestion(
                    type="multiple_choice",
                    prompt=f"Quiz {i}?",
                    options=["Alpha", "Beta", "Gamma", "Delta"],
                    answer="Beta",
                    explanation="Beta is right.",
                    tags=["cells"],
                )
                for i in range(self.quiz)
            ],
            metadata=StudySetMetadata(summary="A short summary", notes=["note one"]),
        )
        return self._result(payload)

    def generate_quiz(self, text, metadata=None):
        self.calls.append(("quiz", text, metadata))
        return self._result(QuizPayload(document_title="Doc", questions=[]))

    def generate_revision_note(self, text, metadata=None):
        self.calls.append(("fiche", text, metadata))
        return self._result(RevisionNotePayload(document_title="Doc", summary="Summary"))

    def run_text_mode(self, mode, text):
        self.calls.append((mode, text, None))
        result = self._result(f"{mode}: {text}")
        result.raw = result.data
        return result


@pytest.fixture
def fake_storage():
    return FakeStorage()


@pytest.fixture
def fake_generator():
    return FakeGenerator()
