from __future__ import annotations

import sys
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Ensure "src" is on sys.path for imports in tests
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from refcheck.core.models import AnswerType, Question, Template  # noqa: E402
from refcheck.core.templates import TemplateRegistry, build_template  # noqa: E402
from refcheck.features.session import SessionManager  # noqa: E402


class StepClock:
    """Deterministic clock that ticks one second per reading."""

    def __init__(self, start: datetime | None = None) -> None:
        self._now = start or datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            self._now += timedelta(seconds=1)
            return self._now


def two_question_template() -> Template:
    return build_template(
        "two-q",
        "Two required questions",
        [
            Question(key="q1", text="What was it like working with the candidate?"),
            Question(key="q2", text="How reliable were they?"),
        ],
    )


def mixed_template() -> Template:
    return build_template(
        "mixed",
        "Mixed required and optional questions",
        [
            Question(key="intro", text="How do you know the candidate?"),
            Question(key="rating", text="On a scale of 1-5, how would you rate their work?", answer_type=AnswerType.SCALE),
            Question(key="extra", text="Any example of initiative?", required=False),
            Question(key="rehire", text="Would you hire them again?", answer_type=AnswerType.TEXT),
            Question(key="closing", text="Anything else to add?", required=False),
        ],
    )


@pytest.fixture
def registry() -> TemplateRegistry:
    return TemplateRegistry([two_question_template(), mixed_template()])


@pytest.fixture
def manager(registry: TemplateRegistry) -> SessionManager:
    return SessionManager(registry, clock=StepClock())
