"""
Shared fixtures: sample learner data, a scripted gateway and a fake clock.
"""

import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

# Add project root to path
project_root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
sys.path.insert(0, os.path.join(project_root, "edupal_tutor", "src"))
sys.path.insert(0, os.path.join(project_root, "backend"))

from edupal_tutor.models import (
    LearningPath,
    Module,
    ModuleStatus,
    Quiz,
    QuizQuestion,
    new_profile_draft,
)
from edupal_tutor.session_manager import InMemoryStore, SessionManager


T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def build_profile(**overrides):
    fields = dict(name="Ada", class_info="Grade 11", subject="Physics", topic="Quantum Computing")
    fields.update(overrides)
    return new_profile_draft(**fields)


def build_path(count=3, prefix="Module"):
    modules = tuple(
        Module(
            id=f"m{i + 1}",
            title=f"{prefix} {i + 1}",
            description=f"Description {i + 1}",
            status=ModuleStatus.CURRENT,
            topics=("Topic A", "Topic B"),
            video_url="https://www.youtube.com/watch?v=dQw4w9WgXcQ",
        )
        for i in range(count)
    )
    return LearningPath(modules=modules, estimated_weeks=4, personalized_reasoning="Built for Ada.")


def build_quiz(correct=(0, 1, 2, 3, 0)):
    questions = tuple(
        QuizQuestion(
            question=f"Question {i + 1}?",
            options=("A", "B", "C", "D"),
            correct_answer=answer,
            explanation=f"Because {answer}.",
        )
        for i, answer in enumerate(correct)
    )
    return Quiz(title="Checkpoint", questions=questions)


class FakeGateway:
    """Scripted stand-in for LearningGateway; records every call."""

    def __init__(self):
        self.path = build_path()
        self.path_error = None
        self.suggestions = ["Quantum Error Correction", "Quantum Cryptography"]
        self.suggestions_error = None
        self.reply = "What do you think happens when you measure it?"
        self.reply_error = None
        self.quiz = build_quiz()
        self.quiz_error = None
        self.calls = []

    async def synthesize_path(self, profile):
        self.calls.append(("synthesize_path", profile.topic))
        if self.path_error:
            raise self.path_error
        return self.path

    async def suggest_topics(self, profile):
        self.calls.append(("suggest_topics", profile.topic))
        if self.suggestions_error:
            raise self.suggestions_error
        return list(self.suggestions)

    async def tutor_reply(self, transcript, profile, module_title):
        self.calls.append(("tutor_reply", module_title, len(transcript)))
        if self.reply_error:
            raise self.reply_error
        return self.reply

    async def generate_quiz(self, profile, module_title):
        self.calls.append(("generate_quiz", module_title))
        if self.quiz_error:
            raise self.quiz_error
        return self.quiz


class FakeClock:
    def __init__(self, start=T0):
        self.current = start

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)


@pytest.fixture
def profile():
    return build_profile()


@pytest.fixture
def path():
    return build_path()


@pytest.fixture
def quiz():
    return build_quiz()


@pytest.fixture
def make_profile():
    return build_profile


@pytest.fixture
def make_path():
    return build_path


@pytest.fixture
def make_quiz():
    return build_quiz


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store():
    return InMemoryStore()


@pytest.fixture
def session_manager(memory_store):
    return SessionManager(store=memory_store)
