"""
Session State Data Model

Defines the immutable application state the session state machine
works on: the current view, the learner's profile and path, and the
session-scoped tutoring transcript and quiz progress.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from edupal_tutor.models import (
    LearningPath,
    Message,
    Module,
    Quiz,
    QuizQuestion,
    UserProfile,
)


class View(Enum):
    """Screens of the learning flow."""
    WELCOME = "welcome"
    ONBOARDING = "onboarding"
    DASHBOARD = "dashboard"
    TUTORING = "tutoring"
    QUIZ = "quiz"
    FEEDBACK = "feedback"


@dataclass(frozen=True)
class QuizResult:
    """Outcome of a finished quiz."""
    score: int
    total: int
    passed: bool


@dataclass(frozen=True)
class QuizProgress:
    """An active quiz and the answers given so far."""
    quiz: Quiz
    current_index: int = 0
    answers: Tuple[int, ...] = ()
    result: Optional[QuizResult] = None

    @property
    def is_finished(self) -> bool:
        return self.result is not None

    @property
    def current_question(self) -> Optional[QuizQuestion]:
        if self.is_finished or self.current_index >= len(self.quiz.questions):
            return None
        return self.quiz.questions[self.current_index]


@dataclass(frozen=True)
class AppState:
    """
    Complete state of one learner session.

    Only `profile` and `path` survive a reload; everything else is
    session memory.
    """
    view: View = View.WELCOME
    profile: Optional[UserProfile] = None
    path: Optional[LearningPath] = None
    current_module: Optional[Module] = None
    suggestions: Tuple[str, ...] = ()
    # Loading overlay for blocking gateway calls
    is_loading: bool = False
    loading_message: str = ""
    active_quiz: Optional[QuizProgress] = None
    # Tutoring session
    transcript: Tuple[Message, ...] = ()
    awaiting_reply: bool = False
    tutoring_session: int = 0
    session_started_at: Optional[datetime] = None
