"""
Session Events and Effects

Closed sets of the inputs the session state machine accepts and the
side effects it asks the shell to run.

User events come from the learner. Result events carry the outcome of
an effect back into the machine. Effects are instructions only; the
machine never performs I/O itself.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Tuple

from edupal_tutor.models import (
    LearningPath,
    Message,
    Quiz,
    SessionFeedback,
    UserProfile,
)


class PathPurpose(Enum):
    """Why a learning path is being synthesized."""
    ONBOARDING = "onboarding"
    TOPIC_CHANGE = "topic_change"


# ==================== User events ====================

@dataclass(frozen=True)
class Start:
    pass


@dataclass(frozen=True)
class CompleteOnboarding:
    draft: UserProfile


@dataclass(frozen=True)
class SelectSuggestedTopic:
    title: str


@dataclass(frozen=True)
class SelectModule:
    module_id: str
    at: datetime


@dataclass(frozen=True)
class SendMessage:
    text: str
    at: datetime


@dataclass(frozen=True)
class EndSession:
    at: datetime


@dataclass(frozen=True)
class SubmitFeedback:
    rating: SessionFeedback


@dataclass(frozen=True)
class StartQuiz:
    pass


@dataclass(frozen=True)
class AnswerAndAdvance:
    option_index: int


@dataclass(frozen=True)
class ExitQuiz:
    pass


@dataclass(frozen=True)
class Logout:
    pass


# ==================== Startup and result events ====================

@dataclass(frozen=True)
class SessionRestored:
    profile: UserProfile
    path: LearningPath


@dataclass(frozen=True)
class PathSynthesized:
    purpose: PathPurpose
    profile: UserProfile
    path: LearningPath


@dataclass(frozen=True)
class PathSynthesisFailed:
    purpose: PathPurpose
    error: str


@dataclass(frozen=True)
class SuggestionsLoaded:
    titles: Tuple[str, ...]


@dataclass(frozen=True)
class TutorReplied:
    session: int
    content: str
    at: datetime


@dataclass(frozen=True)
class TutorReplyFailed:
    session: int
    error: str


@dataclass(frozen=True)
class QuizGenerated:
    quiz: Quiz


@dataclass(frozen=True)
class QuizGenerationFailed:
    error: str


USER_EVENTS = (
    Start,
    CompleteOnboarding,
    SelectSuggestedTopic,
    SelectModule,
    SendMessage,
    EndSession,
    SubmitFeedback,
    StartQuiz,
    AnswerAndAdvance,
    ExitQuiz,
    Logout,
)

RESULT_EVENTS = (
    SessionRestored,
    PathSynthesized,
    PathSynthesisFailed,
    SuggestionsLoaded,
    TutorReplied,
    TutorReplyFailed,
    QuizGenerated,
    QuizGenerationFailed,
)

ALL_EVENTS = USER_EVENTS + RESULT_EVENTS


# ==================== Effects ====================

@dataclass(frozen=True)
class SynthesizePath:
    profile: UserProfile
    purpose: PathPurpose


@dataclass(frozen=True)
class FetchSuggestions:
    profile: UserProfile


@dataclass(frozen=True)
class RequestTutorReply:
    session: int
    transcript: Tuple[Message, ...]
    profile: UserProfile
    module_title: str


@dataclass(frozen=True)
class GenerateQuiz:
    profile: UserProfile
    module_title: str


@dataclass(frozen=True)
class PersistSession:
    profile: UserProfile
    path: LearningPath


@dataclass(frozen=True)
class ClearSession:
    pass


@dataclass(frozen=True)
class ResetScroll:
    pass


ALL_EFFECTS = (
    SynthesizePath,
    FetchSuggestions,
    RequestTutorReply,
    GenerateQuiz,
    PersistSession,
    ClearSession,
    ResetScroll,
)
