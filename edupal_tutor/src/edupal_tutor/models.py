"""
Learner Profile & Learning Path Model

Entity definitions for the learner profile, the learning path and its
modules, quizzes and tutoring messages.

All records are immutable. Updates go through the ``with_*`` helpers,
which always return a complete new snapshot, so a reader never sees a
half-updated nested record.

The module also holds the JSON codec for the persisted profile/path
pair. Keys are camelCase so the stored documents keep the shape the
browser client writes.
"""

import json
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Sequence, Tuple


QUESTIONS_PER_QUIZ = 5
PASS_THRESHOLD = 0.8


class SessionDecodeError(ValueError):
    """Raised when a persisted record cannot be turned back into a model."""


class KnowledgeLevel(Enum):
    """Self-reported knowledge level."""
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class LearningGoal(Enum):
    """Why the learner is studying the topic."""
    EXAM_PREP = "exam prep"
    CONCEPT_UNDERSTANDING = "concept understanding"
    SKILL_BUILDING = "skill building"


class LearningStyle(Enum):
    """Preferred content format."""
    TEXT = "text"
    VIDEO = "video"
    QUIZZES = "quizzes"
    MIXED = "mixed"


class ModuleStatus(Enum):
    """Module lifecycle. LOCKED exists in the schema but nothing assigns it."""
    LOCKED = "locked"
    CURRENT = "current"
    COMPLETED = "completed"


class MessageRole(Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class SessionFeedback(Enum):
    """How hard the learner found the last tutoring session."""
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves up (Python's round() is banker's rounding)."""
    return int(math.floor(value + 0.5))


def average_accuracy(quiz_scores: Sequence[int]) -> int:
    """
    Percentage of correct answers across all recorded quizzes.

    Every quiz is assumed to have QUESTIONS_PER_QUIZ questions.
    """
    if not quiz_scores:
        return 0
    return round_half_up(sum(quiz_scores) / (len(quiz_scores) * QUESTIONS_PER_QUIZ) * 100)


# ==================== Records ====================

@dataclass(frozen=True)
class Source:
    """A citation attached to a module."""
    uri: str
    title: str


@dataclass(frozen=True)
class Module:
    """One curriculum unit of a learning path."""
    id: str
    title: str
    description: str
    status: ModuleStatus = ModuleStatus.CURRENT
    topics: Tuple[str, ...] = ()
    video_url: Optional[str] = None
    sources: Optional[Tuple[Source, ...]] = None

    def with_status(self, status: ModuleStatus) -> "Module":
        return replace(self, status=status)


@dataclass(frozen=True)
class LearningPath:
    """
    Ordered curriculum for one learner.

    Module order is the mastery sequence. Modules are never removed;
    only their status changes. A new topic replaces the whole path.
    """
    modules: Tuple[Module, ...]
    estimated_weeks: float
    personalized_reasoning: str

    def find_module(self, module_id: str) -> Optional[Module]:
        for module in self.modules:
            if module.id == module_id:
                return module
        return None

    def with_module_status(self, module_id: str, status: ModuleStatus) -> "LearningPath":
        """Return a new path whose module list has `module_id` set to `status`."""
        modules = tuple(
            m.with_status(status) if m.id == module_id else m
            for m in self.modules
        )
        return replace(self, modules=modules)

    def progress_percent(self) -> int:
        if not self.modules:
            return 0
        completed = sum(1 for m in self.modules if m.status is ModuleStatus.COMPLETED)
        return round_half_up(completed / len(self.modules) * 100)


@dataclass(frozen=True)
class PerformanceData:
    """
    Learner performance counters.

    `average_accuracy` is derived from `quiz_scores` on construction and
    cannot be passed in.
    """
    quiz_scores: Tuple[int, ...] = ()
    time_spent_minutes: int = 0
    last_feedback: Optional[SessionFeedback] = None
    completed_topics: Tuple[str, ...] = ()
    average_accuracy: int = field(init=False, default=0)

    def __post_init__(self):
        object.__setattr__(self, "average_accuracy", average_accuracy(self.quiz_scores))

    def with_quiz_score(self, score: int, completed_topic: Optional[str] = None) -> "PerformanceData":
        """
        Record a finished quiz.

        `completed_topic` is appended when the quiz was passed. Repeated
        passes append again; the list is a history, not a set.
        """
        topics = self.completed_topics
        if completed_topic is not None:
            topics = topics + (completed_topic,)
        return replace(self, quiz_scores=self.quiz_scores + (score,), completed_topics=topics)

    def with_time_spent(self, minutes: int) -> "PerformanceData":
        return replace(self, time_spent_minutes=self.time_spent_minutes + minutes)

    def with_feedback(self, feedback: SessionFeedback) -> "PerformanceData":
        return replace(self, last_feedback=feedback)


@dataclass(frozen=True)
class UserProfile:
    """Identity and configuration for one learner."""
    name: str
    class_info: str
    subject: str
    topic: str
    level: KnowledgeLevel = KnowledgeLevel.BEGINNER
    goal: LearningGoal = LearningGoal.CONCEPT_UNDERSTANDING
    style: LearningStyle = LearningStyle.MIXED
    time_per_day: int = 1
    language: str = "English"
    performance: PerformanceData = field(default_factory=PerformanceData)

    def is_complete(self) -> bool:
        """Whether the onboarding fields required to build a path are filled in."""
        return all(
            value.strip()
            for value in (self.name, self.class_info, self.subject, self.topic)
        )

    def with_topic(self, topic: str) -> "UserProfile":
        return replace(self, topic=topic)

    def with_performance(self, performance: PerformanceData) -> "UserProfile":
        return replace(self, performance=performance)


def new_profile_draft(
    name: str = "",
    class_info: str = "",
    subject: str = "",
    topic: str = "",
    **overrides: Any
) -> UserProfile:
    """Onboarding draft with the default preferences and empty performance."""
    return UserProfile(name=name, class_info=class_info, subject=subject, topic=topic, **overrides)


@dataclass(frozen=True)
class QuizQuestion:
    question: str
    options: Tuple[str, ...]
    correct_answer: int
    explanation: str


@dataclass(frozen=True)
class Quiz:
    """A generated multiple-choice quiz. Never persisted."""
    title: str
    questions: Tuple[QuizQuestion, ...]

    def score(self, answers: Sequence[int]) -> int:
        """Count answers that match the correct option at the same position."""
        return sum(
            1 for question, answer in zip(self.questions, answers)
            if answer == question.correct_answer
        )


@dataclass(frozen=True)
class Message:
    """One entry of a tutoring transcript."""
    role: MessageRole
    content: str
    timestamp: datetime


# ==================== Codec ====================

def _require_str(data: Dict[str, Any], key: str) -> str:
    value = data[key]
    if not isinstance(value, str):
        raise TypeError(f"'{key}' must be a string, got {type(value).__name__}")
    return value


def _require_number(data: Dict[str, Any], key: str) -> float:
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"'{key}' must be a number, got {type(value).__name__}")
    return value


def _str_list(values: Any, key: str) -> Tuple[str, ...]:
    if not isinstance(values, list):
        raise TypeError(f"'{key}' must be a list")
    return tuple(str(v) for v in values)


def performance_to_dict(performance: PerformanceData) -> Dict[str, Any]:
    data = {
        "quizScores": list(performance.quiz_scores),
        "timeSpentMinutes": performance.time_spent_minutes,
        "completedTopics": list(performance.completed_topics),
        "averageAccuracy": performance.average_accuracy,
    }
    if performance.last_feedback is not None:
        data["lastFeedback"] = performance.last_feedback.value
    return data


def dict_to_performance(data: Dict[str, Any]) -> PerformanceData:
    scores = data.get("quizScores") or []
    if not isinstance(scores, list):
        raise TypeError("'quizScores' must be a list")
    feedback = data.get("lastFeedback")
    # averageAccuracy in the document is ignored; it is recomputed from the scores
    return PerformanceData(
        quiz_scores=tuple(int(s) for s in scores),
        time_spent_minutes=int(data.get("timeSpentMinutes") or 0),
        last_feedback=SessionFeedback(feedback) if feedback else None,
        completed_topics=_str_list(data.get("completedTopics") or [], "completedTopics"),
    )


def profile_to_dict(profile: UserProfile) -> Dict[str, Any]:
    return {
        "name": profile.name,
        "classInfo": profile.class_info,
        "subject": profile.subject,
        "level": profile.level.value,
        "goal": profile.goal.value,
        "style": profile.style.value,
        "timePerDay": profile.time_per_day,
        "topic": profile.topic,
        "language": profile.language,
        "performance": performance_to_dict(profile.performance),
    }


def dict_to_profile(data: Dict[str, Any]) -> UserProfile:
    return UserProfile(
        name=_require_str(data, "name"),
        class_info=_require_str(data, "classInfo"),
        subject=_require_str(data, "subject"),
        topic=_require_str(data, "topic"),
        level=KnowledgeLevel(data["level"]),
        goal=LearningGoal(data["goal"]),
        style=LearningStyle(data["style"]),
        time_per_day=int(_require_number(data, "timePerDay")),
        language=_require_str(data, "language"),
        performance=dict_to_performance(data.get("performance") or {}),
    )


def module_to_dict(module: Module) -> Dict[str, Any]:
    data = {
        "id": module.id,
        "title": module.title,
        "description": module.description,
        "status": module.status.value,
        "topics": list(module.topics),
    }
    if module.video_url is not None:
        data["videoUrl"] = module.video_url
    if module.sources is not None:
        data["sources"] = [{"uri": s.uri, "title": s.title} for s in module.sources]
    return data


def dict_to_module(data: Dict[str, Any]) -> Module:
    sources = data.get("sources")
    return Module(
        id=str(data["id"]),
        title=_require_str(data, "title"),
        description=_require_str(data, "description"),
        status=ModuleStatus(data.get("status", ModuleStatus.CURRENT.value)),
        topics=_str_list(data.get("topics") or [], "topics"),
        video_url=data.get("videoUrl") or None,
        sources=tuple(Source(uri=s["uri"], title=s["title"]) for s in sources) if sources else None,
    )


def path_to_dict(path: LearningPath) -> Dict[str, Any]:
    return {
        "modules": [module_to_dict(m) for m in path.modules],
        "estimatedWeeks": path.estimated_weeks,
        "personalizedReasoning": path.personalized_reasoning,
    }


def dict_to_path(data: Dict[str, Any]) -> LearningPath:
    modules = data["modules"]
    if not isinstance(modules, list) or not modules:
        raise ValueError("a learning path needs at least one module")
    return LearningPath(
        modules=tuple(dict_to_module(m) for m in modules),
        estimated_weeks=_require_number(data, "estimatedWeeks"),
        personalized_reasoning=_require_str(data, "personalizedReasoning"),
    )


def dict_to_quiz(data: Dict[str, Any]) -> Quiz:
    questions = []
    for item in data["questions"]:
        options = _str_list(item["options"], "options")
        correct = int(_require_number(item, "correctAnswer"))
        if not 0 <= correct < len(options):
            raise ValueError(f"correctAnswer {correct} is out of range for {len(options)} options")
        questions.append(QuizQuestion(
            question=_require_str(item, "question"),
            options=options,
            correct_answer=correct,
            explanation=str(item.get("explanation", "")),
        ))
    return Quiz(title=_require_str(data, "title"), questions=tuple(questions))


def _decode(text: str, converter):
    try:
        data = json.loads(text)
        if not isinstance(data, dict):
            raise TypeError(f"expected a JSON object, got {type(data).__name__}")
        return converter(data)
    except (ValueError, KeyError, TypeError, AttributeError, OverflowError) as e:
        raise SessionDecodeError(f"{type(e).__name__}: {e}") from e


def encode_profile(profile: UserProfile) -> str:
    return json.dumps(profile_to_dict(profile))


def decode_profile(text: str) -> UserProfile:
    return _decode(text, dict_to_profile)


def encode_path(path: LearningPath) -> str:
    return json.dumps(path_to_dict(path))


def decode_path(text: str) -> LearningPath:
    return _decode(text, dict_to_path)


def message_to_dict(message: Message) -> Dict[str, Any]:
    return {
        "role": message.role.value,
        "content": message.content,
        "timestamp": int(message.timestamp.timestamp() * 1000),
    }

