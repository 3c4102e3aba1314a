"""
Session State Machine

Pure transition function for the learning flow:

    Welcome -> Onboarding -> Dashboard <-> Tutoring -> Feedback
                                       <-> Quiz

`transition(state, event)` returns the next state plus the effects the
shell has to run (gateway calls, persistence writes). It performs no
I/O and never reads the clock; time arrives inside the events.

Invalid input is a no-op. While a blocking gateway call is in flight
(`is_loading`), every user event except logout is ignored, and a path or
quiz result that arrives when nothing is loading is dropped.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Tuple

from edupal_tutor.events import (
    ALL_EVENTS,
    USER_EVENTS,
    AnswerAndAdvance,
    ClearSession,
    CompleteOnboarding,
    EndSession,
    ExitQuiz,
    FetchSuggestions,
    GenerateQuiz,
    Logout,
    PathPurpose,
    PathSynthesisFailed,
    PathSynthesized,
    PersistSession,
    QuizGenerated,
    QuizGenerationFailed,
    RequestTutorReply,
    ResetScroll,
    SelectModule,
    SelectSuggestedTopic,
    SendMessage,
    SessionRestored,
    Start,
    StartQuiz,
    SubmitFeedback,
    SuggestionsLoaded,
    SynthesizePath,
    TutorReplied,
    TutorReplyFailed,
)
from edupal_tutor.models import (
    PASS_THRESHOLD,
    Message,
    MessageRole,
    ModuleStatus,
    round_half_up,
)
from edupal_tutor.session_state import AppState, QuizProgress, QuizResult, View

logger = logging.getLogger(__name__)


ONBOARDING_LOADING_MESSAGE = "Synthesizing Personalized Curriculum..."
QUIZ_LOADING_MESSAGE = "Generating Assessment..."


@dataclass(frozen=True)
class Transition:
    """Result of applying one event."""
    state: AppState
    effects: Tuple[object, ...] = ()


def transition(state: AppState, event) -> Transition:
    """
    Apply `event` to `state`.

    Raises:
        TypeError: if `event` is not one of the known event types
    """
    handler = _HANDLERS.get(type(event))
    if handler is None:
        raise TypeError(f"Unknown session event: {type(event).__name__}")

    if state.is_loading and isinstance(event, USER_EVENTS) and not isinstance(event, Logout):
        logger.debug(f"[SessionMachine] Ignoring {type(event).__name__} while loading")
        return Transition(state)

    return handler(state, event)


def _ignore(state: AppState, event, reason: str) -> Transition:
    logger.debug(f"[SessionMachine] {type(event).__name__} ignored in {state.view.value}: {reason}")
    return Transition(state)


def _stop_loading(state: AppState) -> AppState:
    return replace(state, is_loading=False, loading_message="")


def _append_message(transcript, role: MessageRole, content: str, at: datetime):
    # Timestamps never go backwards within a transcript
    if transcript and at < transcript[-1].timestamp:
        at = transcript[-1].timestamp
    return transcript + (Message(role=role, content=content, timestamp=at),)


def _greeting(name: str, module_title: str) -> str:
    return (
        f'Identity verified, {name}. Initializing the "{module_title}" node. '
        "To begin our session, how would you describe the fundamental "
        "objective of this concept in your own words?"
    )


# ==================== Navigation ====================

def _on_start(state: AppState, event: Start) -> Transition:
    if state.view is not View.WELCOME:
        return _ignore(state, event, "not on the welcome screen")
    return Transition(replace(state, view=View.ONBOARDING))


def _on_session_restored(state: AppState, event: SessionRestored) -> Transition:
    if state.view is not View.WELCOME or not event.path.modules:
        return _ignore(state, event, "nothing to restore into")
    new_state = replace(
        state,
        view=View.DASHBOARD,
        profile=event.profile,
        path=event.path,
        current_module=event.path.modules[0],
    )
    return Transition(new_state, (FetchSuggestions(event.profile),))


def _on_logout(state: AppState, event: Logout) -> Transition:
    return Transition(AppState(), (ClearSession(),))


# ==================== Learning path ====================

def _on_complete_onboarding(state: AppState, event: CompleteOnboarding) -> Transition:
    if state.view is not View.ONBOARDING:
        return _ignore(state, event, "not onboarding")
    if not event.draft.is_complete():
        return _ignore(state, event, "name, class, subject and topic are required")
    new_state = replace(state, is_loading=True, loading_message=ONBOARDING_LOADING_MESSAGE)
    return Transition(new_state, (SynthesizePath(event.draft, PathPurpose.ONBOARDING),))


def _on_select_suggested_topic(state: AppState, event: SelectSuggestedTopic) -> Transition:
    if state.view is not View.DASHBOARD or state.profile is None:
        return _ignore(state, event, "no profile on the dashboard")
    if not event.title.strip():
        return _ignore(state, event, "empty topic")
    profile = state.profile.with_topic(event.title)
    new_state = replace(state, is_loading=True, loading_message=f'Architecting "{event.title}"...')
    return Transition(new_state, (SynthesizePath(profile, PathPurpose.TOPIC_CHANGE),))


def _on_path_synthesized(state: AppState, event: PathSynthesized) -> Transition:
    if not state.is_loading:
        return _ignore(state, event, "no path synthesis pending")
    if not event.path.modules:
        logger.warning("⚠️ [SessionMachine] Synthesized path has no modules, keeping current state")
        return Transition(_stop_loading(state))
    new_state = replace(
        _stop_loading(state),
        view=View.DASHBOARD,
        profile=event.profile,
        path=event.path,
        current_module=event.path.modules[0],
    )
    effects = [PersistSession(event.profile, event.path), FetchSuggestions(event.profile)]
    if event.purpose is PathPurpose.TOPIC_CHANGE:
        effects.append(ResetScroll())
    return Transition(new_state, tuple(effects))


def _on_path_synthesis_failed(state: AppState, event: PathSynthesisFailed) -> Transition:
    logger.warning(f"⚠️ [SessionMachine] Path synthesis ({event.purpose.value}) failed: {event.error}")
    return Transition(_stop_loading(state))


def _on_suggestions_loaded(state: AppState, event: SuggestionsLoaded) -> Transition:
    return Transition(replace(state, suggestions=tuple(event.titles)))


# ==================== Tutoring ====================

def _on_select_module(state: AppState, event: SelectModule) -> Transition:
    if state.view is not View.DASHBOARD or state.path is None or state.profile is None:
        return _ignore(state, event, "no learning path on the dashboard")
    module = state.path.find_module(event.module_id)
    if module is None:
        return _ignore(state, event, f"module {event.module_id!r} is not in the current path")
    greeting = Message(
        role=MessageRole.ASSISTANT,
        content=_greeting(state.profile.name, module.title),
        timestamp=event.at,
    )
    new_state = replace(
        state,
        view=View.TUTORING,
        current_module=module,
        session_started_at=event.at,
        tutoring_session=state.tutoring_session + 1,
        transcript=(greeting,),
        awaiting_reply=False,
    )
    return Transition(new_state)


def _on_send_message(state: AppState, event: SendMessage) -> Transition:
    if state.view is not View.TUTORING or state.profile is None or state.current_module is None:
        return _ignore(state, event, "no tutoring session")
    if not event.text.strip():
        return _ignore(state, event, "empty message")
    if state.awaiting_reply:
        return _ignore(state, event, "still waiting for the tutor")
    transcript = _append_message(state.transcript, MessageRole.USER, event.text, event.at)
    new_state = replace(state, transcript=transcript, awaiting_reply=True)
    effect = RequestTutorReply(
        session=state.tutoring_session,
        transcript=transcript,
        profile=state.profile,
        module_title=state.current_module.title,
    )
    return Transition(new_state, (effect,))


def _is_live_reply(state: AppState, session: int) -> bool:
    return (
        state.view is View.TUTORING
        and state.awaiting_reply
        and session == state.tutoring_session
    )


def _on_tutor_replied(state: AppState, event: TutorReplied) -> Transition:
    if not _is_live_reply(state, event.session):
        return _ignore(state, event, "reply belongs to a closed session")
    transcript = _append_message(state.transcript, MessageRole.ASSISTANT, event.content, event.at)
    return Transition(replace(state, transcript=transcript, awaiting_reply=False))


def _on_tutor_reply_failed(state: AppState, event: TutorReplyFailed) -> Transition:
    logger.warning(f"⚠️ [SessionMachine] Tutor reply failed: {event.error}")
    if not _is_live_reply(state, event.session):
        return Transition(state)
    return Transition(replace(state, awaiting_reply=False))


def _on_end_session(state: AppState, event: EndSession) -> Transition:
    if state.view is not View.TUTORING:
        return _ignore(state, event, "no tutoring session")
    profile = state.profile
    if profile is not None and state.session_started_at is not None:
        elapsed_seconds = (event.at - state.session_started_at).total_seconds()
        elapsed = max(0, round_half_up(elapsed_seconds / 60))
        profile = profile.with_performance(profile.performance.with_time_spent(elapsed))
    new_state = replace(
        state,
        view=View.FEEDBACK,
        profile=profile,
        transcript=(),
        awaiting_reply=False,
        session_started_at=None,
    )
    return Transition(new_state)


def _on_submit_feedback(state: AppState, event: SubmitFeedback) -> Transition:
    if state.view is not View.FEEDBACK:
        return _ignore(state, event, "no session to rate")
    if state.profile is None or state.path is None:
        return Transition(replace(state, view=View.DASHBOARD))
    profile = state.profile.with_performance(state.profile.performance.with_feedback(event.rating))
    new_state = replace(state, view=View.DASHBOARD, profile=profile)
    return Transition(new_state, (PersistSession(profile, state.path),))


# ==================== Quiz ====================

def _on_start_quiz(state: AppState, event: StartQuiz) -> Transition:
    if state.view is not View.DASHBOARD or state.profile is None or state.current_module is None:
        return _ignore(state, event, "no module selected")
    new_state = replace(state, is_loading=True, loading_message=QUIZ_LOADING_MESSAGE)
    return Transition(new_state, (GenerateQuiz(state.profile, state.current_module.title),))


def _on_quiz_generated(state: AppState, event: QuizGenerated) -> Transition:
    if not state.is_loading:
        return _ignore(state, event, "no quiz requested")
    if not event.quiz.questions:
        logger.warning("⚠️ [SessionMachine] Generated quiz has no questions")
        return Transition(_stop_loading(state))
    new_state = replace(_stop_loading(state), view=View.QUIZ, active_quiz=QuizProgress(quiz=event.quiz))
    return Transition(new_state)


def _on_quiz_generation_failed(state: AppState, event: QuizGenerationFailed) -> Transition:
    logger.warning(f"⚠️ [SessionMachine] Quiz generation failed: {event.error}")
    return Transition(_stop_loading(state))


def _on_answer_and_advance(state: AppState, event: AnswerAndAdvance) -> Transition:
    progress = state.active_quiz
    if state.view is not View.QUIZ or progress is None or progress.is_finished:
        return _ignore(state, event, "no open question")
    question = progress.current_question
    if question is None or not 0 <= event.option_index < len(question.options):
        return _ignore(state, event, f"option {event.option_index} is out of range")

    answers = progress.answers + (event.option_index,)
    total = len(progress.quiz.questions)
    if len(answers) < total:
        progress = replace(progress, answers=answers, current_index=progress.current_index + 1)
        return Transition(replace(state, active_quiz=progress))

    score = progress.quiz.score(answers)
    passed = score / total >= PASS_THRESHOLD
    progress = replace(progress, answers=answers, result=QuizResult(score=score, total=total, passed=passed))

    path = state.path
    profile = state.profile
    current_module = state.current_module
    if path is not None and current_module is not None and passed:
        path = path.with_module_status(current_module.id, ModuleStatus.COMPLETED)
        current_module = path.find_module(current_module.id) or current_module
    if profile is not None:
        completed_topic = current_module.title if passed and current_module is not None else None
        profile = profile.with_performance(
            profile.performance.with_quiz_score(score, completed_topic)
        )

    new_state = replace(
        state,
        active_quiz=progress,
        path=path,
        profile=profile,
        current_module=current_module,
    )
    if profile is None or path is None:
        return Transition(new_state)
    return Transition(new_state, (PersistSession(profile, path),))


def _on_exit_quiz(state: AppState, event: ExitQuiz) -> Transition:
    if state.view is not View.QUIZ:
        return _ignore(state, event, "no quiz open")
    return Transition(replace(state, view=View.DASHBOARD, active_quiz=None))


_HANDLERS = {
    Start: _on_start,
    CompleteOnboarding: _on_complete_onboarding,
    SelectSuggestedTopic: _on_select_suggested_topic,
    SelectModule: _on_select_module,
    SendMessage: _on_send_message,
    EndSession: _on_end_session,
    SubmitFeedback: _on_submit_feedback,
    StartQuiz: _on_start_quiz,
    AnswerAndAdvance: _on_answer_and_advance,
    ExitQuiz: _on_exit_quiz,
    Logout: _on_logout,
    SessionRestored: _on_session_restored,
    PathSynthesized: _on_path_synthesized,
    PathSynthesisFailed: _on_path_synthesis_failed,
    SuggestionsLoaded: _on_suggestions_loaded,
    TutorReplied: _on_tutor_replied,
    TutorReplyFailed: _on_tutor_reply_failed,
    QuizGenerated: _on_quiz_generated,
    QuizGenerationFailed: _on_quiz_generation_failed,
}

if set(_HANDLERS) != set(ALL_EVENTS):
    raise RuntimeError("every session event needs a handler")
