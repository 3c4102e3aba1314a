"""
Tutor App - async shell around the session state machine

Holds the current AppState, feeds events through `transition()`, and
runs the effects it returns against the learning gateway and the
session manager. Effect results come back in as events.

Blocking gateway calls (path synthesis, quiz generation, tutor replies)
are awaited inside `dispatch()`. Topic suggestions load in the
background; call `drain()` to wait for them.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Set

from edupal_tutor.events import (
    ALL_EFFECTS,
    ClearSession,
    FetchSuggestions,
    GenerateQuiz,
    PathSynthesisFailed,
    PathSynthesized,
    PersistSession,
    QuizGenerated,
    QuizGenerationFailed,
    RequestTutorReply,
    ResetScroll,
    SessionRestored,
    SuggestionsLoaded,
    SynthesizePath,
    TutorReplied,
    TutorReplyFailed,
)
from edupal_tutor.session_machine import transition
from edupal_tutor.session_state import AppState

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TutorApp:
    """
    Runs one learner's session.

    Usage:
        app = TutorApp(gateway, SessionManager())
        await app.restore()
        await app.dispatch(Start())
    """

    def __init__(self, gateway, session_manager, clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize the app.

        Args:
            gateway: LearningGateway (or anything with the same four coroutines)
            session_manager: SessionManager used for persistence
            clock: Returns the current time (defaults to UTC now)
        """
        self.gateway = gateway
        self.session_manager = session_manager
        self.clock = clock or _utc_now
        self.state = AppState()
        self.scroll_to_top = False
        self._background_tasks: Set[asyncio.Task] = set()
        self._effect_runners = {
            SynthesizePath: self._run_synthesize_path,
            FetchSuggestions: self._run_fetch_suggestions,
            RequestTutorReply: self._run_tutor_reply,
            GenerateQuiz: self._run_generate_quiz,
            PersistSession: self._run_persist,
            ClearSession: self._run_clear,
            ResetScroll: self._run_reset_scroll,
        }
        if set(self._effect_runners) != set(ALL_EFFECTS):
            raise RuntimeError("every effect needs a runner")

    def now(self) -> datetime:
        return self.clock()

    async def restore(self) -> bool:
        """
        Restore the saved session, if any.

        Returns:
            True if the app moved to the dashboard
        """
        saved = await self.session_manager.load()
        if saved is None:
            logger.info("[TutorApp] No saved session, starting at welcome")
            return False
        profile, path = saved
        await self.dispatch(SessionRestored(profile=profile, path=path))
        return self.state.profile is not None

    async def dispatch(self, event) -> AppState:
        """Apply an event and run the effects it produces."""
        result = transition(self.state, event)
        self.state = result.state
        for effect in result.effects:
            await self._effect_runners[type(effect)](effect)
        return self.state

    async def drain(self) -> None:
        """Wait for background suggestion loads to finish."""
        while self._background_tasks:
            tasks = list(self._background_tasks)
            await asyncio.gather(*tasks)
            self._background_tasks.difference_update(tasks)

    def consume_scroll_hint(self) -> bool:
        """Return and reset the scroll-to-top hint raised by a topic change."""
        hint = self.scroll_to_top
        self.scroll_to_top = False
        return hint

    # ==================== Effect runners ====================

    async def _run_synthesize_path(self, effect: SynthesizePath) -> None:
        try:
            path = await self.gateway.synthesize_path(effect.profile)
        except Exception as e:
            logger.error(f"❌ [TutorApp] Path synthesis raised: {e}", exc_info=True)
            await self.dispatch(PathSynthesisFailed(purpose=effect.purpose, error=str(e)))
            return
        await self.dispatch(PathSynthesized(purpose=effect.purpose, profile=effect.profile, path=path))

    async def _run_fetch_suggestions(self, effect: FetchSuggestions) -> None:
        task = asyncio.create_task(self._load_suggestions(effect))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _load_suggestions(self, effect: FetchSuggestions) -> None:
        try:
            titles = await self.gateway.suggest_topics(effect.profile)
        except Exception as e:
            logger.warning(f"⚠️ [TutorApp] Suggestions failed: {e}")
            return
        # Suggestions for a profile that has since been replaced are dropped
        if self.state.profile is None or self.state.profile.topic != effect.profile.topic:
            logger.debug("[TutorApp] Discarding suggestions for a stale topic")
            return
        await self.dispatch(SuggestionsLoaded(titles=tuple(titles)))

    async def _run_tutor_reply(self, effect: RequestTutorReply) -> None:
        try:
            content = await self.gateway.tutor_reply(effect.transcript, effect.profile, effect.module_title)
        except Exception as e:
            logger.error(f"❌ [TutorApp] Tutor reply raised: {e}")
            await self.dispatch(TutorReplyFailed(session=effect.session, error=str(e)))
            return
        await self.dispatch(TutorReplied(session=effect.session, content=content, at=self.now()))

    async def _run_generate_quiz(self, effect: GenerateQuiz) -> None:
        try:
            quiz = await self.gateway.generate_quiz(effect.profile, effect.module_title)
        except Exception as e:
            logger.error(f"❌ [TutorApp] Quiz generation failed: {e}")
            await self.dispatch(QuizGenerationFailed(error=str(e)))
            return
        await self.dispatch(QuizGenerated(quiz=quiz))

    async def _run_persist(self, effect: PersistSession) -> None:
        if not await self.session_manager.save(effect.profile, effect.path):
            logger.warning("⚠️ [TutorApp] Session not persisted; it will be lost on reload")

    async def _run_clear(self, effect: ClearSession) -> None:
        await self.session_manager.clear()

    async def _run_reset_scroll(self, effect: ResetScroll) -> None:
        self.scroll_to_top = True
