"""
End-to-End Tests for the Learning Flow

Drives TutorApp with a scripted gateway and an in-memory store:
- onboarding -> dashboard with suggestions
- tutoring session -> feedback -> dashboard
- quiz pass and fail
- topic change
- reload / restore and logout
"""

import pytest

from edupal_tutor import tutor_app
from edupal_tutor.ai_gateway import GatewayError
from edupal_tutor.events import (
    ALL_EFFECTS,
    AnswerAndAdvance,
    CompleteOnboarding,
    EndSession,
    ExitQuiz,
    Logout,
    SelectModule,
    SelectSuggestedTopic,
    SendMessage,
    Start,
    StartQuiz,
    SubmitFeedback,
)
from edupal_tutor.models import MessageRole, ModuleStatus, SessionFeedback, encode_profile
from edupal_tutor.session_manager import PATH_KEY, PROFILE_KEY, InMemoryStore, SessionManager
from edupal_tutor.session_state import View
from edupal_tutor.tutor_app import TutorApp


@pytest.fixture
def app(fake_gateway, session_manager, clock):
    return TutorApp(fake_gateway, session_manager, clock=clock)


async def onboard(app, profile):
    await app.dispatch(Start())
    await app.dispatch(CompleteOnboarding(draft=profile))
    await app.drain()


class TestLearningFlow:
    """Test suite for the complete learner journey."""

    @pytest.mark.asyncio
    async def test_onboarding_reaches_dashboard(self, app, profile, fake_gateway, memory_store):
        await onboard(app, profile)

        state = app.state
        assert state.view is View.DASHBOARD
        assert state.profile == profile
        assert state.path == fake_gateway.path
        assert state.current_module.id == "m1"
        assert not state.is_loading
        assert state.suggestions == ("Quantum Error Correction", "Quantum Cryptography")
        assert memory_store.get(PROFILE_KEY) is not None
        assert memory_store.get(PATH_KEY) is not None

    @pytest.mark.asyncio
    async def test_onboarding_failure_stays_on_onboarding(self, app, profile, fake_gateway):
        fake_gateway.path_error = RuntimeError("provider down")
        await onboard(app, profile)
        assert app.state.view is View.ONBOARDING
        assert not app.state.is_loading
        assert app.state.profile is None

    @pytest.mark.asyncio
    async def test_tutoring_session(self, app, profile, fake_gateway, clock):
        await onboard(app, profile)

        await app.dispatch(SelectModule(module_id="m2", at=clock()))
        assert app.state.view is View.TUTORING

        clock.advance(minutes=1)
        await app.dispatch(SendMessage(text="Superposition means both at once?", at=clock()))
        transcript = app.state.transcript
        assert [m.role for m in transcript] == [MessageRole.ASSISTANT, MessageRole.USER, MessageRole.ASSISTANT]
        assert transcript[-1].content == fake_gateway.reply
        assert not app.state.awaiting_reply
        assert ("tutor_reply", "Module 2", 2) in fake_gateway.calls

        clock.advance(minutes=4)
        await app.dispatch(EndSession(at=clock()))
        assert app.state.view is View.FEEDBACK
        assert app.state.profile.performance.time_spent_minutes == 5

        await app.dispatch(SubmitFeedback(rating=SessionFeedback.MEDIUM))
        assert app.state.view is View.DASHBOARD
        assert app.state.profile.performance.last_feedback is SessionFeedback.MEDIUM

    @pytest.mark.asyncio
    async def test_tutor_failure_unblocks_input(self, app, profile, fake_gateway, clock):
        await onboard(app, profile)
        await app.dispatch(SelectModule(module_id="m1", at=clock()))
        fake_gateway.reply_error = RuntimeError("socket closed")

        await app.dispatch(SendMessage(text="Hello?", at=clock()))
        assert not app.state.awaiting_reply
        assert app.state.transcript[-1].role is MessageRole.USER

    @pytest.mark.asyncio
    async def test_passing_quiz_completes_module(self, app, profile):
        await onboard(app, profile)

        await app.dispatch(StartQuiz())
        assert app.state.view is View.QUIZ
        for option in (0, 1, 2, 3, 0):
            await app.dispatch(AnswerAndAdvance(option_index=option))

        result = app.state.active_quiz.result
        assert result.score == 5 and result.passed
        assert app.state.path.find_module("m1").status is ModuleStatus.COMPLETED
        assert app.state.profile.performance.completed_topics == ("Module 1",)

        saved_profile, saved_path = await app.session_manager.load()
        assert saved_path.find_module("m1").status is ModuleStatus.COMPLETED
        assert saved_profile.performance.quiz_scores == (5,)

        await app.dispatch(ExitQuiz())
        assert app.state.view is View.DASHBOARD

    @pytest.mark.asyncio
    async def test_failing_quiz_keeps_module_open(self, app, profile):
        await onboard(app, profile)
        await app.dispatch(StartQuiz())
        for option in (0, 1, 2, 0, 1):
            await app.dispatch(AnswerAndAdvance(option_index=option))

        assert not app.state.active_quiz.result.passed
        assert app.state.path.find_module("m1").status is ModuleStatus.CURRENT
        assert app.state.profile.performance.quiz_scores == (3,)
        assert app.state.profile.performance.average_accuracy == 60

    @pytest.mark.asyncio
    async def test_quiz_generation_failure(self, app, profile, fake_gateway):
        await onboard(app, profile)
        fake_gateway.quiz_error = GatewayError("Expected 5 questions, got 3")

        await app.dispatch(StartQuiz())
        assert app.state.view is View.DASHBOARD
        assert not app.state.is_loading
        assert app.state.active_quiz is None

    @pytest.mark.asyncio
    async def test_topic_change_replaces_path(self, app, profile, fake_gateway, make_path):
        await onboard(app, profile)
        fake_gateway.path = make_path(count=2, prefix="Crypto")

        await app.dispatch(SelectSuggestedTopic(title="Quantum Cryptography"))
        await app.drain()

        assert app.state.profile.topic == "Quantum Cryptography"
        assert [m.title for m in app.state.path.modules] == ["Crypto 1", "Crypto 2"]
        assert app.state.current_module.title == "Crypto 1"
        assert app.consume_scroll_hint()
        assert not app.consume_scroll_hint()
        assert fake_gateway.calls[-1] == ("suggest_topics", "Quantum Cryptography")


class TestReload:
    """Persistence across app instances."""

    @pytest.mark.asyncio
    async def test_restore_after_reload(self, app, profile, fake_gateway, session_manager, clock):
        await onboard(app, profile)
        await app.dispatch(SelectModule(module_id="m1", at=clock()))
        await app.dispatch(EndSession(at=clock()))
        await app.dispatch(SubmitFeedback(rating=SessionFeedback.EASY))

        reloaded = TutorApp(fake_gateway, SessionManager(store=session_manager.store), clock=clock)
        assert await reloaded.restore()
        await reloaded.drain()

        assert reloaded.state.view is View.DASHBOARD
        assert reloaded.state.profile.performance.last_feedback is SessionFeedback.EASY
        assert reloaded.state.current_module.id == "m1"
        assert reloaded.state.transcript == ()
        assert reloaded.state.suggestions

    @pytest.mark.asyncio
    async def test_nothing_to_restore(self, app):
        assert not await app.restore()
        assert app.state.view is View.WELCOME

    @pytest.mark.asyncio
    async def test_malformed_saved_path_starts_at_welcome(self, fake_gateway, profile, clock):
        store = InMemoryStore({
            PROFILE_KEY: encode_profile(profile),
            PATH_KEY: '{"modules": ["x"], "estimatedWeeks": 4, "personalizedReasoning": "r"}',
        })
        app = TutorApp(fake_gateway, SessionManager(store=store), clock=clock)
        assert not await app.restore()
        assert app.state.view is View.WELCOME
        assert app.state.profile is None

    @pytest.mark.asyncio
    async def test_logout_clears_storage(self, app, profile, memory_store):
        await onboard(app, profile)
        await app.dispatch(Logout())

        assert app.state.view is View.WELCOME
        assert app.state.profile is None
        assert memory_store.get(PROFILE_KEY) is None
        assert memory_store.get(PATH_KEY) is None
        assert not await app.restore()


class TestEffectRunners:

    def test_every_effect_has_a_runner(self, app):
        assert set(app._effect_runners) == set(ALL_EFFECTS)

    def test_missing_runner_is_rejected(self, fake_gateway, session_manager, monkeypatch):
        monkeypatch.setattr(tutor_app, "ALL_EFFECTS", tutor_app.ALL_EFFECTS + (object,))
        with pytest.raises(RuntimeError):
            TutorApp(fake_gateway, session_manager)
