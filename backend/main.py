"""
FastAPI Backend for EduPal

Exposes the learning flow as a REST API. One process-wide TutorApp holds
the learner's session; every endpoint feeds one event into it and
returns a snapshot of the resulting state.

Persistence:
- Supabase key/value table when SUPABASE_URL / SUPABASE_SERVICE_KEY are set
- otherwise a JSON file (EDUPAL_STORE_PATH)
"""

from fastapi import FastAPI, HTTPException, Depends
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
import os
import sys
import asyncio
import signal

# Setup enhanced logging with pretty formatting
from lib.logger import setup_logging, get_logger

setup_logging(use_colors=True)

logger = get_logger("backend.main")

# Add the edupal_tutor package to Python path
backend_dir = os.path.dirname(os.path.abspath(__file__))
project_root = os.path.dirname(backend_dir)

package_src = os.path.join(project_root, 'edupal_tutor', 'src')
if os.path.exists(package_src) and package_src not in sys.path:
    sys.path.insert(0, package_src)

from lib.supabase_client import get_supabase_client

from edupal_tutor.ai_gateway import LearningGateway
from edupal_tutor.events import (
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
from edupal_tutor.media import embed_url, youtube_video_id
from edupal_tutor.models import (
    KnowledgeLevel,
    LearningGoal,
    LearningStyle,
    Module,
    SessionFeedback,
    message_to_dict,
    module_to_dict,
    path_to_dict,
    profile_to_dict,
    new_profile_draft,
)
from edupal_tutor.session_manager import DEFAULT_TABLE, JsonFileStore, SessionManager
from edupal_tutor.session_state import QuizProgress
from edupal_tutor.tutor_app import TutorApp

# Singleton TutorApp: one learner, one writer
_tutor_app: Optional[TutorApp] = None
_tutor_app_lock = asyncio.Lock()


def build_session_manager() -> SessionManager:
    """Supabase store when configured, JSON file otherwise."""
    supabase = get_supabase_client()
    if supabase is not None:
        table = os.getenv("EDUPAL_STORE_TABLE", DEFAULT_TABLE)
        logger.info("[API] Persisting sessions to Supabase", data={"table": table})
        return SessionManager(supabase_client=supabase, table=table)
    store_path = os.getenv("EDUPAL_STORE_PATH", ".edupal_store.json")
    logger.info("[API] Persisting sessions to file", data={"path": store_path})
    return SessionManager(store=JsonFileStore(store_path))


async def get_tutor_app() -> TutorApp:
    """Get or create the singleton TutorApp, restoring any saved session."""
    global _tutor_app
    if _tutor_app is None:
        async with _tutor_app_lock:
            if _tutor_app is None:
                tutor_app = TutorApp(LearningGateway(), build_session_manager())
                await tutor_app.restore()
                _tutor_app = tutor_app
    return _tutor_app


app = FastAPI(
    title="EduPal API",
    description="Adaptive learning paths, Socratic tutoring and module quizzes",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== Pydantic Models ====================

class OnboardingRequest(BaseModel):
    name: str
    class_info: str
    subject: str
    topic: str
    level: KnowledgeLevel = KnowledgeLevel.BEGINNER
    goal: LearningGoal = LearningGoal.CONCEPT_UNDERSTANDING
    style: LearningStyle = LearningStyle.MIXED
    time_per_day: int = Field(default=1, ge=1)
    language: str = "English"


class TopicRequest(BaseModel):
    title: str


class ChatRequest(BaseModel):
    content: str


class FeedbackRequest(BaseModel):
    rating: SessionFeedback


class AnswerRequest(BaseModel):
    option_index: int


# ==================== Snapshot ====================

def module_view(module: Optional[Module]) -> Optional[Dict[str, Any]]:
    if module is None:
        return None
    data = module_to_dict(module)
    video_id = youtube_video_id(module.video_url) if module.video_url else None
    data["videoId"] = video_id
    data["embedUrl"] = embed_url(video_id) if video_id else None
    return data


def quiz_view(progress: Optional[QuizProgress]) -> Optional[Dict[str, Any]]:
    """Active quiz. Correct answers stay hidden until the quiz is finished."""
    if progress is None:
        return None
    current = progress.current_question
    data = {
        "title": progress.quiz.title,
        "currentIndex": progress.current_index,
        "total": len(progress.quiz.questions),
        "answers": list(progress.answers),
        "finished": progress.is_finished,
        "currentQuestion": {
            "question": current.question,
            "options": list(current.options),
        } if current is not None else None,
        "result": None,
    }
    if progress.result is not None:
        data["result"] = {
            "score": progress.result.score,
            "total": progress.result.total,
            "passed": progress.result.passed,
        }
        data["review"] = [
            {
                "question": q.question,
                "options": list(q.options),
                "correctAnswer": q.correct_answer,
                "explanation": q.explanation,
            }
            for q in progress.quiz.questions
        ]
    return data


def snapshot(tutor_app: TutorApp) -> Dict[str, Any]:
    state = tutor_app.state
    path = None
    if state.path is not None:
        path = path_to_dict(state.path)
        path["progressPercent"] = state.path.progress_percent()
    return {
        "view": state.view.value,
        "isLoading": state.is_loading,
        "loadingMessage": state.loading_message,
        "awaitingReply": state.awaiting_reply,
        "profile": profile_to_dict(state.profile) if state.profile is not None else None,
        "path": path,
        "currentModule": module_view(state.current_module),
        "suggestions": list(state.suggestions),
        "transcript": [message_to_dict(m) for m in state.transcript],
        "quiz": quiz_view(state.active_quiz),
        "scrollToTop": tutor_app.consume_scroll_hint(),
    }


async def apply_event(tutor_app: TutorApp, event, name: str) -> Dict[str, Any]:
    """Dispatch one event and return the new snapshot."""
    before = tutor_app.state.view.value
    try:
        await tutor_app.dispatch(event)
    except Exception as e:
        logger.error(f"[API] {name} failed", error=e)
        raise HTTPException(status_code=500, detail=f"Error handling {name}: {str(e)}")
    logger.transition(name, before, tutor_app.state.view.value)
    return snapshot(tutor_app)


# ==================== API Endpoints ====================

@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "EduPal API",
        "version": "1.0.0",
        "supabase_connected": get_supabase_client() is not None,
    }


@app.get("/api/state")
async def get_state(tutor_app: TutorApp = Depends(get_tutor_app)):
    return snapshot(tutor_app)


@app.post("/api/start")
async def start(tutor_app: TutorApp = Depends(get_tutor_app)):
    return await apply_event(tutor_app, Start(), "start")


@app.post("/api/onboarding")
async def complete_onboarding(request: OnboardingRequest, tutor_app: TutorApp = Depends(get_tutor_app)):
    """Submit the onboarding form; builds the first learning path."""
    draft = new_profile_draft(
        name=request.name,
        class_info=request.class_info,
        subject=request.subject,
        topic=request.topic,
        level=request.level,
        goal=request.goal,
        style=request.style,
        time_per_day=request.time_per_day,
        language=request.language,
    )
    return await apply_event(tutor_app, CompleteOnboarding(draft=draft), "completeOnboarding")


@app.post("/api/topics/select")
async def select_topic(request: TopicRequest, tutor_app: TutorApp = Depends(get_tutor_app)):
    """Switch to a suggested topic; replaces the learning path."""
    return await apply_event(tutor_app, SelectSuggestedTopic(title=request.title), "selectSuggestedTopic")


@app.post("/api/modules/{module_id}/select")
async def select_module(module_id: str, tutor_app: TutorApp = Depends(get_tutor_app)):
    event = SelectModule(module_id=module_id, at=tutor_app.now())
    return await apply_event(tutor_app, event, "selectModule")


@app.post("/api/chat")
async def chat(request: ChatRequest, tutor_app: TutorApp = Depends(get_tutor_app)):
    """Send a message to the tutor; the snapshot includes the reply."""
    event = SendMessage(text=request.content, at=tutor_app.now())
    return await apply_event(tutor_app, event, "sendMessage")


@app.post("/api/session/end")
async def end_session(tutor_app: TutorApp = Depends(get_tutor_app)):
    return await apply_event(tutor_app, EndSession(at=tutor_app.now()), "endSession")


@app.post("/api/feedback")
async def submit_feedback(request: FeedbackRequest, tutor_app: TutorApp = Depends(get_tutor_app)):
    return await apply_event(tutor_app, SubmitFeedback(rating=request.rating), "submitFeedback")


@app.post("/api/quiz/start")
async def start_quiz(tutor_app: TutorApp = Depends(get_tutor_app)):
    return await apply_event(tutor_app, StartQuiz(), "startQuiz")


@app.post("/api/quiz/answer")
async def answer_question(request: AnswerRequest, tutor_app: TutorApp = Depends(get_tutor_app)):
    event = AnswerAndAdvance(option_index=request.option_index)
    return await apply_event(tutor_app, event, "answerAndAdvance")


@app.post("/api/quiz/exit")
async def exit_quiz(tutor_app: TutorApp = Depends(get_tutor_app)):
    return await apply_event(tutor_app, ExitQuiz(), "exitQuiz")


@app.post("/api/logout")
async def logout(tutor_app: TutorApp = Depends(get_tutor_app)):
    """Forget the learner and delete the saved session."""
    return await apply_event(tutor_app, Logout(), "logout")


@app.on_event("startup")
async def startup_event():
    logger.section("EduPal API startup", {
        "model": os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
        "storage": "supabase" if get_supabase_client() is not None else "file",
    })


@app.on_event("shutdown")
async def shutdown_event():
    if _tutor_app is not None:
        await _tutor_app.drain()
    logger.info("🛑 EduPal API stopped")


if __name__ == "__main__":
    import uvicorn

    def handle_exit(*args):
        """Handle graceful shutdown."""
        logger.section("SERVER SHUTDOWN", {"reason": "signal received"})
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_exit)
    signal.signal(signal.SIGTERM, handle_exit)

    try:
        uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
    except KeyboardInterrupt:
        logger.info("🛑 Server stopped.")
        sys.exit(0)
