"""EduPal adaptive tutoring core: learner model, session state machine, AI gateway."""

from edupal_tutor.ai_gateway import GatewayError, LearningGateway
from edupal_tutor.models import LearningPath, Module, UserProfile, new_profile_draft
from edupal_tutor.session_machine import Transition, transition
from edupal_tutor.session_manager import JsonFileStore, SessionManager, SupabaseStore
from edupal_tutor.session_state import AppState, View
from edupal_tutor.tutor_app import TutorApp

__all__ = [
    "AppState",
    "GatewayError",
    "JsonFileStore",
    "LearningGateway",
    "LearningPath",
    "Module",
    "SessionManager",
    "SupabaseStore",
    "Transition",
    "TutorApp",
    "UserProfile",
    "View",
    "new_profile_draft",
    "transition",
]
