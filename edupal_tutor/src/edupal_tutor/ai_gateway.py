"""
Learning Gateway - generative AI calls

Four request/response operations over the learner's profile:

- synthesize_path: personalized learning path (falls back to a single module)
- suggest_topics: up to 5 related course titles (falls back to templates)
- tutor_reply: one Socratic tutor turn (falls back to a generic nudge)
- generate_quiz: a 5-question quiz (raises GatewayError on failure)

Uses the OpenAI chat completions API in JSON mode.
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional, Sequence

from dotenv import load_dotenv
from openai import AsyncOpenAI

from edupal_tutor.media import youtube_video_id
from edupal_tutor.models import (
    QUESTIONS_PER_QUIZ,
    LearningPath,
    Message,
    MessageRole,
    Module,
    ModuleStatus,
    Quiz,
    Source,
    UserProfile,
    dict_to_module,
    dict_to_quiz,
)

load_dotenv()

logger = logging.getLogger(__name__)


MAX_SUGGESTIONS = 5
FALLBACK_VIDEO_URL = "https://www.youtube.com/watch?v=0pThnRneDjw"
FALLBACK_REASONING = "Fallback sequence activated due to search constraints. Focusing on core mastery."
TUTOR_NUDGE = "That's an interesting observation. How might we test that hypothesis?"
DEFAULT_SOURCE_TITLE = "Educational Context"


class GatewayError(Exception):
    """Raised when the provider returns content that cannot be used."""


def fallback_path(profile: UserProfile) -> LearningPath:
    """Deterministic single-module path used when synthesis fails."""
    return LearningPath(
        modules=(
            Module(
                id="m1",
                title=f"Foundations of {profile.topic}",
                description="A comprehensive overview of the fundamental principles.",
                status=ModuleStatus.CURRENT,
                topics=("Terminology", "Core Concepts", "Introductory Theory"),
                video_url=FALLBACK_VIDEO_URL,
            ),
        ),
        estimated_weeks=4,
        personalized_reasoning=FALLBACK_REASONING,
    )


def fallback_suggestions(profile: UserProfile) -> List[str]:
    topic = profile.topic
    return [
        f"Advanced {topic} Strategies",
        f"The Ethics of {topic}",
        f"Practical {topic} Applications",
        f"Future Trends in {topic}",
        f"{topic} Masterclass",
    ]


def _strip_code_fence(content: str) -> str:
    content = content.strip()
    if content.startswith("```"):
        content = content.split("```")[1]
        if content.startswith("json"):
            content = content[4:]
    return content.strip()


class LearningGateway:
    """
    Client for the generative AI provider.

    The tutoring flow treats every call as a fallible remote call; only
    generate_quiz lets failures escape.
    """

    def __init__(self, llm_client=None, model: Optional[str] = None, timeout: Optional[float] = None):
        """
        Initialize the gateway.

        Args:
            llm_client: AsyncOpenAI-compatible client (built from the environment if omitted)
            model: Chat model name (defaults to OPENAI_MODEL or gpt-4o-mini)
            timeout: Request timeout in seconds (defaults to EDUPAL_GATEWAY_TIMEOUT or 60)
        """
        if llm_client is None:
            api_key = os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise ValueError("OPENAI_API_KEY not found in environment variables")
            if timeout is None:
                timeout = float(os.getenv("EDUPAL_GATEWAY_TIMEOUT", "60"))
            llm_client = AsyncOpenAI(api_key=api_key, timeout=timeout)
        self.llm_client = llm_client
        self.model = model or os.getenv("OPENAI_MODEL", "gpt-4o-mini")

    async def _complete_json(self, prompt: str, temperature: float = 0.7, max_tokens: int = 2000) -> Dict[str, Any]:
        response = await self.llm_client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=temperature,
            max_tokens=max_tokens,
            response_format={"type": "json_object"}
        )
        content = _strip_code_fence(response.choices[0].message.content or "")
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise GatewayError(f"Provider returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise GatewayError(f"Expected a JSON object, got {type(data).__name__}")
        return data

    # ==================== Learning path ====================

    async def synthesize_path(self, profile: UserProfile) -> LearningPath:
        """
        Generate a learning path for the profile's topic.

        Never raises: any failure returns `fallback_path(profile)`.
        """
        prompt = f"""You design university-grade curricula and curate video lessons.

Student: {profile.name}
Topic: {profile.topic} (field: {profile.subject})
Level: {profile.level.value}
Goal: {profile.goal.value}
Preferred format: {profile.style.value}
Language: {profile.language}

Build a 5-module learning path for this topic, ordered from foundations to mastery.
Every module needs one direct YouTube watch link (https://www.youtube.com/watch?v=...)
to a lesson that covers exactly that module, preferably from Khan Academy, MIT OpenCourseWare,
CrashCourse, TED-Ed, 3Blue1Brown, Veritasium or Stanford. No search pages or placeholders.

Return JSON:
{{
    "modules": [
        {{"id": "m1", "title": "...", "description": "...", "topics": ["...", "..."], "videoUrl": "https://www.youtube.com/watch?v=..."}}
    ],
    "estimatedWeeks": 4,
    "personalizedReasoning": "why this path fits the student, at most 150 characters",
    "sources": [{{"uri": "https://...", "title": "..."}}]
}}"""
        try:
            data = await self._complete_json(prompt)
            path = self._parse_path(data)
            logger.info(f"✅ [LearningGateway] Synthesized {len(path.modules)} modules for '{profile.topic}'")
            return path
        except Exception as e:
            logger.error(f"❌ [LearningGateway] Path generation failed, using fallback: {e}")
            return fallback_path(profile)

    def _parse_sources(self, raw: Any) -> Optional[tuple]:
        if not isinstance(raw, list):
            return None
        sources = []
        for item in raw:
            if not isinstance(item, dict) or not item.get("uri"):
                continue
            sources.append(Source(uri=str(item["uri"]), title=str(item.get("title") or DEFAULT_SOURCE_TITLE)))
        return tuple(sources) or None

    def _parse_path(self, data: Dict[str, Any]) -> LearningPath:
        raw_modules = data.get("modules")
        if not isinstance(raw_modules, list) or not raw_modules:
            raise GatewayError("Learning path has no modules")
        weeks = data.get("estimatedWeeks")
        if isinstance(weeks, bool) or not isinstance(weeks, (int, float)):
            raise GatewayError("Learning path has no estimatedWeeks")
        reasoning = data.get("personalizedReasoning")
        if not isinstance(reasoning, str):
            raise GatewayError("Learning path has no personalizedReasoning")

        sources = self._parse_sources(data.get("sources"))
        modules = []
        seen_ids = set()
        for index, raw in enumerate(raw_modules):
            if not isinstance(raw, dict):
                raise GatewayError(f"Module {index} is not an object")
            raw = {k: v for k, v in raw.items() if k not in ("status", "sources")}
            raw.setdefault("id", f"m{index + 1}")
            try:
                module = dict_to_module(raw)
            except (KeyError, TypeError, ValueError) as e:
                raise GatewayError(f"Module {index} is malformed: {e}") from e

            module_id = module.id
            if not module_id or module_id in seen_ids:
                module_id = f"m{index + 1}"
                while module_id in seen_ids:
                    module_id = f"{module_id}_{index}"
            seen_ids.add(module_id)

            video_url = module.video_url
            if video_url and youtube_video_id(video_url) is None:
                logger.warning(f"⚠️ [LearningGateway] Dropping unusable video link for '{module.title}': {video_url}")
                video_url = None

            modules.append(Module(
                id=module_id,
                title=module.title,
                description=module.description,
                status=ModuleStatus.CURRENT,
                topics=module.topics,
                video_url=video_url,
                sources=sources,
            ))

        return LearningPath(
            modules=tuple(modules),
            estimated_weeks=weeks,
            personalized_reasoning=reasoning,
        )

    # ==================== Suggestions ====================

    async def suggest_topics(self, profile: UserProfile) -> List[str]:
        """
        Suggest up to 5 related course titles.

        Never raises: failures and empty answers return templated titles.
        """
        prompt = f"""A student at {profile.level.value} level is studying "{profile.topic}".
Suggest 5 distinct, specialized course titles that go deeper into sub-fields of "{profile.topic}"
or closely related areas.

Return JSON: {{"titles": ["...", "...", "...", "...", "..."]}}"""
        try:
            data = await self._complete_json(prompt, temperature=0.8, max_tokens=300)
            raw = data.get("titles")
            if not isinstance(raw, list):
                raise GatewayError("Suggestion list missing")
            titles = [t.strip() for t in raw if isinstance(t, str) and t.strip()][:MAX_SUGGESTIONS]
            if not titles:
                raise GatewayError("Suggestion list is empty")
            return titles
        except Exception as e:
            logger.warning(f"⚠️ [LearningGateway] Suggestions failed, using templates: {e}")
            return fallback_suggestions(profile)

    # ==================== Tutoring ====================

    def _tutor_instructions(self, profile: UserProfile, module_title: str) -> str:
        return f"""You are "EduPal", a Socratic tutor.
Student: {profile.name} ({profile.level.value} level).
Current module: {module_title}.

Rules:
1. Never give the answer directly.
2. Reply only with questions or hints that lead the student to find the answer.
3. Keep every reply under 50 words.
4. Be an encouraging, sharp mentor.
5. Reply in {profile.language}."""

    async def tutor_reply(self, transcript: Sequence[Message], profile: UserProfile, module_title: str) -> str:
        """
        Produce the tutor's next turn for the transcript.

        Never raises: failures and empty replies return TUTOR_NUDGE.
        """
        messages = [{"role": "system", "content": self._tutor_instructions(profile, module_title)}]
        for message in transcript:
            role = "assistant" if message.role is MessageRole.ASSISTANT else "user"
            messages.append({"role": role, "content": message.content})

        try:
            response = await self.llm_client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=0.7,
                max_tokens=200
            )
            content = (response.choices[0].message.content or "").strip()
            return content or TUTOR_NUDGE
        except Exception as e:
            logger.warning(f"⚠️ [LearningGateway] Tutor reply failed, sending nudge: {e}")
            return TUTOR_NUDGE

    # ==================== Quiz ====================

    async def generate_quiz(self, profile: UserProfile, module_title: str) -> Quiz:
        """
        Generate a multiple-choice quiz for a module.

        Raises:
            GatewayError: if the provider output is not a valid 5-question quiz
        """
        prompt = f"""Write a challenging {QUESTIONS_PER_QUIZ}-question multiple-choice quiz on "{module_title}".
Level: {profile.level.value}. Language: {profile.language}.
Each question has 4 options; correctAnswer is the 0-based index of the right option.

Return JSON:
{{
    "title": "...",
    "questions": [
        {{"question": "...", "options": ["...", "...", "...", "..."], "correctAnswer": 0, "explanation": "..."}}
    ]
}}"""
        data = await self._complete_json(prompt, temperature=0.5)
        try:
            quiz = dict_to_quiz(data)
        except (KeyError, TypeError, ValueError) as e:
            raise GatewayError(f"Quiz is malformed: {e}") from e

        if len(quiz.questions) != QUESTIONS_PER_QUIZ:
            raise GatewayError(f"Expected {QUESTIONS_PER_QUIZ} questions, got {len(quiz.questions)}")
        for question in quiz.questions:
            if len(question.options) < 2:
                raise GatewayError(f"Question '{question.question[:40]}' has fewer than 2 options")

        logger.info(f"✅ [LearningGateway] Generated quiz '{quiz.title}' for '{module_title}'")
        return quiz
