"""
Unit Tests for the Learning Gateway

Uses a fake chat-completions client so no request leaves the process.
"""

import json
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from edupal_tutor.ai_gateway import (
    FALLBACK_REASONING,
    TUTOR_NUDGE,
    GatewayError,
    LearningGateway,
    fallback_path,
    fallback_suggestions,
)
from edupal_tutor.models import Message, MessageRole, ModuleStatus


class FakeCompletions:
    """Returns queued contents (or raises queued exceptions) in order."""

    def __init__(self, outputs):
        self.outputs = list(outputs)
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        output = self.outputs.pop(0)
        if isinstance(output, Exception):
            raise output
        if not isinstance(output, str) and output is not None:
            output = json.dumps(output)
        message = SimpleNamespace(content=output)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def make_gateway(*outputs):
    completions = FakeCompletions(outputs)
    client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return LearningGateway(llm_client=client, model="test-model"), completions


def path_payload(**overrides):
    payload = {
        "modules": [
            {
                "id": "m1",
                "title": "Qubits",
                "description": "Two-level systems.",
                "topics": ["Superposition", "Bloch sphere"],
                "videoUrl": "https://www.youtube.com/watch?v=0pThnRneDjw",
            },
            {
                "id": "m2",
                "title": "Gates",
                "description": "Unitary operations.",
                "topics": ["Hadamard"],
                "videoUrl": "https://www.youtube.com/results?search_query=gates",
            },
        ],
        "estimatedWeeks": 6,
        "personalizedReasoning": "Starts from physical intuition.",
        "sources": [
            {"uri": "https://qiskit.org/learn", "title": "Qiskit"},
            {"uri": "https://arxiv.org/abs/quant-ph/0000000"},
            {"title": "No link"},
        ],
    }
    payload.update(overrides)
    return payload


def quiz_payload(count=5):
    return {
        "title": "Qubits check",
        "questions": [
            {"question": f"Q{i}?", "options": ["a", "b", "c", "d"], "correctAnswer": i % 4, "explanation": "e"}
            for i in range(count)
        ],
    }


class TestConfiguration:

    def test_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ValueError):
            LearningGateway()

    def test_model_from_environment(self, monkeypatch):
        monkeypatch.setenv("OPENAI_MODEL", "gpt-test")
        gateway = LearningGateway(llm_client=SimpleNamespace())
        assert gateway.model == "gpt-test"


class TestSynthesizePath:

    @pytest.mark.asyncio
    async def test_parses_modules(self, profile):
        gateway, completions = make_gateway(path_payload())
        path = await gateway.synthesize_path(profile)

        assert [m.id for m in path.modules] == ["m1", "m2"]
        assert all(m.status is ModuleStatus.CURRENT for m in path.modules)
        assert path.estimated_weeks == 6
        assert path.modules[0].topics == ("Superposition", "Bloch sphere")
        assert completions.requests[0]["response_format"] == {"type": "json_object"}
        assert completions.requests[0]["model"] == "test-model"

    @pytest.mark.asyncio
    async def test_drops_unusable_video_links(self, profile):
        gateway, _ = make_gateway(path_payload())
        path = await gateway.synthesize_path(profile)
        assert path.modules[0].video_url == "https://www.youtube.com/watch?v=0pThnRneDjw"
        assert path.modules[1].video_url is None

    @pytest.mark.asyncio
    async def test_attaches_sources_to_every_module(self, profile):
        gateway, _ = make_gateway(path_payload())
        path = await gateway.synthesize_path(profile)
        for module in path.modules:
            assert [s.title for s in module.sources] == ["Qiskit", "Educational Context"]

    @pytest.mark.asyncio
    async def test_duplicate_ids_are_renumbered(self, profile):
        payload = path_payload()
        payload["modules"][1]["id"] = "m1"
        gateway, _ = make_gateway(payload)
        path = await gateway.synthesize_path(profile)
        assert [m.id for m in path.modules] == ["m1", "m2"]

    @pytest.mark.asyncio
    async def test_code_fenced_json(self, profile):
        content = "```json\n" + json.dumps(path_payload()) + "\n```"
        gateway, _ = make_gateway(content)
        path = await gateway.synthesize_path(profile)
        assert len(path.modules) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("output", [
        RuntimeError("network down"),
        "not json at all",
        {"modules": []},
        {"modules": [{"title": "No description"}], "estimatedWeeks": 2, "personalizedReasoning": "x"},
    ])
    async def test_failures_fall_back(self, profile, output):
        gateway, _ = make_gateway(output)
        path = await gateway.synthesize_path(profile)
        assert path == fallback_path(profile)

    def test_fallback_path(self, profile):
        path = fallback_path(profile)
        assert path.estimated_weeks == 4
        assert path.personalized_reasoning == FALLBACK_REASONING
        module = path.modules[0]
        assert module.id == "m1"
        assert module.title == "Foundations of Quantum Computing"
        assert module.topics == ("Terminology", "Core Concepts", "Introductory Theory")


class TestSuggestTopics:

    @pytest.mark.asyncio
    async def test_cleans_and_truncates(self, profile):
        titles = ["  A  ", "", "B", 7, "C", "D", "E", "F"]
        gateway, _ = make_gateway({"titles": titles})
        assert await gateway.suggest_topics(profile) == ["A", "B", "C", "D", "E"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("output", [RuntimeError("quota"), {"titles": []}, {"other": 1}])
    async def test_falls_back_to_templates(self, profile, output):
        gateway, _ = make_gateway(output)
        assert await gateway.suggest_topics(profile) == fallback_suggestions(profile)

    def test_templates(self, profile):
        assert fallback_suggestions(profile) == [
            "Advanced Quantum Computing Strategies",
            "The Ethics of Quantum Computing",
            "Practical Quantum Computing Applications",
            "Future Trends in Quantum Computing",
            "Quantum Computing Masterclass",
        ]


class TestTutorReply:

    @pytest.mark.asyncio
    async def test_maps_roles(self, profile):
        at = datetime(2024, 5, 1, tzinfo=timezone.utc)
        transcript = (
            Message(role=MessageRole.ASSISTANT, content="Hello", timestamp=at),
            Message(role=MessageRole.USER, content="Hi", timestamp=at),
            Message(role=MessageRole.SYSTEM, content="note", timestamp=at),
        )
        gateway, completions = make_gateway("  What is a qubit?  ")
        reply = await gateway.tutor_reply(transcript, profile, "Qubits")

        assert reply == "What is a qubit?"
        messages = completions.requests[0]["messages"]
        assert messages[0]["role"] == "system"
        assert "Qubits" in messages[0]["content"]
        assert "English" in messages[0]["content"]
        assert [m["role"] for m in messages[1:]] == ["assistant", "user", "user"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("output", [RuntimeError("timeout"), "", None])
    async def test_nudge_on_failure(self, profile, output):
        gateway, _ = make_gateway(output)
        assert await gateway.tutor_reply((), profile, "Qubits") == TUTOR_NUDGE


class TestGenerateQuiz:

    @pytest.mark.asyncio
    async def test_parses_quiz(self, profile):
        gateway, _ = make_gateway(quiz_payload())
        quiz = await gateway.generate_quiz(profile, "Qubits")
        assert quiz.title == "Qubits check"
        assert len(quiz.questions) == 5
        assert quiz.questions[1].correct_answer == 1

    @pytest.mark.asyncio
    async def test_wrong_question_count(self, profile):
        gateway, _ = make_gateway(quiz_payload(count=3))
        with pytest.raises(GatewayError):
            await gateway.generate_quiz(profile, "Qubits")

    @pytest.mark.asyncio
    async def test_bad_answer_index(self, profile):
        payload = quiz_payload()
        payload["questions"][0]["correctAnswer"] = 9
        gateway, _ = make_gateway(payload)
        with pytest.raises(GatewayError):
            await gateway.generate_quiz(profile, "Qubits")

    @pytest.mark.asyncio
    async def test_invalid_json(self, profile):
        gateway, _ = make_gateway("{broken")
        with pytest.raises(GatewayError):
            await gateway.generate_quiz(profile, "Qubits")

    @pytest.mark.asyncio
    async def test_provider_errors_propagate(self, profile):
        gateway, _ = make_gateway(RuntimeError("down"))
        with pytest.raises(RuntimeError):
            await gateway.generate_quiz(profile, "Qubits")
