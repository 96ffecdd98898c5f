"""
Unit tests for the judgment service: prompts, reply parsing and the LLM client.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from openai import APIConnectionError, BadRequestError, RateLimitError

from gradeflow.config import Settings
from gradeflow.judgment import (
    JudgmentParseError,
    JudgmentParser,
    JudgmentService,
    LLMClient,
    LLMError,
    PromptBuilder,
)
from gradeflow.models import (
    ImageEvaluation,
    ImageReference,
    JudgmentResult,
    Question,
    QuestionAnswerContext,
    ScoringType,
    TextEvaluation,
)


def completion(content: str | None) -> MagicMock:
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    return response


def sdk_client(*replies: object) -> MagicMock:
    """OpenAI SDK double whose completions return or raise `replies` in order."""
    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=list(replies))
    return client


def http_response(status: int) -> httpx.Response:
    return httpx.Response(status, request=httpx.Request("POST", "https://test.api.local/chat"))


@pytest.fixture
def text_model(text_question: Question) -> TextEvaluation:
    """Text evaluation for the photosynthesis question."""
    return TextEvaluation(
        question=text_question.question,
        assignment_instructions="Answer every question.",
        total_points=text_question.total_points,
        scoring_type=ScoringType.CRITERIA_BASED.value,
        scoring=text_question.scoring,
        response_type="ESSAY",
        learner_response="Plants use light to make sugar.",
        question_answer_context=[
            QuestionAnswerContext(question_id=1, question="Define a cell.", answer="The unit of life.")
        ],
    )


# ==============================================================================
# Prompts
# ==============================================================================


class TestPromptBuilder:
    """Tests for PromptBuilder."""

    def test_text_prompt_sections(self, text_model: TextEvaluation) -> None:
        """Test the text prompt carries question, context, rubric and answer."""
        prompt = PromptBuilder.build_text_prompt(text_model, "fr")

        assert "QUESTION (10.0 points, response type ESSAY):" in prompt
        assert "ASSIGNMENT INSTRUCTIONS:\nAnswer every question." in prompt
        assert "- Q: Define a cell.\n  A: The unit of life." in prompt
        assert "1. Accuracy" in prompt
        assert "   - 6.0 points: Right" in prompt
        assert "Choose exactly one listed level per rubric." in prompt
        assert "---BEGIN ANSWER---\nPlants use light to make sugar.\n---END ANSWER---" in prompt
        assert "Write the feedback in language: fr" in prompt
        assert '"points": <number between 0 and 10.0>' in prompt

    def test_no_rubric_section_without_rubrics(self, text_model: TextEvaluation) -> None:
        """Test the rubric block is omitted when there are no rubrics."""
        prompt = PromptBuilder.build_text_prompt(text_model.model_copy(update={"scoring": None}), "en")

        assert "RUBRIC:" not in prompt

    def test_image_content_parts(self) -> None:
        """Test image payloads follow the prompt as image_url parts."""
        parts = PromptBuilder.image_content_parts("Grade this", ["data:image/png;base64,AAA"])

        assert parts == [
            {"type": "text", "text": "Grade this"},
            {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAA"}},
        ]


# ==============================================================================
# Parser
# ==============================================================================


class TestJudgmentParser:
    """Tests for JudgmentParser."""

    def test_parse_plain_json(self) -> None:
        """Test a bare JSON reply."""
        reply = json.dumps(
            {
                "points": 7,
                "feedback": " Good work. ",
                "rationale": "Accurate",
                "rubric_scores": [{"rubric_question": "Accuracy", "points_awarded": 3}],
            }
        )

        result = JudgmentParser().parse(reply, 10)

        assert result.points == 7
        assert result.feedback == "Good work."
        assert result.rationale == "Accurate"
        assert result.rubric_scores[0].points_awarded == 3

    def test_parse_fenced_json(self) -> None:
        """Test JSON inside a markdown code fence."""
        reply = 'Here you go:\n```json\n{"points": 4, "feedback": "Fine"}\n```'

        assert JudgmentParser().parse(reply, 10).points == 4

    def test_parse_json_with_surrounding_text(self) -> None:
        """Test the outermost braces are found within prose."""
        reply = 'Score follows {"points": "5", "feedback": "Ok", "rubric_scores": [{"score": 2}]} end'

        result = JudgmentParser().parse(reply, 10)

        assert result.points == 5
        assert result.rubric_scores[0].points_awarded == 2

    def test_points_clamped(self) -> None:
        """Test points are kept within the question range."""
        assert JudgmentParser().parse('{"points": 14, "feedback": "x"}', 10).points == 10
        assert JudgmentParser().parse('{"points": -2, "feedback": "x"}', 10).points == 0

    @pytest.mark.parametrize(
        ("reply", "message"),
        [
            ("no json here", "No JSON object"),
            ('{"points": 3, "feedback": "x"', "Unclosed JSON"),
            ('{"feedback": "x"}', "points"),
            ('{"points": 3}', "feedback"),
            ('{"points": "many", "feedback": "x"}', "numeric"),
            ('{"points": 3, "feedback": "x", "rubric_scores": "all"}', "must be a list"),
        ],
    )
    def test_invalid_replies(self, reply: str, message: str) -> None:
        """Test malformed replies raise JudgmentParseError."""
        with pytest.raises(JudgmentParseError, match=message) as exc_info:
            JudgmentParser().parse(reply, 10)

        assert exc_info.value.raw_response == reply


# ==============================================================================
# LLM Client
# ==============================================================================


class TestLLMClient:
    """Tests for LLMClient retry behavior."""

    @pytest.fixture
    def retry_settings(self, test_settings: Settings) -> Settings:
        """Settings allowing two retries."""
        return test_settings.model_copy(update={"judge_max_retries": 2})

    @pytest.mark.asyncio
    async def test_generate_sends_system_and_user_messages(self, test_settings: Settings) -> None:
        """Test the request carries the model and both messages."""
        client = sdk_client(completion('{"points": 1}'))
        llm = LLMClient(test_settings, client)

        reply = await llm.generate("system", "user", temperature=0.2)

        assert reply == '{"points": 1}'
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["temperature"] == 0.2
        assert kwargs["messages"] == [
            {"role": "system", "content": "system"},
            {"role": "user", "content": "user"},
        ]

    @pytest.mark.asyncio
    async def test_rate_limit_retried(self, retry_settings: Settings) -> None:
        """Test rate limits are retried with backoff."""
        client = sdk_client(
            RateLimitError("slow down", response=http_response(429), body=None),
            completion("ok"),
        )
        llm = LLMClient(retry_settings, client)
        llm._base_delay = 0

        assert await llm.generate("s", "u") == "ok"
        assert client.chat.completions.create.await_count == 2

    @pytest.mark.asyncio
    async def test_connection_errors_exhaust_retries(self, retry_settings: Settings) -> None:
        """Test persistent connection failures raise a retryable LLMError."""
        request = httpx.Request("POST", "https://test.api.local/chat")
        client = sdk_client(*[APIConnectionError(request=request) for _ in range(3)])
        llm = LLMClient(retry_settings, client)
        llm._base_delay = 0

        with pytest.raises(LLMError) as exc_info:
            await llm.generate("s", "u")

        assert exc_info.value.retryable is True
        assert client.chat.completions.create.await_count == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, retry_settings: Settings) -> None:
        """Test 4xx errors fail immediately."""
        client = sdk_client(BadRequestError("bad", response=http_response(400), body=None))
        llm = LLMClient(retry_settings, client)

        with pytest.raises(LLMError, match="API error") as exc_info:
            await llm.generate("s", "u")

        assert exc_info.value.retryable is False
        assert client.chat.completions.create.await_count == 1

    @pytest.mark.asyncio
    async def test_empty_reply(self, test_settings: Settings) -> None:
        """Test an empty completion raises."""
        llm = LLMClient(test_settings, sdk_client(completion(None)))

        with pytest.raises(LLMError, match="Empty response"):
            await llm.generate("s", "u")

    @pytest.mark.asyncio
    async def test_health_check_failure(self, test_settings: Settings) -> None:
        """Test an unreachable API reports unhealthy without raising."""
        request = httpx.Request("POST", "https://test.api.local/chat")
        llm = LLMClient(test_settings, sdk_client(APIConnectionError(request=request)))

        assert await llm.health_check() is False


# ==============================================================================
# Service
# ==============================================================================


class TestJudgmentService:
    """Tests for JudgmentService."""

    @pytest.mark.asyncio
    async def test_text_judgment(self, test_settings: Settings, text_model: TextEvaluation) -> None:
        """Test a text answer is judged and parsed."""
        llm = AsyncMock(spec=LLMClient)
        llm.model = "test-model"
        llm.generate.return_value = '{"points": 6, "feedback": "Mostly right"}'
        service = JudgmentService(test_settings, llm)

        result = await service.grade_text_based(text_model, 100, "en")

        assert result == JudgmentResult(points=6, feedback="Mostly right")
        system_prompt, content = llm.generate.call_args.args
        assert system_prompt == PromptBuilder.get_system_prompt()
        assert "Plants use light to make sugar." in content

    @pytest.mark.asyncio
    async def test_unparseable_reply_retried_once(
        self, test_settings: Settings, text_model: TextEvaluation
    ) -> None:
        """Test one JSON reminder is sent after an unparseable reply."""
        llm = AsyncMock(spec=LLMClient)
        llm.model = "test-model"
        llm.generate.side_effect = ["I think it deserves a 6", '{"points": 6, "feedback": "Ok"}']
        service = JudgmentService(test_settings, llm)

        result = await service.grade_text_based(text_model, 100)

        assert result.points == 6
        assert llm.generate.await_count == 2
        assert "not valid JSON" in llm.generate.call_args_list[1].args[0]

    @pytest.mark.asyncio
    async def test_second_parse_failure_propagates(
        self, test_settings: Settings, text_model: TextEvaluation
    ) -> None:
        """Test a second unparseable reply raises."""
        llm = AsyncMock(spec=LLMClient)
        llm.model = "test-model"
        llm.generate.side_effect = ["nope", "still nope"]
        service = JudgmentService(test_settings, llm)

        with pytest.raises(JudgmentParseError):
            await service.grade_text_based(text_model, 100)

    @pytest.mark.asyncio
    async def test_image_judgment_sends_content_parts(self, test_settings: Settings) -> None:
        """Test image judgments send multimodal content."""
        llm = AsyncMock(spec=LLMClient)
        llm.model = "test-model"
        llm.generate.return_value = '{"points": 3, "feedback": "Labelled"}'
        service = JudgmentService(test_settings, llm)
        model = ImageEvaluation(
            question="Draw the cell.",
            total_points=5,
            images=[ImageReference(filename="cell.png")],
            image_payloads=["https://cdn.local/cell.png"],
        )

        await service.grade_image_based(model, 100)

        content = llm.generate.call_args.args[1]
        assert content[0]["type"] == "text"
        assert "cell.png" in content[0]["text"]
        assert content[1] == {"type": "image_url", "image_url": {"url": "https://cdn.local/cell.png"}}
