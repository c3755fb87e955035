"""End-to-end generation through the real client, extractor and resolver with a mocked backend."""

import json

import httpx
import pytest

from app.models.lesson_plan_model import GenerationParameters, GenerationResult, MatchTier
from app.services.planning_pipeline import PlanningPipeline
from app.utils.ai_client import CompletionClient
from app.utils.structured_extractor import StructuredExtractor
from tests.helpers import PLAN_PAYLOAD, SCHEME_PAYLOAD, chat_response


def backend(replies):
    """Serve `replies` in order; the scheme prompt is always the first call."""
    queue = list(replies)
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        reply = queue.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return chat_response(reply)

    return httpx.MockTransport(handler), seen


@pytest.mark.asyncio
async def test_grade_9_pre_technical_studies(ai_config, resolver):
    transport, seen = backend([json.dumps(SCHEME_PAYLOAD), json.dumps(PLAN_PAYLOAD)])
    pipeline = PlanningPipeline(CompletionClient(ai_config, transport=transport), StructuredExtractor(), resolver, retry_delay=0)
    params = GenerationParameters(grade="Grade 9", subject="Pre-Technical Studies", term="Term 1", week="1", lesson="1")

    result = await pipeline.generate(params)

    assert isinstance(result, GenerationResult)
    assert result.scheme_of_work.wk == "1"
    assert result.scheme_of_work.lsn == "1"
    assert result.lesson_plan.level == "Grade 9"
    assert result.lesson_plan.learning_area == "Pre-Technical Studies"
    assert result.curriculum_source == "curriculum-service"
    assert result.match_tier == MatchTier.PARTIAL
    assert len(seen) == 2
    assert "raised platforms" in seen[0]["messages"][1]["content"]


@pytest.mark.asyncio
async def test_messy_output_is_repaired(ai_config, resolver):
    scheme_text = "Sure! Here it is:\n```json\n" + json.dumps(SCHEME_PAYLOAD, indent=2)[:-1] + ",\n```"
    plan_text = json.dumps(PLAN_PAYLOAD).replace('"roll": "To be set by teacher"', '"roll": To be set by teacher')
    transport, _ = backend([scheme_text, plan_text])
    pipeline = PlanningPipeline(CompletionClient(ai_config, transport=transport), StructuredExtractor(), resolver, retry_delay=0)
    params = GenerationParameters(grade="Grade 8", subject="Integrated Science", term="2", week="4", lesson="1")

    result = await pipeline.generate(params)

    assert result.fallback_used is False
    assert result.scheme_of_work.strand == SCHEME_PAYLOAD["strand"]
    assert result.lesson_plan.roll == "To be set by teacher"
    assert result.curriculum_source == "embedded"


@pytest.mark.asyncio
async def test_primary_timeouts_recovered_by_fallback_model(ai_config, resolver):
    def handler(request):
        body = json.loads(request.content)
        if body["model"] == ai_config.model:
            raise httpx.ReadTimeout("timed out", request=request)
        is_plan = "lesson plan" in body["messages"][1]["content"]
        return chat_response(json.dumps(PLAN_PAYLOAD if is_plan else SCHEME_PAYLOAD))

    client = CompletionClient(ai_config, transport=httpx.MockTransport(handler))
    pipeline = PlanningPipeline(client, StructuredExtractor(), resolver, retry_delay=0)
    params = GenerationParameters(grade="Grade 9", subject="Mathematics", term="1", week="2", lesson="3")

    result = await pipeline.generate(params)

    assert result.fallback_used is False
    assert result.lesson_plan.learning_area == "Pre-Technical Studies"


@pytest.mark.asyncio
async def test_backend_down_yields_template_plan(ai_config, resolver):
    client = CompletionClient(ai_config, transport=httpx.MockTransport(lambda request: httpx.Response(500, text="down")))
    pipeline = PlanningPipeline(client, StructuredExtractor(), resolver, retry_delay=0)
    params = GenerationParameters(grade="Grade 4", subject="Science and Technology", term="1", week="6", lesson="2")

    result = await pipeline.generate(params)

    assert result.fallback_used is True
    assert result.scheme_of_work.strand == "Science and Technology - Core Concepts"
    assert result.scheme_of_work.sub_strand == "Week 6 Learning Focus"
    assert result.lesson_plan.school == "Your School Name"
