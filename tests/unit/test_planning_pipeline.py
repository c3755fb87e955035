"""Unit tests for the planning pipeline (extraction retries, fallback, cancellation)."""

import asyncio

import pytest

from app.models.lesson_plan_model import GenerationCancelled, GenerationParameters, GenerationResult
from app.services.curriculum_resolver import UnresolvableCurriculumError
from app.services.planning_pipeline import JSON_INSTRUCTIONS, PlanningPipeline
from app.utils.ai_client import BackendError
from app.utils.cancellation import CancellationToken
from app.utils.structured_extractor import StructuredExtractor
from tests.helpers import ScriptedClient

GARBAGE = "I'm sorry, I can only answer in prose today."


def params(grade="Grade 9", subject="Mathematics"):
    return GenerationParameters(grade=grade, subject=subject, term="Term 1", week="3", lesson="2")


def make_pipeline(responses, resolver):
    client = ScriptedClient(responses)
    pipeline = PlanningPipeline(client, StructuredExtractor(), resolver, retry_delay=0)
    return pipeline, client


class TestGenerate:
    @pytest.mark.asyncio
    async def test_scheme_then_plan(self, resolver, scheme_json, plan_json):
        pipeline, client = make_pipeline([scheme_json, plan_json], resolver)

        result = await pipeline.generate(params())

        assert isinstance(result, GenerationResult)
        assert result.fallback_used is False
        assert result.curriculum_source == "embedded"
        assert len(client.calls) == 2
        assert "Strand: NUMBERS" in client.calls[0]["prompt"]
        assert client.calls[0]["prompt"].endswith(JSON_INSTRUCTIONS)
        assert client.calls[0]["format"] == "json"
        assert "40 minutes" in client.calls[1]["prompt"]
        assert result.scheme_of_work.strand in client.calls[1]["prompt"]

    @pytest.mark.asyncio
    async def test_plan_aligned_to_scheme(self, resolver, scheme_json, plan_json):
        pipeline, _ = make_pipeline([scheme_json, plan_json], resolver)

        result = await pipeline.generate(params())

        assert result.lesson_plan.strand == result.scheme_of_work.strand == "FOUNDATIONS OF PRE-TECHNICAL STUDIES"
        assert result.lesson_plan.sub_strand == result.scheme_of_work.sub_strand

    @pytest.mark.asyncio
    async def test_token_budget_and_temperature_per_attempt(self, resolver):
        pipeline, client = make_pipeline([GARBAGE, GARBAGE, GARBAGE], resolver)

        await pipeline.generate(params())

        assert [c["max_tokens"] for c in client.calls] == [1000, 1000, 1000]
        assert [c["temperature"] for c in client.calls] == pytest.approx([0.5, 0.4, 0.3])

    @pytest.mark.asyncio
    async def test_plan_first_attempt_capped_at_1500(self, resolver, scheme_json, plan_json):
        pipeline, client = make_pipeline([scheme_json, GARBAGE, plan_json], resolver)

        await pipeline.generate(params())

        assert [c["max_tokens"] for c in client.calls[1:]] == [1500, 1000]

    @pytest.mark.asyncio
    async def test_fallback_after_three_extraction_failures(self, resolver):
        pipeline, client = make_pipeline(['{"wk": ', "```json\n```", GARBAGE], resolver)

        result = await pipeline.generate(params())

        assert isinstance(result, GenerationResult)
        assert result.fallback_used is True
        assert len(client.calls) == 3
        assert "Mathematics" in result.scheme_of_work.strand
        assert result.scheme_of_work.wk == "3"
        assert result.scheme_of_work.lsn == "2"
        assert result.lesson_plan.learning_area == "Mathematics"
        assert result.lesson_plan.level == "Grade 9"
        assert result.lesson_plan.strand == result.scheme_of_work.strand
        assert result.curriculum_source == "embedded"

    @pytest.mark.asyncio
    async def test_transient_backend_error_retried(self, resolver, scheme_json, plan_json):
        pipeline, client = make_pipeline([BackendError("rate-limit", "slow down"), scheme_json, plan_json], resolver)

        result = await pipeline.generate(params())

        assert result.fallback_used is False
        assert len(client.calls) == 3

    @pytest.mark.asyncio
    async def test_auth_error_goes_straight_to_fallback(self, resolver):
        pipeline, client = make_pipeline([BackendError("auth", "bad key")], resolver)

        result = await pipeline.generate(params())

        assert result.fallback_used is True
        assert len(client.calls) == 1

    @pytest.mark.asyncio
    async def test_unresolvable_curriculum_raises(self, resolver):
        pipeline, client = make_pipeline([], resolver)

        with pytest.raises(UnresolvableCurriculumError):
            await pipeline.generate(params(grade="Form 3", subject="Chemistry"))
        assert client.calls == []


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, resolver):
        pipeline, client = make_pipeline([], resolver)
        token = CancellationToken()
        token.cancel("changed my mind")

        result = await pipeline.generate(params(), token)

        assert isinstance(result, GenerationCancelled)
        assert result.reason == "changed my mind"
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_cancel_between_scheme_and_plan_discards_plan(self, resolver, scheme_json, plan_json):
        token = CancellationToken()

        def plan_arrives_after_cancel():
            token.cancel()
            return plan_json

        pipeline, client = make_pipeline([scheme_json, plan_arrives_after_cancel], resolver)

        result = await pipeline.generate(params(), token)

        assert isinstance(result, GenerationCancelled)
        assert result.status == "cancelled"
        assert len(client.calls) == 2

    @pytest.mark.asyncio
    async def test_cancel_wakes_retry_delay_without_fallback(self, resolver):
        token = CancellationToken()

        def garbage_then_cancel():
            asyncio.get_running_loop().call_soon(token.cancel)
            return GARBAGE

        client = ScriptedClient([garbage_then_cancel])
        pipeline = PlanningPipeline(client, StructuredExtractor(), resolver, retry_delay=30)

        result = await asyncio.wait_for(pipeline.generate(params(), token), timeout=5)

        assert isinstance(result, GenerationCancelled)
        assert len(client.calls) == 1
