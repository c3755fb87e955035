"""Shared fixtures for the lesson planner test suite."""

import json

import pytest

from app.core.config import AIConfig, CurriculumConfig
from app.services.curriculum_resolver import default_resolver
from app.services.curriculum_service import CurriculumService
from tests.helpers import PLAN_PAYLOAD, SCHEME_PAYLOAD


@pytest.fixture
def scheme_json():
    return json.dumps(SCHEME_PAYLOAD)


@pytest.fixture
def plan_json():
    return json.dumps(PLAN_PAYLOAD)


@pytest.fixture
def ai_config():
    return AIConfig(
        api_key="test-key",
        backoff_base=0,
        backoff_cap=0,
        fallback_delay=0,
        request_timeout=5,
    )


@pytest.fixture
def sample_curriculum_service():
    """Curriculum service with no remote or local source, so it serves the built-in sample."""
    return CurriculumService(CurriculumConfig(service_url="", data_file=""))


@pytest.fixture
def resolver(sample_curriculum_service):
    return default_resolver(sample_curriculum_service)
