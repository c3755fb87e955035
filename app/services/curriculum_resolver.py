# services/curriculum_resolver.py
import logging
from typing import List, Optional, Protocol

from app.core.curriculum_loader import education_level_for_grade, get_subject_curriculum
from app.models.lesson_plan_model import CurriculumSnippet, GenerationParameters
from app.services.curriculum_service import SAMPLE_CURRICULUM_ENTRY, CurriculumService, curriculum_service

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

# Generic placeholders for empty curriculum lists
PLACEHOLDERS = {
    "specific_learning_outcomes": ["Understand the key concepts of the lesson topic."],
    "key_inquiry_questions": ["What will we learn today?"],
    "learning_experiences": ["Interactive learning activities"],
    "learning_resources": ["Textbooks", "Visual aids", "Practical materials"],
    "assessment_methods": ["Observation", "Questioning", "Practical work"],
}


class UnresolvableCurriculumError(Exception):
    """No curriculum snippet exists for an unrecognised grade/subject combination."""


class CurriculumStrategy(Protocol):
    name: str

    async def lookup(self, params: GenerationParameters) -> Optional[CurriculumSnippet]:
        ...


def ensure_non_empty(snippet: CurriculumSnippet) -> CurriculumSnippet:
    updates = {
        field: list(default)
        for field, default in PLACEHOLDERS.items()
        if not [item for item in getattr(snippet, field) if item and item.strip()]
    }
    if not snippet.strand.strip():
        updates["strand"] = "General Studies"
    if not snippet.sub_strand.strip():
        updates["sub_strand"] = "Introduction"
    return snippet.model_copy(update=updates) if updates else snippet


class EmbeddedCurriculumStrategy:
    """Embedded database keyed by (education level, subject)."""

    name = "embedded"

    def __init__(self, data_dir=None):
        self.data_dir = data_dir

    async def lookup(self, params: GenerationParameters) -> Optional[CurriculumSnippet]:
        level = education_level_for_grade(params.grade)
        if level is None:
            return None
        curriculum = get_subject_curriculum(level, params.subject, self.data_dir)
        if not curriculum:
            return None

        logger.info("Using embedded curriculum for %s %s", params.grade, params.subject)
        strands = curriculum.get("strands") or []
        first_strand = strands[0] if strands else {}
        sub_strands = first_strand.get("subStrands") or []
        first_sub = sub_strands[0] if sub_strands else {}

        return CurriculumSnippet(
            grade=params.grade,
            subject=curriculum["subject"],
            strand=first_strand.get("name") or "General Studies",
            sub_strand=first_sub.get("name") or "Introduction",
            specific_learning_outcomes=first_sub.get("specificLearningOutcomes")
            or curriculum.get("generalLearningOutcomes")
            or [],
            key_inquiry_questions=first_sub.get("keyInquiryQuestions") or [],
            learning_experiences=first_sub.get("suggestedLearningExperiences") or [],
            learning_resources=[],
            assessment_methods=first_sub.get("assessmentMethods") or [],
            source=self.name,
        )


class CurriculumServiceStrategy:
    """External curriculum lookup with exact/partial/subject-only matching."""

    name = "curriculum-service"

    def __init__(self, service: CurriculumService):
        self.service = service

    async def lookup(self, params: GenerationParameters) -> Optional[CurriculumSnippet]:
        match = await self.service.find(params)
        if match is None:
            return None
        snippet, tier = match
        logger.info("Found external curriculum data for %s %s (match=%s)", params.grade, params.subject, tier.value)
        return snippet


class ExampleSnippetStrategy:
    """Hardcoded Grade 9 Pre-Technical Studies snippet, for recognised grades only."""

    name = "example"

    async def lookup(self, params: GenerationParameters) -> Optional[CurriculumSnippet]:
        if education_level_for_grade(params.grade) is None:
            return None
        logger.warning("No curriculum data found for %s, %s. Using example data.", params.subject, params.grade)
        return CurriculumSnippet.model_validate({**SAMPLE_CURRICULUM_ENTRY, "source": self.name})


class CurriculumResolver:
    def __init__(self, strategies: List[CurriculumStrategy]):
        self.strategies = list(strategies)

    async def resolve(self, params: GenerationParameters) -> CurriculumSnippet:
        for strategy in self.strategies:
            try:
                snippet = await strategy.lookup(params)
            except (OSError, ValueError) as e:
                logger.warning("Curriculum strategy %s failed for %s %s: %s", strategy.name, params.grade, params.subject, e)
                continue
            if snippet is not None:
                return ensure_non_empty(snippet)
        raise UnresolvableCurriculumError(
            f"No curriculum available for grade '{params.grade}' and subject '{params.subject}'"
        )


def default_resolver(service: Optional[CurriculumService] = None, data_dir=None) -> CurriculumResolver:
    return CurriculumResolver(
        [
            EmbeddedCurriculumStrategy(data_dir),
            CurriculumServiceStrategy(service or curriculum_service),
            ExampleSnippetStrategy(),
        ]
    )
