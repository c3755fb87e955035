import re
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel


def _cleanup_ai_text(text):
    """Removes Markdown emphasis and heading markers from AI-generated text."""
    if not isinstance(text, str):
        return text
    text = re.sub(r"\*\*(.*?)\*\*", r"\1", text)
    text = re.sub(r"^\s*#+\s*", "", text, flags=re.MULTILINE)
    return text.strip()


def _stringify(value, separator="; "):
    if isinstance(value, list):
        return separator.join(_cleanup_ai_text(str(v)) for v in value if str(v).strip())
    if isinstance(value, str):
        return _cleanup_ai_text(value)
    return value


def _listify(value):
    if isinstance(value, str):
        value = [value] if value.strip() else []
    if isinstance(value, list):
        return [_cleanup_ai_text(str(v)) for v in value if str(v).strip()]
    return value


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True


class MatchTier(str, Enum):
    EXACT = "exact"
    PARTIAL = "partial"
    SUBJECT_ONLY = "subject-only"


class GenerationParameters(CamelModel):
    grade: str
    subject: str
    term: str
    week: str
    lesson: str

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        frozen = True

    @field_validator("grade", "subject", "term", "week", "lesson", mode="before")
    @classmethod
    def normalize_strings(cls, v):
        if isinstance(v, int):
            v = str(v)
        if isinstance(v, str):
            v = v.strip()
        if not v:
            raise ValueError("must be a non-empty string")
        return v


class CurriculumSnippet(CamelModel):
    grade: str
    subject: str
    strand: str
    sub_strand: str
    specific_learning_outcomes: List[str]
    key_inquiry_questions: List[str]
    learning_experiences: List[str]
    learning_resources: List[str]
    assessment_methods: List[str]
    # where the snippet came from: "embedded", "curriculum-service" or "example"
    source: str = "example"
    match_tier: Optional[MatchTier] = None


class SchemeOfWorkEntry(CamelModel):
    wk: str
    lsn: str
    strand: str
    sub_strand: str
    specific_learning_outcomes: str
    key_inquiry_questions: str
    learning_experiences: str
    learning_resources: str
    assessment_methods: str
    refl: Optional[str] = None

    @field_validator("wk", "lsn", mode="before")
    @classmethod
    def coerce_identifier(cls, v):
        if isinstance(v, (int, float)):
            return str(int(v))
        return v

    @field_validator(
        "strand",
        "sub_strand",
        "specific_learning_outcomes",
        "key_inquiry_questions",
        "learning_experiences",
        "learning_resources",
        "assessment_methods",
        "refl",
        mode="before",
    )
    @classmethod
    def join_lists(cls, v):
        return _stringify(v)


class OrganisationOfLearning(CamelModel):
    introduction: str = Field(..., description="About 5 minutes.")
    lesson_development: str = Field(..., description="About 30 minutes.")
    conclusion: str = Field(..., description="About 5 minutes.")

    @field_validator("introduction", "lesson_development", "conclusion", mode="before")
    @classmethod
    def clean_text(cls, v):
        return _stringify(v, separator="\n")


class LessonPlan(CamelModel):
    school: str = "To be set by teacher"
    level: str
    learning_area: str
    date: str = "To be set by teacher"
    time: str = "40 minutes"
    roll: str = "To be set by teacher"
    strand: str
    sub_strand: str
    specific_learning_outcomes: List[str]
    key_inquiry_questions: List[str]
    learning_resources: List[str]
    organisation_of_learning: OrganisationOfLearning
    extended_activities: List[str] = []
    teacher_self_evaluation: str = (
        "To be completed by the teacher after lesson delivery."
    )

    @field_validator(
        "specific_learning_outcomes",
        "key_inquiry_questions",
        "learning_resources",
        "extended_activities",
        mode="before",
    )
    @classmethod
    def wrap_strings(cls, v):
        if v is None:
            return []
        return _listify(v)

    @field_validator("strand", "sub_strand", "teacher_self_evaluation", mode="before")
    @classmethod
    def clean_text(cls, v):
        return _stringify(v)


class GenerationResult(CamelModel):
    scheme_of_work: SchemeOfWorkEntry
    lesson_plan: LessonPlan
    curriculum_source: Optional[str] = None
    match_tier: Optional[MatchTier] = None
    fallback_used: bool = False


class GenerationCancelled(CamelModel):
    status: Literal["cancelled"] = "cancelled"
    reason: str = "Generation was cancelled."


class GenerationOutcome(CamelModel):
    status: Literal["done", "cancelled"]
    result: Optional[GenerationResult] = None
    reason: Optional[str] = None
