import logging
import time
from enum import Enum
from typing import Optional, Type, TypeVar, Union

from pydantic import BaseModel

from app.models.lesson_plan_model import (
    CurriculumSnippet,
    GenerationCancelled,
    GenerationParameters,
    GenerationResult,
    LessonPlan,
    OrganisationOfLearning,
    SchemeOfWorkEntry,
)
from app.services.curriculum_resolver import CurriculumResolver
from app.utils.ai_client import BackendError, CompletionClient
from app.utils.cancellation import CancellationToken, OperationCancelled, checkpoint_sleep
from app.utils.structured_extractor import MalformedOutputError, StructuredExtractor

T = TypeVar("T", bound=BaseModel)

SCHEME_MAX_TOKENS = 1000
PLAN_MAX_TOKENS = 1500
GENERATION_TEMPERATURE = 0.5
FIRST_ATTEMPT_TOKEN_CAP = 1500
RETRY_TOKEN_CAP = 1000
MIN_TEMPERATURE = 0.1
LESSON_DURATION = "40 minutes"


# -------------------------
# Logging and Metrics
# -------------------------
logger = logging.getLogger("planning_pipeline")
logger.setLevel(logging.INFO)
if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)


class PipelineState(str, Enum):
    START = "start"
    RESOLVING_CURRICULUM = "resolving-curriculum"
    GENERATING_SCHEME = "generating-scheme"
    GENERATING_PLAN = "generating-plan"
    FALLBACK_SYNTHESIS = "fallback-synthesis"
    DONE = "done"
    CANCELLED = "cancelled"


class PipelineMetrics:
    def __init__(self):
        self.start_time = None
        self.generated_documents = 0
        self.synthesised_documents = 0

    def start(self):
        self.start_time = time.time()

    def record_success(self):
        self.generated_documents += 1

    def record_fallback(self, documents: int = 2):
        self.synthesised_documents += documents

    def get_metrics(self) -> dict:
        duration = (time.time() - self.start_time) if self.start_time else 0
        return {
            "generation_time_seconds": round(duration, 2),
            "generated_documents": self.generated_documents,
            "synthesised_documents": self.synthesised_documents,
        }


class UnrecoverableGenerationError(Exception):
    """The extraction-retry loop gave up; `last_error` is the final failure."""

    def __init__(self, message: str, last_error: Optional[Exception] = None):
        super().__init__(message)
        self.last_error = last_error


# -------------------------
# Prompt & Fallback Builder
# -------------------------
JSON_INSTRUCTIONS = """

CRITICAL INSTRUCTIONS:
1. Respond with ONLY a valid, complete JSON object
2. Do NOT include any explanations, comments, or text outside the JSON
3. Do NOT use markdown formatting or code blocks
4. Ensure all strings are properly quoted
5. Ensure all objects and arrays are properly closed
6. The response must start with { and end with }
"""


def _joined(items) -> str:
    return "; ".join(items)


def _build_scheme_prompt(snippet: CurriculumSnippet, params: GenerationParameters) -> str:
    return f"""
You are an expert curriculum planner tasked with creating a scheme of work entry.
Based on the following curriculum details for {snippet.subject}, {snippet.grade}, Term {params.term}, Week {params.week}, Lesson {params.lesson}:
- Strand: {snippet.strand}
- Sub-Strand: {snippet.sub_strand}
- Specific Learning Outcomes: {_joined(snippet.specific_learning_outcomes)}
- Key Inquiry Question(s): {_joined(snippet.key_inquiry_questions)}
- Learning Experiences: {_joined(snippet.learning_experiences)}
- Learning Resources: {_joined(snippet.learning_resources)}
- Assessment Methods: {_joined(snippet.assessment_methods)}

Generate a JSON object for a single scheme of work entry with the following fields:
"wk": "{params.week}",
"lsn": "{params.lesson}",
"strand": (string, from the curriculum strand),
"subStrand": (string, from the curriculum sub-strand),
"specificLearningOutcomes": (string, a concise summary or direct list of the specific learning outcomes),
"keyInquiryQuestions": (string, from the key inquiry questions),
"learningExperiences": (string, detailing learner activities based on the learning experiences),
"learningResources": (string, listing all learning resources),
"assessmentMethods": (string, listing all assessment methods),
"refl": (string, placeholder like 'Teacher to reflect on lesson effectiveness')

Ensure the output is a single, valid JSON object only.
"""


def _build_lesson_plan_prompt(snippet: CurriculumSnippet, scheme: SchemeOfWorkEntry, params: GenerationParameters) -> str:
    return f"""
You are an AI assistant helping a teacher create a detailed lesson plan.
Curriculum Context:
- Subject: {snippet.subject}
- Grade: {snippet.grade}
- Term: {params.term}, Week: {params.week}, Lesson: {params.lesson}
- Strand: {snippet.strand}
- Sub-Strand: {snippet.sub_strand}
- Specific Learning Outcomes from Curriculum: {_joined(snippet.specific_learning_outcomes)}
- Key Inquiry Questions from Curriculum: {_joined(snippet.key_inquiry_questions)}
- Learning Resources from Curriculum: {_joined(snippet.learning_resources)}
- Learning Experiences from Curriculum: {_joined(snippet.learning_experiences)}

Scheme of Work Reference:
- SLOs in Scheme: {scheme.specific_learning_outcomes}
- Key Questions in Scheme: {scheme.key_inquiry_questions}

Using this information, generate a JSON object for a lesson plan. The lesson duration is {LESSON_DURATION}.
The JSON object should have the following structure and content guidelines:
{{
  "school": "Sunshine Secondary School",
  "level": "{snippet.grade}",
  "learningArea": "{snippet.subject}",
  "date": "To be set by teacher",
  "time": "{LESSON_DURATION}",
  "roll": "To be set by teacher",
  "strand": "{scheme.strand}",
  "subStrand": "{scheme.sub_strand}",
  "specificLearningOutcomes": [array of strings based on the specific learning outcomes],
  "keyInquiryQuestions": [array of strings based on the key inquiry questions],
  "learningResources": [array of strings based on the learning resources, ensure variety],
  "organisationOfLearning": {{
    "introduction": "(string, ~5 mins) Briefly introduce the topic, state the learning outcomes and link to prior knowledge or real life. Pose a key inquiry question.",
    "lessonDevelopment": "(string, ~30 mins) Numbered, detailed and actionable teacher and learner activities.",
    "conclusion": "(string, ~5 mins) Summarize key points, revisit the learning outcomes and key questions. Quick Q&A. Assign any follow-up or extended activity."
  }},
  "extendedActivities": [array of strings with follow-up activities for learners],
  "teacherSelfEvaluation": "To be completed by the teacher after lesson delivery, reflecting on objectives achieved, learner engagement, and areas for improvement."
}}
Ensure the output is a single, valid JSON object only.
"""


def _fallback_documents(params: GenerationParameters) -> GenerationResult:
    subject, grade = params.subject, params.grade
    scheme = SchemeOfWorkEntry(
        wk=params.week,
        lsn=params.lesson,
        strand=f"{subject} - Core Concepts",
        sub_strand=f"Week {params.week} Learning Focus",
        specific_learning_outcomes=(
            f"By the end of this lesson, learners should be able to understand key concepts in {subject} for {grade}."
        ),
        key_inquiry_questions=f"What are the main concepts we need to learn in {subject} this week?",
        learning_experiences=f"Interactive discussions, practical activities, and guided practice related to {subject}.",
        learning_resources=f"Textbooks, visual aids, practical materials, and digital resources for {subject}.",
        assessment_methods="Observation, questioning, practical demonstrations, and formative assessment.",
        refl="Teacher to reflect on lesson effectiveness and learner engagement.",
    )
    plan = LessonPlan(
        school="Your School Name",
        level=grade,
        learning_area=subject,
        time=LESSON_DURATION,
        strand=scheme.strand,
        sub_strand=scheme.sub_strand,
        specific_learning_outcomes=[
            f"Understand key concepts in {subject}",
            "Apply learning to practical situations",
            "Demonstrate understanding through activities",
        ],
        key_inquiry_questions=[
            f"What do we already know about {subject}?",
            "How can we apply this knowledge?",
            "What questions do we still have?",
        ],
        learning_resources=["Course textbook", "Visual aids and charts", "Practical materials", "Digital resources"],
        organisation_of_learning=OrganisationOfLearning(
            introduction=(
                f"Welcome learners and introduce today's topic in {subject}. Review previous learning and set clear "
                "objectives for the lesson. Engage learners with a thought-provoking question or activity."
            ),
            lesson_development="\n".join(
                [
                    "1. Present key concepts using visual aids and examples",
                    "2. Facilitate group discussions and activities",
                    "3. Guide learners through practical exercises",
                    "4. Encourage questions and provide clarification",
                    "5. Monitor understanding through formative assessment",
                    "6. Provide additional support where needed",
                ]
            ),
            conclusion=(
                "Summarize key learning points from today's lesson. Review objectives and check understanding. "
                "Assign any follow-up activities and preview next lesson's content."
            ),
        ),
        extended_activities=[
            "Research additional information about today's topic",
            "Complete practice exercises from the textbook",
            "Prepare questions for next lesson",
        ],
        teacher_self_evaluation=(
            "To be completed after lesson delivery, reflecting on objectives achieved, learner engagement, "
            "and areas for improvement."
        ),
    )
    return GenerationResult(scheme_of_work=scheme, lesson_plan=plan, fallback_used=True)


# -------------------------
# Pipeline
# -------------------------
class PlanningPipeline:
    """
    Resolve curriculum -> scheme of work entry -> lesson plan.

    Each document goes through an extraction-retry loop on top of the
    client's own transport retries. When that loop gives up, both documents
    are synthesised from templates, so a non-cancelled run always returns a
    result.
    """

    def __init__(
        self,
        client: CompletionClient,
        extractor: StructuredExtractor,
        resolver: CurriculumResolver,
        *,
        extraction_attempts: int = 3,
        retry_delay: float = 1.0,
    ):
        self.client = client
        self.extractor = extractor
        self.resolver = resolver
        self.extraction_attempts = max(1, extraction_attempts)
        self.retry_delay = retry_delay

    async def _generate_structured(
        self,
        prompt: str,
        model: Type[T],
        max_tokens: int,
        temperature: float,
        token: CancellationToken,
    ) -> T:
        full_prompt = prompt + JSON_INSTRUCTIONS
        last_error: Optional[Exception] = None

        for attempt in range(1, self.extraction_attempts + 1):
            cap = FIRST_ATTEMPT_TOKEN_CAP if attempt == 1 else RETRY_TOKEN_CAP
            attempt_tokens = min(max_tokens, cap)
            attempt_temperature = max(temperature - 0.1 * (attempt - 1), MIN_TEMPERATURE)
            logger.info(
                "%s attempt %d/%d (max_tokens=%d, temperature=%.1f)",
                model.__name__, attempt, self.extraction_attempts, attempt_tokens, attempt_temperature,
            )
            try:
                raw = await self.client.complete(
                    full_prompt,
                    max_tokens=attempt_tokens,
                    temperature=attempt_temperature,
                    format="json",
                    cancel_token=token,
                )
                token.raise_if_cancelled()
                return self.extractor.extract(raw, model)
            except BackendError as e:
                if not e.transient:
                    raise UnrecoverableGenerationError(f"{model.__name__} generation aborted: {e}", e) from e
                last_error = e
            except MalformedOutputError as e:
                last_error = e

            logger.warning("%s attempt %d failed: %s", model.__name__, attempt, last_error)
            if attempt < self.extraction_attempts:
                await checkpoint_sleep(self.retry_delay * attempt, token)

        raise UnrecoverableGenerationError(
            f"{model.__name__} generation failed after {self.extraction_attempts} attempts: {last_error}",
            last_error,
        ) from last_error

    async def generate(
        self,
        params: GenerationParameters,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Union[GenerationResult, GenerationCancelled]:
        """
        Produce a scheme of work entry and lesson plan for `params`.

        Raises UnresolvableCurriculumError for grades outside the known
        education levels. Returns GenerationCancelled if the token fires.
        """
        token = cancel_token or CancellationToken()
        metrics = PipelineMetrics()
        metrics.start()
        state = PipelineState.START

        def enter(next_state: PipelineState):
            nonlocal state
            logger.debug("%s -> %s", state.value, next_state.value)
            state = next_state

        logger.info("Generating scheme and plan for %s %s (term %s, week %s, lesson %s)",
                    params.grade, params.subject, params.term, params.week, params.lesson)
        try:
            token.raise_if_cancelled()
            enter(PipelineState.RESOLVING_CURRICULUM)
            snippet = await self.resolver.resolve(params)
            token.raise_if_cancelled()

            try:
                enter(PipelineState.GENERATING_SCHEME)
                scheme = await self._generate_structured(
                    _build_scheme_prompt(snippet, params), SchemeOfWorkEntry,
                    SCHEME_MAX_TOKENS, GENERATION_TEMPERATURE, token,
                )
                metrics.record_success()

                enter(PipelineState.GENERATING_PLAN)
                plan = await self._generate_structured(
                    _build_lesson_plan_prompt(snippet, scheme, params), LessonPlan,
                    PLAN_MAX_TOKENS, GENERATION_TEMPERATURE, token,
                )
                metrics.record_success()
                result = GenerationResult(scheme_of_work=scheme, lesson_plan=plan)
            except UnrecoverableGenerationError as e:
                token.raise_if_cancelled()
                enter(PipelineState.FALLBACK_SYNTHESIS)
                logger.error("AI generation failed for %s %s. Using fallback. Last error: %s",
                             params.grade, params.subject, e.last_error)
                result = _fallback_documents(params)
                metrics.record_fallback()

            token.raise_if_cancelled()
        except OperationCancelled as e:
            enter(PipelineState.CANCELLED)
            logger.info("Generation for %s %s cancelled: %s", params.grade, params.subject, e)
            return GenerationCancelled(reason=str(e))

        aligned_plan = result.lesson_plan.model_copy(
            update={"strand": result.scheme_of_work.strand, "sub_strand": result.scheme_of_work.sub_strand}
        )
        result = result.model_copy(
            update={
                "lesson_plan": aligned_plan,
                "curriculum_source": snippet.source,
                "match_tier": snippet.match_tier,
            }
        )
        enter(PipelineState.DONE)
        logger.info("Generation completed with metrics: %s", metrics.get_metrics())
        return result
