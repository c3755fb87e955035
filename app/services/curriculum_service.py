# services/curriculum_service.py
"""
Curriculum Service (external processed-curriculum lookup)

Responsibilities:
- Load a processed curriculum document once per process:
    {
      "metadata": {"version": "1.0", "lastUpdated": ISO8601, "totalEntries": N},
      "curriculum": [ {grade, subject, strand, subStrand, specificLearningOutcomes, ...,
                       optional term/week/lesson}, ... ]
    }
  from CURRICULUM_SERVICE_URL (HTTP), else CURRICULUM_DATA_FILE (local JSON),
  else the built-in sample entry.
- find(params) matches in three tiers: exact (grade+subject+term+week+lesson),
  partial (grade+subject), subject-only. Degraded tiers log a warning.
- Read-only after loading; safe to share between concurrent resolutions.

Usage:
    from app.services.curriculum_service import curriculum_service
    match = await curriculum_service.find(params)
    if match:
        snippet, tier = match
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import BaseModel, ValidationError

from app.core.config import CurriculumConfig
from app.models.lesson_plan_model import CurriculumSnippet, GenerationParameters, MatchTier

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


SAMPLE_CURRICULUM_ENTRY: Dict[str, Any] = {
    "grade": "Grade 9",
    "subject": "Pre-Technical Studies",
    "strand": "FOUNDATIONS OF PRE-TECHNICAL STUDIES",
    "subStrand": "Safety on Raised Platforms - types of raised platforms (ladders & trestles)",
    "specificLearningOutcomes": [
        "Identify types of raised platforms used in performing tasks.",
        "Explore the use of ladders and trestles.",
        "Appreciate working with raised platforms.",
    ],
    "keyInquiryQuestions": [
        "What is the importance of observing safety when working on raised platforms?",
    ],
    "learningExperiences": [
        "The learner is guided to walk around the school to explore types of raised platforms (ladders, trestles).",
        "The learner is guided to brainstorm on the types of raised platforms used in day-to-day life.",
    ],
    "learningResources": [
        "Raised platforms (actual or pictures)",
        "Video clips and visual aids demonstrating use of ladders and trestles",
        "Personal protective equipment (PPEs) relevant to working on raised platforms",
        "Distinction Pretech. Studies Grade 9 P.B. Pg.1-4",
    ],
    "assessmentMethods": [
        "Oral questioning on types and uses of ladders/trestles.",
        "Observation of learner participation in discussions and activities.",
        "Checklist for identifying safety aspects.",
        "Short written quiz on platform types and safety.",
        "Rubrics for practical demonstration (if applicable).",
        "Practical work involving safe setup/use (simulated if needed).",
    ],
}


# -------------------------
# Models
# -------------------------
class CurriculumMetadata(BaseModel):
    version: str = "1.0"
    lastUpdated: str
    totalEntries: int = 0


class CurriculumDocument(BaseModel):
    metadata: CurriculumMetadata
    curriculum: List[Dict[str, Any]]


class CurriculumStatistics(BaseModel):
    totalEntries: int
    grades: int
    subjects: int
    lastUpdated: str


class CurriculumDataError(Exception):
    pass


# -------------------------
# Helper functions
# -------------------------
def _sample_document() -> CurriculumDocument:
    return CurriculumDocument(
        metadata=CurriculumMetadata(
            version="1.0",
            lastUpdated=datetime.now(timezone.utc).isoformat(),
            totalEntries=1,
        ),
        curriculum=[dict(SAMPLE_CURRICULUM_ENTRY)],
    )


def _parse_document(text: str) -> CurriculumDocument:
    try:
        obj = json.loads(text)
    except json.JSONDecodeError as e:
        raise CurriculumDataError(f"Curriculum document is not JSON: {e}") from e
    if isinstance(obj, dict) and "metadata" not in obj and isinstance(obj.get("curriculum"), list):
        obj["metadata"] = {
            "lastUpdated": datetime.now(timezone.utc).isoformat(),
            "totalEntries": len(obj["curriculum"]),
        }
    try:
        return CurriculumDocument.model_validate(obj)
    except ValidationError as e:
        raise CurriculumDataError(f"Curriculum document has an unexpected shape: {e}") from e


async def _http_get_with_retries(url: str, timeout: float, retries: int, transport=None) -> str:
    """HTTP GET with retries and doubling backoff. Returns the body text."""
    backoff = 1.0
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        for attempt in range(1, retries + 2):
            try:
                resp = await client.get(url)
                resp.raise_for_status()
                return resp.text
            except httpx.HTTPError as e:
                logger.warning("HTTP GET failed for %s (attempt %d/%d): %s", url, attempt, retries + 1, e)
                if attempt <= retries:
                    await asyncio.sleep(backoff)
                    backoff *= 2
                    continue
                raise


def _to_snippet(entry: Dict[str, Any], tier: MatchTier) -> Optional[CurriculumSnippet]:
    try:
        snippet = CurriculumSnippet.model_validate(entry)
    except ValidationError as e:
        logger.warning("Skipping malformed curriculum entry for %s: %s", entry.get("subject"), e)
        return None
    return snippet.model_copy(update={"source": "curriculum-service", "match_tier": tier})


# -------------------------
# Service class
# -------------------------
class CurriculumService:
    """
    Lazily loaded, read-only curriculum lookup shared by all resolutions.
    """

    def __init__(self, config: Optional[CurriculumConfig] = None, *, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or CurriculumConfig()
        self._transport = transport
        self._document: Optional[CurriculumDocument] = None
        self._source: Optional[str] = None
        self._lock = asyncio.Lock()

    @property
    def source(self) -> Optional[str]:
        return self._source

    async def _try_remote(self) -> Optional[CurriculumDocument]:
        url = self.config.service_url
        if not url:
            return None
        try:
            text = await _http_get_with_retries(url, self.config.http_timeout, self.config.http_max_retries, self._transport)
            return _parse_document(text)
        except (httpx.HTTPError, CurriculumDataError) as e:
            logger.warning("Remote curriculum source %s failed: %s", url, e)
            return None

    def _try_local(self) -> Optional[CurriculumDocument]:
        if not self.config.data_file:
            return None
        path = Path(self.config.data_file)
        if not path.exists():
            logger.warning("Curriculum data file %s does not exist", path)
            return None
        try:
            return _parse_document(path.read_text(encoding="utf-8"))
        except (OSError, CurriculumDataError) as e:
            logger.exception("Failed to read/parse curriculum file %s: %s", path, e)
            return None

    async def initialize(self) -> None:
        if self._document is not None:
            return
        async with self._lock:
            if self._document is not None:
                return

            remote = await self._try_remote()
            if remote:
                self._document, self._source = remote, f"remote:{self.config.service_url}"
            else:
                local = self._try_local()
                if local:
                    self._document, self._source = local, f"local:{Path(self.config.data_file).name}"
                else:
                    self._document, self._source = _sample_document(), "sample"
                    logger.warning("No curriculum document available; using sample data")

            logger.info("Loaded %d curriculum entries (source=%s)", len(self._document.curriculum), self._source)

    async def reload(self) -> None:
        async with self._lock:
            self._document = None
            self._source = None
        await self.initialize()

    async def find(self, params: GenerationParameters) -> Optional[Tuple[CurriculumSnippet, MatchTier]]:
        """Three-tier lookup. Returns (snippet, tier) or None."""
        await self.initialize()
        entries = self._document.curriculum

        tiers = [
            (
                MatchTier.EXACT,
                lambda e: e.get("grade") == params.grade
                and e.get("subject") == params.subject
                and str(e.get("term")) == params.term
                and str(e.get("week")) == params.week
                and str(e.get("lesson")) == params.lesson,
            ),
            (MatchTier.PARTIAL, lambda e: e.get("grade") == params.grade and e.get("subject") == params.subject),
            (MatchTier.SUBJECT_ONLY, lambda e: e.get("subject") == params.subject),
        ]
        for tier, matches in tiers:
            for entry in entries:
                if not matches(entry):
                    continue
                snippet = _to_snippet(entry, tier)
                if snippet is None:
                    continue
                if tier is MatchTier.PARTIAL:
                    logger.warning("Using partial match for %s %s", params.grade, params.subject)
                elif tier is MatchTier.SUBJECT_ONLY:
                    logger.warning("Using subject-only match for %s", params.subject)
                return snippet, tier
        return None

    async def available_grades(self) -> List[str]:
        await self.initialize()
        return sorted({e["grade"] for e in self._document.curriculum if e.get("grade")})

    async def available_subjects(self, grade: str) -> List[str]:
        await self.initialize()
        return sorted({e["subject"] for e in self._document.curriculum if e.get("grade") == grade and e.get("subject")})

    async def statistics(self) -> CurriculumStatistics:
        await self.initialize()
        entries = self._document.curriculum
        return CurriculumStatistics(
            totalEntries=len(entries),
            grades=len({e.get("grade") for e in entries}),
            subjects=len({e.get("subject") for e in entries}),
            lastUpdated=self._document.metadata.lastUpdated,
        )

    async def get_available_options(self) -> Dict[str, Any]:
        """Grades, subjects per grade and statistics for the planner form."""
        grades = await self.available_grades()
        subjects = {grade: await self.available_subjects(grade) for grade in grades}
        stats = await self.statistics()
        return {"grades": grades, "subjects": subjects, "statistics": stats.model_dump()}


# Module-level single instance (convenience)
curriculum_service = CurriculumService()
