from functools import lru_cache
import logging

from fastapi import APIRouter, Depends, HTTPException

from app.core.config import AIConfig
from app.core.security import get_current_user
from app.models.lesson_plan_model import GenerationOutcome, GenerationParameters
from app.services.curriculum_resolver import UnresolvableCurriculumError, default_resolver
from app.services.curriculum_service import CurriculumService, curriculum_service
from app.services.generation_session import SessionRegistry
from app.services.planning_pipeline import PlanningPipeline
from app.utils.ai_client import CompletionClient
from app.utils.structured_extractor import StructuredExtractor

router = APIRouter()

# -------------------------
# Logging Configuration
# -------------------------
logger = logging.getLogger("lesson_plan_api")
logger.setLevel(logging.INFO)
if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)


# -------------------------
# Dependencies
# -------------------------
@lru_cache
def get_completion_client() -> CompletionClient:
    return CompletionClient(AIConfig())


@lru_cache
def get_pipeline() -> PlanningPipeline:
    return PlanningPipeline(get_completion_client(), StructuredExtractor(), default_resolver(curriculum_service))


@lru_cache
def get_session_registry() -> SessionRegistry:
    return SessionRegistry(get_pipeline())


def get_curriculum_service() -> CurriculumService:
    return curriculum_service


# -------------------------
# Protected Endpoints
# -------------------------
@router.post("/generate", response_model=GenerationOutcome, summary="Generate a scheme of work entry and lesson plan")
async def generate_scheme_and_plan(
    params: GenerationParameters,
    username: str = Depends(get_current_user),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """
    Generate a scheme of work entry and a 40-minute lesson plan.

    A new request from the same user cancels that user's in-flight one,
    which then answers with status "cancelled".
    """
    try:
        outcome = await registry.get(username).start(params)
    except UnresolvableCurriculumError as e:
        logger.warning("Rejected generation request from %s: %s", username, e)
        raise HTTPException(status_code=422, detail=str(e))
    except Exception as e:
        logger.exception("Failed to generate scheme and lesson plan")
        raise HTTPException(status_code=500, detail=f"Lesson plan generation failed: {str(e)}")

    if outcome.status == "done":
        logger.info(
            "Generated %s %s for %s (source=%s, fallback=%s)",
            params.grade, params.subject, username,
            outcome.result.curriculum_source, outcome.result.fallback_used,
        )
    else:
        logger.info("Generation for %s ended as cancelled: %s", username, outcome.reason)
    return outcome


@router.post("/generate/cancel", summary="Cancel the caller's in-flight generation")
async def cancel_generation(
    username: str = Depends(get_current_user),
    registry: SessionRegistry = Depends(get_session_registry),
):
    cancelled = registry.cancel(username)
    if cancelled:
        logger.info("Generation cancelled by %s", username)
    return {"cancelled": cancelled}


@router.get("/ai/status", summary="Check the chat-completion backend")
async def ai_status(
    username: str = Depends(get_current_user),
    client: CompletionClient = Depends(get_completion_client),
):
    status = await client.test_connection()
    return {"status": status.model_dump(), "modelInfo": client.model_info()}


# -------------------------
# Public Endpoints
# -------------------------
@router.get("/curriculum/options", summary="Grades and subjects available for planning")
async def curriculum_options(service: CurriculumService = Depends(get_curriculum_service)):
    try:
        return await service.get_available_options()
    except Exception as e:
        logger.exception("Failed to load curriculum options")
        raise HTTPException(status_code=500, detail=f"Could not load curriculum options: {str(e)}")
