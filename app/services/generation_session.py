import logging
from typing import Dict, Optional

from app.models.lesson_plan_model import GenerationCancelled, GenerationOutcome, GenerationParameters
from app.services.planning_pipeline import PlanningPipeline
from app.utils.cancellation import CancellationToken

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


class GenerationSession:
    """One active pipeline run at a time; starting a new run cancels the previous one."""

    def __init__(self, pipeline: PlanningPipeline):
        self.pipeline = pipeline
        self._token: Optional[CancellationToken] = None

    @property
    def is_running(self) -> bool:
        return self._token is not None and not self._token.cancelled

    def cancel(self, reason: str = "Generation was cancelled by the user.") -> bool:
        if not self.is_running:
            return False
        self._token.cancel(reason)
        return True

    async def start(self, params: GenerationParameters) -> GenerationOutcome:
        if self.is_running:
            logger.info("Cancelling in-flight generation before starting a new one")
            self._token.cancel("Superseded by a newer generation request.")

        token = CancellationToken()
        self._token = token
        try:
            result = await self.pipeline.generate(params, token)
        finally:
            if self._token is token:
                self._token = None

        if isinstance(result, GenerationCancelled):
            return GenerationOutcome(status="cancelled", reason=result.reason)
        return GenerationOutcome(status="done", result=result)


class SessionRegistry:
    def __init__(self, pipeline: PlanningPipeline):
        self.pipeline = pipeline
        self._sessions: Dict[str, GenerationSession] = {}

    def get(self, username: str) -> GenerationSession:
        session = self._sessions.get(username)
        if session is None:
            session = GenerationSession(self.pipeline)
            self._sessions[username] = session
        return session

    def cancel(self, username: str) -> bool:
        session = self._sessions.get(username)
        return session.cancel() if session else False
