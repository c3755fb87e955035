# utils/ai_client.py
import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel

from app.core.config import AIConfig
from app.utils.cancellation import CancellationToken, checkpoint_sleep

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

JSON_SYSTEM_PROMPT = (
    "You are a helpful assistant that responds only with valid JSON. "
    "Do not include any explanations or additional text outside the JSON object."
)
TEXT_SYSTEM_PROMPT = "You are a helpful assistant for educational content creation."

FALLBACK_MAX_TOKENS = 1000


class BackendError(Exception):
    """
    A completion request failed.

    kind is one of "timeout", "auth", "rate-limit", "http", "empty-completion".
    Only timeouts escalate to the fallback models.
    """

    KINDS = ("timeout", "auth", "rate-limit", "http", "empty-completion")

    def __init__(self, kind: str, message: str, *, model: Optional[str] = None, status_code: Optional[int] = None):
        if kind not in self.KINDS:
            raise ValueError(f"Unknown backend error kind: {kind}")
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.model = model
        self.status_code = status_code

    @property
    def transient(self) -> bool:
        return self.kind != "auth"

    def __str__(self) -> str:
        return f"[{self.kind}] {self.message}"


class EmptyCompletionError(BackendError):
    def __init__(self, message: str = "No content generated by the model", *, model: Optional[str] = None):
        super().__init__("empty-completion", message, model=model)


class ConnectionStatus(BaseModel):
    connected: bool
    model: str
    error: Optional[str] = None


def _classify_status(status_code: int) -> str:
    if status_code in (401, 403):
        return "auth"
    if status_code == 429:
        return "rate-limit"
    if status_code in (408, 504):
        return "timeout"
    return "http"


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:500]
    if isinstance(data, dict):
        err = data.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])
        if data.get("message"):
            return str(data["message"])
    return resp.text[:500]


class CompletionClient:
    """
    Chat-completion client for an OpenAI-compatible backend (OpenRouter by default).

    Owns the transport-level policy: retries with capped exponential backoff on
    the primary model, then one attempt per fallback model when the primary
    only ever timed out.
    """

    def __init__(self, config: AIConfig, *, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self._transport = transport

    @property
    def endpoint(self) -> str:
        return f"{self.config.base_url.rstrip('/')}/chat/completions"

    def _backoff_delay(self, attempt: int) -> float:
        return min(self.config.backoff_base * (2 ** (attempt - 1)), self.config.backoff_cap)

    def _build_payload(self, prompt: str, model: str, max_tokens: int, temperature: float, fmt: str) -> Dict[str, Any]:
        system_prompt = JSON_SYSTEM_PROMPT if fmt == "json" else TEXT_SYSTEM_PROMPT
        return {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "max_tokens": max_tokens,
            "temperature": temperature,
            "top_p": 0.8,
            "frequency_penalty": 0.1,
            "presence_penalty": 0.1,
        }

    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self.config.app_referer,
            "X-Title": self.config.app_title,
        }
        async with httpx.AsyncClient(timeout=self.config.request_timeout, transport=self._transport) as client:
            return await client.post(self.endpoint, headers=headers, json=payload)

    async def _fetch_completion(self, prompt: str, model: str, max_tokens: int, temperature: float, fmt: str) -> str:
        """Single request against one model. Raises BackendError on any failure."""
        if not self.config.api_key:
            raise BackendError("auth", "AI API key not configured.", model=model)

        payload = self._build_payload(prompt, model, max_tokens, temperature, fmt)
        try:
            # wall-clock bound on top of httpx's per-operation timeouts
            resp = await asyncio.wait_for(self._post(payload), timeout=self.config.request_timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise BackendError("timeout", f"Request to {model} timed out after {self.config.request_timeout}s", model=model) from e
        except httpx.RequestError as e:
            raise BackendError("http", f"Request to {model} failed: {e}", model=model) from e

        if resp.status_code < 200 or resp.status_code >= 300:
            kind = _classify_status(resp.status_code)
            raise BackendError(
                kind,
                f"AI provider returned status {resp.status_code}: {_error_message(resp)}",
                model=model,
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as e:
            raise BackendError("http", "AI provider returned a non-JSON body", model=model, status_code=resp.status_code) from e

        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list) or not choices:
            raise EmptyCompletionError(model=model)
        first = choices[0] if isinstance(choices[0], dict) else {}
        message = first.get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            raise EmptyCompletionError("Completion choice has no message content", model=model)
        return content

    async def complete(
        self,
        prompt: str,
        *,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        format: str = "text",
        retries: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> str:
        """
        Return the text of the first successful completion for `prompt`.

        Raises BackendError once the primary model's retry budget and, for
        timeouts, every fallback model have been exhausted. When the primary
        run mixes timeouts with other failures, the last non-timeout failure
        is raised.
        """
        max_retries = retries if retries is not None else self.config.max_retries
        max_retries = max(1, max_retries)
        max_tokens = max_tokens if max_tokens is not None else self.config.default_max_tokens
        temperature = temperature if temperature is not None else self.config.default_temperature
        primary = self.config.model

        failures: List[BackendError] = []
        for attempt in range(1, max_retries + 1):
            logger.info("AI call attempt %d/%d with %s", attempt, max_retries, primary)
            try:
                text = await self._fetch_completion(prompt, primary, max_tokens, temperature, format)
            except BackendError as e:
                if cancel_token:
                    cancel_token.raise_if_cancelled()
                failures.append(e)
                logger.warning("Attempt %d with %s failed: %s", attempt, primary, e)
                if attempt < max_retries:
                    delay = self._backoff_delay(attempt)
                    logger.info("Retrying in %.1fs...", delay)
                    await checkpoint_sleep(delay, cancel_token)
                continue
            if cancel_token:
                cancel_token.raise_if_cancelled()
            return text

        last = failures[-1]
        non_timeouts = [f for f in failures if f.kind != "timeout"]
        if non_timeouts:
            # a mixed run surfaces its real failure, not a trailing timeout
            raise non_timeouts[-1]
        if not self.config.fallback_models:
            raise last

        logger.info("Primary model %s timed out on every attempt, trying fallback models...", primary)
        fallback_tokens = min(max_tokens or 1500, FALLBACK_MAX_TOKENS)
        for idx, fallback_model in enumerate(self.config.fallback_models):
            if idx > 0:
                await checkpoint_sleep(self.config.fallback_delay, cancel_token)
            logger.info("Trying fallback model: %s", fallback_model)
            try:
                text = await self._fetch_completion(prompt, fallback_model, fallback_tokens, temperature, format)
            except BackendError as e:
                if cancel_token:
                    cancel_token.raise_if_cancelled()
                logger.warning("Fallback model %s failed: %s", fallback_model, e)
                last = e
                continue
            if cancel_token:
                cancel_token.raise_if_cancelled()
            return text

        raise BackendError(
            last.kind,
            f"All attempts failed. Last error: {last.message}",
            model=last.model,
            status_code=last.status_code,
        ) from last

    async def test_connection(self) -> ConnectionStatus:
        """Send a tiny prompt with a single attempt to check the backend is reachable."""
        logger.info("Testing AI connection (model=%s, base_url=%s)", self.config.model, self.config.base_url)
        try:
            response = await self.complete(
                "Hello, please respond with just 'OK'",
                max_tokens=10,
                temperature=0.1,
                retries=1,
            )
        except BackendError as e:
            logger.error("AI connection test failed: %s", e)
            return ConnectionStatus(connected=False, model=self.config.model, error=str(e))
        logger.info("AI connection test successful: %s", response[:50])
        return ConnectionStatus(connected=True, model=self.config.model)

    def model_info(self) -> Dict[str, Any]:
        return {
            "model": self.config.model,
            "baseUrl": self.config.base_url,
            "hasApiKey": bool(self.config.api_key),
            "fallbackModels": list(self.config.fallback_models),
        }
