"""
Gemini adapter for the tutorlab AI features (code validation, quiz generation, tutor chat).
Uses the google-genai client: Vertex AI when a project is configured, API key otherwise.
One outbound call per attempt, bounded retry with exponential backoff on transient errors.
Does not touch cache, quota or usage monitor; orchestrators sequence those.
"""
import asyncio
import enum
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable

from tutorlab.config import Settings, get_settings

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
# Error text (upper-cased) containing any of these is worth another attempt
TRANSIENT_ERROR_MARKERS = ("RATE_LIMIT", "RESOURCE_EXHAUSTED", "UNAVAILABLE", "429", "503")


class RequestKind(str, enum.Enum):
    GENERAL = "general"
    CHAT = "chat"
    CODE_VALIDATION = "code_validation"
    QUESTION_GENERATION = "question_generation"
    EXPLAIN_CONCEPT = "explain_concept"


@dataclass
class GenerationOptions:
    temperature: float
    max_output_tokens: int
    request_kind: RequestKind = RequestKind.GENERAL


class GenerationError(RuntimeError):
    """Gemini call failed: non-retryable error, timeout, or retries exhausted."""


def is_retryable_error(error: BaseException) -> bool:
    """True if the error message/code matches the transient-error vocabulary."""
    message = str(error).upper()
    code = getattr(error, "code", None)
    if code is not None:
        message = f"{message} {code}"
    return any(marker in message for marker in TRANSIENT_ERROR_MARKERS)


def default_options(kind: RequestKind, settings: Settings | None = None) -> GenerationOptions:
    """Per-kind temperature/max tokens from settings. Callers may override fields."""
    settings = settings or get_settings()
    per_kind = {
        RequestKind.CODE_VALIDATION: (
            settings.code_validation_temperature,
            settings.code_validation_max_output_tokens,
        ),
        RequestKind.QUESTION_GENERATION: (
            settings.question_generation_temperature,
            settings.question_generation_max_output_tokens,
        ),
        RequestKind.CHAT: (settings.chat_temperature, settings.chat_max_output_tokens),
        RequestKind.EXPLAIN_CONCEPT: (settings.chat_temperature, settings.chat_max_output_tokens),
    }
    temperature, max_tokens = per_kind.get(
        kind, (settings.default_temperature, settings.default_max_output_tokens)
    )
    return GenerationOptions(temperature=temperature, max_output_tokens=max_tokens, request_kind=kind)


def build_genai_client(settings: Settings) -> Any:
    """Create the google-genai client. Raises RuntimeError if Gemini is not configured."""
    try:
        from google import genai
        from google.oauth2 import service_account
    except ImportError as e:
        raise RuntimeError(
            "Google GenAI not installed. pip install google-genai google-auth"
        ) from e

    if settings.vertex_project_id:
        credentials = None
        if settings.vertex_credentials_path:
            path = Path(settings.vertex_credentials_path)
            if path.is_file():
                credentials = service_account.Credentials.from_service_account_file(
                    str(path),
                    scopes=["https://www.googleapis.com/auth/cloud-platform"],
                )
        return genai.Client(
            vertexai=True,
            project=settings.vertex_project_id,
            location=settings.vertex_location,
            credentials=credentials,
        )

    if not settings.gemini_api_key:
        raise RuntimeError("Gemini is not configured: set GEMINI_API_KEY or VERTEX_PROJECT_ID")
    return genai.Client(api_key=settings.gemini_api_key)


class GeminiClient:
    """
    generate(prompt, options) -> text. Retries up to MAX_ATTEMPTS on transient errors,
    sleeping 2**attempt seconds between attempts. The underlying client is created lazily
    so a missing key only fails the first real call, not app start-up.
    """

    def __init__(
        self,
        client: Any = None,
        *,
        settings: Settings | None = None,
        model: str | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._settings = settings or get_settings()
        self._client = client
        self.model = model or self._settings.gemini_model
        self._timeout = self._settings.gemini_timeout_seconds
        self._sleep = sleep

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = build_genai_client(self._settings)
        return self._client

    async def generate(self, prompt: str, options: GenerationOptions | None = None) -> str:
        options = options or default_options(RequestKind.GENERAL, self._settings)
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                logger.info("Gemini call: %s (attempt %d)", options.request_kind.value, attempt)
                text = await self._call_model(prompt, options)
                logger.info("Gemini response received (%d chars)", len(text))
                return text
            except asyncio.TimeoutError as e:
                logger.error("Gemini call timed out after %ss", self._timeout)
                raise GenerationError(f"Gemini call timed out after {self._timeout}s") from e
            except Exception as e:
                logger.warning("Gemini error (attempt %d): %s", attempt, e)
                if attempt < MAX_ATTEMPTS and is_retryable_error(e):
                    wait_s = 2 ** attempt
                    logger.info("Retrying Gemini call in %ds", wait_s)
                    await self._sleep(wait_s)
                    continue
                raise GenerationError(f"Gemini call failed: {e}") from e
        raise GenerationError("Gemini call failed: max attempts reached")

    async def _call_model(self, prompt: str, options: GenerationOptions) -> str:
        from google.genai.types import GenerateContentConfig

        client = self._get_client()
        timeout = self._timeout if self._timeout and self._timeout > 0 else None
        response = await asyncio.wait_for(
            client.aio.models.generate_content(
                model=self.model,
                contents=prompt,
                config=GenerateContentConfig(
                    temperature=options.temperature,
                    max_output_tokens=options.max_output_tokens,
                ),
            ),
            timeout=timeout,
        )
        if not response or not response.candidates:
            raise ValueError("Empty response from model")
        candidate = response.candidates[0]
        if not candidate.content or not candidate.content.parts:
            raise ValueError("No text in model response")
        return getattr(response, "text", None) or candidate.content.parts[0].text
