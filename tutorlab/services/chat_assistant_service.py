"""
Tutor chat: persona prompt + optional course context + last 5 turns -> Gemini -> reply and
up to 3 follow-up suggestions. Not cached. Internal failures return a fixed apology;
only QuotaExceeded reaches the caller.
"""
import logging
import re
import time

from tutorlab.config import Settings, get_settings
from tutorlab.schemas.ai import (
    ChatContext,
    ChatRequest,
    ChatResponse,
    ExplainConceptRequest,
    ExplainConceptResponse,
)
from tutorlab.services.ai_rate_limiter import GeminiRateLimiter, QuotaExceeded
from tutorlab.services.gemini_client import GeminiClient, RequestKind, default_options
from tutorlab.services.prompts import SUGGESTIONS_SEPARATOR, build_chat_prompt
from tutorlab.services.usage_monitor import GeminiUsageMonitor, estimate_tokens

logger = logging.getLogger(__name__)

MAX_SUGGESTIONS = 3
MIN_SUGGESTION_CHARS = 10
CHAT_FAILED_MESSAGE = "Lo siento, no pude procesar tu pregunta en este momento. ¿Podrías reformularla?"

_BULLET = re.compile(r"^(?:[-*•]|\d+\.)\s+(.+)$")
_SUGGESTION_PHRASES = (
    re.compile(
        r"(?:puedes?|podrías?|intenta|prueba|te sugiero|considera|explora|practica)\s+([^.!?\n]{15,100}[.!?])",
        re.IGNORECASE,
    ),
    re.compile(r"(?:Otra opción|También puedes?|Adicionalmente)\s+([^.!?\n]{15,100}[.!?])", re.IGNORECASE),
)
# (keyword pattern, suggestion) checked in order against the reply
_KEYWORD_SUGGESTIONS = (
    (re.compile(r"funci[oó]n"), "Intenta crear tus propias funciones con diferentes parámetros"),
    (re.compile(r"recursiv"), "Practica con ejemplos de recursión como factorial o Fibonacci"),
    (re.compile(r"variable"), "Experimenta declarando variables de diferentes tipos"),
    (re.compile(r"bucle|\bloop\b|\bfor\b|\bwhile\b"), "Practica con diferentes tipos de bucles (for, while, do-while)"),
    (re.compile(r"array|lista|arreglo"), "Explora métodos de arrays como map, filter y reduce"),
)
_GENERIC_SUGGESTIONS = [
    "Intenta resolver ejercicios prácticos sobre este tema",
    "Revisa la documentación oficial para profundizar",
    "Practica escribiendo código simple relacionado con lo aprendido",
]


def extract_suggestions(reply: str) -> list[str]:
    """Suggestion-like phrases ("intenta ...", "puedes ...") found in free text."""
    found: list[str] = []
    for pattern in _SUGGESTION_PHRASES:
        for match in pattern.finditer(reply):
            suggestion = match.group(1).strip()
            if suggestion not in found:
                found.append(suggestion)
            if len(found) >= MAX_SUGGESTIONS:
                return found
    return found


def fallback_suggestions(reply: str) -> list[str]:
    lowered = reply.lower()
    found = [text for pattern, text in _KEYWORD_SUGGESTIONS if pattern.search(lowered)]
    return (found or _GENERIC_SUGGESTIONS)[:MAX_SUGGESTIONS]


def parse_structured_reply(reply: str) -> tuple[str, list[str]]:
    """Split the reply at ---SUGERENCIAS--- into (answer, up to 3 suggestions)."""
    index = reply.find(SUGGESTIONS_SEPARATOR)
    if index == -1:
        logger.debug("No suggestions section in chat reply; extracting from text")
        return reply.strip(), extract_suggestions(reply) or fallback_suggestions(reply)

    answer = reply[:index].strip()
    section = reply[index + len(SUGGESTIONS_SEPARATOR):]
    suggestions = []
    for line in section.splitlines():
        match = _BULLET.match(line.strip())
        if match and len(match.group(1).strip()) > MIN_SUGGESTION_CHARS:
            suggestions.append(match.group(1).strip())
    if not suggestions:
        suggestions = fallback_suggestions(reply)
    return answer, suggestions[:MAX_SUGGESTIONS]


class ChatAssistantService:
    def __init__(
        self,
        client: GeminiClient,
        limiter: GeminiRateLimiter,
        monitor: GeminiUsageMonitor,
        *,
        settings: Settings | None = None,
    ):
        self._client = client
        self._limiter = limiter
        self._monitor = monitor
        self._settings = settings or get_settings()

    async def chat(
        self,
        request: ChatRequest,
        user_id: str | None = None,
        kind: RequestKind = RequestKind.CHAT,
    ) -> ChatResponse:
        started = time.monotonic()
        prompt = build_chat_prompt(request.message, request.history, request.context)
        self._limiter.check()

        reply = ""
        try:
            reply = await self._client.generate(prompt, default_options(kind, self._settings))
            answer, suggestions = parse_structured_reply(reply)
        except QuotaExceeded:
            raise
        except Exception:
            logger.exception("Chat assistant failed")
            await self._record(kind, estimate_tokens(prompt, reply), started, user_id)
            return ChatResponse(reply=CHAT_FAILED_MESSAGE, context_used=False)

        await self._record(kind, estimate_tokens(prompt, reply), started, user_id)
        return ChatResponse(
            reply=answer,
            context_used=request.context is not None,
            suggestions=suggestions,
        )

    async def explain_concept(
        self,
        request: ExplainConceptRequest,
        user_id: str | None = None,
    ) -> ExplainConceptResponse:
        context = None
        if request.topic or request.subtopic:
            context = ChatContext(topic=request.topic, subtopic=request.subtopic)
        response = await self.chat(
            ChatRequest(message=f"Explícame el concepto: {request.concept}", context=context),
            user_id=user_id,
            kind=RequestKind.EXPLAIN_CONCEPT,
        )
        return ExplainConceptResponse(concept=request.concept, explanation=response.reply)

    async def _record(self, kind: RequestKind, tokens: int, started: float, user_id: str | None) -> None:
        await self._monitor.record(
            kind,
            tokens,
            False,
            int((time.monotonic() - started) * 1000),
            user_id=user_id,
        )
