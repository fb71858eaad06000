"""
Recover structured data from raw Gemini output.

Replies are untrusted: they may be wrapped in markdown fences, carry prose around the JSON,
or stop mid-array when max_output_tokens is hit. Everything here is pure string work with
no I/O, so it is tested against literal truncated/malformed fixtures.

    extract_json(raw)             -> parsed JSON object
    reconcile_questions(raw)      -> list[GeneratedQuestion]
    reconcile_code_verdict(raw)   -> CodeVerdict

Pipeline (each step is the fallback for the previous one):
1. reject empty input
2. strip leading/trailing ```json / ```javascript / ``` fences
3. slice first "{" .. last "}"; if there is no closing brace after the first "{",
   append closers for an open array-of-objects-of-array and slice again
4. json.loads
5. on failure, working on the model's own text (appended closers dropped): cut back to
   the last complete object, drop dangling commas, append the missing closers and parse;
   if that still fails, also drop the half-written key/value pair or element and retry
6. check required top-level fields, then fill every leaf with a non-empty default
"""
import json
import logging
import re
from typing import Any

from tutorlab.schemas.ai import CodeResult, CodeVerdict, GeneratedOption, GeneratedQuestion

logger = logging.getLogger(__name__)

# Closes `{"preguntas": [{"opciones": [` style truncation
TRUNCATION_CLOSERS = "\n]\n}\n]\n}"

DEFAULT_OPTION_EXPLANATION = "Sin explicación"
DEFAULT_DIFFICULTY = "intermedia"
DEFAULT_CORRECT_FEEDBACK = "¡Correcto!"
DEFAULT_INCORRECT_FEEDBACK = "Incorrecto."
DEFAULT_DETAILED_EXPLANATION = "Ver retroalimentación"
DEFAULT_POINTS = 10
DEFAULT_CODE_FEEDBACK = (
    "Se encontraron problemas en el código. Por favor, revisa la lógica implementada."
)

_FENCE_START = re.compile(r"^```(?:json|javascript)?\s*", re.IGNORECASE)
_FENCE_END = re.compile(r"\s*```$")

# json.JSONDecodeError.msg prefixes that mean an unexpected or incomplete token
_INCOMPLETE_TOKEN_ERRORS = (
    "Expecting",
    "Unterminated string",
    "Invalid control character",
)

_TRAILING_COMMA = re.compile(r",\s*$")
_DANGLING_STRING_PAIR = re.compile(r',?\s*"[^"]*"\s*:\s*"[^"]*$')
_DANGLING_SCALAR_PAIR = re.compile(r',?\s*"[^"]*"\s*:\s*[^,{}\[\]"]*$')
_DANGLING_STRING = re.compile(r'(?:,|(?<=[\[{]))\s*"[^"]*"?\s*$')
_EMPTY_OPEN_OBJECT = re.compile(r'(?:,|(?<=\[))\s*\{\s*$')
_COMMA_BEFORE_BRACKET = re.compile(r",(\s*)\]")
_COMMA_BEFORE_BRACE = re.compile(r",(\s*)\}")

_CLOSER_FOR = {"{": "}", "[": "]"}
_TRUTHY = {"true", "1", "yes", "si", "sí"}


class ReconciliationError(ValueError):
    """Model output could not be turned into the expected structure."""


class NoJsonFound(ReconciliationError):
    pass


class InvalidJson(ReconciliationError):
    def __init__(self, parser_message: str):
        self.parser_message = parser_message
        super().__init__(f"Invalid JSON in model response: {parser_message}")


class MissingRequiredField(ReconciliationError):
    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Model response is missing required field '{field}'")


# ---- JSON recovery ----


def strip_code_fences(text: str) -> str:
    text = text.strip()
    text = _FENCE_START.sub("", text, count=1)
    text = _FENCE_END.sub("", text, count=1)
    return text.strip()


def locate_json(text: str) -> str:
    """Return the first-"{" .. last-"}" slice, repairing a missing closing brace."""
    first = text.find("{")
    if first == -1:
        raise NoJsonFound("No JSON object found in model response")
    last = text.rfind("}")
    if last == -1 or last < first:
        logger.warning("Model response looks truncated (no closing brace); appending closers")
        text = text + TRUNCATION_CLOSERS
        last = text.rfind("}")
        if last < first:
            raise NoJsonFound("No JSON object found in model response")
    return text[first:last + 1]


def missing_closers(text: str) -> str:
    """Closers for every bracket still open at the end of `text`, innermost first."""
    stack: list[str] = []
    in_string = escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSER_FOR:
            stack.append(ch)
        elif ch in "}]" and stack and _CLOSER_FOR[stack[-1]] == ch:
            stack.pop()
    closers = "".join(_CLOSER_FOR[c] for c in reversed(stack))
    return ('"' + closers) if in_string else closers


def _closing_brace_positions(text: str) -> list[int]:
    """Indexes of every "}" outside string literals."""
    positions = []
    in_string = escaped = False
    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "}":
            positions.append(i)
    return positions


def _cut_to_last_complete_object(text: str, error_pos: int) -> str:
    """Scan back from the error to the nearest "}" followed by a comma and cut after it.
    Braces inside string values do not count."""
    for i in reversed(_closing_brace_positions(text)):
        if i >= error_pos:
            continue
        j = i + 1
        while j < len(text) and text[j].isspace():
            j += 1
        if j < len(text) and text[j] == ",":
            return text[:j + 1]
    return text


def _close(text: str) -> str:
    closers = missing_closers(text)
    if closers:
        logger.info("Appending %r to close truncated JSON", closers)
    return text.rstrip() + closers


def _without_truncation_closers(text: str) -> str | None:
    """The text as the model sent it, if locate_json() had to append TRUNCATION_CLOSERS."""
    if not text.endswith(TRUNCATION_CLOSERS):
        return None
    original = text[:-len(TRUNCATION_CLOSERS)]
    if "}" in original:
        return None
    return original


def repair_json(text: str, error: json.JSONDecodeError) -> list[str]:
    """Best-effort structural repairs for the truncation patterns Gemini produces.

    Returns candidate texts, least lossy first. The tail clean-ups always run on the
    model's own text: appended TRUNCATION_CLOSERS are dropped and recomputed."""
    if error.msg == "Extra data":
        # a complete value followed by leftovers (e.g. surplus truncation closers)
        return [text[:error.pos]]

    original = _without_truncation_closers(text)
    if original is not None:
        try:
            json.loads(original)
        except json.JSONDecodeError as e:
            text, error = original, e

    repaired = text
    incomplete = error.msg.startswith(_INCOMPLETE_TOKEN_ERRORS)
    if incomplete:
        repaired = _cut_to_last_complete_object(repaired, error.pos)
        repaired = _TRAILING_COMMA.sub("", repaired)
    repaired = _COMMA_BEFORE_BRACKET.sub(r"\1]", repaired)
    repaired = _COMMA_BEFORE_BRACE.sub(r"\1}", repaired)
    candidates = [_close(repaired)]

    if incomplete:
        # drop whatever half-written element the cut left at the tail
        for pattern in (
            _DANGLING_STRING_PAIR,
            _DANGLING_SCALAR_PAIR,
            _DANGLING_STRING,
            _EMPTY_OPEN_OBJECT,
            _TRAILING_COMMA,
        ):
            repaired = pattern.sub("", repaired)
        candidates.append(_close(repaired))
    return candidates


def parse_with_repair(json_text: str) -> Any:
    try:
        return json.loads(json_text)
    except json.JSONDecodeError as e:
        parse_error = e
    logger.warning("Model JSON did not parse (%s); attempting repair", parse_error)
    for candidate in repair_json(json_text, parse_error):
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError as repair_error:
            logger.debug("Repair candidate rejected: %s", repair_error)
            continue
        logger.info("Model JSON repaired and parsed")
        return data
    logger.error("JSON repair failed: %s", parse_error)
    raise InvalidJson(str(parse_error))


def extract_json(raw: str) -> Any:
    """Steps 1-5: raw model text -> parsed JSON value. Raises ReconciliationError."""
    if not raw or not raw.strip():
        raise NoJsonFound("Empty model response")
    text = strip_code_fences(raw)
    return parse_with_repair(locate_json(text))


# ---- Field coercion ----


def _text(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return default


def _bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    if isinstance(value, (int, float)):
        return value != 0
    return False


def _int(value: Any, default: int, minimum: int = 0) -> int:
    if isinstance(value, bool) or value is None:
        return default
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return default
    return number if number >= minimum else default


def _str_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if not isinstance(value, list):
        return []
    return [_text(v, "") for v in value if _text(v, "")]


# ---- Domain reconciliation ----


def _to_option(raw: Any, index: int) -> GeneratedOption:
    if isinstance(raw, str):
        return GeneratedOption(
            text=_text(raw, f"Opción {index + 1}"),
            is_correct=False,
            explanation=DEFAULT_OPTION_EXPLANATION,
        )
    if not isinstance(raw, dict):
        raw = {}
    return GeneratedOption(
        text=_text(raw.get("texto"), f"Opción {index + 1}"),
        is_correct=_bool(raw.get("es_correcta")),
        explanation=_text(raw.get("explicacion"), DEFAULT_OPTION_EXPLANATION),
    )


def _to_question(raw: dict, index: int) -> GeneratedQuestion:
    options = raw.get("opciones")
    if not isinstance(options, list):
        options = []
    return GeneratedQuestion(
        text=_text(raw.get("texto"), f"Pregunta {index + 1}"),
        options=[_to_option(o, i) for i, o in enumerate(options)],
        difficulty=_text(raw.get("dificultad"), DEFAULT_DIFFICULTY),
        correct_feedback=_text(raw.get("retroalimentacion_correcta"), DEFAULT_CORRECT_FEEDBACK),
        incorrect_feedback=_text(raw.get("retroalimentacion_incorrecta"), DEFAULT_INCORRECT_FEEDBACK),
        detailed_explanation=_text(
            raw.get("explicacion_detallada"),
            _text(raw.get("retroalimentacion_correcta"), DEFAULT_DETAILED_EXPLANATION),
        ),
        points=_int(raw.get("puntos"), DEFAULT_POINTS, minimum=1),
    )


def reconcile_questions(raw: str) -> list[GeneratedQuestion]:
    """Model text -> questions with every field populated. Option counts are not validated here."""
    data = extract_json(raw)
    items = data.get("preguntas") if isinstance(data, dict) else None
    if not isinstance(items, list):
        raise MissingRequiredField("preguntas")
    questions = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            logger.warning("Skipping question %d: not a JSON object", index + 1)
            continue
        questions.append(_to_question(item, index))
    logger.info("Reconciled %d questions from model response", len(questions))
    return questions


def _result(value: Any) -> CodeResult:
    text = value.strip().lower() if isinstance(value, str) else ""
    try:
        return CodeResult(text)
    except ValueError:
        logger.warning("Unknown code validation result %r; treating as error", value)
        return CodeResult.ERROR


def reconcile_code_verdict(raw: str) -> CodeVerdict:
    """Model text -> CodeVerdict. Needs at least a result or a feedback text."""
    data = extract_json(raw)
    if not isinstance(data, dict):
        raise MissingRequiredField("resultado")
    if "resultado" not in data and "retroalimentacion_educativa" not in data:
        raise MissingRequiredField("resultado")
    if "resultado" not in data:
        logger.warning("Model response has no 'resultado'; defaulting to error")

    total = _int(data.get("casos_prueba_totales"), 0)
    passed = _int(data.get("casos_prueba_pasados"), 0)
    if total and passed > total:
        passed = total
    return CodeVerdict(
        result=_result(data.get("resultado")),
        errors=_str_list(data.get("errores_encontrados")),
        tests_passed=passed,
        tests_total=total,
        feedback=_text(data.get("retroalimentacion_educativa"), DEFAULT_CODE_FEEDBACK),
        suggestions=_str_list(data.get("sugerencias_mejora")),
    )
