"""
Prompt builders for the Gemini use cases. Pure functions: fixed Spanish scaffold
(persona, rules, JSON-only directive, word ceilings) plus the interpolated request data.
"""
import json
from typing import Any

from tutorlab.schemas.ai import ChatContext, ChatMessage

CHAT_HISTORY_TURNS = 5
SUGGESTIONS_SEPARATOR = "---SUGERENCIAS---"
SUBTOPIC_CONTENT_CHARS = 200


def build_code_validation_prompt(
    code: str,
    language: str,
    statement: str | None,
    test_cases: list | None,
) -> str:
    test_cases = test_cases if isinstance(test_cases, list) else []
    return f"""Eres un profesor de programación brindando retroalimentación constructiva.

El estudiante ha enviado el siguiente código para el ejercicio:

**CÓDIGO DEL ESTUDIANTE:**
```{language}
{code}
```

**EJERCICIO SOLICITADO:**
"{statement or 'No especificado'}"

**CASOS DE PRUEBA:**
{json.dumps(test_cases, indent=2, ensure_ascii=False)}

**INSTRUCCIONES:**
1. Analiza el código y verifica si es correcto; indica lo que el estudiante hizo bien
2. Evalúa si pasa los casos de prueba
3. Identifica errores de sintaxis o lógica y explica por qué ocurren
4. Proporciona retroalimentación educativa CONCISA (máximo 4-5 oraciones)
5. Sugiere mejoras específicas para corregir errores o mejorar el código
6. Recomienda recursos para aprender los conceptos faltantes

**TONO:** Alentador, educativo, sin ser condescendiente.

**IMPORTANTE:**
- Responde ÚNICAMENTE en formato JSON válido
- NO uses bloques de código markdown (no uses ```json)
- Mantén la retroalimentacion_educativa BREVE (máximo 350 palabras)
- Responde solo el objeto JSON puro

**RESPONDE EN ESTE FORMATO JSON EXACTO:**
{{
  "resultado": "correcto" | "incorrecto" | "error",
  "errores_encontrados": ["lista de errores específicos y el porqué"],
  "casos_prueba_pasados": número de casos que pasa,
  "casos_prueba_totales": {len(test_cases)},
  "retroalimentacion_educativa": "Explicación pedagógica BREVE de qué hizo bien o mal, cómo mejorar y qué estudiar",
  "sugerencias_mejora": ["sugerencia 1", "sugerencia 2"]
}}"""


def _subtopic_content(subtopic: Any) -> str:
    detail = getattr(subtopic, "content_detail", None)
    if detail:
        return detail[:SUBTOPIC_CONTENT_CHARS]
    return getattr(subtopic, "description", None) or "N/A"


def build_question_generation_prompt(subtopic: Any, count: int, difficulty: Any) -> str:
    """`subtopic` is a Subtopic row (topic relationship loaded)."""
    difficulty = getattr(difficulty, "value", difficulty)
    topic = getattr(subtopic, "topic", None)
    topic_name = getattr(topic, "name", None) or "N/A"
    return f"""Eres un experto en educación. Genera {count} preguntas de opción múltiple.

CONTEXTO:
Tema: {topic_name}
Subtema: {subtopic.name}
Contenido: {_subtopic_content(subtopic)}

REQUISITOS:
- {count} preguntas
- Dificultad: {difficulty}
- 4 opciones (1 correcta)
- Explicaciones ULTRA BREVES (máximo 8 palabras cada una)

IMPORTANTE - LÍMITES ESTRICTOS:
- Responde SOLO JSON válido sin markdown
- Explicaciones de opciones: máximo 8 palabras
- Retroalimentaciones: máximo 15 palabras
- Explicación detallada: máximo 25 palabras
- RESPUESTAS CONCISAS para evitar truncamiento

FORMATO JSON:
{{
  "preguntas": [
    {{
      "texto": "Pregunta clara",
      "opciones": [
        {{"texto": "Opción A", "es_correcta": true, "explicacion": "Breve"}},
        {{"texto": "Opción B", "es_correcta": false, "explicacion": "Breve"}},
        {{"texto": "Opción C", "es_correcta": false, "explicacion": "Breve"}},
        {{"texto": "Opción D", "es_correcta": false, "explicacion": "Breve"}}
      ],
      "dificultad": "{difficulty}",
      "retroalimentacion_correcta": "Breve",
      "retroalimentacion_incorrecta": "Breve",
      "explicacion_detallada": "Breve",
      "puntos": 10
    }}
  ]
}}

Responde SOLO el JSON."""


_CHAT_PERSONA = """Eres LULU, una docente amigable y experta en programación.

TU PERSONALIDAD:
- Paciente y motivadora
- Explicas con ejemplos claros y paso a paso
- Fomentas la curiosidad y el pensamiento crítico
- Adaptas las explicaciones al nivel del estudiante
- Das la información que te piden sin agregar información irrelevante
- Usas analogías cuando ayudan
- Haces preguntas para guiar el aprendizaje (método socrático)
- Celebras los logros del estudiante

REGLAS:
1. Si el estudiante pregunta algo fuera de programación, redirige amablemente al tema
2. No des soluciones completas; guía al estudiante a descubrirlas
3. Usa emojis ocasionalmente para ser amigable
4. Si detectas frustración, sé extra paciente y motivadora
"""

_CHAT_FORMAT = f"""
IMPORTANTE:
Al final de tu respuesta incluye SIEMPRE 2-3 sugerencias prácticas de ejercicios o temas
relacionados que el estudiante pueda explorar.

Formato de tu respuesta:
1. Primero: tu explicación educativa y motivadora
2. Al final, una sección así:

{SUGGESTIONS_SEPARATOR}
- [Sugerencia 1: ejercicio o tema relacionado]
- [Sugerencia 2: ejercicio o tema relacionado]
- [Sugerencia 3: ejercicio o tema relacionado]

TU RESPUESTA (clara, pedagógica, motivadora):
"""


def build_chat_prompt(
    message: str,
    history: list[ChatMessage] | None = None,
    context: ChatContext | None = None,
) -> str:
    parts = [_CHAT_PERSONA]

    if context is not None:
        lines = ["", "CONTEXTO ACTUAL DEL ESTUDIANTE:"]
        if context.topic:
            lines.append(f"- Tema: {context.topic}")
        if context.subtopic:
            lines.append(f"- Subtema: {context.subtopic}")
        if context.exercise_id is not None:
            lines.append(f"- Trabajando en ejercicio #{context.exercise_id}")
        parts.append("\n".join(lines))

    if history:
        lines = ["", "HISTORIAL DE CONVERSACIÓN:"]
        for msg in history[-CHAT_HISTORY_TURNS:]:
            speaker = "Estudiante" if msg.role == "user" else "LULU"
            lines.append(f"{speaker}: {msg.content}")
        parts.append("\n".join(lines))

    parts.append(f"\nMENSAJE ACTUAL DEL ESTUDIANTE:\n{message}")
    parts.append(_CHAT_FORMAT)
    return "\n".join(parts)
