"""Tests for recovering questions and code verdicts from raw model text."""

import json

import pytest

from tutorlab.schemas.ai import CodeResult
from tutorlab.services.response_reconciler import (
    DEFAULT_CODE_FEEDBACK,
    InvalidJson,
    MissingRequiredField,
    NoJsonFound,
    extract_json,
    missing_closers,
    reconcile_code_verdict,
    reconcile_questions,
)


def _question(text="¿Qué es un caso base?"):
    return {
        "texto": text,
        "opciones": [
            {"texto": "La condición de parada", "es_correcta": True, "explicacion": "Detiene la recursión"},
            {"texto": "Un bucle", "es_correcta": False, "explicacion": "No es recursión"},
        ],
        "dificultad": "basica",
        "retroalimentacion_correcta": "Bien hecho",
        "retroalimentacion_incorrecta": "Repasa el caso base",
        "explicacion_detallada": "Sin caso base la función no termina",
        "puntos": 5,
    }


def test_plain_json_questions():
    questions = reconcile_questions(json.dumps({"preguntas": [_question()]}))
    assert len(questions) == 1
    q = questions[0]
    assert q.text == "¿Qué es un caso base?"
    assert [o.is_correct for o in q.options] == [True, False]
    assert q.difficulty == "basica"
    assert q.points == 5


def test_markdown_fences_are_stripped():
    raw = "```json\n" + json.dumps({"preguntas": [_question()]}) + "\n```"
    assert len(reconcile_questions(raw)) == 1

    raw = "```JavaScript\n" + json.dumps({"preguntas": [_question()]}) + "\n```"
    assert len(reconcile_questions(raw)) == 1


def test_prose_around_json_is_ignored():
    raw = "Aquí tienes las preguntas:\n" + json.dumps({"preguntas": [_question()]}) + "\n¡Suerte!"
    assert len(reconcile_questions(raw)) == 1


def test_unclosed_question_list_is_closed():
    data = extract_json('{"preguntas": [{"texto": "Q1"}')
    assert data == {"preguntas": [{"texto": "Q1"}]}

    fenced = extract_json('```json\n{"preguntas": [{"texto": "Q1"}')
    assert fenced == {"preguntas": [{"texto": "Q1"}]}


def test_no_closing_brace_gets_truncation_closers():
    questions = reconcile_questions('{"preguntas": [{"texto": "Q1", "opciones": [')
    assert [q.text for q in questions] == ["Q1"]
    assert questions[0].options == []


def test_partial_trailing_object_is_discarded():
    raw = (
        '{"preguntas": [{"texto": "Q1"}, {"texto": "Q2", "opciones": '
        '[{"texto": "A"}, {"texto": "B", "es_corr'
    )
    questions = reconcile_questions(raw)
    assert [q.text for q in questions] == ["Q1", "Q2"]
    assert [o.text for o in questions[1].options] == ["A"]


def test_trailing_commas_are_removed():
    raw = '{"preguntas": [{"texto": "Q1", "opciones": [{"texto": "A", "es_correcta": true},],},]}'
    questions = reconcile_questions(raw)
    assert len(questions) == 1
    assert questions[0].options[0].text == "A"
    assert questions[0].options[0].is_correct is True


def test_missing_closers_innermost_first():
    assert missing_closers('{"a": [{"b": [1') == "]}]}"
    assert missing_closers('{"a": "x]"') == "}"
    assert missing_closers('{"a": "unterminated') == '"}'


def test_empty_input_raises_no_json_found():
    with pytest.raises(NoJsonFound):
        extract_json("")
    with pytest.raises(NoJsonFound):
        extract_json("   \n ")


def test_text_without_object_raises_no_json_found():
    with pytest.raises(NoJsonFound):
        extract_json("Lo siento, no puedo generar preguntas ahora.")


def test_unrepairable_json_keeps_parser_message():
    with pytest.raises(InvalidJson) as exc_info:
        extract_json('{"a": }}}')
    assert "Expecting value" in exc_info.value.parser_message


def test_missing_question_list():
    with pytest.raises(MissingRequiredField) as exc_info:
        reconcile_questions('{"foo": 1}')
    assert exc_info.value.field == "preguntas"

    with pytest.raises(MissingRequiredField):
        reconcile_questions('{"preguntas": "ninguna"}')


def test_question_defaults_fill_every_field():
    raw = json.dumps({"preguntas": [{"opciones": [{"es_correcta": "true"}, {}]}, "basura"]})
    questions = reconcile_questions(raw)

    assert len(questions) == 1
    q = questions[0]
    assert q.text == "Pregunta 1"
    assert [o.text for o in q.options] == ["Opción 1", "Opción 2"]
    assert [o.is_correct for o in q.options] == [True, False]
    assert {o.explanation for o in q.options} == {"Sin explicación"}
    assert q.difficulty == "intermedia"
    assert q.correct_feedback == "¡Correcto!"
    assert q.incorrect_feedback == "Incorrecto."
    assert q.detailed_explanation == "Ver retroalimentación"
    assert q.points == 10


def test_detailed_explanation_falls_back_to_correct_feedback():
    raw = json.dumps({"preguntas": [{"texto": "Q", "retroalimentacion_correcta": "Exacto"}]})
    assert reconcile_questions(raw)[0].detailed_explanation == "Exacto"


def test_code_verdict_fields():
    raw = json.dumps({
        "resultado": "incorrecto",
        "errores_encontrados": ["Falta el caso base"],
        "casos_prueba_pasados": 2,
        "casos_prueba_totales": 3,
        "retroalimentacion_educativa": "Vas bien, revisa n == 0.",
        "sugerencias_mejora": ["Agrega if n == 0"],
    })
    verdict = reconcile_code_verdict(raw)
    assert verdict.result is CodeResult.INCORRECT
    assert verdict.errors == ["Falta el caso base"]
    assert (verdict.tests_passed, verdict.tests_total) == (2, 3)
    assert verdict.feedback == "Vas bien, revisa n == 0."
    assert verdict.suggestions == ["Agrega if n == 0"]


def test_code_verdict_unknown_result_is_error():
    verdict = reconcile_code_verdict('{"resultado": "quizas", "retroalimentacion_educativa": "?"}')
    assert verdict.result is CodeResult.ERROR


def test_code_verdict_feedback_only():
    verdict = reconcile_code_verdict('{"retroalimentacion_educativa": "Revisa la sintaxis"}')
    assert verdict.result is CodeResult.ERROR
    assert verdict.feedback == "Revisa la sintaxis"
    assert verdict.tests_passed == 0


def test_code_verdict_requires_result_or_feedback():
    with pytest.raises(MissingRequiredField):
        reconcile_code_verdict('{"casos_prueba_pasados": 1}')


def test_code_verdict_passed_is_capped_at_total():
    verdict = reconcile_code_verdict(
        '{"resultado": "incorrecto", "casos_prueba_pasados": 9, "casos_prueba_totales": 3}'
    )
    assert verdict.tests_passed == 3


def test_truncated_code_verdict_in_error_list():
    raw = (
        '{"resultado": "incorrecto", "casos_prueba_pasados": 2, '
        '"casos_prueba_totales": 3, "errores_encontrados": ["falta caso base"'
    )
    verdict = reconcile_code_verdict(raw)
    assert verdict.result is CodeResult.INCORRECT
    assert verdict.errors == ["falta caso base"]
    assert verdict.tests_passed == 2


def test_truncated_code_verdict_in_feedback_text():
    raw = '{"resultado": "incorrecto", "retroalimentacion_educativa": "Tu código tiene un err'
    verdict = reconcile_code_verdict(raw)
    assert verdict.result is CodeResult.INCORRECT
    assert verdict.feedback == "Tu código tiene un err"


def test_truncated_code_verdict_after_complete_pair():
    raw = '{"resultado": "correcto", "retroalimentacion_educativa": "Bien.", "casos_prueba_totales": 3'
    verdict = reconcile_code_verdict(raw)
    assert verdict.result is CodeResult.CORRECT
    assert verdict.feedback == "Bien."
    assert verdict.tests_total == 3


def test_truncated_code_verdict_in_suggestions():
    raw = (
        '{"resultado": "incorrecto", "casos_prueba_pasados": 1, "casos_prueba_totales": 2, '
        '"retroalimentacion_educativa": "Revisa el caso base.", "sugerencias_mejora": ["agrega if'
    )
    verdict = reconcile_code_verdict(raw)
    assert verdict.result is CodeResult.INCORRECT
    assert (verdict.tests_passed, verdict.tests_total) == (1, 2)
    assert verdict.feedback == "Revisa el caso base."
    assert verdict.suggestions == ["agrega if"]


def test_truncated_code_verdict_at_empty_feedback():
    verdict = reconcile_code_verdict('{"resultado": "incorrecto", "retroalimentacion_educativa": "')
    assert verdict.result is CodeResult.INCORRECT
    assert verdict.feedback == DEFAULT_CODE_FEEDBACK


@pytest.mark.parametrize("indent", [None, 2])
def test_code_verdict_survives_every_cut_after_result(indent):
    raw = json.dumps(
        {
            "resultado": "incorrecto",
            "errores_encontrados": ["Falta el caso base"],
            "casos_prueba_pasados": 2,
            "casos_prueba_totales": 3,
            "retroalimentacion_educativa": "Vas bien: revisa qué pasa cuando n == 0.",
            "sugerencias_mejora": ["Agrega if n == 0", "Prueba con n = 5"],
        },
        ensure_ascii=False,
        indent=indent,
    )
    start = raw.index('"incorrecto"') + len('"incorrecto"')
    for cut in range(start, len(raw) + 1):
        verdict = reconcile_code_verdict(raw[:cut])
        assert verdict.result is CodeResult.INCORRECT, raw[:cut]


def test_braces_inside_strings_are_not_object_ends():
    raw = (
        '{"preguntas": [{"texto": "Q1"}, {"texto": "Usa {x}, luego", '
        '"opciones": [{"texto": "A", "es_correcta": true}'
    )
    questions = reconcile_questions(raw)
    assert [q.text for q in questions] == ["Q1"]
