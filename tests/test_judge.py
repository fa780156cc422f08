import json
import os
from unittest.mock import patch

import pytest

from cone_trainer.components.errors import CollaboratorError
from cone_trainer.llm_judge.backends import create_backend
from cone_trainer.llm_judge.backends.mock_backend import MockBackend
from cone_trainer.llm_judge.backends.ollama_backend import OllamaBackend
from cone_trainer.llm_judge.judge import LLMJudge
from cone_trainer.llm_judge.parser import parse_llm_response
from cone_trainer.llm_judge.prompt_builder import build_evaluate_prompt
from cone_trainer.llm_judge.rubric import RUBRIC, load_truth_set


def _answer(**overrides):
    answer = {
        "totalScore": 72,
        "sections": [{"name": d.name, "score": 14, "feedback": "ok"} for d in RUBRIC],
        "strengths": ["Clear tray comparison"],
        "improvements": ["Mention the 44% femoral utilization"],
        "incorrect_or_risky_claims": ["Claimed the cones can be used with a hinge"],
    }
    answer.update(overrides)
    return answer


# ============ parser.py ============

def test_parse_valid_json():
    result = parse_llm_response(json.dumps(_answer()))
    assert result["totalScore"] == 72
    assert len(result["sections"]) == len(RUBRIC)
    assert result["incorrectClaims"] == ["Claimed the cones can be used with a hinge"]


def test_parse_json_in_backticks():
    raw = "```json\n" + json.dumps(_answer(totalScore=55)) + "\n```"
    assert parse_llm_response(raw)["totalScore"] == 55


def test_parse_with_leading_text():
    raw = "Here is the evaluation:\n" + json.dumps(_answer(totalScore=40)) + "\nThanks."
    assert parse_llm_response(raw)["totalScore"] == 40


def test_parse_invalid_json_returns_error():
    result = parse_llm_response("This is not JSON")
    assert "error" in result
    assert result["totalScore"] == 0
    assert result["sections"] == []
    assert result["incorrectClaims"] == []


def test_missing_incorrect_claims_defaults_to_empty_list():
    answer = _answer()
    del answer["incorrect_or_risky_claims"]
    result = parse_llm_response(json.dumps(answer))
    assert result["incorrectClaims"] == []


def test_camel_case_claims_are_accepted():
    answer = _answer()
    del answer["incorrect_or_risky_claims"]
    answer["incorrectClaims"] = ["Said rotation is arbitrary"]
    assert parse_llm_response(json.dumps(answer))["incorrectClaims"] == ["Said rotation is arbitrary"]


def test_missing_fields_default_instead_of_failing():
    result = parse_llm_response("{}")
    assert result == {
        "totalScore": 0,
        "sections": [],
        "strengths": [],
        "improvements": [],
        "incorrectClaims": [],
    }


@pytest.mark.parametrize("raw_score,expected", [(150, 100), (-5, 0), (71.6, 72), ("64", 64), ("n/a", 0), (True, 0)])
def test_total_score_is_an_int_in_range(raw_score, expected):
    assert parse_llm_response(json.dumps(_answer(totalScore=raw_score)))["totalScore"] == expected


def test_malformed_sections_are_dropped():
    sections = [{"name": "Compliance", "score": "high"}, "bad", {"score": 10}]
    result = parse_llm_response(json.dumps(_answer(sections=sections)))
    assert result["sections"] == [{"name": "Compliance", "score": 0, "feedback": ""}]


def test_section_count_mismatch_is_accepted():
    sections = [{"name": "Core Message Accuracy", "score": 18, "feedback": "good"}]
    result = parse_llm_response(json.dumps(_answer(sections=sections)))
    assert len(result["sections"]) == 1


# ============ prompt_builder.py ============

def test_prompt_contains_truth_set_rubric_and_ordered_transcript(sample_transcript):
    prompt = build_evaluate_prompt(sample_transcript)

    for dimension in RUBRIC:
        assert dimension.name in prompt
    assert load_truth_set()["product"]["name"] in prompt

    lines = [f"{t['role'].upper()}: {t['content']}" for t in sample_transcript]
    positions = [prompt.index(line) for line in lines]
    assert positions == sorted(positions)


# ============ judge.py ============

@patch("cone_trainer.llm_judge.backends.mock_backend.MockBackend.generate")
def test_judge_evaluate_success(mock_generate, sample_transcript):
    mock_generate.return_value = json.dumps(_answer(totalScore=81))

    result = LLMJudge(backend=MockBackend()).evaluate(sample_transcript)

    assert result["totalScore"] == 81
    assert "error" not in result
    assert "Clear tray comparison" in result["strengths"]


@patch("cone_trainer.llm_judge.backends.mock_backend.MockBackend.generate")
def test_judge_normalizes_malformed_answer(mock_generate, sample_transcript):
    mock_generate.return_value = "I cannot score this."

    result = LLMJudge(backend=MockBackend()).evaluate(sample_transcript)

    assert result["totalScore"] == 0
    assert "error" not in result


@patch("cone_trainer.llm_judge.backends.mock_backend.MockBackend.generate")
def test_judge_raises_collaborator_error_on_backend_failure(mock_generate, sample_transcript):
    mock_generate.side_effect = RuntimeError("backend is down")

    with pytest.raises(CollaboratorError) as exc_info:
        LLMJudge(backend=MockBackend()).evaluate(sample_transcript)
    assert exc_info.value.collaborator == "judge"


def test_mock_backend_scores_every_rubric_dimension(sample_transcript):
    result = LLMJudge(backend=MockBackend()).evaluate(sample_transcript)
    assert [s["name"] for s in result["sections"]] == [d.name for d in RUBRIC]
    assert result["totalScore"] == sum(s["score"] for s in result["sections"])


def test_create_backend_selection():
    assert isinstance(create_backend("mock"), MockBackend)
    assert isinstance(create_backend("ollama"), OllamaBackend)
    with pytest.raises(ValueError):
        create_backend("unknown")


def test_openrouter_backend_requires_key(monkeypatch):
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    backend = create_backend("openrouter")
    with pytest.raises(CollaboratorError):
        backend.generate("prompt")


@pytest.mark.skipif(not os.getenv("RUN_INTEGRATION_TESTS"), reason="Integration tests disabled by default")
def test_integration_with_real_backend(sample_transcript):
    judge = LLMJudge(backend=create_backend(os.getenv("JUDGE_BACKEND_INTEGRATION", "openrouter")))
    result = judge.evaluate(sample_transcript)
    assert 0 <= result["totalScore"] <= 100
    assert isinstance(result["sections"], list)
