from __future__ import annotations

import pytest

from toolforge.compat import (
    CHECK_WEIGHTS,
    CompatibilityScorer,
    check_content_output,
    check_model_task,
    check_prompt_style,
    neutral_result,
    style_category,
)
from toolforge.models import ComponentRole, ExecutionProfile, SelectedComponent


def _prompt(text: str) -> SelectedComponent:
    return SelectedComponent(id=1, title="Prompt", role=ComponentRole.prompt, prompt_text=text)


def _style(title: str, tags: list[str] | None = None) -> SelectedComponent:
    return SelectedComponent(id=2, title=title, role=ComponentRole.style, tags=tags or [])


def test_style_category_reads_tags_then_title_and_defaults_to_formal() -> None:
    assert style_category(None) == "formal"
    assert style_category(_style("House voice", tags=["Casual"])) == "casual"
    assert style_category(_style("Concise bullet style")) == "concise"
    assert style_category(_style("House voice")) == "formal"


def test_prompt_style_affinity_and_clashes() -> None:
    score, issues, _ = check_prompt_style("Write a professional business email", "formal")
    assert score == pytest.approx(0.8)
    assert issues == []

    score, issues, recommendations = check_prompt_style(
        "hey, write a professional email lol", "formal"
    )
    assert score < 0.5
    assert len(issues) == 2
    assert recommendations


def test_model_task_mismatch_recommends_a_better_model() -> None:
    score, issues, recommendations = check_model_task("gpt-3.5-turbo", "analyze")
    assert score == 0.3
    assert issues
    assert recommendations == ["Consider using 'gpt-4o' for better 'analyze' performance"]

    score, issues, _ = check_model_task("gpt-4o", "summarize")
    assert issues == []
    assert score == 1.0


def test_lossy_conversion_is_flagged() -> None:
    score, issues = check_content_output("json", "html")
    assert score == 0.3
    assert issues
    assert check_content_output("text", "text") == (1.0, [])


def test_scorer_combines_all_checks() -> None:
    result = CompatibilityScorer().score(
        _prompt("Draft a professional follow-up email"),
        [],
        _style("Formal"),
        ExecutionProfile(),
    )
    assert set(result.breakdown) == set(CHECK_WEIGHTS)
    assert 0.4 <= result.score <= 1.0
    assert result.available is True
    assert result.confidence is not None


def test_scorer_penalises_incompatible_setup() -> None:
    good = CompatibilityScorer().score(
        _prompt("professional report"), [], _style("Formal"), ExecutionProfile(model="gpt-4o")
    )
    bad = CompatibilityScorer().score(
        _prompt("hey lol yo sup"),
        [],
        _style("Formal"),
        ExecutionProfile(model="gpt-3.5-turbo", task="image_analysis", content_type="json", output_format="html"),
    )
    assert bad.score < good.score
    assert bad.explanation
    assert bad.issues


def test_neutral_result_marks_score_unavailable() -> None:
    result = neutral_result("scorer offline")
    assert result.score == 0.75
    assert result.available is False
    assert result.issues == []
