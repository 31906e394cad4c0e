"""Rule-based compatibility scoring between assembled components."""

from __future__ import annotations

import math
from typing import Sequence

from .models import CompatibilityResult, ExecutionProfile, SelectedComponent

NEUTRAL_STYLE = "formal"
NEUTRAL_SCORE = 0.75

MODEL_CAPABILITIES: dict[str, tuple[str, ...]] = {
    "gpt-4o": ("text", "code", "analysis", "creative", "vision", "long_context"),
    "gpt-4o-mini": ("text", "code", "analysis", "creative"),
    "gpt-4-turbo": ("text", "code", "analysis", "creative", "vision", "long_context"),
    "gpt-3.5-turbo": ("text", "code", "basic_analysis"),
    "claude-3-opus": ("text", "code", "analysis", "creative", "vision", "long_context", "reasoning"),
    "claude-3-sonnet": ("text", "code", "analysis", "creative", "vision"),
    "claude-3-haiku": ("text", "code", "basic_analysis"),
    "claude-3-5-sonnet": ("text", "code", "analysis", "creative", "vision", "long_context"),
}

STYLE_PROMPT_KEYWORDS: dict[str, tuple[str, ...]] = {
    "formal": ("professional", "business", "legal", "academic", "technical"),
    "casual": ("social", "personal", "blog", "chat", "friendly"),
    "technical": ("code", "documentation", "api", "specs", "engineering"),
    "creative": ("story", "marketing", "ad", "creative", "artistic"),
    "concise": ("summary", "brief", "tl;dr", "bullet", "short"),
    "detailed": ("analysis", "report", "explanation", "comprehensive", "in-depth"),
}

STYLE_CLASHES: dict[str, tuple[str, ...]] = {
    "formal": ("lol", "hey", "sup", "yo", "emoji", "slang"),
    "casual": ("hereby", "pursuant", "whereas", "therein", "aforementioned"),
    "technical": ("maybe", "kind of", "sort of", "basically", "like"),
    "creative": ("strictly", "precisely", "exactly", "factually"),
    "concise": ("furthermore", "additionally", "moreover", "in other words"),
    "detailed": ("briefly", "quickly", "just", "only"),
}

TASK_REQUIREMENTS: dict[str, tuple[str, ...]] = {
    "summarize": ("text",),
    "translate": ("text",),
    "analyze": ("analysis",),
    "code": ("code",),
    "creative_writing": ("creative",),
    "image_analysis": ("vision",),
    "long_document": ("long_context",),
    "reasoning": ("reasoning", "analysis"),
    "simple_qa": ("text",),
}

TASK_MODELS: dict[str, str] = {
    "analyze": "gpt-4o",
    "summarize": "gpt-4o-mini",
    "translate": "gpt-4o-mini",
    "code": "gpt-4o",
    "creative_writing": "claude-3-5-sonnet",
    "image_analysis": "gpt-4o",
    "long_document": "claude-3-opus",
    "reasoning": "claude-3-opus",
    "simple_qa": "gpt-3.5-turbo",
}

CONVERSION_MATRIX: dict[str, dict[str, float]] = {
    "text": {"text": 1.0, "markdown": 0.9, "html": 0.8, "json": 0.6},
    "html": {"html": 1.0, "markdown": 0.8, "text": 0.7, "json": 0.5},
    "markdown": {"markdown": 1.0, "html": 0.9, "text": 0.8, "json": 0.6},
    "json": {"json": 1.0, "text": 0.5, "markdown": 0.4, "html": 0.3},
    "code": {"code": 1.0, "markdown": 0.9, "text": 0.7, "html": 0.6},
}

CHECK_WEIGHTS: dict[str, float] = {
    "prompt_style": 0.3,
    "model_task": 0.35,
    "content_output": 0.2,
    "model_content": 0.15,
}


def style_category(style: SelectedComponent | None) -> str:
    """Known style category named by the component's tags, label or title."""
    if style is None:
        return NEUTRAL_STYLE
    for value in (*style.tags, style.label or "", *style.title.lower().split()):
        category = value.strip().lower()
        if category in STYLE_PROMPT_KEYWORDS:
            return category
    return NEUTRAL_STYLE


def suggest_style(prompt_text: str) -> str:
    lowered = prompt_text.lower()
    for style, keywords in STYLE_PROMPT_KEYWORDS.items():
        if any(keyword in lowered for keyword in keywords):
            return style
    return NEUTRAL_STYLE


def check_prompt_style(prompt_text: str, style: str) -> tuple[float, list[str], list[str]]:
    lowered = prompt_text.lower()
    score = 0.5
    issues: list[str] = []
    recommendations: list[str] = []

    matches = sum(1 for keyword in STYLE_PROMPT_KEYWORDS.get(style, ()) if keyword in lowered)
    if matches:
        score = min(1.0, 0.6 + matches * 0.1)

    for clash in STYLE_CLASHES.get(style, ()):
        if clash in lowered:
            score = max(0.2, score - 0.2)
            issues.append(f"Style '{style}' may not match prompt intent (found '{clash}')")

    if score < 0.6:
        recommendations.append(f"Consider using a {suggest_style(lowered)} style instead")
    return score, issues, recommendations


def check_model_task(model: str, task: str) -> tuple[float, list[str], list[str]]:
    capabilities = MODEL_CAPABILITIES.get(model, ("text",))
    required = TASK_REQUIREMENTS.get(task, ("text",))
    issues = [
        f"Model '{model}' lacks '{capability}' capability required for '{task}'"
        for capability in required
        if capability not in capabilities
    ]
    recommendations: list[str] = []
    if not issues:
        extra = [c for c in capabilities if c in ("analysis", "reasoning", "long_context")]
        score = min(1.0, 0.9 + 0.05 * len(extra))
    else:
        score = 0.3
        better = TASK_MODELS.get(task, "gpt-4o-mini")
        if better != model:
            recommendations.append(f"Consider using '{better}' for better '{task}' performance")
    return score, issues, recommendations


def check_content_output(content_type: str, output_format: str) -> tuple[float, list[str]]:
    score = CONVERSION_MATRIX.get(content_type, {}).get(output_format, 0.5)
    issues: list[str] = []
    if score < 0.5:
        issues.append(
            f"Converting '{content_type}' to '{output_format}' may lose formatting or structure"
        )
    return score, issues


def check_model_content(model: str, content_type: str) -> tuple[float, list[str]]:
    capabilities = MODEL_CAPABILITIES.get(model, ("text",))
    score = 0.7
    issues: list[str] = []
    if content_type == "image" and "vision" not in capabilities:
        score = 0.1
        issues.append(f"Model '{model}' does not support image processing")
    if content_type == "code" and "code" not in capabilities:
        score = 0.4
        issues.append(f"Model '{model}' has limited code understanding")
    if "long_context" in capabilities:
        score = min(1.0, score + 0.1)
    return score, issues


def score_confidence(scores: dict[str, float]) -> float:
    if not scores:
        return 0.5
    values = list(scores.values())
    mean = sum(values) / len(values)
    variance = sum((value - mean) ** 2 for value in values) / len(values)
    confidence = (1 - min(1.0, math.sqrt(variance))) * min(1.0, len(scores) / 3)
    return round(confidence, 3)


class CompatibilityScorer:
    """Weighted average of four pairwise checks over the assembled components."""

    def score(
        self,
        prompt: SelectedComponent,
        contents: Sequence[SelectedComponent],
        style: SelectedComponent | None,
        profile: ExecutionProfile,
    ) -> CompatibilityResult:
        breakdown: dict[str, float] = {}
        issues: list[str] = []
        recommendations: list[str] = []

        ps_score, ps_issues, ps_recs = check_prompt_style(
            prompt.instruction_text, style_category(style)
        )
        breakdown["prompt_style"] = ps_score
        issues.extend(ps_issues)
        recommendations.extend(ps_recs)

        mt_score, mt_issues, mt_recs = check_model_task(profile.model, profile.task)
        breakdown["model_task"] = mt_score
        issues.extend(mt_issues)
        recommendations.extend(mt_recs)

        co_score, co_issues = check_content_output(profile.content_type, profile.output_format)
        breakdown["content_output"] = co_score
        issues.extend(co_issues)

        mc_score, mc_issues = check_model_content(profile.model, profile.content_type)
        breakdown["model_content"] = mc_score
        issues.extend(mc_issues)

        total_weight = sum(CHECK_WEIGHTS[key] for key in breakdown)
        weighted = sum(score * CHECK_WEIGHTS[key] for key, score in breakdown.items())
        overall = weighted / total_weight if total_weight else 0.0

        return CompatibilityResult(
            score=round(min(1.0, max(0.0, overall)), 3),
            explanation="; ".join(issues) or None,
            issues=issues,
            recommendations=recommendations,
            breakdown=breakdown,
            confidence=score_confidence(breakdown),
        )


def neutral_result(reason: str | None = None) -> CompatibilityResult:
    return CompatibilityResult(score=NEUTRAL_SCORE, explanation=reason, available=False)


__all__ = [
    "CompatibilityScorer",
    "check_content_output",
    "check_model_content",
    "check_model_task",
    "check_prompt_style",
    "neutral_result",
    "style_category",
]
