"""Blueprint construction, validation, persistence form, merge and diff."""

from __future__ import annotations

import json
from typing import Any, Mapping, Sequence

from .models import (
    BLUEPRINT_VERSION,
    Blueprint,
    BlueprintComponents,
    BlueprintDiff,
    BlueprintMetadata,
    BlueprintValidation,
    ComponentRole,
    ComponentView,
    SelectedComponent,
)
from .utils import trim_words, utc_timestamp


def component_count(content_ids: Sequence[Any], style_id: Any) -> int:
    return 1 + len(content_ids) + (1 if style_id is not None else 0)


def _view(component: SelectedComponent, role: ComponentRole) -> ComponentView:
    excerpt = component.excerpt or trim_words(component.full_text, 20)
    return ComponentView(
        id=component.id,
        title=component.title,
        type=role,
        excerpt=excerpt,
        author_id=component.author_id,
    )


def build(
    prompt: SelectedComponent,
    contents: Sequence[SelectedComponent],
    style: SelectedComponent | None,
    space_id: int,
    compat_score: float | None,
) -> Blueprint:
    content_ids = [content.id for content in contents]
    style_id = style.id if style is not None else None
    return Blueprint(
        space_id=space_id,
        prompt_id=prompt.id,
        content_ids=content_ids,
        style_id=style_id,
        compat_score=round(compat_score, 3) if compat_score is not None else None,
        components=BlueprintComponents(
            prompt=_view(prompt, ComponentRole.prompt),
            contents=[_view(content, ComponentRole.content) for content in contents],
            style=_view(style, ComponentRole.style) if style is not None else None,
        ),
        metadata=BlueprintMetadata(
            version=BLUEPRINT_VERSION,
            created_at=utc_timestamp(),
            component_count=component_count(content_ids, style_id),
        ),
    )


def validate(blueprint: Blueprint | Mapping[str, Any]) -> BlueprintValidation:
    """Check a blueprint (model or raw mapping) before it is trusted."""
    data = blueprint.model_dump() if isinstance(blueprint, Blueprint) else dict(blueprint)
    errors: list[str] = []

    if not data.get("prompt_id"):
        errors.append("prompt_id is required")
    # 0 is the "no space" sentinel; only an unset value is rejected
    if data.get("space_id") is None:
        errors.append("space_id is required")
    if not isinstance(data.get("content_ids"), list):
        errors.append("content_ids must be a list")

    score = data.get("compat_score")
    if score is not None:
        try:
            value = float(score)
        except (TypeError, ValueError):
            errors.append("compat_score must be a number")
        else:
            if value < 0 or value > 1:
                errors.append("compat_score must be between 0 and 1")

    return BlueprintValidation(valid=not errors, errors=errors)


def serialize(blueprint: Blueprint) -> bytes:
    """Minimal persisted form: ids, score and version, without display copies."""
    minimal = {
        "prompt_id": blueprint.prompt_id,
        "content_ids": list(blueprint.content_ids),
        "style_id": blueprint.style_id,
        "space_id": blueprint.space_id,
        "compat_score": blueprint.compat_score,
        "version": blueprint.metadata.version or BLUEPRINT_VERSION,
    }
    return json.dumps(minimal, separators=(",", ":")).encode("utf-8")


def deserialize(raw: bytes | str) -> Blueprint | None:
    """Parse the persisted form; ``None`` when malformed or missing ``prompt_id``.

    The embedded compat_score is only the last known value and must be
    revalidated by the caller before it is relied on.
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(data, dict) or data.get("prompt_id") is None:
        return None

    raw_ids = data.get("content_ids")
    if raw_ids is not None and not isinstance(raw_ids, list):
        return None

    try:
        content_ids = [int(value) for value in raw_ids or []]
        style_id = int(data["style_id"]) if data.get("style_id") is not None else None
        score = data.get("compat_score")
        return Blueprint(
            prompt_id=int(data["prompt_id"]),
            content_ids=content_ids,
            style_id=style_id,
            space_id=int(data.get("space_id") or 0),
            compat_score=float(score) if score is not None else None,
            metadata=BlueprintMetadata(
                version=str(data.get("version") or BLUEPRINT_VERSION),
                component_count=component_count(content_ids, style_id),
                deserialized_at=utc_timestamp(),
            ),
        )
    except (TypeError, ValueError):
        return None


def merge(base: Blueprint, overlay: Blueprint) -> Blueprint:
    """Compose two blueprints; the result always needs a fresh compat score."""
    prompt_id = overlay.prompt_id or base.prompt_id
    style_id = overlay.style_id if overlay.style_id is not None else base.style_id
    space_id = overlay.space_id if overlay.space_id is not None else base.space_id

    content_ids = list(dict.fromkeys(base.content_ids))
    for content_id in overlay.content_ids:
        if content_id not in content_ids:
            content_ids.append(content_id)

    return Blueprint(
        space_id=space_id,
        prompt_id=prompt_id,
        content_ids=content_ids,
        style_id=style_id,
        compat_score=None,
        components=None,
        metadata=BlueprintMetadata(
            version=BLUEPRINT_VERSION,
            merged_at=utc_timestamp(),
            component_count=component_count(content_ids, style_id),
        ),
    )


def diff(old: Blueprint, new: Blueprint) -> BlueprintDiff:
    changes: dict[str, dict[str, Any]] = {}

    for field in ("prompt_id", "style_id", "space_id"):
        before = getattr(old, field)
        after = getattr(new, field)
        if before != after:
            changes[field] = {"from": before, "to": after}

    old_ids = set(old.content_ids)
    new_ids = set(new.content_ids)
    added = list(dict.fromkeys(i for i in new.content_ids if i not in old_ids))
    removed = list(dict.fromkeys(i for i in old.content_ids if i not in new_ids))
    if added or removed:
        changes["content_ids"] = {"added": added, "removed": removed}

    return BlueprintDiff(has_changes=bool(changes), changes=changes)


__all__ = ["build", "validate", "serialize", "deserialize", "merge", "diff", "component_count"]
