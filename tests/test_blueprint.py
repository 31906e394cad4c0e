from __future__ import annotations

import json

from toolforge import blueprint as blueprints
from toolforge.models import Blueprint, ComponentRole, SelectedComponent


def _component(cid: int, role: ComponentRole, title: str, text: str = "") -> SelectedComponent:
    return SelectedComponent(id=cid, title=title, role=role, full_text=text or f"{title} body")


def _built(style: bool = True) -> Blueprint:
    return blueprints.build(
        _component(1, ComponentRole.prompt, "Follow-up email"),
        [
            _component(2, ComponentRole.content, "Meeting notes"),
            _component(3, ComponentRole.content, "Pricing sheet"),
        ],
        _component(4, ComponentRole.style, "Formal tone") if style else None,
        space_id=12,
        compat_score=0.81234,
    )


def test_build_counts_components_and_rounds_score() -> None:
    bp = _built()
    assert bp.content_ids == [2, 3]
    assert bp.compat_score == 0.812
    assert bp.metadata.component_count == 4
    assert bp.metadata.created_at is not None
    assert bp.components is not None
    assert [view.id for view in bp.components.contents] == [2, 3]
    assert _built(style=False).metadata.component_count == 3


def test_validate_reports_each_problem() -> None:
    assert blueprints.validate(_built()).valid

    result = blueprints.validate({"space_id": None, "content_ids": "2,3", "compat_score": 1.5})
    assert not result.valid
    assert result.errors == [
        "prompt_id is required",
        "space_id is required",
        "content_ids must be a list",
        "compat_score must be between 0 and 1",
    ]


def test_validate_accepts_personal_space_sentinel() -> None:
    assert blueprints.validate({"prompt_id": 1, "space_id": 0, "content_ids": []}).valid


def test_serialize_keeps_only_ids_score_and_version() -> None:
    data = json.loads(blueprints.serialize(_built()))
    assert data == {
        "prompt_id": 1,
        "content_ids": [2, 3],
        "style_id": 4,
        "space_id": 12,
        "compat_score": 0.812,
        "version": "1.0.0",
    }


def test_serialize_then_deserialize_preserves_ids_and_score() -> None:
    original = _built()
    restored = blueprints.deserialize(blueprints.serialize(original))
    assert restored is not None
    assert restored.prompt_id == original.prompt_id
    assert restored.content_ids == original.content_ids
    assert restored.style_id == original.style_id
    assert restored.space_id == original.space_id
    assert restored.compat_score == original.compat_score
    assert restored.metadata.deserialized_at is not None


def test_deserialize_coerces_ids_and_rejects_bad_input() -> None:
    restored = blueprints.deserialize('{"prompt_id": "7", "content_ids": ["3", 5]}')
    assert restored is not None
    assert restored.prompt_id == 7
    assert restored.content_ids == [3, 5]
    assert restored.space_id == 0
    assert restored.style_id is None

    assert blueprints.deserialize(b"{not json") is None
    assert blueprints.deserialize(b'{"content_ids": [1]}') is None
    assert blueprints.deserialize(b"[1, 2]") is None
    assert blueprints.deserialize('{"prompt_id": "seven"}') is None
    assert blueprints.deserialize('{"prompt_id": 7, "content_ids": "12"}') is None
    assert blueprints.deserialize('{"prompt_id": 7, "content_ids": {"a": 1}}') is None


def test_merge_prefers_overlay_and_clears_score() -> None:
    base = _built()
    overlay = Blueprint(space_id=0, prompt_id=9, content_ids=[3, 6], style_id=None, compat_score=0.99)
    merged = blueprints.merge(base, overlay)

    assert merged.prompt_id == 9
    assert merged.content_ids == [2, 3, 6]
    assert merged.style_id == 4
    assert merged.space_id == 0
    assert merged.compat_score is None
    assert merged.components is None
    assert merged.metadata.merged_at is not None
    assert merged.metadata.component_count == 5


def test_diff_of_identical_blueprints_is_empty() -> None:
    bp = _built()
    result = blueprints.diff(bp, bp)
    assert result.has_changes is False
    assert result.changes == {}


def test_diff_reports_only_changed_fields() -> None:
    old = _built()
    new = old.model_copy(update={"prompt_id": 5, "content_ids": [3, 8]})
    result = blueprints.diff(old, new)
    assert result.has_changes
    assert result.changes == {
        "prompt_id": {"from": 1, "to": 5},
        "content_ids": {"added": [8], "removed": [2]},
    }


def test_merge_keeps_base_space_when_overlay_has_none() -> None:
    base = _built()
    merged = blueprints.merge(base, Blueprint(prompt_id=9))
    assert merged.space_id == 12
    assert merged.content_ids == base.content_ids
