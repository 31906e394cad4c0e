"""Request, response and component models for tool assembly."""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

RankSource = Literal["lexical", "semantic", "semantic_fallback"]
CandidateSource = Literal[
    "lexical",
    "semantic",
    "semantic_fallback",
    "retrieval",
    "explicit",
    "auto_created",
]
ExpansionSource = Literal["ai", "basic", "identity"]

BLUEPRINT_VERSION = "1.0.0"
ASSEMBLY_SCHEMA_VERSION = "assembly-1.0"


class ComponentRole(str, Enum):
    prompt = "prompt"
    content = "content"
    style = "style"


class AssemblyMode(str, Enum):
    propose = "propose"
    simulate = "simulate"
    create = "create"


# Labels a stored record must carry to fill a role.
ROLE_LABELS: dict[ComponentRole, tuple[str, ...]] = {
    ComponentRole.prompt: ("prompt",),
    ComponentRole.content: ("data", "content"),
    ComponentRole.style: ("style",),
}


def _dedupe_tags(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set, frozenset)):
        seen: set[str] = set()
        tags: list[str] = []
        for tag in value:
            text = str(tag).strip()
            if text and text not in seen:
                seen.add(text)
                tags.append(text)
        return tags
    return value


class Requester(BaseModel):
    user_id: int
    home_space_id: int | None = None
    space_ids: list[int] = Field(default_factory=list)


class Candidate(BaseModel):
    id: int
    title: str = ""
    excerpt: str = ""
    tags: list[str] = Field(default_factory=list)
    role: ComponentRole
    score: float = 0.0
    source: RankSource | None = None
    content: str | None = None
    label: str | None = None

    @field_validator("tags", mode="before")
    def _normalize_tags(cls, value: Any) -> Any:
        return _dedupe_tags(value)


class ContentRecord(BaseModel):
    id: int
    title: str = ""
    body: str = ""
    excerpt: str = ""
    tags: list[str] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=list)
    author_id: int | None = None
    prompt_text: str | None = None

    @field_validator("tags", "labels", mode="before")
    def _normalize_lists(cls, value: Any) -> Any:
        return _dedupe_tags(value)


class SelectedComponent(Candidate):
    full_text: str = ""
    author_id: int | None = None
    prompt_text: str | None = None
    auto_created: bool = False

    @property
    def instruction_text(self) -> str:
        return self.prompt_text or self.full_text


class CompatibilityResult(BaseModel):
    score: float = Field(ge=0.0, le=1.0)
    explanation: str | None = None
    issues: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    breakdown: dict[str, float] = Field(default_factory=dict)
    confidence: float | None = None
    available: bool = True


class ExecutionProfile(BaseModel):
    model: str = "gpt-4o-mini"
    task: str = "simple_qa"
    content_type: str = "text"
    output_format: str = "text"


class Entity(BaseModel):
    name: str
    type: str = "unknown"


class QueryExpansion(BaseModel):
    original_query: str
    expanded_query: str
    keywords: list[str] = Field(default_factory=list)
    entities: list[Entity] = Field(default_factory=list)
    negative_keywords: list[str] = Field(default_factory=list)
    source: ExpansionSource = "identity"


# ---- Blueprint --------------------------------------------------------------


class ComponentView(BaseModel):
    id: int
    title: str = ""
    type: ComponentRole
    excerpt: str = ""
    author_id: int | None = None


class BlueprintComponents(BaseModel):
    prompt: ComponentView | None = None
    contents: list[ComponentView] = Field(default_factory=list)
    style: ComponentView | None = None


class BlueprintMetadata(BaseModel):
    version: str = BLUEPRINT_VERSION
    created_at: str | None = None
    component_count: int | None = None
    merged_at: str | None = None
    deserialized_at: str | None = None


class Blueprint(BaseModel):
    space_id: int | None = None
    prompt_id: int | None = None
    content_ids: list[int] = Field(default_factory=list)
    style_id: int | None = None
    compat_score: float | None = None
    components: BlueprintComponents | None = None
    metadata: BlueprintMetadata = Field(default_factory=BlueprintMetadata)


class BlueprintValidation(BaseModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)


class BlueprintDiff(BaseModel):
    has_changes: bool
    changes: dict[str, dict[str, Any]] = Field(default_factory=dict)


# ---- Request / response -----------------------------------------------------


class AssemblyRequest(BaseModel):
    context: str
    mode: AssemblyMode | None = None
    prompt_id: int | None = None
    content_ids: list[int] | None = None
    style_id: int | None = None
    space_id: int | None = None
    auto_create: bool = False
    max_candidates: int | None = Field(default=None, ge=1, le=100)
    top_k: int | None = Field(default=None, ge=1, le=50)
    use_semantic_rerank: bool = True
    use_query_expansion: bool = True
    pin_components: bool = False
    strict: bool = False
    language: str | None = None

    @field_validator("context", mode="before")
    def _strip_context(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            if not value:
                raise ValueError("context must describe the need in natural language")
        return value

    @field_validator("mode", mode="before")
    def _normalize_mode(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @property
    def effective_mode(self) -> AssemblyMode:
        if self.mode is not None:
            return self.mode
        return AssemblyMode.create if self.auto_create else AssemblyMode.propose


class AssemblyWarning(BaseModel):
    code: str
    message: str


class CandidateSummary(BaseModel):
    id: int
    title: str = ""
    score: float
    source: CandidateSource


class CandidateLists(BaseModel):
    prompt: list[CandidateSummary] = Field(default_factory=list)
    contents: list[CandidateSummary] = Field(default_factory=list)
    style: list[CandidateSummary] = Field(default_factory=list)


class ComponentCreation(BaseModel):
    created: bool = False
    id: int | None = None


class CreatedStatus(BaseModel):
    tool: bool = False
    prompt: ComponentCreation = Field(default_factory=ComponentCreation)
    contents: list[ComponentCreation] = Field(default_factory=list)
    style: ComponentCreation = Field(default_factory=ComponentCreation)


class ToolRef(BaseModel):
    id: int | None = None
    title: str
    url: str | None = None


class PromptConfig(BaseModel):
    prompt_text: str
    model: str
    requires_input: bool = True


class AssemblyRecordMeta(BaseModel):
    """Assembly metadata written alongside a created tool record."""

    assembled: bool = True
    assembled_from: dict[str, Any]
    blueprint: str
    assembly_context: str
    assembly_mode: AssemblyMode
    assembly_created_by: int
    assembly_version: str = ASSEMBLY_SCHEMA_VERSION
    compat_score: float | None = None
    compat_explain: str | None = None
    pinned: bool = False


class RecordDraft(BaseModel):
    kind: Literal["tool", "prompt"]
    title: str
    body: str
    space_id: int | None = None
    status: Literal["publish", "draft"] = "publish"
    labels: list[str] = Field(default_factory=list)
    author_id: int | None = None
    prompt_config: PromptConfig | None = None
    meta: dict[str, Any] = Field(default_factory=dict)


class NextAction(BaseModel):
    tool: str = "save_tool"
    params: RecordDraft


class QueryExpansionView(BaseModel):
    original: str
    expanded: str
    keywords: list[str] = Field(default_factory=list)
    entities: list[Entity] = Field(default_factory=list)


class AssemblyResponse(BaseModel):
    mode: AssemblyMode
    tool: ToolRef
    blueprint: Blueprint
    created: CreatedStatus
    candidates: CandidateLists
    warnings: list[AssemblyWarning] = Field(default_factory=list)
    next_action: NextAction | None = None
    query_expansion: QueryExpansionView | None = None
    latency_ms: int = 0
