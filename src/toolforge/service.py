"""Assembly orchestration: resolve, retrieve, rank, score, build and persist."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any, Mapping, Protocol, Sequence

from pydantic import ValidationError
from redis.asyncio import Redis

from . import blueprint as blueprints
from .backends import ChatCompletionsBackend, Collaborators, HttpContentBackend
from .compat import CompatibilityScorer, neutral_result
from .config import Settings
from .errors import (
    ContentMissingError,
    InvalidPromptError,
    LowCompatibilityError,
    PersistenceError,
    PromptMissingError,
    RequestValidationError,
)
from .expansion import QueryExpander
from .models import (
    ROLE_LABELS,
    AssemblyMode,
    AssemblyRecordMeta,
    AssemblyRequest,
    AssemblyResponse,
    AssemblyWarning,
    Blueprint,
    Candidate,
    CandidateLists,
    CandidateSummary,
    CompatibilityResult,
    ComponentCreation,
    ComponentRole,
    ContentRecord,
    CreatedStatus,
    ExecutionProfile,
    NextAction,
    PromptConfig,
    QueryExpansion,
    QueryExpansionView,
    RecordDraft,
    Requester,
    SelectedComponent,
    ToolRef,
)
from .ranking import Ranker
from .storage import RedisCache
from .utils import trim_words

logger = logging.getLogger(__name__)

TITLE_WORDS = 8
PERSONAL_SPACE_ID = 0

MINIMAL_PROMPT_TEMPLATE = """You are a specialised assistant.

## Goal
{context}

## Instructions
1. Analyse the provided context
2. Produce a structured, professional answer
3. Adapt the tone to the context

## Input
{{input}}

## Output format
Answer clearly and in a structured way."""


class Scorer(Protocol):
    def score(
        self,
        prompt: SelectedComponent,
        contents: Sequence[SelectedComponent],
        style: SelectedComponent | None,
        profile: ExecutionProfile,
    ) -> CompatibilityResult: ...


@dataclass
class RoleSelection:
    """Outcome of resolving one component role."""

    selected: list[SelectedComponent] = field(default_factory=list)
    candidates: list[CandidateSummary] = field(default_factory=list)
    warnings: list[AssemblyWarning] = field(default_factory=list)
    invalid_explicit: bool = False


def _elapsed_ms(start: float) -> int:
    return max(0, int((perf_counter() - start) * 1000))


def _warning(code: str, message: str) -> AssemblyWarning:
    return AssemblyWarning(code=code, message=message)


def parse_request(payload: Mapping[str, Any]) -> AssemblyRequest:
    """Validate a raw tool payload before any retrieval happens."""
    try:
        return AssemblyRequest.model_validate(dict(payload))
    except ValidationError as exc:
        raise RequestValidationError(
            "invalid build_tool request",
            details={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc


def resolve_space_id(space_id: int | None, requester: Requester) -> int:
    if space_id is not None:
        return space_id
    if requester.home_space_id is not None:
        return requester.home_space_id
    if requester.space_ids:
        return requester.space_ids[0]
    return PERSONAL_SPACE_ID


def generate_tool_title(context: str) -> str:
    title = trim_words(context, TITLE_WORDS)
    return title[:1].upper() + title[1:]


def build_pinned_content(
    prompt: SelectedComponent,
    contents: Sequence[SelectedComponent],
    style: SelectedComponent | None,
) -> str:
    """Literal snapshot of the chosen components, one section each."""
    sections = [f"## Instruction (Prompt)\n\n{prompt.instruction_text}"]
    if contents:
        sections.append("## Reference content")
        for index, content in enumerate(contents, start=1):
            sections.append(
                f"### Reference {index}: {content.title}\n\n{content.full_text or content.excerpt}"
            )
    if style is not None:
        sections.append(f"## Style\n\n{style.full_text}")
    return "\n\n---\n\n".join(sections)


def summarize_ranked(candidates: Sequence[Candidate]) -> list[CandidateSummary]:
    summaries: list[CandidateSummary] = []
    for index, candidate in enumerate(candidates):
        if candidate.source is not None:
            score, source = candidate.score, candidate.source
        else:
            # unranked lists keep retrieval order with a decaying placeholder score
            score, source = max(0.0, round(1 - index * 0.1, 3)), "retrieval"
        summaries.append(
            CandidateSummary(id=candidate.id, title=candidate.title, score=score, source=source)
        )
    return summaries


def _explicit_summary(component: SelectedComponent) -> CandidateSummary:
    return CandidateSummary(id=component.id, title=component.title, score=1.0, source="explicit")


def promote(
    record: ContentRecord,
    role: ComponentRole,
    candidate: Candidate | None = None,
) -> SelectedComponent:
    labels = ROLE_LABELS[role]
    label = next((value for value in record.labels if value in labels), labels[0])
    return SelectedComponent(
        id=record.id,
        title=record.title or (candidate.title if candidate else ""),
        excerpt=record.excerpt or trim_words(record.body, 30),
        tags=record.tags or (candidate.tags if candidate else []),
        role=role,
        score=candidate.score if candidate else 1.0,
        source=candidate.source if candidate else None,
        content=candidate.content if candidate else None,
        label=label,
        full_text=record.body,
        author_id=record.author_id,
        prompt_text=record.prompt_text,
    )


class AssemblyService:
    """Drives one assembly per request under the propose, simulate and create modes.

    Collaborators and settings are injected; the service holds no per-request
    state so a single instance may serve concurrent calls.
    """

    def __init__(
        self,
        settings: Settings,
        collaborators: Collaborators,
        *,
        cache: RedisCache | None = None,
        ranker: Ranker | None = None,
        expander: QueryExpander | None = None,
        scorer: Scorer | None = None,
    ) -> None:
        self.settings = settings
        self.collaborators = collaborators
        self.cache = cache
        self.ranker = ranker or Ranker(settings, cache=cache, semantic=collaborators.semantic)
        self.expander = expander or QueryExpander(
            settings, semantic=collaborators.semantic, cache=cache
        )
        self.scorer: Scorer = scorer or CompatibilityScorer()

    @classmethod
    def from_settings(cls, settings: Settings) -> "AssemblyService":
        cache = RedisCache(Redis.from_url(settings.redis_url), settings)
        content = HttpContentBackend(settings)
        semantic = ChatCompletionsBackend(settings) if settings.semantic_api_url else None
        collaborators = Collaborators(
            retriever=content,
            permissions=content,
            writer=content,
            semantic=semantic,
        )
        return cls(settings, collaborators, cache=cache)

    async def close(self) -> None:
        try:
            await self.collaborators.close()
        finally:
            if self.cache is not None:
                await self.cache.close()

    # ------------------------------------------------------------------ #
    async def assemble(self, request: AssemblyRequest, requester: Requester) -> AssemblyResponse:
        start = perf_counter()
        warnings: list[AssemblyWarning] = []

        mode = request.effective_mode
        space_id = resolve_space_id(request.space_id, requester)
        wants_write = mode is AssemblyMode.create or request.auto_create
        if wants_write and not await self._can_write(space_id, requester):
            warnings.append(
                _warning(
                    "insufficient_write_permission",
                    f"No write permission on space {space_id}; switched to propose mode.",
                )
            )
            mode = AssemblyMode.propose

        expansion: QueryExpansion | None = None
        query = request.context
        if request.use_query_expansion:
            expansion = await self.expander.expand(request.context, request.language)
            query = expansion.expanded_query

        limit = request.max_candidates or self.settings.default_max_candidates
        top_k = request.top_k or self.settings.default_top_k

        prompt_sel, content_sel, style_sel = await asyncio.gather(
            self._select_prompt(request, query, limit, top_k, requester),
            self._select_contents(request, query, limit, top_k, requester),
            self._select_style(request, query, limit, top_k, requester),
        )
        candidates = CandidateLists(
            prompt=prompt_sel.candidates,
            contents=content_sel.candidates,
            style=style_sel.candidates,
        )

        if prompt_sel.invalid_explicit:
            raise InvalidPromptError(
                f"Prompt {request.prompt_id} is invalid or inaccessible.",
                details={"prompt_id": request.prompt_id},
                suggestion="Check the id or omit it to search automatically.",
                candidates=candidates,
            )
        warnings.extend(prompt_sel.warnings)

        prompt_draft: RecordDraft | None = None
        if prompt_sel.selected:
            prompt = prompt_sel.selected[0]
        elif request.auto_create and mode is AssemblyMode.create:
            # persisted only once the compatibility gate has passed
            prompt, prompt_draft = self._minimal_prompt(request.context, space_id, requester)
            warnings.append(
                _warning("prompt_auto_created", "A minimal prompt was created from the context.")
            )
        else:
            raise PromptMissingError(
                "No relevant prompt found.",
                details={"query": query},
                suggestion="Create a prompt (auto_create=true with mode create) or pass prompt_id.",
                candidates=candidates,
            )

        contents = content_sel.selected
        if request.strict and request.content_ids and not contents:
            raise ContentMissingError(
                "None of the requested contents is accessible.",
                details={"content_ids": request.content_ids},
                candidates=candidates,
            )
        warnings.extend(content_sel.warnings)

        style = style_sel.selected[0] if style_sel.selected else None
        warnings.extend(style_sel.warnings)

        compat = self._score(prompt, contents, style)
        if compat.score < self.settings.compat_threshold:
            message = f"Low compatibility score ({compat.score:.2f})"
            if compat.explanation:
                message = f"{message}: {compat.explanation}"
            if request.strict and mode is AssemblyMode.create:
                raise LowCompatibilityError(
                    message,
                    details={
                        "compat_score": compat.score,
                        "issues": compat.issues,
                        "recommendations": compat.recommendations,
                    },
                    candidates=candidates,
                )
            warnings.append(_warning("low_compatibility", message))

        prompt_created = prompt_draft is not None
        if prompt_draft is not None:
            prompt = prompt.model_copy(update={"id": await self._write(prompt_draft)})
            candidates.prompt = [
                CandidateSummary(id=prompt.id, title=prompt.title, score=1.0, source="auto_created")
            ]

        blueprint = blueprints.build(prompt, contents, style, space_id, compat.score)
        title = generate_tool_title(request.context)

        tool = ToolRef(title=title)
        next_action: NextAction | None = None
        if mode is AssemblyMode.create:
            draft = self._tool_draft(
                request, requester, blueprint, prompt, contents, style, compat, mode, title,
                status="publish",
            )
            tool.id = await self._write(draft)
            tool.url = self._tool_url(tool.id)
        else:
            draft = self._tool_draft(
                request, requester, blueprint, prompt, contents, style, compat, mode, title,
                status="draft",
            )
            next_action = NextAction(params=draft)

        created = CreatedStatus(
            tool=tool.id is not None,
            prompt=ComponentCreation(created=prompt_created, id=prompt.id),
            contents=[ComponentCreation(id=content.id) for content in contents],
            style=ComponentCreation(id=style.id if style is not None else None),
        )

        query_expansion = None
        if expansion is not None:
            query_expansion = QueryExpansionView(
                original=expansion.original_query,
                expanded=expansion.expanded_query,
                keywords=expansion.keywords,
                entities=expansion.entities,
            )

        response = AssemblyResponse(
            mode=mode,
            tool=tool,
            blueprint=blueprint,
            created=created,
            candidates=candidates,
            warnings=warnings,
            next_action=next_action,
            query_expansion=query_expansion,
            latency_ms=_elapsed_ms(start),
        )
        logger.info(
            "assembled tool mode=%s prompt=%s contents=%d style=%s score=%.3f warnings=%d",
            mode.value,
            prompt.id,
            len(contents),
            style.id if style is not None else None,
            compat.score,
            len(warnings),
        )
        return response

    # ---- role resolution ------------------------------------------------ #
    async def _select_prompt(
        self,
        request: AssemblyRequest,
        query: str,
        limit: int,
        top_k: int,
        requester: Requester,
    ) -> RoleSelection:
        role = ComponentRole.prompt
        if request.prompt_id is not None:
            record = await self._fetch(request.prompt_id, role, requester)
            if record is None:
                return RoleSelection(invalid_explicit=True)
            component = promote(record, role)
            return RoleSelection(selected=[component], candidates=[_explicit_summary(component)])

        selection = RoleSelection()
        ranked = await self._retrieve_ranked(request, query, role, limit, top_k, requester, selection)
        for candidate in ranked:
            record = await self._fetch(candidate.id, role, requester)
            if record is not None:
                selection.selected = [promote(record, role, candidate)]
                break
        return selection

    async def _select_contents(
        self,
        request: AssemblyRequest,
        query: str,
        limit: int,
        top_k: int,
        requester: Requester,
    ) -> RoleSelection:
        role = ComponentRole.content
        selection = RoleSelection()
        if request.content_ids:
            records = await asyncio.gather(
                *(self._fetch(content_id, role, requester) for content_id in request.content_ids)
            )
            for content_id, record in zip(request.content_ids, records):
                if record is None:
                    selection.warnings.append(
                        _warning("content_inaccessible", f"Content {content_id} is inaccessible, skipped.")
                    )
                    continue
                component = promote(record, role)
                selection.selected.append(component)
                selection.candidates.append(_explicit_summary(component))
            return selection

        ranked = await self._retrieve_ranked(request, query, role, limit, top_k, requester, selection)
        records = await asyncio.gather(
            *(self._fetch(candidate.id, role, requester) for candidate in ranked)
        )
        selection.selected = [
            promote(record, role, candidate)
            for candidate, record in zip(ranked, records)
            if record is not None
        ]
        if not selection.selected:
            if request.strict:
                selection.warnings.append(
                    _warning("content_missing", "No reference content found.")
                )
            else:
                selection.warnings.append(
                    _warning("no_reference_content", "No reference content selected.")
                )
        return selection

    async def _select_style(
        self,
        request: AssemblyRequest,
        query: str,
        limit: int,
        top_k: int,
        requester: Requester,
    ) -> RoleSelection:
        role = ComponentRole.style
        selection = RoleSelection()
        if request.style_id is not None:
            record = await self._fetch(request.style_id, role, requester)
            if record is not None:
                component = promote(record, role)
                selection.selected = [component]
                selection.candidates = [_explicit_summary(component)]
                return selection
            selection.warnings.append(
                _warning(
                    "style_inaccessible",
                    f"Style {request.style_id} is inaccessible; searching for one instead.",
                )
            )

        ranked = await self._retrieve_ranked(request, query, role, limit, top_k, requester, selection)
        if ranked:
            record = await self._fetch(ranked[0].id, role, requester)
            if record is not None:
                selection.selected = [promote(record, role, ranked[0])]
        return selection

    async def _retrieve_ranked(
        self,
        request: AssemblyRequest,
        query: str,
        role: ComponentRole,
        limit: int,
        top_k: int,
        requester: Requester,
        selection: RoleSelection,
    ) -> list[Candidate]:
        try:
            found = await self.collaborators.retriever.search(query, role, limit, requester)
        except Exception as exc:
            logger.warning("retrieval failed for role %s: %s", role.value, exc)
            selection.warnings.append(
                _warning("retrieval_failed", f"Candidate retrieval failed for {role.value}.")
            )
            return []
        ranked = await self.ranker.rerank(
            found[:limit],
            query,
            top_k,
            use_semantic=request.use_semantic_rerank,
        )
        ranked = ranked[:top_k]
        selection.candidates = summarize_ranked(ranked)
        return ranked

    async def _fetch(
        self,
        record_id: int,
        role: ComponentRole,
        requester: Requester,
    ) -> ContentRecord | None:
        """Fetch a record that exists, carries a label for ``role`` and is readable."""
        try:
            record = await self.collaborators.retriever.get(record_id, requester)
        except Exception as exc:
            logger.warning("failed to fetch record %s: %s", record_id, exc)
            return None
        if record is None:
            return None
        if not set(ROLE_LABELS[role]).intersection(record.labels):
            return None
        try:
            allowed = await self.collaborators.permissions.can_read(record_id, requester)
        except Exception as exc:
            logger.warning("read permission check failed for record %s: %s", record_id, exc)
            return None
        return record if allowed else None

    async def _can_write(self, space_id: int, requester: Requester) -> bool:
        try:
            return await self.collaborators.permissions.can_write(space_id, requester)
        except Exception as exc:
            logger.warning("write permission check failed for space %s: %s", space_id, exc)
            return False

    # ---- scoring and persistence ---------------------------------------- #
    def _execution_profile(self) -> ExecutionProfile:
        return ExecutionProfile(
            model=self.settings.execution_model,
            task=self.settings.execution_task,
            content_type=self.settings.execution_content_type,
            output_format=self.settings.execution_output_format,
        )

    def _score(
        self,
        prompt: SelectedComponent,
        contents: Sequence[SelectedComponent],
        style: SelectedComponent | None,
    ) -> CompatibilityResult:
        try:
            return self.scorer.score(prompt, contents, style, self._execution_profile())
        except Exception as exc:
            logger.warning("compatibility scoring failed, using neutral score: %s", exc)
            return neutral_result("Compatibility scoring unavailable")

    async def _write(self, draft: RecordDraft) -> int:
        try:
            return await self.collaborators.writer.create_record(draft)
        except Exception as exc:
            logger.exception("failed to persist %s record %r", draft.kind, draft.title)
            raise PersistenceError(
                f"Failed to create the {draft.kind}: {exc}",
                details={"kind": draft.kind},
            ) from exc

    def _minimal_prompt(
        self, context: str, space_id: int, requester: Requester
    ) -> tuple[SelectedComponent, RecordDraft]:
        """Build an unsaved prompt from the context; its id is 0 until written."""
        body = MINIMAL_PROMPT_TEMPLATE.format(context=context)
        title = f"Tool - {trim_words(context, 6)}"
        draft = RecordDraft(
            kind="prompt",
            title=title,
            body=body,
            space_id=space_id,
            labels=["prompt"],
            author_id=requester.user_id,
            prompt_config=PromptConfig(prompt_text=body, model=self.settings.execution_model),
            meta={"auto_created": True, "auto_created_context": context},
        )
        component = SelectedComponent(
            id=0,
            title=title,
            excerpt=trim_words(body, 30),
            role=ComponentRole.prompt,
            score=1.0,
            label="prompt",
            full_text=body,
            author_id=requester.user_id,
            prompt_text=body,
            auto_created=True,
        )
        return component, draft

    def _tool_draft(
        self,
        request: AssemblyRequest,
        requester: Requester,
        blueprint: Blueprint,
        prompt: SelectedComponent,
        contents: Sequence[SelectedComponent],
        style: SelectedComponent | None,
        compat: CompatibilityResult,
        mode: AssemblyMode,
        title: str,
        *,
        status: str,
    ) -> RecordDraft:
        if request.pin_components:
            body = build_pinned_content(prompt, contents, style)
        else:
            body = f"Tool assembled from context: {request.context}"
        meta = AssemblyRecordMeta(
            assembled_from={
                "prompt_id": blueprint.prompt_id,
                "content_ids": list(blueprint.content_ids),
                "style_id": blueprint.style_id,
            },
            blueprint=blueprints.serialize(blueprint).decode("utf-8"),
            assembly_context=request.context,
            assembly_mode=mode,
            assembly_created_by=requester.user_id,
            compat_score=blueprint.compat_score,
            compat_explain=compat.explanation,
            pinned=request.pin_components,
        )
        return RecordDraft(
            kind="tool",
            title=title,
            body=body,
            space_id=blueprint.space_id,
            status=status,
            labels=["tool"],
            author_id=requester.user_id,
            prompt_config=PromptConfig(
                prompt_text=prompt.instruction_text,
                model=self.settings.execution_model,
            ),
            meta=meta.model_dump(mode="json"),
        )

    def _tool_url(self, tool_id: int | None) -> str | None:
        template = self.settings.tool_url_template
        if not template or tool_id is None:
            return None
        return template.format(id=tool_id)


__all__ = [
    "AssemblyService",
    "RoleSelection",
    "build_pinned_content",
    "generate_tool_title",
    "parse_request",
    "promote",
    "resolve_space_id",
    "summarize_ranked",
]
