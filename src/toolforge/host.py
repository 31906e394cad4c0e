from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping

from fastmcp import FastMCP
from starlette.requests import Request
from starlette.responses import JSONResponse

from toolforge import get_version
from toolforge.config import get_settings
from toolforge.errors import AssemblyError
from toolforge.models import Requester
from toolforge.service import AssemblyService, parse_request

settings = get_settings()
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(levelname)s:%(name)s:%(message)s",
)
logger = logging.getLogger(__name__)
_service: AssemblyService | None = None
LifespanState = dict[str, Any]


@asynccontextmanager
async def _lifespan(_: FastMCP[LifespanState]) -> AsyncIterator[LifespanState]:
    global _service
    service = AssemblyService.from_settings(settings)
    _service = service
    try:
        yield {"service": "toolforge"}
    finally:
        await service.close()
        _service = None


mcp = FastMCP(
    name="toolforge-mcp",
    instructions="Assemble executable AI tools from stored prompts, reference content and styles.",
    version=get_version(),
    lifespan=_lifespan,
)


def _require_service() -> AssemblyService:
    if _service is None:
        raise RuntimeError("assembly service is not initialized")
    return _service


def _normalize_optional_list(value: Any) -> Any:
    """Coerce empty objects sent for optional list arguments to None."""
    if value is None or value == {} or value == []:
        return None
    return value


async def run_build_tool(
    service: AssemblyService,
    payload: Mapping[str, Any],
    requester: Requester,
) -> dict[str, Any]:
    """Run one assembly and wrap the outcome in an ``ok``/``error`` envelope."""
    try:
        request = parse_request(payload)
        response = await service.assemble(request, requester)
    except AssemblyError as exc:
        logger.info("build_tool failed: %s (%s)", exc.code, exc.message)
        return {"ok": False, "error": exc.to_payload()}
    return {"ok": True, "data": response.model_dump(mode="json")}


@mcp.tool
async def build_tool(
    context: str,
    requester_id: int,
    home_space_id: int | None = None,
    mode: str | None = None,
    prompt_id: int | None = None,
    content_ids: list[int] | None = None,
    style_id: int | None = None,
    space_id: int | None = None,
    auto_create: bool = False,
    max_candidates: int | None = None,
    top_k: int | None = None,
    use_semantic_rerank: bool = True,
    use_query_expansion: bool = True,
    pin_components: bool = False,
    strict: bool = False,
    language: str | None = None,
) -> dict[str, Any]:
    """
    summary: Assemble a tool (prompt + reference contents + optional style) from a described need.
    when_to_use:
      - Use when the user describes a task and wants a ready-to-run tool built from existing components.
      - Use mode "propose" to preview, "simulate" to dry-run, "create" to persist the tool.
    arguments:
      context:
        type: string
        required: true
        description: Natural-language description of the need.
      requester_id:
        type: int
        required: true
        description: User on whose behalf components are read and the tool is written.
      mode:
        type: '"propose" | "simulate" | "create"'
        required: false
        description: Defaults to create when auto_create is set, otherwise propose.
      prompt_id / content_ids / style_id:
        required: false
        description: Explicit components; invalid content or style ids are skipped with a warning.
      strict:
        type: bool
        required: false
        description: Turn missing content and low compatibility into errors when creating.
    returns:
      ok:
        description: true with ``data`` holding the assembly response, false with ``error``.
    """
    payload = {
        "context": context,
        "mode": mode,
        "prompt_id": prompt_id,
        "content_ids": _normalize_optional_list(content_ids),
        "style_id": style_id,
        "space_id": space_id,
        "auto_create": auto_create,
        "max_candidates": max_candidates,
        "top_k": top_k,
        "use_semantic_rerank": use_semantic_rerank,
        "use_query_expansion": use_query_expansion,
        "pin_components": pin_components,
        "strict": strict,
        "language": language,
    }
    requester = Requester(user_id=requester_id, home_space_id=home_space_id)
    return await run_build_tool(_require_service(), payload, requester)


@mcp.custom_route("/healthz", methods=["GET"], include_in_schema=False)
async def health(_: Request) -> JSONResponse:
    """Lightweight health check for load balancers hitting GET /healthz."""
    return JSONResponse({"status": "ok", "version": get_version()})


def main() -> None:
    mcp.run(
        transport="streamable-http",
        path="/mcp",
        host=settings.mcp_host,
        port=settings.mcp_port,
    )


__all__ = ["mcp", "run_build_tool", "main"]


if __name__ == "__main__":
    main()
