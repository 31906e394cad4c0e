"""Fatal assembly errors surfaced to callers as top-level error payloads."""

from __future__ import annotations

from typing import Any

from .models import CandidateLists


class AssemblyError(Exception):
    """Base class for errors that abort an assembly without a blueprint."""

    code = "assembly_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        suggestion: str | None = None,
        candidates: CandidateLists | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.suggestion = suggestion
        self.candidates = candidates

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }
        if self.suggestion:
            payload["suggestion"] = self.suggestion
        if self.candidates is not None:
            payload["candidates"] = self.candidates.model_dump(mode="json")
        return payload


class RequestValidationError(AssemblyError):
    code = "validation_error"
    status_code = 400


class InvalidPromptError(AssemblyError):
    code = "invalid_prompt_id"
    status_code = 404


class PromptMissingError(AssemblyError):
    code = "prompt_missing"
    status_code = 404


class ContentMissingError(AssemblyError):
    code = "content_missing"
    status_code = 422


class LowCompatibilityError(AssemblyError):
    code = "low_compatibility"
    status_code = 422


class PersistenceError(AssemblyError):
    code = "internal_error"
    status_code = 500


class BackendError(RuntimeError):
    """A collaborator call failed (transport error, bad status, bad payload)."""


class SemanticRerankError(BackendError):
    """The semantic reranker produced no usable ranking."""


__all__ = [
    "AssemblyError",
    "RequestValidationError",
    "InvalidPromptError",
    "PromptMissingError",
    "ContentMissingError",
    "LowCompatibilityError",
    "PersistenceError",
    "BackendError",
    "SemanticRerankError",
]
