from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class CreateEvidenceRequest(BaseModel):
    name: str = Field(min_length=1)
    doc_type: str = Field(min_length=1)
    expiry: str = Field(min_length=1)
    notes: str | None = None


class AddVersionRequest(BaseModel):
    notes: str | None = None
    expiry: str | None = None


class RequestItemInput(BaseModel):
    doc_type: str = Field(min_length=1)


class CreateRequestRequest(BaseModel):
    factory_id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    items: list[RequestItemInput] = Field(min_length=1)


class FulfillItemRequest(BaseModel):
    evidence_id: str = Field(min_length=1)
    version_id: str = Field(min_length=1)


class RegisterRequest(BaseModel):
    email: str = Field(min_length=3, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(min_length=6)
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    role: Literal["buyer", "factory", "admin"]
    factory_id: str | None = None


class LoginRequest(BaseModel):
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)


def success_envelope(data: Any, trace_id: str, message: str = "ok") -> dict[str, Any]:
    return {
        "success": True,
        "data": data,
        "message": message,
        "meta": {
            "trace_id": trace_id,
        },
    }


def error_envelope(
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    trace_id: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "retryable": retryable,
        "class": error_class,
    }
    if details is not None:
        error["details"] = details
    return {
        "success": False,
        "error": error,
        "meta": {
            "trace_id": trace_id,
        },
    }
