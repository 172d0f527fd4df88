from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from compliance_hub.routes._deps import identity_service, principal_from_request, trace_id_from_request
from compliance_hub.schemas import LoginRequest, RegisterRequest, success_envelope

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


@router.post("/register")
def register(payload: RegisterRequest, request: Request):
    data = identity_service(request).register(
        email=payload.email,
        password=payload.password,
        first_name=payload.first_name,
        last_name=payload.last_name,
        role=payload.role,
        factory_id=payload.factory_id,
    )
    return JSONResponse(
        status_code=201,
        content=success_envelope(data, trace_id_from_request(request)),
    )


@router.post("/login")
def login(payload: LoginRequest, request: Request):
    data = identity_service(request).login(email=payload.email, password=payload.password)
    return success_envelope(data, trace_id_from_request(request))


@router.get("/profile")
def profile(request: Request):
    data = identity_service(request).profile(principal_from_request(request))
    return success_envelope(data, trace_id_from_request(request))
