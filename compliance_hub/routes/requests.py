from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from compliance_hub.routes._deps import principal_from_request, request_workflow, trace_id_from_request
from compliance_hub.schemas import CreateRequestRequest, FulfillItemRequest, success_envelope

router = APIRouter(prefix="/api/v1", tags=["requests"])


@router.post("/requests")
def create_request(payload: CreateRequestRequest, request: Request):
    data = request_workflow(request).create_request(
        principal_from_request(request),
        factory_id=payload.factory_id,
        title=payload.title,
        items=[x.model_dump() for x in payload.items],
    )
    return JSONResponse(
        status_code=201,
        content=success_envelope(data, trace_id_from_request(request)),
    )


@router.get("/requests")
def list_buyer_requests(request: Request):
    data = request_workflow(request).list_for_buyer(principal_from_request(request))
    return success_envelope({"items": data, "total": len(data)}, trace_id_from_request(request))


@router.get("/factory/requests")
def list_factory_requests(request: Request):
    data = request_workflow(request).list_for_factory(principal_from_request(request))
    return success_envelope({"items": data, "total": len(data)}, trace_id_from_request(request))


@router.get("/requests/{request_id}")
def get_request(request_id: str, request: Request):
    data = request_workflow(request).get(principal_from_request(request), request_id)
    return success_envelope(data, trace_id_from_request(request))


@router.post("/requests/{request_id}/items/{item_id}/fulfill")
def fulfill_item(request_id: str, item_id: str, payload: FulfillItemRequest, request: Request):
    data = request_workflow(request).fulfill_item(
        principal_from_request(request),
        request_id,
        item_id,
        evidence_id=payload.evidence_id,
        version_id=payload.version_id,
    )
    return success_envelope(data, trace_id_from_request(request))
