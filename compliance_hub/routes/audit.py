from __future__ import annotations

from fastapi import APIRouter, Query, Request

from compliance_hub.routes._deps import audit_ledger, principal_from_request, trace_id_from_request
from compliance_hub.schemas import success_envelope

router = APIRouter(prefix="/api/v1", tags=["audit"])


@router.get("/audit")
def query_audit(
    request: Request,
    action: str | None = Query(default=None),
    object_type: str | None = Query(default=None, alias="objectType"),
    actor_user_id: str | None = Query(default=None, alias="actorUserId"),
):
    data = audit_ledger(request).query(
        principal_from_request(request),
        action=action,
        object_type=object_type,
        actor_user_id=actor_user_id,
    )
    return success_envelope({"items": data, "total": len(data)}, trace_id_from_request(request))
