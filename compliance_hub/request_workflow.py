"""Buyer requests and the item fulfillment lifecycle.

Item: PENDING -> FULFILLED (terminal). Request: OPEN -> COMPLETED (terminal),
re-derived from the item set after every fulfillment.
"""

from __future__ import annotations

import logging
from typing import Any

from compliance_hub import audit_ledger
from compliance_hub.access_policy import Principal, owns_resource, require
from compliance_hub.audit_ledger import AuditLedger
from compliance_hub.errors import NotFoundError, NotOwnedError, ValidationFailedError
from compliance_hub.evidence_store import EvidenceStore
from compliance_hub.store import Store, new_id, utcnow_iso

logger = logging.getLogger(__name__)

REQUEST_OPEN = "OPEN"
REQUEST_COMPLETED = "COMPLETED"
ITEM_PENDING = "PENDING"
ITEM_FULFILLED = "FULFILLED"


def _public_item(item: dict[str, Any]) -> dict[str, Any]:
    out = dict(item)
    out.pop("position", None)
    return out


class RequestWorkflow:
    def __init__(self, store: Store, ledger: AuditLedger, evidence_store: EvidenceStore) -> None:
        self._store = store
        self._ledger = ledger
        self._evidence_store = evidence_store

    def _attach_items(self, request_rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if not request_rows:
            return []
        items = self._store.requests_repository.list_items(
            request_ids=[str(x["request_id"]) for x in request_rows]
        )
        by_request: dict[str, list[dict[str, Any]]] = {}
        for item in items:
            by_request.setdefault(str(item["request_id"]), []).append(_public_item(item))
        out: list[dict[str, Any]] = []
        for row in request_rows:
            request = dict(row)
            request["items"] = by_request.get(str(row["request_id"]), [])
            out.append(request)
        return out

    def create_request(
        self,
        principal: Principal,
        *,
        factory_id: str,
        title: str,
        items: list[dict[str, Any]],
    ) -> dict[str, Any]:
        require(principal, "create_request")
        if not items:
            raise ValidationFailedError(message="a request needs at least one item")
        if not factory_id:
            raise ValidationFailedError(message="factory_id is required")
        doc_types = [str(x.get("doc_type") or "") for x in items]
        if any(not doc_type for doc_type in doc_types):
            raise ValidationFailedError(message="every item needs a doc_type")

        now = utcnow_iso()
        request = {
            "request_id": new_id("req"),
            "buyer_id": principal.user_id,
            "factory_id": factory_id,
            "title": title,
            "status": REQUEST_OPEN,
            "created_at": now,
            "updated_at": now,
        }
        item_rows = [
            {
                "item_id": new_id("itm"),
                "request_id": request["request_id"],
                "position": position,
                "doc_type": doc_type,
                "status": ITEM_PENDING,
                "evidence_id": None,
                "version_id": None,
                "created_at": now,
                "updated_at": now,
            }
            for position, doc_type in enumerate(doc_types)
        ]
        with self._store.transaction():
            self._store.requests_repository.insert_request(request=request)
            self._store.requests_repository.insert_items(items=item_rows)
            self._ledger.record(
                actor_user_id=principal.user_id,
                actor_role=principal.role,
                action=audit_ledger.CREATE_REQUEST,
                object_type=audit_ledger.OBJECT_REQUEST,
                object_id=request["request_id"],
                metadata={
                    "factory_id": factory_id,
                    "buyer_id": principal.user_id,
                    "title": title,
                    "item_count": len(item_rows),
                    "items": [{"doc_type": doc_type} for doc_type in doc_types],
                },
            )
            saved = self._store.requests_repository.get_request(request_id=request["request_id"])
            if saved is None:
                raise NotFoundError(code="REQUEST_NOT_FOUND", message="request not found after creation")
            created = self._attach_items([saved])[0]
        logger.info(
            "request_created request_id=%s factory_id=%s item_count=%s",
            request["request_id"],
            factory_id,
            len(item_rows),
        )
        return created

    def list_for_buyer(self, principal: Principal) -> list[dict[str, Any]]:
        require(principal, "list_buyer_requests")
        with self._store.transaction():
            rows = self._store.requests_repository.list_by_buyer(buyer_id=principal.user_id)
            return self._attach_items(rows)

    def list_for_factory(self, principal: Principal) -> list[dict[str, Any]]:
        """List requests addressed to the caller's factory; the read itself is audited."""
        require(principal, "list_factory_requests")
        factory_id = str(principal.factory_id)
        with self._store.transaction():
            rows = self._store.requests_repository.list_by_factory(factory_id=factory_id)
            requests = self._attach_items(rows)
            self._ledger.record(
                actor_user_id=principal.user_id,
                actor_role=principal.role,
                action=audit_ledger.VIEW_REQUESTS,
                object_type=audit_ledger.OBJECT_REQUEST,
                object_id=factory_id,
                metadata={"factory_id": factory_id, "request_count": len(requests)},
            )
        return requests

    def get(self, principal: Principal, request_id: str) -> dict[str, Any]:
        require(principal, "view_request")
        with self._store.transaction():
            row = self._store.requests_repository.get_request(request_id=request_id)
            if row is None:
                raise NotFoundError(code="REQUEST_NOT_FOUND", message="request not found")
            return self._attach_items([row])[0]

    def fulfill_item(
        self,
        principal: Principal,
        request_id: str,
        item_id: str,
        *,
        evidence_id: str,
        version_id: str,
    ) -> dict[str, Any]:
        require(principal, "fulfill_item")
        factory_id = principal.factory_id
        repo = self._store.requests_repository
        with self._store.transaction():
            request = repo.get_request(request_id=request_id, factory_id=factory_id, for_update=True)
            if request is None or not owns_resource(factory_id, request.get("factory_id")):
                raise NotOwnedError()
            item = repo.get_item(request_id=request_id, item_id=item_id)
            if item is None:
                raise NotFoundError(code="ITEM_NOT_FOUND", message="request item not found")
            self._evidence_store.require_owned_evidence(factory_id, evidence_id, for_update=True)
            self._evidence_store.require_version(evidence_id, version_id)
            previous_status = str(item.get("status"))
            if previous_status == ITEM_FULFILLED:
                raise ValidationFailedError(code="ITEM_ALREADY_FULFILLED", message="request item is already fulfilled")

            now = utcnow_iso()
            item.update(
                {
                    "evidence_id": evidence_id,
                    "version_id": version_id,
                    "status": ITEM_FULFILLED,
                    "updated_at": now,
                }
            )
            item = repo.update_item(item=item)

            # read back after our own write, still under the request row lock
            all_items = repo.list_items(request_ids=[request_id])
            if all_items and all(x.get("status") == ITEM_FULFILLED for x in all_items):
                if request.get("status") != REQUEST_COMPLETED:
                    request = repo.update_request_status(
                        request_id=request_id,
                        status=REQUEST_COMPLETED,
                        updated_at=now,
                    )
                    logger.info("request_completed request_id=%s", request_id)

            self._ledger.record(
                actor_user_id=principal.user_id,
                actor_role=principal.role,
                action=audit_ledger.FULFILL_ITEM,
                object_type=audit_ledger.OBJECT_REQUEST_ITEM,
                object_id=item_id,
                metadata={
                    "request_id": request_id,
                    "factory_id": factory_id,
                    "doc_type": item.get("doc_type"),
                    "evidence_id": evidence_id,
                    "version_id": version_id,
                    "previous_status": previous_status,
                    "new_status": ITEM_FULFILLED,
                },
            )
        logger.info("request_item_fulfilled request_id=%s item_id=%s version_id=%s", request_id, item_id, version_id)
        return {
            "request": {
                "request_id": request["request_id"],
                "status": request["status"],
                "updated_at": request["updated_at"],
            },
            "item": _public_item(item),
        }
