"""Append-only audit trail of who did what to which object."""

from __future__ import annotations

import logging
from typing import Any

from compliance_hub.access_policy import Principal, require
from compliance_hub.store import Store, new_id, utcnow_iso

logger = logging.getLogger(__name__)

CREATE_EVIDENCE = "CREATE_EVIDENCE"
ADD_VERSION = "ADD_VERSION"
DELETE_EVIDENCE = "DELETE_EVIDENCE"
CREATE_REQUEST = "CREATE_REQUEST"
VIEW_REQUESTS = "VIEW_REQUESTS"
FULFILL_ITEM = "FULFILL_ITEM"

OBJECT_EVIDENCE = "Evidence"
OBJECT_VERSION = "Version"
OBJECT_REQUEST = "Request"
OBJECT_REQUEST_ITEM = "RequestItem"


class AuditLedger:
    def __init__(self, store: Store) -> None:
        self._store = store

    def record(
        self,
        *,
        actor_user_id: str,
        actor_role: str,
        action: str,
        object_type: str,
        object_id: str,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Append one entry.

        Runs inside the caller's transaction when there is one, so a failed
        write here undoes the mutation being described.
        """
        entry = {
            "audit_id": new_id("audit"),
            "timestamp": utcnow_iso(),
            "actor_user_id": actor_user_id,
            "actor_role": actor_role,
            "action": action,
            "object_type": object_type,
            "object_id": object_id,
            "metadata": dict(metadata or {}),
        }
        with self._store.transaction():
            saved = self._store.audit_repository.append(log=entry)
        logger.info("audit_recorded action=%s object_type=%s object_id=%s", action, object_type, object_id)
        return saved

    def query(
        self,
        principal: Principal,
        *,
        action: str | None = None,
        object_type: str | None = None,
        actor_user_id: str | None = None,
    ) -> list[dict[str, Any]]:
        require(principal, "query_audit")
        with self._store.transaction():
            return self._store.audit_repository.query(
                action=action or None,
                object_type=object_type or None,
                actor_user_id=actor_user_id or None,
            )
