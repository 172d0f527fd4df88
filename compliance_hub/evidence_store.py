"""Factory-owned evidence documents and their immutable version history.

Version numbers are derived from the current maximum for the evidence, under the
parent row lock, rather than from a stored counter.
"""

from __future__ import annotations

import logging
from typing import Any

from compliance_hub import audit_ledger
from compliance_hub.access_policy import Principal, owns_resource, require
from compliance_hub.audit_ledger import AuditLedger
from compliance_hub.errors import NotFoundError, NotOwnedError
from compliance_hub.store import Store, new_id, utcnow_iso

logger = logging.getLogger(__name__)


class EvidenceStore:
    def __init__(self, store: Store, ledger: AuditLedger) -> None:
        self._store = store
        self._ledger = ledger

    def _attach_versions(self, evidence_rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if not evidence_rows:
            return []
        versions = self._store.evidence_repository.list_versions(
            evidence_ids=[str(x["evidence_id"]) for x in evidence_rows]
        )
        by_evidence: dict[str, list[dict[str, Any]]] = {}
        for version in versions:
            by_evidence.setdefault(str(version["evidence_id"]), []).append(version)
        out: list[dict[str, Any]] = []
        for row in evidence_rows:
            item = dict(row)
            item["versions"] = by_evidence.get(str(row["evidence_id"]), [])
            out.append(item)
        return out

    def require_owned_evidence(
        self,
        factory_id: str | None,
        evidence_id: str,
        *,
        for_update: bool = False,
    ) -> dict[str, Any]:
        """Load evidence under ``factory_id`` or raise ``NotOwnedError``; no audit entry."""
        if not factory_id:
            raise NotOwnedError()
        row = self._store.evidence_repository.get_evidence(
            factory_id=factory_id,
            evidence_id=evidence_id,
            for_update=for_update,
        )
        if row is None or not owns_resource(factory_id, row.get("factory_id")):
            raise NotOwnedError()
        return row

    def require_version(self, evidence_id: str, version_id: str) -> dict[str, Any]:
        version = self._store.evidence_repository.get_version(evidence_id=evidence_id, version_id=version_id)
        if version is None:
            raise NotFoundError(code="VERSION_NOT_FOUND", message="evidence version not found")
        return version

    def create_evidence(
        self,
        principal: Principal,
        *,
        name: str,
        doc_type: str,
        expiry: str,
        notes: str | None = None,
    ) -> dict[str, Any]:
        require(principal, "create_evidence")
        factory_id = str(principal.factory_id)
        now = utcnow_iso()
        evidence = {
            "evidence_id": new_id("evd"),
            "factory_id": factory_id,
            "name": name,
            "doc_type": doc_type,
            "expiry": expiry,
            "notes": notes or "",
            "created_at": now,
            "updated_at": now,
        }
        version = {
            "version_id": new_id("ver"),
            "evidence_id": evidence["evidence_id"],
            "version_number": 1,
            "notes": notes or "",
            "expiry": expiry,
            "created_at": now,
        }
        with self._store.transaction():
            self._store.evidence_repository.insert_evidence(evidence=evidence)
            self._store.evidence_repository.insert_version(version=version)
            self._ledger.record(
                actor_user_id=principal.user_id,
                actor_role=principal.role,
                action=audit_ledger.CREATE_EVIDENCE,
                object_type=audit_ledger.OBJECT_EVIDENCE,
                object_id=evidence["evidence_id"],
                metadata={
                    "factory_id": factory_id,
                    "name": name,
                    "doc_type": doc_type,
                    "expiry": expiry,
                    "initial_version_id": version["version_id"],
                },
            )
        logger.info(
            "evidence_created evidence_id=%s factory_id=%s version_id=%s",
            evidence["evidence_id"],
            factory_id,
            version["version_id"],
        )
        return {"evidence_id": evidence["evidence_id"], "version_id": version["version_id"]}

    def add_version(
        self,
        principal: Principal,
        evidence_id: str,
        *,
        notes: str | None = None,
        expiry: str | None = None,
    ) -> dict[str, Any]:
        require(principal, "add_version")
        with self._store.transaction():
            # row lock on the parent serializes concurrent numbering on postgres
            self.require_owned_evidence(principal.factory_id, evidence_id, for_update=True)
            next_number = self._store.evidence_repository.max_version_number(evidence_id=evidence_id) + 1
            version = {
                "version_id": new_id("ver"),
                "evidence_id": evidence_id,
                "version_number": next_number,
                "notes": notes,
                "expiry": expiry,
                "created_at": utcnow_iso(),
            }
            self._store.evidence_repository.insert_version(version=version)
            self._ledger.record(
                actor_user_id=principal.user_id,
                actor_role=principal.role,
                action=audit_ledger.ADD_VERSION,
                object_type=audit_ledger.OBJECT_VERSION,
                object_id=version["version_id"],
                metadata={
                    "evidence_id": evidence_id,
                    "factory_id": principal.factory_id,
                    "version_number": next_number,
                    "notes": notes,
                    "expiry": expiry,
                },
            )
        logger.info("evidence_version_added evidence_id=%s version_number=%s", evidence_id, next_number)
        return {"version_id": version["version_id"], "version_number": next_number}

    def list_for_factory(self, principal: Principal) -> list[dict[str, Any]]:
        require(principal, "list_evidence")
        with self._store.transaction():
            rows = self._store.evidence_repository.list_evidence(factory_id=str(principal.factory_id))
            return self._attach_versions(rows)

    def get(self, principal: Principal, evidence_id: str) -> dict[str, Any]:
        require(principal, "view_evidence")
        with self._store.transaction():
            row = self.require_owned_evidence(principal.factory_id, evidence_id)
            return self._attach_versions([row])[0]

    def delete(self, principal: Principal, evidence_id: str) -> None:
        require(principal, "delete_evidence")
        factory_id = str(principal.factory_id)
        with self._store.transaction():
            self.require_owned_evidence(factory_id, evidence_id, for_update=True)
            self._store.evidence_repository.delete_evidence(factory_id=factory_id, evidence_id=evidence_id)
            self._ledger.record(
                actor_user_id=principal.user_id,
                actor_role=principal.role,
                action=audit_ledger.DELETE_EVIDENCE,
                object_type=audit_ledger.OBJECT_EVIDENCE,
                object_id=evidence_id,
                metadata={"factory_id": factory_id},
            )
        logger.info("evidence_deleted evidence_id=%s factory_id=%s", evidence_id, factory_id)
