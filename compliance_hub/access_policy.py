"""Stateless authorization predicates applied at the start of every operation.

Factory-scoped lookups translate a failed ownership check into ``NotOwnedError``,
never into a distinct "exists but forbidden" signal.
"""

from __future__ import annotations

from dataclasses import dataclass

from compliance_hub.errors import IllegalRoleForActionError

ROLE_BUYER = "buyer"
ROLE_FACTORY = "factory"
ROLE_ADMIN = "admin"
ALL_ROLES = frozenset({ROLE_BUYER, ROLE_FACTORY, ROLE_ADMIN})


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: str
    factory_id: str | None = None


@dataclass(frozen=True)
class Allowed:
    action: str


@dataclass(frozen=True)
class Denied:
    action: str
    reason: str


Decision = Allowed | Denied


@dataclass(frozen=True)
class PolicyRule:
    roles: frozenset[str]
    tenant_scoped: bool


POLICY: dict[str, PolicyRule] = {
    "create_evidence": PolicyRule(roles=frozenset({ROLE_FACTORY}), tenant_scoped=True),
    "add_version": PolicyRule(roles=frozenset({ROLE_FACTORY}), tenant_scoped=True),
    "list_evidence": PolicyRule(roles=frozenset({ROLE_FACTORY}), tenant_scoped=True),
    "view_evidence": PolicyRule(roles=frozenset({ROLE_FACTORY}), tenant_scoped=True),
    "delete_evidence": PolicyRule(roles=frozenset({ROLE_FACTORY}), tenant_scoped=True),
    "create_request": PolicyRule(roles=frozenset({ROLE_BUYER}), tenant_scoped=False),
    "list_buyer_requests": PolicyRule(roles=frozenset({ROLE_BUYER}), tenant_scoped=False),
    "list_factory_requests": PolicyRule(roles=frozenset({ROLE_FACTORY}), tenant_scoped=True),
    # Readable by id from any role with no tenant check; kept narrower-auth on purpose
    # until the public status page question is settled.
    "view_request": PolicyRule(roles=ALL_ROLES, tenant_scoped=False),
    "fulfill_item": PolicyRule(roles=frozenset({ROLE_FACTORY}), tenant_scoped=True),
    "query_audit": PolicyRule(roles=ALL_ROLES, tenant_scoped=False),
}


def can_act_as(principal: Principal, required_role: str) -> bool:
    if principal.role != required_role:
        return False
    if required_role == ROLE_FACTORY and not principal.factory_id:
        return False
    return True


def owns_resource(principal_factory_id: str | None, resource_factory_id: str | None) -> bool:
    if not principal_factory_id or not resource_factory_id:
        return False
    return principal_factory_id == resource_factory_id


def authorize(principal: Principal, action: str) -> Decision:
    rule = POLICY.get(action)
    if rule is None:
        return Denied(action=action, reason=f"unknown action: {action}")
    if not any(can_act_as(principal, role) for role in rule.roles):
        return Denied(action=action, reason=f"role '{principal.role}' may not perform {action}")
    return Allowed(action=action)


def require(principal: Principal, action: str) -> Allowed:
    decision = authorize(principal, action)
    if isinstance(decision, Denied):
        raise IllegalRoleForActionError(decision.reason)
    return decision
