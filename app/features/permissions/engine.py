"""
Authorization decisions.

The effective permission set of an identity is the union of its role
defaults and its stored grants. Decisions are read-only: they take no locks
and hold no state between calls, so any number of requests may evaluate
concurrently. A grant committed a moment ago by another connection may not
be visible yet; that is acceptable.
"""
from collections.abc import Collection
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions import store
from app.features.permissions.catalog import PermissionKey, defaults_for, is_valid_key, parse_keys
from app.features.permissions.route_map import DEFAULT_ROUTE_MAP, Policy, RouteMap, RouteRule
from app.features.users.models import Role
from app.features.users.schemas import Identity
from app.utils import get_logger


log = get_logger(__name__)


class DecisionReason(str, Enum):
    GRANTED = "GRANTED"
    # Informational: no rule covers the route, nothing was enforced
    NO_RULE_MATCH = "NO_RULE_MATCH"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: DecisionReason
    rule: Optional[RouteRule] = None


def evaluate(
    effective: Collection[PermissionKey],
    required: Collection[PermissionKey],
    policy: Policy
) -> bool:
    """ANY: at least one required key held. ALL: every required key held."""
    held = set(effective)
    if policy == Policy.ALL:
        return held.issuperset(required)
    return not held.isdisjoint(required)


async def effective_permissions(db: AsyncSession, identity: Identity) -> frozenset[PermissionKey]:
    granted = await store.get_granted_keys(db, identity.id)
    stale = {key for key in granted if not is_valid_key(key)}
    if stale:
        log.warning(f"Ignoring grants for user {identity.id} missing from catalog: {sorted(stale)}")
    return defaults_for(identity.role) | {PermissionKey(key) for key in granted - stale}


async def authorize_explicit(
    db: AsyncSession,
    identity: Identity,
    required_keys: Collection[PermissionKey | str],
    policy: Policy = Policy.ANY
) -> Decision:
    """Check an arbitrary key set, for checks that do not map to a route."""
    required = parse_keys(required_keys)
    effective = await effective_permissions(db, identity)
    if evaluate(effective, required, policy):
        return Decision(allowed=True, reason=DecisionReason.GRANTED)
    log.info(
        f"Denied user {identity.id} ({identity.role.value}): requires {policy.value} of "
        f"{sorted(k.value for k in required)}"
    )
    return Decision(allowed=False, reason=DecisionReason.INSUFFICIENT_PERMISSIONS)


async def authorize(
    db: AsyncSession,
    identity: Identity,
    method: str,
    path: str,
    route_map: RouteMap = DEFAULT_ROUTE_MAP
) -> Decision:
    rule = route_map.required_keys_for(method, path)
    if rule is None:
        log.debug(f"No permission rule for {method} {path}")
        return Decision(allowed=True, reason=DecisionReason.NO_RULE_MATCH)

    effective = await effective_permissions(db, identity)
    if evaluate(effective, rule.required_keys, rule.policy):
        log.debug(f"User {identity.id} allowed {method} {path} via rule {rule.path_pattern}")
        return Decision(allowed=True, reason=DecisionReason.GRANTED, rule=rule)

    log.info(
        f"Denied user {identity.id} ({identity.role.value}) {method} {path}: requires "
        f"{rule.policy.value} of {[k.value for k in rule.required_keys]}"
    )
    return Decision(allowed=False, reason=DecisionReason.INSUFFICIENT_PERMISSIONS, rule=rule)


def is_admin(identity: Identity) -> bool:
    """Administrative capability: manage identities and their permissions."""
    return identity.role == Role.ADMIN
