"""Authorization guard for lending and catalog operations.

One policy function answers every question of the form "may this identity
act on a resource owned by X, given these elevated roles?". The ``require_*``
helpers raise ``Forbidden`` on a deny decision.

Example:
    >>> require_owner_or_role(identity, transaction.user_id, {Role.MANAGER})
"""
from dataclasses import dataclass
from typing import Iterable, Optional

from app.core.errors import Forbidden
from app.core.logging import get_logger
from app.domain.user import Identity

logger = get_logger(__name__)


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str

    def __bool__(self) -> bool:
        return self.allowed


def decide(
    identity: Identity,
    resource_owner_id: Optional[str],
    allowed_roles: Iterable[str],
) -> Decision:
    """Allow when ``identity`` owns the resource or holds one of ``allowed_roles``.

    Args:
        identity: Caller
        resource_owner_id: Owner of the resource, or None for role-only checks
        allowed_roles: Roles that grant access regardless of ownership

    Returns:
        Explicit allow/deny decision with the reason
    """
    if resource_owner_id is not None and identity.id == resource_owner_id:
        return Decision(True, "owner")
    # Equality, not hashing: Role members compare equal to their plain values
    if any(identity.role == role for role in allowed_roles):
        return Decision(True, f"role:{identity.role.value}")
    return Decision(False, "not owner" if resource_owner_id is not None else "role")


def _enforce(decision: Decision, identity: Identity, message: str) -> None:
    if not decision:
        logger.warning(
            f"Access denied for user {identity.id} ({decision.reason})",
            extra={"user_id": identity.id, "error_type": "Forbidden"}
        )
        raise Forbidden(message)


def require_role(
    identity: Identity,
    allowed_roles: Iterable[str],
    message: str = "Access denied",
) -> None:
    """Raise ``Forbidden`` unless the identity holds one of ``allowed_roles``."""
    _enforce(decide(identity, None, allowed_roles), identity, message)


def require_owner_or_role(
    identity: Identity,
    resource_owner_id: str,
    allowed_roles: Iterable[str] = (),
    message: str = "Access denied",
) -> None:
    """Raise ``Forbidden`` unless the identity owns the resource or holds a role.

    Pass no roles for ownership-only checks.
    """
    _enforce(decide(identity, resource_owner_id, allowed_roles), identity, message)
