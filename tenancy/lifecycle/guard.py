"""
The transition surface of every entity, as data.

Each entry of :data:`CAPABILITIES` is a ``(role, source_type, from_status, to_status)`` tuple that is allowed.
Anything absent is denied.
"""

from collections.abc import Iterable

from tenancy import models
from tenancy.exceptions import ForbiddenTransition
from tenancy.i18n import _

Role = models.UserRole
Source = models.SourceType
AS = models.ApplicationStatus
LS = models.LeaseStatus
PS = models.PaymentStatus

Capability = tuple[models.UserRole, models.SourceType, str, str]

#: The roles that review applications.
REVIEWERS = frozenset({Role.LANDLORD, Role.PROPERTY_MANAGER, Role.AGENT, Role.ADMIN})
#: The roles that act for the owner of a lease.
LANDLORD_SIDE = frozenset({Role.LANDLORD, Role.PROPERTY_MANAGER, Role.ADMIN})
#: The roles that can sign a lease for the owner.
LANDLORD_SIGNERS = frozenset({Role.LANDLORD, Role.PROPERTY_MANAGER, Role.AGENT, Role.ADMIN})

_RULES: dict[models.SourceType, dict[tuple[str, str], frozenset[models.UserRole]]] = {
    Source.APPLICATION: {
        (AS.DRAFT, AS.SUBMITTED): frozenset({Role.RENTER}),
        (AS.SUBMITTED, AS.UNDER_REVIEW): REVIEWERS,
        (AS.UNDER_REVIEW, AS.INFO_REQUESTED): REVIEWERS,
        (AS.UNDER_REVIEW, AS.BACKGROUND_CHECK): REVIEWERS,
        (AS.UNDER_REVIEW, AS.APPROVED): REVIEWERS,
        (AS.UNDER_REVIEW, AS.CONDITIONAL_APPROVAL): REVIEWERS,
        (AS.UNDER_REVIEW, AS.REJECTED): REVIEWERS,
        # The applicant answers the information request, or the reviewer resumes without an answer.
        (AS.INFO_REQUESTED, AS.UNDER_REVIEW): REVIEWERS | {Role.RENTER},
        (AS.BACKGROUND_CHECK, AS.APPROVED): REVIEWERS,
        (AS.BACKGROUND_CHECK, AS.CONDITIONAL_APPROVAL): REVIEWERS,
        (AS.BACKGROUND_CHECK, AS.REJECTED): REVIEWERS,
        (AS.REJECTED, AS.UNDER_REVIEW): frozenset({Role.ADMIN}),
    },
    Source.LEASE: {
        (LS.NONE, LS.LEASE_SENT): LANDLORD_SIDE,
        (LS.LEASE_SENT, LS.LEASE_ACCEPTED): frozenset({Role.RENTER}),
        # Each party signs separately. The lease becomes LEASE_SIGNED with the second signature.
        (LS.LEASE_ACCEPTED, LS.LEASE_SIGNED): LANDLORD_SIGNERS | {Role.RENTER},
        (LS.LEASE_SIGNED, LS.MOVE_IN_READY): LANDLORD_SIDE,
    },
    Source.PAYMENT: {
        (PS.PENDING, PS.PAID): frozenset({Role.RENTER}),
        (PS.OVERDUE, PS.PAID): frozenset({Role.RENTER}),
        (PS.PENDING, PS.OVERDUE): frozenset({Role.SYSTEM}),
        (PS.PAID, PS.VERIFIED): LANDLORD_SIDE,
    },
}

CAPABILITIES: frozenset[Capability] = frozenset(
    (role, source_type, from_status, to_status)
    for source_type, rules in _RULES.items()
    for (from_status, to_status), roles in rules.items()
    for role in roles
)


def is_allowed(role: models.UserRole, source_type: models.SourceType, from_status: str, to_status: str) -> bool:
    return (role, source_type, from_status, to_status) in CAPABILITIES


def authorize(role: models.UserRole, source_type: models.SourceType, from_status: str, to_status: str) -> None:
    """
    Raise :exc:`~tenancy.exceptions.ForbiddenTransition` if the role isn't allowed to make the transition.
    """
    if not is_allowed(role, source_type, from_status, to_status):
        raise ForbiddenTransition(
            _(
                "%(role)s can't change a %(source_type)s from %(from_status)s to %(to_status)s",
                role=role,
                source_type=source_type,
                from_status=from_status,
                to_status=to_status,
            )
        )


def can_reach(role: models.UserRole, source_type: models.SourceType, to_status: str) -> bool:
    """Return whether the role can make any transition into the status."""
    return any(key[0] == role and key[1] == source_type and key[3] == to_status for key in CAPABILITIES)


def allowed_targets(
    role: models.UserRole, source_type: models.SourceType, from_status: str, successors: Iterable[str]
) -> list[str]:
    """Return the successors of the status that the role can move an entity to, in the order given."""
    return [to_status for to_status in successors if is_allowed(role, source_type, from_status, to_status)]


def party_role(user: models.User, prop: models.Property, tenant_id: int) -> models.UserRole | None:
    """
    Return the role with which the user acts on an entity of the property, whose applicant or tenant is ``tenant_id``.

    An admin account acts as an admin. Otherwise, the relationship decides, in this order: applicant or tenant, owner,
    manager, agent.

    :return: The role, or None if the user has no relationship to the entity.
    """
    if user.is_admin():
        return Role.ADMIN
    if user.id == tenant_id:
        return Role.RENTER
    if user.id == prop.owner_id:
        return Role.LANDLORD
    if user.id == prop.manager_id:
        return Role.PROPERTY_MANAGER
    if user.id == prop.agent_id:
        return Role.AGENT
    return None


def resolve_role(user: models.User, prop: models.Property, tenant_id: int) -> models.UserRole:
    """
    Like :func:`~tenancy.lifecycle.guard.party_role`, but raise if the user has no relationship to the entity.

    :raises ForbiddenTransition: If the user has no relationship to the entity.
    """
    if role := party_role(user, prop, tenant_id):
        return role
    raise ForbiddenTransition(_("User is not authorized"))
