import itertools

import pytest

from tenancy import models
from tenancy.exceptions import ForbiddenTransition
from tenancy.lifecycle import applications, guard, leases

Role = models.UserRole
Source = models.SourceType
AS = models.ApplicationStatus
LS = models.LeaseStatus
PS = models.PaymentStatus

STATUSES = {
    Source.APPLICATION: list(AS),
    Source.LEASE: list(LS),
    Source.PAYMENT: list(PS),
}


@pytest.mark.parametrize(
    ("role", "source_type", "from_status", "to_status"),
    [
        (Role.RENTER, Source.APPLICATION, AS.DRAFT, AS.SUBMITTED),
        (Role.LANDLORD, Source.APPLICATION, AS.SUBMITTED, AS.UNDER_REVIEW),
        (Role.AGENT, Source.APPLICATION, AS.UNDER_REVIEW, AS.APPROVED),
        (Role.RENTER, Source.APPLICATION, AS.INFO_REQUESTED, AS.UNDER_REVIEW),
        (Role.ADMIN, Source.APPLICATION, AS.REJECTED, AS.UNDER_REVIEW),
        (Role.PROPERTY_MANAGER, Source.LEASE, LS.NONE, LS.LEASE_SENT),
        (Role.RENTER, Source.LEASE, LS.LEASE_SENT, LS.LEASE_ACCEPTED),
        (Role.AGENT, Source.LEASE, LS.LEASE_ACCEPTED, LS.LEASE_SIGNED),
        (Role.LANDLORD, Source.LEASE, LS.LEASE_SIGNED, LS.MOVE_IN_READY),
        (Role.RENTER, Source.PAYMENT, PS.OVERDUE, PS.PAID),
        (Role.SYSTEM, Source.PAYMENT, PS.PENDING, PS.OVERDUE),
        (Role.ADMIN, Source.PAYMENT, PS.PAID, PS.VERIFIED),
    ],
)
def test_allowed(role, source_type, from_status, to_status):
    assert guard.is_allowed(role, source_type, from_status, to_status)
    guard.authorize(role, source_type, from_status, to_status)


@pytest.mark.parametrize(
    ("role", "source_type", "from_status", "to_status"),
    [
        (Role.LANDLORD, Source.APPLICATION, AS.DRAFT, AS.SUBMITTED),
        (Role.ADMIN, Source.APPLICATION, AS.DRAFT, AS.SUBMITTED),
        (Role.RENTER, Source.APPLICATION, AS.UNDER_REVIEW, AS.APPROVED),
        (Role.LANDLORD, Source.APPLICATION, AS.REJECTED, AS.UNDER_REVIEW),
        (Role.AGENT, Source.LEASE, LS.LEASE_SIGNED, LS.MOVE_IN_READY),
        (Role.LANDLORD, Source.LEASE, LS.LEASE_SENT, LS.LEASE_ACCEPTED),
        (Role.LANDLORD, Source.PAYMENT, PS.PENDING, PS.PAID),
        (Role.RENTER, Source.PAYMENT, PS.PAID, PS.VERIFIED),
        (Role.AGENT, Source.PAYMENT, PS.PAID, PS.VERIFIED),
        (Role.RENTER, Source.PAYMENT, PS.PENDING, PS.OVERDUE),
        (Role.SYSTEM, Source.PAYMENT, PS.PAID, PS.VERIFIED),
    ],
)
def test_denied(role, source_type, from_status, to_status):
    assert not guard.is_allowed(role, source_type, from_status, to_status)
    with pytest.raises(ForbiddenTransition):
        guard.authorize(role, source_type, from_status, to_status)


def test_guest_has_no_capabilities():
    assert not any(capability[0] == Role.GUEST for capability in guard.CAPABILITIES)


def test_system_marks_payments_overdue_only():
    assert {capability for capability in guard.CAPABILITIES if capability[0] == Role.SYSTEM} == {
        (Role.SYSTEM, Source.PAYMENT, PS.PENDING, PS.OVERDUE)
    }


def test_unlisted_transitions_are_denied():
    for source_type, statuses in STATUSES.items():
        for role, from_status, to_status in itertools.product(Role, statuses, statuses):
            expected = (role, source_type, from_status, to_status) in guard.CAPABILITIES
            assert guard.is_allowed(role, source_type, from_status, to_status) is expected


def test_capabilities_follow_the_state_machines():
    for _, source_type, from_status, to_status in guard.CAPABILITIES:
        match source_type:
            case Source.APPLICATION:
                assert to_status in applications.SUCCESSORS[AS(from_status)]
            case Source.LEASE:
                assert leases.SUCCESSORS[LS(from_status)] == to_status
            case Source.PAYMENT:
                assert PS(to_status) != PS.PENDING


def test_allowed_targets():
    successors = applications.SUCCESSORS[AS.UNDER_REVIEW]

    assert guard.allowed_targets(Role.AGENT, Source.APPLICATION, AS.UNDER_REVIEW, successors) == list(successors)
    assert guard.allowed_targets(Role.RENTER, Source.APPLICATION, AS.UNDER_REVIEW, successors) == []
    assert guard.allowed_targets(Role.RENTER, Source.APPLICATION, AS.INFO_REQUESTED, [AS.UNDER_REVIEW]) == [
        AS.UNDER_REVIEW
    ]


def test_party_role(session, renter, landlord, manager, agent, admin, stranger, prop):
    assert guard.party_role(admin, prop, renter.id) == Role.ADMIN
    assert guard.party_role(renter, prop, renter.id) == Role.RENTER
    assert guard.party_role(landlord, prop, renter.id) == Role.LANDLORD
    assert guard.party_role(manager, prop, renter.id) == Role.PROPERTY_MANAGER
    assert guard.party_role(agent, prop, renter.id) == Role.AGENT
    assert guard.party_role(stranger, prop, renter.id) is None

    with pytest.raises(ForbiddenTransition, match="User is not authorized"):
        guard.resolve_role(stranger, prop, renter.id)
