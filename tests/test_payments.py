from datetime import date
from decimal import Decimal

import pytest
from fastapi import status

from tenancy import models
from tenancy.exceptions import AlreadyExists, InvalidTransition, ValidationError
from tenancy.lifecycle import payments
from tests import assert_error, assert_ok

PS = models.PaymentStatus
NT = models.NotificationType


def test_mark_paid_and_verify(client, session, renter, landlord, renter_header, landlord_header, deposit):
    payid = deposit.id

    data = assert_ok(
        client.post(f"/payments/{payid}/mark-paid", json={"notes": "Transfer 42"}, headers=renter_header)
    )
    assert data["status"] == PS.PAID
    assert data["paid_at"] is not None
    assert data["notes"] == "Transfer 42"

    data = assert_ok(client.post(f"/payments/{payid}/verify", headers=landlord_header))
    assert data["status"] == PS.VERIFIED
    assert data["verified_at"] is not None
    assert data["verified_by_id"] == landlord.id

    # A verified payment is final.
    response = client.post(f"/payments/{payid}/mark-paid", headers=renter_header)
    assert_error(response, status.HTTP_409_CONFLICT, "invalid_transition")

    # Verifying again does nothing.
    again = assert_ok(client.post(f"/payments/{payid}/verify", headers=landlord_header))
    assert again["status_version"] == data["status_version"]

    history = models.TransitionLog.history(session, models.SourceType.PAYMENT, payid).all()
    assert [(log.from_status, log.to_status, log.actor_id) for log in history] == [
        ("", PS.PENDING, None),
        (PS.PENDING, PS.PAID, renter.id),
        (PS.PAID, PS.VERIFIED, landlord.id),
    ]


def test_mark_paid_twice(client, session, renter_header, deposit):
    first = assert_ok(client.post(f"/payments/{deposit.id}/mark-paid", headers=renter_header))
    response = client.post(f"/payments/{deposit.id}/mark-paid", json={"notes": "again"}, headers=renter_header)
    second = assert_ok(response)

    assert second["status"] == PS.PAID
    assert second["status_version"] == first["status_version"]
    assert second["paid_at"] == first["paid_at"]
    assert second["notes"] == ""

    # The landlord side is notified once.
    assert models.Notification.filter_by(session, "notification_type", NT.PAYMENT_PAID).count() == 3


def test_mark_paid_by_landlord(client, landlord_header, admin_header, deposit):
    for header in (landlord_header, admin_header):
        response = client.post(f"/payments/{deposit.id}/mark-paid", headers=header)

        assert_error(response, status.HTTP_403_FORBIDDEN, "forbidden")


def test_verify_by_other_roles(client, renter_header, agent_header, renter, deposit, session):
    payid = deposit.id
    assert_ok(client.post(f"/payments/{payid}/mark-paid", headers=renter_header))

    for header in (renter_header, agent_header):
        response = client.post(f"/payments/{payid}/verify", headers=header)

        assert_error(response, status.HTTP_403_FORBIDDEN, "forbidden")


def test_verify_pending_payment(client, manager_header, deposit):
    response = client.post(f"/payments/{deposit.id}/verify", headers=manager_header)

    assert_error(response, status.HTTP_409_CONFLICT, "invalid_transition")


def test_mark_overdue(session, renter, landlord, manager, agent, deposit):
    # Not yet due.
    assert not payments.mark_overdue(session, deposit, date(2030, 1, 1))

    assert payments.mark_overdue(session, deposit, date(2030, 1, 2))
    session.commit()
    assert deposit.status == PS.OVERDUE
    assert deposit.overdue_at is not None

    # Marking again does nothing.
    assert not payments.mark_overdue(session, deposit, date(2030, 1, 3))

    recipients = sorted(
        notification.recipient_id
        for notification in models.Notification.filter_by(session, "notification_type", NT.PAYMENT_OVERDUE)
    )
    assert recipients == sorted([renter.id, landlord.id, manager.id, agent.id])


def test_mark_overdue_payment_paid(client, session, renter_header, deposit):
    payments.mark_overdue(session, deposit, date(2030, 1, 2))
    session.commit()

    data = assert_ok(client.post(f"/payments/{deposit.id}/mark-paid", headers=renter_header))

    assert data["status"] == PS.PAID


def test_payment_status_is_monotonic(client, session, renter_header, landlord_header, deposit):
    assert_ok(client.post(f"/payments/{deposit.id}/mark-paid", headers=renter_header))
    assert_ok(client.post(f"/payments/{deposit.id}/verify", headers=landlord_header))
    session.refresh(deposit)

    assert not payments.mark_overdue(session, deposit, date(2031, 1, 1))
    assert deposit.status == PS.VERIFIED


def test_amount_is_immutable(session, deposit):
    deposit.amount = Decimal("1.00")

    with pytest.raises(ValidationError):
        session.flush()
    session.rollback()


def test_create_obligation(session, signed_lease):
    lease = signed_lease

    with pytest.raises(ValidationError):
        payments.create_obligation(session, lease, models.PaymentType.RENT, Decimal("1.00"), date(2030, 2, 1))

    with pytest.raises(AlreadyExists):
        payments.create_obligation(session, lease, models.PaymentType.RENT, lease.monthly_rent, date(2030, 1, 1))

    payment = payments.create_obligation(session, lease, models.PaymentType.RENT, lease.monthly_rent, date(2030, 2, 1))
    assert payment.status == PS.PENDING
    assert payment.amount == Decimal("1500.00")
    assert len(payment.reference_id) == 32


def test_create_rent_before_signature(session, accepted_lease):
    with pytest.raises(InvalidTransition):
        payments.create_obligation(
            session, accepted_lease, models.PaymentType.RENT, accepted_lease.monthly_rent, date(2030, 1, 1)
        )


def test_rent_schedule():
    lease = models.Lease(
        monthly_rent=Decimal(1000),
        security_deposit_amount=Decimal(0),
        rent_due_day=31,
        lease_start_date=date(2030, 1, 15),
        lease_end_date=date(2030, 4, 14),
        application_id=1,
        property_id=1,
        tenant_id=1,
        landlord_id=1,
    )

    assert payments.rent_schedule(lease) == [date(2030, 1, 31), date(2030, 2, 28), date(2030, 3, 31)]


def test_generate_due_rent(session, signed_lease):
    created = payments.generate_due_rent(session, signed_lease, date(2030, 2, 25))
    session.commit()

    assert [payment.due_date for payment in created] == [date(2030, 2, 1), date(2030, 3, 1)]
    # Nothing is created twice.
    assert payments.generate_due_rent(session, signed_lease, date(2030, 2, 25)) == []


def test_get_payment(client, renter_header, landlord_header, stranger_header, deposit):
    assert assert_ok(client.get(f"/payments/{deposit.id}", headers=renter_header))["id"] == deposit.id
    assert assert_ok(client.get(f"/payments/{deposit.id}", headers=landlord_header))["id"] == deposit.id

    response = client.get(f"/payments/{deposit.id}", headers=stranger_header)
    assert_error(response, status.HTTP_403_FORBIDDEN, "forbidden")
    assert_error(client.get("/payments/404", headers=renter_header), status.HTTP_404_NOT_FOUND, "not_found")


def test_receipt(client, renter_header, deposit):
    response = client.get(f"/payments/{deposit.id}/receipt", headers=renter_header)
    assert_error(response, status.HTTP_409_CONFLICT, "invalid_transition")

    assert_ok(client.post(f"/payments/{deposit.id}/mark-paid", headers=renter_header))

    data = assert_ok(client.get(f"/payments/{deposit.id}/receipt", headers=renter_header))
    assert data["receipt_number"] == f"RCP-{deposit.reference_id[:8]}"
    assert data["status"] == PS.PAID
    assert data["property_title"] == "Garden flat"
    assert Decimal(data["amount"]) == Decimal("3000")

    response = client.get(f"/payments/{deposit.id}/receipt.pdf", headers=renter_header)
    assert response.status_code == status.HTTP_200_OK
    assert response.headers["content-type"] == "application/pdf"
    assert response.content.startswith(b"%PDF")


def test_delete_payment(client, session, renter_header, admin_header, deposit):
    for header in (renter_header, admin_header):
        response = client.delete(f"/payments/{deposit.id}", headers=header)

        assert_error(response, status.HTTP_403_FORBIDDEN, "forbidden")

    session.expire_all()
    assert models.Payment.get(session, deposit.id).status == PS.PENDING
    refused = models.TransitionLog.filter_by(session, "reason", "deletion refused").all()
    assert [log.actor_role for log in refused] == [models.UserRole.RENTER, models.UserRole.ADMIN]
