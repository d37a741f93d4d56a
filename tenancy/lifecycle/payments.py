"""
The payment ledger of a lease.

Payment obligations are created only by lease transitions and scheduled commands, never by a request. Their amount is
the lease's configured amount at the time of creation.
"""

import calendar
import logging
from collections.abc import Iterable
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from tenancy import models, serializers, util
from tenancy.exceptions import AlreadyExists, ConflictError, ForbiddenTransition, InvalidTransition, ValidationError
from tenancy.i18n import _
from tenancy.lifecycle import guard, notifications
from tenancy.settings import app_settings

logger = logging.getLogger(__name__)

PS = models.PaymentStatus

#: The lease statuses in which each type of payment obligation can be created.
OBLIGATION_LEASE_STATUSES = {
    models.PaymentType.SECURITY_DEPOSIT: (
        models.LeaseStatus.LEASE_ACCEPTED,
        models.LeaseStatus.LEASE_SIGNED,
        models.LeaseStatus.MOVE_IN_READY,
    ),
    models.PaymentType.RENT: (
        models.LeaseStatus.LEASE_SIGNED,
        models.LeaseStatus.MOVE_IN_READY,
    ),
}


def configured_amount(lease: models.Lease, payment_type: models.PaymentType) -> Decimal:
    if payment_type == models.PaymentType.RENT:
        return lease.monthly_rent
    return lease.security_deposit_amount


def due_date_in_month(year: int, month: int, day: int) -> date:
    """Return the day of the month, or the last day of the month if the month is shorter."""
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def rent_schedule(lease: models.Lease) -> list[date]:
    """
    Return the due dates of the lease's rent periods: the lease's rent due day of each month, from the lease's start
    date to its end date.
    """
    year, month = lease.lease_start_date.year, lease.lease_start_date.month
    due_dates = []
    while True:
        due_date = due_date_in_month(year, month, lease.rent_due_day)
        if due_date > lease.lease_end_date:
            return due_dates
        if due_date >= lease.lease_start_date:
            due_dates.append(due_date)
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)


def _log(
    session: Session,
    payment: models.Payment,
    from_status: str,
    to_status: str,
    *,
    role: models.UserRole,
    actor: models.User | None = None,
    reason: str = "",
) -> None:
    models.TransitionLog.create(
        session,
        source_type=models.SourceType.PAYMENT,
        source_id=payment.id,
        from_status=from_status,
        to_status=to_status,
        actor_id=actor.id if actor else None,
        actor_role=role,
        reason=reason,
        data={"lease_id": payment.lease_id, "type": payment.type, "due_date": payment.due_date.isoformat()},
    )


def create_obligation(
    session: Session,
    lease: models.Lease,
    payment_type: models.PaymentType,
    amount: Decimal,
    due_date: date,
) -> models.Payment:
    """
    Create a PENDING payment obligation and notify the tenant.

    :raises ValidationError: If the amount isn't the lease's configured amount.
    :raises InvalidTransition: If the lease's status doesn't allow this type of payment yet.
    :raises AlreadyExists: If the lease already has this type of payment on this due date.
    """
    if amount != configured_amount(lease, payment_type):
        raise ValidationError(
            _("The amount of a %(payment_type)s payment must be the lease's amount", payment_type=payment_type),
            data={"amount": str(amount), "lease_id": lease.id},
        )
    if lease.lease_status not in OBLIGATION_LEASE_STATUSES[payment_type]:
        raise InvalidTransition(
            _(
                "A %(payment_type)s payment can't be due while the lease is %(lease_status)s",
                payment_type=payment_type,
                lease_status=lease.lease_status,
            )
        )
    if (
        session.query(models.Payment)
        .filter(
            models.Payment.lease_id == lease.id,
            models.Payment.type == payment_type,
            models.Payment.due_date == due_date,
        )
        .first()
    ):
        raise AlreadyExists(_("Payment already exists"), data={"lease_id": lease.id, "due_date": str(due_date)})

    payment = models.Payment.create(
        session,
        lease_id=lease.id,
        type=payment_type,
        amount=amount,
        due_date=due_date,
        reference_id=util.generate_reference_id(),
    )
    _log(session, payment, "", PS.PENDING, role=models.UserRole.SYSTEM)
    notifications.notify_payment(session, payment, models.NotificationType.PAYMENT_DUE, actor_id=None)

    logger.info("Created %s payment %s of lease %s due %s", payment_type, payment.id, lease.id, due_date)
    return payment


def create_deposit(session: Session, lease: models.Lease, today: date) -> models.Payment | None:
    """
    Create the security deposit, due on the lease's start date (or today, if it is past), unless the lease has none.
    """
    if lease.security_deposit_amount <= 0:
        return None
    return create_obligation(
        session,
        lease,
        models.PaymentType.SECURITY_DEPOSIT,
        lease.security_deposit_amount,
        max(lease.lease_start_date, today),
    )


def create_first_rent(session: Session, lease: models.Lease) -> models.Payment | None:
    """Create the rent of the lease's first period, unless the lease is too short to have one."""
    if due_dates := rent_schedule(lease):
        return create_obligation(session, lease, models.PaymentType.RENT, lease.monthly_rent, due_dates[0])
    return None


def generate_due_rent(session: Session, lease: models.Lease, today: date) -> list[models.Payment]:
    """
    Create the rent of every period that is due within
    :attr:`~tenancy.settings.Settings.rent_generation_days_ahead` days and that doesn't exist yet.
    """
    horizon = today + timedelta(days=app_settings.rent_generation_days_ahead)
    existing = {
        payment.due_date
        for payment in session.query(models.Payment).filter(
            models.Payment.lease_id == lease.id, models.Payment.type == models.PaymentType.RENT
        )
    }

    created = []
    for due_date in rent_schedule(lease):
        if due_date > horizon:
            break
        if due_date not in existing:
            created.append(create_obligation(session, lease, models.PaymentType.RENT, lease.monthly_rent, due_date))
    return created


def _resolve_role(payment: models.Payment, user: models.User) -> models.UserRole:
    return guard.resolve_role(user, payment.lease.property, payment.lease.tenant_id)


def mark_paid(session: Session, payment: models.Payment, user: models.User, notes: str = "") -> models.Payment:
    """
    Record the tenant's claim that the payment is paid, and notify the landlord side.

    Marking a PAID payment as paid again does nothing.

    :raises ForbiddenTransition: If the user isn't the tenant.
    :raises InvalidTransition: If the payment is VERIFIED.
    :raises ConflictError: If the payment changed concurrently.
    """
    role = _resolve_role(payment, user)
    if not guard.can_reach(role, models.SourceType.PAYMENT, PS.PAID):
        raise ForbiddenTransition(_("Only the tenant can mark a payment as paid"))

    if payment.status == PS.PAID:
        return payment
    if payment.status not in (PS.PENDING, PS.OVERDUE):
        raise InvalidTransition(_("Payment status should not be %(status)s", status=payment.status))

    from_status = payment.status
    guard.authorize(role, models.SourceType.PAYMENT, from_status, PS.PAID)

    if not payment.compare_and_set(
        session,
        models.Payment.status == from_status,
        status=PS.PAID,
        paid_at=models.utcnow(),
        notes=notes or payment.notes,
    ):
        if payment.status == PS.PAID:
            return payment
        raise ConflictError(_("Payment was modified by another request"))

    _log(session, payment, from_status, PS.PAID, role=role, actor=user)
    notifications.notify_payment(session, payment, models.NotificationType.PAYMENT_PAID, actor_id=user.id)

    logger.info("Payment %s marked as paid by user %s", payment.id, user.id)
    return payment


def verify(session: Session, payment: models.Payment, user: models.User) -> models.Payment:
    """
    Confirm a PAID payment, and notify the tenant.

    Verifying a VERIFIED payment again does nothing.

    :raises ForbiddenTransition: If the user isn't on the landlord side.
    :raises InvalidTransition: If the payment isn't PAID.
    :raises ConflictError: If the payment changed concurrently.
    """
    role = _resolve_role(payment, user)
    if not guard.can_reach(role, models.SourceType.PAYMENT, PS.VERIFIED):
        raise ForbiddenTransition(_("Only the landlord, property manager or an admin can verify a payment"))

    if payment.status == PS.VERIFIED:
        return payment
    if payment.status != PS.PAID:
        raise InvalidTransition(_("Payment status should not be %(status)s", status=payment.status))

    guard.authorize(role, models.SourceType.PAYMENT, PS.PAID, PS.VERIFIED)

    if not payment.compare_and_set(
        session,
        models.Payment.status == PS.PAID,
        status=PS.VERIFIED,
        verified_at=models.utcnow(),
        verified_by_id=user.id,
    ):
        if payment.status == PS.VERIFIED:
            return payment
        raise ConflictError(_("Payment was modified by another request"))

    _log(session, payment, PS.PAID, PS.VERIFIED, role=role, actor=user)
    notifications.notify_payment(session, payment, models.NotificationType.PAYMENT_VERIFIED, actor_id=user.id)

    logger.info("Payment %s verified by user %s", payment.id, user.id)
    return payment


def mark_overdue(session: Session, payment: models.Payment, today: date) -> bool:
    """
    Mark a PENDING payment as OVERDUE if its due date, plus :attr:`~tenancy.settings.Settings.overdue_grace_days`,
    is before today, and notify both parties.

    :return: Whether the payment was marked as overdue. If not, it wasn't due or another request changed it first.
    """
    if payment.status != PS.PENDING:
        return False
    if payment.due_date >= today - timedelta(days=app_settings.overdue_grace_days):
        return False

    guard.authorize(models.UserRole.SYSTEM, models.SourceType.PAYMENT, PS.PENDING, PS.OVERDUE)

    if not payment.compare_and_set(
        session,
        models.Payment.status == PS.PENDING,
        status=PS.OVERDUE,
        overdue_at=models.utcnow(),
    ):
        return False

    _log(session, payment, PS.PENDING, PS.OVERDUE, role=models.UserRole.SYSTEM)
    notifications.notify_payment(session, payment, models.NotificationType.PAYMENT_OVERDUE, actor_id=None)
    return True


def remind(session: Session, payment: models.Payment) -> list[models.Notification]:
    """Notify the tenant that a PENDING payment is due soon. Reminding again does nothing."""
    return notifications.notify_payment(session, payment, models.NotificationType.PAYMENT_DUE_SOON, actor_id=None)


def log_refused_deletion(session: Session, payment: models.Payment, user: models.User) -> None:
    """Record an attempt to delete a payment. Payments are never deleted."""
    role = guard.party_role(user, payment.lease.property, payment.lease.tenant_id) or models.UserRole.GUEST
    _log(session, payment, payment.status, "", role=role, actor=user, reason="deletion refused")
    logger.warning("User %s attempted to delete payment %s", user.id, payment.id)


def summarize(payments: Iterable[models.Payment]) -> serializers.PaymentSummary:
    summary = serializers.PaymentSummary()
    for payment in payments:
        summary.total_payments += 1
        match payment.status:
            case PS.PENDING:
                summary.pending_count += 1
                summary.outstanding_amount += payment.amount
            case PS.OVERDUE:
                summary.overdue_count += 1
                summary.outstanding_amount += payment.amount
            case PS.PAID:
                summary.paid_count += 1
                summary.paid_amount += payment.amount
            case PS.VERIFIED:
                summary.verified_count += 1
                summary.paid_amount += payment.amount
                summary.verified_amount += payment.amount
    return summary


def receipt(payment: models.Payment) -> serializers.Receipt:
    """
    :raises InvalidTransition: If the payment isn't PAID or VERIFIED.
    """
    if payment.status not in (PS.PAID, PS.VERIFIED):
        raise InvalidTransition(_("A receipt is available only for paid payments"))

    lease = payment.lease
    return serializers.Receipt(
        receipt_number=payment.receipt_number,
        reference_id=payment.reference_id,
        payment_id=payment.id,  # type: ignore[arg-type]
        lease_id=lease.id,  # type: ignore[arg-type]
        type=payment.type,
        status=payment.status,
        amount=payment.amount,
        due_date=payment.due_date,
        paid_at=payment.paid_at,
        verified_at=payment.verified_at,
        property_title=lease.property.title,
        property_address=lease.property.address,
    )
