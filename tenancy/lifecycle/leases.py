import calendar
import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session
from sqlmodel import col

from tenancy import models, parsers
from tenancy.exceptions import AlreadyExists, ConflictError, ForbiddenTransition, InvalidTransition, ValidationError
from tenancy.i18n import _
from tenancy.lifecycle import guard, notifications, payments
from tenancy.settings import app_settings

logger = logging.getLogger(__name__)

LS = models.LeaseStatus

#: Each lease status has one successor.
SUCCESSORS = {
    LS.NONE: LS.LEASE_SENT,
    LS.LEASE_SENT: LS.LEASE_ACCEPTED,
    LS.LEASE_ACCEPTED: LS.LEASE_SIGNED,
    LS.LEASE_SIGNED: LS.MOVE_IN_READY,
}

#: The application statuses in which a lease can be created.
LEASE_APPLICATION_STATUSES = (models.ApplicationStatus.APPROVED, models.ApplicationStatus.CONDITIONAL_APPROVAL)


def add_months(start: date, months: int) -> date:
    month_index = start.month - 1 + months
    year, month = start.year + month_index // 12, month_index % 12 + 1
    return date(year, month, min(start.day, calendar.monthrange(year, month)[1]))


def resolve_terms(
    application: models.Application, terms: parsers.LeaseTerms | None, today: date | None = None
) -> dict[str, Any]:
    """
    Return the lease's terms, from the request or else from the property.

    The start date defaults to the applicant's desired move-in date, or else today. The end date defaults to the day
    before the start date plus the lease term.

    :raises ValidationError: If the terms are inconsistent.
    """
    if terms is None:
        terms = parsers.LeaseTerms()
    if today is None:
        today = date.today()
    prop = application.property

    monthly_rent = prop.monthly_rent if terms.monthly_rent is None else terms.monthly_rent
    security_deposit = prop.security_deposit if terms.security_deposit is None else terms.security_deposit
    rent_due_day = terms.rent_due_day or prop.rent_due_day or app_settings.default_rent_due_day
    start = terms.lease_start_date or application.desired_move_in_date or today
    if terms.lease_end_date:
        end = terms.lease_end_date
    else:
        term_months = terms.lease_term_months or prop.lease_term_months or app_settings.default_lease_term_months
        end = add_months(start, term_months) - timedelta(days=1)

    if monthly_rent <= 0:
        raise ValidationError(_("Monthly rent must be positive"))
    if security_deposit < 0:
        raise ValidationError(_("Security deposit can't be negative"))
    if not 1 <= rent_due_day <= 31:
        raise ValidationError(_("Rent due day must be between 1 and 31"))
    if end <= start:
        raise ValidationError(_("Lease end date must be after its start date"))

    return {
        "monthly_rent": Decimal(monthly_rent),
        "security_deposit_amount": Decimal(security_deposit),
        "rent_due_day": rent_due_day,
        "lease_start_date": start,
        "lease_end_date": end,
    }


def _log(
    session: Session,
    lease: models.Lease,
    from_status: str,
    to_status: str,
    *,
    role: models.UserRole,
    actor: models.User,
    reason: str = "",
) -> None:
    models.TransitionLog.create(
        session,
        source_type=models.SourceType.LEASE,
        source_id=lease.id,
        from_status=from_status,
        to_status=to_status,
        actor_id=actor.id,
        actor_role=role,
        reason=reason,
    )


def initialize(
    session: Session,
    application: models.Application,
    actor: models.User,
    role: models.UserRole,
    terms: parsers.LeaseTerms | None = None,
    today: date | None = None,
) -> models.Lease:
    """
    Create the lease of an approved application, and send it to the tenant, unless the terms say otherwise.

    :raises InvalidTransition: If the application isn't approved.
    :raises AlreadyExists: If the application already has a lease.
    """
    if application.status not in LEASE_APPLICATION_STATUSES:
        raise InvalidTransition(_("Application status should not be %(status)s", status=application.status))
    if models.Lease.first_by(session, "application_id", application.id):
        raise AlreadyExists(_("Lease already exists"), data={"application_id": application.id})

    send = terms.send if terms else True
    lease = models.Lease.create(
        session,
        application_id=application.id,
        property_id=application.property_id,
        tenant_id=application.applicant_id,
        landlord_id=application.property.owner_id,
        lease_status=LS.LEASE_SENT if send else LS.NONE,
        sent_at=models.utcnow() if send else None,
        **resolve_terms(application, terms, today),
    )
    _log(session, lease, "", lease.lease_status, role=role, actor=actor)
    if send:
        notifications.notify_lease(session, lease, models.NotificationType.LEASE_SENT, actor_id=actor.id)

    logger.info("Lease %s created for application %s", lease.id, application.id)
    return lease


def _authorize(lease: models.Lease, user: models.User, target: models.LeaseStatus) -> models.UserRole:
    role = guard.resolve_role(user, lease.property, lease.tenant_id)
    if SUCCESSORS.get(lease.lease_status) != target:
        raise InvalidTransition(
            _(
                "Can't change a lease from %(from_status)s to %(to_status)s",
                from_status=lease.lease_status,
                to_status=target,
            )
        )
    guard.authorize(role, models.SourceType.LEASE, lease.lease_status, target)
    return role


def _apply(
    session: Session,
    lease: models.Lease,
    user: models.User,
    role: models.UserRole,
    target: models.LeaseStatus,
    **data: Any,
) -> None:
    from_status = lease.lease_status
    if not lease.compare_and_set(session, models.Lease.lease_status == from_status, lease_status=target, **data):
        raise ConflictError(_("Lease was modified by another request"))
    _log(session, lease, from_status, target, role=role, actor=user)
    logger.info("Lease %s changed from %s to %s by user %s", lease.id, from_status, target, user.id)


def send(session: Session, lease: models.Lease, user: models.User) -> models.Lease:
    """Send a lease that was drafted offline to the tenant."""
    role = _authorize(lease, user, LS.LEASE_SENT)
    _apply(session, lease, user, role, LS.LEASE_SENT, sent_at=models.utcnow())
    notifications.notify_lease(session, lease, models.NotificationType.LEASE_SENT, actor_id=user.id)
    return lease


def accept(session: Session, lease: models.Lease, user: models.User, today: date | None = None) -> models.Lease:
    """
    Accept the lease terms, as the tenant. The security deposit becomes due.
    """
    if today is None:
        today = date.today()

    role = _authorize(lease, user, LS.LEASE_ACCEPTED)
    _apply(session, lease, user, role, LS.LEASE_ACCEPTED, accepted_at=models.utcnow())
    notifications.notify_lease(session, lease, models.NotificationType.LEASE_ACCEPTED, actor_id=user.id)
    payments.create_deposit(session, lease, today)
    return lease


def sign(session: Session, lease: models.Lease, user: models.User, signer_role: models.SignerRole) -> models.Lease:
    """
    Sign the lease, as the tenant or for the landlord. The parties can sign in any order.

    The lease becomes LEASE_SIGNED with the second signature, and the first rent becomes due. Signing again as the
    same party does nothing.

    :raises ForbiddenTransition: If the user can't sign as ``signer_role``.
    :raises InvalidTransition: If the lease isn't LEASE_ACCEPTED.
    :raises ConflictError: If the lease changed concurrently.
    """
    role = guard.resolve_role(user, lease.property, lease.tenant_id)
    match signer_role:
        case models.SignerRole.TENANT:
            if role != models.UserRole.RENTER:
                raise ForbiddenTransition(_("Only the tenant can sign as the tenant"))
            flag = "tenant_signed_at"
        case models.SignerRole.LANDLORD:
            if role not in guard.LANDLORD_SIGNERS:
                raise ForbiddenTransition(_("Only the landlord side can sign as the landlord"))
            flag = "landlord_signed_at"
        case _:
            raise NotImplementedError

    if getattr(lease, flag) is not None:
        return lease
    if lease.lease_status != LS.LEASE_ACCEPTED:
        raise InvalidTransition(_("Lease status should not be %(status)s", status=lease.lease_status))
    guard.authorize(role, models.SourceType.LEASE, LS.LEASE_ACCEPTED, LS.LEASE_SIGNED)

    data: dict[str, Any] = {flag: models.utcnow()}
    if signer_role == models.SignerRole.LANDLORD:
        data["landlord_signer_id"] = user.id
    if not lease.compare_and_set(
        session,
        models.Lease.lease_status == LS.LEASE_ACCEPTED,
        col(getattr(models.Lease, flag)).is_(None),
        **data,
    ):
        if getattr(lease, flag) is not None:
            return lease
        raise ConflictError(_("Lease was modified by another request"))
    _log(session, lease, LS.LEASE_ACCEPTED, LS.LEASE_ACCEPTED, role=role, actor=user, reason=f"{signer_role} signed")

    # At most one request sees both signatures and wins this update.
    if lease.compare_and_set(
        session,
        models.Lease.lease_status == LS.LEASE_ACCEPTED,
        col(models.Lease.tenant_signed_at).isnot(None),
        col(models.Lease.landlord_signed_at).isnot(None),
        lease_status=LS.LEASE_SIGNED,
        signed_at=models.utcnow(),
    ):
        _log(session, lease, LS.LEASE_ACCEPTED, LS.LEASE_SIGNED, role=role, actor=user)
        notifications.notify_lease(session, lease, models.NotificationType.LEASE_SIGNED, actor_id=user.id)
        payments.create_first_rent(session, lease)
        logger.info("Lease %s signed by both parties", lease.id)
    else:
        notifications.notify_lease(session, lease, models.NotificationType.LEASE_SIGNATURE_ADDED, actor_id=user.id)

    return lease


def schedule_move_in(session: Session, lease: models.Lease, user: models.User, move_in_date: date) -> models.Lease:
    """
    Schedule the move-in, for the landlord side.

    :raises ValidationError: If the move-in date is before the lease's start date.
    """
    role = _authorize(lease, user, LS.MOVE_IN_READY)
    if move_in_date < lease.lease_start_date:
        raise ValidationError(_("The move-in date can't be before the lease's start date"))

    _apply(
        session,
        lease,
        user,
        role,
        LS.MOVE_IN_READY,
        move_in_date=move_in_date,
        move_in_ready_at=models.utcnow(),
    )
    notifications.notify_lease(session, lease, models.NotificationType.LEASE_MOVE_IN_READY, actor_id=user.id)
    return lease
