import hashlib
import logging
from enum import StrEnum

from pydantic import BaseModel
from sqlalchemy import update
from sqlalchemy.orm import Session
from sqlmodel import col

from tenancy import models
from tenancy.exceptions import NotFoundError
from tenancy.i18n import _, i

logger = logging.getLogger(__name__)

NT = models.NotificationType


class Audience(StrEnum):
    #: The applicant of an application, or the tenant of a lease.
    TENANT = "tenant"
    #: The owner, manager and agent of the property.
    OWNER_SIDE = "owner_side"


TENANT = frozenset({Audience.TENANT})
OWNER_SIDE = frozenset({Audience.OWNER_SIDE})
BOTH = TENANT | OWNER_SIDE

#: The audiences of each notification type. The actor is excluded from the recipients.
ROUTES: dict[models.NotificationType, frozenset[Audience]] = {
    NT.APPLICATION_SUBMITTED: BOTH,
    NT.APPLICATION_UNDER_REVIEW: OWNER_SIDE,
    NT.APPLICATION_INFO_REQUESTED: BOTH,
    NT.APPLICATION_BACKGROUND_CHECK: OWNER_SIDE,
    NT.APPLICATION_APPROVED: BOTH,
    NT.APPLICATION_CONDITIONAL_APPROVAL: BOTH,
    NT.APPLICATION_REJECTED: BOTH,
    NT.LEASE_SENT: TENANT,
    NT.LEASE_ACCEPTED: OWNER_SIDE,
    NT.LEASE_SIGNATURE_ADDED: BOTH,
    NT.LEASE_SIGNED: BOTH,
    NT.LEASE_MOVE_IN_READY: BOTH,
    NT.PAYMENT_DUE: TENANT,
    NT.PAYMENT_DUE_SOON: TENANT,
    NT.PAYMENT_PAID: OWNER_SIDE,
    NT.PAYMENT_VERIFIED: TENANT,
    NT.PAYMENT_OVERDUE: BOTH,
}

#: The notification types of which the actor also receives a copy, as a confirmation.
CONFIRMATION_COPIES = frozenset({NT.APPLICATION_SUBMITTED})

SUBJECTS: dict[models.NotificationType, str] = {
    NT.APPLICATION_SUBMITTED: i("Application submitted"),
    NT.APPLICATION_UNDER_REVIEW: i("Application under review"),
    NT.APPLICATION_INFO_REQUESTED: i("More information is needed for your application"),
    NT.APPLICATION_BACKGROUND_CHECK: i("Background check started"),
    NT.APPLICATION_APPROVED: i("Application approved"),
    NT.APPLICATION_CONDITIONAL_APPROVAL: i("Application approved with conditions"),
    NT.APPLICATION_REJECTED: i("Application rejected"),
    NT.LEASE_SENT: i("Your lease is ready to review"),
    NT.LEASE_ACCEPTED: i("Lease accepted"),
    NT.LEASE_SIGNATURE_ADDED: i("Lease signed by the other party"),
    NT.LEASE_SIGNED: i("Lease fully signed"),
    NT.LEASE_MOVE_IN_READY: i("Move-in scheduled"),
    NT.PAYMENT_DUE: i("New payment due"),
    NT.PAYMENT_DUE_SOON: i("Payment due soon"),
    NT.PAYMENT_PAID: i("Payment received"),
    NT.PAYMENT_VERIFIED: i("Payment verified"),
    NT.PAYMENT_OVERDUE: i("Payment overdue"),
}


class TransitionEvent(BaseModel):
    source_type: models.SourceType
    source_id: int
    transition_tag: models.NotificationType
    recipient_id: int
    #: The entity's ``status_version`` after the transition.
    version: int = 0


def idempotency_key(source_type: str, source_id: int, transition_tag: str, version: int) -> str:
    """
    Return a key that identifies a transition.

    The key includes the entity's status version, so that a loop (INFO_REQUESTED → UNDER_REVIEW → INFO_REQUESTED)
    notifies again, while a replayed event doesn't.
    """
    return hashlib.sha256(f"{source_type}:{source_id}:{transition_tag}:{version}".encode()).hexdigest()


def dispatch(session: Session, event: TransitionEvent) -> models.Notification:
    """
    Create the notification of the event, unless the recipient already has it.

    :return: The created or existing notification.
    """
    key = idempotency_key(event.source_type, event.source_id, event.transition_tag, event.version)

    notification = (
        session.query(models.Notification)
        .filter(models.Notification.idempotency_key == key, models.Notification.recipient_id == event.recipient_id)
        .first()
    )
    if notification:
        logger.debug("Skipped duplicate %s to user %s", event.transition_tag, event.recipient_id)
        return notification

    return models.Notification.create(
        session,
        recipient_id=event.recipient_id,
        source_type=event.source_type,
        source_id=event.source_id,
        notification_type=event.transition_tag,
        idempotency_key=key,
        subject=_(SUBJECTS[event.transition_tag]),
    )


def recipients(
    transition_tag: models.NotificationType, *, tenant_id: int, prop: models.Property, actor_id: int | None
) -> list[int]:
    audiences = ROUTES[transition_tag]

    candidates: list[int] = []
    if Audience.TENANT in audiences:
        candidates.append(tenant_id)
    if Audience.OWNER_SIDE in audiences:
        candidates.extend(prop.owner_side_ids())

    result: list[int] = []
    for user_id in candidates:
        if user_id == actor_id and transition_tag not in CONFIRMATION_COPIES:
            continue
        if user_id not in result:
            result.append(user_id)
    return result


def _notify(
    session: Session,
    source_type: models.SourceType,
    source_id: int,
    transition_tag: models.NotificationType,
    version: int,
    *,
    tenant_id: int,
    prop: models.Property,
    actor_id: int | None,
) -> list[models.Notification]:
    return [
        dispatch(
            session,
            TransitionEvent(
                source_type=source_type,
                source_id=source_id,
                transition_tag=transition_tag,
                recipient_id=recipient_id,
                version=version,
            ),
        )
        for recipient_id in recipients(transition_tag, tenant_id=tenant_id, prop=prop, actor_id=actor_id)
    ]


def notify_application(
    session: Session,
    application: models.Application,
    transition_tag: models.NotificationType,
    actor_id: int | None,
) -> list[models.Notification]:
    assert application.id is not None
    return _notify(
        session,
        models.SourceType.APPLICATION,
        application.id,
        transition_tag,
        application.status_version,
        tenant_id=application.applicant_id,
        prop=application.property,
        actor_id=actor_id,
    )


def notify_lease(
    session: Session, lease: models.Lease, transition_tag: models.NotificationType, actor_id: int | None
) -> list[models.Notification]:
    assert lease.id is not None
    return _notify(
        session,
        models.SourceType.LEASE,
        lease.id,
        transition_tag,
        lease.status_version,
        tenant_id=lease.tenant_id,
        prop=lease.property,
        actor_id=actor_id,
    )


def notify_payment(
    session: Session, payment: models.Payment, transition_tag: models.NotificationType, actor_id: int | None
) -> list[models.Notification]:
    assert payment.id is not None
    return _notify(
        session,
        models.SourceType.PAYMENT,
        payment.id,
        transition_tag,
        payment.status_version,
        tenant_id=payment.lease.tenant_id,
        prop=payment.lease.property,
        actor_id=actor_id,
    )


def mark_read(session: Session, notification_id: int, user: models.User) -> models.Notification:
    """
    Mark the user's notification as read. Do nothing if it is already read.

    :raises NotFoundError: If the notification doesn't exist or isn't the user's.
    """
    notification = (
        models.Notification.for_recipient(session, user.id)  # type: ignore[arg-type]
        .filter(models.Notification.id == notification_id)
        .first()
    )
    if not notification:
        raise NotFoundError(_("Notification not found"))

    if notification.read_at is None:
        notification.update(session, read_at=models.utcnow())
    return notification


def mark_all_read(session: Session, user: models.User) -> int:
    """
    Mark all the user's unread notifications as read.

    :return: The number of notifications marked as read.
    """
    result = session.execute(
        update(models.Notification)
        .where(col(models.Notification.recipient_id) == user.id, col(models.Notification.read_at).is_(None))
        .values(read_at=models.utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount  # type: ignore[attr-defined]
