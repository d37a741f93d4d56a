from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from enum import StrEnum
from typing import Any, Optional, Self

from sqlalchemy import JSON, Boolean, Column, DateTime, UniqueConstraint, event, inspect, or_, update
from sqlalchemy.engine import Connection
from sqlalchemy.orm import Mapper, Query, Session
from sqlalchemy.sql import ColumnElement, func
from sqlmodel import Field, Relationship, SQLModel, col

from tenancy.exceptions import ValidationError
from tenancy.i18n import i
from tenancy.settings import app_settings


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# https://github.com/tiangolo/sqlmodel/issues/254
#
# The session.flush() calls are not strictly necessary. However, they can avoid errors like:
#
# >>> instance.related_id = related.id
# (related_id is set to None)
class ActiveRecordMixin:
    @classmethod
    def filter_by(cls, session: Session, field: str, value: Any) -> "Query[Self]":
        """
        Filter a model based on a field's value.

        :param session: The database session.
        :param field: The field.
        :param value: The field's value.
        :return: The query.
        """
        return session.query(cls).filter(getattr(cls, field) == value)

    @classmethod
    def first_by(cls, session: Session, field: str, value: Any) -> Self | None:
        """
        Get an existing instance based on a field's value.

        :param session: The database session.
        :param field: The field.
        :param value: The field's value.
        :return: The existing instance if found, otherwise None.
        """
        return cls.filter_by(session, field, value).first()

    @classmethod
    def get(cls, session: Session, id: int) -> Self:
        """
        Get an existing instance by its ID. Raise an exception if not found.

        :param session: The database session.
        :param id: The ID.
        :return: The existing instance if found.
        """
        return cls.filter_by(session, "id", id).one()

    @classmethod
    def create(cls, session: Session, **data: Any) -> Self:
        """
        Insert a new instance into the database.

        :param session: The database session.
        :param data: The initial instance data.
        :return: The inserted instance.
        """
        obj = cls(**data)
        session.add(obj)
        session.flush()
        return obj

    def update(self, session: Session, **data: Any) -> Self:
        """
        Update an existing instance in the database.

        Don't use this method to change a status. Use :meth:`~tenancy.models.ActiveRecordMixin.compare_and_set`.

        :param session: The database session.
        :param data: The updated instance data.
        :return: The updated instance.
        """
        for key, value in data.items():
            setattr(self, key, value)

        session.add(self)  # not strictly necessary
        session.flush()
        return self

    @classmethod
    def create_or_update(cls, session: Session, filters: list[bool | ColumnElement[Boolean]], **data: Any) -> Self:
        obj: Self | None = session.query(cls).filter(*filters).first()
        if obj:
            return obj.update(session, **data)
        return cls.create(session, **data)

    def compare_and_set(self, session: Session, *criteria: ColumnElement[bool], **data: Any) -> bool:
        """
        Update the instance's row only if it still matches the criteria, in a single ``UPDATE ... WHERE`` statement.

        If the model has a ``status_version`` field, increment it. Refresh the instance either way, so that the caller
        sees the current row.

        :param session: The database session.
        :param criteria: The conditions that the row must meet, like ``Payment.status == PaymentStatus.PENDING``.
        :param data: The updated instance data.
        :return: Whether the row was updated. If not, another transaction changed it first.
        """
        cls = type(self)
        if hasattr(self, "status_version"):
            data["status_version"] = col(cls.status_version) + 1  # type: ignore[attr-defined]

        result = session.execute(
            update(cls)
            .where(col(cls.id) == self.id, *criteria)  # type: ignore[attr-defined]
            .values(**data)
            .execution_options(synchronize_session=False)
        )
        session.refresh(self)
        return result.rowcount == 1  # type: ignore[attr-defined]


class UserRole(StrEnum):
    """
    A role that an actor plays. A user's account has one role, but the role with which a user acts on an entity is
    resolved from the user's relationship to it (see :func:`tenancy.lifecycle.guard.resolve_role`).
    """

    #: Applies to properties, and becomes the tenant of a lease.
    RENTER = i("renter")
    #: Owns properties.
    LANDLORD = i("landlord")
    #: Manages properties on behalf of their owner.
    PROPERTY_MANAGER = i("property_manager")
    #: Is assigned to properties to review applications.
    AGENT = i("agent")
    #: Platform administrator.
    ADMIN = i("admin")
    #: An actor without an authenticated identity. Never assigned to a user.
    GUEST = i("guest")
    #: A scheduled command. Never assigned to a user.
    SYSTEM = i("system")


class SourceType(StrEnum):
    APPLICATION = "application"
    LEASE = "lease"
    PAYMENT = "payment"


class ApplicationStatus(StrEnum):
    """
    An application status.

    The different workflows are:

    -  (DRAFT →) SUBMITTED → UNDER_REVIEW → APPROVED | CONDITIONAL_APPROVAL | REJECTED
    -  SUBMITTED → UNDER_REVIEW → BACKGROUND_CHECK → APPROVED | CONDITIONAL_APPROVAL | REJECTED

    And then, from UNDER_REVIEW:

    -  → INFO_REQUESTED → UNDER_REVIEW (→ …)

    An admin can reopen a REJECTED application (→ UNDER_REVIEW).
    """

    #: Applicant saves an incomplete application.
    #:
    #: (``/applications/drafts``)
    DRAFT = i("draft")
    #: Applicant submits a complete application.
    #:
    #: (``/applications``)
    SUBMITTED = i("submitted")
    #: Owner side starts reviewing the application.
    UNDER_REVIEW = i("under_review")
    #: Owner side requests more information from the applicant.
    INFO_REQUESTED = i("info_requested")
    #: Owner side runs a background check.
    BACKGROUND_CHECK = i("background_check")
    #: Owner side approves the application. The lease is created.
    APPROVED = i("approved")
    #: Owner side approves the application with conditions. The lease is created.
    CONDITIONAL_APPROVAL = i("conditional_approval")
    #: Owner side rejects the application.
    REJECTED = i("rejected")


class LeaseStatus(StrEnum):
    """
    A lease status.

    The workflow is: NONE → LEASE_SENT → LEASE_ACCEPTED → LEASE_SIGNED → MOVE_IN_READY
    """

    #: The lease is drafted offline, and not yet sent to the tenant.
    NONE = i("none")
    #: The lease is sent to the tenant.
    #:
    #: (``/leases/{id}/send``)
    LEASE_SENT = i("lease_sent")
    #: Tenant accepts the lease terms. The security deposit is due.
    #:
    #: (``/leases/{id}/accept``)
    LEASE_ACCEPTED = i("lease_accepted")
    #: Both the tenant and the landlord side signed the lease. Rent is due.
    #:
    #: (``/leases/{id}/sign``)
    LEASE_SIGNED = i("lease_signed")
    #: The landlord side scheduled the move-in date.
    #:
    #: (``/leases/{id}/move-in``)
    MOVE_IN_READY = i("move_in_ready")


class SignerRole(StrEnum):
    TENANT = "tenant"
    LANDLORD = "landlord"


class PaymentType(StrEnum):
    RENT = i("rent")
    SECURITY_DEPOSIT = i("security_deposit")


class PaymentStatus(StrEnum):
    """
    A payment status.

    The workflows are:

    -  PENDING → PAID → VERIFIED
    -  PENDING → OVERDUE → PAID → VERIFIED
    """

    #: The payment obligation is created.
    PENDING = i("pending")
    #: Tenant claims to have paid.
    #:
    #: (``/payments/{id}/mark-paid``)
    PAID = i("paid")
    #: The due date elapsed before the tenant paid.
    #:
    #: (:typer:`python-m-tenancy-update-payments-to-overdue`)
    OVERDUE = i("overdue")
    #: Landlord side confirms the payment.
    #:
    #: (``/payments/{id}/verify``)
    VERIFIED = i("verified")


class NotificationType(StrEnum):
    APPLICATION_SUBMITTED = "application_submitted"
    APPLICATION_UNDER_REVIEW = "application_under_review"
    APPLICATION_INFO_REQUESTED = "application_info_requested"
    APPLICATION_BACKGROUND_CHECK = "application_background_check"
    APPLICATION_APPROVED = "application_approved"
    APPLICATION_CONDITIONAL_APPROVAL = "application_conditional_approval"
    APPLICATION_REJECTED = "application_rejected"
    LEASE_SENT = "lease_sent"
    LEASE_ACCEPTED = "lease_accepted"
    LEASE_SIGNATURE_ADDED = "lease_signature_added"
    LEASE_SIGNED = "lease_signed"
    LEASE_MOVE_IN_READY = "lease_move_in_ready"
    PAYMENT_DUE = "payment_due"
    PAYMENT_DUE_SOON = "payment_due_soon"
    PAYMENT_PAID = "payment_paid"
    PAYMENT_VERIFIED = "payment_verified"
    PAYMENT_OVERDUE = "payment_overdue"


class UserBase(SQLModel):
    id: int | None = Field(default=None, primary_key=True)
    #: The role of the user's account.
    role: UserRole = Field(default=UserRole.RENTER)
    #: The email address at which the user is contacted.
    email: str = Field(unique=True)
    #: The name by which the user is addressed in emails.
    name: str = Field(default="")
    #: The ``username`` claim of the user's bearer tokens.
    external_id: str = Field(default="", index=True)
    #: The :class:`~tenancy.models.NotificationType` the user doesn't want to be emailed about, set to ``false``.
    #: Notifications are emailed unless opted out.
    notification_preferences: dict[str, bool] = Field(default_factory=dict, sa_type=JSON)

    # Timestamps
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=func.now()),
    )

    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def wants_email(self, notification_type: str) -> bool:
        return self.notification_preferences.get(notification_type, True)


class User(UserBase, ActiveRecordMixin, table=True):
    __tablename__ = "tenancy_user"


class PropertyBase(SQLModel):
    title: str = Field(default="")
    address: str = Field(default="")
    #: The monthly rent of new leases.
    monthly_rent: Decimal = Field(max_digits=16, decimal_places=2)
    #: The security deposit of new leases.
    security_deposit: Decimal = Field(default=Decimal(0), max_digits=16, decimal_places=2)
    #: The duration of new leases, if not :attr:`~tenancy.settings.Settings.default_lease_term_months`.
    lease_term_months: int | None = Field(default=None)
    #: The day of the month on which rent is due, if not :attr:`~tenancy.settings.Settings.default_rent_due_day`.
    rent_due_day: int | None = Field(default=None)

    # Relationships
    owner_id: int = Field(foreign_key="tenancy_user.id", index=True)
    manager_id: int | None = Field(default=None, foreign_key="tenancy_user.id")
    agent_id: int | None = Field(default=None, foreign_key="tenancy_user.id")


class Property(PropertyBase, ActiveRecordMixin, table=True):
    id: int | None = Field(default=None, primary_key=True)

    # Relationships
    applications: list["Application"] = Relationship(back_populates="property")

    # Timestamps
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=func.now()),
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, onupdate=func.now()),
    )

    def owner_side_ids(self) -> list[int]:
        """Return the IDs of the owner, manager and agent, in that order, without duplicates."""
        ids: list[int] = []
        for user_id in (self.owner_id, self.manager_id, self.agent_id):
            if user_id is not None and user_id not in ids:
                ids.append(user_id)
        return ids


class ApplicationBase(SQLModel):
    status: ApplicationStatus = Field(default=ApplicationStatus.SUBMITTED)
    #: The last step of the application form that the applicant completed. This isn't a lifecycle state.
    step: int = Field(default=0)
    #: Incremented by every status transition.
    status_version: int = Field(default=0)
    #: The reason given for the last status transition, like the conditions of a conditional approval.
    status_reason: str = Field(default="")

    # Applicant-provided data
    personal_info: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    employment: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    rental_references: list[dict[str, Any]] = Field(default_factory=list, sa_type=JSON)
    disclosures: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    desired_move_in_date: date | None = Field(default=None)

    #: Set by the applicant's submission.
    submitted_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    #: Set by the owner side starting the review.
    reviewed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    #: Set by the owner side requesting more information.
    info_requested_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    #: Set by the owner side approving or rejecting the application.
    decided_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))

    # Relationships
    property_id: int = Field(foreign_key="property.id", index=True)
    applicant_id: int = Field(foreign_key="tenancy_user.id", index=True)
    reviewed_by_id: int | None = Field(default=None, foreign_key="tenancy_user.id")

    # Timestamps
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=func.now()),
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, onupdate=func.now()),
    )


class Application(ApplicationBase, ActiveRecordMixin, table=True):
    id: int | None = Field(default=None, primary_key=True)

    # Relationships
    property: Property = Relationship(back_populates="applications")
    lease: Optional["Lease"] = Relationship(back_populates="application", sa_relationship_kwargs={"uselist": False})

    @classmethod
    def visible_to(cls, session: Session, user: UserBase) -> "Query[Self]":
        """Return a query for the applications of which the user is the applicant or on the owner side."""
        query = session.query(cls)
        if user.is_admin():
            return query
        return query.join(Property, col(cls.property_id) == Property.id).filter(
            or_(
                cls.applicant_id == user.id,
                Property.owner_id == user.id,
                Property.manager_id == user.id,
                Property.agent_id == user.id,
            )
        )

    @classmethod
    def open_for(cls, session: Session, *, property_id: int, applicant_id: int) -> "Query[Self]":
        """Return a query for the applicant's applications to the property that are neither drafts nor closed."""
        return session.query(cls).filter(
            cls.property_id == property_id,
            cls.applicant_id == applicant_id,
            col(cls.status).notin_(
                [
                    ApplicationStatus.DRAFT,
                    ApplicationStatus.APPROVED,
                    ApplicationStatus.CONDITIONAL_APPROVAL,
                    ApplicationStatus.REJECTED,
                ]
            ),
        )


class LeaseBase(SQLModel):
    lease_status: LeaseStatus = Field(default=LeaseStatus.LEASE_SENT)
    #: Incremented by every status transition and signature.
    status_version: int = Field(default=0)

    # Terms, copied from the approval or the property.
    monthly_rent: Decimal = Field(max_digits=16, decimal_places=2)
    security_deposit_amount: Decimal = Field(max_digits=16, decimal_places=2)
    rent_due_day: int = Field(default=1)
    lease_start_date: date
    lease_end_date: date
    move_in_date: date | None = Field(default=None)

    #: Set when the lease is sent to the tenant.
    sent_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    #: Set by the tenant accepting the lease terms.
    accepted_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    #: Set by the tenant's signature.
    tenant_signed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    #: Set by the landlord side's signature.
    landlord_signed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    #: Set when both parties have signed.
    signed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    #: Set by the landlord side scheduling the move-in.
    move_in_ready_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))

    # Relationships
    application_id: int = Field(foreign_key="application.id", unique=True)
    property_id: int = Field(foreign_key="property.id", index=True)
    tenant_id: int = Field(foreign_key="tenancy_user.id", index=True)
    landlord_id: int = Field(foreign_key="tenancy_user.id", index=True)
    landlord_signer_id: int | None = Field(default=None, foreign_key="tenancy_user.id")

    # Timestamps
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=func.now()),
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, onupdate=func.now()),
    )


class Lease(LeaseBase, ActiveRecordMixin, table=True):
    id: int | None = Field(default=None, primary_key=True)

    # Relationships
    application: Application = Relationship(back_populates="lease")
    # no back_populates, because Property.applications is the only traversal needed.
    property: Property = Relationship()
    payments: list["Payment"] = Relationship(back_populates="lease")

    @classmethod
    def billable(cls, session: Session) -> "Query[Self]":
        """
        Return a query for leases whose rent is due.

        .. seealso:: :typer:`python-m-tenancy-generate-rent-payments`
        """
        return session.query(cls).filter(
            col(cls.lease_status).in_([LeaseStatus.LEASE_SIGNED, LeaseStatus.MOVE_IN_READY])
        )


class PaymentBase(SQLModel):
    type: PaymentType
    #: A snapshot of the lease's configured amount. Never changes after creation.
    amount: Decimal = Field(max_digits=16, decimal_places=2)
    due_date: date
    status: PaymentStatus = Field(default=PaymentStatus.PENDING)
    #: Incremented by every status transition.
    status_version: int = Field(default=0)
    #: The identifier with which the tenant references the payment, and with which the receipt is looked up.
    reference_id: str = Field(unique=True)
    #: The tenant's notes about the payment, like a bank transfer reference.
    notes: str = Field(default="")

    #: Set by the tenant marking the payment as paid.
    paid_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    #: Set by the overdue sweep.
    overdue_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    #: Set by the landlord side verifying the payment.
    verified_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))

    # Relationships
    lease_id: int = Field(foreign_key="lease.id", index=True)
    verified_by_id: int | None = Field(default=None, foreign_key="tenancy_user.id")

    # Timestamps
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=func.now()),
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, onupdate=func.now()),
    )

    @property
    def receipt_number(self) -> str:
        return f"RCP-{self.reference_id[:8]}"


class Payment(PaymentBase, ActiveRecordMixin, table=True):
    __table_args__ = (UniqueConstraint("lease_id", "type", "due_date"),)

    id: int | None = Field(default=None, primary_key=True)

    # Relationships
    lease: Lease = Relationship(back_populates="payments")

    @classmethod
    def overdue_candidates(cls, session: Session, today: date) -> "Query[Self]":
        """
        Return a query for PENDING payments whose due date, plus
        :attr:`~tenancy.settings.Settings.overdue_grace_days`, is before today.

        .. seealso:: :typer:`python-m-tenancy-update-payments-to-overdue`
        """
        return session.query(cls).filter(
            cls.status == PaymentStatus.PENDING,
            col(cls.due_date) < today - timedelta(days=app_settings.overdue_grace_days),
        )

    @classmethod
    def due_soon(cls, session: Session, today: date) -> "Query[Self]":
        """
        Return a query for PENDING payments whose due date is within
        :attr:`~tenancy.settings.Settings.rent_reminder_days_before_due` days from today.

        .. seealso:: :typer:`python-m-tenancy-send-rent-reminders`
        """
        return session.query(cls).filter(
            cls.status == PaymentStatus.PENDING,
            col(cls.due_date) >= today,
            col(cls.due_date) <= today + timedelta(days=app_settings.rent_reminder_days_before_due),
        )


@event.listens_for(Payment, "before_update")
def _prevent_amount_change(mapper: Mapper[Payment], connection: Connection, target: Payment) -> None:
    if inspect(target).attrs.amount.history.has_changes():
        raise ValidationError("The amount of a payment can't be changed", data={"payment_id": target.id})


class NotificationBase(SQLModel):
    notification_type: NotificationType
    source_type: SourceType
    source_id: int
    subject: str = Field(default="")
    read_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))

    # Relationships
    recipient_id: int = Field(foreign_key="tenancy_user.id", index=True)

    # Timestamps
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=func.now()),
    )


class Notification(NotificationBase, ActiveRecordMixin, table=True):
    __table_args__ = (UniqueConstraint("idempotency_key", "recipient_id"),)

    id: int | None = Field(default=None, primary_key=True)
    #: A hash of the transition that caused the notification.
    #:
    #: .. seealso:: :func:`tenancy.lifecycle.notifications.idempotency_key`
    idempotency_key: str = Field(index=True)
    #: Set once the notification is emailed.
    emailed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    #: The SES ``MessageId``.
    external_message_id: str = Field(default="")

    @classmethod
    def for_recipient(cls, session: Session, recipient_id: int) -> "Query[Self]":
        return session.query(cls).filter(cls.recipient_id == recipient_id)

    @classmethod
    def unread_for(cls, session: Session, recipient_id: int) -> "Query[Self]":
        return cls.for_recipient(session, recipient_id).filter(col(cls.read_at).is_(None))

    @classmethod
    def undelivered(cls, session: Session) -> "Query[Self]":
        """
        Return a query for notifications that haven't been emailed.

        .. seealso:: :typer:`python-m-tenancy-send-notification-emails`
        """
        return session.query(cls).filter(col(cls.emailed_at).is_(None)).order_by(col(cls.id))


class TransitionLogBase(SQLModel):
    source_type: SourceType
    source_id: int = Field(index=True)
    #: Empty if the entity is created.
    from_status: str = Field(default="")
    #: Empty if the action is refused, like deleting a payment.
    to_status: str = Field(default="")
    actor_role: UserRole
    reason: str = Field(default="")

    # Relationships
    actor_id: int | None = Field(default=None, foreign_key="tenancy_user.id")

    # Timestamps
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=func.now()),
    )


class TransitionLog(TransitionLogBase, ActiveRecordMixin, table=True):
    __tablename__ = "transition_log"

    id: int | None = Field(default=None, primary_key=True)
    data: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)

    @classmethod
    def history(cls, session: Session, source_type: SourceType, source_id: int) -> "Query[Self]":
        """Return a query for the entity's transitions, oldest first."""
        return (
            session.query(cls)
            .filter(cls.source_type == source_type, cls.source_id == source_id)
            .order_by(col(cls.id))
        )


class EventLog(SQLModel, ActiveRecordMixin, table=True):
    __tablename__ = "event_log"

    id: int | None = Field(default=None, primary_key=True)
    category: str
    message: str
    data: dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    traceback: str

    # Timestamps
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=func.now()),
    )


# Classes that inherit from SQLModel but that are used as serializers only.


class ApplicationRead(ApplicationBase):
    id: int


class LeaseRead(LeaseBase):
    id: int


class PaymentRead(PaymentBase):
    id: int


class NotificationRead(NotificationBase):
    id: int


class TransitionLogRead(TransitionLogBase):
    id: int
