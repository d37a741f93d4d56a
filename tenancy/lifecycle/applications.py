import logging
from datetime import date
from typing import Any

from sqlalchemy.orm import Session

from tenancy import models, parsers, util
from tenancy.exceptions import AlreadyExists, ConflictError, ForbiddenTransition, InvalidTransition, ValidationError
from tenancy.i18n import _
from tenancy.lifecycle import guard, leases, notifications

logger = logging.getLogger(__name__)

AS = models.ApplicationStatus

#: The statuses to which an application can move from each status.
SUCCESSORS: dict[models.ApplicationStatus, tuple[models.ApplicationStatus, ...]] = {
    AS.DRAFT: (AS.SUBMITTED,),
    AS.SUBMITTED: (AS.UNDER_REVIEW,),
    AS.UNDER_REVIEW: (AS.INFO_REQUESTED, AS.BACKGROUND_CHECK, AS.APPROVED, AS.CONDITIONAL_APPROVAL, AS.REJECTED),
    AS.INFO_REQUESTED: (AS.UNDER_REVIEW,),
    AS.BACKGROUND_CHECK: (AS.APPROVED, AS.CONDITIONAL_APPROVAL, AS.REJECTED),
    AS.REJECTED: (AS.UNDER_REVIEW,),
    AS.APPROVED: (),
    AS.CONDITIONAL_APPROVAL: (),
}

#: The timestamp set by moving to each status.
TIMESTAMPS = {
    AS.SUBMITTED: "submitted_at",
    AS.UNDER_REVIEW: "reviewed_at",
    AS.INFO_REQUESTED: "info_requested_at",
    AS.APPROVED: "decided_at",
    AS.CONDITIONAL_APPROVAL: "decided_at",
    AS.REJECTED: "decided_at",
}

REQUIRED_FIELDS = {
    "personal_info": ("first_name", "last_name", "email", "phone"),
    "employment": ("employer_name", "monthly_income"),
}
REQUIRED_DISCLOSURES = ("fair_housing_acknowledged", "credit_check_authorized", "accuracy_certified")


def missing_fields(document: parsers.ApplicationDocument | models.Application) -> list[str]:
    """
    Return the dotted names of the fields that a submission requires but that the document lacks, or that are
    invalid.
    """
    missing = []
    for section, fields in REQUIRED_FIELDS.items():
        values = getattr(document, section) or {}
        for field in fields:
            if values.get(field) in (None, ""):
                missing.append(f"{section}.{field}")
    for field in REQUIRED_DISCLOSURES:
        if not (document.disclosures or {}).get(field):
            missing.append(f"disclosures.{field}")

    email = (document.personal_info or {}).get("email")
    if email and not util.is_valid_email(str(email)):
        missing.append("personal_info.email")
    return missing


def validate_complete(document: parsers.ApplicationDocument | models.Application) -> None:
    """
    :raises ValidationError: If the document lacks a field that a submission requires.
    """
    if missing := missing_fields(document):
        raise ValidationError(
            _("Required fields are missing or invalid: %(fields)s", fields=", ".join(missing)),
            data={"fields": missing},
        )


def _document_data(document: parsers.ApplicationDocument) -> dict[str, Any]:
    return document.model_dump(include=set(parsers.ApplicationDocument.model_fields))


def _log(
    session: Session,
    application: models.Application,
    from_status: str,
    to_status: str,
    *,
    role: models.UserRole,
    actor: models.User,
    reason: str = "",
) -> None:
    models.TransitionLog.create(
        session,
        source_type=models.SourceType.APPLICATION,
        source_id=application.id,
        from_status=from_status,
        to_status=to_status,
        actor_id=actor.id,
        actor_role=role,
        reason=reason,
    )


def _get_property(session: Session, property_id: int) -> models.Property:
    prop = models.Property.first_by(session, "id", property_id)
    if not prop:
        raise ValidationError(_("Property not found"), data={"property_id": property_id})
    return prop


def _get_draft(session: Session, property_id: int, applicant_id: int | None) -> models.Application | None:
    return (
        session.query(models.Application)
        .filter(
            models.Application.property_id == property_id,
            models.Application.applicant_id == applicant_id,
            models.Application.status == AS.DRAFT,
        )
        .first()
    )


def _check_not_open(session: Session, property_id: int, applicant_id: int) -> None:
    if models.Application.open_for(session, property_id=property_id, applicant_id=applicant_id).first():
        raise AlreadyExists(_("You already have an open application to this property"))


def submit(session: Session, user: models.User, payload: parsers.ApplicationSubmission) -> models.Application:
    """
    Submit an application to a property, and notify the owner side. The applicant receives a confirmation.

    If the applicant has a draft for the property, the draft is submitted.

    :raises ValidationError: If the document lacks a field that a submission requires.
    :raises AlreadyExists: If the applicant has an open application to the property.
    """
    prop = _get_property(session, payload.property_id)
    assert user.id is not None
    role = guard.resolve_role(user, prop, user.id)
    if not guard.is_allowed(role, models.SourceType.APPLICATION, AS.DRAFT, AS.SUBMITTED):
        raise ForbiddenTransition(_("Only renters can submit applications"))

    validate_complete(payload)
    assert prop.id is not None
    _check_not_open(session, prop.id, user.id)  # type: ignore[arg-type]

    if draft := _get_draft(session, prop.id, user.id):  # type: ignore[arg-type]
        draft.update(session, **_document_data(payload))
        return advance(session, draft, AS.SUBMITTED, user)

    application = models.Application.create(
        session,
        property_id=prop.id,
        applicant_id=user.id,
        status=AS.SUBMITTED,
        submitted_at=models.utcnow(),
        **_document_data(payload),
    )
    _log(session, application, "", AS.SUBMITTED, role=role, actor=user)
    notifications.notify_application(session, application, models.NotificationType.APPLICATION_SUBMITTED, user.id)

    logger.info("Application %s submitted by user %s", application.id, user.id)
    return application


def save_draft(session: Session, user: models.User, payload: parsers.ApplicationDraft) -> models.Application:
    """
    Create or update the applicant's draft for a property. The draft needn't be complete.

    :raises AlreadyExists: If the applicant has an open application to the property.
    """
    prop = _get_property(session, payload.property_id)
    _check_not_open(session, prop.id, user.id)  # type: ignore[arg-type]
    return models.Application.create_or_update(
        session,
        [
            models.Application.property_id == prop.id,
            models.Application.applicant_id == user.id,
            models.Application.status == AS.DRAFT,
        ],
        property_id=prop.id,
        applicant_id=user.id,
        status=AS.DRAFT,
        step=payload.step,
        **_document_data(payload),
    )


def autosave(
    session: Session, application: models.Application, user: models.User, payload: parsers.ApplicationAutosave
) -> models.Application:
    """
    Update the fields of a draft that are set in the payload.

    :raises ForbiddenTransition: If the user isn't the applicant.
    :raises InvalidTransition: If the application isn't a draft.
    """
    if user.id != application.applicant_id:
        raise ForbiddenTransition(_("Only the applicant can edit an application"))
    if application.status != AS.DRAFT:
        raise InvalidTransition(_("Application status should not be %(status)s", status=application.status))

    return application.update(session, **payload.model_dump(exclude_unset=True))


def allowed_targets(application: models.Application, user: models.User) -> list[models.ApplicationStatus]:
    """Return the statuses to which the user can move the application now."""
    role = guard.resolve_role(user, application.property, application.applicant_id)
    return [
        AS(status)
        for status in guard.allowed_targets(
            role, models.SourceType.APPLICATION, application.status, SUCCESSORS[application.status]
        )
    ]


def advance(
    session: Session,
    application: models.Application,
    target: models.ApplicationStatus,
    user: models.User,
    *,
    reason: str = "",
    lease_terms: parsers.LeaseTerms | None = None,
    today: date | None = None,
) -> models.Application:
    """
    Move the application to a successor status, and notify the parties.

    Approving the application (with or without conditions) creates its lease in the same transaction.

    :raises InvalidTransition: If the target isn't a successor of the current status.
    :raises ForbiddenTransition: If the user's role can't make the transition.
    :raises ValidationError: If a submission is incomplete, or if the lease terms are inconsistent.
    :raises AlreadyExists: If the applicant has another open application to the property.
    :raises ConflictError: If the application changed concurrently.
    """
    role = guard.resolve_role(user, application.property, application.applicant_id)
    from_status = application.status
    if target not in SUCCESSORS[from_status]:
        raise InvalidTransition(
            _(
                "Can't change an application from %(from_status)s to %(to_status)s",
                from_status=from_status,
                to_status=target,
            )
        )
    guard.authorize(role, models.SourceType.APPLICATION, from_status, target)

    if target == AS.SUBMITTED:
        validate_complete(application)
    # Submitting a draft and reopening a rejection both open the application.
    if from_status in (AS.DRAFT, AS.REJECTED):
        _check_not_open(session, application.property_id, application.applicant_id)
    if target in leases.LEASE_APPLICATION_STATUSES:
        leases.resolve_terms(application, lease_terms, today)

    data: dict[str, Any] = {"status": target, "status_reason": reason}
    if timestamp := TIMESTAMPS.get(target):
        data[timestamp] = models.utcnow()
    if role in guard.REVIEWERS:
        data["reviewed_by_id"] = user.id

    if not application.compare_and_set(session, models.Application.status == from_status, **data):
        raise ConflictError(_("Application was modified by another request"))

    _log(session, application, from_status, target, role=role, actor=user, reason=reason)
    notifications.notify_application(
        session, application, models.NotificationType(f"application_{target}"), actor_id=user.id
    )
    if target in leases.LEASE_APPLICATION_STATUSES:
        leases.initialize(session, application, user, role, lease_terms, today)

    logger.info("Application %s changed from %s to %s by user %s", application.id, from_status, target, user.id)
    return application
