from typing import Any

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from sqlmodel import col

from tenancy import dependencies, models, parsers, serializers, util
from tenancy.db import get_db, rollback_on_error
from tenancy.exceptions import NotFoundError
from tenancy.i18n import _
from tenancy.lifecycle import applications
from tenancy.settings import app_settings
from tenancy.util import ApplicationSortField, SortOrder

router = APIRouter()


@router.post(
    "/applications",
    tags=[util.Tags.applications],
    status_code=status.HTTP_201_CREATED,
    response_model=serializers.Envelope[models.ApplicationRead],
)
async def submit_application(
    payload: parsers.ApplicationSubmission,
    session: Session = Depends(get_db),
    user: models.User = Depends(dependencies.get_user),
) -> Any:
    """
    Submit an application to a property.

    Notify the owner side of the submission, and send the applicant a confirmation.

    :param payload: The applicant's document.
    :return: The SUBMITTED application.
    """
    with rollback_on_error(session):
        application = applications.submit(session, user, payload)

        session.commit()
        return serializers.ok(application, _("Application submitted"))


@router.post(
    "/applications/drafts",
    tags=[util.Tags.applications],
    response_model=serializers.Envelope[models.ApplicationRead],
)
async def save_draft(
    payload: parsers.ApplicationDraft,
    session: Session = Depends(get_db),
    user: models.User = Depends(dependencies.get_user),
) -> Any:
    """
    Create or update the applicant's draft for a property.

    :return: The DRAFT application.
    """
    with rollback_on_error(session):
        application = applications.save_draft(session, user, payload)

        session.commit()
        return serializers.ok(application)


@router.get(
    "/applications",
    tags=[util.Tags.applications],
    response_model=serializers.Envelope[serializers.ApplicationListResponse],
)
async def list_applications(
    page: int = Query(0, ge=0),
    page_size: int = Query(10, gt=0),
    sort_field: ApplicationSortField = Query(ApplicationSortField.CREATED_AT),
    sort_order: SortOrder = Query(SortOrder.DESC),
    application_status: models.ApplicationStatus | None = Query(None, alias="status"),
    session: Session = Depends(get_db),
    user: models.User = Depends(dependencies.get_user),
) -> Any:
    """
    List the applications of which the user is the applicant or on the owner side. Admins see all applications.

    :param sort_field: The column to sort by. An unknown column is a validation error.
    """
    page_size = min(page_size, app_settings.max_page_size)
    query = models.Application.visible_to(session, user)
    if application_status:
        query = query.filter(models.Application.status == application_status)

    column = col(getattr(models.Application, sort_field))
    query = query.order_by(getattr(column, sort_order)(), col(models.Application.id))

    return serializers.ok(
        {
            "items": query.limit(page_size).offset(page * page_size).all(),
            "count": query.count(),
            "page": page,
            "page_size": page_size,
        }
    )


@router.get(
    "/applications/{id}",
    tags=[util.Tags.applications],
    response_model=serializers.Envelope[models.ApplicationRead],
)
async def get_application(
    application: models.Application = Depends(dependencies.get_application_as_party),
) -> Any:
    return serializers.ok(application)


@router.patch(
    "/applications/{id}",
    tags=[util.Tags.applications],
    response_model=serializers.Envelope[models.ApplicationRead],
)
async def autosave_application(
    payload: parsers.ApplicationAutosave,
    session: Session = Depends(get_db),
    user: models.User = Depends(dependencies.get_user),
    application: models.Application = Depends(dependencies.get_application),
) -> Any:
    """
    Update the fields of a draft that are set in the payload.

    :return: The updated DRAFT application.
    """
    with rollback_on_error(session):
        applications.autosave(session, application, user, payload)

        session.commit()
        return serializers.ok(application)


@router.get(
    "/applications/{id}/transitions",
    tags=[util.Tags.applications],
    response_model=serializers.Envelope[serializers.ApplicationTransitions],
)
async def get_application_transitions(
    user: models.User = Depends(dependencies.get_user),
    application: models.Application = Depends(dependencies.get_application_as_party),
) -> Any:
    """
    List the statuses to which the user can move the application now.
    """
    return serializers.ok({"status": application.status, "allowed": applications.allowed_targets(application, user)})


@router.get(
    "/applications/{id}/history",
    tags=[util.Tags.applications],
    response_model=serializers.Envelope[list[models.TransitionLogRead]],
)
async def get_application_history(
    session: Session = Depends(get_db),
    application: models.Application = Depends(dependencies.get_application_as_party),
) -> Any:
    """
    List the application's transitions, oldest first.

    A transition's ``from_status`` is empty if it created the application.
    """
    assert application.id is not None
    return serializers.ok(models.TransitionLog.history(session, models.SourceType.APPLICATION, application.id).all())


@router.get(
    "/applications/{id}/lease",
    tags=[util.Tags.applications],
    response_model=serializers.Envelope[models.LeaseRead],
)
async def get_application_lease(
    session: Session = Depends(get_db),
    application: models.Application = Depends(dependencies.get_application_as_party),
) -> Any:
    """
    Get the lease of an approved application.
    """
    lease = models.Lease.first_by(session, "application_id", application.id)
    if not lease:
        raise NotFoundError(_("Lease not found"))
    return serializers.ok(lease)


@router.patch(
    "/applications/{id}/status",
    tags=[util.Tags.applications],
    response_model=serializers.Envelope[models.ApplicationRead],
)
async def update_application_status(
    payload: parsers.ApplicationStatusUpdate,
    session: Session = Depends(get_db),
    user: models.User = Depends(dependencies.get_user),
    application: models.Application = Depends(dependencies.get_application),
) -> Any:
    """
    Move the application to a successor status.

    Approving the application, with or without conditions, creates its lease, with the terms in the payload or else
    the property's.

    :param payload: The target status, the reason, and the lease terms (if approving).
    :return: The updated application.
    """
    with rollback_on_error(session):
        applications.advance(
            session, application, payload.status, user, reason=payload.reason, lease_terms=payload.lease
        )

        session.commit()
        return serializers.ok(application, _("Application status updated"))
