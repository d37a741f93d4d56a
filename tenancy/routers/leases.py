from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlmodel import col

from tenancy import dependencies, models, parsers, serializers, util
from tenancy.db import get_db, rollback_on_error
from tenancy.i18n import _
from tenancy.lifecycle import leases, payments

router = APIRouter()


@router.get(
    "/leases/{id}",
    tags=[util.Tags.leases],
    response_model=serializers.Envelope[models.LeaseRead],
)
async def get_lease(lease: models.Lease = Depends(dependencies.get_lease_as_party)) -> Any:
    return serializers.ok(lease)


@router.post(
    "/leases/{id}/send",
    tags=[util.Tags.leases],
    response_model=serializers.Envelope[models.LeaseRead],
)
async def send_lease(
    session: Session = Depends(get_db),
    user: models.User = Depends(dependencies.get_user),
    lease: models.Lease = Depends(dependencies.get_lease),
) -> Any:
    """
    Send a lease that was drafted offline to the tenant.

    Changes lease status from "none" to "lease_sent".
    """
    with rollback_on_error(session):
        leases.send(session, lease, user)

        session.commit()
        return serializers.ok(lease, _("Lease sent"))


@router.post(
    "/leases/{id}/accept",
    tags=[util.Tags.leases],
    response_model=serializers.Envelope[models.LeaseRead],
)
async def accept_lease(
    session: Session = Depends(get_db),
    user: models.User = Depends(dependencies.get_user),
    lease: models.Lease = Depends(dependencies.get_lease),
) -> Any:
    """
    Accept the lease terms, as the tenant.

    Changes lease status from "lease_sent" to "lease_accepted". The security deposit becomes due.
    """
    with rollback_on_error(session):
        leases.accept(session, lease, user)

        session.commit()
        return serializers.ok(lease, _("Lease accepted"))


@router.post(
    "/leases/{id}/sign",
    tags=[util.Tags.leases],
    response_model=serializers.Envelope[models.LeaseRead],
)
async def sign_lease(
    payload: parsers.LeaseSignature,
    session: Session = Depends(get_db),
    user: models.User = Depends(dependencies.get_user),
    lease: models.Lease = Depends(dependencies.get_lease),
) -> Any:
    """
    Sign the lease, as the tenant or for the landlord.

    Changes lease status from "lease_accepted" to "lease_signed" once both parties signed. The first rent becomes due.
    """
    with rollback_on_error(session):
        leases.sign(session, lease, user, payload.signer_role)

        session.commit()
        return serializers.ok(lease, _("Lease signed"))


@router.post(
    "/leases/{id}/move-in",
    tags=[util.Tags.leases],
    response_model=serializers.Envelope[models.LeaseRead],
)
async def schedule_move_in(
    payload: parsers.MoveIn,
    session: Session = Depends(get_db),
    user: models.User = Depends(dependencies.get_user),
    lease: models.Lease = Depends(dependencies.get_lease),
) -> Any:
    """
    Schedule the move-in, for the landlord side.

    Changes lease status from "lease_signed" to "move_in_ready".
    """
    with rollback_on_error(session):
        leases.schedule_move_in(session, lease, user, payload.move_in_date)

        session.commit()
        return serializers.ok(lease, _("Move-in scheduled"))


@router.get(
    "/leases/{id}/payments",
    tags=[util.Tags.leases],
    response_model=serializers.Envelope[serializers.LeasePaymentsResponse],
)
async def get_lease_payments(
    session: Session = Depends(get_db),
    lease: models.Lease = Depends(dependencies.get_lease_as_party),
) -> Any:
    """
    List the lease's payments by due date, with a summary.
    """
    lease_payments = (
        session.query(models.Payment)
        .filter(models.Payment.lease_id == lease.id)
        .order_by(col(models.Payment.due_date), col(models.Payment.id))
        .all()
    )
    return serializers.ok({"lease": lease, "payments": lease_payments, "summary": payments.summarize(lease_payments)})
