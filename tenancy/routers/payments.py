from typing import Any

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from tenancy import dependencies, models, parsers, receipts, serializers, util
from tenancy.db import get_db, rollback_on_error
from tenancy.exceptions import ForbiddenTransition
from tenancy.i18n import _
from tenancy.lifecycle import payments

router = APIRouter()


@router.get(
    "/payments/{id}",
    tags=[util.Tags.payments],
    response_model=serializers.Envelope[models.PaymentRead],
)
async def get_payment(payment: models.Payment = Depends(dependencies.get_payment_as_party)) -> Any:
    return serializers.ok(payment)


@router.post(
    "/payments/{id}/mark-paid",
    tags=[util.Tags.payments],
    response_model=serializers.Envelope[models.PaymentRead],
)
async def mark_payment_paid(
    payload: parsers.PaymentClaim | None = None,
    session: Session = Depends(get_db),
    user: models.User = Depends(dependencies.get_user),
    payment: models.Payment = Depends(dependencies.get_payment),
) -> Any:
    """
    Claim that the payment is paid, as the tenant.

    Changes payment status from "pending" or "overdue" to "paid". Repeating the claim does nothing.

    :param payload: Notes about the payment, like a bank transfer reference.
    :return: The PAID payment.
    """
    with rollback_on_error(session):
        payments.mark_paid(session, payment, user, notes=payload.notes if payload else "")

        session.commit()
        return serializers.ok(payment, _("Payment marked as paid"))


@router.post(
    "/payments/{id}/verify",
    tags=[util.Tags.payments],
    response_model=serializers.Envelope[models.PaymentRead],
)
async def verify_payment(
    session: Session = Depends(get_db),
    user: models.User = Depends(dependencies.get_user),
    payment: models.Payment = Depends(dependencies.get_payment),
) -> Any:
    """
    Confirm the payment, as the landlord side.

    Changes payment status from "paid" to "verified". Repeating the confirmation does nothing.
    """
    with rollback_on_error(session):
        payments.verify(session, payment, user)

        session.commit()
        return serializers.ok(payment, _("Payment verified"))


@router.get(
    "/payments/{id}/receipt",
    tags=[util.Tags.payments],
    response_model=serializers.Envelope[serializers.Receipt],
)
async def get_receipt(payment: models.Payment = Depends(dependencies.get_payment_as_party)) -> Any:
    return serializers.ok(payments.receipt(payment))


@router.get(
    "/payments/{id}/receipt.pdf",
    tags=[util.Tags.payments],
)
async def download_receipt(payment: models.Payment = Depends(dependencies.get_payment_as_party)) -> Response:
    """
    Download the receipt of a paid payment as a PDF file.
    """
    receipt = payments.receipt(payment)
    return Response(
        content=receipts.build_receipt_pdf(receipt),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{receipt.receipt_number}.pdf"'},
    )


@router.delete(
    "/payments/{id}",
    tags=[util.Tags.payments],
    response_model=serializers.ErrorEnvelope,
)
async def delete_payment(
    session: Session = Depends(get_db),
    user: models.User = Depends(dependencies.get_user),
    payment: models.Payment = Depends(dependencies.get_payment),
) -> Any:
    """
    Refuse to delete the payment. Payment records are kept for audit, and the attempt is logged.
    """
    with rollback_on_error(session):
        payments.log_refused_deletion(session, payment, user)

        session.commit()

    raise ForbiddenTransition(_("Payment records can't be deleted"))
