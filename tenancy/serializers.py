from datetime import date, datetime
from decimal import Decimal
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from tenancy import models

T = TypeVar("T")


# Every response body is an envelope.
class Envelope(BaseModel, Generic[T]):
    success: bool = True
    data: T
    message: str = ""


class ErrorEnvelope(BaseModel):
    success: bool = False
    error: str
    #: The kind of error, like "conflict" or "invalid_transition".
    code: str = "error"


def ok(data: Any, message: str = "") -> dict[str, Any]:
    """
    Return the body of a successful response.

    SQLModel instances in ``data`` are serialized by FastAPI according to the route's ``response_model``.
    """
    return {"success": True, "data": data, "message": message}


# Abstract
class BasePagination(BaseModel):
    count: int
    page: int
    page_size: int


class ApplicationListResponse(BasePagination):
    items: list[models.ApplicationRead]


class NotificationListResponse(BasePagination):
    items: list[models.NotificationRead]
    unread_count: int


class ApplicationTransitions(BaseModel):
    status: models.ApplicationStatus
    #: The statuses to which the user can move the application now.
    allowed: list[models.ApplicationStatus]


class PaymentSummary(BaseModel):
    total_payments: int = 0
    pending_count: int = 0
    paid_count: int = 0
    overdue_count: int = 0
    verified_count: int = 0
    #: The amount of PAID and VERIFIED payments.
    paid_amount: Decimal = Decimal(0)
    #: The amount of VERIFIED payments.
    verified_amount: Decimal = Decimal(0)
    #: The amount of PENDING and OVERDUE payments.
    outstanding_amount: Decimal = Decimal(0)


class LeasePaymentsResponse(BaseModel):
    lease: models.LeaseRead
    payments: list[models.PaymentRead]
    summary: PaymentSummary


class Receipt(BaseModel):
    receipt_number: str
    reference_id: str
    payment_id: int
    lease_id: int
    type: models.PaymentType
    status: models.PaymentStatus
    amount: Decimal
    due_date: date
    paid_at: datetime | None = None
    verified_at: datetime | None = None
    property_title: str
    property_address: str


class MarkAllReadResponse(BaseModel):
    count: int
