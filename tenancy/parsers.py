from datetime import date
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from tenancy.models import ApplicationStatus, SignerRole


class ApplicationDocument(BaseModel):
    """
    The applicant-provided data. The sub-documents are opaque, except for the fields that a submission requires.

    .. seealso:: :func:`tenancy.lifecycle.applications.missing_fields`
    """

    personal_info: dict[str, Any] = Field(default_factory=dict)
    employment: dict[str, Any] = Field(default_factory=dict)
    rental_references: list[dict[str, Any]] = Field(default_factory=list)
    disclosures: dict[str, Any] = Field(default_factory=dict)
    desired_move_in_date: date | None = None


class ApplicationSubmission(ApplicationDocument):
    property_id: int


class ApplicationDraft(ApplicationSubmission):
    step: int = 0


class ApplicationAutosave(BaseModel):
    personal_info: dict[str, Any] | None = None
    employment: dict[str, Any] | None = None
    rental_references: list[dict[str, Any]] | None = None
    disclosures: dict[str, Any] | None = None
    desired_move_in_date: date | None = None
    step: int | None = None


class LeaseTerms(BaseModel):
    """
    The terms of the lease to create on approval. Unset terms fall back to the property's.

    .. seealso:: :func:`tenancy.lifecycle.leases.resolve_terms`
    """

    monthly_rent: Decimal | None = None
    security_deposit: Decimal | None = None
    lease_start_date: date | None = None
    lease_end_date: date | None = None
    lease_term_months: int | None = None
    rent_due_day: int | None = None
    #: Whether to send the lease to the tenant. If not, the lease is drafted offline and sent later.
    send: bool = True


class ApplicationStatusUpdate(BaseModel):
    status: ApplicationStatus
    reason: str = ""
    lease: LeaseTerms | None = None


class LeaseSignature(BaseModel):
    signer_role: SignerRole


class MoveIn(BaseModel):
    move_in_date: date


class PaymentClaim(BaseModel):
    notes: str = ""
