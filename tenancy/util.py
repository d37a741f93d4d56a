import uuid
from enum import Enum, StrEnum
from typing import Any

import httpx
import orjson
from email_validator import EmailNotValidError, validate_email


# https://fastapi.tiangolo.com/tutorial/path-operation-configuration/#tags-with-enums
class Tags(Enum):
    applications = "applications"
    leases = "leases"
    payments = "payments"
    notifications = "notifications"
    meta = "meta"


class SortOrder(StrEnum):
    ASC = "asc"
    DESC = "desc"


class ApplicationSortField(StrEnum):
    """The columns by which applications can be sorted."""

    CREATED_AT = "created_at"
    UPDATED_AT = "updated_at"
    SUBMITTED_AT = "submitted_at"
    DESIRED_MOVE_IN_DATE = "desired_move_in_date"
    STATUS = "status"


# In future, httpx.Client might allow custom decoders. https://github.com/encode/httpx/issues/717
def loads(response: httpx.Response) -> Any:
    return orjson.loads(response.text)


def generate_reference_id() -> str:
    """
    Generate a reference with which a tenant identifies a payment, for example, in a bank transfer.
    """
    return uuid.uuid4().hex.upper()


def is_valid_email(email: str) -> bool:
    """
    Check if the given email is valid.

    :param email: The email address to validate.
    :return: True if the email is valid, False otherwise.
    """
    try:
        return bool(validate_email(email, allow_smtputf8=False, check_deliverability=False))
    except EmailNotValidError:
        return False
