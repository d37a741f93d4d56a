from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session, joinedload

from tenancy import auth, models
from tenancy.db import get_db
from tenancy.i18n import _
from tenancy.lifecycle import guard


async def get_auth_credentials(request: Request) -> auth.JWTAuthorizationCredentials:
    return await auth.JWTAuthorization()(request)


async def get_current_user(credentials: auth.JWTAuthorizationCredentials = Depends(get_auth_credentials)) -> str:
    """
    Extracts the username of the current user from the provided JWT credentials.

    :param credentials: JWT credentials provided by the user. Defaults to Depends(get_auth_credentials).
    :raises HTTPException: If the username key is missing in the JWT claims.
    :return: The username of the current user.
    """
    try:
        return credentials.claims["username"]
    except KeyError:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=_("Username missing"))


async def get_user(username: str = Depends(get_current_user), session: Session = Depends(get_db)) -> models.User:
    """
    Retrieves the user from the database using the username extracted from the provided JWT credentials.

    :param session: Database session to execute the query. Defaults to Depends(get_db).
    :raises HTTPException: If the user does not exist in the database.
    :return: The user object retrieved from the database.
    """
    user = models.User.first_by(session, "external_id", username)
    if not user:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=_("User not found"))
    return user


def raise_if_not_party(user: models.User, prop: models.Property, tenant_id: int) -> None:
    if guard.party_role(user, prop, tenant_id) is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=_("User is not authorized"))


def get_application(id: int, session: Session = Depends(get_db)) -> models.Application:
    application = (
        models.Application.filter_by(session, "id", id).options(joinedload(models.Application.property)).first()
    )
    if not application:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_("Application not found"))

    return application


def get_application_as_party(
    application: models.Application = Depends(get_application), user: models.User = Depends(get_user)
) -> models.Application:
    raise_if_not_party(user, application.property, application.applicant_id)
    return application


def get_lease(id: int, session: Session = Depends(get_db)) -> models.Lease:
    lease = models.Lease.filter_by(session, "id", id).options(joinedload(models.Lease.property)).first()
    if not lease:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_("Lease not found"))

    return lease


def get_lease_as_party(
    lease: models.Lease = Depends(get_lease), user: models.User = Depends(get_user)
) -> models.Lease:
    raise_if_not_party(user, lease.property, lease.tenant_id)
    return lease


def get_payment(id: int, session: Session = Depends(get_db)) -> models.Payment:
    payment = (
        models.Payment.filter_by(session, "id", id)
        .options(joinedload(models.Payment.lease).joinedload(models.Lease.property))
        .first()
    )
    if not payment:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=_("Payment not found"))

    return payment


def get_payment_as_party(
    payment: models.Payment = Depends(get_payment), user: models.User = Depends(get_user)
) -> models.Payment:
    raise_if_not_party(user, payment.lease.property, payment.lease.tenant_id)
    return payment
