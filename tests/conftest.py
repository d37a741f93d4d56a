import copy
import os
import tempfile
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from typing import Any, Generator
from unittest.mock import MagicMock, patch

# The database URL is read when tenancy.db is imported.
os.environ.setdefault("TEST_DATABASE_URL", f"sqlite:///{os.path.join(tempfile.mkdtemp(), 'tenancy.db')}")

import moto  # noqa: E402
import pytest  # noqa: E402
from fastapi import FastAPI, HTTPException, Request, status  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from tenancy import aws, dependencies, models, parsers  # noqa: E402
from tenancy.db import engine as db_engine  # noqa: E402
from tenancy.db import get_db  # noqa: E402
from tenancy.lifecycle import applications, leases  # noqa: E402
from tenancy.main import app as main_app  # noqa: E402
from tests import APPLICATION_DOCUMENT, get_test_db, headers  # noqa: E402

START = date(2030, 1, 1)


# http://docs.getmoto.org/en/latest/docs/getting_started.html#example-on-usage
@pytest.fixture(autouse=True, scope="session")
def aws_credentials():
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"


@pytest.fixture(autouse=True)
def mock_aws_fixture():
    with moto.mock_aws():
        yield


# IMPORTANT! All calls to aws.ses_client must be mocked.
@pytest.fixture(autouse=True)
def mock_templated_email():
    with patch.object(aws.ses_client, "send_templated_email", MagicMock()) as mock:
        mock.return_value = {"MessageId": "123"}
        yield mock


@pytest.fixture(scope="session")
def engine():
    return db_engine


@pytest.fixture(autouse=True)
def create_and_drop_database(engine):
    models.SQLModel.metadata.create_all(engine)
    yield
    models.SQLModel.metadata.drop_all(engine)


# Bearer tokens are verified in test_auth.py. Elsewhere, the token is the user's external ID.
async def _get_test_current_user(request: Request) -> str:
    scheme, _, username = request.headers.get("Authorization", "").partition(" ")
    if scheme != "Bearer" or not username:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authenticated")
    return username


@pytest.fixture
def app(engine) -> Generator[FastAPI, Any, None]:
    main_app.dependency_overrides[dependencies.get_current_user] = _get_test_current_user
    main_app.dependency_overrides[get_db] = get_test_db(engine)
    yield main_app
    main_app.dependency_overrides.clear()


@pytest.fixture
def client(app: FastAPI) -> Generator[TestClient, Any, None]:
    with TestClient(app) as client:
        yield client


@pytest.fixture
def session(engine):
    with contextmanager(get_test_db(engine))() as session:
        yield session


def _create_user(session, role: models.UserRole, external_id: str, **kwargs) -> models.User:
    user = models.User.create(
        session,
        role=role,
        email=f"{external_id}@example.com",
        name=external_id.replace("-", " ").title(),
        external_id=external_id,
        **kwargs,
    )
    session.commit()
    return user


@pytest.fixture
def renter(session):
    return _create_user(session, models.UserRole.RENTER, "renter")


@pytest.fixture
def other_renter(session):
    return _create_user(session, models.UserRole.RENTER, "other-renter")


@pytest.fixture
def landlord(session):
    return _create_user(session, models.UserRole.LANDLORD, "landlord")


@pytest.fixture
def manager(session):
    return _create_user(session, models.UserRole.PROPERTY_MANAGER, "manager")


@pytest.fixture
def agent(session):
    return _create_user(session, models.UserRole.AGENT, "agent")


@pytest.fixture
def admin(session):
    return _create_user(session, models.UserRole.ADMIN, "admin")


# A landlord without any relationship to the property.
@pytest.fixture
def stranger(session):
    return _create_user(session, models.UserRole.LANDLORD, "stranger")


@pytest.fixture
def renter_header(renter):
    return headers(renter)


@pytest.fixture
def landlord_header(landlord):
    return headers(landlord)


@pytest.fixture
def manager_header(manager):
    return headers(manager)


@pytest.fixture
def agent_header(agent):
    return headers(agent)


@pytest.fixture
def admin_header(admin):
    return headers(admin)


@pytest.fixture
def stranger_header(stranger):
    return headers(stranger)


@pytest.fixture
def prop(session, landlord, manager, agent):
    prop = models.Property.create(
        session,
        title="Garden flat",
        address="1 Elm Street",
        monthly_rent=Decimal("1500.00"),
        security_deposit=Decimal("3000.00"),
        lease_term_months=12,
        rent_due_day=1,
        owner_id=landlord.id,
        manager_id=manager.id,
        agent_id=agent.id,
    )
    session.commit()
    return prop


@pytest.fixture
def application_payload(prop):
    return {"property_id": prop.id, **copy.deepcopy(APPLICATION_DOCUMENT)}


@pytest.fixture
def submitted_application(session, renter, application_payload):
    application = applications.submit(session, renter, parsers.ApplicationSubmission(**application_payload))
    session.commit()
    return application


@pytest.fixture
def under_review_application(session, landlord, submitted_application):
    applications.advance(session, submitted_application, models.ApplicationStatus.UNDER_REVIEW, landlord)
    session.commit()
    return submitted_application


@pytest.fixture
def sent_lease(session, landlord, under_review_application):
    applications.advance(
        session,
        under_review_application,
        models.ApplicationStatus.APPROVED,
        landlord,
        lease_terms=parsers.LeaseTerms(lease_start_date=START),
    )
    session.commit()
    return models.Lease.first_by(session, "application_id", under_review_application.id)


@pytest.fixture
def accepted_lease(session, renter, sent_lease):
    leases.accept(session, sent_lease, renter, today=date(2029, 12, 1))
    session.commit()
    return sent_lease


@pytest.fixture
def signed_lease(session, renter, landlord, accepted_lease):
    leases.sign(session, accepted_lease, renter, models.SignerRole.TENANT)
    leases.sign(session, accepted_lease, landlord, models.SignerRole.LANDLORD)
    session.commit()
    return accepted_lease


@pytest.fixture
def deposit(session, accepted_lease):
    return (
        session.query(models.Payment)
        .filter(
            models.Payment.lease_id == accepted_lease.id,
            models.Payment.type == models.PaymentType.SECURITY_DEPOSIT,
        )
        .one()
    )


@pytest.fixture
def first_rent(session, signed_lease):
    return (
        session.query(models.Payment)
        .filter(models.Payment.lease_id == signed_lease.id, models.Payment.type == models.PaymentType.RENT)
        .one()
    )
