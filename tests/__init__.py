from typing import Any, Generator

from fastapi import status
from sqlalchemy.orm import Session, sessionmaker

APPLICATION_DOCUMENT: dict[str, Any] = {
    "personal_info": {
        "first_name": "Ada",
        "last_name": "Lovelace",
        "email": "ada@example.com",
        "phone": "+1 555 0100",
    },
    "employment": {"employer_name": "Analytical Engines", "monthly_income": 9000},
    "rental_references": [{"name": "Previous Landlord", "phone": "+1 555 0199"}],
    "disclosures": {
        "fair_housing_acknowledged": True,
        "credit_check_authorized": True,
        "accuracy_certified": True,
    },
    "desired_move_in_date": "2030-01-01",
}


def get_test_db(engine):
    factory = sessionmaker(expire_on_commit=False, bind=engine)

    def inner() -> Generator[Session, None, None]:
        session = factory()
        try:
            yield session
        finally:
            session.close()

    return inner


def assert_ok(response, status_code=status.HTTP_200_OK) -> dict[str, Any]:
    assert response.status_code == status_code, f"{response.status_code}: {response.json()}"
    body = response.json()
    assert body["success"] is True
    return body["data"]


def assert_error(response, status_code: int, code: str) -> dict[str, Any]:
    assert response.status_code == status_code, f"{response.status_code}: {response.json()}"
    body = response.json()
    assert body["success"] is False
    assert body["code"] == code, body
    return body


def headers(user) -> dict[str, str]:
    return {"Authorization": f"Bearer {user.external_id}"}
