import httpx
import pytest
from fastapi import status

from tenancy.settings import app_settings
from tests import assert_error


def test_info_endpoint(client):
    response = client.get("/info")

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"environment": app_settings.environment, "language": "en"}


def test_not_found_envelope(client):
    assert_error(client.get("/nonexistent"), status.HTTP_404_NOT_FOUND, "not_found")


def test_unauthenticated_envelope(client):
    body = assert_error(client.get("/notifications"), status.HTTP_403_FORBIDDEN, "forbidden")

    assert body["error"] == "Not authenticated"


def test_validation_envelope(client, renter_header):
    response = client.get("/notifications", params={"page": -1}, headers=renter_header)

    body = assert_error(response, status.HTTP_400_BAD_REQUEST, "validation")
    assert body["error"].startswith("query.page: ")


@pytest.mark.parametrize(
    "url_string",
    [
        app_settings.frontend_url,
    ],
)
def test_valid_frontend_url(url_string):
    url = httpx.URL(url_string)

    assert url.scheme and url.host
