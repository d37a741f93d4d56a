import httpx
import pytest
from fastapi import status

from tenancy import models
from tenancy.client import ReconcileError, Reconciler
from tenancy.lifecycle import payments

PS = models.PaymentStatus


@pytest.fixture
def reconciler(client, renter_header):
    client.headers.update(renter_header)
    return Reconciler(client)


def test_fetch(reconciler, deposit):
    key = f"/payments/{deposit.id}"

    entity = reconciler.fetch(key)

    assert entity["status"] == PS.PENDING
    assert reconciler.local[key] == reconciler.confirmed[key] == entity


def test_write(reconciler, deposit):
    key = f"/payments/{deposit.id}"
    reconciler.fetch(key)

    entity = reconciler.write("POST", f"{key}/mark-paid", key, optimistic={"status": PS.PAID}, json={"notes": "Cash"})

    # The local copy is the server's, with server-side fields.
    assert entity["status"] == PS.PAID
    assert entity["notes"] == "Cash"
    assert entity["paid_at"] is not None
    assert reconciler.confirmed[key] == entity


def test_write_refused(client, reconciler, landlord_header, deposit):
    key = f"/payments/{deposit.id}"
    original = reconciler.fetch(key)
    client.headers.update(landlord_header)

    with pytest.raises(ReconcileError) as excinfo:
        reconciler.write("POST", f"{key}/mark-paid", key, optimistic={"status": PS.PAID})

    assert excinfo.value.status_code == status.HTTP_403_FORBIDDEN
    assert excinfo.value.code == "forbidden"
    # The optimistic change is rolled back, and the entity is refetched.
    assert reconciler.local[key] == reconciler.confirmed[key] == original


def test_write_refused_after_change(session, reconciler, renter, landlord, deposit):
    key = f"/payments/{deposit.id}"
    reconciler.fetch(key)
    # Another client marks the payment as paid, and the landlord verifies it.
    payments.mark_paid(session, deposit, renter)
    payments.verify(session, deposit, landlord)
    session.commit()

    with pytest.raises(ReconcileError) as excinfo:
        reconciler.write("POST", f"{key}/mark-paid", key, optimistic={"status": PS.PAID})

    assert excinfo.value.code == "invalid_transition"
    # The local copy is the server's, not the stale copy.
    assert reconciler.local[key]["status"] == PS.VERIFIED
    assert reconciler.confirmed[key]["verified_at"] is not None


def test_write_refused_without_local_copy(reconciler):
    key = "/payments/404"

    with pytest.raises(ReconcileError) as excinfo:
        reconciler.write("POST", f"{key}/mark-paid", key, optimistic={"status": PS.PAID})

    assert excinfo.value.code == "not_found"
    assert key not in reconciler.local


def test_write_conflict(monkeypatch, client, reconciler, deposit):
    key = f"/payments/{deposit.id}"
    reconciler.fetch(key)

    request = client.request
    conflicts = []

    def conflict_once(method, url, **kwargs):
        if method != "GET" and not conflicts:
            conflicts.append(url)
            return httpx.Response(
                status.HTTP_409_CONFLICT,
                json={"success": False, "error": "Payment was modified by another request", "code": "conflict"},
            )
        return request(method, url, **kwargs)

    monkeypatch.setattr(client, "request", conflict_once)

    entity = reconciler.write("POST", f"{key}/mark-paid", key, optimistic={"status": PS.PAID})

    # The entity is refetched and the write is retried.
    assert conflicts == [f"{key}/mark-paid"]
    assert entity["status"] == PS.PAID


def test_write_conflict_twice(monkeypatch, client, reconciler, deposit):
    key = f"/payments/{deposit.id}"
    original = reconciler.fetch(key)
    request = client.request

    def conflict(method, url, **kwargs):
        if method != "GET":
            return httpx.Response(status.HTTP_409_CONFLICT, json={"success": False, "error": "", "code": "conflict"})
        return request(method, url, **kwargs)

    monkeypatch.setattr(client, "request", conflict)

    with pytest.raises(ReconcileError) as excinfo:
        reconciler.write("POST", f"{key}/mark-paid", key, optimistic={"status": PS.PAID})

    assert excinfo.value.code == "conflict"
    assert excinfo.value.message == "Conflict"
    assert reconciler.local[key] == original
