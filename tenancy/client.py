"""
A client of the API that keeps local copies of entities in step with the server.

Each entity is keyed by its path, like ``/payments/1``. Before a write, the client applies the expected change to its
local copy, so that a user interface can show it immediately. When the server responds, the local copy is replaced by
the server's entity or, on failure, by a fresh copy from the server (or the last server-confirmed copy, if the
entity can't be fetched).
"""

import logging
from typing import Any

import httpx

from tenancy import util

logger = logging.getLogger(__name__)


class ReconcileError(Exception):
    """Raised if the server refuses a write. The local copy is rolled back and refetched before this is raised."""

    def __init__(self, message: str, status_code: int, code: str = "error"):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class Reconciler:
    """
    :param client: An HTTP client whose ``base_url`` is the API and whose headers authenticate the user.
    """

    def __init__(self, client: httpx.Client):
        self.client = client
        #: The last copy of each entity that the server returned.
        self.confirmed: dict[str, dict[str, Any]] = {}
        #: The copy of each entity to display, possibly with optimistic changes.
        self.local: dict[str, dict[str, Any]] = {}

    def _raise_for_envelope(self, response: httpx.Response) -> dict[str, Any]:
        try:
            body = util.loads(response)
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.is_success and body.get("success", True):
            return body

        raise ReconcileError(
            body.get("error") or response.reason_phrase,
            status_code=response.status_code,
            code=body.get("code", "error"),
        )

    def fetch(self, key: str) -> dict[str, Any]:
        """
        Get an entity from the server, and replace both copies with it.

        :param key: The entity's path.
        :return: The entity.
        """
        body = self._raise_for_envelope(self.client.get(key))
        self._confirm(key, body["data"])
        return self.local[key]

    def _confirm(self, key: str, entity: dict[str, Any]) -> None:
        self.confirmed[key] = entity
        self.local[key] = dict(entity)

    def _rollback(self, key: str) -> None:
        if key in self.confirmed:
            self.local[key] = dict(self.confirmed[key])
        else:
            self.local.pop(key, None)

    def _refetch(self, key: str) -> bool:
        """Replace both copies with the server's, if the server returns the entity."""
        try:
            self.fetch(key)
        except (ReconcileError, httpx.HTTPError) as e:
            logger.warning("Failed to refetch %s: %s", key, e)
            return False
        return True

    def write(
        self,
        method: str,
        url: str,
        key: str,
        *,
        optimistic: dict[str, Any] | None = None,
        json: Any = None,
    ) -> dict[str, Any]:
        """
        Send a write, and reconcile the local copy of the entity with the server's response.

        If the server refuses the write, roll back the optimistic change and refetch the entity, so that the local copy
        reflects any change that another request made. If the server reported a conflict (another request changed the
        entity first), retry once, before raising.

        :param method: The HTTP method.
        :param url: The path of the write, like ``/payments/1/mark-paid``.
        :param key: The path of the entity that the write returns, like ``/payments/1``.
        :param optimistic: The fields that the write is expected to change.
        :param json: The request body.
        :return: The entity that the server returned.
        :raises ReconcileError: If the server refuses the write.
        """
        retried = False
        while True:
            if optimistic:
                self.local[key] = self.local.get(key, {}) | optimistic

            try:
                body = self._raise_for_envelope(self.client.request(method, url, json=json))
            except ReconcileError as e:
                self._rollback(key)
                refetched = self._refetch(key)
                if e.code == "conflict" and refetched and not retried:
                    logger.info("Conflict on %s %s, retrying", method, url)
                    retried = True
                    continue
                raise

            # Replace, don't merge, so that server-side changes (timestamps, versions) aren't lost.
            self._confirm(key, body["data"])
            return self.local[key]
