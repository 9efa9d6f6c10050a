"""
Recordflow — Record-Store Collaborator

The executor talks to the record store through one capability:

    execute_request(verb, target, headers, payload) -> RecordStoreResponse

``TableAPIClient`` implements it against a Table API instance
(``<instance>/api/now/table/<table>[/<sys_id>]``) with httpx. Any
object with a matching ``execute_request`` works; tests pass stubs.

Clients are always constructed and handed in by the caller; nothing
here keeps a process-wide instance.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from recordflow.types import RecordStoreResponse, Target, Verb

logger = logging.getLogger("recordflow.collaborator")

FRIENDLY_ERRORS = {
    401: "API key is invalid or expired. Please check your settings.",
    403: "You lack permissions to access this resource. Required roles may be missing.",
    404: "The requested record or table was not found.",
    409: "A conflict occurred - possible duplicate key or business rule violation.",
    429: "Rate limited. Please wait before making more requests.",
}


class RecordStore(Protocol):
    """Anything that can execute a single request against the record store."""

    def execute_request(
        self,
        verb: Verb,
        target: Target,
        headers: dict[str, str],
        payload: dict[str, Any] | None,
    ) -> RecordStoreResponse:
        ...


def extract_identifier(data: Any) -> str | None:
    """Pull ``result.sys_id`` out of a success payload, if it carries one."""
    if not isinstance(data, dict):
        return None
    result = data.get("result")
    if not isinstance(result, dict):
        return None
    sys_id = result.get("sys_id")
    if isinstance(sys_id, dict):
        # Reference-shaped field: {"value": ..., "display_value": ...}
        sys_id = sys_id.get("value")
    return str(sys_id) if sys_id else None


def _error_message(status: int, data: Any, fallback: str) -> str:
    if status in FRIENDLY_ERRORS:
        return FRIENDLY_ERRORS[status]
    if isinstance(data, dict) and isinstance(data.get("error"), dict):
        err = data["error"]
        message = err.get("message") or fallback
        if err.get("detail"):
            message += f": {err['detail']}"
        return message
    return fallback


class TableAPIClient:
    """
    httpx-backed Table API client.

    ``execute_request`` never raises for HTTP or transport problems;
    they come back as a non-2xx RecordStoreResponse with ``error`` set.
    """

    API_PREFIX = "/api/now"

    def __init__(
        self,
        instance_url: str,
        api_key: str,
        timeout_seconds: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.instance_url = instance_url.rstrip("/")
        self._client = httpx.Client(
            base_url=f"{self.instance_url}{self.API_PREFIX}",
            headers={
                "Content-Type": "application/json",
                "Accept": "application/json",
                "x-sn-apikey": api_key,
            },
            timeout=timeout_seconds,
            transport=transport,
        )

    def close(self):
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def execute_request(
        self,
        verb: Verb,
        target: Target,
        headers: dict[str, str],
        payload: dict[str, Any] | None,
    ) -> RecordStoreResponse:
        verb = Verb.parse(verb)
        body = payload if verb.carries_body else None
        try:
            resp = self._client.request(
                verb.value,
                target.path,
                headers=headers or None,
                json=body,
            )
        except httpx.HTTPError as e:
            logger.warning("Transport error on %s %s: %s", verb.value, target.path, e)
            return RecordStoreResponse(
                status=500,
                status_text="Internal Error",
                error=str(e) or type(e).__name__,
            )

        data = self._decode(resp)
        response = RecordStoreResponse(
            status=resp.status_code,
            status_text=resp.reason_phrase,
            data=data,
            headers=dict(resp.headers),
        )
        if not response.ok:
            response.error = _error_message(
                resp.status_code, data, f"Request failed with status {resp.status_code}",
            )
            logger.info(
                "Record store rejected %s %s: %d %s",
                verb.value, target.path, resp.status_code, response.error,
            )
        return response

    @staticmethod
    def _decode(resp: httpx.Response) -> Any:
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError:
            return resp.text

    def test_connection(self) -> bool:
        """Cheap authenticated read to check reachability and credentials."""
        try:
            resp = self._client.get(Target("sys_user").path, params={"sysparm_limit": 1})
        except httpx.HTTPError as e:
            logger.warning("Connection test failed: %s", e)
            return False
        return resp.is_success
