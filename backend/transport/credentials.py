"""
Credential client for the token issuance endpoint.

POST {token_server_url}/api/token -> {"token": ..., "roomName": ..., "url": ...}

Any non-2xx status, network failure, or malformed body is a CredentialError.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from errors import CredentialError
from observability.logger import log_event, now_ms
from spec import TOKEN_ENDPOINT_PATH, TOKEN_REQUEST_TIMEOUT_S


@dataclass(frozen=True)
class Credential:
    """Authorization for exactly one transport session."""
    token: str
    room_name: str
    url: str


class TokenCredentialClient:
    """
    HTTP client for the external token endpoint.

    An httpx.AsyncClient may be injected (tests use httpx.MockTransport);
    otherwise a short-lived client is created per request.
    """

    def __init__(
        self,
        *,
        base_url: str,
        timeout_s: float = TOKEN_REQUEST_TIMEOUT_S,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._client = client

    async def request_credential(self) -> Credential:
        url = f"{self._base_url}{TOKEN_ENDPOINT_PATH}"

        try:
            if self._client is not None:
                response = await self._client.post(url, json={}, timeout=self._timeout_s)
            else:
                async with httpx.AsyncClient(timeout=self._timeout_s) as client:
                    response = await client.post(url, json={})
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            # InvalidURL is not an HTTPError; a bad TOKEN_SERVER_URL lands here.
            raise CredentialError(f"token request failed: {e!r}") from e

        if not response.is_success:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "TOKEN_REQUEST_REJECTED",
                "status_code": response.status_code,
            })
            raise CredentialError(f"Failed to get token (HTTP {response.status_code})")

        try:
            body = response.json()
            credential = Credential(
                token=str(body["token"]),
                room_name=str(body["roomName"]),
                url=str(body["url"]),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise CredentialError(f"malformed token response: {e!r}") from e

        log_event({
            "ts_ms": now_ms(),
            "event_type": "TOKEN_ISSUED",
            "room_name": credential.room_name,
        })
        return credential
