"""
OAuth client-credentials exchange against the vendor's identity service.
"""

from __future__ import annotations

import logging

import httpx

from .errors import AuthError
from .models import Credentials, Outcome

logger = logging.getLogger(__name__)


class CredentialExchanger:
    def __init__(self, client: httpx.AsyncClient, token_url: str) -> None:
        self._client = client
        self.token_url = token_url

    async def _request_token(self, credentials: Credentials) -> str:
        try:
            response = await self._client.post(
                self.token_url,
                auth=httpx.BasicAuth(credentials.client_id or "", credentials.client_secret or ""),
                data={
                    "grant_type": "client_credentials",
                    "scope": f"tsg_id:{credentials.tsg_id}",
                },
            )
        except httpx.HTTPError as exc:
            raise AuthError("Token request failed", detail=str(exc)) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise AuthError(
                f"Token endpoint returned a non-JSON body (HTTP {response.status_code})",
                detail=response.text[:500],
            ) from exc

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(token, str) or not token:
            raise AuthError(
                f"Token endpoint returned no access token (HTTP {response.status_code})",
                detail=response.text[:500],
            )
        return token

    async def exchange(self, credentials: Credentials) -> Outcome[str]:
        """
        Acquire a bearer token for ``credentials``. No retry is attempted.
        """
        try:
            token = await self._request_token(credentials)
        except AuthError as exc:
            logger.error(f"Authentication failed: {exc.message}")
            return Outcome.failure(exc)
        logger.info("Acquired access token")
        return Outcome.success(token)
