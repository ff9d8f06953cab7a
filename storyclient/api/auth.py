"""Thin wrapper over the identity endpoints used by the session provider."""

from __future__ import annotations

from storyclient.api.base import BaseApiClient
from storyclient.common.errors import AuthError, NotFoundError, ValidationError
from storyclient.common.logging import get_logger
from storyclient.common.models import TokenPair

logger = get_logger(__name__)


class AuthApiClient(BaseApiClient):
    """Credential lifecycle calls: verify, refresh and sign out."""

    async def verify_token(self, credential: str) -> bool:
        """Ask the server whether ``credential`` is still accepted."""
        try:
            data = await self._request(
                "POST",
                "/auth/verify-token",
                route="verify_token",
                json_body={"firebase_token": credential},
            )
        except AuthError:
            return False
        return bool(data.get("success"))

    async def refresh_token(self, refresh_credential: str) -> TokenPair:
        """Exchange a refresh credential for a new credential pair.

        Raises:
            AuthError: if the refresh credential is rejected
            NetworkError, ServerError: if the server could not be reached
        """
        try:
            data = await self._request(
                "POST",
                "/auth/refresh-token",
                route="refresh_token",
                json_body={"refresh_token": refresh_credential},
            )
        except (ValidationError, NotFoundError) as e:
            raise AuthError(f"Token refresh rejected: {e.message}", e.status_code) from e

        credential = data.get("firebase_token")
        if not data.get("success") or not credential:
            raise AuthError(data.get("message") or "Token refresh failed")
        return TokenPair(
            credential=credential,
            refresh_credential=data.get("refresh_token") or refresh_credential,
        )

    async def sign_out(self, credential: str) -> None:
        """Tell the server the session is over."""
        await self._request(
            "POST",
            "/auth/signout",
            route="sign_out",
            credential=credential,
            json_body={"firebase_token": credential},
        )
        logger.info("server_sign_out_sent")
