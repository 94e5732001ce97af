"""Fitbit OAuth2 client: authorization URL, code exchange, token refresh.

Token calls are single POSTs with HTTP Basic client authentication and a
form body. They are never retried: an authorization code is single-use, and
Fitbit rotates the refresh token on every successful refresh.
"""

from urllib.parse import urlencode

import httpx
import pydantic
import structlog

from shared.config import settings
from shared.exceptions import (
    ProviderNotConfiguredError,
    TokenExchangeFailedError,
    TransportUnreachableError,
)
from integrations.domain.models import TokenSet

logger = structlog.get_logger()


class FitbitOAuthClient:
    source_name = "fitbit"

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        redirect_uri: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.client_id = client_id if client_id is not None else settings.fitbit_client_id
        self.client_secret = (
            client_secret if client_secret is not None else settings.fitbit_client_secret
        )
        self.redirect_uri = (
            redirect_uri if redirect_uri is not None else settings.fitbit_redirect_uri
        )
        self._transport = transport

    def ensure_configured(self) -> None:
        missing = []
        if not self.client_id:
            missing.append("HJ_FITBIT_CLIENT_ID")
        if not self.redirect_uri:
            missing.append("HJ_FITBIT_REDIRECT_URI")
        if missing:
            raise ProviderNotConfiguredError(missing)

    def authorize_url(self) -> str:
        """Consent-screen URL: client id, redirect URI, fixed scopes, response_type=code."""
        self.ensure_configured()
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(settings.fitbit_scopes),
            "expires_in": str(settings.fitbit_token_lifetime_seconds),
        }
        return f"{settings.fitbit_auth_url}?{urlencode(params)}"

    async def _post_token(self, form: dict[str, str]) -> httpx.Response:
        async with httpx.AsyncClient(transport=self._transport) as client:
            return await client.post(
                settings.fitbit_token_url,
                data=form,
                auth=(self.client_id, self.client_secret),
                headers={"Accept": "application/json"},
            )

    @staticmethod
    def _parse_tokens(response: httpx.Response) -> TokenSet:
        return TokenSet.model_validate(response.json())

    async def exchange_code(self, code: str) -> TokenSet:
        """Exchange an authorization code for tokens. Raises TokenExchangeFailedError."""
        form = {
            "client_id": self.client_id,
            "grant_type": "authorization_code",
            "redirect_uri": self.redirect_uri,
            "code": code,
        }
        try:
            response = await self._post_token(form)
        except httpx.HTTPError as exc:
            raise TokenExchangeFailedError(f"transport error: {exc.__class__.__name__}") from exc

        if response.status_code != 200:
            raise TokenExchangeFailedError(f"token endpoint returned HTTP {response.status_code}")
        try:
            tokens = self._parse_tokens(response)
        except (ValueError, pydantic.ValidationError) as exc:
            raise TokenExchangeFailedError("unparseable token response") from exc

        logger.info("token_exchanged", expires_in=tokens.expires_in)
        return tokens

    async def refresh(self, refresh_token: str) -> TokenSet:
        """Refresh-token grant. A rejected refresh means the user must reconnect."""
        form = {"grant_type": "refresh_token", "refresh_token": refresh_token}
        try:
            response = await self._post_token(form)
        except httpx.HTTPError as exc:
            raise TransportUnreachableError(
                f"Token refresh failed: {exc.__class__.__name__}"
            ) from exc

        if response.status_code != 200:
            raise TransportUnreachableError(
                f"Token refresh rejected with HTTP {response.status_code}"
            )
        try:
            tokens = self._parse_tokens(response)
        except (ValueError, pydantic.ValidationError) as exc:
            raise TransportUnreachableError("Token refresh returned an unparseable body") from exc

        logger.info("token_refreshed", expires_in=tokens.expires_in)
        return tokens
