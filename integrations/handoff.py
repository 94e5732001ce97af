"""OAuth handoff coordinator.

Connecting Fitbit needs a full browser navigation away to the consent
screen and back to the callback route. The only thing that survives the
round trip is the browser session, so the coordinator records *who*
started the connection there (PendingConnection) right before the
redirect and consumes it on the callback.

The session is passed in explicitly (any mutable mapping; in the app it is
the signed-cookie `request.session`). PendingConnection is cleared on every
callback exit path: stale state would hijack the next attempt.
"""

from collections.abc import Callable, Mapping, MutableMapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import structlog

from shared.exceptions import (
    AuthorizationDeniedError,
    ConnectionFailedError,
    MissingCodeError,
    ProblemDetailError,
    SessionExpiredError,
    TokenExchangeFailedError,
)
from shared.metrics import oauth_callbacks_total
from integrations.adapters.fitbit_oauth import FitbitOAuthClient
from integrations.domain.models import IntegrationRecord, PendingConnection, Provider
from integrations.protocol import IntegrationStore

logger = structlog.get_logger()

CONNECTING_USER_ID_KEY = "fitbit_connecting_user_id"
CONNECTING_USER_NAME_KEY = "fitbit_connecting_user_name"
CALLBACK_EXPECTED_KEY = "fitbit_callback_expected"

_CALLBACK_FAILURES: dict[type[ProblemDetailError], str] = {
    SessionExpiredError: "session_expired",
    AuthorizationDeniedError: "denied",
    MissingCodeError: "missing_code",
    TokenExchangeFailedError: "exchange_failed",
}


class PendingConnectionStore:
    """PendingConnection kept in a browser-session key/value mapping."""

    def __init__(self, session: MutableMapping[str, Any]):
        self._session = session

    def save(self, pending: PendingConnection) -> None:
        self._session[CONNECTING_USER_ID_KEY] = str(pending.connecting_user_id)
        self._session[CONNECTING_USER_NAME_KEY] = pending.connecting_user_name
        self._session[CALLBACK_EXPECTED_KEY] = pending.callback_expected

    def load(self) -> PendingConnection | None:
        raw_id = self._session.get(CONNECTING_USER_ID_KEY)
        if not raw_id:
            return None
        try:
            user_id = UUID(str(raw_id))
        except ValueError:
            return None
        return PendingConnection(
            connecting_user_id=user_id,
            connecting_user_name=self._session.get(CONNECTING_USER_NAME_KEY) or "",
            callback_expected=bool(self._session.get(CALLBACK_EXPECTED_KEY, False)),
        )

    def clear(self) -> None:
        for key in (CONNECTING_USER_ID_KEY, CONNECTING_USER_NAME_KEY, CALLBACK_EXPECTED_KEY):
            self._session.pop(key, None)


@dataclass(frozen=True)
class ConnectionRedirect:
    """Where the caller must navigate to start the consent flow."""

    url: str
    pending: PendingConnection


@dataclass(frozen=True)
class ConnectionResult:
    integration: IntegrationRecord
    connecting_user_id: UUID
    connecting_user_name: str
    # Set when the active application user changed during the redirect;
    # the caller must make this user active again.
    switch_active_user_to: UUID | None = None

    @property
    def message(self) -> str:
        return f"Fitbit account connected successfully for {self.connecting_user_name}!"


class HandoffCoordinator:
    provider = Provider.FITBIT

    def __init__(
        self,
        oauth: FitbitOAuthClient,
        integrations: IntegrationStore,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.oauth = oauth
        self.integrations = integrations
        self._clock = clock or (lambda: datetime.now(UTC))

    def begin_connection(
        self, session: MutableMapping[str, Any], user_id: UUID, user_name: str
    ) -> ConnectionRedirect:
        """Record the connecting user, then hand back the consent-screen URL.

        Overwrites any earlier PendingConnection in this session.
        """
        url = self.oauth.authorize_url()
        pending = PendingConnection(connecting_user_id=user_id, connecting_user_name=user_name)
        PendingConnectionStore(session).save(pending)
        logger.info("connection_started", provider=self.provider.value, user_id=str(user_id))
        return ConnectionRedirect(url=url, pending=pending)

    async def complete_connection(
        self,
        session: MutableMapping[str, Any],
        query_params: Mapping[str, str],
        current_user_id: UUID | None,
    ) -> ConnectionResult:
        """Finish the callback: validate, exchange the code, store the integration.

        Raises SessionExpiredError, AuthorizationDeniedError, MissingCodeError
        or TokenExchangeFailedError. Anything else becomes ConnectionFailedError,
        so every failure renders as a handled response and the cleared session
        cookie reaches the browser. PendingConnection is gone afterwards
        whatever happens.
        """
        store = PendingConnectionStore(session)
        try:
            pending = store.load()
            if pending is None:
                raise SessionExpiredError()

            error = query_params.get("error")
            if error:
                raise AuthorizationDeniedError(error)

            code = query_params.get("code")
            if not code:
                raise MissingCodeError()

            tokens = await self.oauth.exchange_code(code)
            record = await self.integrations.upsert(
                IntegrationRecord(
                    user_id=pending.connecting_user_id,
                    provider=self.provider,
                    access_token=tokens.access_token,
                    refresh_token=tokens.refresh_token,
                    expires_at=tokens.expires_at(self._clock()),
                )
            )

            switch_to = None
            if current_user_id != pending.connecting_user_id:
                switch_to = pending.connecting_user_id
                logger.info(
                    "active_user_mismatch",
                    connecting_user_id=str(pending.connecting_user_id),
                    current_user_id=str(current_user_id) if current_user_id else None,
                )

            oauth_callbacks_total.labels(provider=self.provider.value, outcome="connected").inc()
            logger.info(
                "connection_completed",
                provider=self.provider.value,
                user_id=str(pending.connecting_user_id),
            )
            return ConnectionResult(
                integration=record,
                connecting_user_id=pending.connecting_user_id,
                connecting_user_name=pending.connecting_user_name,
                switch_active_user_to=switch_to,
            )
        except ProblemDetailError as exc:
            outcome = _CALLBACK_FAILURES.get(type(exc), "error")
            oauth_callbacks_total.labels(provider=self.provider.value, outcome=outcome).inc()
            logger.warning("connection_failed", provider=self.provider.value, outcome=outcome)
            raise
        except Exception as exc:
            oauth_callbacks_total.labels(provider=self.provider.value, outcome="error").inc()
            logger.exception("connection_crashed", provider=self.provider.value)
            raise ConnectionFailedError() from exc
        finally:
            store.clear()
