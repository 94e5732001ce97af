"""In-memory stores and mock Fitbit transports for unit tests."""

from collections.abc import Callable
from datetime import date, datetime
from typing import Any
from uuid import UUID

import httpx

from shared.config import settings
from integrations.adapters.fitbit_gateway import FitbitGateway
from integrations.adapters.fitbit_oauth import FitbitOAuthClient
from integrations.domain.models import CanonicalRecord, IntegrationRecord, Provider, TokenSet

CLIENT_ID = "test-client"
CLIENT_SECRET = "test-secret"
REDIRECT_URI = "http://testserver/api/v1/fitbit/callback"


class InMemoryIntegrationStore:
    def __init__(self, *records: IntegrationRecord):
        self.rows: dict[tuple[UUID, Provider], IntegrationRecord] = {
            (r.user_id, r.provider): r for r in records
        }

    async def get(self, user_id: UUID, provider: Provider) -> IntegrationRecord | None:
        row = self.rows.get((user_id, provider))
        return row if row is not None and row.is_active else None

    async def upsert(self, record: IntegrationRecord) -> IntegrationRecord:
        existing = self.rows.get((record.user_id, record.provider))
        row = record.model_copy(
            update={
                "is_active": True,
                "consecutive_failures": 0,
                "last_sync": existing.last_sync if existing else record.last_sync,
            }
        )
        self.rows[(record.user_id, record.provider)] = row
        return row

    async def update_tokens(
        self, user_id: UUID, provider: Provider, tokens: TokenSet, now: datetime
    ) -> None:
        row = self.rows[(user_id, provider)]
        update: dict[str, Any] = {
            "access_token": tokens.access_token,
            "expires_at": tokens.expires_at(now),
        }
        if tokens.refresh_token:
            update["refresh_token"] = tokens.refresh_token
        self.rows[(user_id, provider)] = row.model_copy(update=update)

    async def record_sync(
        self, user_id: UUID, provider: Provider, at: datetime, failed: bool
    ) -> IntegrationRecord | None:
        row = self.rows.get((user_id, provider))
        if row is None:
            return None
        failures = row.consecutive_failures + 1 if failed else 0
        row = row.model_copy(update={"last_sync": at, "consecutive_failures": failures})
        self.rows[(user_id, provider)] = row
        return row

    async def deactivate(self, user_id: UUID, provider: Provider) -> bool:
        row = self.rows.get((user_id, provider))
        if row is None or not row.is_active:
            return False
        self.rows[(user_id, provider)] = row.model_copy(update={"is_active": False})
        return True


class InMemoryRecordStore:
    def __init__(self):
        self.rows: dict[tuple[type, UUID, date], CanonicalRecord] = {}
        self.inserts = 0
        self.replacements = 0

    async def upsert(self, record: CanonicalRecord) -> bool:
        key = (type(record), record.user_id, record.date)
        inserted = key not in self.rows
        self.rows[key] = record
        if inserted:
            self.inserts += 1
        else:
            self.replacements += 1
        return inserted

    def of(self, record_type: type) -> list[CanonicalRecord]:
        return sorted(
            (r for (kind, _, _), r in self.rows.items() if kind is record_type),
            key=lambda r: r.date,
        )


Reply = dict[str, Any] | list | int | httpx.Response | Exception


def _to_response(reply: Reply, request: httpx.Request) -> httpx.Response:
    if isinstance(reply, Exception):
        raise reply
    if isinstance(reply, httpx.Response):
        # fresh copy: one canned reply may serve several requests
        return httpx.Response(reply.status_code, headers=reply.headers, content=reply.content)
    if isinstance(reply, int):
        return httpx.Response(reply, json={"errors": [{"errorType": "test"}]})
    return httpx.Response(200, json=reply)


def fitbit_api(
    responses: dict[str, Reply], calls: list[httpx.Request] | None = None
) -> httpx.MockTransport:
    """MockTransport serving the daily endpoints.

    Keys are URL path fragments, matched in insertion order (put date-specific
    keys first). Dict/list values are 200 JSON bodies, ints are bare error
    statuses, exceptions are raised. Unmatched paths get an empty 200 object.
    """

    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        for fragment, reply in responses.items():
            if fragment in request.url.path:
                return _to_response(reply, request)
        return httpx.Response(200, json={})

    return httpx.MockTransport(handler)


def token_endpoint(
    reply: Reply | Callable[[httpx.Request], httpx.Response],
    calls: list[httpx.Request] | None = None,
) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        if callable(reply):
            return reply(request)
        return _to_response(reply, request)

    return httpx.MockTransport(handler)


def token_payload(access: str = "new-access", refresh: str | None = "new-refresh") -> dict:
    body = {"access_token": access, "expires_in": 28800, "token_type": "Bearer", "user_id": "ABC"}
    if refresh is not None:
        body["refresh_token"] = refresh
    return body


def form_of(request: httpx.Request) -> dict[str, str]:
    return dict(httpx.QueryParams(request.content.decode()))


def make_gateway(transport: httpx.MockTransport) -> FitbitGateway:
    return FitbitGateway(base_url=settings.fitbit_api_base_url, transport=transport)


def make_oauth(
    transport: httpx.MockTransport | None = None, client_id: str = CLIENT_ID
) -> FitbitOAuthClient:
    return FitbitOAuthClient(
        client_id=client_id,
        client_secret=CLIENT_SECRET,
        redirect_uri=REDIRECT_URI,
        transport=transport,
    )