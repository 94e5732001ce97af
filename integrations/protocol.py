"""Storage interfaces consumed by the handoff coordinator and sync orchestrator.

The Postgres repositories implement these; tests substitute in-memory fakes.
The domain layer depends only on the protocols, never on the repositories.
"""

from datetime import datetime
from typing import Protocol, runtime_checkable
from uuid import UUID

from integrations.domain.models import (
    CanonicalRecord,
    IntegrationRecord,
    Provider,
    TokenSet,
)


@runtime_checkable
class IntegrationStore(Protocol):
    """Credential + sync-metadata rows, unique per (user, provider)."""

    async def get(self, user_id: UUID, provider: Provider) -> IntegrationRecord | None:
        """Return the active record for (user, provider), or None."""
        ...

    async def upsert(self, record: IntegrationRecord) -> IntegrationRecord:
        """Insert, or update tokens/expiry and re-activate on (user, provider) conflict."""
        ...

    async def update_tokens(
        self, user_id: UUID, provider: Provider, tokens: TokenSet, now: datetime
    ) -> None: ...

    async def record_sync(
        self, user_id: UUID, provider: Provider, at: datetime, failed: bool
    ) -> IntegrationRecord | None:
        """Set last_sync; bump or reset the consecutive failure counter."""
        ...

    async def deactivate(self, user_id: UUID, provider: Provider) -> bool:
        """Soft delete: clear is_active. Returns False if nothing was active."""
        ...


@runtime_checkable
class DomainRecordStore(Protocol):
    """Canonical per-day records, unique per (user, date) within a domain."""

    async def upsert(self, record: CanonicalRecord) -> bool:
        """Insert or fully replace the record for its (user, date).

        Returns True if a new row was inserted, False if one was replaced.
        """
        ...
