"""Fitbit remote fetch gateway.

For one access token and one calendar date, fetch the four daily
endpoints concurrently. Each domain resolves to a DomainOutcome:

- success: 2xx with a JSON object that holds data for the date
- empty:   2xx, nothing logged for that date/domain
- failed:  transport error, error status, or unparseable body

A failure is flagged unreachable when the token was rejected (401/403) or
no response came back at all; only a date whose four domains are all
unreachable stops a sync.

The gateway never raises for a domain failure; one slow or failing
endpoint does not cancel or block its siblings.
"""

import asyncio
from datetime import date

import httpx
import structlog

from shared.config import settings
from shared.metrics import provider_api_duration_seconds, provider_requests_total
from integrations.adapters.fitbit_mapper import is_empty
from integrations.adapters.http_client import TransientHTTPError, fetch_with_retry
from integrations.domain.models import DayFetch, Domain, DomainOutcome, FetchStatus

logger = structlog.get_logger()

ENDPOINTS: dict[Domain, str] = {
    Domain.ACTIVITY: "/activities/date/{day}.json",
    Domain.WEIGHT: "/body/log/weight/date/{day}.json",
    Domain.FOOD: "/foods/log/date/{day}.json",
    Domain.SLEEP: "/sleep/date/{day}.json",
}

# Fitbit rejected the bearer token; no other domain for the date will fare better
AUTH_REJECTED_CODES = {401, 403}


class FitbitGateway:
    source_name = "fitbit"

    def __init__(
        self,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = (base_url or settings.fitbit_api_base_url).rstrip("/")
        self._transport = transport

    def url_for(self, domain: Domain, day: date) -> str:
        return self.base_url + ENDPOINTS[domain].format(day=day.isoformat())

    async def fetch_day(self, access_token: str, day: date) -> DayFetch:
        """Fetch all four domains for one date; always returns a full DayFetch."""
        headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
        domains = list(ENDPOINTS)

        async with httpx.AsyncClient(transport=self._transport, headers=headers) as client:
            results = await asyncio.gather(
                *(self._fetch_domain(client, domain, day) for domain in domains),
                return_exceptions=True,
            )

        outcomes: dict[Domain, DomainOutcome] = {}
        for domain, result in zip(domains, results, strict=True):
            if isinstance(result, DomainOutcome):
                outcomes[domain] = result
            else:
                logger.error("domain_fetch_crashed", domain=domain.value, error=repr(result))
                outcomes[domain] = DomainOutcome.failed(domain, repr(result))

        return DayFetch(
            day=day,
            activity=outcomes[Domain.ACTIVITY],
            weight=outcomes[Domain.WEIGHT],
            food=outcomes[Domain.FOOD],
            sleep=outcomes[Domain.SLEEP],
        )

    async def _fetch_domain(
        self, client: httpx.AsyncClient, domain: Domain, day: date
    ) -> DomainOutcome:
        try:
            with provider_api_duration_seconds.labels(domain=domain.value).time():
                response = await fetch_with_retry(client, "GET", self.url_for(domain, day))
            payload = response.json()
            if not isinstance(payload, dict):
                raise ValueError(f"expected a JSON object, got {type(payload).__name__}")
            empty = is_empty(domain, payload)
        except httpx.HTTPStatusError as exc:
            code = exc.response.status_code
            outcome = DomainOutcome.failed(
                domain, f"HTTP {code}", status_code=code, unreachable=code in AUTH_REJECTED_CODES
            )
        except TransientHTTPError as exc:
            outcome = DomainOutcome.failed(domain, str(exc), status_code=exc.status_code)
        except httpx.HTTPError as exc:
            outcome = DomainOutcome.failed(
                domain, f"transport error: {exc.__class__.__name__}", unreachable=True
            )
        except (ValueError, TypeError, AttributeError) as exc:
            outcome = DomainOutcome.failed(domain, f"unparseable response: {exc}")
        else:
            outcome = DomainOutcome.empty(domain) if empty else DomainOutcome.success(domain, payload)

        provider_requests_total.labels(domain=domain.value, status=outcome.status.value).inc()
        if outcome.status == FetchStatus.FAILED:
            logger.warning(
                "domain_fetch_failed",
                domain=domain.value,
                date=day.isoformat(),
                error=outcome.error,
                status_code=outcome.status_code,
            )
        return outcome
