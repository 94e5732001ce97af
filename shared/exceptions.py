"""RFC 9457 Problem Details exception hierarchy.

All API errors extend ProblemDetailError and are converted to
application/problem+json responses by the exception handler middleware.

Handoff errors carry `restart=True`: the client must begin the OAuth flow
again. Credential errors carry `reconnect=True`: the stored token is no
longer usable and the user has to re-authorize.
"""

from typing import Any

PROBLEM_BASE = "https://api.healthjournal.app/problems"


class ProblemDetailError(Exception):
    def __init__(
        self,
        type_uri: str,
        title: str,
        status: int,
        detail: str,
        extensions: dict[str, Any] | None = None,
    ):
        self.type_uri = type_uri
        self.title = title
        self.status = status
        self.detail = detail
        self.extensions = extensions or {}
        super().__init__(detail)


# --- OAuth handoff (terminal for the attempt, ephemeral state is cleared) ---


class SessionExpiredError(ProblemDetailError):
    def __init__(self):
        super().__init__(
            type_uri=f"{PROBLEM_BASE}/session-expired",
            title="Connection Session Expired",
            status=400,
            detail="Connection session expired. Please try connecting again.",
            extensions={"restart": True},
        )


class AuthorizationDeniedError(ProblemDetailError):
    def __init__(self, provider_error: str):
        self.provider_error = provider_error
        super().__init__(
            type_uri=f"{PROBLEM_BASE}/authorization-denied",
            title="Authorization Denied",
            status=400,
            detail=f"Fitbit authorization failed: {provider_error}",
            extensions={"restart": True, "provider_error": provider_error},
        )


class MissingCodeError(ProblemDetailError):
    def __init__(self):
        super().__init__(
            type_uri=f"{PROBLEM_BASE}/missing-code",
            title="Missing Authorization Code",
            status=400,
            detail="No authorization code received from Fitbit.",
            extensions={"restart": True},
        )


class TokenExchangeFailedError(ProblemDetailError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(
            type_uri=f"{PROBLEM_BASE}/token-exchange-failed",
            title="Token Exchange Failed",
            status=502,
            detail=f"Could not exchange the authorization code: {reason}",
            extensions={"restart": True},
        )


class ConnectionFailedError(ProblemDetailError):
    """The callback broke for a reason of our own, such as a storage failure."""

    def __init__(self):
        super().__init__(
            type_uri=f"{PROBLEM_BASE}/connection-failed",
            title="Connection Failed",
            status=500,
            detail="The Fitbit connection could not be saved. Please try connecting again.",
            extensions={"restart": True},
        )


# --- Synchronization ---


class DomainFetchFailedError(ProblemDetailError):
    """One domain for one date could not be fetched or parsed.

    Recoverable: absorbed into the sync outcome, never raised past the
    orchestrator.
    """

    def __init__(self, domain: str, reason: str):
        self.domain = domain
        self.reason = reason
        super().__init__(
            type_uri=f"{PROBLEM_BASE}/domain-fetch-failed",
            title="Domain Fetch Failed",
            status=502,
            detail=f"Fetching {domain} failed: {reason}",
        )


class TransportUnreachableError(ProblemDetailError):
    def __init__(self, detail: str):
        super().__init__(
            type_uri=f"{PROBLEM_BASE}/transport-unreachable",
            title="Fitbit Unreachable",
            status=401,
            detail=detail,
            extensions={"reconnect": True},
        )


class IntegrationNotFoundError(ProblemDetailError):
    def __init__(self, user_id: str, provider: str):
        super().__init__(
            type_uri=f"{PROBLEM_BASE}/integration-not-found",
            title="Integration Not Found",
            status=404,
            detail=f"No active {provider} integration for user {user_id}",
        )


class SyncInProgressError(ProblemDetailError):
    def __init__(self, user_id: str):
        super().__init__(
            type_uri=f"{PROBLEM_BASE}/sync-in-progress",
            title="Sync In Progress",
            status=409,
            detail=f"A sync is already running for user {user_id}",
        )


class InvalidSyncWindowError(ProblemDetailError):
    def __init__(self, days: int, maximum: int):
        super().__init__(
            type_uri=f"{PROBLEM_BASE}/invalid-sync-window",
            title="Invalid Sync Window",
            status=400,
            detail=f"Parameter 'days' ({days}) must be between 1 and {maximum}",
        )


class ProviderNotConfiguredError(ProblemDetailError):
    def __init__(self, missing: list[str]):
        super().__init__(
            type_uri=f"{PROBLEM_BASE}/provider-not-configured",
            title="Provider Not Configured",
            status=500,
            detail=f"Fitbit integration is not configured. Missing: {', '.join(missing)}",
        )
