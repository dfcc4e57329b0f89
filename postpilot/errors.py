"""Exceptions raised inside provider clients.

Components convert these into result objects at their boundaries; they are
not meant to escape the dispatcher, the poller or the task runner.
"""


class ProviderError(Exception):
    """Raised when an external provider call fails.

    Attributes:
        provider: Short provider name (``"replicate"``, ``"shotstack"``, ...).
        status_code: HTTP status when the failure came from a response.
        transient: True for network errors, rate limits and 5xx responses.
    """

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        status_code: int | None = None,
        transient: bool = False,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.transient = transient

    def __str__(self) -> str:
        return f"{self.provider}: {self.args[0]}"


class ProviderNotConfiguredError(ProviderError):
    """Raised when a provider is called without its credentials set."""

    def __init__(self, provider: str, setting: str) -> None:
        super().__init__(provider, f"{setting} is not set")
        self.setting = setting


def is_transient_status(status_code: int) -> bool:
    """Return True for HTTP statuses worth retrying (rate limit, server error)."""
    return status_code == 429 or status_code >= 500
