"""Error taxonomy for the wallet orchestration layer."""

from typing import Any, Optional


class WalletHubError(Exception):
    """Base class for wallet hub errors.

    ``status_code`` is the HTTP status the API layer answers with.
    """

    status_code = 500

    def __init__(self, message: str, raw_details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.raw_details = raw_details

    @property
    def kind(self) -> str:
        return type(self).__name__


class ServiceUnavailable(WalletHubError):
    """Raised before any I/O when custody credentials are not configured."""

    status_code = 503


class PreconditionFailed(WalletHubError):
    """Raised when the caller supplied insufficient input."""

    status_code = 422


class ProviderError(WalletHubError):
    """The custody provider was reached but rejected or errored."""

    status_code = 502
    outcome_unknown = False


class ProviderTimeout(ProviderError):
    """The call timed out; it may or may not have been applied server-side."""

    status_code = 504
    outcome_unknown = True


class MalformedResponse(WalletHubError):
    """The provider replied with no recognizable shape.

    Whatever the call did server-side is unknown.
    """

    status_code = 502
    outcome_unknown = True


class DuplicateEntity(WalletHubError):
    status_code = 409


class UnknownPatient(WalletHubError):
    status_code = 404


class FundingSourceUnavailable(WalletHubError):
    status_code = 409


class DestinationUnresolvable(WalletHubError):
    status_code = 422


class NotFound(WalletHubError):
    status_code = 404
