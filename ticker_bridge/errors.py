from __future__ import annotations


class TickerBridgeError(Exception):
    """Base error for the host service."""

    code = "INTERNAL_ERROR"

    def __init__(self, code: str | None = None, message: str | None = None) -> None:
        if code is not None:
            self.code = code
        super().__init__(message or self.code)


class FetchError(TickerBridgeError):
    """Provider call failed; collapses to an Unavailable marker."""

    code = "FETCH_FAILED"


class NetworkFailure(FetchError):
    code = "NETWORK_FAILURE"


class MalformedResponse(FetchError):
    code = "MALFORMED_RESPONSE"


class MissingField(FetchError):
    code = "MISSING_FIELD"


class RateLimited(FetchError):
    code = "RATE_LIMITED"


class PersistedDataCorrupt(TickerBridgeError):
    code = "PERSISTED_DATA_CORRUPT"


class InvalidCommandParams(TickerBridgeError):
    """The only error class answered to the display as an error Response."""

    code = "INVALID_PARAMS"
