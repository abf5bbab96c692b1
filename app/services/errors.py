"""
Lumen — Compatibility oracle error types.

Every oracle failure the orchestrator must absorb per candidate derives from
``OracleError`` so it can be caught without swallowing programming errors.
"""


class OracleError(Exception):
    """Base class for compatibility oracle failures."""


class OracleResponseError(OracleError):
    """The oracle answered, but the payload was not a usable judgment."""


class OracleUnavailableError(OracleError):
    """Every model in the fallback chain failed for this request."""

    def __init__(self, message: str, last_error: BaseException | None = None) -> None:
        super().__init__(message)
        self.last_error = last_error
