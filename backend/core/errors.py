from typing import Optional


class CrossValError(Exception):
    """Base class for all errors raised by the validation service."""


class ConfigurationError(CrossValError):
    """Tenant configuration is missing or unusable."""


class FetchError(CrossValError):
    """A remote collection could not be retrieved."""

    def __init__(self, source: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"[{source}] {message}")
        self.source = source
        self.status_code = status_code


class RateBudgetExhausted(CrossValError):
    """The daily call budget for a remote API is down to its reserve."""

    def __init__(self, gate_name: str, remaining: int):
        super().__init__(f"Daily call budget for {gate_name} exhausted ({remaining} calls left in reserve)")
        self.gate_name = gate_name
        self.remaining = remaining


class TokenError(CrossValError):
    """No usable Xero credentials for the tenant."""


class InvalidStatusTransition(CrossValError):
    def __init__(self, current: str, target: str):
        super().__init__(f"No valid status transition from {current} to {target}")
        self.current = current
        self.target = target


class QuoteLockedError(CrossValError):
    """Invoiced quotes are never edited or moved by the fixer."""

    def __init__(self, quote_id: Optional[str] = None):
        super().__init__("Cannot modify a quote that has been invoiced")
        self.quote_id = quote_id


class FixError(CrossValError):
    """A fix handler could not apply its write."""


class QuoteStatusLeftError(FixError):
    """A failed write left a quote in a status other than the one it started in."""

    def __init__(self, quote_number: Optional[str], status: str, expected_status: str, cause: Exception):
        super().__init__(f"Quote {quote_number} left in {status} instead of {expected_status}: {cause}")
        self.status = status
        self.expected_status = expected_status
