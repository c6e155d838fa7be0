# packages/quant_lib/errors.py


class ScannerError(Exception):
    """Base class for every error raised inside the scanner."""


class ProviderError(ScannerError):
    """A data source could not produce a usable series."""

    def __init__(self, provider: str, reason: str):
        self.provider = provider
        self.reason = reason
        super().__init__(f"[{provider}] {reason}")


class ProviderUnavailable(ProviderError):
    """
    The provider cannot serve this request at all (no credential, venue not covered).
    The chain skips it silently; it is not counted as an error.
    """


class ProviderTransientFailure(ProviderError):
    """Timeout, HTTP error, malformed payload or rate-limit response."""


class InsufficientHistory(ProviderError):
    """The provider answered, but with fewer bars than the configured minimum."""

    def __init__(self, provider: str, received: int, required: int):
        self.received = received
        self.required = required
        super().__init__(provider, f"only {received} bars (need {required})")


class PersistenceFailure(ScannerError):
    """Writing to the result store failed."""


class UniverseError(ScannerError):
    """The symbol universe could not be built. Fatal for a run."""
