"""
Engine Exceptions

Most failures in the cache cascade are soft: a tier that errors is logged
and skipped. These exceptions cover the cases that do propagate.
"""


class BookEngineError(Exception):
    """Base class for errors raised by the book engine."""


class ProviderError(BookEngineError):
    """
    An external provider returned something unusable.

    Adapters catch this themselves and degrade to None / []; it is only
    raised out of the lower-level request helpers.
    """

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class ConfigurationError(BookEngineError):
    """A required resource was used without being configured."""
