"""Error taxonomy shared by ingestion, retrieval and metering."""

from __future__ import annotations


class KnowledgeBaseError(Exception):
    """Root of all errors raised deliberately by this package."""


class ValidationError(KnowledgeBaseError):
    """Required input is missing or malformed."""


class ConfigurationError(KnowledgeBaseError):
    """No server-side provider key is available for the credits path."""


class AuthRequiredError(KnowledgeBaseError):
    """The credits path needs a signed-in caller."""


class InsufficientCreditsError(KnowledgeBaseError):
    def __init__(self, needed: int, available: int) -> None:
        super().__init__(
            f"Insufficient credits. You need {needed} credits but have {available}."
        )
        self.needed = needed
        self.available = available


class EmptyContentError(KnowledgeBaseError):
    """A source produced no usable chunks."""


class NoRelevantContextError(KnowledgeBaseError):
    """Retrieval found nothing usable after filtering."""


class UpstreamProviderError(KnowledgeBaseError):
    """An embedding or completion call failed."""

    def __init__(self, operation: str, message: str) -> None:
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation
