"""
Market Bot - Exception Hierarchy
=================================
All errors raised by the retrieval and chat layers derive from
``MarketBotError`` so the HTTP layer can catch them in one place.

``EmbeddingError`` and ``StorageQueryError`` are absorbed by the
``Retriever`` and surface only as an ``ERROR`` retrieval result.
``UninitializedProviderError`` is a programming error and is never
absorbed.
"""


class MarketBotError(Exception):
    """Base class for every Market Bot error."""


class UninitializedProviderError(MarketBotError):
    """An embedding was requested before the provider finished loading."""


class EmbeddingError(MarketBotError):
    """The feature-extraction model failed to load or to encode text."""


class StorageQueryError(MarketBotError):
    """The similarity ranking query against the passage table failed."""


class InvalidConversationError(MarketBotError):
    """The incoming conversation has no usable last user message."""
