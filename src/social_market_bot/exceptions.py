"""Application exception classes."""


class ConfigError(Exception):
    """Raised when configuration is invalid or incomplete."""


class ChainError(Exception):
    """Raised when an RPC call, wallet setup or contract transaction fails."""

    def __init__(
        self,
        message: str,
        *,
        category: str = "unknown",
        transaction_hash: str | None = None,
    ) -> None:
        super().__init__(message)
        self.category = category
        self.transaction_hash = transaction_hash


class SubmissionTimeoutError(ChainError):
    """Raised when a broadcast transaction is not confirmed within the wait bound."""

    def __init__(self, message: str, *, transaction_hash: str, timeout_seconds: float) -> None:
        super().__init__(message, category="timeout", transaction_hash=transaction_hash)
        self.timeout_seconds = timeout_seconds


class ChannelError(Exception):
    """Raised when a social or chat platform API call fails."""


class DeliveryError(ChannelError):
    """Raised by channel adapters when a reply cannot be delivered."""


class JournalError(Exception):
    """Raised when writing to journal files fails."""


class ModelExtractionError(Exception):
    """Raised when the language-model field extractor fails or returns garbage."""
