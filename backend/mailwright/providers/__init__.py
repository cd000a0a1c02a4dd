from mailwright.providers.circuit_breaker import PersistentCircuitBreaker
from mailwright.providers.gemini import GeminiProvider
from mailwright.providers.gmail import GmailClient
from mailwright.providers.retry import RetryPolicy

__all__ = [
    "GeminiProvider",
    "GmailClient",
    "PersistentCircuitBreaker",
    "RetryPolicy",
]
