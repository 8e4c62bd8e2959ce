"""
Sage Companion — Error Taxonomy

Every remote adapter raises one of these; every pipeline boundary knows
which ones to retry, which to fall through, and which to surface.

  ConfigurationError      missing/invalid credential or target resource.
                          Never retried, always logged for the operator.
  TransientProviderError  timeout, 5xx, rate limit. Retried by RetryPolicy.
  CapacityError           provider concurrent-session cap reached.
                          Triggers cleanup-then-retry in the avatar broker.
  ValidationError         malformed request payload. Carries the request and
                          response detail for diagnosis; not retried.
"""

from __future__ import annotations

from typing import Any, List, Optional, Tuple


class CompanionError(Exception):
    """Base class for orchestrator errors."""

    def __init__(
        self,
        message: str,
        *,
        provider: str = "",
        status_code: Optional[int] = None,
    ) -> None:
        self.provider = provider
        self.status_code = status_code
        super().__init__(message)


class ConfigurationError(CompanionError):
    """Credential or remote resource is missing or invalid."""


class TransientProviderError(CompanionError):
    """Provider temporarily unavailable. Safe to retry."""


class CapacityError(CompanionError):
    """Provider refused a new session: concurrent-session cap reached."""


class ValidationError(CompanionError):
    """Provider rejected the request payload."""

    def __init__(
        self,
        message: str,
        *,
        provider: str = "",
        status_code: Optional[int] = None,
        request: Any = None,
        response: Any = None,
    ) -> None:
        super().__init__(message, provider=provider, status_code=status_code)
        self.request = request
        self.response = response


class NoActiveSessionError(CompanionError):
    """An operation needs a conversation session but none is open."""


class ChainExhaustedError(CompanionError):
    """Every strategy in a chain failed or was rejected."""

    def __init__(self, chain: str, failures: List[Tuple[str, str]]) -> None:
        self.chain = chain
        self.failures = failures
        detail = "; ".join(f"{name}: {reason}" for name, reason in failures)
        super().__init__(f"{chain} exhausted ({detail})")
