"""
Error types for the localization cache.

Only SignatureInvalid ever reaches a client (as a 401). Every other error is
raised inside a tier and absorbed by the orchestrator, which treats the tier
as having nothing for the key.
"""
from typing import Optional


class CacheError(Exception):
    """Base class for all cache errors."""

    def __init__(self, message: str, tier: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.tier = tier

    def __str__(self) -> str:
        if self.tier:
            return f"[{self.tier}] {self.message}"
        return self.message


class ConfigError(CacheError):
    """A tier is missing required configuration and has been disabled."""


class TransientTierError(CacheError):
    """Timeout or transport failure talking to a tier."""


class OriginSoftFailure(CacheError):
    """Upstream answered with a non-2xx status or an empty body."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, tier="origin")
        self.status_code = status_code


class DecodeError(CacheError):
    """A payload could not be parsed where structured fields were needed."""


class SignatureInvalid(CacheError):
    """Webhook signature is missing, malformed, wrong, or too old."""

    def __init__(self, message: str = "invalid webhook signature"):
        super().__init__(message, tier="webhook")
