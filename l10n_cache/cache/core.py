"""
Core cache data structures.
"""
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

# Returned when every tier came back empty. Always valid JSON.
EMPTY_PAYLOAD = b"{}"

FETCHED_AT_SUFFIX = ":fetched_utc"


class ResourceType(Enum):
    """Kinds of upstream resources the cache serves."""
    LANGUAGES = "languages"
    TRANSLATIONS = "translations"


class OutputMode(Enum):
    """Shape of an exported translation file."""
    FLAT = "flat"       # "a.b.c": "..."
    NESTED = "nested"   # {"a": {"b": {"c": "..."}}}

    @classmethod
    def from_nested(cls, nested: bool) -> "OutputMode":
        return cls.NESTED if nested else cls.FLAT

    @property
    def is_nested(self) -> bool:
        return self is OutputMode.NESTED


class CacheSource(Enum):
    """Tier that produced a payload."""
    PRIMARY = "primary"   # Redis
    DURABLE = "durable"   # S3 latest pointer
    ORIGIN = "origin"     # Tolgee
    EMPTY = "empty"       # every tier failed, sentinel returned


@dataclass(frozen=True)
class CacheKey:
    """
    Identifies one logical upstream resource.

    Renders as ``languages:<app>`` or ``translations:<app>:<lang>:<mode>``.
    Colons are rejected inside the parts so two different keys can never
    render to the same string.
    """
    resource: ResourceType
    app_id: str
    lang: Optional[str] = None
    mode: Optional[OutputMode] = None

    def __post_init__(self):
        if ":" in self.app_id:
            raise ValueError(f"app id may not contain ':': {self.app_id!r}")
        if self.resource is ResourceType.TRANSLATIONS:
            if not self.lang or self.mode is None:
                raise ValueError("translations key needs a language and an output mode")
            if ":" in self.lang:
                raise ValueError(f"language tag may not contain ':': {self.lang!r}")
        elif self.lang is not None or self.mode is not None:
            raise ValueError("languages key takes no language or output mode")

    @classmethod
    def languages(cls, app_id: str) -> "CacheKey":
        return cls(ResourceType.LANGUAGES, app_id)

    @classmethod
    def translations(cls, app_id: str, lang: str, mode: OutputMode) -> "CacheKey":
        return cls(ResourceType.TRANSLATIONS, app_id, lang, mode)

    @property
    def fetched_at_key(self) -> str:
        """Sidecar key holding the fetch time in unix seconds."""
        return f"{self}{FETCHED_AT_SUFFIX}"

    def with_lang(self, lang: str) -> "CacheKey":
        """Same resource and mode for a different language."""
        return CacheKey.translations(self.app_id, lang, self.mode)

    def __str__(self) -> str:
        if self.resource is ResourceType.LANGUAGES:
            return f"languages:{self.app_id}"
        return f"translations:{self.app_id}:{self.lang}:{self.mode.value}"


@dataclass
class CacheEntry:
    """
    A payload held in the primary cache with its fetch time.
    """
    payload: bytes
    fetched_at: Optional[int]  # unix seconds, UTC; None when unknown
    ttl_seconds: int

    def age_seconds(self, now: Optional[float] = None) -> Optional[float]:
        """Seconds since data was fetched."""
        if self.fetched_at is None:
            return None
        now = time.time() if now is None else now
        return now - self.fetched_at


@dataclass
class LookupResult:
    """Payload plus the tier that produced it."""
    payload: bytes
    source: CacheSource
    fetched_at: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return self.source is CacheSource.EMPTY


class Deadline:
    """
    Absolute point in time after which no further tier calls are made.

    Built from a relative budget; tier calls clamp their own timeouts with
    ``bound()`` so a lookup never runs past the caller's budget.
    """

    def __init__(self, seconds: float):
        self.seconds = seconds
        self._expires_at = time.monotonic() + seconds

    def remaining(self) -> float:
        return max(0.0, self._expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0

    def bound(self, timeout: float) -> float:
        """Smaller of ``timeout`` and the time left."""
        return min(timeout, self.remaining())

    def __repr__(self) -> str:
        return f"Deadline(remaining={self.remaining():.3f}s)"


def bound_timeout(timeout: float, deadline: Optional[Deadline]) -> float:
    """Clamp a per-call timeout to an optional deadline."""
    if deadline is None:
        return timeout
    return deadline.bound(timeout)


def unix_now() -> int:
    """Current UTC time in whole unix seconds."""
    return int(time.time())
