"""
Main cache orchestration: Redis, then S3 latest, then Tolgee.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from ..errors import DecodeError, TransientTierError
from ..origin import TolgeeClient, parse_languages
from .coalescer import RequestCoalescer
from .core import (
    EMPTY_PAYLOAD,
    CacheKey,
    CacheSource,
    Deadline,
    LookupResult,
    OutputMode,
    ResourceType,
    unix_now,
)
from .durable import DurableVersionedStore
from .primary import PrimaryCache
from .refresher import BackgroundRefresher

logger = logging.getLogger("cache.manager")

FORCE_SUFFIX = ":force"


def _isoformat(moment: datetime) -> str:
    return moment.isoformat(timespec="seconds")


@dataclass
class RebuildSummary:
    """Outcome of a forced rebuild of every language of one project."""
    app: str
    started_at: str
    languages: List[str] = field(default_factory=list)
    refreshed: int = 0
    failures: List[str] = field(default_factory=list)
    finished_at: Optional[str] = None

    def finish(self) -> "RebuildSummary":
        self.finished_at = _isoformat(datetime.now(timezone.utc))
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "app": self.app,
            "languages": list(self.languages),
            "refreshed": self.refreshed,
            "failures": list(self.failures),
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }


class CacheOrchestrator:
    """
    Read-through cache over three tiers:
    - Primary: Redis, per-key TTL and fetched-at sidecar
    - Durable: S3 latest pointer plus immutable versions
    - Origin: Tolgee

    A deeper tier's answer is written back to every shallower tier. Any tier
    failure counts as "nothing here" and the chain moves on; when all tiers
    come back empty the caller gets EMPTY_PAYLOAD.

    The primary and durable tiers are optional; pass None to run without.
    """

    def __init__(
        self,
        origin: TolgeeClient,
        coalescer: RequestCoalescer,
        refresher: BackgroundRefresher,
        primary: Optional[PrimaryCache] = None,
        durable: Optional[DurableVersionedStore] = None,
    ):
        self.origin = origin
        self.primary = primary
        self.durable = durable
        self._coalescer = coalescer
        self._refresher = refresher
        self._refresher.attach(self._refresh)

        self._stats_lock = threading.Lock()
        self._stats = {
            "hits_primary": 0,
            "hits_durable": 0,
            "origin_fills": 0,
            "empty": 0,
            "tier_errors": 0,
        }

    # -------------------------------------------------------------------------
    # Public lookup API
    # -------------------------------------------------------------------------

    def get(self, key: CacheKey, force: bool = False, deadline: Optional[Deadline] = None) -> bytes:
        """Payload for ``key``; EMPTY_PAYLOAD if no tier has it."""
        return self.lookup(key, force=force, deadline=deadline).payload

    def lookup(self, key: CacheKey, force: bool = False, deadline: Optional[Deadline] = None) -> LookupResult:
        """
        Walk the tiers for ``key``.

        Args:
            key: Resource to look up
            force: Skip Redis and S3 and always ask the origin
            deadline: Caller budget shared by every tier call

        Returns:
            LookupResult naming the tier that answered
        """
        name = str(key)
        logger.debug(f"LOOKUP {name} force={force}")

        if not force:
            hit = self._primary_hit(key, deadline)
            if hit is not None:
                return hit

        call_key = f"{name}{FORCE_SUFFIX}" if force else name
        try:
            result = self._coalescer.do(call_key, lambda: self._fill(key, force, deadline))
        except Exception as e:
            logger.warning(f"Fill for {name} failed, returning empty payload: {e}")
            result = None

        if result is None or not result.payload:
            result = LookupResult(EMPTY_PAYLOAD, CacheSource.EMPTY)
        if result.is_empty:
            self._count("empty")
        logger.info(f"DONE {name} source={result.source.value} bytes={len(result.payload)}")
        return result

    def get_languages(self, app_id: str, deadline: Optional[Deadline] = None) -> bytes:
        return self.get(CacheKey.languages(app_id), deadline=deadline)

    def get_translations(
        self,
        app_id: str,
        lang: str,
        mode: OutputMode,
        default_lang: str = "en",
        deadline: Optional[Deadline] = None,
    ) -> Tuple[bytes, str]:
        """
        Translations for ``lang``, falling back once to ``default_lang``.

        Returns:
            (payload, language actually served)
        """
        key = CacheKey.translations(app_id, lang, mode)
        result = self.lookup(key, deadline=deadline)
        if not result.is_empty or lang == default_lang:
            return result.payload, lang

        logger.info(f"No translations for {lang} ({mode.value}), falling back to {default_lang}")
        fallback = self.lookup(key.with_lang(default_lang), deadline=deadline)
        return fallback.payload, default_lang

    # -------------------------------------------------------------------------
    # Rebuild
    # -------------------------------------------------------------------------

    def rebuild(self, app_id: str) -> RebuildSummary:
        """
        Force-refresh the language list and every language in both modes.

        One language failing does not stop the others; failures are listed
        in the summary.
        """
        logger.info(f"[rebuild] starting app={app_id}")
        tags, summary = self._rebuild_languages(app_id)
        for tag in tags:
            for mode in OutputMode:
                try:
                    key = CacheKey.translations(app_id, tag, mode)
                except ValueError as e:
                    summary.failures.append(f"{tag} {mode.value}: {e}")
                    continue
                result = self.lookup(key, force=True)
                if result.is_empty:
                    summary.failures.append(f"{tag} {mode.value}: origin returned no data")
                else:
                    summary.refreshed += 1

        summary.finish()
        logger.info(
            f"[rebuild] done app={app_id} languages={len(summary.languages)} "
            f"refreshed={summary.refreshed} failures={len(summary.failures)}"
        )
        return summary

    def prime(self, app_id: str) -> RebuildSummary:
        """
        Warm every tier using one zipped export per output mode.

        Cheaper than rebuild() for startup: two export requests instead of
        two per language.
        """
        logger.info(f"[prime] starting app={app_id}")
        tags, summary = self._rebuild_languages(app_id)
        if tags:
            for mode in OutputMode:
                files = self.origin.export_all(app_id, tags, mode)
                for tag in tags:
                    payload = files.get(tag)
                    if not payload:
                        summary.failures.append(f"{tag} {mode.value}: missing from export archive")
                        continue
                    try:
                        key = CacheKey.translations(app_id, tag, mode)
                    except ValueError as e:
                        summary.failures.append(f"{tag} {mode.value}: {e}")
                        continue
                    self._store_origin_payload(key, payload)
                    summary.refreshed += 1

        summary.finish()
        logger.info(f"[prime] done app={app_id} refreshed={summary.refreshed} failures={len(summary.failures)}")
        return summary

    def _rebuild_languages(self, app_id: str) -> Tuple[List[str], RebuildSummary]:
        summary = RebuildSummary(app=app_id, started_at=_isoformat(datetime.now(timezone.utc)))

        result = self.lookup(CacheKey.languages(app_id), force=True)
        if result.is_empty:
            summary.failures.append("languages fetch failed: origin returned no data")
            return [], summary
        try:
            records = parse_languages(result.payload)
        except DecodeError as e:
            summary.failures.append(f"languages decode failed: {e}")
            return [], summary

        tags = []
        for record in records:
            if record.tag and record.tag not in tags:
                tags.append(record.tag)
        summary.languages = list(tags)
        return tags, summary

    # -------------------------------------------------------------------------
    # Tier walk
    # -------------------------------------------------------------------------

    def _fill(self, key: CacheKey, force: bool, deadline: Optional[Deadline]) -> LookupResult:
        """Runs inside the coalescer, once per key at a time."""
        if not force:
            # Another caller may have filled Redis while we waited for the lock
            hit = self._primary_hit(key, deadline, recheck=True)
            if hit is not None:
                return hit
            hit = self._durable_hit(key, deadline)
            if hit is not None:
                return hit
        return self._origin_fill(key, deadline)

    def _primary_hit(
        self,
        key: CacheKey,
        deadline: Optional[Deadline],
        recheck: bool = False,
    ) -> Optional[LookupResult]:
        if self.primary is None or _expired(deadline):
            return None
        try:
            entry = self.primary.get_entry(key)
        except TransientTierError as e:
            self._count("tier_errors")
            logger.warning(f"Primary cache unavailable for {key}{' (2nd check)' if recheck else ''}: {e}")
            return None
        if entry is None:
            return None

        fetched_at = entry.fetched_at
        if fetched_at is None and self.durable is not None and not _expired(deadline):
            created_at = self.durable.head_latest_created_at(key)
            if created_at is not None:
                fetched_at = int(created_at.timestamp())

        self._count("hits_primary")
        self._refresher.observe(key, fetched_at)
        return LookupResult(entry.payload, CacheSource.PRIMARY, fetched_at)

    def _durable_hit(self, key: CacheKey, deadline: Optional[Deadline]) -> Optional[LookupResult]:
        if self.durable is None:
            logger.debug(f"Durable store disabled, skipping {key}")
            return None
        if _expired(deadline):
            return None

        obj = self.durable.fetch_latest(key)
        if obj is None or not obj.payload:
            return None

        fetched_at = int(obj.created_at.timestamp()) if obj.created_at else unix_now()
        self._write_primary(key, obj.payload, fetched_at)
        self._count("hits_durable")
        self._refresher.observe(key, fetched_at)
        return LookupResult(obj.payload, CacheSource.DURABLE, fetched_at)

    def _origin_fill(self, key: CacheKey, deadline: Optional[Deadline]) -> LookupResult:
        if key.resource is ResourceType.LANGUAGES:
            payload = self.origin.list_languages(key.app_id, deadline=deadline)
        else:
            payload = self.origin.export_translations(key.app_id, key.lang, key.mode, deadline=deadline)

        if not payload:
            return LookupResult(EMPTY_PAYLOAD, CacheSource.EMPTY)

        fetched_at = self._store_origin_payload(key, payload)
        self._count("origin_fills")
        return LookupResult(payload, CacheSource.ORIGIN, fetched_at)

    def _store_origin_payload(self, key: CacheKey, payload: bytes) -> int:
        """Write a fresh origin payload to Redis and a new S3 version."""
        fetched_at = unix_now()
        self._write_primary(key, payload, fetched_at)
        if self.durable is not None:
            self.durable.put_version(key, payload)
        return fetched_at

    def _write_primary(self, key: CacheKey, payload: bytes, fetched_at: int) -> None:
        if self.primary is None:
            return
        try:
            self.primary.put(key, payload, fetched_at=fetched_at)
        except TransientTierError as e:
            self._count("tier_errors")
            logger.warning(f"Primary cache write-back failed for {key}: {e}")

    def _refresh(self, key: CacheKey, deadline: Deadline) -> bytes:
        """Background refill, origin only."""
        return self.lookup(key, force=True, deadline=deadline).payload

    # -------------------------------------------------------------------------
    # Housekeeping
    # -------------------------------------------------------------------------

    def _count(self, stat: str) -> None:
        with self._stats_lock:
            self._stats[stat] += 1

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._stats_lock:
            stats = dict(self._stats)
        stats["primary_enabled"] = self.primary is not None
        stats["primary_reachable"] = self.primary.ping() if self.primary is not None else False
        stats["durable_enabled"] = self.durable is not None
        stats["coalescer"] = self._coalescer.get_stats()
        stats["refresher"] = self._refresher.get_stats()
        return stats

    def shutdown(self) -> None:
        self._refresher.shutdown()
        self.origin.close()


def _expired(deadline: Optional[Deadline]) -> bool:
    return deadline is not None and deadline.expired
