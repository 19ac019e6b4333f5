"""
Shared fixtures: in-memory stand-ins for Redis, S3 and the Tolgee client.
"""
import io
import json
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest
import redis
from botocore.exceptions import ClientError, EndpointConnectionError

from l10n_cache.cache import BackgroundRefresher, PrimaryCache, RequestCoalescer
from l10n_cache.cache.core import OutputMode
from l10n_cache.cache.durable import DurableVersionedStore
from l10n_cache.cache.manager import CacheOrchestrator


# =============================================================================
# Redis
# =============================================================================

class FakePipeline:
    def __init__(self, client: "FakeRedis"):
        self._client = client
        self._ops = []

    def set(self, key, value, ex=None):
        self._ops.append((key, value, ex))
        return self

    def execute(self):
        self._client._check()
        results = [self._client.set(k, v, ex=ex) for k, v, ex in self._ops]
        self._ops = []
        return results


class FakeRedis:
    """Dict-backed subset of the redis-py client API."""

    def __init__(self):
        self.data: Dict[str, bytes] = {}
        self.ttls: Dict[str, Optional[int]] = {}
        self.unreachable = False
        self.get_calls = 0

    def _check(self):
        if self.unreachable:
            raise redis.ConnectionError("Error 111 connecting to localhost:6379. Connection refused.")

    def get(self, key):
        self._check()
        self.get_calls += 1
        return self.data.get(key)

    def set(self, key, value, ex=None):
        self._check()
        if isinstance(value, str):
            value = value.encode("utf-8")
        self.data[key] = value
        self.ttls[key] = ex
        return True

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    def ping(self):
        self._check()
        return True


# =============================================================================
# S3
# =============================================================================

class FakeS3Client:
    """Dict-backed subset of the boto3 S3 client API."""

    def __init__(self):
        self.objects: Dict[str, dict] = {}
        self.unreachable = False
        self.fail_put_suffixes: List[str] = []
        self.get_calls = 0
        self.head_calls = 0
        self.put_keys: List[str] = []

    def _check(self):
        if self.unreachable:
            raise EndpointConnectionError(endpoint_url="http://minio:9000")

    @staticmethod
    def _not_found(op):
        return ClientError({"Error": {"Code": "NoSuchKey", "Message": "not found"}}, op)

    def get_object(self, Bucket, Key):
        self._check()
        self.get_calls += 1
        if Key not in self.objects:
            raise self._not_found("GetObject")
        obj = self.objects[Key]
        return {
            "Body": io.BytesIO(obj["Body"]),
            "Metadata": dict(obj["Metadata"]),
            "LastModified": obj["LastModified"],
            "ContentType": obj["ContentType"],
        }

    def head_object(self, Bucket, Key):
        self._check()
        self.head_calls += 1
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
        obj = self.objects[Key]
        return {"Metadata": dict(obj["Metadata"]), "LastModified": obj["LastModified"]}

    def put_object(self, Bucket, Key, Body, ContentType=None, Metadata=None, ACL=None):
        self._check()
        if any(Key.endswith(suffix) for suffix in self.fail_put_suffixes):
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")
        self.put_keys.append(Key)
        self.objects[Key] = {
            "Body": bytes(Body),
            "Metadata": dict(Metadata or {}),
            "ContentType": ContentType,
            "LastModified": datetime.now(timezone.utc),
        }
        return {"ETag": '"etag"'}

    def seed(self, key: str, body: bytes, created: datetime):
        """Store an object as if written at ``created``."""
        self.objects[key] = {
            "Body": body,
            "Metadata": {"created_utc": created.strftime("%Y%m%dT%H%M%SZ"), "source": "tolgee"},
            "ContentType": "application/json",
            "LastModified": created,
        }


# =============================================================================
# Tolgee
# =============================================================================

def languages_envelope(*tags: str) -> bytes:
    return json.dumps({
        "_embedded": {
            "languages": [
                {"id": i + 1, "name": tag, "tag": tag, "originalName": tag, "flagEmoji": "", "base": i == 0}
                for i, tag in enumerate(tags)
            ]
        },
        "page": {"size": 1000, "totalElements": len(tags), "totalPages": 1, "number": 0},
    }).encode("utf-8")


class FakeTolgee:
    """
    Stand-in for TolgeeClient.

    ``translations`` maps (lang, mode) to bytes; missing entries come back
    empty like a soft failure. Set ``gate`` to block every export until the
    event is set.
    """

    def __init__(self, languages: bytes = b"", translations: Optional[dict] = None):
        self.languages = languages
        self.translations = translations or {}
        self.gate: Optional[threading.Event] = None
        self.started = threading.Event()
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    def _record(self, call):
        with self._lock:
            self.calls.append(call)
        self.started.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)

    def list_languages(self, app_id, deadline=None):
        self._record(("languages", app_id))
        return self.languages

    def export_translations(self, app_id, lang, mode, deadline=None):
        self._record(("export", app_id, lang, mode))
        return self.translations.get((lang, mode), b"")

    def export_all(self, app_id, langs, mode, deadline=None):
        self._record(("export_all", app_id, tuple(langs), mode))
        return {lang: self.translations[(lang, mode)] for lang in langs if (lang, mode) in self.translations}

    def close(self):
        pass

    def count(self, kind: str) -> int:
        with self._lock:
            return sum(1 for c in self.calls if c[0] == kind)


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def fake_s3():
    return FakeS3Client()


@pytest.fixture
def primary(fake_redis):
    return PrimaryCache(fake_redis, ttl_seconds=600)


@pytest.fixture
def durable(fake_s3):
    return DurableVersionedStore(fake_s3, bucket="l10n")


@pytest.fixture
def tolgee():
    return FakeTolgee(
        languages=languages_envelope("en", "it"),
        translations={
            ("en", OutputMode.FLAT): b'{"hello":"world"}',
            ("en", OutputMode.NESTED): b'{"hello":{"text":"world"}}',
            ("it", OutputMode.FLAT): b'{"hello":"mondo"}',
            ("it", OutputMode.NESTED): b'{"hello":{"text":"mondo"}}',
        },
    )


@pytest.fixture
def coalescer():
    return RequestCoalescer(timeout=10.0)


@pytest.fixture
def refresher(coalescer):
    r = BackgroundRefresher(coalescer, threshold_seconds=900, refresh_timeout=5.0, max_workers=2)
    yield r
    r.shutdown(wait=True)


@pytest.fixture
def orchestrator(tolgee, coalescer, refresher, primary, durable):
    return CacheOrchestrator(
        origin=tolgee,
        coalescer=coalescer,
        refresher=refresher,
        primary=primary,
        durable=durable,
    )
