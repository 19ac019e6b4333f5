"""
HTTP surface tests: routes, language negotiation and the webhook.
"""
import json
import time

import pytest
from fastapi.testclient import TestClient

from config.settings import Settings
from l10n_cache.cache.core import CacheKey, OutputMode
from l10n_cache.main import create_app, parse_bool
from l10n_cache.webhook import SIGNATURE_HEADER, compute_signature

from conftest import languages_envelope

SECRET = "s3cr3t"


SETTINGS = Settings(
    tolgee_app_key="app",
    webhook_secret=SECRET,
    default_language="en",
    warmup_on_startup=False,
)


@pytest.fixture
def client(orchestrator):
    return TestClient(create_app(orchestrator=orchestrator, settings=SETTINGS))


class DeadlineRecorder:
    """Wraps an orchestrator and keeps every deadline the routes pass in."""

    def __init__(self, inner):
        self.inner = inner
        self.deadlines = []

    def get_languages(self, app_id, deadline=None):
        self.deadlines.append(deadline)
        return self.inner.get_languages(app_id, deadline=deadline)

    def get_translations(self, app_id, lang, mode, default_lang="en", deadline=None):
        self.deadlines.append(deadline)
        return self.inner.get_translations(app_id, lang, mode, default_lang=default_lang, deadline=deadline)


def signature_header(body: bytes, timestamp_ms=None) -> str:
    timestamp_ms = int(time.time() * 1000) if timestamp_ms is None else timestamp_ms
    return json.dumps({"timestamp": timestamp_ms, "signature": compute_signature(SECRET, timestamp_ms, body)})


class TestHealth:

    def test_healthz(self, client):
        response = client.get("/api/healthz")
        assert response.status_code == 200
        assert response.text == "ok"

    def test_server_timing_header(self, client):
        response = client.get("/api/healthz")
        assert response.headers["server-timing"].startswith("app;dur=")

    def test_stats(self, client):
        client.get("/api/en")
        data = client.get("/cache/stats").json()
        assert data["origin_fills"] >= 1
        assert "coalescer" in data


class TestTranslations:

    def test_languages(self, client):
        response = client.get("/api/languages")
        assert response.status_code == 200
        assert response.content == languages_envelope("en", "it")
        assert response.headers["content-type"].startswith("application/json")

    def test_flat_by_default(self, client):
        response = client.get("/api/it")
        assert response.status_code == 200
        assert response.json() == {"hello": "mondo"}
        assert response.headers["content-language"] == "it"

    def test_nested(self, client):
        response = client.get("/api/it", params={"nested": "true"})
        assert response.json() == {"hello": {"text": "mondo"}}

    def test_unknown_language_uses_accept_language(self, client):
        response = client.get("/api/de", headers={"Accept-Language": "it-CH, en;q=0.5"})
        assert response.status_code == 200
        assert response.headers["content-language"] == "it"

    def test_unknown_language_uses_default(self, client):
        response = client.get("/api/de")
        assert response.json() == {"hello": "world"}
        assert response.headers["content-language"] == "en"

    def test_upper_case_tag(self, client):
        assert client.get("/api/IT").headers["content-language"] == "it"

    def test_one_deadline_per_request(self, orchestrator):
        recorder = DeadlineRecorder(orchestrator)
        client = TestClient(create_app(orchestrator=recorder, settings=SETTINGS))

        assert client.get("/api/it").status_code == 200
        first, second = recorder.deadlines
        assert first is not None
        assert first is second

        assert client.get("/nowhere").status_code == 404
        assert recorder.deadlines[2] is recorder.deadlines[3]
        assert recorder.deadlines[2] is not first


class TestRegionTags:

    @pytest.fixture
    def tolgee(self, tolgee):
        tolgee.languages = languages_envelope("en", "pt-BR")
        tolgee.translations[("pt-BR", OutputMode.FLAT)] = b'{"hello":"ola"}'
        tolgee.translations[("pt-BR", OutputMode.NESTED)] = b'{"hello":{"text":"ola"}}'
        return tolgee

    def test_served_under_list_spelling(self, client, tolgee):
        response = client.get("/api/pt-br")
        assert response.status_code == 200
        assert response.json() == {"hello": "ola"}
        assert response.headers["content-language"] == "pt-BR"
        assert ("export", "app", "pt-BR", OutputMode.FLAT) in tolgee.calls

    def test_lookups_hit_what_rebuild_cached(self, client, tolgee, primary):
        body = b"{}"
        response = client.post("/api/update", content=body, headers={SIGNATURE_HEADER: signature_header(body)})
        assert response.json()["languages"] == ["en", "pt-BR"]
        assert primary.get(CacheKey.translations("app", "pt-BR", OutputMode.FLAT)) == b'{"hello":"ola"}'
        exports = tolgee.count("export")

        for path in ("/api/pt-br", "/api/PT-BR", "/api/pt-BR"):
            assert client.get(path).headers["content-language"] == "pt-BR"
        assert client.get("/api/pt-br", params={"nested": "1"}).json() == {"hello": {"text": "ola"}}
        assert tolgee.count("export") == exports

    def test_accept_language_region_match(self, client):
        response = client.get("/api/fr", headers={"Accept-Language": "pt-br"})
        assert response.headers["content-language"] == "pt-BR"


class TestFallback:

    def test_malformed_language_list_serves_default(self, client, tolgee):
        tolgee.languages = b'{"_embedded": ["en"]}'

        response = client.get("/api/en")

        assert response.status_code == 200
        assert response.json() == {"hello": "world"}
        assert response.headers["content-language"] == "en"

    def test_unknown_path_is_404_with_translations(self, client):
        response = client.get("/some/where")
        assert response.status_code == 404
        assert response.json() == {"hello": "world"}

    def test_unknown_path_negotiates_language(self, client):
        response = client.post("/nope", headers={"Accept-Language": "it"})
        assert response.status_code == 404
        assert response.json() == {"hello": "mondo"}


class TestWebhook:

    def test_missing_signature_is_401(self, client, tolgee):
        response = client.post("/api/update", content=b'{"a":1}')
        assert response.status_code == 401
        assert response.json() == {"error": "invalid webhook signature"}
        assert tolgee.calls == []

    def test_bad_signature_is_401(self, client):
        body = b'{"a":1}'
        response = client.post(
            "/api/update",
            content=b'{"a":2}',
            headers={SIGNATURE_HEADER: signature_header(body)},
        )
        assert response.status_code == 401

    def test_stale_signature_is_401(self, client):
        body = b'{"a":1}'
        old = int(time.time() * 1000) - 10 * 60 * 1000
        response = client.post("/api/update", content=body, headers={SIGNATURE_HEADER: signature_header(body, old)})
        assert response.status_code == 401

    def test_valid_signature_rebuilds(self, client, tolgee, primary):
        body = b'{"webhookConfigId": 1, "eventType": "PROJECT_ACTIVITY"}'
        primary.put(
            CacheKey.translations("app", "en", OutputMode.FLAT),
            b'{"hello":"stale"}',
        )

        response = client.post("/api/update", content=body, headers={SIGNATURE_HEADER: signature_header(body)})

        assert response.status_code == 200
        summary = response.json()
        assert summary["app"] == "app"
        assert summary["languages"] == ["en", "it"]
        assert summary["refreshed"] == 4
        assert summary["failures"] == []
        assert tolgee.count("export") == 4
        assert client.get("/api/en").json() == {"hello": "world"}

    def test_malformed_language_list_reported(self, client, tolgee):
        tolgee.languages = b'{"_embedded": ["en"]}'
        body = b"{}"

        response = client.post("/api/update", content=body, headers={SIGNATURE_HEADER: signature_header(body)})

        assert response.status_code == 200
        summary = response.json()
        assert summary["languages"] == []
        assert summary["failures"][0].startswith("languages decode failed")

    def test_non_string_tags_ignored(self, client, tolgee):
        tolgee.languages = b'{"_embedded": {"languages": [{"tag": 5}, {"tag": "en"}]}}'
        body = b"{}"

        response = client.post("/api/update", content=body, headers={SIGNATURE_HEADER: signature_header(body)})

        assert response.status_code == 200
        assert response.json()["languages"] == ["en"]
        assert response.json()["refreshed"] == 2

    @pytest.mark.parametrize("method", ["get", "put"])
    def test_other_methods_accepted(self, client, method):
        body = b""
        response = getattr(client, method)(
            "/api/update",
            headers={SIGNATURE_HEADER: signature_header(body)},
        )
        assert response.status_code == 200


@pytest.mark.parametrize("raw,expected", [
    ("true", True), ("1", True), ("yes", True),
    ("false", False), ("0", False), ("", False), (None, False), ("maybe", False),
])
def test_parse_bool(raw, expected):
    assert parse_bool(raw) is expected
