"""
Tests for language negotiation helpers.
"""
import pytest

from l10n_cache.languages import (
    available_languages,
    contains_lang,
    find_lang,
    parse_accept_language,
    pick_language,
)

from conftest import languages_envelope


class TestAcceptLanguage:

    def test_parse_in_header_order(self):
        assert parse_accept_language("de-CH, fr;q=0.8, *;q=0.1") == ["de-ch", "fr"]

    @pytest.mark.parametrize("raw", [None, "", " , "])
    def test_parse_empty(self, raw):
        assert parse_accept_language(raw) == []

    def test_pick_exact(self):
        assert pick_language(["it", "en"], ["en", "it"]) == "it"

    def test_pick_base_tag(self):
        assert pick_language(["de-ch"], ["en", "de"]) == "de"

    def test_pick_returns_list_spelling(self):
        assert pick_language(["pt-br"], ["en", "pt-BR"]) == "pt-BR"
        assert pick_language(["zh-hant-tw"], ["zh-Hant", "zh"]) == "zh"

    def test_pick_none(self):
        assert pick_language(["fr"], ["en"]) == ""
        assert pick_language(["en"], []) == ""


class TestAvailableLanguages:

    def test_from_payload(self):
        assert available_languages(languages_envelope("en", "pt-BR")) == ["en", "pt-BR"]

    def test_unreadable_payload(self):
        assert available_languages(b"{}") == []
        assert available_languages(b"garbage") == []

    def test_contains_is_case_insensitive(self):
        assert contains_lang(["en", "pt-br"], "PT-BR")

    def test_duplicates_differing_in_case_collapse(self):
        assert available_languages(languages_envelope("pt-BR", "pt-br", "en")) == ["pt-BR", "en"]


class TestFindLang:

    @pytest.mark.parametrize("requested", ["pt-br", "PT-BR", " pt-BR "])
    def test_returns_list_spelling(self, requested):
        assert find_lang(["en", "pt-BR"], requested) == "pt-BR"

    @pytest.mark.parametrize("requested", ["", None, "pt"])
    def test_no_match(self, requested):
        assert find_lang(["en", "pt-BR"], requested) == ""
