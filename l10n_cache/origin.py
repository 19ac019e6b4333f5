"""
Tolgee API client.
Fetches the language list and translation exports for one project.

Every call is best-effort: transport errors, non-2xx answers, empty bodies
and broken archives all come back as an empty result, never an exception.
"""
import io
import json
import logging
import zipfile
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from .cache.core import Deadline, OutputMode, bound_timeout
from .errors import DecodeError, OriginSoftFailure

logger = logging.getLogger("origin.tolgee")

DEFAULT_BASE_URL = "https://app.tolgee.io"
LANGUAGES_PATH = "/v2/projects/languages"
EXPORT_PATH = "/v2/projects/export"

MAX_LANGUAGE_PAGES = 20  # Safety limit


@dataclass
class LanguageRecord:
    """One entry of the Tolgee language list."""
    id: Optional[int]
    name: str
    tag: str
    original_name: Optional[str] = None
    flag_emoji: Optional[str] = None
    base: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["LanguageRecord"]:
        """Record for one list entry, or None when it has no usable string tag."""
        tag = data.get("tag")
        if not isinstance(tag, str) or not tag.strip():
            return None
        return cls(
            id=data.get("id"),
            name=_str_or(data.get("name"), ""),
            tag=tag.strip(),
            original_name=_str_or(data.get("originalName")),
            flag_emoji=_str_or(data.get("flagEmoji")),
            base=data.get("base") is True,
        )


def _str_or(value: Any, default: Optional[str] = None) -> Optional[str]:
    return value if isinstance(value, str) else default


def parse_languages(payload: bytes) -> List[LanguageRecord]:
    """
    Decode a language list payload.

    Accepts a bare JSON array or the hypermedia envelope
    (``{"_embedded": {"languages": [...]}}`` or ``{"languages": [...]}``).
    Entries without a string tag are skipped.

    Raises:
        DecodeError: If the payload is empty, not JSON, or not one of those shapes.
    """
    if not payload:
        raise DecodeError("empty languages payload")
    try:
        data = json.loads(payload)
    except (ValueError, UnicodeDecodeError) as e:
        raise DecodeError(f"languages payload is not JSON: {e}") from e

    if isinstance(data, list):
        items = data
    elif isinstance(data, dict):
        items = data.get("languages")
        if items is None:
            embedded = data.get("_embedded")
            if embedded is None:
                embedded = {}
            if not isinstance(embedded, dict):
                raise DecodeError(f"_embedded is a {type(embedded).__name__}, not an object")
            items = embedded.get("languages")
        if items is None:
            items = []
    else:
        raise DecodeError(f"unexpected languages payload type: {type(data).__name__}")

    if not isinstance(items, list):
        raise DecodeError("languages collection is not a list")

    records = []
    for item in items:
        record = LanguageRecord.from_dict(item) if isinstance(item, dict) else None
        if record is not None:
            records.append(record)
    return records


def _embedded_languages(envelope: Any) -> Optional[List[Any]]:
    """``_embedded.languages`` of one page, None when the page has another shape."""
    if not isinstance(envelope, dict):
        return None
    embedded = envelope.get("_embedded", {})
    if not isinstance(embedded, dict):
        return None
    languages = embedded.get("languages", [])
    return list(languages) if isinstance(languages, list) else None


def unpack_export_archive(archive: bytes) -> Dict[str, bytes]:
    """
    Split a zipped multi-language export into one payload per language.

    ``en.json`` becomes ``{"en": b"..."}``; directory entries are skipped.
    """
    files: Dict[str, bytes] = {}
    with zipfile.ZipFile(io.BytesIO(archive)) as zf:
        for info in zf.infolist():
            if info.is_dir():
                continue
            name = info.filename.rsplit("/", 1)[-1]
            if name.endswith(".json"):
                name = name[: -len(".json")]
            files[name] = zf.read(info)
    return files


class TolgeeClient:
    """
    Read-only client for the Tolgee REST API, authenticated by project key.

    One instance (and one requests.Session) is shared by every caller.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 10.0,
        page_size: int = 1000,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.page_size = page_size
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings) -> "TolgeeClient":
        return cls(
            base_url=settings.tolgee_base_url,
            timeout=settings.origin_timeout,
            page_size=settings.tolgee_page_size,
        )

    def _get(self, path: str, params: Dict[str, Any], deadline: Optional[Deadline] = None) -> bytes:
        """
        GET and return the body.

        Raises:
            OriginSoftFailure: On transport error, non-2xx, or empty body
        """
        if deadline is not None and deadline.expired:
            raise OriginSoftFailure(f"deadline exceeded before GET {path}")

        url = f"{self.base_url}{path}"
        try:
            response = self.session.get(url, params=params, timeout=bound_timeout(self.timeout, deadline))
        except requests.RequestException as e:
            raise OriginSoftFailure(f"GET {path} failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise OriginSoftFailure(f"GET {path} non-2xx status={response.status_code}", response.status_code)
        if not response.content:
            raise OriginSoftFailure(f"GET {path} empty body", response.status_code)
        return response.content

    def list_languages(self, app_id: str, deadline: Optional[Deadline] = None) -> bytes:
        """Raw language list JSON, all pages merged; b"" on failure."""
        if not app_id:
            logger.warning("[tolgee] SKIP languages: empty app key")
            return b""

        logger.info(f"[tolgee] GET languages size={self.page_size}")
        try:
            first = self._get(LANGUAGES_PATH, {"ak": app_id, "size": self.page_size}, deadline)
        except OriginSoftFailure as e:
            logger.warning(f"[tolgee] ERROR languages: {e}")
            return b""

        try:
            envelope = json.loads(first)
        except ValueError:
            logger.info(f"[tolgee] OK languages bytes={len(first)}")
            return first

        page_info = envelope.get("page") if isinstance(envelope, dict) else None
        total_pages = page_info.get("totalPages", 1) if isinstance(page_info, dict) else 1
        if not isinstance(total_pages, int) or total_pages <= 1:
            logger.info(f"[tolgee] OK languages bytes={len(first)}")
            return first

        languages = _embedded_languages(envelope)
        if languages is None:
            logger.warning("[tolgee] languages envelope has no _embedded list, skipping pagination")
            return first
        for page in range(1, min(total_pages, MAX_LANGUAGE_PAGES)):
            try:
                body = self._get(
                    LANGUAGES_PATH,
                    {"ak": app_id, "size": self.page_size, "page": page},
                    deadline,
                )
                more = _embedded_languages(json.loads(body))
            except (OriginSoftFailure, ValueError) as e:
                logger.warning(f"[tolgee] languages page {page} failed, keeping {len(languages)} entries: {e}")
                break
            if more is None:
                logger.warning(f"[tolgee] languages page {page} malformed, keeping {len(languages)} entries")
                break
            languages.extend(more)

        envelope["_embedded"] = {**envelope.get("_embedded", {}), "languages": languages}
        merged = json.dumps(envelope).encode("utf-8")
        logger.info(f"[tolgee] OK languages pages={total_pages} entries={len(languages)} bytes={len(merged)}")
        return merged

    def _export_params(self, app_id: str, languages: Any, mode: OutputMode, zipped: bool) -> Dict[str, Any]:
        params = {
            "ak": app_id,
            "size": self.page_size,
            "languages": languages,
            "format": "JSON",
            "zip": "true" if zipped else "false",
        }
        if not mode.is_nested:
            # An empty delimiter keeps dotted keys flat
            params["structureDelimiter"] = ""
        return params

    def export_translations(
        self,
        app_id: str,
        lang: str,
        mode: OutputMode,
        deadline: Optional[Deadline] = None,
    ) -> bytes:
        """Translations JSON for one language; b"" on failure."""
        if not app_id or not lang:
            logger.warning(f"[tolgee] SKIP export: app key or language missing (lang={lang!r})")
            return b""

        logger.info(f"[tolgee] GET export lang={lang} mode={mode.value}")
        try:
            body = self._get(EXPORT_PATH, self._export_params(app_id, lang, mode, zipped=False), deadline)
        except OriginSoftFailure as e:
            logger.warning(f"[tolgee] ERROR export lang={lang} mode={mode.value}: {e}")
            return b""
        logger.info(f"[tolgee] OK export lang={lang} mode={mode.value} bytes={len(body)}")
        return body

    def export_all(
        self,
        app_id: str,
        langs: List[str],
        mode: OutputMode,
        deadline: Optional[Deadline] = None,
    ) -> Dict[str, bytes]:
        """Zipped export of several languages, one payload per language; {} on failure."""
        if not app_id or not langs:
            return {}

        logger.info(f"[tolgee] GET export archive langs={langs} mode={mode.value}")
        try:
            archive = self._get(EXPORT_PATH, self._export_params(app_id, list(langs), mode, zipped=True), deadline)
            files = unpack_export_archive(archive)
        except OriginSoftFailure as e:
            logger.warning(f"[tolgee] ERROR export archive: {e}")
            return {}
        except zipfile.BadZipFile as e:
            logger.warning(f"[tolgee] ERROR invalid zip response: {e}")
            return {}
        logger.info(f"[tolgee] OK export archive files={sorted(files)}")
        return files

    def close(self) -> None:
        self.session.close()
