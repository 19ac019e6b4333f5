"""
Object key scheme for the durable store.

Translations:
    localizations/<app>/<lang>_<mode>/latest.json
    localizations/<app>/<lang>_<mode>/<YYYYMMDDThhmmssZ>_<sha256>.json

Languages:
    tolgee-languages/<app>/latest.json
    tolgee-languages/<app>/<YYYYMMDDThhmmssZ>_<sha256>.json
"""
from datetime import datetime, timezone
from typing import Optional

from .core import CacheKey, ResourceType

TRANSLATIONS_NAMESPACE = "localizations"
LANGUAGES_NAMESPACE = "tolgee-languages"

LATEST_NAME = "latest.json"
VERSION_TIMESTAMP_FORMAT = "%Y%m%dT%H%M%SZ"


def sanitize_key_part(part: str) -> str:
    """Strip traversal sequences and path separators from one key segment."""
    part = part.strip()
    part = part.replace("..", "")
    part = part.replace("/", "_").replace("\\", "_")
    return part or "_"


def object_prefix(key: CacheKey) -> str:
    """Directory-like prefix shared by a key's latest pointer and versions."""
    app = sanitize_key_part(key.app_id)
    if key.resource is ResourceType.LANGUAGES:
        return f"{LANGUAGES_NAMESPACE}/{app}"
    lang_mode = sanitize_key_part(f"{key.lang}_{key.mode.value}")
    return f"{TRANSLATIONS_NAMESPACE}/{app}/{lang_mode}"


def latest_object_key(key: CacheKey) -> str:
    return f"{object_prefix(key)}/{LATEST_NAME}"


def version_object_key(key: CacheKey, created: datetime, sha256_hex: str) -> str:
    return f"{object_prefix(key)}/{format_version_timestamp(created)}_{sha256_hex}.json"


def format_version_timestamp(created: datetime) -> str:
    if created.tzinfo is not None:
        created = created.astimezone(timezone.utc)
    return created.strftime(VERSION_TIMESTAMP_FORMAT)


def parse_version_timestamp(value: str) -> Optional[datetime]:
    """Parse ``YYYYMMDDThhmmssZ``; None when malformed."""
    try:
        return datetime.strptime(value, VERSION_TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    except (TypeError, ValueError):
        return None
