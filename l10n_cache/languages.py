"""
Language tag helpers for picking which translation file to serve.

Tags are compared case-insensitively but always handed back as Tolgee spells
them (``pt-BR``), since that spelling is what rebuilds cache under and what
the export endpoint expects.
"""

from typing import Iterable, List, Optional

from .errors import DecodeError
from .origin import parse_languages


def normalize_lang(tag: Optional[str]) -> str:
    return (tag or "").strip().lower()


def parse_accept_language(header: Optional[str]) -> List[str]:
    """
    Language tags from an Accept-Language header, in header order.

    Quality values are ignored; ``"de-CH, fr;q=0.8"`` gives ``["de-ch", "fr"]``.
    """
    if not header:
        return []
    tags = []
    for part in header.split(","):
        tag = normalize_lang(part.split(";", 1)[0])
        if tag and tag != "*":
            tags.append(tag)
    return tags


def find_lang(available: Iterable[str], lang: Optional[str]) -> str:
    """Available tag equal to ``lang`` ignoring case, or "" if there is none."""
    wanted = normalize_lang(lang)
    if not wanted:
        return ""
    for tag in available:
        if normalize_lang(tag) == wanted:
            return tag
    return ""


def contains_lang(available: Iterable[str], lang: str) -> bool:
    return bool(find_lang(available, lang))


def pick_language(preferred: Iterable[str], available: Iterable[str]) -> str:
    """
    First preferred tag that is available, trying the base tag
    (``de`` for ``de-ch``) before moving on. Empty string if none match.
    """
    available = list(available)
    if not available:
        return ""
    for tag in preferred:
        tag = normalize_lang(tag)
        if not tag:
            continue
        match = find_lang(available, tag)
        if match:
            return match
        base = tag.split("-", 1)[0]
        if base != tag:
            match = find_lang(available, base)
            if match:
                return match
    return ""


def available_languages(payload: bytes) -> List[str]:
    """Tags from a language list payload as Tolgee spells them; [] if it can't be read."""
    try:
        records = parse_languages(payload)
    except DecodeError:
        return []
    tags = []
    for record in records:
        if not find_lang(tags, record.tag):
            tags.append(record.tag)
    return tags
