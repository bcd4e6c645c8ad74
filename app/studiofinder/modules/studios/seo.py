"""
<title> builder for public studio pages: "{Name} – {Type} in {City}", max 60 chars.
Shortens step by step (parentheticals, delimiters, short type label, redundant
city, generic trailing words) before hard-trimming the name.
"""
from __future__ import annotations

import re

from app.studiofinder.constants import STUDIO_TYPE_LABELS

MAX_TITLE_LENGTH = 60

_COMPANY_SUFFIX_RE = re.compile(r"\s+(ltd\.?|limited|llc|inc\.?|co\.?|company)\s*$", re.IGNORECASE)
_GENERIC_SUFFIX_RE = re.compile(r"\s+(recording\s+studio|studio|studios)\s*$", re.IGNORECASE)
_PAREN_RE = re.compile(r"\s*[(\[].*?[)\]]\s*")
_DELIM_RE = re.compile(r"\s+(?:-+|–|\||:)\s+")


def _compact(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()


def _contains_word(haystack: str, needle: str) -> bool:
    if not needle.strip():
        return False
    return re.search(rf"\b{re.escape(needle)}\b", haystack, re.IGNORECASE) is not None


def studio_type_label(studio_type: str | None) -> tuple[str | None, str | None]:
    if not studio_type:
        return None, None
    return STUDIO_TYPE_LABELS.get(studio_type.upper(), (studio_type, studio_type))


def _build(name: str, type_label: str, city: str) -> str:
    name, type_label, city = _compact(name), _compact(type_label), _compact(city)
    if city:
        return f"{name} – {type_label} in {city}"
    return f"{name} – {type_label}"


def _trim_name_to_fit(name: str, suffix: str) -> str:
    available = MAX_TITLE_LENGTH - len(suffix)
    if available <= 0:
        return ""
    if len(name) <= available:
        return name
    out = ""
    for word in _compact(name).split(" "):
        nxt = f"{out} {word}" if out else word
        if len(nxt) > available:
            break
        out = nxt
    return out or name[:available].strip()


def build_profile_meta_title(studio_name: str, primary_studio_type: str | None = None, city: str | None = None) -> str:
    full, short = studio_type_label(primary_studio_type)
    type_full = _compact(full or "Recording Studio")
    type_short = _compact(short or type_full)

    name = _compact(_COMPANY_SUFFIX_RE.sub("", _compact(studio_name or "")))
    city = _compact(city or "")
    type_label = type_full
    if city and _contains_word(name, city):
        city = ""

    title = _build(name, type_label, city)
    if len(title) <= MAX_TITLE_LENGTH:
        return title

    name = _compact(_PAREN_RE.sub(" ", name))
    title = _build(name, type_label, city)
    if len(title) <= MAX_TITLE_LENGTH:
        return title

    name = _compact(_DELIM_RE.split(name)[0])
    title = _build(name, type_label, city)
    if len(title) <= MAX_TITLE_LENGTH:
        return title

    type_label = type_short
    title = _build(name, type_label, city)
    if len(title) <= MAX_TITLE_LENGTH:
        return title

    if city and (_contains_word(name, city) or _contains_word(type_label, city)):
        city = ""
        title = _build(name, type_label, city)
        if len(title) <= MAX_TITLE_LENGTH:
            return title

    name = _compact(_GENERIC_SUFFIX_RE.sub("", name))
    title = _build(name, type_label, city)
    if len(title) <= MAX_TITLE_LENGTH:
        return title

    suffix = f" – {type_label} in {city}" if city else f" – {type_label}"
    trimmed = _trim_name_to_fit(name, suffix)
    return _build(trimmed or name, type_label, city)[:MAX_TITLE_LENGTH].strip()
