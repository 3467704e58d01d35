"""UI locale resolution and gettext catalogs for the templates."""

from __future__ import annotations

import gettext
from dataclasses import dataclass
from functools import lru_cache
from gettext import gettext as _
from pathlib import Path
from typing import Callable, List, Tuple

LOCALE_DIR = Path(__file__).parent / "locales"


@dataclass(frozen=True)
class UILocale:
    code: str
    html_lang: str
    label: str
    # Lower-case language prefix matched against Accept-Language tags.
    language: str


_LOCALES = (
    UILocale("en", "en", _("English"), "en"),
    UILocale("pt_BR", "pt-BR", _("Português (Brasil)"), "pt"),
)
_BY_CODE = {locale.code: locale for locale in _LOCALES}

DEFAULT_LOCALE = "en"
SUPPORTED_LOCALES = tuple(_BY_CODE)


def _match_tag(tag: str) -> str | None:
    """Map a language tag such as ``pt-PT`` or ``en_GB`` onto a supported code."""

    primary = tag.strip().replace("_", "-").split("-", 1)[0].lower()
    for locale in _LOCALES:
        if primary == locale.language:
            return locale.code
    return None


def _weighted_tags(header_value: str) -> List[str]:
    """Return the tags of an Accept-Language header, best first, ignoring q=0."""

    weighted: List[Tuple[float, int, str]] = []
    for position, part in enumerate(header_value.split(",")):
        tag, *params = [piece.strip() for piece in part.split(";")]
        if not tag:
            continue
        quality = 1.0
        for param in params:
            if not param.startswith("q="):
                continue
            try:
                quality = float(param[2:])
            except ValueError:
                quality = 0.0
        if quality > 0:
            weighted.append((-quality, position, tag))
    return [tag for _quality, _position, tag in sorted(weighted)]


def negotiate_locale(accept_language_header: str | None) -> str:
    for tag in _weighted_tags(accept_language_header or ""):
        code = _match_tag(tag)
        if code:
            return code
    return DEFAULT_LOCALE


def normalize_locale(selection: str | None) -> str | None:
    """Return the supported code for a cookie or URL selection, if any."""

    cleaned = (selection or "").strip()
    if not cleaned:
        return None
    if cleaned in _BY_CODE:
        return cleaned
    return _match_tag(cleaned)


def determine_locale(cookie_locale: str | None, accept_language_header: str | None) -> str:
    """An explicit cookie choice wins over the browser's preferences."""

    return normalize_locale(cookie_locale) or negotiate_locale(accept_language_header)


def get_html_lang(locale: str) -> str:
    return _BY_CODE.get(locale, _BY_CODE[DEFAULT_LOCALE]).html_lang


def list_supported_ui_locales() -> List[Tuple[str, str]]:
    return [(locale.code, locale.label) for locale in _LOCALES]


def get_gettext_functions(
    locale: str,
) -> Tuple[Callable[[str], str], Callable[[str, str, int], str]]:
    translations = _catalog(locale)
    return translations.gettext, translations.ngettext


@lru_cache(maxsize=None)
def _catalog(locale: str) -> gettext.NullTranslations:
    # Falls back to the source strings when no compiled catalog is installed.
    return gettext.translation(
        "messages", localedir=str(LOCALE_DIR), languages=[locale], fallback=True
    )
