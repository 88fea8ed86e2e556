from __future__ import annotations

import re
from typing import Dict, Mapping, Optional
from urllib.parse import urlparse

from book_enricher.core.models import Book, RegionConfig

DEFAULT_REGION = "US"
DEFAULT_ASSOCIATE_TAG = "livrolog-20"

# code, domain, language, label
_MARKETPLACES = [
    ("US", "amazon.com", "en-US", "Amazon US"),
    ("BR", "amazon.com.br", "pt-BR", "Amazon Brasil"),
    ("UK", "amazon.co.uk", "en-GB", "Amazon UK"),
    ("CA", "amazon.ca", "en-CA", "Amazon Canada"),
    ("DE", "amazon.de", "de-DE", "Amazon Deutschland"),
    ("FR", "amazon.fr", "fr-FR", "Amazon France"),
    ("ES", "amazon.es", "es-ES", "Amazon España"),
    ("IT", "amazon.it", "it-IT", "Amazon Italia"),
    ("JP", "amazon.co.jp", "ja-JP", "Amazon Japan"),
    ("MX", "amazon.com.mx", "es-MX", "Amazon México"),
    ("AU", "amazon.com.au", "en-AU", "Amazon Australia"),
    ("IN", "amazon.in", "en-IN", "Amazon India"),
    ("NL", "amazon.nl", "nl-NL", "Amazon Nederland"),
    ("SE", "amazon.se", "sv-SE", "Amazon Sverige"),
    ("PL", "amazon.pl", "pl-PL", "Amazon Polska"),
    ("TR", "amazon.com.tr", "tr-TR", "Amazon Türkiye"),
    ("AE", "amazon.ae", "ar-AE", "Amazon UAE"),
    ("SA", "amazon.sa", "ar-SA", "Amazon Saudi Arabia"),
    ("SG", "amazon.sg", "en-SG", "Amazon Singapore"),
    ("EG", "amazon.eg", "ar-EG", "Amazon Egypt"),
    ("BE", "amazon.com.be", "fr-BE", "Amazon Belgique"),
]

_ACCEPT_LANGUAGE_OVERRIDES = {
    "pt-BR": "pt-BR,pt;q=0.8,en;q=0.5,en-US;q=0.3",
    "en-US": "en-US,en;q=0.8",
    "en-GB": "en-GB,en;q=0.8",
    "en-CA": "en-CA,en;q=0.8,fr;q=0.5",
    "de-DE": "de-DE,de;q=0.8,en;q=0.5",
    "fr-FR": "fr-FR,fr;q=0.8,en;q=0.5",
}


def _accept_language_for(language: str) -> str:
    if language in _ACCEPT_LANGUAGE_OVERRIDES:
        return _ACCEPT_LANGUAGE_OVERRIDES[language]
    primary = language.split("-")[0]
    if primary == "en":
        return f"{language},en;q=0.8"
    return f"{language},{primary};q=0.8,en;q=0.5"


def build_regions(tags: Optional[Mapping[str, str]] = None) -> Dict[str, RegionConfig]:
    """Region table; `tags` overrides the associate tag per region code."""
    tags = {str(k).upper(): str(v) for k, v in (tags or {}).items()}
    out: Dict[str, RegionConfig] = {}
    for code, domain, language, label in _MARKETPLACES:
        default_tag = "livrolog01-20" if code == "BR" else DEFAULT_ASSOCIATE_TAG
        out[code] = RegionConfig(
            code=code,
            domain=domain,
            language=language,
            accept_language_header=_accept_language_for(language),
            associate_tag=tags.get(code, default_tag),
            label=label,
        )
    return out


REGIONS: Dict[str, RegionConfig] = build_regions()

LOCALE_TO_REGION: Dict[str, str] = {
    "en": "US",
    "en-us": "US",
    "en-gb": "UK",
    "en-uk": "UK",
    "en-ca": "CA",
    "en-au": "AU",
    "en-in": "IN",
    "en-sg": "SG",
    "pt": "BR",
    "pt-br": "BR",
    "pt-pt": "BR",
    "de": "DE",
    "de-de": "DE",
    "de-at": "DE",
    "de-ch": "DE",
    "fr": "FR",
    "fr-fr": "FR",
    "fr-ca": "CA",
    "fr-be": "BE",
    "nl-be": "BE",
    "es": "ES",
    "es-es": "ES",
    "es-mx": "MX",
    "it": "IT",
    "it-it": "IT",
    "ja": "JP",
    "ja-jp": "JP",
    "nl": "NL",
    "nl-nl": "NL",
    "sv": "SE",
    "sv-se": "SE",
    "pl": "PL",
    "pl-pl": "PL",
    "tr": "TR",
    "tr-tr": "TR",
    "ar": "AE",
    "ar-ae": "AE",
    "ar-sa": "SA",
    "ar-eg": "EG",
}

_SHORT_LINK_HOSTS = ("a.co", "amzn.to", "amzn.com")

_PT_WORDS = re.compile(r"\b(o|a|os|as|do|da|dos|das|de|em|para|com|uma|um|livro)\b", re.I)
_EN_WORDS = re.compile(r"\b(the|of|and|in|to|for|with|book|a|an)\b", re.I)


def resolve_region(locale: object, default: str = DEFAULT_REGION) -> str:
    """
    Map a language tag (`pt-BR`, `en_GB`, `de`) to a marketplace code.

    Exact match first, then the primary subtag, then `default`. Never raises;
    the result is always a key of REGIONS.
    """
    fallback = str(default or "").upper()
    if fallback not in REGIONS:
        fallback = DEFAULT_REGION
    if not isinstance(locale, str):
        return fallback
    key = locale.strip().lower().replace("_", "-")
    if not key:
        return fallback
    if key in LOCALE_TO_REGION:
        return LOCALE_TO_REGION[key]
    primary = key.split("-")[0]
    return LOCALE_TO_REGION.get(primary, fallback)


def get_region(code: Optional[str], regions: Optional[Mapping[str, RegionConfig]] = None) -> RegionConfig:
    table = regions or REGIONS
    key = (code or "").strip().upper()
    if key == "GB":
        key = "UK"
    return table.get(key) or table[DEFAULT_REGION]


def accept_language(code: str) -> str:
    return get_region(code).accept_language_header


def region_from_url(url: str) -> Optional[str]:
    try:
        host = (urlparse(url or "").hostname or "").lower()
    except ValueError:
        return None
    if host.startswith("www."):
        host = host[4:]
    if host in _SHORT_LINK_HOSTS:
        return "US"
    for cfg in REGIONS.values():
        if host == cfg.domain:
            return cfg.code
    return None


def detect_book_region(book: Book, default: str = DEFAULT_REGION) -> str:
    """Region from the book language, else from title word heuristics."""
    if book.language:
        return resolve_region(book.language, default)
    title = book.title or ""
    pt = len(_PT_WORDS.findall(title))
    en = len(_EN_WORDS.findall(title))
    if pt > en:
        return "BR"
    if en > pt:
        return "US"
    return resolve_region(None, default)
