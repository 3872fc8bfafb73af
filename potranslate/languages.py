"""
Language code normalization and display names used in prompts.
"""

from __future__ import annotations

import re
from typing import Dict

LANGUAGE_NAMES: Dict[str, str] = {
    "af": "Afrikaans",
    "am": "Amharic",
    "ar": "Arabic",
    "az": "Azerbaijani",
    "be": "Belarusian",
    "bg": "Bulgarian",
    "bn": "Bengali",
    "bs": "Bosnian",
    "ca": "Catalan",
    "cs": "Czech",
    "cy": "Welsh",
    "da": "Danish",
    "de": "German",
    "el": "Greek",
    "en": "English",
    "eo": "Esperanto",
    "es": "Spanish",
    "et": "Estonian",
    "eu": "Basque",
    "fa": "Persian",
    "fi": "Finnish",
    "fil": "Filipino",
    "fr": "French",
    "ga": "Irish",
    "gd": "Scottish Gaelic",
    "gl": "Galician",
    "gu": "Gujarati",
    "he": "Hebrew",
    "hi": "Hindi",
    "hr": "Croatian",
    "hu": "Hungarian",
    "hy": "Armenian",
    "id": "Indonesian",
    "is": "Icelandic",
    "it": "Italian",
    "ja": "Japanese",
    "ka": "Georgian",
    "kk": "Kazakh",
    "km": "Khmer",
    "kn": "Kannada",
    "ko": "Korean",
    "lo": "Lao",
    "lt": "Lithuanian",
    "lv": "Latvian",
    "mk": "Macedonian",
    "ml": "Malayalam",
    "mn": "Mongolian",
    "mr": "Marathi",
    "ms": "Malay",
    "mt": "Maltese",
    "my": "Burmese",
    "nb": "Norwegian Bokmål",
    "ne": "Nepali",
    "nl": "Dutch",
    "nn": "Norwegian Nynorsk",
    "pa": "Punjabi",
    "pl": "Polish",
    "pt": "Portuguese",
    "ro": "Romanian",
    "ru": "Russian",
    "si": "Sinhala",
    "sk": "Slovak",
    "sl": "Slovenian",
    "sq": "Albanian",
    "sr": "Serbian",
    "sv": "Swedish",
    "sw": "Swahili",
    "ta": "Tamil",
    "te": "Telugu",
    "th": "Thai",
    "tl": "Tagalog",
    "tr": "Turkish",
    "uk": "Ukrainian",
    "ur": "Urdu",
    "uz": "Uzbek",
    "vi": "Vietnamese",
    "zh": "Chinese",
}

REGION_NAMES: Dict[str, str] = {
    "AR": "Argentina",
    "AT": "Austria",
    "AU": "Australia",
    "BE": "Belgium",
    "BR": "Brazil",
    "CA": "Canada",
    "CH": "Switzerland",
    "CN": "China",
    "DE": "Germany",
    "ES": "Spain",
    "FR": "France",
    "GB": "United Kingdom",
    "HK": "Hong Kong",
    "IE": "Ireland",
    "IN": "India",
    "IT": "Italy",
    "JP": "Japan",
    "KR": "Korea",
    "MX": "Mexico",
    "NL": "Netherlands",
    "NZ": "New Zealand",
    "PT": "Portugal",
    "RU": "Russia",
    "SG": "Singapore",
    "TW": "Taiwan",
    "US": "United States",
}

_CODE_PATTERN = re.compile(r"^([A-Za-z]{2,3})(?:[-_]([A-Za-z0-9]{2,4}))?$")


def normalize_language_code(code: str) -> str:
    """
    Normalize a locale code to gettext style.

    "fr-fr" -> "fr_FR", "PT_br" -> "pt_BR", "zh-Hant" -> "zh_Hant".
    Codes that don't look like locales are returned stripped.
    """
    code = (code or "").strip()
    match = _CODE_PATTERN.match(code)
    if not match:
        return code

    language, region = match.groups()
    language = language.lower()
    if not region:
        return language
    if len(region) == 4:
        # Script subtag (Hant, Latn)
        return f"{language}_{region.title()}"
    return f"{language}_{region.upper()}"


def base_language(code: str) -> str:
    """Return the language part of a locale code ("pt_BR" -> "pt")."""
    return normalize_language_code(code).split("_", 1)[0].lower()


def get_language_name(code: str) -> str:
    """Return an English display name for a locale code, or the code itself."""
    normalized = normalize_language_code(code)
    language = base_language(normalized)
    name = LANGUAGE_NAMES.get(language)
    if not name:
        return normalized

    if "_" in normalized:
        region = normalized.split("_", 1)[1]
        region_name = REGION_NAMES.get(region)
        if region_name:
            return f"{name} ({region_name})"
    return name


LOCALE_FORMATS = ("target_lang", "wp_locale", "iso_639_1", "iso_639_2")

ISO_639_2_CODES: Dict[str, str] = {
    "af": "afr",
    "am": "amh",
    "ar": "ara",
    "az": "aze",
    "be": "bel",
    "bg": "bul",
    "bn": "ben",
    "bs": "bos",
    "ca": "cat",
    "cs": "ces",
    "cy": "cym",
    "da": "dan",
    "de": "deu",
    "el": "ell",
    "en": "eng",
    "eo": "epo",
    "es": "spa",
    "et": "est",
    "eu": "eus",
    "fa": "fas",
    "fi": "fin",
    "fr": "fra",
    "ga": "gle",
    "gd": "gla",
    "gl": "glg",
    "gu": "guj",
    "he": "heb",
    "hi": "hin",
    "hr": "hrv",
    "hu": "hun",
    "hy": "hye",
    "id": "ind",
    "is": "isl",
    "it": "ita",
    "ja": "jpn",
    "ka": "kat",
    "kk": "kaz",
    "km": "khm",
    "kn": "kan",
    "ko": "kor",
    "lo": "lao",
    "lt": "lit",
    "lv": "lav",
    "mk": "mkd",
    "ml": "mal",
    "mn": "mon",
    "mr": "mar",
    "ms": "msa",
    "mt": "mlt",
    "my": "mya",
    "nb": "nob",
    "ne": "nep",
    "nl": "nld",
    "nn": "nno",
    "pa": "pan",
    "pl": "pol",
    "pt": "por",
    "ro": "ron",
    "ru": "rus",
    "si": "sin",
    "sk": "slk",
    "sl": "slv",
    "sq": "sqi",
    "sr": "srp",
    "sv": "swe",
    "sw": "swa",
    "ta": "tam",
    "te": "tel",
    "th": "tha",
    "tl": "tgl",
    "tr": "tur",
    "uk": "ukr",
    "ur": "urd",
    "uz": "uzb",
    "vi": "vie",
    "zh": "zho",
}

# Region WordPress uses for a bare language code; languages WordPress ships
# without a region (ja, th, ...) are left out.
WP_DEFAULT_REGIONS: Dict[str, str] = {
    "bg": "BG",
    "cs": "CZ",
    "da": "DK",
    "de": "DE",
    "en": "US",
    "es": "ES",
    "fa": "IR",
    "fr": "FR",
    "he": "IL",
    "hi": "IN",
    "hu": "HU",
    "id": "ID",
    "it": "IT",
    "ko": "KR",
    "nb": "NO",
    "nl": "NL",
    "pl": "PL",
    "pt": "PT",
    "ro": "RO",
    "ru": "RU",
    "sk": "SK",
    "sv": "SE",
    "tr": "TR",
    "zh": "CN",
}


def format_locale(code: str, locale_format: str = "target_lang") -> str:
    """
    Render a target locale the way output file names should spell it.

    target_lang keeps the normalized code ("pt_BR"), iso_639_1 keeps the
    language ("pt"), iso_639_2 maps it to three letters ("por") and
    wp_locale adds WordPress's default region to bare codes ("ru" -> "ru_RU").
    Unknown languages fall back to the normalized code or its language part.
    """
    if locale_format not in LOCALE_FORMATS:
        raise ValueError(f"unknown locale format '{locale_format}' (known: {', '.join(LOCALE_FORMATS)})")

    normalized = normalize_language_code(code)
    language = base_language(normalized)
    if locale_format == "iso_639_1":
        return language
    if locale_format == "iso_639_2":
        return ISO_639_2_CODES.get(language, language)
    if locale_format == "wp_locale" and "_" not in normalized:
        region = WP_DEFAULT_REGIONS.get(language)
        if region:
            return f"{language}_{region}"
    return normalized
