"""
Plural form policy: how many forms a language needs and how to repair a
model reply that returned the wrong number.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from ..languages import normalize_language_code

logger = logging.getLogger(__name__)

DEFAULT_PLURAL_RULE: Tuple[int, str] = (2, "(n != 1)")

# gettext Plural-Forms, keyed by normalized (lowercase) locale code.
PLURAL_RULES: Dict[str, Tuple[int, str]] = {
    # One form
    "ja": (1, "0"),
    "zh": (1, "0"),
    "ko": (1, "0"),
    "vi": (1, "0"),
    "th": (1, "0"),
    "id": (1, "0"),
    "ms": (1, "0"),
    "lo": (1, "0"),
    "km": (1, "0"),
    "my": (1, "0"),
    "ka": (1, "0"),
    # Two forms, singular for 0 and 1
    "fr": (2, "(n > 1)"),
    "pt_br": (2, "(n > 1)"),
    "tr": (2, "(n > 1)"),
    "fil": (2, "(n > 1)"),
    # Three forms
    "ru": (3, "(n%10==1 && n%100!=11 ? 0 : n%10>=2 && n%10<=4 && (n%100<10 || n%100>=20) ? 1 : 2)"),
    "uk": (3, "(n%10==1 && n%100!=11 ? 0 : n%10>=2 && n%10<=4 && (n%100<10 || n%100>=20) ? 1 : 2)"),
    "be": (3, "(n%10==1 && n%100!=11 ? 0 : n%10>=2 && n%10<=4 && (n%100<10 || n%100>=20) ? 1 : 2)"),
    "sr": (3, "(n%10==1 && n%100!=11 ? 0 : n%10>=2 && n%10<=4 && (n%100<10 || n%100>=20) ? 1 : 2)"),
    "hr": (3, "(n%10==1 && n%100!=11 ? 0 : n%10>=2 && n%10<=4 && (n%100<10 || n%100>=20) ? 1 : 2)"),
    "bs": (3, "(n%10==1 && n%100!=11 ? 0 : n%10>=2 && n%10<=4 && (n%100<10 || n%100>=20) ? 1 : 2)"),
    "pl": (3, "(n==1 ? 0 : n%10>=2 && n%10<=4 && (n%100<10 || n%100>=20) ? 1 : 2)"),
    "cs": (3, "(n==1) ? 0 : (n>=2 && n<=4) ? 1 : 2"),
    "sk": (3, "(n==1) ? 0 : (n>=2 && n<=4) ? 1 : 2"),
    "lt": (3, "(n%10==1 && n%100!=11 ? 0 : n%10>=2 && (n%100<10 || n%100>=20) ? 1 : 2)"),
    "lv": (3, "(n%10==1 && n%100!=11 ? 0 : n != 0 ? 1 : 2)"),
    "ro": (3, "(n==1 ? 0 : (n==0 || (n%100 > 0 && n%100 < 20)) ? 1 : 2)"),
    # Four forms
    "sl": (4, "(n%100==1 ? 0 : n%100==2 ? 1 : n%100==3 || n%100==4 ? 2 : 3)"),
    "cy": (4, "(n==1) ? 0 : (n==2) ? 1 : (n != 8 && n != 11) ? 2 : 3"),
    "gd": (4, "(n==1 || n==11) ? 0 : (n==2 || n==12) ? 1 : (n > 2 && n < 20) ? 2 : 3"),
    # Five forms
    "ga": (5, "n==1 ? 0 : n==2 ? 1 : (n>2 && n<7) ? 2 :(n>6 && n<11) ? 3 : 4"),
    # Six forms
    "ar": (6, "(n==0 ? 0 : n==1 ? 1 : n==2 ? 2 : n%100>=3 && n%100<=10 ? 3 : n%100>=11 ? 4 : 5)"),
}


def get_plural_rule(language_code: str) -> Tuple[int, str]:
    """
    Look up the plural rule for a locale.

    Tries the full locale ("pt_br") first, then the base language ("pt"),
    then falls back to the common singular/plural split.
    """
    normalized = normalize_language_code(language_code).lower()
    if normalized in PLURAL_RULES:
        return PLURAL_RULES[normalized]
    base = normalized.split("_", 1)[0]
    return PLURAL_RULES.get(base, DEFAULT_PLURAL_RULE)


def required_form_count(language_code: str) -> int:
    """Number of plural forms the language needs (always >= 1)."""
    return max(1, get_plural_rule(language_code)[0])


def plural_forms_header(language_code: str) -> str:
    """Return the ``Plural-Forms`` header value for a locale."""
    nplurals, expression = get_plural_rule(language_code)
    return f"nplurals={nplurals}; plural={expression};"


def validate_plural_forms(
    forms: Sequence[str],
    expected_count: int,
    msgid: str = "",
    item_index: Optional[int] = None,
) -> Tuple[List[str], bool]:
    """
    Ensure a list of translated forms has exactly ``expected_count`` items.

    Pads with empty strings or truncates from the end. Partially empty forms
    are flagged but left as-is.

    Args:
        forms: Forms as decoded from the model reply
        expected_count: Forms required by the target language
        msgid: Source text, for log context only
        item_index: Response index, for log context only

    Returns:
        Tuple of (corrected_forms, has_issues)
    """
    corrected = [form if form is not None else "" for form in forms]
    issues: List[str] = []
    where = f"index {item_index}" if item_index is not None else "entry"
    preview = (msgid or "")[:50]

    if len(corrected) < expected_count:
        issues.append(f"insufficient forms (expected {expected_count}, got {len(corrected)})")
        logger.warning(
            "Insufficient plural forms at %s for %r: expected %d, got %d. Padding with empty strings.",
            where, preview, expected_count, len(corrected),
        )
        corrected.extend([""] * (expected_count - len(corrected)))
    elif len(corrected) > expected_count:
        issues.append(f"excess forms (expected {expected_count}, got {len(corrected)})")
        logger.warning(
            "Too many plural forms at %s for %r: expected %d, got %d. Truncating.",
            where, preview, expected_count, len(corrected),
        )
        corrected = corrected[:expected_count]

    non_empty = sum(1 for form in corrected if form.strip())
    if 0 < non_empty < expected_count:
        empty_indices = [i for i, form in enumerate(corrected) if not form.strip()]
        issues.append(f"incomplete forms (empty at indices {empty_indices})")
        logger.warning(
            "Incomplete plural forms at %s for %r: forms at indices %s are empty.",
            where, preview, empty_indices,
        )

    if issues:
        logger.debug("Plural issues at %s: %s", where, ", ".join(issues))

    return corrected, bool(issues)
