"""
Reading templates and existing catalogs, writing translated .po files.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Union

import polib

from . import __version__
from .languages import format_locale, get_language_name
from .models import CatalogEntry, EntryKey, TranslationResult
from .validators.plural_forms import plural_forms_header, required_form_count

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class CatalogError(Exception):
    """Catalog file missing, unreadable or malformed."""

    pass


def load_po(path: PathLike) -> polib.POFile:
    """Parse a .po/.pot file, raising CatalogError on any failure."""
    path = Path(path)
    if not path.exists():
        raise CatalogError(f"Catalog not found: {path}")
    try:
        return polib.pofile(str(path), encoding="utf-8")
    except (OSError, ValueError) as e:
        raise CatalogError(f"Failed to parse {path}: {e}") from e


def _is_translatable(entry: polib.POEntry) -> bool:
    return bool(entry.msgid) and not entry.obsolete


def load_catalog(path: PathLike) -> List[CatalogEntry]:
    """
    Load source entries from a template, in file order.

    The header and obsolete entries are skipped. Extracted comments (``#.``)
    become the entry's translator note.
    """
    po = load_po(path)
    entries = [
        CatalogEntry(
            msgid=entry.msgid,
            msgctxt=entry.msgctxt or None,
            msgid_plural=entry.msgid_plural or None,
            comments=entry.comment or None,
        )
        for entry in po
        if _is_translatable(entry)
    ]
    logger.info("Loaded %d entries from %s", len(entries), path)
    return entries


def _entry_forms(entry: polib.POEntry) -> List[str]:
    if entry.msgid_plural:
        return [entry.msgstr_plural[key] for key in sorted(entry.msgstr_plural, key=int)]
    return [entry.msgstr]


def load_existing_translations(path: PathLike) -> Dict[EntryKey, List[str]]:
    """
    Load translations from an existing .po file keyed by (msgctxt, msgid).

    Fuzzy entries are ignored so they get retranslated.
    """
    po = load_po(path)
    existing: Dict[EntryKey, List[str]] = {}
    for entry in po:
        if not _is_translatable(entry) or "fuzzy" in entry.flags:
            continue
        forms = _entry_forms(entry)
        if any(form.strip() for form in forms):
            existing[(entry.msgctxt or None, entry.msgid)] = forms
    logger.info("Loaded %d existing translations from %s", len(existing), path)
    return existing


def load_template_metadata(path: PathLike) -> Dict[str, str]:
    """Header fields of a template, to carry over into generated files."""
    return dict(load_po(path).metadata)


def load_header_template(path: PathLike) -> Dict[str, str]:
    """Read extra PO headers from a JSON object file."""
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError) as e:
        raise CatalogError(f"Failed to read PO header template {path}: {e}") from e
    if not isinstance(data, dict):
        raise CatalogError(f"PO header template {path} must be a JSON object")
    return {str(k): str(v) for k, v in data.items()}


def build_po_file(
    entries: Sequence[CatalogEntry],
    results: Sequence[TranslationResult],
    language: str,
    template_metadata: Optional[Mapping[str, str]] = None,
) -> polib.POFile:
    """
    Build a translated catalog.

    ``results`` is matched to ``entries`` by (msgctxt, msgid); entries with
    no result are written untranslated.
    """
    by_key = {result.key: result for result in results}
    now = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M+0000")

    po = polib.POFile()
    metadata: Dict[str, str] = {
        "Project-Id-Version": "PACKAGE VERSION",
        "PO-Revision-Date": now,
        "Last-Translator": f"potranslate {__version__}",
        "Language-Team": get_language_name(language),
        "MIME-Version": "1.0",
    }
    metadata.update(template_metadata or {})
    metadata.update({
        "Language": language,
        "Content-Type": "text/plain; charset=UTF-8",
        "Content-Transfer-Encoding": "8bit",
        "Plural-Forms": plural_forms_header(language),
        "X-Generator": f"potranslate {__version__}",
    })
    po.metadata = metadata

    for entry in entries:
        result = by_key.get(entry.key)
        forms = list(result.forms) if result else []
        kwargs = {
            "msgid": entry.msgid,
            "comment": entry.comments or "",
        }
        if entry.msgctxt:
            kwargs["msgctxt"] = entry.msgctxt
        if entry.is_plural:
            kwargs["msgid_plural"] = entry.msgid_plural
            count = len(forms) or required_form_count(language)
            kwargs["msgstr_plural"] = {i: (forms[i] if i < len(forms) else "") for i in range(count)}
        else:
            kwargs["msgstr"] = forms[0] if forms else ""
        po.append(polib.POEntry(**kwargs))

    return po


def output_path_for(
    output_dir: PathLike, language: str, prefix: str = "", locale_format: str = "target_lang"
) -> Path:
    """``<output_dir>/<prefix><locale>.po``, the locale spelled per ``locale_format``."""
    return Path(output_dir) / f"{prefix}{format_locale(language, locale_format)}.po"


def write_catalog(
    entries: Sequence[CatalogEntry],
    results: Sequence[TranslationResult],
    language: str,
    output_dir: PathLike,
    prefix: str = "",
    template_metadata: Optional[Mapping[str, str]] = None,
    locale_format: str = "target_lang",
) -> Path:
    """Build and save one language's .po file. Returns the written path."""
    path = output_path_for(output_dir, language, prefix, locale_format)
    po = build_po_file(entries, results, language, template_metadata)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        po.save(str(path))
    except OSError as e:
        raise CatalogError(f"Failed to write {path}: {e}") from e
    logger.info("Wrote %s (%d entries)", path, len(po))
    return path
