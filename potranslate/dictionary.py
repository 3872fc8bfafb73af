"""
Terminology dictionary: find terms used by a batch and prime the model with
their expected translations.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Sequence, Union

from .languages import base_language, normalize_language_code
from .models import CatalogEntry
from .protocol.tag_codec import build_dictionary_response

logger = logging.getLogger(__name__)

# Upper bound on examples injected per batch, to keep request size bounded.
MAX_DICTIONARY_MATCHES = 10


class DictionaryError(Exception):
    """Dictionary file could not be read."""

    pass


@dataclass(frozen=True)
class DictionaryMatch:
    """A source term and the translation the model must reuse."""

    source: str
    target: str


def _entry_texts(entry: CatalogEntry) -> List[str]:
    texts = [entry.msgid]
    if entry.msgid_plural:
        texts.append(entry.msgid_plural)
    return texts


def find_dictionary_matches(
    batch: Sequence[CatalogEntry],
    dictionary: Mapping[str, str],
    limit: int = MAX_DICTIONARY_MATCHES,
) -> List[DictionaryMatch]:
    """
    Find dictionary terms used by any entry of the batch.

    Matching is a case-sensitive substring test with no word-boundary check,
    so "Post" also matches inside "Posts". Terms are returned in dictionary
    order, once each, at most ``limit`` of them.

    Args:
        batch: Entries of one batch
        dictionary: Source term -> target term for one language
        limit: Maximum matches to return

    Returns:
        Ordered list of DictionaryMatch
    """
    if not dictionary or limit <= 0:
        return []

    texts = [text for entry in batch for text in _entry_texts(entry)]
    matches: List[DictionaryMatch] = []
    seen = set()

    for source, target in dictionary.items():
        if not source or source in seen:
            continue
        if any(source in text for text in texts):
            seen.add(source)
            matches.append(DictionaryMatch(source=source, target=target))
            if len(matches) >= limit:
                break

    return matches


def build_priming_messages(matches: Sequence[DictionaryMatch]) -> List[Dict[str, str]]:
    """
    Build the assistant/user exchange that reinforces dictionary terms.

    The model tends to ignore structured examples unless an explicit
    instruction follows them, so the expected dictionary reply is sent as an
    assistant turn and then a user turn names one or two terms and asks for
    exact reuse.
    """
    if not matches:
        return []

    examples = " and ".join(f'"{m.source}" → "{m.target}"' for m in matches[:2])
    instruction = (
        f"Use these exact dictionary translations wherever the terms appear, for example {examples}. "
        f"Do not paraphrase or vary them. Now translate the remaining entries, "
        f'starting at i="{len(matches) + 1}", in the same format.'
    )
    return [
        {"role": "assistant", "content": build_dictionary_response(matches)},
        {"role": "user", "content": instruction},
    ]


def _parse_dictionary_payload(payload: Union[dict, list], path: Path) -> Dict[str, str]:
    if isinstance(payload, dict):
        return {str(k): str(v) for k, v in payload.items() if k and v is not None}

    if isinstance(payload, list):
        terms: Dict[str, str] = {}
        for item in payload:
            try:
                source, target = item["source"], item["target"]
            except (KeyError, TypeError):
                logger.warning("Skipping malformed dictionary entry in %s: %r", path, item)
                continue
            if source and source not in terms:
                terms[str(source)] = str(target)
        return terms

    raise DictionaryError(f"Unsupported dictionary format in {path}: expected object or list")


def dictionary_candidates(dictionary_dir: Union[str, Path], language: str) -> List[Path]:
    """Files checked for a language, most specific first."""
    directory = Path(dictionary_dir)
    normalized = normalize_language_code(language)
    names = [f"dictionary-{normalized}.json"]
    base = base_language(normalized)
    if base != normalized:
        names.append(f"dictionary-{base}.json")
    return [directory / name for name in names]


def load_dictionary(dictionary_dir: Union[str, Path], language: str) -> Dict[str, str]:
    """
    Load the term list for one language.

    A missing file is not an error and yields an empty dictionary.

    Raises:
        DictionaryError: If the file exists but is not valid JSON
    """
    for path in dictionary_candidates(dictionary_dir, language):
        if not path.exists():
            continue
        try:
            with path.open("r", encoding="utf-8") as fh:
                payload = json.load(fh)
        except (OSError, ValueError) as e:
            raise DictionaryError(f"Failed to read dictionary {path}: {e}") from e

        terms = _parse_dictionary_payload(payload, path)
        logger.info("Loaded %d dictionary terms for %s from %s", len(terms), language, path)
        return terms

    logger.debug("No dictionary found for %s in %s", language, dictionary_dir)
    return {}
