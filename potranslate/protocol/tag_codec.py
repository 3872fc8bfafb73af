"""
Tagged-block wire protocol between the batch pipeline and the model.

Requests list entries as ``<source i="N">text</source>``; the model answers
with ``<t i="N">translation</t>`` blocks, or ``<t i="N"><f0>..</f0><f1>..</f1></t>``
for plural entries. Dictionary examples take the lowest indices, so reply
indices are offset by the dictionary count when mapped back to the batch.

Replies are scanned leniently: the model is an unreliable producer, so
malformed or partial output degrades to empty forms instead of raising.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence

from ..languages import get_language_name
from ..models import CatalogEntry, TranslationResult, ValidationStats
from ..validators.plural_forms import validate_plural_forms

if TYPE_CHECKING:
    from ..dictionary import DictionaryMatch

logger = logging.getLogger(__name__)

_BLOCK_PATTERN = re.compile(r"<t\b[^>]*>.*?</t>", re.DOTALL)
_INDEX_PATTERN = re.compile(r'\bi="(\d+)"')
_BODY_PATTERN = re.compile(r"<t\b[^>]*>(.*?)</t>", re.DOTALL)
_FORM_PATTERN = re.compile(r"<f(\d+)>(.*?)</f\1>", re.DOTALL)

DICTIONARY_START = "<!-- Dictionary Examples for Consistency -->"
DICTIONARY_END = "<!-- End Dictionary Examples -->"

_ESCAPES = (
    ("&", "&amp;"),
    ('"', "&quot;"),
    ("'", "&apos;"),
    ("<", "&lt;"),
    (">", "&gt;"),
)

# &amp; goes last so "&amp;lt;" decodes to "&lt;", never "<".
_UNESCAPES = (
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&apos;", "'"),
    ("&amp;", "&"),
)


def escape_text(text: Optional[str]) -> str:
    """Escape ``& " ' < >``; nothing else is transformed."""
    if not text:
        return ""
    for raw, entity in _ESCAPES:
        text = text.replace(raw, entity)
    return text


def decode_entities(text: Optional[str]) -> str:
    """Decode the five XML entities produced by :func:`escape_text`."""
    if not text:
        return ""
    for entity, raw in _UNESCAPES:
        text = text.replace(entity, raw)
    return text


def expected_form_count(entry: CatalogEntry, plural_count: int) -> int:
    """Plural entries need the language's form count; others need one form."""
    return plural_count if entry.is_plural else 1


# =============================================================================
# Encoding
# =============================================================================

@dataclass
class EncodedRequest:
    """Prompt text for one batch plus what the decoder needs to read the reply."""

    prompt: str
    dictionary_count: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)


def _render_entry(entry: CatalogEntry, index: int) -> str:
    attrs = [f'i="{index}"']
    if entry.msgctxt:
        attrs.append(f'ctx="{escape_text(entry.msgctxt)}"')
    if entry.comments:
        attrs.append(f'c="{escape_text(entry.comments)}"')
    attr_text = " ".join(attrs)

    if entry.is_plural:
        return (
            f"<source {attr_text}>"
            f"<singular>{escape_text(entry.msgid)}</singular>"
            f"<plural>{escape_text(entry.msgid_plural)}</plural>"
            f"</source>"
        )
    return f"<source {attr_text}>{escape_text(entry.msgid)}</source>"


def encode_batch(
    batch: Sequence[CatalogEntry],
    target_language: str,
    plural_count: int,
    dictionary_matches: Sequence["DictionaryMatch"] = (),
) -> EncodedRequest:
    """
    Build the request prompt for one batch.

    Args:
        batch: Entries to translate, in catalog order
        target_language: Target locale code
        plural_count: Plural forms required by the target language
        dictionary_matches: Dictionary examples to prime the model with

    Returns:
        EncodedRequest with the prompt and the dictionary offset
    """
    language_name = get_language_name(target_language)
    lines: List[str] = [f"Translate to {language_name}:", ""]

    start_index = 1
    if dictionary_matches:
        lines.append(DICTIONARY_START)
        for offset, match in enumerate(dictionary_matches, start=1):
            lines.append(f'<source i="{offset}">{escape_text(match.source)}</source>')
        lines.append(DICTIONARY_END)
        lines.append("")
        start_index = len(dictionary_matches) + 1

    for position, entry in enumerate(batch):
        lines.append(_render_entry(entry, start_index + position))

    lines.append("")
    lines.append("Respond:")

    has_plurals = any(entry.is_plural for entry in batch)
    if has_plurals:
        form_tags = "".join(
            f"<f{i}>translation for form {i}</f{i}>" for i in range(plural_count)
        )
        lines.append(
            f"For entries with <singular> and <plural> tags, provide {plural_count} "
            f"translation{'s' if plural_count != 1 else ''}:"
        )
        lines.append(f'Format: <t i="N">{form_tags}</t>')
        lines.append("For all other entries:")
    lines.append('Format: <t i="N">translation</t>')

    return EncodedRequest(
        prompt="\n".join(lines) + "\n",
        dictionary_count=len(dictionary_matches),
        metadata={
            "has_dictionary": bool(dictionary_matches),
            "dictionary_entries": len(dictionary_matches),
            "batch_start_index": start_index,
            "batch_size": len(batch),
            "has_plurals": has_plurals,
        },
    )


def build_dictionary_response(dictionary_matches: Sequence["DictionaryMatch"]) -> str:
    """The reply the model is expected to give for the dictionary examples."""
    return "\n".join(
        f'<t i="{index}">{escape_text(match.target)}</t>'
        for index, match in enumerate(dictionary_matches, start=1)
    )


# =============================================================================
# Decoding
# =============================================================================

@dataclass
class RawBlock:
    """One ``<t>`` block found in a reply."""

    index: int
    text: str


class LenientTagScanner:
    """Find ``<t i="N">...</t>`` blocks anywhere in free text."""

    def scan(self, response_text: str) -> List[RawBlock]:
        blocks: List[RawBlock] = []
        for raw in _BLOCK_PATTERN.findall(response_text or ""):
            index_match = _INDEX_PATTERN.search(raw.split(">", 1)[0])
            if not index_match:
                logger.warning("No index found in translation block: %r", raw[:80])
                continue
            blocks.append(RawBlock(index=int(index_match.group(1)), text=raw))
        return blocks


class BatchIndexResolver:
    """Map 1-based reply indices back to 0-based batch positions."""

    def __init__(self, dictionary_count: int, batch_size: int):
        self.dictionary_count = dictionary_count
        self.batch_size = batch_size

    def is_dictionary_echo(self, index: int) -> bool:
        return index <= self.dictionary_count

    def resolve(self, index: int) -> Optional[int]:
        """
        Return the batch position for ``index``, or None when it is a
        dictionary echo or out of range.
        """
        if self.is_dictionary_echo(index):
            return None
        position = index - self.dictionary_count - 1
        if 0 <= position < self.batch_size:
            return position
        return None


@dataclass
class DecodeResult:
    """Per-entry translations decoded from one reply."""

    translations: List[TranslationResult]
    validation_stats: ValidationStats
    blocks_found: int = 0
    entries_answered: int = 0


class ResponseDecoder:
    """
    Decode a reply into per-entry forms.

    The scanner and resolver are separate so a stricter scanner can be
    swapped in without touching retry or budget logic.
    """

    def __init__(
        self,
        scanner: Optional[LenientTagScanner] = None,
        resolver_factory: Callable[[int, int], BatchIndexResolver] = BatchIndexResolver,
    ):
        self.scanner = scanner or LenientTagScanner()
        self.resolver_factory = resolver_factory

    def decode(
        self,
        response_text: Optional[str],
        batch: Sequence[CatalogEntry],
        plural_count: int,
        dictionary_count: int = 0,
    ) -> DecodeResult:
        results = [
            TranslationResult.empty_for(entry, expected_form_count(entry, plural_count))
            for entry in batch
        ]
        stats = ValidationStats()

        if not response_text or not response_text.strip():
            logger.warning("Empty response received for batch of %d entries", len(batch))
            return DecodeResult(results, stats)

        try:
            blocks = self.scanner.scan(response_text)
        except Exception as e:
            logger.warning("Failed to scan response: %s", e)
            return DecodeResult(results, stats)

        if not blocks:
            logger.warning("No translation blocks found in response")
            return DecodeResult(results, stats)

        resolver = self.resolver_factory(dictionary_count, len(batch))
        answered = set()

        for block in blocks:
            if resolver.is_dictionary_echo(block.index):
                continue
            position = resolver.resolve(block.index)
            if position is None:
                logger.warning(
                    "Invalid batch index %d (response index %d) in translation block",
                    block.index - dictionary_count - 1, block.index,
                )
                stats.record("unmatched_response_indices")
                continue

            entry = batch[position]
            forms = self._decode_block(block, entry, plural_count, stats)
            if forms is None:
                continue
            results[position].forms = forms
            answered.add(position)

        missing = len(batch) - len(answered)
        if missing:
            stats.record("missing_translations", missing)

        return DecodeResult(
            translations=results,
            validation_stats=stats,
            blocks_found=len(blocks),
            entries_answered=len(answered),
        )

    def _decode_block(
        self,
        block: RawBlock,
        entry: CatalogEntry,
        plural_count: int,
        stats: ValidationStats,
    ) -> Optional[List[str]]:
        expected = expected_form_count(entry, plural_count)

        if "<f0>" in block.text:
            found = {int(num): decode_entities(text) for num, text in _FORM_PATTERN.findall(block.text)}
            size = max(expected, max(found) + 1) if found else expected
            forms = [found.get(i, "") for i in range(size)]
            missing_form = any(i not in found for i in range(expected))
            if missing_form:
                logger.warning(
                    "Missing form tags in translation block for index %d", block.index
                )
            corrected, has_issues = validate_plural_forms(forms, expected, entry.msgid, block.index)
            if has_issues or missing_form:
                stats.record("strings_with_plural_issues")
            return corrected

        body_match = _BODY_PATTERN.search(block.text)
        if not body_match:
            logger.warning("Could not extract translation from block for index %d", block.index)
            return None

        translation = decode_entities(body_match.group(1))
        if expected == 1:
            return [translation]

        logger.warning(
            "Missing plural forms at index %d for %r: expected %d forms but received a "
            "single translation. Using it for form 0 only.",
            block.index, entry.msgid[:50], expected,
        )
        corrected, has_issues = validate_plural_forms([translation], expected, entry.msgid, block.index)
        if has_issues:
            stats.record("strings_with_plural_issues")
        return corrected


_default_decoder = ResponseDecoder()


def decode_response(
    response_text: Optional[str],
    batch: Sequence[CatalogEntry],
    plural_count: int,
    dictionary_count: int = 0,
) -> DecodeResult:
    """Decode a reply with the lenient scanner. Never raises."""
    return _default_decoder.decode(response_text, batch, plural_count, dictionary_count)
