"""
Catalog data model: source entries and their translated overlay.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

EntryKey = Tuple[Optional[str], str]


@dataclass(frozen=True)
class CatalogEntry:
    """One translatable unit of a source catalog. Never mutated by the engine."""

    msgid: str
    msgctxt: Optional[str] = None
    msgid_plural: Optional[str] = None
    comments: Optional[str] = None
    existing_translation: Tuple[str, ...] = ()

    @property
    def key(self) -> EntryKey:
        """Merge identity: (context, source text)."""
        return (self.msgctxt, self.msgid)

    @property
    def is_plural(self) -> bool:
        return bool(self.msgid_plural)

    @property
    def has_translation(self) -> bool:
        """True when an existing translation is present and every form is filled."""
        if not self.existing_translation:
            return False
        return all(form and form.strip() for form in self.existing_translation)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> CatalogEntry:
        """Create CatalogEntry from dictionary."""
        return cls(
            msgid=data["msgid"],
            msgctxt=data.get("msgctxt"),
            msgid_plural=data.get("msgid_plural"),
            comments=data.get("comments"),
            existing_translation=tuple(data.get("existing_translation") or ()),
        )


@dataclass
class TranslationResult:
    """Translated forms for one catalog entry (1 form, or N for plurals)."""

    msgid: str
    msgctxt: Optional[str] = None
    forms: List[str] = field(default_factory=list)

    @property
    def key(self) -> EntryKey:
        return (self.msgctxt, self.msgid)

    @property
    def is_empty(self) -> bool:
        return not any(form and form.strip() for form in self.forms)

    @classmethod
    def empty_for(cls, entry: CatalogEntry, form_count: int) -> TranslationResult:
        """Create an all-empty result shaped for ``entry``."""
        return cls(msgid=entry.msgid, msgctxt=entry.msgctxt, forms=[""] * form_count)

    def to_dict(self) -> Dict[str, Any]:
        """Convert TranslationResult to dictionary."""
        result: Dict[str, Any] = {"msgid": self.msgid}
        if self.msgctxt is not None:
            result["msgctxt"] = self.msgctxt
        result["forms"] = list(self.forms)
        return result


@dataclass
class Batch:
    """A bounded slice of entries sent to the model in one request."""

    index: int
    entries: List[CatalogEntry]

    def __len__(self) -> int:
        return len(self.entries)
