"""
Link data models.

Defines the classification rules and the JSON shapes exchanged with the
link consumer.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from scanner_config import LINK_PATTERNS, MESSAGE_ACTION

_NON_WORD_RE = re.compile(r'[^\w\s]')
_WHITESPACE_RE = re.compile(r'\s+')


def normalize_text(text: Optional[str]) -> str:
    """Lower-case text, turn punctuation into spaces and collapse whitespace."""
    if not text:
        return ''
    text = _NON_WORD_RE.sub(' ', text.lower())
    return _WHITESPACE_RE.sub(' ', text).strip()


class DocumentType(str, Enum):
    POLICY = "policy"
    TERMS = "terms"


class LinkPattern(BaseModel):
    """
    A keyword set that classifies a link when every keyword is present.

    Keywords are kept in the same normalized form as the text they are
    tested against, so "Terms-of-Service" is stored as "terms of service".
    """

    model_config = ConfigDict(frozen=True)

    keywords: tuple[str, ...]
    type: DocumentType

    @field_validator("keywords")
    @classmethod
    def _check_keywords(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        keywords = tuple(normalize_text(k) for k in value)
        if not keywords or not all(keywords):
            raise ValueError("pattern keywords must be a non-empty list of non-empty strings")
        return keywords


class LinkRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    href: str  # normalized absolute URL, dedup key
    text: str
    type: DocumentType
    page_title: Optional[str] = Field(default=None, alias="pageTitle")


class LinksMessage(BaseModel):
    action: Literal["sendLinks"] = MESSAGE_ACTION
    links: list[LinkRecord] = Field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        """Wire form: camelCase keys, optional fields omitted when unset."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class TriggerResponse(BaseModel):
    status: Literal["success", "failure"]
    error: Optional[str] = None
    session_id: Optional[str] = None


class DeliveryAck(BaseModel):
    status: str = "received"
    received: int = 0
    error: Optional[str] = None


def build_patterns(entries) -> tuple[LinkPattern, ...]:
    """Build an immutable pattern table from (keywords, type) pairs."""
    return tuple(
        LinkPattern(keywords=tuple(keywords), type=DocumentType(doc_type))
        for keywords, doc_type in entries
    )


DEFAULT_PATTERNS = build_patterns(LINK_PATTERNS)
