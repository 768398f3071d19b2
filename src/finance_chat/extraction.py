"""Memory directive extraction from model replies.

A reply may carry one control tag of the form::

    [MEMORY: <category> | <content>]

``parse_reply`` is a pure tokenizer step: it returns the text the user should
see and at most one extracted fact. Policy when several tags appear: the first
one is extracted and every tag is stripped, so no control syntax reaches the
user. ``MemoryExtractor`` adds the side effect of persisting the fact, best
effort.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from .db import MemoryFact
from .memory import MemoryStore

logger = logging.getLogger(__name__)

# Case-sensitive keyword, single line, non-greedy up to the closing bracket.
# The category stops at the first "|"; the content may contain more of them.
DIRECTIVE_RE = re.compile(r"\[MEMORY:[ \t]*([^\]|\n]*?)[ \t]*\|[ \t]*([^\]\n]*?)[ \t]*\]")


class ExtractionState(str, Enum):
    SCANNING = "scanning"
    EXTRACTED = "extracted"


@dataclass(frozen=True)
class ExtractedFact:
    category: str
    content: str


@dataclass(frozen=True)
class ExtractionResult:
    visible_text: str
    fact: Optional[ExtractedFact] = None
    extra_directives: int = 0
    state: ExtractionState = ExtractionState.SCANNING
    stored: Optional[MemoryFact] = None


def parse_reply(raw: str) -> ExtractionResult:
    """Split ``raw`` into visible text and the first memory directive, if any.

    Without a directive the text is returned unchanged, byte for byte.
    """
    matches = list(DIRECTIVE_RE.finditer(raw))
    if not matches:
        return ExtractionResult(visible_text=raw)

    visible = DIRECTIVE_RE.sub("", raw).strip()
    category, content = (g.strip() for g in matches[0].groups())

    fact = ExtractedFact(category=category, content=content) if content else None
    return ExtractionResult(
        visible_text=visible,
        fact=fact,
        extra_directives=len(matches) - 1,
        state=ExtractionState.EXTRACTED,
    )


class MemoryExtractor:
    """Run ``parse_reply`` and hand the fact to the memory store for one owner."""

    def __init__(self, store: MemoryStore) -> None:
        self.store = store

    def apply(self, owner_id: int, raw: str) -> ExtractionResult:
        result = parse_reply(raw)
        if result.extra_directives:
            logger.info(
                "Reply for user %s carried %d extra memory directive(s); only the first is kept",
                owner_id,
                result.extra_directives,
            )
        if result.fact is None:
            return result

        try:
            stored = self.store.add(owner_id, result.fact.content, category=result.fact.category)
        except Exception:
            # Best effort: the reply goes out even when the write fails.
            logger.exception("Failed to persist extracted memory for user %s", owner_id)
            return result

        return replace(result, stored=stored)
