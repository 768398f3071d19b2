"""Build the model-facing system context from the persona and the memory snapshot."""
from __future__ import annotations

from typing import Sequence

from .db import MemoryFact

MEMORY_HEADER = "=== USER LONG-TERM MEMORY ==="
EMPTY_MEMORY = "No prior context available."
EXTRACTION_INSTRUCTION = (
    "INSTRUCTION: Use the above memory to personalize your response. "
    "If the user tells you a new important fact (e.g. \"I moved to Berlin\", "
    "\"My salary is $5000\"), reply normally but also output a special tag "
    "[MEMORY: category | content] at the end of your message so the system can save it."
)


def render_memory(facts: Sequence[MemoryFact]) -> str:
    """One ``- [category] content`` line per fact, or the placeholder when empty."""
    if not facts:
        return EMPTY_MEMORY
    return "\n".join(f.render_line() for f in facts)


def assemble(persona: str, facts: Sequence[MemoryFact]) -> str:
    """Persona, then memory section, then extraction instruction. Order is fixed."""
    return "\n\n".join(
        [
            persona.strip(),
            f"{MEMORY_HEADER}\n{render_memory(facts)}",
            EXTRACTION_INSTRUCTION,
        ]
    )
