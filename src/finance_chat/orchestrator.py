"""One conversation turn: history, memory, model call, extraction, logging."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .context import assemble
from .db import MemoryFact
from .errors import InvalidInput, UpstreamUnavailable
from .extraction import MemoryExtractor
from .history import ConversationLog
from .llm import CHAT, ChatClient, GenerationConfig, build_messages
from .memory import MemoryStore
from .prompts import SYSTEM_PROMPT

logger = logging.getLogger(__name__)

CONFIGURATION_NOTICE = (
    "Please set your Groq API Key in the settings (Gear icon) to start chatting."
)
UPSTREAM_APOLOGY = (
    "**Connection Error**: I couldn't reach the language model just now. "
    "Please verify your API Key and try again in a moment."
)


@dataclass(frozen=True)
class TurnResult:
    reply: str
    fact: Optional[MemoryFact] = None
    model_called: bool = True


class ConversationOrchestrator:
    """Coordinates the per-turn pipeline for one user.

    Both log appends and the memory write are independent best-effort
    writes; a failure in one does not undo or block the others.
    """

    def __init__(
        self,
        memory: MemoryStore,
        history: ConversationLog,
        client: ChatClient,
        *,
        persona: str = SYSTEM_PROMPT,
        chat_config: GenerationConfig = CHAT,
    ) -> None:
        self.memory = memory
        self.history = history
        self.client = client
        self.persona = persona
        self.chat_config = chat_config
        self.extractor = MemoryExtractor(memory)

    def _append(self, owner_id: int, role: str, content: str) -> None:
        try:
            self.history.append(owner_id, role, content)
        except Exception:
            logger.exception("Failed to append %s message for user %s", role, owner_id)

    def run_turn(
        self,
        owner_id: int,
        text: str,
        *,
        api_key: Optional[str],
        prior: Optional[Sequence[Dict[str, Any]]] = None,
    ) -> TurnResult:
        """Answer ``text`` for ``owner_id`` and return the visible reply.

        ``prior`` is an optional working set of ``{"role", "content"}`` turns
        supplied by the caller; when omitted the stored log is used.
        """
        text = (text or "").strip()
        if not text:
            raise InvalidInput("Message cannot be empty.")

        if prior is None:
            turns: List[Dict[str, Any]] = [
                {"role": m.role, "content": m.content} for m in self.history.list(owner_id)
            ]
        else:
            turns = list(prior)
        facts = self.memory.list(owner_id)

        self._append(owner_id, "user", text)

        if not api_key or not api_key.strip():
            return TurnResult(reply=CONFIGURATION_NOTICE, model_called=False)

        messages = build_messages(assemble(self.persona, facts), turns, text)
        try:
            raw = self.client.complete(messages, api_key=api_key, config=self.chat_config)
        except UpstreamUnavailable as e:
            logger.warning("Chat completion failed for user %s: %s", owner_id, e)
            self._append(owner_id, "assistant", UPSTREAM_APOLOGY)
            return TurnResult(reply=UPSTREAM_APOLOGY)

        result = self.extractor.apply(owner_id, raw)
        reply = result.visible_text or "No response generated."
        self._append(owner_id, "assistant", reply)
        return TurnResult(reply=reply, fact=result.stored)
