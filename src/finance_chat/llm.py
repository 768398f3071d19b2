"""Client for an OpenAI-compatible chat completion endpoint (Groq by default)."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import httpx

from .errors import ConfigurationMissing, UpstreamUnavailable

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.groq.com/openai/v1"
DEFAULT_MODEL = "llama-3.3-70b-versatile"
RETRY_STATUS = {408, 409, 429, 500, 502, 503, 504}


# -----------------------------
# Types & defaults
# -----------------------------

@dataclass(frozen=True)
class GenerationConfig:
    temperature: float = 0.7
    max_tokens: int = 1024
    json_mode: bool = False


CHAT = GenerationConfig(temperature=0.7, max_tokens=1024)


def build_messages(
    system_prompt: str,
    history: Iterable[Dict[str, Any]],
    user_message: str,
) -> List[Dict[str, str]]:
    """System message, prior user/assistant turns, then the new user message.

    History entries with any other role are dropped.
    """
    msgs: List[Dict[str, str]] = [{"role": "system", "content": system_prompt}]
    for m in history:
        role = m.get("role")
        if role not in ("user", "assistant"):
            continue
        msgs.append({"role": role, "content": str(m.get("content") or "")})
    msgs.append({"role": "user", "content": user_message})
    return msgs


# -----------------------------
# HTTP client
# -----------------------------

class ChatClient:
    """Thin, retrying wrapper around ``POST {base_url}/chat/completions``.

    The API key is passed per call; the client itself holds no credential.
    Transport errors, 429 and 5xx are retried ``max_retries`` times with a
    linear backoff. Anything else fails at once with UpstreamUnavailable.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        *,
        timeout: float = 30.0,
        max_retries: int = 2,
        backoff: float = 0.75,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.max_retries = max(0, int(max_retries))
        self.backoff = max(0.0, float(backoff))
        self._http = httpx.Client(
            timeout=httpx.Timeout(timeout, connect=min(timeout, 5.0)),
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def complete(
        self,
        messages: List[Dict[str, str]],
        *,
        api_key: Optional[str],
        config: GenerationConfig = CHAT,
    ) -> str:
        """Return the assistant text of one completion."""
        if not api_key or not api_key.strip():
            raise ConfigurationMissing("No model API key configured")

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
        }
        if config.json_mode:
            payload["response_format"] = {"type": "json_object"}

        data = self._post_with_retry(payload, api_key.strip())
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise UpstreamUnavailable("Malformed completion response")
        if not isinstance(content, str):
            raise UpstreamUnavailable("Malformed completion response")
        return content

    def _post_with_retry(self, payload: Dict[str, Any], api_key: str) -> Dict[str, Any]:
        url = f"{self.base_url}/chat/completions"
        headers = {"Authorization": f"Bearer {api_key}"}
        last_err: Exception | None = None

        for attempt in range(1, self.max_retries + 2):
            try:
                resp = self._http.post(url, json=payload, headers=headers)
                if resp.status_code in RETRY_STATUS:
                    raise httpx.HTTPStatusError(
                        f"retryable status {resp.status_code}", request=resp.request, response=resp
                    )
                resp.raise_for_status()
                return resp.json()
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status not in RETRY_STATUS:
                    logger.error("Model request rejected with status %s", status)
                    raise UpstreamUnavailable(f"Model provider returned HTTP {status}") from e
                last_err = e
            except (httpx.TransportError, ValueError) as e:
                # ValueError: body was not JSON
                last_err = e

            if attempt <= self.max_retries:
                delay = self.backoff * attempt
                logger.warning("Model request retry %d: %s (sleep %.2fs)", attempt, last_err, delay)
                time.sleep(delay)

        logger.error("Model request failed after %d attempt(s): %s", self.max_retries + 1, last_err)
        raise UpstreamUnavailable("Model provider unavailable") from last_err


# -----------------------------
# Convenience factory
# -----------------------------

def create_from_config(cfg: Dict[str, Any]) -> ChatClient:
    """Create a ChatClient from the ``llm`` section of a config dict."""
    llm_cfg = (cfg or {}).get("llm", {}) if isinstance(cfg, dict) else {}
    return ChatClient(
        base_url=llm_cfg.get("base_url") or DEFAULT_BASE_URL,
        model=llm_cfg.get("model") or DEFAULT_MODEL,
        timeout=float(llm_cfg.get("timeout", 30.0)),
        max_retries=int(llm_cfg.get("max_retries", 2)),
        backoff=float(llm_cfg.get("backoff", 0.75)),
    )
