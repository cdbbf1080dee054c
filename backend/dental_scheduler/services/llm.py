import json
import logging
import time
import uuid
from typing import Any

import httpx

from ..config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are the receptionist for a dental office. Rewrite the draft reply so it "
    "sounds warm and natural. Keep every date, time, name and instruction exactly "
    'as given. Return JSON only: {"reply": "..."}'
)


def _extract_first_json(text: str) -> dict[str, Any] | None:
    start = None
    depth = 0
    for idx, char in enumerate(text):
        if char == "{":
            if depth == 0:
                start = idx
            depth += 1
        elif char == "}":
            if depth > 0:
                depth -= 1
                if depth == 0 and start is not None:
                    candidate = text[start : idx + 1]
                    try:
                        return json.loads(candidate)
                    except json.JSONDecodeError:
                        return None
    return None


def _normalize_reply(payload: dict[str, Any]) -> str | None:
    reply = payload.get("reply")
    if not isinstance(reply, str) or not reply.strip():
        return None
    return reply.strip()


class ReplyPhraser:
    """Optional free-text provider. The rule-based draft is always a valid reply."""

    def __init__(self, config: Settings | None = None, timeout: float = 15) -> None:
        self._settings = config or default_settings
        self._timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self._settings.anthropic_api_key)

    async def phrase(self, draft: str, utterance: str, context: dict[str, Any] | None = None) -> str:
        request_id = uuid.uuid4().hex
        start = time.perf_counter()
        used_fallback = False
        fallback_reason = None
        try:
            if not self.enabled:
                used_fallback = True
                fallback_reason = "missing_api_key"
                return draft

            content = json.dumps(
                {"patient_said": utterance, "draft_reply": draft, "context": context or {}},
                default=str,
            )
            payload = {
                "model": self._settings.anthropic_model,
                "max_tokens": 300,
                "system": SYSTEM_PROMPT,
                "messages": [{"role": "user", "content": content}],
            }
            headers = {
                "x-api-key": self._settings.anthropic_api_key,
                "anthropic-version": "2023-06-01",
                "content-type": "application/json",
            }

            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(
                    "https://api.anthropic.com/v1/messages", json=payload, headers=headers
                )
                response.raise_for_status()
                data = response.json()

            text = "".join(
                part.get("text", "")
                for part in data.get("content", [])
                if part.get("type") == "text"
            )
            parsed = _extract_first_json(text)
            if not isinstance(parsed, dict):
                used_fallback = True
                fallback_reason = "json_parse_failed"
                return draft

            reply = _normalize_reply(parsed)
            if not reply:
                used_fallback = True
                fallback_reason = "normalize_failed"
                return draft

            return reply
        except Exception as exc:
            used_fallback = True
            fallback_reason = f"exception:{type(exc).__name__}"
            return draft
        finally:
            latency_ms = int((time.perf_counter() - start) * 1000)
            logger.info(
                "reply_phrase request_id=%s latency_ms=%s fallback=%s reason=%s",
                request_id,
                latency_ms,
                used_fallback,
                fallback_reason,
            )
