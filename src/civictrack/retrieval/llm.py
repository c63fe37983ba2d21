"""LLM client — OpenAI-compatible chat completions with tool calling.

Groq hosts the primary model; fallback models on the same endpoint are
tried in order when the primary fails. Each model has its own circuit
breaker so a provider that keeps failing is skipped until it cools down.

complete() returns {"content": str, "tool_calls": list} or None when every
model failed. The orchestrator treats None as "assistant offline".
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field

import httpx

from civictrack.config import Settings
from civictrack.observability.tracing import log_metrics, start_span

logger = logging.getLogger(__name__)

# Granular timeouts: fail fast on connect, generous on read (LLM generation)
LLM_TIMEOUT = httpx.Timeout(connect=10.0, read=60.0, write=10.0, pool=5.0)

MAX_RETRIES = 2
BASE_DELAY = 1.0


# ---------------------------------------------------------------------------
# Circuit Breaker
# States: CLOSED (normal) → OPEN (failing) → HALF_OPEN (testing recovery)
# ---------------------------------------------------------------------------

@dataclass
class CircuitBreaker:
    """Per-model circuit breaker for LLM API calls."""

    failure_threshold: int = 5
    reset_seconds: int = 60
    _failure_count: int = field(default=0, repr=False)
    _last_failure_time: float = field(default=0.0, repr=False)
    _state: str = field(default="closed", repr=False)  # closed, open, half_open

    @property
    def state(self) -> str:
        if self._state == "open":
            if time.monotonic() - self._last_failure_time >= self.reset_seconds:
                self._state = "half_open"
        return self._state

    def allow_request(self) -> bool:
        return self.state in ("closed", "half_open")

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = "closed"

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()
        if self._failure_count >= self.failure_threshold:
            self._state = "open"
            logger.warning(
                "Circuit breaker OPEN after %d failures (reset in %ds)",
                self._failure_count, self.reset_seconds,
            )


def clean_messages_for_api(messages: list[dict]) -> list[dict]:
    """Clean messages to be valid for OpenAI-compatible APIs."""
    cleaned = []
    for msg in messages:
        clean = {"role": msg["role"]}

        content = msg.get("content")
        if content is not None:
            clean["content"] = content
        elif msg["role"] == "assistant":
            clean["content"] = ""

        if msg.get("tool_calls"):
            clean["tool_calls"] = msg["tool_calls"]

        if msg["role"] == "tool":
            clean["tool_call_id"] = msg.get("tool_call_id", "")
            if "content" not in clean:
                clean["content"] = ""

        cleaned.append(clean)
    return cleaned


class LLMClient:
    """Tool-calling chat client bound to one API key and a model fallback chain."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        models: list[str],
        temperature: float = 0.2,
        max_tokens: int = 2000,
        timeout: httpx.Timeout = LLM_TIMEOUT,
    ):
        self._api_key = api_key
        self._url = base_url
        self._models = [m for m in models if m]
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout = timeout
        self._breakers: dict[str, CircuitBreaker] = {m: CircuitBreaker() for m in self._models}

    @classmethod
    def from_settings(cls, settings: Settings) -> "LLMClient":
        return cls(
            api_key=settings.groq_api_key,
            base_url=settings.llm_base_url,
            models=[settings.llm_model, *settings.llm_fallback_models],
            temperature=settings.llm_temperature,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key and self._url and self._models)

    async def complete(self, messages: list[dict], tools: list[dict] | None = None) -> dict | None:
        """Call the model chain and return the first successful assistant message."""
        if not self.is_configured:
            logger.error("LLM not configured (missing API key or model)")
            return None

        payload: dict = {
            "messages": clean_messages_for_api(messages),
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"

        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            for model in self._models:
                message = await self._call_model(client, headers, {**payload, "model": model})
                if message is not None:
                    return {
                        "content": message.get("content") or "",
                        "tool_calls": message.get("tool_calls") or [],
                    }
                logger.warning("Model %s failed, trying next model", model)

        logger.error("All LLM models failed")
        return None

    async def _call_model(self, client: httpx.AsyncClient, headers: dict, payload: dict) -> dict | None:
        """POST one completion with retry on 429/5xx/timeouts; None on failure."""
        model = payload["model"]
        breaker = self._breakers.setdefault(model, CircuitBreaker())
        if not breaker.allow_request():
            logger.info("Circuit breaker OPEN for %s — skipping", model)
            return None

        with start_span(name="llm_call", span_type="CHAT_MODEL") as span:
            span.set_inputs({"model": model, "message_count": len(payload["messages"])})

            for attempt in range(MAX_RETRIES + 1):
                last_attempt = attempt == MAX_RETRIES
                try:
                    resp = await client.post(self._url, json=payload, headers=headers)
                    resp.raise_for_status()
                    data = resp.json()
                    message = data["choices"][0]["message"]
                except httpx.HTTPStatusError as e:
                    status = e.response.status_code
                    if (status == 429 or status >= 500) and not last_attempt:
                        delay = BASE_DELAY * (2 ** attempt)
                        logger.warning(
                            "%s %d (attempt %d/%d), retrying in %.1fs",
                            model, status, attempt + 1, MAX_RETRIES + 1, delay,
                        )
                        await asyncio.sleep(delay)
                        continue
                    logger.error("%s error %d: %s", model, status, e.response.text[:200])
                    breaker.record_failure()
                    span.set_outputs({"error": f"http_{status}", "attempts": attempt + 1})
                    return None
                except httpx.TimeoutException:
                    if not last_attempt:
                        delay = BASE_DELAY * (2 ** attempt)
                        logger.warning(
                            "%s timeout (attempt %d/%d), retrying in %.1fs",
                            model, attempt + 1, MAX_RETRIES + 1, delay,
                        )
                        await asyncio.sleep(delay)
                        continue
                    logger.error("%s timed out after %d attempts", model, attempt + 1)
                    breaker.record_failure()
                    span.set_outputs({"error": "timeout", "attempts": attempt + 1})
                    return None
                except (KeyError, IndexError, ValueError) as e:
                    logger.error("Unexpected %s response structure: %s", model, e)
                    breaker.record_failure()
                    span.set_outputs({"error": f"parse_error: {e}", "attempts": attempt + 1})
                    return None
                except httpx.HTTPError as e:
                    logger.error("%s transport error: %s", model, e)
                    breaker.record_failure()
                    span.set_outputs({"error": str(e), "attempts": attempt + 1})
                    return None

                usage = data.get("usage", {})
                prompt_tokens = usage.get("prompt_tokens", 0)
                completion_tokens = usage.get("completion_tokens", 0)
                span.set_outputs({
                    "has_content": bool(message.get("content")),
                    "has_tool_calls": bool(message.get("tool_calls")),
                    "attempts": attempt + 1,
                    "prompt_tokens": prompt_tokens,
                    "completion_tokens": completion_tokens,
                })
                if prompt_tokens or completion_tokens:
                    log_metrics({
                        "llm_prompt_tokens": float(prompt_tokens),
                        "llm_completion_tokens": float(completion_tokens),
                    })
                breaker.record_success()
                logger.info("LLM response from %s", model)
                return message

        return None
