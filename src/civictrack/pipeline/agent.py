"""Chat orchestrator — one user message in, one reply string out.

Per message:
  1. Load (or start) the user's conversation, append the user turn, save.
  2. Window the last HISTORY_WINDOW messages and rewrite the newest user
     turn to carry identity and conversation context.
  3. Run the tool loop against the LLM (bounded turns, bounded time).
  4. Decide the reply: the form signal if the trigger tool ran during this
     exchange, else the final assistant text, else a fallback.
  5. Append the assistant turn and save (tool-made context changes ride along).

handle_message() never raises. A missing API key, an exhausted model chain
or a timed-out call yields the offline message; anything else the error
message.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from civictrack.core.errors import ModelUnavailableError
from civictrack.core.types import Conversation, Message
from civictrack.observability.logging import bind_fields, log_duration
from civictrack.observability.prompts import get_active_prompt
from civictrack.observability.tracing import start_span
from civictrack.pipeline.tools import FORM_TRIGGER_MARKER, TRIGGER_TOOL_NAME, ToolContext, ToolRegistry
from civictrack.retrieval.llm import LLMClient
from civictrack.storage.conversations import ConversationStore

logger = logging.getLogger(__name__)

MAX_AGENT_TURNS = 8    # Max tool-use loops per chat message
HISTORY_WINDOW = 10    # Stored messages replayed to the model
MODEL_TIMEOUT_SECONDS = 60.0

OPEN_FORM_SIGNAL = "__OPEN_ISSUE_FORM__"
FALLBACK_REPLY = "I'm not sure how to help with that. Could you please rephrase your question?"
OFFLINE_REPLY = "I'm currently offline. Please check your issues in the dashboard or contact support."
ERROR_REPLY = (
    "I encountered an error processing your request. "
    "Please try again or contact support if the issue persists."
)


def _called_tools(turn: dict) -> list[str]:
    return [tc.get("function", {}).get("name", "") for tc in turn.get("tool_calls") or []]


def resolve_reply(exchange: list[dict]) -> str:
    """Pick the reply for the turns generated during one exchange."""
    triggered = any(
        TRIGGER_TOOL_NAME in _called_tools(turn) for turn in exchange if turn.get("role") == "assistant"
    )
    if triggered:
        has_marker = any(
            turn.get("role") == "tool" and FORM_TRIGGER_MARKER in (turn.get("content") or "")
            for turn in exchange
        )
        if not has_marker:
            logger.warning("Form trigger called without a marker result")
        return OPEN_FORM_SIGNAL

    assistant_turns = [t for t in exchange if t.get("role") == "assistant"]
    if assistant_turns:
        content = (assistant_turns[-1].get("content") or "").strip()
        if content:
            return content
    return FALLBACK_REPLY


def build_user_turn(message: str, user_id: str, user_name: str | None, context: dict) -> str:
    """Rewrite the raw question so the model sees who is asking and the current intent."""
    header = f"User ID: {user_id}"
    if user_name:
        header += f", User Name: {user_name}"
    if context:
        header += f"\n\nCurrent conversation context: {json.dumps(context)}"
    return f"{header}\n\nUser Question: {message}"


@dataclass
class _UserLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class ChatOrchestrator:
    def __init__(
        self,
        conversations: ConversationStore,
        tools: ToolRegistry,
        llm: LLMClient,
        system_prompt: str | None = None,
        max_turns: int = MAX_AGENT_TURNS,
        history_window: int = HISTORY_WINDOW,
        timeout_seconds: float = MODEL_TIMEOUT_SECONDS,
    ):
        self._conversations = conversations
        self._tools = tools
        self._llm = llm
        self._system_prompt = system_prompt or get_active_prompt("chat_agent")
        self._max_turns = max_turns
        self._history_window = max(1, history_window)
        self._timeout = timeout_seconds
        self._locks: dict[str, _UserLock] = {}

    @asynccontextmanager
    async def _user_lock(self, user_id: str):
        """Serialize exchanges per user; the map only holds users with work in flight."""
        entry = self._locks.setdefault(user_id, _UserLock())
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                self._locks.pop(user_id, None)

    async def handle_message(self, message: str, user_id: str, user_name: str | None = None) -> str:
        if not self._llm.is_configured:
            logger.warning("Chat requested but no model is configured", extra={"user_id": user_id})
            return OFFLINE_REPLY

        try:
            with bind_fields(user_id=user_id):
                async with self._user_lock(user_id):
                    return await self._exchange(message, user_id, user_name)
        except ModelUnavailableError as e:
            logger.warning("Model unavailable: %s", e, extra={"user_id": user_id})
            return OFFLINE_REPLY
        except Exception:
            logger.exception("Chat exchange failed", extra={"user_id": user_id})
            return ERROR_REPLY

    async def clear(self, user_id: str) -> bool:
        """Close the user's active conversation after any exchange in flight has saved."""
        async with self._user_lock(user_id):
            cleared = await self._conversations.close_active(user_id)
        logger.info("Chat history cleared=%s", cleared, extra={"user_id": user_id})
        return cleared

    async def _exchange(self, message: str, user_id: str, user_name: str | None) -> str:
        with start_span(name="chat_message", span_type="CHAIN") as span:
            span.set_inputs({"user_id": user_id, "message_chars": len(message)})

            conversation = await self._conversations.get_or_create_active(user_id)
            with bind_fields(conversation_id=conversation.id):
                self._conversations.append(conversation, Message(role="user", content=message))
                await self._conversations.save(conversation)

                messages = self._model_messages(conversation, message, user_id, user_name)
                ctx = ToolContext(user_id=user_id, context=conversation.context)
                exchange = await self._run_agent(messages, ctx)
                reply = resolve_reply(exchange)

                self._conversations.append(conversation, Message(role="assistant", content=reply))
                await self._conversations.save(conversation)

                span.set_outputs({
                    "conversation_id": conversation.id,
                    "open_form": reply == OPEN_FORM_SIGNAL,
                    "generated_turns": len(exchange),
                })
                logger.info("Chat reply ready (%d generated turns)", len(exchange))
            return reply

    def _model_messages(
        self, conversation: Conversation, message: str, user_id: str, user_name: str | None,
    ) -> list[dict]:
        history = conversation.messages[-self._history_window:]
        messages = [{"role": "system", "content": self._system_prompt}]
        messages.extend({"role": m.role, "content": m.content} for m in history[:-1])
        messages.append({
            "role": "user",
            "content": build_user_turn(message, user_id, user_name, conversation.context.to_dict()),
        })
        return messages

    async def _complete(self, messages: list[dict], tools: list[dict] | None, step: int) -> dict:
        try:
            with log_duration(logger, "model call", step=step):
                response = await asyncio.wait_for(self._llm.complete(messages, tools=tools), timeout=self._timeout)
        except asyncio.TimeoutError:
            raise ModelUnavailableError(f"Model call exceeded {self._timeout:g}s")
        if response is None:
            raise ModelUnavailableError("No model returned a response")
        return response

    async def _run_agent(self, messages: list[dict], ctx: ToolContext) -> list[dict]:
        """Tool loop. Returns only the turns generated during this exchange."""
        start = len(messages)
        schemas = self._tools.schemas()

        for turn in range(self._max_turns):
            response = await self._complete(messages, schemas, step=turn)
            content = response.get("content", "")
            tool_calls = response.get("tool_calls", [])

            if not tool_calls:
                messages.append({"role": "assistant", "content": content})
                return messages[start:]

            messages.append({"role": "assistant", "content": content, "tool_calls": tool_calls})

            for tc in tool_calls:
                fn_name = tc.get("function", {}).get("name", "")
                fn_args = tc.get("function", {}).get("arguments", "{}")
                logger.info("Agent calling %s (turn %d)", fn_name, turn + 1, extra={"tool": fn_name, "step": turn})
                result = await self._tools.execute(fn_name, fn_args, ctx)
                messages.append({
                    "role": "tool",
                    "tool_call_id": tc.get("id", ""),
                    "name": fn_name,
                    "content": result,
                })

        # Turn cap reached: one last call without tools forces a text answer
        logger.info("Agent exhausted %d tool turns, forcing final response", self._max_turns)
        final = await self._complete(messages, None, step=self._max_turns)
        messages.append({"role": "assistant", "content": final.get("content", "")})
        return messages[start:]
