"""Chat assistant endpoints.

POST   /api/v1/chatbot/message — one exchange with the assistant
GET    /api/v1/chatbot/history — the caller's active conversation
DELETE /api/v1/chatbot/history — close the active conversation

The orchestrator never raises; its reply string is turned into the client
payload here. The form signal becomes a fixed prompt plus openForm=true.
"""

import logging

from fastapi import APIRouter, Depends

from civictrack.api.deps import Services, current_actor, current_user_name, get_services
from civictrack.api.schemas import (
    ChatClearedResponse,
    ChatHistoryResponse,
    ChatMessageOut,
    ChatMessageRequest,
    ChatReplyResponse,
    ErrorResponse,
)
from civictrack.core.types import Actor, now_ms
from civictrack.pipeline.agent import OPEN_FORM_SIGNAL

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/chatbot", tags=["chat"])

FORM_PROMPT = "Sure! Let's report an issue. Please fill in the details below."


def present_reply(reply: str) -> ChatReplyResponse:
    """Map an orchestrator reply to the client payload."""
    if reply == OPEN_FORM_SIGNAL:
        return ChatReplyResponse(message=FORM_PROMPT, timestamp=now_ms(), openForm=True)
    return ChatReplyResponse(message=reply, timestamp=now_ms(), openForm=False)


@router.post("/message", response_model=ChatReplyResponse, responses={401: {"model": ErrorResponse}})
async def send_message(
    body: ChatMessageRequest,
    actor: Actor = Depends(current_actor),
    user_name: str | None = Depends(current_user_name),
    services: Services = Depends(get_services),
):
    """Send one message to the assistant and get its reply."""
    if user_name is None:
        try:
            user_name = await services.users.get_name(actor.user_id)
        except Exception as e:
            logger.warning("User name lookup failed: %s", e, extra={"user_id": actor.user_id})

    reply = await services.orchestrator.handle_message(body.message, actor.user_id, user_name)
    return present_reply(reply)


@router.get("/history", response_model=ChatHistoryResponse)
async def get_history(
    actor: Actor = Depends(current_actor),
    services: Services = Depends(get_services),
):
    conversation = await services.conversations.get_active(actor.user_id)
    if conversation is None:
        return ChatHistoryResponse(messages=[])
    return ChatHistoryResponse(
        conversationId=conversation.id,
        messages=[
            ChatMessageOut(role=m.role, content=m.content, timestamp=m.timestamp)
            for m in conversation.messages
        ],
        context=conversation.context.to_dict(),
    )


@router.delete("/history", response_model=ChatClearedResponse)
async def clear_history(
    actor: Actor = Depends(current_actor),
    services: Services = Depends(get_services),
):
    """Close the active conversation; the next message starts a fresh one."""
    return ChatClearedResponse(cleared=await services.orchestrator.clear(actor.user_id))
