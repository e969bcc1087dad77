from typing import Optional

from fastapi import APIRouter, Depends, Response

from refund_agents.api.deps import get_chat_service
from refund_agents.schemas.case import Language
from refund_agents.schemas.chat import ChatMessage, ChatRequest, ChatTranscript
from refund_agents.services.chat_service import RefundGuideChat

router = APIRouter()


@router.get("/chat", response_model=ChatTranscript)
async def chat_history(
    language: Optional[Language] = None,
    chat: RefundGuideChat = Depends(get_chat_service),
) -> ChatTranscript:
    return ChatTranscript(messages=await chat.history(language))


@router.post("/chat", response_model=ChatMessage)
async def send_message(body: ChatRequest, chat: RefundGuideChat = Depends(get_chat_service)) -> ChatMessage:
    return await chat.send(body.message, body.language)


@router.delete("/chat", status_code=204)
async def clear_chat(chat: RefundGuideChat = Depends(get_chat_service)) -> Response:
    await chat.clear()
    return Response(status_code=204)
