from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from refund_agents.schemas.case import CamelModel, Language


class ChatMessage(CamelModel):
    id: str
    role: Literal["user", "model"]
    text: str


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1)
    language: Optional[Language] = None


class ChatTranscript(BaseModel):
    messages: List[ChatMessage]
