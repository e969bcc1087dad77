import asyncio
import logging
import uuid
from typing import List, Optional

from refund_agents.core.config import Settings
from refund_agents.llm.provider import GenerationConfig, LLMMessage, LLMProvider, LLMProviderError
from refund_agents.schemas.case import Language
from refund_agents.schemas.chat import ChatMessage
from refund_agents.storage.local_store import LocalStore

logger = logging.getLogger(__name__)

ANSWER_LANGUAGE = {
    Language.EN: "Answer in English.",
    Language.ZH: "Please answer in Chinese (Simplified).",
    Language.ES: "Please answer in Spanish.",
}

WELCOME_TEXT = {
    Language.EN: "Hi! I'm your Refund Guide. Ask me anything about travel refunds or how to use this app.",
    Language.ZH: "您好！我是您的退款向导。关于旅行退款或如何使用本应用，您可以随时问我。",
    Language.ES: "¡Hola! Soy tu guía de reembolsos. Pregúntame lo que quieras sobre reembolsos de viaje o sobre cómo usar esta app.",
}

FALLBACK_TEXT = "Sorry, I'm having trouble connecting right now. Please try again."

SYSTEM_INSTRUCTION = """You are a friendly and helpful Travel Refund Assistant.
Your goal is to guide users through using this "Refund Multi-Agents" app and answer general questions about travel refunds.
{language}

The App Workflow is:
1. Upload Evidence (Photos, PDFs, Voice Notes, Videos, Links).
2. Processing (AI Agents extract data and check policies).
3. Review (You see the odds of winning).
4. Generate Appeal Letter (AI writes the legal letter).

Keep answers concise, encouraging, and easy to understand.
If asked about legal advice, state that you provide general information based on standard policies, not professional legal counsel."""


class RefundGuideChat:
    """Help-desk chat backed by the model, independent of the case pipeline."""

    def __init__(self, settings: Settings, llm_provider: LLMProvider, store: LocalStore) -> None:
        self.settings = settings
        self.llm_provider = llm_provider
        self.store = store

    async def history(self, language: Optional[Language] = None) -> List[ChatMessage]:
        messages = await asyncio.to_thread(self.store.list_chat_messages)
        if messages:
            return messages
        welcome = ChatMessage(id="init", role="model", text=WELCOME_TEXT[self._language(language)])
        await asyncio.to_thread(self.store.append_chat_message, welcome)
        return [welcome]

    async def send(self, text: str, language: Optional[Language] = None) -> ChatMessage:
        language = self._language(language)
        history = await self.history(language)
        user_message = ChatMessage(id=uuid.uuid4().hex, role="user", text=text.strip())
        await asyncio.to_thread(self.store.append_chat_message, user_message)

        # The welcome message is local UI text, not part of the model conversation.
        turns = [LLMMessage(role=m.role, content=m.text) for m in history if m.id != "init"]
        turns.append(LLMMessage(role="user", content=user_message.text))
        config = GenerationConfig(system_instruction=SYSTEM_INSTRUCTION.format(language=ANSWER_LANGUAGE[language]))

        try:
            response = await self.llm_provider.generate(turns, self.settings.chat_model, config)
            reply_text = response.text.strip() or FALLBACK_TEXT
        except LLMProviderError:
            logger.exception("Chat request failed")
            reply_text = FALLBACK_TEXT

        reply = ChatMessage(id=uuid.uuid4().hex, role="model", text=reply_text)
        await asyncio.to_thread(self.store.append_chat_message, reply)
        return reply

    async def clear(self) -> None:
        await asyncio.to_thread(self.store.clear_chat_history)

    def _language(self, language: Optional[Language]) -> Language:
        return Language(language or self.settings.default_language)
