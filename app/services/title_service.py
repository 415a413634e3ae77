import re
from typing import Optional

from loguru import logger

from app.core.config import settings
from app.core.exceptions import ChatAppException
from app.db.models.conversation import Conversation
from app.db.repositories.conversation_repository import ConversationRepository
from app.llm.core.base import ChatMessage, StreamingContext
from app.llm.core.prompts import (TITLE_PROMPT_FIRST_MESSAGE,
                                  TITLE_PROMPT_WITH_REPLY, TITLE_SYSTEM_PROMPT)
from app.llm.gateway import ProviderGateway

MAX_TITLE_LENGTH = 60
PROMPT_EXCERPT_LENGTH = 500

PLACEHOLDER_TITLES = ("new chat", "new conversation", "untitled", "chat session")

FALLBACK_PATTERNS = [
    (re.compile(r"help.*with|how.*to|can.*you", re.I), "Getting Help"),
    (re.compile(r"write|create|generate|make", re.I), "Content Creation"),
    (re.compile(r"explain|what.*is|tell.*me.*about", re.I), "Learning"),
    (re.compile(r"debug|fix|error|problem|issue", re.I), "Troubleshooting"),
    (re.compile(r"review|check|analyze|look.*at", re.I), "Code Review"),
    (re.compile(r"plan|strategy|approach|how.*should", re.I), "Planning"),
    (re.compile(r"react|javascript|python|code", re.I), "Programming"),
    (re.compile(r"design|ui|ux|interface", re.I), "Design"),
    (re.compile(r"data|analyze|chart|graph", re.I), "Data Analysis"),
    (re.compile(r"translate|language", re.I), "Translation"),
    (re.compile(r"summarize|summary|tldr", re.I), "Summarization"),
]


def needs_title(title: Optional[str]) -> bool:
    """会话标题是否仍为占位标题"""
    if not title:
        return True
    lowered = title.lower()
    return any(p in lowered for p in PLACEHOLDER_TITLES) or title.startswith("New Chat with")


def fallback_title(user_message: str) -> str:
    """模型生成失败时按关键词给出标题"""
    message = user_message.lower().strip()
    for pattern, title in FALLBACK_PATTERNS:
        if pattern.search(message):
            return title

    words = [w for w in re.sub(r"[^\w\s]", " ", message).split() if len(w) > 3][:4]
    if words:
        return " ".join(w.capitalize() for w in words)[:50]
    return "New Conversation"


def clean_title(raw: str) -> str:
    title = raw.strip().split("\n", 1)[0]
    title = title.strip("\"'").strip()
    return title[:MAX_TITLE_LENGTH].strip()


class TitleService:
    """
    会话标题生成

    使用快速模型（TITLE_MODEL_ID）根据首轮问答生成标题，失败时退回关键词标题。
    """

    def __init__(self, gateway: ProviderGateway, model_id: str = settings.TITLE_MODEL_ID):
        self.gateway = gateway
        self.model_id = model_id

    async def generate_title(self, user_message: str, assistant_message: Optional[str] = None) -> str:
        user_excerpt = user_message[:PROMPT_EXCERPT_LENGTH]
        if assistant_message:
            prompt = TITLE_PROMPT_WITH_REPLY.format(
                user_message=user_excerpt,
                assistant_message=assistant_message[:PROMPT_EXCERPT_LENGTH],
            )
        else:
            prompt = TITLE_PROMPT_FIRST_MESSAGE.format(user_message=user_excerpt)

        messages = [
            ChatMessage(role="system", content=TITLE_SYSTEM_PROMPT),
            ChatMessage(role="user", content=prompt),
        ]

        generated = ""
        try:
            stream = self.gateway.create_streaming_completion(
                messages, self.model_id, StreamingContext()
            )
            async for chunk in stream:
                if chunk.error:
                    raise ChatAppException(chunk.error)
                generated += chunk.content
                if chunk.finished:
                    break
        except ChatAppException as e:
            logger.warning(f"标题生成失败，使用备用标题: {e}")
            return fallback_title(user_message)

        title = clean_title(generated)
        if len(title) < 3:
            return fallback_title(user_message)
        return title

    async def maybe_generate_title(
        self,
        conversation: Conversation,
        conversation_repo: ConversationRepository,
        user_message: str,
        assistant_message: str,
    ) -> bool:
        """
        会话仍为占位标题时生成并保存标题，返回是否生成

        标题生成失败不影响本轮对话结果。
        """
        if not needs_title(conversation.title):
            return False
        try:
            title = await self.generate_title(user_message, assistant_message)
            await conversation_repo.update_title(conversation, title)
            logger.info(f"会话标题已生成: {conversation.id} -> {title}")
            return True
        except Exception as e:
            logger.error(f"保存会话标题失败: {conversation.id} | {e}")
            return False
