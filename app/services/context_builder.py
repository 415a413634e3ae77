"""
上下文构建

把会话历史转换为发送给提供商的消息列表：附件轮次、搜索增强轮次使用更完整的内容，
续传时追加已生成的部分内容和续写指令。
"""

from typing import Collection, List, Optional, Tuple
from uuid import UUID

from loguru import logger

from app.core.config import settings
from app.db.models.conversation import Conversation
from app.db.models.message import Message
from app.db.repositories.message_repository import MessageRepository
from app.llm.core.base import AIModel, ChatMessage
from app.llm.core.prompts import (CONTINUATION_INSTRUCTION,
                                  SEARCH_CONTEXT_TEMPLATE,
                                  format_search_results)
from app.schemas.message import (ErrorTurnMetadata, MessageRole, SearchResult,
                                 StoredAttachment, UserTurnMetadata,
                                 parse_message_metadata)

HISTORY_ATTACHMENT_TEXT_LIMIT = 1000
CURRENT_ATTACHMENT_TEXT_LIMIT = 4000


def build_search_enhanced_content(
    question: str, query: Optional[str], results: List[SearchResult]
) -> str:
    """把搜索结果拼接到用户问题前，作为发送给模型的内容"""
    return SEARCH_CONTEXT_TEMPLATE.format(
        query=query or question,
        results=format_search_results([r.model_dump() for r in results]),
        question=question,
    )


def _truncate(text: str, limit: int) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def _history_attachment_text(content: str, attachments: List[StoredAttachment]) -> str:
    lines = [content, "", "Previously attached files:"]
    for attachment in attachments:
        lines.append(f"📎 {attachment.filename} ({attachment.type})")
        if attachment.extracted_text:
            lines.append(
                f"Content: {_truncate(attachment.extracted_text, HISTORY_ATTACHMENT_TEXT_LIMIT)}"
            )
    return "\n".join(lines)


def _current_attachment_content(
    content: str, attachments: List[StoredAttachment], model: AIModel
):
    """当前轮次的附件：多模态模型的图片转为图片块，其余附件展开为文本"""
    multimodal = model.capabilities.multi_modal
    images = [a for a in attachments if multimodal and a.type == "image"]
    documents = [a for a in attachments if a not in images]

    text = content
    if documents:
        parts = [text, "", "Attached files:"]
        for attachment in documents:
            parts.append(f"\n📎 **{attachment.filename}** ({attachment.type})")
            if attachment.extracted_text:
                parts.append(
                    f"Content:\n{_truncate(attachment.extracted_text, CURRENT_ATTACHMENT_TEXT_LIMIT)}"
                )
        text = "\n".join(parts)

    if not images:
        return text
    blocks = [{"type": "text", "text": text}]
    blocks.extend({"type": "image_url", "image_url": {"url": a.url}} for a in images)
    return blocks


class ContextBuilder:
    """根据消息仓库中的历史构建提供商上下文"""

    def __init__(
        self,
        message_repo: MessageRepository,
        history_limit: int = settings.CONTEXT_HISTORY_LIMIT,
    ):
        self.message_repo = message_repo
        self.history_limit = history_limit

    async def recent_messages(self, conversation_id: UUID) -> List[Message]:
        return await self.message_repo.get_conversation_messages(
            conversation_id, limit=self.history_limit
        )

    def format_message(
        self, message: Message, model: AIModel, *, current: bool = False
    ) -> Optional[ChatMessage]:
        """
        单条消息转换为 ChatMessage；已标记删除的失败轮次返回 None

        用户轮次优先使用搜索增强内容，带附件的轮次附加附件信息。
        """
        metadata = parse_message_metadata(message.msg_metadata, message.role)
        if isinstance(metadata, ErrorTurnMetadata) and metadata.deleted:
            return None

        content = message.content or ""
        if isinstance(metadata, UserTurnMetadata):
            if metadata.enhanced_content:
                content = metadata.enhanced_content
            if metadata.attachments:
                if current:
                    return ChatMessage(
                        role=message.role,
                        content=_current_attachment_content(content, metadata.attachments, model),
                    )
                content = _history_attachment_text(content, metadata.attachments)
        return ChatMessage(role=message.role, content=content)

    def format_history(
        self,
        messages: List[Message],
        model: AIModel,
        *,
        exclude_ids: Collection[UUID] = (),
        current_message_id: Optional[UUID] = None,
    ) -> List[ChatMessage]:
        chat_messages = []
        for message in messages:
            if message.id in exclude_ids:
                continue
            formatted = self.format_message(
                message, model, current=message.id == current_message_id
            )
            if formatted is not None:
                chat_messages.append(formatted)
        return chat_messages

    @staticmethod
    def with_system_prompt(
        conversation: Conversation, messages: List[ChatMessage]
    ) -> List[ChatMessage]:
        if conversation.system_prompt:
            return [ChatMessage(role=MessageRole.SYSTEM.value, content=conversation.system_prompt)] + messages
        return messages

    async def build_send_context(
        self,
        conversation: Conversation,
        model: AIModel,
        *,
        user_message_id: UUID,
        assistant_message_id: UUID,
    ) -> List[ChatMessage]:
        """新轮次：最近历史（不含助手占位消息），当前用户消息带上本轮附件"""
        history = await self.recent_messages(conversation.id)
        messages = self.format_history(
            history,
            model,
            exclude_ids={assistant_message_id},
            current_message_id=user_message_id,
        )
        logger.debug(f"构建上下文: 会话={conversation.id}, 历史消息数={len(messages)}")
        return self.with_system_prompt(conversation, messages)

    async def locate_retry_target(
        self, conversation_id: UUID, assistant_message_id: UUID
    ) -> Tuple[Optional[Message], Optional[Message], List[Message]]:
        """
        在最近历史中定位要重试的助手消息及其之前最近的用户消息

        返回 (助手消息, 用户消息, 助手消息之前的历史)；找不到时对应位置为 None。
        """
        history = await self.recent_messages(conversation_id)
        index = next(
            (
                i
                for i, m in enumerate(history)
                if m.id == assistant_message_id and m.role == MessageRole.ASSISTANT.value
            ),
            None,
        )
        if index is None:
            return None, None, []

        assistant_message = history[index]
        before = history[:index]
        user_message = await self._preceding_user_message(conversation_id, assistant_message, before)
        return assistant_message, user_message, before

    async def build_retry_context(
        self,
        conversation: Conversation,
        model: AIModel,
        *,
        before: List[Message],
        user_message: Message,
    ) -> List[ChatMessage]:
        """重试：只使用目标助手消息之前的历史"""
        if all(m.id != user_message.id for m in before):
            before = before + [user_message]
        messages = self.format_history(before, model)
        return self.with_system_prompt(conversation, messages)

    async def build_resume_context(
        self,
        conversation: Conversation,
        model: AIModel,
        *,
        message_id: UUID,
        partial_content: str,
    ) -> List[ChatMessage]:
        """
        续传：目标消息之前的历史 + 最近的用户消息（去重）+ 已生成的部分内容 + 续写指令
        """
        history = await self.recent_messages(conversation.id)
        target_index = next((i for i, m in enumerate(history) if m.id == message_id), None)
        if target_index is None:
            logger.warning(f"续传目标消息不在最近历史中: {message_id}")
            before = history
            target = None
        else:
            before = history[:target_index]
            target = history[target_index]

        user_message = await self._preceding_user_message(conversation.id, target, before)
        if user_message is not None and all(m.id != user_message.id for m in before):
            before = before + [user_message]

        messages = self.format_history(before, model)
        if partial_content:
            messages.append(ChatMessage(role=MessageRole.ASSISTANT.value, content=partial_content))
        messages.append(ChatMessage(role=MessageRole.USER.value, content=CONTINUATION_INSTRUCTION))
        return self.with_system_prompt(conversation, messages)

    async def _preceding_user_message(
        self,
        conversation_id: UUID,
        target: Optional[Message],
        before: List[Message],
    ) -> Optional[Message]:
        for message in reversed(before):
            if message.role == MessageRole.USER.value:
                return message
        if target is None:
            return None
        # 用户消息已滑出历史窗口
        return await self.message_repo.get_preceding_user_message(
            conversation_id, target.created_at
        )
