from typing import Optional, Tuple
from uuid import UUID

from loguru import logger

from app.schemas.chat import SendMessageRequest
from app.schemas.message import (AssistantTurnMetadata, MessageRole,
                                 StoredAttachment, UserTurnMetadata,
                                 dump_metadata)
from app.services.context_builder import build_search_enhanced_content
from app.services.stream_orchestrator import StreamOrchestrator, StreamTurn
from app.streaming.state import generate_stream_id


def split_display_and_model_content(request: SendMessageRequest) -> Tuple[str, Optional[str]]:
    """
    拆分界面展示内容与发送给模型的内容

    客户端已做搜索增强时 content 与 display_content 不同；只带搜索结果时在服务端构建增强内容。
    """
    display = request.display_content or request.content
    if request.display_content and request.display_content != request.content:
        return display, request.content
    if request.search_results:
        return display, build_search_enhanced_content(
            request.content, request.search_query, request.search_results
        )
    return display, None


class ChatSendOrchestrator(StreamOrchestrator):
    """
    发送消息

    新轮次写入用户消息和空的助手占位消息；带 retry_message_id 时在原位置重新生成。
    """

    async def prepare(self, user_id: UUID, request: SendMessageRequest) -> StreamTurn:
        if request.retry_message_id is not None:
            return await self.prepare_retry_turn(user_id, request)
        return await self.prepare_new_turn(user_id, request)

    async def prepare_new_turn(self, user_id: UUID, request: SendMessageRequest) -> StreamTurn:
        model, provider = self.resolve_model(request.model)
        conversation = await self.get_owned_conversation(request.conversation_id, user_id)

        display_content, enhanced_content = split_display_and_model_content(request)
        attachments = [StoredAttachment.from_descriptor(a) for a in request.attachments or []]
        user_metadata = UserTurnMetadata(
            attachments=attachments or None,
            enhanced_content=enhanced_content,
            search_results=request.search_results,
            search_query=request.search_query,
            search_provider=request.search_provider,
        )
        user_message = await self.message_repo.add_message(
            conversation_id=conversation.id,
            user_id=user_id,
            role=MessageRole.USER,
            content=display_content,
            metadata=dump_metadata(user_metadata),
        )

        assistant_metadata = AssistantTurnMetadata(
            provider=provider.name,
            model=model.id,
            search_results=request.search_results,
            search_query=request.search_query,
            search_provider=request.search_provider,
        )
        created = [user_message.id]
        try:
            assistant_message = await self.message_repo.add_message(
                conversation_id=conversation.id,
                user_id=user_id,
                role=MessageRole.ASSISTANT,
                content="",
                model=model.id,
                metadata=dump_metadata(assistant_metadata),
            )
            created.append(assistant_message.id)
            messages = await self.context_builder.build_send_context(
                conversation,
                model,
                user_message_id=user_message.id,
                assistant_message_id=assistant_message.id,
            )
        except Exception as e:
            logger.error(f"准备消息轮次失败，清理已写入的消息: 会话={conversation.id} | {e}")
            await self._rollback()
            await self.compensate(created, "Failed to prepare the conversation turn")
            raise

        logger.info(
            f"新消息轮次: 会话={conversation.id}, 用户消息={user_message.id}, "
            f"助手消息={assistant_message.id}, 模型={model.id}, 附件数={len(attachments)}"
        )
        return StreamTurn(
            kind="send",
            user_id=user_id,
            conversation=conversation,
            model=model,
            provider=provider,
            messages=messages,
            assistant_message_id=assistant_message.id,
            user_message_id=user_message.id,
            stream_id=generate_stream_id(conversation.id, assistant_message.id),
            metadata=assistant_metadata,
            user_content=display_content,
            discard_message_ids=[user_message.id, assistant_message.id],
        )

    async def prepare_retry_turn(self, user_id: UUID, request: SendMessageRequest) -> StreamTurn:
        model, provider = self.resolve_model(request.model)
        conversation = await self.get_owned_conversation(request.conversation_id, user_id)
        return await self.prepare_regeneration(
            user_id, conversation, model, provider, request.retry_message_id
        )
