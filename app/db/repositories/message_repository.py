from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from loguru import logger
from sqlalchemy import desc, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.message import Message
from app.db.repositories.base_repository import BaseRepository
from app.schemas.message import MessageRole


class MessageRepository(BaseRepository[Message]):
    """
    消息仓库类

    流式编排只通过这里的窄接口访问消息：追加、部分更新、标记完成、删除、读取最近历史。
    """

    def __init__(self, db_session: AsyncSession):
        super().__init__(db_session, Message)

    async def add_message(
        self,
        *,
        conversation_id: UUID,
        user_id: UUID,
        role: MessageRole,
        content: str,
        model: Optional[str] = None,
        token_count: int = 0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Message:
        return await self.create(
            obj_in={
                "conversation_id": conversation_id,
                "user_id": user_id,
                "role": role.value,
                "content": content,
                "model": model,
                "token_count": token_count,
                "msg_metadata": metadata,
            }
        )

    async def get_conversation_messages(
        self, conversation_id: UUID, *, limit: int = 50
    ) -> List[Message]:
        """
        获取会话最近 limit 条消息，按时间正序返回（用于构建上下文）
        """
        query = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(desc(Message.created_at))
            .limit(limit)
        )
        result = await self.db.execute(query)
        messages = list(result.scalars().all())
        messages.reverse()
        return messages

    async def get_by_conversation_id(
        self, conversation_id: UUID, *, skip: int = 0, limit: int = 100
    ) -> List[Message]:
        query = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at)
            .offset(skip)
            .limit(limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_preceding_user_message(
        self, conversation_id: UUID, before: datetime
    ) -> Optional[Message]:
        """
        获取某时间点之前最近的一条用户消息（历史窗口之外时使用）
        """
        query = (
            select(Message)
            .where(
                Message.conversation_id == conversation_id,
                Message.role == MessageRole.USER.value,
                Message.created_at < before,
            )
            .order_by(desc(Message.created_at))
            .limit(1)
        )
        result = await self.db.execute(query)
        return result.scalars().first()

    async def update_message(
        self,
        message_id: UUID,
        *,
        content: Optional[str] = None,
        token_count: Optional[int] = None,
        model: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[Message]:
        """
        部分更新消息；传入的 metadata 整体替换原有元数据
        """
        message = await self.get_by_id(message_id)
        if not message:
            logger.warning(f"更新消息失败，消息不存在: {message_id}")
            return None

        values: Dict[str, Any] = {}
        if content is not None:
            values["content"] = content
        if token_count is not None:
            values["token_count"] = token_count
        if model is not None:
            values["model"] = model
        if metadata is not None:
            values["msg_metadata"] = metadata
        if not values:
            return message
        return await self.update(db_obj=message, obj_in=values)

    async def mark_streaming_complete(
        self, message_id: UUID, content: str, token_count: int
    ) -> Optional[Message]:
        """
        写入最终内容与token数，并在元数据中标记流式完成
        """
        message = await self.get_by_id(message_id)
        if not message:
            logger.warning(f"标记完成失败，消息不存在: {message_id}")
            return None

        metadata = dict(message.msg_metadata or {})
        metadata["streamingComplete"] = True
        return await self.update(
            db_obj=message,
            obj_in={"content": content, "token_count": token_count, "msg_metadata": metadata},
        )

    async def delete_message(self, message_id: UUID) -> bool:
        deleted = await self.delete(id=message_id)
        return deleted is not None
