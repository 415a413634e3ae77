from uuid import UUID

from app.schemas.chat import RetryMessageRequest
from app.services.stream_orchestrator import StreamOrchestrator, StreamTurn


class RetryOrchestrator(StreamOrchestrator):
    """
    重新生成指定的助手消息

    目标必须是最近历史中的助手消息（否则 404），且之前存在用户消息（否则 400）。
    失败时与新发送一样删除该助手消息，成功后元数据标记 regenerated。
    """

    async def prepare(self, user_id: UUID, request: RetryMessageRequest) -> StreamTurn:
        model, provider = self.resolve_model(request.model)
        conversation = await self.get_owned_conversation(request.conversation_id, user_id)
        return await self.prepare_regeneration(
            user_id, conversation, model, provider, request.message_id
        )
