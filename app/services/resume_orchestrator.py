"""
续传中断的流

按流ID查找快照，找不到时按 (消息, 会话) 查找未完成的流，仍找不到时以客户端
提供的 last_known_content 构造一个暂停状态继续生成。续传使用新的流ID，
成功后移除旧的流状态；失败时保留已生成的内容。
"""

import time
from uuid import UUID

from loguru import logger

from app.core.exceptions import NotFoundException
from app.schemas.chat import ContentEvent, CompletedEvent, ResumeStreamRequest, ResumedEvent
from app.schemas.message import (AssistantTurnMetadata, ErrorTurnMetadata,
                                 MessageRole, carried_turn_fields,
                                 dump_metadata, parse_message_metadata)
from app.services.stream_orchestrator import StreamOrchestrator, StreamTurn, EventRelay
from app.streaming.state import StreamState, generate_stream_id


class ResumeOrchestrator(StreamOrchestrator):
    """续传编排器"""

    async def find_stream_state(self, request: ResumeStreamRequest) -> StreamState:
        conversation_id = str(request.conversation_id)
        message_id = str(request.message_id)

        state = await self.stream_states.get_stream_state(request.stream_id)
        if state is not None and (
            state.conversation_id != conversation_id or state.message_id != message_id
        ):
            logger.warning(f"流状态与请求的消息不匹配，忽略: {request.stream_id}")
            state = None

        if state is None:
            state = await self.stream_states.find_incomplete_stream(message_id, conversation_id)
            if state is not None:
                logger.info(f"按消息找到未完成的流: {request.stream_id} -> {state.stream_id}")

        if state is None:
            logger.info(f"未找到流状态，使用客户端内容构造暂停状态: {request.stream_id}")
            state = StreamState(
                stream_id=request.stream_id,
                conversation_id=conversation_id,
                message_id=message_id,
                content=request.last_known_content,
                chunk_index=request.from_chunk_index,
                is_paused=True,
                model_id=request.model,
            )
            await self.stream_states.save_stream_state(state)
        return state

    async def prepare(self, user_id: UUID, request: ResumeStreamRequest) -> StreamTurn:
        model, provider = self.resolve_model(request.model)
        conversation = await self.get_owned_conversation(request.conversation_id, user_id)

        message = await self.message_repo.get_by_id(request.message_id)
        if (
            message is None
            or message.conversation_id != conversation.id
            or message.role != MessageRole.ASSISTANT.value
        ):
            raise NotFoundException(detail="Message to resume not found")

        state = await self.find_stream_state(request)
        content = request.last_known_content or state.content

        stream_id = generate_stream_id(conversation.id, message.id)
        while stream_id == request.stream_id:
            stream_id = generate_stream_id(conversation.id, message.id)

        # 保留原消息的搜索结果和重新生成标记
        carried = carried_turn_fields(parse_message_metadata(message.msg_metadata, message.role))
        carried.update(provider=provider.name, model=model.id)
        metadata = AssistantTurnMetadata(
            **carried,
            resume_attempted=True,
            original_stream_id=request.stream_id,
            current_stream_id=stream_id,
        )
        # 先恢复中断时的内容，避免中断过程中写入的不完整数据
        await self.message_repo.update_message(
            message.id, content=content, metadata=dump_metadata(metadata)
        )
        messages = await self.context_builder.build_resume_context(
            conversation, model, message_id=message.id, partial_content=content
        )

        logger.info(
            f"续传流: {request.stream_id} -> {stream_id}, 起始块={request.from_chunk_index}, "
            f"已有内容长度={len(content)}"
        )
        return StreamTurn(
            kind="resume",
            user_id=user_id,
            conversation=conversation,
            model=model,
            provider=provider,
            messages=messages,
            assistant_message_id=message.id,
            stream_id=stream_id,
            metadata=metadata,
            initial_content=content,
            initial_chunk_index=request.from_chunk_index,
            initial_tokens=state.total_tokens,
            original_stream_id=request.stream_id,
            retire_stream_ids=list(dict.fromkeys([request.stream_id, state.stream_id])),
        )

    async def on_stream_start(self, turn: StreamTurn, state: StreamState, relay: EventRelay) -> None:
        relay.send(
            ResumedEvent(
                stream_id=turn.stream_id,
                original_stream_id=turn.original_stream_id,
                resumed_from_chunk=turn.initial_chunk_index,
                existing_content=turn.initial_content,
                message_id=turn.assistant_message_id,
            )
        )

    def content_event(self, turn: StreamTurn, state: StreamState, delta: str) -> ContentEvent:
        event = super().content_event(turn, state, delta)
        return event.model_copy(update={"is_resumed": True})

    def completed_event(
        self, turn: StreamTurn, state: StreamState, processing_time: float, title_generated: bool
    ) -> CompletedEvent:
        event = super().completed_event(turn, state, processing_time, title_generated)
        return event.model_copy(
            update={
                "resumed_from_chunk": turn.initial_chunk_index,
                "original_stream_id": turn.original_stream_id,
            }
        )

    async def on_complete(self, turn: StreamTurn) -> None:
        for stream_id in turn.retire_stream_ids:
            await self.stream_states.remove_stream_state(stream_id)

    async def on_error(self, turn: StreamTurn, state: StreamState, error: str) -> None:
        """续传失败保留已生成的内容，新旧流状态都标记为出错并结束"""
        flags = {"error": error, "is_complete": True, "last_update_time": time.time()}
        await self.stream_states.save_stream_state(state.model_copy(update=flags))
        for stream_id in turn.retire_stream_ids:
            retired = await self.stream_states.get_stream_state(stream_id)
            if retired is not None:
                await self.stream_states.save_stream_state(retired.model_copy(update=flags))

        metadata = ErrorTurnMetadata(
            **carried_turn_fields(turn.metadata),
            error_message=error,
            resume_attempted=True,
            original_stream_id=turn.original_stream_id,
            current_stream_id=turn.stream_id,
        )
        await self.message_repo.update_message(
            turn.assistant_message_id,
            content=state.content,
            token_count=state.total_tokens,
            metadata=dump_metadata(metadata),
        )
