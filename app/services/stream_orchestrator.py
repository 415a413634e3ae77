"""
流式轮次状态机

发送、重试、续传共用同一套流程：
validating -> contextBuilding -> streaming -> finalizing -> completed | errored

前两步由各编排器的 prepare 方法在请求内完成（失败时直接返回 400/404），
之后轮次作为独立任务运行，通过 SSEChannel 把事件转发给客户端。
客户端断开只会停止转发，轮次仍会完成并写库，供之后的续传或刷新使用。
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import List, Optional, Set, Tuple
from uuid import UUID

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (BadRequestException, ModelNotFoundError,
                                 NotFoundException, ProviderNotConfiguredError)
from app.db.models.conversation import Conversation
from app.db.repositories.conversation_repository import ConversationRepository
from app.db.repositories.message_repository import MessageRepository
from app.llm.core.base import AIModel, BaseProvider, ChatMessage, StreamingContext
from app.llm.gateway import ProviderGateway
from app.monitoring.metrics import (ACTIVE_STREAMS, CHECKPOINT_FAILURES,
                                    CLIENT_DISCONNECTS, STREAM_CHUNKS,
                                    STREAM_TURNS)
from app.schemas.chat import CompletedEvent, ContentEvent, ErrorEvent
from app.schemas.message import (AssistantTurnMetadata, ErrorTurnMetadata,
                                 dump_metadata)
from app.services.context_builder import ContextBuilder
from app.services.title_service import TitleService
from app.streaming.checkpoint import CheckpointGate
from app.streaming.repository import StreamStateRepository
from app.streaming.sse import SSEChannel
from app.streaming.state import StreamState, generate_stream_id

GENERIC_STREAM_ERROR = "An unexpected error occurred while generating the response"

# 正在运行的轮次任务，关闭服务时等待它们结束
_running_turns: Set[asyncio.Task] = set()


@dataclass
class StreamTurn:
    """prepare 阶段的产物：一次流式轮次需要的全部输入"""

    kind: str  # send / retry / resume
    user_id: UUID
    conversation: Conversation
    model: AIModel
    provider: BaseProvider
    messages: List[ChatMessage]
    assistant_message_id: UUID
    stream_id: str
    metadata: AssistantTurnMetadata
    user_message_id: Optional[UUID] = None
    user_content: str = ""
    initial_content: str = ""
    initial_chunk_index: int = 0
    initial_tokens: int = 0
    # 出错时需要删除的消息（新发送为用户消息和助手消息，重试只有助手消息）
    discard_message_ids: List[UUID] = field(default_factory=list)
    original_stream_id: Optional[str] = None
    # 续传成功后需要移除的旧流状态
    retire_stream_ids: List[str] = field(default_factory=list)
    regenerated: bool = False
    # 流状态被续传移除或结束后置为 True，本轮次不再写库
    superseded: bool = False
    started_at: float = field(default_factory=time.monotonic)

    def initial_state(self) -> StreamState:
        return StreamState(
            stream_id=self.stream_id,
            conversation_id=str(self.conversation.id),
            message_id=str(self.assistant_message_id),
            content=self.initial_content,
            chunk_index=self.initial_chunk_index,
            total_tokens=self.initial_tokens,
            model_id=self.model.id,
            provider=self.provider.name,
            original_prompt=self.user_content or None,
        )


class StreamOrchestrator:
    """流式编排器基类，子类实现各自的 prepare 方法"""

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        gateway: ProviderGateway,
        stream_states: StreamStateRepository,
        title_service: Optional[TitleService] = None,
        db_session: Optional[AsyncSession] = None,
    ):
        self.message_repo = message_repo
        self.conversation_repo = conversation_repo
        self.gateway = gateway
        self.stream_states = stream_states
        self.title_service = title_service or TitleService(gateway)
        self.db_session = db_session
        self.context_builder = ContextBuilder(message_repo)

    @classmethod
    def from_session(
        cls,
        db_session: AsyncSession,
        gateway: ProviderGateway,
        stream_states: StreamStateRepository,
    ) -> "StreamOrchestrator":
        return cls(
            MessageRepository(db_session),
            ConversationRepository(db_session),
            gateway,
            stream_states,
            db_session=db_session,
        )

    async def close(self) -> None:
        if self.db_session is not None:
            await self.db_session.close()

    # validating

    def resolve_model(self, model_id: str) -> Tuple[AIModel, BaseProvider]:
        model = self.gateway.get_model_by_id(model_id)
        if model is None:
            raise BadRequestException(detail=ModelNotFoundError(model_id).message)
        provider = self.gateway.get_provider_for_model(model_id)
        if provider is None:
            raise BadRequestException(detail=ProviderNotConfiguredError(model_id).message)
        return model, provider

    async def get_owned_conversation(self, conversation_id: UUID, user_id: UUID) -> Conversation:
        conversation = await self.conversation_repo.get_by_id_for_user(conversation_id, user_id)
        if conversation is None:
            raise NotFoundException(detail="Conversation not found")
        return conversation

    async def prepare_regeneration(
        self,
        user_id: UUID,
        conversation: Conversation,
        model: AIModel,
        provider: BaseProvider,
        message_id: UUID,
    ) -> StreamTurn:
        """
        在原位置重新生成助手消息

        复用原有的用户消息，清空助手消息内容后只用它之前的历史构建上下文。
        """
        assistant_message, user_message, before = await self.context_builder.locate_retry_target(
            conversation.id, message_id
        )
        if assistant_message is None:
            raise NotFoundException(detail="Assistant message to retry not found")
        if user_message is None:
            raise BadRequestException(detail="No user message found to retry")

        metadata = AssistantTurnMetadata(regenerated=True, provider=provider.name, model=model.id)
        await self.message_repo.update_message(
            assistant_message.id,
            content="",
            token_count=0,
            model=model.id,
            metadata=dump_metadata(metadata),
        )
        messages = await self.context_builder.build_retry_context(
            conversation, model, before=before, user_message=user_message
        )
        logger.info(f"重新生成消息: 会话={conversation.id}, 消息={assistant_message.id}, 模型={model.id}")

        return StreamTurn(
            kind="retry",
            user_id=user_id,
            conversation=conversation,
            model=model,
            provider=provider,
            messages=messages,
            assistant_message_id=assistant_message.id,
            stream_id=generate_stream_id(conversation.id, assistant_message.id),
            metadata=metadata,
            user_content=user_message.content,
            discard_message_ids=[assistant_message.id],
            regenerated=True,
        )

    # streaming

    def start(self, turn: StreamTurn) -> SSEChannel:
        """在后台任务中运行轮次，返回供响应读取的事件通道"""
        channel = SSEChannel()
        task = asyncio.create_task(self._run_and_close(turn, channel))
        _running_turns.add(task)
        task.add_done_callback(_running_turns.discard)
        return channel

    async def _run_and_close(self, turn: StreamTurn, channel: SSEChannel) -> None:
        try:
            await self.run(turn, channel)
        finally:
            channel.close()
            await self.close()

    async def run(self, turn: StreamTurn, channel: SSEChannel) -> None:
        ACTIVE_STREAMS.labels(kind=turn.kind).inc()
        state = turn.initial_state()
        relay = EventRelay(channel, turn.kind)
        try:
            await self.stream_states.save_stream_state(state)
            await self.on_stream_start(turn, state, relay)

            gate = CheckpointGate(
                settings.CHECKPOINT_CHUNK_INTERVAL, settings.CHECKPOINT_MIN_INTERVAL_SECONDS
            )
            context = StreamingContext(
                user_id=turn.user_id,
                conversation_id=turn.conversation.id,
            )
            stream = self.gateway.create_streaming_completion(turn.messages, turn.model.id, context)
            async for chunk in stream:
                if chunk.error:
                    await self._fail(turn, state, relay, chunk.error)
                    return
                if chunk.content:
                    state = state.advance(chunk.content, chunk.token_count)
                    STREAM_CHUNKS.labels(provider=turn.provider.name).inc()
                    await self._save_snapshot(turn, state)
                    relay.send(self.content_event(turn, state, chunk.content))
                    if gate.should_checkpoint():
                        await self._checkpoint(turn, state)
                if chunk.finished:
                    break

            await self._finalize(turn, state, relay)
        except Exception as e:
            logger.exception(f"流式轮次异常: 类型={turn.kind}, 消息={turn.assistant_message_id} | {e}")
            await self._rollback()
            await self._fail(turn, state, relay, GENERIC_STREAM_ERROR)
        finally:
            ACTIVE_STREAMS.labels(kind=turn.kind).dec()

    async def on_stream_start(self, turn: StreamTurn, state: StreamState, relay: "EventRelay") -> None:
        """开始读取上游之前的钩子"""

    def content_event(self, turn: StreamTurn, state: StreamState, delta: str) -> ContentEvent:
        return ContentEvent(
            content=delta,
            message_id=turn.assistant_message_id,
            user_message_id=turn.user_message_id,
            stream_id=turn.stream_id,
            chunk_index=state.chunk_index,
            total_tokens=state.total_tokens,
            provider=turn.provider.name,
            model=turn.model.name,
        )

    def completed_event(
        self, turn: StreamTurn, state: StreamState, processing_time: float, title_generated: bool
    ) -> CompletedEvent:
        return CompletedEvent(
            message_id=turn.assistant_message_id,
            user_message_id=turn.user_message_id,
            stream_id=turn.stream_id,
            total_tokens=state.total_tokens,
            processing_time=processing_time,
            final_chunk_index=state.chunk_index,
            title_generated=title_generated,
            regenerated=True if turn.regenerated else None,
        )

    async def _is_superseded(self, turn: StreamTurn) -> bool:
        """流状态已被移除或已结束，说明这条消息已由续传接管"""
        if not turn.superseded:
            current = await self.stream_states.get_stream_state(turn.stream_id)
            if current is None or not current.is_active:
                turn.superseded = True
                logger.info(f"流状态已被续传接管，本轮次不再写入: {turn.stream_id}")
        return turn.superseded

    async def _save_snapshot(self, turn: StreamTurn, state: StreamState) -> None:
        """每个内容增量后写入完整的流状态快照；失败只记录日志"""
        try:
            if await self._is_superseded(turn):
                return
            await self.stream_states.save_stream_state(state)
        except Exception as e:
            logger.warning(f"流状态写入失败: 流={turn.stream_id}, 块={state.chunk_index} | {e}")

    async def _checkpoint(self, turn: StreamTurn, state: StreamState) -> None:
        """把中间内容写入消息；失败只记录日志，不影响流式输出"""
        if turn.superseded:
            return
        try:
            await self.message_repo.update_message(
                turn.assistant_message_id,
                content=state.content,
                token_count=state.total_tokens,
            )
        except Exception as e:
            CHECKPOINT_FAILURES.inc()
            logger.warning(f"检查点写入失败: 消息={turn.assistant_message_id}, 块={state.chunk_index} | {e}")
            await self._rollback()

    # finalizing

    async def _finalize(self, turn: StreamTurn, state: StreamState, relay: "EventRelay") -> None:
        processing_time = round(time.monotonic() - turn.started_at, 3)
        if await self._is_superseded(turn):
            STREAM_TURNS.labels(kind=turn.kind, outcome="superseded").inc()
            relay.send(self.completed_event(turn, state, processing_time, False))
            return

        await self.message_repo.mark_streaming_complete(
            turn.assistant_message_id, state.content, state.total_tokens
        )
        metadata = turn.metadata.model_copy(
            update={"streaming_complete": True, "processing_time": processing_time}
        )
        await self.message_repo.update_message(
            turn.assistant_message_id, model=turn.model.id, metadata=dump_metadata(metadata)
        )

        await self.stream_states.save_stream_state(state)
        await self.stream_states.mark_stream_complete(turn.stream_id)
        await self.on_complete(turn)

        if turn.conversation.model_id != turn.model.id:
            await self.conversation_repo.update_model(turn.conversation, turn.model.id)

        title_generated = False
        if turn.user_content:
            title_generated = await self.title_service.maybe_generate_title(
                turn.conversation, self.conversation_repo, turn.user_content, state.content
            )

        STREAM_TURNS.labels(kind=turn.kind, outcome="completed").inc()
        logger.info(
            f"流式轮次完成: 类型={turn.kind}, 消息={turn.assistant_message_id}, "
            f"块数={state.chunk_index}, tokens={state.total_tokens}, 耗时={processing_time}s"
        )
        relay.send(self.completed_event(turn, state, processing_time, title_generated))

    async def on_complete(self, turn: StreamTurn) -> None:
        """轮次成功完成后的钩子"""

    # errored

    async def _fail(self, turn: StreamTurn, state: StreamState, relay: "EventRelay", error: str) -> None:
        STREAM_TURNS.labels(kind=turn.kind, outcome="errored").inc()
        logger.warning(f"流式轮次失败: 类型={turn.kind}, 消息={turn.assistant_message_id} | {error}")
        try:
            if not await self._is_superseded(turn):
                await self.on_error(turn, state, error)
        except Exception as e:
            logger.error(f"流式轮次失败后的清理出错: 消息={turn.assistant_message_id} | {e}")
        relay.send(
            ErrorEvent(error=error, message_id=turn.assistant_message_id, stream_id=turn.stream_id)
        )

    async def on_error(self, turn: StreamTurn, state: StreamState, error: str) -> None:
        """
        默认的失败处理：删除本轮消息，删除失败时标记为已删除的失败轮次

        没有可用内容的半成品消息不应留在历史中。
        """
        await self.compensate(turn.discard_message_ids, error)
        await self.stream_states.remove_stream_state(turn.stream_id)

    async def compensate(self, message_ids: List[UUID], error: str) -> None:
        """逐条删除；删除失败的消息改为标记 error + deleted"""
        for message_id in message_ids:
            if not await self._delete_message(message_id):
                await self._flag_deleted(message_id, error)

    async def _delete_message(self, message_id: UUID) -> bool:
        try:
            await self.message_repo.delete_message(message_id)
            return True
        except SQLAlchemyError as e:
            logger.error(f"删除失败轮次消息出错: {message_id} | {e}")
            await self._rollback()
            return False

    async def _flag_deleted(self, message_id: UUID, error: str) -> None:
        metadata = ErrorTurnMetadata(deleted=True, error_message=error)
        try:
            await self.message_repo.update_message(message_id, metadata=dump_metadata(metadata))
        except SQLAlchemyError as e:
            logger.error(f"标记失败轮次消息出错: {message_id} | {e}")
            await self._rollback()

    async def _rollback(self) -> None:
        if self.db_session is None:
            return
        try:
            await self.db_session.rollback()
        except SQLAlchemyError as e:
            logger.error(f"数据库回滚失败: {e}")


class EventRelay:
    """包装 SSEChannel：客户端断开后只记录一次，之后的事件直接丢弃"""

    def __init__(self, channel: SSEChannel, kind: str):
        self.channel = channel
        self.kind = kind
        self.disconnected = False

    def send(self, event) -> None:
        if self.disconnected:
            return
        if not self.channel.send(event):
            self.disconnected = True
            CLIENT_DISCONNECTS.labels(kind=self.kind).inc()
            logger.info("客户端已断开，轮次继续在服务端完成")


async def wait_for_running_turns(timeout: float) -> None:
    """关闭服务时等待进行中的轮次，超时后取消"""
    if not _running_turns:
        return
    logger.info(f"等待 {len(_running_turns)} 个进行中的流式轮次结束")
    _, pending = await asyncio.wait(set(_running_turns), timeout=timeout)
    for task in pending:
        task.cancel()
    if pending:
        logger.warning(f"{len(pending)} 个流式轮次在关闭超时后被取消")
