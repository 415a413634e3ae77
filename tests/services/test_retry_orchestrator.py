"""
测试重新生成助手消息
"""

import pytest
import pytest_asyncio
from fastapi import HTTPException

from app.llm.core.base import StreamingChunk
from app.schemas.chat import RetryMessageRequest
from app.schemas.message import MessageRole
from app.services.retry_orchestrator import RetryOrchestrator
from conftest import ScriptedProvider, content_chunks, make_gateway, run_turn


@pytest.fixture
def provider():
    return ScriptedProvider(content_chunks("new", " answer"))


@pytest.fixture
def orchestrator(provider, message_repo, conversation_repo, stream_states, title_service):
    return RetryOrchestrator(
        message_repo, conversation_repo, make_gateway(provider), stream_states,
        title_service=title_service,
    )


@pytest_asyncio.fixture
async def answered(message_repo, conversation_repo, user_id):
    """一轮已完成的问答"""
    conversation = conversation_repo.add(user_id)
    question = await message_repo.add_message(
        conversation_id=conversation.id, user_id=user_id, role=MessageRole.USER, content="What is 2+2?"
    )
    answer = await message_repo.add_message(
        conversation_id=conversation.id, user_id=user_id, role=MessageRole.ASSISTANT,
        content="old answer", model="gpt-4",
    )
    return conversation, question, answer


def retry_request(conversation, message) -> RetryMessageRequest:
    return RetryMessageRequest(conversation_id=conversation.id, message_id=message.id, model="gpt-4")


class TestRetryOrchestrator:
    """测试重试编排器"""

    @pytest.mark.asyncio
    async def test_content_cleared_before_streaming(self, orchestrator, answered, message_repo, user_id):
        """重试前清空原内容并标记 regenerated"""
        conversation, _, answer = answered

        turn = await orchestrator.prepare(user_id, retry_request(conversation, answer))

        message = message_repo.messages[answer.id]
        assert message.content == ""
        assert message.token_count == 0
        assert message.msg_metadata["regenerated"] is True
        assert turn.discard_message_ids == [answer.id]
        assert turn.user_message_id is None

    @pytest.mark.asyncio
    async def test_retry_success(self, orchestrator, provider, answered, message_repo, user_id):
        """重新生成成功，只使用目标之前的历史"""
        conversation, question, answer = answered

        turn = await orchestrator.prepare(user_id, retry_request(conversation, answer))
        events = await run_turn(orchestrator, turn)

        assert [e["type"] for e in events] == ["content", "content", "completed"]
        assert events[-1]["regenerated"] is True
        assert "userMessageId" not in events[-1]

        message = message_repo.messages[answer.id]
        assert message.content == "new answer"
        assert message.msg_metadata["regenerated"] is True
        assert message.msg_metadata["streamingComplete"] is True
        assert [m.content for m in provider.received[0]] == [question.content]

    @pytest.mark.asyncio
    async def test_retry_user_message_not_found(self, orchestrator, answered, user_id):
        """目标不是助手消息时返回404"""
        conversation, question, _ = answered

        with pytest.raises(HTTPException) as exc_info:
            await orchestrator.prepare(user_id, retry_request(conversation, question))

        assert exc_info.value.status_code == 404
        assert exc_info.value.detail == "Assistant message to retry not found"

    @pytest.mark.asyncio
    async def test_retry_without_user_message(
        self, orchestrator, message_repo, conversation_repo, user_id
    ):
        """之前没有用户消息时返回400"""
        conversation = conversation_repo.add(user_id)
        greeting = await message_repo.add_message(
            conversation_id=conversation.id, user_id=user_id, role=MessageRole.ASSISTANT, content="Hi there"
        )

        with pytest.raises(HTTPException) as exc_info:
            await orchestrator.prepare(user_id, retry_request(conversation, greeting))

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail == "No user message found to retry"
        assert message_repo.messages[greeting.id].content == "Hi there"

    @pytest.mark.asyncio
    async def test_retry_error_removes_only_assistant(
        self, orchestrator, provider, answered, message_repo, user_id
    ):
        """重试失败只删除助手消息，保留用户消息"""
        conversation, question, answer = answered
        provider.script = [StreamingChunk(error="Invalid OpenAI API key.", finished=True)]

        turn = await orchestrator.prepare(user_id, retry_request(conversation, answer))
        events = await run_turn(orchestrator, turn)

        assert events[-1]["type"] == "error"
        assert answer.id not in message_repo.messages
        assert question.id in message_repo.messages
