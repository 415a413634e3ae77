from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from app.api.dependencies import (get_chat_send_orchestrator,
                                  get_current_active_user,
                                  get_resume_orchestrator,
                                  get_retry_orchestrator)
from app.db.models.user import User
from app.schemas.chat import (ResumeStreamRequest, RetryMessageRequest,
                              SendMessageRequest)
from app.services.chat_send_orchestrator import ChatSendOrchestrator
from app.services.resume_orchestrator import ResumeOrchestrator
from app.services.retry_orchestrator import RetryOrchestrator
from app.services.stream_orchestrator import StreamOrchestrator
from app.streaming.sse import sse_response

router = APIRouter()


async def _stream(orchestrator: StreamOrchestrator, user: User, request) -> StreamingResponse:
    """
    在请求内完成校验与上下文构建，再把轮次交给后台任务

    prepare 失败时（404/400 等）编排器不会启动，需要在这里释放它的数据库会话。
    """
    try:
        turn = await orchestrator.prepare(user.id, request)
    except Exception:
        await orchestrator.close()
        raise
    return sse_response(orchestrator.start(turn))


@router.post("/send")
async def send_message(
    request: SendMessageRequest,
    current_user: User = Depends(get_current_active_user),
    orchestrator: ChatSendOrchestrator = Depends(get_chat_send_orchestrator),
):
    """
    发送消息并以 SSE 流式返回助手回复

    带 retryMessageId 时在原位置重新生成该助手消息。
    """
    return await _stream(orchestrator, current_user, request)


@router.post("/resume")
async def resume_stream(
    request: ResumeStreamRequest,
    current_user: User = Depends(get_current_active_user),
    orchestrator: ResumeOrchestrator = Depends(get_resume_orchestrator),
):
    """
    续传中断的流，首个事件为 resumed
    """
    return await _stream(orchestrator, current_user, request)


@router.post("/retry")
async def retry_message(
    request: RetryMessageRequest,
    current_user: User = Depends(get_current_active_user),
    orchestrator: RetryOrchestrator = Depends(get_retry_orchestrator),
):
    """
    重新生成指定的助手消息
    """
    return await _stream(orchestrator, current_user, request)
