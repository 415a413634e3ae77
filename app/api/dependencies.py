from typing import AsyncGenerator, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import CredentialsException
from app.core.security import decode_access_token
from app.db.models.user import User
from app.db.repositories.user_repository import UserRepository
from app.db.session import async_session_maker, get_db
from app.llm.gateway import ProviderGateway, get_provider_gateway
from app.services.chat_send_orchestrator import ChatSendOrchestrator
from app.services.conversation_service import ConversationService
from app.services.resume_orchestrator import ResumeOrchestrator
from app.services.retry_orchestrator import RetryOrchestrator
from app.streaming.repository import (StreamStateRepository,
                                      get_stream_state_repository)

bearer_scheme = HTTPBearer(auto_error=False)


# 依赖项: 获取数据库会话
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    async with get_db() as session:
        yield session


# 依赖项: 获取当前用户
async def get_current_user(
    db_session: AsyncSession = Depends(get_db_session),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> User:
    if credentials is None:
        raise CredentialsException()
    token_data = decode_access_token(credentials.credentials)
    if token_data.sub is None:
        raise CredentialsException()

    user = await UserRepository(db_session).get_by_id(token_data.sub)
    if not user:
        raise CredentialsException()
    return user


# 依赖项: 获取当前活跃用户
async def get_current_active_user(
    current_user: User = Depends(get_current_user),
) -> User:
    if not current_user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Inactive user")
    return current_user


def get_gateway() -> ProviderGateway:
    return get_provider_gateway()


def get_stream_states() -> StreamStateRepository:
    return get_stream_state_repository()


# 服务依赖项
async def get_conversation_service(
    db_session: AsyncSession = Depends(get_db_session),
    gateway: ProviderGateway = Depends(get_gateway),
) -> ConversationService:
    return ConversationService(db_session, gateway)


# 流式编排器使用独立的数据库会话：轮次在响应返回后继续运行，会话由编排器在轮次结束时关闭
async def get_chat_send_orchestrator(
    gateway: ProviderGateway = Depends(get_gateway),
    stream_states: StreamStateRepository = Depends(get_stream_states),
) -> ChatSendOrchestrator:
    return ChatSendOrchestrator.from_session(async_session_maker(), gateway, stream_states)


async def get_resume_orchestrator(
    gateway: ProviderGateway = Depends(get_gateway),
    stream_states: StreamStateRepository = Depends(get_stream_states),
) -> ResumeOrchestrator:
    return ResumeOrchestrator.from_session(async_session_maker(), gateway, stream_states)


async def get_retry_orchestrator(
    gateway: ProviderGateway = Depends(get_gateway),
    stream_states: StreamStateRepository = Depends(get_stream_states),
) -> RetryOrchestrator:
    return RetryOrchestrator.from_session(async_session_maker(), gateway, stream_states)
