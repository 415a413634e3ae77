from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from app.api.dependencies import (get_conversation_service,
                                  get_current_active_user)
from app.db.models.user import User
from app.schemas.conversation import Conversation, ConversationCreate
from app.schemas.message import MessageResponse
from app.services.conversation_service import ConversationService

router = APIRouter()


@router.post("", response_model=Conversation, status_code=status.HTTP_201_CREATED)
async def create_conversation(
    conversation_in: ConversationCreate,
    current_user: User = Depends(get_current_active_user),
    conversation_service: ConversationService = Depends(get_conversation_service),
):
    """
    创建新对话
    """
    return await conversation_service.create(user_id=current_user.id, conv_create=conversation_in)


@router.get("", response_model=List[Conversation])
async def read_conversations(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    current_user: User = Depends(get_current_active_user),
    conversation_service: ConversationService = Depends(get_conversation_service),
):
    """
    获取当前用户的所有对话
    """
    return await conversation_service.get_by_user_id(
        user_id=current_user.id, skip=skip, limit=limit
    )


@router.get("/{conversation_id}", response_model=Conversation)
async def read_conversation(
    conversation_id: UUID,
    current_user: User = Depends(get_current_active_user),
    conversation_service: ConversationService = Depends(get_conversation_service),
):
    """
    根据ID获取特定对话
    """
    return await conversation_service.get_by_id(
        conversation_id=conversation_id, user_id=current_user.id
    )


@router.get("/{conversation_id}/messages", response_model=List[MessageResponse])
async def read_conversation_messages(
    conversation_id: UUID,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    current_user: User = Depends(get_current_active_user),
    conversation_service: ConversationService = Depends(get_conversation_service),
):
    """
    获取对话的消息列表
    """
    return await conversation_service.get_messages(
        conversation_id, current_user.id, skip=skip, limit=limit
    )


@router.delete("/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(
    conversation_id: UUID,
    current_user: User = Depends(get_current_active_user),
    conversation_service: ConversationService = Depends(get_conversation_service),
):
    """
    删除对话
    """
    await conversation_service.delete(conversation_id, current_user.id)
