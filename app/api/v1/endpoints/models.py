from typing import Dict, List

from fastapi import APIRouter, Depends

from app.api.dependencies import get_gateway
from app.core.exceptions import NotFoundException
from app.llm.core.base import AIModel
from app.llm.gateway import ProviderGateway

router = APIRouter()


@router.get("", response_model=List[AIModel])
async def get_models(gateway: ProviderGateway = Depends(get_gateway)):
    """
    获取已配置提供商的可用模型列表
    """
    return gateway.get_available_models()


@router.get("/providers")
async def get_provider_status(gateway: ProviderGateway = Depends(get_gateway)) -> Dict[str, Dict]:
    """
    各提供商的配置状态
    """
    return gateway.get_provider_status()


@router.get("/{model_id}", response_model=AIModel)
async def get_model_by_id(model_id: str, gateway: ProviderGateway = Depends(get_gateway)):
    """
    根据ID获取模型描述
    """
    model = gateway.get_model_by_id(model_id)
    if model is None:
        raise NotFoundException(detail=f"Model '{model_id}' not found")
    return model
