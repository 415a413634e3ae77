from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class BaseSchema(BaseModel):
    """
    所有模式类的基类
    """

    model_config = ConfigDict(from_attributes=True)


class CamelSchema(BaseModel):
    """
    对外 JSON 使用 camelCase 字段名的模式类，同时接受 snake_case 输入
    """

    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class IDSchema(BaseSchema):
    """
    带有 ID 的模式类
    """

    id: UUID


class TimestampSchema(BaseSchema):
    """
    带有时间戳的模式类
    """

    created_at: datetime
    updated_at: Optional[datetime] = None


class BaseModelSchema(IDSchema, TimestampSchema):
    """
    基础模型模式类，包含 ID 和时间戳
    """

    pass
