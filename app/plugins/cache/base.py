from abc import ABC, abstractmethod
from typing import Any, List, Optional


class CacheProvider(ABC):
    """
    键值缓存插件接口，值以 JSON 形式存取
    """

    @abstractmethod
    async def connect(self) -> None:
        """连接到缓存服务器"""

    @abstractmethod
    async def disconnect(self) -> None:
        """断开与缓存服务器的连接"""

    @abstractmethod
    async def get(self, key: str) -> Any:
        """获取缓存项，不存在时返回 None"""

    @abstractmethod
    async def set(self, key: str, value: Any, expire: Optional[int] = None) -> bool:
        """设置缓存项，expire 为过期秒数"""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """删除缓存项"""

    @abstractmethod
    async def keys(self, pattern: str) -> List[str]:
        """按通配模式列出键"""

    @abstractmethod
    async def ping(self) -> bool:
        """检查连接是否可用"""
