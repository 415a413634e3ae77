import time
from typing import Callable


class CheckpointGate:
    """
    流式写库节流

    累计到 chunk_interval 个增量，或距上次写库超过 min_interval 秒，任一满足即放行。
    只依赖单调计数与单调时钟，和内容长度、分块边界无关。
    """

    def __init__(
        self,
        chunk_interval: int,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.chunk_interval = max(chunk_interval, 1)
        self.min_interval = min_interval
        self._clock = clock
        self._last_checkpoint = clock()
        self._pending = 0

    def should_checkpoint(self) -> bool:
        """记录一个新增量，返回本次是否需要写检查点"""
        self._pending += 1
        now = self._clock()
        if self._pending >= self.chunk_interval or now - self._last_checkpoint >= self.min_interval:
            self._pending = 0
            self._last_checkpoint = now
            return True
        return False
