"""
Snowflake ID 生成模块

订单、支付事件、审计记录等所有表的主键都使用 64 位 Snowflake ID：
- 41 位：相对 _EPOCH_MS 的毫秒时间戳
- 10 位：节点 ID（SNOWFLAKE_NODE_ID，每个实例不同）
- 12 位：同一毫秒内的序列号

ID 按时间递增，审计记录按 ID 排序即为写入顺序。
"""
from __future__ import annotations

import threading
import time

from app.core.config import settings

_EPOCH_MS = 1704067200000  # 2024-01-01T00:00:00Z
_MAX_NODE_ID = 0x3FF
_SEQ_MASK = 0xFFF
_MAX_BACKWARDS_MS = 5000


class Snowflake:
    """线程安全的 Snowflake ID 生成器"""

    def __init__(self, *, node_id: int) -> None:
        if not (0 <= node_id <= _MAX_NODE_ID):
            raise ValueError(f"SNOWFLAKE_NODE_ID must be in [0, {_MAX_NODE_ID}]")
        self._node_id = node_id
        self._lock = threading.Lock()
        self._last_ts = -1
        self._seq = 0

    @staticmethod
    def _now_ms() -> int:
        return int(time.time() * 1000)

    @classmethod
    def _wait_until(cls, target_ms: int) -> int:
        ts = cls._now_ms()
        while ts < target_ms:
            time.sleep(0.001)
            ts = cls._now_ms()
        return ts

    def next_id(self) -> int:
        """
        生成下一个 ID

        时钟回拨不超过 5 秒时等待时钟追上，超过则拒绝生成，避免产生重复 ID。

        Raises:
            RuntimeError: 时钟回拨超过 5 秒
        """
        with self._lock:
            ts = self._now_ms()
            if ts < self._last_ts:
                drift = self._last_ts - ts
                if drift > _MAX_BACKWARDS_MS:
                    raise RuntimeError(
                        f"Clock moved backwards by {drift}ms, refusing to generate ids"
                    )
                ts = self._wait_until(self._last_ts)

            if ts == self._last_ts:
                self._seq = (self._seq + 1) & _SEQ_MASK
                if self._seq == 0:
                    # 本毫秒序列号用尽
                    ts = self._wait_until(self._last_ts + 1)
            else:
                self._seq = 0

            self._last_ts = ts
            return ((ts - _EPOCH_MS) << 22) | (self._node_id << 12) | self._seq


_GENERATOR: Snowflake | None = None


def generate_id() -> int:
    """生成唯一 ID（进程内共享一个生成器，首次调用时按配置创建）"""
    global _GENERATOR
    if _GENERATOR is None:
        _GENERATOR = Snowflake(node_id=settings.SNOWFLAKE_NODE_ID)
    return _GENERATOR.next_id()
