"""
CancellationToken：进程级、单次触发的取消信号。

约束：
- 进程启动时创建；最多触发一次；没有 reset；
- 会话只读取它（`cancelled` / `wait`），从不触发它；
- 触发方（信号处理器）与读取方可以在不同线程。
"""

from __future__ import annotations

import threading
from typing import Optional


class CancellationToken:
    """基于 `threading.Event` 的取消句柄。"""

    def __init__(self) -> None:
        """创建一个未触发的取消句柄。"""

        self._event = threading.Event()

    def cancel(self) -> None:
        """触发取消（幂等；重复调用无副作用）。"""

        self._event.set()

    @property
    def cancelled(self) -> bool:
        """是否已触发。"""

        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        阻塞等待取消触发。

        参数：
        - timeout：最长等待秒数；None 表示无限等待

        返回：
        - True：已触发；False：超时仍未触发
        """

        return self._event.wait(timeout)
