"""
Outcome Decoder：把通道关闭信号翻译为 `(exit_code, error)`。

规则（唯一落点；所有“close reason → 退出码”的语义变更只改这里）：
- 结构化关闭 + reason（trim 后）为十进制整数：`(n, None)`
- 结构化关闭 + reason 非空且非数字：`(1, RemoteClosedError(reason))`
- 结构化关闭 + reason 为空：`(1, RemoteClosedError("closed by unknown reason"))`
- 非结构化关闭（底层传输错误）：`(1, 原异常)`，原样透传

本模块是纯函数，不做任何 I/O。
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from websockets.exceptions import ConnectionClosed

from wakamiti_cli.core.errors import RemoteClosedError

UNKNOWN_REASON = "closed by unknown reason"

_EXIT_CODE_RE = re.compile(r"[+-]?[0-9]+")


@dataclass(frozen=True)
class Outcome:
    """
    会话结果。

    字段：
    - exit_code：远端报告的命令退出码；当 error 非空时仅在文档明确时可信
    - error：可选；客户端未能得到可信退出码的原因
    """

    exit_code: int
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        """是否为“远端给出了退出码”的正常结果。"""

        return self.error is None


def decode_reason(reason: str) -> Outcome:
    """
    解码结构化关闭携带的 reason 文本。

    参数：
    - reason：远端关闭帧的 reason（可能为空字符串）
    """

    text = reason.strip()
    if _EXIT_CODE_RE.fullmatch(text):
        return Outcome(int(text))
    if not text:
        return Outcome(1, RemoteClosedError(UNKNOWN_REASON))
    return Outcome(1, RemoteClosedError(text))


def decode_closure(exc: BaseException) -> Outcome:
    """
    把读取通道时得到的异常翻译为 Outcome。

    参数：
    - exc：`ConnectionClosed`（可能带关闭帧）或任意底层传输异常

    返回：
    - Outcome（见模块说明）
    """

    if isinstance(exc, ConnectionClosed) and exc.rcvd is not None:
        return decode_reason(exc.rcvd.reason or "")
    return Outcome(1, exc)
