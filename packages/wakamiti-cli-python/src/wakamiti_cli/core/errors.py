"""
CLI 内部错误分类（异常类型）。

说明：
- 各组件在本地检测失败，并以异常对象（值）的形式交给 Orchestrator；
- 只有 Orchestrator 负责把错误写到 stderr 并决定退出码；
- 结构化错误使用英文 `code/message/details`，便于脚本与测试按 code 分支。
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class WakamitiCliError(Exception):
    """CLI 错误基类（不建议直接抛出）。"""


class StructuredError(WakamitiCliError):
    """带稳定错误码的结构化错误（英文 `code/message/details`）。"""

    def __init__(self, *, code: str, message: str, details: Dict[str, Any] | None = None) -> None:
        """
        创建结构化错误。

        参数：
        - `code`：稳定错误码（英文大写下划线）
        - `message`：英文错误消息
        - `details`：结构化上下文信息
        """

        super().__init__(message)
        self.code = code
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def __str__(self) -> str:
        """返回用户可读的错误消息（不含 code）。"""

        return self.message


class ConfigError(StructuredError):
    """配置发现/解析/校验失败（在核心运行前暴露给用户）。"""


class SubmissionError(StructuredError):
    """
    命令提交失败。

    字段：
    - kind：`transport`（无法连接/超时）或 `status`（非 2xx）
    - status_code：仅 `status` 时存在
    """

    def __init__(
        self,
        message: str,
        *,
        kind: str,
        status_code: Optional[int] = None,
        details: Dict[str, Any] | None = None,
    ) -> None:
        """
        创建提交错误。

        参数：
        - message：可读错误消息
        - kind：`transport` / `status`
        - status_code：HTTP 状态码（可选）
        - details：结构化补充信息
        """

        code = "SUBMISSION_STATUS" if kind == "status" else "SUBMISSION_TRANSPORT"
        super().__init__(code=code, message=message, details=details)
        self.kind = kind
        self.status_code = status_code


class StreamConnectError(WakamitiCliError):
    """事件通道建立失败（传输错误，或握手被拒且重试耗尽）。"""


class RemoteClosedError(WakamitiCliError):
    """远端关闭通道时给出的 reason 不是退出码（错误文本或空 reason）。"""

    def __init__(self, reason: str) -> None:
        """记录远端给出的 reason 文本。"""

        super().__init__(reason)
        self.reason = reason


class SessionCancelledError(WakamitiCliError):
    """本地取消导致的会话终止（Orchestrator 不把它当作错误打印）。"""
