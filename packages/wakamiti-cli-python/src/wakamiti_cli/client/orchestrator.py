"""
Orchestrator：Submission Step → Streaming Session，并最终确定进程退出码。

退出码约定（进程边界）：
- 0 与正整数：远端报告的命令结果
- 255：提交失败
- 3：流式/协议失败（建连失败、关闭 reason 非退出码、读错误）
- 1：客户端无法得知结果（例如取消后远端未关闭）

错误输出：
- 本模块是唯一写用户可见错误消息的地方；
- 取消（SessionCancelledError）永远不作为错误打印。
"""

from __future__ import annotations

import logging
import sys
from typing import Optional, Sequence, TextIO

import httpx

from wakamiti_cli.client.outcome import Outcome
from wakamiti_cli.client.session import (
    DEFAULT_CLOSE_TIMEOUT_SEC,
    DEFAULT_DIAL_BACKOFF_SEC,
    DEFAULT_HANDSHAKE_TIMEOUT_SEC,
    DEFAULT_POLL_INTERVAL_SEC,
    DEFAULT_STOP_TIMEOUT_SEC,
    StreamingSession,
)
from wakamiti_cli.client.submit import (
    DEFAULT_ERROR_BODY_LIMIT,
    DEFAULT_SUBMIT_TIMEOUT_SEC,
    build_command,
    submit,
)
from wakamiti_cli.config.loader import Endpoint
from wakamiti_cli.core.cancellation import CancellationToken
from wakamiti_cli.core.errors import SessionCancelledError, SubmissionError

logger = logging.getLogger(__name__)

EXIT_CLIENT_FAILURE = 1
EXIT_STREAM_FAILED = 3
EXIT_SUBMISSION_FAILED = 255


class WakamitiClient:
    """
    远端执行服务客户端（一次 `run` = 一个命令 = 一个通道）。

    说明：
    - 所有超时/退避参数都有默认值，只在测试或特殊部署中覆盖；
    - `http_client` 由调用方持有生命周期（本类不会关闭它）。
    """

    def __init__(
        self,
        endpoint: Endpoint,
        *,
        stdout: Optional[TextIO] = None,
        stderr: Optional[TextIO] = None,
        http_client: Optional[httpx.Client] = None,
        submit_timeout_sec: float = DEFAULT_SUBMIT_TIMEOUT_SEC,
        error_body_limit: int = DEFAULT_ERROR_BODY_LIMIT,
        handshake_timeout_sec: float = DEFAULT_HANDSHAKE_TIMEOUT_SEC,
        dial_backoff_sec: Sequence[float] = DEFAULT_DIAL_BACKOFF_SEC,
        stop_timeout_sec: float = DEFAULT_STOP_TIMEOUT_SEC,
        poll_interval_sec: float = DEFAULT_POLL_INTERVAL_SEC,
        close_timeout_sec: float = DEFAULT_CLOSE_TIMEOUT_SEC,
    ) -> None:
        """
        创建客户端。

        参数：
        - endpoint：服务地址与 origin token（已完全解析）
        - stdout / stderr：输出流（默认进程标准流；便于测试捕获）
        - http_client：可选；提交用的 `httpx.Client`
        - 其余：超时与退避参数（秒）
        """

        self._endpoint = endpoint
        self._stdout = stdout
        self._stderr = stderr
        self._http_client = http_client
        self._submit_timeout_sec = submit_timeout_sec
        self._error_body_limit = error_body_limit
        self._handshake_timeout_sec = handshake_timeout_sec
        self._dial_backoff_sec = tuple(dial_backoff_sec)
        self._stop_timeout_sec = stop_timeout_sec
        self._poll_interval_sec = poll_interval_sec
        self._close_timeout_sec = close_timeout_sec

    def _report(self, prefix: str, exc: BaseException) -> None:
        """向错误流写一条用户可见消息。"""

        print(f"{prefix}: {exc}", file=self._stderr or sys.stderr, flush=True)

    def submit(self, command: str) -> None:
        """提交命令文本（失败抛 `SubmissionError`）。"""

        submit(
            self._endpoint,
            command,
            client=self._http_client,
            timeout_sec=self._submit_timeout_sec,
            body_limit=self._error_body_limit,
        )

    def stream(self, cancellation: CancellationToken) -> Outcome:
        """打开一个 Streaming Session 并返回其 Outcome。"""

        session = StreamingSession(
            self._endpoint,
            cancellation,
            stdout=self._stdout,
            stderr=self._stderr,
            handshake_timeout_sec=self._handshake_timeout_sec,
            dial_backoff_sec=self._dial_backoff_sec,
            stop_timeout_sec=self._stop_timeout_sec,
            poll_interval_sec=self._poll_interval_sec,
            close_timeout_sec=self._close_timeout_sec,
        )
        return session.run()

    def run(self, argv: Sequence[str], cancellation: CancellationToken) -> int:
        """
        执行一次完整流程并返回进程退出码。

        参数：
        - argv：命令参数（按空格拼接为命令文本）
        - cancellation：进程级取消句柄

        返回：
        - int：见模块说明的退出码约定
        """

        command = build_command(list(argv))
        try:
            self.submit(command)
        except SubmissionError as exc:
            if cancellation.cancelled:
                logger.debug("Submission failed after cancellation: %s", exc)
            else:
                self._report("Error starting execution", exc)
            return EXIT_SUBMISSION_FAILED

        outcome = self.stream(cancellation)
        if outcome.error is None:
            return outcome.exit_code
        if isinstance(outcome.error, SessionCancelledError):
            logger.debug("Session cancelled: %s", outcome.error)
            return outcome.exit_code
        # 流级错误优先于解码得到的任何数字
        self._report("Stream error", outcome.error)
        return EXIT_STREAM_FAILED


def run(
    endpoint: Endpoint,
    argv: Sequence[str],
    cancellation: CancellationToken,
    *,
    stdout: Optional[TextIO] = None,
    stderr: Optional[TextIO] = None,
    http_client: Optional[httpx.Client] = None,
    submit_timeout_sec: float = DEFAULT_SUBMIT_TIMEOUT_SEC,
    error_body_limit: int = DEFAULT_ERROR_BODY_LIMIT,
    handshake_timeout_sec: float = DEFAULT_HANDSHAKE_TIMEOUT_SEC,
    dial_backoff_sec: Sequence[float] = DEFAULT_DIAL_BACKOFF_SEC,
    stop_timeout_sec: float = DEFAULT_STOP_TIMEOUT_SEC,
    poll_interval_sec: float = DEFAULT_POLL_INTERVAL_SEC,
    close_timeout_sec: float = DEFAULT_CLOSE_TIMEOUT_SEC,
) -> int:
    """
    进程包装层使用的唯一入口。

    参数：
    - endpoint：已解析的服务地址
    - argv：命令参数
    - cancellation：取消句柄（由包装层把 OS 信号接到它上面）
    - 其余关键字参数：与 `WakamitiClient` 相同（输出流、可选 http client、超时与退避）
    """

    client = WakamitiClient(
        endpoint,
        stdout=stdout,
        stderr=stderr,
        http_client=http_client,
        submit_timeout_sec=submit_timeout_sec,
        error_body_limit=error_body_limit,
        handshake_timeout_sec=handshake_timeout_sec,
        dial_backoff_sec=dial_backoff_sec,
        stop_timeout_sec=stop_timeout_sec,
        poll_interval_sec=poll_interval_sec,
        close_timeout_sec=close_timeout_sec,
    )
    return client.run(argv, cancellation)
