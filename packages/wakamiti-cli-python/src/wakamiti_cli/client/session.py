"""
Streaming Session：一个事件通道的完整生命周期。

状态机：
- Connecting：带 Origin 头建立通道；握手被拒（非传输错误）时按退避表重试，
  每次尝试/退避都可被取消打断（立即 Failed + 取消错误）；传输错误或重试耗尽 → Failed
- Streaming：专用 reader 线程持续收帧；
  - 文本帧（trim 后非空）原样输出一行；空白帧忽略
  - 关闭信号/读错误 → Outcome Decoder → Closed
  - 同时观察取消信号：触发后进入 Stopping
- Stopping：输出本地提示、发送一次 `STOP`（best-effort），在有界时间内等待 reader 的结果；
  超时 → Failed `(1, SessionCancelledError)`
- Closed / Failed：终态

并发模型：
- reader 线程 + 单槽结果队列（`queue.Queue(maxsize=1)`）；
- 控制循环用短超时轮询队列，同时检查取消句柄（与 Executor 的 cancel 轮询同构）；
- 通道只有一个读者（reader 线程）和一个写者（Stopping 时发送 STOP）。

已知限制：
- 不设客户端空闲超时；远端挂起时客户端也会挂起（远端是退出码的唯一权威）。
"""

from __future__ import annotations

import contextlib
import logging
import queue
import sys
import threading
from enum import Enum
from typing import Optional, Sequence, TextIO

from websockets.exceptions import ConnectionClosed, InvalidHandshake, WebSocketException
from websockets.sync.client import ClientConnection, connect

from wakamiti_cli.client.outcome import Outcome, decode_closure
from wakamiti_cli.config.loader import Endpoint
from wakamiti_cli.core.cancellation import CancellationToken
from wakamiti_cli.core.errors import SessionCancelledError, StreamConnectError

logger = logging.getLogger(__name__)

STOP_FRAME = "STOP"
STOP_NOTICE = "> Stop request sent. The application will stop when the server closes the session."

DEFAULT_HANDSHAKE_TIMEOUT_SEC = 10.0
DEFAULT_DIAL_BACKOFF_SEC: tuple[float, ...] = (0.1, 0.25, 0.5)
DEFAULT_STOP_TIMEOUT_SEC = 3.0
DEFAULT_POLL_INTERVAL_SEC = 0.05
DEFAULT_CLOSE_TIMEOUT_SEC = 1.0


class SessionState(str, Enum):
    """会话状态（用于日志与测试断言）。"""

    CONNECTING = "connecting"
    STREAMING = "streaming"
    STOPPING = "stopping"
    CLOSED = "closed"
    FAILED = "failed"


class StreamingSession:
    """
    单命令、单通道的流式会话（一次性对象：`run()` 只能调用一次）。

    参数：
    - endpoint：服务地址与 origin token
    - cancellation：进程级取消句柄（只读）
    - stdout：进度行输出流（默认 sys.stdout）
    - stderr：本地提示输出流（默认 sys.stderr）
    - handshake_timeout_sec：每次建连的握手超时
    - dial_backoff_sec：握手被拒后的退避表（每项对应一次重试）
    - stop_timeout_sec：发送 STOP 后等待远端关闭的上限
    - poll_interval_sec：控制循环检查取消信号的间隔
    - close_timeout_sec：本地关闭通道时等待关闭握手的上限
    """

    def __init__(
        self,
        endpoint: Endpoint,
        cancellation: CancellationToken,
        *,
        stdout: Optional[TextIO] = None,
        stderr: Optional[TextIO] = None,
        handshake_timeout_sec: float = DEFAULT_HANDSHAKE_TIMEOUT_SEC,
        dial_backoff_sec: Sequence[float] = DEFAULT_DIAL_BACKOFF_SEC,
        stop_timeout_sec: float = DEFAULT_STOP_TIMEOUT_SEC,
        poll_interval_sec: float = DEFAULT_POLL_INTERVAL_SEC,
        close_timeout_sec: float = DEFAULT_CLOSE_TIMEOUT_SEC,
    ) -> None:
        """创建会话（不做任何 I/O）。"""

        self._endpoint = endpoint
        self._cancellation = cancellation
        self._stdout = stdout
        self._stderr = stderr
        self._handshake_timeout_sec = float(handshake_timeout_sec)
        self._dial_backoff_sec = tuple(float(d) for d in dial_backoff_sec)
        self._stop_timeout_sec = float(stop_timeout_sec)
        self._poll_interval_sec = float(poll_interval_sec)
        self._close_timeout_sec = float(close_timeout_sec)

        self._results: "queue.Queue[Outcome]" = queue.Queue(maxsize=1)
        self._stop_sent = False
        self._started = False
        self.state = SessionState.CONNECTING

    def run(self) -> Outcome:
        """
        执行完整会话并返回 Outcome。

        返回：
        - Closed：远端关闭帧解码结果（原样返回）
        - Failed：`(1, error)`（建连失败 / 取消）
        """

        if self._started:
            raise RuntimeError("streaming session can only be run once")
        self._started = True

        with contextlib.ExitStack() as stack:
            try:
                conn = self._connect(stack)
            except (StreamConnectError, SessionCancelledError) as exc:
                self.state = SessionState.FAILED
                return Outcome(1, exc)

            self.state = SessionState.STREAMING
            reader = threading.Thread(target=self._read_loop, args=(conn,), name="wakamiti-stream-reader", daemon=True)
            reader.start()
            try:
                return self._await_outcome(conn)
            finally:
                # 先关闭通道（退出连接上下文），reader 随之结束
                stack.close()
                reader.join(timeout=self._close_timeout_sec)

    def _connect(self, stack: contextlib.ExitStack) -> ClientConnection:
        """
        建立事件通道（Connecting 状态）。

        参数：
        - stack：连接以上下文管理器方式进入该 stack，由调用方负责退出（即关闭通道）

        异常：
        - SessionCancelledError：尝试前或退避期间取消触发
        - StreamConnectError：传输错误，或握手被拒且重试耗尽
        """

        url = self._endpoint.stream_url
        delays = (0.0,) + self._dial_backoff_sec
        last_exc: Optional[BaseException] = None
        for attempt, delay in enumerate(delays):
            if delay > 0:
                logger.debug("Retrying %s in %.2fs (attempt %d)", url, delay, attempt + 1)
                if self._cancellation.wait(delay):
                    raise SessionCancelledError("cancelled while connecting") from last_exc
            if self._cancellation.cancelled:
                raise SessionCancelledError("cancelled while connecting") from last_exc
            try:
                conn = stack.enter_context(
                    connect(
                        url,
                        origin=self._endpoint.origin,  # type: ignore[arg-type]
                        open_timeout=self._handshake_timeout_sec,
                        close_timeout=self._close_timeout_sec,
                    )
                )
            except InvalidHandshake as exc:
                logger.debug("Handshake with %s rejected: %s", url, exc)
                last_exc = exc
                continue
            except (OSError, WebSocketException) as exc:
                raise StreamConnectError(f"failed to connect to {url}: {exc}") from exc
            logger.debug("Connected to %s", url)
            return conn
        raise StreamConnectError(f"failed to connect to {url}: {last_exc}") from last_exc

    def _read_loop(self, conn: ClientConnection) -> None:
        """
        reader 线程入口：按接收顺序转发文本帧，直到通道关闭或读出错。

        说明：
        - 任何读错误都视为非优雅关闭，同样交给 Outcome Decoder；
        - 结果只写入一次（单槽队列）。
        """

        out = self._stdout or sys.stdout
        try:
            while True:
                msg = conn.recv()
                if isinstance(msg, bytes):
                    msg = msg.decode("utf-8", errors="replace")
                text = msg.strip()
                if text:
                    print(text, file=out, flush=True)
        except Exception as exc:
            outcome = decode_closure(exc)
            logger.debug("Stream closed: exit_code=%s error=%r", outcome.exit_code, outcome.error)
            self._results.put(outcome)

    def _await_outcome(self, conn: ClientConnection) -> Outcome:
        """Streaming 控制循环：等待 reader 结果或取消信号（二选一）。"""

        while True:
            try:
                outcome = self._results.get(timeout=self._poll_interval_sec)
            except queue.Empty:
                if self._cancellation.cancelled:
                    return self._stop(conn)
                continue
            self.state = SessionState.CLOSED
            return outcome

    def _stop(self, conn: ClientConnection) -> Outcome:
        """
        Stopping：发送一次 STOP，并在有界时间内等待远端关闭。

        返回：
        - 远端在超时内关闭：该关闭的解码结果（Closed）
        - 超时：`(1, SessionCancelledError)`（Failed；退出码不代表命令结果）
        """

        self.state = SessionState.STOPPING
        self._send_stop(conn)
        try:
            outcome = self._results.get(timeout=self._stop_timeout_sec)
        except queue.Empty:
            self.state = SessionState.FAILED
            logger.debug("No closure within %.1fs after stop request", self._stop_timeout_sec)
            return Outcome(1, SessionCancelledError("stop requested but the server did not close the session"))
        self.state = SessionState.CLOSED
        return outcome

    def _send_stop(self, conn: ClientConnection) -> None:
        """输出本地提示并发送 STOP 帧（至多一次；发送失败不致命）。"""

        if self._stop_sent:
            return
        self._stop_sent = True
        print(STOP_NOTICE, file=self._stderr or sys.stderr, flush=True)
        try:
            conn.send(STOP_FRAME)
        except (ConnectionClosed, OSError) as exc:
            logger.debug("Stop request not delivered: %s", exc)
