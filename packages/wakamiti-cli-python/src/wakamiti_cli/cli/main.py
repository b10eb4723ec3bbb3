"""
Wakamiti CLI 进程入口。

职责（刻意保持很薄）：
- 尽早把 stdout/stderr 切到 UTF-8（`C` locale 下进度行含非 ASCII 也不崩）；
- 按 `WAKAMITI_LOG_LEVEL` 配置日志（未设置时保持静默）；
- 加载 Endpoint（配置错误在核心运行前暴露，退出码 1）；
- 把 SIGINT/SIGTERM 接到 CancellationToken 上，调用 `run` 并返回其退出码。

说明：
- 所有 argv 都属于远端命令；客户端自身没有 flag（设置来自配置文件/环境变量）。
"""

from __future__ import annotations

import contextlib
import logging
import os
import signal
import sys
import threading
from typing import Iterator, Optional, Sequence

from wakamiti_cli.client.orchestrator import EXIT_CLIENT_FAILURE, run
from wakamiti_cli.config.loader import load_endpoint
from wakamiti_cli.core.cancellation import CancellationToken
from wakamiti_cli.core.errors import ConfigError

logger = logging.getLogger(__name__)

_INTERRUPT_SIGNALS = ("SIGINT", "SIGTERM")


def ensure_utf8_stdio() -> None:
    """
    best-effort 将 stdout/stderr reconfigure 为 UTF-8，并让 stdout 行缓冲。

    说明：
    - 进度行需要“收到即可见”，因此 stdout 使用 line_buffering；
    - 流对象不支持 reconfigure（例如被测试替换）时静默跳过。
    """

    for stream, line_buffering in ((sys.stdout, True), (sys.stderr, False)):
        reconfigure = getattr(stream, "reconfigure", None)
        if not callable(reconfigure):
            continue
        try:
            reconfigure(encoding="utf-8", errors="replace", line_buffering=line_buffering)
        except (ValueError, OSError):
            continue


def configure_logging(level_name: Optional[str]) -> None:
    """仅当显式给出日志级别时，把日志输出到 stderr。"""

    if not level_name:
        return
    level = logging.getLevelName(level_name.strip().upper())
    if not isinstance(level, int):
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@contextlib.contextmanager
def interrupt_cancels(token: CancellationToken) -> Iterator[CancellationToken]:
    """
    在上下文内把 OS 中断信号接到取消句柄上，退出时恢复原处理器。

    说明：
    - Python 只允许在主线程安装信号处理器；非主线程调用时不做接线；
    - 重复收到信号只会重复 `cancel()`（幂等）。
    """

    if threading.current_thread() is not threading.main_thread():
        yield token
        return

    def _handler(signum: int, frame: object) -> None:
        """信号处理器：触发取消。"""

        logger.debug("Received signal %s; cancelling", signum)
        token.cancel()

    previous = {}
    for name in _INTERRUPT_SIGNALS:
        sig = getattr(signal, name, None)
        if sig is None:
            continue
        previous[sig] = signal.signal(sig, _handler)
    try:
        yield token
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    CLI 入口函数（用于 console_scripts 与测试）。

    参数：
    - argv：命令参数（不含程序名）；为 None 时读取 sys.argv[1:]

    返回：
    - int：exit code（不会直接 sys.exit，便于测试）
    """

    ensure_utf8_stdio()
    configure_logging(os.environ.get("WAKAMITI_LOG_LEVEL"))

    args = list(sys.argv[1:] if argv is None else argv)
    try:
        endpoint = load_endpoint()
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr, flush=True)
        return EXIT_CLIENT_FAILURE

    with interrupt_cancels(CancellationToken()) as token:
        return run(endpoint, args, token)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
