"""
流式执行客户端核心（提交 → 事件通道 → 结果）。

对外入口：
- `run(endpoint, argv, cancellation) -> int`
"""

from __future__ import annotations

from wakamiti_cli.client.orchestrator import (
    EXIT_CLIENT_FAILURE,
    EXIT_STREAM_FAILED,
    EXIT_SUBMISSION_FAILED,
    WakamitiClient,
    run,
)
from wakamiti_cli.client.outcome import Outcome, decode_closure

__all__ = [
    "EXIT_CLIENT_FAILURE",
    "EXIT_STREAM_FAILED",
    "EXIT_SUBMISSION_FAILED",
    "Outcome",
    "WakamitiClient",
    "decode_closure",
    "run",
]
