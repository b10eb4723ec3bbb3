"""
Submission Step：一次性同步提交命令文本。

约束：
- `POST {scheme}://{host}:{port}/exec`，`Content-Type: text/plain; charset=utf-8` + `Origin` 头；
- 整体超时有界（超时视为失败，而不是挂起）；
- 非 2xx 视为失败；失败时最多读取响应体前若干 KB 拼错误消息，绝不缓冲无界 body；
- 不做重试：提交前没有任何部分状态，失败即快速返回。
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Optional

import httpx

from wakamiti_cli.config.loader import Endpoint
from wakamiti_cli.core.errors import SubmissionError

logger = logging.getLogger(__name__)

DEFAULT_SUBMIT_TIMEOUT_SEC = 15.0
DEFAULT_ERROR_BODY_LIMIT = 4096


def build_command(args: list[str]) -> str:
    """把参数列表用单个空格拼接为命令文本（允许为空）。"""

    return " ".join(str(a) for a in args)


def _read_body_prefix(resp: httpx.Response, limit: int) -> str:
    """
    从 streaming response 中读取至多 `limit` 字节的 body 前缀。

    说明：
    - 读取失败不应掩盖原始的状态码错误，因此这里返回已读到的部分。
    """

    buf = bytearray()
    try:
        for chunk in resp.iter_bytes():
            buf.extend(chunk)
            if len(buf) >= limit:
                break
    except httpx.HTTPError:
        logger.debug("Failed to read error body from %s", resp.request.url, exc_info=True)
    return bytes(buf[:limit]).decode("utf-8", errors="replace").strip()


def _post(client: httpx.Client, endpoint: Endpoint, command: str, body_limit: int) -> None:
    """使用给定 client 发送一次 POST，并在非 2xx 时抛 `SubmissionError(kind="status")`。"""

    headers = {
        "Content-Type": "text/plain; charset=utf-8",
        "Origin": endpoint.origin,
    }
    url = endpoint.submit_url
    with client.stream("POST", url, content=command.encode("utf-8"), headers=headers) as resp:
        logger.debug("Submission to %s answered %s", url, resp.status_code)
        if resp.is_success:
            return
        body = _read_body_prefix(resp, body_limit)
        status = f"{resp.status_code} {resp.reason_phrase}".strip()
        message = f"service returned status {status}"
        if body:
            message = f"{message}: {body}"
        raise SubmissionError(
            message,
            kind="status",
            status_code=resp.status_code,
            details={"url": url, "status_code": resp.status_code, "body": body},
        )


def _post_with_deadline(
    client: Optional[httpx.Client],
    endpoint: Endpoint,
    command: str,
    *,
    timeout_sec: float,
    body_limit: int,
) -> None:
    """
    在后台线程执行 `_post`，当前线程最多等待 `timeout_sec` 秒。

    说明：
    - `httpx.Timeout` 只约束单步 connect/read/write；服务端持续慢速发送时单步永不超时，
      因此整体截止时间由这里保证（对调用方注入的 client 同样生效）；
    - 超时后 worker 被放弃（daemon 线程），内部创建的 client 由 worker 自己关闭。
    """

    results: "queue.Queue[Optional[BaseException]]" = queue.Queue(maxsize=1)

    def _worker() -> None:
        """后台线程入口：发送请求并把结果（None 或异常）写入单槽队列。"""

        try:
            if client is not None:
                _post(client, endpoint, command, body_limit)
            else:
                with httpx.Client(timeout=httpx.Timeout(timeout_sec)) as own_client:
                    _post(own_client, endpoint, command, body_limit)
        except Exception as exc:
            results.put(exc)
            return
        results.put(None)

    t = threading.Thread(target=_worker, name="wakamiti-submit", daemon=True)
    t.start()
    try:
        err = results.get(timeout=timeout_sec)
    except queue.Empty:
        logger.debug("Submission to %s exceeded %.1fs", endpoint.submit_url, timeout_sec)
        raise SubmissionError(
            f"request failed: no complete response within {timeout_sec:g}s",
            kind="transport",
            details={"url": endpoint.submit_url, "reason": "deadline exceeded"},
        ) from None
    if err is not None:
        raise err


def submit(
    endpoint: Endpoint,
    command: str,
    *,
    client: Optional[httpx.Client] = None,
    timeout_sec: float = DEFAULT_SUBMIT_TIMEOUT_SEC,
    body_limit: int = DEFAULT_ERROR_BODY_LIMIT,
) -> None:
    """
    提交命令文本（成功时无返回值）。

    参数：
    - endpoint：服务地址与 origin token
    - command：命令文本（空字符串合法）
    - client：可选；调用方提供的 `httpx.Client`（不会被关闭）
    - timeout_sec：整体截止时间（秒）；包含建连、发送、读取状态行与错误 body
    - body_limit：失败时最多读取的响应体字节数

    异常：
    - SubmissionError(kind="transport")：无法连接/超时/协议层错误
    - SubmissionError(kind="status")：非 2xx 状态码
    """

    try:
        _post_with_deadline(client, endpoint, command, timeout_sec=timeout_sec, body_limit=body_limit)
    except httpx.HTTPError as exc:
        raise SubmissionError(
            f"request failed: {exc}",
            kind="transport",
            details={"url": endpoint.submit_url, "reason": str(exc)},
        ) from exc
