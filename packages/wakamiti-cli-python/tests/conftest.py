from __future__ import annotations

import socket
import threading
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Callable, Iterator, List, Optional

import pytest
from websockets.sync.server import ServerConnection, serve

from wakamiti_cli.config.loader import Endpoint

TEST_ORIGIN = "test-origin"


@dataclass
class StreamServer:
    """
    测试用事件通道服务端（websockets sync server，跑在后台线程）。

    字段：
    - port：监听端口
    - attempts：收到的握手请求数（含被拒绝的）
    - paths / origins：每次握手的请求路径与 Origin 头
    - received：handler 收到的客户端帧
    """

    port: int
    attempts: int = 0
    paths: List[str] = field(default_factory=list)
    origins: List[Optional[str]] = field(default_factory=list)
    received: List[str] = field(default_factory=list)
    ready: threading.Event = field(default_factory=threading.Event)

    def endpoint(self, origin: str = TEST_ORIGIN) -> Endpoint:
        return Endpoint(host="127.0.0.1", port=self.port, origin=origin)


Handler = Callable[[ServerConnection, StreamServer], None]


@pytest.fixture
def stream_server() -> Iterator[Callable[..., StreamServer]]:
    """
    启动通道服务端的工厂 fixture。

    用法：
    - `srv = stream_server(handler)`：handler(conn, srv) 负责发帧/关闭
    - `reject_first=N`：前 N 次握手直接返回 403（模拟握手失败）
    """

    started: list = []

    def _start(handler: Handler, *, reject_first: int = 0) -> StreamServer:
        state: dict = {}

        def _process_request(connection, request):  # type: ignore[no-untyped-def]
            srv: StreamServer = state["srv"]
            srv.attempts += 1
            srv.paths.append(request.path)
            srv.origins.append(request.headers.get("Origin"))
            if srv.attempts <= reject_first:
                return connection.respond(HTTPStatus.FORBIDDEN, "forbidden\n")
            return None

        def _handle(connection: ServerConnection) -> None:
            srv: StreamServer = state["srv"]
            srv.ready.set()
            handler(connection, srv)

        server = serve(_handle, "127.0.0.1", 0, process_request=_process_request)
        srv = StreamServer(port=server.socket.getsockname()[1])
        state["srv"] = srv
        t = threading.Thread(target=server.serve_forever, daemon=True)
        t.start()
        started.append((server, t))
        return srv

    yield _start

    for server, t in started:
        server.shutdown()
        t.join(timeout=5)


@pytest.fixture
def unused_port() -> int:
    """返回一个当前没有进程监听的本地端口。"""

    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]
