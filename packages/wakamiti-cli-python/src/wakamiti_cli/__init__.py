"""
Wakamiti CLI client（提交命令 + 事件通道流式输出）。

模块分层：
- `wakamiti_cli.client`：核心协议（提交、流式会话、结果解码、编排）
- `wakamiti_cli.config`：properties 配置发现与解析（协作方）
- `wakamiti_cli.cli`：进程入口（信号 → 取消、退出码）
"""

from __future__ import annotations

__version__ = "0.3.1"

__all__ = ["__version__"]
