"""配置协作方：properties 解析与 Endpoint 发现（核心只消费结果，不做文件 I/O）。"""

from __future__ import annotations

from wakamiti_cli.config.loader import Endpoint, load_endpoint
from wakamiti_cli.config.properties import load_properties, parse_properties

__all__ = ["Endpoint", "load_endpoint", "load_properties", "parse_properties"]
